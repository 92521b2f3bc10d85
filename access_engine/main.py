from __future__ import annotations

from fastapi import FastAPI, HTTPException

from access_engine.api.routers import audit, hierarchy, identity, permissions
from access_engine.infra.db import check_db_ready
from access_engine.infra.logging_config import setup_logging

setup_logging()

app = FastAPI(
    title="access-engine",
    description="Permission resolution and identity reconciliation for department hierarchies.",
    version="0.1.0",
)

app.include_router(hierarchy.router, prefix="/api/hierarchy", tags=["hierarchy"])
app.include_router(permissions.router, prefix="/api/permissions", tags=["permissions"])
app.include_router(identity.router, prefix="/api/identity", tags=["identity"])
app.include_router(audit.router, prefix="/api/audit", tags=["audit"])


@app.get("/healthz")
def healthz() -> dict[str, str]:
    return {"status": "ok"}


@app.get("/readyz")
def readyz() -> dict[str, object]:
    db_ok = check_db_ready()
    checks = {"db": "ok" if db_ok else "fail"}
    if not db_ok:
        raise HTTPException(
            status_code=503,
            detail={"status": "not_ready", "checks": checks},
        )
    return {"status": "ready", "checks": checks}
