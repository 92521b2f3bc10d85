from __future__ import annotations

from datetime import datetime
from typing import Any

from sqlalchemy import func
from sqlmodel import Session, col, select

from access_engine.domain.models import AuditLog
from access_engine.infra.db import engine
from access_engine.infra.logging_config import get_logger

log = get_logger(__name__)

DEFAULT_PAGE_LIMIT = 50
MAX_PAGE_LIMIT = 500


def build_audit_log(
    *,
    actor_id: str | None,
    action: str,
    resource: str,
    target_scope: str,
    target_id: str | None = None,
    affected_user_count: int = 0,
    success: bool = True,
    detail: dict[str, Any] | None = None,
) -> AuditLog:
    return AuditLog(
        actor_id=actor_id,
        action=action,
        resource=resource,
        target_scope=target_scope,
        target_id=target_id,
        affected_user_count=affected_user_count,
        success=success,
        detail=detail or {},
    )


def record_audit(session: Session, **kwargs: Any) -> AuditLog:
    """Stage an audit entry in ``session`` so it commits together with the write it describes."""
    entry = build_audit_log(**kwargs)
    session.add(entry)
    return entry


def write_audit_log(**kwargs: Any) -> AuditLog:
    entry = build_audit_log(**kwargs)
    with Session(engine, expire_on_commit=False) as session:
        session.add(entry)
        session.commit()
    return entry


def write_failure_audit(
    *,
    actor_id: str | None,
    action: str,
    resource: str,
    target_scope: str,
    target_id: str | None,
    error: Exception,
    detail: dict[str, Any] | None = None,
) -> None:
    failure_detail: dict[str, Any] = {"error": type(error).__name__, "message": str(error)}
    if detail:
        failure_detail.update(detail)
    try:
        write_audit_log(
            actor_id=actor_id,
            action=action,
            resource=resource,
            target_scope=target_scope,
            target_id=target_id,
            success=False,
            detail=failure_detail,
        )
    except Exception:
        # the original error is what the caller must see
        log.exception("failed to record audit entry for rejected %s on %s", action, resource)


def query_audit_logs(
    *,
    actor_id: str | None = None,
    action: str | None = None,
    resource: str | None = None,
    success: bool | None = None,
    date_from: datetime | None = None,
    date_to: datetime | None = None,
    page: int = 1,
    limit: int = DEFAULT_PAGE_LIMIT,
) -> tuple[list[AuditLog], int]:
    page = max(page, 1)
    limit = min(max(limit, 1), MAX_PAGE_LIMIT)

    statement = select(AuditLog)
    count_statement = select(func.count()).select_from(AuditLog)
    clauses = []
    if actor_id is not None:
        clauses.append(AuditLog.actor_id == actor_id)
    if action is not None:
        clauses.append(AuditLog.action == action)
    if resource is not None:
        clauses.append(AuditLog.resource == resource)
    if success is not None:
        clauses.append(AuditLog.success == success)
    if date_from is not None:
        clauses.append(col(AuditLog.ts) >= date_from)
    if date_to is not None:
        clauses.append(col(AuditLog.ts) <= date_to)
    for clause in clauses:
        statement = statement.where(clause)
        count_statement = count_statement.where(clause)

    statement = statement.order_by(col(AuditLog.ts).desc()).offset((page - 1) * limit).limit(limit)
    with Session(engine, expire_on_commit=False) as session:
        total = int(session.exec(count_statement).one())
        rows = list(session.exec(statement).all())
    return rows, total
