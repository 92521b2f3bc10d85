from __future__ import annotations

from datetime import datetime

from fastapi import APIRouter, Depends, Query

from access_engine.api.deps import require_perm
from access_engine.domain.models import AuditLogPageRead, AuditLogRead
from access_engine.domain.permissions import PERM_AUDIT_READ
from access_engine.infra.audit import DEFAULT_PAGE_LIMIT, MAX_PAGE_LIMIT, query_audit_logs

router = APIRouter()


@router.get(
    "",
    response_model=AuditLogPageRead,
    dependencies=[Depends(require_perm(PERM_AUDIT_READ))],
)
def list_audit_logs(
    actor_id: str | None = None,
    action: str | None = None,
    resource: str | None = None,
    success: bool | None = None,
    date_from: datetime | None = None,
    date_to: datetime | None = None,
    page: int = Query(default=1, ge=1),
    limit: int = Query(default=DEFAULT_PAGE_LIMIT, ge=1, le=MAX_PAGE_LIMIT),
) -> AuditLogPageRead:
    rows, total = query_audit_logs(
        actor_id=actor_id,
        action=action,
        resource=resource,
        success=success,
        date_from=date_from,
        date_to=date_to,
        page=page,
        limit=limit,
    )
    return AuditLogPageRead(
        items=[AuditLogRead.model_validate(item) for item in rows],
        total=total,
        page=page,
        limit=limit,
        has_next=page * limit < total,
        has_prev=page > 1,
    )
