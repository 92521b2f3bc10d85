from __future__ import annotations

from typing import Annotated, Any

from fastapi import APIRouter, Depends, HTTPException, status

from access_engine.api.deps import get_current_claims, require_perm
from access_engine.domain.models import AutoInitializeRead, EffectiveAccessRead, UserAccessSummaryRead
from access_engine.domain.permissions import PERM_HIERARCHY_READ, PERM_HIERARCHY_WRITE
from access_engine.services.errors import (
    AccessEngineError,
    ConcurrentModificationError,
    PermissionValidationError,
    RecordNotFoundError,
)
from access_engine.services.permission_service import PermissionService

router = APIRouter()


def get_permission_service() -> PermissionService:
    return PermissionService()


Claims = Annotated[dict[str, Any], Depends(get_current_claims)]
Service = Annotated[PermissionService, Depends(get_permission_service)]


def _handle_permission_error(exc: Exception) -> None:
    if isinstance(exc, RecordNotFoundError):
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=str(exc)) from exc
    if isinstance(exc, PermissionValidationError):
        raise HTTPException(status_code=status.HTTP_422_UNPROCESSABLE_ENTITY, detail=str(exc)) from exc
    if isinstance(exc, ConcurrentModificationError):
        raise HTTPException(status_code=status.HTTP_409_CONFLICT, detail=str(exc)) from exc
    raise exc


@router.post(
    "/auto-initialize",
    response_model=AutoInitializeRead,
    dependencies=[Depends(require_perm(PERM_HIERARCHY_WRITE))],
)
def auto_initialize(claims: Claims, service: Service) -> AutoInitializeRead:
    try:
        return service.auto_initialize(actor_id=claims["sub"])
    except AccessEngineError as exc:
        _handle_permission_error(exc)
        raise


@router.get(
    "/effective",
    response_model=EffectiveAccessRead,
    dependencies=[Depends(require_perm(PERM_HIERARCHY_READ))],
)
def effective_access(user_id: str, module_key: str, service: Service) -> EffectiveAccessRead:
    try:
        return service.effective_access_read(user_id, module_key)
    except AccessEngineError as exc:
        _handle_permission_error(exc)
        raise


@router.get(
    "/users/{user_id}",
    response_model=UserAccessSummaryRead,
    dependencies=[Depends(require_perm(PERM_HIERARCHY_READ))],
)
def user_access_summary(user_id: str, service: Service) -> UserAccessSummaryRead:
    try:
        return service.access_summary(user_id)
    except AccessEngineError as exc:
        _handle_permission_error(exc)
        raise
