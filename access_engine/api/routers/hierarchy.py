from __future__ import annotations

from typing import Annotated, Any

from fastapi import APIRouter, Depends, HTTPException, status

from access_engine.api.deps import get_current_claims, require_perm
from access_engine.domain.models import (
    CascadeRequest,
    CascadeResultRead,
    DepartmentPermissionRead,
    HierarchyRead,
    ModuleRead,
)
from access_engine.domain.modules import get_module_catalogue
from access_engine.domain.permissions import PERM_HIERARCHY_READ, PERM_HIERARCHY_WRITE
from access_engine.services.cascade_service import CascadeService
from access_engine.services.errors import (
    AccessEngineError,
    ConcurrentModificationError,
    PermissionValidationError,
    RecordNotFoundError,
)
from access_engine.services.hierarchy_service import HierarchyService
from access_engine.services.permission_service import PermissionService

router = APIRouter()


def get_hierarchy_service() -> HierarchyService:
    return HierarchyService()


def get_permission_service() -> PermissionService:
    return PermissionService()


def get_cascade_service() -> CascadeService:
    return CascadeService()


Claims = Annotated[dict[str, Any], Depends(get_current_claims)]


def _handle_hierarchy_error(exc: Exception) -> None:
    if isinstance(exc, RecordNotFoundError):
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=str(exc)) from exc
    if isinstance(exc, PermissionValidationError):
        raise HTTPException(status_code=status.HTTP_422_UNPROCESSABLE_ENTITY, detail=str(exc)) from exc
    if isinstance(exc, ConcurrentModificationError):
        raise HTTPException(status_code=status.HTTP_409_CONFLICT, detail=str(exc)) from exc
    raise exc


@router.get(
    "/analyze",
    response_model=HierarchyRead,
    dependencies=[Depends(require_perm(PERM_HIERARCHY_READ))],
)
def analyze_hierarchy(
    service: Annotated[HierarchyService, Depends(get_hierarchy_service)],
) -> HierarchyRead:
    return service.analyze()


@router.get(
    "/modules",
    response_model=list[ModuleRead],
    dependencies=[Depends(require_perm(PERM_HIERARCHY_READ))],
)
def list_modules() -> list[ModuleRead]:
    return list(get_module_catalogue())


@router.get(
    "/permissions",
    response_model=list[DepartmentPermissionRead],
    dependencies=[Depends(require_perm(PERM_HIERARCHY_READ))],
)
def list_department_permissions(
    service: Annotated[PermissionService, Depends(get_permission_service)],
) -> list[DepartmentPermissionRead]:
    return service.list_records()


@router.get(
    "/departments/{department_id}/permissions",
    response_model=DepartmentPermissionRead,
    dependencies=[Depends(require_perm(PERM_HIERARCHY_READ))],
)
def get_department_permissions(
    department_id: str,
    service: Annotated[PermissionService, Depends(get_permission_service)],
) -> DepartmentPermissionRead:
    try:
        return service.get_record(department_id)
    except AccessEngineError as exc:
        _handle_hierarchy_error(exc)
        raise


@router.put(
    "/departments/{department_id}/permissions/cascade",
    response_model=CascadeResultRead,
    dependencies=[Depends(require_perm(PERM_HIERARCHY_WRITE))],
)
def cascade_department_permissions(
    department_id: str,
    payload: CascadeRequest,
    claims: Claims,
    service: Annotated[CascadeService, Depends(get_cascade_service)],
) -> CascadeResultRead:
    try:
        return service.apply_cascade(department_id, payload, actor_id=claims["sub"])
    except AccessEngineError as exc:
        _handle_hierarchy_error(exc)
        raise
