from __future__ import annotations

from typing import Annotated, Any

from fastapi import APIRouter, Depends, HTTPException, status

from access_engine.api.deps import get_current_claims, require_perm
from access_engine.domain.models import (
    ConflictResolveRead,
    ConflictResolveRequest,
    EmailConflictRead,
    IdentityRecordBatchUpsertRead,
    IdentityRecordBatchUpsertRequest,
    IdentityRecordRead,
    IdentitySource,
)
from access_engine.domain.permissions import PERM_IDENTITY_READ, PERM_IDENTITY_WRITE
from access_engine.services.errors import (
    AccessEngineError,
    ConcurrentModificationError,
    ConflictNotFoundError,
    InvalidSourceError,
    PermissionValidationError,
)
from access_engine.services.identity_catalogue_service import IdentityCatalogueService

router = APIRouter()


def get_identity_catalogue_service() -> IdentityCatalogueService:
    return IdentityCatalogueService()


Claims = Annotated[dict[str, Any], Depends(get_current_claims)]
Service = Annotated[IdentityCatalogueService, Depends(get_identity_catalogue_service)]


def _handle_identity_error(exc: Exception) -> None:
    if isinstance(exc, ConflictNotFoundError):
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=str(exc)) from exc
    if isinstance(exc, (InvalidSourceError, PermissionValidationError)):
        raise HTTPException(status_code=status.HTTP_422_UNPROCESSABLE_ENTITY, detail=str(exc)) from exc
    if isinstance(exc, ConcurrentModificationError):
        raise HTTPException(status_code=status.HTTP_409_CONFLICT, detail=str(exc)) from exc
    raise exc


@router.post(
    "/records",
    response_model=IdentityRecordBatchUpsertRead,
    dependencies=[Depends(require_perm(PERM_IDENTITY_WRITE))],
)
def upsert_records(
    payload: IdentityRecordBatchUpsertRequest,
    claims: Claims,
    service: Service,
) -> IdentityRecordBatchUpsertRead:
    try:
        created, updated = service.upsert_many(payload.records, actor_id=claims["sub"])
    except AccessEngineError as exc:
        _handle_identity_error(exc)
        raise
    return IdentityRecordBatchUpsertRead(created=created, updated=updated)


@router.get(
    "/records",
    response_model=list[IdentityRecordRead],
    dependencies=[Depends(require_perm(PERM_IDENTITY_READ))],
)
def list_records(
    service: Service,
    source: IdentitySource | None = None,
    email: str | None = None,
    active: bool | None = None,
) -> list[IdentityRecordRead]:
    rows = service.list_records(source=source, email=email, active=active)
    return [IdentityRecordRead.model_validate(item) for item in rows]


@router.get(
    "/conflicts",
    response_model=list[EmailConflictRead],
    dependencies=[Depends(require_perm(PERM_IDENTITY_READ))],
)
def list_conflicts(service: Service) -> list[EmailConflictRead]:
    return service.find_conflicts()


@router.post(
    "/conflicts/resolve",
    response_model=ConflictResolveRead,
    dependencies=[Depends(require_perm(PERM_IDENTITY_WRITE))],
)
def resolve_conflict(
    payload: ConflictResolveRequest,
    claims: Claims,
    service: Service,
) -> ConflictResolveRead:
    try:
        return service.resolve_conflict(
            payload.email,
            payload.keep_source,
            actor_id=claims["sub"],
            delete_from_sources=payload.delete_from_sources,
        )
    except AccessEngineError as exc:
        _handle_identity_error(exc)
        raise
