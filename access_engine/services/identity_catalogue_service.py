from __future__ import annotations

from collections import defaultdict

from sqlalchemy.exc import IntegrityError
from sqlmodel import Session, col, select

from access_engine.domain.hierarchy import normalize_email
from access_engine.domain.models import (
    ConflictResolveRead,
    EmailConflictRead,
    EventEnvelope,
    IdentityRecord,
    IdentityRecordRead,
    IdentityRecordUpsert,
    IdentitySource,
    as_utc,
    now_utc,
)
from access_engine.domain.permissions import SOURCE_PRIORITY, suggest_keep_source
from access_engine.infra.audit import record_audit, write_failure_audit
from access_engine.infra.db import get_engine
from access_engine.infra.events import event_bus
from access_engine.infra.locks import CATALOGUE_LOCK_KEY, DepartmentLockRegistry
from access_engine.infra.logging_config import get_logger
from access_engine.services.errors import (
    AccessEngineError,
    ConcurrentModificationError,
    ConflictNotFoundError,
    InvalidSourceError,
    PermissionValidationError,
)

log = get_logger(__name__)


def _by_priority(record: IdentityRecord) -> tuple[int, str]:
    return -SOURCE_PRIORITY[record.source], record.external_id


class IdentityCatalogueService:
    def _session(self) -> Session:
        return Session(get_engine(), expire_on_commit=False)

    def _apply_upsert(self, session: Session, payload: IdentityRecordUpsert) -> tuple[IdentityRecord, bool]:
        email = payload.email.strip()
        if not email:
            raise PermissionValidationError("identity record email cannot be empty")
        external_id = payload.external_id.strip()
        if not external_id:
            raise PermissionValidationError("identity record external_id cannot be empty")

        record = session.exec(
            select(IdentityRecord)
            .where(IdentityRecord.source == payload.source)
            .where(IdentityRecord.external_id == external_id)
        ).first()
        created = record is None
        if record is None:
            record = IdentityRecord(source=payload.source, external_id=external_id, email=email, email_normalized="")
        record.email = email
        record.email_normalized = normalize_email(email)
        record.display_name = payload.display_name.strip()
        record.department = payload.department.strip()
        record.job_title = payload.job_title.strip()
        record.is_active = payload.is_active
        record.last_seen = payload.last_seen or now_utc()
        record.updated_at = now_utc()
        session.add(record)
        return record, created

    def upsert(self, payload: IdentityRecordUpsert) -> IdentityRecord:
        with DepartmentLockRegistry.hold(CATALOGUE_LOCK_KEY):
            with self._session() as session:
                record, _ = self._apply_upsert(session, payload)
                try:
                    session.commit()
                except IntegrityError as exc:
                    session.rollback()
                    raise ConcurrentModificationError("identity record was written concurrently") from exc
                session.refresh(record)
                return record

    def upsert_many(self, payloads: list[IdentityRecordUpsert], actor_id: str | None = None) -> tuple[int, int]:
        created_count = 0
        updated_count = 0
        with DepartmentLockRegistry.hold(CATALOGUE_LOCK_KEY):
            with self._session() as session:
                for payload in payloads:
                    _, created = self._apply_upsert(session, payload)
                    # keeps a later duplicate in the same batch from inserting twice
                    session.flush()
                    if created:
                        created_count += 1
                    else:
                        updated_count += 1
                event = EventEnvelope(
                    event_type="identity.records_upserted",
                    actor_id=actor_id,
                    payload={
                        "created": created_count,
                        "updated": updated_count,
                        "sources": sorted({str(item.source) for item in payloads}),
                    },
                )
                event_bus.stage(event, session)
                try:
                    session.commit()
                except IntegrityError as exc:
                    session.rollback()
                    raise ConcurrentModificationError("identity records were written concurrently") from exc
        event_bus.dispatch(event)
        log.info("upserted identity records: %s created, %s updated", created_count, updated_count)
        return created_count, updated_count

    def list_records(
        self,
        *,
        source: IdentitySource | None = None,
        email: str | None = None,
        active: bool | None = None,
    ) -> list[IdentityRecord]:
        statement = select(IdentityRecord)
        if source is not None:
            statement = statement.where(IdentityRecord.source == source)
        if email is not None:
            statement = statement.where(IdentityRecord.email_normalized == normalize_email(email))
        if active is not None:
            statement = statement.where(IdentityRecord.is_active == active)
        statement = statement.order_by(col(IdentityRecord.email_normalized), col(IdentityRecord.source))
        with self._session() as session:
            return list(session.exec(statement).all())

    def find_by_email(self, email: str) -> list[IdentityRecord]:
        return self.list_records(email=email)

    def list_active_records(self, session: Session | None = None) -> list[IdentityRecord]:
        statement = select(IdentityRecord).where(IdentityRecord.is_active == True)  # noqa: E712
        if session is not None:
            return list(session.exec(statement).all())
        with self._session() as own_session:
            return list(own_session.exec(statement).all())

    def find_conflicts(self) -> list[EmailConflictRead]:
        groups: dict[str, list[IdentityRecord]] = defaultdict(list)
        for record in self.list_active_records():
            groups[record.email_normalized].append(record)

        conflicts: list[EmailConflictRead] = []
        for email in sorted(groups):
            records = sorted(groups[email], key=_by_priority)
            sources = sorted({item.source for item in records}, key=lambda item: -SOURCE_PRIORITY[item])
            if len(sources) < 2:
                continue
            conflicts.append(
                EmailConflictRead(
                    email=email,
                    sources=sources,
                    records=[IdentityRecordRead.model_validate(item) for item in records],
                    suggested_keep_source=suggest_keep_source(sources),
                )
            )
        return conflicts

    def resolve_conflict(
        self,
        email: str,
        keep_source: IdentitySource,
        *,
        actor_id: str | None = None,
        delete_from_sources: list[IdentitySource] | None = None,
    ) -> ConflictResolveRead:
        email_key = normalize_email(email)
        try:
            return self._resolve_conflict(email_key, keep_source, actor_id, delete_from_sources)
        except AccessEngineError as exc:
            log.warning("conflict resolution for %s rejected: %s", email_key, exc)
            write_failure_audit(
                actor_id=actor_id,
                action="identity.conflict.resolve",
                resource=f"identity/{email_key}",
                target_scope="conflict",
                target_id=email_key,
                error=exc,
                detail={"keep_source": str(keep_source)},
            )
            raise

    def _resolve_conflict(
        self,
        email_key: str,
        keep_source: IdentitySource,
        actor_id: str | None,
        delete_from_sources: list[IdentitySource] | None,
    ) -> ConflictResolveRead:
        with DepartmentLockRegistry.hold(CATALOGUE_LOCK_KEY):
            with self._session() as session:
                records = list(
                    session.exec(select(IdentityRecord).where(IdentityRecord.email_normalized == email_key)).all()
                )
                sources = {item.source for item in records if item.is_active}
                if len(sources) < 2:
                    raise ConflictNotFoundError(f"no conflict for {email_key}")
                if keep_source not in sources:
                    raise InvalidSourceError(f"{keep_source} is not a source of the conflict for {email_key}")
                other_sources = sources - {keep_source}
                if delete_from_sources is not None and set(delete_from_sources) != other_sources:
                    raise InvalidSourceError("delete_from_sources must list every other source of the conflict")

                kept = max(
                    (item for item in records if item.source == keep_source),
                    key=lambda item: (item.is_active, as_utc(item.last_seen)),
                )
                removed = [item for item in records if item.id != kept.id]
                for item in removed:
                    session.delete(item)

                deleted_sources = sorted({str(item.source) for item in removed})
                record_audit(
                    session,
                    actor_id=actor_id,
                    action="identity.conflict.resolve",
                    resource=f"identity/{email_key}",
                    target_scope="conflict",
                    target_id=email_key,
                    affected_user_count=1,
                    detail={
                        "kept_source": str(keep_source),
                        "kept_record_id": kept.id,
                        "deleted_sources": deleted_sources,
                        "deleted_records": len(removed),
                    },
                )
                event = EventEnvelope(
                    event_type="identity.conflict_resolved",
                    actor_id=actor_id,
                    payload={"email": email_key, "kept_source": str(keep_source), "deleted_sources": deleted_sources},
                )
                event_bus.stage(event, session)
                session.commit()
        event_bus.dispatch(event)
        log.info("resolved conflict for %s keeping %s (%s records deleted)", email_key, keep_source, len(removed))
        return ConflictResolveRead(email=email_key, kept_source=keep_source, deleted_records=len(removed))
