from __future__ import annotations

from sqlalchemy.exc import SQLAlchemyError
from sqlmodel import Session, select

from access_engine.domain.hierarchy import (
    HierarchySnapshot,
    UserLocation,
    extract_hierarchy,
    locate,
    normalize_email,
    select_primary_records,
)
from access_engine.domain.models import DepartmentPermission, HierarchyRead, IdentityRecord
from access_engine.infra.db import get_engine
from access_engine.infra.logging_config import get_logger
from access_engine.services.errors import RecordNotFoundError
from access_engine.services.permission_store import load_records

log = get_logger(__name__)


def _override_users(record: DepartmentPermission) -> set[str]:
    users = {user_id for user_id, modules in (record.user_overrides or {}).items() if modules}
    for entry in (record.sub_groups or {}).values():
        users.update(user_id for user_id, modules in (entry.get("user_overrides") or {}).items() if modules)
    return users


class HierarchyService:
    def _session(self) -> Session:
        return Session(get_engine(), expire_on_commit=False)

    def snapshot(self, session: Session | None = None) -> HierarchySnapshot:
        """Extract the current hierarchy.

        Without a session the read degrades to an empty hierarchy when the
        catalogue cannot be read; writers pass their own session and get the
        error instead.
        """
        statement = select(IdentityRecord).where(IdentityRecord.is_active == True)  # noqa: E712
        if session is not None:
            return extract_hierarchy(session.exec(statement).all())
        try:
            with self._session() as own_session:
                return extract_hierarchy(own_session.exec(statement).all())
        except SQLAlchemyError:
            log.warning("identity catalogue unavailable, returning an empty hierarchy", exc_info=True)
            return HierarchySnapshot()

    def analyze(self) -> HierarchyRead:
        snapshot = self.snapshot()
        try:
            with self._session() as session:
                records = load_records(session)
        except SQLAlchemyError:
            log.warning("permission store unavailable, hierarchy returned without permission flags", exc_info=True)
            records = []

        by_department = {record.department_id: record for record in records}
        users_with_overrides: set[str] = set()
        for record in records:
            users_with_overrides.update(_override_users(record))

        result = snapshot.to_read()
        for department in result.departments:
            record = by_department.get(department.id)
            department.has_permissions = bool(record and record.module_access)
            stored_sub_groups = (record.sub_groups or {}) if record else {}
            for sub_group in department.sub_groups:
                entry = stored_sub_groups.get(sub_group.id) or {}
                sub_group.has_permissions = bool(entry.get("module_access"))
                for user in sub_group.users:
                    user.has_individual_overrides = user.id in users_with_overrides
            for user in department.direct_users:
                user.has_individual_overrides = user.id in users_with_overrides
        return result

    def locate_user(self, user_id: str, session: Session | None = None) -> UserLocation:
        """Locate one user from their own active records only."""
        statement = (
            select(IdentityRecord)
            .where(IdentityRecord.email_normalized == normalize_email(user_id))
            .where(IdentityRecord.is_active == True)  # noqa: E712
        )
        if session is not None:
            records = session.exec(statement).all()
        else:
            try:
                with self._session() as own_session:
                    records = own_session.exec(statement).all()
            except SQLAlchemyError:
                log.warning("identity catalogue unavailable while locating %s", user_id, exc_info=True)
                records = []
        primary = select_primary_records(records)
        if not primary:
            raise RecordNotFoundError(f"user {user_id} is not in the identity catalogue")
        return locate(primary[0].email_normalized, primary[0].department)
