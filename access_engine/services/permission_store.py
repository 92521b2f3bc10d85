from __future__ import annotations

import copy
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any

from sqlalchemy import update
from sqlalchemy.exc import IntegrityError
from sqlmodel import Session, col, select

from access_engine.domain.models import (
    DepartmentPermission,
    DepartmentPermissionRead,
    ModuleAccessLevel,
    SubGroupPermissionRead,
    now_utc,
)
from access_engine.services.errors import ConcurrentModificationError


@dataclass
class PermissionState:
    """Mutable working copy of one department's permission document."""

    module_access: dict[str, str] = field(default_factory=dict)
    sub_groups: dict[str, dict[str, Any]] = field(default_factory=dict)
    user_overrides: dict[str, dict[str, str]] = field(default_factory=dict)

    @classmethod
    def from_record(cls, record: DepartmentPermission | None) -> PermissionState:
        if record is None:
            return cls()
        sub_groups: dict[str, dict[str, Any]] = {}
        for sub_group_id, raw in (record.sub_groups or {}).items():
            sub_groups[sub_group_id] = {
                "display_name": str(raw.get("display_name", "")),
                "module_access": dict(raw.get("module_access") or {}),
                "user_overrides": copy.deepcopy(raw.get("user_overrides") or {}),
            }
        return cls(
            module_access=dict(record.module_access or {}),
            sub_groups=sub_groups,
            user_overrides=copy.deepcopy(record.user_overrides or {}),
        )

    def sub_group(self, sub_group_id: str, display_name: str) -> dict[str, Any]:
        entry = self.sub_groups.get(sub_group_id)
        if entry is None:
            entry = {"display_name": display_name, "module_access": {}, "user_overrides": {}}
            self.sub_groups[sub_group_id] = entry
        return entry

    def as_values(self) -> dict[str, Any]:
        return {
            "module_access": dict(self.module_access),
            "sub_groups": copy.deepcopy(self.sub_groups),
            "user_overrides": copy.deepcopy(self.user_overrides),
        }


def load_record(session: Session, department_id: str) -> DepartmentPermission | None:
    return session.exec(
        select(DepartmentPermission).where(DepartmentPermission.department_id == department_id)
    ).first()


def load_records(session: Session) -> list[DepartmentPermission]:
    statement = select(DepartmentPermission).order_by(col(DepartmentPermission.department_id))
    return list(session.exec(statement).all())


def save_state(
    session: Session,
    *,
    department_id: str,
    department_name: str,
    state: PermissionState,
    expected_version: int,
    actor_id: str | None,
) -> tuple[int, datetime]:
    """Persist ``state`` if the stored version still equals ``expected_version``.

    ``expected_version`` 0 means no record existed when the write started.
    Returns the new version and its timestamp; nothing is committed here.
    """
    now = now_utc()
    values = state.as_values()
    if expected_version == 0:
        session.add(
            DepartmentPermission(
                department_id=department_id,
                department_name=department_name,
                version=1,
                created_at=now,
                updated_at=now,
                updated_by=actor_id,
                **values,
            )
        )
        try:
            session.flush()
        except IntegrityError as exc:
            raise ConcurrentModificationError(
                f"permissions for department {department_id} were created concurrently"
            ) from exc
        return 1, now

    statement = (
        update(DepartmentPermission)
        .where(col(DepartmentPermission.department_id) == department_id)
        .where(col(DepartmentPermission.version) == expected_version)
        .values(
            department_name=department_name,
            version=expected_version + 1,
            updated_at=now,
            updated_by=actor_id,
            **values,
        )
        .execution_options(synchronize_session=False)
    )
    result = session.execute(statement)
    if result.rowcount != 1:
        raise ConcurrentModificationError(
            f"permissions for department {department_id} changed during the write"
        )
    return expected_version + 1, now


def _levels(raw: dict[str, Any] | None) -> dict[str, ModuleAccessLevel]:
    return {key: ModuleAccessLevel(value) for key, value in (raw or {}).items()}


def _override_levels(raw: dict[str, Any] | None) -> dict[str, dict[str, ModuleAccessLevel]]:
    return {user_id: _levels(modules) for user_id, modules in (raw or {}).items()}


def to_read(record: DepartmentPermission) -> DepartmentPermissionRead:
    return DepartmentPermissionRead(
        department_id=record.department_id,
        department_name=record.department_name,
        module_access=_levels(record.module_access),
        sub_groups={
            sub_group_id: SubGroupPermissionRead(
                display_name=str(raw.get("display_name", "")),
                module_access=_levels(raw.get("module_access")),
                user_overrides=_override_levels(raw.get("user_overrides")),
            )
            for sub_group_id, raw in (record.sub_groups or {}).items()
        },
        user_overrides=_override_levels(record.user_overrides),
        version=record.version,
        created_at=record.created_at,
        updated_at=record.updated_at,
        updated_by=record.updated_by,
    )
