from __future__ import annotations

from typing import Any

from sqlmodel import Session

from access_engine.domain.hierarchy import UserLocation
from access_engine.domain.models import (
    AccessSource,
    AutoInitializeRead,
    DepartmentPermission,
    DepartmentPermissionRead,
    EffectiveAccessRead,
    EventEnvelope,
    ModuleAccessLevel,
    ModuleAccessSummaryRead,
    ModuleRead,
    PageAccessRead,
    UserAccessSummaryRead,
    now_utc,
)
from access_engine.domain.modules import get_module_catalogue
from access_engine.domain.permissions import highest_level, level_at_least
from access_engine.infra import settings
from access_engine.infra.audit import record_audit, write_failure_audit
from access_engine.infra.db import get_engine
from access_engine.infra.events import event_bus
from access_engine.infra.locks import CATALOGUE_LOCK_KEY, DepartmentLockRegistry
from access_engine.infra.logging_config import get_logger
from access_engine.services.errors import AccessEngineError, PermissionValidationError, RecordNotFoundError
from access_engine.services.hierarchy_service import HierarchyService
from access_engine.services.permission_store import PermissionState, load_record, load_records, save_state, to_read

log = get_logger(__name__)


def _level(raw: Any) -> ModuleAccessLevel | None:
    if raw is None:
        return None
    return ModuleAccessLevel(raw)


def resolve_access(
    record: DepartmentPermission | None,
    location: UserLocation,
    module_key: str,
) -> tuple[ModuleAccessLevel, AccessSource]:
    """Resolve one module for one user from a single department record.

    User override at the user's own location wins, then the sub-group's
    explicit level, then the department level, then ``none``.
    """
    if record is None:
        return ModuleAccessLevel.NONE, AccessSource.DEFAULT

    sub_group: dict[str, Any] = {}
    if location.sub_group_id is not None:
        sub_group = (record.sub_groups or {}).get(location.sub_group_id) or {}
        overrides = sub_group.get("user_overrides") or {}
    else:
        overrides = record.user_overrides or {}

    override = _level((overrides.get(location.user_id) or {}).get(module_key))
    if override is not None:
        return override, AccessSource.USER_OVERRIDE

    sub_group_level = _level((sub_group.get("module_access") or {}).get(module_key))
    if sub_group_level is not None:
        return sub_group_level, AccessSource.SUBGROUP

    department_level = _level((record.module_access or {}).get(module_key))
    if department_level is not None:
        return department_level, AccessSource.DEPARTMENT
    return ModuleAccessLevel.NONE, AccessSource.DEFAULT


def _catalogue_module(module_key: str) -> ModuleRead:
    for module in get_module_catalogue():
        if module.key == module_key:
            return module
    raise PermissionValidationError(f"unknown module key: {module_key}")


class PermissionService:
    def __init__(self, hierarchy: HierarchyService | None = None) -> None:
        self.hierarchy = hierarchy or HierarchyService()

    def _session(self) -> Session:
        return Session(get_engine(), expire_on_commit=False)

    def list_records(self) -> list[DepartmentPermissionRead]:
        with self._session() as session:
            return [to_read(record) for record in load_records(session)]

    def get_record(self, department_id: str) -> DepartmentPermissionRead:
        with self._session() as session:
            record = load_record(session, department_id)
        if record is None:
            raise RecordNotFoundError(f"no permissions stored for department {department_id}")
        return to_read(record)

    def _resolve(self, user_id: str, module_key: str) -> tuple[UserLocation, ModuleAccessLevel, AccessSource]:
        _catalogue_module(module_key)
        with self._session() as session:
            location = self.hierarchy.locate_user(user_id, session)
            record = load_record(session, location.department_id)
        level, source = resolve_access(record, location, module_key)
        return location, level, source

    def explain_access(self, user_id: str, module_key: str) -> tuple[ModuleAccessLevel, AccessSource]:
        _, level, source = self._resolve(user_id, module_key)
        return level, source

    def effective_access(self, user_id: str, module_key: str) -> ModuleAccessLevel:
        return self.explain_access(user_id, module_key)[0]

    def effective_access_read(self, user_id: str, module_key: str) -> EffectiveAccessRead:
        location, level, source = self._resolve(user_id, module_key)
        return EffectiveAccessRead(
            user_id=location.user_id,
            module_key=module_key,
            level=level,
            source=source,
            has_access=level != ModuleAccessLevel.NONE,
            has_admin_access=level == ModuleAccessLevel.ADMIN,
        )

    def has_access(self, user_id: str, module_key: str) -> bool:
        return self.effective_access(user_id, module_key) != ModuleAccessLevel.NONE

    def has_admin_access(self, user_id: str, module_key: str) -> bool:
        return self.effective_access(user_id, module_key) == ModuleAccessLevel.ADMIN

    def access_summary(self, user_id: str) -> UserAccessSummaryRead:
        with self._session() as session:
            location = self.hierarchy.locate_user(user_id, session)
            record = load_record(session, location.department_id)
        is_admin = settings.is_administrator(location.user_id)

        modules: list[ModuleAccessSummaryRead] = []
        for module in get_module_catalogue():
            if is_admin:
                level, source = ModuleAccessLevel.ADMIN, AccessSource.ADMIN_OVERRIDE
            else:
                level, source = resolve_access(record, location, module.key)
            modules.append(
                ModuleAccessSummaryRead(
                    key=module.key,
                    name=module.name,
                    level=level,
                    source=source,
                    has_access=level != ModuleAccessLevel.NONE,
                    pages=[
                        PageAccessRead(
                            key=page.key,
                            name=page.name,
                            level=level,
                            has_access=level != ModuleAccessLevel.NONE
                            and level_at_least(level, page.required_level),
                        )
                        for page in module.pages
                    ],
                )
            )
        return UserAccessSummaryRead(
            user_id=location.user_id,
            department_id=location.department_id,
            sub_group_id=location.sub_group_id,
            modules=modules,
            total_modules_with_access=sum(1 for item in modules if item.has_access),
            highest_level=highest_level([item.level for item in modules]),
            is_admin=is_admin,
            checked_at=now_utc(),
        )

    def auto_initialize(self, actor_id: str | None = None) -> AutoInitializeRead:
        try:
            return self._auto_initialize(actor_id)
        except AccessEngineError as exc:
            log.warning("auto-initialize rejected: %s", exc)
            write_failure_audit(
                actor_id=actor_id,
                action="permissions.auto_initialize",
                resource="permissions",
                target_scope="organization",
                target_id=None,
                error=exc,
            )
            raise

    def _auto_initialize(self, actor_id: str | None) -> AutoInitializeRead:
        catalogue_keys = [module.key for module in get_module_catalogue()]
        baseline = {key for key in settings.AUTO_INIT_BASELINE_MODULES if key in catalogue_keys}
        sub_group_module = settings.AUTO_INIT_SUBGROUP_MODULE
        sub_group_defaults = (
            {sub_group_module: ModuleAccessLevel.ACCESS.value} if sub_group_module in catalogue_keys else {}
        )

        initialized_departments = 0
        initialized_sub_groups = 0
        total_entries = 0
        affected_users = 0
        # holding the catalogue lock keeps the department set stable while it is initialized
        with DepartmentLockRegistry.hold(CATALOGUE_LOCK_KEY):
            with self._session() as session:
                snapshot = self.hierarchy.snapshot(session)
                with DepartmentLockRegistry.hold_all(snapshot.departments):
                    for department_id in sorted(snapshot.departments):
                        department = snapshot.departments[department_id]
                        record = load_record(session, department_id)
                        state = PermissionState.from_record(record)
                        # a record holding only sub-group or user entries still lacks a department baseline
                        fill_department = not state.module_access and bool(catalogue_keys)
                        created_sub_groups = 0
                        if fill_department:
                            state.module_access = {
                                key: (ModuleAccessLevel.ACCESS if key in baseline else ModuleAccessLevel.NONE).value
                                for key in catalogue_keys
                            }
                            total_entries += len(state.module_access)
                        if sub_group_defaults:
                            for sub_group in department.sub_groups:
                                if sub_group.id in state.sub_groups:
                                    continue
                                entry = state.sub_group(sub_group.id, sub_group.display_name)
                                entry["module_access"] = dict(sub_group_defaults)
                                created_sub_groups += 1
                                total_entries += len(sub_group_defaults)
                        if not fill_department and not created_sub_groups:
                            continue
                        save_state(
                            session,
                            department_id=department_id,
                            department_name=department.name,
                            state=state,
                            expected_version=0 if record is None else record.version,
                            actor_id=actor_id,
                        )
                        initialized_departments += int(fill_department)
                        initialized_sub_groups += created_sub_groups
                        affected_users += department.user_count

                    result = AutoInitializeRead(
                        initialized_departments=initialized_departments,
                        initialized_sub_groups=initialized_sub_groups,
                        total_permission_entries=total_entries,
                    )
                    if not initialized_departments and not initialized_sub_groups:
                        return result

                    record_audit(
                        session,
                        actor_id=actor_id,
                        action="permissions.auto_initialize",
                        resource="permissions",
                        target_scope="organization",
                        affected_user_count=affected_users,
                        detail=result.model_dump(),
                    )
                    event = EventEnvelope(
                        event_type="permissions.auto_initialized",
                        actor_id=actor_id,
                        payload=result.model_dump(),
                    )
                    event_bus.stage(event, session)
                    session.commit()
        event_bus.dispatch(event)
        log.info(
            "auto-initialized permissions for %s departments and %s sub-groups",
            initialized_departments,
            initialized_sub_groups,
        )
        return result
