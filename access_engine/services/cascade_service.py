from __future__ import annotations

from collections.abc import Callable
from dataclasses import dataclass, field
from typing import Any

from sqlmodel import Session

from access_engine.domain.hierarchy import SUB_GROUP_ID_JOINER, HierarchySnapshot, UserLocation, normalize_email
from access_engine.domain.models import (
    CascadeRequest,
    CascadeResultRead,
    CascadeScope,
    EventEnvelope,
    ModuleAccessLevel,
)
from access_engine.domain.modules import get_module_catalogue
from access_engine.domain.permissions import INHERIT
from access_engine.infra.audit import record_audit, write_failure_audit
from access_engine.infra.db import get_engine
from access_engine.infra.events import event_bus
from access_engine.infra.locks import DepartmentLockRegistry
from access_engine.infra.logging_config import get_logger
from access_engine.services.errors import (
    AccessEngineError,
    ConcurrentModificationError,
    PermissionValidationError,
    TargetNotFoundError,
)
from access_engine.services.hierarchy_service import HierarchyService
from access_engine.services.permission_store import PermissionState, load_record, save_state

log = get_logger(__name__)

_LEVEL_VALUES = {item.value for item in ModuleAccessLevel}


@dataclass
class _ChangeOutcome:
    target_id: str
    affected_sub_group_count: int = 0
    affected_user_override_count: int = 0
    affected_user_count: int = 0
    detail: dict[str, Any] = field(default_factory=dict)


Mutation = Callable[[PermissionState, HierarchySnapshot], _ChangeOutcome]


def validate_module_access(module_access: dict[str, str] | None, *, allow_inherit: bool = False) -> dict[str, str]:
    if module_access is None:
        raise PermissionValidationError("module_access is required")
    known = {module.key for module in get_module_catalogue()}
    allowed = _LEVEL_VALUES | {INHERIT} if allow_inherit else _LEVEL_VALUES
    cleaned: dict[str, str] = {}
    for key, value in module_access.items():
        if key not in known:
            raise PermissionValidationError(f"unknown module key: {key}")
        level = str(value).strip().lower()
        if level not in allowed:
            raise PermissionValidationError(f"invalid access level for {key}: {value}")
        cleaned[key] = level
    return cleaned


def _coerce_scope(scope: CascadeScope | str) -> CascadeScope:
    try:
        return CascadeScope(scope)
    except ValueError as exc:
        raise PermissionValidationError(f"unknown cascade scope: {scope}") from exc


def _non_empty(mapping: dict[str, Any]) -> int:
    return sum(1 for value in mapping.values() if value)


class CascadeService:
    def __init__(self, hierarchy: HierarchyService | None = None) -> None:
        self.hierarchy = hierarchy or HierarchyService()

    def _session(self) -> Session:
        return Session(get_engine(), expire_on_commit=False)

    def apply_permission_change(
        self,
        scope: CascadeScope | str,
        target_id: str,
        module_access: dict[str, str] | None,
        actor_id: str | None = None,
        *,
        expected_version: int | None = None,
    ) -> CascadeResultRead:
        try:
            scope = _coerce_scope(scope)
            if scope == CascadeScope.DEPARTMENT:
                levels = validate_module_access(module_access)
                department_id = target_id
                mutation = self._department_mutation(target_id, levels)
            elif scope == CascadeScope.SUBGROUP:
                levels = validate_module_access(module_access)
                department_id = target_id.split(SUB_GROUP_ID_JOINER, 1)[0]
                mutation = self._sub_group_mutation(department_id, target_id, levels)
            else:
                overrides = {normalize_email(target_id): validate_module_access(module_access, allow_inherit=True)}
                department_id = self.hierarchy.locate_user(target_id).department_id
                mutation = self._user_mutation(department_id, overrides)
            return self._write(scope, department_id, mutation, actor_id, expected_version)
        except AccessEngineError as exc:
            self._record_failure(scope, target_id, actor_id, exc)
            raise

    def apply_cascade(self, department_id: str, request: CascadeRequest, actor_id: str | None = None) -> CascadeResultRead:
        """Apply an HTTP cascade body to ``department_id``.

        The user scope accepts several users at once; all of them are written
        in one transaction with a single audit entry.
        """
        if request.scope == CascadeScope.DEPARTMENT:
            return self.apply_permission_change(
                CascadeScope.DEPARTMENT,
                department_id,
                request.module_access,
                actor_id,
                expected_version=request.expected_version,
            )

        if request.scope == CascadeScope.SUBGROUP:
            sub_group_id = request.sub_group_id or ""
            if not sub_group_id.startswith(f"{department_id}{SUB_GROUP_ID_JOINER}"):
                error = TargetNotFoundError(f"sub-group {sub_group_id or '<missing>'} is not part of {department_id}")
                self._record_failure(request.scope, sub_group_id or department_id, actor_id, error)
                raise error
            return self.apply_permission_change(
                CascadeScope.SUBGROUP,
                sub_group_id,
                request.sub_group_permissions,
                actor_id,
                expected_version=request.expected_version,
            )

        target = department_id
        try:
            if not request.user_overrides:
                raise PermissionValidationError("user_overrides is required for the user scope")
            overrides = {
                normalize_email(user_id): validate_module_access(modules, allow_inherit=True)
                for user_id, modules in request.user_overrides.items()
            }
            target = ",".join(sorted(overrides))
            mutation = self._user_mutation(department_id, overrides)
            return self._write(CascadeScope.USER, department_id, mutation, actor_id, request.expected_version)
        except AccessEngineError as exc:
            self._record_failure(CascadeScope.USER, target, actor_id, exc)
            raise

    def _write(
        self,
        scope: CascadeScope,
        department_id: str,
        mutation: Mutation,
        actor_id: str | None,
        expected_version: int | None,
    ) -> CascadeResultRead:
        with DepartmentLockRegistry.hold(department_id):
            with self._session() as session:
                snapshot = self.hierarchy.snapshot(session)
                department = snapshot.departments.get(department_id)
                if department is None:
                    raise TargetNotFoundError(f"department {department_id} is not in the current hierarchy")

                record = load_record(session, department_id)
                current_version = record.version if record is not None else 0
                if expected_version is not None and expected_version != current_version:
                    raise ConcurrentModificationError(
                        f"department {department_id} is at version {current_version}, not {expected_version}"
                    )

                state = PermissionState.from_record(record)
                outcome = mutation(state, snapshot)
                version, updated_at = save_state(
                    session,
                    department_id=department_id,
                    department_name=department.name,
                    state=state,
                    expected_version=current_version,
                    actor_id=actor_id,
                )
                result = CascadeResultRead(
                    mode=scope,
                    department_id=department_id,
                    target_id=outcome.target_id,
                    affected_sub_group_count=outcome.affected_sub_group_count,
                    affected_user_override_count=outcome.affected_user_override_count,
                    version=version,
                    updated_at=updated_at,
                )
                record_audit(
                    session,
                    actor_id=actor_id,
                    action=f"permissions.cascade.{scope}",
                    resource=f"departments/{department_id}/permissions",
                    target_scope=str(scope),
                    target_id=outcome.target_id,
                    affected_user_count=outcome.affected_user_count,
                    detail={
                        **outcome.detail,
                        "affected_sub_group_count": outcome.affected_sub_group_count,
                        "affected_user_override_count": outcome.affected_user_override_count,
                        "version": version,
                    },
                )
                event = EventEnvelope(
                    event_type="permissions.cascaded",
                    actor_id=actor_id,
                    payload=result.model_dump(mode="json"),
                )
                event_bus.stage(event, session)
                session.commit()
        event_bus.dispatch(event)
        log.info(
            "%s cascade on %s (%s): cleared %s sub-groups and %s user overrides, now version %s",
            scope,
            department_id,
            outcome.target_id,
            outcome.affected_sub_group_count,
            outcome.affected_user_override_count,
            version,
        )
        return result

    def _record_failure(self, scope: CascadeScope | str, target_id: str, actor_id: str | None, error: Exception) -> None:
        log.warning("%s cascade on %s rejected: %s", scope, target_id, error)
        write_failure_audit(
            actor_id=actor_id,
            action=f"permissions.cascade.{scope}",
            resource="permissions",
            target_scope=str(scope),
            target_id=target_id,
            error=error,
        )

    def _department_mutation(self, department_id: str, levels: dict[str, str]) -> Mutation:
        def _apply(state: PermissionState, snapshot: HierarchySnapshot) -> _ChangeOutcome:
            department = snapshot.departments[department_id]
            for sub_group in department.sub_groups:
                state.sub_group(sub_group.id, sub_group.display_name)

            cleared_sub_groups = 0
            cleared_overrides = _non_empty(state.user_overrides)
            for entry in state.sub_groups.values():
                if entry["module_access"] or _non_empty(entry["user_overrides"]):
                    cleared_sub_groups += 1
                cleared_overrides += _non_empty(entry["user_overrides"])
                entry["module_access"] = {}
                entry["user_overrides"] = {}
            state.module_access = dict(levels)
            state.user_overrides = {}
            return _ChangeOutcome(
                target_id=department_id,
                affected_sub_group_count=cleared_sub_groups,
                affected_user_override_count=cleared_overrides,
                affected_user_count=department.user_count,
                detail={"module_access": dict(levels)},
            )

        return _apply

    def _sub_group_mutation(self, department_id: str, sub_group_id: str, levels: dict[str, str]) -> Mutation:
        def _apply(state: PermissionState, snapshot: HierarchySnapshot) -> _ChangeOutcome:
            sub_group = snapshot.sub_groups.get(sub_group_id)
            if sub_group is None or sub_group.parent_department_id != department_id:
                raise TargetNotFoundError(f"sub-group {sub_group_id} is not in the current hierarchy")
            entry = state.sub_group(sub_group_id, sub_group.display_name)
            cleared_overrides = _non_empty(entry["user_overrides"])
            entry["display_name"] = sub_group.display_name
            entry["module_access"] = dict(levels)
            entry["user_overrides"] = {}
            return _ChangeOutcome(
                target_id=sub_group_id,
                affected_sub_group_count=1,
                affected_user_override_count=cleared_overrides,
                affected_user_count=sub_group.user_count,
                detail={"module_access": dict(levels)},
            )

        return _apply

    def _user_mutation(self, department_id: str, overrides: dict[str, dict[str, str]]) -> Mutation:
        def _apply(state: PermissionState, snapshot: HierarchySnapshot) -> _ChangeOutcome:
            locations: list[UserLocation] = []
            for user_id in sorted(overrides):
                location = snapshot.locations.get(normalize_email(user_id))
                if location is None or location.department_id != department_id:
                    raise TargetNotFoundError(f"user {user_id} is not in department {department_id}")
                locations.append(location)

            for location in locations:
                if location.sub_group_id is not None:
                    sub_group = snapshot.sub_groups[location.sub_group_id]
                    container = state.sub_group(location.sub_group_id, sub_group.display_name)["user_overrides"]
                else:
                    container = state.user_overrides
                current = dict(container.get(location.user_id) or {})
                for key, level in overrides[location.user_id].items():
                    if level == INHERIT:
                        current.pop(key, None)
                    else:
                        current[key] = level
                if current:
                    container[location.user_id] = current
                else:
                    container.pop(location.user_id, None)

            return _ChangeOutcome(
                target_id=",".join(location.user_id for location in locations),
                affected_user_override_count=len(locations),
                affected_user_count=len(locations),
                detail={"user_overrides": {key: dict(value) for key, value in sorted(overrides.items())}},
            )

        return _apply
