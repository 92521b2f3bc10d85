from __future__ import annotations

from datetime import UTC, datetime
from enum import StrEnum
from typing import Any
from uuid import uuid4

from pydantic import BaseModel, ConfigDict
from pydantic import Field as PydanticField
from sqlalchemy import JSON, Column, UniqueConstraint
from sqlmodel import Field, SQLModel


def now_utc() -> datetime:
    return datetime.now(UTC)


def as_utc(value: datetime) -> datetime:
    if value.tzinfo is None:
        return value.replace(tzinfo=UTC)
    return value.astimezone(UTC)


class IdentitySource(StrEnum):
    DIRECTORY = "directory"
    LDAP = "ldap"
    UPLOAD = "upload"
    MANUAL = "manual"


class ModuleAccessLevel(StrEnum):
    NONE = "none"
    ACCESS = "access"
    ADMIN = "admin"


class CascadeScope(StrEnum):
    DEPARTMENT = "department"
    SUBGROUP = "subgroup"
    USER = "user"


class AccessSource(StrEnum):
    USER_OVERRIDE = "user_override"
    SUBGROUP = "subgroup"
    DEPARTMENT = "department"
    DEFAULT = "default"
    ADMIN_OVERRIDE = "admin_override"


class EventRecord(SQLModel, table=True):
    __tablename__ = "events"

    event_id: str = Field(default_factory=lambda: str(uuid4()), primary_key=True)
    event_type: str = Field(index=True)
    ts: datetime = Field(default_factory=now_utc, index=True)
    actor_id: str | None = Field(default=None, index=True)
    correlation_id: str | None = Field(default=None, index=True)
    payload: dict[str, Any] = Field(
        default_factory=dict,
        sa_column=Column(JSON, nullable=False),
    )


class AuditLog(SQLModel, table=True):
    __tablename__ = "audit_logs"

    id: str = Field(default_factory=lambda: str(uuid4()), primary_key=True)
    ts: datetime = Field(default_factory=now_utc, index=True)
    actor_id: str | None = Field(default=None, index=True)
    action: str = Field(index=True)
    resource: str = Field(index=True)
    target_scope: str
    target_id: str | None = None
    affected_user_count: int = 0
    success: bool = Field(default=True, index=True)
    detail: dict[str, Any] = Field(
        default_factory=dict,
        sa_column=Column(JSON, nullable=False),
    )


class IdentityRecord(SQLModel, table=True):
    __tablename__ = "identity_records"
    __table_args__ = (
        UniqueConstraint("source", "external_id", name="uq_identity_records_source_external_id"),
    )

    id: str = Field(default_factory=lambda: str(uuid4()), primary_key=True)
    source: IdentitySource = Field(index=True)
    external_id: str
    email: str
    email_normalized: str = Field(index=True)
    display_name: str = ""
    department: str = ""
    job_title: str = ""
    is_active: bool = Field(default=True, index=True)
    last_seen: datetime = Field(default_factory=now_utc, index=True)
    created_at: datetime = Field(default_factory=now_utc, index=True)
    updated_at: datetime = Field(default_factory=now_utc)


class DepartmentPermission(SQLModel, table=True):
    __tablename__ = "department_permissions"

    department_id: str = Field(primary_key=True)
    department_name: str
    module_access: dict[str, str] = Field(
        default_factory=dict,
        sa_column=Column(JSON, nullable=False),
    )
    sub_groups: dict[str, Any] = Field(
        default_factory=dict,
        sa_column=Column(JSON, nullable=False),
    )
    user_overrides: dict[str, Any] = Field(
        default_factory=dict,
        sa_column=Column(JSON, nullable=False),
    )
    version: int = Field(default=1)
    created_at: datetime = Field(default_factory=now_utc, index=True)
    updated_at: datetime = Field(default_factory=now_utc, index=True)
    updated_by: str | None = None


class EventEnvelope(BaseModel):
    event_id: str = PydanticField(default_factory=lambda: str(uuid4()))
    event_type: str
    ts: datetime = PydanticField(default_factory=now_utc)
    actor_id: str | None = None
    correlation_id: str | None = None
    payload: dict[str, Any]


class ORMReadModel(BaseModel):
    model_config = ConfigDict(from_attributes=True)


class IdentityRecordUpsert(BaseModel):
    source: IdentitySource
    external_id: str
    email: str
    display_name: str = ""
    department: str = ""
    job_title: str = ""
    is_active: bool = True
    last_seen: datetime | None = None


class IdentityRecordRead(ORMReadModel):
    id: str
    source: IdentitySource
    external_id: str
    email: str
    display_name: str
    department: str
    job_title: str
    is_active: bool
    last_seen: datetime
    updated_at: datetime


class IdentityRecordBatchUpsertRequest(BaseModel):
    records: list[IdentityRecordUpsert]


class IdentityRecordBatchUpsertRead(BaseModel):
    created: int
    updated: int


class EmailConflictRead(BaseModel):
    email: str
    sources: list[IdentitySource]
    records: list[IdentityRecordRead]
    suggested_keep_source: IdentitySource


class ConflictResolveRequest(BaseModel):
    email: str
    keep_source: IdentitySource
    delete_from_sources: list[IdentitySource] | None = None


class ConflictResolveRead(BaseModel):
    email: str
    kept_source: IdentitySource
    deleted_records: int


class UserRefRead(BaseModel):
    id: str
    name: str
    email: str
    job_title: str
    source: IdentitySource
    has_individual_overrides: bool = False


class SubGroupRead(BaseModel):
    id: str
    name: str
    display_name: str
    parent_department_id: str
    user_count: int
    users: list[UserRefRead]
    has_permissions: bool = False


class DepartmentRead(BaseModel):
    id: str
    name: str
    user_count: int
    sub_groups: list[SubGroupRead]
    direct_users: list[UserRefRead]
    has_permissions: bool = False


class ParsingStatsRead(BaseModel):
    with_separator: int = 0
    without_separator: int = 0
    empty: int = 0


class AnalysisInfoRead(BaseModel):
    total_users: int
    raw_department_values: list[str]
    parsing_stats: ParsingStatsRead
    detected_at: datetime


class HierarchyRead(BaseModel):
    departments: list[DepartmentRead]
    sub_groups: list[SubGroupRead]
    analysis_info: AnalysisInfoRead


class ModulePageRead(BaseModel):
    key: str
    name: str
    required_level: ModuleAccessLevel = ModuleAccessLevel.ACCESS


class ModuleRead(BaseModel):
    key: str
    name: str
    pages: list[ModulePageRead] = PydanticField(default_factory=list)


class SubGroupPermissionRead(BaseModel):
    display_name: str
    module_access: dict[str, ModuleAccessLevel]
    user_overrides: dict[str, dict[str, ModuleAccessLevel]]


class DepartmentPermissionRead(ORMReadModel):
    department_id: str
    department_name: str
    module_access: dict[str, ModuleAccessLevel]
    sub_groups: dict[str, SubGroupPermissionRead]
    user_overrides: dict[str, dict[str, ModuleAccessLevel]]
    version: int
    created_at: datetime
    updated_at: datetime
    updated_by: str | None = None


class CascadeRequest(BaseModel):
    scope: CascadeScope
    module_access: dict[str, str] | None = None
    sub_group_id: str | None = None
    sub_group_permissions: dict[str, str] | None = None
    user_overrides: dict[str, dict[str, str]] | None = None
    expected_version: int | None = None


class CascadeResultRead(BaseModel):
    mode: CascadeScope
    department_id: str
    target_id: str
    affected_sub_group_count: int
    affected_user_override_count: int
    version: int
    updated_at: datetime


class AutoInitializeRead(BaseModel):
    initialized_departments: int
    initialized_sub_groups: int
    total_permission_entries: int


class EffectiveAccessRead(BaseModel):
    user_id: str
    module_key: str
    level: ModuleAccessLevel
    source: AccessSource
    has_access: bool
    has_admin_access: bool


class PageAccessRead(BaseModel):
    key: str
    name: str
    level: ModuleAccessLevel
    has_access: bool


class ModuleAccessSummaryRead(BaseModel):
    key: str
    name: str
    level: ModuleAccessLevel
    source: AccessSource
    has_access: bool
    pages: list[PageAccessRead]


class UserAccessSummaryRead(BaseModel):
    user_id: str
    department_id: str
    sub_group_id: str | None = None
    modules: list[ModuleAccessSummaryRead]
    total_modules_with_access: int
    highest_level: ModuleAccessLevel
    is_admin: bool
    checked_at: datetime


class AuditLogRead(ORMReadModel):
    id: str
    ts: datetime
    actor_id: str | None = None
    action: str
    resource: str
    target_scope: str
    target_id: str | None = None
    affected_user_count: int
    success: bool
    detail: dict[str, Any]


class AuditLogPageRead(BaseModel):
    items: list[AuditLogRead]
    total: int
    page: int
    limit: int
    has_next: bool
    has_prev: bool
