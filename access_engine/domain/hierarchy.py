from __future__ import annotations

import hashlib
import re
from collections.abc import Iterable
from dataclasses import dataclass, field
from datetime import datetime

from access_engine.domain.models import (
    AnalysisInfoRead,
    DepartmentRead,
    HierarchyRead,
    IdentityRecord,
    ParsingStatsRead,
    SubGroupRead,
    UserRefRead,
    as_utc,
    now_utc,
)
from access_engine.domain.permissions import SOURCE_PRIORITY

DEPARTMENT_SEPARATOR = "|"
SUB_GROUP_ID_JOINER = "--"
UNASSIGNED_DEPARTMENT = "Unassigned"

_NON_ALNUM = re.compile(r"[^a-z0-9]+")


def normalize_email(email: str) -> str:
    return email.strip().lower()


def slugify(name: str) -> str:
    slug = _NON_ALNUM.sub("-", name.strip().lower()).strip("-")
    if slug:
        return slug
    # names made only of punctuation still need a stable, distinct id
    return "x" + hashlib.sha1(name.encode("utf-8")).hexdigest()[:10]


def department_id_for(department_name: str) -> str:
    return slugify(department_name)


def sub_group_id_for(department_name: str, sub_group_name: str) -> str:
    return f"{slugify(department_name)}{SUB_GROUP_ID_JOINER}{slugify(sub_group_name)}"


@dataclass(frozen=True)
class ParsedDepartment:
    department: str
    sub_group: str | None
    has_separator: bool
    is_empty: bool


def parse_department(raw: str | None) -> ParsedDepartment:
    value = (raw or "").strip()
    if not value:
        return ParsedDepartment(UNASSIGNED_DEPARTMENT, None, has_separator=False, is_empty=True)
    if DEPARTMENT_SEPARATOR not in value:
        return ParsedDepartment(value, None, has_separator=False, is_empty=False)

    head, tail = value.split(DEPARTMENT_SEPARATOR, 1)
    department = head.strip() or UNASSIGNED_DEPARTMENT
    sub_group = tail.strip()
    # "Sales | Sales" and "Sales |" carry no second level
    if not sub_group or sub_group.lower() == department.lower():
        return ParsedDepartment(department, None, has_separator=True, is_empty=False)
    return ParsedDepartment(department, sub_group, has_separator=True, is_empty=False)


@dataclass(frozen=True)
class UserLocation:
    user_id: str
    department_id: str
    department_name: str
    sub_group_id: str | None = None
    sub_group_name: str | None = None


def locate(user_id: str, raw_department: str | None) -> UserLocation:
    parsed = parse_department(raw_department)
    if parsed.sub_group is None:
        return UserLocation(
            user_id=user_id,
            department_id=department_id_for(parsed.department),
            department_name=parsed.department,
        )
    return UserLocation(
        user_id=user_id,
        department_id=department_id_for(parsed.department),
        department_name=parsed.department,
        sub_group_id=sub_group_id_for(parsed.department, parsed.sub_group),
        sub_group_name=parsed.sub_group,
    )


def _record_rank(record: IdentityRecord) -> tuple[int, datetime]:
    return SOURCE_PRIORITY[record.source], as_utc(record.last_seen)


def select_primary_records(records: Iterable[IdentityRecord]) -> list[IdentityRecord]:
    """One record per normalized e-mail: highest source priority, then most recently seen."""
    chosen: dict[str, IdentityRecord] = {}
    for record in records:
        key = record.email_normalized
        current = chosen.get(key)
        if current is None or _record_rank(record) > _record_rank(current):
            chosen[key] = record
    return [chosen[key] for key in sorted(chosen)]


def _user_ref(record: IdentityRecord) -> UserRefRead:
    return UserRefRead(
        id=record.email_normalized,
        name=record.display_name.strip() or record.email,
        email=record.email,
        job_title=record.job_title,
        source=record.source,
    )


@dataclass
class HierarchySnapshot:
    departments: dict[str, DepartmentRead] = field(default_factory=dict)
    sub_groups: dict[str, SubGroupRead] = field(default_factory=dict)
    locations: dict[str, UserLocation] = field(default_factory=dict)
    raw_department_values: list[str] = field(default_factory=list)
    parsing_stats: ParsingStatsRead = field(default_factory=ParsingStatsRead)
    detected_at: datetime = field(default_factory=now_utc)

    @property
    def total_users(self) -> int:
        return len(self.locations)

    def to_read(self) -> HierarchyRead:
        return HierarchyRead(
            departments=[self.departments[key] for key in sorted(self.departments)],
            sub_groups=[self.sub_groups[key] for key in sorted(self.sub_groups)],
            analysis_info=AnalysisInfoRead(
                total_users=self.total_users,
                raw_department_values=list(self.raw_department_values),
                parsing_stats=self.parsing_stats.model_copy(),
                detected_at=self.detected_at,
            ),
        )


def extract_hierarchy(records: Iterable[IdentityRecord]) -> HierarchySnapshot:
    snapshot = HierarchySnapshot()
    raw_values: set[str] = set()
    active = [record for record in records if record.is_active]

    for record in select_primary_records(active):
        parsed = parse_department(record.department)
        if parsed.is_empty:
            snapshot.parsing_stats.empty += 1
        elif parsed.has_separator:
            snapshot.parsing_stats.with_separator += 1
        else:
            snapshot.parsing_stats.without_separator += 1
        if not parsed.is_empty:
            raw_values.add(record.department.strip())

        location = locate(record.email_normalized, record.department)
        snapshot.locations[location.user_id] = location

        department = snapshot.departments.get(location.department_id)
        if department is None:
            department = DepartmentRead(
                id=location.department_id,
                name=location.department_name,
                user_count=0,
                sub_groups=[],
                direct_users=[],
            )
            snapshot.departments[location.department_id] = department
        department.user_count += 1

        user = _user_ref(record)
        if location.sub_group_id is None:
            department.direct_users.append(user)
            continue

        sub_group = snapshot.sub_groups.get(location.sub_group_id)
        if sub_group is None:
            sub_group = SubGroupRead(
                id=location.sub_group_id,
                name=f"{location.department_name} {DEPARTMENT_SEPARATOR} {location.sub_group_name}",
                display_name=location.sub_group_name or "",
                parent_department_id=location.department_id,
                user_count=0,
                users=[],
            )
            snapshot.sub_groups[location.sub_group_id] = sub_group
            department.sub_groups.append(sub_group)
        sub_group.users.append(user)
        sub_group.user_count += 1

    for department in snapshot.departments.values():
        department.sub_groups.sort(key=lambda item: item.id)
    snapshot.raw_department_values = sorted(raw_values)
    return snapshot
