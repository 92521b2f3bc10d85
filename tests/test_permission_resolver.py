from __future__ import annotations

from collections.abc import Generator
from pathlib import Path

import pytest
from sqlalchemy.engine import Engine
from sqlmodel import SQLModel, create_engine

from access_engine.domain.hierarchy import extract_hierarchy, locate
from access_engine.domain.models import (
    AccessSource,
    CascadeScope,
    DepartmentPermission,
    IdentityRecordUpsert,
    IdentitySource,
    ModuleAccessLevel,
)
from access_engine.infra import audit, db, events
from access_engine.services import hierarchy_service
from access_engine.services.cascade_service import CascadeService
from access_engine.services.errors import PermissionValidationError, RecordNotFoundError
from access_engine.services.hierarchy_service import HierarchyService
from access_engine.services.identity_catalogue_service import IdentityCatalogueService
from access_engine.services.permission_service import PermissionService, resolve_access


@pytest.fixture()
def resolver_engine(monkeypatch: pytest.MonkeyPatch, tmp_path: Path) -> Generator[Engine, None, None]:
    test_engine = create_engine(
        f"sqlite:///{tmp_path / 'resolver_test.db'}",
        connect_args={"check_same_thread": False},
    )
    SQLModel.metadata.create_all(test_engine)
    monkeypatch.setattr(db, "engine", test_engine)
    monkeypatch.setattr(audit, "engine", test_engine)
    monkeypatch.setattr(events, "engine", test_engine)
    IdentityCatalogueService().upsert_many(
        [
            IdentityRecordUpsert(source=IdentitySource.DIRECTORY, external_id="d-1", email="alice@x.com", department="Sales | West"),
            IdentityRecordUpsert(source=IdentitySource.DIRECTORY, external_id="d-2", email="bob@x.com", department="Sales | West"),
            IdentityRecordUpsert(source=IdentitySource.DIRECTORY, external_id="d-3", email="erin@x.com", department="Sales"),
            IdentityRecordUpsert(source=IdentitySource.DIRECTORY, external_id="d-4", email="admin@company.com", department="IT"),
        ]
    )
    yield test_engine
    test_engine.dispose()


def _sales_record() -> DepartmentPermission:
    return DepartmentPermission(
        department_id="sales",
        department_name="Sales",
        module_access={"hr": "access", "support": "admin"},
        sub_groups={
            "sales--west": {
                "display_name": "West",
                "module_access": {"support": "none", "ai": "access"},
                "user_overrides": {"alice@x.com": {"hr": "admin"}},
            }
        },
        user_overrides={"erin@x.com": {"ai": "admin"}},
    )


def test_resolve_access_precedence() -> None:
    record = _sales_record()
    alice = locate("alice@x.com", "Sales | West")
    bob = locate("bob@x.com", "Sales | West")
    erin = locate("erin@x.com", "Sales")

    assert resolve_access(record, alice, "hr") == (ModuleAccessLevel.ADMIN, AccessSource.USER_OVERRIDE)
    assert resolve_access(record, bob, "hr") == (ModuleAccessLevel.ACCESS, AccessSource.DEPARTMENT)
    assert resolve_access(record, bob, "support") == (ModuleAccessLevel.NONE, AccessSource.SUBGROUP)
    assert resolve_access(record, bob, "ai") == (ModuleAccessLevel.ACCESS, AccessSource.SUBGROUP)
    assert resolve_access(record, erin, "ai") == (ModuleAccessLevel.ADMIN, AccessSource.USER_OVERRIDE)
    assert resolve_access(record, erin, "admin-portal") == (ModuleAccessLevel.NONE, AccessSource.DEFAULT)


def test_resolve_access_ignores_overrides_stored_at_other_locations() -> None:
    record = _sales_record()
    # erin's department-level override does not follow her into a sub-group
    moved = locate("erin@x.com", "Sales | West")
    assert resolve_access(record, moved, "ai") == (ModuleAccessLevel.ACCESS, AccessSource.SUBGROUP)


def test_resolve_access_without_record_defaults_to_none() -> None:
    location = locate("zoe@x.com", "Legal")
    assert resolve_access(None, location, "hr") == (ModuleAccessLevel.NONE, AccessSource.DEFAULT)


def test_effective_access_inherits_from_department(resolver_engine: Engine) -> None:
    CascadeService().apply_permission_change(CascadeScope.DEPARTMENT, "sales", {"hr": "access"}, "admin-1")
    service = PermissionService()

    assert service.effective_access("alice@x.com", "hr") == ModuleAccessLevel.ACCESS
    assert service.effective_access("ALICE@x.com", "support") == ModuleAccessLevel.NONE
    assert service.has_access("alice@x.com", "hr") is True
    assert service.has_admin_access("alice@x.com", "hr") is False

    read = service.effective_access_read("erin@x.com", "hr")
    assert read.level == ModuleAccessLevel.ACCESS
    assert read.source == AccessSource.DEPARTMENT
    assert read.has_access is True


def test_user_override_wins_and_inherit_reverts(resolver_engine: Engine) -> None:
    cascade = CascadeService()
    service = PermissionService()
    cascade.apply_permission_change(CascadeScope.DEPARTMENT, "sales", {"hr": "none"}, "admin-1")

    cascade.apply_permission_change(CascadeScope.USER, "alice@x.com", {"hr": "admin"}, "admin-1")
    assert service.explain_access("alice@x.com", "hr") == (ModuleAccessLevel.ADMIN, AccessSource.USER_OVERRIDE)
    assert service.effective_access("bob@x.com", "hr") == ModuleAccessLevel.NONE

    cascade.apply_permission_change(CascadeScope.USER, "alice@x.com", {"hr": "inherit"}, "admin-1")
    assert service.explain_access("alice@x.com", "hr") == (ModuleAccessLevel.NONE, AccessSource.DEPARTMENT)
    stored = service.get_record("sales")
    assert stored.sub_groups["sales--west"].user_overrides == {}


def test_effective_access_errors(resolver_engine: Engine) -> None:
    service = PermissionService()
    with pytest.raises(RecordNotFoundError):
        service.effective_access("ghost@x.com", "hr")
    with pytest.raises(PermissionValidationError):
        service.effective_access("alice@x.com", "payroll")


def test_access_summary_reports_page_visibility(resolver_engine: Engine) -> None:
    CascadeService().apply_permission_change(CascadeScope.DEPARTMENT, "sales", {"hr": "access", "ai": "admin"}, "admin-1")

    summary = PermissionService().access_summary("alice@x.com")

    assert summary.department_id == "sales"
    assert summary.sub_group_id == "sales--west"
    assert summary.is_admin is False
    assert summary.total_modules_with_access == 2
    assert summary.highest_level == ModuleAccessLevel.ADMIN
    modules = {item.key: item for item in summary.modules}
    hr_pages = {page.key: page.has_access for page in modules["hr"].pages}
    assert hr_pages["employees"] is True
    assert hr_pages["analytics"] is False
    assert all(page.has_access for page in modules["ai"].pages)
    assert not any(page.has_access for page in modules["support"].pages)


def test_access_summary_gives_administrators_everything(resolver_engine: Engine) -> None:
    summary = PermissionService().access_summary("admin@company.com")

    assert summary.is_admin is True
    assert summary.highest_level == ModuleAccessLevel.ADMIN
    assert all(item.source == AccessSource.ADMIN_OVERRIDE for item in summary.modules)
    assert PermissionService().effective_access("admin@company.com", "hr") == ModuleAccessLevel.NONE


def test_locate_user_matches_the_extracted_hierarchy(resolver_engine: Engine) -> None:
    IdentityCatalogueService().upsert(
        IdentityRecordUpsert(source=IdentitySource.UPLOAD, external_id="u-1", email="alice@x.com", department="Sales")
    )
    hierarchy = HierarchyService()
    snapshot = hierarchy.snapshot()

    assert set(snapshot.locations) == {"alice@x.com", "bob@x.com", "erin@x.com", "admin@company.com"}
    for user_id, location in snapshot.locations.items():
        assert hierarchy.locate_user(user_id) == location
    # the directory record outranks the upload, so alice stays in her sub-group
    assert hierarchy.locate_user("Alice@X.com").sub_group_id == "sales--west"
    with pytest.raises(RecordNotFoundError):
        hierarchy.locate_user("ghost@x.com")


def test_access_checks_do_not_extract_the_whole_hierarchy(
    resolver_engine: Engine,
    monkeypatch: pytest.MonkeyPatch,
) -> None:
    CascadeService().apply_permission_change(CascadeScope.DEPARTMENT, "sales", {"hr": "access"}, "admin-1")
    extracted: list[int] = []

    def _counting_extract(records):
        records = list(records)
        extracted.append(len(records))
        return extract_hierarchy(records)

    monkeypatch.setattr(hierarchy_service, "extract_hierarchy", _counting_extract)
    service = PermissionService()

    assert service.effective_access("alice@x.com", "hr") == ModuleAccessLevel.ACCESS
    assert service.has_access("erin@x.com", "hr") is True
    assert service.has_admin_access("bob@x.com", "hr") is False
    assert service.access_summary("bob@x.com").department_id == "sales"
    assert extracted == []
