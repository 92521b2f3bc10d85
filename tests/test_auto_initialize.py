from __future__ import annotations

from collections.abc import Generator
from pathlib import Path

import pytest
from sqlalchemy.engine import Engine
from sqlmodel import Session, SQLModel, create_engine, select

from access_engine.domain.models import AuditLog, CascadeScope, IdentityRecordUpsert, IdentitySource, ModuleAccessLevel
from access_engine.infra import audit, db, events, settings
from access_engine.services.cascade_service import CascadeService
from access_engine.services.identity_catalogue_service import IdentityCatalogueService
from access_engine.services.permission_service import PermissionService


@pytest.fixture()
def init_engine(monkeypatch: pytest.MonkeyPatch, tmp_path: Path) -> Generator[Engine, None, None]:
    test_engine = create_engine(
        f"sqlite:///{tmp_path / 'auto_init_test.db'}",
        connect_args={"check_same_thread": False},
    )
    SQLModel.metadata.create_all(test_engine)
    monkeypatch.setattr(db, "engine", test_engine)
    monkeypatch.setattr(audit, "engine", test_engine)
    monkeypatch.setattr(events, "engine", test_engine)
    monkeypatch.setattr(settings, "AUTO_INIT_BASELINE_MODULES", ("hr", "support"))
    monkeypatch.setattr(settings, "AUTO_INIT_SUBGROUP_MODULE", "ai")
    IdentityCatalogueService().upsert_many(
        [
            IdentityRecordUpsert(source=IdentitySource.LDAP, external_id="1", email="alice@x.com", department="Sales | West"),
            IdentityRecordUpsert(source=IdentitySource.LDAP, external_id="2", email="dave@x.com", department="Sales | East"),
            IdentityRecordUpsert(source=IdentitySource.LDAP, external_id="3", email="sam@x.com", department="Support"),
        ]
    )
    yield test_engine
    test_engine.dispose()


def test_auto_initialize_creates_baseline_and_sub_group_defaults(init_engine: Engine) -> None:
    result = PermissionService().auto_initialize(actor_id="admin-1")

    assert result.initialized_departments == 2
    assert result.initialized_sub_groups == 2
    # four catalogue modules per department plus one entry per sub-group
    assert result.total_permission_entries == 10

    service = PermissionService()
    sales = service.get_record("sales")
    assert sales.module_access == {
        "hr": ModuleAccessLevel.ACCESS,
        "support": ModuleAccessLevel.ACCESS,
        "ai": ModuleAccessLevel.NONE,
        "admin-portal": ModuleAccessLevel.NONE,
    }
    assert sales.sub_groups["sales--west"].module_access == {"ai": ModuleAccessLevel.ACCESS}
    assert service.effective_access("alice@x.com", "ai") == ModuleAccessLevel.ACCESS
    assert service.effective_access("sam@x.com", "ai") == ModuleAccessLevel.NONE

    with Session(init_engine) as session:
        rows = session.exec(select(AuditLog).where(AuditLog.action == "permissions.auto_initialize")).all()
    assert len(rows) == 1
    assert rows[0].affected_user_count == 3


def test_auto_initialize_is_idempotent(init_engine: Engine) -> None:
    service = PermissionService()
    service.auto_initialize(actor_id="admin-1")
    before = [item.model_dump() for item in service.list_records()]

    second = service.auto_initialize(actor_id="admin-1")

    assert second.initialized_departments == 0
    assert second.initialized_sub_groups == 0
    assert second.total_permission_entries == 0
    assert [item.model_dump() for item in service.list_records()] == before
    with Session(init_engine) as session:
        rows = session.exec(select(AuditLog).where(AuditLog.action == "permissions.auto_initialize")).all()
    assert len(rows) == 1


def test_auto_initialize_never_overwrites_existing_permissions(init_engine: Engine) -> None:
    CascadeService().apply_permission_change(CascadeScope.DEPARTMENT, "sales", {"hr": "admin"}, "admin-1")
    IdentityCatalogueService().upsert(
        IdentityRecordUpsert(source=IdentitySource.LDAP, external_id="4", email="nina@x.com", department="Sales | North")
    )

    result = PermissionService().auto_initialize(actor_id="admin-1")

    assert result.initialized_departments == 1
    assert result.initialized_sub_groups == 1
    sales = PermissionService().get_record("sales")
    assert sales.module_access == {"hr": ModuleAccessLevel.ADMIN}
    assert sales.sub_groups["sales--west"].module_access == {}
    assert sales.sub_groups["sales--north"].module_access == {"ai": ModuleAccessLevel.ACCESS}


def test_auto_initialize_fills_department_created_by_an_override(init_engine: Engine) -> None:
    CascadeService().apply_permission_change(CascadeScope.USER, "alice@x.com", {"hr": "admin"}, "admin-1")
    assert PermissionService().get_record("sales").module_access == {}

    result = PermissionService().auto_initialize(actor_id="admin-1")

    assert result.initialized_departments == 2
    assert result.initialized_sub_groups == 1
    service = PermissionService()
    sales = service.get_record("sales")
    assert sales.module_access == {
        "hr": ModuleAccessLevel.ACCESS,
        "support": ModuleAccessLevel.ACCESS,
        "ai": ModuleAccessLevel.NONE,
        "admin-portal": ModuleAccessLevel.NONE,
    }
    assert sales.sub_groups["sales--west"].user_overrides == {"alice@x.com": {"hr": ModuleAccessLevel.ADMIN}}
    assert sales.sub_groups["sales--east"].module_access == {"ai": ModuleAccessLevel.ACCESS}
    assert service.effective_access("alice@x.com", "hr") == ModuleAccessLevel.ADMIN
    assert service.effective_access("dave@x.com", "hr") == ModuleAccessLevel.ACCESS
