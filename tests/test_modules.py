from __future__ import annotations

import json
from pathlib import Path

import pytest

from access_engine.domain.models import IdentitySource, ModuleAccessLevel
from access_engine.domain.modules import DEFAULT_MODULE_CATALOGUE, load_module_catalogue
from access_engine.domain.permissions import highest_level, level_at_least, suggest_keep_source


def test_default_catalogue_is_returned_as_copies() -> None:
    catalogue = load_module_catalogue()
    assert [item.key for item in catalogue] == [item.key for item in DEFAULT_MODULE_CATALOGUE]
    catalogue[0].pages.clear()
    assert DEFAULT_MODULE_CATALOGUE[0].pages


def test_catalogue_can_be_loaded_from_file(tmp_path: Path) -> None:
    path = tmp_path / "modules.json"
    path.write_text(
        json.dumps(
            [
                {
                    "key": "crm",
                    "name": "CRM",
                    "pages": [{"key": "deals", "name": "Deals"}, {"key": "config", "name": "Config", "required_level": "admin"}],
                }
            ]
        ),
        encoding="utf-8",
    )

    catalogue = load_module_catalogue(path)

    assert catalogue[0].key == "crm"
    assert catalogue[0].pages[0].required_level == ModuleAccessLevel.ACCESS
    assert catalogue[0].pages[1].required_level == ModuleAccessLevel.ADMIN


def test_catalogue_file_must_be_a_list(tmp_path: Path) -> None:
    path = tmp_path / "modules.json"
    path.write_text(json.dumps({"key": "crm"}), encoding="utf-8")
    with pytest.raises(ValueError):
        load_module_catalogue(path)


def test_level_ordering_helpers() -> None:
    assert level_at_least(ModuleAccessLevel.ADMIN, ModuleAccessLevel.ACCESS)
    assert not level_at_least(ModuleAccessLevel.NONE, ModuleAccessLevel.ACCESS)
    assert highest_level([]) == ModuleAccessLevel.NONE
    assert highest_level([ModuleAccessLevel.ACCESS, ModuleAccessLevel.NONE]) == ModuleAccessLevel.ACCESS


def test_suggest_keep_source_follows_priority() -> None:
    assert suggest_keep_source([IdentitySource.UPLOAD, IdentitySource.MANUAL]) == IdentitySource.MANUAL
    assert suggest_keep_source([IdentitySource.LDAP, IdentitySource.DIRECTORY]) == IdentitySource.DIRECTORY
    with pytest.raises(ValueError):
        suggest_keep_source([])
