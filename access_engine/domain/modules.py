from __future__ import annotations

import json
import os
from functools import lru_cache
from pathlib import Path

from access_engine.domain.models import ModuleAccessLevel, ModulePageRead, ModuleRead

MODULE_CATALOGUE_PATH = os.getenv("MODULE_CATALOGUE_PATH")

DEFAULT_MODULE_CATALOGUE: tuple[ModuleRead, ...] = (
    ModuleRead(
        key="hr",
        name="HR Management",
        pages=[
            ModulePageRead(key="employees", name="Employees"),
            ModulePageRead(key="onboarding", name="Onboarding"),
            ModulePageRead(key="reports", name="Reports"),
            ModulePageRead(key="analytics", name="Analytics", required_level=ModuleAccessLevel.ADMIN),
        ],
    ),
    ModuleRead(
        key="support",
        name="Support System",
        pages=[
            ModulePageRead(key="tickets", name="Tickets"),
            ModulePageRead(key="knowledge_base", name="Knowledge Base"),
            ModulePageRead(key="escalations", name="Escalations"),
            ModulePageRead(key="settings", name="Settings", required_level=ModuleAccessLevel.ADMIN),
        ],
    ),
    ModuleRead(
        key="ai",
        name="AI Assistant",
        pages=[
            ModulePageRead(key="chat", name="Chat"),
            ModulePageRead(key="rag", name="Knowledge Retrieval"),
            ModulePageRead(key="models", name="Model Management", required_level=ModuleAccessLevel.ADMIN),
        ],
    ),
    ModuleRead(
        key="admin-portal",
        name="Admin Portal",
        pages=[
            ModulePageRead(key="users", name="User Management"),
            ModulePageRead(key="permissions", name="Permissions", required_level=ModuleAccessLevel.ADMIN),
            ModulePageRead(key="system", name="System", required_level=ModuleAccessLevel.ADMIN),
        ],
    ),
)


def load_module_catalogue(path: Path | None = None) -> list[ModuleRead]:
    if path is None:
        return [item.model_copy(deep=True) for item in DEFAULT_MODULE_CATALOGUE]
    raw = json.loads(path.read_text(encoding="utf-8"))
    if not isinstance(raw, list):
        raise ValueError("module catalogue must be a JSON list")
    return [ModuleRead.model_validate(item) for item in raw]


@lru_cache(maxsize=1)
def get_module_catalogue() -> tuple[ModuleRead, ...]:
    path = Path(MODULE_CATALOGUE_PATH) if MODULE_CATALOGUE_PATH else None
    return tuple(load_module_catalogue(path))
