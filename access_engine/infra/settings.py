from __future__ import annotations

import os


def _csv(value: str) -> list[str]:
    return [item.strip() for item in value.split(",") if item.strip()]


LOG_LEVEL = os.getenv("LOG_LEVEL", "INFO")

# Administrators see every module at admin level in access summaries.
ADMIN_EMAILS: frozenset[str] = frozenset(
    item.lower() for item in _csv(os.getenv("ADMIN_EMAILS", "admin@company.com"))
)

AUTO_INIT_BASELINE_MODULES: tuple[str, ...] = tuple(_csv(os.getenv("AUTO_INIT_BASELINE_MODULES", "hr,support")))
AUTO_INIT_SUBGROUP_MODULE: str = os.getenv("AUTO_INIT_SUBGROUP_MODULE", "ai").strip()


def is_administrator(email: str | None) -> bool:
    if not email:
        return False
    return email.strip().lower() in ADMIN_EMAILS
