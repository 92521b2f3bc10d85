from __future__ import annotations

from pathlib import Path

from alembic.config import Config

from access_engine.infra import migrate


def test_run_upgrade_head_targets_configured_database(monkeypatch) -> None:
    calls: list[tuple[Config, str]] = []
    monkeypatch.setenv("DATABASE_URL", "sqlite:///migrate-test.db")
    monkeypatch.setattr(migrate.command, "upgrade", lambda config, revision: calls.append((config, revision)))

    migrate.run_upgrade_head()

    assert len(calls) == 1
    config, revision = calls[0]
    assert revision == "head"
    assert config.get_main_option("sqlalchemy.url") == "sqlite:///migrate-test.db"


def test_alembic_ini_points_at_migrations() -> None:
    root = Path(__file__).resolve().parents[1]
    config = Config(str(root / "alembic.ini"))
    assert config.get_main_option("script_location") == "infra/migrations"
    assert (root / "infra" / "migrations" / "versions").is_dir()
