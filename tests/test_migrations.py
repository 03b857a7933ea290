from __future__ import annotations

from pathlib import Path

from sqlalchemy import create_engine, inspect

import iam_service.infra.migrate as migrate
from iam_service.infra.migrate import MIGRATIONS_DIR, build_config, main, run_downgrade, run_upgrade

PACKAGE_DIR = Path(migrate.__file__).resolve().parents[1]


def test_migrations_ship_inside_the_package() -> None:
    config = build_config("sqlite://")
    assert config.config_file_name is None
    assert MIGRATIONS_DIR.parent == PACKAGE_DIR
    assert (MIGRATIONS_DIR / "env.py").is_file()
    assert list((MIGRATIONS_DIR / "versions").glob("*_iam_core.py"))


def test_upgrade_creates_schema_and_downgrade_drops_it(tmp_path: Path) -> None:
    url = f"sqlite:///{tmp_path / 'migrations.db'}"

    run_upgrade("head", database_url=url)
    inspector = inspect(create_engine(url))
    assert {"tenants", "identity_users", "audit_logs"} <= set(inspector.get_table_names())
    external_id_index = next(
        index for index in inspector.get_indexes("identity_users") if index["name"] == "ix_identity_users_external_id"
    )
    assert external_id_index["unique"]

    run_downgrade("base", database_url=url)
    assert set(inspect(create_engine(url)).get_table_names()) <= {"alembic_version"}


def test_console_entry_point_upgrades_without_ini_file(tmp_path, monkeypatch) -> None:
    url = f"sqlite:///{tmp_path / 'cli.db'}"
    monkeypatch.setattr(migrate, "DATABASE_URL", url)
    monkeypatch.chdir(tmp_path)

    main(["upgrade"])

    assert "tenants" in inspect(create_engine(url)).get_table_names()
