"""Run Alembic migrations over an already configured engine."""

from __future__ import annotations

from pathlib import Path

from alembic import command
from alembic.config import Config
from sqlalchemy.engine import Engine

PROJECT_ROOT = Path(__file__).resolve().parents[3]


def upgrade_head(engine: Engine, *, project_root: Path = PROJECT_ROOT) -> None:
    """Migrate the engine's database to head.

    The migration shares one connection from ``engine`` so the SQLite
    pragmas installed on it (WAL, busy timeout) apply during DDL too.
    """

    config = Config(str(project_root / "alembic.ini"))
    config.set_main_option("script_location", str(project_root / "alembic"))
    config.set_main_option("sqlalchemy.url", engine.url.render_as_string(hide_password=False))
    with engine.begin() as connection:
        config.attributes["connection"] = connection
        command.upgrade(config, "head")
