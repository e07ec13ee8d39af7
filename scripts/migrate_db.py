"""
Run Alembic migrations for the FX hub up to the head revision.

The connection URL comes from ``FXHUB_MIGRATION_URI`` (a synchronous
SQLAlchemy URL such as ``postgresql+psycopg2://...`` or
``sqlite:///stp.db``) or, when unset, from ``alembic.ini``.
"""

from __future__ import annotations

import os
import pathlib

from alembic import command
from alembic.config import Config


def run_migrations() -> None:
    base_dir = pathlib.Path(__file__).resolve().parents[1]
    cfg = Config(str(base_dir / "alembic.ini"))
    cfg.set_main_option("script_location", str(base_dir / "alembic"))
    db_url = os.getenv("FXHUB_MIGRATION_URI")
    if db_url:
        cfg.set_main_option("sqlalchemy.url", db_url)
    command.upgrade(cfg, "head")


if __name__ == "__main__":
    run_migrations()
