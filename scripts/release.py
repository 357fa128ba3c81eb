"""
Deploy-time step: bring the schema to head, then seed reference data.

Seeding is idempotent and never resets a password that already exists.
Demo PCC submissions are only created outside production.

    python scripts/release.py
"""

from __future__ import annotations

import os
import sys
from pathlib import Path


ROOT = Path(__file__).resolve().parents[1]
if str(ROOT) not in sys.path:
    sys.path.insert(0, str(ROOT))


def _database_url(env: str) -> str:
    url = (os.environ.get("DATABASE_URL") or "").strip()
    if not url:
        raise RuntimeError("DATABASE_URL is not set; refusing to pick a default database for a release.")
    if env in ("prod", "production") and url.startswith("sqlite"):
        raise RuntimeError("Production releases need a Postgres DATABASE_URL, not SQLite.")
    return url


def _upgrade_schema(db_url: str) -> None:
    from alembic import command
    from alembic.config import Config

    cfg = Config(str(ROOT / "alembic.ini"))
    cfg.set_main_option("sqlalchemy.url", db_url)
    command.upgrade(cfg, "head")


def run_release() -> None:
    env = (os.environ.get("ENV") or "").strip().lower()
    db_url = _database_url(env)
    is_production = env in ("prod", "production")

    print(f"[release] env={env or 'unset'} upgrading schema", flush=True)
    _upgrade_schema(db_url)

    from scripts import init_db

    print("[release] seeding dealers, users and module flags", flush=True)
    init_db.seed_only(database_url=db_url, with_samples=not is_production)
    print("[release] finished", flush=True)


if __name__ == "__main__":
    run_release()
