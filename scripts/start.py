#!/usr/bin/env python3
"""
Container entrypoint for the PCC portal.

Applies migrations and seed data, then hands the process over to gunicorn
so the web server receives container signals directly.

    python scripts/start.py

Environment: PORT (default 8080), WEB_CONCURRENCY (default 2).
"""

from __future__ import annotations

import os
import sys
from pathlib import Path

ROOT = Path(__file__).resolve().parents[1]
if str(ROOT) not in sys.path:
    sys.path.insert(0, str(ROOT))

DEFAULT_PORT = 8080


def resolve_port(raw: str | None) -> int:
    raw = (raw or "").strip()
    if not raw:
        print(f"PORT is empty; listening on {DEFAULT_PORT}", flush=True)
        return DEFAULT_PORT
    if not raw.isdigit() or not 1 <= int(raw) <= 65535:
        raise SystemExit(f"PORT must be a number between 1 and 65535, got {raw!r}")
    return int(raw)


def gunicorn_argv(port: int, workers: str) -> list[str]:
    return [
        "gunicorn",
        "app.wsgi:app",
        "--bind", f"0.0.0.0:{port}",
        "--workers", workers,
        "--timeout", "60",
        "--preload",
        "--access-logfile", "-",
        "--error-logfile", "-",
    ]


def main() -> None:
    port = resolve_port(os.environ.get("PORT"))
    workers = (os.environ.get("WEB_CONCURRENCY") or "").strip() or "2"

    from scripts.release import run_release

    try:
        run_release()
    except Exception as e:
        raise SystemExit(f"Release step aborted startup: {e}") from e

    argv = gunicorn_argv(port, workers)
    print(f"Launching {' '.join(argv)}", flush=True)
    os.execvp(argv[0], argv)


if __name__ == "__main__":
    main()
