"""
Explicit dotenv loader for DELTA_* credentials in local runs.

Rules:
- In production (`ENVIRONMENT=prod`, the default): do not load anything.
- Otherwise: load `.env` then `.env.local` (local overrides) from the
  working directory or the given root.

Must not import `delta_gateway.config.config`.
"""

from __future__ import annotations

import os
from pathlib import Path

from dotenv import load_dotenv


def is_prod_env() -> bool:
    return str(os.getenv("ENVIRONMENT") or "prod").strip().lower() == "prod"


def load_dotenv_files(*, root: Path | None = None) -> list[Path]:
    """
    Load dotenv files for local/dev usage.

    Returns:
        Files that were loaded, in order
    """
    if is_prod_env():
        return []

    base = root or Path.cwd()
    loaded = []
    for name, override in ((".env", False), (".env.local", True)):
        path = base / name
        if path.exists():
            load_dotenv(dotenv_path=path, override=override)
            loaded.append(path)
    return loaded
