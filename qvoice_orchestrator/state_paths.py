"""Shared helpers for resolving QVoiceTxt state paths.

All components (CLI, HTTP gateway, reminder scheduler) must open the same
store file, so path resolution lives in one place.
"""
from __future__ import annotations

import os
from pathlib import Path
from typing import Optional

DEFAULT_STATE_DIR = Path.home() / ".local" / "state" / "qvoicetxt"
STORE_DB_NAME = "qvoicetxt.sqlite3"


def resolve_state_dir(base_dir: Optional[Path] = None) -> Path:
    """Resolve the base state directory.

    Handles both ~ and $HOME/$VAR expansion for compatibility with
    systemd EnvironmentFile and shell scripts.
    """
    if base_dir is not None:
        return Path(os.path.expandvars(str(base_dir))).expanduser()
    env_dir = os.getenv("QVOICE_STATE_DIR") or os.getenv("STATE_DIR")
    if env_dir:
        return Path(os.path.expandvars(env_dir)).expanduser()
    return DEFAULT_STATE_DIR


def resolve_store_db_path(base_dir: Optional[Path] = None) -> Path:
    """Path of the SQLite message store, creating the state directory if needed."""
    state_dir = resolve_state_dir(base_dir)
    state_dir.mkdir(parents=True, exist_ok=True)
    return state_dir / STORE_DB_NAME
