"""Per-OS config directory lookup."""

from __future__ import annotations

import os
import sys
from pathlib import Path


def get_config_dir() -> Path:
    env = os.environ.get("PRCLEANER_CONFIG_DIR")
    if env:
        return Path(env)

    if sys.platform == "win32":
        base = Path(os.environ.get("APPDATA", Path.home() / "AppData" / "Roaming"))
        return base / "prcleaner"
    if sys.platform == "darwin":
        return Path.home() / "Library" / "Application Support" / "prcleaner"
    # Linux / XDG
    xdg = os.environ.get("XDG_CONFIG_HOME", Path.home() / ".config")
    return Path(xdg) / "prcleaner"
