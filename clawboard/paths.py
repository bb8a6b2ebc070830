"""Filesystem locations owned by clawboard."""

from __future__ import annotations

from pathlib import Path

CLAWBOARD_HOME = Path("~/.clawboard").expanduser()
DEFAULT_CONFIG_PATH = CLAWBOARD_HOME / "config.yml"
LOG_DIR = CLAWBOARD_HOME / "logs"
LOG_PATH = LOG_DIR / "clawboard.log"
