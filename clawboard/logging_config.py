"""clawboard logging configuration.

Modules log through ``structlog`` via ``get_logger(__name__)`` and may use either
printf-style positional arguments or key/value pairs.

The TUI owns the terminal, so logs never go to stdout: they are appended to
``~/.clawboard/logs/clawboard.log`` (override with ``CLAWBOARD_LOG_PATH``).
"""

from __future__ import annotations

import logging
import os
from pathlib import Path
from typing import Any, Optional

import structlog

from clawboard.paths import LOG_PATH

DEFAULT_LOG_LEVEL = "INFO"


def get_logger(name: str) -> Any:
    """Return a structured logger bound to ``name``."""
    return structlog.get_logger(name, module=name)


def _resolve_level(level: Optional[str]) -> int:
    name = (level or os.getenv("CLAWBOARD_LOG_LEVEL") or DEFAULT_LOG_LEVEL).upper()
    resolved = logging.getLevelName(name)
    if not isinstance(resolved, int):
        raise ValueError(f"Unknown log level: {name}")
    return resolved


def setup_logging(level: Optional[str] = None, log_path: Optional[Path] = None) -> Path:
    """Configure clawboard logging.

    Args:
        level: Optional override for ``CLAWBOARD_LOG_LEVEL``.
        log_path: Optional override for the log file location.

    Returns:
        The file logs are written to.
    """
    env_path = os.getenv("CLAWBOARD_LOG_PATH")
    path = log_path or (Path(env_path).expanduser() if env_path else LOG_PATH)
    path.parent.mkdir(parents=True, exist_ok=True)

    structlog.configure(
        processors=[
            structlog.contextvars.merge_contextvars,
            structlog.processors.add_log_level,
            structlog.processors.TimeStamper(fmt="iso"),
            structlog.processors.StackInfoRenderer(),
            structlog.processors.format_exc_info,
            structlog.processors.KeyValueRenderer(key_order=["timestamp", "level", "module", "event"], drop_missing=True),
        ],
        wrapper_class=structlog.make_filtering_bound_logger(_resolve_level(level)),
        logger_factory=structlog.WriteLoggerFactory(file=path.open("a", encoding="utf-8")),
        cache_logger_on_first_use=False,
    )
    return path
