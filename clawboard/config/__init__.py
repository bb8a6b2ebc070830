"""Global configuration management.

Config is loaded at module import time and available globally via:
    from clawboard.config import config

Unlike a daemon config, the YAML file is optional: a console pointed at a local
gateway runs on defaults alone.
"""

from __future__ import annotations

import os
from dataclasses import dataclass
from pathlib import Path
from typing import Any

import yaml
from dotenv import load_dotenv

from clawboard.constants import (
    ARCHIVE_PAGE_SIZE,
    DEFAULT_API_BASE_URL,
    FLASH_DURATION_MS,
    POLL_INTERVAL_S,
    PREVIEW_CHARS,
    UI_TICK_INTERVAL_S,
    VISIBILITY_WINDOW_S,
)
from clawboard.paths import DEFAULT_CONFIG_PATH
from clawboard.utils import deep_merge, expand_env_vars

# Load .env (allow override for tests)
_env_path = os.getenv("CLAWBOARD_ENV_PATH")
load_dotenv(Path(_env_path).expanduser() if _env_path else None)


@dataclass
class ApiConfig:
    """Gateway dashboard API endpoint settings."""

    base_url: str
    ws_url: str
    token: str | None
    timeout_s: float


@dataclass
class QueueConfig:
    """Message queue reconciliation settings.

    Attributes:
        poll_interval_s: Fallback full-snapshot poll period.
        visibility_window_s: How long an idle session stays in the list after its last activity.
        flash_duration_ms: Duration of the "just became active" highlight.
        reject_stale_polls: Drop poll results whose fetch started before the latest push was applied.
    """

    poll_interval_s: float
    visibility_window_s: float
    flash_duration_ms: int
    reject_stale_polls: bool


@dataclass
class UIConfig:
    """TUI display settings."""

    tick_interval_s: float
    preview_chars: int
    archive_page_size: int


@dataclass
class Config:
    api: ApiConfig
    queue: QueueConfig
    ui: UIConfig


# Default configuration values (single source of truth for user-configurable keys)
DEFAULT_CONFIG: dict[str, object] = {  # guard: loose-dict - YAML configuration structure
    "api": {
        "base_url": DEFAULT_API_BASE_URL,
        "ws_url": "",
        "token": None,
        "timeout_s": 5.0,
    },
    "queue": {
        "poll_interval_s": POLL_INTERVAL_S,
        "visibility_window_s": VISIBILITY_WINDOW_S,
        "flash_duration_ms": FLASH_DURATION_MS,
        "reject_stale_polls": True,
    },
    "ui": {
        "tick_interval_s": UI_TICK_INTERVAL_S,
        "preview_chars": PREVIEW_CHARS,
        "archive_page_size": ARCHIVE_PAGE_SIZE,
    },
}


def derive_ws_url(base_url: str) -> str:
    """Build the push endpoint from the REST base URL (``http`` → ``ws``, ``/ws`` suffix)."""
    url = base_url.rstrip("/")
    if url.startswith("https://"):
        url = "wss://" + url[len("https://") :]
    elif url.startswith("http://"):
        url = "ws://" + url[len("http://") :]
    return f"{url}/ws"


def _positive_float(section: str, key: str, value: object) -> float:
    try:
        number = float(value)  # type: ignore[arg-type]
    except (TypeError, ValueError) as e:
        raise ValueError(f"Config {section}.{key} must be a number, got {value!r}") from e
    if number <= 0:
        raise ValueError(f"Config {section}.{key} must be positive, got {number}")
    return number


def _positive_int(section: str, key: str, value: object) -> int:
    return int(_positive_float(section, key, value))


def _build_config(raw: dict[str, object]) -> Config:  # guard: loose-dict - YAML deserialization input
    """Build typed Config from raw dict with proper type conversion."""
    api_raw: Any = raw["api"]
    queue_raw: Any = raw["queue"]
    ui_raw: Any = raw["ui"]

    base_url = str(api_raw["base_url"]).rstrip("/")
    ws_url = str(api_raw.get("ws_url") or "") or derive_ws_url(base_url)
    token = api_raw.get("token") or os.getenv("CLAWBOARD_TOKEN")

    return Config(
        api=ApiConfig(
            base_url=base_url,
            ws_url=ws_url,
            token=str(token) if token else None,
            timeout_s=_positive_float("api", "timeout_s", api_raw["timeout_s"]),
        ),
        queue=QueueConfig(
            poll_interval_s=_positive_float("queue", "poll_interval_s", queue_raw["poll_interval_s"]),
            visibility_window_s=_positive_float("queue", "visibility_window_s", queue_raw["visibility_window_s"]),
            flash_duration_ms=_positive_int("queue", "flash_duration_ms", queue_raw["flash_duration_ms"]),
            reject_stale_polls=bool(queue_raw.get("reject_stale_polls", True)),
        ),
        ui=UIConfig(
            tick_interval_s=_positive_float("ui", "tick_interval_s", ui_raw["tick_interval_s"]),
            preview_chars=_positive_int("ui", "preview_chars", ui_raw["preview_chars"]),
            archive_page_size=_positive_int("ui", "archive_page_size", ui_raw["archive_page_size"]),
        ),
    )


def load_config(path: Path | None = None) -> Config:
    """Load config.yml (optional), expand env vars and merge over defaults.

    Args:
        path: Explicit config path. Defaults to ``CLAWBOARD_CONFIG_PATH`` or ``~/.clawboard/config.yml``.

    Raises:
        ValueError: If the file is not a mapping or holds invalid values.
    """
    if path is None:
        env_path = os.getenv("CLAWBOARD_CONFIG_PATH")
        path = Path(env_path).expanduser() if env_path else DEFAULT_CONFIG_PATH

    user_config: Any = {}
    if path.exists():
        with open(path, encoding="utf-8") as f:
            raw_user_config = yaml.safe_load(f)
        if raw_user_config is None:
            raw_user_config = {}
        if not isinstance(raw_user_config, dict):
            raise ValueError(f"Config file {path} must contain a mapping at the top level")
        user_config = expand_env_vars(raw_user_config)

    merged = deep_merge(DEFAULT_CONFIG, user_config)
    return _build_config(merged)


config = load_config()
