"""Formatting utilities for TUI display."""

from __future__ import annotations

import re
import time
from datetime import datetime

from clawboard.cli.models import ActivityState

_STATE_TEXT = {
    ActivityState.THINKING: "Thinking",
    ActivityState.TYPING: "Typing",
    ActivityState.TOOL_USE: "Tool Use",
    ActivityState.BUSY: "Busy",
    ActivityState.IDLE: "Idle",
}

_AGENT_LABEL_PATTERN = re.compile(r"\bagent\b", re.IGNORECASE)


def _now_ms() -> int:
    return int(time.time() * 1000)


def format_time_ago(timestamp_ms: int, now_ms: int | None = None) -> str:
    """Convert epoch milliseconds to '42s ago', '3m ago', '1h 5m ago'."""
    now_ms = _now_ms() if now_ms is None else now_ms
    seconds = (now_ms - timestamp_ms) // 1000
    if seconds < 10:
        return "just now"
    if seconds < 60:
        return f"{seconds}s ago"
    minutes = seconds // 60
    if minutes < 60:
        return f"{minutes}m ago"
    hours = minutes // 60
    if hours < 24:
        return f"{hours}h {minutes % 60}m ago"
    return f"{hours // 24}d ago"


def format_iso_time_ago(iso_timestamp: str | None, now_ms: int | None = None) -> str:
    """Same as :func:`format_time_ago` for ISO timestamps. Empty string if unparseable."""
    if not iso_timestamp:
        return ""
    try:
        dt = datetime.fromisoformat(iso_timestamp.replace("Z", "+00:00"))
    except ValueError:
        return ""
    return format_time_ago(int(dt.timestamp() * 1000), now_ms)


def format_tokens(count: int) -> str:
    if count < 1000:
        return str(count)
    if count < 1_000_000:
        return f"{count / 1000:.1f}K"
    return f"{count / 1_000_000:.2f}M"


def format_file_size(size: int) -> str:
    if size < 1024:
        return f"{size}B"
    if size < 1024 * 1024:
        return f"{size / 1024:.1f}KB"
    return f"{size / (1024 * 1024):.1f}MB"


def format_duration(duration_ms: int) -> str:
    if duration_ms < 1000:
        return f"{duration_ms}ms"
    if duration_ms < 60_000:
        return f"{duration_ms / 1000:.1f}s"
    return f"{duration_ms // 60_000}m {round((duration_ms % 60_000) / 1000)}s"


def truncate_text(text: str | None, max_len: int = 60) -> str:
    """Truncate text with ellipsis if too long."""
    if not text:
        return ""
    # Collapse whitespace
    text = " ".join(text.split())
    if len(text) <= max_len:
        return text
    return text[: max_len - 1] + "…"


def state_text(state: ActivityState) -> str:
    return _STATE_TEXT.get(state, state.value)


def is_agent_session(session_key: str, label: str = "", kind: str = "") -> bool:
    """Sub-agent sessions are recognised by kind, key markers, or an 'agent' label that is not a cron job."""
    if kind == "subagent":
        return True
    if ":subagent:" in session_key or ":g-agent-" in session_key:
        return True
    return bool(label and _AGENT_LABEL_PATTERN.search(label) and "cron" not in label.lower())


def channel_info(channel: str, session_key: str, label: str = "", kind: str = "") -> tuple[str, str]:
    """Return ``(emoji, label)`` for a session's channel badge."""
    if is_agent_session(session_key, label, kind):
        return "🤖", "agent"

    if channel in ("unknown", "internal", ""):
        if ":heartbeat" in session_key:
            return "🔄", "system"
        if ":cron:" in session_key:
            return "⏰", "cron"
        return "🔧", "internal"

    lowered = channel.lower()
    if lowered == "discord":
        return "💬", "discord"
    if lowered == "heartbeat":
        return "💓", "heartbeat"
    if lowered == "telegram":
        return "✈️", "telegram"
    return "📡", channel


def token_bar_class(percent_used: float) -> str:
    """Severity bucket for the context-usage bar: low, medium, high or critical."""
    if percent_used < 30:
        return "low"
    if percent_used < 60:
        return "medium"
    if percent_used < 85:
        return "high"
    return "critical"


def token_bar(percent_used: float, width: int = 20) -> str:
    """Render a fixed-width text bar for a 0-100 percentage."""
    clamped = max(0.0, min(100.0, percent_used))
    filled = round(clamped / 100 * width)
    return "█" * filled + "░" * (width - filled)
