"""Rows for recently completed and archived sessions.

Clicking a row asks the queue view to expand its transcript detail below it.
"""

from __future__ import annotations

from rich.text import Text
from textual.events import Click
from textual.message import Message
from textual.reactive import reactive
from textual.widget import Widget

from clawboard.cli.models import ArchivedSession, HistoricalSessionInfo
from clawboard.cli.tui.base import ClawboardMixin
from clawboard.cli.tui.utils.formatters import (
    channel_info,
    format_duration,
    format_file_size,
    format_iso_time_ago,
    format_time_ago,
    format_tokens,
)


class TranscriptRow(ClawboardMixin, Widget):
    """Single-line row that can be expanded into a transcript detail."""

    class Pressed(Message):
        """Posted when the row is clicked."""

        def __init__(self, row: TranscriptRow) -> None:
            super().__init__()
            self.row = row

    DEFAULT_CSS = """
    TranscriptRow {
        width: 100%;
        height: 1;
        padding: 0 1;
    }
    """

    expanded = reactive(False)

    @property
    def transcript_id(self) -> str:
        raise NotImplementedError

    def on_click(self, event: Click) -> None:
        event.stop()
        self.post_message(self.Pressed(self))

    def watch_expanded(self, _value: bool) -> None:
        self.refresh()

    def _marker(self) -> str:
        return "▼ " if self.expanded else "▶ "


class HistoryRow(TranscriptRow):
    """Single completed session in the history section."""

    def __init__(self, info: HistoricalSessionInfo, **kwargs: object) -> None:
        super().__init__(**kwargs)
        self.info = info

    @property
    def transcript_id(self) -> str:
        return self.info.session_id

    def render(self) -> Text:
        info = self.info
        line = Text(self._marker(), style="dim")
        line.append("✓ ", style="green")
        line.append(info.title, style="bold")
        emoji, channel_label = channel_info(info.channel, info.session_id, info.label, info.kind)
        line.append(f"  {emoji} {channel_label}", style="dim")
        if info.model:
            line.append(f"  {info.model}", style="dim")
        if info.token_usage.total:
            line.append(f"  {format_tokens(info.token_usage.total)} tok", style="dim")
        if info.duration_ms:
            line.append(f"  {format_duration(info.duration_ms)}", style="dim")
        if info.completed_at:
            line.append(f"  {format_time_ago(info.completed_at)}", style="dim italic")
        return line


class ArchiveRow(TranscriptRow):
    """Single archived transcript in the archive section."""

    def __init__(self, session: ArchivedSession, **kwargs: object) -> None:
        super().__init__(**kwargs)
        self.session = session

    @property
    def transcript_id(self) -> str:
        return self.session.session_id

    def render(self) -> Text:
        session = self.session
        line = Text(self._marker(), style="dim")
        line.append(session.label or session.session_id[:8], style="bold" if session.label else "")
        line.append(f"  {format_file_size(session.file_size)}", style="dim")
        age = format_iso_time_ago(session.last_activity or session.last_modified)
        if age:
            line.append(f"  {age}", style="dim italic")
        return line
