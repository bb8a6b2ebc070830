"""Expanded detail panels: context usage, model, tools and messages of one transcript.

SessionDetail sits under a live SessionRow; HistoryDetail and ArchiveDetail sit
under the rows of the history and archive sections. All three share the
transcript part (tool calls and recent messages loaded from the gateway).
"""

from __future__ import annotations

from rich.style import Style
from rich.text import Text
from textual.widget import Widget

from clawboard.cli.models import (
    ArchivedSession,
    HistoricalSessionInfo,
    SessionRecord,
    TokenUsage,
    ToolCall,
    ToolPage,
    TranscriptMessage,
)
from clawboard.cli.tui.base import ClawboardMixin
from clawboard.cli.tui.utils.formatters import (
    format_duration,
    format_file_size,
    format_iso_time_ago,
    format_time_ago,
    format_tokens,
    token_bar,
    token_bar_class,
    truncate_text,
)
from clawboard.constants import EXPANDED_MESSAGES_LIMIT, RECENT_MESSAGES_LIMIT
from clawboard.logging_config import get_logger

logger = get_logger(__name__)

RENDER_FAILED_TEXT = "Failed to render session detail"

_DETAIL_TEXT_LIMIT = 70
_CONNECTOR = "│ "

TOKEN_BAR_STYLES = {
    "low": Style(color="#5faf5f"),
    "medium": Style(color="#d7af5f"),
    "high": Style(color="#d7875f"),
    "critical": Style(color="#d75f5f", bold=True),
}
TOOL_STATUS_ICONS = {"running": "⟳", "done": "✓", "error": "✘"}

_DIM = Style(color="#727578")
_NORMAL = Style(color="#d0d0d0")
_FAIL = Style(color="#d75f5f")


def _line(text: str = "", style: Style = _DIM) -> Text:
    line = Text(_CONNECTOR, style=_DIM)
    line.append(text, style=style)
    return line


def _token_line(usage: TokenUsage) -> Text:
    bucket = token_bar_class(usage.percent_used)
    line = _line("Context ")
    line.append(token_bar(usage.percent_used), style=TOKEN_BAR_STYLES[bucket])
    line.append(f" {usage.percent_used:.0f}%", style=TOKEN_BAR_STYLES[bucket])
    line.append(f"  {format_tokens(usage.total)} tokens", style=_NORMAL)
    if usage.context:
        line.append(f" / {format_tokens(usage.context)}", style=_DIM)
    return line


class TranscriptDetail(ClawboardMixin, Widget):
    """Base for detail panels backed by a session transcript.

    Transcript data is loaded after mount and may be missing, partial or odd.
    Any exception while building the panel is caught here and replaced by a
    one-line notice, so the rest of the queue keeps rendering.
    """

    DEFAULT_CSS = """
    TranscriptDetail {
        width: 100%;
        height: auto;
        padding: 0 1 0 3;
    }
    """

    def __init__(self, **kwargs: object) -> None:
        super().__init__(**kwargs)
        self.tools: ToolPage | None = None
        self.messages: list[TranscriptMessage] | None = None
        self.load_error: str | None = None
        self.show_all_tools = False
        self.show_more_messages = False

    @property
    def transcript_id(self) -> str:
        """Session id the transcript endpoints are queried with."""
        raise NotImplementedError

    @property
    def message_limit(self) -> int:
        return EXPANDED_MESSAGES_LIMIT if self.show_more_messages else RECENT_MESSAGES_LIMIT

    def set_transcript(self, tools: ToolPage | None, messages: list[TranscriptMessage] | None) -> None:
        self.tools = tools
        self.messages = messages
        self.load_error = None
        self.refresh(layout=True)

    def set_load_error(self, error: str) -> None:
        self.load_error = error
        self.refresh(layout=True)

    def render(self) -> Text:
        try:
            result = self.build_detail()
        except Exception:
            logger.exception("Session detail render failed", transcript_id=self.transcript_id)
            return Text(RENDER_FAILED_TEXT, style=_FAIL)
        return result

    def build_detail(self) -> Text:
        return Text("\n").join([*self.summary_lines(), *self.transcript_lines()])

    def summary_lines(self) -> list[Text]:
        return []

    def fallback_tools(self) -> tuple[ToolCall, ...]:
        """Tools to show before the transcript has loaded."""
        return ()

    def transcript_lines(self) -> list[Text]:
        lines: list[Text] = []
        tools = self.tools.tools if self.tools is not None else self.fallback_tools()
        total = self.tools.total if self.tools is not None else len(tools)
        if tools:
            header = _line(f"Tools ({len(tools)} of {total})")
            if self.show_all_tools:
                header.append("  · t compact", style=_DIM)
            elif total > len(tools):
                header.append("  · t show all", style=_DIM)
            lines.append(header)
            lines.extend(self._tool_line(tool) for tool in tools)

        if self.messages:
            header = _line(f"Messages (last {self.message_limit})")
            header.append("  · e fewer" if self.show_more_messages else "  · e more", style=_DIM)
            lines.append(header)
            lines.extend(self._message_line(message) for message in self.messages)
        elif self.messages is None and self.load_error is None:
            lines.append(_line("loading transcript..."))

        if self.load_error:
            lines.append(_line(self.load_error, _FAIL))
        return lines

    @staticmethod
    def _tool_line(tool: ToolCall) -> Text:
        style = _FAIL if tool.status == "error" else _NORMAL
        line = _line(f"{TOOL_STATUS_ICONS.get(tool.status, '·')} {tool.name}", style)
        if tool.duration_ms is not None:
            line.append(f" {format_duration(tool.duration_ms)}", style=_DIM)
        if tool.input:
            line.append(f"  {truncate_text(tool.input, _DETAIL_TEXT_LIMIT)}", style=_DIM)
        if tool.timestamp:
            line.append(f"  {format_time_ago(tool.timestamp)}", style=_DIM)
        return line

    @staticmethod
    def _message_line(message: TranscriptMessage) -> Text:
        line = _line(f"{message.role}: ")
        text = truncate_text(message.text, _DETAIL_TEXT_LIMIT)
        if message.truncated and not text.endswith("…"):
            text += "…"
        line.append(text, style=_NORMAL)
        return line


class SessionDetail(TranscriptDetail):
    """Detail lines shown under an expanded SessionRow."""

    def __init__(self, record: SessionRecord, **kwargs: object) -> None:
        super().__init__(**kwargs)
        self.record = record

    @property
    def session_key(self) -> str:
        return self.record.key

    @property
    def transcript_id(self) -> str:
        return self.record.session_id or self.record.key

    def update_record(self, record: SessionRecord) -> None:
        if record is self.record:
            return
        self.record = record
        self.refresh(layout=True)

    def fallback_tools(self) -> tuple[ToolCall, ...]:
        return self.record.recent_tools

    def summary_lines(self) -> list[Text]:
        record = self.record
        meta = _line(record.model or "unknown model", _NORMAL)
        if record.kind:
            meta.append(f"  {record.kind}", style=_DIM)
        meta.append(f"  {self.transcript_id}", style=_DIM)
        if record.run_id:
            meta.append(f"  run {record.run_id}", style=_DIM)
        return [_token_line(record.token_usage), meta]


class HistoryDetail(TranscriptDetail):
    """Detail lines shown under an expanded HistoryRow."""

    def __init__(self, info: HistoricalSessionInfo, **kwargs: object) -> None:
        super().__init__(**kwargs)
        self.info = info

    @property
    def transcript_id(self) -> str:
        return self.info.session_id

    def summary_lines(self) -> list[Text]:
        info = self.info
        meta = _line(info.model or "unknown model", _NORMAL)
        if info.kind:
            meta.append(f"  {info.kind}", style=_DIM)
        meta.append(f"  {info.session_id}", style=_DIM)

        timing = _line("Ran ")
        timing.append(format_duration(info.duration_ms) if info.duration_ms else "?", style=_NORMAL)
        if info.started_at:
            timing.append(f"  started {format_time_ago(info.started_at)}", style=_DIM)
        if info.completed_at:
            timing.append(f"  finished {format_time_ago(info.completed_at)}", style=_DIM)
        return [_token_line(info.token_usage), meta, timing]


class ArchiveDetail(TranscriptDetail):
    """Detail lines shown under an expanded ArchiveRow."""

    def __init__(self, session: ArchivedSession, **kwargs: object) -> None:
        super().__init__(**kwargs)
        self.session = session

    @property
    def transcript_id(self) -> str:
        return self.session.session_id

    def summary_lines(self) -> list[Text]:
        session = self.session
        meta = _line(session.file_name or session.session_id, _NORMAL)
        meta.append(f"  {format_file_size(session.file_size)}", style=_DIM)

        activity = _line("Active ")
        first = format_iso_time_ago(session.first_activity)
        last = format_iso_time_ago(session.last_activity or session.last_modified)
        activity.append(f"{first or '?'} → {last or '?'}", style=_NORMAL)
        return [meta, activity]
