"""Session row for the message queue: state dot, label, channel, preview, age."""

from __future__ import annotations

from rich.style import Style
from rich.text import Text
from textual.events import Click
from textual.message import Message
from textual.reactive import reactive
from textual.widget import Widget

from clawboard.cli.models import ActivityState, SessionRecord
from clawboard.cli.tui.base import ClawboardMixin
from clawboard.cli.tui.utils.formatters import channel_info, format_time_ago, state_text, truncate_text
from clawboard.config import config

STATE_COLORS = {
    ActivityState.IDLE: "#727578",
    ActivityState.BUSY: "#d7af5f",
    ActivityState.THINKING: "#af87d7",
    ActivityState.TOOL_USE: "#87afd7",
    ActivityState.TYPING: "#5faf5f",
}

_DIM = Style(color="#727578")
_LABEL = Style(color="#d0d0d0", bold=True)


class SessionRow(ClawboardMixin, Widget):
    """One live session.

    Collapsed: `● label  💬 discord  "preview"  Thinking  3m ago`
    The row only repaints when handed a different record object or when its
    flash state flips; the store hands back the same object for unchanged
    sessions.
    """

    class Pressed(Message):
        """Posted when a session row is clicked."""

        def __init__(self, session_row: SessionRow) -> None:
            super().__init__()
            self.session_row = session_row

    DEFAULT_CSS = """
    SessionRow {
        width: 100%;
        height: 1;
        padding: 0 1;
    }
    SessionRow.selected {
        background: $boost;
    }
    SessionRow.flash {
        background: $warning 25%;
    }
    """

    collapsed = reactive(True)
    flashing = reactive(False)

    def __init__(self, record: SessionRecord, *, flashing: bool = False, **kwargs: object) -> None:
        super().__init__(**kwargs)
        self.record = record
        self.set_reactive(SessionRow.flashing, flashing)
        self.set_class(flashing, "flash")
        self.update_count = 0

    @property
    def session_key(self) -> str:
        return self.record.key

    def update_record(self, record: SessionRecord, *, flashing: bool) -> bool:
        """Swap in ``record``; returns False when nothing visible changed."""
        if record is self.record and flashing == self.flashing:
            return False
        self.update_count += 1
        self.record = record
        self.flashing = flashing
        self.refresh()
        return True

    def _build_line(self) -> Text:
        record = self.record
        line = Text()
        dot = "●" if record.is_active else "○"
        line.append(f"{dot} ", style=STATE_COLORS.get(record.activity_state, "#d0d0d0"))

        collapse_char = "▶" if self.collapsed else "▼"
        line.append(f"{collapse_char} ", style=_DIM)

        line.append(record.title, style=_LABEL)

        emoji, channel_label = channel_info(record.channel, record.key, record.label, record.kind)
        line.append(f"  {emoji} {channel_label}", style=_DIM)

        if record.last_message and record.last_message.preview:
            preview = truncate_text(record.last_message.preview, config.ui.preview_chars)
            line.append(f'  "{preview}"')

        if record.is_active:
            line.append(f"  {state_text(record.activity_state)}", style=STATE_COLORS[record.activity_state])

        if record.last_activity:
            line.append(f"  {format_time_ago(record.last_activity)}", style=_DIM)
        return line

    def render(self) -> Text:
        return self._build_line()

    def on_click(self, event: Click) -> None:
        """Post Pressed message when clicked."""
        event.stop()
        self.post_message(self.Pressed(self))

    def watch_collapsed(self, _value: bool) -> None:
        self.refresh()

    def watch_flashing(self, value: bool) -> None:
        self.set_class(value, "flash")
