"""Summary line above the message queue."""

from __future__ import annotations

from rich.text import Text
from textual.widget import Widget

from clawboard.cli.tui.base import ClawboardMixin
from clawboard.cli.tui.sync import QueueView, SyncState


class QueueHeader(ClawboardMixin, Widget):
    """`● connected  12 sessions  3 active`"""

    DEFAULT_CSS = """
    QueueHeader {
        width: 100%;
        height: 1;
        padding: 0 1;
        background: $panel;
    }
    """

    def __init__(self, **kwargs: object) -> None:
        super().__init__(**kwargs)
        self.current_view = QueueView()

    def update_view(self, view: QueueView) -> None:
        previous = self.current_view
        self.current_view = view
        if (
            previous.connected != view.connected
            or previous.total_sessions != view.total_sessions
            or previous.active_sessions != view.active_sessions
            or previous.state is not view.state
        ):
            self.refresh()

    def render(self) -> Text:
        view = self.current_view
        line = Text()
        if view.connected:
            line.append("● ", style="green")
            line.append("gateway connected", style="bold")
        else:
            line.append("○ ", style="red")
            line.append("gateway disconnected", style="dim")
        line.append(f"  {view.total_sessions} sessions", style="dim")
        if view.active_sessions:
            line.append(f"  {view.active_sessions} active", style="bold yellow")
        if view.state is SyncState.UNINITIALIZED:
            line.append("  loading...", style="dim italic")
        elif view.state is SyncState.POLLING:
            line.append("  polling", style="dim italic")
        else:
            line.append("  live", style="dim italic")
        return line
