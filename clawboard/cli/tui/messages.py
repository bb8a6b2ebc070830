"""Custom Textual messages for TUI inter-widget communication."""

from __future__ import annotations

from textual.message import Message

from clawboard.cli.tui.sync import QueueView

# --- Data refresh messages ---


class QueueUpdated(Message):
    """The sync coordinator published a new queue view."""

    def __init__(self, view: QueueView) -> None:
        super().__init__()
        self.view = view


# --- Session interaction messages ---


class SessionSelected(Message):
    """Cursor moved to a session row."""

    def __init__(self, session_key: str) -> None:
        super().__init__()
        self.session_key = session_key


class AbortSessionRequest(Message):
    """Request to abort the running turn of a session."""

    def __init__(self, session_key: str, session_id: str) -> None:
        super().__init__()
        self.session_key = session_key
        self.session_id = session_id
