"""Message queue view - live gateway sessions, recent history and the archive."""

from __future__ import annotations

from typing import TYPE_CHECKING

from textual import work
from textual.app import ComposeResult
from textual.binding import Binding
from textual.containers import Vertical, VerticalScroll
from textual.timer import Timer
from textual.widgets import Label

from clawboard.cli.api_client import APIError
from clawboard.cli.models import ArchivedSession, HistoricalSessionInfo, SessionRecord
from clawboard.cli.tui.messages import AbortSessionRequest, SessionSelected
from clawboard.cli.tui.sync import QueueView, SyncState
from clawboard.cli.tui.widgets.history_row import ArchiveRow, HistoryRow, TranscriptRow
from clawboard.cli.tui.widgets.queue_header import QueueHeader
from clawboard.cli.tui.widgets.session_detail import ArchiveDetail, HistoryDetail, SessionDetail, TranscriptDetail
from clawboard.cli.tui.widgets.session_row import SessionRow
from clawboard.config import config
from clawboard.constants import DETAIL_REFRESH_S
from clawboard.logging_config import get_logger

if TYPE_CHECKING:
    from clawboard.cli.api_client import ClawboardAPIClient

logger = get_logger(__name__)


class MessageQueueView(VerticalScroll):
    """Scrollable queue of session rows in stable order.

    Rows are keyed by session key and reused across updates. Newly visible
    sessions are always at the head of the order, so they are mounted in front
    of the first surviving row and nothing else moves.
    """

    BINDINGS = [
        Binding("up,k", "cursor_up", "Up", show=False),
        Binding("down,j", "cursor_down", "Down", show=False),
    ]

    DEFAULT_CSS = """
    MessageQueueView {
        height: 1fr;
    }
    MessageQueueView #queue-sessions, MessageQueueView #queue-history, MessageQueueView #queue-archive {
        height: auto;
    }
    MessageQueueView .section-title {
        width: 100%;
        padding: 0 1;
        color: $text-muted;
        margin-top: 1;
    }
    MessageQueueView #queue-empty {
        padding: 0 1;
        color: $text-muted;
    }
    """

    def __init__(self, api: ClawboardAPIClient, **kwargs: object) -> None:
        super().__init__(**kwargs)
        self.api = api
        self.current_view = QueueView()
        self.history_open = False
        self.archive_open = False
        self.archive_sessions: list[ArchivedSession] = []
        self.archive_total = 0
        self._archive_loaded = False
        self._rows: dict[str, SessionRow] = {}
        self._detail: SessionDetail | None = None
        self._detail_timer: Timer | None = None
        self.detail_refresh_s = DETAIL_REFRESH_S
        self._row_details: dict[TranscriptRow, TranscriptDetail] = {}
        self._focused_detail: TranscriptDetail | None = None
        self._selected_key: str | None = None
        self._history_source: tuple[HistoricalSessionInfo, ...] | None = None
        self._fetched_history: tuple[HistoricalSessionInfo, ...] = ()

    def compose(self) -> ComposeResult:
        yield QueueHeader(id="queue-header")
        yield Vertical(id="queue-sessions")
        yield Label("Waiting for gateway...", id="queue-empty")
        yield Label("", id="history-title", classes="section-title")
        yield Vertical(id="queue-history")
        yield Label("", id="archive-title", classes="section-title")
        yield Vertical(id="queue-archive")

    def on_mount(self) -> None:
        self._update_section_titles()

    # --- queue rows ---

    @property
    def rows(self) -> dict[str, SessionRow]:
        return dict(self._rows)

    @property
    def row_keys(self) -> list[str]:
        """Session keys in on-screen order."""
        container = self.query_one("#queue-sessions", Vertical)
        return [child.session_key for child in container.children if isinstance(child, SessionRow)]

    @property
    def expanded_key(self) -> str | None:
        return self._detail.session_key if self._detail is not None else None

    @property
    def selected_key(self) -> str | None:
        return self._selected_key

    @property
    def selected_record(self) -> SessionRecord | None:
        row = self._rows.get(self._selected_key or "")
        return row.record if row is not None else None

    def apply_view(self, view: QueueView) -> None:
        """Render ``view``, touching only rows whose record or flash state changed."""
        self.current_view = view
        self.query_one(QueueHeader).update_view(view)
        container = self.query_one("#queue-sessions", Vertical)

        wanted = {record.key for record in view.records}
        for key in [key for key in self._rows if key not in wanted]:
            if self.expanded_key == key:
                self._collapse_detail()
            self._rows.pop(key).remove()

        new_rows: list[SessionRow] = []
        anchor: SessionRow | None = None
        for record in view.records:
            flashing = record.key in view.flashing
            row = self._rows.get(record.key)
            if row is None:
                row = SessionRow(record, flashing=flashing)
                self._rows[record.key] = row
                new_rows.append(row)
                continue
            if anchor is None:
                anchor = row
            row.update_record(record, flashing=flashing)
            if self._detail is not None and self._detail.session_key == record.key:
                self._detail.update_record(record)
                self._sync_detail_refresh()

        if new_rows:
            if anchor is not None:
                container.mount(*new_rows, before=anchor)
            else:
                container.mount(*new_rows)

        empty = self.query_one("#queue-empty", Label)
        empty.display = not view.records
        if view.state is SyncState.UNINITIALIZED:
            empty.update("Waiting for gateway...")
        else:
            empty.update("No active sessions")

        self._ensure_selection()
        if self.history_open and self._history_entries() != self._history_source:
            self._render_history()
        self._update_section_titles()

    def refresh_clock(self) -> None:
        """Repaint time-dependent labels ('3m ago') without new data."""
        for row in self._rows.values():
            row.refresh()
        if self._detail is not None:
            self._detail.refresh()
        for history_row in self.query(HistoryRow):
            history_row.refresh()
        for detail in self._row_details.values():
            detail.refresh()

    # --- selection ---

    def _ensure_selection(self) -> None:
        keys = [record.key for record in self.current_view.records]
        if self._selected_key not in keys:
            self._select(keys[0] if keys else None)

    def _select(self, key: str | None) -> None:
        previous = self._rows.get(self._selected_key or "")
        if previous is not None:
            previous.remove_class("selected")
        self._selected_key = key
        row = self._rows.get(key or "")
        if row is not None:
            row.add_class("selected")
            self.post_message(SessionSelected(row.session_key))

    def _move_selection(self, delta: int) -> None:
        keys = [record.key for record in self.current_view.records]
        if not keys:
            return
        index = keys.index(self._selected_key) if self._selected_key in keys else 0
        index = max(0, min(len(keys) - 1, index + delta))
        self._select(keys[index])
        row = self._rows.get(keys[index])
        if row is not None:
            self.scroll_to_widget(row)

    def action_cursor_up(self) -> None:
        self._move_selection(-1)

    def action_cursor_down(self) -> None:
        self._move_selection(1)

    def on_session_row_pressed(self, message: SessionRow.Pressed) -> None:
        self._select(message.session_row.session_key)
        self.toggle_selected()

    # --- detail ---

    @property
    def detail_refreshing(self) -> bool:
        return self._detail_timer is not None

    def toggle_selected(self) -> None:
        """Expand the selected session, or collapse it if already expanded."""
        key = self._selected_key
        if key is None:
            return
        if self.expanded_key == key:
            self._collapse_detail()
            return
        self._collapse_detail()
        row = self._rows[key]
        row.collapsed = False
        self._detail = SessionDetail(row.record)
        self._focused_detail = self._detail
        self.query_one("#queue-sessions", Vertical).mount(self._detail, after=row)
        self._load_transcript(self._detail)
        self._sync_detail_refresh()

    def _collapse_detail(self) -> None:
        if self._detail is None:
            return
        row = self._rows.get(self._detail.session_key)
        if row is not None:
            row.collapsed = True
        self._detail.remove()
        self._detail = None
        self._sync_detail_refresh()

    def _sync_detail_refresh(self) -> None:
        """Reload the live detail every DETAIL_REFRESH_S while its session is active."""
        live = self._detail is not None and self._detail.record.is_active
        if live and self._detail_timer is None:
            self._detail_timer = self.set_interval(self.detail_refresh_s, self._refresh_detail)
        elif not live and self._detail_timer is not None:
            self._detail_timer.stop()
            self._detail_timer = None

    def _refresh_detail(self) -> None:
        if self._detail is not None:
            self._load_transcript(self._detail)

    def toggle_all_tools(self) -> None:
        """Switch the focused detail between the compact and the full tool list."""
        detail = self._open_focused_detail()
        if detail is not None:
            detail.show_all_tools = not detail.show_all_tools
            self._load_transcript(detail)

    def toggle_more_messages(self) -> None:
        """Switch the focused detail between the recent and the extended message list."""
        detail = self._open_focused_detail()
        if detail is not None:
            detail.show_more_messages = not detail.show_more_messages
            self._load_transcript(detail)

    def _open_focused_detail(self) -> TranscriptDetail | None:
        detail = self._focused_detail
        return detail if detail is not None and self._is_open(detail) else None

    def _is_open(self, detail: TranscriptDetail) -> bool:
        return detail is self._detail or any(open_detail is detail for open_detail in self._row_details.values())

    def _load_transcript(self, detail: TranscriptDetail) -> None:
        self.run_worker(
            self._fetch_transcript(detail),
            group=f"transcript-{id(detail)}",
            exclusive=True,
        )

    async def _fetch_transcript(self, detail: TranscriptDetail) -> None:
        transcript_id = detail.transcript_id
        try:
            tools = await self.api.list_session_tools(transcript_id, all_tools=detail.show_all_tools)
            messages = await self.api.list_session_messages(transcript_id, limit=detail.message_limit)
        except APIError as e:
            logger.debug("Transcript load failed", transcript_id=transcript_id, error=str(e))
            if self._is_open(detail):
                detail.set_load_error(f"Transcript unavailable: {e.detail}")
            return
        if self._is_open(detail):
            detail.set_transcript(tools, messages)

    # --- history and archive details ---

    def on_transcript_row_pressed(self, message: TranscriptRow.Pressed) -> None:
        self.toggle_row_detail(message.row)

    def toggle_row_detail(self, row: TranscriptRow) -> None:
        """Expand a history or archive row into its transcript detail, or collapse it."""
        detail = self._row_details.pop(row, None)
        if detail is not None:
            row.expanded = False
            detail.remove()
            return
        self._expand_row(row)

    def _expand_row(self, row: TranscriptRow, *, carry_over: TranscriptDetail | None = None) -> None:
        if isinstance(row, HistoryRow):
            detail: TranscriptDetail = HistoryDetail(row.info)
        elif isinstance(row, ArchiveRow):
            detail = ArchiveDetail(row.session)
        else:
            return
        row.expanded = True
        self._row_details[row] = detail
        if carry_over is not None:
            detail.show_all_tools = carry_over.show_all_tools
            detail.show_more_messages = carry_over.show_more_messages
            detail.tools = carry_over.tools
            detail.messages = carry_over.messages
            if self._focused_detail is carry_over:
                self._focused_detail = detail
        else:
            self._focused_detail = detail
        row.parent.mount(detail, after=row)
        if carry_over is None or carry_over.messages is None:
            self._load_transcript(detail)

    def _forget_row_details(self, rows: list[TranscriptRow]) -> None:
        for row in rows:
            self._row_details.pop(row, None)

    # --- abort ---

    def abort_selected(self) -> None:
        record = self.selected_record
        if record is None:
            return
        if not record.is_active:
            self.notify("Session is idle; nothing to abort", severity="warning")
            return
        self.post_message(AbortSessionRequest(record.key, record.session_id or record.key))

    # --- history ---

    def toggle_history(self) -> None:
        self.history_open = not self.history_open
        if self.history_open:
            self._render_history()
            if not self.current_view.historical_sessions:
                self._load_history()
        else:
            container = self.query_one("#queue-history", Vertical)
            self._forget_row_details(list(container.query(HistoryRow)))
            container.remove_children()
            self._history_source = None
        self._update_section_titles()

    def _history_entries(self) -> tuple[HistoricalSessionInfo, ...]:
        """Snapshot history when the gateway sent one, else the last fetched list."""
        return self.current_view.historical_sessions or self._fetched_history

    def _render_history(self) -> None:
        """Rebuild the history rows, keeping expanded entries expanded."""
        container = self.query_one("#queue-history", Vertical)
        previous = {row.transcript_id: self._row_details[row] for row in container.query(HistoryRow) if row in self._row_details}
        self._forget_row_details(list(container.query(HistoryRow)))
        container.remove_children()
        self._history_source = self._history_entries()
        if not self._history_source:
            return
        rows = [HistoryRow(info) for info in self._history_source]
        container.mount(*rows)
        for row in rows:
            old = previous.get(row.transcript_id)
            if old is not None:
                self._expand_row(row, carry_over=old)

    @work(exclusive=True, group="history")
    async def _load_history(self) -> None:
        try:
            sessions = await self.api.get_history()
        except APIError as e:
            logger.debug("History load failed", error=str(e))
            return
        self._fetched_history = sessions
        if self.history_open and self._history_entries() != self._history_source:
            self._render_history()
        self._update_section_titles()

    # --- archive ---

    def toggle_archive(self) -> None:
        self.archive_open = not self.archive_open
        container = self.query_one("#queue-archive", Vertical)
        container.display = self.archive_open
        if self.archive_open and not self._archive_loaded:
            self._load_archive_page(0)
        self._update_section_titles()

    def load_more_archive(self) -> None:
        if not self.archive_open or len(self.archive_sessions) >= self.archive_total:
            return
        self._load_archive_page(len(self.archive_sessions))

    @work(exclusive=True, group="archive")
    async def _load_archive_page(self, offset: int) -> None:
        try:
            page = await self.api.list_archive(config.ui.archive_page_size, offset)
        except APIError as e:
            logger.warning("Archive load failed: %s", e)
            self.notify(f"Archive load failed: {e.detail}", severity="error")
            return
        self._archive_loaded = True
        self.archive_total = page.total
        known = {session.session_id for session in self.archive_sessions}
        fresh = [session for session in page.sessions if session.session_id not in known]
        self.archive_sessions.extend(fresh)
        if fresh:
            self.query_one("#queue-archive", Vertical).mount(*(ArchiveRow(session) for session in fresh))
        self._update_section_titles()

    def _update_section_titles(self) -> None:
        history_count = len(self._history_entries())
        history_marker = "▼" if self.history_open else "▶"
        self.query_one("#history-title", Label).update(f"{history_marker} History ({history_count})  · h")

        archive_marker = "▼" if self.archive_open else "▶"
        archive_text = f"{archive_marker} Archive"
        if self._archive_loaded:
            archive_text += f" ({len(self.archive_sessions)} of {self.archive_total})"
            if self.archive_open and len(self.archive_sessions) < self.archive_total:
                archive_text += "  · m to load more"
        self.query_one("#archive-title", Label).update(f"{archive_text}  · a")
