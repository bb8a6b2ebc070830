"""Textual application hosting the message queue view."""

from __future__ import annotations

from typing import TYPE_CHECKING

from textual import work
from textual.app import App, ComposeResult
from textual.binding import Binding
from textual.timer import Timer
from textual.widgets import Footer

from clawboard.cli.api_client import APIError
from clawboard.cli.tui.messages import AbortSessionRequest, QueueUpdated, SessionSelected
from clawboard.cli.tui.sync import QueueSyncCoordinator, QueueView
from clawboard.cli.tui.views.queue import MessageQueueView
from clawboard.config import config
from clawboard.logging_config import get_logger

if TYPE_CHECKING:
    from clawboard.cli.api_client import ClawboardAPIClient

logger = get_logger(__name__)


class ClawboardApp(App[None]):
    """Operator console for the gateway message queue.

    The coordinator lives exactly as long as the app is mounted: it starts on
    mount and is stopped on unmount, taking its poll task, push subscription
    and flash timers with it.
    """

    TITLE = "clawboard"

    BINDINGS = [
        Binding("r", "refresh", "Refresh"),
        Binding("enter", "toggle_session", "Expand"),
        Binding("x", "abort_session", "Abort"),
        Binding("t", "toggle_all_tools", "All tools"),
        Binding("e", "toggle_more_messages", "More messages"),
        Binding("h", "toggle_history", "History"),
        Binding("a", "toggle_archive", "Archive"),
        Binding("m", "load_more_archive", "More", show=False),
        Binding("q", "quit", "Quit"),
    ]

    def __init__(
        self,
        api: ClawboardAPIClient,
        *,
        coordinator: QueueSyncCoordinator | None = None,
        tick_interval_s: float | None = None,
        **kwargs: object,
    ) -> None:
        super().__init__(**kwargs)
        self.api = api
        self.coordinator = coordinator or QueueSyncCoordinator(api)
        self.coordinator.on_change = self._on_queue_change
        self.tick_interval_s = tick_interval_s if tick_interval_s is not None else config.ui.tick_interval_s
        self._tick_timer: Timer | None = None

    def compose(self) -> ComposeResult:
        yield MessageQueueView(self.api, id="message-queue")
        yield Footer()

    @property
    def queue_view(self) -> MessageQueueView:
        return self.query_one(MessageQueueView)

    async def on_mount(self) -> None:
        await self.api.connect()
        self.queue_view.focus()
        self.coordinator.start()
        self._tick_timer = self.set_interval(self.tick_interval_s, self._on_tick)
        logger.info("clawboard started", base_url=getattr(self.api, "base_url", None))

    async def on_unmount(self) -> None:
        if self._tick_timer is not None:
            self._tick_timer.stop()
            self._tick_timer = None
        await self.coordinator.stop()
        await self.api.close()
        logger.info("clawboard stopped")

    def _on_queue_change(self, view: QueueView) -> None:
        self.post_message(QueueUpdated(view))

    def on_queue_updated(self, message: QueueUpdated) -> None:
        self.queue_view.apply_view(message.view)

    def on_session_selected(self, message: SessionSelected) -> None:
        self.sub_title = message.session_key

    def _on_tick(self) -> None:
        self.coordinator.refresh_view()
        self.queue_view.refresh_clock()

    # --- actions ---

    def action_refresh(self) -> None:
        self._refresh_now()

    @work(exclusive=True, group="refresh")
    async def _refresh_now(self) -> None:
        if not await self.coordinator.poll_once():
            self.notify("Gateway unreachable; showing last known state", severity="warning")

    def action_toggle_session(self) -> None:
        self.queue_view.toggle_selected()

    def action_toggle_all_tools(self) -> None:
        self.queue_view.toggle_all_tools()

    def action_toggle_more_messages(self) -> None:
        self.queue_view.toggle_more_messages()

    def action_abort_session(self) -> None:
        self.queue_view.abort_selected()

    def action_toggle_history(self) -> None:
        self.queue_view.toggle_history()

    def action_toggle_archive(self) -> None:
        self.queue_view.toggle_archive()

    def action_load_more_archive(self) -> None:
        self.queue_view.load_more_archive()

    def on_abort_session_request(self, message: AbortSessionRequest) -> None:
        self._abort(message.session_id)

    @work(group="abort")
    async def _abort(self, session_id: str) -> None:
        try:
            await self.api.abort_session(session_id)
        except APIError as e:
            logger.warning("Abort failed for %s: %s", session_id, e)
            self.notify(f"Abort failed: {e.detail}", severity="error")
            return
        self.notify("Abort requested")
        await self.coordinator.poll_once()
