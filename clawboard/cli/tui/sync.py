"""Feeds the queue store from the fallback poll and the push feed.

Data flow per update::

    poll / push -> SnapshotStore (reconcile) -> StableOrderTracker
                -> FlashTracker (push only) -> QueueView -> on_change

Push messages arrive on the WebSocket reader thread and are handed to the
event loop before they touch any state, so every merge runs on the loop thread.
"""

from __future__ import annotations

import asyncio
import time
from collections.abc import Callable, Mapping
from dataclasses import dataclass, field
from enum import Enum
from typing import Protocol

from pydantic import TypeAdapter, ValidationError

from clawboard.cli.api_client import APIError, PushHandler
from clawboard.cli.models import HistoricalSessionInfo, QueueSnapshot, SessionRecord, WsMessage
from clawboard.cli.tui.highlights import FlashTracker, Scheduler
from clawboard.cli.tui.ordering import StableOrderTracker
from clawboard.cli.tui.queue_store import SnapshotStore
from clawboard.config import config
from clawboard.constants import QUEUE_UPDATE_TOPIC
from clawboard.logging_config import get_logger

logger = get_logger(__name__)

_SNAPSHOT_ADAPTER = TypeAdapter(QueueSnapshot)


class QueueApi(Protocol):
    async def get_queue(self) -> QueueSnapshot: ...

    def subscribe(self, topic: str, handler: PushHandler) -> Callable[[], None]: ...


class SyncState(str, Enum):
    """Which sources have delivered data so far.

    PUSH_ACTIVE is informational: the poll keeps running as a backstop.
    """

    UNINITIALIZED = "uninitialized"
    POLLING = "polling"
    PUSH_ACTIVE = "push_active"


@dataclass(frozen=True)
class QueueView:
    """Everything the queue view renders, in display order. Read-only."""

    records: tuple[SessionRecord, ...] = ()
    active_sessions: int = 0
    total_sessions: int = 0
    connected: bool = False
    historical_sessions: tuple[HistoricalSessionInfo, ...] = ()
    flashing: frozenset[str] = field(default_factory=frozenset)
    state: SyncState = SyncState.UNINITIALIZED
    has_data: bool = False


def _wall_clock_ms() -> int:
    return int(time.time() * 1000)


class QueueSyncCoordinator:
    """Owns the queue store, order tracker and flash tracker for one view."""

    def __init__(
        self,
        api: QueueApi,
        *,
        poll_interval_s: float | None = None,
        visibility_window_s: float | None = None,
        flash_duration_ms: int | None = None,
        reject_stale_polls: bool | None = None,
        on_change: Callable[[QueueView], None] | None = None,
        wall_clock_ms: Callable[[], int] = _wall_clock_ms,
        monotonic: Callable[[], float] = time.monotonic,
        flash_scheduler: Scheduler | None = None,
    ) -> None:
        queue_cfg = config.queue
        self.api = api
        self.poll_interval_s = poll_interval_s if poll_interval_s is not None else queue_cfg.poll_interval_s
        window_s = visibility_window_s if visibility_window_s is not None else queue_cfg.visibility_window_s
        self.on_change = on_change
        self._wall_clock_ms = wall_clock_ms
        self._monotonic = monotonic

        self.store = SnapshotStore(
            reject_stale_polls=queue_cfg.reject_stale_polls if reject_stale_polls is None else reject_stale_polls,
            monotonic=monotonic,
        )
        self.order = StableOrderTracker(int(window_s * 1000))
        self.flashes = FlashTracker(
            flash_duration_ms if flash_duration_ms is not None else queue_cfg.flash_duration_ms,
            scheduler=flash_scheduler,
            clock=monotonic,
            on_expire=self._on_flash_expired,
        )

        self.state = SyncState.UNINITIALIZED
        self._view = QueueView()
        self._loop: asyncio.AbstractEventLoop | None = None
        self._poll_task: asyncio.Task[None] | None = None
        self._unsubscribe: Callable[[], None] | None = None
        self._consecutive_failures = 0

    @property
    def view(self) -> QueueView:
        return self._view

    @property
    def running(self) -> bool:
        return self._poll_task is not None

    # --- lifecycle ---

    def start(self) -> None:
        """Subscribe to the push topic and start the poll loop. Must run on the event loop."""
        if self._poll_task is not None:
            return
        self._loop = asyncio.get_running_loop()
        self._unsubscribe = self.api.subscribe(QUEUE_UPDATE_TOPIC, self._on_push_message)
        self._poll_task = self._loop.create_task(self._poll_loop(), name="clawboard-queue-poll")
        logger.debug("Queue sync started", poll_interval_s=self.poll_interval_s)

    async def stop(self) -> None:
        """Stop polling, drop the push subscription and cancel pending flash timers."""
        task = self._poll_task
        self._poll_task = None
        if self._unsubscribe is not None:
            self._unsubscribe()
            self._unsubscribe = None
        self.flashes.cancel_all()
        if task is not None:
            task.cancel()
            try:
                await task
            except asyncio.CancelledError:
                pass
        self._loop = None
        logger.debug("Queue sync stopped")

    # --- poll source ---

    async def _poll_loop(self) -> None:
        while True:
            try:
                await self.poll_once()
            except Exception:
                # Keep polling; the last good snapshot stays on screen.
                logger.exception("Queue poll cycle failed")
            await asyncio.sleep(self.poll_interval_s)

    async def poll_once(self) -> bool:
        """Fetch and apply one full snapshot.

        Returns:
            True if a snapshot was fetched. Transport failures keep the last
            good snapshot on screen and return False.
        """
        issued_at = self._monotonic()
        try:
            snapshot = await self.api.get_queue()
        except APIError as e:
            self._record_poll_failure(e)
            return False
        if self._consecutive_failures:
            logger.info("Queue poll recovered after %d failures", self._consecutive_failures)
            self._consecutive_failures = 0
        self.apply_poll(snapshot, issued_at=issued_at)
        return True

    def _record_poll_failure(self, error: APIError) -> None:
        self._consecutive_failures += 1
        if self._consecutive_failures == 1:
            logger.warning("Queue poll failed: %s", error)
        else:
            logger.debug("Queue poll failed", failures=self._consecutive_failures, error=str(error))

    def apply_poll(self, snapshot: QueueSnapshot, *, issued_at: float | None = None) -> None:
        rejected_before = self.store.rejected_polls
        self.store.apply_full_snapshot(snapshot, issued_at=issued_at)
        if self.store.rejected_polls != rejected_before:
            return
        if self.state is SyncState.UNINITIALIZED:
            self._transition(SyncState.POLLING)
        self._publish()

    # --- push source ---

    def _on_push_message(self, message: WsMessage) -> None:
        """Runs on the WebSocket thread; hands the message to the event loop."""
        loop = self._loop
        if loop is None or loop.is_closed():
            return
        loop.call_soon_threadsafe(self.apply_push_message, message)

    def apply_push_message(self, message: WsMessage) -> None:
        if self._poll_task is None:
            return
        if not isinstance(message.data, Mapping):
            logger.debug("Dropped queue update without a snapshot payload", data_type=type(message.data).__name__)
            return
        try:
            snapshot = _SNAPSHOT_ADAPTER.validate_python(message.data)
        except ValidationError as e:
            logger.warning("Dropped malformed queue update: %s", e)
            return
        self.apply_push(snapshot)

    def apply_push(self, snapshot: QueueSnapshot) -> None:
        merged = self.store.apply_push_snapshot(snapshot)
        if self.state is not SyncState.PUSH_ACTIVE:
            self._transition(SyncState.PUSH_ACTIVE)
        self.flashes.observe_push(merged)
        self._publish()

    # --- view ---

    def refresh_view(self) -> QueueView:
        """Recompute order and flashes against the current time without new data."""
        self.flashes.expire()
        return self._publish()

    def _on_flash_expired(self, _key: str) -> None:
        self._publish()

    def _transition(self, state: SyncState) -> None:
        logger.info("Queue sync state %s -> %s", self.state.value, state.value)
        self.state = state

    def _publish(self) -> QueueView:
        snapshot = self.store.snapshot
        records = self.order.update(snapshot, self._wall_clock_ms())
        if snapshot is None:
            view = QueueView(state=self.state, flashing=self.flashes.flashing)
        else:
            view = QueueView(
                records=tuple(records),
                active_sessions=snapshot.active_sessions,
                total_sessions=snapshot.total_sessions,
                connected=snapshot.connected,
                historical_sessions=snapshot.historical_sessions or (),
                flashing=self.flashes.flashing,
                state=self.state,
                has_data=True,
            )
        self._view = view
        if self.on_change:
            self.on_change(view)
        return view
