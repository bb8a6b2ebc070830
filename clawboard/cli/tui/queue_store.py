"""Snapshot store and identity-preserving reconciliation for the message queue.

Both the fallback poll and the push feed funnel into one ``SnapshotStore``;
every merge is a synchronous read-merge-write, so updates from either source
are serialized no matter how their callbacks interleave on the event loop.

Reconciliation keeps the *previous* ``SessionRecord`` object for any session
whose comparable fields did not change. Downstream rows compare records with
``is`` and skip re-rendering when nothing changed.
"""

from __future__ import annotations

import threading
import time
from collections.abc import Callable
from dataclasses import replace
from enum import Enum

from clawboard.cli.models import QueueSnapshot, SessionRecord
from clawboard.logging_config import get_logger

logger = get_logger(__name__)


class UpdateSource(str, Enum):
    """Where a snapshot came from. Push outranks poll."""

    POLL = "poll"
    PUSH = "push"


def same_session_state(old: SessionRecord, new: SessionRecord) -> bool:
    """Value equality on the fields that affect how a session row looks.

    Display metadata (label, channel, model) is fixed for the life of a key and
    is not compared.
    """
    if old.activity_state is not new.activity_state:
        return False
    if old.last_activity != new.last_activity:
        return False
    if old.token_usage.total != new.token_usage.total:
        return False
    if old.token_usage.percent_used != new.token_usage.percent_used:
        return False
    if old.run_id != new.run_id:
        return False
    old_msg = old.last_message
    new_msg = new.last_message
    old_preview = old_msg.preview if old_msg else None
    new_preview = new_msg.preview if new_msg else None
    old_ts = old_msg.timestamp if old_msg else None
    new_ts = new_msg.timestamp if new_msg else None
    return old_preview == new_preview and old_ts == new_ts


def reconcile(old: QueueSnapshot | None, new: QueueSnapshot) -> QueueSnapshot:
    """Merge ``new`` over ``old``, reusing unchanged records from ``old``.

    - The key set (and its order) comes from ``new`` alone; keys missing from
      ``new`` are dropped.
    - Aggregates always come from ``new``.
    - ``historical_sessions`` falls back to ``old``'s list when ``new`` omits it.
    """
    if old is None:
        return new

    merged: dict[str, SessionRecord] = {}
    for key, new_record in new.sessions.items():
        old_record = old.sessions.get(key)
        if old_record is not None and same_session_state(old_record, new_record):
            merged[key] = old_record
        else:
            merged[key] = new_record

    historical = new.historical_sessions
    if historical is None:
        historical = old.historical_sessions

    return replace(new, sessions=merged, historical_sessions=historical)


class SnapshotStore:
    """Holds the current best-known queue snapshot.

    Push is authoritative: when ``reject_stale_polls`` is set, a poll result is
    discarded if its fetch was issued before the most recent push was applied,
    so a slow HTTP round-trip can never roll the view back past a fresher push.
    """

    def __init__(
        self,
        *,
        reject_stale_polls: bool = True,
        monotonic: Callable[[], float] = time.monotonic,
    ) -> None:
        self.reject_stale_polls = reject_stale_polls
        self._monotonic = monotonic
        self._snapshot: QueueSnapshot | None = None
        self._last_push_at: float | None = None
        # Guards read-merge-write when a caller applies updates off the loop thread.
        self._lock = threading.Lock()
        self.applied_polls = 0
        self.applied_pushes = 0
        self.rejected_polls = 0

    @property
    def snapshot(self) -> QueueSnapshot | None:
        return self._snapshot

    @property
    def last_push_at(self) -> float | None:
        return self._last_push_at

    def apply_full_snapshot(self, new: QueueSnapshot, *, issued_at: float | None = None) -> QueueSnapshot:
        """Apply a poll-sourced snapshot.

        Args:
            new: Parsed poll result.
            issued_at: Monotonic time the fetch was started. None skips the staleness check.

        Returns:
            The stored snapshot after the update (unchanged if the poll was rejected).
        """
        with self._lock:
            current = self._snapshot
            if current is not None and self._is_stale_poll(issued_at):
                self.rejected_polls += 1
                logger.debug(
                    "Rejected stale poll snapshot",
                    issued_at=issued_at,
                    last_push_at=self._last_push_at,
                )
                return current
            self._snapshot = reconcile(self._snapshot, new)
            self.applied_polls += 1
            return self._snapshot

    def apply_push_snapshot(self, new: QueueSnapshot) -> QueueSnapshot:
        """Apply a push-sourced snapshot. Always adopted; still reconciled for identity reuse."""
        with self._lock:
            self._snapshot = reconcile(self._snapshot, new)
            self._last_push_at = self._monotonic()
            self.applied_pushes += 1
            return self._snapshot

    def apply(self, new: QueueSnapshot, source: UpdateSource, *, issued_at: float | None = None) -> QueueSnapshot:
        """Dispatch to the source-specific apply method."""
        if source is UpdateSource.PUSH:
            return self.apply_push_snapshot(new)
        return self.apply_full_snapshot(new, issued_at=issued_at)

    def would_reject(self, issued_at: float | None) -> bool:
        """True if a poll issued at ``issued_at`` would be discarded right now."""
        with self._lock:
            return self._snapshot is not None and self._is_stale_poll(issued_at)

    def _is_stale_poll(self, issued_at: float | None) -> bool:
        if not self.reject_stale_polls or issued_at is None:
            return False
        if self._last_push_at is None:
            return False
        return issued_at < self._last_push_at
