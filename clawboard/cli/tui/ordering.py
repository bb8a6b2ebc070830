"""Stable display order for the message queue.

Rows keep their slot across updates; only newly visible sessions move, and
they enter at the top. A session's state change never reorders the list.
"""

from __future__ import annotations

from collections.abc import Iterable

from clawboard.cli.models import QueueSnapshot, SessionRecord


def is_visible(record: SessionRecord, now_ms: int, window_ms: int) -> bool:
    """Active sessions are always shown; idle ones until the window elapses."""
    if record.is_active:
        return True
    return now_ms - record.last_activity <= window_ms


def _newcomer_sort_key(record: SessionRecord) -> tuple[int, int, str]:
    return (0 if record.is_active else 1, -record.last_activity, record.key)


class StableOrderTracker:
    """Tracks the display order of session keys across snapshots.

    The order is an explicit list of keys; records are looked up in the latest
    snapshot on every recompute.
    """

    def __init__(self, visibility_window_ms: int) -> None:
        self.visibility_window_ms = visibility_window_ms
        self._order: list[str] = []

    @property
    def keys(self) -> tuple[str, ...]:
        return tuple(self._order)

    def reset(self) -> None:
        self._order = []

    def update(self, snapshot: QueueSnapshot | None, now_ms: int) -> list[SessionRecord]:
        """Recompute the order against ``snapshot`` at wall-clock ``now_ms``.

        Returns:
            Visible records in display order.
        """
        if snapshot is None:
            self._order = []
            return []

        visible = {
            key: record
            for key, record in snapshot.sessions.items()
            if is_visible(record, now_ms, self.visibility_window_ms)
        }

        kept = [key for key in self._order if key in visible]
        known = set(kept)
        newcomers = sorted(
            (record for key, record in visible.items() if key not in known),
            key=_newcomer_sort_key,
        )
        self._order = [record.key for record in newcomers] + kept
        return list(self._lookup(snapshot, self._order))

    @staticmethod
    def _lookup(snapshot: QueueSnapshot, keys: Iterable[str]) -> Iterable[SessionRecord]:
        for key in keys:
            record = snapshot.sessions.get(key)
            if record is not None:
                yield record
