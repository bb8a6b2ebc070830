"""Short-lived "just became active" highlight for queue rows.

Flash state lives beside the snapshot store, never inside it: it does not
affect reconciliation, ordering or aggregate counts.
"""

from __future__ import annotations

import asyncio
import time
from collections.abc import Callable, Iterable
from typing import Protocol

from clawboard.cli.models import QueueSnapshot
from clawboard.constants import FLASH_DURATION_MS
from clawboard.logging_config import get_logger

logger = get_logger(__name__)


class TimerHandle(Protocol):
    def cancel(self) -> None: ...


Scheduler = Callable[[float, Callable[[], None]], TimerHandle]


def _loop_scheduler(delay_s: float, callback: Callable[[], None]) -> TimerHandle:
    return asyncio.get_running_loop().call_later(delay_s, callback)


class FlashTracker:
    """Marks sessions that transitioned idle→active on a push update.

    Each flashing key has its own expiry. Observing the key again while it
    flashes does not re-arm it, so the highlight always ends one flash duration
    after it started.
    """

    def __init__(
        self,
        duration_ms: int = FLASH_DURATION_MS,
        *,
        scheduler: Scheduler | None = None,
        clock: Callable[[], float] = time.monotonic,
        on_expire: Callable[[str], None] | None = None,
    ) -> None:
        self.duration_ms = duration_ms
        self._scheduler = scheduler or _loop_scheduler
        self._clock = clock
        self.on_expire = on_expire
        self._previously_active: frozenset[str] = frozenset()
        self._expiry: dict[str, float] = {}
        self._timers: dict[str, TimerHandle] = {}

    @property
    def flashing(self) -> frozenset[str]:
        return frozenset(self._expiry)

    def is_flashing(self, key: str) -> bool:
        return key in self._expiry

    def observe_push(self, snapshot: QueueSnapshot) -> frozenset[str]:
        """Flash every key that is active now but was not on the previous push.

        Returns:
            Keys that started flashing on this update.
        """
        currently_active = frozenset(key for key, record in snapshot.sessions.items() if record.is_active)
        started = currently_active - self._previously_active
        self._previously_active = currently_active
        armed = self._arm(started)
        if armed:
            logger.debug("Flashing sessions", keys=sorted(armed))
        return armed

    def expire(self, now: float | None = None) -> frozenset[str]:
        """Evict every flash whose expiry has passed. Returns the evicted keys."""
        now = self._clock() if now is None else now
        due = frozenset(key for key, expires_at in self._expiry.items() if expires_at <= now)
        for key in due:
            self._remove(key)
        return due

    def cancel_all(self) -> None:
        """Drop all flashes and their timers without notifying."""
        for handle in self._timers.values():
            handle.cancel()
        self._timers.clear()
        self._expiry.clear()

    def reset(self) -> None:
        self.cancel_all()
        self._previously_active = frozenset()

    def _arm(self, keys: Iterable[str]) -> frozenset[str]:
        delay_s = self.duration_ms / 1000
        armed: set[str] = set()
        for key in keys:
            if key in self._expiry:
                continue
            self._expiry[key] = self._clock() + delay_s
            self._timers[key] = self._scheduler(delay_s, lambda key=key: self._on_timer(key))
            armed.add(key)
        return frozenset(armed)

    def _on_timer(self, key: str) -> None:
        # The handle has already fired.
        self._timers.pop(key, None)
        self._remove(key)

    def _remove(self, key: str) -> None:
        if self._expiry.pop(key, None) is None:
            return
        handle = self._timers.pop(key, None)
        if handle is not None:
            handle.cancel()
        if self.on_expire:
            self.on_expire(key)
