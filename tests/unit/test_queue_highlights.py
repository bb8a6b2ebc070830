"""Unit tests for the just-became-active flash highlight."""

import asyncio

import pytest

from clawboard.cli.models import ActivityState, QueueSnapshot, SessionRecord
from clawboard.cli.tui.highlights import FlashTracker


class FakeTimer:
    def __init__(self, delay_s, callback):
        self.delay_s = delay_s
        self.callback = callback
        self.cancelled = False

    def cancel(self):
        self.cancelled = True

    def fire(self):
        if not self.cancelled:
            self.callback()


class FakeScheduler:
    def __init__(self):
        self.timers = []

    def __call__(self, delay_s, callback):
        timer = FakeTimer(delay_s, callback)
        self.timers.append(timer)
        return timer


def _snapshot(**states):
    return QueueSnapshot(
        sessions={key: SessionRecord(key=key, activity_state=state) for key, state in states.items()},
    )


@pytest.mark.unit
def test_idle_to_active_push_flashes_for_600ms():
    scheduler = FakeScheduler()
    expired = []
    tracker = FlashTracker(scheduler=scheduler, clock=lambda: 0.0, on_expire=expired.append)
    tracker.observe_push(_snapshot(s1=ActivityState.IDLE))

    started = tracker.observe_push(_snapshot(s1=ActivityState.BUSY))

    assert started == frozenset({"s1"})
    assert tracker.is_flashing("s1")
    assert [timer.delay_s for timer in scheduler.timers] == [0.6]

    scheduler.timers[0].fire()

    assert tracker.flashing == frozenset()
    assert expired == ["s1"]


@pytest.mark.unit
def test_first_push_flashes_every_active_session():
    tracker = FlashTracker(scheduler=FakeScheduler(), clock=lambda: 0.0)

    tracker.observe_push(_snapshot(a=ActivityState.THINKING, b=ActivityState.IDLE))

    assert tracker.flashing == frozenset({"a"})


@pytest.mark.unit
def test_still_active_session_does_not_flash_again():
    scheduler = FakeScheduler()
    tracker = FlashTracker(scheduler=scheduler, clock=lambda: 0.0)
    tracker.observe_push(_snapshot(s1=ActivityState.BUSY))
    scheduler.timers[0].fire()

    tracker.observe_push(_snapshot(s1=ActivityState.TOOL_USE))

    assert tracker.flashing == frozenset()
    assert len(scheduler.timers) == 1


@pytest.mark.unit
def test_flashing_key_is_not_rearmed():
    """Busy, idle, busy again within the flash window keeps the original timer."""
    scheduler = FakeScheduler()
    tracker = FlashTracker(scheduler=scheduler, clock=lambda: 0.0)
    tracker.observe_push(_snapshot(s1=ActivityState.BUSY))
    tracker.observe_push(_snapshot(s1=ActivityState.IDLE))

    started = tracker.observe_push(_snapshot(s1=ActivityState.BUSY))

    assert started == frozenset()
    assert len(scheduler.timers) == 1
    scheduler.timers[0].fire()
    assert not tracker.is_flashing("s1")


@pytest.mark.unit
def test_expire_evicts_by_deadline():
    now = [0.0]
    tracker = FlashTracker(duration_ms=600, scheduler=FakeScheduler(), clock=lambda: now[0])
    tracker.observe_push(_snapshot(s1=ActivityState.BUSY))

    assert tracker.expire(0.5) == frozenset()
    assert tracker.expire(0.6) == frozenset({"s1"})
    assert tracker.flashing == frozenset()


@pytest.mark.unit
def test_cancel_all_cancels_timers_without_notifying():
    scheduler = FakeScheduler()
    expired = []
    tracker = FlashTracker(scheduler=scheduler, clock=lambda: 0.0, on_expire=expired.append)
    tracker.observe_push(_snapshot(a=ActivityState.BUSY, b=ActivityState.TYPING))

    tracker.cancel_all()

    assert tracker.flashing == frozenset()
    assert all(timer.cancelled for timer in scheduler.timers)
    assert expired == []


@pytest.mark.unit
@pytest.mark.asyncio
async def test_default_scheduler_uses_event_loop_timer():
    expired = asyncio.Event()
    tracker = FlashTracker(duration_ms=10, on_expire=lambda _key: expired.set())

    tracker.observe_push(_snapshot(s1=ActivityState.BUSY))
    assert tracker.is_flashing("s1")

    await asyncio.wait_for(expired.wait(), timeout=0.5)
    assert not tracker.is_flashing("s1")


@pytest.mark.unit
def test_expiry_timer_is_not_cancelled_by_its_own_callback():
    scheduler = FakeScheduler()
    expired = []
    tracker = FlashTracker(scheduler=scheduler, clock=lambda: 0.0, on_expire=expired.append)
    tracker.observe_push(_snapshot(s1=ActivityState.BUSY))
    timer = scheduler.timers[0]

    timer.fire()

    assert timer.cancelled is False
    assert expired == ["s1"]
    assert tracker.flashing == frozenset()


@pytest.mark.unit
def test_expire_before_timer_fires_cancels_pending_timer():
    scheduler = FakeScheduler()
    now = [0.0]
    tracker = FlashTracker(scheduler=scheduler, clock=lambda: now[0])
    tracker.observe_push(_snapshot(s1=ActivityState.BUSY))

    now[0] = 1.0
    tracker.expire()

    assert scheduler.timers[0].cancelled is True
