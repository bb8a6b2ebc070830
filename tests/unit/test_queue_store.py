"""Unit tests for snapshot reconciliation and the queue store."""

import itertools

import pytest

from clawboard.cli.models import (
    ActivityState,
    HistoricalSessionInfo,
    LastMessage,
    QueueSnapshot,
    SessionRecord,
    TokenUsage,
)
from clawboard.cli.tui.queue_store import SnapshotStore, UpdateSource, reconcile, same_session_state


def _record(key, state=ActivityState.BUSY, last_activity=100, tokens=50, percent=1.0, **kwargs):
    return SessionRecord(
        key=key,
        activity_state=state,
        last_activity=last_activity,
        token_usage=TokenUsage(total=tokens, percent_used=percent),
        **kwargs,
    )


def _snapshot(*records, historical=None, connected=True):
    return QueueSnapshot(
        sessions={record.key: record for record in records},
        connected=connected,
        historical_sessions=historical,
    )


def _history(session_id):
    return HistoricalSessionInfo(
        session_id=session_id,
        label=session_id,
        channel="discord",
        completed_at=1,
        started_at=0,
        duration_ms=1,
        model="",
        token_usage=TokenUsage(),
        kind="",
    )


@pytest.mark.unit
def test_reconcile_reuses_old_record_when_comparison_fields_match():
    old_record = _record("s1")
    new_record = _record("s1")
    assert old_record is not new_record

    merged = reconcile(_snapshot(old_record), _snapshot(new_record))

    assert merged.sessions["s1"] is old_record


@pytest.mark.unit
@pytest.mark.parametrize(
    "changes",
    [
        {"state": ActivityState.THINKING},
        {"last_activity": 101},
        {"tokens": 51},
        {"percent": 2.0},
        {"run_id": "run-2"},
        {"last_message": LastMessage(role="assistant", preview="new", timestamp=100)},
    ],
)
def test_reconcile_takes_new_record_when_any_comparison_field_differs(changes):
    old_record = _record("s1")
    new_record = _record("s1", **changes)

    merged = reconcile(_snapshot(old_record), _snapshot(new_record))

    assert merged.sessions["s1"] is new_record


@pytest.mark.unit
def test_display_only_fields_do_not_break_identity_reuse():
    old_record = _record("s1", label="old label")
    new_record = _record("s1", label="new label")

    assert same_session_state(old_record, new_record)


@pytest.mark.unit
def test_last_message_timestamp_change_is_a_change():
    old_record = _record("s1", last_message=LastMessage("assistant", "same", 1))
    new_record = _record("s1", last_message=LastMessage("assistant", "same", 2))

    assert not same_session_state(old_record, new_record)


@pytest.mark.unit
def test_reconcile_drops_keys_missing_from_new_and_adopts_aggregates():
    old = _snapshot(_record("s1"), _record("s2"), connected=False)
    new = QueueSnapshot(sessions={"s2": _record("s2")}, active_sessions=9, total_sessions=1, timestamp=5, connected=True)

    merged = reconcile(old, new)

    assert list(merged.sessions) == ["s2"]
    assert merged.sessions["s2"] is old.sessions["s2"]
    assert merged.active_sessions == 9
    assert merged.total_sessions == 1
    assert merged.timestamp == 5
    assert merged.connected is True


@pytest.mark.unit
def test_reconcile_carries_historical_sessions_forward_when_omitted():
    history = (_history("h1"),)
    old = _snapshot(_record("s1"), historical=history)

    carried = reconcile(old, _snapshot(_record("s1")))
    replaced = reconcile(old, _snapshot(_record("s1"), historical=()))

    assert carried.historical_sessions is history
    assert replaced.historical_sessions == ()


@pytest.mark.unit
def test_reconcile_without_previous_snapshot_returns_new():
    new = _snapshot(_record("s1"))

    assert reconcile(None, new) is new


@pytest.mark.unit
def test_push_with_identical_fields_keeps_poll_record_identity():
    """Poll then push with a fresh but equal record keeps the first object."""
    store = SnapshotStore()
    poll_record = _record("s1", tokens=50)
    store.apply_full_snapshot(_snapshot(poll_record), issued_at=0.0)

    merged = store.apply_push_snapshot(_snapshot(_record("s1", tokens=50)))

    assert merged.sessions["s1"] is poll_record


@pytest.mark.unit
def test_stale_poll_is_rejected_after_push():
    clock = itertools.count(start=10.0)
    store = SnapshotStore(monotonic=lambda: next(clock))
    store.apply_full_snapshot(_snapshot(_record("s1", state=ActivityState.IDLE)), issued_at=1.0)
    pushed = store.apply_push_snapshot(_snapshot(_record("s1", state=ActivityState.BUSY, last_activity=150)))

    # Fetch started before the push was applied: its data may predate the push.
    result = store.apply_full_snapshot(_snapshot(_record("s1", state=ActivityState.IDLE)), issued_at=5.0)

    assert result is pushed
    assert store.snapshot.sessions["s1"].activity_state is ActivityState.BUSY
    assert store.rejected_polls == 1
    assert store.would_reject(5.0) is True


@pytest.mark.unit
def test_poll_issued_after_push_is_applied():
    store = SnapshotStore(monotonic=lambda: 10.0)
    store.apply_push_snapshot(_snapshot(_record("s1", state=ActivityState.BUSY)))

    result = store.apply_full_snapshot(_snapshot(_record("s1", state=ActivityState.IDLE)), issued_at=11.0)

    assert result.sessions["s1"].activity_state is ActivityState.IDLE
    assert store.applied_polls == 1
    assert store.applied_pushes == 1


@pytest.mark.unit
def test_stale_poll_guard_can_be_disabled():
    store = SnapshotStore(reject_stale_polls=False, monotonic=lambda: 10.0)
    store.apply_push_snapshot(_snapshot(_record("s1", state=ActivityState.BUSY)))

    result = store.apply(_snapshot(_record("s1", state=ActivityState.IDLE)), UpdateSource.POLL, issued_at=1.0)

    assert result.sessions["s1"].activity_state is ActivityState.IDLE
    assert store.rejected_polls == 0


@pytest.mark.unit
def test_first_poll_is_never_rejected():
    store = SnapshotStore(monotonic=lambda: 10.0)

    result = store.apply(_snapshot(_record("s1")), UpdateSource.POLL, issued_at=0.0)

    assert "s1" in result.sessions
    assert store.last_push_at is None
