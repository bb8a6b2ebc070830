"""Unit tests for the poll + push queue sync coordinator."""

import asyncio
import itertools
import threading
from types import SimpleNamespace
from unittest.mock import AsyncMock, MagicMock, patch

import httpx
import pytest

from clawboard.cli.api_client import APIError, ClawboardAPIClient
from clawboard.cli.models import ActivityState, QueueSnapshot, SessionRecord, WsMessage
from clawboard.cli.tui.sync import QueueSyncCoordinator, SyncState
from clawboard.constants import QUEUE_UPDATE_TOPIC

NOW_MS = 5_000_000


class _Timer:
    def __init__(self):
        self.cancelled = False

    def cancel(self):
        self.cancelled = True


def _scheduler(timers):
    def schedule(_delay_s, _callback):
        timer = _Timer()
        timers.append(timer)
        return timer

    return schedule


def _snapshot(**states):
    return QueueSnapshot(
        sessions={
            key: SessionRecord(key=key, activity_state=state, last_activity=NOW_MS) for key, state in states.items()
        },
        connected=True,
    )


def _api(snapshot=None):
    return SimpleNamespace(
        get_queue=AsyncMock(return_value=snapshot or _snapshot()),
        subscribe=MagicMock(return_value=MagicMock()),
    )


def _coordinator(api, timers=None, **kwargs):
    views = []
    kwargs.setdefault("monotonic", itertools.count(start=1.0).__next__)
    kwargs.setdefault("poll_interval_s", 30.0)
    coordinator = QueueSyncCoordinator(
        api,
        visibility_window_s=1800,
        flash_duration_ms=600,
        reject_stale_polls=True,
        on_change=views.append,
        wall_clock_ms=lambda: NOW_MS,
        flash_scheduler=_scheduler(timers if timers is not None else []),
        **kwargs,
    )
    return coordinator, views


@pytest.mark.unit
@pytest.mark.asyncio
async def test_first_poll_seeds_store_and_enters_polling():
    api = _api(_snapshot(s1=ActivityState.IDLE, s2=ActivityState.BUSY))
    coordinator, views = _coordinator(api)

    assert await coordinator.poll_once() is True

    assert coordinator.state is SyncState.POLLING
    assert [record.key for record in views[-1].records] == ["s2", "s1"]
    assert views[-1].has_data is True
    assert views[-1].connected is True


@pytest.mark.unit
@pytest.mark.asyncio
async def test_poll_transitions_never_flash():
    api = _api(_snapshot(s1=ActivityState.IDLE))
    coordinator, views = _coordinator(api)
    await coordinator.poll_once()

    api.get_queue.return_value = _snapshot(s1=ActivityState.BUSY)
    await coordinator.poll_once()

    assert views[-1].records[0].activity_state is ActivityState.BUSY
    assert views[-1].flashing == frozenset()


@pytest.mark.unit
@pytest.mark.asyncio
async def test_poll_failure_keeps_previous_view_and_logs_once():
    api = _api(_snapshot(s1=ActivityState.BUSY))
    coordinator, views = _coordinator(api)
    await coordinator.poll_once()
    last_view = coordinator.view

    api.get_queue.side_effect = APIError("Cannot connect")
    with patch("clawboard.cli.tui.sync.logger") as mock_logger:
        assert await coordinator.poll_once() is False
        assert await coordinator.poll_once() is False

    assert coordinator.view is last_view
    assert len(views) == 1
    assert mock_logger.warning.call_count == 1
    assert mock_logger.debug.call_count == 1


@pytest.mark.unit
@pytest.mark.asyncio
async def test_poll_failure_before_any_data_stays_uninitialized():
    api = _api()
    api.get_queue.side_effect = APIError("boom")
    coordinator, views = _coordinator(api)

    await coordinator.poll_once()

    assert coordinator.state is SyncState.UNINITIALIZED
    assert views == []


@pytest.mark.unit
def test_push_after_idle_poll_takes_new_record_flashes_and_leads_order():
    """Idle at t=100 then busy at t=150 by push: new record, flashing, first in order."""
    timers = []
    coordinator, views = _coordinator(_api(), timers)
    idle = SessionRecord(key="s1", activity_state=ActivityState.IDLE, last_activity=NOW_MS - 100)
    coordinator.apply_poll(QueueSnapshot(sessions={"s1": idle}), issued_at=0.0)
    busy = SessionRecord(key="s1", activity_state=ActivityState.BUSY, last_activity=NOW_MS - 50)

    coordinator.apply_push(QueueSnapshot(sessions={"s1": busy}))

    view = views[-1]
    assert coordinator.state is SyncState.PUSH_ACTIVE
    assert coordinator.store.snapshot.sessions["s1"] is busy
    assert "s1" in view.flashing
    assert len(timers) == 1
    assert view.records[0] is busy


@pytest.mark.unit
def test_push_message_payload_is_parsed_and_applied():
    coordinator, views = _coordinator(_api())
    coordinator._poll_task = MagicMock()  # started

    coordinator.apply_push_message(
        WsMessage(
            type=QUEUE_UPDATE_TOPIC,
            data={"sessions": [{"sessionKey": "s1", "state": "typing", "lastActivity": NOW_MS}], "connected": True},
        )
    )

    assert coordinator.state is SyncState.PUSH_ACTIVE
    assert views[-1].records[0].activity_state is ActivityState.TYPING
    assert views[-1].flashing == frozenset({"s1"})


@pytest.mark.unit
def test_push_message_without_mapping_payload_is_dropped():
    coordinator, views = _coordinator(_api())
    coordinator._poll_task = MagicMock()

    coordinator.apply_push_message(WsMessage(type=QUEUE_UPDATE_TOPIC, data=["nope"]))

    assert views == []
    assert coordinator.state is SyncState.UNINITIALIZED


@pytest.mark.unit
@pytest.mark.asyncio
async def test_poll_in_flight_during_push_is_discarded():
    api = _api()
    coordinator, views = _coordinator(api)

    async def slow_get_queue():
        coordinator.apply_push(_snapshot(s1=ActivityState.BUSY))
        return _snapshot(s1=ActivityState.IDLE)

    api.get_queue = slow_get_queue

    assert await coordinator.poll_once() is True

    assert coordinator.store.rejected_polls == 1
    assert coordinator.view.records[0].activity_state is ActivityState.BUSY
    assert coordinator.state is SyncState.PUSH_ACTIVE


@pytest.mark.unit
def test_refresh_view_evicts_idle_sessions_as_time_passes():
    now = [NOW_MS]
    coordinator, views = _coordinator(_api())
    coordinator._wall_clock_ms = lambda: now[0]
    coordinator.apply_poll(_snapshot(s1=ActivityState.IDLE, s2=ActivityState.BUSY), issued_at=0.0)
    assert len(coordinator.view.records) == 2

    now[0] = NOW_MS + 31 * 60 * 1000
    view = coordinator.refresh_view()

    assert [record.key for record in view.records] == ["s2"]


@pytest.mark.unit
@pytest.mark.asyncio
async def test_start_and_stop_manage_subscription_poll_task_and_timers():
    timers = []
    api = _api(_snapshot(s1=ActivityState.BUSY))
    unsubscribe = MagicMock()
    api.subscribe.return_value = unsubscribe
    coordinator, _views = _coordinator(api, timers)

    coordinator.start()
    await asyncio.sleep(0)
    await asyncio.sleep(0)

    api.subscribe.assert_called_once()
    assert api.subscribe.call_args.args[0] == QUEUE_UPDATE_TOPIC
    api.get_queue.assert_awaited()
    assert coordinator.running is True

    coordinator.apply_push(_snapshot(s1=ActivityState.IDLE, s2=ActivityState.BUSY))
    assert timers

    await coordinator.stop()

    unsubscribe.assert_called_once()
    assert coordinator.running is False
    assert all(timer.cancelled for timer in timers)
    assert coordinator.flashes.flashing == frozenset()


@pytest.mark.unit
@pytest.mark.asyncio
async def test_push_from_reader_thread_is_applied_on_event_loop():
    api = _api(_snapshot())
    coordinator, views = _coordinator(api)
    coordinator.start()
    handler = api.subscribe.call_args.args[1]
    message = WsMessage(type=QUEUE_UPDATE_TOPIC, data={"sessions": [{"sessionKey": "s1", "state": "busy"}]})

    thread = threading.Thread(target=handler, args=(message,))
    thread.start()
    thread.join()
    for _ in range(5):
        await asyncio.sleep(0)

    assert coordinator.state is SyncState.PUSH_ACTIVE
    assert coordinator.store.snapshot.sessions["s1"].activity_state is ActivityState.BUSY
    await coordinator.stop()


@pytest.mark.unit
@pytest.mark.asyncio
async def test_push_after_stop_is_ignored():
    api = _api(_snapshot())
    coordinator, _views = _coordinator(api)
    coordinator.start()
    handler = api.subscribe.call_args.args[1]
    await coordinator.stop()

    handler(WsMessage(type=QUEUE_UPDATE_TOPIC, data={"sessions": [{"sessionKey": "s1", "state": "busy"}]}))
    await asyncio.sleep(0)

    assert coordinator.state is not SyncState.PUSH_ACTIVE


@pytest.mark.unit
@pytest.mark.asyncio
async def test_poll_loop_keeps_running_through_errors_and_malformed_payloads():
    def boom():
        raise RuntimeError("transport bug")

    responses = itertools.cycle(
        [
            lambda: httpx.Response(503, json={"success": False, "error": "Gateway connector not initialized"}),
            lambda: httpx.Response(
                200, json={"success": True, "sessions": [{"sessionKey": "s1", "state": "busy", "lastActivity": NOW_MS}]}
            ),
            lambda: httpx.Response(
                200,
                content=b'{"success": true, "sessions": [{"sessionKey": "s1", "state": "busy", "lastActivity": 1e400}]}',
            ),
            lambda: httpx.Response(200, text="<html>"),
            boom,
        ]
    )
    paths = []

    def handle(request):
        paths.append(request.url.path)
        return next(responses)()

    client = ClawboardAPIClient("http://gateway.test/api", ws_url="ws://gateway.test/api/ws", token="")
    client._client = httpx.AsyncClient(base_url=client.base_url, transport=httpx.MockTransport(handle))
    coordinator, _views = _coordinator(client, poll_interval_s=0.001)

    with patch.object(client, "start_websocket"), patch.object(client, "stop_websocket"):
        with patch("clawboard.cli.tui.sync.logger") as mock_logger:
            coordinator.start()
            for _ in range(100):
                await asyncio.sleep(0.005)
                if len(paths) > 10:
                    break

            assert len(paths) > 10
            assert set(paths) == {"/api/gateway/queue"}
            assert coordinator.running is True
            assert not coordinator._poll_task.done()
            assert coordinator.store.snapshot.sessions["s1"].activity_state is ActivityState.BUSY
            assert mock_logger.exception.called
            await coordinator.stop()

    await client._client.aclose()


@pytest.mark.unit
def test_push_with_non_finite_timestamp_is_applied_with_default():
    coordinator, views = _coordinator(_api())
    coordinator._poll_task = MagicMock()

    coordinator.apply_push_message(
        WsMessage(
            type=QUEUE_UPDATE_TOPIC,
            data={"sessions": [{"sessionKey": "s1", "state": "busy", "lastActivity": float("inf")}]},
        )
    )

    assert coordinator.store.snapshot.sessions["s1"].last_activity == 0
    assert views[-1].records[0].key == "s1"
