"""Tests for the train tracker orchestration, with in-memory collaborators."""

import asyncio

import pytest

from treninfo.core.errors import SelectionRequired, TransportError
from treninfo.core.models import JourneyCode, SelectionContext
from treninfo.core.tracking import EtaSchedule
from treninfo.core.train_tracker import TrainTracker

MIN = 60_000
NOW = 1_715_328_000_000


def make_payload(number: str = "9544", delay: int | None = 3, arrived: bool = False) -> dict:
    """Milano -> Roma, departed an hour ago."""
    return {
        "treno": {
            "numeroTreno": number,
            "tipoTreno": "FR",
            "ritardoMinuti": delay,
            "fermate": [
                {"stazione": "Milano", "orari": {"partenza": {"programmato": NOW - 60 * MIN, "reale": NOW - 58 * MIN}}},
                {
                    "stazione": "Roma",
                    "orari": {"arrivo": {"programmato": NOW + 60 * MIN, "reale": NOW - MIN if arrived else None}},
                },
            ],
        }
    }


class FakeClient:
    def __init__(self, responses: dict) -> None:
        self.responses = responses
        self.calls: list[tuple[str, SelectionContext]] = []

    async def fetch_train_status(self, train_number, context=None):
        self.calls.append((train_number, context))
        response = self.responses[train_number]
        if isinstance(response, Exception):
            raise response
        return response


class FakeStore:
    def __init__(self) -> None:
        self.items = {}

    async def list_all(self):
        return list(self.items.values())

    async def get(self, key):
        return self.items.get(key)

    async def upsert(self, item):
        self.items[item.key] = item
        return item

    async def save_state(self, item):
        if item.key in self.items:
            self.items[item.key] = item

    async def delete(self, key):
        return self.items.pop(key, None) is not None


class FakeBroadcaster:
    def __init__(self) -> None:
        self.published: list[dict] = []

    async def publish(self, events):
        self.published.extend(events)


def make_tracker(responses: dict) -> tuple[TrainTracker, FakeClient, FakeStore, FakeBroadcaster]:
    client, store, broadcaster = FakeClient(responses), FakeStore(), FakeBroadcaster()
    tracker = TrainTracker(client, store, broadcaster, clock=lambda: NOW)
    return tracker, client, store, broadcaster


def test_fetch_status_evaluates_payload():
    tracker, client, _, _ = make_tracker({"9544": make_payload()})
    status = asyncio.run(tracker.fetch_status("9544", SelectionContext(origin_code="S01700")))
    assert status.journey.code == JourneyCode.RUNNING
    assert status.next_stop_name == "Roma"
    assert client.calls[0][1].origin_code == "S01700"


def test_fetch_status_passes_selection_through():
    choices = {"ok": True, "needsSelection": True, "choices": [{"technical": "a"}, {"technical": "b"}]}
    tracker, _, _, _ = make_tracker({"9544": choices})
    with pytest.raises(SelectionRequired):
        asyncio.run(tracker.fetch_status("9544"))


def test_enable_seeds_state():
    tracker, _, store, _ = make_tracker({"9544": make_payload(delay=3)})
    item = asyncio.run(tracker.enable("9544", SelectionContext(technical_id="9544-S01700")))
    assert item.key == "9544|tech:9544-S01700"
    assert item.state.last_delay_minutes == 3
    assert item.state.last_journey_state_code == JourneyCode.RUNNING
    assert item.state.last_next_stop_name == "Roma"
    assert item.eta_thresholds == (10, 3)
    assert store.items[item.key] is item


def test_cycle_publishes_delay_change():
    tracker, client, store, broadcaster = make_tracker({"9544": make_payload(delay=3)})
    item = asyncio.run(tracker.enable("9544"))

    client.responses["9544"] = make_payload(delay=7)
    summary = asyncio.run(tracker.run_tracking_cycle())

    assert summary["updated"] == 1
    assert summary["failed"] == 0
    assert [e["kind"] for e in broadcaster.published] == ["delay"]
    assert broadcaster.published[0]["previous_delay_minutes"] == 3
    assert broadcaster.published[0]["delay_minutes"] == 7
    assert store.items[item.key].state.last_delay_minutes == 7


def test_cycle_without_changes_is_quiet():
    tracker, _, _, broadcaster = make_tracker({"9544": make_payload(delay=3)})
    asyncio.run(tracker.enable("9544"))
    asyncio.run(tracker.run_tracking_cycle())
    assert broadcaster.published == []


def test_one_failing_train_does_not_stop_the_cycle():
    tracker, client, store, broadcaster = make_tracker({
        "9544": make_payload(number="9544", delay=3),
        "2113": make_payload(number="2113", delay=0),
    })
    asyncio.run(tracker.enable("9544"))
    asyncio.run(tracker.enable("2113"))

    client.responses["9544"] = TransportError("timeout")
    client.responses["2113"] = make_payload(number="2113", delay=4)
    summary = asyncio.run(tracker.run_tracking_cycle())

    assert summary["tracked"] == 2
    assert summary["failed"] == 1
    assert summary["updated"] == 1
    assert [(e["train_number"], e["kind"]) for e in broadcaster.published] == [("2113", "delay")]
    assert store.items["9544"].state.last_delay_minutes == 3


def test_completed_run_stops_tracking():
    tracker, client, store, broadcaster = make_tracker({"9544": make_payload()})
    asyncio.run(tracker.enable("9544"))

    client.responses["9544"] = make_payload(arrived=True)
    summary = asyncio.run(tracker.run_tracking_cycle())

    assert summary["finished"] == 1
    assert store.items == {}
    status_events = [e for e in broadcaster.published if e["kind"] == "status"]
    assert status_events[0]["journey_code"] == "COMPLETED"
    assert status_events[0]["journey_label"] == "Concluso"


def test_muted_status_notifications():
    tracker, client, _, broadcaster = make_tracker({"9544": make_payload()})
    asyncio.run(tracker.enable("9544", notify_status=False))
    client.responses["9544"] = make_payload(arrived=True)
    asyncio.run(tracker.run_tracking_cycle())
    assert [e for e in broadcaster.published if e["kind"] == "status"] == []


def test_disable_removes_and_cancels_schedules():
    tracker, _, store, broadcaster = make_tracker({"9544": make_payload()})
    item = asyncio.run(tracker.enable("9544"))
    item.scheduled = EtaSchedule(stop_name="Roma", thresholds=(10,))

    assert asyncio.run(tracker.disable(item.key)) is True
    assert store.items == {}
    assert broadcaster.published == [{
        "key": "9544",
        "train_number": "9544",
        "kind": "eta_cancel",
        "notification_keys": ["9544#Roma#10"],
    }]
    assert asyncio.run(tracker.disable(item.key)) is False


def test_stale_eta_schedule_is_cancelled_on_cycle():
    tracker, _, _, broadcaster = make_tracker({"9544": make_payload()})
    item = asyncio.run(tracker.enable("9544"))
    item.scheduled = EtaSchedule(stop_name="Milano", thresholds=(10,))

    asyncio.run(tracker.run_tracking_cycle())

    assert broadcaster.published == [{
        "key": "9544",
        "train_number": "9544",
        "kind": "eta_cancel",
        "notification_keys": ["9544#Milano#10"],
    }]
    assert item.scheduled.stop_name == "Roma"
