"""Main orchestrator: fetches tracked trains, evaluates, diffs and publishes triggers."""

import asyncio
import logging
import time
from collections.abc import Callable

from treninfo.config import settings
from treninfo.core.broadcaster import Broadcaster
from treninfo.core.engine import TrainStatus, evaluate
from treninfo.core.errors import TransportError, TreninfoError
from treninfo.core.journey_classifier import LABELS
from treninfo.core.models import SelectionContext
from treninfo.core.refresh import RefreshCoordinator
from treninfo.core.tracking import (
    FINAL_CODES,
    EtaSchedule,
    TrackedTrain,
    TrackedTrainState,
    TrackingDiff,
    diff,
    notification_key,
    tracking_key_for,
)
from treninfo.core.tracking_store import TrackingStore
from treninfo.core.treninfo_client import TreninfoClient

logger = logging.getLogger(__name__)


def _wall_clock_ms() -> int:
    return int(time.time() * 1000)


class TrainTracker:
    """Runs the train status pipeline for single requests and for tracked trains."""

    def __init__(
        self,
        client: TreninfoClient,
        store: TrackingStore,
        broadcaster: Broadcaster,
        refresh: RefreshCoordinator | None = None,
        clock: Callable[[], int] = _wall_clock_ms,
    ) -> None:
        self.client = client
        self.store = store
        self.broadcaster = broadcaster
        self.refresh = refresh or RefreshCoordinator()
        self.clock = clock
        self.last_cycle: dict = {}

    async def fetch_status(
        self,
        train_number: str,
        context: SelectionContext | None = None,
    ) -> TrainStatus:
        """Fetch and evaluate one run; a newer request for the same run supersedes this one."""
        context = context or SelectionContext()
        subject = tracking_key_for(train_number, context)
        payload = await self.refresh.run(
            subject, lambda: self.client.fetch_train_status(train_number, context)
        )
        if payload is None:
            raise TransportError(f"Request for {subject} was superseded", cancelled=True)
        return evaluate(payload, context, self.clock())

    async def enable(
        self,
        train_number: str,
        context: SelectionContext | None = None,
        target_stop_name: str | None = None,
        notify_delay: bool = True,
        notify_status: bool = True,
        notify_eta: bool = True,
        eta_thresholds: list[int] | None = None,
    ) -> TrackedTrain:
        """Start tracking a run, seeding its state from a fresh evaluation."""
        context = context or SelectionContext()
        status = await self.fetch_status(train_number, context)
        now = self.clock()
        thresholds = tuple(t for t in (eta_thresholds or settings.default_eta_thresholds) if t > 0)
        item = TrackedTrain(
            key=tracking_key_for(train_number, context),
            train_number=str(train_number),
            context=context,
            target_stop_name=target_stop_name,
            notify_delay=notify_delay,
            notify_status=notify_status,
            notify_eta=notify_eta,
            eta_thresholds=thresholds,
            state=TrackedTrainState(
                last_delay_minutes=status.snapshot.global_delay_minutes,
                last_journey_state_code=status.effective_code,
                last_next_stop_name=status.next_stop_name,
                last_updated_epoch_ms=now,
            ),
            scheduled=EtaSchedule(stop_name=target_stop_name or status.next_stop_name),
            created_at_ms=now,
        )
        await self.store.upsert(item)
        logger.info("Tracking enabled for %s", item.key)
        return item

    async def disable(self, key: str) -> bool:
        """Stop tracking immediately; in-flight polls for the run are cancelled."""
        self.refresh.cancel(key)
        item = await self.store.get(key)
        removed = await self.store.delete(key)
        if item is not None and item.scheduled.thresholds:
            await self.broadcaster.publish([self._cancel_event(item, item.scheduled)])
        if removed:
            logger.info("Tracking disabled for %s", key)
        return removed

    async def list_tracked(self) -> list[TrackedTrain]:
        return await self.store.list_all()

    async def run_tracking_cycle(self) -> dict:
        """Single cycle over all tracked trains. One train failing never stops the others."""
        started = time.monotonic()
        summary = {"tracked": 0, "updated": 0, "failed": 0, "finished": 0, "events": 0}
        try:
            items = await self.store.list_all()
            summary["tracked"] = len(items)
            results = await asyncio.gather(
                *(self._poll_one(item) for item in items), return_exceptions=True
            )

            events: list[dict] = []
            for item, result in zip(items, results):
                if isinstance(result, BaseException):
                    summary["failed"] += 1
                    logger.error("Tracking %s failed", item.key, exc_info=result)
                    continue
                if result is None:
                    summary["failed"] += 1
                    continue
                item_events, finished = result
                summary["updated"] += 1
                summary["finished"] += int(finished)
                events.extend(item_events)

            summary["events"] = len(events)
            await self.broadcaster.publish(events)
        except Exception:
            logger.exception("Error in tracking cycle")

        summary["elapsed_ms"] = round((time.monotonic() - started) * 1000)
        self.last_cycle = summary
        if summary["tracked"]:
            logger.info(
                "Tracking cycle: %d tracked, %d updated, %d failed, %d finished, %d events",
                summary["tracked"], summary["updated"], summary["failed"],
                summary["finished"], summary["events"],
            )
        return summary

    async def _poll_one(self, item: TrackedTrain) -> tuple[list[dict], bool] | None:
        try:
            status = await self.fetch_status(item.train_number, item.context)
        except TransportError as e:
            if e.cancelled:
                logger.debug("Poll for %s superseded", item.key)
            else:
                logger.warning("Poll for %s failed: %s", item.key, e)
            return None
        except TreninfoError as e:
            logger.warning("Poll for %s gave no usable train: %s", item.key, e)
            return None

        now = self.clock()
        result = diff(
            item.state,
            status.snapshot,
            status.journey,
            status.timeline,
            now,
            key=item.key,
            target_stop_name=item.target_stop_name,
            thresholds=item.eta_thresholds,
            schedule=item.scheduled,
        )
        events = self._events(item, status, result) if result.has_triggers else []

        item.state = result.next_state
        item.scheduled = result.next_schedule if item.notify_eta else EtaSchedule()

        finished = result.next_state.last_journey_state_code in FINAL_CODES
        if finished and settings.stop_tracking_when_finished:
            await self.store.delete(item.key)
            logger.info("Tracking for %s ended: %s", item.key, result.next_state.last_journey_state_code.value)
        else:
            await self.store.save_state(item)
        return events, finished

    def _events(self, item: TrackedTrain, status: TrainStatus, result: TrackingDiff) -> list[dict]:
        base = {"key": item.key, "train_number": item.train_number}
        events = []
        if item.notify_delay and result.delay_changed:
            events.append({
                **base,
                "kind": "delay",
                "previous_delay_minutes": result.previous_delay_minutes,
                "delay_minutes": result.current_delay_minutes,
                "next_stop_name": status.next_stop_name,
            })
        if item.notify_status and result.status_transition is not None:
            events.append({
                **base,
                "kind": "status",
                "journey_code": result.status_transition.value,
                "journey_label": LABELS[result.status_transition],
                "reason_text": status.snapshot.disruption.reason_text or None,
            })
        if item.notify_eta:
            for crossing in result.eta_crossings:
                events.append({
                    **base,
                    "kind": "eta",
                    "stop_name": crossing.stop_name,
                    "threshold_minutes": crossing.threshold_minutes,
                    "arrival_epoch_ms": crossing.arrival_epoch_ms,
                    "notification_key": crossing.notification_key,
                })
            if result.invalidated_keys:
                events.append({**base, "kind": "eta_cancel", "notification_keys": list(result.invalidated_keys)})
        return events

    @staticmethod
    def _cancel_event(item: TrackedTrain, schedule: EtaSchedule) -> dict:
        return {
            "key": item.key,
            "train_number": item.train_number,
            "kind": "eta_cancel",
            "notification_keys": [
                notification_key(item.key, schedule.stop_name or "", t) for t in schedule.thresholds
            ],
        }
