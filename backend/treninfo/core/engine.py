"""Payload -> snapshot -> journey state -> timeline, in one call."""

import time
from dataclasses import dataclass

from treninfo.core.journey_classifier import classify, effective_journey_code
from treninfo.core.models import (
    JourneyCode,
    JourneyState,
    SelectionContext,
    TimelineState,
    TrainSnapshot,
)
from treninfo.core.schema_adapter import adapt, require_train
from treninfo.core.stop_timeline import compute_timeline, next_stop


@dataclass(frozen=True)
class TrainStatus:
    snapshot: TrainSnapshot
    journey: JourneyState
    timeline: TimelineState
    effective_code: JourneyCode
    next_stop_name: str | None
    evaluated_at_ms: int


def evaluate_snapshot(snapshot: TrainSnapshot, now_ms: int) -> TrainStatus:
    journey = classify(snapshot, now_ms)
    timeline = compute_timeline(snapshot.stops, journey.code, snapshot.global_delay_minutes, now_ms)
    upcoming = next_stop(snapshot.stops, timeline)
    return TrainStatus(
        snapshot=snapshot,
        journey=journey,
        timeline=timeline,
        effective_code=effective_journey_code(journey, timeline),
        next_stop_name=upcoming.station_name if upcoming else None,
        evaluated_at_ms=now_ms,
    )


def evaluate(
    payload,
    context: SelectionContext | None = None,
    now_ms: int | None = None,
) -> TrainStatus:
    """Full pipeline over a raw payload.

    Raises SelectionRequired, NoData or UpstreamError when the payload does
    not describe exactly one train.
    """
    if now_ms is None:
        now_ms = int(time.time() * 1000)
    snapshot = require_train(adapt(payload, context, now_ms))
    return evaluate_snapshot(snapshot, now_ms)
