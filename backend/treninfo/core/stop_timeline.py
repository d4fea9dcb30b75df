"""Stop timeline reconciliation: where is the train right now?

Only real timestamps place the train. Scheduled or predicted times are
used to measure progress along a segment the train is known to be on,
never to decide which segment that is.
"""

from collections.abc import Sequence

from treninfo.core.delays import effective_delay_minutes
from treninfo.core.models import (
    ActiveSegment,
    JourneyCode,
    StopRecord,
    TimelineMode,
    TimelineState,
)

# Displayed progress while the next arrival is still unconfirmed
MAX_UNCONFIRMED_PROGRESS = 0.98


def predicted_arrival(stop: StopRecord, global_delay_minutes: int | None) -> int | None:
    arrival = stop.arrival
    if arrival is None:
        return None
    if arrival.predicted_epoch is not None:
        return arrival.predicted_epoch
    if arrival.scheduled_epoch is None:
        return None
    delay = effective_delay_minutes(arrival.delay_minutes, global_delay_minutes, stop.has_real_evidence)
    return arrival.scheduled_epoch + (delay or 0) * 60_000


def segment_progress(
    departed_ms: int,
    arrival_ms: int | None,
    now_ms: int,
    arrival_confirmed: bool = False,
) -> float | None:
    if arrival_ms is None:
        return None
    span = arrival_ms - departed_ms
    ratio = 1.0 if span <= 0 else (now_ms - departed_ms) / span
    ratio = min(1.0, max(0.0, ratio))
    if not arrival_confirmed and round(ratio, 2) >= 1.0:
        return MAX_UNCONFIRMED_PROGRESS
    return ratio


def _last_evidence_index(stops: Sequence[StopRecord], now_ms: int) -> int:
    last = -1
    for i, stop in enumerate(stops):
        arr, dep = stop.real_arrival, stop.real_departure
        if (arr is not None and arr <= now_ms) or (dep is not None and dep <= now_ms):
            last = i
    return last


def compute_timeline(
    stops: Sequence[StopRecord],
    journey_code: JourneyCode,
    global_delay_minutes: int | None,
    now_ms: int,
) -> TimelineState:
    """Timeline mode, current stop and active segment for ``now_ms``.

    The furthest stop with real evidence at or before ``now_ms`` decides:
    arrived there and not yet left -> STOPPED, left it -> MOVING towards
    the next stop, arrived at the terminus -> DONE. A stop whose departure
    went unreported while later stops have evidence is skipped, so the
    index never moves backwards.
    """
    if not stops:
        return TimelineState(mode=TimelineMode.UNKNOWN)

    if journey_code == JourneyCode.PLANNED:
        return TimelineState(mode=TimelineMode.PRE, current_index=0 if stops[0].platform.actual else -1)

    last = len(stops) - 1
    i = _last_evidence_index(stops, now_ms)
    if i < 0:
        return TimelineState(mode=TimelineMode.UNKNOWN)

    stop = stops[i]
    arrived = stop.real_arrival is not None and stop.real_arrival <= now_ms
    left = stop.real_departure is not None and stop.real_departure <= now_ms

    if i == last:
        if arrived:
            return TimelineState(mode=TimelineMode.DONE, current_index=last)
        return TimelineState(mode=TimelineMode.UNKNOWN)

    if arrived and not left:
        return TimelineState(mode=TimelineMode.STOPPED, current_index=i)

    if left:
        nxt = stops[i + 1]
        progress = segment_progress(
            stop.real_departure,
            predicted_arrival(nxt, global_delay_minutes),
            now_ms,
            arrival_confirmed=nxt.real_arrival is not None and nxt.real_arrival <= now_ms,
        )
        return TimelineState(
            mode=TimelineMode.MOVING,
            current_index=i,
            active_segment=ActiveSegment(from_index=i, to_index=i + 1, progress=progress),
        )

    return TimelineState(mode=TimelineMode.UNKNOWN)


def next_stop(stops: Sequence[StopRecord], timeline: TimelineState) -> StopRecord | None:
    """The stop the train is heading to, if the timeline says anything about it."""
    if not stops:
        return None
    if timeline.mode == TimelineMode.MOVING and timeline.active_segment is not None:
        return stops[timeline.active_segment.to_index]
    if timeline.mode == TimelineMode.STOPPED and timeline.current_index + 1 < len(stops):
        return stops[timeline.current_index + 1]
    if timeline.mode == TimelineMode.PRE:
        return stops[1] if len(stops) > 1 else stops[0]
    return None
