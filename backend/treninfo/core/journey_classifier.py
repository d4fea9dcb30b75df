"""Journey state machine: disruption first, then stop evidence."""

from treninfo.core.models import (
    DisruptionType,
    JourneyCode,
    JourneyState,
    TimelineMode,
    TimelineState,
    TrainSnapshot,
)

LABELS = {
    JourneyCode.PLANNED: "Pianificato",
    JourneyCode.RUNNING: "In viaggio",
    JourneyCode.PARTIAL: "Parziale",
    JourneyCode.CANCELLED: "Soppresso",
    JourneyCode.COMPLETED: "Concluso",
    JourneyCode.UNKNOWN: "Sconosciuto",
}


def journey_state(code: JourneyCode, minutes_to_departure: int | None = None) -> JourneyState:
    return JourneyState(code=code, label=LABELS[code], minutes_to_departure=minutes_to_departure)


def past_count(snapshot: TrainSnapshot) -> int:
    """Number of stops carrying a real arrival or departure."""
    return sum(1 for stop in snapshot.stops if stop.has_real_evidence)


def classify(snapshot: TrainSnapshot, now_ms: int) -> JourneyState:
    """Evaluate, in order: suppression, segment cancellation, no evidence yet, running.

    A snapshot without any stops carries no evidence either way and is
    UNKNOWN unless a disruption already decides it.
    """
    kind = snapshot.disruption.type
    if kind == DisruptionType.FULL_SUPPRESSION:
        return journey_state(JourneyCode.CANCELLED)
    if kind == DisruptionType.SEGMENT:
        return journey_state(JourneyCode.PARTIAL)

    if not snapshot.stops:
        return journey_state(JourneyCode.UNKNOWN)

    if past_count(snapshot) == 0:
        origin = snapshot.stops[0]
        scheduled = origin.departure.scheduled_epoch if origin.departure else None
        if scheduled is not None and scheduled > now_ms:
            return journey_state(JourneyCode.PLANNED, round((scheduled - now_ms) / 60_000))
        return journey_state(JourneyCode.PLANNED)

    return journey_state(JourneyCode.RUNNING)


def effective_journey_code(journey: JourneyState, timeline: TimelineState) -> JourneyCode:
    """RUNNING becomes COMPLETED once the timeline has reached the terminus."""
    if journey.code == JourneyCode.RUNNING and timeline.mode == TimelineMode.DONE:
        return JourneyCode.COMPLETED
    return journey.code
