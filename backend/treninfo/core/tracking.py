"""Tracked trains and the poll-to-poll diff that decides which notifications fire.

The diff is pure: it gets the previously persisted state and the freshly
evaluated snapshot and returns trigger facts plus the state to persist.
Delivering notifications and storing state belong to the caller.
"""

from dataclasses import asdict, dataclass, field

from treninfo.core.journey_classifier import effective_journey_code
from treninfo.core.models import (
    JourneyCode,
    JourneyState,
    SelectionContext,
    TimelineState,
    TrainSnapshot,
)
from treninfo.core.stop_timeline import next_stop

DEFAULT_ETA_THRESHOLDS = (10, 3)

# Journey codes worth telling the user about
ALERT_CODES = frozenset({JourneyCode.CANCELLED, JourneyCode.COMPLETED, JourneyCode.PARTIAL})
FINAL_CODES = frozenset({JourneyCode.CANCELLED, JourneyCode.COMPLETED})


def _part(value) -> str | None:
    if value is None:
        return None
    s = str(value).strip()
    return s or None


def tracking_key(
    train_number,
    choice=None,
    technical_id=None,
    origin_code=None,
    reference_timestamp_ms=None,
    date=None,
) -> str:
    """Stable key for one run: ``number|choice:..|tech:..|originCode:..|ts:..|date:..``.

    Absent parts are left out, so the same run maps to the same key
    regardless of which optional identifiers a poll happened to carry.
    """
    parts = [_part(train_number) or ""]
    for prefix, value in (
        ("choice", choice),
        ("tech", technical_id),
        ("originCode", origin_code),
        ("ts", reference_timestamp_ms),
        ("date", date),
    ):
        value = _part(value)
        if value is not None:
            parts.append(f"{prefix}:{value}")
    return "|".join(parts)


def tracking_key_for(train_number, context: SelectionContext) -> str:
    return tracking_key(
        train_number,
        context.choice,
        context.technical_id,
        context.origin_code,
        context.reference_timestamp_ms,
        context.date,
    )


def notification_key(key: str, stop_name: str, threshold_minutes: int) -> str:
    """Idempotency key of one ETA notification."""
    return f"{key}#{stop_name}#{threshold_minutes}"


@dataclass
class TrackedTrainState:
    last_delay_minutes: int | None = None
    last_journey_state_code: JourneyCode | None = None
    last_next_stop_name: str | None = None
    last_updated_epoch_ms: int | None = None


@dataclass
class EtaSchedule:
    """Thresholds already notified for ``stop_name``."""

    stop_name: str | None = None
    thresholds: tuple[int, ...] = ()


@dataclass
class TrackedTrain:
    key: str
    train_number: str
    context: SelectionContext = field(default_factory=SelectionContext)
    target_stop_name: str | None = None
    notify_delay: bool = True
    notify_status: bool = True
    notify_eta: bool = True
    eta_thresholds: tuple[int, ...] = DEFAULT_ETA_THRESHOLDS
    state: TrackedTrainState = field(default_factory=TrackedTrainState)
    scheduled: EtaSchedule = field(default_factory=EtaSchedule)
    created_at_ms: int | None = None

    def to_dict(self) -> dict:
        data = asdict(self)
        code = self.state.last_journey_state_code
        data["state"]["last_journey_state_code"] = code.value if code else None
        return data

    @classmethod
    def from_dict(cls, data: dict) -> "TrackedTrain":
        state = dict(data.get("state") or {})
        code = state.get("last_journey_state_code")
        state["last_journey_state_code"] = JourneyCode(code) if code else None
        scheduled = data.get("scheduled") or {}
        return cls(
            key=data["key"],
            train_number=data["train_number"],
            context=SelectionContext(**(data.get("context") or {})),
            target_stop_name=data.get("target_stop_name"),
            notify_delay=data.get("notify_delay", True),
            notify_status=data.get("notify_status", True),
            notify_eta=data.get("notify_eta", True),
            eta_thresholds=tuple(data.get("eta_thresholds") or DEFAULT_ETA_THRESHOLDS),
            state=TrackedTrainState(**state),
            scheduled=EtaSchedule(
                stop_name=scheduled.get("stop_name"),
                thresholds=tuple(scheduled.get("thresholds") or ()),
            ),
            created_at_ms=data.get("created_at_ms"),
        )


@dataclass(frozen=True)
class EtaCrossing:
    stop_name: str
    threshold_minutes: int
    arrival_epoch_ms: int
    notification_key: str


@dataclass(frozen=True)
class TrackingDiff:
    delay_changed: bool
    previous_delay_minutes: int | None
    current_delay_minutes: int | None
    status_transition: JourneyCode | None
    eta_crossings: tuple[EtaCrossing, ...]
    invalidated_keys: tuple[str, ...]
    next_schedule: EtaSchedule
    next_state: TrackedTrainState

    @property
    def has_triggers(self) -> bool:
        return (
            self.delay_changed
            or self.status_transition is not None
            or bool(self.eta_crossings)
            or bool(self.invalidated_keys)
        )


def _find_stop(snapshot: TrainSnapshot, name: str):
    wanted = name.strip().lower()
    for stop in snapshot.stops:
        if stop.station_name.strip().lower() == wanted:
            return stop
    return None


def _valid_thresholds(thresholds) -> list[int]:
    return sorted({int(t) for t in thresholds if t is not None and int(t) > 0}, reverse=True)


def diff(
    previous: TrackedTrainState,
    snapshot: TrainSnapshot,
    journey: JourneyState,
    timeline: TimelineState,
    now_ms: int,
    key: str = "",
    target_stop_name: str | None = None,
    thresholds=DEFAULT_ETA_THRESHOLDS,
    schedule: EtaSchedule | None = None,
) -> TrackingDiff:
    """Compare a new evaluation with the persisted state of a tracked run.

    * delay: fires only when both the old and the new value are numbers and differ
    * status: fires only on a change into CANCELLED, COMPLETED or PARTIAL
    * eta: each threshold fires once per target stop, when the best known
      arrival there is no more than ``threshold`` minutes away
    """
    schedule = schedule or EtaSchedule()

    old_delay = previous.last_delay_minutes
    new_delay = snapshot.global_delay_minutes
    delay_changed = old_delay is not None and new_delay is not None and old_delay != new_delay

    code = effective_journey_code(journey, timeline)
    old_code = previous.last_journey_state_code
    transition = None
    if old_code is not None and code != old_code and code in ALERT_CODES:
        transition = code

    upcoming = next_stop(snapshot.stops, timeline)
    upcoming_name = upcoming.station_name if upcoming else None
    target = target_stop_name or upcoming_name

    invalidated: tuple[str, ...] = ()
    fired: set[int] = set()
    if schedule.stop_name and schedule.stop_name != target:
        invalidated = tuple(notification_key(key, schedule.stop_name, t) for t in schedule.thresholds)
    elif schedule.stop_name:
        fired = set(schedule.thresholds)

    crossings = []
    stop = _find_stop(snapshot, target) if target else None
    arrival_ms = stop.arrival.best_epoch if stop is not None and stop.arrival is not None else None
    if arrival_ms is not None and arrival_ms >= now_ms:
        for threshold in _valid_thresholds(thresholds):
            if threshold in fired or arrival_ms - now_ms > threshold * 60_000:
                continue
            fired.add(threshold)
            crossings.append(
                EtaCrossing(
                    stop_name=target,
                    threshold_minutes=threshold,
                    arrival_epoch_ms=arrival_ms,
                    notification_key=notification_key(key, target, threshold),
                )
            )

    next_state = TrackedTrainState(
        last_delay_minutes=new_delay if new_delay is not None else old_delay,
        last_journey_state_code=code,
        last_next_stop_name=upcoming_name,
        last_updated_epoch_ms=now_ms,
    )
    return TrackingDiff(
        delay_changed=delay_changed,
        previous_delay_minutes=old_delay,
        current_delay_minutes=new_delay,
        status_transition=transition,
        eta_crossings=tuple(crossings),
        invalidated_keys=invalidated,
        next_schedule=EtaSchedule(stop_name=target, thresholds=tuple(sorted(fired, reverse=True))),
        next_state=next_state,
    )
