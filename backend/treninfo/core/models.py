"""Canonical journey model shared by the adapter, the engine and the tracker.

Every backend shape is reduced to these types; nothing downstream of the
schema adapter looks at raw payload keys.
"""

from dataclasses import dataclass, field
from enum import Enum


class DisruptionType(str, Enum):
    NONE = "NONE"
    FULL_SUPPRESSION = "FULL_SUPPRESSION"
    SEGMENT = "SEGMENT"


class JourneyCode(str, Enum):
    PLANNED = "PLANNED"
    RUNNING = "RUNNING"
    PARTIAL = "PARTIAL"
    CANCELLED = "CANCELLED"
    COMPLETED = "COMPLETED"
    UNKNOWN = "UNKNOWN"


class TimelineMode(str, Enum):
    PRE = "PRE"
    STOPPED = "STOPPED"
    MOVING = "MOVING"
    DONE = "DONE"
    UNKNOWN = "UNKNOWN"


@dataclass(frozen=True)
class TimePoint:
    """Scheduled / predicted / actual epoch-ms for one arrival or departure."""

    scheduled_epoch: int | None = None
    predicted_epoch: int | None = None
    actual_epoch: int | None = None
    delay_minutes: int | None = None  # per-stop value as reported upstream

    @property
    def best_epoch(self) -> int | None:
        if self.actual_epoch is not None:
            return self.actual_epoch
        if self.predicted_epoch is not None:
            return self.predicted_epoch
        return self.scheduled_epoch


@dataclass(frozen=True)
class Platform:
    planned: str | None = None
    actual: str | None = None


@dataclass(frozen=True)
class StopRecord:
    station_name: str
    station_code: str | None = None
    arrival: TimePoint | None = None  # None at the origin
    departure: TimePoint | None = None  # None at the terminus
    platform: Platform = field(default_factory=Platform)
    is_suppressed: bool = False

    @property
    def real_arrival(self) -> int | None:
        return self.arrival.actual_epoch if self.arrival else None

    @property
    def real_departure(self) -> int | None:
        return self.departure.actual_epoch if self.departure else None

    @property
    def has_real_evidence(self) -> bool:
        return self.real_arrival is not None or self.real_departure is not None


@dataclass(frozen=True)
class DisruptionEvidence:
    """Raw disruption signals lifted out of a payload by the adapter."""

    subtitle: str = ""
    route_variation: str = ""
    notices: tuple[str, ...] = ()
    cancelled_flag: bool = False
    partial_flag: bool = False
    suppressed_stations: tuple[str, ...] = ()

    def texts(self) -> list[str]:
        chunks = [self.subtitle, self.route_variation, *self.notices]
        return [c.strip() for c in chunks if c and c.strip()]


@dataclass(frozen=True)
class DisruptionInfo:
    type: DisruptionType = DisruptionType.NONE
    terminated_at_station: str | None = None
    cancelled_from_station: str | None = None
    cancelled_to_station: str | None = None
    # FULL_SUPPRESSION boundary: the whole origin -> destination run
    origin: str | None = None
    destination: str | None = None
    reason_text: str = ""


@dataclass(frozen=True)
class LastDetection:
    station_name: str | None = None
    epoch_ms: int | None = None


@dataclass(frozen=True)
class SelectionContext:
    """Identifiers needed to re-request the same run."""

    choice: str | None = None
    technical_id: str | None = None
    origin_code: str | None = None
    reference_timestamp_ms: int | None = None
    date: str | None = None


@dataclass(frozen=True)
class TrainSnapshot:
    number: str
    kind_label: str = ""
    kind_category: str = "unknown"
    origin: str = ""
    destination: str = ""
    stops: tuple[StopRecord, ...] = ()
    global_delay_minutes: int | None = None
    disruption: DisruptionInfo = field(default_factory=DisruptionInfo)
    evidence: DisruptionEvidence = field(default_factory=DisruptionEvidence)
    last_detection: LastDetection = field(default_factory=LastDetection)
    selection_context: SelectionContext = field(default_factory=SelectionContext)


@dataclass(frozen=True)
class JourneyState:
    code: JourneyCode
    label: str
    minutes_to_departure: int | None = None


@dataclass(frozen=True)
class ActiveSegment:
    from_index: int
    to_index: int
    progress: float | None = None


@dataclass(frozen=True)
class TimelineState:
    mode: TimelineMode
    current_index: int = -1
    active_segment: ActiveSegment | None = None


@dataclass(frozen=True)
class Choice:
    label: str
    selection_context: SelectionContext


# Adapter results, tagged by ``kind``.


@dataclass(frozen=True)
class TrainResult:
    snapshot: TrainSnapshot
    kind: str = "train"


@dataclass(frozen=True)
class SelectionResult:
    choices: tuple[Choice, ...]
    message: str = ""
    kind: str = "selection"


@dataclass(frozen=True)
class EmptyResult:
    message: str = ""
    kind: str = "empty"


@dataclass(frozen=True)
class ErrorResult:
    message: str
    kind: str = "error"


AdaptResult = TrainResult | SelectionResult | EmptyResult | ErrorResult
