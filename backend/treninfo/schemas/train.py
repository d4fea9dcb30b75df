from pydantic import BaseModel

from treninfo.core.models import (
    Choice,
    JourneyCode,
    JourneyState,
    SelectionContext,
    TimelineState,
    TrainSnapshot,
)


class TrainStatusResponse(BaseModel):
    kind: str = "train"
    snapshot: TrainSnapshot
    journey: JourneyState
    timeline: TimelineState
    effective_code: JourneyCode
    next_stop_name: str | None = None
    evaluated_at_ms: int

    @classmethod
    def from_status(cls, status) -> "TrainStatusResponse":
        return cls(
            snapshot=status.snapshot,
            journey=status.journey,
            timeline=status.timeline,
            effective_code=status.effective_code,
            next_stop_name=status.next_stop_name,
            evaluated_at_ms=status.evaluated_at_ms,
        )


class SelectionResponse(BaseModel):
    kind: str = "selection"
    message: str = ""
    choices: list[Choice]


class NormalizeRequest(BaseModel):
    payload: dict
    context: SelectionContext | None = None
    now_ms: int | None = None
