from pydantic import BaseModel

from treninfo.core.models import SelectionContext
from treninfo.core.tracking import EtaSchedule, TrackedTrainState


class TrackRequest(BaseModel):
    train_number: str
    choice: str | None = None
    technical: str | None = None
    origin_code: str | None = None
    reference_timestamp: int | None = None
    date: str | None = None
    target_stop_name: str | None = None
    notify_delay: bool = True
    notify_status: bool = True
    notify_eta: bool = True
    eta_thresholds: list[int] | None = None

    def context(self) -> SelectionContext:
        return SelectionContext(
            choice=self.choice,
            technical_id=self.technical,
            origin_code=self.origin_code,
            reference_timestamp_ms=self.reference_timestamp,
            date=self.date,
        )


class TrackedTrainOut(BaseModel):
    key: str
    train_number: str
    context: SelectionContext
    target_stop_name: str | None = None
    notify_delay: bool
    notify_status: bool
    notify_eta: bool
    eta_thresholds: list[int]
    state: TrackedTrainState
    scheduled: EtaSchedule
    created_at_ms: int | None = None


class CycleSummary(BaseModel):
    tracked: int = 0
    updated: int = 0
    failed: int = 0
    finished: int = 0
    events: int = 0
    elapsed_ms: int = 0
