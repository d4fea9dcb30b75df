"""Train tracking REST API endpoints."""

from fastapi import APIRouter, HTTPException

from treninfo.api.trains import http_error
from treninfo.core.errors import SelectionRequired, TreninfoError
from treninfo.schemas.tracking import CycleSummary, TrackedTrainOut, TrackRequest
from treninfo.schemas.train import SelectionResponse

router = APIRouter(prefix="/api/tracking", tags=["tracking"])

# Will be set by main.py
tracker = None


def _require_tracker():
    if tracker is None:
        raise HTTPException(status_code=503, detail="Service not ready")
    return tracker


@router.get("", response_model=list[TrackedTrainOut])
async def list_tracked():
    """All tracked trains, most recently added first."""
    items = await _require_tracker().list_tracked()
    return [TrackedTrainOut.model_validate(item.to_dict()) for item in items]


@router.post("", response_model=TrackedTrainOut | SelectionResponse)
async def enable_tracking(request: TrackRequest):
    """Start tracking a run; an ambiguous number returns the candidates instead."""
    try:
        item = await _require_tracker().enable(
            request.train_number,
            request.context(),
            target_stop_name=request.target_stop_name,
            notify_delay=request.notify_delay,
            notify_status=request.notify_status,
            notify_eta=request.notify_eta,
            eta_thresholds=request.eta_thresholds,
        )
    except SelectionRequired as e:
        return SelectionResponse(message=str(e), choices=list(e.choices))
    except TreninfoError as e:
        raise http_error(e) from e
    return TrackedTrainOut.model_validate(item.to_dict())


@router.delete("/{key:path}")
async def disable_tracking(key: str):
    removed = await _require_tracker().disable(key)
    if not removed:
        raise HTTPException(status_code=404, detail="Not tracked")
    return {"removed": key}


@router.post("/run", response_model=CycleSummary)
async def run_cycle():
    """Run one tracking cycle now instead of waiting for the scheduler."""
    summary = await _require_tracker().run_tracking_cycle()
    return CycleSummary(**summary)
