"""Train status REST API endpoints."""

import logging

from fastapi import APIRouter, HTTPException, Query

from treninfo.core.engine import evaluate
from treninfo.core.errors import (
    NoData,
    SelectionRequired,
    TransportError,
    TreninfoError,
    UpstreamError,
)
from treninfo.core.models import SelectionContext
from treninfo.schemas.train import NormalizeRequest, SelectionResponse, TrainStatusResponse

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/trains", tags=["trains"])

# Will be set by main.py
tracker = None


def http_error(exc: TreninfoError) -> HTTPException:
    """Map engine and transport errors to HTTP statuses."""
    if isinstance(exc, NoData):
        return HTTPException(status_code=404, detail=str(exc) or "No train found")
    if isinstance(exc, UpstreamError):
        return HTTPException(status_code=502, detail=str(exc) or "Unusable response from the train backend")
    if isinstance(exc, TransportError):
        if exc.cancelled:
            return HTTPException(status_code=409, detail="Superseded by a newer request")
        return HTTPException(status_code=504, detail=str(exc) or "Train backend unreachable")
    return HTTPException(status_code=500, detail=str(exc))


@router.get("/{number}/status", response_model=TrainStatusResponse | SelectionResponse)
async def train_status(
    number: str,
    choice: str | None = None,
    technical: str | None = None,
    origin_code: str | None = Query(None, alias="originCode"),
    reference_timestamp: int | None = Query(None, alias="referenceTimestamp"),
    date: str | None = None,
):
    """Current status of a train; asks for a choice when the number is ambiguous."""
    if tracker is None:
        raise HTTPException(status_code=503, detail="Service not ready")
    context = SelectionContext(
        choice=choice,
        technical_id=technical,
        origin_code=origin_code,
        reference_timestamp_ms=reference_timestamp,
        date=date,
    )
    try:
        status = await tracker.fetch_status(number, context)
    except SelectionRequired as e:
        return SelectionResponse(message=str(e), choices=list(e.choices))
    except TreninfoError as e:
        logger.info("Status for train %s unavailable: %s", number, e)
        raise http_error(e) from e
    return TrainStatusResponse.from_status(status)


@router.post("/normalize", response_model=TrainStatusResponse | SelectionResponse)
async def normalize(request: NormalizeRequest):
    """Run the engine over a raw backend payload supplied by the caller."""
    try:
        status = evaluate(request.payload, request.context, request.now_ms)
    except SelectionRequired as e:
        return SelectionResponse(message=str(e), choices=list(e.choices))
    except TreninfoError as e:
        raise http_error(e) from e
    return TrainStatusResponse.from_status(status)
