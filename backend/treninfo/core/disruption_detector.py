"""Classify disruption evidence into none / full suppression / segment cancellation.

Evidence is free Italian text (subtitle, route variation, remediation
notices) plus explicit flags and the suppressed-stop list. Suppression
strictly means the train never left its origin: once there is real
departure or arrival evidence, any cancellation is a segment cancellation.
"""

import logging
import re
from collections.abc import Sequence
from dataclasses import dataclass

from treninfo.core.models import (
    DisruptionEvidence,
    DisruptionInfo,
    DisruptionType,
    LastDetection,
    StopRecord,
)

logger = logging.getLogger(__name__)

CANCELLATION_STEMS = ("cancell", "soppress")
PARTIAL_STEMS = (
    "limitat",
    "limitazione",
    "termina",
    "fermo a",
    "fermato a",
    "ferma a",
    "interrott",
)

_SEGMENT_RE = re.compile(r"treno\s+cancellato\s+da\s+(.+?)\s+a\s+(.+?)(?:\.|$)", re.IGNORECASE)
_ARRIVES_AT_RE = re.compile(r"arriva\s+a\s+([^.]+?)(?:\.|$)", re.IGNORECASE)
_LIMITED_TO_RE = re.compile(
    r"(?:corsa|treno)\s+limitat[oa]\s+(?:a|fino\s+a)\s+([^.]+?)(?:\.|$)", re.IGNORECASE
)


@dataclass(frozen=True)
class PartialBoundary:
    cancelled_from: str | None = None
    cancelled_to: str | None = None
    terminated_at: str | None = None


def parse_disruption_phrases(text: str | None) -> PartialBoundary | None:
    """Extract station boundaries from one evidence sentence.

    Grammar (case-insensitive, first match per pattern):
      "treno cancellato da <FROM> a <TO>"
      "arriva a <STATION>"
      "corsa|treno limitato|limitata a|fino a <STATION>"
    Returns None when nothing structured is found.
    """
    if not text or not text.strip():
        return None

    cancelled_from = cancelled_to = terminated_at = None

    segment = _SEGMENT_RE.search(text)
    if segment:
        cancelled_from = segment.group(1).strip()
        cancelled_to = segment.group(2).strip()

    arrives = _ARRIVES_AT_RE.search(text)
    if arrives:
        terminated_at = arrives.group(1).strip()

    limited = _LIMITED_TO_RE.search(text)
    if limited and not terminated_at:
        terminated_at = limited.group(1).strip()

    if not cancelled_from and terminated_at:
        cancelled_from = terminated_at

    if not (cancelled_from or cancelled_to or terminated_at):
        return None
    return PartialBoundary(
        cancelled_from=cancelled_from,
        cancelled_to=cancelled_to,
        terminated_at=terminated_at,
    )


def _contains_any(chunks: list[str], stems: tuple[str, ...]) -> bool:
    return any(stem in chunk for chunk in chunks for stem in stems)


def last_real_index(stops: Sequence[StopRecord]) -> int:
    """Index of the last stop with a real arrival or departure, or -1."""
    last = -1
    for i, stop in enumerate(stops):
        if stop.has_real_evidence:
            last = i
    return last


def has_departed(stops: Sequence[StopRecord]) -> bool:
    """A real arrival or departure anywhere means the run left its origin."""
    return last_real_index(stops) >= 0


def detect(
    evidence: DisruptionEvidence,
    stops: Sequence[StopRecord],
    origin: str = "",
    destination: str = "",
    last_detection: LastDetection | None = None,
) -> DisruptionInfo:
    texts = evidence.texts()
    lowered = [t.lower() for t in texts]
    reason_text = texts[0] if texts else ""

    is_cancelled = evidence.cancelled_flag or _contains_any(lowered, CANCELLATION_STEMS)
    is_partial = False
    if not is_cancelled:
        is_partial = (
            evidence.partial_flag
            or bool(evidence.suppressed_stations)
            or _contains_any(lowered, PARTIAL_STEMS)
        )

    origin_name = stops[0].station_name if stops else origin
    destination_name = stops[-1].station_name if stops else destination
    origin_name = origin_name or origin
    destination_name = destination_name or destination

    departed = has_departed(stops)

    if is_cancelled and not departed:
        return DisruptionInfo(
            type=DisruptionType.FULL_SUPPRESSION,
            origin=origin_name or None,
            destination=destination_name or None,
            reason_text=reason_text,
        )

    if (is_cancelled or is_partial) and departed:
        boundary = next(
            (b for b in (parse_disruption_phrases(t) for t in texts) if b is not None),
            None,
        )
        idx = last_real_index(stops)
        fallback = stops[idx].station_name if idx >= 0 else None
        if not fallback and last_detection is not None:
            fallback = last_detection.station_name
        if boundary is None:
            logger.debug("No structured boundary in %r, using stop index %d", texts, idx)
            boundary = PartialBoundary()

        terminated_at = boundary.terminated_at or fallback
        return DisruptionInfo(
            type=DisruptionType.SEGMENT,
            terminated_at_station=terminated_at,
            cancelled_from_station=boundary.cancelled_from or terminated_at or origin_name or None,
            cancelled_to_station=boundary.cancelled_to or destination_name or None,
            reason_text=reason_text,
        )

    return DisruptionInfo(type=DisruptionType.NONE, reason_text=reason_text)
