"""Delay parsing and the rule deciding which delay a prediction uses."""

import re

_DELAY_WITH_UNIT_RE = re.compile(r"([+-]?\d+)\s*min", re.IGNORECASE)


def _as_number(raw) -> int | None:
    if raw is None or isinstance(raw, bool):
        return None
    if isinstance(raw, (int, float)):
        if raw != raw:  # NaN
            return None
        return int(round(raw))
    s = str(raw).strip().replace(",", ".")
    if not s:
        return None
    try:
        return int(round(float(s)))
    except ValueError:
        return None


def parse_delay_text(text) -> int | None:
    """Extract a signed integer followed by a minute unit: '+5 min', 'ritardo -3 min'.

    An unsigned value in an 'anticipo' text ('3 min anticipo') is early, so negative.
    """
    if not isinstance(text, str):
        return None
    m = _DELAY_WITH_UNIT_RE.search(text)
    if not m:
        return None
    value = int(m.group(1))
    if m.group(1).isdigit() and "anticipo" in text.lower():
        return -value
    return value


def resolve_delay(numeric, *texts) -> int | None:
    """Explicit numeric field first, then free text, else None."""
    value = _as_number(numeric)
    if value is not None:
        return value
    for text in texts:
        if isinstance(text, (list, tuple)):
            for item in text:
                parsed = parse_delay_text(item)
                if parsed is not None:
                    return parsed
            continue
        parsed = parse_delay_text(text)
        if parsed is not None:
            return parsed
    return None


def effective_delay_minutes(
    stop_delay: int | None,
    global_delay: int | None,
    has_real_time: bool,
) -> int | None:
    """Delay to add to a scheduled time when predicting it.

    Upstream feeds keep reporting 0 at future stops while the train runs
    late, so until a stop has a real time a non-positive per-stop value
    yields to a positive global delay. Otherwise per-stop wins.
    """
    if not has_real_time and global_delay is not None and global_delay > 0:
        if stop_delay is None or stop_delay <= 0:
            return global_delay
    if stop_delay is not None:
        return stop_delay
    return global_delay
