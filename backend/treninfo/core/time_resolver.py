"""Parse the timestamp encodings seen in rail-status payloads into epoch ms.

Accepted inputs:
  * integers already in epoch-millisecond range
  * 13-digit strings (epoch ms), 12/14-digit compact ``YYYYMMDDHHmm[ss]``
  * wrapped epochs such as ``/Date(1697040000000)/``
  * ISO-like absolute date-times (naive values are Italian local time)
  * bare ``HH:mm`` / ``HHmm`` clocks, anchored to a base day

Nothing here raises: unresolvable input gives ``None``.
"""

import datetime
import re
import time
from collections.abc import Iterable
from zoneinfo import ZoneInfo

# Upstream local times are Europe/Rome
ROME_TZ = ZoneInfo("Europe/Rome")

# Plausible epoch-ms window (~1973 .. ~2286)
MIN_EPOCH_MS = 100_000_000_000
MAX_EPOCH_MS = 10_000_000_000_000

# A bare clock more than this far behind the previous stop belongs to the next day
ROLLOVER_MS = 12 * 3_600_000

_WRAPPED_EPOCH_RE = re.compile(r"Date\((\d{10,13})\)", re.IGNORECASE)
_CLOCK_RE = re.compile(r"^(\d{1,2}):(\d{2})")
_COMPACT_CLOCK_RE = re.compile(r"^(\d{2})(\d{2})$")


def _to_epoch_ms(dt: datetime.datetime) -> int:
    if dt.tzinfo is None:
        dt = dt.replace(tzinfo=ROME_TZ)
    return int(dt.timestamp() * 1000)


def _parse_compact(digits: str) -> int | None:
    try:
        dt = datetime.datetime(
            int(digits[0:4]), int(digits[4:6]), int(digits[6:8]),
            int(digits[8:10]), int(digits[10:12]),
            int(digits[12:14]) if len(digits) == 14 else 0,
        )
    except ValueError:
        return None
    return _to_epoch_ms(dt)


def resolve_absolute(raw) -> int | None:
    """Resolve anything that carries its own date; bare clocks give None."""
    if raw is None or isinstance(raw, bool):
        return None

    if isinstance(raw, (int, float)):
        if raw != raw:  # NaN
            return None
        if MIN_EPOCH_MS < raw < MAX_EPOCH_MS:
            return int(raw)
        return None

    s = str(raw).strip()
    if not s:
        return None

    wrapped = _WRAPPED_EPOCH_RE.search(s)
    if wrapped:
        digits = wrapped.group(1)
        value = int(digits)
        return value * 1000 if len(digits) == 10 else value

    if s.isdigit():
        if len(s) == 13:
            return int(s)
        if len(s) in (12, 14):
            return _parse_compact(s)
        return None

    try:
        parsed = datetime.datetime.fromisoformat(s.replace("Z", "+00:00"))
    except ValueError:
        return None
    return _to_epoch_ms(parsed)


def base_day_of(epoch_ms: int) -> int:
    """Local midnight (Europe/Rome) of the day containing ``epoch_ms``."""
    local = datetime.datetime.fromtimestamp(epoch_ms / 1000, tz=ROME_TZ)
    midnight = datetime.datetime(local.year, local.month, local.day, tzinfo=ROME_TZ)
    return _to_epoch_ms(midnight)


def first_absolute(values: Iterable) -> int | None:
    for raw in values:
        ms = resolve_absolute(raw)
        if ms is not None:
            return ms
    return None


def _parse_clock(raw) -> tuple[int, int] | None:
    if raw is None or isinstance(raw, bool) or isinstance(raw, (int, float)):
        return None
    s = str(raw).strip()
    m = _CLOCK_RE.match(s) or _COMPACT_CLOCK_RE.match(s)
    if not m:
        return None
    hour, minute = int(m.group(1)), int(m.group(2))
    if hour > 23 or minute > 59:
        return None
    return hour, minute


def resolve(
    raw,
    base_day_ms: int | None = None,
    now_ms: int | None = None,
    not_before_ms: int | None = None,
) -> int | None:
    """Resolve ``raw`` to epoch ms or None.

    Bare clocks are anchored to ``base_day_ms`` (any instant of the wanted
    day), falling back to the day of ``now_ms`` / the wall clock. When
    ``not_before_ms`` is given, a bare clock landing more than 12 hours
    before it is moved to the following day.
    """
    absolute = resolve_absolute(raw)
    if absolute is not None:
        return absolute

    clock = _parse_clock(raw)
    if clock is None:
        return None

    anchor = base_day_ms
    if anchor is None:
        anchor = now_ms if now_ms is not None else int(time.time() * 1000)
    day = datetime.datetime.fromtimestamp(anchor / 1000, tz=ROME_TZ)
    hour, minute = clock
    result = _to_epoch_ms(datetime.datetime(day.year, day.month, day.day, hour, minute))

    if not_before_ms is not None and result < not_before_ms - ROLLOVER_MS:
        next_day = day + datetime.timedelta(days=1)
        result = _to_epoch_ms(
            datetime.datetime(next_day.year, next_day.month, next_day.day, hour, minute)
        )
    return result
