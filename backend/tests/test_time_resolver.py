"""Tests for the timestamp resolver."""

import datetime

from treninfo.core.time_resolver import (
    ROME_TZ,
    base_day_of,
    first_absolute,
    resolve,
    resolve_absolute,
)


def ms(hour: int, minute: int, day: int = 10, second: int = 0) -> int:
    """Epoch ms of a Rome wall-clock time on May 2024."""
    dt = datetime.datetime(2024, 5, day, hour, minute, second, tzinfo=ROME_TZ)
    return int(dt.timestamp() * 1000)


def test_epoch_ms_passes_through():
    assert resolve(ms(10, 30)) == ms(10, 30)
    assert resolve(float(ms(10, 30))) == ms(10, 30)


def test_out_of_range_numbers_are_absent():
    assert resolve(12345) is None
    assert resolve(10**14) is None
    assert resolve(True) is None


def test_wrapped_epoch():
    assert resolve(f"/Date({ms(8, 0)})/") == ms(8, 0)
    # 10 digits are seconds
    assert resolve(f"/Date({ms(8, 0) // 1000})/") == ms(8, 0)


def test_thirteen_digit_string():
    assert resolve(str(ms(9, 15))) == ms(9, 15)


def test_compact_date_time():
    assert resolve("202405101030") == ms(10, 30)
    assert resolve("20240510103045") == ms(10, 30, second=45)
    assert resolve("202413101030") is None  # month 13


def test_iso_strings():
    assert resolve("2024-05-10T10:30:00") == ms(10, 30)  # naive is Rome time
    assert resolve("2024-05-10T08:30:00Z") == ms(10, 30)  # CEST is UTC+2 in May
    assert resolve("2024-05-10T10:30:00+02:00") == ms(10, 30)


def test_bare_clock_anchored_to_base_day():
    base = ms(0, 0)
    assert resolve("10:30", base_day_ms=base) == ms(10, 30)
    assert resolve("1030", base_day_ms=ms(18, 45)) == ms(10, 30)


def test_bare_clock_falls_back_to_now():
    assert resolve("07:05", now_ms=ms(22, 0, day=11)) == ms(7, 5, day=11)


def test_bare_clock_rolls_over_midnight():
    """An overnight run: 00:20 after a 23:50 stop belongs to the next day."""
    previous = ms(23, 50)
    assert resolve("00:20", base_day_ms=ms(0, 0), not_before_ms=previous) == ms(0, 20, day=11)
    # Small backwards steps are real, not a new day
    assert resolve("23:40", base_day_ms=ms(0, 0), not_before_ms=previous) == ms(23, 40)


def test_garbage_is_absent_not_an_error():
    for raw in (None, "", "   ", "domani", "25:00", "12:75", {"a": 1}, "--"):
        assert resolve(raw) is None


def test_first_absolute_skips_clocks_and_garbage():
    assert first_absolute([None, "10:30", "x", ms(6, 0), ms(7, 0)]) == ms(6, 0)
    assert first_absolute(["10:30"]) is None


def test_base_day_of_is_local_midnight():
    assert base_day_of(ms(23, 59)) == ms(0, 0)
    assert base_day_of(ms(0, 1, day=11)) == ms(0, 0, day=11)


def test_resolve_absolute_ignores_bare_clock():
    assert resolve_absolute("10:30") is None
