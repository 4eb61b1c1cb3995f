# tests/test_timecoord.py
from __future__ import annotations

import math
from datetime import datetime, timedelta, timezone

import pytest
from hypothesis import given, strategies as st

from yearephem.core.timecoord import (
    Instant,
    InvalidTime,
    to_calendar,
    to_instant,
    tt_jd_from_utc,
)


def _seconds_of(y, m, d, hh, mi, s):
    return datetime(y, m, d, tzinfo=timezone.utc) + timedelta(hours=hh, minutes=mi, seconds=s)


def test_j2000_epoch():
    assert to_instant(2000, 1, 1, 12, 0, 0).jd == pytest.approx(2451545.0, abs=1e-9)


def test_unix_epoch():
    assert to_instant(1970, 1, 1).jd == pytest.approx(2440587.5, abs=1e-9)


def test_fractional_hours_carry_into_day():
    a = to_instant(2024, 3, 20, 3.5)
    b = to_instant(2024, 3, 20, 3, 30, 0)
    assert a.jd == pytest.approx(b.jd, abs=1e-9)


def test_end_of_day_rolls_over():
    assert to_calendar(to_instant(2024, 2, 29, 24, 0, 0)) == (2024, 3, 1, 0, 0, 0.0)


@given(
    year=st.integers(min_value=1600, max_value=2400),
    month=st.integers(min_value=1, max_value=12),
    day=st.integers(min_value=1, max_value=28),
    hour=st.integers(min_value=0, max_value=23),
    minute=st.integers(min_value=0, max_value=59),
    second=st.floats(min_value=0.0, max_value=59.0, allow_nan=False),
)
def test_calendar_round_trip_within_one_second(year, month, day, hour, minute, second):
    y, m, d, hh, mi, s = to_calendar(to_instant(year, month, day, hour, minute, second))
    got = _seconds_of(y, m, d, hh, mi, s)
    want = _seconds_of(year, month, day, hour, minute, second)
    assert abs((got - want).total_seconds()) < 1.0


@pytest.mark.parametrize("args", [
    (2024, 13, 1),
    (2024, 2, 30),
    (2024, 0, 10),
    (2023, 2, 29),
    (2024, 4, 31),
    (2024, 1, 0),
    (2024, 1, 1, -1),
    (2024, 1, 1, 23, 59, 61.5),
    (2024.5, 1, 1),
    (float("nan"), 1, 1),
    (2024, 1, 1, float("inf")),
])
def test_invalid_calendar_input(args):
    with pytest.raises(InvalidTime):
        to_instant(*args)


def test_invalid_time_is_a_value_error():
    assert issubclass(InvalidTime, ValueError)


def test_instant_rejects_non_finite():
    with pytest.raises(InvalidTime):
        Instant(math.nan)


def test_instant_arithmetic_and_ordering():
    t = to_instant(2024, 1, 1, 12)
    later = t + 0.5
    assert later > t
    assert later - t == pytest.approx(0.5)
    assert t.plus_seconds(90).seconds_since(t) == pytest.approx(90.0, abs=1e-4)
    assert (later - 0.5).jd == pytest.approx(t.jd)


def test_iso_and_datetime_views():
    t = to_instant(2024, 3, 20, 3, 6, 21)
    assert t.iso() == "2024-03-20T03:06:21Z"
    dt = t.to_datetime()
    assert dt.tzinfo is timezone.utc
    assert Instant.from_datetime(dt).jd == pytest.approx(t.jd, abs=1e-8)


def test_naive_datetime_rejected():
    with pytest.raises(InvalidTime):
        Instant.from_datetime(datetime(2024, 1, 1))


def test_tt_offset_is_about_69_seconds_in_2024():
    jd = to_instant(2024, 6, 1).jd
    assert (tt_jd_from_utc(jd) - jd) * 86400.0 == pytest.approx(69.184, abs=1e-3)


def test_tt_vectorized_matches_scalar():
    jds = [to_instant(2024, m, 1).jd for m in (1, 6, 12)]
    out = tt_jd_from_utc(jds)
    assert len(out) == 3
    for a, b in zip(out, jds):
        assert a == pytest.approx(tt_jd_from_utc(b), abs=1e-9)


@pytest.mark.parametrize("y, m, d", [(2024, 2, 29), (2000, 2, 29), (2024, 12, 31), (-100, 3, 1)])
def test_calendar_edges_accepted(y, m, d):
    assert to_calendar(to_instant(y, m, d))[:3] == (y, m, d)


def test_far_julian_day_is_invalid_time():
    with pytest.raises(InvalidTime):
        to_calendar(Instant(-1.0e9))
