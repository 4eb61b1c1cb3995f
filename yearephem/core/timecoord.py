# yearephem/core/timecoord.py
# -----------------------------------------------------------------------------
# Time coordinate converter (ERFA aligned; no POSIX timestamp math for JDs)
#
# Public API:
#   Instant                                  frozen, ordered JD(UTC) value
#   to_instant(y, m, d, h, mi, s) -> Instant
#   to_calendar(Instant) -> (y, m, d, h, mi, s)
#   tt_jd_from_utc(jd_utc)                   UTC -> TAI -> TT (two-part ERFA)
#
# Guarantees:
#   • Calendar → JD via erfa.cal2jd, JD → calendar via erfa.jd2cal.
#   • Round trip within 1 ms (time of day is rounded to whole milliseconds).
#   • Non-finite / out-of-range input raises InvalidTime.
# -----------------------------------------------------------------------------
from __future__ import annotations

import calendar
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Tuple, Union, Sequence
import math
import numbers
import warnings

import erfa  # pyERFA
import numpy as np

__all__ = [
    "InvalidTime",
    "Instant",
    "to_instant",
    "to_calendar",
    "tt_jd_from_utc",
]

MJD_ZERO = 2400000.5
_MS_PER_DAY = 86_400_000

class InvalidTime(ValueError):
    """Calendar or instant input that cannot be placed on the time axis."""

CalendarTuple = Tuple[int, int, int, int, int, float]

# ───────────────────────────── Instant ─────────────────────────────

@dataclass(frozen=True, order=True)
class Instant:
    """Continuous time coordinate: Julian Day on the UTC calendar."""
    jd: float

    def __post_init__(self) -> None:
        if not isinstance(self.jd, numbers.Real) or not math.isfinite(self.jd):
            raise InvalidTime(f"instant must be a finite Julian day, got {self.jd!r}")
        object.__setattr__(self, "jd", float(self.jd))

    def __add__(self, days: float) -> "Instant":
        return Instant(self.jd + float(days))

    def __sub__(self, other: Union["Instant", float]):
        if isinstance(other, Instant):
            return self.jd - other.jd
        return Instant(self.jd - float(other))

    def plus_seconds(self, seconds: float) -> "Instant":
        return Instant(self.jd + float(seconds) / 86400.0)

    def seconds_since(self, other: "Instant") -> float:
        return (self.jd - other.jd) * 86400.0

    # ---- calendar views -------------------------------------------------
    @classmethod
    def from_calendar(cls, year: int, month: int, day: int,
                      hour: float = 0.0, minute: float = 0.0, second: float = 0.0) -> "Instant":
        return to_instant(year, month, day, hour, minute, second)

    def to_calendar(self) -> CalendarTuple:
        return to_calendar(self)

    @classmethod
    def from_datetime(cls, dt: datetime) -> "Instant":
        if dt.tzinfo is None:
            raise InvalidTime("datetime must be timezone-aware (UTC)")
        u = dt.astimezone(timezone.utc)
        return to_instant(u.year, u.month, u.day, u.hour, u.minute,
                          u.second + u.microsecond / 1e6)

    def to_datetime(self) -> datetime:
        y, m, d, hh, mi, s = self.to_calendar()
        if not (1 <= y <= 9999):
            raise InvalidTime(f"year {y} not representable as datetime")
        whole = int(s)
        micro = int(round((s - whole) * 1_000_000))
        if micro >= 1_000_000:
            micro = 999_999
        return datetime(y, m, d, hh, mi, whole, micro, tzinfo=timezone.utc)

    def iso(self) -> str:
        """UTC ISO-8601 at second resolution, e.g. 2024-03-20T03:06:21Z."""
        y, m, d, hh, mi, s = self.to_calendar()
        return f"{y:04d}-{m:02d}-{d:02d}T{hh:02d}:{mi:02d}:{int(s):02d}Z"

    def __repr__(self) -> str:  # pragma: no cover - debugging aid
        return f"Instant({self.jd!r} ~ {self.iso()})"

# ───────────────────────────── Conversions ─────────────────────────────

def _require_finite(**fields: float) -> None:
    for name, v in fields.items():
        if not isinstance(v, numbers.Real) or isinstance(v, bool) or not math.isfinite(v):
            raise InvalidTime(f"{name} must be a finite number, got {v!r}")

def _require_integral(**fields: float) -> None:
    for name, v in fields.items():
        if float(v) != math.floor(float(v)):
            raise InvalidTime(f"{name} must be an integer, got {v!r}")

def _require_valid_date(year: int, month: int, day: int) -> None:
    if not 1 <= month <= 12:
        raise InvalidTime(f"month must be 1..12, got {month}")
    last = 29 if month == 2 and calendar.isleap(year) else calendar.mdays[month]
    if not 1 <= day <= last:
        raise InvalidTime(f"day must be 1..{last} for {year}-{month:02d}, got {day}")

def to_instant(year: int, month: int, day: int,
               hour: float = 0.0, minute: float = 0.0, second: float = 0.0) -> Instant:
    """
    Gregorian UTC calendar components -> Instant.

    Hours, minutes and seconds may be fractional (12.5 h == 12:30:00). The
    time of day must lie within [00:00:00, 24:00:00].
    """
    _require_finite(year=year, month=month, day=day, hour=hour, minute=minute, second=second)
    _require_integral(year=year, month=month, day=day)
    if hour < 0 or minute < 0 or second < 0:
        raise InvalidTime("time fields must be non-negative")

    day_seconds = float(hour) * 3600.0 + float(minute) * 60.0 + float(second)
    if day_seconds > 86400.0:
        raise InvalidTime(f"time of day exceeds 24:00:00 ({day_seconds} s)")

    _require_valid_date(int(year), int(month), int(day))
    try:
        djm0, djm = erfa.cal2jd(int(year), int(month), int(day))
    except Exception as e:
        raise InvalidTime(f"invalid calendar date {year}-{month}-{day}: {e}") from e

    return Instant(math.fsum((float(djm0), float(djm), day_seconds / 86400.0)))

def to_calendar(instant: Instant) -> CalendarTuple:
    """Instant -> (year, month, day, hour, minute, second) in UTC."""
    if not isinstance(instant, Instant):
        raise InvalidTime(f"expected Instant, got {type(instant).__name__}")

    mjd = instant.jd - MJD_ZERO
    day0 = math.floor(mjd)
    ms = int(round((mjd - day0) * _MS_PER_DAY))
    if ms >= _MS_PER_DAY:
        day0 += 1
        ms -= _MS_PER_DAY

    try:
        iy, im, iday, _fd = erfa.jd2cal(MJD_ZERO, float(day0))
    except Exception as e:
        raise InvalidTime(f"Julian day {instant.jd} outside the calendar range: {e}") from e

    hh = ms // 3_600_000
    mi = (ms // 60_000) % 60
    sec = (ms % 60_000) / 1000.0
    return int(iy), int(im), int(iday), int(hh), int(mi), sec

# ───────────────────────────── Timescales ─────────────────────────────

def _split_jd(jd):
    """Two-part JD (integer day, fraction) for ERFA; works on floats and arrays."""
    arr = np.asarray(jd, dtype=float)
    d1 = np.floor(arr)
    return d1, arr - d1

def tt_jd_from_utc(jd_utc: Union[float, Sequence[float]]):
    """
    UTC JD -> TT JD using the exact ERFA chain UTC -> TAI -> TT.

    Accepts a float or a sequence (vectorized through ERFA ufuncs). ERFA flags
    years before 1960 or beyond the leap-second table as dubious; those
    warnings are expected for historical/future scans and are silenced.
    """
    utc1, utc2 = _split_jd(jd_utc)
    with warnings.catch_warnings():
        warnings.simplefilter("ignore", erfa.ErfaWarning)
        tai1, tai2 = erfa.utctai(utc1, utc2)
        tt1, tt2 = erfa.taitt(tai1, tai2)
    out = tt1 + tt2
    if getattr(out, "ndim", 0) == 0:
        return float(out)
    return out
