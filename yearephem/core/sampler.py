# yearephem/core/sampler.py
"""
Position sampler: one oracle longitude per body per grid instant.

Speeds are derived here, never taken from the oracle:
  • backward wrap-normalized difference against the body's last present sample;
  • ±1 min central difference against the oracle when there is no such sample
    (first frame, or right after a frame where the body was absent).
"""
from __future__ import annotations

from typing import Dict, List, Optional, Sequence
import logging
import math

from yearephem.core.constants import (
    DEFAULT_SAMPLE_INTERVAL_H,
    SECONDS_PER_DAY,
    SPEED_DELTA_S,
    TRACKED_BODIES,
    delta_deg,
)
from yearephem.core.ephemeris_adapter import OracleUnavailable, QuerySession
from yearephem.core.events import BodySample, SampleFrame
from yearephem.core.timecoord import Instant, InvalidTime, to_instant

log = logging.getLogger(__name__)

__all__ = ["year_grid", "sample", "central_speed"]

def year_grid(year: int, sample_interval_hours: float = DEFAULT_SAMPLE_INTERVAL_H) -> List[Instant]:
    """Jan 1 12:00 UTC .. Dec 31 23:59:59 UTC inclusive, evenly spaced."""
    step_h = float(sample_interval_hours)
    if not math.isfinite(step_h) or step_h <= 0:
        raise InvalidTime(f"sample interval must be a positive number of hours, got {sample_interval_hours!r}")
    start = to_instant(year, 1, 1, 12, 0, 0)
    end = to_instant(year, 12, 31, 23, 59, 59)
    step_d = step_h / 24.0
    n = int(math.floor((end.jd - start.jd) / step_d + 1e-9)) + 1
    return [Instant(start.jd + k * step_d) for k in range(n)]

def central_speed(session: QuerySession, instant: Instant, body: str,
                  delta_s: float = SPEED_DELTA_S) -> float:
    """Central-difference speed (deg/day) at one instant; raises OracleUnavailable."""
    lo = session.longitude(instant.plus_seconds(-delta_s), body)
    hi = session.longitude(instant.plus_seconds(delta_s), body)
    return delta_deg(lo, hi) / (2.0 * delta_s / SECONDS_PER_DAY)

def _body_longitudes(session: QuerySession, grid: Sequence[Instant], body: str) -> List[Optional[float]]:
    """Whole grid in one round trip; per-instant queries when the batch fails."""
    try:
        return list(session.longitudes(grid, body))
    except OracleUnavailable as e:
        log.debug("batched sampling failed for %s (%s); querying per instant", body, e)
    out: List[Optional[float]] = []
    for t in grid:
        try:
            out.append(session.longitude(t, body))
        except OracleUnavailable as e:
            log.debug("no sample for %s at JD %.6f: %s", body, t.jd, e)
            out.append(None)
    return out

def _forward_speed(grid: Sequence[Instant], lons: Sequence[Optional[float]], i: int) -> Optional[float]:
    """Speed from sample i to the next present sample, or None if there is none."""
    for j in range(i + 1, len(grid)):
        if lons[j] is not None:
            return delta_deg(lons[i], lons[j]) / (grid[j] - grid[i])
    return None

def sample(session: QuerySession, year: int,
           sample_interval_hours: float = DEFAULT_SAMPLE_INTERVAL_H,
           bodies: Sequence[str] = TRACKED_BODIES) -> List[SampleFrame]:
    grid = year_grid(year, sample_interval_hours)
    per_frame: List[Dict[str, BodySample]] = [{} for _ in grid]

    for body in bodies:
        lons = _body_longitudes(session, grid, body)
        last: Optional[BodySample] = None
        for i, (t, lon) in enumerate(zip(grid, lons)):
            if lon is None:
                last = None
                continue
            if last is not None:
                speed = delta_deg(last.longitude, lon) / (t - last.instant)
            else:
                try:
                    speed = central_speed(session, t, body)
                except OracleUnavailable as e:
                    log.debug("central difference failed for %s at JD %.6f: %s", body, t.jd, e)
                    speed = _forward_speed(grid, lons, i)
                    if speed is None:
                        continue
            s = BodySample(instant=t, body=body, longitude=lon, speed=speed)
            per_frame[i][body] = s
            last = s

    return [SampleFrame(instant=t, bodies=b) for t, b in zip(grid, per_frame)]
