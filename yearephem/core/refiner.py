# yearephem/core/refiner.py
# -----------------------------------------------------------------------------
# Event refiner: narrows a scanner candidate to an exact instant
#
# Strategies (one per candidate kind, dispatched by type):
#   • Ingress  bisection on "before/after the crossed sign boundary"
#   • Station  hybrid: sign(speed) bisection, coarse |speed| scan over a widened
#              bracket, fine 1 s scan around the best; smallest |speed| wins
#   • Aspect   hierarchical hour → minute → second scan of distance-to-angle;
#              the hour window slides while its best point is on the boundary
#
# Any OracleUnavailable aborts that one refinement; the event is then built at
# the unrefined sample instant with refined=False.
# -----------------------------------------------------------------------------
from __future__ import annotations

from dataclasses import dataclass
from typing import Callable, Dict, List, Optional, Sequence, Tuple
import logging
import math

from yearephem.core.constants import SECONDS_PER_DAY, SPEED_DELTA_S, aspect_distance, delta_deg
from yearephem.core.ephemeris_adapter import OracleUnavailable, QuerySession
from yearephem.core.events import (
    AspectCandidate,
    AspectEvent,
    Candidate,
    Event,
    IngressCandidate,
    IngressEvent,
    StationCandidate,
    StationEvent,
)
from yearephem.core.timecoord import Instant
from yearephem.utils.metrics import REFINE_FALLBACKS

log = logging.getLogger(__name__)

__all__ = ["RefinePolicy", "PROFILES", "Refiner"]

# ─────────────────────────────────────────────────────────────────────────────
# Policy
# ─────────────────────────────────────────────────────────────────────────────

@dataclass(frozen=True)
class RefinePolicy:
    name: str = "precise"
    # ingress bisection
    ingress_tolerance_s: float = 1.0
    ingress_max_iter: int = 30
    # station
    station_tolerance_s: float = 1.0
    station_max_iter: int = 30
    station_hybrid: bool = True
    station_expand_h: float = 6.0
    station_coarse_step_s: float = 30.0
    station_fine_step_s: float = 1.0
    station_fine_half_s: float = 300.0
    station_fine_wide_half_s: float = 600.0
    speed_delta_s: float = SPEED_DELTA_S
    # aspect: (step_s, half-width around previous best); first stage spans the window
    aspect_min_expand_h: float = 24.0
    aspect_max_slide_h: float = 720.0
    aspect_stages: Tuple[Tuple[float, float], ...] = ((3600.0, 0.0), (60.0, 3600.0), (1.0, 60.0))

    @classmethod
    def named(cls, name: str) -> "RefinePolicy":
        try:
            return PROFILES[(name or "").strip().lower()]
        except KeyError:
            raise ValueError(f"unknown refine profile '{name}' (expected one of {sorted(PROFILES)})") from None

PROFILES: Dict[str, RefinePolicy] = {
    "precise": RefinePolicy(),
    "fast": RefinePolicy(
        name="fast",
        ingress_tolerance_s=60.0,
        ingress_max_iter=20,
        station_tolerance_s=60.0,
        station_max_iter=20,
        station_hybrid=False,
        aspect_stages=((3600.0, 0.0), (60.0, 3600.0)),
    ),
}

# ─────────────────────────────────────────────────────────────────────────────
# Grid helpers
# ─────────────────────────────────────────────────────────────────────────────

def _grid(start: Instant, end: Instant, step_s: float) -> List[Instant]:
    n = int(math.floor(end.seconds_since(start) / step_s + 1e-9))
    return [start.plus_seconds(k * step_s) for k in range(n + 1)]

def _whole_hours(start: Instant, end: Instant) -> List[Instant]:
    """Every instant on a whole UTC hour in [start, end]."""
    # JD days begin at noon, so whole hours sit at 0.5 + k/24
    k0 = math.ceil((start.jd - 0.5) * 24.0 - 1e-9)
    k1 = math.floor((end.jd - 0.5) * 24.0 + 1e-9)
    return [Instant(0.5 + k / 24.0) for k in range(k0, k1 + 1)]

def _argmin(values: Sequence[float]) -> int:
    best = 0
    for i, v in enumerate(values):
        if v < values[best]:
            best = i
    return best

# ─────────────────────────────────────────────────────────────────────────────
# Refiner
# ─────────────────────────────────────────────────────────────────────────────

class Refiner:
    """Refines candidates against one QuerySession; holds no per-candidate state."""

    def __init__(self, session: QuerySession, policy: Optional[RefinePolicy] = None):
        self.session = session
        self.policy = policy or RefinePolicy()
        self._strategies: Dict[type, Tuple[Callable, Callable]] = {
            IngressCandidate: (self._refine_ingress, self._fallback_ingress),
            StationCandidate: (self._refine_station, self._fallback_station),
            AspectCandidate: (self._refine_aspect, self._fallback_aspect),
        }

    def refine(self, candidate: Candidate) -> Event:
        try:
            strategy, fallback = self._strategies[type(candidate)]
        except KeyError:
            raise TypeError(f"cannot refine {type(candidate).__name__}") from None
        try:
            return strategy(candidate)
        except OracleUnavailable as e:
            log.warning("refinement of %s candidate failed, using sample instant: %s", candidate.kind, e)
            REFINE_FALLBACKS.labels(kind=candidate.kind).inc()
            return fallback(candidate)

    # ---- oracle helpers -------------------------------------------------------
    def _speeds(self, instants: Sequence[Instant], body: str) -> List[float]:
        """Central-difference speed (deg/day) at each instant, one batched call."""
        h = self.policy.speed_delta_s
        offsets: List[Instant] = []
        for t in instants:
            offsets.append(t.plus_seconds(-h))
            offsets.append(t.plus_seconds(h))
        lons = self.session.longitudes(offsets, body)
        scale = SECONDS_PER_DAY / (2.0 * h)
        return [delta_deg(lons[2 * i], lons[2 * i + 1]) * scale for i in range(len(instants))]

    def _speed(self, t: Instant, body: str) -> float:
        return self._speeds([t], body)[0]

    def _longitude_or(self, t: Instant, body: str, default: float) -> float:
        try:
            return self.session.longitude(t, body)
        except OracleUnavailable as e:
            log.debug("no position for %s at refined JD %.6f (%s); keeping sample value", body, t.jd, e)
            return default

    # ---- ingress -------------------------------------------------------------
    def _refine_ingress(self, c: IngressCandidate) -> IngressEvent:
        p = self.policy
        forward = delta_deg(c.prev.longitude, c.curr.longitude) >= 0
        # retrograde ingresses cross the lower edge of the sign being left
        boundary = 30.0 * (c.target_sign if forward else c.from_sign)

        def before(lon: float) -> bool:
            return delta_deg(boundary, lon) < 0

        low, high = c.prev.instant, c.curr.instant
        low_before = before(c.prev.longitude)
        it = 0
        while high.seconds_since(low) > p.ingress_tolerance_s and it < p.ingress_max_iter:
            it += 1
            mid = Instant((low.jd + high.jd) / 2.0)
            if before(self.session.longitude(mid, c.body)) != low_before:
                high = mid
            else:
                low = mid
        exact = Instant((low.jd + high.jd) / 2.0)
        lon = self._longitude_or(exact, c.body, c.curr.longitude)
        return IngressEvent(body=c.body, from_sign=c.from_sign, to_sign=c.target_sign,
                            exact=exact, longitude=lon, is_retrograde=c.curr.is_retrograde)

    def _fallback_ingress(self, c: IngressCandidate) -> IngressEvent:
        return IngressEvent(body=c.body, from_sign=c.from_sign, to_sign=c.target_sign,
                            exact=c.curr.instant, longitude=c.curr.longitude,
                            is_retrograde=c.curr.is_retrograde, refined=False)

    # ---- station -------------------------------------------------------------
    def _bisect_speed(self, body: str, lo: Instant, hi: Instant) -> Optional[Instant]:
        p = self.policy
        s_lo, s_hi = self._speeds([lo, hi], body)
        if s_lo * s_hi >= 0:
            w = hi - lo
            lo, hi = lo + 0.1 * w, hi - 0.1 * w
            s_lo, s_hi = self._speeds([lo, hi], body)
            if s_lo * s_hi >= 0:
                return None
        it = 0
        while hi.seconds_since(lo) > p.station_tolerance_s and it < p.station_max_iter:
            it += 1
            mid = Instant((lo.jd + hi.jd) / 2.0)
            s_mid = self._speed(mid, body)
            if (s_mid > 0) == (s_lo > 0):
                lo, s_lo = mid, s_mid
            else:
                hi = mid
        return Instant((lo.jd + hi.jd) / 2.0)

    def _scan_speed(self, body: str, start: Instant, end: Instant, step_s: float) -> Tuple[Instant, float]:
        grid = _grid(start, end, step_s)
        speeds = [abs(v) for v in self._speeds(grid, body)]
        i = _argmin(speeds)
        return grid[i], speeds[i]

    def _refine_station(self, c: StationCandidate) -> StationEvent:
        p = self.policy
        found: List[Tuple[float, Instant]] = []

        bis = self._bisect_speed(c.body, c.prev.instant, c.curr.instant)
        if bis is not None:
            found.append((abs(self._speed(bis, c.body)), bis))

        if p.station_hybrid:
            pad = p.station_expand_h / 24.0
            t, v = self._scan_speed(c.body, c.prev.instant - pad, c.curr.instant + pad,
                                    p.station_coarse_step_s)
            found.append((v, t))
            half = p.station_fine_half_s
            if bis is not None and abs(t.seconds_since(bis)) > p.station_fine_half_s:
                half = p.station_fine_wide_half_s
            center = min(found, key=lambda f: f[0])[1]
            t, v = self._scan_speed(c.body, center.plus_seconds(-half), center.plus_seconds(half),
                                    p.station_fine_step_s)
            found.append((v, t))

        if not found:
            # bisection-only profile with no sign change: closer endpoint
            ends = self._speeds([c.prev.instant, c.curr.instant], c.body)
            found = [(abs(ends[0]), c.prev.instant), (abs(ends[1]), c.curr.instant)]

        exact = min(found, key=lambda f: f[0])[1]
        lon = self._longitude_or(exact, c.body, c.curr.longitude)
        return StationEvent(body=c.body, station_type=c.station_type, exact=exact, longitude=lon)

    def _fallback_station(self, c: StationCandidate) -> StationEvent:
        return StationEvent(body=c.body, station_type=c.station_type, exact=c.curr.instant,
                            longitude=c.curr.longitude, refined=False)

    # ---- aspect --------------------------------------------------------------
    def _aspect_scan(self, c: AspectCandidate, grid: Sequence[Instant]) -> Tuple[Instant, float, float, float]:
        return self._aspect_scan_at(c, grid)[1]

    def _aspect_scan_at(self, c: AspectCandidate, grid: Sequence[Instant]):
        """(index of the closest grid point, (instant, orb, lon1, lon2))."""
        l1 = self.session.longitudes(grid, c.body1)
        l2 = self.session.longitudes(grid, c.body2)
        dist = [aspect_distance(a, b, c.angle) for a, b in zip(l1, l2)]
        i = _argmin(dist)
        return i, (grid[i], dist[i], l1[i], l2[i])

    def _aspect_window(self, c: AspectCandidate, pad: float, step_s: float):
        """
        First-stage scan. While the closest point sits on the window boundary
        the window slides that way, up to aspect_max_slide_h.
        """
        def stage_grid(a: Instant, b: Instant) -> List[Instant]:
            return _whole_hours(a, b) if step_s == 3600.0 else _grid(a, b, step_s)

        start, end = c.prev_instant - pad, c.curr_instant + pad
        grid = stage_grid(start, end)
        if not grid:
            return None
        i, best = self._aspect_scan_at(c, grid)
        if 0 < i < len(grid) - 1:
            return best
        forward = i == len(grid) - 1
        edge = grid[i]
        slid = 0.0
        while slid < self.policy.aspect_max_slide_h / 24.0:
            grid = stage_grid(edge, edge + pad) if forward else stage_grid(edge - pad, edge)
            if len(grid) < 2:
                break
            j, cand = self._aspect_scan_at(c, grid)
            slid += pad
            if cand[1] >= best[1]:
                break
            best = cand
            at_far_edge = j == len(grid) - 1 if forward else j == 0
            if not at_far_edge:
                break
            edge = grid[j]
        return best

    def _refine_aspect(self, c: AspectCandidate) -> AspectEvent:
        p = self.policy
        width_h = (c.curr_instant - c.prev_instant) * 24.0
        pad = max(p.aspect_min_expand_h, 2.0 * width_h) / 24.0
        best = None
        for step_s, half_s in p.aspect_stages:
            if best is None:
                best = self._aspect_window(c, pad, step_s)
                continue
            t0 = best[0]
            grid = _grid(t0.plus_seconds(-half_s), t0.plus_seconds(half_s), step_s)
            if grid:
                best = self._aspect_scan(c, grid)
        if best is None:
            return self._fallback_aspect(c)
        exact, orb, lon1, lon2 = best
        return AspectEvent(body1=c.body1, body2=c.body2, aspect=c.aspect, angle=c.angle,
                           exact=exact, orb=orb, longitude1=lon1, longitude2=lon2)

    def _fallback_aspect(self, c: AspectCandidate) -> AspectEvent:
        return AspectEvent(body1=c.body1, body2=c.body2, aspect=c.aspect, angle=c.angle,
                           exact=c.curr_instant, orb=c.distance,
                           longitude1=c.curr.longitude, longitude2=c.curr_other.longitude,
                           refined=False)
