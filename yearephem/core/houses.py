# yearephem/core/houses.py
# -----------------------------------------------------------------------------
# Chart angles and house cusps at one instant and location
#
# Public API:
#   HOUSE_SYSTEMS                       letter code -> name ("P", "O", "E", "W")
#   ChartAngles / HouseCusps            frozen results with camelCase payloads
#   chart_angles(instant, location)     RAMC, ASC, MC, vertex, equatorial ASC
#   compute_houses(instant, location, system="P") -> HouseCusps
#   house_of(longitude, cusps) -> 1..12
#
# Conventions:
#   • Sidereal time is ERFA GAST (gst06a) with UT1 taken as UTC (|DUT1| < 0.9 s).
#   • Obliquity is true obliquity of date: obl06 + nut06a Δε.
#   • Placidus is undefined inside the polar circles; there the cusps fall back
#     to Porphyry and `system_used` says so.
# -----------------------------------------------------------------------------
from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Dict, List, Tuple
import logging
import math
import os

import erfa  # pyERFA

from yearephem.core.constants import SIGN_NAMES, format_degree, sign_index, wrap_deg
from yearephem.core.ephemeris_adapter import Location
from yearephem.core.timecoord import Instant, tt_jd_from_utc

log = logging.getLogger(__name__)

__all__ = [
    "HOUSE_SYSTEMS",
    "ChartAngles",
    "HouseCusps",
    "chart_angles",
    "compute_houses",
    "house_of",
]

HOUSE_SYSTEMS: Dict[str, str] = {
    "P": "placidus",
    "O": "porphyry",
    "E": "equal",
    "W": "whole_sign",
}

PLACIDUS_MAX_ITERS = int(os.getenv("YEAREPHEM_PLACIDUS_MAX_ITERS", "200"))
PLACIDUS_TOL_DEG = 1e-9

# ───────────────────────────── angle helpers ─────────────────────────────

DEG_R = math.pi / 180.0

def _sind(a: float) -> float: return math.sin(a * DEG_R)
def _cosd(a: float) -> float: return math.cos(a * DEG_R)
def _tand(a: float) -> float: return math.tan(a * DEG_R)

def _atan2d(y: float, x: float) -> float:
    return wrap_deg(math.degrees(math.atan2(y, x)))

def _split_jd(jd: float) -> Tuple[float, float]:
    d = math.floor(jd)
    return d, jd - d

# ───────────────────────────── ERFA angles ─────────────────────────────

def _gast_deg(jd_ut1: float, jd_tt: float) -> float:
    d1u, d2u = _split_jd(jd_ut1)
    d1t, d2t = _split_jd(jd_tt)
    return wrap_deg(math.degrees(erfa.gst06a(d1u, d2u, d1t, d2t)))

def _true_obliquity_deg(jd_tt: float) -> float:
    d1, d2 = _split_jd(jd_tt)
    eps0 = erfa.obl06(d1, d2)
    _dpsi, deps = erfa.nut06a(d1, d2)
    return math.degrees(eps0 + deps)

def _longitude_of_ra(ra: float, eps: float) -> float:
    """Ecliptic longitude of the ecliptic point with right ascension `ra`."""
    return _atan2d(_sind(ra), _cosd(ra) * _cosd(eps))

def mc_longitude(ramc: float, eps: float) -> float:
    return _longitude_of_ra(ramc, eps)

def asc_longitude(ramc: float, eps: float, phi: float) -> float:
    # λ = atan2(cos RAMC, −(sin RAMC·cos ε + tan φ·sin ε))
    return _atan2d(_cosd(ramc), -(_sind(ramc) * _cosd(eps) + _tand(phi) * _sind(eps)))

def vertex_longitude(ramc: float, eps: float, phi: float) -> float:
    # western "ascendant" of the prime vertical: RAMC + 180 at co-latitude
    co_lat = 90.0 - phi if phi >= 0.0 else -90.0 - phi
    return asc_longitude(ramc + 180.0, eps, co_lat)

# ───────────────────────────── cusp engines ─────────────────────────────

def _equal(asc: float) -> List[float]:
    return [wrap_deg(asc + 30.0 * i) for i in range(12)]

def _whole_sign(asc: float) -> List[float]:
    first = math.floor(wrap_deg(asc) / 30.0) * 30.0
    return [wrap_deg(first + 30.0 * i) for i in range(12)]

def _with_opposites(c1: float, c2: float, c3: float, c10: float, c11: float, c12: float) -> List[float]:
    """Cusps 1..12 from the six computed ones; 4..9 are their exact opposites."""
    opp = [wrap_deg(c + 180.0) for c in (c10, c11, c12, c1, c2, c3)]
    return [c1, c2, c3] + opp + [c10, c11, c12]

def _porphyry(asc: float, mc: float) -> List[float]:
    """Trisect the ecliptic arcs MC→ASC and ASC→IC."""
    q4 = wrap_deg(asc - mc)
    q1 = wrap_deg(mc + 180.0 - asc)
    return _with_opposites(
        asc, wrap_deg(asc + q1 / 3.0), wrap_deg(asc + 2.0 * q1 / 3.0),
        mc, wrap_deg(mc + q4 / 3.0), wrap_deg(mc + 2.0 * q4 / 3.0),
    )

def _placidus_cusp(ramc: float, eps: float, phi: float, frac: float, above: bool) -> float:
    """
    Fixed-point iteration on the semi-arc condition.

    Above the horizon (cusps 11, 12) RA = RAMC + frac·SDA; below it (cusps 2, 3)
    RA = RAMC + 180 − frac·NSA, with SDA the diurnal and NSA = 180 − SDA the
    nocturnal semi-arc of the cusp's own declination.
    """
    ra = ramc + (frac * 90.0 if above else 180.0 - frac * 90.0)
    lam = _longitude_of_ra(ra, eps)
    for _ in range(PLACIDUS_MAX_ITERS):
        dec = math.degrees(math.asin(_sind(eps) * _sind(lam)))
        x = -_tand(phi) * _tand(dec)
        if not -1.0 <= x <= 1.0:
            raise ValueError(f"circumpolar cusp at latitude {phi}")
        sda = math.degrees(math.acos(x))
        ra = ramc + (frac * sda if above else 180.0 - frac * (180.0 - sda))
        nxt = _longitude_of_ra(ra, eps)
        step = abs((nxt - lam + 180.0) % 360.0 - 180.0)
        lam = nxt
        if step < PLACIDUS_TOL_DEG:
            return lam
    raise ValueError(f"placidus cusp did not converge at latitude {phi}")

def _placidus(ramc: float, eps: float, phi: float, asc: float, mc: float) -> List[float]:
    if abs(phi) >= 90.0 - eps:
        raise ValueError(f"placidus undefined at latitude {phi}")
    c11 = _placidus_cusp(ramc, eps, phi, 1.0 / 3.0, above=True)
    c12 = _placidus_cusp(ramc, eps, phi, 2.0 / 3.0, above=True)
    c2 = _placidus_cusp(ramc, eps, phi, 2.0 / 3.0, above=False)
    c3 = _placidus_cusp(ramc, eps, phi, 1.0 / 3.0, above=False)
    return _with_opposites(asc, c2, c3, mc, c11, c12)

# ───────────────────────────── results ─────────────────────────────

def _point(lon: float, prefix: str) -> Dict[str, Any]:
    return {
        prefix: lon,
        f"{prefix}Sign": SIGN_NAMES[sign_index(lon)],
        f"{prefix}Degree": format_degree(lon),
    }

@dataclass(frozen=True)
class ChartAngles:
    armc: float
    obliquity: float
    ascendant: float
    mc: float
    vertex: float
    equatorial_ascendant: float

@dataclass(frozen=True)
class HouseCusps:
    system: str
    system_used: str
    cusps: Tuple[float, ...]
    angles: ChartAngles

    def house_of(self, longitude: float) -> int:
        return house_of(longitude, self.cusps)

    def to_dict(self) -> Dict[str, Any]:
        a = self.angles
        out: Dict[str, Any] = {"cusps": list(self.cusps)}
        out.update(_point(a.ascendant, "ascendant"))
        out.update(_point(a.mc, "mc"))
        out.update({
            "armc": a.armc,
            "vertex": a.vertex,
            "equatorialAscendant": a.equatorial_ascendant,
            "obliquity": a.obliquity,
            "houseSystem": self.system,
            "houseSystemUsed": self.system_used,
        })
        return out

# ───────────────────────────── public API ─────────────────────────────

def chart_angles(instant: Instant, location: Location) -> ChartAngles:
    jd_tt = tt_jd_from_utc(instant.jd)
    eps = _true_obliquity_deg(jd_tt)
    ramc = wrap_deg(_gast_deg(instant.jd, jd_tt) + location.longitude)
    phi = location.latitude
    return ChartAngles(
        armc=ramc,
        obliquity=eps,
        ascendant=asc_longitude(ramc, eps, phi),
        mc=mc_longitude(ramc, eps),
        vertex=vertex_longitude(ramc, eps, phi),
        equatorial_ascendant=_longitude_of_ra(ramc + 90.0, eps),
    )

def cusps_for(system: str, angles: ChartAngles, latitude: float) -> Tuple[str, List[float]]:
    """(system actually used, 12 cusps); cusp 1 first."""
    code = system.upper()
    if code not in HOUSE_SYSTEMS:
        raise ValueError(f"unsupported house system '{system}' (expected one of {sorted(HOUSE_SYSTEMS)})")
    a = angles
    if code == "E":
        return code, _equal(a.ascendant)
    if code == "W":
        return code, _whole_sign(a.ascendant)
    if code == "O":
        return code, _porphyry(a.ascendant, a.mc)
    try:
        return code, _placidus(a.armc, a.obliquity, latitude, a.ascendant, a.mc)
    except ValueError as e:
        log.info("placidus unavailable (%s); using porphyry", e)
        return "O", _porphyry(a.ascendant, a.mc)

def compute_houses(instant: Instant, location: Location, system: str = "P") -> HouseCusps:
    angles = chart_angles(instant, location)
    used, cusps = cusps_for(system, angles, location.latitude)
    return HouseCusps(system=system.upper(), system_used=used, cusps=tuple(cusps), angles=angles)

def house_of(longitude: float, cusps) -> int:
    """House number (1..12) whose [cusp, next cusp) arc contains `longitude`."""
    lon = wrap_deg(longitude)
    for i in range(12):
        start = cusps[i]
        span = wrap_deg(cusps[(i + 1) % 12] - start)
        if wrap_deg(lon - start) < span:
            return i + 1
    return 12
