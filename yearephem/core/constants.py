# -*- coding: utf-8 -*-
"""
Year ephemeris: core constants & small helpers

Purpose
-------
Single source of truth for:
- tracked body sets & which bodies can station
- zodiac sign names
- aspect angles and the detection orb
- scanner/refiner/dedup numeric defaults
- tiny angle helpers (wrap/Δ/separation/degree formatting)

Design
------
- Pure-Python, no external dependencies.
- Safe to import from any core module.
- Functions are pure; constants are immutable by convention.
"""

from __future__ import annotations
from typing import Dict, Tuple
import math

__all__ = [
    # bodies
    "TRACKED_BODIES", "SUPPORTED_BODIES", "NON_STATIONING_BODIES",
    # signs
    "SIGN_NAMES", "sign_index", "sign_name",
    # aspects
    "ASPECT_ANGLES_DEG", "ASPECT_DETECTION_ORB_DEG",
    # engine defaults
    "DEFAULT_SAMPLE_INTERVAL_H", "STATION_NOISE_FLOOR_DEG_PER_DAY",
    "ASPECT_RETRIGGER_H", "DEDUP_MIN_SEPARATION_H", "SPEED_DELTA_S",
    "CACHE_CAPACITY_DEFAULT", "SECONDS_PER_DAY",
    # helpers
    "wrap_deg", "delta_deg", "abs_sep_deg", "aspect_distance", "format_degree",
]

# ── canonical bodies ─────────────────────────────────────────────────────────
# Tracked by the year scan (the Moon is too fast for a 12 h grid; opt in via config).
TRACKED_BODIES: Tuple[str, ...] = (
    "sun", "mercury", "venus", "mars",
    "jupiter", "saturn", "uranus", "neptune", "pluto",
)

# Everything the oracle can resolve.
SUPPORTED_BODIES: Tuple[str, ...] = ("moon",) + TRACKED_BODIES

# Bodies that never show apparent retrograde motion from Earth.
NON_STATIONING_BODIES: Tuple[str, ...] = ("sun", "moon")

# ── zodiac ───────────────────────────────────────────────────────────────────
SIGN_NAMES: Tuple[str, ...] = (
    "Aries", "Taurus", "Gemini", "Cancer", "Leo", "Virgo",
    "Libra", "Scorpio", "Sagittarius", "Capricorn", "Aquarius", "Pisces",
)

def sign_index(lon_deg: float) -> int:
    """Zodiac sign 0..11 of an ecliptic longitude."""
    return int(wrap_deg(lon_deg) // 30.0) % 12

def sign_name(lon_deg: float) -> str:
    return SIGN_NAMES[sign_index(lon_deg)]

# ── aspect geometry ──────────────────────────────────────────────────────────
# Names follow the payloads the mobile client already renders.
ASPECT_ANGLES_DEG: Dict[str, float] = {
    "conjunct": 0.0,
    "sextile": 60.0,
    "square": 90.0,
    "trine": 120.0,
    "opposition": 180.0,
}

ASPECT_DETECTION_ORB_DEG: float = 0.5

# ── engine defaults ──────────────────────────────────────────────────────────
SECONDS_PER_DAY: float = 86400.0
DEFAULT_SAMPLE_INTERVAL_H: float = 12.0
STATION_NOISE_FLOOR_DEG_PER_DAY: float = 0.00001
ASPECT_RETRIGGER_H: float = 18.0
DEDUP_MIN_SEPARATION_H: float = 18.0
SPEED_DELTA_S: float = 60.0          # ±1 min central difference
CACHE_CAPACITY_DEFAULT: int = 20

# ── tiny angle helpers (no external imports) ──────────────────────────────────
def wrap_deg(x: float) -> float:
    """
    Wrap any angle to [0, 360).
    """
    x = math.fmod(float(x), 360.0)
    x = x + 360.0 if x < 0.0 else x
    return 0.0 if x >= 360.0 else x

def delta_deg(a: float, b: float) -> float:
    """
    Shortest signed difference b - a in degrees, range (-180, 180].
    Used for speed estimation and boundary classification.
    """
    d = wrap_deg(b) - wrap_deg(a)
    if d > 180.0:
        d -= 360.0
    elif d <= -180.0:
        d += 360.0
    return d

def abs_sep_deg(a: float, b: float) -> float:
    """
    Absolute smallest separation between angles a and b (deg, 0..180].
    """
    return abs(delta_deg(a, b))

def aspect_distance(lon1: float, lon2: float, angle_deg: float) -> float:
    """Distance (deg) of the pair's circular separation from an aspect angle."""
    diff = abs(abs_sep_deg(lon1, lon2) - angle_deg)
    return min(diff, 360.0 - diff)

def format_degree(lon_deg: float) -> str:
    """Degree within the sign as D°M'S" (truncated, not rounded)."""
    within = wrap_deg(lon_deg) % 30.0
    d = int(within)
    m_full = (within - d) * 60.0
    m = int(m_full)
    s = int((m_full - m) * 60.0)
    return f"{d}°{m}'{s}\""
