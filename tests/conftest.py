# tests/conftest.py
from __future__ import annotations

"""
Pytest configuration for the year ephemeris suite.

- Registers Hypothesis profiles for local dev and CI.
- Freezes the process TZ to UTC.
- Provides stub position oracles:
    AnalyticOracle   cheap geocentric model (circular heliocentric orbits) that
                     shows real ingresses, retrograde stations and aspects
    FunctionOracle   per-body longitude functions of JD, for synthetic brackets
  Both count every evaluation so tests can assert on oracle traffic.
"""

import math
import os
import threading
from typing import Callable, Dict, Iterable, Optional

import pytest
from hypothesis import settings, HealthCheck

from yearephem.core.ephemeris_adapter import Location, OracleUnavailable, Position, PositionOracle


# ──────────────────────────────────────────────────────────────────────────────
# Hypothesis profiles
# ──────────────────────────────────────────────────────────────────────────────
settings.register_profile(
    "dev",
    settings(
        deadline=None,           # avoid flaky timeouts on slower runners
        max_examples=60,         # fast local runs
        suppress_health_check=[HealthCheck.too_slow],
    ),
)
settings.register_profile(
    "ci",
    settings(
        deadline=None,
        max_examples=120,        # a bit more coverage in CI
        suppress_health_check=[HealthCheck.too_slow],
    ),
)

_profile = (
    "ci"
    if (os.getenv("CI") or os.getenv("GITHUB_ACTIONS"))
    else os.getenv("HYPOTHESIS_PROFILE", "dev")
)
settings.load_profile(_profile)


def pytest_configure(config: pytest.Config) -> None:
    config.addinivalue_line("markers", "slow: mark test as slow")
    config.addinivalue_line("filterwarnings", "ignore::DeprecationWarning")


def pytest_report_header(config: pytest.Config) -> str:
    return f"Hypothesis profile: '{_profile}'"


# ──────────────────────────────────────────────────────────────────────────────
# Stub oracles
# ──────────────────────────────────────────────────────────────────────────────
J2000 = 2451545.0

# a (AU), mean longitude at J2000 (deg), mean motion (deg/day)
_ORBITS = {
    "mercury": (0.387, 252.25, 4.09233445),
    "venus": (0.723, 181.98, 1.60213034),
    "mars": (1.524, 355.43, 0.52402068),
    "jupiter": (5.203, 34.35, 0.08308529),
    "saturn": (9.537, 50.08, 0.03344414),
    "uranus": (19.19, 314.05, 0.01172834),
    "neptune": (30.07, 304.35, 0.00598103),
    "pluto": (39.48, 238.93, 0.00397000),
}


def solar_longitude(jd: float) -> float:
    """Low-precision apparent solar longitude (about 0.01 deg)."""
    n = jd - J2000
    L = 280.460 + 0.9856474 * n
    g = math.radians(357.528 + 0.9856003 * n)
    return (L + 1.915 * math.sin(g) + 0.020 * math.sin(2 * g)) % 360.0


class CountingOracle(PositionOracle):
    def __init__(self):
        self.calls = 0
        self._lock = threading.Lock()

    def _tick(self) -> None:
        with self._lock:
            self.calls += 1


class AnalyticOracle(CountingOracle):
    """Geocentric longitudes from circular coplanar orbits; location is ignored."""

    def __init__(self, fail_bodies: Iterable[str] = ()):
        super().__init__()
        self.fail_bodies = set(fail_bodies)

    def position_at(self, instant, body, *, location, topocentric=True):
        self._tick()
        if body in self.fail_bodies:
            raise OracleUnavailable("stub", f"{body} disabled")
        jd = instant.jd
        sun = solar_longitude(jd)
        if body == "sun":
            return Position(sun, 0.0, 1.0)
        if body == "moon":
            return Position((218.316 + 13.176396 * (jd - J2000)) % 360.0, 0.0, 0.00257)
        a, l0, n = _ORBITS[body]
        lp = math.radians(l0 + n * (jd - J2000))
        le = math.radians(sun + 180.0)
        x = a * math.cos(lp) - math.cos(le)
        y = a * math.sin(lp) - math.sin(le)
        return Position(math.degrees(math.atan2(y, x)) % 360.0, 0.0, math.hypot(x, y))


class FunctionOracle(CountingOracle):
    """Longitude = f(jd) per body; ``fail`` decides per (jd, body) whether to raise."""

    def __init__(self, funcs: Dict[str, Callable[[float], float]],
                 fail: Optional[Callable[[float, str], bool]] = None):
        super().__init__()
        self.funcs = funcs
        self.fail = fail

    def position_at(self, instant, body, *, location, topocentric=True):
        self._tick()
        if self.fail is not None and self.fail(instant.jd, body):
            raise OracleUnavailable("stub", f"{body} unavailable at {instant.jd}")
        return Position(self.funcs[body](instant.jd) % 360.0, 0.0, 1.0)


# ──────────────────────────────────────────────────────────────────────────────
# Global fixtures
# ──────────────────────────────────────────────────────────────────────────────

@pytest.fixture(scope="session", autouse=True)
def freeze_tz_env():
    prev = os.environ.get("TZ")
    os.environ["TZ"] = "UTC"
    try:
        yield
    finally:
        if prev is None:
            os.environ.pop("TZ", None)
        else:
            os.environ["TZ"] = prev


@pytest.fixture
def nyc() -> Location:
    return Location(40.7128, -74.0060)


@pytest.fixture
def analytic_oracle() -> AnalyticOracle:
    return AnalyticOracle()
