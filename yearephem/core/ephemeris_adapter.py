# yearephem/core/ephemeris_adapter.py
# -----------------------------------------------------------------------------
# Position oracle (Skyfield + JPL DE421) and per-computation query sessions
#
# Highlights
# • PositionOracle base: position_at() per instant, longitudes() per grid
# • SkyfieldOracle: thread-safe lazy kernel bootstrap, ERFA UTC→TT, vectorized
#   grids, explicit observer per Location (no process-global topo state)
# • QuerySession: immutable (oracle, location, topocentric) context that the
#   sampler and refiner call through; counts calls and failures
# • Clean error taxonomy: every oracle failure surfaces as OracleUnavailable
# -----------------------------------------------------------------------------
from __future__ import annotations

from dataclasses import dataclass
from functools import lru_cache
from typing import Any, Dict, List, Optional, Sequence
import logging
import math
import os
import threading

from yearephem.core.constants import SUPPORTED_BODIES, wrap_deg
from yearephem.core.timecoord import Instant, tt_jd_from_utc
from yearephem.utils.metrics import ORACLE_CALLS, ORACLE_FAILURES

log = logging.getLogger(__name__)

# ─────────────────────────────────────────────────────────────────────────────
# Constants / environment (bounded; converted into Config defaults)
# ─────────────────────────────────────────────────────────────────────────────
EPHEMERIS_NAME_DEFAULT = "de421"

DE421_JD_MIN = float(os.getenv("YEAREPHEM_JD_MIN", "2414992.5"))  # 1899-12-31
DE421_JD_MAX = float(os.getenv("YEAREPHEM_JD_MAX", "2469807.5"))  # 2053-10-09
ENFORCE_JD_RANGE = os.getenv("YEAREPHEM_ENFORCE_JD_RANGE", "1").lower() in ("1", "true", "yes", "on")

_PLANET_KEYS: Dict[str, str] = {
    "sun": "sun",
    "moon": "moon",
    "mercury": "mercury",
    "venus": "venus",
    "mars": "mars",
    "jupiter": "jupiter barycenter",
    "saturn": "saturn barycenter",
    "uranus": "uranus barycenter",
    "neptune": "neptune barycenter",
    "pluto": "pluto barycenter",
}

# ─────────────────────────────────────────────────────────────────────────────
# Exceptions
# ─────────────────────────────────────────────────────────────────────────────
class OracleUnavailable(RuntimeError):
    """A position query failed; callers recover locally."""
    def __init__(self, stage: str, message: str, **context: Any):
        super().__init__(f"{stage}: {message}")
        self.stage = stage
        self.message = message
        self.context = context

# ─────────────────────────────────────────────────────────────────────────────
# Value types
# ─────────────────────────────────────────────────────────────────────────────
@dataclass(frozen=True)
class Location:
    """Observation point; hashable so it can key caches."""
    latitude: float
    longitude: float
    elevation_m: float = 0.0

    def __post_init__(self) -> None:
        lat = float(self.latitude)
        lon = float(self.longitude)
        if not (math.isfinite(lat) and math.isfinite(lon) and math.isfinite(float(self.elevation_m))):
            raise ValueError("location coordinates must be finite")
        if not -90.0 <= lat <= 90.0:
            raise ValueError(f"latitude out of range [-90, 90]: {lat}")
        if not -180.0 <= lon <= 180.0:
            x = ((lon + 180.0) % 360.0) - 180.0  # [-180,180)
            lon = 180.0 if (x == -180.0 and lon > 0) else x
        object.__setattr__(self, "latitude", lat)
        object.__setattr__(self, "longitude", lon)
        object.__setattr__(self, "elevation_m", float(self.elevation_m))

    def to_dict(self) -> Dict[str, float]:
        return {"latitude": self.latitude, "longitude": self.longitude}

@dataclass(frozen=True)
class Position:
    longitude: float   # ecliptic, degrees [0, 360)
    latitude: float    # ecliptic, degrees
    distance: float    # AU

# ─────────────────────────────────────────────────────────────────────────────
# Oracle interface
# ─────────────────────────────────────────────────────────────────────────────
class PositionOracle:
    """
    Black-box ephemeris. Implementations must be safe to call from several
    threads and must take the observation location from the arguments only.
    """

    def position_at(self, instant: Instant, body: str, *,
                    location: Location, topocentric: bool = True) -> Position:
        raise NotImplementedError

    def longitudes(self, instants: Sequence[Instant], body: str, *,
                   location: Location, topocentric: bool = True) -> List[float]:
        """Longitudes over a grid; override when the backend can vectorize."""
        return [
            self.position_at(t, body, location=location, topocentric=topocentric).longitude
            for t in instants
        ]

    def diagnostics(self) -> Dict[str, Any]:
        return {"oracle": type(self).__name__}

# ─────────────────────────────────────────────────────────────────────────────
# Skyfield backend
# ─────────────────────────────────────────────────────────────────────────────
def _skyfield_available() -> bool:
    try:
        import skyfield  # noqa: F401
        return True
    except ImportError:
        return False

def _looks_like_lfs_pointer(path: str) -> bool:
    try:
        if os.path.getsize(path) <= 512:
            with open(path, "rb") as f:
                head = f.read(128)
            return head.startswith(b"version https://git-lfs.github.com/spec/v1")
    except OSError:
        pass
    return False

def resolve_kernel_path() -> Optional[str]:
    path = os.getenv("YEAREPHEM_EPHEMERIS")
    if path and os.path.isfile(path):
        return path
    fallback = os.path.join(os.getcwd(), "yearephem", "data", "de421.bsp")
    return fallback if os.path.isfile(fallback) else None

def kernel_coverage(path: Optional[str]) -> Optional[List[float]]:
    """[min, max] TDB JD covered by the SPK segments, read with jplephem (no Skyfield load)."""
    if not path or not os.path.isfile(path) or _looks_like_lfs_pointer(path):
        return None
    from jplephem.spk import SPK
    try:
        with SPK.open(path) as spk:
            return [min(seg.start_jd for seg in spk.segments), max(seg.end_jd for seg in spk.segments)]
    except (OSError, ValueError) as e:
        log.debug("could not read SPK coverage from %s: %s", path, e)
        return None

@dataclass(frozen=True)
class Config:
    kernel_path: Optional[str] = None       # None -> resolve_kernel_path()
    frame: str = "ecliptic-of-date"         # or "ecliptic-j2000"
    enforce_jd_range: bool = ENFORCE_JD_RANGE
    jd_min: float = DE421_JD_MIN
    jd_max: float = DE421_JD_MAX

class SkyfieldOracle(PositionOracle):
    def __init__(self, cfg: Optional[Config] = None):
        self.cfg = cfg or Config()
        self._lock = threading.Lock()
        self._ts = None
        self._main = None
        self._kernel_path: Optional[str] = None

    # ---- kernel I/O ---------------------------------------------------------
    def _bootstrap(self):
        """Thread-safe lazy load of timescale + main kernel."""
        if self._main is not None:
            return self._ts, self._main
        if not _skyfield_available():
            raise OracleUnavailable("dependency", "Skyfield not installed")
        from skyfield.api import load

        with self._lock:
            if self._main is not None:
                return self._ts, self._main
            path = self.cfg.kernel_path or resolve_kernel_path()
            if not path or not os.path.isfile(path):
                raise OracleUnavailable(
                    "kernel", "No local DE421 found (set YEAREPHEM_EPHEMERIS or place yearephem/data/de421.bsp)"
                )
            if _looks_like_lfs_pointer(path):
                raise OracleUnavailable("kernel", f"Kernel looks like a Git LFS pointer: {path}")
            try:
                main = load(path)
                ts = load.timescale()
            except Exception as e:
                raise OracleUnavailable("kernel", f"Skyfield failed to load kernel: {path}", error=str(e)) from e
            log.info("Loaded ephemeris kernel %s", path)
            self._ts, self._main, self._kernel_path = ts, main, path
        return self._ts, self._main

    def kernel_name(self) -> str:
        if self._kernel_path:
            return os.path.basename(self._kernel_path)
        return EPHEMERIS_NAME_DEFAULT

    def _ecliptic_frame(self):
        from skyfield import framelib as _fl
        if self.cfg.frame.lower() in ("ecliptic-j2000", "j2000", "ecl-j2000"):
            return _fl.ecliptic_J2000_frame
        return _fl.ecliptic_frame

    # ---- resolution -----------------------------------------------------------
    @lru_cache(maxsize=64)
    def _get_body(self, name: str):
        key = _PLANET_KEYS.get((name or "").strip().lower())
        if key is None:
            raise OracleUnavailable("body", f"unsupported body '{name}'", supported=list(SUPPORTED_BODIES))
        _ts, main = self._bootstrap()
        try:
            return main[key]
        except KeyError as e:
            raise OracleUnavailable("body", f"kernel has no segment for '{key}'") from e

    @lru_cache(maxsize=256)
    def _observer(self, location: Location, topocentric: bool):
        from skyfield.api import wgs84
        _ts, main = self._bootstrap()
        earth = main["earth"]
        if not topocentric:
            return earth
        return earth + wgs84.latlon(location.latitude, location.longitude,
                                    elevation_m=location.elevation_m)

    def _check_jd_guard(self, jd_utc: float) -> None:
        if self.cfg.enforce_jd_range and not (self.cfg.jd_min <= float(jd_utc) <= self.cfg.jd_max):
            raise OracleUnavailable("validation", "Julian date outside DE421 nominal span", jd=float(jd_utc))

    # ---- public computations ------------------------------------------------
    def position_at(self, instant: Instant, body: str, *,
                    location: Location, topocentric: bool = True) -> Position:
        self._check_jd_guard(instant.jd)
        ts, _main = self._bootstrap()
        target = self._get_body(body)
        obs = self._observer(location, topocentric)
        try:
            t = ts.tt_jd(tt_jd_from_utc(instant.jd))
            lat, lon, dist = obs.at(t).observe(target).apparent().frame_latlon(self._ecliptic_frame())
            pos = Position(wrap_deg(float(lon.degrees)), float(lat.degrees), float(dist.au))
        except Exception as e:
            raise OracleUnavailable("compute", f"{body} at JD {instant.jd}", error=str(e)) from e
        if not math.isfinite(pos.longitude):
            raise OracleUnavailable("compute", f"non-finite longitude for {body}", jd=instant.jd)
        return pos

    def longitudes(self, instants: Sequence[Instant], body: str, *,
                   location: Location, topocentric: bool = True) -> List[float]:
        if not instants:
            return []
        for t in (instants[0], instants[-1]):
            self._check_jd_guard(t.jd)
        ts, _main = self._bootstrap()
        target = self._get_body(body)
        obs = self._observer(location, topocentric)
        try:
            t = ts.tt_jd(tt_jd_from_utc([i.jd for i in instants]))
            _lat, lon, _dist = obs.at(t).observe(target).apparent().frame_latlon(self._ecliptic_frame())
            out = [wrap_deg(float(v)) for v in lon.degrees]
        except Exception as e:
            raise OracleUnavailable("compute", f"{body} over {len(instants)} instants", error=str(e)) from e
        if not all(math.isfinite(v) for v in out):
            raise OracleUnavailable("compute", f"non-finite longitude for {body}")
        return out

    def diagnostics(self) -> Dict[str, Any]:
        path = self.cfg.kernel_path or resolve_kernel_path()
        resolved: Dict[str, str] = {}
        missing: List[str] = []
        error: Optional[str] = None
        try:
            self._bootstrap()
            for nm in SUPPORTED_BODIES:
                try:
                    self._get_body(nm)
                    resolved[nm] = _PLANET_KEYS[nm]
                except OracleUnavailable:
                    missing.append(nm)
        except OracleUnavailable as e:
            error = str(e)
        return {
            "coverage_jd": kernel_coverage(path),
            "oracle": type(self).__name__,
            "kernel_path": path,
            "kernel_exists": bool(path and os.path.isfile(path)),
            "ephemeris_name": self.kernel_name(),
            "frame": self.cfg.frame,
            "resolved": resolved,
            "missing": missing,
            "error": error,
            "jd_guard": {"enforced": self.cfg.enforce_jd_range, "min": self.cfg.jd_min, "max": self.cfg.jd_max},
        }

# ─────────────────────────────────────────────────────────────────────────────
# Query session (explicit location; replaces a mutable global observer)
# ─────────────────────────────────────────────────────────────────────────────
class QuerySession:
    """
    The (oracle, location, topocentric) triple for one year computation.

    Every oracle call in the pipeline goes through a session, so the location
    cannot change mid-computation and concurrent computations never share
    observer state. ``calls`` counts individual evaluations.
    """

    def __init__(self, oracle: PositionOracle, location: Location, *,
                 topocentric: bool = True, phase: str = "sample"):
        self._oracle = oracle
        self._location = location
        self._topocentric = bool(topocentric)
        self.phase = phase
        self.calls = 0

    @property
    def oracle(self) -> PositionOracle:
        return self._oracle

    @property
    def location(self) -> Location:
        return self._location

    @property
    def topocentric(self) -> bool:
        return self._topocentric

    def _count(self, n: int) -> None:
        self.calls += n
        ORACLE_CALLS.labels(phase=self.phase).inc(n)

    def position(self, instant: Instant, body: str) -> Position:
        self._count(1)
        try:
            pos = self._oracle.position_at(instant, body, location=self._location,
                                           topocentric=self._topocentric)
        except OracleUnavailable:
            ORACLE_FAILURES.labels(phase=self.phase).inc()
            raise
        except Exception as e:
            ORACLE_FAILURES.labels(phase=self.phase).inc()
            raise OracleUnavailable("oracle", f"{body} at JD {instant.jd}", error=repr(e)) from e
        if not math.isfinite(pos.longitude):
            ORACLE_FAILURES.labels(phase=self.phase).inc()
            raise OracleUnavailable("oracle", f"non-finite longitude for {body}", jd=instant.jd)
        return pos

    def longitude(self, instant: Instant, body: str) -> float:
        return wrap_deg(self.position(instant, body).longitude)

    def longitudes(self, instants: Sequence[Instant], body: str) -> List[float]:
        self._count(len(instants))
        try:
            out = self._oracle.longitudes(list(instants), body, location=self._location,
                                          topocentric=self._topocentric)
        except OracleUnavailable:
            ORACLE_FAILURES.labels(phase=self.phase).inc()
            raise
        except Exception as e:
            ORACLE_FAILURES.labels(phase=self.phase).inc()
            raise OracleUnavailable("oracle", f"{body} over {len(instants)} instants", error=repr(e)) from e
        if len(out) != len(instants) or not all(math.isfinite(v) for v in out):
            ORACLE_FAILURES.labels(phase=self.phase).inc()
            raise OracleUnavailable("oracle", f"malformed longitude grid for {body}")
        return [wrap_deg(v) for v in out]

    def with_phase(self, phase: str) -> "QuerySession":
        """Same oracle and location, separate call accounting."""
        return QuerySession(self._oracle, self._location, topocentric=self._topocentric, phase=phase)

# ─────────────────────────────────────────────────────────────────────────────
# Process-global default oracle (the kernel is the expensive shared resource)
# ─────────────────────────────────────────────────────────────────────────────
_default_oracle: Optional[SkyfieldOracle] = None
_default_lock = threading.Lock()

def _config_from_env() -> Config:
    return Config(
        kernel_path=os.getenv("YEAREPHEM_EPHEMERIS") or None,
        frame=os.getenv("YEAREPHEM_FRAME", "ecliptic-of-date"),
        enforce_jd_range=ENFORCE_JD_RANGE,
        jd_min=DE421_JD_MIN,
        jd_max=DE421_JD_MAX,
    )

def get_default_oracle() -> SkyfieldOracle:
    global _default_oracle
    with _default_lock:
        if _default_oracle is None:
            _default_oracle = SkyfieldOracle(_config_from_env())
    return _default_oracle

__all__ = [
    "Config",
    "Location",
    "OracleUnavailable",
    "Position",
    "PositionOracle",
    "QuerySession",
    "SkyfieldOracle",
    "get_default_oracle",
    "kernel_coverage",
    "resolve_kernel_path",
]
