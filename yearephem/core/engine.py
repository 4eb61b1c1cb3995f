# yearephem/core/engine.py
"""
Year pipeline: session → sample → scan → refine → dedup → chronological sort.

``compute_year`` is one synchronous unit of work. It owns a QuerySession for
the whole run, so the observation location is fixed for every oracle call it
makes and concurrent runs for other locations never interfere.
"""
from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Dict, List, Mapping, Optional, Tuple
import logging
import time

from yearephem.core.constants import (
    ASPECT_ANGLES_DEG,
    ASPECT_DETECTION_ORB_DEG,
    ASPECT_RETRIGGER_H,
    DEDUP_MIN_SEPARATION_H,
    DEFAULT_SAMPLE_INTERVAL_H,
    NON_STATIONING_BODIES,
    STATION_NOISE_FLOOR_DEG_PER_DAY,
    SUPPORTED_BODIES,
    TRACKED_BODIES,
)
from yearephem.core.dedup import deduplicate
from yearephem.core.ephemeris_adapter import Location, PositionOracle, QuerySession
from yearephem.core.events import Event, SampleFrame
from yearephem.core.refiner import RefinePolicy, Refiner
from yearephem.core.sampler import sample
from yearephem.core.scanner import ScanConfig, scan
from yearephem.utils.metrics import EVENTS_DETECTED, YEAR_SECONDS

log = logging.getLogger(__name__)

__all__ = ["EngineSettings", "YearResult", "YearComputationError", "compute_year"]

class YearComputationError(RuntimeError):
    """No usable sample frame could be produced for the requested year."""

@dataclass(frozen=True)
class EngineSettings:
    bodies: Tuple[str, ...] = TRACKED_BODIES
    aspects: Tuple[Tuple[str, float], ...] = tuple(ASPECT_ANGLES_DEG.items())
    orb_deg: float = ASPECT_DETECTION_ORB_DEG
    noise_floor: float = STATION_NOISE_FLOOR_DEG_PER_DAY
    retrigger_hours: float = ASPECT_RETRIGGER_H
    dedup_hours: float = DEDUP_MIN_SEPARATION_H
    policy: RefinePolicy = field(default_factory=RefinePolicy)
    topocentric: bool = True

    def __post_init__(self) -> None:
        unknown = [b for b in self.bodies if b not in SUPPORTED_BODIES]
        if unknown:
            raise ValueError(f"unsupported bodies: {unknown}")
        if self.orb_deg <= 0:
            raise ValueError("orb_deg must be positive")

    @classmethod
    def from_config(cls, cfg: Optional[Mapping[str, Any]]) -> "EngineSettings":
        """Build from the ``engine:`` section of the loaded config (missing keys keep defaults)."""
        eng = dict((cfg or {}).get("engine") or {})
        kw: Dict[str, Any] = {}
        if eng.get("bodies"):
            kw["bodies"] = tuple(str(b).lower() for b in eng["bodies"])
        if eng.get("aspects"):
            kw["aspects"] = tuple((str(k), float(v)) for k, v in dict(eng["aspects"]).items())
        for key, name in (("orb_deg", "orb_deg"), ("noise_floor", "noise_floor"),
                          ("retrigger_hours", "retrigger_hours"), ("dedup_hours", "dedup_hours")):
            if eng.get(key) is not None:
                kw[name] = float(eng[key])
        if eng.get("topocentric") is not None:
            kw["topocentric"] = bool(eng["topocentric"])
        kw["policy"] = RefinePolicy.named(eng.get("refine_profile") or "precise")
        return cls(**kw)

    def scan_config(self) -> ScanConfig:
        return ScanConfig(
            aspects=dict(self.aspects),
            orb_deg=self.orb_deg,
            noise_floor=self.noise_floor,
            retrigger_hours=self.retrigger_hours,
            non_stationing=NON_STATIONING_BODIES,
        )

@dataclass(frozen=True)
class YearResult:
    year: int
    location: Location
    sample_interval_hours: float
    frames: Tuple[SampleFrame, ...]
    events: Tuple[Event, ...]
    profile: str = "precise"
    oracle_calls: int = 0
    elapsed_s: float = 0.0

    def events_payload(self) -> List[Dict[str, Any]]:
        return [e.to_dict() for e in self.events]

    def samples_payload(self) -> List[Dict[str, Any]]:
        return [f.to_dict() for f in self.frames]

def compute_year(oracle: PositionOracle, year: int, location: Location,
                 sample_interval_hours: float = DEFAULT_SAMPLE_INTERVAL_H,
                 settings: Optional[EngineSettings] = None) -> YearResult:
    settings = settings or EngineSettings()
    t0 = time.perf_counter()
    session = QuerySession(oracle, location, topocentric=settings.topocentric, phase="sample")

    frames = sample(session, year, sample_interval_hours, settings.bodies)
    if not any(f.bodies for f in frames):
        raise YearComputationError(f"no position samples could be computed for {year}")

    candidates = scan(frames, settings.bodies, settings.scan_config())

    refine_session = session.with_phase("refine")
    refiner = Refiner(refine_session, settings.policy)
    refined = [refiner.refine(c) for c in candidates]
    events = deduplicate(refined, settings.dedup_hours)

    counts: Dict[str, int] = {}
    for e in events:
        counts[e.kind] = counts.get(e.kind, 0) + 1
        EVENTS_DETECTED.labels(kind=e.kind).inc()

    elapsed = time.perf_counter() - t0
    YEAR_SECONDS.observe(elapsed)
    calls = session.calls + refine_session.calls
    log.info(
        "year=%s lat=%.4f lon=%.4f interval=%sh frames=%d candidates=%d events=%s oracle_calls=%d profile=%s elapsed=%.2fs",
        year, location.latitude, location.longitude, sample_interval_hours, len(frames),
        len(candidates), counts, calls, settings.policy.name, elapsed,
    )
    return YearResult(
        year=year,
        location=location,
        sample_interval_hours=float(sample_interval_hours),
        frames=tuple(frames),
        events=tuple(events),
        profile=settings.policy.name,
        oracle_calls=calls,
        elapsed_s=elapsed,
    )
