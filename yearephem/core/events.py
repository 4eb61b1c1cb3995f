# yearephem/core/events.py
from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, ClassVar, Dict, Mapping, Optional, Union

from yearephem.core.constants import SIGN_NAMES, format_degree, sign_index, wrap_deg
from yearephem.core.timecoord import Instant

__all__ = [
    "BodySample",
    "SampleFrame",
    "IngressCandidate",
    "StationCandidate",
    "AspectCandidate",
    "Candidate",
    "IngressEvent",
    "StationEvent",
    "AspectEvent",
    "Event",
    "position_payload",
]

# ─────────────────────────────────────────────────────────────────────────────
# Samples
# ─────────────────────────────────────────────────────────────────────────────

@dataclass(frozen=True)
class BodySample:
    instant: Instant
    body: str
    longitude: float   # [0, 360)
    speed: float       # deg/day, from neighbouring samples

    @property
    def zodiac_sign(self) -> int:
        return sign_index(self.longitude)

    @property
    def sign_name(self) -> str:
        return SIGN_NAMES[self.zodiac_sign]

    @property
    def degree(self) -> float:
        return wrap_deg(self.longitude) % 30.0

    @property
    def degree_formatted(self) -> str:
        return format_degree(self.longitude)

    @property
    def is_retrograde(self) -> bool:
        return self.speed < 0

    def to_dict(self) -> Dict[str, Any]:
        return {
            "longitude": self.longitude,
            "speed": self.speed,
            "zodiacSign": self.zodiac_sign,
            "zodiacSignName": self.sign_name,
            "degree": self.degree,
            "degreeFormatted": self.degree_formatted,
            "isRetrograde": self.is_retrograde,
        }

@dataclass(frozen=True)
class SampleFrame:
    """All body samples at one grid instant; failed bodies are absent."""
    instant: Instant
    bodies: Mapping[str, BodySample] = field(default_factory=dict)

    def get(self, body: str) -> Optional[BodySample]:
        return self.bodies.get(body)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "julianDay": self.instant.jd,
            "timestamp": self.instant.iso(),
            "planets": {name: s.to_dict() for name, s in self.bodies.items()},
        }

def position_payload(longitude: float) -> Dict[str, Any]:
    lon = wrap_deg(longitude)
    return {
        "longitude": lon,
        "degree": lon % 30.0,
        "degreeFormatted": format_degree(lon),
        "zodiacSignName": SIGN_NAMES[sign_index(lon)],
    }

# ─────────────────────────────────────────────────────────────────────────────
# Candidates (scanner output, refiner input)
# ─────────────────────────────────────────────────────────────────────────────

@dataclass(frozen=True)
class IngressCandidate:
    kind: ClassVar[str] = "ingress"
    body: str
    prev: BodySample
    curr: BodySample
    from_sign: int
    target_sign: int

@dataclass(frozen=True)
class StationCandidate:
    kind: ClassVar[str] = "station"
    body: str
    prev: BodySample
    curr: BodySample
    station_type: str  # "retrograde" | "direct"

@dataclass(frozen=True)
class AspectCandidate:
    kind: ClassVar[str] = "aspect"
    body1: str
    body2: str
    aspect: str
    angle: float
    prev_instant: Instant
    curr: BodySample       # body1 at the firing frame
    curr_other: BodySample  # body2 at the firing frame
    distance: float        # distance to the exact angle at the firing frame

    @property
    def curr_instant(self) -> Instant:
        return self.curr.instant

Candidate = Union[IngressCandidate, StationCandidate, AspectCandidate]

# ─────────────────────────────────────────────────────────────────────────────
# Events (refiner output)
# ─────────────────────────────────────────────────────────────────────────────

@dataclass(frozen=True)
class IngressEvent:
    kind: ClassVar[str] = "ingress"
    body: str
    from_sign: int
    to_sign: int
    exact: Instant
    longitude: float
    is_retrograde: bool
    refined: bool = True

    def to_dict(self) -> Dict[str, Any]:
        return {
            "type": self.kind,
            "planet": self.body,
            "fromSign": SIGN_NAMES[self.from_sign],
            "toSign": SIGN_NAMES[self.to_sign],
            "exactTimeUtc": self.exact.iso(),
            "julianDay": self.exact.jd,
            "degree": wrap_deg(self.longitude) % 30.0,
            "degreeFormatted": format_degree(self.longitude),
            "isRetrograde": self.is_retrograde,
            "refined": self.refined,
        }

@dataclass(frozen=True)
class StationEvent:
    kind: ClassVar[str] = "station"
    body: str
    station_type: str
    exact: Instant
    longitude: float
    refined: bool = True

    def to_dict(self) -> Dict[str, Any]:
        return {
            "type": self.kind,
            "planet": self.body,
            "stationType": self.station_type,
            "exactTimeUtc": self.exact.iso(),
            "julianDay": self.exact.jd,
            "degree": wrap_deg(self.longitude) % 30.0,
            "degreeFormatted": format_degree(self.longitude),
            "signName": SIGN_NAMES[sign_index(self.longitude)],
            "refined": self.refined,
        }

@dataclass(frozen=True)
class AspectEvent:
    kind: ClassVar[str] = "aspect"
    body1: str
    body2: str
    aspect: str
    angle: float
    exact: Instant
    orb: float
    longitude1: float
    longitude2: float
    refined: bool = True

    @property
    def group_key(self):
        return (self.body1, self.body2, self.angle)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "type": self.kind,
            "planet1": self.body1,
            "planet2": self.body2,
            "aspectName": self.aspect,
            "angle": self.angle,
            "exactTimeUtc": self.exact.iso(),
            "julianDay": self.exact.jd,
            "orb": self.orb,
            "position1": position_payload(self.longitude1),
            "position2": position_payload(self.longitude2),
            "refined": self.refined,
        }

Event = Union[IngressEvent, StationEvent, AspectEvent]
