# yearephem/core/scanner.py
from __future__ import annotations

from dataclasses import dataclass, field
from itertools import combinations
from typing import Dict, List, Mapping, Optional, Sequence, Tuple
import logging

from yearephem.core.constants import (
    ASPECT_ANGLES_DEG,
    ASPECT_DETECTION_ORB_DEG,
    ASPECT_RETRIGGER_H,
    NON_STATIONING_BODIES,
    STATION_NOISE_FLOOR_DEG_PER_DAY,
    aspect_distance,
)
from yearephem.core.events import (
    AspectCandidate,
    BodySample,
    Candidate,
    IngressCandidate,
    SampleFrame,
    StationCandidate,
)
from yearephem.core.timecoord import Instant

log = logging.getLogger(__name__)

__all__ = ["ScanConfig", "scan"]

@dataclass(frozen=True)
class ScanConfig:
    aspects: Mapping[str, float] = field(default_factory=lambda: dict(ASPECT_ANGLES_DEG))
    orb_deg: float = ASPECT_DETECTION_ORB_DEG
    noise_floor: float = STATION_NOISE_FLOOR_DEG_PER_DAY
    retrigger_hours: float = ASPECT_RETRIGGER_H
    non_stationing: Tuple[str, ...] = NON_STATIONING_BODIES

# ─────────────────────────────────────────────────────────────────────────────
# Per-kind rules
# ─────────────────────────────────────────────────────────────────────────────

def _sign(x: float) -> int:
    return (x > 0) - (x < 0)

def _ingress(prev: BodySample, curr: BodySample) -> Optional[IngressCandidate]:
    if prev.zodiac_sign == curr.zodiac_sign:
        return None
    return IngressCandidate(body=curr.body, prev=prev, curr=curr,
                            from_sign=prev.zodiac_sign, target_sign=curr.zodiac_sign)

def _station(prev: BodySample, curr: BodySample, noise_floor: float) -> Optional[StationCandidate]:
    sp, sc = _sign(prev.speed), _sign(curr.speed)
    if sp == 0 or sc == 0 or sp == sc:
        return None
    # both sides inside the floor is numerical jitter, not a reversal
    if max(abs(prev.speed), abs(curr.speed)) <= noise_floor:
        return None
    kind = "retrograde" if sp > 0 else "direct"
    return StationCandidate(body=curr.body, prev=prev, curr=curr, station_type=kind)

def _pair_distance(frame: Optional[SampleFrame], a: str, b: str, angle: float) -> Optional[float]:
    if frame is None:
        return None
    sa, sb = frame.get(a), frame.get(b)
    if sa is None or sb is None:
        return None
    return aspect_distance(sa.longitude, sb.longitude, angle)

# ─────────────────────────────────────────────────────────────────────────────
# Scan
# ─────────────────────────────────────────────────────────────────────────────

def scan(frames: Sequence[SampleFrame], bodies: Sequence[str],
         cfg: Optional[ScanConfig] = None) -> List[Candidate]:
    """
    Single chronological pass over the frames.

    Ingress and station compare each body against its last present sample.
    Aspects compare consecutive frames; a pair+angle fires when it crosses
    into the orb, or when it sits in orb at a local minimum of distance and
    has not fired within the re-trigger window.
    """
    cfg = cfg or ScanConfig()
    out: List[Candidate] = []
    last: Dict[str, BodySample] = {}
    last_fired: Dict[Tuple[str, str, str], Instant] = {}
    retrigger_d = cfg.retrigger_hours / 24.0
    pairs = list(combinations(bodies, 2))

    for i, frame in enumerate(frames):
        for body in bodies:
            curr = frame.get(body)
            if curr is None:
                continue
            prev = last.get(body)
            if prev is not None:
                c = _ingress(prev, curr)
                if c is not None:
                    out.append(c)
                if body not in cfg.non_stationing:
                    c = _station(prev, curr, cfg.noise_floor)
                    if c is not None:
                        out.append(c)
            last[body] = curr

        if i == 0:
            continue
        prev_frame = frames[i - 1]
        next_frame = frames[i + 1] if i + 1 < len(frames) else None
        for a, b in pairs:
            sa, sb = frame.get(a), frame.get(b)
            if sa is None or sb is None:
                continue
            for name, angle in cfg.aspects.items():
                d = aspect_distance(sa.longitude, sb.longitude, angle)
                if d > cfg.orb_deg:
                    continue
                key = (a, b, name)
                d_prev = _pair_distance(prev_frame, a, b, angle)
                crossing = d_prev is not None and d_prev > cfg.orb_deg
                fire = crossing
                if not fire:
                    d_next = _pair_distance(next_frame, a, b, angle)
                    local_min = ((d_prev is None or d <= d_prev)
                                 and (d_next is None or d <= d_next))
                    fired_at = last_fired.get(key)
                    recent = fired_at is not None and (frame.instant - fired_at) < retrigger_d
                    fire = local_min and not recent
                if fire:
                    last_fired[key] = frame.instant
                    out.append(AspectCandidate(
                        body1=a, body2=b, aspect=name, angle=float(angle),
                        prev_instant=prev_frame.instant, curr=sa, curr_other=sb,
                        distance=d,
                    ))

    log.debug("scan: %d frames -> %d candidates", len(frames), len(out))
    return out
