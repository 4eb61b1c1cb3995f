# yearephem/core/dedup.py
from __future__ import annotations

from typing import Dict, List, Sequence, Tuple

from yearephem.core.constants import DEDUP_MIN_SEPARATION_H
from yearephem.core.events import AspectEvent, Event

__all__ = ["deduplicate", "chronological"]

_KIND_ORDER = {"ingress": 0, "station": 1, "aspect": 2}

def chronological(events: Sequence[Event]) -> List[Event]:
    """Sort by exact instant; equal instants keep ingress < station < aspect."""
    return sorted(events, key=lambda e: (e.exact.jd, _KIND_ORDER.get(e.kind, 9)))

def deduplicate(events: Sequence[Event], min_separation_hours: float = DEDUP_MIN_SEPARATION_H) -> List[Event]:
    """
    Collapse repeated detections of one aspect.

    Aspect events are grouped by (body1, body2, angle). Walking a group in time
    order, an event is kept when it lies at least ``min_separation_hours`` after
    the last kept one; otherwise only the smaller-orb event of the two survives.
    Ingress and station events pass through untouched.
    """
    window_d = float(min_separation_hours) / 24.0
    passthrough: List[Event] = []
    groups: Dict[Tuple[str, str, float], List[AspectEvent]] = {}
    for e in events:
        if isinstance(e, AspectEvent):
            groups.setdefault(e.group_key, []).append(e)
        else:
            passthrough.append(e)

    kept: List[Event] = list(passthrough)
    for group in groups.values():
        group.sort(key=lambda e: e.exact.jd)
        out: List[AspectEvent] = []
        for e in group:
            if not out or (e.exact - out[-1].exact) >= window_d:
                out.append(e)
            elif e.orb < out[-1].orb:
                out[-1] = e
        kept.extend(out)

    return chronological(kept)
