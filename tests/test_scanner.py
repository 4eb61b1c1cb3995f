# tests/test_scanner.py
from __future__ import annotations

from typing import Dict, List

from yearephem.core.events import (
    AspectCandidate,
    BodySample,
    IngressCandidate,
    SampleFrame,
    StationCandidate,
)
from yearephem.core.scanner import ScanConfig, scan
from yearephem.core.timecoord import Instant

T0 = 2460311.0
STEP = 0.5  # 12 h


def frames_from(series: Dict[str, List], speeds: Dict[str, List] = None) -> List[SampleFrame]:
    n = max(len(v) for v in series.values())
    out = []
    for i in range(n):
        t = Instant(T0 + i * STEP)
        bodies = {}
        for name, lons in series.items():
            if i < len(lons) and lons[i] is not None:
                sp = (speeds or {}).get(name, [1.0] * n)[i]
                bodies[name] = BodySample(t, name, lons[i] % 360.0, sp)
        out.append(SampleFrame(t, bodies))
    return out


def of_kind(cands, cls):
    return [c for c in cands if isinstance(c, cls)]


def test_ingress_on_sign_change_including_wrap():
    frames = frames_from({"sun": [358.0, 359.5, 0.7, 1.9]})
    ing = of_kind(scan(frames, ["sun"]), IngressCandidate)
    assert len(ing) == 1
    assert ing[0].from_sign == 11 and ing[0].target_sign == 0
    assert ing[0].prev.longitude == 359.5 and ing[0].curr.longitude == 0.7


def test_ingress_bridges_absent_frame():
    frames = frames_from({"mars": [29.0, None, 31.0]})
    ing = of_kind(scan(frames, ["mars"]), IngressCandidate)
    assert len(ing) == 1
    assert ing[0].prev.instant.jd == T0 and ing[0].curr.instant.jd == T0 + 2 * STEP


def test_station_types_and_sun_excluded():
    speeds = {"mercury": [0.3, 0.1, -0.1, -0.2, 0.05], "sun": [1.0, -1.0, 1.0, 1.0, 1.0]}
    frames = frames_from({"mercury": [10, 10.1, 10.05, 9.9, 9.92], "sun": [1, 2, 3, 4, 5]}, speeds)
    st = of_kind(scan(frames, ["mercury", "sun"]), StationCandidate)
    assert [(c.body, c.station_type) for c in st] == [("mercury", "retrograde"), ("mercury", "direct")]


def test_station_ignores_noise_and_zero_speed():
    speeds = {"pluto": [1e-6, -1e-6, 0.0, -0.01]}
    frames = frames_from({"pluto": [200, 200, 200, 200]}, speeds)
    assert of_kind(scan(frames, ["pluto"]), StationCandidate) == []


def test_aspect_crossing_in_fires_once():
    # conjunction approach: separation 2.0, 1.2, 0.4, 0.3 (still in orb), 1.0
    frames = frames_from({"venus": [2.0, 1.2, 0.4, 0.3, 1.0], "mars": [0, 0, 0, 0, 0]})
    asp = of_kind(scan(frames, ["venus", "mars"]), AspectCandidate)
    conj = [c for c in asp if c.aspect == "conjunct"]
    assert len(conj) == 1
    assert conj[0].curr_instant.jd == T0 + 2 * STEP
    assert conj[0].prev_instant.jd == T0 + 1 * STEP
    assert conj[0].distance == 0.4


def test_aspect_local_minimum_respects_retrigger_window():
    # always inside the orb: crossing rule never fires, local minima at i=2 and i=5
    seps = [0.45, 0.3, 0.1, 0.3, 0.45, 0.05, 0.2]
    frames = frames_from({"jupiter": [90 + s for s in seps], "saturn": [0] * len(seps)})
    cands = [c for c in scan(frames, ["jupiter", "saturn"]) if isinstance(c, AspectCandidate)]
    assert [c.curr_instant.jd for c in cands] == [T0 + 2 * STEP, T0 + 5 * STEP]

    short = ScanConfig(retrigger_hours=48)
    cands = [c for c in scan(frames, ["jupiter", "saturn"], short) if isinstance(c, AspectCandidate)]
    assert [c.curr_instant.jd for c in cands] == [T0 + 2 * STEP]


def test_aspect_uses_circular_separation():
    # 359.8 vs 0.1 is 0.3 deg apart, not 359.7
    frames = frames_from({"a": [357.0, 359.8], "b": [0.1, 0.1]})
    cands = [c for c in scan(frames, ["a", "b"]) if isinstance(c, AspectCandidate)]
    assert [(c.aspect, round(c.distance, 6)) for c in cands] == [("conjunct", 0.3)]
