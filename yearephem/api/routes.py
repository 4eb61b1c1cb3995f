# yearephem/api/routes.py
"""
Astrology API routes (blueprint mounted under /api/astrology)

- POST /year-ephemeris        year scan: ingresses, stations, aspects (+ samples)
- POST /planets               positions of every supported body at one UTC instant
- POST /houses                ASC, MC, vertex and house cusps (P, O, E, W)
- POST /chart                 planets + houses, each planet tagged with its house
- POST /current-chart         /chart for now (or a given date), whole-sign houses
- GET  /ephemeris-info        oracle / kernel diagnostics
- GET  /year-ephemeris/cache  cached (year, location, interval) keys
- DELETE /year-ephemeris/cache

Notes:
- Request bodies are validated with pydantic; failures return 400 with details.
- Engine objects (oracle, cache, settings) live in app.extensions["yearephem"],
  so tests can inject a stub oracle through create_app().
"""

from __future__ import annotations

import logging
from datetime import datetime, timezone
from typing import Any, Dict, Tuple

from flask import Blueprint, current_app, jsonify, request
from pydantic import ValidationError
from werkzeug.exceptions import BadRequest

from yearephem.api.validation import (
    ChartRequest,
    CurrentChartRequest,
    PlanetsRequest,
    YearEphemerisRequest,
)
from yearephem.core.constants import SIGN_NAMES, SUPPORTED_BODIES, format_degree, sign_index
from yearephem.core.engine import YearComputationError, compute_year
from yearephem.core.ephemeris_adapter import Location, OracleUnavailable, QuerySession
from yearephem.core.houses import compute_houses
from yearephem.core.sampler import central_speed
from yearephem.core.timecoord import Instant, InvalidTime, to_instant

log = logging.getLogger(__name__)
api = Blueprint("astrology", __name__, url_prefix="/api/astrology")

_SYMBOLS = {
    "sun": "☉", "moon": "☽", "mercury": "☿", "venus": "♀", "mars": "♂",
    "jupiter": "♃", "saturn": "♄", "uranus": "♅", "neptune": "♆", "pluto": "♇",
}

# ───────────────────────── helpers ─────────────────────────
def _json_error(error: str, details: Any = None, http: int = 400):
    out: Dict[str, Any] = {"success": False, "error": error}
    if details is not None:
        out["details"] = details
    return jsonify(out), http

def _body() -> Dict[str, Any]:
    data = request.get_json(force=True, silent=True)
    if data is None:
        data = {}
    if not isinstance(data, dict):
        raise BadRequest("JSON body must be an object")
    return data

def _engine() -> Dict[str, Any]:
    return current_app.extensions["yearephem"]

def _validation_details(e: ValidationError):
    return [
        {"field": ".".join(str(p) for p in err.get("loc", ())), "message": err.get("msg")}
        for err in e.errors()
    ]

def _cache_key_dict(key: Tuple[int, Location, float]) -> Dict[str, Any]:
    year, loc, interval = key
    return {"year": year, "location": loc.to_dict(), "sampleInterval": interval}

# ───────────────────────── year ephemeris ─────────────────────────
@api.post("/year-ephemeris")
def year_ephemeris():
    try:
        req = YearEphemerisRequest.model_validate(_body())
    except ValidationError as e:
        return _json_error("Invalid year ephemeris request", _validation_details(e))

    eng = _engine()
    location = Location(req.latitude, req.longitude)
    try:
        result, cached = eng["cache"].get_or_compute(
            req.year, location, req.sample_interval,
            lambda: compute_year(eng["oracle"], req.year, location, req.sample_interval, eng["settings"]),
        )
    except InvalidTime as e:
        return _json_error("Invalid time input", str(e))
    except YearComputationError as e:
        log.error("year ephemeris failed for %s: %s", req.year, e)
        return _json_error("Failed to calculate year ephemeris", str(e), 500)

    data: Dict[str, Any] = {
        "year": result.year,
        "location": {"latitude": req.latitude, "longitude": req.longitude},
        "sampleInterval": req.sample_interval,
        "totalSamples": len(result.frames),
        "events": result.events_payload(),
        "cached": cached,
    }
    if req.include_samples:
        data["samples"] = result.samples_payload()
    return jsonify({"success": True, "data": data}), 200

@api.get("/year-ephemeris/cache")
def year_ephemeris_cache():
    cache = _engine()["cache"]
    keys = [_cache_key_dict(k) for k in cache.keys()]
    return jsonify({"success": True, "data": {"capacity": cache.capacity, "size": len(keys), "keys": keys}}), 200

@api.delete("/year-ephemeris/cache")
def year_ephemeris_cache_clear():
    removed = _engine()["cache"].clear()
    log.info("year ephemeris cache cleared (%d entries)", removed)
    return jsonify({"success": True, "data": {"removed": removed}}), 200

# ───────────────────────── planets at an instant ─────────────────────────
def _planet_positions(session: QuerySession, t: Instant) -> Dict[str, Any]:
    """Per-body position payload; a failing body carries {"error": ...} instead."""
    out: Dict[str, Any] = {}
    for body in SUPPORTED_BODIES:
        try:
            pos = session.position(t, body)
            speed = central_speed(session, t, body)
        except OracleUnavailable as e:
            log.warning("%s: %s unavailable: %s", session.phase, body, e)
            out[body] = {"error": e.message}
            continue
        out[body] = {
            "longitude": pos.longitude,
            "latitude": pos.latitude,
            "distance": pos.distance,
            "speed": speed,
            "zodiacSign": sign_index(pos.longitude),
            "zodiacSignName": SIGN_NAMES[sign_index(pos.longitude)],
            "degree": pos.longitude % 30.0,
            "degreeFormatted": format_degree(pos.longitude),
            "symbol": _SYMBOLS.get(body),
            "isRetrograde": speed < 0,
        }
    return out

def _input_date(t: Instant) -> Dict[str, Any]:
    y, m, d, hh, mi, s = t.to_calendar()
    return {"year": y, "month": m, "day": d, "hour": hh + mi / 60.0 + s / 3600.0}

@api.post("/planets")
def planets():
    try:
        req = PlanetsRequest.model_validate(_body())
    except ValidationError as e:
        return _json_error("Invalid planets request", _validation_details(e))
    try:
        t = to_instant(req.year, req.month, req.day, req.hour, req.minute, req.second)
    except InvalidTime as e:
        return _json_error("Invalid time input", str(e))

    topo = req.topocentric and req.latitude is not None
    if req.latitude is not None:
        location = Location(req.latitude, req.longitude)
    else:
        location = Location(0.0, 0.0)
    session = QuerySession(_engine()["oracle"], location, topocentric=topo, phase="planets")

    return jsonify({
        "success": True,
        "data": {
            "julianDay": t.jd,
            "timestamp": t.iso(),
            "topocentric": topo,
            "location": location.to_dict() if topo else None,
            "planets": _planet_positions(session, t),
        },
    }), 200

# ───────────────────────── houses & chart ─────────────────────────
def _chart_request(model=ChartRequest):
    """((request, instant), None) or (None, error response)."""
    try:
        req = model.model_validate(_body())
    except ValidationError as e:
        return None, _json_error("Invalid chart request", _validation_details(e))
    try:
        if getattr(req, "has_date", True):
            t = to_instant(req.year, req.month, req.day, req.hour, req.minute, req.second)
        else:
            t = Instant.from_datetime(datetime.now(timezone.utc))
    except InvalidTime as e:
        return None, _json_error("Invalid time input", str(e))
    return (req, t), None

@api.post("/houses")
def houses():
    parsed, err = _chart_request()
    if err is not None:
        return err
    req, t = parsed
    location = Location(req.latitude, req.longitude)
    hc = compute_houses(t, location, req.house_system)
    return jsonify({
        "success": True,
        "data": {
            "julianDay": t.jd,
            "timestamp": t.iso(),
            "inputDate": _input_date(t),
            "location": location.to_dict(),
            "houses": hc.to_dict(),
        },
    }), 200

def _chart_payload(req, t: Instant, phase: str) -> Dict[str, Any]:
    location = Location(req.latitude, req.longitude)
    hc = compute_houses(t, location, req.house_system)
    session = QuerySession(_engine()["oracle"], location, topocentric=req.topocentric, phase=phase)
    bodies = _planet_positions(session, t)
    for payload in bodies.values():
        if "longitude" in payload:
            payload["house"] = hc.house_of(payload["longitude"])
    return {
        "julianDay": t.jd,
        "timestamp": t.iso(),
        "inputDate": _input_date(t),
        "location": location.to_dict(),
        "topocentric": req.topocentric,
        "planets": bodies,
        "houses": hc.to_dict(),
    }

@api.post("/chart")
def chart():
    parsed, err = _chart_request()
    if err is not None:
        return err
    req, t = parsed
    return jsonify({"success": True, "data": _chart_payload(req, t, "chart")}), 200

@api.post("/current-chart")
def current_chart():
    parsed, err = _chart_request(CurrentChartRequest)
    if err is not None:
        return err
    req, t = parsed
    data = _chart_payload(req, t, "current-chart")
    data["isCurrentTime"] = not req.has_date
    return jsonify({"success": True, "data": data}), 200

# ───────────────────────── diagnostics ─────────────────────────
@api.get("/ephemeris-info")
def ephemeris_info():
    eng = _engine()
    settings = eng["settings"]
    return jsonify({
        "success": True,
        "data": {
            "oracle": eng["oracle"].diagnostics(),
            "engine": {
                "bodies": list(settings.bodies),
                "aspects": dict(settings.aspects),
                "orb": settings.orb_deg,
                "refineProfile": settings.policy.name,
                "topocentric": settings.topocentric,
            },
            "cache": {"capacity": eng["cache"].capacity, "size": len(eng["cache"])},
        },
    }), 200
