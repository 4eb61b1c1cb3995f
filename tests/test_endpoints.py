# tests/test_endpoints.py
import base64

import pytest

from conftest import AnalyticOracle
from yearephem.main import create_app

CONFIG = {
    "engine": {"bodies": ["sun", "mars"], "refine_profile": "fast"},
    "cache": {"capacity": 4},
}


@pytest.fixture
def oracle():
    return AnalyticOracle()


@pytest.fixture
def client(oracle):
    app = create_app(oracle=oracle, config=CONFIG)
    app.testing = True
    return app.test_client()


def test_health(client):
    for path in ("/health", "/healthz"):
        rv = client.get(path)
        assert rv.status_code == 200
        assert rv.get_json()["status"] == "ok"


def test_year_ephemeris_then_cached(client, oracle):
    body = {"year": 2024, "sampleInterval": 24}
    rv = client.post("/api/astrology/year-ephemeris", json=body)
    assert rv.status_code == 200
    out = rv.get_json()
    assert out["success"] is True
    data = out["data"]
    assert data["year"] == 2024
    assert data["location"] == {"latitude": 40.7128, "longitude": -74.006}
    assert data["sampleInterval"] == 24
    assert data["totalSamples"] == len(data["samples"]) == 366
    assert data["cached"] is False

    sun = [e for e in data["events"] if e["type"] == "ingress" and e["planet"] == "sun"]
    assert [e["toSign"] for e in sun][:3] == ["Aquarius", "Pisces", "Aries"]
    first = sun[0]
    assert set(first) == {"type", "planet", "fromSign", "toSign", "exactTimeUtc", "julianDay",
                          "degree", "degreeFormatted", "isRetrograde", "refined"}
    assert first["exactTimeUtc"].endswith("Z")

    aspects = [e for e in data["events"] if e["type"] == "aspect"]
    assert aspects
    assert set(aspects[0]["position1"]) == {"longitude", "degree", "degreeFormatted", "zodiacSignName"}

    planets = data["samples"][0]["planets"]
    assert set(planets) == {"sun", "mars"}
    assert set(planets["sun"]) == {"longitude", "speed", "zodiacSign", "zodiacSignName",
                                   "degree", "degreeFormatted", "isRetrograde"}

    calls = oracle.calls
    rv = client.post("/api/astrology/year-ephemeris", json={**body, "includeSamples": False})
    data = rv.get_json()["data"]
    assert data["cached"] is True
    assert "samples" not in data
    assert oracle.calls == calls


@pytest.mark.parametrize("body", [
    {},
    {"year": "soon"},
    {"year": 2024.5},
    {"year": 2024, "latitude": 91},
    {"year": 2024, "sampleInterval": 0},
    {"year": 2024, "sampleInterval": 0.5},
    {"year": 1500},
])
def test_year_ephemeris_validation(client, body):
    rv = client.post("/api/astrology/year-ephemeris", json=body)
    assert rv.status_code == 400
    out = rv.get_json()
    assert out["success"] is False
    assert out["details"]


def test_year_ephemeris_computation_failure_is_500():
    app = create_app(oracle=AnalyticOracle(fail_bodies={"sun", "mars"}), config=CONFIG)
    rv = app.test_client().post("/api/astrology/year-ephemeris", json={"year": 2024, "sampleInterval": 48})
    assert rv.status_code == 500
    assert rv.get_json()["success"] is False


def test_cache_listing_and_clear(client):
    client.post("/api/astrology/year-ephemeris", json={"year": 2023, "sampleInterval": 48})
    rv = client.get("/api/astrology/year-ephemeris/cache")
    data = rv.get_json()["data"]
    assert data["capacity"] == 4
    assert data["keys"] == [{"year": 2023, "location": {"latitude": 40.7128, "longitude": -74.006},
                             "sampleInterval": 48.0}]
    rv = client.delete("/api/astrology/year-ephemeris/cache")
    assert rv.get_json()["data"]["removed"] == 1
    assert client.get("/api/astrology/year-ephemeris/cache").get_json()["data"]["size"] == 0


def test_planets(client):
    rv = client.post("/api/astrology/planets", json={"year": 2000, "month": 1, "day": 1,
                                                      "latitude": 51.5, "longitude": 0.0})
    assert rv.status_code == 200
    data = rv.get_json()["data"]
    assert data["julianDay"] == pytest.approx(2451545.0)
    assert data["topocentric"] is True
    sun = data["planets"]["sun"]
    assert sun["zodiacSignName"] == "Capricorn"
    assert sun["speed"] == pytest.approx(1.0, abs=0.05)
    assert set(data["planets"]) == {"sun", "moon", "mercury", "venus", "mars", "jupiter",
                                    "saturn", "uranus", "neptune", "pluto"}


def test_planets_bad_date(client):
    rv = client.post("/api/astrology/planets", json={"year": 2023, "month": 2, "day": 30})
    assert rv.status_code == 400
    assert rv.get_json()["error"] == "Invalid time input"


def test_planets_half_location_rejected(client):
    rv = client.post("/api/astrology/planets", json={"year": 2023, "month": 2, "day": 3, "latitude": 10})
    assert rv.status_code == 400


CHART_BODY = {"year": 2024, "month": 3, "day": 20, "hour": 3, "minute": 6,
              "latitude": 40.7128, "longitude": -74.006}


def test_houses(client):
    rv = client.post("/api/astrology/houses", json=CHART_BODY)
    assert rv.status_code == 200
    data = rv.get_json()["data"]
    assert data["location"] == {"latitude": 40.7128, "longitude": -74.006}
    assert data["inputDate"]["hour"] == pytest.approx(3.1)
    houses = data["houses"]
    assert houses["houseSystem"] == houses["houseSystemUsed"] == "P"
    assert len(houses["cusps"]) == 12
    assert houses["cusps"][0] == pytest.approx(houses["ascendant"])
    assert houses["cusps"][9] == pytest.approx(houses["mc"])


def test_houses_whole_sign(client):
    rv = client.post("/api/astrology/houses", json={**CHART_BODY, "houseSystem": "w"})
    houses = rv.get_json()["data"]["houses"]
    assert houses["houseSystem"] == "W"
    assert all(c % 30.0 == 0.0 for c in houses["cusps"])


@pytest.mark.parametrize("body, error", [
    ({k: v for k, v in CHART_BODY.items() if k != "latitude"}, "Invalid chart request"),
    ({**CHART_BODY, "houseSystem": "Z"}, "Invalid chart request"),
    ({**CHART_BODY, "longitude": 181}, "Invalid chart request"),
    ({**CHART_BODY, "month": 2, "day": 30}, "Invalid time input"),
])
def test_houses_rejects_bad_input(client, body, error):
    rv = client.post("/api/astrology/houses", json=body)
    assert rv.status_code == 400
    assert rv.get_json()["error"] == error


def test_chart_places_planets_in_houses(client):
    rv = client.post("/api/astrology/chart", json=CHART_BODY)
    assert rv.status_code == 200
    data = rv.get_json()["data"]
    assert data["topocentric"] is True
    assert len(data["houses"]["cusps"]) == 12
    assert set(data["planets"]) == {"sun", "moon", "mercury", "venus", "mars", "jupiter",
                                    "saturn", "uranus", "neptune", "pluto"}
    for payload in data["planets"].values():
        assert 1 <= payload["house"] <= 12


def test_chart_requires_location(client):
    rv = client.post("/api/astrology/chart", json={"year": 2024, "month": 3, "day": 20})
    assert rv.status_code == 400
    assert rv.get_json()["success"] is False


def test_current_chart_defaults_to_now_and_whole_sign(client):
    rv = client.post("/api/astrology/current-chart", json={"latitude": 51.5, "longitude": -0.1})
    assert rv.status_code == 200
    data = rv.get_json()["data"]
    assert data["isCurrentTime"] is True
    assert data["houses"]["houseSystem"] == "W"
    assert data["timestamp"].endswith("Z")
    assert all(1 <= p["house"] <= 12 for p in data["planets"].values())


def test_current_chart_with_date_matches_chart(client):
    body = {**CHART_BODY, "houseSystem": "W"}
    current = client.post("/api/astrology/current-chart", json=body).get_json()["data"]
    fixed = client.post("/api/astrology/chart", json=body).get_json()["data"]
    assert current["isCurrentTime"] is False
    assert current["julianDay"] == fixed["julianDay"]
    assert current["houses"]["cusps"] == fixed["houses"]["cusps"]


def test_current_chart_requires_location(client):
    rv = client.post("/api/astrology/current-chart", json={"latitude": 51.5})
    assert rv.status_code == 400
    assert rv.get_json()["error"] == "Invalid chart request"


def test_ephemeris_info(client):
    data = client.get("/api/astrology/ephemeris-info").get_json()["data"]
    assert data["oracle"]["oracle"] == "AnalyticOracle"
    assert data["engine"]["refineProfile"] == "fast"
    assert data["engine"]["bodies"] == ["sun", "mars"]


def test_unknown_route_is_json_404(client):
    rv = client.get("/api/astrology/nope")
    assert rv.status_code == 404
    assert rv.get_json()["code"] == 404


def test_metrics_requires_basic_auth(client, monkeypatch):
    monkeypatch.setenv("METRICS_USER", "u")
    monkeypatch.setenv("METRICS_PASS", "p")
    assert client.get("/metrics").status_code == 401
    token = base64.b64encode(b"u:p").decode()
    rv = client.get("/metrics", headers={"Authorization": f"Basic {token}"})
    assert rv.status_code == 200
    assert b"yearephem_oracle_calls_total" in rv.data
