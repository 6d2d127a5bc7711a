import pytest
from starlette.testclient import TestClient

from civicwatch.api.app import app
from civicwatch.config.settings import get_settings
from civicwatch.core.store import MemoryStore
from civicwatch.domain.errors import PermissionDenied
from civicwatch.domain.models import Position
from civicwatch.engine import build_engine
from civicwatch.location.sources import StaticGeolocationSource


@pytest.fixture
def engine(monkeypatch, clock):
    # Patch the cached engine factory so API tests stay offline and in memory.
    import civicwatch.api.routes as routes

    source = StaticGeolocationSource(Position(lat=9.95, lng=-84.09, timestamp_ms=0), clock=clock)
    engine = build_engine(get_settings(), store=MemoryStore(), source=source, clock=clock)
    monkeypatch.setattr(routes, "_engine", lambda: engine)
    return engine


@pytest.fixture
def client(engine):
    with TestClient(app) as c:
        yield c


def _incident(lat, lng, severity="CRITICA"):
    return {"id": "inc-1", "type": "INCENDIO", "severity": severity, "location": {"lat": lat, "lng": lng}}


def test_zone_lifecycle(client):
    resp = client.post(
        "/api/users/ana/zones",
        json={"name": "Casa", "center": {"lat": 9.93, "lng": -84.08}, "radius_km": 5},
    )
    assert resp.status_code == 201
    zone = resp.json()
    assert zone["owner_id"] == "ana"
    assert zone["active"] is True

    assert [z["id"] for z in client.get("/api/users/ana/zones").json()] == [zone["id"]]

    resp = client.patch(f"/api/zones/{zone['id']}", json={"active": False})
    assert resp.status_code == 200
    assert resp.json()["active"] is False

    assert client.delete(f"/api/zones/{zone['id']}").status_code == 204
    assert client.delete(f"/api/zones/{zone['id']}").status_code == 204
    assert client.get("/api/users/ana/zones").json() == []


def test_zone_errors_map_to_http_status(client):
    resp = client.post(
        "/api/users/ana/zones",
        json={"name": "Casa", "center": {"lat": 9.93, "lng": -84.08}, "radius_km": 80},
    )
    assert resp.status_code == 422
    assert resp.json()["detail"]["field"] == "radius_km"

    resp = client.patch("/api/zones/missing", json={"active": True})
    assert resp.status_code == 404
    assert resp.json()["detail"]["code"] == "NOT_FOUND"


def test_match_end_to_end(client):
    client.post(
        "/api/users/ana/zones",
        json={"name": "Casa", "center": {"lat": 9.93, "lng": -84.08}, "radius_km": 5},
    )

    near = client.post("/api/users/ana/matches", json=_incident(9.95, -84.09)).json()
    assert near["notify"] is True
    assert near["zone_name"] == "Casa"
    assert len(near["matches"]) == 1
    assert near["matches"][0]["distance_km"] == pytest.approx(2.479, abs=0.01)

    far = client.post("/api/users/ana/matches", json=_incident(10.02, -84.08)).json()
    assert far["notify"] is False
    assert far["matches"] == []


def test_notification_settings_round_trip(client):
    settings = client.get("/api/users/ana/notification-settings").json()
    assert settings["severity_filter"] == ["ALTA", "CRITICA", "MEDIA"]

    settings["enabled"] = False
    assert client.put("/api/users/ana/notification-settings", json=settings).status_code == 200
    assert client.get("/api/users/ana/notification-settings").json()["enabled"] is False


def test_location_flow(client, engine):
    first = client.get("/api/users/ana/location").json()
    assert first["location"]["from_cache"] is False
    assert first["location"]["is_default"] is False
    assert first["permission"] == "granted"
    assert first["meta"]["store"]["writes"] >= 2

    second = client.get("/api/users/ana/location").json()
    assert second["location"]["from_cache"] is True

    assert client.delete("/api/users/ana/location").status_code == 204
    assert engine.location_cache.read("ana") is None


def test_reported_location_is_cached(client, engine):
    resp = client.put("/api/users/luis/location", json={"lat": 10.0, "lng": -84.0, "accuracy_m": 8})
    assert resp.status_code == 200
    assert engine.location_cache.read("luis").lat == 10.0
    assert engine.permissions.granted("luis")


def test_location_falls_back_to_default(monkeypatch, clock):
    import civicwatch.api.routes as routes

    source = StaticGeolocationSource(error=PermissionDenied(), clock=clock)
    engine = build_engine(get_settings(), store=MemoryStore(), source=source, clock=clock)
    monkeypatch.setattr(routes, "_engine", lambda: engine)

    with TestClient(app) as c:
        data = c.get("/api/users/ana/location").json()
    assert data["location"]["is_default"] is True
    assert data["permission"] == "denied"


def test_proximity_endpoint_and_toggle(client):
    body = {
        "center": {"lat": 9.9281, "lng": -84.0907},
        "incidents": [_incident(9.93, -84.09), {**_incident(10.1, -84.09), "id": "far"}],
    }
    data = client.post("/api/proximity", json=body).json()
    assert data["radius_km"] == 5
    assert [r["incident"]["id"] for r in data["results"]] == ["inc-1"]
    assert not data["results"][0]["distance_label"].endswith("km")

    assert client.get("/api/users/ana/proximity-filter").json() == {"enabled": False}
    client.put("/api/users/ana/proximity-filter", json={"enabled": True})
    assert client.get("/api/users/ana/proximity-filter").json() == {"enabled": True}
