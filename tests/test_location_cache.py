from civicwatch.core.store import Keys, store_key
from civicwatch.domain.models import Coordinate, Position
from civicwatch.location.cache import LocationCache
from civicwatch.location.permission import PermissionTracker


def test_save_stamps_now_and_read_returns_it(store, clock):
    cache = LocationCache(store, clock=clock)
    saved = cache.save("ana@example.com", Position(lat=9.93, lng=-84.08, accuracy_m=12, timestamp_ms=1))

    assert saved.captured_at_ms == clock.now
    loaded = cache.read("ana@example.com")
    assert loaded == saved
    assert loaded.accuracy_m == 12


def test_persisted_shape_uses_location_key(store, clock):
    cache = LocationCache(store, clock=clock)
    cache.save("ana@example.com", Coordinate(lat=1.5, lng=2.5))

    raw = store.get(store_key(Keys.LOCATION, "ana@example.com"))
    assert raw == {"lat": 1.5, "lng": 2.5, "timestamp": clock.now}


def test_read_without_save_returns_none(store):
    assert LocationCache(store).read("nobody") is None


def test_save_overwrites_previous_value(store, clock):
    cache = LocationCache(store, clock=clock)
    cache.save("u", Coordinate(lat=1, lng=1))
    clock.advance_hours(1)
    cache.save("u", Coordinate(lat=2, lng=2))

    loaded = cache.read("u")
    assert (loaded.lat, loaded.lng) == (2, 2)
    assert loaded.captured_at_ms == clock.now


def test_ttl_boundary(store, clock):
    cache = LocationCache(store, clock=clock)
    saved = cache.save("u", Coordinate(lat=1, lng=1))
    t = saved.captured_at_ms

    assert not cache.is_expired(saved, t + 23 * 3_600_000)
    assert not cache.is_expired(saved, t + 24 * 3_600_000)
    assert cache.is_expired(saved, t + 25 * 3_600_000)
    assert cache.is_expired(saved, t + 2 * 3_600_000, ttl_hours=1)


def test_is_expired_defaults_to_clock(store, clock):
    cache = LocationCache(store, clock=clock, ttl_hours=24)
    saved = cache.save("u", Coordinate(lat=1, lng=1))
    clock.advance_hours(25)
    assert cache.is_expired(saved)


def test_clear_removes_entry_only_for_that_user(store, clock):
    cache = LocationCache(store, clock=clock)
    cache.save("a", Coordinate(lat=1, lng=1))
    cache.save("b", Coordinate(lat=2, lng=2))

    cache.clear("a")

    assert cache.read("a") is None
    assert cache.read("b") is not None


def test_malformed_record_reads_as_none(store):
    store.set(store_key(Keys.LOCATION, "u"), {"lat": "x"})
    assert LocationCache(store).read("u") is None


def test_permission_tracker_round_trip(store):
    tracker = PermissionTracker(store)
    assert tracker.granted("u") is False

    tracker.mark_granted("u")
    assert tracker.granted("u") is True
    assert store.get("locationPermission:u") == "true"
    assert tracker.granted("other") is False

    tracker.clear("u")
    assert tracker.granted("u") is False
