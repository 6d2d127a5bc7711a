import asyncio

import pytest

from civicwatch.domain.errors import GeolocationError, GeolocationTimeout, PermissionDenied, PositionUnavailable
from civicwatch.domain.models import Coordinate, Position
from civicwatch.location.cache import LocationCache
from civicwatch.location.permission import PermissionTracker
from civicwatch.location.provider import LocationProvider, ProviderTimeouts
from civicwatch.location.sources import StaticGeolocationSource

DEFAULT = Coordinate(lat=9.9281, lng=-84.0907)


class RecordingSource:
    """Answers from a queue of positions/errors and records the prompt flag of each call."""

    def __init__(self, *results):
        self.results = list(results)
        self.calls: list[dict] = []

    async def get_current_position(self, *, prompt, timeout_s, maximum_age_s):
        self.calls.append({"prompt": prompt, "maximum_age_s": maximum_age_s})
        result = self.results.pop(0)
        if isinstance(result, Exception):
            raise result
        return result

    def watch_position(self, on_position, on_error=None):
        raise NotImplementedError


class SlowSource(RecordingSource):
    async def get_current_position(self, *, prompt, timeout_s, maximum_age_s):
        self.calls.append({"prompt": prompt, "maximum_age_s": maximum_age_s})
        await asyncio.sleep(5)


class PushSource:
    """Watch-capable source driven by the test."""

    def __init__(self):
        self.on_position = None
        self.cancelled = False

    async def get_current_position(self, *, prompt, timeout_s, maximum_age_s):
        raise PositionUnavailable()

    def watch_position(self, on_position, on_error=None):
        self.on_position = on_position
        source = self

        class _Handle:
            def cancel(self):
                source.cancelled = True

        return _Handle()


def _fix(lat=9.95, lng=-84.09):
    return Position(lat=lat, lng=lng, accuracy_m=15, timestamp_ms=0)


def _provider(store, clock, source, timeouts=None):
    return LocationProvider(
        LocationCache(store, clock=clock),
        PermissionTracker(store),
        source,
        default_location=DEFAULT,
        timeouts=timeouts,
        clock=clock,
    )


def test_fresh_cache_short_circuits_source(store, clock):
    source = RecordingSource()
    provider = _provider(store, clock, source)
    provider.cache.save("u", _fix())
    clock.advance_hours(23)

    result = asyncio.run(provider.get_location("u"))

    assert result.from_cache is True
    assert result.expired is False
    assert source.calls == []


def test_first_call_prompts_saves_and_marks_granted(store, clock):
    source = RecordingSource(_fix())
    provider = _provider(store, clock, source)

    result = asyncio.run(provider.get_location("u"))

    assert result.from_cache is False
    assert result.is_default is False
    assert (result.lat, result.lng) == (9.95, -84.09)
    assert result.captured_at_ms == clock.now
    assert source.calls == [{"prompt": True, "maximum_age_s": 0.0}]
    assert provider.permissions.granted("u")
    assert provider.cache.read("u") is not None


def test_granted_user_is_not_prompted_again(store, clock):
    source = RecordingSource(_fix())
    provider = _provider(store, clock, source)
    provider.permissions.mark_granted("u")

    result = asyncio.run(provider.get_location("u"))

    assert result.from_cache is False
    assert source.calls == [{"prompt": False, "maximum_age_s": 300.0}]


def test_expired_cache_triggers_new_fix(store, clock):
    source = RecordingSource(_fix(lat=10.0))
    provider = _provider(store, clock, source)
    provider.cache.save("u", _fix(lat=9.0))
    provider.permissions.mark_granted("u")
    clock.advance_hours(25)

    result = asyncio.run(provider.get_location("u"))

    assert result.lat == 10.0
    assert result.from_cache is False


@pytest.mark.parametrize("error", [PermissionDenied(), PositionUnavailable(), GeolocationTimeout(), GeolocationError()])
def test_failure_with_expired_cache_returns_it_flagged(store, clock, error):
    provider = _provider(store, clock, RecordingSource(error))
    provider.cache.save("u", _fix(lat=9.0))
    clock.advance_hours(30)

    result = asyncio.run(provider.get_location("u"))

    assert result.lat == 9.0
    assert result.from_cache is True
    assert result.expired is True
    assert result.is_default is False


def test_failure_without_cache_returns_default(store, clock):
    provider = _provider(store, clock, RecordingSource(PermissionDenied()))

    result = asyncio.run(provider.get_location("u"))

    assert result.is_default is True
    assert (result.lat, result.lng) == (DEFAULT.lat, DEFAULT.lng)
    assert not provider.permissions.granted("u")
    assert provider.cache.read("u") is None


def test_source_timeout_is_absorbed(store, clock):
    source = SlowSource()
    provider = _provider(store, clock, source, timeouts=ProviderTimeouts(fix_timeout_s=0.01))

    result = asyncio.run(provider.get_location("u"))

    assert result.is_default is True
    assert len(source.calls) == 1


def test_blank_user_key_raises(store, clock):
    provider = _provider(store, clock, RecordingSource())
    with pytest.raises(ValueError):
        asyncio.run(provider.get_location("  "))


def test_clear_forgets_location_and_permission(store, clock):
    provider = _provider(store, clock, RecordingSource(_fix(), _fix(lat=11.0)))
    asyncio.run(provider.get_location("u"))

    provider.clear("u")
    assert provider.cache.read("u") is None
    assert not provider.permissions.granted("u")

    result = asyncio.run(provider.refresh("u"))
    assert result.lat == 11.0


def test_permission_state_prefers_source_answer(store, clock):
    denied = _provider(store, clock, StaticGeolocationSource(error=PermissionDenied(), clock=clock))
    assert denied.permission_state("u") == "denied"

    provider = _provider(store, clock, RecordingSource())
    assert provider.permission_state("u") == "unknown"
    provider.permissions.mark_granted("u")
    assert provider.permission_state("u") == "granted"


def test_watch_saves_updates_until_cancelled(store, clock):
    source = PushSource()
    provider = _provider(store, clock, source)
    seen = []

    sub = provider.watch_location("u", seen.append)
    source.on_position(_fix(lat=1.0))
    clock.advance_hours(1)
    source.on_position(_fix(lat=2.0))

    assert [loc.lat for loc in seen] == [1.0, 2.0]
    assert provider.cache.read("u").lat == 2.0

    sub.cancel()
    assert source.cancelled is True
    assert sub.active is False

    # A late delivery after cancel must not reach the cache or the callback.
    source.on_position(_fix(lat=3.0))
    assert provider.cache.read("u").lat == 2.0
    assert len(seen) == 2

    sub.cancel()


def test_polling_watch_stops_after_cancel(store, clock):
    source = StaticGeolocationSource(_fix(), clock=clock, watch_interval_s=0.01)
    provider = _provider(store, clock, source)
    seen = []

    async def scenario():
        sub = provider.watch_location("u", seen.append)
        await asyncio.sleep(0.05)
        sub.cancel()
        count = len(seen)
        await asyncio.sleep(0.05)
        return count

    count = asyncio.run(scenario())

    assert count >= 1
    assert len(seen) == count
    assert provider.cache.read("u") is not None


def test_polling_watch_survives_callback_error(store, clock, caplog):
    source = StaticGeolocationSource(_fix(), clock=clock, watch_interval_s=0.01)
    provider = _provider(store, clock, source)
    seen = []

    def callback(location):
        seen.append(location)
        if len(seen) == 1:
            raise RuntimeError("boom")

    async def scenario():
        sub = provider.watch_location("u", callback)
        await asyncio.sleep(0.1)
        sub.cancel()

    asyncio.run(scenario())

    assert len(seen) > 1
    assert "Watch callback raised" in caplog.text


def test_granted_failure_with_expired_cache_returns_it_flagged(store, clock):
    source = RecordingSource(PositionUnavailable())
    provider = _provider(store, clock, source)
    provider.permissions.mark_granted("u")
    provider.cache.save("u", _fix(lat=9.5))
    clock.advance_hours(25)

    result = asyncio.run(provider.get_location("u"))

    assert source.calls == [{"prompt": False, "maximum_age_s": 300.0}]
    assert result.from_cache is True
    assert result.expired is True
    assert result.lat == 9.5
    assert provider.permissions.granted("u")
