import asyncio

import pytest

from agrocamer.errors import GeolocationError, PermissionDenied, Unsupported
from agrocamer.models import MANUAL_ACCURACY_M, Position, PositionSource
from agrocamer.services.geolocation import GeolocationOptions, GeolocationResolver

from .conftest import fix


def test_startup_without_anything(positions, provider):
    resolver = GeolocationResolver(positions, provider)
    state = resolver.state
    assert state.position is None
    assert state.loading is True
    assert state.source == PositionSource.NONE


def test_startup_uses_cache_while_loading(positions, provider, douala):
    positions.save_cached(douala)
    resolver = GeolocationResolver(positions, provider)
    assert resolver.position == douala
    assert resolver.source == PositionSource.CACHE
    assert resolver.loading is True
    assert resolver.state.is_stale


def test_manual_dominates_cache_and_skips_gps(positions, provider, douala):
    positions.save_cached(douala)
    positions.save_manual(Position.manual(5.95, 10.15, 1600))
    resolver = GeolocationResolver(positions, provider)
    resolver.start()

    assert resolver.source == PositionSource.MANUAL
    assert resolver.loading is False
    assert resolver.position.latitude == 5.95
    assert provider.requests == [] and provider.watches == {}


def test_watch_success_updates_state_and_cache(positions, provider):
    resolver = GeolocationResolver(positions, provider)
    resolver.start()
    assert resolver.is_watching

    on_success, _, options = provider.last_watch
    assert options == {"enableHighAccuracy": True, "timeout": 15000, "maximumAge": 60000}
    on_success(fix())

    assert resolver.source == PositionSource.GPS
    assert resolver.loading is False
    assert resolver.error is None
    assert positions.load_cached().latitude == pytest.approx(3.8667)
    assert resolver.location_info.region == "centre"


def test_error_falls_back_to_cache_with_note(positions, provider, douala):
    positions.save_cached(douala)
    resolver = GeolocationResolver(positions, provider, GeolocationOptions(watch=False), language="en")
    resolver.start()

    _, on_error, _ = provider.requests[-1]
    on_error({"code": 3, "message": "Timeout expired"})

    assert resolver.source == PositionSource.CACHE
    assert resolver.position == douala
    assert resolver.error.code == 3
    assert resolver.error.message.endswith("(cached position used)")
    assert resolver.loading is False


def test_permission_denied_without_cache(positions, provider):
    resolver = GeolocationResolver(positions, provider)
    resolver.start()
    _, on_error, _ = provider.last_watch
    on_error(1)

    assert isinstance(resolver.error, PermissionDenied)
    assert resolver.has_permission is False
    assert resolver.position is None
    assert resolver.source == PositionSource.NONE


def test_unknown_error_code_is_preserved(positions, provider):
    resolver = GeolocationResolver(positions, provider, GeolocationOptions(watch=False))
    resolver.start()
    _, on_error, _ = provider.requests[-1]
    on_error({"code": 42})
    assert type(resolver.error) is GeolocationError
    assert resolver.error.code == 42


def test_no_provider_is_unsupported(positions):
    resolver = GeolocationResolver(positions, None)
    resolver.start()
    assert isinstance(resolver.error, Unsupported)
    assert resolver.error.code == 0
    assert resolver.loading is False


def test_set_manual_clears_watch_once_before_persisting(positions, provider, memory_store):
    order = []
    original_clear = provider.clear_watch
    original_set = memory_store.set

    def clear_watch(handle):
        order.append(("clear", handle))
        original_clear(handle)

    def set_value(key, value):
        order.append(("set", key))
        original_set(key, value)

    provider.clear_watch = clear_watch
    memory_store.set = set_value

    resolver = GeolocationResolver(positions, provider)
    resolver.start()
    handle = max(provider.watches)
    resolver.set_manual_location(4.0503, 9.7, 13)

    assert order[0] == ("clear", handle)
    assert [o for o in order if o[0] == "clear"] == [("clear", handle)]
    assert order[1][0] == "set"
    assert resolver.source == PositionSource.MANUAL
    assert resolver.position.accuracy == MANUAL_ACCURACY_M
    assert resolver.is_watching is False
    assert resolver.loading is False


def test_late_watch_callback_after_manual_is_dropped(positions, provider):
    resolver = GeolocationResolver(positions, provider)
    resolver.start()
    on_success, _, _ = provider.last_watch
    resolver.set_manual_location(5.95, 10.15, 1600)

    on_success(fix(lat=2.0, lon=10.0))

    assert resolver.source == PositionSource.MANUAL
    assert resolver.position.latitude == 5.95
    assert positions.load_cached() is None


def test_superseded_refresh_is_dropped(positions, provider):
    resolver = GeolocationResolver(positions, provider, GeolocationOptions(watch=False))
    resolver.refresh()
    first_success, _, _ = provider.requests[0]
    resolver.refresh()
    second_success, _, _ = provider.requests[1]

    first_success(fix(lat=2.0))
    assert resolver.position is None

    second_success(fix(lat=3.0))
    assert resolver.position.latitude == 3.0


def test_clear_manual_restores_cache_and_restarts(positions, provider, douala):
    positions.save_cached(douala)
    positions.save_manual(Position.manual(5.95, 10.15))
    resolver = GeolocationResolver(positions, provider)

    resolver.clear_manual_location()

    assert positions.load_manual() is None
    assert resolver.source == PositionSource.CACHE
    assert resolver.position == douala
    assert resolver.is_watching
    assert len(provider.watches) == 1


def test_stop_watching(positions, provider):
    resolver = GeolocationResolver(positions, provider)
    resolver.start_watching()
    handle = max(provider.watches)
    resolver.stop_watching()
    assert provider.cleared == [handle]
    assert resolver.is_watching is False

    on_success, _, _ = provider.watches[handle]
    on_success(fix())
    assert resolver.position is None


def test_listeners_and_unsubscribe(positions, provider):
    resolver = GeolocationResolver(positions, provider)
    seen = []
    unsubscribe = resolver.add_listener(lambda state: seen.append(state.source))
    resolver.set_manual_location(4.0503, 9.7)
    unsubscribe()
    resolver.clear_manual_location()
    assert seen == [PositionSource.MANUAL]


def test_wait_resolved(positions, provider):
    async def scenario():
        resolver = GeolocationResolver(positions, provider)
        resolver.start()
        on_success, _, _ = provider.last_watch
        asyncio.get_running_loop().call_later(0.01, on_success, fix())
        return await resolver.wait_resolved(timeout=1.0)

    state = asyncio.run(scenario())
    assert state.loading is False
    assert state.source == PositionSource.GPS


def test_close_drops_callbacks(positions, provider):
    resolver = GeolocationResolver(positions, provider)
    resolver.start()
    on_success, _, _ = provider.last_watch
    resolver.close()
    on_success(fix())
    assert resolver.position is None
    assert provider.cleared


def test_malformed_fix_settles_with_unavailable(positions, provider):
    resolver = GeolocationResolver(positions, provider, language="en")
    resolver.start()
    on_success, _, _ = provider.last_watch
    on_success({"coords": {"latitude": "north"}})

    assert resolver.loading is False
    assert resolver.error.code == 2
    assert resolver.source == PositionSource.NONE


def test_malformed_fix_falls_back_to_cache(positions, provider, douala):
    positions.save_cached(douala)
    resolver = GeolocationResolver(positions, provider, GeolocationOptions(watch=False))
    resolver.start()
    on_success, _, _ = provider.requests[-1]

    async def scenario():
        asyncio.get_running_loop().call_later(0.01, on_success, {"timestamp": 1})
        return await resolver.wait_resolved()

    state = asyncio.run(scenario())
    assert state.position == douala
    assert state.source == PositionSource.CACHE


def test_no_acquisition_after_close(positions, provider):
    resolver = GeolocationResolver(positions, provider, GeolocationOptions(watch=False))
    resolver.close()
    resolver.refresh()
    resolver.start_watching()
    assert provider.requests == []
    assert provider.watches == {}
    assert resolver.is_watching is False
