"""
Geolocation Resolver

Resolves the farmer's position from live GPS, the last cached GPS fix, or a
manually picked city, in that order of freshness and with manual taking
precedence over everything while it is set.

The location provider is callback based (`get_current_position`,
`watch_position`, `clear_watch`). Every acquisition is tagged with a token
so late callbacks from a cancelled subscription, a superseded one-shot
request or a request that raced a manual override are dropped.
"""

from __future__ import annotations

import asyncio
import itertools
import logging
from dataclasses import dataclass, replace
from typing import Any, Callable, Dict, List, Optional, Protocol

from agrocamer.errors import GeolocationError, PositionUnavailable, Unsupported
from agrocamer.i18n import DEFAULT_LANGUAGE, translate
from agrocamer.models import LocationInfo, Position, PositionSource
from agrocamer.services.geo import location_info
from agrocamer.services.storage import PositionStore

logger = logging.getLogger(__name__)

SuccessCallback = Callable[[Dict[str, Any]], None]
ErrorCallback = Callable[[Any], None]


class LocationProvider(Protocol):
    def get_current_position(self, on_success: SuccessCallback, on_error: ErrorCallback,
                             options: Dict[str, Any]) -> None: ...

    def watch_position(self, on_success: SuccessCallback, on_error: ErrorCallback,
                       options: Dict[str, Any]) -> Any: ...

    def clear_watch(self, handle: Any) -> None: ...


@dataclass(frozen=True)
class GeolocationOptions:
    high_accuracy: bool = True
    timeout_ms: int = 15000
    maximum_age_ms: int = 60000
    watch: bool = True

    def provider_options(self) -> Dict[str, Any]:
        return {
            "enableHighAccuracy": self.high_accuracy,
            "timeout": self.timeout_ms,
            "maximumAge": self.maximum_age_ms,
        }


@dataclass(frozen=True)
class GeolocationState:
    position: Optional[Position] = None
    error: Optional[GeolocationError] = None
    loading: bool = True
    is_watching: bool = False
    source: PositionSource = PositionSource.NONE

    @property
    def is_stale(self) -> bool:
        """A previous position is shown while a fresh one is being acquired."""
        return self.loading and self.position is not None

    @property
    def has_permission(self) -> bool:
        return self.error is None or self.error.code != 1

    @property
    def permission_denied(self) -> bool:
        return not self.has_permission


class GeolocationResolver:
    """Owns the position state for one app session.

    Construction applies the startup priority synchronously (manual override,
    then GPS cache, then nothing). `start()` begins live acquisition unless a
    manual override is active; `close()` tears everything down.
    """

    def __init__(
        self,
        store: PositionStore,
        provider: Optional[LocationProvider],
        options: Optional[GeolocationOptions] = None,
        language: str = DEFAULT_LANGUAGE,
    ):
        self._store = store
        self._provider = provider
        self.options = options or GeolocationOptions()
        self.language = language
        self._watch_mode = self.options.watch
        self._watch_handle: Any = None
        self._watch_token: Optional[int] = None
        self._request_token: Optional[int] = None
        self._tokens = itertools.count(1)
        self._closed = False
        self._listeners: List[Callable[[GeolocationState], None]] = []

        manual = store.load_manual()
        if manual is not None:
            self._state = GeolocationState(position=manual, loading=False, source=PositionSource.MANUAL)
            return
        cached = store.load_cached()
        if cached is not None:
            self._state = GeolocationState(position=cached, loading=True, source=PositionSource.CACHE)
        else:
            self._state = GeolocationState()

    # -- state ---------------------------------------------------------------

    @property
    def state(self) -> GeolocationState:
        return self._state

    @property
    def position(self) -> Optional[Position]:
        return self._state.position

    @property
    def error(self) -> Optional[GeolocationError]:
        return self._state.error

    @property
    def source(self) -> PositionSource:
        return self._state.source

    @property
    def loading(self) -> bool:
        return self._state.loading

    @property
    def is_watching(self) -> bool:
        return self._state.is_watching

    @property
    def has_permission(self) -> bool:
        return self._state.has_permission

    @property
    def is_manual(self) -> bool:
        return self._state.source == PositionSource.MANUAL

    @property
    def location_info(self) -> Optional[LocationInfo]:
        if self._state.position is None:
            return None
        return location_info(self._state.position, self.language)

    def add_listener(self, fn: Callable[[GeolocationState], None]) -> Callable[[], None]:
        """Register `fn` to be called after every state change; returns an unsubscribe callable."""
        self._listeners.append(fn)

        def unsubscribe() -> None:
            if fn in self._listeners:
                self._listeners.remove(fn)

        return unsubscribe

    def _set_state(self, **changes: Any) -> None:
        self._state = replace(self._state, **changes)
        for fn in list(self._listeners):
            try:
                fn(self._state)
            except Exception:
                logger.exception("[Geolocation] listener failed")

    # -- lifecycle -------------------------------------------------------------

    def start(self) -> None:
        if self.is_manual:
            logger.info("[Geolocation] Manual location active, live acquisition not started")
            return
        if self._watch_mode:
            self.start_watching()
        else:
            self.refresh()

    def close(self) -> None:
        self._closed = True
        self._cancel_watch()
        self._request_token = None
        self._listeners.clear()

    # -- acquisition -----------------------------------------------------------

    def _unsupported(self) -> None:
        logger.error("[Geolocation] Not supported")
        self._set_state(error=Unsupported(language=self.language), loading=False)

    def refresh(self) -> None:
        """One-shot acquisition; the current position stays visible meanwhile."""
        if self._closed:
            return
        if self.is_manual:
            logger.debug("[Geolocation] Manual location active, refresh skipped")
            return
        if self._provider is None:
            self._unsupported()
            return
        token = next(self._tokens)
        self._request_token = token
        logger.info("[Geolocation] Requesting current position...")
        self._set_state(loading=True)
        self._provider.get_current_position(
            lambda payload: self._on_success(token, payload, one_shot=True),
            lambda err: self._on_error(token, err, one_shot=True),
            self.options.provider_options(),
        )

    def start_watching(self) -> None:
        if self._closed:
            return
        if self.is_manual:
            logger.debug("[Geolocation] Manual location active, watch not started")
            return
        if self._provider is None:
            self._unsupported()
            return
        self._cancel_watch()
        self._watch_mode = True
        token = next(self._tokens)
        self._watch_token = token
        logger.info("[Geolocation] Starting position watch...")
        self._set_state(loading=True, is_watching=True)
        self._watch_handle = self._provider.watch_position(
            lambda payload: self._on_success(token, payload, one_shot=False),
            lambda err: self._on_error(token, err, one_shot=False),
            self.options.provider_options(),
        )

    def stop_watching(self) -> None:
        self._watch_mode = False
        if self._cancel_watch():
            logger.info("[Geolocation] Stopping watch")
            self._set_state(is_watching=False)

    def _cancel_watch(self) -> bool:
        self._watch_token = None
        if self._watch_handle is None:
            return False
        handle, self._watch_handle = self._watch_handle, None
        if self._provider is not None:
            self._provider.clear_watch(handle)
        return True

    def _is_current(self, token: int, one_shot: bool) -> bool:
        if self._closed or self.is_manual:
            return False
        return token == (self._request_token if one_shot else self._watch_token)

    def _on_success(self, token: int, payload: Dict[str, Any], one_shot: bool) -> None:
        if not self._is_current(token, one_shot):
            logger.debug("[Geolocation] Ignoring stale position callback")
            return
        try:
            position = Position.from_payload(payload)
        except (KeyError, TypeError, ValueError) as e:
            logger.warning("[Geolocation] Discarding malformed fix: %s", e)
            self._on_error(token, PositionUnavailable(language=self.language), one_shot)
            return
        if one_shot:
            self._request_token = None
        logger.info("[Geolocation] Position obtained: lat=%.5f lon=%.5f accuracy=%.0fm",
                    position.latitude, position.longitude, position.accuracy)
        self._store.save_cached(position)
        self._set_state(position=position, error=None, loading=False, source=PositionSource.GPS)

    def _on_error(self, token: int, err: Any, one_shot: bool) -> None:
        if not self._is_current(token, one_shot):
            logger.debug("[Geolocation] Ignoring stale error callback")
            return
        if one_shot:
            self._request_token = None
        error = _to_geolocation_error(err, self.language)
        logger.error("[Geolocation] Error: %s %s", error.code, error.message)

        cached = self._store.load_cached()
        if cached is not None:
            logger.info("[Geolocation] Using cached position as fallback")
            self._set_state(
                position=cached,
                error=error.annotated(translate("geo.cached_suffix", self.language)),
                loading=False,
                source=PositionSource.CACHE,
            )
            return
        self._set_state(position=None, error=error, loading=False, source=PositionSource.NONE)

    # -- manual override -------------------------------------------------------

    def set_manual_location(self, latitude: float, longitude: float, altitude: Optional[float] = None) -> Position:
        position = Position.manual(latitude, longitude, altitude)
        watching = self._cancel_watch()
        self._request_token = None
        self._store.save_manual(position)
        logger.info("[Geolocation] Manual location set: lat=%.4f lon=%.4f", latitude, longitude)
        self._set_state(
            position=position,
            error=None,
            loading=False,
            is_watching=False if watching else self._state.is_watching,
            source=PositionSource.MANUAL,
        )
        return position

    def clear_manual_location(self) -> None:
        self._store.clear_manual()
        cached = self._store.load_cached()
        self._set_state(
            position=cached,
            error=None,
            source=PositionSource.CACHE if cached is not None else PositionSource.NONE,
        )
        logger.info("[Geolocation] Manual location cleared")
        if self._watch_mode:
            self.start_watching()
        else:
            self.refresh()

    # -- awaiting ----------------------------------------------------------------

    async def wait_resolved(self, timeout: Optional[float] = None) -> GeolocationState:
        """Suspend until the current acquisition settles (loading becomes False)."""
        if not self._state.loading:
            return self._state
        loop = asyncio.get_running_loop()
        fut: asyncio.Future = loop.create_future()

        def _listener(state: GeolocationState) -> None:
            if not state.loading and not fut.done():
                fut.set_result(state)

        unsubscribe = self.add_listener(_listener)
        try:
            return await asyncio.wait_for(fut, timeout)
        finally:
            unsubscribe()


def _to_geolocation_error(err: Any, language: str) -> GeolocationError:
    if isinstance(err, GeolocationError):
        return err
    if isinstance(err, int):
        return GeolocationError.from_code(err, language)
    code = getattr(err, "code", None)
    if code is None and isinstance(err, dict):
        code = err.get("code")
    return GeolocationError.from_code(int(code) if code is not None else -1, language)
