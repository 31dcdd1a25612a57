import pytest

from agrocamer.models import Position
from agrocamer.services.storage import MemoryStore, PositionStore


class FakeLocationProvider:
    """Records requests and lets tests fire the stored callbacks by hand."""

    def __init__(self):
        self.requests = []
        self.watches = {}
        self.cleared = []
        self._next_handle = 1

    def get_current_position(self, on_success, on_error, options):
        self.requests.append((on_success, on_error, options))

    def watch_position(self, on_success, on_error, options):
        handle = self._next_handle
        self._next_handle += 1
        self.watches[handle] = (on_success, on_error, options)
        return handle

    def clear_watch(self, handle):
        self.cleared.append(handle)

    @property
    def last_watch(self):
        return self.watches[max(self.watches)]


def fix(lat=3.8667, lon=11.5167, accuracy=12.0, altitude=726.0, timestamp=1700000000000):
    return {
        "coords": {
            "latitude": lat,
            "longitude": lon,
            "accuracy": accuracy,
            "altitude": altitude,
            "altitudeAccuracy": 5.0,
            "heading": None,
            "speed": None,
        },
        "timestamp": timestamp,
    }


@pytest.fixture
def memory_store():
    return MemoryStore()


@pytest.fixture
def positions(memory_store):
    return PositionStore(memory_store)


@pytest.fixture
def provider():
    return FakeLocationProvider()


@pytest.fixture
def douala():
    return Position(latitude=4.0503, longitude=9.7, altitude=13.0, accuracy=20.0, timestamp=1690000000000)
