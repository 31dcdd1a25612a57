import json

from agrocamer.models import Position
from agrocamer.services.storage import (
    GPS_CACHE_KEY,
    MANUAL_OVERRIDE_KEY,
    HistoryStore,
    JsonFileStore,
    MemoryStore,
    PositionStore,
)


def test_position_round_trip_drops_motion_fields(positions, memory_store):
    pos = Position(latitude=4.05, longitude=9.7, altitude=13.0, accuracy=20.0,
                   heading=90.0, speed=1.5, timestamp=1700000000000)
    positions.save_cached(pos)
    stored = json.loads(memory_store.get(GPS_CACHE_KEY))
    assert set(stored) == {"latitude", "longitude", "altitude", "accuracy", "timestamp"}

    restored = positions.load_cached()
    assert restored.latitude == 4.05
    assert restored.heading is None and restored.speed is None
    assert restored.timestamp == 1700000000000


def test_invalid_cache_entry_is_ignored(memory_store):
    memory_store.set(GPS_CACHE_KEY, "{not json")
    memory_store.set(MANUAL_OVERRIDE_KEY, json.dumps({"latitude": 200, "longitude": 0}))
    store = PositionStore(memory_store)
    assert store.load_cached() is None
    assert store.load_manual() is None


def test_manual_override_is_separate_from_cache(positions, douala):
    positions.save_cached(douala)
    positions.save_manual(Position.manual(5.95, 10.15, 1600))
    assert positions.load_manual().latitude == 5.95
    assert positions.load_cached().latitude == douala.latitude

    positions.clear_manual()
    assert positions.load_manual() is None
    assert positions.load_cached() is not None


def test_json_file_store_persists(tmp_path):
    path = tmp_path / "state" / "store.json"
    store = JsonFileStore(path)
    store.set("a", "1")
    store.set("b", "2")
    store.remove("a")

    reopened = JsonFileStore(path)
    assert reopened.get("a") is None
    assert reopened.get("b") == "2"
    assert not path.with_suffix(".json.tmp").exists()


def test_json_file_store_backs_up_corrupt_file(tmp_path):
    path = tmp_path / "store.json"
    path.write_text("{oops", encoding="utf-8")
    store = JsonFileStore(path)
    assert store.get("anything") is None
    assert (tmp_path / "store.json.broken").read_text(encoding="utf-8") == "{oops"


def test_json_file_store_rejects_non_object_file(tmp_path):
    path = tmp_path / "store.json"
    path.write_text("[]", encoding="utf-8")
    store = JsonFileStore(path)
    assert PositionStore(store).load_manual() is None
    assert (tmp_path / "store.json.broken").read_text(encoding="utf-8") == "[]"

    store.set("a", "1")
    assert json.loads(path.read_text(encoding="utf-8")) == {"a": "1"}


def test_history_is_most_recent_first_and_capped():
    history = HistoryStore(MemoryStore(), limit=3)
    for i in range(5):
        history.append("diseased", {"n": i}, activity_type="diagnosis")
    entries = history.entries()
    assert [e["result"]["n"] for e in entries] == [4, 3, 2]
    assert entries[0]["kind"] == "diseased"
    assert entries[0]["activity_type"] == "diagnosis"

    history.clear()
    assert history.entries() == []


def test_history_keeps_ten_entries_by_default():
    history = HistoryStore(MemoryStore())
    for i in range(12):
        history.append("healthy", {"n": i})
    entries = history.entries()
    assert len(entries) == 10
    assert entries[-1]["result"]["n"] == 2
