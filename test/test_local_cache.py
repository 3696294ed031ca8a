from datetime import datetime, timezone

from conftest import make_event
from storage.local_cache import CachedEvent, CacheSnapshot, LocalEventCache


def _snapshot() -> CacheSnapshot:
    return CacheSnapshot(
        user_id="alice",
        events=[
            CachedEvent(event=make_event("Quiz 1", course_code="CS101"), dirty=True, source_document_id="doc-1"),
            CachedEvent(event=make_event("Lab", recurrence_rule="FREQ=WEEKLY;BYDAY=TU")),
        ],
        pending_deletes=["gone-1"],
        last_fetched_at=datetime(2025, 10, 1, 8, 0, tzinfo=timezone.utc),
    )


def test_missing_file_loads_empty(tmp_path):
    snap = LocalEventCache(path=str(tmp_path / "none.json")).load()
    assert snap.events == []
    assert snap.user_id is None


def test_save_then_load_keeps_sync_flags(tmp_path):
    path = tmp_path / "nested" / "cache.json"
    cache = LocalEventCache(path=str(path))
    cache.save(_snapshot())

    assert path.exists()
    assert not path.with_suffix(".json.tmp").exists()

    loaded = LocalEventCache(path=str(path)).load()
    assert loaded.user_id == "alice"
    assert loaded.pending_deletes == ["gone-1"]
    assert [row.event.title for row in loaded.events] == ["Quiz 1", "Lab"]
    assert loaded.events[0].dirty is True
    assert loaded.events[0].source_document_id == "doc-1"
    assert loaded.events[1].event.recurrence_rule == "FREQ=WEEKLY;BYDAY=TU"


def test_event_fields_use_wire_names_on_disk(tmp_path):
    path = tmp_path / "cache.json"
    LocalEventCache(path=str(path)).save(_snapshot())
    text = path.read_text(encoding="utf-8")
    assert '"courseCode": "CS101"' in text
    assert "course_code" not in text


def test_corrupt_file_loads_empty(tmp_path):
    path = tmp_path / "cache.json"
    path.write_text("{not json", encoding="utf-8")
    assert LocalEventCache(path=str(path)).load().events == []

    path.write_text('{"events": [{"event": {"title": ""}}]}', encoding="utf-8")
    assert LocalEventCache(path=str(path)).load().events == []


def test_clear_removes_file(tmp_path):
    path = tmp_path / "cache.json"
    cache = LocalEventCache(path=str(path))
    cache.save(_snapshot())
    cache.clear()
    assert not path.exists()
    assert cache.load().events == []


def test_memory_cache_returns_copies():
    cache = LocalEventCache(path=None)
    cache.save(_snapshot())
    first = cache.load()
    first.pending_deletes.append("x")
    assert cache.load().pending_deletes == ["gone-1"]
    cache.clear()
    assert cache.load().events == []
