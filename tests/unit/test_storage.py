"""Unit tests for the conversation store."""

import asyncio
import json
import threading
from datetime import datetime, timezone

import pytest

from context import ContextWindow
from fakes import make_history
from storage import ConversationRecord, ConversationStore, Turn


def read_file(path) -> dict:
    with open(path, 'r', encoding='utf-8') as f:
        return json.load(f)


@pytest.fixture
def memory_path(tmp_path):
    return tmp_path / "memory.json"


@pytest.fixture
def store(memory_path) -> ConversationStore:
    return ConversationStore(str(memory_path), ContextWindow(40), debounce_seconds=0.05)


class TestLoading:
    """Loading tolerates anything on disk."""

    def test_missing_file_starts_empty(self, store) -> None:
        store.load()
        assert store.list_users() == []

    def test_corrupt_file_starts_empty(self, store, memory_path) -> None:
        memory_path.write_text("{not json", encoding="utf-8")
        store.load()
        assert store.list_users() == []

    def test_non_mapping_starts_empty(self, store, memory_path) -> None:
        memory_path.write_text("[1, 2, 3]", encoding="utf-8")
        store.load()
        assert store.list_users() == []

    def test_corrupt_record_skipped(self, store, memory_path) -> None:
        memory_path.write_text(json.dumps({
            "1": {"history": [{"role": "user", "text": "hi"}, {"role": "model", "text": "hello"}]},
            "2": {"history": [{"role": "wizard", "text": "??"}]},
        }), encoding="utf-8")
        store.load()
        assert store.list_users() == ["1"]
        assert len(store.history("1")) == 2

    def test_naive_timestamps_read_as_utc(self, store, memory_path) -> None:
        memory_path.write_text(json.dumps({
            "7": {"history": [], "last_seen": "2026-01-01T10:00:00", "topic": "job"},
        }), encoding="utf-8")
        store.load()
        assert store.get("7").last_seen.tzinfo is not None


@pytest.mark.asyncio
class TestMutations:
    """Record mutations keep the pairing and window invariants."""

    async def test_get_or_create(self, store) -> None:
        record = store.get_or_create(42)
        assert isinstance(record, ConversationRecord)
        assert store.get("42") is record
        assert record.history == []
        await store.close()

    async def test_touch_returns_previous(self, store) -> None:
        first = datetime(2026, 1, 1, tzinfo=timezone.utc)
        second = datetime(2026, 1, 2, tzinfo=timezone.utc)
        assert store.touch("u", first) is None
        assert store.touch("u", second) == first
        assert store.get("u").last_seen == second
        await store.close()

    async def test_append_writes_pairs(self, store) -> None:
        for i in range(5):
            store.append_exchange("u", f"q{i}", f"a{i}")
        history = store.history("u")
        assert len(history) == 10
        assert [t.role for t in history] == ["user", "model"] * 5
        await store.close()

    async def test_append_heals_trailing_user(self, store) -> None:
        store.replace_history("u", make_history(2, trailing_user=True))
        store.append_exchange("u", "next", "reply")
        history = store.history("u")
        assert [t.text for t in history[-2:]] == ["next", "reply"]
        assert "unanswered" not in [t.text for t in history]
        assert len(history) == 6
        await store.close()

    async def test_append_respects_window(self, store) -> None:
        for i in range(60):
            store.append_exchange("u", f"q{i}", f"a{i}")
            assert len(store.history("u")) <= 40
        assert store.history("u")[0].text == "q40"
        await store.close()

    async def test_wipe_and_reset(self, store) -> None:
        store.append_exchange("u", "q", "a")
        store.set_topic("u", "moving abroad")
        store.wipe_history("u")
        assert store.history("u") == []
        assert store.get("u").topic == "moving abroad"

        store.reset("u")
        assert store.get("u").topic == ""
        await store.close()


@pytest.mark.asyncio
class TestPersistence:
    """Debounced persistence."""

    async def test_burst_coalesces_into_one_write(self, store, memory_path) -> None:
        for i in range(10):
            store.append_exchange("u", f"q{i}", f"a{i}")
        assert store.writes == 0
        assert not memory_path.exists()

        await asyncio.sleep(0.2)
        assert store.writes == 1
        assert len(read_file(memory_path)["u"]["history"]) == 20
        await store.close()

    async def test_mutations_during_pending_save_are_kept(self, store, memory_path) -> None:
        store.append_exchange("u", "first", "one")
        await asyncio.sleep(0.01)
        store.append_exchange("u", "second", "two")

        await asyncio.sleep(0.2)
        texts = [t["text"] for t in read_file(memory_path)["u"]["history"]]
        assert texts == ["first", "one", "second", "two"]
        await store.close()

    async def test_flush_writes_immediately(self, store, memory_path) -> None:
        store.append_exchange("u", "q", "a")
        await store.flush()
        assert store.writes == 1
        assert not store.dirty
        assert read_file(memory_path)["u"]["history"][0] == {"role": "user", "text": "q"}
        await store.close()

    async def test_close_flushes_pending(self, memory_path) -> None:
        slow = ConversationStore(str(memory_path), ContextWindow(40), debounce_seconds=60)
        slow.append_exchange("u", "q", "a")
        await slow.close()
        assert slow.writes == 1
        assert "u" in read_file(memory_path)

    async def test_close_waits_for_write_in_progress(self, memory_path) -> None:
        store = ConversationStore(str(memory_path), ContextWindow(40), debounce_seconds=0.01)
        started = threading.Event()
        release = threading.Event()
        finished = []
        real_write = store._write

        def slow_write(payload: str) -> None:
            started.set()
            release.wait(5)
            real_write(payload)
            finished.append(payload)

        store._write = slow_write
        store.append_exchange("u", "q", "a")
        while not started.is_set():
            await asyncio.sleep(0.005)

        closing = asyncio.create_task(store.close())
        await asyncio.sleep(0.05)
        assert not closing.done()

        release.set()
        await closing
        assert len(finished) == 1
        assert store.writes == 1
        assert not store.dirty
        assert "u" in read_file(memory_path)

    async def test_round_trip_through_disk(self, store, memory_path) -> None:
        seen = datetime(2026, 3, 4, 5, 6, tzinfo=timezone.utc)
        store.touch("u", seen)
        store.set_topic("u", "new job")
        store.append_exchange("u", "q", "a")
        await store.close()

        reloaded = ConversationStore(str(memory_path), ContextWindow(40))
        reloaded.load()
        record = reloaded.get("u")
        assert record.last_seen == seen
        assert record.topic == "new job"
        assert record.history == [Turn(role="user", text="q"), Turn(role="model", text="a")]
