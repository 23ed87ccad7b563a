"""Tests for the SQLite usage counters and extraction records."""

import threading
from datetime import datetime, timezone

from vidscript.schemas import Extraction, ExtractionStatus, Platform, VideoReference
from vidscript.store import ExtractionStore, UsageStore, guest_key, user_key


class Clock:
    def __init__(self, now: datetime) -> None:
        self.now = now

    def __call__(self) -> datetime:
        return self.now


def test_increment_stops_at_limit(tmp_path) -> None:
    store = UsageStore(tmp_path)
    key = guest_key("203.0.113.7")
    assert store.increment_usage(key, 2) is True
    assert store.increment_usage(key, 2) is True
    assert store.increment_usage(key, 2) is False
    assert store.current_count(key) == 2


def test_check_usage_reports_remaining_and_reset(tmp_path) -> None:
    clock = Clock(datetime(2026, 3, 1, 23, 59, tzinfo=timezone.utc))
    store = UsageStore(tmp_path, now=clock)
    key = user_key("alice")

    store.increment_usage(key, 5)
    check = store.check_usage(key, 5)
    assert check.can_proceed is True
    assert check.remaining == 4
    assert check.limit == 5
    assert check.reset_at == datetime(2026, 3, 2, tzinfo=timezone.utc)


def test_counts_reset_on_a_new_utc_day(tmp_path) -> None:
    clock = Clock(datetime(2026, 3, 1, 12, 0, tzinfo=timezone.utc))
    store = UsageStore(tmp_path, now=clock)
    key = guest_key("198.51.100.1")

    assert store.increment_usage(key, 1) is True
    assert store.check_usage(key, 1).can_proceed is False

    clock.now = datetime(2026, 3, 2, 0, 0, 1, tzinfo=timezone.utc)
    assert store.check_usage(key, 1).can_proceed is True
    assert store.increment_usage(key, 1) is True


def test_unlimited_and_zero_limits(tmp_path) -> None:
    store = UsageStore(tmp_path)
    key = user_key("big-corp")
    for _ in range(3):
        assert store.increment_usage(key, None) is True
    check = store.check_usage(key, None)
    assert check.can_proceed is True
    assert check.remaining is None

    assert store.increment_usage(user_key("nobody"), 0) is False
    assert store.check_usage(user_key("nobody"), 0).can_proceed is False


def test_keys_are_independent(tmp_path) -> None:
    store = UsageStore(tmp_path)
    store.increment_usage(guest_key("1.1.1.1"), 1)
    assert store.check_usage(guest_key("2.2.2.2"), 1).can_proceed is True
    assert store.check_usage(user_key("1.1.1.1"), 1).can_proceed is True


def test_concurrent_increments_never_exceed_limit(tmp_path) -> None:
    store = UsageStore(tmp_path)
    key = guest_key("203.0.113.9")
    barrier = threading.Barrier(8)
    results: list[bool] = []
    lock = threading.Lock()

    def worker() -> None:
        barrier.wait()
        ok = store.increment_usage(key, 3)
        with lock:
            results.append(ok)

    threads = [threading.Thread(target=worker) for _ in range(8)]
    for t in threads:
        t.start()
    for t in threads:
        t.join()

    assert results.count(True) == 3
    assert store.current_count(key) == 3


def _record(requester=None) -> Extraction:
    ref = VideoReference(raw_url="https://youtu.be/dQw4w9WgXcQ", platform=Platform.YOUTUBE,
                         canonical_id="dQw4w9WgXcQ")
    return Extraction(video=ref, requester=requester)


def test_extraction_round_trip(tmp_path) -> None:
    store = ExtractionStore(tmp_path)
    record = _record("alice")
    record.advance(ExtractionStatus.PROCESSING)
    record.advance(ExtractionStatus.FAILED, "boom")

    store.save_extraction(record)
    loaded = store.get_extraction(record.id)
    assert loaded == record
    assert store.get_extraction("missing") is None


def test_list_and_delete_are_scoped_to_requester(tmp_path) -> None:
    store = ExtractionStore(tmp_path)
    mine = [_record("alice") for _ in range(3)]
    for r in mine:
        store.save_extraction(r)
    store.save_extraction(_record("bob"))

    assert {r.id for r in store.list_extractions("alice")} == {r.id for r in mine}
    assert len(store.list_extractions("alice", limit=2)) == 2

    assert store.delete_extraction(mine[0].id, "bob") is False
    assert store.delete_extraction(mine[0].id, "alice") is True
    assert store.get_extraction(mine[0].id) is None
