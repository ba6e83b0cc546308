"""Tests for debounced store writes."""

import threading
import time

import pytest

from agent_notes.models import NotesStore
from agent_notes.write_scheduler import WriteScheduler


class RecordingSave:
    """Fake save function counting calls."""

    def __init__(self, fail_with: Exception | None = None) -> None:
        self.calls = []
        self.fail_with = fail_with
        self.called = threading.Event()

    def __call__(self, root, store) -> None:
        self.calls.append((root, store))
        self.called.set()
        if self.fail_with is not None:
            raise self.fail_with


class TestWriteScheduler:
    def test_schedule_returns_before_saving(self, tmp_path):
        save = RecordingSave()
        scheduler = WriteScheduler(save, delay=60)

        scheduler.schedule(tmp_path, NotesStore())

        assert save.calls == []
        assert scheduler.pending
        scheduler.cancel()

    def test_burst_coalesces_into_one_save(self, tmp_path):
        save = RecordingSave()
        scheduler = WriteScheduler(save, delay=0.05)
        stores = [NotesStore() for _ in range(3)]

        for store in stores:
            scheduler.schedule(tmp_path, store)

        assert save.called.wait(timeout=5)
        time.sleep(0.15)
        assert len(save.calls) == 1
        assert save.calls[0][1] is stores[-1]
        assert not scheduler.pending

    def test_flush_saves_immediately_and_cancels_timer(self, tmp_path):
        save = RecordingSave()
        scheduler = WriteScheduler(save, delay=0.05)
        store = NotesStore()

        scheduler.schedule(tmp_path, store)
        scheduler.flush()
        time.sleep(0.15)

        assert save.calls == [(tmp_path, store)]
        assert not scheduler.pending

    def test_flush_without_pending_is_noop(self, tmp_path):
        save = RecordingSave()
        scheduler = WriteScheduler(save, delay=60)

        scheduler.flush()
        scheduler.schedule(tmp_path, NotesStore())
        scheduler.flush()
        scheduler.flush()

        assert len(save.calls) == 1

    def test_cancel_drops_pending_write(self, tmp_path):
        save = RecordingSave()
        scheduler = WriteScheduler(save, delay=0.05)

        scheduler.schedule(tmp_path, NotesStore())
        scheduler.cancel()
        time.sleep(0.15)

        assert save.calls == []
        assert not scheduler.pending

    def test_failed_flush_keeps_pending_write(self, tmp_path):
        save = RecordingSave(fail_with=OSError("disk full"))
        scheduler = WriteScheduler(save, delay=60)
        store = NotesStore()
        scheduler.schedule(tmp_path, store)

        with pytest.raises(OSError, match="disk full"):
            scheduler.flush()
        assert scheduler.pending

        save.fail_with = None
        scheduler.flush()

        assert len(save.calls) == 2
        assert not scheduler.pending

    def test_timer_failure_raised_on_next_flush(self, tmp_path):
        save = RecordingSave(fail_with=OSError("read-only file system"))
        scheduler = WriteScheduler(save, delay=0.01)

        scheduler.schedule(tmp_path, NotesStore())
        assert save.called.wait(timeout=5)
        time.sleep(0.1)

        with pytest.raises(OSError, match="read-only"):
            scheduler.flush()
        # Reported once
        scheduler.flush()

    def test_newer_write_supersedes_timer_failure(self, tmp_path):
        save = RecordingSave(fail_with=OSError("transient"))
        scheduler = WriteScheduler(save, delay=0.01)

        scheduler.schedule(tmp_path, NotesStore())
        assert save.called.wait(timeout=5)
        time.sleep(0.1)

        save.fail_with = None
        newer = NotesStore()
        scheduler.schedule(tmp_path, newer)
        scheduler.flush()

        assert save.calls[-1][1] is newer

    def test_flush_during_timer_save_waits_without_second_write(self, tmp_path):
        release = threading.Event()
        entered = threading.Event()
        calls = []
        active = []
        overlaps = []

        def blocking_save(root, store) -> None:
            if active:
                overlaps.append(store)
            active.append(store)
            calls.append(store)
            entered.set()
            release.wait(timeout=5)
            active.pop()

        scheduler = WriteScheduler(blocking_save, delay=0.01)
        store = NotesStore()
        scheduler.schedule(tmp_path, store)
        assert entered.wait(timeout=5)

        flusher = threading.Thread(target=scheduler.flush)
        flusher.start()
        flusher.join(timeout=0.2)
        assert flusher.is_alive()

        release.set()
        flusher.join(timeout=5)

        assert not flusher.is_alive()
        assert calls == [store]
        assert overlaps == []
        assert not scheduler.pending
