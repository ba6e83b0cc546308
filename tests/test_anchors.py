"""Tests for anchor tracking across document edits."""

from pathlib import Path

import pytest

from agent_notes.anchors import (
    AnchorTracker,
    create_thread,
    reanchor_thread,
    reconcile_document,
    reconcile_files,
    relative_uri,
)
from agent_notes.config import DEFAULT_CONFIG
from agent_notes.document import ContentChange, TextDocument, TextRange
from agent_notes.fuzzy import compute_content_hash
from agent_notes.models import Comment, NotesStore, Range, Thread
from agent_notes.storage import load_store, save_store
from agent_notes.write_scheduler import WriteScheduler


def numbered_document(line_count: int = 40, uri: str = "src/app.py") -> TextDocument:
    return TextDocument(uri, "".join(f"line {i}\n" for i in range(line_count)))


def thread_on(doc: TextDocument, start: int, end: int) -> Thread:
    selection = TextRange.from_lines(start, 0, end, len(doc.line_at(end)))
    return create_thread(doc, selection, "Please look at this", "alice")


def insert_lines(doc: TextDocument, at_line: int, count: int):
    change = ContentChange(TextRange.from_lines(at_line, 0, at_line, 0), "inserted\n" * count)
    return doc.apply_changes([change])


def delete_lines(doc: TextDocument, first: int, last: int):
    change = ContentChange(TextRange.from_lines(first, 0, last + 1, 0), "")
    return doc.apply_changes([change])


@pytest.fixture
def scheduler():
    saves = []
    s = WriteScheduler(lambda root, store: saves.append(store), delay=60)
    s.saves = saves
    yield s
    s.cancel()


class TestRelativeUri:
    def test_absolute_path_inside_root(self, tmp_path):
        assert relative_uri(tmp_path, tmp_path / "src" / "app.py") == "src/app.py"

    def test_relative_path_taken_from_root(self, tmp_path):
        assert relative_uri(tmp_path, "src/app.py") == "src/app.py"

    def test_outside_root_rejected(self, tmp_path):
        with pytest.raises(ValueError, match="outside the workspace"):
            relative_uri(tmp_path / "ws", tmp_path / "other.py")


class TestCreateThread:
    def test_captures_anchor_and_context(self):
        doc = numbered_document(10)
        thread = thread_on(doc, 4, 5)

        assert thread.uri == "src/app.py"
        assert thread.range == Range(start_line=4, start_character=0, end_line=5, end_character=6)
        assert thread.selected_text == "line 4\nline 5"
        assert thread.context_before == "line 1\nline 2\nline 3"
        assert thread.context_after == "line 6\nline 7\nline 8"
        assert thread.content_hash == compute_content_hash("line 4\nline 5")
        assert [c.body for c in thread.comments] == ["Please look at this"]
        assert thread.orphaned is None

    def test_context_clipped_at_document_edges(self):
        doc = numbered_document(3)
        thread = thread_on(doc, 0, 0)
        assert thread.context_before == ""
        assert thread.context_after == "line 1\nline 2\n"

    def test_empty_selection_anchors_whole_line(self):
        doc = numbered_document(5)
        thread = create_thread(doc, TextRange.from_lines(2, 3, 2, 3), "here", "bob")
        assert thread.selected_text == "line 2"
        assert thread.range == Range(start_line=2, start_character=0, end_line=2, end_character=6)

    def test_partial_selection(self):
        doc = TextDocument("a.py", "x = compute(a, b)\n")
        thread = create_thread(doc, TextRange.from_lines(0, 4, 0, 17), "naming", "bob")
        assert thread.selected_text == "compute(a, b)"
        assert thread.range.start_character == 4


class TestLineShifts:
    def test_insert_above_shifts_down(self, scheduler):
        doc = numbered_document()
        thread = thread_on(doc, 15, 22)
        tracker = AnchorTracker("/ws", NotesStore(threads=[thread]), scheduler=scheduler)

        changed = tracker.handle_document_change(insert_lines(doc, 10, 5))

        assert changed == [thread]
        assert (thread.range.start_line, thread.range.end_line) == (20, 27)
        assert thread.orphaned is None

    def test_delete_above_shifts_up(self, scheduler):
        doc = numbered_document()
        thread = thread_on(doc, 20, 27)
        tracker = AnchorTracker("/ws", NotesStore(threads=[thread]), scheduler=scheduler)

        tracker.handle_document_change(delete_lines(doc, 5, 7))

        assert (thread.range.start_line, thread.range.end_line) == (17, 24)

    def test_edit_below_leaves_thread_alone(self, scheduler):
        doc = numbered_document()
        thread = thread_on(doc, 5, 6)
        tracker = AnchorTracker("/ws", NotesStore(threads=[thread]), scheduler=scheduler)

        changed = tracker.handle_document_change(insert_lines(doc, 30, 4))

        assert changed == []
        assert thread.range.start_line == 5
        assert not scheduler.pending

    def test_same_line_edit_above_is_not_a_shift(self, scheduler):
        doc = numbered_document()
        thread = thread_on(doc, 10, 10)
        tracker = AnchorTracker("/ws", NotesStore(threads=[thread]), scheduler=scheduler)
        change = ContentChange(TextRange.from_lines(3, 0, 3, 4), "LINE")

        assert tracker.handle_document_change(doc.apply_changes([change])) == []

    def test_batch_applied_bottom_up(self, scheduler):
        doc = numbered_document()
        thread = thread_on(doc, 20, 21)
        tracker = AnchorTracker("/ws", NotesStore(threads=[thread]), scheduler=scheduler)
        changes = [
            ContentChange(TextRange.from_lines(2, 0, 2, 0), "a\nb\n"),
            ContentChange(TextRange.from_lines(10, 0, 13, 0), ""),
        ]

        changed = tracker.handle_document_change(doc.apply_changes(changes))

        assert changed == [thread]
        assert thread.range.start_line == 19

    def test_reanchored_thread_not_shifted_again_in_batch(self, scheduler):
        doc = numbered_document()
        thread = thread_on(doc, 30, 30)
        tracker = AnchorTracker("/ws", NotesStore(threads=[thread]), scheduler=scheduler)
        changes = [
            ContentChange(TextRange.from_lines(5, 0, 5, 0), "a\nb\n"),
            ContentChange(TextRange.from_lines(30, 7, 30, 7), "  # hot path"),
        ]
        event = doc.apply_changes(changes)

        changed = tracker.handle_document_change(event)

        assert changed == [thread]
        assert thread.range.start_line == 32
        assert thread.orphaned is False
        assert event.document.get_text(TextRange.from_lines(32, 0, 32, 7)) == "line 30"

    def test_other_documents_untouched(self, scheduler):
        doc = numbered_document(uri="other.py")
        thread = thread_on(numbered_document(), 15, 16)
        tracker = AnchorTracker("/ws", NotesStore(threads=[thread]), scheduler=scheduler)

        assert tracker.handle_document_change(insert_lines(doc, 0, 3)) == []
        assert thread.range.start_line == 15


class TestReanchoring:
    def test_overlapping_edit_reanchors_moved_snippet(self, scheduler):
        doc = TextDocument("a.js", "// top\nfunction foo() {}\n// bottom\n")
        thread = thread_on(doc, 1, 1)
        tracker = AnchorTracker("/ws", NotesStore(threads=[thread]), scheduler=scheduler)

        event = insert_lines(doc, 1, 10)
        changed = tracker.handle_document_change(event)

        assert changed == [thread]
        assert thread.range == Range(start_line=11, start_character=0, end_line=11, end_character=17)
        assert event.document.get_text(TextRange.from_lines(11, 0, 11, 17)) == "function foo() {}"
        assert thread.orphaned is False

    def test_overlapping_edit_tolerates_small_changes(self, scheduler):
        doc = TextDocument("a.py", "def load(path):\n    return open(path).read()\n")
        thread = thread_on(doc, 1, 1)
        tracker = AnchorTracker("/ws", NotesStore(threads=[thread]), scheduler=scheduler)
        change = ContentChange(TextRange.from_lines(1, 16, 1, 20), "file")

        tracker.handle_document_change(doc.apply_changes([change]))

        assert thread.orphaned is False
        assert thread.range.start_line == 1

    def test_destroyed_snippet_is_orphaned_with_range_kept(self, scheduler):
        doc = TextDocument("a.py", "# header\nreturn compute(a, b)\n# footer\n")
        thread = thread_on(doc, 1, 1)
        original_range = thread.range
        tracker = AnchorTracker("/ws", NotesStore(threads=[thread]), scheduler=scheduler)
        change = ContentChange(TextRange.from_lines(0, 0, 3, 0), "#####\n" * 3)

        changed = tracker.handle_document_change(doc.apply_changes([change]))

        assert changed == [thread]
        assert thread.orphaned is True
        assert thread.range == original_range

    def test_orphaned_thread_recovers_when_snippet_returns(self):
        doc = TextDocument("a.py", "x\nreturn compute(a, b)\n")
        thread = thread_on(doc, 1, 1)
        thread.mark_orphaned()

        assert reanchor_thread(thread, doc) is True
        assert thread.orphaned is False

    def test_threshold_from_config(self):
        doc = TextDocument("a.py", "hallo world\n")
        thread = create_thread(
            TextDocument("a.py", "hello world\n"), TextRange.from_lines(0, 0, 0, 11), "x", "y"
        )

        assert reanchor_thread(thread, doc, threshold=0.95) is False
        assert reanchor_thread(thread, doc, threshold=0.5) is True


class TestTrackerPersistence:
    def test_changes_schedule_one_write_and_notify(self, scheduler):
        doc = numbered_document()
        threads = [thread_on(doc, 15, 16), thread_on(doc, 25, 26)]
        store = NotesStore(threads=threads)
        seen = []
        tracker = AnchorTracker("/ws", store, scheduler=scheduler, on_change=seen.append)

        tracker.handle_document_change(insert_lines(doc, 0, 2))
        tracker.handle_document_change(insert_lines(doc, 0, 2))
        scheduler.flush()

        assert len(seen) == 2
        assert {t.id for t in seen[0]} == {t.id for t in threads}
        assert scheduler.saves == [store]

    def test_document_saved_with_threads(self, scheduler):
        doc = numbered_document()
        tracker = AnchorTracker(
            "/ws", NotesStore(threads=[thread_on(doc, 1, 1)]), scheduler=scheduler
        )

        assert tracker.handle_document_saved(doc) is True
        assert scheduler.pending
        assert tracker.handle_document_saved(numbered_document(uri="x.py")) is False

    def test_persisted_ranges_survive_reload(self, tmp_path):
        doc = numbered_document()
        thread = thread_on(doc, 15, 22)
        store = NotesStore(threads=[thread])
        scheduler = WriteScheduler(save_store, delay=60)
        tracker = AnchorTracker(tmp_path, store, scheduler=scheduler)

        tracker.handle_document_change(insert_lines(doc, 10, 5))
        scheduler.flush()

        reloaded = load_store(tmp_path).find_thread(thread.id)
        assert (reloaded.range.start_line, reloaded.range.end_line) == (20, 27)


class TestReconcile:
    def test_unchanged_document_is_noop(self):
        doc = numbered_document()
        thread = thread_on(doc, 5, 6)
        assert reconcile_document([thread], doc) == []

    def test_moved_snippet_is_relocated(self):
        doc = numbered_document()
        thread = thread_on(doc, 5, 6)
        edited = TextDocument(doc.uri, "new\n" * 3 + doc.text)

        assert reconcile_document([thread], edited) == [thread]
        assert thread.range.start_line == 8

    def test_exact_text_clears_orphan_flag(self):
        doc = numbered_document()
        thread = thread_on(doc, 5, 6)
        thread.mark_orphaned()

        assert reconcile_document([thread], doc) == [thread]
        assert thread.orphaned is False

    def test_tracker_reconcile_notifies(self, scheduler):
        doc = numbered_document()
        thread = thread_on(doc, 5, 6)
        seen = []
        tracker = AnchorTracker(
            "/ws", NotesStore(threads=[thread]), scheduler=scheduler, on_change=seen.append
        )

        tracker.reconcile(TextDocument(doc.uri, "#####\n" * 40))

        assert thread.orphaned is True
        assert seen == [[thread]]
        assert scheduler.pending


class TestReconcileFiles:
    def write(self, root: Path, uri: str, text: str) -> TextDocument:
        path = root / uri
        path.parent.mkdir(parents=True, exist_ok=True)
        path.write_text(text, encoding="utf-8")
        return TextDocument(uri, text)

    def test_reports_per_file(self, tmp_path):
        doc = self.write(tmp_path, "src/app.py", numbered_document().text)
        moved = thread_on(doc, 5, 6)
        still = thread_on(self.write(tmp_path, "b.txt", "keep me\n"), 0, 0)
        store = NotesStore(threads=[moved, still])
        self.write(tmp_path, "src/app.py", "new\n" + doc.text)

        reports = reconcile_files(tmp_path, store, config=DEFAULT_CONFIG)

        by_uri = {r.uri: r for r in reports}
        assert by_uri["src/app.py"].updated == 1
        assert by_uri["b.txt"].updated == 0
        assert moved.range.start_line == 6

    def test_missing_file_orphans_threads(self, tmp_path):
        doc = numbered_document(uri="gone.py")
        thread = thread_on(doc, 1, 1)
        store = NotesStore(threads=[thread])

        (report,) = reconcile_files(tmp_path, store)

        assert report.orphaned == 1
        assert report.updated == 1
        assert thread.orphaned is True

    def test_files_without_threads_skipped(self, tmp_path):
        store = NotesStore()
        assert reconcile_files(tmp_path, store, ["nothing.py"]) == []


def test_comment_count_unchanged_by_tracking(scheduler):
    doc = numbered_document()
    thread = thread_on(doc, 15, 16)
    thread.comments.append(Comment(body="Agreed", author="bob"))
    tracker = AnchorTracker("/ws", NotesStore(threads=[thread]), scheduler=scheduler)

    tracker.handle_document_change(insert_lines(doc, 0, 1))

    assert [c.body for c in thread.comments] == ["Please look at this", "Agreed"]
