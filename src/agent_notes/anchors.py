"""Anchor tracking — keeping thread ranges valid while documents change.

For each batch of edits to a document, every thread anchored to it is either:
1. Shifted by whole lines (edit entirely above the anchor)
2. Re-anchored by fuzzy search (edit overlaps the anchor), or orphaned when the
   snippet cannot be found with enough similarity
3. Left alone (edit entirely below the anchor)

Threads are never discarded here; an orphaned thread keeps its last known
range so it stays visible.
"""

from collections.abc import Callable
from pathlib import Path
from typing import NamedTuple

from agent_notes.config import DEFAULT_CONFIG, NotesConfig
from agent_notes.document import ContentChange, DocumentChangeEvent, Position, TextDocument, TextRange
from agent_notes.fuzzy import compute_content_hash, find_anchor
from agent_notes.log import get_logger
from agent_notes.models import Comment, NotesStore, Range, Thread
from agent_notes.storage import schedule_write
from agent_notes.write_scheduler import WriteScheduler

StoreListener = Callable[[list[Thread]], None]


def relative_uri(root: str | Path, path: str | Path) -> str:
    """
    Workspace-relative POSIX uri for a file.

    Relative paths are taken relative to root.

    Raises:
        ValueError: If path is outside root
    """
    root_abs = Path(root).resolve()
    path_obj = Path(path)
    if not path_obj.is_absolute():
        path_obj = root_abs / path_obj
    try:
        return path_obj.resolve().relative_to(root_abs).as_posix()
    except ValueError:
        raise ValueError(f"File is outside the workspace:\n  File: {path}\n  Root: {root_abs}")


def to_text_range(r: Range) -> TextRange:
    return TextRange.from_lines(r.start_line, r.start_character, r.end_line, r.end_character)


def create_thread(
    document: TextDocument,
    selection: TextRange,
    body: str,
    author: str,
    context_lines: int = DEFAULT_CONFIG.context_lines,
) -> Thread:
    """
    Create a thread anchored to a selection in a document.

    An empty selection anchors to the whole start line. Up to ``context_lines``
    lines above and below the selection are kept as context.

    Args:
        document: Document containing the selection
        selection: Selected range
        body: Text of the first comment
        author: Author of the first comment

    Returns:
        New Thread (not yet added to any store)

    Raises:
        pydantic.ValidationError: If body is empty or nothing can be anchored
    """
    if selection.start == selection.end:
        line = selection.start.line
        selection = TextRange.from_lines(line, 0, line, len(document.line_at(line)))
    start_line = selection.start.line
    end_line = selection.end.line
    anchor_text = document.get_text(selection)

    before = [document.line_at(i) for i in range(max(0, start_line - context_lines), start_line)]
    after_end = min(document.line_count - 1, end_line + context_lines)
    after = [document.line_at(i) for i in range(end_line + 1, after_end + 1)]

    return Thread(
        uri=document.uri,
        range=Range(
            start_line=start_line,
            start_character=selection.start.character,
            end_line=end_line,
            end_character=selection.end.character,
        ),
        selected_text=anchor_text,
        context_before="\n".join(before),
        context_after="\n".join(after),
        content_hash=compute_content_hash(anchor_text),
        comments=[Comment(body=body, author=author)],
    )


def shift_thread(thread: Thread, line_delta: int) -> bool:
    """Shift a thread by whole lines. Returns True if it moved."""
    if line_delta == 0:
        return False
    thread.shift(line_delta)
    return True


def reanchor_thread(
    thread: Thread,
    document: TextDocument,
    *,
    threshold: float = DEFAULT_CONFIG.fuzzy_threshold,
    distance: int = DEFAULT_CONFIG.match_distance,
) -> bool:
    """
    Relocate a thread's snippet in the current document text.

    The search is seeded at the offset of the thread's last known start line.
    On success the range is replaced and the orphan flag cleared; on failure
    the thread is marked orphaned and its range left untouched.

    Returns:
        True if the thread was re-anchored, False if it is now orphaned
    """
    seed = document.offset_at(Position(thread.range.start_line, 0))
    match = find_anchor(
        document.text, thread.selected_text, seed, threshold=threshold, distance=distance
    )
    if match is None:
        thread.mark_orphaned()
        return False

    start = document.position_at(match.offset)
    end = document.position_at(match.offset + match.length)
    thread.relocate(
        Range(
            start_line=start.line,
            start_character=start.character,
            end_line=end.line,
            end_character=end.character,
        )
    )
    return True


def _overlaps(change: ContentChange, thread: Thread) -> bool:
    return (
        change.range.start.line <= thread.range.end_line
        and change.range.end.line >= thread.range.start_line
    )


def apply_change(
    change: ContentChange,
    threads: list[Thread],
    document: TextDocument,
    config: NotesConfig = DEFAULT_CONFIG,
    settled: set[str] | None = None,
) -> list[Thread]:
    """Apply one content change to the threads of a document. Returns the threads it touched.

    Threads re-anchored against the post-edit text are added to ``settled`` and
    skipped by later changes of the same batch, since their range is already final.
    """
    if settled is None:
        settled = set()
    touched = []
    for thread in threads:
        if thread.id in settled:
            continue
        if _overlaps(change, thread):
            if reanchor_thread(
                thread, document, threshold=config.fuzzy_threshold, distance=config.match_distance
            ):
                settled.add(thread.id)
            touched.append(thread)
        elif change.range.end.line < thread.range.start_line:
            if shift_thread(thread, change.line_delta):
                touched.append(thread)
    return touched


def reconcile_document(
    threads: list[Thread],
    document: TextDocument,
    config: NotesConfig = DEFAULT_CONFIG,
) -> list[Thread]:
    """
    Re-anchor every thread of a document against its current text.

    Used when a file was edited outside an editor session, so no change events
    are available. Threads whose snippet still sits exactly at their range are
    left alone.

    Returns:
        Threads whose range or orphan flag changed
    """
    changed = []
    for thread in threads:
        before = (thread.range, thread.orphaned)
        if document.get_text(to_text_range(thread.range)) == thread.selected_text:
            if thread.orphaned:
                thread.orphaned = False
        else:
            reanchor_thread(
                thread, document, threshold=config.fuzzy_threshold, distance=config.match_distance
            )
        if (thread.range, thread.orphaned) != before:
            changed.append(thread)
    return changed


class ReconcileReport(NamedTuple):
    """Outcome of reconciling the threads of one file."""

    uri: str
    total: int
    updated: int
    orphaned: int


def reconcile_files(
    root: str | Path,
    store: NotesStore,
    uris: list[str] | None = None,
    config: NotesConfig = DEFAULT_CONFIG,
) -> list[ReconcileReport]:
    """
    Reconcile threads against the files currently on disk.

    Threads on files that no longer exist are marked orphaned. The store is
    mutated in place; the caller decides when to write it.

    Args:
        root: Workspace root directory
        store: Store whose threads are reconciled
        uris: Workspace-relative files to reconcile (all files with threads if None)
        config: Matching settings

    Returns:
        One report per file that has threads
    """
    if uris is None:
        uris = sorted({t.uri for t in store.threads})

    reports = []
    for uri in uris:
        threads = store.threads_for(uri)
        if not threads:
            continue
        source = Path(root) / uri
        if source.is_file():
            document = TextDocument(uri, source.read_text(encoding="utf-8"))
            changed = reconcile_document(threads, document, config)
        else:
            changed = [t for t in threads if not t.orphaned]
            for thread in changed:
                thread.mark_orphaned()
        reports.append(
            ReconcileReport(
                uri=uri,
                total=len(threads),
                updated=len(changed),
                orphaned=sum(1 for t in threads if t.orphaned),
            )
        )
    return reports


class AnchorTracker:
    """Keeps the threads of a store anchored while documents are edited.

    Events must be delivered in arrival order for each document. Changed
    threads are persisted through the write scheduler and reported to
    listeners so views can refresh.
    """

    def __init__(
        self,
        root: str | Path,
        store: NotesStore,
        *,
        config: NotesConfig = DEFAULT_CONFIG,
        scheduler: WriteScheduler | None = None,
        on_change: StoreListener | None = None,
    ) -> None:
        """Initialize the tracker.

        Args:
            root: Workspace root directory
            store: Live store whose threads are tracked
            config: Matching settings
            scheduler: Write scheduler (process default if None)
            on_change: Optional listener called with the changed threads
        """
        self.root = Path(root)
        self.store = store
        self.config = config
        self.scheduler = scheduler
        self._listeners: list[StoreListener] = [on_change] if on_change else []

    def add_listener(self, listener: StoreListener) -> None:
        self._listeners.append(listener)

    def handle_document_change(self, event: DocumentChangeEvent) -> list[Thread]:
        """
        Update the threads of the edited document.

        Changes are applied in descending order of start line so that shifting
        threads for one change never uses offsets already moved by an edit
        further up in the same batch.

        Returns:
            Threads whose range or orphan flag was updated (each once)
        """
        threads = self.store.threads_for(event.document.uri)
        if not threads:
            return []

        changed: dict[str, Thread] = {}
        settled: set[str] = set()
        ordered = sorted(event.changes, key=lambda c: c.range.start.line, reverse=True)
        for change in ordered:
            for thread in apply_change(change, threads, event.document, self.config, settled):
                changed[thread.id] = thread

        if changed:
            orphaned = sum(1 for t in changed.values() if t.orphaned)
            get_logger().debug(
                "Anchors updated",
                uri=event.document.uri,
                changed=len(changed),
                orphaned=orphaned,
            )
            self._notify(list(changed.values()))
        return list(changed.values())

    def handle_document_saved(self, document: TextDocument) -> bool:
        """Schedule a write when a saved document has threads. Returns True if scheduled."""
        if not self.store.threads_for(document.uri):
            return False
        schedule_write(self.root, self.store, self.scheduler)
        return True

    def reconcile(self, document: TextDocument) -> list[Thread]:
        """Re-anchor all threads of a document without change events."""
        changed = reconcile_document(self.store.threads_for(document.uri), document, self.config)
        if changed:
            self._notify(changed)
        return changed

    def _notify(self, changed: list[Thread]) -> None:
        schedule_write(self.root, self.store, self.scheduler)
        for listener in self._listeners:
            listener(changed)
