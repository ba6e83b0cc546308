"""Debounced store writes.

Rapid mutations (per-keystroke range tracking, bursts of replies) must not each
hit the disk. A WriteScheduler keeps only the latest (root, store) pair and a
single pending timer; the timer firing performs exactly one save.
"""

import threading
from collections.abc import Callable
from pathlib import Path
from threading import Timer

from agent_notes.log import get_logger
from agent_notes.models import NotesStore

SaveFn = Callable[[Path, NotesStore], None]


class WriteScheduler:
    """Cancellable, coalescing write task for one store file.

    ``schedule`` returns immediately; the save happens on a timer thread once
    the store has been quiet for ``delay`` seconds. ``flush`` performs any
    pending save synchronously. Saves never overlap: a flush that arrives while
    a timer-driven save is running waits for it to finish.
    """

    def __init__(self, save: SaveFn, delay: float = 0.3) -> None:
        """Initialize the scheduler.

        Args:
            save: Function performing one durable write of (root, store)
            delay: Quiet period in seconds before a scheduled write runs
        """
        self._save = save
        self.delay = delay
        self._timer: Timer | None = None
        self._pending: tuple[Path, NotesStore] | None = None
        self._deferred_error: Exception | None = None
        self._state_lock = threading.Lock()
        self._save_lock = threading.Lock()

    @property
    def pending(self) -> bool:
        """True while a write is scheduled but not yet performed."""
        with self._state_lock:
            return self._pending is not None

    def schedule(self, root: str | Path, store: NotesStore) -> None:
        """Record the latest store and restart the quiet-period timer."""
        with self._state_lock:
            self._pending = (Path(root), store)
            if self._timer is not None:
                self._timer.cancel()
            self._timer = Timer(self.delay, self._fire)
            self._timer.daemon = True
            self._timer.start()

    def flush(self) -> None:
        """Cancel the timer and save now if a write is pending.

        Idempotent: does nothing when no write is pending. If an earlier
        timer-driven save failed and nothing newer replaced it, that error is
        raised here.

        Raises:
            OSError: If the write fails
            ValidationError: If the store is structurally invalid
        """
        with self._save_lock:
            with self._state_lock:
                self._cancel_timer()
                pending, self._pending = self._pending, None
                error, self._deferred_error = self._deferred_error, None

            if pending is None:
                if error is not None:
                    raise error
                return

            try:
                self._save(*pending)
            except Exception:
                with self._state_lock:
                    # Keep the data for the next flush unless something newer arrived
                    if self._pending is None:
                        self._pending = pending
                raise

    def cancel(self) -> None:
        """Drop any pending write without saving it."""
        with self._state_lock:
            self._cancel_timer()
            self._pending = None

    def _cancel_timer(self) -> None:
        if self._timer is not None:
            self._timer.cancel()
            self._timer = None

    def _fire(self) -> None:
        with self._save_lock:
            with self._state_lock:
                # Superseded by a newer schedule() or consumed by flush()
                if self._timer is not threading.current_thread():
                    return
                self._timer = None
                pending, self._pending = self._pending, None

            if pending is None:
                return

            try:
                self._save(*pending)
            except Exception as e:
                get_logger().exception("Scheduled store write failed", e)
                with self._state_lock:
                    self._deferred_error = e
