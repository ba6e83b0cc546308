"""Watch the store file for external rewrites and trigger a resync.

Agents and the CLI rewrite the store with an atomic rename, which reaches the
observer as a created, modified or moved event. Events are debounced so one
rewrite (or a burst of them) produces a single callback.
"""

from collections.abc import Callable
from pathlib import Path
from threading import Lock, Timer

from watchdog.events import FileSystemEvent, FileSystemEventHandler
from watchdog.observers import Observer

from agent_notes.config import DEFAULT_CONFIG, NotesConfig
from agent_notes.log import get_logger
from agent_notes.storage import store_path


def _as_path(raw: str | bytes) -> Path:
    # src_path can be str or bytes depending on the platform observer
    return Path(raw if isinstance(raw, str) else raw.decode("utf-8"))


class StoreChangeHandler(FileSystemEventHandler):
    """Debounced watchdog handler for one store file."""

    def __init__(
        self, target: Path, on_change: Callable[[], None], debounce_seconds: float = 0.3
    ) -> None:
        """Initialize the event handler.

        Args:
            target: Store file to watch
            on_change: Called once per burst of changes to the store file
            debounce_seconds: Quiet period before on_change runs
        """
        self.target = target.resolve()
        self.on_change = on_change
        self.debounce_seconds = debounce_seconds
        self.timer: Timer | None = None
        self._lock = Lock()

    def is_store_event(self, event: FileSystemEvent) -> bool:
        """True if the event leaves new content at the store path."""
        if event.is_directory:
            return False
        paths = [_as_path(event.src_path)]
        dest = getattr(event, "dest_path", None)
        if dest:
            # Atomic writes arrive as a move from the temp file onto the store
            paths.append(_as_path(dest))
        return any(p.resolve() == self.target for p in paths)

    def _fire(self) -> None:
        try:
            self.on_change()
        except Exception as e:
            get_logger().exception("Store change callback failed", e)

    def schedule(self) -> None:
        """Cancel any pending callback and start a new quiet period."""
        with self._lock:
            if self.timer is not None:
                self.timer.cancel()
            self.timer = Timer(self.debounce_seconds, self._fire)
            self.timer.daemon = True
            self.timer.start()

    def on_any_event(self, event: FileSystemEvent) -> None:
        if event.event_type in ("created", "modified", "moved") and self.is_store_event(event):
            get_logger().debug("Store file changed", event=event.event_type)
            self.schedule()

    def shutdown(self) -> None:
        with self._lock:
            if self.timer is not None:
                self.timer.cancel()
                self.timer = None


class StoreWatcher:
    """Runs a watchdog observer on the store directory of a workspace."""

    def __init__(
        self,
        root: str | Path,
        on_change: Callable[[], None],
        config: NotesConfig = DEFAULT_CONFIG,
    ) -> None:
        self.path = store_path(root, config)
        self.handler = StoreChangeHandler(
            self.path, on_change, debounce_seconds=config.write_debounce_seconds
        )
        self._observer: Observer | None = None

    @property
    def running(self) -> bool:
        return self._observer is not None

    def start(self) -> None:
        if self._observer is not None:
            return
        self.path.parent.mkdir(parents=True, exist_ok=True)
        observer = Observer()
        observer.schedule(self.handler, str(self.path.parent), recursive=False)
        observer.start()
        self._observer = observer
        get_logger().debug("Watching store file", path=str(self.path))

    def stop(self) -> None:
        self.handler.shutdown()
        if self._observer is not None:
            self._observer.stop()
            self._observer.join()
            self._observer = None
