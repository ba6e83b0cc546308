"""Registry of live view handles and resync after external store rewrites.

Agents resolve feedback by editing the store file directly. When that happens
the in-memory store is reloaded and view-layer handles (comment widgets, tree
items, ...) are disposed or created to match the new thread ids. Nothing is
merged: the file on disk wins.
"""

from collections.abc import Callable, Iterator
from pathlib import Path
from typing import NamedTuple, Protocol

from agent_notes.config import DEFAULT_CONFIG, NotesConfig
from agent_notes.log import get_logger
from agent_notes.models import NotesStore, Thread
from agent_notes.storage import load_store


class ViewHandle(Protocol):
    """Anything the view layer attaches to a thread; must be disposable."""

    def dispose(self) -> None: ...


class SyncResult(NamedTuple):
    """Thread ids affected by a resync."""

    added: list[str]
    removed: list[str]
    kept: list[str]

    @property
    def changed(self) -> bool:
        return bool(self.added or self.removed)


class ThreadRegistry:
    """Maps thread ids to their live view handles.

    Handles enter through ``register`` when a thread is shown and leave through
    ``remove`` (thread deleted or resolved) or ``dispose_all`` (shutdown).
    """

    def __init__(self) -> None:
        self._handles: dict[str, ViewHandle] = {}

    def __contains__(self, thread_id: object) -> bool:
        return thread_id in self._handles

    def __len__(self) -> int:
        return len(self._handles)

    def __iter__(self) -> Iterator[str]:
        return iter(list(self._handles))

    def ids(self) -> set[str]:
        return set(self._handles)

    def get(self, thread_id: str) -> ViewHandle | None:
        return self._handles.get(thread_id)

    def register(self, thread_id: str, handle: ViewHandle) -> None:
        """Attach a handle; an existing handle for the id is disposed first."""
        previous = self._handles.get(thread_id)
        if previous is not None and previous is not handle:
            previous.dispose()
        self._handles[thread_id] = handle

    def remove(self, thread_id: str) -> bool:
        """Dispose and forget the handle for a thread. Returns True if one existed."""
        handle = self._handles.pop(thread_id, None)
        if handle is None:
            return False
        handle.dispose()
        return True

    def dispose_all(self) -> None:
        for thread_id in list(self._handles):
            self.remove(thread_id)


def resync(
    root: str | Path,
    store: NotesStore,
    registry: ThreadRegistry,
    create_handle: Callable[[Thread], ViewHandle],
    config: NotesConfig = DEFAULT_CONFIG,
) -> SyncResult:
    """
    Reload the store from disk and bring the registry in line with it.

    The live ``store`` object is updated in place so that every component
    holding a reference to it sees the reloaded threads.

    Args:
        root: Workspace root directory
        store: Live in-memory store
        registry: Registry of view handles
        create_handle: Factory for handles of threads not yet shown

    Returns:
        SyncResult listing added, removed and kept thread ids
    """
    reloaded = load_store(root, config)
    store.version = reloaded.version
    store.threads = reloaded.threads
    store.last_backup = reloaded.last_backup

    live_ids = {t.id for t in store.threads}
    removed = sorted(registry.ids() - live_ids)
    for thread_id in removed:
        registry.remove(thread_id)

    added = []
    kept = []
    for thread in store.threads:
        if thread.id in registry:
            kept.append(thread.id)
        else:
            registry.register(thread.id, create_handle(thread))
            added.append(thread.id)

    get_logger().debug("Resynced store", added=len(added), removed=len(removed))
    return SyncResult(added=added, removed=removed, kept=kept)
