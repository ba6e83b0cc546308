"""Store file I/O: validated loads with backup recovery, atomic saves, mutators."""

import atexit
import json
from datetime import datetime, timezone
from pathlib import Path
from typing import Any

import pydantic

from agent_notes.atomic_write import atomic_write_json
from agent_notes.config import DEFAULT_CONFIG, NotesConfig
from agent_notes.locking import exclusive_lock
from agent_notes.log import get_logger
from agent_notes.models import Comment, NotesStore, Thread
from agent_notes.write_scheduler import WriteScheduler


class ValidationError(ValueError):
    """Raised when a store violates a structural invariant.

    Attributes:
        field: Dotted path of the offending field (e.g. "threads.0.range.endLine")
    """

    def __init__(self, field: str, message: str) -> None:
        self.field = field
        super().__init__(f"{field}: {message}")


def store_path(root: str | Path, config: NotesConfig = DEFAULT_CONFIG) -> Path:
    """Path of the store file for a workspace root."""
    return Path(root) / config.store_dir / config.store_filename


def backup_path(root: str | Path, config: NotesConfig = DEFAULT_CONFIG) -> Path:
    """Path of the rolling backup next to the store file."""
    return Path(root) / config.store_dir / config.backup_filename


def empty_store() -> NotesStore:
    """A fresh store: schema version 1, no threads."""
    return NotesStore()


# --- Validation ---


def validate_store(store: NotesStore | Any) -> NotesStore:
    """
    Check the structural invariants of a store.

    Accepts either a NotesStore (e.g. after in-memory mutation, which pydantic
    does not re-validate) or raw JSON data as read from disk.

    Args:
        store: NotesStore instance or decoded JSON data

    Returns:
        A freshly validated NotesStore

    Raises:
        ValidationError: Naming the first offending field
    """
    data = store.to_json_data() if isinstance(store, NotesStore) else store

    if not isinstance(data, dict):
        raise ValidationError("store", "must be a JSON object")
    for required in ("version", "threads"):
        if required not in data:
            raise ValidationError(required, "is required")

    try:
        return NotesStore.model_validate(data)
    except pydantic.ValidationError as e:
        first = e.errors()[0]
        field = ".".join(str(part) for part in first["loc"]) or "store"
        raise ValidationError(field, first["msg"]) from e


# --- Load ---


def _read_validated(path: Path) -> NotesStore:
    with open(path, encoding="utf-8") as f:
        data = json.load(f)
    return validate_store(data)


def load_store(root: str | Path, config: NotesConfig = DEFAULT_CONFIG) -> NotesStore:
    """
    Load the workspace store, degrading instead of failing.

    Recovery order:
    1. The store file, if it parses and validates
    2. The backup file, if it parses and validates
    3. An empty store

    A missing store file is not an error and yields an empty store.

    Args:
        root: Workspace root directory
        config: Storage settings

    Returns:
        A valid NotesStore (never raises for unreadable or corrupt files)
    """
    logger = get_logger()
    path = store_path(root, config)
    if not path.exists():
        logger.debug("No store file, starting empty", path=str(path))
        return empty_store()

    try:
        return _read_validated(path)
    except (OSError, ValueError, RecursionError) as e:
        # JSONDecodeError, UnicodeDecodeError and ValidationError are ValueErrors;
        # RecursionError comes from pathologically nested JSON
        logger.warning(f"Store file {path} is unreadable ({e}); trying backup")

    backup = backup_path(root, config)
    if backup.exists():
        try:
            store = _read_validated(backup)
            logger.warning(f"Recovered {len(store.threads)} thread(s) from {backup}")
            return store
        except (OSError, ValueError, RecursionError) as e:
            logger.warning(f"Backup file {backup} is unreadable ({e})")

    logger.warning("Falling back to an empty store")
    return empty_store()


# --- Save ---


def _backup_due(last_backup: str, now: datetime, interval: float) -> bool:
    try:
        last = datetime.fromisoformat(last_backup.replace("Z", "+00:00"))
    except (ValueError, AttributeError):
        return True
    if last.tzinfo is None:
        last = last.replace(tzinfo=timezone.utc)
    return (now - last).total_seconds() >= interval


def save_store(
    root: str | Path,
    store: NotesStore,
    *,
    config: NotesConfig = DEFAULT_CONFIG,
    now: datetime | None = None,
) -> None:
    """
    Validate and durably write the store.

    The store file is replaced atomically (temp file + rename) under an
    exclusive cross-process lock. When at least ``backup_interval_seconds``
    have passed since ``store.last_backup``, the backup file is refreshed with
    the same content and ``last_backup`` is advanced.

    Args:
        root: Workspace root directory
        store: Store to persist
        config: Storage settings
        now: Override for the current time (UTC)

    Raises:
        ValidationError: If the store violates an invariant (nothing is written)
        LockTimeout: If another process holds the store lock too long
        OSError: If the write or rename fails
    """
    data = store.to_json_data()
    validate_store(data)

    now = now or datetime.now(timezone.utc)
    write_backup = _backup_due(store.last_backup, now, config.backup_interval_seconds)
    if write_backup:
        data["lastBackup"] = now.isoformat(timespec="milliseconds").replace("+00:00", "Z")

    path = store_path(root, config)
    with exclusive_lock(path, timeout=config.lock_timeout_seconds):
        atomic_write_json(data, path)
        if write_backup:
            atomic_write_json(data, backup_path(root, config))

    if write_backup:
        store.last_backup = data["lastBackup"]
    get_logger().debug(
        "Saved store", path=str(path), threads=len(store.threads), backup=write_backup
    )


# --- Debounced writes ---

_default_scheduler: WriteScheduler | None = None


def _flush_at_exit(scheduler: WriteScheduler) -> None:
    try:
        scheduler.flush()
    except Exception as e:
        get_logger().exception("Failed to write pending notes on exit", e)


def get_default_scheduler() -> WriteScheduler:
    """Process-wide scheduler used when callers do not pass their own."""
    global _default_scheduler
    if _default_scheduler is None:
        _default_scheduler = WriteScheduler(
            save_store, delay=DEFAULT_CONFIG.write_debounce_seconds
        )
        atexit.register(_flush_at_exit, _default_scheduler)
    return _default_scheduler


def schedule_write(
    root: str | Path, store: NotesStore, scheduler: WriteScheduler | None = None
) -> None:
    """Coalesce a write of store; returns immediately."""
    (scheduler or get_default_scheduler()).schedule(root, store)


def flush_write(scheduler: WriteScheduler | None = None) -> None:
    """Perform any pending write now. No-op when nothing is pending."""
    (scheduler or get_default_scheduler()).flush()


# --- Mutators ---


def add_thread(
    root: str | Path,
    store: NotesStore,
    thread: Thread,
    scheduler: WriteScheduler | None = None,
) -> bool:
    """Add a thread and schedule a write. Returns False if the id is already present."""
    if store.find_thread(thread.id) is not None:
        return False
    store.threads.append(thread)
    schedule_write(root, store, scheduler)
    return True


def delete_thread(
    root: str | Path,
    store: NotesStore,
    thread_id: str,
    scheduler: WriteScheduler | None = None,
) -> bool:
    """Remove a thread by id and schedule a write. Returns True if it existed."""
    for idx, existing in enumerate(store.threads):
        if existing.id == thread_id:
            del store.threads[idx]
            schedule_write(root, store, scheduler)
            return True
    return False


def update_thread(
    root: str | Path,
    store: NotesStore,
    thread: Thread,
    scheduler: WriteScheduler | None = None,
) -> bool:
    """Replace the thread with the same id and schedule a write. Returns True if found."""
    for idx, existing in enumerate(store.threads):
        if existing.id == thread.id:
            store.threads[idx] = thread
            schedule_write(root, store, scheduler)
            return True
    return False


def add_reply(
    root: str | Path,
    store: NotesStore,
    thread_id: str,
    comment: Comment,
    scheduler: WriteScheduler | None = None,
) -> bool:
    """Append a reply to a thread. Returns True if the thread exists."""
    thread = store.find_thread(thread_id)
    if thread is None:
        return False
    thread.comments.append(comment)
    schedule_write(root, store, scheduler)
    return True


def edit_comment(
    root: str | Path,
    store: NotesStore,
    thread_id: str,
    comment_id: str,
    body: str,
    scheduler: WriteScheduler | None = None,
) -> bool:
    """
    Replace the body of one comment in place.

    Returns:
        True if the thread and comment exist

    Raises:
        ValidationError: If body is empty or whitespace-only
    """
    if not body.strip():
        raise ValidationError("body", "comment body must be non-empty")
    thread = store.find_thread(thread_id)
    comment = thread.find_comment(comment_id) if thread is not None else None
    if comment is None:
        return False
    comment.body = body
    schedule_write(root, store, scheduler)
    return True
