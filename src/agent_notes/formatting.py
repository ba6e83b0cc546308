"""Plain-text rendering of threads for agents and terminals."""

from datetime import datetime

from agent_notes.config import DEFAULT_CONFIG
from agent_notes.models import Thread


def format_date(iso: str) -> str:
    """Render an ISO 8601 timestamp as YYYY-MM-DD; unparsable input is returned as-is."""
    try:
        return datetime.fromisoformat(iso.replace("Z", "+00:00")).date().isoformat()
    except ValueError:
        return iso


def format_thread_message(thread: Thread, store_relpath: str = DEFAULT_CONFIG.store_relpath) -> str:
    """Format a thread as a self-contained feedback message.

    The message ends with instructions for resolving the thread by removing it
    from the store file, which is how agents close feedback.
    """
    first, replies = thread.comments[0], thread.comments[1:]

    prefix = "[ORPHANED] " if thread.orphaned else ""
    parts = [
        f"{prefix}[Feedback] {first.author} ({format_date(first.created_at)}): {first.body}",
        f'On: "{thread.selected_text}"',
    ]
    for reply in replies:
        parts.append("---")
        parts.append(f"[Reply] {reply.author} ({format_date(reply.created_at)}): {reply.body}")

    parts.append("")
    parts.append(
        f'[Resolve] After addressing this feedback, resolve it by removing the thread object '
        f'with "id": "{thread.id}" from the "threads" array in {store_relpath}'
    )
    return "\n".join(parts)


def format_location(thread: Thread) -> str:
    """``uri:line`` with a one-based line number, as editors and grep print it."""
    return f"{thread.uri}:{thread.range.start_line + 1}"
