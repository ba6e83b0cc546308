"""CLI entry point for agent notes."""

import json
import sys
import time
from pathlib import Path

import click
import pydantic

from agent_notes.anchors import create_thread, reconcile_files, relative_uri
from agent_notes.config import DEFAULT_CONFIG
from agent_notes.document import TextDocument, TextRange
from agent_notes.formatting import format_location, format_thread_message
from agent_notes.gitignore import ensure_gitignored
from agent_notes.locking import LockTimeout
from agent_notes.log import init_logger
from agent_notes.models import Comment, NotesStore
from agent_notes.storage import (
    ValidationError,
    add_reply,
    add_thread,
    delete_thread,
    flush_write,
    load_store,
    save_store,
    schedule_write,
    store_path,
    validate_store,
)
from agent_notes.watcher import StoreWatcher


def parse_line_range(line_range: str) -> tuple[int, int]:
    """
    Parse a 1-indexed inclusive ``START:END`` range.

    Raises:
        click.BadParameter: If the format or numbers are invalid
    """
    parts = line_range.split(":")
    if len(parts) != 2:
        raise click.BadParameter(
            f"Invalid line range format: {line_range}\nExpected format: START:END (e.g., 10:15)"
        )
    try:
        start, end = int(parts[0]), int(parts[1])
    except ValueError:
        raise click.BadParameter(f"Line numbers must be integers, got {line_range}")
    if start < 1 or end < start:
        raise click.BadParameter(f"Invalid line range {line_range}: need 1 <= START <= END")
    return start, end


def selection_for_lines(document: TextDocument, start: int, end: int) -> TextRange:
    """Selection covering whole lines START..END (1-indexed, inclusive)."""
    if end > document.line_count:
        raise click.BadParameter(
            f"Line {end} is past the end of {document.uri} ({document.line_count} lines)"
        )
    last = end - 1
    return TextRange.from_lines(start - 1, 0, last, len(document.line_at(last)))


def _persist() -> None:
    """Flush pending writes, mapping failures to exit code 2."""
    try:
        flush_write()
    except (ValidationError, LockTimeout, OSError) as e:
        click.echo(f"Error writing store: {e}", err=True)
        sys.exit(2)


def _thread_summary(store: NotesStore, thread_id: str) -> str:
    thread = store.find_thread(thread_id)
    return format_location(thread) if thread else thread_id


@click.group()
@click.version_option(version="0.1.0", prog_name="agent-notes")
@click.option(
    "--root",
    type=click.Path(exists=True, file_okay=False, path_type=Path),
    default=".",
    help="Workspace root (default: current directory)",
)
@click.option("-v", "--verbose", is_flag=True, help="Print debug output to stderr")
@click.pass_context
def cli(ctx: click.Context, root: Path, verbose: bool):
    """Feedback threads anchored to spans of workspace files."""
    init_logger(verbose=verbose)
    ctx.obj = {"root": root.resolve()}


@cli.command()
@click.pass_context
def init(ctx: click.Context):
    """Create an empty store and add it to .gitignore."""
    root: Path = ctx.obj["root"]
    path = store_path(root)
    if path.exists():
        click.echo(f"Store already exists: {path.relative_to(root).as_posix()}")
    else:
        try:
            save_store(root, NotesStore())
        except (LockTimeout, OSError) as e:
            click.echo(f"Error writing store: {e}", err=True)
            sys.exit(2)
        click.echo(f"Created {path.relative_to(root).as_posix()}")

    if ensure_gitignored(root):
        click.echo(f"Added {DEFAULT_CONFIG.store_relpath} to .gitignore")


@cli.command()
@click.argument("file_path", type=click.Path(exists=True, dir_okay=False, path_type=Path))
@click.option(
    "-L",
    "--lines",
    "line_range",
    required=True,
    metavar="START:END",
    help="Line range to anchor the thread (1-indexed, inclusive, e.g. -L 10:15)",
)
@click.option("-a", "--author", default="unknown", help="Author name (defaults to 'unknown')")
@click.argument("body", required=True)
@click.pass_context
def add(ctx: click.Context, file_path: Path, line_range: str, author: str, body: str):
    """
    Create a feedback thread on a line range of a file.

    Examples:

        agent-notes add src/main.py -L 42:45 "Fix this function"
    """
    root: Path = ctx.obj["root"]
    if not body.strip():
        click.echo("Error: Comment body must be non-empty", err=True)
        sys.exit(1)

    try:
        # click checked existence relative to the cwd, not the workspace root
        uri = relative_uri(root, file_path.resolve())
        text = file_path.read_text(encoding="utf-8")
    except ValueError as e:
        click.echo(f"Error: {e}", err=True)
        sys.exit(1)
    except OSError as e:
        click.echo(f"Error reading file: {e}", err=True)
        sys.exit(2)

    document = TextDocument(uri, text)
    start, end = parse_line_range(line_range)
    selection = selection_for_lines(document, start, end)
    try:
        thread = create_thread(document, selection, body, author)
    except pydantic.ValidationError as e:
        click.echo(f"Error: Cannot anchor lines {start}:{end}: {e.errors()[0]['msg']}", err=True)
        sys.exit(1)

    store = load_store(root)
    add_thread(root, store, thread)
    _persist()

    click.echo(f"Created thread {thread.id}")
    click.echo(f"  File: {uri}")
    click.echo(f"  Lines: {start}:{end}")


@cli.command(name="list")
@click.argument("file_path", type=click.Path(path_type=Path), required=False)
@click.option("--orphaned", "only_orphaned", is_flag=True, help="Only show orphaned threads")
@click.option("--json", "json_output", is_flag=True, help="Output as JSON")
@click.pass_context
def list_threads(ctx: click.Context, file_path: Path | None, only_orphaned: bool, json_output: bool):
    """List threads, optionally only those on FILE_PATH."""
    root: Path = ctx.obj["root"]
    store = load_store(root)

    threads = store.threads
    if file_path is not None:
        try:
            uri = relative_uri(root, file_path)
        except ValueError as e:
            click.echo(f"Error: {e}", err=True)
            sys.exit(1)
        threads = store.threads_for(uri)
    if only_orphaned:
        threads = [t for t in threads if t.orphaned]

    if json_output:
        data = [t.model_dump(mode="json", by_alias=True, exclude_none=True) for t in threads]
        click.echo(json.dumps(data, indent=2))
        return

    if not threads:
        click.echo("No threads found")
        return

    for thread in threads:
        first = thread.comments[0]
        flag = " [orphaned]" if thread.orphaned else ""
        body = first.body if len(first.body) <= 60 else first.body[:57] + "..."
        click.echo(f"{thread.id}  {format_location(thread)}{flag}")
        click.echo(f"    {first.author}: {body} ({len(thread.comments)} comment(s))")


@cli.command()
@click.argument("thread_id", required=True)
@click.option("--json", "json_output", is_flag=True, help="Output as JSON")
@click.pass_context
def show(ctx: click.Context, thread_id: str, json_output: bool):
    """Show a thread as an agent-readable message."""
    store = load_store(ctx.obj["root"])
    thread = store.find_thread(thread_id)
    if thread is None:
        click.echo(f"Error: Thread not found: {thread_id}", err=True)
        sys.exit(1)

    if json_output:
        click.echo(json.dumps(thread.model_dump(mode="json", by_alias=True, exclude_none=True), indent=2))
    else:
        click.echo(format_location(thread))
        click.echo(format_thread_message(thread))


@cli.command()
@click.argument("thread_id", required=True)
@click.option("-a", "--author", default="unknown", help="Author name (defaults to 'unknown')")
@click.argument("body", required=True)
@click.pass_context
def reply(ctx: click.Context, thread_id: str, author: str, body: str):
    """Add a reply to a thread."""
    root: Path = ctx.obj["root"]
    if not body.strip():
        click.echo("Error: Reply body must be non-empty", err=True)
        sys.exit(1)

    store = load_store(root)
    if not add_reply(root, store, thread_id, Comment(author=author, body=body)):
        click.echo(f"Error: Thread not found: {thread_id}", err=True)
        sys.exit(1)
    _persist()

    thread = store.find_thread(thread_id)
    click.echo(f"Added reply to {thread_id} ({len(thread.comments)} comment(s))")


@cli.command()
@click.argument("thread_id", required=True)
@click.pass_context
def resolve(ctx: click.Context, thread_id: str):
    """Resolve a thread by removing it from the store."""
    root: Path = ctx.obj["root"]
    store = load_store(root)
    location = _thread_summary(store, thread_id)
    if not delete_thread(root, store, thread_id):
        click.echo(f"Error: Thread not found: {thread_id}", err=True)
        sys.exit(1)
    _persist()
    click.echo(f"Resolved thread {thread_id} ({location})")


@cli.command()
@click.argument("file_path", type=click.Path(path_type=Path), required=False)
@click.option(
    "--threshold",
    type=click.FloatRange(0.0, 1.0),
    default=DEFAULT_CONFIG.fuzzy_threshold,
    show_default=True,
    help="Minimum similarity score for re-anchoring",
)
@click.pass_context
def reconcile(ctx: click.Context, file_path: Path | None, threshold: float):
    """Re-anchor threads after files were edited outside an editor.

    Without FILE_PATH, every file that has threads is reconciled. Threads on
    files that no longer exist are marked orphaned.
    """
    root: Path = ctx.obj["root"]
    config = DEFAULT_CONFIG.model_copy(update={"fuzzy_threshold": threshold})
    store = load_store(root)

    uris = None
    if file_path is not None:
        try:
            uris = [relative_uri(root, file_path)]
        except ValueError as e:
            click.echo(f"Error: {e}", err=True)
            sys.exit(1)

    try:
        reports = reconcile_files(root, store, uris, config)
    except OSError as e:
        click.echo(f"Error reading file: {e}", err=True)
        sys.exit(2)

    for report in reports:
        click.echo(
            f"{report.uri}: {report.total} thread(s), {report.updated} updated, "
            f"{report.orphaned} orphaned"
        )

    total_changed = sum(r.updated for r in reports)
    if total_changed:
        schedule_write(root, store)
        _persist()
    click.echo(f"Reconciled {len(reports)} file(s), {total_changed} thread(s) updated")


@cli.command()
@click.pass_context
def validate(ctx: click.Context):
    """Check the store file without recovering from backup."""
    path = store_path(ctx.obj["root"])
    if not path.exists():
        click.echo(f"No store file at {path}")
        return
    try:
        with open(path, encoding="utf-8") as f:
            store = validate_store(json.load(f))
    except json.JSONDecodeError as e:
        click.echo(f"Invalid JSON in {path}: {e}", err=True)
        sys.exit(1)
    except UnicodeDecodeError as e:
        click.echo(f"Store file {path} is not valid UTF-8: {e}", err=True)
        sys.exit(1)
    except OSError as e:
        click.echo(f"Error reading {path}: {e}", err=True)
        sys.exit(2)
    except ValidationError as e:
        click.echo(f"Invalid store: {e}", err=True)
        sys.exit(1)
    click.echo(f"OK: {len(store.threads)} thread(s), schema version {store.version}")


@cli.command()
@click.pass_context
def watch(ctx: click.Context):
    """Print a summary whenever the store file changes on disk."""
    root: Path = ctx.obj["root"]

    def on_change() -> None:
        store = load_store(root)
        orphaned = sum(1 for t in store.threads if t.orphaned)
        timestamp = time.strftime("%Y-%m-%d %H:%M:%S")
        click.echo(f"[{timestamp}] {len(store.threads)} thread(s), {orphaned} orphaned")

    watcher = StoreWatcher(root, on_change)
    watcher.start()
    click.echo(f"Watching {watcher.path} (Ctrl-C to stop)")
    try:
        while True:
            time.sleep(1)
    except KeyboardInterrupt:
        pass
    finally:
        watcher.stop()


if __name__ == "__main__":
    cli()
