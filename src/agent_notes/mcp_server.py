"""MCP server exposing feedback threads to agents.

Every tool takes JSON arguments validated by a pydantic request model and
returns a single JSON text block: either the response model or an
``{"error": {...}}`` object. The workspace root is read from
``AGENT_NOTES_ROOT`` and defaults to the working directory.
"""

import json
import os
from pathlib import Path
from typing import Any

from mcp.server import Server
from mcp.server.stdio import stdio_server
from mcp.types import TextContent, Tool
from pydantic import BaseModel, Field, ValidationError

from agent_notes.anchors import reconcile_files, relative_uri
from agent_notes.config import DEFAULT_CONFIG
from agent_notes.formatting import format_location, format_thread_message
from agent_notes.locking import LockTimeout
from agent_notes.log import get_logger
from agent_notes.models import Comment
from agent_notes.storage import ValidationError as StoreValidationError
from agent_notes.storage import add_reply, delete_thread, flush_write, load_store, schedule_write

ROOT_ENV_VAR = "AGENT_NOTES_ROOT"

# ============================================================================
# Error Models
# ============================================================================


class ErrorResponse(BaseModel):
    """Structured error response for MCP tools."""

    code: str = Field(..., description="Error code (THREAD_NOT_FOUND, FILE_NOT_FOUND, etc.)")
    message: str = Field(..., description="Human-readable error message")


# ============================================================================
# Request/Response Models
# ============================================================================


class NotesListRequest(BaseModel):
    """Request model for notes_list tool."""

    file: str | None = Field(
        default=None, description="Workspace-relative or absolute file path (omit for all files)"
    )
    orphaned_only: bool = Field(default=False, description="Only return orphaned threads")


class NotesListResponse(BaseModel):
    """Response model for notes_list tool."""

    threads: list[dict[str, Any]] = Field(..., description="Thread summaries")


class NotesShowRequest(BaseModel):
    """Request model for notes_show tool."""

    thread_id: str = Field(..., min_length=1, description="Thread ID")


class NotesShowResponse(BaseModel):
    """Response model for notes_show tool."""

    thread: dict[str, Any] = Field(..., description="Full thread as stored")
    message: str = Field(..., description="Thread rendered as a feedback message")


class NotesReplyRequest(BaseModel):
    """Request model for notes_reply tool."""

    thread_id: str = Field(..., min_length=1, description="Thread ID")
    body: str = Field(..., min_length=1, max_length=10000, description="Reply body")
    author: str = Field(default="agent", description="Author name")


class NotesReplyResponse(BaseModel):
    """Response model for notes_reply tool."""

    thread_id: str = Field(..., description="Thread ID")
    comment_count: int = Field(..., description="Total number of comments in thread")


class NotesResolveRequest(BaseModel):
    """Request model for notes_resolve tool."""

    thread_id: str = Field(..., min_length=1, description="Thread ID")


class NotesResolveResponse(BaseModel):
    """Response model for notes_resolve tool."""

    thread_id: str = Field(..., description="Thread ID")
    location: str = Field(..., description="uri:line the thread was anchored to")


class NotesReconcileRequest(BaseModel):
    """Request model for notes_reconcile tool."""

    file: str | None = Field(
        default=None, description="Workspace-relative or absolute file path (omit for all files)"
    )
    threshold: float = Field(
        default=DEFAULT_CONFIG.fuzzy_threshold,
        ge=0.0,
        le=1.0,
        description="Minimum similarity score for re-anchoring",
    )


class NotesReconcileResponse(BaseModel):
    """Response model for notes_reconcile tool."""

    files_processed: list[dict[str, Any]] = Field(..., description="Report per file")
    total_updated: int = Field(..., description="Threads updated across all files")


# ============================================================================
# Helpers
# ============================================================================


def workspace_root() -> Path:
    """Workspace root from AGENT_NOTES_ROOT, or the working directory."""
    return Path(os.environ.get(ROOT_ENV_VAR) or Path.cwd()).resolve()


def _content(data: dict[str, Any]) -> list[TextContent]:
    return [TextContent(type="text", text=json.dumps(data, indent=2))]


def _error(code: str, message: str) -> list[TextContent]:
    return _content({"error": ErrorResponse(code=code, message=message).model_dump()})


def _thread_not_found(thread_id: str) -> list[TextContent]:
    return _error("THREAD_NOT_FOUND", f"Thread not found: {thread_id}")


# ============================================================================
# MCP Server
# ============================================================================


mcp = Server("agent-notes")


@mcp.list_tools()
async def list_tools() -> list[Tool]:
    """List all available MCP tools."""
    thread_id_schema = {"type": "string", "description": "Thread ID"}
    file_schema = {
        "type": "string",
        "description": "Workspace-relative or absolute file path (omit for all files)",
    }
    return [
        Tool(
            name="notes_list",
            description="List feedback threads, optionally for one file or only orphaned ones",
            inputSchema={
                "type": "object",
                "properties": {
                    "file": file_schema,
                    "orphaned_only": {
                        "type": "boolean",
                        "description": "Only return orphaned threads (default: false)",
                        "default": False,
                    },
                },
                "required": [],
            },
        ),
        Tool(
            name="notes_show",
            description="Show a feedback thread with its full conversation",
            inputSchema={
                "type": "object",
                "properties": {"thread_id": thread_id_schema},
                "required": ["thread_id"],
            },
        ),
        Tool(
            name="notes_reply",
            description="Add a reply to a feedback thread",
            inputSchema={
                "type": "object",
                "properties": {
                    "thread_id": thread_id_schema,
                    "body": {
                        "type": "string",
                        "description": "Reply body",
                        "minLength": 1,
                        "maxLength": 10000,
                    },
                    "author": {
                        "type": "string",
                        "description": "Author name (default: agent)",
                        "default": "agent",
                    },
                },
                "required": ["thread_id", "body"],
            },
        ),
        Tool(
            name="notes_resolve",
            description="Resolve a feedback thread by removing it from the store",
            inputSchema={
                "type": "object",
                "properties": {"thread_id": thread_id_schema},
                "required": ["thread_id"],
            },
        ),
        Tool(
            name="notes_reconcile",
            description="Re-anchor threads against the current contents of files on disk",
            inputSchema={
                "type": "object",
                "properties": {
                    "file": file_schema,
                    "threshold": {
                        "type": "number",
                        "description": "Minimum similarity score (0-1, default: 0.5)",
                        "minimum": 0.0,
                        "maximum": 1.0,
                        "default": DEFAULT_CONFIG.fuzzy_threshold,
                    },
                },
                "required": [],
            },
        ),
    ]


@mcp.call_tool()
async def call_tool(name: str, arguments: Any) -> list[TextContent]:
    """Handle MCP tool calls."""
    try:
        if name == "notes_list":
            return await handle_notes_list(arguments)
        elif name == "notes_show":
            return await handle_notes_show(arguments)
        elif name == "notes_reply":
            return await handle_notes_reply(arguments)
        elif name == "notes_resolve":
            return await handle_notes_resolve(arguments)
        elif name == "notes_reconcile":
            return await handle_notes_reconcile(arguments)
        else:
            return _error("UNKNOWN_TOOL", f"Unknown tool: {name}")
    except Exception as e:
        get_logger().exception(f"Tool {name} failed", e)
        return _error("INTERNAL_ERROR", str(e))


async def handle_notes_list(arguments: Any) -> list[TextContent]:
    """Handle notes_list tool call."""
    try:
        req = NotesListRequest(**(arguments or {}))
    except ValidationError as e:
        return _error("VALIDATION_ERROR", f"Invalid input: {e}")

    root = workspace_root()
    store = load_store(root)

    threads = store.threads
    if req.file:
        try:
            threads = store.threads_for(relative_uri(root, req.file))
        except ValueError as e:
            return _error("VALIDATION_ERROR", str(e))
    if req.orphaned_only:
        threads = [t for t in threads if t.orphaned]

    summaries = [
        {
            "id": t.id,
            "location": format_location(t),
            "orphaned": bool(t.orphaned),
            "selected_text": t.selected_text,
            "first_comment": t.comments[0].body,
            "author": t.comments[0].author,
            "comment_count": len(t.comments),
        }
        for t in threads
    ]
    return _content(NotesListResponse(threads=summaries).model_dump())


async def handle_notes_show(arguments: Any) -> list[TextContent]:
    """Handle notes_show tool call."""
    try:
        req = NotesShowRequest(**(arguments or {}))
    except ValidationError as e:
        return _error("VALIDATION_ERROR", f"Invalid input: {e}")

    store = load_store(workspace_root())
    thread = store.find_thread(req.thread_id)
    if thread is None:
        return _thread_not_found(req.thread_id)

    response = NotesShowResponse(
        thread=thread.model_dump(mode="json", by_alias=True, exclude_none=True),
        message=format_thread_message(thread),
    )
    return _content(response.model_dump())


async def handle_notes_reply(arguments: Any) -> list[TextContent]:
    """Handle notes_reply tool call."""
    try:
        req = NotesReplyRequest(**(arguments or {}))
        comment = Comment(body=req.body, author=req.author)
    except ValidationError as e:
        return _error("VALIDATION_ERROR", f"Invalid input: {e}")

    root = workspace_root()
    store = load_store(root)
    if not add_reply(root, store, req.thread_id, comment):
        return _thread_not_found(req.thread_id)

    try:
        flush_write()
    except (StoreValidationError, LockTimeout, OSError) as e:
        return _error("INTERNAL_ERROR", f"Failed to write store: {e}")

    thread = store.find_thread(req.thread_id)
    response = NotesReplyResponse(thread_id=thread.id, comment_count=len(thread.comments))
    return _content(response.model_dump())


async def handle_notes_resolve(arguments: Any) -> list[TextContent]:
    """Handle notes_resolve tool call."""
    try:
        req = NotesResolveRequest(**(arguments or {}))
    except ValidationError as e:
        return _error("VALIDATION_ERROR", f"Invalid input: {e}")

    root = workspace_root()
    store = load_store(root)
    thread = store.find_thread(req.thread_id)
    if thread is None:
        return _thread_not_found(req.thread_id)

    location = format_location(thread)
    delete_thread(root, store, req.thread_id)
    try:
        flush_write()
    except (StoreValidationError, LockTimeout, OSError) as e:
        return _error("INTERNAL_ERROR", f"Failed to write store: {e}")

    return _content(NotesResolveResponse(thread_id=req.thread_id, location=location).model_dump())


async def handle_notes_reconcile(arguments: Any) -> list[TextContent]:
    """Handle notes_reconcile tool call."""
    try:
        req = NotesReconcileRequest(**(arguments or {}))
    except ValidationError as e:
        return _error("VALIDATION_ERROR", f"Invalid input: {e}")

    root = workspace_root()
    store = load_store(root)

    uris = None
    if req.file:
        try:
            uri = relative_uri(root, req.file)
        except ValueError as e:
            return _error("VALIDATION_ERROR", str(e))
        if not (root / uri).is_file() and not store.threads_for(uri):
            return _error("FILE_NOT_FOUND", f"File not found: {uri}")
        uris = [uri]

    config = DEFAULT_CONFIG.model_copy(update={"fuzzy_threshold": req.threshold})
    reports = reconcile_files(root, store, uris, config)

    total_updated = sum(r.updated for r in reports)
    if total_updated:
        schedule_write(root, store)
        try:
            flush_write()
        except (StoreValidationError, LockTimeout, OSError) as e:
            return _error("INTERNAL_ERROR", f"Failed to write store: {e}")

    response = NotesReconcileResponse(
        files_processed=[r._asdict() for r in reports],
        total_updated=total_updated,
    )
    return _content(response.model_dump())


# ============================================================================
# Entry Point
# ============================================================================


async def main() -> None:
    """Run the MCP server."""
    async with stdio_server() as (read_stream, write_stream):
        await mcp.run(read_stream, write_stream, mcp.create_initialization_options())


def run_server() -> None:
    """Synchronous entry point for running the server."""
    import asyncio

    asyncio.run(main())


if __name__ == "__main__":
    run_server()
