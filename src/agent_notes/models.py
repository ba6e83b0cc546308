"""Data models for feedback threads, comments, and the workspace store."""

import re
import uuid
from datetime import datetime, timezone
from pathlib import PurePosixPath, PureWindowsPath

from pydantic import BaseModel, ConfigDict, Field, field_validator

UUID_V4_PATTERN = re.compile(
    r"^[0-9a-f]{8}-[0-9a-f]{4}-4[0-9a-f]{3}-[89ab][0-9a-f]{3}-[0-9a-f]{12}$", re.IGNORECASE
)

SCHEMA_VERSION = 1


def new_id() -> str:
    """Generate a random UUID v4 string for threads and comments."""
    return str(uuid.uuid4())


def utc_now_iso() -> str:
    """Current UTC time as an ISO 8601 string with a trailing Z."""
    return datetime.now(timezone.utc).isoformat(timespec="milliseconds").replace("+00:00", "Z")


def _check_uuid_v4(v: str) -> str:
    if not UUID_V4_PATTERN.match(v):
        raise ValueError(f"not a valid UUID v4: {v!r}")
    return v


class _CamelModel(BaseModel):
    """Base for models persisted with camelCase JSON keys."""

    model_config = ConfigDict(populate_by_name=True)


class Range(_CamelModel):
    """Zero-based text range; characters are half-open at the end."""

    start_line: int = Field(..., ge=0, alias="startLine")
    start_character: int = Field(..., ge=0, alias="startCharacter")
    end_line: int = Field(..., ge=0, alias="endLine")
    end_character: int = Field(..., ge=0, alias="endCharacter")

    @field_validator("end_line")
    @classmethod
    def validate_line_order(cls, v: int, info) -> int:
        """Validate that end_line >= start_line."""
        if "start_line" in info.data and v < info.data["start_line"]:
            raise ValueError(f"endLine ({v}) must be >= startLine ({info.data['start_line']})")
        return v

    def shifted(self, line_delta: int) -> "Range":
        """Return a copy moved by line_delta lines; character offsets are kept."""
        return Range(
            start_line=self.start_line + line_delta,
            start_character=self.start_character,
            end_line=self.end_line + line_delta,
            end_character=self.end_character,
        )


class Comment(_CamelModel):
    """A single comment within a thread."""

    id: str = Field(default_factory=new_id)
    body: str
    author: str
    created_at: str = Field(default_factory=utc_now_iso, alias="createdAt")

    @field_validator("id")
    @classmethod
    def validate_id(cls, v: str) -> str:
        return _check_uuid_v4(v)

    @field_validator("body")
    @classmethod
    def validate_body(cls, v: str) -> str:
        """Reject empty and whitespace-only bodies."""
        if not v.strip():
            raise ValueError("comment body must be non-empty")
        return v


class Thread(_CamelModel):
    """A feedback thread anchored to a span of a workspace file.

    The anchor is the pair (range, selected_text). The range is the last known
    location; selected_text is the original snippet used for fuzzy
    re-anchoring after the file changes.
    """

    id: str = Field(default_factory=new_id)
    uri: str
    range: Range
    selected_text: str = Field(..., min_length=1, alias="selectedText")
    context_before: str = Field(default="", alias="contextBefore")
    context_after: str = Field(default="", alias="contextAfter")
    content_hash: str = Field(default="", alias="contentHash")
    comments: list[Comment] = Field(..., min_length=1)
    orphaned: bool | None = None

    @field_validator("id")
    @classmethod
    def validate_id(cls, v: str) -> str:
        return _check_uuid_v4(v)

    @field_validator("uri")
    @classmethod
    def validate_uri(cls, v: str) -> str:
        """Validate that uri is a non-empty workspace-relative path."""
        if not v:
            raise ValueError("uri must be non-empty")
        if PurePosixPath(v).is_absolute() or PureWindowsPath(v).is_absolute():
            raise ValueError(f"uri must be workspace-relative, got absolute path {v!r}")
        return v

    def relocate(self, new_range: Range) -> None:
        """Move the anchor to a recovered location and clear the orphan flag."""
        self.range = new_range
        self.orphaned = False

    def shift(self, line_delta: int) -> None:
        """Shift the anchor by whole lines without re-anchoring."""
        self.range = self.range.shifted(line_delta)

    def mark_orphaned(self) -> None:
        """Flag the anchor as lost. The last known range is kept for display."""
        self.orphaned = True

    def find_comment(self, comment_id: str) -> Comment | None:
        return next((c for c in self.comments if c.id == comment_id), None)


class NotesStore(_CamelModel):
    """Root structure of the workspace store file."""

    version: int = Field(default=SCHEMA_VERSION, ge=1, strict=True)
    threads: list[Thread] = Field(default_factory=list)
    last_backup: str = Field(default_factory=utc_now_iso, alias="lastBackup")

    def find_thread(self, thread_id: str) -> Thread | None:
        return next((t for t in self.threads if t.id == thread_id), None)

    def threads_for(self, uri: str) -> list[Thread]:
        """Threads anchored to the given workspace-relative uri."""
        return [t for t in self.threads if t.uri == uri]

    def to_json_data(self) -> dict:
        """Serialize to the on-disk JSON shape (camelCase, orphaned omitted when unset)."""
        return self.model_dump(mode="json", by_alias=True, exclude_none=True)
