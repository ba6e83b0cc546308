"""Tunable settings for storage, write coalescing, and anchor tracking."""

from pydantic import BaseModel, Field


class NotesConfig(BaseModel, frozen=True):
    """Settings shared by the persistence engine and the anchor tracker.

    Defaults match the behaviour editors and agents rely on; the CLI and the
    MCP server override individual fields per call.
    """

    store_dir: str = Field(default=".vscode", min_length=1)
    store_filename: str = Field(default="agent-notes.json", pattern=r"^[^/\\]+\.json$")
    backup_suffix: str = Field(default=".backup.json", pattern=r"^\..+\.json$")

    fuzzy_threshold: float = Field(
        default=0.5, ge=0.0, le=1.0, description="Minimum similarity to accept a re-anchor"
    )
    match_distance: int = Field(
        default=1000,
        ge=0,
        description="How far (in characters) from the seed a match may drift before it is "
        "scored as a full mismatch",
    )

    write_debounce_seconds: float = Field(default=0.3, gt=0.0)
    backup_interval_seconds: float = Field(default=30.0, ge=0.0)
    lock_timeout_seconds: float = Field(default=5.0, gt=0.0)

    context_lines: int = Field(default=3, ge=0)

    @property
    def store_relpath(self) -> str:
        """Workspace-relative POSIX path of the store file."""
        return f"{self.store_dir}/{self.store_filename}"

    @property
    def backup_filename(self) -> str:
        return self.store_filename.removesuffix(".json") + self.backup_suffix


DEFAULT_CONFIG = NotesConfig()
