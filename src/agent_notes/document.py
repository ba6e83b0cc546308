"""Document snapshots and edit events consumed by the anchor tracker.

Hosts (editor extensions, watchers, tests) translate their own change
notifications into DocumentChangeEvent values: the post-edit document plus the
batch of changes, each expressed in pre-edit coordinates.
"""

from bisect import bisect_right
from typing import NamedTuple


class Position(NamedTuple):
    """Zero-based line and character."""

    line: int
    character: int


class TextRange(NamedTuple):
    start: Position
    end: Position

    @classmethod
    def from_lines(
        cls, start_line: int, start_character: int, end_line: int, end_character: int
    ) -> "TextRange":
        return cls(Position(start_line, start_character), Position(end_line, end_character))


class ContentChange(NamedTuple):
    """One replacement: ``range`` (pre-edit coordinates) is replaced by ``text``."""

    range: TextRange
    text: str

    @property
    def added_lines(self) -> int:
        """Line breaks inserted by the replacement text."""
        return self.text.count("\n")

    @property
    def removed_lines(self) -> int:
        """Line breaks removed with the replaced range."""
        return self.range.end.line - self.range.start.line

    @property
    def line_delta(self) -> int:
        return self.added_lines - self.removed_lines


class TextDocument:
    """Immutable snapshot of a text document with offset/position mapping.

    Lines end at ``\\n``; a preceding ``\\r`` belongs to the line break, not
    to the line text. Positions and offsets outside the document are clamped,
    the way editor buffers treat them.
    """

    def __init__(self, uri: str, text: str) -> None:
        """Initialize the snapshot.

        Args:
            uri: Workspace-relative POSIX path of the document
            text: Full document text
        """
        self.uri = uri
        self.text = text
        self._line_starts = [0]
        for idx, char in enumerate(text):
            if char == "\n":
                self._line_starts.append(idx + 1)

    @property
    def line_count(self) -> int:
        return len(self._line_starts)

    def _line_bounds(self, line: int) -> tuple[int, int]:
        """Start offset and end offset (excluding the line break) of a line."""
        start = self._line_starts[line]
        if line + 1 < len(self._line_starts):
            end = self._line_starts[line + 1] - 1
            if end > start and self.text[end - 1] == "\r":
                end -= 1
        else:
            end = len(self.text)
        return start, end

    def line_at(self, line: int) -> str:
        """Text of a line without its line break."""
        start, end = self._line_bounds(line)
        return self.text[start:end]

    def offset_at(self, position: Position) -> int:
        """Character offset of a position."""
        if position.line < 0:
            return 0
        if position.line >= self.line_count:
            return len(self.text)
        start, end = self._line_bounds(position.line)
        return start + max(0, min(position.character, end - start))

    def position_at(self, offset: int) -> Position:
        """Position of a character offset."""
        offset = max(0, min(offset, len(self.text)))
        line = bisect_right(self._line_starts, offset) - 1
        start, end = self._line_bounds(line)
        return Position(line, min(offset, end) - start)

    def get_text(self, text_range: TextRange | None = None) -> str:
        if text_range is None:
            return self.text
        return self.text[self.offset_at(text_range.start) : self.offset_at(text_range.end)]

    def apply_changes(self, changes: list[ContentChange]) -> "DocumentChangeEvent":
        """Apply a batch of non-overlapping changes given in this document's coordinates.

        Returns:
            The event describing the edit, carrying the new document
        """
        spans = sorted(
            ((self.offset_at(c.range.start), self.offset_at(c.range.end), c.text) for c in changes),
            reverse=True,
        )
        text = self.text
        for start, end, replacement in spans:
            text = text[:start] + replacement + text[end:]
        return DocumentChangeEvent(TextDocument(self.uri, text), list(changes))


class DocumentChangeEvent(NamedTuple):
    """A batch of changes to one document, delivered in arrival order."""

    document: TextDocument
    changes: list[ContentChange]
