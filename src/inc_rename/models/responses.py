from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict, List, Optional
from urllib.parse import unquote, urlparse


class SessionState(str, Enum):
    """Lifecycle states of a preview session."""

    IDLE = "idle"
    FETCH_PENDING = "fetch_pending"
    READY = "ready"
    ERRORED = "errored"


# Positions
@dataclass(frozen=True)
class TextPosition:
    """Position of the symbol being renamed (0-indexed line and column)."""

    document_id: str
    line: int
    column: int

    def to_lsp(self) -> Dict[str, Any]:
        return {"line": self.line, "character": self.column}


@dataclass(frozen=True)
class Location:
    """A reference to the symbol, as reported by the language server."""

    document_id: str
    start_line: int
    start_column: int
    end_line: int
    end_column: int

    @property
    def is_single_line(self) -> bool:
        return self.start_line == self.end_line

    @property
    def line_number(self) -> int:
        return self.start_line

    @classmethod
    def from_lsp(cls, location: Dict[str, Any]) -> Optional["Location"]:
        """Build a Location from an LSP Location or LocationLink dict.

        Returns None when the dict carries no uri or range.
        """
        uri = location.get("uri") or location.get("targetUri")
        range_data = location.get("range") or location.get("targetRange")
        if not uri or not range_data:
            return None

        start = range_data["start"]
        end = range_data["end"]
        return cls(
            document_id=uri_to_document_id(uri),
            start_line=start["line"],
            start_column=start["character"],
            end_line=end["line"],
            end_column=end["character"],
        )


def uri_to_document_id(uri: str) -> str:
    """Convert a file:// URI to a filesystem path; other values pass through."""
    if uri.startswith("file://"):
        return unquote(urlparse(uri).path)
    return uri


# Line index
@dataclass(frozen=True)
class LineOccurrence:
    start_column: int
    end_column: int

    @property
    def length(self) -> int:
        return self.end_column - self.start_column


@dataclass
class CachedLine:
    """Snapshot of one line's original text plus the occurrences on it."""

    text: str
    occurrences: List[LineOccurrence] = field(default_factory=list)


# document_id -> line number -> cached line
LineIndex = Dict[str, Dict[int, CachedLine]]


# Rendering
@dataclass(frozen=True)
class HighlightSpan:
    start: int
    end: int


@dataclass
class LinePreview:
    document_id: str
    line_number: int
    original_text: str
    new_text: str
    highlights: List[HighlightSpan] = field(default_factory=list)


@dataclass
class RenderResult:
    """Everything needed to redraw the affected lines for one candidate name."""

    new_name: str
    lines: List[LinePreview] = field(default_factory=list)

    @property
    def affected_files(self) -> int:
        return len({line.document_id for line in self.lines})

    @property
    def total_occurrences(self) -> int:
        return sum(len(line.highlights) for line in self.lines)

    @property
    def is_empty(self) -> bool:
        return not self.lines


# Commit
@dataclass
class RenameOutcome:
    """Result of committing a rename."""

    success: bool
    message: str
    level: int
    changed_instances: int = 0
    changed_files: int = 0
    error_kind: Optional[str] = None  # ErrorKind value when success is False
    workspace_edit: Optional[Dict[str, Any]] = None


__all__ = [
    "SessionState",
    "TextPosition",
    "Location",
    "uri_to_document_id",
    "LineOccurrence",
    "CachedLine",
    "LineIndex",
    "HighlightSpan",
    "LinePreview",
    "RenderResult",
    "RenameOutcome",
]
