"""Review data models.

Plain dataclasses shared by the Conduit client, the suggestion extractor and
the formatting pipeline. Only InlineComment carries mutable state: its
suggestion is attached once the changeset fragment has been scraped.
"""

from __future__ import annotations

import enum
from dataclasses import dataclass, field
from typing import Any


class TransactionKind(str, enum.Enum):
    GENERAL = "general"
    INLINE = "inline"
    ACTION = "action"
    OTHER = "other"


class DiffMarker(str, enum.Enum):
    REMOVED = "removed"
    ADDED = "added"


class ExtractionMethod(str, enum.Enum):
    """How a suggestion was located, highest priority first."""

    DETERMINISTIC = "deterministic"
    HEURISTIC = "heuristic"
    RAW_TEXT = "raw_text"
    SUPPRESSED = "suppressed"
    NONE = "none"

    @property
    def rank(self) -> int:
        return _METHOD_RANK[self]


_METHOD_RANK = {
    ExtractionMethod.DETERMINISTIC: 3,
    ExtractionMethod.HEURISTIC: 2,
    ExtractionMethod.RAW_TEXT: 1,
    ExtractionMethod.SUPPRESSED: 0,
    ExtractionMethod.NONE: 0,
}


@dataclass(frozen=True)
class Revision:
    id: int
    base_url: str
    phid: str

    @property
    def url(self) -> str:
        return f"{self.base_url}/D{self.id}"


@dataclass(frozen=True)
class DiffLine:
    marker: DiffMarker
    text: str


@dataclass
class SuggestionDiff:
    """Reconstructed code suggestion, in table row order."""

    lines: list[DiffLine] = field(default_factory=list)
    method: ExtractionMethod = ExtractionMethod.DETERMINISTIC

    def __bool__(self) -> bool:
        return bool(self.lines)

    def to_text(self) -> str:
        if self.method is ExtractionMethod.RAW_TEXT:
            return "\n".join(line.text for line in self.lines)
        prefix = {DiffMarker.REMOVED: "-", DiffMarker.ADDED: "+"}
        return "\n".join(f"{prefix[line.marker]} {line.text}" for line in self.lines)


@dataclass
class Transaction:
    """One comment-bearing event reported by transaction.search."""

    transaction_id: int
    kind: TransactionKind
    author_phid: str
    timestamp: int
    text: str = ""
    comment_id: int | None = None
    action: str | None = None


@dataclass
class InlineComment(Transaction):
    path: str = ""
    line: int = 0
    length: int = 1
    diff_id: int | None = None
    changeset_ref: str | None = None
    done: bool = False
    suggestion: SuggestionDiff | None = None

    @property
    def line_range(self) -> str:
        if self.length > 1:
            return f"Line {self.line}-{self.line + self.length - 1}"
        return f"Line {self.line}"

    def attach_suggestion(self, diff: SuggestionDiff | None) -> bool:
        """Attach ``diff`` unless a suggestion of equal or higher priority is already set.

        Returns True when the suggestion was attached.
        """
        if not diff:
            return False
        if self.suggestion is not None and self.suggestion.method.rank >= diff.method.rank:
            return False
        self.suggestion = diff
        return True


@dataclass
class ChangesetFragment:
    """Rendered HTML for one file's diff, as returned by /differential/changeset/."""

    ref: str
    html: str
    payload: dict[str, Any] = field(default_factory=dict)


@dataclass
class ExtractionOutcome:
    method: ExtractionMethod
    diff: SuggestionDiff | None = None

    @property
    def resolved(self) -> bool:
        return self.diff is not None


@dataclass
class Document:
    """Reconciled review, ready for rendering."""

    revision: Revision
    general: list[Transaction] = field(default_factory=list)
    files: dict[str, list[InlineComment]] = field(default_factory=dict)
    actions: list[Transaction] = field(default_factory=list)
    authors: dict[str, str] = field(default_factory=dict)

    def author(self, phid: str) -> str:
        return self.authors.get(phid, phid)
