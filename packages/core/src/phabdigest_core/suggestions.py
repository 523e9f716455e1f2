"""Locate and reconstruct code suggestions in a rendered changeset fragment.

Phabricator does not expose suggestion diffs through Conduit: the suggested
code only exists in the HTML produced by /differential/changeset/. Each inline
comment is rendered as

    <a name="inline-4481240" id="inline-4481240"></a>
    <div class="differential-inline-comment [inline-is-done]">
      ...
      <div class="inline-suggestion-view"><table>...</table></div>
    </div>

Strategies are tried in priority order and the first one that yields an
outcome wins:

    anchor match  →  nearest-line heuristic  →  raw suggestionText  →  none

The anchor match is exact. The other two are approximations kept for markup
where the anchor is missing; they can misattribute suggestions when several
comments sit on neighbouring lines.
"""

from __future__ import annotations

import logging
import re
from collections.abc import Callable
from dataclasses import dataclass
from typing import Any

from bs4 import BeautifulSoup, Tag
from bs4.builder import ParserRejectedMarkup

from phabdigest_core.models import DiffLine, DiffMarker, ExtractionMethod, ExtractionOutcome, SuggestionDiff
from phabdigest_core.utils.response import find_suggestion_text

logger = logging.getLogger(__name__)

PARSER = "html.parser"

_CONTAINER_CLASS = "differential-inline-comment"
_DONE_CLASS = "inline-is-done"
_SUGGESTION_CLASS = "inline-suggestion-view"
_ANCHOR_PREFIX = "inline-"

_OLD_CELL_CLASSES = frozenset({"old", "left", "diff-old"})
_NEW_CELL_CLASSES = frozenset({"new", "right", "diff-new"})

# Phabricator line cells carry ids such as C8450617OL12 / C8450617NL12.
_LINE_CELL_ID_RE = re.compile(r"^C\d+[ON]L(\d+)$")


@dataclass
class _Target:
    soup: BeautifulSoup | None
    comment_id: int
    include_done: bool
    line: int | None
    payload: dict[str, Any] | None


def parse_fragment(html: str) -> BeautifulSoup | None:
    """Parse changeset HTML, returning None when the parser rejects it outright."""
    try:
        return BeautifulSoup(html, PARSER)
    except ParserRejectedMarkup as e:
        logger.debug("Changeset markup rejected by parser: %s", e)
        return None


def _classes(tag: Tag) -> set[str]:
    value = tag.get("class") or []
    if isinstance(value, str):
        value = value.split()
    return set(value)


def _is_container(tag: Tag) -> bool:
    return isinstance(tag, Tag) and _CONTAINER_CLASS in _classes(tag)


def _is_inline_anchor(tag: Tag) -> bool:
    return isinstance(tag, Tag) and _anchor_id(tag) is not None


def _is_done(tag: Tag) -> bool:
    if _DONE_CLASS in _classes(tag):
        return True
    return any(_DONE_CLASS in _classes(parent) for parent in tag.parents if isinstance(parent, Tag))


# --------------------------------------------------------------------------- #
# Table parsing                                                                 #
# --------------------------------------------------------------------------- #


def _cell_text(cell: Tag | None, marker: str) -> str:
    if cell is None:
        return ""
    text = cell.get_text().strip("\r\n").rstrip()
    if text.strip() == marker:
        return ""
    if text.startswith(marker + " "):
        text = text[len(marker) + 1 :]
    return text if text.strip() else ""


def _find_cell(row: Tag, wanted: frozenset[str]) -> Tag | None:
    for cell in row.find_all("td"):
        if _classes(cell) & wanted:
            return cell
    return None


def parse_suggestion_table(table: Tag) -> list[DiffLine]:
    """Turn a suggestion table into removed/added lines.

    A row counts as removed when only its old-side cell has content, added
    when only its new-side cell has content, and is skipped otherwise.
    """
    lines: list[DiffLine] = []
    for row in table.find_all("tr"):
        old = _cell_text(_find_cell(row, _OLD_CELL_CLASSES), "-")
        new = _cell_text(_find_cell(row, _NEW_CELL_CLASSES), "+")
        if old and not new:
            lines.append(DiffLine(DiffMarker.REMOVED, old))
        elif new and not old:
            lines.append(DiffLine(DiffMarker.ADDED, new))
    return lines


def _diff_from_view(view: Tag, method: ExtractionMethod) -> SuggestionDiff | None:
    table = view.find("table")
    if table is None:
        return None
    lines = parse_suggestion_table(table)
    if not lines:
        return None
    return SuggestionDiff(lines=lines, method=method)


# --------------------------------------------------------------------------- #
# Strategies                                                                   #
# --------------------------------------------------------------------------- #


def _find_container(anchor: Tag) -> Tag | None:
    for parent in anchor.parents:
        if _is_container(parent):
            return parent
    following = anchor.find_next(_is_container)
    if following is None:
        return None
    # The next container belongs to whichever anchor precedes it most closely.
    if following.find_previous(_is_inline_anchor) is not anchor:
        return None
    return following


def _anchor_id(anchor: Tag) -> int | None:
    for attr in ("id", "name"):
        value = anchor.get(attr)
        if isinstance(value, str) and value.startswith(_ANCHOR_PREFIX) and value[len(_ANCHOR_PREFIX) :].isdigit():
            return int(value[len(_ANCHOR_PREFIX) :])
    return None


def _owner_id(view: Tag) -> int | None:
    """Comment id of the anchored container holding ``view``, if any."""
    container = next((p for p in view.parents if _is_container(p)), None)
    if container is None:
        return None
    anchor = container.find(_is_inline_anchor) or container.find_previous(_is_inline_anchor)
    if anchor is None or _find_container(anchor) is not container:
        return None
    return _anchor_id(anchor)


def match_anchor(target: _Target) -> ExtractionOutcome | None:
    if target.soup is None:
        return None
    key = f"{_ANCHOR_PREFIX}{target.comment_id}"
    anchor = target.soup.find(lambda tag: tag.get("id") == key or tag.get("name") == key)
    if anchor is None:
        return None
    container = _find_container(anchor)
    if container is None:
        logger.debug("Anchor %s has no comment container", key)
        return None
    if not target.include_done and _is_done(container):
        return ExtractionOutcome(ExtractionMethod.SUPPRESSED)
    view = container.find(class_=_SUGGESTION_CLASS)
    if view is None:
        return ExtractionOutcome(ExtractionMethod.NONE)
    diff = _diff_from_view(view, ExtractionMethod.DETERMINISTIC)
    if diff is None:
        return ExtractionOutcome(ExtractionMethod.NONE)
    return ExtractionOutcome(ExtractionMethod.DETERMINISTIC, diff)


def _line_marker_value(tag: Tag) -> int | None:
    if not isinstance(tag, Tag):
        return None
    data_n = tag.get("data-n")
    if isinstance(data_n, str) and data_n.isdigit():
        return int(data_n)
    tag_id = tag.get("id")
    if isinstance(tag_id, str):
        match = _LINE_CELL_ID_RE.match(tag_id)
        if match:
            return int(match.group(1))
    if tag.name == "th":
        text = tag.get_text().strip()
        if text.isdigit():
            return int(text)
    return None


def nearest_line_marker(view: Tag) -> int | None:
    """Line number of the closest line marker preceding ``view`` in the document."""
    marker = view.find_previous(lambda tag: _line_marker_value(tag) is not None)
    if marker is None:
        return None
    return _line_marker_value(marker)


def match_nearest_line(target: _Target) -> ExtractionOutcome | None:
    if target.soup is None or not target.line:
        return None
    best: tuple[int, int, SuggestionDiff] | None = None
    for position, view in enumerate(target.soup.find_all(class_=_SUGGESTION_CLASS)):
        if not target.include_done and _is_done(view):
            continue
        owner = _owner_id(view)
        if owner is not None and owner != target.comment_id:
            continue
        line = nearest_line_marker(view)
        if line is None:
            continue
        diff = _diff_from_view(view, ExtractionMethod.HEURISTIC)
        if diff is None:
            continue
        candidate = (abs(line - target.line), position, diff)
        if best is None or candidate[:2] < best[:2]:
            best = candidate
    if best is None:
        return None
    logger.debug("Comment %s matched by line proximity (distance %d)", target.comment_id, best[0])
    return ExtractionOutcome(ExtractionMethod.HEURISTIC, best[2])


def match_raw_text(target: _Target) -> ExtractionOutcome | None:
    if not target.payload:
        return None
    text = find_suggestion_text(target.payload, target.comment_id)
    if text is None:
        return None
    diff = SuggestionDiff(lines=[DiffLine(DiffMarker.ADDED, text.strip("\n"))], method=ExtractionMethod.RAW_TEXT)
    return ExtractionOutcome(ExtractionMethod.RAW_TEXT, diff)


STRATEGIES: list[Callable[[_Target], ExtractionOutcome | None]] = [
    match_anchor,
    match_nearest_line,
    match_raw_text,
]


def extract_suggestion(
    html: str | BeautifulSoup | None,
    comment_id: int,
    include_done: bool = False,
    *,
    line: int | None = None,
    payload: dict[str, Any] | None = None,
    strategies: list[Callable[[_Target], ExtractionOutcome | None]] | None = None,
) -> ExtractionOutcome:
    """Resolve the suggestion rendered for ``comment_id``.

    ``html`` may be the raw fragment or an already parsed document; callers
    matching many comments against one fragment should parse it once with
    parse_fragment(). ``line`` feeds the proximity fallback and ``payload``
    (the decoded AJAX payload) the suggestionText fallback. ``strategies``
    narrows the chain, e.g. to ``[match_anchor]`` for a fragment that may
    belong to another file.

    Never raises for markup reasons: a SUPPRESSED or NONE outcome carries no
    diff.
    """
    soup = parse_fragment(html) if isinstance(html, str) else html
    target = _Target(soup=soup, comment_id=comment_id, include_done=include_done, line=line, payload=payload)
    for strategy in STRATEGIES if strategies is None else strategies:
        outcome = strategy(target)
        if outcome is not None:
            return outcome
    return ExtractionOutcome(ExtractionMethod.NONE)
