"""Reconciliation and Markdown rendering of review comments."""

from __future__ import annotations

import logging
from datetime import datetime, timezone

from phabdigest_core.models import Document, InlineComment, Revision, SuggestionDiff, Transaction, TransactionKind

logger = logging.getLogger(__name__)

DONE_MARKER = "[DONE]"
EMPTY_COMMENT = "*[Empty comment]*"
EMPTY_INLINE_COMMENT = (
    "*[Empty inline comment - likely contains a code suggestion that cannot be extracted via API]*"
)

_ACTION_LABELS = {
    "accept": "Accepted",
    "reject": "Rejected",
    "request-changes": "Requested changes",
    "request-review": "Requested review",
    "resign": "Resigned",
    "abandon": "Abandoned",
    "reclaim": "Reclaimed",
    "reopen": "Reopened",
    "plan-changes": "Planned changes",
    "commandeer": "Commandeered",
    "close": "Closed",
}


def _sort_key(tx: Transaction) -> tuple[int, int]:
    return (tx.timestamp, tx.comment_id if tx.comment_id is not None else -1)


def format_timestamp(timestamp: int) -> str:
    return datetime.fromtimestamp(timestamp, tz=timezone.utc).strftime("%Y-%m-%d %H:%M:%S")


def partition(
    transactions: list[Transaction],
) -> tuple[list[Transaction], list[InlineComment], list[Transaction]]:
    """Split into (general, inline, actions), dropping repeated comment ids.

    The first occurrence of a comment id wins, and an id already reported as
    an inline comment is never repeated as a general comment.
    """
    inline_ids = {tx.comment_id for tx in transactions if isinstance(tx, InlineComment) and tx.comment_id is not None}
    seen: set[tuple[str, int]] = set()
    general: list[Transaction] = []
    inline: list[InlineComment] = []
    actions: list[Transaction] = []

    for tx in transactions:
        if tx.kind is TransactionKind.ACTION:
            actions.append(tx)
            continue
        if tx.comment_id is not None:
            key = (tx.kind.value, tx.comment_id)
            if key in seen:
                logger.debug("Dropping duplicate %s comment %s", tx.kind.value, tx.comment_id)
                continue
            seen.add(key)
        if isinstance(tx, InlineComment):
            inline.append(tx)
        elif tx.kind is TransactionKind.GENERAL:
            if tx.comment_id in inline_ids:
                continue
            general.append(tx)
    return general, inline, actions


def build_document(
    revision: Revision,
    transactions: list[Transaction],
    suggestions: dict[int, SuggestionDiff] | None = None,
    include_done: bool = False,
    authors: dict[str, str] | None = None,
) -> Document:
    """Merge, filter and order comments into a Document."""
    general, inline, actions = partition(transactions)
    suggestions = suggestions or {}

    files: dict[str, list[InlineComment]] = {}
    for comment in inline:
        if comment.comment_id in suggestions:
            comment.attach_suggestion(suggestions[comment.comment_id])
        if comment.done and not include_done:
            continue
        files.setdefault(comment.path, []).append(comment)

    return Document(
        revision=revision,
        general=sorted(general, key=_sort_key),
        files={path: sorted(files[path], key=_sort_key) for path in sorted(files)},
        actions=sorted(actions, key=_sort_key),
        authors=dict(authors or {}),
    )


def _render_suggestion(diff: SuggestionDiff) -> list[str]:
    return ["**Suggested change:**", "", "```diff", diff.to_text(), "```"]


def render_markdown(document: Document, show_actions: bool = False) -> str:
    lines = [f"# Phabricator Review Comments - {document.revision.url}", ""]

    if document.general:
        lines += ["## General Comments", ""]
        for comment in document.general:
            lines.append(
                f"### Comment by {document.author(comment.author_phid)} ({format_timestamp(comment.timestamp)})"
            )
            lines += ["", comment.text or EMPTY_COMMENT, "", "---", ""]

    if document.files:
        lines += ["## Inline Comments", ""]
        for path, comments in document.files.items():
            lines += [f"### File: `{path}`", ""]
            for comment in comments:
                done = f" {DONE_MARKER}" if comment.done else ""
                lines.append(
                    f"#### {comment.line_range} - {document.author(comment.author_phid)} "
                    f"({format_timestamp(comment.timestamp)}){done}"
                )
                lines.append("")
                if comment.text:
                    lines.append(comment.text)
                elif comment.suggestion is None:
                    lines.append(EMPTY_INLINE_COMMENT)
                if comment.suggestion is not None:
                    if comment.text:
                        lines.append("")
                    lines += _render_suggestion(comment.suggestion)
                lines += ["", "---", ""]

    if show_actions and document.actions:
        lines += ["## Review Actions", ""]
        for action in document.actions:
            label = _ACTION_LABELS.get(action.action or "", action.action or "Action")
            lines.append(
                f"- **{label}** by {document.author(action.author_phid)} ({format_timestamp(action.timestamp)})"
            )
            if action.text:
                lines += ["", *(f"  > {line}" if line else "  >" for line in action.text.splitlines())]
        lines.append("")

    return "\n".join(lines)
