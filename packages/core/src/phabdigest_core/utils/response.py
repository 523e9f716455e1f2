"""Helpers for Phabricator's AJAX response bodies.

Every workflow response is prefixed with ``for (;;);`` so that the body cannot
be evaluated as a script by a third-party page (JSON hijacking guard).
"""

from __future__ import annotations

import json
from typing import Any

from phabdigest_core.errors import ParseError

SECURITY_PREFIX = "for (;;);"


def strip_security_prefix(body: str | bytes) -> str:
    """Return ``body`` without the anti-hijacking prefix.

    Safe to apply to a body that was already stripped.
    """
    if isinstance(body, bytes):
        body = body.decode("utf-8", errors="replace")
    if body.startswith(SECURITY_PREFIX):
        return body[len(SECURITY_PREFIX) :]
    return body


def decode_ajax_response(body: str | bytes) -> dict[str, Any]:
    """Strip the prefix and decode the JSON envelope ``{error, payload}``."""
    text = strip_security_prefix(body)
    try:
        data = json.loads(text)
    except json.JSONDecodeError as e:
        raise ParseError(f"Malformed JSON in AJAX response: {e}") from e
    if not isinstance(data, dict):
        raise ParseError(f"Expected a JSON object, got {type(data).__name__}")
    if data.get("error"):
        raise ParseError(f"Phabricator returned an error: {data['error']}")
    return data


def find_suggestion_text(value: Any, comment_id: int | None = None) -> str | None:
    """Search a decoded payload for a non-empty ``suggestionText`` string.

    An object whose ``id`` matches ``comment_id`` wins. Text tagged with a
    different id belongs to another comment and is never returned for this
    one. When no value is tagged at all, the first in traversal order is
    returned.
    """
    found: list[tuple[Any, str]] = []
    _collect_suggestion_text(value, found)
    if not found:
        return None
    if comment_id is None:
        return found[0][1]
    for owner_id, text in found:
        if owner_id is not None and str(owner_id) == str(comment_id):
            return text
    if any(owner_id is not None for owner_id, _ in found):
        return None
    return found[0][1]


def _collect_suggestion_text(value: Any, found: list[tuple[Any, str]]) -> None:
    if isinstance(value, dict):
        text = value.get("suggestionText")
        if isinstance(text, str) and text.strip():
            found.append((value.get("id"), text))
        for child in value.values():
            _collect_suggestion_text(child, found)
    elif isinstance(value, list):
        for child in value:
            _collect_suggestion_text(child, found)
