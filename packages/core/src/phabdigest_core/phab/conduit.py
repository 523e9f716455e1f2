"""Token-authenticated Conduit API client.

Conduit methods are called with a form-encoded POST carrying ``api.token``.
Every answer has the shape ``{"result": ..., "error_code": ..., "error_info": ...}``;
a non-null ``error_code`` is raised as ConduitError.
"""

from __future__ import annotations

import logging
from typing import Any

import requests

from phabdigest_core.errors import ConduitError, NetworkError
from phabdigest_core.models import InlineComment, Revision, Transaction, TransactionKind

logger = logging.getLogger(__name__)

USER_AGENT = "phabdigest (+https://github.com/padenot/phab-comments-to-md)"

_ACTION_TYPES = {
    "accept",
    "reject",
    "request-changes",
    "request-review",
    "resign",
    "abandon",
    "reclaim",
    "reopen",
    "plan-changes",
    "commandeer",
    "close",
}

_PAGE_LIMIT = 100


class ConduitClient:
    def __init__(self, base_url: str, api_token: str, timeout: float = 30, session: requests.Session | None = None):
        self.base_url = base_url.rstrip("/")
        self._token = api_token
        self._timeout = timeout
        self._session = session or requests.Session()
        self._session.headers.setdefault("User-Agent", USER_AGENT)

    def call(self, method: str, params: dict[str, Any] | None = None) -> Any:
        """Invoke a Conduit method and return its ``result`` member."""
        url = f"{self.base_url}/api/{method}"
        form = {"api.token": self._token, **(params or {})}
        logger.debug("Conduit %s %s", method, {k: v for k, v in form.items() if k != "api.token"})
        try:
            response = self._session.post(url, data=form, timeout=self._timeout)
            response.raise_for_status()
            data = response.json()
        except requests.RequestException as e:
            raise NetworkError(f"{method} failed: {e}") from e
        except ValueError as e:
            raise NetworkError(f"{method} returned a non-JSON body: {e}") from e

        if data.get("error_code"):
            raise ConduitError(method, data["error_code"], data.get("error_info"))
        return data.get("result")

    # ------------------------------------------------------------------ #
    # Revisions and transactions                                          #
    # ------------------------------------------------------------------ #

    def get_revision(self, revision_id: int) -> Revision:
        result = self.call("differential.revision.search", {"constraints[ids][0]": revision_id})
        data = (result or {}).get("data") or []
        if not data:
            raise NetworkError(f"Revision D{revision_id} not found on {self.base_url}.")
        return Revision(id=revision_id, base_url=self.base_url, phid=data[0]["phid"])

    def get_transactions(self, object_phid: str) -> list[dict]:
        """Return every raw transaction of ``object_phid``, following the paging cursor."""
        transactions: list[dict] = []
        after: str | None = None
        while True:
            params: dict[str, Any] = {"objectIdentifier": object_phid, "limit": _PAGE_LIMIT}
            if after:
                params["after"] = after
            result = self.call("transaction.search", params) or {}
            transactions.extend(result.get("data") or [])
            after = (result.get("cursor") or {}).get("after")
            if not after:
                break
        logger.info("Fetched %d transaction(s) for %s", len(transactions), object_phid)
        return transactions

    # ------------------------------------------------------------------ #
    # Users                                                                #
    # ------------------------------------------------------------------ #

    def resolve_users(self, phids: list[str], cache: dict[str, str]) -> dict[str, str]:
        """Fill ``cache`` with display names for every PHID not already in it.

        User names are cosmetic: a failed lookup is logged and the PHID itself
        is cached as the display name.
        """
        missing = sorted({p for p in phids if p and p not in cache})
        if not missing:
            return cache
        params = {f"constraints[phids][{i}]": phid for i, phid in enumerate(missing)}
        try:
            result = self.call("user.search", params) or {}
        except NetworkError as e:
            logger.warning("Could not resolve user names: %s", e)
            result = {}
        for user in result.get("data") or []:
            phid = user.get("phid")
            if phid:
                cache[phid] = display_name(user.get("fields") or {}, phid)
        for phid in missing:
            cache.setdefault(phid, phid)
        return cache

    # ------------------------------------------------------------------ #
    # Changesets                                                           #
    # ------------------------------------------------------------------ #

    def get_changeset_refs(self, diff_ids: list[int]) -> dict[int, dict[str, str]]:
        """Map each diff id to ``{file path: changeset id}``.

        The changeset id is the ``ref`` the rendering endpoint expects. Returns
        an empty mapping when the (deprecated) querydiffs method is unavailable,
        leaving the caller to scrape refs from the revision page.
        """
        if not diff_ids:
            return {}
        params = {f"ids[{i}]": diff_id for i, diff_id in enumerate(sorted(set(diff_ids)))}
        try:
            result = self.call("differential.querydiffs", params) or {}
        except NetworkError as e:
            logger.warning("differential.querydiffs failed, changeset refs unknown: %s", e)
            return {}

        refs: dict[int, dict[str, str]] = {}
        for key, diff in result.items():
            paths: dict[str, str] = {}
            for changeset in diff.get("changesets") or []:
                path = changeset.get("currentPath") or changeset.get("filename") or changeset.get("oldPath")
                if path and changeset.get("id") is not None:
                    paths[path] = str(changeset["id"])
            refs[int(diff.get("id") or key)] = paths
        return refs


def display_name(fields: dict, fallback: str) -> str:
    real_name = fields.get("realName") or ""
    username = fields.get("username") or ""
    if real_name and username:
        return f"{real_name} ({username})"
    return real_name or username or fallback


def _as_int(value: Any, default: int | None = None) -> int | None:
    try:
        return int(value)
    except (TypeError, ValueError):
        return default


def _diff_id(fields: dict) -> int | None:
    diff = fields.get("diff")
    if isinstance(diff, dict):
        return _as_int(diff.get("id"))
    return _as_int(diff)


def parse_transactions(raw: list[dict]) -> list[Transaction]:
    """Flatten transaction.search data into one Transaction per comment.

    Inline transactions become InlineComment records. Review actions are kept
    even without a comment so the action itself can be reported. Removed
    comments are skipped.
    """
    transactions: list[Transaction] = []
    for item in raw:
        tx_type = item.get("type") or ""
        tx_id = _as_int(item.get("id"), 0)
        author = item.get("authorPHID") or "unknown"
        timestamp = _as_int(item.get("dateCreated"), 0)
        fields = item.get("fields") or {}
        comments = [c for c in item.get("comments") or [] if not c.get("removed")]

        if tx_type == "comment":
            for c in comments:
                transactions.append(
                    Transaction(
                        transaction_id=tx_id,
                        kind=TransactionKind.GENERAL,
                        author_phid=author,
                        timestamp=timestamp,
                        text=(c.get("content") or {}).get("raw") or "",
                        comment_id=_as_int(c.get("id")),
                    )
                )
        elif tx_type == "inline":
            for c in comments:
                transactions.append(
                    InlineComment(
                        transaction_id=tx_id,
                        kind=TransactionKind.INLINE,
                        author_phid=author,
                        timestamp=timestamp,
                        text=(c.get("content") or {}).get("raw") or "",
                        comment_id=_as_int(c.get("id")),
                        path=fields.get("path") or "",
                        line=_as_int(fields.get("line"), 0),
                        length=_as_int(fields.get("length"), 1) or 1,
                        diff_id=_diff_id(fields),
                        done=bool(fields.get("isDone")),
                    )
                )
        elif tx_type in _ACTION_TYPES:
            text = "\n\n".join((c.get("content") or {}).get("raw") or "" for c in comments).strip()
            transactions.append(
                Transaction(
                    transaction_id=tx_id,
                    kind=TransactionKind.ACTION,
                    author_phid=author,
                    timestamp=timestamp,
                    text=text,
                    action=tx_type,
                )
            )
    return transactions
