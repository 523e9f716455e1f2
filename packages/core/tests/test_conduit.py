"""Tests for the Conduit client and transaction parsing."""

from unittest.mock import MagicMock

import pytest
import requests

from phabdigest_core.errors import ConduitError, NetworkError
from phabdigest_core.models import InlineComment, TransactionKind
from phabdigest_core.phab.conduit import ConduitClient, display_name, parse_transactions


def _response(result=None, error_code=None, error_info=None):
    resp = MagicMock()
    resp.json.return_value = {"result": result, "error_code": error_code, "error_info": error_info}
    return resp


def _client(*responses):
    session = MagicMock()
    session.headers = {}
    session.post.side_effect = list(responses)
    return ConduitClient("https://phab.example/", "api-secret", session=session), session


def _raw_inline(tx_id=10, comment_id=4481240, path="dom/media/Foo.cpp", line=42, done=False, removed=False):
    return {
        "id": tx_id,
        "type": "inline",
        "authorPHID": "PHID-USER-b",
        "dateCreated": 1700000000,
        "comments": [{"id": comment_id, "removed": removed, "content": {"raw": "Use bar() here."}}],
        "fields": {"diff": {"id": 900, "phid": "PHID-DIFF-1"}, "path": path, "line": line, "length": 2,
                   "isDone": done},
    }


# ---------------------------------------------------------------------------
# ConduitClient.call
# ---------------------------------------------------------------------------


class TestCall:
    def test_posts_token_and_returns_result(self):
        client, session = _client(_response(result={"ok": True}))

        assert client.call("conduit.ping", {"a": 1}) == {"ok": True}

        url = session.post.call_args.args[0]
        form = session.post.call_args.kwargs["data"]
        assert url == "https://phab.example/api/conduit.ping"
        assert form["api.token"] == "api-secret"
        assert form["a"] == 1

    def test_error_code_raises_conduit_error(self):
        client, _ = _client(_response(error_code="ERR-INVALID-AUTH", error_info="Token is invalid."))

        with pytest.raises(ConduitError) as exc_info:
            client.call("user.whoami")

        assert exc_info.value.code == "ERR-INVALID-AUTH"
        assert "Token is invalid." in str(exc_info.value)

    def test_transport_failure_raises_network_error(self):
        client, _ = _client(requests.ConnectionError("connection refused"))

        with pytest.raises(NetworkError, match="connection refused"):
            client.call("user.whoami")

    def test_non_json_body_raises_network_error(self):
        resp = MagicMock()
        resp.json.side_effect = ValueError("Expecting value")
        client, _ = _client(resp)

        with pytest.raises(NetworkError):
            client.call("user.whoami")


# ---------------------------------------------------------------------------
# Revisions, transactions, users, changesets
# ---------------------------------------------------------------------------


class TestQueries:
    def test_get_revision(self):
        client, session = _client(_response(result={"data": [{"id": 123, "phid": "PHID-DREV-1"}]}))

        revision = client.get_revision(123)

        assert revision.phid == "PHID-DREV-1"
        assert revision.url == "https://phab.example/D123"
        assert session.post.call_args.kwargs["data"]["constraints[ids][0]"] == 123

    def test_missing_revision_raises(self):
        client, _ = _client(_response(result={"data": []}))

        with pytest.raises(NetworkError, match="D999"):
            client.get_revision(999)

    def test_transactions_follow_cursor(self):
        client, session = _client(
            _response(result={"data": [{"id": 1}], "cursor": {"after": "1"}}),
            _response(result={"data": [{"id": 2}], "cursor": {"after": None}}),
        )

        transactions = client.get_transactions("PHID-DREV-1")

        assert [t["id"] for t in transactions] == [1, 2]
        second_form = session.post.call_args_list[1].kwargs["data"]
        assert second_form["after"] == "1"

    def test_resolve_users_fills_cache(self):
        client, _ = _client(
            _response(result={"data": [{"phid": "PHID-USER-a", "fields": {"username": "alice", "realName": "Alice"}}]})
        )
        cache = {"PHID-USER-known": "Known"}

        client.resolve_users(["PHID-USER-a", "PHID-USER-known", "PHID-USER-gone"], cache)

        assert cache["PHID-USER-a"] == "Alice (alice)"
        assert cache["PHID-USER-gone"] == "PHID-USER-gone"
        assert cache["PHID-USER-known"] == "Known"

    def test_resolve_users_failure_is_cosmetic(self):
        client, _ = _client(requests.Timeout("slow"))
        cache = {}

        client.resolve_users(["PHID-USER-a"], cache)

        assert cache == {"PHID-USER-a": "PHID-USER-a"}

    def test_resolve_users_skips_call_when_cached(self):
        client, session = _client()

        client.resolve_users(["PHID-USER-a"], {"PHID-USER-a": "Alice"})

        session.post.assert_not_called()

    def test_changeset_refs(self):
        client, _ = _client(
            _response(
                result={
                    "900": {
                        "id": "900",
                        "changesets": [
                            {"id": "5551", "currentPath": "dom/media/Foo.cpp"},
                            {"id": "5552", "filename": "dom/media/Bar.h"},
                        ],
                    }
                }
            )
        )

        refs = client.get_changeset_refs([900, 900])

        assert refs == {900: {"dom/media/Foo.cpp": "5551", "dom/media/Bar.h": "5552"}}

    def test_changeset_refs_failure_returns_empty(self):
        client, _ = _client(_response(error_code="ERR-CONDUIT-CORE", error_info="Method disabled"))

        assert client.get_changeset_refs([900]) == {}


# ---------------------------------------------------------------------------
# parse_transactions
# ---------------------------------------------------------------------------


class TestParseTransactions:
    def test_inline_comment(self):
        (comment,) = parse_transactions([_raw_inline()])

        assert isinstance(comment, InlineComment)
        assert comment.comment_id == 4481240
        assert comment.path == "dom/media/Foo.cpp"
        assert comment.line == 42
        assert comment.line_range == "Line 42-43"
        assert comment.diff_id == 900
        assert comment.text == "Use bar() here."

    def test_done_flag(self):
        (comment,) = parse_transactions([_raw_inline(done=True)])

        assert comment.done is True

    def test_removed_comment_skipped(self):
        assert parse_transactions([_raw_inline(removed=True)]) == []

    def test_general_comment(self):
        raw = {
            "id": 3,
            "type": "comment",
            "authorPHID": "PHID-USER-a",
            "dateCreated": 1700000100,
            "comments": [{"id": 77, "content": {"raw": "Thanks!"}}],
            "fields": {},
        }

        (comment,) = parse_transactions([raw])

        assert comment.kind is TransactionKind.GENERAL
        assert comment.comment_id == 77
        assert comment.timestamp == 1700000100

    def test_action_without_comment_kept(self):
        raw = {"id": 4, "type": "accept", "authorPHID": "PHID-USER-a", "dateCreated": 5, "comments": [], "fields": {}}

        (action,) = parse_transactions([raw])

        assert action.kind is TransactionKind.ACTION
        assert action.action == "accept"

    def test_other_types_ignored(self):
        raw = {"id": 5, "type": "title", "authorPHID": "PHID-USER-a", "dateCreated": 5, "comments": [], "fields": {}}

        assert parse_transactions([raw]) == []


class TestDisplayName:
    @pytest.mark.parametrize(
        "fields,expected",
        [
            ({"realName": "Alice", "username": "alice"}, "Alice (alice)"),
            ({"username": "alice"}, "alice"),
            ({}, "PHID-USER-x"),
        ],
    )
    def test_display_name(self, fields, expected):
        assert display_name(fields, "PHID-USER-x") == expected
