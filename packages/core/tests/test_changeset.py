"""Tests for the cookie-authenticated changeset fetcher and its cache."""

import threading
from unittest.mock import MagicMock

import pytest
import requests

from phabdigest_core.errors import AuthError, NetworkError, ParseError
from phabdigest_core.models import ChangesetFragment
from phabdigest_core.phab.changeset import (
    ChangesetCache,
    ChangesetFetcher,
    cookie_header,
    extract_csrf_token,
    extract_ref_parameters,
    score_response,
)

REVISION_PAGE = '<form><input type="hidden" name="__csrf__" value="B@csrf123" /></form> ref=8450617'


def _text_response(text):
    resp = MagicMock()
    resp.text = text
    return resp


def _fetcher(post_body='for (;;);{"error":null,"payload":{"changeset":"<div>diff</div>"}}'):
    session = MagicMock()
    session.get.return_value = _text_response(REVISION_PAGE)
    session.post.return_value = _text_response(post_body)
    fetcher = ChangesetFetcher("https://phab.example", 123, "phsid=abc; phusr=bob", session=session)
    return fetcher, session


# ---------------------------------------------------------------------------
# Page scraping helpers
# ---------------------------------------------------------------------------


class TestHelpers:
    def test_cookie_header(self):
        assert cookie_header({"phsid": "abc", "phusr": "bob"}) == "phsid=abc; phusr=bob"

    def test_csrf_from_form(self):
        assert extract_csrf_token(REVISION_PAGE) == "B@csrf123"

    def test_csrf_from_js_config(self):
        assert extract_csrf_token('{"csrf":{"current":"B@js456"}}') == "B@js456"

    def test_csrf_missing(self):
        assert extract_csrf_token("<html></html>") is None

    def test_refs_deduplicated_in_page_order(self):
        assert extract_ref_parameters("ref=222 x ref=111 y ref=222") == ["222", "111"]

    def test_refs_from_json(self):
        assert extract_ref_parameters('{"ref":"333"}') == ["333"]

    def test_score_prefers_suggestion_text(self):
        assert score_response("suggestionText inline-suggestion-view") > score_response("inline-suggestion-view")
        assert score_response("nothing here") == 0


# ---------------------------------------------------------------------------
# ChangesetFetcher
# ---------------------------------------------------------------------------


class TestChangesetFetcher:
    def test_requires_cookies(self):
        with pytest.raises(AuthError):
            ChangesetFetcher("https://phab.example", 123, "")

    def test_fetch_posts_workflow_form(self):
        fetcher, session = _fetcher()

        fragment = fetcher.fetch("8450617")

        assert fragment.ref == "8450617"
        assert fragment.html == "<div>diff</div>"
        url = session.post.call_args.args[0]
        kwargs = session.post.call_args.kwargs
        assert url == "https://phab.example/differential/changeset/"
        assert kwargs["data"]["ref"] == "8450617"
        assert kwargs["data"]["__ajax__"] == "true"
        assert kwargs["headers"]["X-Phabricator-Csrf"] == "B@csrf123"
        assert kwargs["headers"]["X-Phabricator-Via"] == "/D123"
        assert kwargs["headers"]["Cookie"] == "phsid=abc; phusr=bob"

    def test_revision_page_fetched_once(self):
        fetcher, session = _fetcher()

        fetcher.fetch("1")
        fetcher.fetch("2")
        fetcher.page_refs()

        session.get.assert_called_once()

    def test_body_without_html_raises_parse_error(self):
        fetcher, _ = _fetcher('for (;;);{"error":null,"payload":{}}')

        with pytest.raises(ParseError):
            fetcher.fetch("1")

    def test_malformed_body_raises_parse_error(self):
        fetcher, _ = _fetcher("for (;;);<html>Login required</html>")

        with pytest.raises(ParseError):
            fetcher.fetch("1")

    def test_http_failure_raises_network_error(self):
        fetcher, session = _fetcher()
        session.post.return_value.raise_for_status.side_effect = requests.HTTPError("500 Server Error")

        with pytest.raises(NetworkError):
            fetcher.fetch("1")

    def test_page_refs(self):
        fetcher, _ = _fetcher()

        assert fetcher.page_refs() == ["8450617"]


# ---------------------------------------------------------------------------
# ChangesetCache
# ---------------------------------------------------------------------------


class TestChangesetCache:
    def test_single_fetch_per_ref(self):
        release = threading.Event()
        fetcher = MagicMock()

        def slow_fetch(ref):
            release.wait(timeout=5)
            return ChangesetFragment(ref=ref, html="<div></div>")

        fetcher.fetch.side_effect = slow_fetch
        cache = ChangesetCache(fetcher, max_workers=4)
        try:
            first = cache.submit("42")
            second = cache.submit("42")
            release.set()
            fragments = cache.wait_all()
        finally:
            cache.close()

        assert first is second
        fetcher.fetch.assert_called_once_with("42")
        assert fragments["42"].ref == "42"

    def test_parse_error_cached_as_none(self):
        fetcher = MagicMock()
        fetcher.fetch.side_effect = ParseError("no html")
        cache = ChangesetCache(fetcher)
        try:
            assert cache.get("1") is None
            assert cache.get("1") is None
        finally:
            cache.close()

        fetcher.fetch.assert_called_once_with("1")

    def test_network_error_propagates(self):
        fetcher = MagicMock()
        fetcher.fetch.side_effect = NetworkError("boom")
        cache = ChangesetCache(fetcher)
        try:
            cache.prefetch(["1"])
            with pytest.raises(NetworkError):
                cache.wait_all()
        finally:
            cache.close()

    def test_best_of_picks_suggestion_bearing_fragment(self):
        fetcher = MagicMock()
        fetcher.fetch.side_effect = lambda ref: ChangesetFragment(
            ref=ref,
            html="",
            payload={"changeset": '<div class="inline-suggestion-view"></div>'} if ref == "2" else {"changeset": ""},
        )
        cache = ChangesetCache(fetcher)
        try:
            best = cache.best_of(["1", "2", "3"])
        finally:
            cache.close()

        assert best.ref == "2"

    def test_best_of_without_markers(self):
        fetcher = MagicMock()
        fetcher.fetch.side_effect = lambda ref: ChangesetFragment(ref=ref, html="", payload={})
        cache = ChangesetCache(fetcher)
        try:
            assert cache.best_of(["1"]) is None
        finally:
            cache.close()
