"""Cookie-authenticated access to Phabricator's changeset rendering endpoint.

Suggestions are rendered client-side, so the only place they exist in a
machine-readable form is the AJAX response of /differential/changeset/. That
endpoint is not covered by API tokens: it needs a browser session (phsid /
phusr cookies) plus the CSRF token embedded in the revision page.
"""

from __future__ import annotations

import logging
import re
import threading
from concurrent.futures import Future, ThreadPoolExecutor

import requests

from phabdigest_core.errors import AuthError, NetworkError, ParseError
from phabdigest_core.models import ChangesetFragment
from phabdigest_core.utils.response import decode_ajax_response

logger = logging.getLogger(__name__)

BROWSER_USER_AGENT = "Mozilla/5.0 (X11; Linux x86_64; rv:142.0) Gecko/20100101 Firefox/142.0"

_CSRF_PATTERNS = [
    re.compile(r'__csrf__.*?value="([^"]+)"', re.DOTALL),
    re.compile(r'"current":"([^"]+)"'),
]

_REF_PATTERNS = [
    re.compile(r"ref=(\d+)"),
    re.compile(r'"ref":"(\d+)"'),
    re.compile(r"'ref':\s*'(\d+)'"),
    re.compile(r"\bC(\d{7,8})[ON]L\d+"),
]

# Used to rank candidate responses when refs could not be mapped to files.
_SUGGESTION_MARKERS = (("suggestionText", 100), ("inline-suggestion-view", 10), ("differential-inline-comment", 1))


def cookie_header(cookies: dict[str, str]) -> str:
    return "; ".join(f"{name}={value}" for name, value in cookies.items())


def extract_csrf_token(html: str) -> str | None:
    for pattern in _CSRF_PATTERNS:
        match = pattern.search(html)
        if match:
            return match.group(1)
    return None


def extract_ref_parameters(html: str) -> list[str]:
    """Collect changeset ``ref`` values mentioned in a revision page, in page order."""
    refs: list[str] = []
    for pattern in _REF_PATTERNS:
        for value in pattern.findall(html):
            if value not in refs:
                refs.append(value)
        if refs:
            break
    return refs


def score_response(body: str) -> int:
    return sum(weight for marker, weight in _SUGGESTION_MARKERS if marker in body)


class ChangesetFetcher:
    """Fetches changeset fragments for one revision using a browser session."""

    def __init__(
        self,
        base_url: str,
        revision_id: int,
        cookies: str,
        timeout: float = 30,
        session: requests.Session | None = None,
    ):
        if not cookies:
            raise AuthError("No Phabricator session cookies available; suggestions cannot be fetched.")
        self.base_url = base_url.rstrip("/")
        self.revision_id = revision_id
        self._cookies = cookies
        self._timeout = timeout
        self._session = session or requests.Session()
        self._csrf_token: str | None = None
        self._page: str | None = None
        self._lock = threading.Lock()

    @property
    def revision_path(self) -> str:
        return f"/D{self.revision_id}"

    def _get(self, url: str) -> str:
        try:
            response = self._session.get(
                url,
                headers={"Cookie": self._cookies, "User-Agent": BROWSER_USER_AGENT},
                timeout=self._timeout,
            )
            response.raise_for_status()
        except requests.RequestException as e:
            raise NetworkError(f"GET {url} failed: {e}") from e
        return response.text

    def revision_page(self) -> str:
        with self._lock:
            if self._page is None:
                self._page = self._get(f"{self.base_url}{self.revision_path}")
            return self._page

    def csrf_token(self) -> str:
        if self._csrf_token is None:
            token = extract_csrf_token(self.revision_page())
            if token is None:
                # Phabricator rejects the request later if the session really lacks a token.
                logger.warning("No CSRF token found on %s; the session may have expired.", self.revision_path)
                token = ""
            self._csrf_token = token
        return self._csrf_token

    def fetch_raw(self, ref: str) -> str:
        """POST the changeset workflow for ``ref`` and return the prefixed body."""
        headers = {
            "User-Agent": BROWSER_USER_AGENT,
            "Accept": "*/*",
            "Cookie": self._cookies,
            "Origin": self.base_url,
            "X-Phabricator-Csrf": self.csrf_token(),
            "X-Phabricator-Via": self.revision_path,
        }
        form = {
            "ref": ref,
            "device": "2up",
            "__wflow__": "true",
            "__ajax__": "true",
            "__metablock__": "2",
        }
        url = f"{self.base_url}/differential/changeset/"
        try:
            response = self._session.post(url, data=form, headers=headers, timeout=self._timeout)
            response.raise_for_status()
        except requests.RequestException as e:
            raise NetworkError(f"Changeset {ref} could not be fetched: {e}") from e
        return response.text

    def fetch(self, ref: str) -> ChangesetFragment:
        """Fetch and decode one changeset. Raises ParseError for an undecodable body."""
        body = self.fetch_raw(ref)
        data = decode_ajax_response(body)
        payload = data.get("payload") or {}
        html = payload.get("changeset") if isinstance(payload, dict) else None
        if not isinstance(html, str):
            raise ParseError(f"Changeset {ref} response has no rendered HTML")
        return ChangesetFragment(ref=ref, html=html, payload=payload)

    def page_refs(self) -> list[str]:
        return extract_ref_parameters(self.revision_page())


class ChangesetCache:
    """Run-scoped fragment cache with one in-flight fetch per changeset ref.

    ``submit`` is append-on-miss: the first caller for a ref schedules the
    fetch, later callers join the same future. A fragment that failed to
    decode is cached as None so its comments stay unresolved.
    """

    def __init__(self, fetcher: ChangesetFetcher, max_workers: int = 4):
        self._fetcher = fetcher
        self._executor = ThreadPoolExecutor(max_workers=max(1, max_workers), thread_name_prefix="changeset")
        self._futures: dict[str, Future] = {}
        self._lock = threading.Lock()

    def _load(self, ref: str) -> ChangesetFragment | None:
        try:
            fragment = self._fetcher.fetch(ref)
        except ParseError as e:
            logger.warning("Changeset %s: %s", ref, e)
            return None
        logger.debug("Changeset %s fetched (%d bytes of HTML)", ref, len(fragment.html))
        return fragment

    def submit(self, ref: str) -> Future:
        with self._lock:
            future = self._futures.get(ref)
            if future is None:
                future = self._executor.submit(self._load, ref)
                self._futures[ref] = future
            return future

    def prefetch(self, refs) -> None:
        for ref in refs:
            self.submit(ref)

    def get(self, ref: str) -> ChangesetFragment | None:
        """Block until ``ref`` is available. NetworkError propagates to the caller."""
        return self.submit(ref).result()

    def wait_all(self) -> dict[str, ChangesetFragment | None]:
        """Wait for every scheduled fetch; the first NetworkError is re-raised."""
        with self._lock:
            pending = dict(self._futures)
        return {ref: future.result() for ref, future in pending.items()}

    def best_of(self, refs: list[str]) -> ChangesetFragment | None:
        """Pick the fetched fragment most likely to carry suggestions."""
        self.prefetch(refs)
        best: ChangesetFragment | None = None
        best_score = 0
        for ref in refs:
            fragment = self.get(ref)
            if fragment is None:
                continue
            # The payload repr covers both the rendered HTML and the JS metadata.
            score = score_response(str(fragment.payload))
            if score > best_score:
                best, best_score = fragment, score
        return best

    def close(self) -> None:
        self._executor.shutdown(wait=True, cancel_futures=True)
