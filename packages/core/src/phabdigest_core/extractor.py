"""Top-level orchestration: Conduit → changesets → suggestions → Document.

CommentExtractor owns the run-scoped state (the user-name cache and the
changeset fragment cache) and hands it to each component explicitly.
"""

from __future__ import annotations

import logging
from collections.abc import Callable

from bs4 import BeautifulSoup

from phabdigest_core.errors import AuthError
from phabdigest_core.models import ChangesetFragment, Document, InlineComment, Revision, SuggestionDiff
from phabdigest_core.phab.changeset import ChangesetCache, ChangesetFetcher
from phabdigest_core.phab.conduit import ConduitClient, parse_transactions
from phabdigest_core.pipeline import build_document
from phabdigest_core.suggestions import extract_suggestion, match_anchor, parse_fragment

logger = logging.getLogger(__name__)


class CommentExtractor:
    def __init__(
        self,
        client: ConduitClient,
        cookies: str | None = None,
        include_done: bool = False,
        max_workers: int = 4,
        timeout: float = 30,
        fetch_suggestions: bool = True,
        on_progress: Callable[[str], None] | None = None,
    ):
        self.client = client
        self.cookies = cookies
        self.include_done = include_done
        self.max_workers = max_workers
        self.timeout = timeout
        self.fetch_suggestions = fetch_suggestions
        self.user_cache: dict[str, str] = {}
        self._on_progress = on_progress

    def _progress(self, message: str) -> None:
        logger.debug(message)
        if self._on_progress is not None:
            self._on_progress(message)

    def run(self, revision_id: int) -> Document:
        """Extract and reconcile every comment of revision ``revision_id``.

        Any failure to resolve the revision or its transactions aborts before
        a single changeset is requested.
        """
        self._progress(f"Resolving D{revision_id}...")
        revision = self.client.get_revision(revision_id)

        self._progress("Fetching transactions...")
        transactions = parse_transactions(self.client.get_transactions(revision.phid))

        self._progress("Resolving authors...")
        self.client.resolve_users([tx.author_phid for tx in transactions], self.user_cache)

        suggestions: dict[int, SuggestionDiff] = {}
        if self.fetch_suggestions:
            inline = [tx for tx in transactions if isinstance(tx, InlineComment)]
            suggestions = self.resolve_suggestions(revision, inline)

        self._progress("Building document...")
        return build_document(
            revision,
            transactions,
            suggestions=suggestions,
            include_done=self.include_done,
            authors=self.user_cache,
        )

    def resolve_suggestions(self, revision: Revision, comments: list[InlineComment]) -> dict[int, SuggestionDiff]:
        """Scrape changeset fragments and extract one suggestion per inline comment."""
        wanted = [c for c in comments if c.comment_id is not None and (self.include_done or not c.done)]
        if not wanted:
            return {}

        try:
            fetcher = ChangesetFetcher(
                revision.base_url, revision.id, self.cookies or "", timeout=self.timeout
            )
        except AuthError as e:
            logger.warning("%s Set PHABRICATOR_COOKIES or log in with Firefox.", e)
            return {}

        refs_by_diff = self.client.get_changeset_refs([c.diff_id for c in wanted if c.diff_id is not None])
        comment_refs: dict[int, str | None] = {
            c.comment_id: c.changeset_ref or refs_by_diff.get(c.diff_id, {}).get(c.path) for c in wanted
        }

        cache = ChangesetCache(fetcher, max_workers=self.max_workers)
        try:
            refs = sorted({ref for ref in comment_refs.values() if ref})
            self._progress(f"Fetching {len(refs)} changeset(s)...")
            cache.prefetch(refs)
            fragments = cache.wait_all()

            fallback: ChangesetFragment | None = None
            if any(ref is None for ref in comment_refs.values()):
                page_refs = fetcher.page_refs()
                logger.info("Scraping %d ref(s) from the revision page for unmapped comments", len(page_refs))
                fallback = cache.best_of(page_refs) if page_refs else None
        finally:
            cache.close()

        self._progress("Extracting suggestions...")
        parsed: dict[str, BeautifulSoup | None] = {}
        suggestions: dict[int, SuggestionDiff] = {}
        for comment in wanted:
            ref = comment_refs[comment.comment_id]
            fragment = fragments.get(ref) if ref else fallback
            if fragment is None:
                continue
            if fragment.ref not in parsed:
                parsed[fragment.ref] = parse_fragment(fragment.html)
            outcome = extract_suggestion(
                parsed[fragment.ref],
                comment.comment_id,
                self.include_done,
                line=comment.line,
                payload=fragment.payload,
                # A fallback fragment may render another file: only an exact anchor is trusted there.
                strategies=None if ref else [match_anchor],
            )
            logger.debug("Comment %s: %s", comment.comment_id, outcome.method.value)
            if outcome.diff is not None:
                suggestions[comment.comment_id] = outcome.diff
        return suggestions
