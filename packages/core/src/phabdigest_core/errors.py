"""Error taxonomy shared by the core package.

NetworkError aborts the run. AuthError only disables suggestion scraping.
ParseError is scoped to the single response that failed to decode.
Markup mismatches are not errors at all: the suggestion extractor resolves
them through its fallback chain and never raises for markup shape.
"""

from __future__ import annotations


class PhabdigestError(Exception):
    """Base class for every error raised deliberately by phabdigest."""


class NetworkError(PhabdigestError):
    """A Conduit call or changeset fetch could not be completed."""


class ConduitError(NetworkError):
    """Conduit answered, but with an ``error_code``."""

    def __init__(self, method: str, code: str, info: str | None = None):
        self.method = method
        self.code = code
        self.info = info or ""
        super().__init__(f"{method}: {code} - {self.info}".rstrip(" -"))


class AuthError(PhabdigestError):
    """No usable session cookies: suggestions cannot be scraped."""


class ParseError(PhabdigestError):
    """A response body could not be decoded after prefix stripping."""
