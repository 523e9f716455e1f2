"""Abstract cookie source interface.

The changeset endpoint needs a logged-in browser session. Any source of
session cookies (a browser profile, a manually supplied string) implements
this interface so the CLI can chain them without knowing where cookies live.
"""

from __future__ import annotations

from abc import ABC, abstractmethod


class CookieStoreError(Exception):
    """A cookie database exists but could not be read, even from a copy."""


class LockContentionError(CookieStoreError):
    """The cookie database is locked by a running browser."""


class BaseCookieStore(ABC):
    """Pluggable source of session cookies for one domain."""

    @abstractmethod
    def load(self, domain: str) -> dict[str, str] | None:
        """Return ``{name: value}`` for cookies valid on ``domain``.

        Returns None when this source has no matching cookies.
        """

    def close(self) -> None:
        """Release any resources held by the store.

        Optional — subclasses that need cleanup should override this.
        """
