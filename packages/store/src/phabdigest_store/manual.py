"""Manual cookie override — the fallback when no browser profile has a session.

Accepts the ``name1=value1; name2=value2`` form a user can copy from the
browser's developer tools into PHABRICATOR_COOKIES or ``--cookies``.
"""

from __future__ import annotations

import logging

from phabdigest_store.base import BaseCookieStore

logger = logging.getLogger(__name__)

SESSION_COOKIES = ("phsid", "phusr")


def parse_cookie_string(value: str) -> dict[str, str]:
    cookies: dict[str, str] = {}
    for pair in value.split(";"):
        name, sep, cookie_value = pair.strip().partition("=")
        if sep and name.strip():
            cookies[name.strip()] = cookie_value.strip()
    return cookies


class ManualCookieStore(BaseCookieStore):
    """Serves a fixed set of cookies for any domain."""

    def __init__(self, cookie_string: str):
        self._cookies = parse_cookie_string(cookie_string or "")

    def load(self, domain: str) -> dict[str, str] | None:
        if not self._cookies:
            return None
        missing = [name for name in SESSION_COOKIES if name not in self._cookies]
        if missing:
            logger.warning("Manual cookies lack %s; Phabricator will likely reject them.", ", ".join(missing))
        return dict(self._cookies)
