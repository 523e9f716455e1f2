from __future__ import annotations

import logging

from phabdigest_store.base import BaseCookieStore
from phabdigest_store.firefox import FirefoxCookieStore
from phabdigest_store.manual import ManualCookieStore

logger = logging.getLogger(__name__)


def resolve_cookies(
    domain: str,
    override: str | None = None,
    stores: list[BaseCookieStore] | None = None,
) -> dict[str, str] | None:
    """Return session cookies for ``domain``, or None when nothing is available.

    Automatic sources are tried first; the manual ``override`` string is only
    used when none of them has cookies for the domain.
    """
    for store in stores if stores is not None else [FirefoxCookieStore()]:
        try:
            cookies = store.load(domain)
        finally:
            store.close()
        if cookies:
            return cookies

    if override:
        logger.info("No browser cookies for %s; using the manually supplied cookies", domain)
        return ManualCookieStore(override).load(domain)
    return None
