from __future__ import annotations

import re
from urllib.parse import urlparse

_REVISION_URL_RE = re.compile(r"/D(\d+)(?:[?#/]|$)")
_REVISION_ID_RE = re.compile(r"^[Dd]?(\d+)$")


def parse_revision_url(url: str) -> tuple[str, int]:
    """Split ``https://host/D12345`` into ``("https://host", 12345)``."""
    parsed = urlparse(url)
    if not parsed.scheme or not parsed.netloc:
        raise ValueError(f"Not an absolute URL: {url!r}")
    match = _REVISION_URL_RE.search(parsed.path)
    if not match:
        raise ValueError(f"Could not find a D<number> revision in {url!r}")
    return f"{parsed.scheme}://{parsed.netloc}", int(match.group(1))


def parse_revision_id(value: str) -> int:
    """Accept ``12345`` as well as ``D12345``."""
    match = _REVISION_ID_RE.match(value.strip())
    if not match:
        raise ValueError(f"Invalid revision id: {value!r}")
    return int(match.group(1))


def cookie_domain(base_url: str) -> str:
    return urlparse(base_url).hostname or ""
