"""Firefox profile discovery.

Profile roots per operating system are plain data: adding a layout means
adding a template, not a branch.
"""

from __future__ import annotations

import logging
import os
import sys
from pathlib import Path

from phabdigest_store.models import Profile

logger = logging.getLogger(__name__)

COOKIE_DB_NAME = "cookies.sqlite"

PROFILE_ROOTS: dict[str, list[str]] = {
    "linux": [
        "~/.mozilla/firefox",
        "~/snap/firefox/common/.mozilla/firefox",
        "~/.var/app/org.mozilla.firefox/.mozilla/firefox",
    ],
    "darwin": [
        "~/Library/Application Support/Firefox/Profiles",
    ],
    "win32": [
        "$APPDATA/Mozilla/Firefox/Profiles",
    ],
}


def platform_key(platform: str | None = None) -> str:
    platform = platform or sys.platform
    if platform.startswith("linux") or platform.startswith("freebsd"):
        return "linux"
    if platform in ("win32", "cygwin"):
        return "win32"
    return platform


def profile_roots(platform: str | None = None) -> list[Path]:
    templates = PROFILE_ROOTS.get(platform_key(platform), [])
    return [Path(os.path.expanduser(os.path.expandvars(t))) for t in templates]


def find_profiles(roots: list[Path] | None = None) -> list[Profile]:
    """Return every profile holding a cookie database, most recently modified first."""
    profiles: list[Profile] = []
    for root in roots if roots is not None else profile_roots():
        try:
            if not root.is_dir():
                continue
            entries = list(root.iterdir())
        except OSError as e:
            logger.warning("Skipping Firefox profile directory %s: %s", root, e)
            continue
        for entry in entries:
            db = entry / COOKIE_DB_NAME
            try:
                if entry.is_dir() and db.is_file():
                    profiles.append(Profile(path=entry, mtime=db.stat().st_mtime))
            except OSError as e:
                logger.warning("Skipping Firefox profile %s: %s", entry.name, e)
    profiles.sort(key=lambda p: p.mtime, reverse=True)
    logger.debug("Found %d Firefox profile(s) with cookies", len(profiles))
    return profiles


def select_profile(profiles: list[Profile]) -> Profile | None:
    """Most recently modified profile that yielded at least one matching cookie."""
    candidates = [p for p in profiles if p.cookies]
    if not candidates:
        return None
    return max(candidates, key=lambda p: p.mtime)
