"""FirefoxCookieStore — session cookies read from a Firefox profile.

Firefox keeps cookies in ``<profile>/cookies.sqlite`` (table ``moz_cookies``)
and holds an exclusive lock on it while the browser runs. When the read-only
open reports the database as locked, the file is copied to a temporary
location and read from there; the copy is always removed afterwards.
"""

from __future__ import annotations

import logging
import os
import shutil
import sqlite3
import tempfile
import time
from pathlib import Path

from phabdigest_store.base import BaseCookieStore, CookieStoreError, LockContentionError
from phabdigest_store.models import Cookie, Profile
from phabdigest_store.profiles import find_profiles, select_profile

logger = logging.getLogger(__name__)

_QUERY = "SELECT host, name, value, expiry FROM moz_cookies"

# Recent Firefox releases store expiry in milliseconds.
_MILLISECOND_THRESHOLD = 100_000_000_000

_LOCKED_MESSAGES = ("database is locked", "database disk image is malformed")


def _normalise_expiry(expiry) -> int:
    expiry = int(expiry or 0)
    if expiry > _MILLISECOND_THRESHOLD:
        return expiry // 1000
    return expiry


def _query(db_path: Path, read_only: bool = True) -> list[Cookie]:
    uri = Path(db_path).resolve().as_uri()
    if read_only:
        uri += "?mode=ro"
    try:
        conn = sqlite3.connect(uri, uri=True)
        try:
            rows = conn.execute(_QUERY).fetchall()
        finally:
            conn.close()
    except sqlite3.OperationalError as e:
        if any(msg in str(e) for msg in _LOCKED_MESSAGES):
            raise LockContentionError(str(e)) from e
        raise CookieStoreError(f"{db_path}: {e}") from e
    except sqlite3.Error as e:
        raise CookieStoreError(f"{db_path}: {e}") from e
    return [Cookie(host=r[0], name=r[1], value=r[2], expiry=_normalise_expiry(r[3])) for r in rows]


def _query_snapshot(db_path: Path, snapshot_dir: str | None = None) -> list[Cookie]:
    fd, name = tempfile.mkstemp(prefix="phabdigest-cookies-", suffix=".sqlite", dir=snapshot_dir)
    os.close(fd)
    snapshot = Path(name)
    side_files = [Path(f"{snapshot}-wal"), Path(f"{snapshot}-shm"), Path(f"{snapshot}-journal")]
    try:
        try:
            shutil.copyfile(db_path, snapshot)
            wal = Path(f"{db_path}-wal")
            if wal.is_file():
                shutil.copyfile(wal, side_files[0])
        except OSError as e:
            raise CookieStoreError(f"Could not copy locked cookie database {db_path}: {e}") from e
        # The snapshot is ours, so it may be opened read-write to replay the WAL.
        return _query(snapshot, read_only=False)
    finally:
        for path in (snapshot, *side_files):
            path.unlink(missing_ok=True)


def read_cookie_db(
    db_path: Path,
    domain: str,
    now: float | None = None,
    snapshot_dir: str | None = None,
) -> list[Cookie]:
    """Return unexpired cookies from ``db_path`` whose host matches ``domain``."""
    now = time.time() if now is None else now
    try:
        cookies = _query(db_path)
    except LockContentionError as e:
        logger.debug("%s is locked (%s); reading from a snapshot", db_path, e)
        try:
            cookies = _query_snapshot(db_path, snapshot_dir)
        except LockContentionError as copy_error:
            raise CookieStoreError(f"Snapshot of {db_path} unreadable: {copy_error}") from copy_error
    return [c for c in cookies if c.matches(domain) and not c.is_expired(now)]


class FirefoxCookieStore(BaseCookieStore):
    """Reads cookies from the most recently used Firefox profile that has them.

    ``roots`` overrides the per-OS profile directories (used by tests and by
    users with a non-standard Firefox installation).
    """

    def __init__(self, roots: list[Path] | None = None, snapshot_dir: str | None = None):
        self._roots = roots
        self._snapshot_dir = snapshot_dir
        self.selected: Profile | None = None

    def scan(self, domain: str) -> list[Profile]:
        """Read every profile, attaching its matching cookies. Unreadable profiles are skipped."""
        profiles = find_profiles(self._roots)
        for profile in profiles:
            try:
                profile.cookies = read_cookie_db(profile.cookie_db, domain, snapshot_dir=self._snapshot_dir)
            except CookieStoreError as e:
                logger.warning("Skipping Firefox profile %s: %s", profile.path.name, e)
        return profiles

    def load(self, domain: str) -> dict[str, str] | None:
        self.selected = select_profile(self.scan(domain))
        if self.selected is None:
            logger.info("No Firefox profile has cookies for %s", domain)
            return None
        logger.info("Using cookies from Firefox profile %s", self.selected.path.name)
        return self.selected.as_dict()
