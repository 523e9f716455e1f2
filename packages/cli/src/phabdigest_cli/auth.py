"""Conduit API token resolution with Arcanist fallback.

Resolution order (stops at first success):
  1. PHABRICATOR_TOKEN environment variable (CI / explicit override)
  2. ~/.arcrc — the token `arc install-certificate` stored for this host
"""

from __future__ import annotations

import json
import logging
import os
from pathlib import Path

logger = logging.getLogger(__name__)


def arcrc_path() -> Path:
    if os.name == "nt":
        return Path(os.environ.get("APPDATA", "~")).expanduser() / ".arcrc"
    return Path("~/.arcrc").expanduser()


def _token_from_arcrc(base_url: str, path: Path) -> str | None:
    try:
        data = json.loads(path.read_text())
    except FileNotFoundError:
        return None
    except (OSError, json.JSONDecodeError) as e:
        logger.warning("Ignoring unreadable %s: %s", path, e)
        return None

    hosts = data.get("hosts") or {}
    base = base_url.rstrip("/")
    for key in (f"{base}/api/", f"{base}/api", f"{base}/"):
        token = (hosts.get(key) or {}).get("token")
        if token:
            return token
    return None


def resolve_api_token(base_url: str, arcrc: Path | None = None) -> str | None:
    """Return a Conduit token or None if no valid source is available.

    Never raises — callers should check for None and emit a UsageError.
    """
    token = os.environ.get("PHABRICATOR_TOKEN")
    if token:
        return token

    token = _token_from_arcrc(base_url, arcrc or arcrc_path())
    if token:
        logger.debug("Resolved Conduit token from Arcanist configuration.")
    return token
