"""Cookie data models."""

from __future__ import annotations

from dataclasses import dataclass, field
from pathlib import Path


@dataclass(frozen=True)
class Cookie:
    """One row of Firefox's moz_cookies table."""

    host: str
    name: str
    value: str
    expiry: int  # epoch seconds, 0 for session cookies

    def matches(self, domain: str) -> bool:
        host = self.host.lstrip(".").lower()
        domain = domain.lstrip(".").lower()
        return host == domain or host.endswith("." + domain)

    def is_expired(self, now: float) -> bool:
        return self.expiry != 0 and self.expiry <= now


@dataclass
class Profile:
    """A browser profile directory holding a cookie database."""

    path: Path
    mtime: float
    cookies: list[Cookie] = field(default_factory=list)

    @property
    def cookie_db(self) -> Path:
        return self.path / "cookies.sqlite"

    def as_dict(self) -> dict[str, str]:
        return {c.name: c.value for c in self.cookies}
