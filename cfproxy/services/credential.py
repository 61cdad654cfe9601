"""
Credential service - captures the upstream's auth cookie and holds it for replay.
"""
from __future__ import annotations

import threading
from dataclasses import dataclass, field
from typing import Any, Dict, Iterable, Optional

import httpx

from cfproxy.logging import get_logger
from cfproxy.services.resolver import DEFAULT_COOKIE_NAME, CapturePolicy

logger = get_logger(__name__)


@dataclass(frozen=True)
class CapturedCookie:
    """A cookie as received from the upstream."""
    name: str
    value: str
    attributes: Dict[str, Any] = field(default_factory=dict)

    def as_pair(self) -> str:
        """Render as a Cookie request header pair."""
        return f"{self.name}={self.value}"


# Characters that cannot appear in a cookie name (RFC 6265 token)
_NAME_SEPARATORS = frozenset('()<>@,;:\\"/[]?={} \t')


def parse_set_cookie(raw: str) -> Optional[CapturedCookie]:
    """
    Parse one Set-Cookie header value.

    The first `;`-separated segment is the name=value pair; every later segment
    is an attribute, kept whether or not it is one we know. Attribute names are
    lowercased and flags without a value are stored as True.

    Returns:
        The cookie, or None if the header has no usable name=value pair
    """
    parts = [part.strip() for part in raw.split(";")]
    if "=" not in parts[0]:
        return None

    name, value = parts[0].split("=", 1)
    name = name.strip()
    if not name or any(ch in _NAME_SEPARATORS or not ch.isprintable() for ch in name):
        return None
    value = value.strip()
    if len(value) > 1 and value[0] == value[-1] == '"':
        value = value[1:-1]

    attributes: Dict[str, Any] = {}
    for part in parts[1:]:
        if not part:
            continue
        if "=" in part:
            key, attr_value = part.split("=", 1)
            attributes[key.strip().lower()] = attr_value.strip()
        else:
            attributes[part.lower()] = True
    return CapturedCookie(name=name, value=value, attributes=attributes)


def find_cookie(set_cookie_headers: Iterable[str], name: str) -> Optional[CapturedCookie]:
    """
    Find the first cookie called `name` among raw Set-Cookie header values.

    Malformed headers are skipped rather than raising.
    """
    for raw in set_cookie_headers:
        cookie = parse_set_cookie(raw)
        if cookie is None:
            logger.debug(f"Ignoring malformed Set-Cookie header: {raw!r}")
            continue
        if cookie.name == name:
            return cookie
    return None


class CredentialStore:
    """
    Thread-safe holder for the single captured credential cookie.

    Reads return the whole held reference; captures run under a lock so
    concurrent responses cannot interleave their check-and-set.
    """

    def __init__(
        self,
        cookie_name: str = DEFAULT_COOKIE_NAME,
        policy: CapturePolicy = CapturePolicy.ONCE,
    ):
        self.cookie_name = cookie_name
        self.policy = CapturePolicy(policy)
        self._cookie: Optional[CapturedCookie] = None
        self._lock = threading.Lock()

    @property
    def cookie(self) -> Optional[CapturedCookie]:
        return self._cookie

    def offer(self, cookie: CapturedCookie) -> bool:
        """
        Offer a newly seen cookie to the store.

        Returns:
            True if the cookie was adopted
        """
        with self._lock:
            current = self._cookie
            if current is not None:
                if self.policy is CapturePolicy.ONCE or current.value == cookie.value:
                    return False
            self._cookie = cookie
        logger.info(f"Captured {cookie.name} cookie ({'refreshed' if current else 'new'})")
        return True

    async def capture(self, response: httpx.Response) -> None:
        """httpx response hook: adopt the credential cookie if the response sets one."""
        if self.policy is CapturePolicy.ONCE and self._cookie is not None:
            return
        try:
            cookie = find_cookie(response.headers.get_list("set-cookie"), self.cookie_name)
        except Exception as e:
            logger.warning(f"Cookie capture failed: {e}")
            return
        if cookie is not None:
            self.offer(cookie)
