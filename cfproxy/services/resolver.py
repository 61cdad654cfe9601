"""
Resolver service - turns startup arguments into an immutable proxy configuration.
"""
from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from types import MappingProxyType
from typing import Dict, Iterable, Mapping, Optional, Tuple
from urllib.parse import urlsplit


DEFAULT_LISTEN_PORT = 8080
DEFAULT_UPSTREAM_TIMEOUT = 30.0
DEFAULT_COOKIE_NAME = "CF_Authorization"

_SUPPORTED_SCHEMES = ("http", "https")


class ConfigurationError(ValueError):
    """Base class for startup configuration problems."""


class InvalidTargetError(ConfigurationError):
    """The upstream target URL is unusable."""


class InvalidHeaderSpecError(ConfigurationError):
    """An extra header spec is not of the form 'Key: Value'."""


class InvalidListenPortError(ConfigurationError):
    """The listen port is outside 1-65535."""


class CapturePolicy(str, Enum):
    """
    How a captured credential cookie is adopted.

    ONCE keeps the first value seen for the lifetime of the process.
    REFRESH replaces the held value whenever the upstream issues a different one.
    """
    ONCE = "once"
    REFRESH = "refresh"


@dataclass(frozen=True)
class ProxyConfig:
    """Resolved configuration for a single upstream."""
    upstream: str
    scheme: str
    host: str
    base_path: str = ""
    base_query: str = ""
    listen_port: int = DEFAULT_LISTEN_PORT
    extra_headers: Mapping[str, str] = field(default_factory=lambda: MappingProxyType({}))
    upstream_timeout: Optional[float] = DEFAULT_UPSTREAM_TIMEOUT
    capture_policy: CapturePolicy = CapturePolicy.ONCE
    cookie_name: str = DEFAULT_COOKIE_NAME


def parse_header_spec(spec: str) -> Tuple[str, str]:
    """
    Split a 'Key: Value' header spec on its first colon.

    Raises:
        InvalidHeaderSpecError: If the spec has no colon or an empty key
    """
    name, sep, value = spec.partition(":")
    if not sep:
        raise InvalidHeaderSpecError(f"Invalid header format (expected 'Key: Value'): {spec!r}")
    name = name.strip()
    if not name:
        raise InvalidHeaderSpecError(f"Header spec has an empty name: {spec!r}")
    return name, value.strip()


def _parse_target(target: str) -> Tuple[str, str, str, str]:
    try:
        parts = urlsplit(target.strip())
        # Accessing port validates it, urlsplit alone does not
        parts.port
    except ValueError as e:
        raise InvalidTargetError(f"Error parsing target URL {target!r}: {e}")

    if not parts.scheme or not parts.netloc:
        raise InvalidTargetError(
            f"Invalid target URL {target!r}, expected the form 'https://<host>'"
        )
    scheme = parts.scheme.lower()
    if scheme not in _SUPPORTED_SCHEMES:
        raise InvalidTargetError(f"Unsupported target URL scheme: {parts.scheme!r}")

    return scheme, parts.netloc, parts.path.rstrip("/"), parts.query


def _collect_headers(header_specs: Iterable[str]) -> Mapping[str, str]:
    # Keyed by lowercase name so a later spec for the same header replaces the earlier one
    headers: Dict[str, Tuple[str, str]] = {}
    for spec in header_specs:
        name, value = parse_header_spec(spec)
        headers[name.lower()] = (name, value)
    return MappingProxyType({name: value for name, value in headers.values()})


def resolve(
    target: str,
    header_specs: Iterable[str] = (),
    listen_port: int = DEFAULT_LISTEN_PORT,
    upstream_timeout: Optional[float] = DEFAULT_UPSTREAM_TIMEOUT,
    capture_policy: CapturePolicy = CapturePolicy.ONCE,
    cookie_name: str = DEFAULT_COOKIE_NAME,
) -> ProxyConfig:
    """
    Resolve startup arguments into a ProxyConfig.

    Args:
        target: Upstream URL, must carry a scheme and a host
        header_specs: Extra headers as 'Key: Value' strings
        listen_port: Port the proxy listens on
        upstream_timeout: Upstream timeout in seconds, None or <= 0 for no timeout
        capture_policy: How the credential cookie is adopted
        cookie_name: Name of the credential cookie to capture

    Returns:
        An immutable ProxyConfig

    Raises:
        InvalidTargetError: If the target is not a usable URL
        InvalidHeaderSpecError: If a header spec is malformed
        InvalidListenPortError: If the port is out of range
    """
    if not target:
        raise InvalidTargetError("No target URL provided")
    scheme, host, base_path, base_query = _parse_target(target)

    if not 1 <= listen_port <= 65535:
        raise InvalidListenPortError(f"Listen port must be between 1 and 65535, got {listen_port}")

    if upstream_timeout is not None and upstream_timeout <= 0:
        upstream_timeout = None

    return ProxyConfig(
        upstream=f"{scheme}://{host}{base_path}",
        scheme=scheme,
        host=host,
        base_path=base_path,
        base_query=base_query,
        listen_port=listen_port,
        extra_headers=_collect_headers(header_specs),
        upstream_timeout=upstream_timeout,
        capture_policy=CapturePolicy(capture_policy),
        cookie_name=cookie_name,
    )
