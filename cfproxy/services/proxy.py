"""
Proxy service - rewrites inbound requests for the upstream and forwards them.

Headers travel as raw (name, value) byte pairs in both directions, so values
that are not ASCII reach the other side exactly as sent.
"""
from __future__ import annotations

from dataclasses import dataclass
from typing import Iterable, List, Optional, Tuple

import httpx

from cfproxy.services.credential import CapturedCookie
from cfproxy.services.resolver import ProxyConfig

Headers = List[Tuple[bytes, bytes]]

# Hop-by-hop headers that apply to a single connection and are never forwarded
HOP_BY_HOP_HEADERS = frozenset({
    "connection", "keep-alive", "proxy-connection", "proxy-authenticate",
    "proxy-authorization", "te", "trailer", "trailers", "transfer-encoding", "upgrade"
})


@dataclass
class UpstreamReply:
    """A fully read upstream response with its headers and body exactly as sent."""
    status_code: int
    headers: Headers
    content: bytes


def header_name(name: bytes) -> str:
    """Lowercased header name, for comparisons."""
    return name.decode("latin-1").lower()


def _join_path(base: str, path: str) -> str:
    if not base:
        return path or "/"
    return base + "/" + path.lstrip("/") if path else base


def rewrite_url(config: ProxyConfig, path: str, query: str = "") -> str:
    """
    Point a request path and query at the upstream.

    The path and query are kept as sent; a base path or query carried by the
    target URL is put in front of them.
    """
    full_path = _join_path(config.base_path, path)
    if config.base_query and query:
        query = f"{config.base_query}&{query}"
    else:
        query = config.base_query or query
    url = f"{config.scheme}://{config.host}{full_path}"
    return f"{url}?{query}" if query else url


def strip_hop_by_hop(headers: Iterable[Tuple[bytes, bytes]]) -> Headers:
    """Drop hop-by-hop headers, including any named by the Connection header."""
    headers = list(headers)
    dropped = set(HOP_BY_HOP_HEADERS)
    for name, value in headers:
        if header_name(name) == "connection":
            tokens = value.decode("latin-1").split(",")
            dropped.update(token.strip().lower() for token in tokens if token.strip())
    return [(name, value) for name, value in headers if header_name(name) not in dropped]


def _attach_cookie(headers: Headers, cookie: CapturedCookie) -> None:
    pair = cookie.as_pair().encode()
    for i, (name, value) in enumerate(headers):
        if header_name(name) == "cookie" and value:
            headers[i] = (name, value + b"; " + pair)
            return
    headers.append((b"Cookie", pair))


def _append_forwarded_for(headers: Headers, client_host: str) -> None:
    previous = [value for name, value in headers if header_name(name) == "x-forwarded-for"]
    headers[:] = [(name, value) for name, value in headers if header_name(name) != "x-forwarded-for"]
    headers.append((b"X-Forwarded-For", b", ".join(previous + [client_host.encode()])))


def rewrite_headers(
    original_headers: Iterable[Tuple[bytes, bytes]],
    config: ProxyConfig,
    cookie: Optional[CapturedCookie] = None,
    client_host: Optional[str] = None,
) -> Headers:
    """
    Build the outbound header list for the upstream.

    Args:
        original_headers: Raw headers as received from the caller, duplicates allowed
        config: Resolved proxy configuration
        cookie: Captured credential to attach, if one is held
        client_host: Caller address for X-Forwarded-For

    Returns:
        A list of (name, value) byte pairs
    """
    # Content-Length is recomputed by the client from the forwarded body
    headers = [
        (name, value) for name, value in strip_hop_by_hop(original_headers)
        if header_name(name) not in ("host", "content-length")
    ]

    # Extra headers are added next to, never instead of, the caller's values
    for name, value in config.extra_headers.items():
        headers.append((name.encode(), value.encode()))

    if cookie is not None:
        _attach_cookie(headers, cookie)

    if client_host:
        _append_forwarded_for(headers, client_host)

    # The body is relayed undecoded, so only ask for encodings the caller accepts
    if not any(header_name(name) == "accept-encoding" for name, _ in headers):
        headers.append((b"Accept-Encoding", b"identity"))

    headers.append((b"Host", config.host.encode()))
    return headers


async def forward_request(
    method: str,
    url: str,
    headers: Headers,
    content: bytes,
    client: httpx.AsyncClient,
) -> UpstreamReply:
    """
    Forward a rewritten request to the upstream and read the whole reply.

    The body is read raw so content encodings pass through untouched.

    Raises:
        httpx.HTTPError: If the upstream cannot be reached or the exchange fails
    """
    request = client.build_request(method, url, headers=headers, content=content)
    response = await client.send(request, stream=True)
    try:
        body = b"".join([chunk async for chunk in response.aiter_raw()])
    finally:
        await response.aclose()

    return UpstreamReply(
        status_code=response.status_code,
        headers=list(response.headers.raw),
        content=body,
    )
