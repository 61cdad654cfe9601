"""
Proxy router - relays every inbound request to the configured upstream.
"""
from __future__ import annotations

from typing import Any, Awaitable, Dict, Tuple

import anyio
import httpx
from fastapi import APIRouter, Depends, HTTPException, Request, Response

from cfproxy.logging import get_logger
from cfproxy.services.proxy import (
    Headers,
    UpstreamReply,
    forward_request,
    header_name,
    rewrite_headers,
    rewrite_url,
    strip_hop_by_hop,
)
from cfproxy.state import ProxyState

logger = get_logger(__name__)

router = APIRouter(tags=["proxy"])

PROXY_METHODS = ["GET", "HEAD", "POST", "PUT", "PATCH", "DELETE", "OPTIONS", "TRACE"]

# How often a pending request checks whether its caller went away
DISCONNECT_POLL_INTERVAL = 0.1

# Not a real HTTP status; nothing reaches a caller that already left
CLIENT_CLOSED_REQUEST = 499


class ClientDisconnected(Exception):
    """The caller disconnected before the upstream replied."""


def get_proxy_state(request: Request) -> ProxyState:
    return request.app.state.proxy


def _map_upstream_error(error: Exception, url: str) -> HTTPException:
    """Map upstream errors to appropriate HTTP exceptions."""
    if isinstance(error, httpx.TimeoutException):
        logger.error(f"Timeout forwarding to {url}")
        return HTTPException(status_code=504, detail="Upstream service timeout")

    if isinstance(error, httpx.RequestError):
        logger.error(f"Connection error to {url}: {error!r}")
        return HTTPException(status_code=502, detail="Failed to connect to upstream service")

    logger.error(f"Unexpected error forwarding request: {error!r}")
    return HTTPException(status_code=502, detail="Failed to forward request to upstream")


def _relay_headers(reply: UpstreamReply, method: str) -> Headers:
    """Upstream headers minus hop-by-hop ones, with Content-Length matching the relayed body."""
    headers = [
        (name.lower(), value) for name, value in strip_hop_by_hop(reply.headers)
        if header_name(name) != "content-length"
    ]
    if reply.status_code >= 200 and reply.status_code not in (204, 304):
        if method == "HEAD":
            # A HEAD reply describes the body a GET would return
            headers.extend(
                (name.lower(), value) for name, value in reply.headers
                if header_name(name) == "content-length"
            )
        else:
            headers.append((b"content-length", str(len(reply.content)).encode()))
    return headers


def _inbound_target(request: Request) -> Tuple[str, str]:
    """The request path and query exactly as the caller sent them."""
    raw_path = request.scope.get("raw_path")
    if raw_path:
        path = raw_path.split(b"?", 1)[0].decode("latin-1")
    else:
        path = request.url.path
    query = request.scope.get("query_string", b"").decode("latin-1")
    return path, query


async def _wait_for_disconnect(request: Request) -> None:
    while not await request.is_disconnected():
        await anyio.sleep(DISCONNECT_POLL_INTERVAL)


async def _forward_unless_disconnected(request: Request, exchange: Awaitable[UpstreamReply]) -> UpstreamReply:
    """
    Run an upstream exchange, cancelling it if the caller disconnects first.

    Whichever of the exchange and the disconnect watcher finishes first
    cancels the other through the task group's cancel scope.

    Raises:
        ClientDisconnected: If the caller went away before the reply was read
        Exception: Whatever the exchange raised, unwrapped
    """
    outcome: Dict[str, Any] = {}

    async with anyio.create_task_group() as tg:
        async def run_exchange() -> None:
            try:
                outcome["reply"] = await exchange
            except Exception as e:
                outcome["error"] = e
            tg.cancel_scope.cancel()

        async def watch_caller() -> None:
            await _wait_for_disconnect(request)
            tg.cancel_scope.cancel()

        tg.start_soon(run_exchange)
        tg.start_soon(watch_caller)

    if "error" in outcome:
        raise outcome["error"]
    if "reply" not in outcome:
        raise ClientDisconnected()
    return outcome["reply"]


@router.api_route(
    "/{path:path}",
    methods=PROXY_METHODS,
    response_class=Response,
    include_in_schema=False,
)
async def proxy(request: Request, state: ProxyState = Depends(get_proxy_state)) -> Response:
    """
    Relay a request to the upstream and its reply back to the caller.

    **Flow:**
    1. Append configured extra headers and the captured credential cookie
    2. Point the request at the upstream host
    3. Forward it; the client's response hook captures the credential cookie
    4. Return the upstream status, headers and body unchanged
    """
    config = state.config
    logger.info(
        f"Original request: {request.method} {request.url}, Host: {request.headers.get('host', '')}"
    )

    path, query = _inbound_target(request)
    url = rewrite_url(config, path, query)

    cookie = state.credentials.cookie
    if cookie is not None:
        logger.debug(f"Attaching held {cookie.name} cookie")

    headers = rewrite_headers(
        request.headers.raw,
        config,
        cookie=cookie,
        client_host=request.client.host if request.client else None,
    )
    logger.info(f"Modified request: {request.method} {url}, Host: {config.host}")
    for name, value in headers:
        shown = "<redacted>" if header_name(name) == "cookie" else value.decode("latin-1")
        logger.debug(f"  {name.decode('latin-1')}: {shown}")

    body = await request.body()

    try:
        reply = await _forward_unless_disconnected(
            request,
            forward_request(
                method=request.method,
                url=url,
                headers=headers,
                content=body,
                client=state.http_client,
            ),
        )
    except ClientDisconnected:
        logger.info(f"Caller disconnected, aborted {request.method} {url}")
        return Response(status_code=CLIENT_CLOSED_REQUEST)
    except Exception as e:
        raise _map_upstream_error(e, url)

    response = Response(content=reply.content, status_code=reply.status_code)
    response.raw_headers = _relay_headers(reply, request.method)
    return response
