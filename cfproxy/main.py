"""
cfproxy - single-upstream reverse proxy with credential cookie replay

Application factory for the FastAPI application.
"""
from __future__ import annotations

from contextlib import asynccontextmanager
from typing import Optional

import httpx
from fastapi import FastAPI

from cfproxy.logging import get_logger
from cfproxy.state import ProxyState
from cfproxy.routers import proxy
from cfproxy.services.credential import CredentialStore
from cfproxy.services.resolver import ProxyConfig, resolve
from cfproxy.config import get_config

logger = get_logger(__name__)


def _init_http_client(config: ProxyConfig, credentials: CredentialStore) -> httpx.AsyncClient:
    """Initialize the shared HTTP client for upstream requests."""
    client = httpx.AsyncClient(
        timeout=config.upstream_timeout,
        follow_redirects=False,
        event_hooks={"response": [credentials.capture]},
    )
    logger.info(f"HTTP client initialized (timeout={config.upstream_timeout})")
    return client


async def _shutdown_http_client(state: ProxyState) -> None:
    """Close the shared HTTP client."""
    if state.http_client:
        await state.http_client.aclose()
        state.http_client = None
        logger.info("HTTP client closed")


def create_app(config: ProxyConfig, credentials: Optional[CredentialStore] = None) -> FastAPI:
    """
    Build the proxy application for a resolved configuration.

    Args:
        config: Resolved proxy configuration
        credentials: Credential store to use; a fresh one is created when omitted
    """
    if credentials is None:
        credentials = CredentialStore(cookie_name=config.cookie_name, policy=config.capture_policy)
    state = ProxyState(config=config, credentials=credentials)

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        """Application lifespan manager - opens and closes the shared client."""
        state.http_client = _init_http_client(config, credentials)
        logger.info(f"Proxying to {config.upstream} with {len(config.extra_headers)} extra headers")

        yield

        await _shutdown_http_client(state)

    app = FastAPI(
        title="cfproxy",
        description="Single-upstream reverse proxy with credential cookie replay",
        lifespan=lifespan,
        docs_url=None,
        redoc_url=None,
        openapi_url=None,
    )
    app.state.proxy = state
    app.include_router(proxy.router)
    return app


def create_app_from_env() -> FastAPI:
    """Application factory reading CFPROXY_* settings, for `uvicorn --factory`."""
    settings = get_config()
    config = resolve(
        settings.cfproxy_target,
        settings.cfproxy_headers,
        listen_port=settings.cfproxy_port,
        upstream_timeout=settings.cfproxy_upstream_timeout,
        capture_policy=settings.cfproxy_capture_policy,
        cookie_name=settings.cfproxy_cookie_name,
    )
    return create_app(config)
