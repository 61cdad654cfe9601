"""
Shared test fixtures and helpers.
"""
from __future__ import annotations

from typing import AsyncGenerator, Generator

import httpx
import pytest
from fastapi import FastAPI
from fastapi.testclient import TestClient

from cfproxy.main import create_app
from cfproxy.services.credential import CapturedCookie, CredentialStore
from cfproxy.services.resolver import CapturePolicy, ProxyConfig, resolve


UPSTREAM_URL = "http://localhost:9000"
TEST_TOKEN = "abc123"


def set_cookie_header(value: str = TEST_TOKEN, name: str = "CF_Authorization") -> str:
    """A Set-Cookie header value as an SSO gateway would send it."""
    return f"{name}={value}; Path=/; HttpOnly; Secure; SameSite=None"


def make_cookie(value: str = TEST_TOKEN) -> CapturedCookie:
    return CapturedCookie(name="CF_Authorization", value=value, attributes={"path": "/"})


@pytest.fixture
def proxy_config() -> ProxyConfig:
    """Config for the upstream at localhost:9000 with one extra header."""
    return resolve(UPSTREAM_URL, ["X-Env: staging"])


@pytest.fixture
def credentials() -> CredentialStore:
    """A fresh, empty credential store."""
    return CredentialStore()


@pytest.fixture
def refresh_credentials() -> CredentialStore:
    """A fresh credential store that adopts rotated cookie values."""
    return CredentialStore(policy=CapturePolicy.REFRESH)


@pytest.fixture
def proxy_app(proxy_config, credentials) -> FastAPI:
    """Proxy application wired to the test config and credential store."""
    return create_app(proxy_config, credentials)


@pytest.fixture
def client(proxy_app, httpx_mock) -> Generator[TestClient, None, None]:
    """Test client for the proxy; the upstream is served by httpx_mock."""
    with TestClient(proxy_app) as test_client:
        yield test_client


@pytest.fixture
async def app_client(proxy_app, httpx_mock) -> AsyncGenerator[httpx.AsyncClient, None]:
    """Async client calling the started proxy app in-process, raw headers intact."""
    transport = httpx.ASGITransport(app=proxy_app)
    async with proxy_app.router.lifespan_context(proxy_app):
        async with httpx.AsyncClient(transport=transport, base_url="http://proxy") as test_client:
            yield test_client
