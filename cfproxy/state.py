"""
Proxy state - per-application objects shared by every request.
"""
from __future__ import annotations

from typing import Optional

import httpx

from cfproxy.services.credential import CredentialStore
from cfproxy.services.resolver import ProxyConfig


class ProxyState:
    """
    Proxy state container.
    Built by the application factory, its HTTP client opened by the lifespan,
    injected into routes via FastAPI dependencies.
    """

    def __init__(
        self,
        config: ProxyConfig,
        credentials: CredentialStore,
        http_client: Optional[httpx.AsyncClient] = None,
    ):
        self.config = config
        self.credentials = credentials
        self.http_client = http_client
