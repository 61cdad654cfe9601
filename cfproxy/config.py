"""
Application configuration from environment variables.
"""
from typing import List, Optional

from pydantic_settings import BaseSettings, SettingsConfigDict
from functools import lru_cache

from cfproxy.services.resolver import (
    DEFAULT_COOKIE_NAME,
    DEFAULT_LISTEN_PORT,
    DEFAULT_UPSTREAM_TIMEOUT,
    CapturePolicy,
)


class AppConfig(BaseSettings):
    cfproxy_target: str = ""
    cfproxy_port: int = DEFAULT_LISTEN_PORT
    # JSON list of 'Key: Value' strings
    cfproxy_headers: List[str] = []
    # Seconds, zero or less disables the timeout
    cfproxy_upstream_timeout: Optional[float] = DEFAULT_UPSTREAM_TIMEOUT
    cfproxy_capture_policy: CapturePolicy = CapturePolicy.ONCE
    cfproxy_cookie_name: str = DEFAULT_COOKIE_NAME
    cfproxy_log_level: str = "INFO"

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore"
    )


@lru_cache
def get_config() -> AppConfig:
    return AppConfig()
