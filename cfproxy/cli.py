"""
Command line entry point.

Usage:
    cfproxy --target https://k8s.example.com                     # Listen on 8080
    cfproxy --target https://k8s.example.com --port 9090
    cfproxy --target https://k8s.example.com --header "X-Env: staging" --header "X-Team: core"

Every flag falls back to its CFPROXY_* environment variable (or .env entry).
"""
from __future__ import annotations

import argparse
import sys
from typing import List, Optional

import uvicorn
from dotenv import find_dotenv, load_dotenv

from cfproxy.config import get_config
from cfproxy.logging import configure_logging, get_logger
from cfproxy.main import create_app
from cfproxy.services.resolver import CapturePolicy, ConfigurationError, resolve

logger = get_logger(__name__)

LISTEN_HOST = "0.0.0.0"


def build_parser() -> argparse.ArgumentParser:
    settings = get_config()
    parser = argparse.ArgumentParser(
        prog="cfproxy",
        description="Reverse proxy that adds headers and replays the upstream's CF_Authorization cookie",
    )
    parser.add_argument(
        "--target", default=settings.cfproxy_target,
        help="URL of the upstream (e.g., https://kubernetes.default.svc.cluster.local)"
    )
    parser.add_argument(
        "--port", type=int, default=settings.cfproxy_port,
        help="Port for the proxy server to listen on"
    )
    parser.add_argument(
        "--header", dest="headers", action="append", default=[],
        help="Custom header to add to requests, format 'Key: Value' (repeatable)"
    )
    parser.add_argument(
        "--timeout", type=float, default=settings.cfproxy_upstream_timeout,
        help="Upstream timeout in seconds, 0 disables it"
    )
    parser.add_argument(
        "--capture-policy", choices=[p.value for p in CapturePolicy],
        default=CapturePolicy(settings.cfproxy_capture_policy).value,
        help="'once' keeps the first captured cookie, 'refresh' adopts newer values"
    )
    parser.add_argument(
        "--cookie-name", default=settings.cfproxy_cookie_name,
        help="Name of the credential cookie to capture"
    )
    parser.add_argument("--log-level", default=settings.cfproxy_log_level, help="Log level")
    return parser


def main(argv: Optional[List[str]] = None) -> int:
    load_dotenv(find_dotenv(usecwd=True))
    get_config.cache_clear()

    args = build_parser().parse_args(argv)
    configure_logging(args.log_level)

    try:
        config = resolve(
            args.target,
            [*get_config().cfproxy_headers, *args.headers],
            listen_port=args.port,
            upstream_timeout=args.timeout,
            capture_policy=CapturePolicy(args.capture_policy),
            cookie_name=args.cookie_name,
        )
    except ConfigurationError as e:
        logger.error(str(e))
        return 1

    logger.info(f"Starting server on {LISTEN_HOST}:{config.listen_port}")
    logger.info(f"Target URL: {config.upstream}")
    uvicorn.run(create_app(config), host=LISTEN_HOST, port=config.listen_port, log_level="warning")
    return 0


if __name__ == "__main__":
    sys.exit(main())
