#!/usr/bin/env python3
"""
Mock upstream server for trying out the proxy by hand.

The first response issues a CF_Authorization cookie, as an SSO gateway would.
Every endpoint echoes the method, path, Host and received cookies so you can
see what the proxy forwarded.

Run with: python scripts/mock_upstream.py
Listens on: http://localhost:9000
Then:     cfproxy --target http://localhost:9000 --header "X-Env: staging"
"""
from __future__ import annotations

import secrets
from datetime import datetime

from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse
import uvicorn

app = FastAPI(title="Mock Upstream Server", description="Test upstream for cfproxy")

issued_token: str | None = None


def log_request(request: Request):
    """Log what the proxy forwarded."""
    timestamp = datetime.now().strftime("%H:%M:%S")
    cookie = request.cookies.get("CF_Authorization", "-")
    env = request.headers.get("x-env", "-")
    print(f"[{timestamp}] {request.method} {request.url.path} | Host: {request.headers.get('host')} "
          f"| X-Env: {env} | CF_Authorization: {cookie}")


@app.api_route("/{path:path}", methods=["GET", "POST", "PUT", "PATCH", "DELETE"])
async def echo(request: Request, path: str):
    """Echo the forwarded request, issuing the auth cookie once."""
    global issued_token
    log_request(request)

    response = JSONResponse({
        "method": request.method,
        "path": request.url.path,
        "query": request.url.query,
        "host": request.headers.get("host"),
        "headers": dict(request.headers),
        "cookies": request.cookies,
    })
    if issued_token is None:
        issued_token = secrets.token_urlsafe(16)
        response.set_cookie("CF_Authorization", issued_token, httponly=True, path="/")
    return response


if __name__ == "__main__":
    print("\nMock Upstream Server")
    print("=" * 50)
    print("Listening on http://localhost:9000")
    print("Every path echoes the forwarded request")
    print("=" * 50 + "\n")
    
    uvicorn.run(app, host="127.0.0.1", port=9000, log_level="warning")
