"""Shared-secret protection for the reward API.

Every request is classified into one of three tiers:

- ``public``: never gated (liveness, treasury status, OpenAPI docs)
- ``read``: gated only when ``API_READ_AUTH`` is on
- ``admin``: always gated once ``API_KEY`` is set. Any mutating request
  (epoch creation and transitions, distribute, retry-failed) is admin,
  as is any read under ``API_ADMIN_PREFIXES``.

Environment:

- ``API_KEY``: the secret; unset leaves the API open.
- ``API_PUBLIC_PREFIXES``: comma-separated override of the public paths.
- ``API_ADMIN_PREFIXES``: comma-separated paths whose reads are admin.
- ``API_READ_AUTH``: ``true`` gates the read tier as well.

Clients send the key as ``X-API-Key``, ``Authorization: Bearer`` or the
``api_key`` query parameter.
"""
from __future__ import annotations

import hmac
import logging
import os
from typing import Callable

from starlette.middleware.base import BaseHTTPMiddleware
from starlette.requests import Request
from starlette.responses import JSONResponse

logger = logging.getLogger(__name__)

PUBLIC = "public"
READ = "read"
ADMIN = "admin"

DEFAULT_PUBLIC_PREFIXES = (
    "/healthz",
    "/treasury/status",
    "/docs",
    "/redoc",
    "/openapi.json",
)

MUTATING_METHODS = frozenset({"POST", "PUT", "PATCH", "DELETE"})


def prefixes_from_env(name: str, default: tuple[str, ...] = ()) -> tuple[str, ...]:
    items = tuple(p.strip() for p in os.getenv(name, "").split(",") if p.strip())
    return items or default


def classify(
    method: str,
    path: str,
    public_prefixes: tuple[str, ...],
    admin_prefixes: tuple[str, ...] = (),
) -> str:
    if method.upper() in MUTATING_METHODS or path.startswith(admin_prefixes):
        return ADMIN
    if path.startswith(public_prefixes):
        return PUBLIC
    return READ


def presented_key(request: Request) -> str | None:
    key = request.headers.get("x-api-key")
    if key:
        return key
    scheme, _, token = request.headers.get("authorization", "").partition(" ")
    if scheme.lower() == "bearer" and token.strip():
        return token.strip()
    return request.query_params.get("api_key") or None


class APIKeyMiddleware(BaseHTTPMiddleware):
    def __init__(
        self,
        app,
        api_key: str | None = None,
        public_prefixes: tuple[str, ...] | None = None,
        admin_prefixes: tuple[str, ...] | None = None,
        read_auth: bool = False,
    ):
        super().__init__(app)
        self.api_key = api_key
        if public_prefixes is None:
            public_prefixes = prefixes_from_env("API_PUBLIC_PREFIXES", DEFAULT_PUBLIC_PREFIXES)
        if admin_prefixes is None:
            admin_prefixes = prefixes_from_env("API_ADMIN_PREFIXES")
        self.public_prefixes = public_prefixes
        self.admin_prefixes = admin_prefixes
        self.read_auth = read_auth

    async def dispatch(self, request: Request, call_next: Callable):
        if not self.api_key:
            return await call_next(request)

        tier = classify(request.method, request.url.path, self.public_prefixes, self.admin_prefixes)
        gated = tier == ADMIN or (tier == READ and self.read_auth)
        if gated and not self.authorized(request):
            logger.info("rejected %s %s (%s tier): missing or invalid API key",
                        request.method, request.url.path, tier)
            return JSONResponse(status_code=401, content={"detail": "API key required"})

        return await call_next(request)

    def authorized(self, request: Request) -> bool:
        key = presented_key(request)
        return key is not None and hmac.compare_digest(key, self.api_key)


def configure_auth(app) -> None:
    """Install ``APIKeyMiddleware`` when ``API_KEY`` is set."""
    api_key = os.getenv("API_KEY", "").strip()
    if not api_key:
        logger.info("API key auth disabled (API_KEY not set)")
        return

    read_auth = os.getenv("API_READ_AUTH", "false").strip().lower() in ("1", "true", "yes")
    app.add_middleware(APIKeyMiddleware, api_key=api_key, read_auth=read_auth)
    logger.info("API key auth enabled (read_auth=%s)", read_auth)
