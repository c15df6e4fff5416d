"""API Key authentication middleware.

Service-to-service Bearer token check between the auth gateway and this
backend. Token is read from HEALTHCHAT_API_KEY. When no key is configured,
authentication is disabled (development mode). End-user identity travels
separately in the X-User-Id header (see healthchat.api.deps).

Supports two auth methods:
  1. Authorization: Bearer <token>  (standard REST endpoints)
  2. ?token=<token> query param     (chat SSE stream — EventSource can't set headers)

Exempt paths: /health, /docs, /openapi.json, /redoc, /
"""

from __future__ import annotations

import logging
import secrets

from starlette.middleware.base import BaseHTTPMiddleware
from starlette.requests import Request
from starlette.responses import JSONResponse

from healthchat.config import settings

logger = logging.getLogger(__name__)

_EXEMPT_PATHS = frozenset({"/health", "/docs", "/openapi.json", "/redoc", "/"})

# Paths that accept query-param token
_QUERY_PARAM_AUTH_PATHS = frozenset({"/api/v1/chat/stream"})


class APIKeyAuthMiddleware(BaseHTTPMiddleware):
    """Validates Bearer token from Authorization header or query param.

    If HEALTHCHAT_API_KEY is empty, all requests are allowed (dev mode).
    """

    async def dispatch(self, request: Request, call_next):
        api_key = settings.healthchat_api_key

        if not api_key:
            return await call_next(request)

        if request.url.path in _EXEMPT_PATHS:
            return await call_next(request)

        token = self._extract_token(request)
        if token is None:
            return JSONResponse(
                status_code=401,
                content={"detail": "Missing authentication. Use Authorization: Bearer <key> or ?token=<key>"},
            )

        if not secrets.compare_digest(token, api_key):
            logger.warning(
                "Invalid API key attempt from %s on %s",
                request.client.host if request.client else "unknown",
                request.url.path,
            )
            return JSONResponse(status_code=403, content={"detail": "Invalid API key."})

        return await call_next(request)

    @staticmethod
    def _extract_token(request: Request) -> str | None:
        """Extract auth token from header or (for the SSE stream) query param."""
        auth_header = request.headers.get("Authorization", "")
        if auth_header.startswith("Bearer "):
            return auth_header[7:]
        if request.url.path in _QUERY_PARAM_AUTH_PATHS:
            return request.query_params.get("token")
        return None
