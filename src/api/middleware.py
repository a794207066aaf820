"""
Custom middleware for the Hookline API

Implements bearer-token authentication and request logging.
"""

import time
import logging
from typing import Any, Dict, Optional
from uuid import uuid4

import jwt
from fastapi import Request
from starlette.middleware.base import BaseHTTPMiddleware
from starlette.responses import JSONResponse

from ..shared.config import get_settings
from ..shared.logging_config import CorrelationContext


logger = logging.getLogger(__name__)

PUBLIC_PATHS = {"/health", "/docs", "/redoc", "/openapi.json", "/"}


def _auth_error(message: str) -> JSONResponse:
    return JSONResponse(
        status_code=401,
        content={
            "error": {
                "type": "authentication_error",
                "message": message,
                "status_code": 401
            }
        },
        headers={"WWW-Authenticate": "Bearer"}
    )


def decode_access_token(token: str, secret_key: str, algorithm: str = "HS256") -> Optional[Dict[str, Any]]:
    """
    Decode a platform access token into the user context.

    The token must carry ``sub`` (user id) and ``tenant_id``; ``role``
    defaults to an unprivileged viewer.

    Returns:
        User information dictionary, or None if the token is invalid
    """
    try:
        payload = jwt.decode(token, secret_key, algorithms=[algorithm])
    except jwt.ExpiredSignatureError:
        logger.warning("Access token expired")
        return None
    except jwt.InvalidTokenError as e:
        logger.warning(f"Invalid access token: {e}")
        return None

    user_id = payload.get("sub")
    tenant_id = payload.get("tenant_id")
    if not user_id or not tenant_id:
        logger.warning("Access token missing sub or tenant_id claim")
        return None

    return {
        "user_id": str(user_id),
        "tenant_id": str(tenant_id),
        "role": str(payload.get("role", "viewer")).lower(),
    }


class AuthenticationMiddleware(BaseHTTPMiddleware):
    """Authentication middleware for bearer JWT validation."""

    def __init__(self, app):
        super().__init__(app)
        self.settings = get_settings()

    async def dispatch(self, request: Request, call_next):
        """Process authentication for each request."""
        # CORS preflight carries no credentials
        if request.method == "OPTIONS" or request.url.path in PUBLIC_PATHS:
            return await call_next(request)

        authorization = request.headers.get("Authorization")
        if not authorization:
            return _auth_error("Authentication token required")

        try:
            scheme, token = authorization.split(" ", 1)
            if scheme.lower() != "bearer":
                raise ValueError("Invalid scheme")
        except ValueError:
            return _auth_error("Invalid authorization format. Use 'Bearer <token>'")

        user = decode_access_token(
            token.strip(),
            self.settings.security.secret_key,
            self.settings.security.algorithm
        )
        if not user:
            return _auth_error("Invalid or expired token")

        request.state.user = user
        request.state.tenant_id = user["tenant_id"]

        return await call_next(request)


class LoggingMiddleware(BaseHTTPMiddleware):
    """Logging middleware for request/response tracking."""

    async def dispatch(self, request: Request, call_next):
        """Log request and response information under a correlation id."""
        correlation_id = request.headers.get("X-Correlation-ID") or str(uuid4())
        tenant_id = getattr(request.state, "tenant_id", None)

        with CorrelationContext(correlation_id, tenant_id):
            start_time = time.time()

            logger.info(
                f"Request: {request.method} {request.url.path} "
                f"from {request.client.host if request.client else 'unknown'}"
            )

            response = await call_next(request)

            process_time = time.time() - start_time

            logger.info(
                f"Response: {response.status_code} "
                f"in {process_time:.3f}s"
            )

        response.headers["X-Process-Time"] = str(process_time)
        response.headers["X-Correlation-ID"] = correlation_id

        return response
