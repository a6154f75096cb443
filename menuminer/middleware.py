"""
Request middleware for MenuMiner.
Enforces session authentication on privileged routes and adds browser
security headers to every response.
"""
import logging
from typing import List, Optional, Set

from fastapi import Request, Response, status
from fastapi.responses import JSONResponse
from starlette.middleware.base import BaseHTTPMiddleware

from menuminer.auth import AuthSession, SessionManager
from menuminer.core.errors import AuthError

logger = logging.getLogger(__name__)

# Stand-in session when authentication is disabled (development only)
DEV_GUEST_SESSION = AuthSession(
    authenticated=True,
    email="dev@localhost",
    name="Development Guest",
    session_id="dev-guest"
)

CONTENT_SECURITY_POLICY = "; ".join([
    "default-src 'self'",
    "script-src 'self' 'unsafe-inline' 'unsafe-eval'",
    "style-src 'self' 'unsafe-inline'",
    "img-src 'self' data: https: blob:",
    "font-src 'self' data:",
    "connect-src 'self' https://generativelanguage.googleapis.com",
    "frame-ancestors 'none'",
    "base-uri 'self'",
    "form-action 'self'",
])

SECURITY_HEADERS = {
    "Content-Security-Policy": CONTENT_SECURITY_POLICY,
    "X-Content-Type-Options": "nosniff",
    "X-Frame-Options": "DENY",
    "Referrer-Policy": "strict-origin-when-cross-origin",
}


def ensure_auth_allowed(enabled: bool, environment: str):
    """SECURITY: Prevent auth from being disabled in production."""
    if environment.lower() == "production" and not enabled:
        raise RuntimeError(
            "CRITICAL SECURITY ERROR: AUTH_ENABLED cannot be false in production. "
            "Set AUTH_ENABLED=true or remove the environment variable."
        )


class SessionAuthMiddleware(BaseHTTPMiddleware):
    """
    Middleware that enforces a valid session credential on all non-public paths.
    The credential is sent as ``Authorization: Bearer <sessionToken>``.
    """

    def __init__(
        self,
        app,
        session_manager: SessionManager,
        enabled: bool = True,
        environment: str = "development",
        public_paths: Optional[Set[str]] = None
    ):
        super().__init__(app)
        self.session_manager = session_manager
        self.enabled = enabled
        self.environment = environment.lower()

        ensure_auth_allowed(self.enabled, self.environment)

        if not self.enabled:
            logger.warning("⚠️ SECURITY WARNING: Authentication is DISABLED. This should only be used in development!")

        # Public paths that don't require a session
        self.public_paths: Set[str] = public_paths or {
            "/",
            "/health",
            "/auth/config",
            "/api/auth",
            "/docs",
            "/openapi.json",
            "/favicon.ico",
        }

        self.public_prefixes: List[str] = [
            "/static",
        ]

    async def dispatch(self, request: Request, call_next) -> Response:
        path = request.url.path

        # If auth is disabled (dev only - production check is in __init__)
        if not self.enabled:
            request.state.session = DEV_GUEST_SESSION
            return await call_next(request)

        # 1. Check if path is public
        if path in self.public_paths:
            return await call_next(request)

        for prefix in self.public_prefixes:
            if path.startswith(prefix):
                return await call_next(request)

        # 2. Check for Authorization header
        auth_header = request.headers.get("Authorization")
        token = None
        if auth_header and auth_header.startswith("Bearer "):
            token = auth_header.split(" ", 1)[1].strip()

        if not token:
            return self._unauthorized_response()

        # 3. Verify session credential
        try:
            request.state.session = self.session_manager.verify(token)
        except AuthError as e:
            logger.warning(f"Session verification failed ({e.code}) for {path}")
            return self._unauthorized_response()

        return await call_next(request)

    def _unauthorized_response(self) -> Response:
        return JSONResponse(
            status_code=status.HTTP_401_UNAUTHORIZED,
            content={"error": "Authentication required", "code": "unauthorized"},
            headers={"WWW-Authenticate": "Bearer"}
        )


class SecurityHeadersMiddleware(BaseHTTPMiddleware):
    """Adds the Content-Security-Policy and related headers to every response."""

    async def dispatch(self, request: Request, call_next) -> Response:
        response = await call_next(request)
        for name, value in SECURITY_HEADERS.items():
            response.headers.setdefault(name, value)
        return response
