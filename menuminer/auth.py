"""Google Sign-In gate and session credentials for MenuMiner."""

from __future__ import annotations

import logging
import time
import uuid
from dataclasses import dataclass, asdict
from typing import Any, Dict, Optional

import cachetools
import httpx
from fastapi import Depends, Request
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer
from jose import JWTError, jwt

from menuminer.core.errors import AuthError, ConfigurationError, MissingFieldError

logger = logging.getLogger(__name__)

# Uniform public reason; the failed check is only logged
NOT_AUTHORIZED = "Not authorized"

# Security scheme
security = HTTPBearer(auto_error=False)


@dataclass
class AuthSession:
    """Signed-in user carried by a session credential."""
    authenticated: bool
    email: str
    name: Optional[str] = None
    picture: Optional[str] = None
    session_id: Optional[str] = None
    issued_at: Optional[int] = None
    expires_at: Optional[int] = None

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)


def normalize_email(email: Optional[str]) -> str:
    return (email or "").strip().lower()


def _is_verified(flag: Any) -> bool:
    # tokeninfo returns the flag as the string "true"
    return flag is True or (isinstance(flag, str) and flag.lower() == "true")


class GoogleAuthGate:
    """
    Verifies a Google ID token and the single allow-listed email.

    Stateless: one call per sign-in attempt. The token is checked with
    Google's tokeninfo endpoint, then audience, email, email verification
    and the allow-list are checked in that order.
    """

    def __init__(
        self,
        client_id: Optional[str],
        allowed_email: Optional[str],
        tokeninfo_url: str = "https://oauth2.googleapis.com/tokeninfo",
        timeout_seconds: float = 10.0,
        http_client: Optional[httpx.AsyncClient] = None
    ):
        self.client_id = client_id
        self.allowed_email = allowed_email
        self.tokeninfo_url = tokeninfo_url
        self.timeout_seconds = timeout_seconds
        self._client = http_client

    async def _fetch_tokeninfo(self, google_token: str) -> Dict[str, Any]:
        try:
            if self._client is not None:
                response = await self._client.get(
                    self.tokeninfo_url, params={"id_token": google_token}, timeout=self.timeout_seconds
                )
            else:
                async with httpx.AsyncClient(timeout=self.timeout_seconds) as client:
                    response = await client.get(self.tokeninfo_url, params={"id_token": google_token})
        except httpx.HTTPError as exc:
            logger.error(f"Token verification error: {exc}")
            raise AuthError(NOT_AUTHORIZED, code="InvalidToken") from exc

        if response.status_code != 200:
            logger.warning(f"Google token verification failed: HTTP {response.status_code}")
            raise AuthError(NOT_AUTHORIZED, code="InvalidToken")

        try:
            token_data = response.json()
        except ValueError as exc:
            raise AuthError(NOT_AUTHORIZED, code="InvalidToken") from exc

        if not isinstance(token_data, dict):
            raise AuthError(NOT_AUTHORIZED, code="InvalidToken")
        return token_data

    async def authenticate(self, email: Any, google_token: Any) -> Dict[str, Any]:
        """
        Run every sign-in check.

        Args:
            email: Email the browser claims to have signed in with
            google_token: Google ID token (JWT) from Google Sign-In

        Returns:
            Verified token claims; ``email`` is normalized

        Raises:
            MissingFieldError: email or token missing
            ConfigurationError: client id or allow-listed email not configured
            AuthError: any verification failure; ``code`` names the check
        """
        if not email or not isinstance(email, str):
            raise MissingFieldError("Email is required")
        if not google_token or not isinstance(google_token, str):
            raise MissingFieldError("Google token is required")

        if not self.allowed_email or not self.client_id:
            logger.error("ALLOWED_EMAIL or GOOGLE_CLIENT_ID not configured")
            raise ConfigurationError()

        token_data = await self._fetch_tokeninfo(google_token)

        try:
            if token_data.get("aud") != self.client_id:
                raise AuthError(NOT_AUTHORIZED, code="AudienceMismatch")

            if normalize_email(token_data.get("email")) != email.lower():
                raise AuthError(NOT_AUTHORIZED, code="EmailMismatch")

            if not _is_verified(token_data.get("email_verified")):
                raise AuthError(NOT_AUTHORIZED, code="EmailNotVerified")

            if normalize_email(email) != normalize_email(self.allowed_email):
                raise AuthError(NOT_AUTHORIZED, code="NotAuthorized")
        except AuthError as exc:
            logger.warning(f"Sign-in rejected ({exc.code}) for {normalize_email(email)}")
            raise

        logger.info(f"Sign-in accepted for {normalize_email(email)}")
        return {**token_data, "email": normalize_email(email)}


class SessionManager:
    """
    Issues and verifies short-lived signed session credentials.

    Every privileged request re-verifies signature, expiry, revocation and the
    allow-listed email, so a client cannot grant itself access.
    """

    def __init__(
        self,
        secret: str,
        allowed_email: Optional[str],
        ttl_minutes: int = 480,
        algorithm: str = "HS256"
    ):
        self.secret = secret
        self.allowed_email = allowed_email
        self.ttl_seconds = ttl_minutes * 60
        self.algorithm = algorithm
        # Revoked session ids, kept until the credential would have expired anyway
        self._revoked: cachetools.TTLCache[str, bool] = cachetools.TTLCache(
            maxsize=10000, ttl=max(self.ttl_seconds, 1)
        )

    def issue(self, email: str, name: Optional[str] = None, picture: Optional[str] = None):
        """
        Create a session credential.

        Returns:
            Tuple of (token, AuthSession)
        """
        now = int(time.time())
        session = AuthSession(
            authenticated=True,
            email=normalize_email(email),
            name=name,
            picture=picture,
            session_id=uuid.uuid4().hex,
            issued_at=now,
            expires_at=now + self.ttl_seconds
        )
        claims = {
            "sub": session.email,
            "name": name,
            "picture": picture,
            "jti": session.session_id,
            "iat": session.issued_at,
            "exp": session.expires_at,
            "typ": "session",
        }
        token = jwt.encode(claims, self.secret, algorithm=self.algorithm)
        return token, session

    def _decode(self, token: str, verify_exp: bool = True) -> Dict[str, Any]:
        try:
            return jwt.decode(
                token,
                self.secret,
                algorithms=[self.algorithm],
                options={"verify_exp": verify_exp}
            )
        except JWTError as exc:
            raise AuthError("Invalid session", code="InvalidSession") from exc

    def verify(self, token: Optional[str]) -> AuthSession:
        """Verify a session credential and return the session it carries."""
        if not token:
            raise AuthError("Missing session token", code="MissingSession")

        claims = self._decode(token)

        if claims.get("typ") != "session":
            raise AuthError("Invalid session", code="InvalidSession")

        session_id = claims.get("jti")
        if not session_id or session_id in self._revoked:
            raise AuthError("Session has ended", code="SessionRevoked")

        email = normalize_email(claims.get("sub"))
        if not self.allowed_email or email != normalize_email(self.allowed_email):
            raise AuthError(NOT_AUTHORIZED, code="NotAuthorized")

        return AuthSession(
            authenticated=True,
            email=email,
            name=claims.get("name"),
            picture=claims.get("picture"),
            session_id=session_id,
            issued_at=claims.get("iat"),
            expires_at=claims.get("exp")
        )

    def revoke(self, token: str) -> None:
        """Sign out: the credential is refused from now on."""
        claims = self._decode(token, verify_exp=False)
        session_id = claims.get("jti")
        if session_id:
            self._revoked[session_id] = True
            logger.info(f"Session revoked for {normalize_email(claims.get('sub'))}")


async def get_current_session(
    request: Request,
    credentials: Optional[HTTPAuthorizationCredentials] = Depends(security)
) -> AuthSession:
    """
    FastAPI dependency for route protection.
    Checks request.state.session first (set by middleware), then falls back to
    the bearer token.

    Usage:
        @router.get("/protected")
        async def protected_route(session: AuthSession = Depends(get_current_session)):
            return {"email": session.email}
    """
    session = getattr(request.state, "session", None)
    if session is not None:
        return session

    manager: SessionManager = request.app.state.session_manager
    return manager.verify(credentials.credentials if credentials else None)
