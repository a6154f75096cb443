"""
Configuration settings for MenuMiner.

Uses dataclasses populated from environment variables (a local .env file is
loaded first). The whole configuration is built and validated once at startup
so every missing key is reported together instead of per request.
"""

import os
import secrets
import logging
from dataclasses import dataclass, field
from typing import List, Optional

from dotenv import load_dotenv

from menuminer.core.security import validate_api_key

logger = logging.getLogger(__name__)

load_dotenv()


@dataclass
class GeminiConfig:
    """Gemini Vision API configuration."""
    api_key: Optional[str] = None
    model_name: str = "gemini-2.5-flash"
    timeout_seconds: float = 60.0


@dataclass
class SearchConfig:
    """Google Custom Search (image mode) configuration."""
    api_key: Optional[str] = None
    search_engine_id: Optional[str] = None
    api_url: str = "https://www.googleapis.com/customsearch/v1"
    timeout_seconds: float = 10.0
    max_concurrent_requests: int = 10


@dataclass
class AuthConfig:
    """Google Sign-In and session configuration."""
    google_client_id: Optional[str] = None
    allowed_email: Optional[str] = None
    tokeninfo_url: str = "https://oauth2.googleapis.com/tokeninfo"
    timeout_seconds: float = 10.0
    enabled: bool = True
    # Random per process when unset: sessions then end on restart
    session_secret: str = field(default_factory=lambda: secrets.token_urlsafe(48))
    session_ttl_minutes: int = 480
    session_algorithm: str = "HS256"


@dataclass
class RateLimitSettings:
    """Throttle for the scan flow."""
    max_requests: int = 10
    window_seconds: float = 60.0
    key: str = "analyze-request"


@dataclass
class AppConfig:
    """Main application configuration."""
    environment: str = "development"
    log_level: str = "INFO"
    cors_allow_origins: List[str] = field(default_factory=lambda: ["*"])
    gemini: GeminiConfig = field(default_factory=GeminiConfig)
    search: SearchConfig = field(default_factory=SearchConfig)
    auth: AuthConfig = field(default_factory=AuthConfig)
    rate_limit: RateLimitSettings = field(default_factory=RateLimitSettings)

    @property
    def is_production(self) -> bool:
        return self.environment.lower() == "production"

    def missing_keys(self) -> List[str]:
        """Every required environment key that is not set."""
        required = {
            "GEMINI_API_KEY": self.gemini.api_key,
            "GOOGLE_SEARCH_API_KEY": self.search.api_key,
            "GOOGLE_SEARCH_CX": self.search.search_engine_id,
            "GOOGLE_CLIENT_ID": self.auth.google_client_id,
            "ALLOWED_EMAIL": self.auth.allowed_email,
        }
        return [name for name, value in required.items() if not value]

    def validate(self) -> List[str]:
        """
        Check the configuration and log what is wrong with it.

        Returns:
            Missing required keys (empty when the service is fully configured).
        """
        missing = self.missing_keys()
        if missing:
            logger.error(f"Missing required configuration: {', '.join(missing)}")

        for name, key in (("GEMINI_API_KEY", self.gemini.api_key),
                          ("GOOGLE_SEARCH_API_KEY", self.search.api_key)):
            if not key:
                continue
            check = validate_api_key(key)
            if not check.valid:
                logger.warning(f"{name} looks malformed: {check.error}")

        if not os.getenv("SESSION_SECRET"):
            logger.warning("SESSION_SECRET not set; using a per-process secret, sessions end on restart")

        return missing


def _env_bool(name: str, default: str) -> bool:
    return os.getenv(name, default).lower() in {"1", "true", "yes", "on"}


def get_app_config() -> AppConfig:
    """
    Create application configuration from environment variables.

    Environment variables:
        GEMINI_API_KEY, GOOGLE_SEARCH_API_KEY, GOOGLE_SEARCH_CX,
        GOOGLE_CLIENT_ID, ALLOWED_EMAIL: required
        GEMINI_MODEL_NAME: Gemini model (default: gemini-2.5-flash)
        GEMINI_TIMEOUT_SECONDS / IMAGE_SEARCH_TIMEOUT_SECONDS: upstream timeouts
        IMAGE_SEARCH_MAX_CONCURRENT: parallel image searches per scan
        SESSION_SECRET / SESSION_TTL_MINUTES: session credential signing
        AUTH_ENABLED: disable sign-in outside production (default: true)
        RATE_LIMIT_MAX_REQUESTS / RATE_LIMIT_WINDOW_SECONDS: scan throttle
        ENVIRONMENT, LOG_LEVEL, CORS_ALLOW_ORIGINS (comma-separated)
    """
    gemini_config = GeminiConfig(
        api_key=os.getenv("GEMINI_API_KEY"),
        model_name=os.getenv("GEMINI_MODEL_NAME", "gemini-2.5-flash"),
        timeout_seconds=float(os.getenv("GEMINI_TIMEOUT_SECONDS", "60"))
    )

    search_config = SearchConfig(
        api_key=os.getenv("GOOGLE_SEARCH_API_KEY"),
        search_engine_id=os.getenv("GOOGLE_SEARCH_CX"),
        timeout_seconds=float(os.getenv("IMAGE_SEARCH_TIMEOUT_SECONDS", "10")),
        max_concurrent_requests=int(os.getenv("IMAGE_SEARCH_MAX_CONCURRENT", "10"))
    )

    auth_config = AuthConfig(
        google_client_id=os.getenv("GOOGLE_CLIENT_ID"),
        allowed_email=os.getenv("ALLOWED_EMAIL"),
        enabled=_env_bool("AUTH_ENABLED", "true"),
        session_ttl_minutes=int(os.getenv("SESSION_TTL_MINUTES", "480"))
    )
    if os.getenv("SESSION_SECRET"):
        auth_config.session_secret = os.getenv("SESSION_SECRET")

    rate_limit = RateLimitSettings(
        max_requests=int(os.getenv("RATE_LIMIT_MAX_REQUESTS", "10")),
        window_seconds=float(os.getenv("RATE_LIMIT_WINDOW_SECONDS", "60"))
    )

    origins = [o.strip() for o in os.getenv("CORS_ALLOW_ORIGINS", "*").split(",") if o.strip()]

    return AppConfig(
        environment=os.getenv("ENVIRONMENT", "development"),
        log_level=os.getenv("LOG_LEVEL", "INFO").upper(),
        cors_allow_origins=origins or ["*"],
        gemini=gemini_config,
        search=search_config,
        auth=auth_config,
        rate_limit=rate_limit
    )
