"""Configuration module for MenuMiner."""

from .settings import (
    AppConfig,
    GeminiConfig,
    SearchConfig,
    AuthConfig,
    RateLimitSettings,
    get_app_config,
)

__all__ = [
    "AppConfig",
    "GeminiConfig",
    "SearchConfig",
    "AuthConfig",
    "RateLimitSettings",
    "get_app_config",
]
