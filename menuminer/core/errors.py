"""
Error taxonomy for MenuMiner.

Every failure the service reports to a caller is a MenuMinerError carrying a
short machine-readable code, a human-readable message and the HTTP status the
API layer answers with.
"""

from typing import Optional


class MenuMinerError(Exception):
    """Base class for all reportable MenuMiner failures."""

    code: str = "InternalError"
    status_code: int = 500

    def __init__(self, message: str, code: Optional[str] = None, status_code: Optional[int] = None):
        self.message = message
        if code is not None:
            self.code = code
        if status_code is not None:
            self.status_code = status_code
        super().__init__(message)


# =============================================================================
# Input errors (recoverable locally, never retried)
# =============================================================================

class InputInvalidError(MenuMinerError):
    """Bad file type/size, bad text length or malformed request body."""
    code = "InputInvalid"
    status_code = 400


class MissingInputError(InputInvalidError):
    code = "MissingInput"


class MissingFieldError(InputInvalidError):
    code = "MissingField"


class InvalidRestaurantNameError(InputInvalidError):
    code = "InvalidRestaurantName"


class ImageValidationError(InputInvalidError):
    """Raised when an uploaded file fails validation; code is the failure kind."""

    def __init__(self, message: str, code: str = "InvalidType"):
        super().__init__(message, code=code)


class TooManyItemsError(MenuMinerError):
    """Item count over the batch limit (caller input or model output)."""
    code = "TooManyItems"
    status_code = 400


class RateLimitedError(MenuMinerError):
    code = "RateLimited"
    status_code = 429

    def __init__(self, message: str, remaining: int = 0):
        self.remaining = remaining
        super().__init__(message)


class NoValidItemsError(MenuMinerError):
    code = "NoValidItems"
    status_code = 422


# =============================================================================
# Upstream errors
# =============================================================================

class UpstreamError(MenuMinerError):
    """An external API returned an error or an unusable payload."""
    code = "UpstreamFailure"
    status_code = 500


class ExtractionError(UpstreamError):
    code = "ExtractionFailed"


class InvalidImageError(ExtractionError):
    code = "InvalidImage"
    status_code = 400


class ResponseTooLargeError(ExtractionError):
    code = "ResponseTooLarge"


class InvalidResponseFormatError(ExtractionError):
    code = "InvalidFormat"


class ImageSearchError(UpstreamError):
    code = "ImageSearchFailed"


class SearchQuotaExceededError(ImageSearchError):
    code = "SearchQuotaExceeded"
    status_code = 429


# =============================================================================
# Auth and configuration
# =============================================================================

class AuthError(MenuMinerError):
    """Sign-in or session verification failed. ``code`` names the failed check."""
    code = "NotAuthorized"
    status_code = 401


class ConfigurationError(MenuMinerError):
    """Required configuration is missing; there is no user remedy."""
    code = "ServerConfigurationError"
    status_code = 500

    def __init__(self, message: str = "Server configuration error", missing_keys: Optional[list] = None):
        self.missing_keys = list(missing_keys or [])
        super().__init__(message)
