"""
Security utilities for input validation, sanitization and SSRF protection.

Two independent passes guard everything that reaches a caller:
- validate_* rejects malformed or unsafe records outright
- sanitize_* rebuilds records from scratch, even ones that already validated
"""

import re
import logging
from dataclasses import dataclass
from typing import Any, Iterable, List, Mapping, Optional, Sequence
from urllib.parse import urlsplit

from menuminer.models.schemas import MenuItem

logger = logging.getLogger(__name__)

# File upload limits
ALLOWED_IMAGE_TYPES = (
    "image/jpeg",
    "image/jpg",
    "image/png",
    "image/webp",
    "image/gif",
)
MAX_FILE_SIZE = 10 * 1024 * 1024  # 10MB
MAX_FILES = 10
MAX_FILENAME_LENGTH = 255

# Text / record limits
MAX_TEXT_LENGTH = 10000
MAX_NAME_LENGTH = 500
MAX_PRICE_LENGTH = 100
MAX_DESCRIPTION_LENGTH = 2000
MAX_IMAGE_URLS = 50
MAX_URL_LENGTH = 2048

# Images attached per menu item
MIN_IMAGES_PER_ITEM = 1
MAX_IMAGES_PER_ITEM = 10

ALLOWED_URL_SCHEMES = ("http", "https")

# Hostnames that must never be fetched on behalf of a caller
PRIVATE_HOST_PATTERNS = [
    re.compile(r"^localhost$", re.IGNORECASE),
    re.compile(r"^127\."),
    re.compile(r"^10\."),
    re.compile(r"^172\.(1[6-9]|2[0-9]|3[0-1])\."),
    re.compile(r"^192\.168\."),
    re.compile(r"^169\.254\."),
    re.compile(r"^::1$"),
    re.compile(r"^f[cd][0-9a-f]{0,2}:", re.IGNORECASE),   # fc00::/7
    re.compile(r"^fe[89ab][0-9a-f]?:", re.IGNORECASE),    # fe80::/10
]

API_KEY_PATTERN = re.compile(r"^[A-Za-z0-9_-]+$")

# Characters a browser URL parser refuses in a hostname
FORBIDDEN_HOST_CHARS = re.compile(r"[\s<>\\^|%\"`{}]")


@dataclass
class ValidationResult:
    """Pass/fail outcome with a human-readable reason on failure."""
    valid: bool
    error: Optional[str] = None
    code: Optional[str] = None

    def __bool__(self) -> bool:
        return self.valid


@dataclass
class ImageUpload:
    """An uploaded image: original filename, declared MIME type and raw bytes."""
    filename: str
    content_type: str
    data: bytes

    @property
    def size(self) -> int:
        return len(self.data)


_VALID = ValidationResult(valid=True)


# =============================================================================
# File validation
# =============================================================================

def validate_image_file(file: ImageUpload) -> ValidationResult:
    """Check declared type, size and filename length of a single upload."""
    if file.content_type not in ALLOWED_IMAGE_TYPES:
        return ValidationResult(
            valid=False,
            error=f"Invalid file type. Allowed types: {', '.join(ALLOWED_IMAGE_TYPES)}",
            code="InvalidType"
        )

    if file.size > MAX_FILE_SIZE:
        return ValidationResult(
            valid=False,
            error=f"File size exceeds maximum allowed size of {MAX_FILE_SIZE // 1024 // 1024}MB",
            code="TooLarge"
        )

    if len(file.filename or "") > MAX_FILENAME_LENGTH:
        return ValidationResult(valid=False, error="File name is too long", code="NameTooLong")

    return _VALID


def validate_image_files(files: Sequence[ImageUpload]) -> ValidationResult:
    """Validate a batch of uploads, stopping at the first failure."""
    if len(files) == 0:
        return ValidationResult(valid=False, error="No files provided", code="Empty")

    if len(files) > MAX_FILES:
        return ValidationResult(
            valid=False,
            error=f"Maximum {MAX_FILES} files allowed",
            code="TooManyFiles"
        )

    for file in files:
        result = validate_image_file(file)
        if not result.valid:
            return result

    return _VALID


# =============================================================================
# Text and URLs
# =============================================================================

def sanitize_text(text: Any) -> str:
    """Strip angle brackets, trim and cap length. Non-strings become ''."""
    if not isinstance(text, str):
        return ""

    # rstrip after the cut keeps the function idempotent
    return text.replace("<", "").replace(">", "").strip()[:MAX_TEXT_LENGTH].rstrip()


def validate_image_url(url: Any) -> ValidationResult:
    """
    Validate an image URL before it is returned to a caller.

    Only absolute http(s) URLs are accepted, and hosts on loopback, private
    or link-local ranges are refused so no fetch can be pointed at internal
    infrastructure.
    """
    if not url or not isinstance(url, str):
        return ValidationResult(valid=False, error="URL is required", code="InvalidUrl")

    try:
        parsed = urlsplit(url)
        hostname = (parsed.hostname or "").lower()
        # Accessing port raises on out-of-range values
        parsed.port
    except ValueError:
        return ValidationResult(valid=False, error="Invalid URL format", code="InvalidUrl")

    if not parsed.scheme:
        return ValidationResult(valid=False, error="Invalid URL format", code="InvalidUrl")

    if parsed.scheme.lower() not in ALLOWED_URL_SCHEMES:
        return ValidationResult(
            valid=False,
            error="Only HTTP and HTTPS protocols are allowed",
            code="InvalidProtocol"
        )

    if not hostname or FORBIDDEN_HOST_CHARS.search(hostname):
        return ValidationResult(valid=False, error="Invalid URL format", code="InvalidUrl")

    if any(pattern.search(hostname) for pattern in PRIVATE_HOST_PATTERNS):
        return ValidationResult(
            valid=False,
            error="Private IP addresses are not allowed",
            code="PrivateAddress"
        )

    return _VALID


def validate_api_key(api_key: Any) -> ValidationResult:
    """Sanity-check the shape of an upstream API key."""
    if not api_key or not isinstance(api_key, str):
        return ValidationResult(valid=False, error="API key is required", code="MissingApiKey")

    trimmed = api_key.strip()

    if len(trimmed) < 20:
        return ValidationResult(valid=False, error="API key is too short", code="ApiKeyTooShort")

    if len(trimmed) > 200:
        return ValidationResult(valid=False, error="API key is too long", code="ApiKeyTooLong")

    if not API_KEY_PATTERN.match(trimmed):
        return ValidationResult(
            valid=False,
            error="API key contains invalid characters",
            code="ApiKeyInvalidChars"
        )

    return _VALID


def clamp_image_count(num_images: Any, default: int = MAX_IMAGES_PER_ITEM) -> int:
    """
    Clamp a requested images-per-item count to [1, 10].

    Only a value that is not a number falls back to ``default``; 0 and
    negatives clamp to 1.
    """
    try:
        value = int(num_images)
    except (TypeError, ValueError):
        value = default
    return max(MIN_IMAGES_PER_ITEM, min(MAX_IMAGES_PER_ITEM, value))


# =============================================================================
# Menu items
# =============================================================================

def _as_mapping(item: Any) -> Optional[Mapping[str, Any]]:
    if isinstance(item, MenuItem):
        return item.model_dump(by_alias=True)
    if isinstance(item, Mapping):
        return item
    return None


def validate_menu_item(item: Any) -> bool:
    """
    Structural check of an untrusted menu item record.

    Any violation rejects the whole item; nothing is repaired here.
    """
    data = _as_mapping(item)
    if data is None:
        return False

    name = data.get("name")
    if not isinstance(name, str) or len(name) == 0 or len(name) > MAX_NAME_LENGTH:
        return False

    price = data.get("price")
    if not isinstance(price, str) or len(price) == 0 or len(price) > MAX_PRICE_LENGTH:
        return False

    description = data.get("description")
    if not isinstance(description, str) or len(description) > MAX_DESCRIPTION_LENGTH:
        return False

    image_urls = data.get("imageUrls")
    if image_urls:
        if not isinstance(image_urls, list):
            return False

        if len(image_urls) > MAX_IMAGE_URLS:
            return False

        for url in image_urls:
            if not isinstance(url, str) or len(url) > MAX_URL_LENGTH:
                return False
            if not validate_image_url(url).valid:
                return False

    return True


def sanitize_menu_item(item: Any) -> MenuItem:
    """Rebuild a MenuItem from sanitized fields only."""
    data = _as_mapping(item) or {}

    image_urls = data.get("imageUrls")
    if isinstance(image_urls, list):
        image_urls = [url for url in image_urls if isinstance(url, str)][:MAX_IMAGE_URLS]
    else:
        image_urls = []

    return MenuItem(
        name=sanitize_text(data.get("name") or ""),
        price=sanitize_text(data.get("price") or ""),
        description=sanitize_text(data.get("description") or ""),
        image_urls=image_urls
    )


def filter_menu_items(items: Iterable[Any]) -> List[MenuItem]:
    """Validate then sanitize a list of records, dropping rejects, keeping order."""
    accepted = []
    rejected = 0
    for item in items:
        if validate_menu_item(item):
            accepted.append(sanitize_menu_item(item))
        else:
            rejected += 1

    if rejected:
        logger.info(f"Dropped {rejected} invalid menu item(s), kept {len(accepted)}")
    return accepted
