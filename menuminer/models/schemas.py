"""
MenuMiner - Pydantic Models
Wire schemas for menu extraction, image search, sign-in and scans.

Field names follow the camelCase the browser client sends; Python code uses
the snake_case attribute names.
"""

from enum import Enum
from typing import Optional, List, Any
from pydantic import BaseModel, ConfigDict, Field


class MenuItem(BaseModel):
    """
    One dish extracted from a photographed menu.

    Only ever surfaced after validation and sanitization. ``price`` is kept
    verbatim as printed on the menu and is never parsed as currency.
    """
    model_config = ConfigDict(populate_by_name=True)

    name: str = Field(..., description="Dish name (1-500 chars)")
    description: str = Field(default="", description="Short description (0-2000 chars)")
    price: str = Field(..., description="Price as printed (1-100 chars)")
    image_urls: Optional[List[str]] = Field(
        default=None,
        alias="imageUrls",
        description="Candidate photo URLs (0-50)"
    )


class ScanState(str, Enum):
    """States of a menu scan flow."""
    IDLE = "idle"
    EXTRACTING = "extracting"
    ENRICHING = "enriching"
    DONE = "done"
    ERROR = "error"


# =============================================================================
# Request / Response Models
# =============================================================================

class AnalyzeMenuRequest(BaseModel):
    """Request body for the menu extraction proxy."""
    model_config = ConfigDict(
        populate_by_name=True,
        json_schema_extra={
            "example": {
                "imageData": "/9j/4AAQSkZJRgABAQAAAQABAAD...",
                "mimeType": "image/jpeg"
            }
        }
    )

    image_data: Optional[str] = Field(default=None, alias="imageData", description="Base64 image payload")
    mime_type: Optional[str] = Field(default=None, alias="mimeType", description="Declared image MIME type")


class AnalyzeMenuResponse(BaseModel):
    # Raw model output; the caller validates and sanitizes
    items: List[Any] = Field(default_factory=list)


class SearchImagesRequest(BaseModel):
    """Request body for the image search proxy."""
    model_config = ConfigDict(
        populate_by_name=True,
        json_schema_extra={
            "example": {
                "itemName": "Margherita Pizza",
                "restaurantName": "Test Cafe",
                "numImages": 5
            }
        }
    )

    item_name: Any = Field(default=None, alias="itemName")
    restaurant_name: Any = Field(default=None, alias="restaurantName")
    num_images: Any = Field(default=10, alias="numImages")


class SearchImagesResponse(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    image_urls: List[str] = Field(default_factory=list, alias="imageUrls")


class AuthRequest(BaseModel):
    """Sign-in request carrying the Google ID token from the browser."""
    model_config = ConfigDict(populate_by_name=True)

    email: Any = None
    google_token: Any = Field(default=None, alias="googleToken")
    name: Optional[str] = None
    picture: Optional[str] = None


class AuthResponse(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    authenticated: bool
    message: Optional[str] = None
    error: Optional[str] = None
    email: Optional[str] = None
    session_token: Optional[str] = Field(default=None, alias="sessionToken")
    expires_at: Optional[int] = Field(default=None, alias="expiresAt")


class ScanResponse(BaseModel):
    """Outcome of a full scan: the published items or the error shown to the user."""
    model_config = ConfigDict(populate_by_name=True)

    state: ScanState
    items: Optional[List[MenuItem]] = None
    error: Optional[str] = None
    code: Optional[str] = None
    remaining_requests: Optional[int] = Field(default=None, alias="remainingRequests")


class HealthResponse(BaseModel):
    """Health check response schema."""
    status: str = "ok"
    service: str = "menuminer"
    version: str = ""
    configured: bool = False
