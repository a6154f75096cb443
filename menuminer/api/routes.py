"""
MenuMiner API routes.

Server-side proxies for Gemini extraction and Google image search, the
Google Sign-In exchange, and the full scan flow.
"""
import base64
import binascii
import logging
from typing import List, Optional

from fastapi import APIRouter, Depends, File, Form, Request, UploadFile, status
from fastapi.responses import JSONResponse
from fastapi.security import HTTPAuthorizationCredentials

from menuminer.auth import (
    AuthSession,
    GoogleAuthGate,
    SessionManager,
    get_current_session,
    security,
)
from menuminer.core import ImageSearchClient, MenuExtractor, MenuScanOrchestrator, ScanSession
from menuminer.core.errors import (
    ConfigurationError,
    ImageValidationError,
    MenuMinerError,
    MissingFieldError,
    InputInvalidError,
)
from menuminer.core.security import MAX_FILE_SIZE, MAX_FILES, ImageUpload, clamp_image_count
from menuminer.models.schemas import (
    AnalyzeMenuRequest,
    AnalyzeMenuResponse,
    AuthRequest,
    AuthResponse,
    ScanResponse,
    ScanState,
    SearchImagesRequest,
    SearchImagesResponse,
)

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api", tags=["MenuMiner"])

# Types the extraction proxy forwards to Gemini
ANALYZE_MIME_TYPES = ("image/jpeg", "image/png", "image/webp", "image/gif")
MAX_SEARCH_TEXT_LENGTH = 200
DEFAULT_IMAGES_PER_ITEM = 10

# Scan error codes answered with 400; everything else not listed maps to 500
SCAN_INPUT_ERROR_CODES = {
    "MissingInput",
    "InvalidType",
    "TooLarge",
    "NameTooLong",
    "Empty",
    "TooManyFiles",
    "InvalidRestaurantName",
    "TooManyItems",
}
SCAN_ERROR_STATUS = {
    "NoValidItems": 422,
    "RateLimited": status.HTTP_429_TOO_MANY_REQUESTS,
}


# ============================================================================
# DEPENDENCIES
# ============================================================================

def get_extractor(request: Request) -> MenuExtractor:
    extractor = request.app.state.extractor
    if extractor is None:
        logger.error("GEMINI_API_KEY not configured")
        raise ConfigurationError()
    return extractor


def get_image_search(request: Request) -> ImageSearchClient:
    image_search = request.app.state.image_search
    if image_search is None:
        logger.error("Google Search API credentials not configured")
        raise ConfigurationError()
    return image_search


def get_orchestrator(request: Request) -> MenuScanOrchestrator:
    orchestrator = request.app.state.orchestrator
    if orchestrator is None:
        logger.error("Scan flow unavailable: Gemini or Google Search credentials not configured")
        raise ConfigurationError()
    return orchestrator


def get_auth_gate(request: Request) -> GoogleAuthGate:
    return request.app.state.auth_gate


def get_session_manager(request: Request) -> SessionManager:
    return request.app.state.session_manager


# ============================================================================
# EXTRACTION AND SEARCH PROXIES
# ============================================================================

@router.post("/analyze-menu", response_model=AnalyzeMenuResponse)
async def analyze_menu(
    body: AnalyzeMenuRequest,
    extractor: MenuExtractor = Depends(get_extractor)
):
    """Extract raw menu items from one base64-encoded menu photo."""
    if not body.image_data or not body.mime_type:
        raise MissingFieldError("Missing required fields: imageData and mimeType")

    if body.mime_type not in ANALYZE_MIME_TYPES:
        raise ImageValidationError("Invalid image type. Allowed: JPEG, PNG, WebP, GIF")

    # Size is estimated from the encoded length before decoding
    if len(body.image_data) * 3 / 4 > MAX_FILE_SIZE:
        raise ImageValidationError("File too large (max 10MB)", code="TooLarge")

    try:
        data = base64.b64decode(body.image_data, validate=True)
    except (binascii.Error, ValueError):
        raise InputInvalidError("Invalid image data: not valid base64")

    upload = ImageUpload(filename="menu-image", content_type=body.mime_type, data=data)
    items = await extractor.extract_menu_items(upload)
    return AnalyzeMenuResponse(items=items)


@router.post("/search-images", response_model=SearchImagesResponse, response_model_by_alias=True)
async def search_images(
    body: SearchImagesRequest,
    image_search: ImageSearchClient = Depends(get_image_search)
):
    """Search candidate photos for one dish."""
    if not body.item_name or not body.restaurant_name:
        raise MissingFieldError("Missing required fields: itemName and restaurantName")

    if not isinstance(body.item_name, str) or not isinstance(body.restaurant_name, str):
        raise InputInvalidError("Invalid input types")

    if len(body.item_name) > MAX_SEARCH_TEXT_LENGTH or len(body.restaurant_name) > MAX_SEARCH_TEXT_LENGTH:
        raise InputInvalidError(f"Input too long (max {MAX_SEARCH_TEXT_LENGTH} characters)")

    # A missing, zero or non-numeric count means the default
    try:
        requested = int(body.num_images)
    except (TypeError, ValueError):
        requested = 0

    urls = await image_search.search_images(
        body.item_name,
        body.restaurant_name,
        clamp_image_count(requested or DEFAULT_IMAGES_PER_ITEM)
    )
    return SearchImagesResponse(image_urls=urls)


# ============================================================================
# SIGN-IN
# ============================================================================

@router.post("/auth", response_model=AuthResponse, response_model_by_alias=True)
async def sign_in(
    body: AuthRequest,
    gate: GoogleAuthGate = Depends(get_auth_gate),
    sessions: SessionManager = Depends(get_session_manager)
):
    """Exchange a Google ID token for a MenuMiner session credential."""
    try:
        claims = await gate.authenticate(body.email, body.google_token)
    except MenuMinerError as e:
        return JSONResponse(
            status_code=e.status_code,
            content={"authenticated": False, "error": e.message}
        )

    token, session = sessions.issue(
        claims["email"],
        name=claims.get("name") or body.name,
        picture=claims.get("picture") or body.picture
    )
    return AuthResponse(
        authenticated=True,
        message="Authentication successful",
        email=session.email,
        session_token=token,
        expires_at=session.expires_at
    )


@router.post("/auth/logout")
async def sign_out(
    credentials: Optional[HTTPAuthorizationCredentials] = Depends(security),
    session: AuthSession = Depends(get_current_session),
    sessions: SessionManager = Depends(get_session_manager)
):
    """Revoke the caller's session credential."""
    if credentials:
        sessions.revoke(credentials.credentials)
    return {"success": True, "email": session.email}


@router.get("/me")
async def get_me(session: AuthSession = Depends(get_current_session)):
    """Current signed-in user."""
    return {
        "authenticated": session.authenticated,
        "email": session.email,
        "name": session.name,
        "picture": session.picture,
        "expiresAt": session.expires_at,
    }


# ============================================================================
# FULL SCAN
# ============================================================================

def _scan_status(code: Optional[str]) -> int:
    if code in SCAN_INPUT_ERROR_CODES:
        return status.HTTP_400_BAD_REQUEST
    return SCAN_ERROR_STATUS.get(code, status.HTTP_500_INTERNAL_SERVER_ERROR)


def _scan_error(message: str, code: str) -> JSONResponse:
    response = ScanResponse(state=ScanState.ERROR, error=message, code=code)
    return JSONResponse(
        status_code=_scan_status(code),
        content=response.model_dump(mode="json", by_alias=True, exclude_none=True)
    )


async def _read_uploads(files: List[UploadFile]):
    """
    Read uploads without buffering more than the limits allow.

    Returns:
        Tuple of (uploads, None) or (None, error response)
    """
    if len(files) > MAX_FILES:
        return None, _scan_error(f"Maximum {MAX_FILES} files allowed", "TooManyFiles")

    uploads = []
    for upload_file in files:
        if upload_file.size is not None and upload_file.size > MAX_FILE_SIZE:
            return None, _scan_error(
                f"File size exceeds maximum allowed size of {MAX_FILE_SIZE // 1024 // 1024}MB",
                "TooLarge"
            )

        # One byte past the limit is enough for validation to refuse it
        data = await upload_file.read(MAX_FILE_SIZE + 1)
        uploads.append(ImageUpload(
            filename=upload_file.filename or "",
            content_type=upload_file.content_type or "",
            data=data
        ))
    return uploads, None


@router.post("/scan")
async def scan_menu(
    files: Optional[List[UploadFile]] = File(None),
    restaurant_name: Optional[str] = Form(None, alias="restaurantName"),
    num_images: Optional[str] = Form(None, alias="numImages"),
    orchestrator: MenuScanOrchestrator = Depends(get_orchestrator)
):
    """
    Run a full scan: extract items from every photo, then attach photos.

    Answers 200 with the published items, or the scan error with the status
    matching its code.
    """
    uploads, rejection = await _read_uploads(files or [])
    if rejection is not None:
        return rejection

    session = await orchestrator.run_scan(ScanSession(), uploads, restaurant_name, num_images)

    response = ScanResponse(
        state=session.state,
        items=session.items,
        error=session.error,
        code=session.error_code,
        remaining_requests=session.remaining_requests
    )
    status_code = status.HTTP_200_OK if session.state == ScanState.DONE else _scan_status(session.error_code)
    return JSONResponse(
        status_code=status_code,
        content=response.model_dump(mode="json", by_alias=True, exclude_none=True)
    )
