from contextlib import asynccontextmanager
from typing import Optional
import logging

from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from starlette.exceptions import HTTPException as StarletteHTTPException

from menuminer import __version__
from menuminer.api import router as api_router
from menuminer.auth import GoogleAuthGate, SessionManager
from menuminer.config import AppConfig, get_app_config
from menuminer.core import ImageSearchClient, MenuExtractor, MenuScanOrchestrator, RateLimiter
from menuminer.core.errors import ConfigurationError, MenuMinerError, RateLimitedError
from menuminer.middleware import (
    SecurityHeadersMiddleware,
    SessionAuthMiddleware,
    ensure_auth_allowed,
)
from menuminer.models.schemas import HealthResponse
from menuminer.tracking import TrackingContext, new_request_id

logger = logging.getLogger(__name__)


def _configure_logging(level: str):
    logging.basicConfig(
        level=getattr(logging, level, logging.INFO),
        format='%(asctime)s - %(name)s - %(levelname)s - %(message)s'
    )


# ============================================================================
# ERROR RENDERING
# ============================================================================
async def menuminer_error_handler(request: Request, exc: MenuMinerError):
    if exc.status_code >= 500:
        logger.error(f"{request.method} {request.url.path} failed ({exc.code}): {exc.message}")
    content = {"error": exc.message, "code": exc.code}
    if isinstance(exc, RateLimitedError):
        content["remainingRequests"] = exc.remaining
    return JSONResponse(status_code=exc.status_code, content=content)


async def http_error_handler(request: Request, exc: StarletteHTTPException):
    return JSONResponse(
        status_code=exc.status_code,
        content={"error": exc.detail},
        headers=getattr(exc, "headers", None)
    )


async def validation_error_handler(request: Request, exc: RequestValidationError):
    logger.info(f"Rejected malformed request body for {request.url.path}")
    return JSONResponse(
        status_code=400,
        content={"error": "Invalid request body", "code": "InputInvalid"}
    )


# ============================================================================
# APPLICATION FACTORY
# ============================================================================
def create_app(
    config: Optional[AppConfig] = None,
    extractor: Optional[MenuExtractor] = None,
    image_search: Optional[ImageSearchClient] = None,
    auth_gate: Optional[GoogleAuthGate] = None,
    session_manager: Optional[SessionManager] = None,
    rate_limiter: Optional[RateLimiter] = None
) -> FastAPI:
    """
    Build the MenuMiner application.

    Workflow:
    1. Load and validate configuration (production refuses to start when
       required keys are missing)
    2. Build the Gemini extractor and image search client for whatever
       credentials are present
    3. Build the scan orchestrator, rate limiter, sign-in gate and session manager
    4. Install middleware (tracking, session auth, security headers, CORS)
    5. Register routes and error handlers
    """
    config = config or get_app_config()
    _configure_logging(config.log_level)

    # Middleware is built lazily on the first request; fail at startup instead
    ensure_auth_allowed(config.auth.enabled, config.environment)

    missing = config.validate()
    if missing and config.is_production:
        raise ConfigurationError(
            f"Missing required configuration: {', '.join(missing)}",
            missing_keys=missing
        )

    if extractor is None and config.gemini.api_key:
        extractor = MenuExtractor(
            api_key=config.gemini.api_key,
            model_name=config.gemini.model_name,
            timeout_seconds=config.gemini.timeout_seconds
        )

    if image_search is None and config.search.api_key and config.search.search_engine_id:
        image_search = ImageSearchClient(
            api_key=config.search.api_key,
            search_engine_id=config.search.search_engine_id,
            api_url=config.search.api_url,
            timeout_seconds=config.search.timeout_seconds,
            max_concurrent_requests=config.search.max_concurrent_requests
        )

    rate_limiter = rate_limiter or RateLimiter(
        max_requests=config.rate_limit.max_requests,
        window_seconds=config.rate_limit.window_seconds
    )

    orchestrator = None
    if extractor is not None and image_search is not None:
        orchestrator = MenuScanOrchestrator(
            extractor=extractor,
            image_search=image_search,
            rate_limiter=rate_limiter,
            rate_limit_key=config.rate_limit.key
        )

    auth_gate = auth_gate or GoogleAuthGate(
        client_id=config.auth.google_client_id,
        allowed_email=config.auth.allowed_email,
        tokeninfo_url=config.auth.tokeninfo_url,
        timeout_seconds=config.auth.timeout_seconds
    )
    session_manager = session_manager or SessionManager(
        secret=config.auth.session_secret,
        allowed_email=config.auth.allowed_email,
        ttl_minutes=config.auth.session_ttl_minutes,
        algorithm=config.auth.session_algorithm
    )

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        yield
        if image_search is not None:
            await image_search.close()

    app = FastAPI(title="MenuMiner", version=__version__, lifespan=lifespan)

    app.state.config = config
    app.state.extractor = extractor
    app.state.image_search = image_search
    app.state.orchestrator = orchestrator
    app.state.rate_limiter = rate_limiter
    app.state.auth_gate = auth_gate
    app.state.session_manager = session_manager

    @app.middleware("http")
    async def tracking_context_middleware(request: Request, call_next):
        """
        Bind the request id and signed-in email into the tracking context.
        Runs inside SessionAuthMiddleware, so request.state.session is set.
        """
        session = getattr(request.state, "session", None)
        request_id = request.headers.get("X-Request-ID") or new_request_id()
        async with TrackingContext(
            request_id=request_id,
            user_email=session.email if session else None
        ):
            response = await call_next(request)
        response.headers["X-Request-ID"] = request_id
        return response

    app.add_middleware(
        SessionAuthMiddleware,
        session_manager=session_manager,
        enabled=config.auth.enabled,
        environment=config.environment
    )
    app.add_middleware(SecurityHeadersMiddleware)

    # CORS outermost so pre-flight requests never reach auth
    app.add_middleware(
        CORSMiddleware,
        allow_origins=config.cors_allow_origins,
        allow_credentials=True,
        allow_methods=["GET", "POST", "OPTIONS"],
        allow_headers=["Authorization", "Content-Type"],
    )

    app.add_exception_handler(MenuMinerError, menuminer_error_handler)
    app.add_exception_handler(StarletteHTTPException, http_error_handler)
    app.add_exception_handler(RequestValidationError, validation_error_handler)

    @app.get("/health", response_model=HealthResponse)
    def health_check():
        return HealthResponse(
            status="ok",
            service="menuminer",
            version=__version__,
            configured=not config.missing_keys()
        )

    @app.get("/auth/config")
    def auth_config():
        """
        Return Google Sign-In configuration for the frontend.
        """
        return {
            "enabled": config.auth.enabled,
            "provider": "google",
            "google": {
                "client_id": config.auth.google_client_id or ""
            }
        }

    app.include_router(api_router)

    logger.info(
        f"MenuMiner {__version__} ready (environment={config.environment}, "
        f"auth={'on' if config.auth.enabled else 'off'}, scan={'on' if orchestrator else 'off'})"
    )
    return app


app = create_app()
