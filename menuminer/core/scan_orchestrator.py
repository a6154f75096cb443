"""
Scan Orchestrator for MenuMiner.

Coordinates extraction and image enrichment for one menu scan and drives the
scan session state machine.
"""

import asyncio
import itertools
import uuid
from dataclasses import dataclass, field
from typing import Any, List, Optional, Sequence

import structlog

from .errors import (
    ImageValidationError,
    InvalidRestaurantNameError,
    MenuMinerError,
    MissingInputError,
    NoValidItemsError,
    RateLimitedError,
)
from .image_search import ImageSearchClient
from .menu_extractor import MenuExtractor
from .rate_limiter import RateLimiter
from .security import (
    ImageUpload,
    clamp_image_count,
    filter_menu_items,
    sanitize_text,
    validate_image_files,
)
from menuminer.models.schemas import MenuItem, ScanState

logger = structlog.get_logger(__name__)

RATE_LIMIT_KEY = "analyze-request"
MIN_RESTAURANT_NAME_LENGTH = 2
MAX_RESTAURANT_NAME_LENGTH = 200


@dataclass
class ScanSession:
    """
    State of one scan flow as shown to the user.

    Every run gets a run id; results are only applied while that run is still
    the current one, so a cleared or superseded run cannot overwrite newer
    state.
    """
    session_id: str = field(default_factory=lambda: uuid.uuid4().hex)
    state: ScanState = ScanState.IDLE
    loading_message: Optional[str] = None
    items: Optional[List[MenuItem]] = None
    error: Optional[str] = None
    error_code: Optional[str] = None
    remaining_requests: Optional[int] = None
    _run_id: int = 0

    @property
    def is_loading(self) -> bool:
        return self.state in (ScanState.EXTRACTING, ScanState.ENRICHING)

    def begin_run(self) -> int:
        self._run_id += 1
        self.state = ScanState.IDLE
        self.loading_message = None
        self.items = None
        self.error = None
        self.error_code = None
        self.remaining_requests = None
        return self._run_id

    def is_current(self, run_id: int) -> bool:
        return run_id == self._run_id

    def transition(self, run_id: int, state: ScanState, message: Optional[str] = None) -> bool:
        if not self.is_current(run_id):
            return False
        self.state = state
        self.loading_message = message
        return True

    def complete(self, run_id: int, items: List[MenuItem]) -> bool:
        if not self.is_current(run_id):
            return False
        self.state = ScanState.DONE
        self.loading_message = None
        self.items = items
        return True

    def fail(self, run_id: int, message: str, code: str, remaining: Optional[int] = None) -> bool:
        if not self.is_current(run_id):
            return False
        self.state = ScanState.ERROR
        self.loading_message = None
        self.items = None
        self.error = message
        self.error_code = code
        self.remaining_requests = remaining
        return True

    def clear(self) -> None:
        """Reset to idle and abandon any run still in flight."""
        self.begin_run()


class MenuScanOrchestrator:
    """
    Main orchestration logic for a menu scan.

    Workflow:
    1. Check inputs (uploads present and valid, restaurant name given)
    2. Check the rate limit
    3. Sanitize and bound the restaurant name, clamp images per item
    4. Extract items from every upload with Gemini
    5. Validate and sanitize the extracted items
    6. Search photos for every item
    7. Validate and sanitize again, then publish
    """

    def __init__(
        self,
        extractor: MenuExtractor,
        image_search: ImageSearchClient,
        rate_limiter: RateLimiter,
        rate_limit_key: str = RATE_LIMIT_KEY
    ):
        self.extractor = extractor
        self.image_search = image_search
        self.rate_limiter = rate_limiter
        self.rate_limit_key = rate_limit_key

    async def run_scan(
        self,
        session: ScanSession,
        uploads: Sequence[ImageUpload],
        restaurant_name: Any,
        num_images: Any = 10
    ) -> ScanSession:
        """
        Run one scan and record its outcome on ``session``.

        Never raises: every failure ends in the ``error`` state with the
        message the user should see.
        """
        run_id = session.begin_run()
        log = logger.bind(session_id=session.session_id, run_id=run_id)

        try:
            clean_name, num = self._check_request(uploads, restaurant_name, num_images)
        except RateLimitedError as e:
            log.info("scan_rejected", code=e.code, remaining=e.remaining)
            session.fail(run_id, e.message, e.code, remaining=e.remaining)
            return session
        except MenuMinerError as e:
            log.info("scan_rejected", code=e.code)
            session.fail(run_id, e.message, e.code)
            return session

        log.info("scan_started", uploads=len(uploads), num_images=num)

        try:
            if not session.transition(run_id, ScanState.EXTRACTING, "Extracting menu items..."):
                return session
            raw_items = await self._extract_all(uploads)

            validated = filter_menu_items(raw_items)
            if not validated:
                raise NoValidItemsError(
                    "No valid menu items were extracted. Please try a different image."
                )

            if not session.transition(run_id, ScanState.ENRICHING, f"Fetching {num} images per item..."):
                return session
            enriched = await self.image_search.fetch_images_for_all_items(validated, clean_name, num)

            # Enriched records are re-checked as if untrusted
            final_items = filter_menu_items(enriched)

        except NoValidItemsError as e:
            log.info("scan_failed", code=e.code)
            session.fail(run_id, e.message, e.code)
            return session
        except Exception as e:
            code = e.code if isinstance(e, MenuMinerError) else "AnalysisFailed"
            message = e.message if isinstance(e, MenuMinerError) else (str(e) or "An unexpected error occurred.")
            log.error("scan_failed", code=code, error=message)
            session.fail(run_id, f"Analysis failed: {message}", code)
            return session

        if session.complete(run_id, final_items):
            log.info("scan_completed", items=len(final_items))
        else:
            log.info("scan_discarded")
        return session

    def _check_request(self, uploads: Sequence[ImageUpload], restaurant_name: Any, num_images: Any):
        """Checks done before any service is contacted."""
        if not uploads or not isinstance(restaurant_name, str) or not restaurant_name.strip():
            raise MissingInputError("Please upload an image and enter the restaurant name.")

        file_check = validate_image_files(uploads)
        if not file_check.valid:
            raise ImageValidationError(file_check.error, code=file_check.code)

        if not self.rate_limiter.is_allowed(self.rate_limit_key):
            remaining = self.rate_limiter.get_remaining(self.rate_limit_key)
            raise RateLimitedError(
                "Rate limit exceeded. Please wait before making another request. "
                f"({remaining} requests remaining)",
                remaining=remaining
            )

        clean_name = sanitize_text(restaurant_name)
        if len(clean_name) < MIN_RESTAURANT_NAME_LENGTH:
            raise InvalidRestaurantNameError(
                "Please enter a valid restaurant name (at least 2 characters)."
            )
        if len(clean_name) > MAX_RESTAURANT_NAME_LENGTH:
            raise InvalidRestaurantNameError(
                "Restaurant name is too long (maximum 200 characters)."
            )

        return clean_name, clamp_image_count(num_images)

    async def _extract_all(self, uploads: Sequence[ImageUpload]) -> List[Any]:
        """Extract every upload concurrently; merged in upload order."""
        per_image = await asyncio.gather(
            *(self.extractor.extract_menu_items(upload) for upload in uploads)
        )
        return list(itertools.chain.from_iterable(per_image))
