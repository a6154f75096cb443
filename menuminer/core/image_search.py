"""
Google Custom Search client for menu item photos.

Provides methods to:
- Search candidate photos for one dish
- Enrich a whole menu, one independent search per item
"""

import logging
import asyncio
from dataclasses import dataclass
from typing import Any, Dict, List, Optional

import httpx

from .errors import (
    ImageSearchError,
    InvalidRestaurantNameError,
    SearchQuotaExceededError,
    TooManyItemsError,
)
from .security import MAX_URL_LENGTH, clamp_image_count, sanitize_text, validate_image_url
from menuminer.models.schemas import MenuItem

logger = logging.getLogger(__name__)

MAX_ITEMS_PER_BATCH = 100


@dataclass
class ImageSearchOutcome:
    """Result of enriching one item: the URLs found, or why there are none."""
    index: int
    image_urls: Optional[List[str]] = None
    error: Optional[str] = None

    @property
    def ok(self) -> bool:
        return self.error is None


class ImageSearchClient:
    """
    Custom Search JSON API client restricted to large color photos.

    Endpoint used:
    - GET /customsearch/v1?searchType=image - image search
    """

    def __init__(
        self,
        api_key: str,
        search_engine_id: str,
        api_url: str = "https://www.googleapis.com/customsearch/v1",
        timeout_seconds: float = 10.0,
        max_concurrent_requests: int = 10,
        http_client: Optional[httpx.AsyncClient] = None
    ):
        """
        Initialize image search client.

        Args:
            api_key: Custom Search API key
            search_engine_id: Programmable Search Engine id (cx)
            api_url: Custom Search endpoint
            timeout_seconds: Request timeout in seconds
            max_concurrent_requests: Parallel searches when enriching a menu
            http_client: Pre-built client (tests inject a mock transport)
        """
        self.api_key = api_key
        self.search_engine_id = search_engine_id
        self.api_url = api_url
        self.timeout_seconds = timeout_seconds
        self.max_concurrent_requests = max(1, max_concurrent_requests)
        self._client = http_client

    async def _get_client(self) -> httpx.AsyncClient:
        """Get or create async HTTP client."""
        if self._client is None or self._client.is_closed:
            self._client = httpx.AsyncClient(timeout=self.timeout_seconds)
        return self._client

    async def close(self):
        """Close the HTTP client."""
        if self._client and not self._client.is_closed:
            await self._client.aclose()
            self._client = None

    # =========================================================================
    # Single search
    # =========================================================================

    async def search_images(
        self,
        item_name: str,
        restaurant_name: str,
        num_images: int
    ) -> List[str]:
        """
        Search photos for one dish.

        Args:
            item_name: Dish name
            restaurant_name: Restaurant the menu belongs to
            num_images: Maximum URLs to return (clamped to 1-10)

        Returns:
            Absolute http(s) URLs that pass the SSRF check, at most num_images

        Raises:
            SearchQuotaExceededError: upstream answered 429
            ImageSearchError: any other upstream or payload failure
        """
        num = clamp_image_count(num_images)
        params = {
            "key": self.api_key,
            "cx": self.search_engine_id,
            "q": f"{restaurant_name} {item_name} food",
            "searchType": "image",
            "num": num,
            "imgType": "photo",
            "imgSize": "large",
            "imgColorType": "color",
        }

        client = await self._get_client()
        try:
            response = await client.get(self.api_url, params=params, timeout=self.timeout_seconds)
        except httpx.TimeoutException as e:
            raise ImageSearchError("Image search timed out") from e
        except httpx.HTTPError as e:
            raise ImageSearchError(f"Image search request failed: {e}") from e

        if response.status_code == 429:
            raise SearchQuotaExceededError("API quota exceeded. Please try again later.")

        if response.status_code != 200:
            logger.error(f"Custom Search API error: {response.status_code} {response.reason_phrase}")
            raise ImageSearchError("Search API error")

        try:
            data = response.json()
        except ValueError as e:
            raise ImageSearchError("Invalid API response") from e

        if not isinstance(data, dict):
            raise ImageSearchError("Invalid API response")

        return self._extract_links(data, num)

    def _extract_links(self, data: Dict[str, Any], num: int) -> List[str]:
        results = data.get("items")
        if not isinstance(results, list):
            return []

        links = []
        for result in results:
            link = result.get("link") if isinstance(result, dict) else None
            # Same bound validate_menu_item applies to image_urls
            if isinstance(link, str) and len(link) <= MAX_URL_LENGTH and validate_image_url(link).valid:
                links.append(link)
        return links[:num]

    async def fetch_item_images(
        self,
        item_name: str,
        restaurant_name: str,
        num_images: int
    ) -> Optional[List[str]]:
        """
        Photos for one dish, or None when the search cannot be made or fails.

        Failures are logged and swallowed: one dish without photos never
        breaks the rest of the menu.
        """
        clean_item = sanitize_text(item_name)
        clean_restaurant = sanitize_text(restaurant_name)

        if not clean_item or not clean_restaurant:
            logger.warning("Invalid item name or restaurant name. Skipping image fetch.")
            return None

        try:
            return await self.search_images(clean_item, clean_restaurant, num_images)
        except ImageSearchError as e:
            logger.warning(f"Image search failed for '{clean_item}': {e}")
            return None

    # =========================================================================
    # Batch enrichment
    # =========================================================================

    async def search_batch(
        self,
        items: List[MenuItem],
        restaurant_name: str,
        num_images: int
    ) -> List[ImageSearchOutcome]:
        """
        Run one independent search per item.

        Returns:
            One outcome per input item, in input order
        """
        semaphore = asyncio.Semaphore(self.max_concurrent_requests)

        async def search_with_limit(index: int, item: MenuItem) -> ImageSearchOutcome:
            async with semaphore:
                urls = await self.fetch_item_images(item.name, restaurant_name, num_images)
            if urls is None:
                return ImageSearchOutcome(index=index, error="no images")
            return ImageSearchOutcome(index=index, image_urls=urls)

        tasks = [search_with_limit(i, item) for i, item in enumerate(items)]
        results = await asyncio.gather(*tasks, return_exceptions=True)

        # Convert exceptions to failed outcomes
        outcomes = []
        for i, result in enumerate(results):
            if isinstance(result, BaseException):
                logger.error(f"Exception searching images for item {i}: {result}")
                outcomes.append(ImageSearchOutcome(index=i, error=str(result)))
            else:
                outcomes.append(result)

        success_count = sum(1 for o in outcomes if o.ok)
        logger.info(f"Image search complete: {success_count}/{len(items)} items enriched")
        return outcomes

    async def fetch_images_for_all_items(
        self,
        items: List[MenuItem],
        restaurant_name: str,
        num_images: int
    ) -> List[MenuItem]:
        """
        Attach candidate photos to every menu item.

        Args:
            items: Validated, sanitized menu items
            restaurant_name: Restaurant the menu belongs to
            num_images: Photos per item (clamped to 1-10)

        Returns:
            Copies of the items in the same order; items whose search failed
            have image_urls=None

        Raises:
            TooManyItemsError: more than 100 items
            InvalidRestaurantNameError: name is empty after sanitization
        """
        if len(items) > MAX_ITEMS_PER_BATCH:
            raise TooManyItemsError(f"Too many items to process (maximum {MAX_ITEMS_PER_BATCH})")

        clean_restaurant = sanitize_text(restaurant_name)
        if not clean_restaurant:
            raise InvalidRestaurantNameError("Invalid restaurant name")

        num = clamp_image_count(num_images)
        outcomes = await self.search_batch(items, clean_restaurant, num)

        return [
            item.model_copy(update={"image_urls": outcome.image_urls})
            for item, outcome in zip(items, outcomes)
        ]
