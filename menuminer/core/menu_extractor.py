"""
Menu Extractor using Gemini Vision.

Sends a menu photo plus a fixed instruction prompt to Gemini in
schema-constrained JSON mode and returns the raw list of extracted items.
The result is untrusted: callers validate and sanitize every record.
"""

import logging
import json
import asyncio
from typing import Any, List, TypedDict

import google.generativeai as genai

from .errors import (
    ExtractionError,
    InvalidImageError,
    InvalidResponseFormatError,
    ResponseTooLargeError,
)
from .security import ImageUpload, validate_image_file

logger = logging.getLogger(__name__)

MAX_RESPONSE_CHARS = 1_000_000
MAX_EXTRACTED_ITEMS = 100


class MenuItemDict(TypedDict):
    """Response schema handed to Gemini: name, description and price, all strings."""
    name: str
    description: str
    price: str


class MenuExtractor:
    """
    Extracts menu items from menu photos with Gemini Vision.

    One call per image. Failures are raised as a single ExtractionError with
    a descriptive message; partial results are never returned.
    """

    MENU_EXTRACTION_PROMPT = (
        "Extract all menu items from this image. For each item, provide its name, "
        "a brief description, and its price. If a description is not available, "
        "create a concise, plausible one. Ensure the output is a valid JSON array "
        "of objects, where each object represents a menu item."
    )

    def __init__(
        self,
        api_key: str,
        model_name: str = "gemini-2.5-flash",
        timeout_seconds: float = 60.0
    ):
        """
        Initialize the menu extractor.

        Args:
            api_key: Gemini API key
            model_name: Gemini model to use
            timeout_seconds: Upper bound on one extraction call
        """
        self.model_name = model_name
        self.timeout_seconds = timeout_seconds

        genai.configure(api_key=api_key)
        self.model = genai.GenerativeModel(model_name)
        self.generation_config = genai.GenerationConfig(
            response_mime_type="application/json",
            response_schema=list[MenuItemDict]
        )

    async def extract_menu_items(self, upload: ImageUpload) -> List[Any]:
        """
        Extract raw menu items from one menu photo.

        Args:
            upload: The uploaded image

        Returns:
            Raw (unsanitized) list of candidate menu items

        Raises:
            ExtractionError: on invalid input, upstream failure, timeout or
                an unusable model response
        """
        validation = validate_image_file(upload)
        if not validation.valid:
            raise InvalidImageError(f"Invalid image file: {validation.error}")

        logger.info(f"Extracting menu items from {upload.filename} ({upload.size} bytes)")

        try:
            image_part = {
                "mime_type": upload.content_type,
                "data": upload.data
            }

            response = await asyncio.wait_for(
                asyncio.to_thread(
                    self.model.generate_content,
                    [image_part, self.MENU_EXTRACTION_PROMPT],
                    generation_config=self.generation_config,
                    request_options={"timeout": self.timeout_seconds}
                ),
                timeout=self.timeout_seconds
            )

            items = self._parse_items(response.text)

        except ExtractionError:
            raise
        except asyncio.TimeoutError:
            logger.error(f"Menu extraction timed out after {self.timeout_seconds}s for {upload.filename}")
            raise ExtractionError("Failed to analyze menu: Request timed out")
        except Exception as e:
            logger.error(f"Menu extraction failed for {upload.filename}: {e}")
            raise ExtractionError(f"Failed to analyze menu: {e}") from e

        logger.info(f"Extracted {len(items)} candidate items from {upload.filename}")
        return items

    def _parse_items(self, response_text: Any) -> List[Any]:
        """Bound, parse and shape-check the model's JSON output."""
        json_text = (response_text or "").strip()

        if len(json_text) > MAX_RESPONSE_CHARS:
            raise ResponseTooLargeError("Failed to analyze menu: Response too large")

        try:
            parsed = json.loads(json_text)
        except json.JSONDecodeError as e:
            logger.debug(f"Unparseable response: {json_text[:500]}")
            raise InvalidResponseFormatError("Failed to analyze menu: Invalid response format") from e

        if not isinstance(parsed, list):
            raise InvalidResponseFormatError("Failed to analyze menu: Invalid response format")

        if len(parsed) > MAX_EXTRACTED_ITEMS:
            raise ExtractionError(
                f"Failed to analyze menu: Too many items (max {MAX_EXTRACTED_ITEMS})",
                code="TooManyItems"
            )

        return parsed
