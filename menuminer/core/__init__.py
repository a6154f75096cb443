"""Core components for MenuMiner."""

from .menu_extractor import MenuExtractor
from .image_search import ImageSearchClient, ImageSearchOutcome
from .rate_limiter import RateLimiter
from .scan_orchestrator import MenuScanOrchestrator, ScanSession

__all__ = [
    "MenuExtractor",
    "ImageSearchClient",
    "ImageSearchOutcome",
    "RateLimiter",
    "MenuScanOrchestrator",
    "ScanSession",
]
