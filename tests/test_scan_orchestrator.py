"""End-to-end scan scenarios with a fake Gemini model and mock image search."""

import asyncio

import pytest

from menuminer.core import MenuScanOrchestrator, RateLimiter, ScanSession
from menuminer.core.errors import ExtractionError
from menuminer.core.security import ImageUpload
from menuminer.models.schemas import ScanState
from tests.conftest import FakeGenerativeModel, SearchBackend, make_extractor, make_search_client

pytestmark = pytest.mark.anyio


def _orchestrator(extractor, backend, limiter=None):
    return MenuScanOrchestrator(
        extractor=extractor,
        image_search=make_search_client(backend),
        rate_limiter=limiter or RateLimiter()
    )


class StubExtractor:
    """Returns canned items per filename; optionally waits on an event first."""

    def __init__(self, items_by_file, gate=None):
        self.items_by_file = items_by_file
        self.gate = gate
        self.calls = []

    async def extract_menu_items(self, upload):
        self.calls.append(upload.filename)
        if self.gate is not None:
            await self.gate.wait()
        result = self.items_by_file[upload.filename]
        if isinstance(result, Exception):
            raise result
        return result


async def test_single_photo_scan(jpeg_upload):
    model = FakeGenerativeModel([{"name": "Burger", "description": "", "price": "$9"}])
    backend = SearchBackend()
    orchestrator = _orchestrator(make_extractor(model), backend)

    session = await orchestrator.run_scan(ScanSession(), [jpeg_upload], "Test Cafe", 3)

    assert session.state == ScanState.DONE
    assert session.error is None
    assert [item.name for item in session.items] == ["Burger"]
    assert 0 < len(session.items[0].image_urls) <= 3
    assert backend.queries == ["Test Cafe Burger food"]


async def test_pdf_is_rejected_before_any_service_call(pdf_upload):
    model = FakeGenerativeModel([{"name": "Burger", "description": "", "price": "$9"}])
    backend = SearchBackend()
    orchestrator = _orchestrator(make_extractor(model), backend)

    session = await orchestrator.run_scan(ScanSession(), [pdf_upload], "Test Cafe")

    assert session.state == ScanState.ERROR
    assert session.error_code == "InvalidType"
    assert "Allowed types" in session.error
    assert model.calls == []
    assert backend.requests == []


async def test_no_valid_items_stops_before_enrichment(jpeg_upload):
    model = FakeGenerativeModel([{"name": "", "description": "", "price": ""}])
    backend = SearchBackend()
    orchestrator = _orchestrator(make_extractor(model), backend)

    session = await orchestrator.run_scan(ScanSession(), [jpeg_upload], "Test Cafe")

    assert session.state == ScanState.ERROR
    assert session.error_code == "NoValidItems"
    assert session.error == "No valid menu items were extracted. Please try a different image."
    assert backend.requests == []


async def test_failed_search_leaves_item_without_images(jpeg_upload):
    model = FakeGenerativeModel([
        {"name": "Burger", "description": "", "price": "$9"},
        {"name": "Fries", "description": "Crispy", "price": "$4"},
        {"name": "Shake", "description": "", "price": "$5"},
    ])
    orchestrator = _orchestrator(make_extractor(model), SearchBackend(fail_for="Fries"))

    session = await orchestrator.run_scan(ScanSession(), [jpeg_upload], "Test Cafe", 2)

    assert session.state == ScanState.DONE
    assert [item.name for item in session.items] == ["Burger", "Fries", "Shake"]
    assert len(session.items[0].image_urls) == 2
    assert session.items[1].image_urls == []
    assert len(session.items[2].image_urls) == 2


async def test_items_from_several_photos_keep_upload_order():
    uploads = [
        ImageUpload(filename="page1.png", content_type="image/png", data=b"1"),
        ImageUpload(filename="page2.png", content_type="image/png", data=b"2"),
    ]
    extractor = StubExtractor({
        "page1.png": [{"name": "Soup", "description": "", "price": "5"}],
        "page2.png": [{"name": "Cake", "description": "", "price": "6"},
                      {"name": "Tea", "description": "", "price": "2"}],
    })
    orchestrator = _orchestrator(extractor, SearchBackend())

    session = await orchestrator.run_scan(ScanSession(), uploads, "Test Cafe", 1)

    assert [item.name for item in session.items] == ["Soup", "Cake", "Tea"]


@pytest.mark.parametrize("uploads,name", [([], "Test Cafe"), (None, "Test Cafe"), ("jpeg", "   "), ("jpeg", None)])
async def test_missing_input(uploads, name, jpeg_upload):
    if uploads == "jpeg":
        uploads = [jpeg_upload]
    model = FakeGenerativeModel([])
    orchestrator = _orchestrator(make_extractor(model), SearchBackend())

    session = await orchestrator.run_scan(ScanSession(), uploads, name)

    assert session.error_code == "MissingInput"
    assert session.error == "Please upload an image and enter the restaurant name."
    assert model.calls == []


@pytest.mark.parametrize("name,message", [
    ("<a>", "Please enter a valid restaurant name (at least 2 characters)."),
    ("x" * 201, "Restaurant name is too long (maximum 200 characters)."),
])
async def test_restaurant_name_bounds(name, message, jpeg_upload):
    orchestrator = _orchestrator(make_extractor(FakeGenerativeModel([])), SearchBackend())

    session = await orchestrator.run_scan(ScanSession(), [jpeg_upload], name)

    assert session.error_code == "InvalidRestaurantName"
    assert session.error == message


async def test_rate_limited_scan_reports_remaining(jpeg_upload):
    model = FakeGenerativeModel([{"name": "Burger", "description": "", "price": "$9"}])
    orchestrator = _orchestrator(make_extractor(model), SearchBackend(), RateLimiter(max_requests=1))

    first = await orchestrator.run_scan(ScanSession(), [jpeg_upload], "Test Cafe", 1)
    second = await orchestrator.run_scan(ScanSession(), [jpeg_upload], "Test Cafe", 1)

    assert first.state == ScanState.DONE
    assert second.state == ScanState.ERROR
    assert second.error_code == "RateLimited"
    assert second.remaining_requests == 0
    assert "(0 requests remaining)" in second.error
    assert len(model.calls) == 1


async def test_extraction_failure_is_prefixed(jpeg_upload):
    extractor = StubExtractor({"menu.jpg": ExtractionError("Failed to analyze menu: boom")})
    backend = SearchBackend()
    orchestrator = _orchestrator(extractor, backend)

    session = await orchestrator.run_scan(ScanSession(), [jpeg_upload], "Test Cafe")

    assert session.state == ScanState.ERROR
    assert session.error == "Analysis failed: Failed to analyze menu: boom"
    assert session.error_code == "ExtractionFailed"
    assert backend.requests == []


async def test_unexpected_failure_is_reported(jpeg_upload):
    extractor = StubExtractor({"menu.jpg": RuntimeError("socket closed")})
    orchestrator = _orchestrator(extractor, SearchBackend())

    session = await orchestrator.run_scan(ScanSession(), [jpeg_upload], "Test Cafe")

    assert session.error == "Analysis failed: socket closed"
    assert session.error_code == "AnalysisFailed"


async def test_cleared_session_discards_in_flight_results(jpeg_upload):
    gate = asyncio.Event()
    extractor = StubExtractor({"menu.jpg": [{"name": "Burger", "description": "", "price": "$9"}]}, gate=gate)
    backend = SearchBackend()
    orchestrator = _orchestrator(extractor, backend)
    session = ScanSession()

    task = asyncio.create_task(orchestrator.run_scan(session, [jpeg_upload], "Test Cafe"))
    while not extractor.calls:
        await asyncio.sleep(0)
    assert session.state == ScanState.EXTRACTING
    assert session.is_loading

    session.clear()
    gate.set()
    await task

    assert session.state == ScanState.IDLE
    assert session.items is None
    assert session.error is None
    assert backend.requests == []


async def test_over_long_photo_link_does_not_drop_the_item(jpeg_upload):
    model = FakeGenerativeModel([{"name": "Burger", "description": "", "price": "$9"}])
    backend = SearchBackend(links=[
        "https://images.example.com/" + "a" * 2100 + ".jpg",
        "https://images.example.com/ok.jpg",
    ])
    orchestrator = _orchestrator(make_extractor(model), backend)

    session = await orchestrator.run_scan(ScanSession(), [jpeg_upload], "Test Cafe", 5)

    assert session.state == ScanState.DONE
    assert [item.name for item in session.items] == ["Burger"]
    assert session.items[0].image_urls == ["https://images.example.com/ok.jpg"]


async def test_zero_images_per_item_asks_for_one(jpeg_upload):
    model = FakeGenerativeModel([{"name": "Burger", "description": "", "price": "$9"}])
    backend = SearchBackend()
    orchestrator = _orchestrator(make_extractor(model), backend)

    session = await orchestrator.run_scan(ScanSession(), [jpeg_upload], "Test Cafe", 0)

    assert session.state == ScanState.DONE
    assert backend.requests[0].url.params["num"] == "1"
    assert len(session.items[0].image_urls) == 1
