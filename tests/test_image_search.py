"""Tests for the Custom Search image client against a mock transport."""

import pytest

from menuminer.core.errors import (
    ImageSearchError,
    InvalidRestaurantNameError,
    SearchQuotaExceededError,
    TooManyItemsError,
)
from menuminer.models.schemas import MenuItem
from tests.conftest import SearchBackend, make_search_client

pytestmark = pytest.mark.anyio


async def test_search_sends_photo_filters_and_query():
    backend = SearchBackend()
    client = make_search_client(backend)

    urls = await client.search_images("Burger", "Test Cafe", 3)

    assert len(urls) == 3
    params = backend.requests[0].url.params
    assert params["q"] == "Test Cafe Burger food"
    assert params["searchType"] == "image"
    assert params["num"] == "3"
    assert params["imgType"] == "photo"
    assert params["imgSize"] == "large"
    assert params["imgColorType"] == "color"
    assert params["cx"] == "test-cx"


async def test_unsafe_links_are_dropped_and_result_truncated():
    backend = SearchBackend(links=[
        "http://127.0.0.1/private.jpg",
        "https://images.example.com/1.jpg",
        "ftp://images.example.com/2.jpg",
        "https://images.example.com/3.jpg",
        "https://images.example.com/4.jpg",
    ])
    client = make_search_client(backend)

    urls = await client.search_images("Burger", "Test Cafe", 2)

    assert urls == ["https://images.example.com/1.jpg", "https://images.example.com/3.jpg"]


async def test_missing_items_means_no_images():
    backend = SearchBackend(links=[])
    client = make_search_client(backend)
    assert await client.search_images("Burger", "Test Cafe", 5) == []


async def test_quota_exhaustion_is_reported_as_429():
    client = make_search_client(SearchBackend(status_code=429))

    with pytest.raises(SearchQuotaExceededError) as exc_info:
        await client.search_images("Burger", "Test Cafe", 5)

    assert exc_info.value.status_code == 429
    assert exc_info.value.message == "API quota exceeded. Please try again later."


async def test_other_upstream_errors_are_search_errors():
    client = make_search_client(SearchBackend(status_code=403))

    with pytest.raises(ImageSearchError) as exc_info:
        await client.search_images("Burger", "Test Cafe", 5)

    assert exc_info.value.message == "Search API error"
    assert exc_info.value.status_code == 500


async def test_fetch_item_images_skips_empty_names():
    backend = SearchBackend()
    client = make_search_client(backend)

    assert await client.fetch_item_images("<>", "Test Cafe", 5) is None
    assert await client.fetch_item_images("Burger", "   ", 5) is None
    assert backend.requests == []


async def test_failed_item_does_not_affect_siblings():
    backend = SearchBackend(fail_for="Fries")
    client = make_search_client(backend)
    items = [
        MenuItem(name="Burger", price="$9"),
        MenuItem(name="Fries", price="$4"),
        MenuItem(name="Shake", price="$5"),
    ]

    enriched = await client.fetch_images_for_all_items(items, "Test Cafe", 2)

    assert [i.name for i in enriched] == ["Burger", "Fries", "Shake"]
    assert len(enriched[0].image_urls) == 2
    assert enriched[1].image_urls is None
    assert len(enriched[2].image_urls) == 2
    assert sorted(backend.queries) == sorted([
        "Test Cafe Burger food", "Test Cafe Fries food", "Test Cafe Shake food"
    ])


async def test_batch_guards():
    client = make_search_client(SearchBackend())
    items = [MenuItem(name=f"Dish {i}", price="$1") for i in range(101)]

    with pytest.raises(TooManyItemsError):
        await client.fetch_images_for_all_items(items, "Test Cafe", 1)

    with pytest.raises(InvalidRestaurantNameError):
        await client.fetch_images_for_all_items(items[:1], "<>", 1)


async def test_image_count_is_clamped():
    backend = SearchBackend()
    client = make_search_client(backend)
    items = [MenuItem(name="Burger", price="$9")]

    zero = await client.fetch_images_for_all_items(items, "Test Cafe", 0)
    many = await client.fetch_images_for_all_items(items, "Test Cafe", 25)

    assert [r.url.params["num"] for r in backend.requests] == ["1", "10"]
    assert len(zero[0].image_urls) == 1
    assert len(many[0].image_urls) == 10


async def test_over_long_links_are_dropped():
    backend = SearchBackend(links=[
        "https://images.example.com/" + "a" * 2100 + ".jpg",
        "https://images.example.com/ok.jpg",
    ])
    client = make_search_client(backend)

    urls = await client.search_images("Burger", "Test Cafe", 5)

    assert urls == ["https://images.example.com/ok.jpg"]
