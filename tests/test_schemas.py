"""Tests for the wire schemas' camelCase aliases."""

from menuminer.models.schemas import (
    AnalyzeMenuRequest,
    AuthRequest,
    MenuItem,
    ScanResponse,
    ScanState,
    SearchImagesRequest,
)


def test_request_models_accept_alias_and_field_names():
    by_alias = SearchImagesRequest.model_validate(
        {"itemName": "Burger", "restaurantName": "Test Cafe", "numImages": 3}
    )
    by_name = SearchImagesRequest(item_name="Burger", restaurant_name="Test Cafe", num_images=3)
    assert by_alias == by_name

    assert AnalyzeMenuRequest.model_validate({"imageData": "abc", "mimeType": "image/png"}).mime_type == "image/png"
    assert AnalyzeMenuRequest(image_data="abc", mime_type="image/png").image_data == "abc"
    assert AuthRequest.model_validate({"googleToken": "tok"}).google_token == "tok"
    assert AuthRequest(google_token="tok").google_token == "tok"


def test_request_examples_are_published_in_the_schema():
    assert AnalyzeMenuRequest.model_json_schema()["example"]["mimeType"] == "image/jpeg"
    assert SearchImagesRequest.model_json_schema()["example"]["numImages"] == 5


def test_responses_dump_camel_case():
    response = ScanResponse(
        state=ScanState.DONE,
        items=[MenuItem(name="Burger", price="$9", image_urls=["https://images.example.com/1.jpg"])],
        remaining_requests=9
    )

    body = response.model_dump(mode="json", by_alias=True, exclude_none=True)

    assert body == {
        "state": "done",
        "items": [{
            "name": "Burger",
            "description": "",
            "price": "$9",
            "imageUrls": ["https://images.example.com/1.jpg"],
        }],
        "remainingRequests": 9,
    }
