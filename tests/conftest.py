"""Shared fixtures: fake Gemini model, mock Google endpoints, test config."""

import json
import time
from types import SimpleNamespace
from typing import Any, Callable, Dict, List, Optional

import httpx
import pytest

from menuminer.auth import GoogleAuthGate, SessionManager
from menuminer.config import AppConfig, AuthConfig, GeminiConfig, SearchConfig
from menuminer.core import ImageSearchClient, MenuExtractor
from menuminer.core.security import ImageUpload

CLIENT_ID = "client-123.apps.googleusercontent.com"
OWNER_EMAIL = "owner@example.com"
GEMINI_KEY = "AIzaSyTestGeminiKey_0123456789"
SEARCH_KEY = "AIzaSyTestSearchKey_0123456789"


@pytest.fixture
def anyio_backend():
    return "asyncio"


class FakeGenerativeModel:
    """Stands in for genai.GenerativeModel; answers every call with the same payload."""

    def __init__(self, payload: Any = None, error: Optional[Exception] = None, delay: float = 0.0):
        self.payload = payload if payload is not None else []
        self.error = error
        self.delay = delay
        self.calls: List[Dict[str, Any]] = []

    def generate_content(self, contents, generation_config=None, request_options=None):
        self.calls.append({
            "contents": contents,
            "generation_config": generation_config,
            "request_options": request_options,
        })
        if self.delay:
            time.sleep(self.delay)
        if self.error is not None:
            raise self.error
        text = self.payload if isinstance(self.payload, str) else json.dumps(self.payload)
        return SimpleNamespace(text=text)


def make_extractor(model: FakeGenerativeModel, timeout_seconds: float = 60.0) -> MenuExtractor:
    extractor = MenuExtractor(api_key=GEMINI_KEY, timeout_seconds=timeout_seconds)
    extractor.model = model
    return extractor


class SearchBackend:
    """Mock Custom Search endpoint; records every query it answers."""

    def __init__(self, fail_for: Optional[str] = None, status_code: int = 200, links: Optional[List[str]] = None):
        self.fail_for = fail_for
        self.status_code = status_code
        self.links = links
        self.requests: List[httpx.Request] = []

    @property
    def queries(self) -> List[str]:
        return [r.url.params.get("q") for r in self.requests]

    def __call__(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        query = request.url.params.get("q", "")
        if self.fail_for and self.fail_for in query:
            return httpx.Response(500, json={"error": {"message": "backend error"}})
        if self.status_code != 200:
            return httpx.Response(self.status_code, json={"error": {"message": "upstream"}})

        num = int(request.url.params.get("num", "10"))
        slug = query.replace(" ", "-").lower()
        links = self.links if self.links is not None else [
            f"https://images.example.com/{slug}/{i}.jpg" for i in range(num)
        ]
        return httpx.Response(200, json={"items": [{"link": link} for link in links]})


def make_search_client(backend: SearchBackend) -> ImageSearchClient:
    return ImageSearchClient(
        api_key=SEARCH_KEY,
        search_engine_id="test-cx",
        http_client=httpx.AsyncClient(transport=httpx.MockTransport(backend))
    )


def tokeninfo_handler(claims: Optional[Dict[str, Any]] = None, status_code: int = 200) -> Callable:
    """Mock Google tokeninfo endpoint answering with ``claims``."""
    payload = {
        "aud": CLIENT_ID,
        "email": OWNER_EMAIL,
        "email_verified": "true",
        "name": "Menu Owner",
        "picture": "https://lh3.googleusercontent.com/a/owner",
    }
    payload.update(claims or {})

    def handler(request: httpx.Request) -> httpx.Response:
        if status_code != 200:
            return httpx.Response(status_code, json={"error": "invalid_token"})
        return httpx.Response(200, json=payload)

    return handler


def make_gate(handler: Callable, client_id: Optional[str] = CLIENT_ID,
              allowed_email: Optional[str] = OWNER_EMAIL) -> GoogleAuthGate:
    return GoogleAuthGate(
        client_id=client_id,
        allowed_email=allowed_email,
        http_client=httpx.AsyncClient(transport=httpx.MockTransport(handler))
    )


def make_config(**overrides) -> AppConfig:
    config = AppConfig(
        environment="test",
        gemini=GeminiConfig(api_key=GEMINI_KEY),
        search=SearchConfig(api_key=SEARCH_KEY, search_engine_id="test-cx"),
        auth=AuthConfig(
            google_client_id=CLIENT_ID,
            allowed_email=OWNER_EMAIL,
            session_secret="test-session-secret"
        )
    )
    for name, value in overrides.items():
        setattr(config, name, value)
    return config


@pytest.fixture
def config() -> AppConfig:
    return make_config()


@pytest.fixture
def session_manager() -> SessionManager:
    return SessionManager(secret="test-session-secret", allowed_email=OWNER_EMAIL)


@pytest.fixture
def jpeg_upload() -> ImageUpload:
    # 2 MB JPEG-typed payload
    return ImageUpload(filename="menu.jpg", content_type="image/jpeg", data=b"\xff\xd8" + b"\x00" * (2 * 1024 * 1024))


@pytest.fixture
def pdf_upload() -> ImageUpload:
    return ImageUpload(filename="menu.pdf", content_type="application/pdf", data=b"%PDF-1.4")
