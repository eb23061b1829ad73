"""Shared pytest fixtures: a local blob store on tmp_path and offline fakes for external APIs."""

import io
import sys
from pathlib import Path
from typing import Any, Dict, Optional

import pytest
from PIL import Image

ROOT = Path(__file__).resolve().parents[1]
if str(ROOT) not in sys.path:
    sys.path.insert(0, str(ROOT))

from clients.wavespeed_client import ImageGenerationError  # noqa: E402
from config import Settings  # noqa: E402
from models.gallery import UserInputs  # noqa: E402
from services.blob_store import LocalBlobStore  # noqa: E402
from services.gallery_service import GalleryService  # noqa: E402
from services.generation import GenerationService  # noqa: E402


def make_png(width: int = 64, height: int = 48, color=(200, 80, 120)) -> bytes:
    buf = io.BytesIO()
    Image.new("RGB", (width, height), color).save(buf, format="PNG")
    return buf.getvalue()


class FakeImageClient:
    """Stands in for WavespeedClient without touching the network."""

    def __init__(self, configured: bool = True, fail_when: Optional[str] = None):
        self.configured = configured
        self.fail_when = fail_when
        self.prompts: list[str] = []
        self.submitted: list[str] = []
        self.results: Dict[str, Dict[str, Any]] = {}

    def generate_sync(self, prompt: str, size: str) -> str:
        self.prompts.append(prompt)
        if self.fail_when and self.fail_when in prompt:
            raise ImageGenerationError("Wavespeed API error 500: upstream failure")
        return f"https://images.example.com/generated/{len(self.prompts)}.png"

    def submit(self, prompt: str, size: str) -> str:
        self.submitted.append(prompt)
        return f"req-{len(self.submitted)}"

    def get_result(self, request_id: str) -> Dict[str, Any]:
        return self.results.get(request_id, {"id": request_id, "status": "processing", "outputs": []})


class OfflineGenerationService(GenerationService):
    """Serves a small PNG for every download; URLs containing 'missing' fail."""

    def download(self, url: str) -> bytes:
        if "missing" in url:
            raise ImageGenerationError("Failed to fetch image: 404")
        return make_png()


class FakePrintClient:
    def __init__(self):
        self.quotes: list = []
        self.orders: list = []

    def get_quote(self, country_code, items):
        self.quotes.append((country_code, items))
        return {"success": True, "subtotal": {"amount": "24.99"}, "shipping": None, "tax": None, "total": None}

    def create_order(self, recipient, items):
        self.orders.append((recipient, items))
        return {"success": True, "orderId": "ord_123", "status": "InProgress", "total": None}


@pytest.fixture
def settings(tmp_path: Path) -> Settings:
    return Settings(
        wavespeed_api_key="test-key",
        gemini_api_key=None,
        prodigi_api_key="prodigi-test",
        blob_bucket=None,
        blob_dir=str(tmp_path / "blobs"),
        public_base_url="http://testserver",
        webhook_secret="webhook-test-secret",
        cleanup_secret="cleanup-test-secret",
        cron_secret="cron-test-secret",
        generation_mode="background",
        cleanup_interval_hours=0,
        gallery_ttl_days=30,
        metadata_write_retries=10,
    )


@pytest.fixture
def store(settings: Settings) -> LocalBlobStore:
    return LocalBlobStore(Path(settings.blob_dir), public_base_url=settings.public_base_url)


@pytest.fixture
def galleries(store: LocalBlobStore) -> GalleryService:
    return GalleryService(store, ttl_days=30, write_retries=10, public_base_url="http://testserver")


@pytest.fixture
def image_client() -> FakeImageClient:
    return FakeImageClient()


@pytest.fixture
def generation(image_client, galleries, store) -> OfflineGenerationService:
    return OfflineGenerationService(image_client, galleries, store)


@pytest.fixture
def user_inputs() -> UserInputs:
    return UserInputs(
        location="Kyoto",
        atmosphere="rainy",
        focus="Fushimi Inari gates",
        detail="a fox statue with a red bib",
        feelings=["awe", "peaceful"],
        aspect_ratio="3:4",
        season="autumn",
    )


@pytest.fixture
def print_client() -> FakePrintClient:
    return FakePrintClient()


@pytest.fixture
def client(settings, store, image_client, print_client):
    """TestClient with every external dependency replaced by an offline fake."""
    from fastapi import Depends
    from fastapi.testclient import TestClient

    import main

    def generation_override(galleries: GalleryService = Depends(main.get_gallery_service)):
        return OfflineGenerationService(image_client, galleries, store)

    main.app.dependency_overrides[main.get_settings] = lambda: settings
    main.app.dependency_overrides[main.get_blob_store] = lambda: store
    main.app.dependency_overrides[main.get_generation_service] = generation_override
    main.app.dependency_overrides[main.get_print_client] = lambda: print_client
    try:
        yield TestClient(main.app)
    finally:
        main.app.dependency_overrides.clear()
