"""Tests for the REST API."""

import asyncio
import base64
import tempfile
from contextlib import contextmanager
from pathlib import Path

import httpx
from fastapi.testclient import TestClient

from kidguard.moderation.events import ModerationEventLog
from kidguard.moderation.gateway import ModerationGateway
from kidguard.moderation.image_client import ImageModerationClient
from kidguard.moderation.models import TextCheckResult
from kidguard.moderation.store import ModerationStore
from kidguard.moderation.strikes import StrikeLedger
from kidguard.moderation.suspension import SuspensionStateMachine
from kidguard.storage.client import SignedUrl
from kidguard.storage.errors import ErrorKind, StorageError
from kidguard.storage.signed_urls import SignedURLCache
from kidguard.storage.upload import ResilientUploadPipeline
from web.backend.app.dependencies import get_gateway, get_signed_url_cache, get_upload_pipeline
from web.backend.app.main import app


class FakeStorage:
    def __init__(self, failures=()):
        self.failures = list(failures)
        self.uploads = []

    async def upload(self, bucket, path, data, content_type="application/octet-stream", upsert=False):
        if self.failures:
            raise self.failures.pop(0)
        self.uploads.append((bucket, path, data, content_type))

    async def create_signed_url(self, bucket, path, ttl_seconds):
        return SignedUrl(url=f"https://signed.test/{bucket}/{path}")

    def get_public_url(self, bucket, path):
        return f"https://store.test/storage/v1/object/public/{bucket}/{path}"


async def _no_sleep(seconds):
    return None


@contextmanager
def _client(vision_handler=None, storage=None):
    with tempfile.TemporaryDirectory() as tmp:
        store = ModerationStore(Path(tmp) / "db")
        vision = ImageModerationClient(
            "https://vision.test/moderate" if vision_handler else "",
            transport=httpx.MockTransport(vision_handler) if vision_handler else None,
        )
        gateway = ModerationGateway(
            StrikeLedger(store),
            SuspensionStateMachine(store),
            vision,
            events=ModerationEventLog(Path(tmp) / "events"),
        )
        storage = storage or FakeStorage()
        app.dependency_overrides[get_gateway] = lambda: gateway
        app.dependency_overrides[get_upload_pipeline] = lambda: ResilientUploadPipeline(storage, sleep=_no_sleep)
        app.dependency_overrides[get_signed_url_cache] = lambda: SignedURLCache(storage)
        try:
            yield TestClient(app)
        finally:
            app.dependency_overrides.clear()


# --- Meta ---


def test_root_and_health():
    with _client() as client:
        assert client.get("/health").json() == {"status": "healthy"}
        assert client.get("/").json()["name"] == "kidguard API"


# --- Moderation ---


def test_clean_text_allowed():
    with _client() as client:
        resp = client.post("/api/moderation/text", json={"user_id": "u1", "surface": "chat", "text": "hola!"})
        assert resp.status_code == 200
        assert resp.json()["allowed"] is True


def test_blocked_text_returns_422_with_strikes():
    with _client() as client:
        resp = client.post("/api/moderation/text", json={"user_id": "u1", "text": "eres un idiota"})
        assert resp.status_code == 422
        detail = resp.json()["detail"]
        assert detail["allowed"] is False
        assert detail["strikes"] == 1
        assert detail["categories"] == ["bullying"]


def test_suspended_user_gets_423():
    with _client() as client:
        for _ in range(3):
            client.post("/api/moderation/text", json={"user_id": "u1", "text": "mierda"})
        resp = client.post("/api/moderation/text", json={"user_id": "u1", "text": "hola"})
        assert resp.status_code == 423
        assert resp.json()["detail"]["suspended"] is True

        status = client.get("/api/moderation/status/u1").json()
        assert status["is_suspended"] is True
        assert status["strike_count"] == 3

        lifted = client.post("/api/moderation/admin/lift/u1")
        assert lifted.status_code == 200
        assert lifted.json()["is_suspended"] is False
        assert client.post("/api/moderation/admin/lift/u1").status_code == 404


def test_text_check_runs_off_the_event_loop():
    seen = {}

    class RecordingGateway:
        def check_text(self, text, surface, user_id):
            try:
                asyncio.get_running_loop()
                seen["on_loop"] = True
            except RuntimeError:
                seen["on_loop"] = False
            return TextCheckResult(allowed=True)

    app.dependency_overrides[get_gateway] = lambda: RecordingGateway()
    try:
        resp = TestClient(app).post("/api/moderation/text", json={"user_id": "u1", "text": "hola"})
    finally:
        app.dependency_overrides.clear()
    assert resp.status_code == 200
    assert seen["on_loop"] is False


def test_invalid_surface_rejected():
    with _client() as client:
        resp = client.post("/api/moderation/text", json={"user_id": "u1", "surface": "email", "text": "x"})
        assert resp.status_code == 422
        assert isinstance(resp.json()["detail"], list)


def test_image_fail_open_when_service_errors():
    with _client(vision_handler=lambda request: httpx.Response(500)) as client:
        resp = client.post("/api/moderation/image", json={"user_id": "u1", "image_url": "https://cdn.test/a.jpg"})
        assert resp.status_code == 200
        assert resp.json() == {
            "allowed": True,
            "categories": [],
            "severity": None,
            "reason": None,
            "fallback": True,
            "suspended": False,
            "suspended_until": None,
        }


def test_image_blocked_and_base64_accepted():
    def handler(request):
        return httpx.Response(200, json={"allowed": False, "categories": ["weapons"], "reason": "Armas"})

    payload = "data:image/png;base64," + base64.b64encode(b"png-bytes").decode()
    with _client(vision_handler=handler) as client:
        resp = client.post("/api/moderation/image", json={"user_id": "u1", "image_base64": payload})
        assert resp.status_code == 422
        assert resp.json()["detail"]["categories"] == ["weapons"]


def test_image_requires_exactly_one_source():
    with _client() as client:
        resp = client.post("/api/moderation/image", json={"user_id": "u1"})
        assert resp.status_code == 422


# --- Media ---


def test_upload_media():
    storage = FakeStorage([StorageError("reset", ErrorKind.TRANSIENT)])
    with _client(storage=storage) as client:
        resp = client.put(
            "/api/media/content/u1/1_image.png",
            content=b"\x89PNG fake",
            headers={"Content-Type": "image/png"},
        )
        assert resp.status_code == 200
        assert resp.json()["path"] == "u1/1_image.png"
        assert storage.uploads == [("content", "u1/1_image.png", b"\x89PNG fake", "image/png")]


def test_upload_permission_error_maps_to_403():
    storage = FakeStorage([StorageError("policy violation", ErrorKind.PERMISSION, status=403)])
    with _client(storage=storage) as client:
        resp = client.put("/api/media/content/u1/a.jpg", content=b"jpeg", headers={"Content-Type": "image/jpeg"})
        assert resp.status_code == 403
        assert resp.json()["detail"]["attempts"] == 1


def test_upload_rejects_unsupported_type():
    with _client() as client:
        resp = client.put("/api/media/content/u1/a.bmp", content=b"bmp", headers={"Content-Type": "image/bmp"})
        assert resp.status_code == 415


def test_resolve_media():
    private = "https://store.test/storage/v1/object/public/content/u1/a.jpg"
    external = "https://cdn.example.org/b.jpg"
    with _client() as client:
        resp = client.post("/api/media/resolve", json={"references": [private, external]})
        assert resp.status_code == 200
        urls = resp.json()["urls"]
        assert urls[private] == "https://signed.test/content/u1/a.jpg"
        assert urls[external] == external
