"""Tests for the vision-moderation client."""

import asyncio
import json

import httpx

from kidguard.moderation.image_client import FailurePolicy, ImageModerationClient
from kidguard.moderation.models import ImageSource, Severity, Surface

ENDPOINT = "https://vision.test/moderate"
URL_IMAGE = ImageSource(url="https://cdn.test/cat.jpg")


def _client(handler, **kwargs):
    return ImageModerationClient(ENDPOINT, "secret", transport=httpx.MockTransport(handler), **kwargs)


def _check(client, image=URL_IMAGE, surface=Surface.POST):
    return asyncio.run(client.check_image(image, surface))


def test_request_payload_for_url():
    seen = {}

    def handler(request):
        seen["body"] = json.loads(request.content)
        seen["auth"] = request.headers.get("authorization")
        return httpx.Response(200, json={"allowed": True})

    decision = _check(_client(handler), surface=Surface.CHAT)
    assert decision.allowed
    assert not decision.fallback
    assert seen["body"] == {"imageUrl": "https://cdn.test/cat.jpg", "surface": "chat", "checkText": True}
    assert seen["auth"] == "Bearer secret"


def test_inline_image_sent_as_data_uri():
    seen = {}

    def handler(request):
        seen["body"] = json.loads(request.content)
        return httpx.Response(200, json={"allowed": True})

    _check(_client(handler), image=ImageSource(data=b"abc", content_type="image/png"))
    assert seen["body"]["imageBase64"] == "data:image/png;base64,YWJj"


def test_block_decision_passes_through():
    def handler(request):
        return httpx.Response(
            200, json={"allowed": False, "categories": ["violence"], "severity": "high", "reason": "Imagen violenta"}
        )

    decision = _check(_client(handler))
    assert not decision.allowed
    assert decision.categories == {"violence"}
    assert decision.severity == Severity.HIGH
    assert decision.reason == "Imagen violenta"


def test_http_500_fails_open():
    decision = _check(_client(lambda request: httpx.Response(500, text="boom")))
    assert decision.allowed
    assert decision.fallback


def test_http_500_fails_closed_when_configured():
    decision = _check(_client(lambda request: httpx.Response(503), failure_policy=FailurePolicy.CLOSED))
    assert not decision.allowed
    assert decision.fallback
    assert decision.reason


def test_transport_error_fails_open():
    def handler(request):
        raise httpx.ConnectError("unreachable")

    assert _check(_client(handler)).fallback


def test_timeout_fails_open():
    def handler(request):
        raise httpx.ReadTimeout("slow")

    decision = _check(_client(handler))
    assert decision.allowed and decision.fallback


def test_malformed_body_fails_open():
    assert _check(_client(lambda request: httpx.Response(200, text="not json"))).fallback
    assert _check(_client(lambda request: httpx.Response(200, json={"allowed": "maybe"}))).fallback


def test_service_side_fallback_is_reported():
    def handler(request):
        return httpx.Response(200, json={"allowed": True, "categories": [], "fallback": True})

    decision = _check(_client(handler))
    assert decision.allowed and decision.fallback

    closed = _check(_client(handler, failure_policy=FailurePolicy.CLOSED))
    assert not closed.allowed and closed.fallback


def test_invalid_endpoint_fails_open():
    client = ImageModerationClient(
        "https://vision.test:notaport/moderate",
        transport=httpx.MockTransport(lambda request: httpx.Response(200, json={"allowed": True})),
    )
    decision = _check(client)
    assert decision.allowed and decision.fallback


def test_unconfigured_client_fails_open():
    decision = _check(ImageModerationClient())
    assert decision.allowed and decision.fallback


def test_oversized_inline_image_not_sent():
    calls = []

    def handler(request):
        calls.append(request)
        return httpx.Response(200, json={"allowed": True})

    client = _client(handler, max_inline_bytes=10)
    decision = _check(client, image=ImageSource(data=b"x" * 11))
    assert decision.fallback
    assert calls == []


def test_detected_text_goes_through_text_filter():
    def handler(request):
        return httpx.Response(200, json={"allowed": True, "detectedText": "eres un G1L1P0LLAS"})

    decision = _check(_client(handler))
    assert not decision.allowed
    assert "profanity" in decision.categories
    assert decision.reason == "Texto ofensivo detectado en imagen"


def test_benign_detected_text_keeps_decision():
    def handler(request):
        return httpx.Response(200, json={"allowed": True, "detectedText": "Feliz cumpleaños"})

    decision = _check(_client(handler))
    assert decision.allowed
    assert not decision.fallback
