"""Client for the external vision-moderation service.

The service receives ``{imageUrl | imageBase64, surface, checkText: true}``
and answers ``{allowed, categories, severity, reason, detectedText, fallback}``.  Any
failure to obtain a well-formed answer (missing configuration, transport
error, timeout, non-2xx status, malformed body, oversized payload) is an
infrastructure failure and is resolved by :class:`FailurePolicy` instead of
being raised.  The default policy is fail-open: the image is allowed and the
decision is marked ``fallback=True``.
"""

from __future__ import annotations

from enum import Enum
from typing import Literal, Optional

import httpx
from loguru import logger
from pydantic import BaseModel, Field, StrictBool, ValidationError

from kidguard.moderation.models import ImageSource, ModerationDecision, Severity, Surface
from kidguard.moderation.patterns import PatternMatcher

MAX_INLINE_BYTES = 8 * 1024 * 1024
DEFAULT_TIMEOUT = 15.0

_UNAVAILABLE_REASON = "No se pudo verificar la imagen. Inténtalo más tarde."
_TEXT_IN_IMAGE_REASON = "Texto ofensivo detectado en imagen"

_SEVERITY_RANK = {Severity.LOW: 0, Severity.MEDIUM: 1, Severity.HIGH: 2}


class FailurePolicy(str, Enum):
    """What to decide when the vision service cannot give an answer."""

    OPEN = "open"  # allow, mark fallback
    CLOSED = "closed"  # block, mark fallback


class VisionResponse(BaseModel):
    """Body returned by the vision-moderation service."""

    allowed: StrictBool
    categories: list[str] = Field(default_factory=list)
    severity: Optional[Literal["low", "medium", "high"]] = None
    reason: Optional[str] = ""
    detected_text: Optional[str] = Field(default="", alias="detectedText")
    fallback: StrictBool = False


class ImageModerationClient:
    """Thin adapter over the vision-moderation endpoint.

    Parameters
    ----------
    endpoint : str
        Full URL of the moderation endpoint.  An empty endpoint counts as an
        unavailable service.
    api_key : str
        Sent as ``Authorization: Bearer <api_key>`` when set.
    failure_policy : FailurePolicy
        Decision applied on infrastructure failure.
    matcher : PatternMatcher | None
        Local text filter applied to text the service found inside the image.
    """

    def __init__(
        self,
        endpoint: str = "",
        api_key: str = "",
        *,
        timeout: float = DEFAULT_TIMEOUT,
        failure_policy: FailurePolicy = FailurePolicy.OPEN,
        matcher: Optional[PatternMatcher] = None,
        max_inline_bytes: int = MAX_INLINE_BYTES,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ) -> None:
        self.endpoint = endpoint
        self.api_key = api_key
        self.timeout = timeout
        self.failure_policy = FailurePolicy(failure_policy)
        self.matcher = matcher or PatternMatcher()
        self.max_inline_bytes = max_inline_bytes
        self._transport = transport

    @property
    def configured(self) -> bool:
        return bool(self.endpoint)

    # -- failure handling ----------------------------------------------------

    def _fallback(self, why: str) -> ModerationDecision:
        logger.warning(f"[image-moderation] {why}; failure policy={self.failure_policy.value}")
        if self.failure_policy is FailurePolicy.CLOSED:
            return ModerationDecision(allowed=False, reason=_UNAVAILABLE_REASON, fallback=True)
        return ModerationDecision(allowed=True, fallback=True)

    # -- request -------------------------------------------------------------

    def _build_request(self, image: ImageSource, surface: Surface) -> dict:
        body: dict = {"surface": Surface(surface).value, "checkText": True}
        body.update(image.to_payload())
        return body

    async def _post(self, body: dict) -> httpx.Response:
        headers = {"Content-Type": "application/json"}
        if self.api_key:
            headers["Authorization"] = f"Bearer {self.api_key}"
        async with httpx.AsyncClient(timeout=self.timeout, transport=self._transport) as client:
            return await client.post(self.endpoint, json=body, headers=headers)

    async def check_image(self, image: ImageSource, surface: Surface) -> ModerationDecision:
        """Moderate *image* for *surface*; never raises on service failure."""
        if not self.configured:
            return self._fallback("vision service not configured")
        if image.data is not None and len(image.data) > self.max_inline_bytes:
            return self._fallback(f"inline image too large ({len(image.data)} bytes)")

        try:
            response = await self._post(self._build_request(image, surface))
        except httpx.TimeoutException:
            return self._fallback(f"request timed out after {self.timeout}s")
        except (httpx.HTTPError, httpx.InvalidURL) as exc:
            return self._fallback(f"request failed: {exc!r}")

        if not response.is_success:
            return self._fallback(f"service returned HTTP {response.status_code}")

        try:
            parsed = VisionResponse.model_validate(response.json())
        except (ValueError, ValidationError) as exc:
            return self._fallback(f"malformed response: {exc}")
        if parsed.fallback:
            return self._fallback("service answered without inspecting the image")

        decision = ModerationDecision(
            allowed=parsed.allowed,
            reason=parsed.reason or None,
            categories=set(parsed.categories),
            severity=Severity(parsed.severity) if parsed.severity else None,
        )
        if parsed.detected_text and parsed.detected_text.strip():
            decision = self._check_embedded_text(decision, parsed.detected_text)

        logger.info(
            f"[image-moderation] surface={Surface(surface).value} allowed={decision.allowed} "
            f"categories={sorted(decision.categories)}"
        )
        return decision

    def _check_embedded_text(self, decision: ModerationDecision, text: str) -> ModerationDecision:
        """Merge a local text-filter hit on OCR'd text into *decision*."""
        hit = self.matcher.match_text(text)
        if hit is None:
            return decision
        severity = decision.severity
        if hit.severity and (severity is None or _SEVERITY_RANK[hit.severity] > _SEVERITY_RANK[severity]):
            severity = hit.severity
        return ModerationDecision(
            allowed=False,
            reason=decision.reason if not decision.allowed and decision.reason else _TEXT_IN_IMAGE_REASON,
            categories=decision.categories | hit.categories,
            severity=severity,
        )
