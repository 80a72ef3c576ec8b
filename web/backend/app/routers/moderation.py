"""Moderation router -- check content before it is published.

A blocked text returns 422 with the reason and the user's strike count; a
suspended author gets 423 for every write until the suspension ends.  Image
checks never record strikes.
"""

from __future__ import annotations

import base64
import binascii
from datetime import datetime
from typing import Optional

from fastapi import APIRouter, Depends, HTTPException

from kidguard.moderation.gateway import ModerationGateway, utcnow
from kidguard.moderation.models import ImageSource
from kidguard.moderation.store import LedgerUnavailable
from web.backend.app.dependencies import get_gateway
from web.backend.app.models.api import (
    ImageCheckRequest,
    ImageCheckResponse,
    TextCheckRequest,
    TextCheckResponse,
    UserModerationStatusResponse,
)

router = APIRouter(prefix="/api/moderation", tags=["moderation"])


def _iso(dt: Optional[datetime]) -> Optional[str]:
    return dt.isoformat() if dt else None


def _decode_image(payload: str, content_type: str) -> ImageSource:
    """Accept raw base64 or a ``data:<type>;base64,`` URI."""
    if payload.startswith("data:") and "," in payload:
        header, payload = payload.split(",", 1)
        content_type = header[5:].split(";", 1)[0] or content_type
    try:
        data = base64.b64decode(payload, validate=True)
    except (binascii.Error, ValueError):
        raise HTTPException(status_code=400, detail="image_base64 is not valid base64")
    return ImageSource(data=data, content_type=content_type)


def _status_response(gateway: ModerationGateway, user_id: str) -> UserModerationStatusResponse:
    now = utcnow()
    status = gateway.is_suspended(user_id, now)
    try:
        strike_count = gateway.ledger.count_recent(user_id, now)
    except LedgerUnavailable as exc:
        raise HTTPException(status_code=503, detail=f"Moderation store unavailable: {exc}")
    return UserModerationStatusResponse(
        user_id=user_id,
        strike_count=strike_count,
        strike_threshold=gateway.suspensions.threshold,
        is_suspended=status.suspended,
        suspended_until=_iso(status.until),
        remaining=status.format_remaining(now),
    )


# ---------------------------------------------------------------------------
# Endpoints
# ---------------------------------------------------------------------------


@router.post(
    "/text",
    response_model=TextCheckResponse,
    summary="Check a comment, chat message or post caption",
)
def check_text(
    request: TextCheckRequest,
    gateway: ModerationGateway = Depends(get_gateway),
):
    """Run text through the local filter; violations count as strikes."""
    result = gateway.check_text(request.text, request.surface, request.user_id)
    body = TextCheckResponse(
        allowed=result.allowed,
        reason=result.reason,
        categories=list(result.categories),
        severity=result.severity.value if result.severity else None,
        strikes=result.strikes,
        suspended=result.suspended,
        suspended_until=_iso(result.suspended_until),
    )
    if result.allowed:
        return body
    if result.suspended and result.strikes is None:
        raise HTTPException(status_code=423, detail=body.model_dump())
    raise HTTPException(status_code=422, detail=body.model_dump())


@router.post(
    "/image",
    response_model=ImageCheckResponse,
    summary="Check an image before it is published",
)
async def check_image(
    request: ImageCheckRequest,
    gateway: ModerationGateway = Depends(get_gateway),
):
    """Delegate to the vision service; outages follow the configured failure policy."""
    if request.image_url:
        image = ImageSource(url=request.image_url)
    else:
        image = _decode_image(request.image_base64 or "", request.content_type)

    result = await gateway.check_image(image, request.surface, request.user_id)
    body = ImageCheckResponse(
        allowed=result.allowed,
        categories=list(result.categories),
        severity=result.severity.value if result.severity else None,
        reason=result.reason,
        fallback=result.fallback,
        suspended=result.suspended,
        suspended_until=_iso(result.suspended_until),
    )
    if result.allowed:
        return body
    if result.suspended:
        raise HTTPException(status_code=423, detail=body.model_dump())
    raise HTTPException(status_code=422, detail=body.model_dump())


@router.get(
    "/status/{user_id}",
    response_model=UserModerationStatusResponse,
    summary="Get a user's strike and suspension status",
)
def get_user_moderation_status(
    user_id: str,
    gateway: ModerationGateway = Depends(get_gateway),
):
    """Return strikes in the current window and whether writes are blocked."""
    return _status_response(gateway, user_id)


@router.post(
    "/admin/lift/{user_id}",
    response_model=UserModerationStatusResponse,
    summary="End a user's suspension early",
)
def admin_lift_suspension(
    user_id: str,
    gateway: ModerationGateway = Depends(get_gateway),
):
    """Lift an active suspension.  Strikes stay in the ledger."""
    try:
        lifted = gateway.suspensions.lift(user_id)
    except LedgerUnavailable as exc:
        raise HTTPException(status_code=503, detail=f"Moderation store unavailable: {exc}")
    if not lifted:
        raise HTTPException(status_code=404, detail=f"User '{user_id}' is not suspended")
    return _status_response(gateway, user_id)
