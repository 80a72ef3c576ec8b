"""Pydantic models for API request/response serialization.

These models mirror the kidguard dataclasses and provide proper JSON
serialization for the FastAPI endpoints.
"""

from __future__ import annotations

from typing import Optional

from pydantic import BaseModel, Field, model_validator

from kidguard.moderation.models import Surface


# ---------------------------------------------------------------------------
# Moderation models
# ---------------------------------------------------------------------------


class TextCheckRequest(BaseModel):
    user_id: str = Field(..., min_length=1)
    surface: Surface = Surface.COMMENT
    text: str = ""


class TextCheckResponse(BaseModel):
    """Mirrors kidguard.moderation.models.TextCheckResult."""

    allowed: bool
    reason: Optional[str] = None
    categories: list[str] = Field(default_factory=list)
    severity: Optional[str] = None
    strikes: Optional[int] = None
    suspended: bool = False
    suspended_until: Optional[str] = None


class ImageCheckRequest(BaseModel):
    """Either ``image_url`` or ``image_base64`` (raw or ``data:`` URI), not both."""

    user_id: str = Field(..., min_length=1)
    surface: Surface = Surface.POST
    image_url: Optional[str] = None
    image_base64: Optional[str] = None
    content_type: str = "image/jpeg"

    @model_validator(mode="after")
    def _exactly_one_source(self) -> "ImageCheckRequest":
        if bool(self.image_url) == bool(self.image_base64):
            raise ValueError("provide exactly one of image_url or image_base64")
        return self


class ImageCheckResponse(BaseModel):
    """Mirrors kidguard.moderation.models.ImageCheckResult."""

    allowed: bool
    categories: list[str] = Field(default_factory=list)
    severity: Optional[str] = None
    reason: Optional[str] = None
    fallback: bool = False
    suspended: bool = False
    suspended_until: Optional[str] = None


class UserModerationStatusResponse(BaseModel):
    user_id: str
    strike_count: int = 0
    strike_threshold: int = 3
    is_suspended: bool = False
    suspended_until: Optional[str] = None
    remaining: str = ""


# ---------------------------------------------------------------------------
# Media models
# ---------------------------------------------------------------------------


class StorageReferenceResponse(BaseModel):
    """Mirrors kidguard.storage.upload.StorageReference."""

    bucket: str
    path: str
    url: str


class ResolveRequest(BaseModel):
    references: list[str] = Field(default_factory=list, max_length=200)


class ResolveResponse(BaseModel):
    urls: dict[str, str] = Field(default_factory=dict)
