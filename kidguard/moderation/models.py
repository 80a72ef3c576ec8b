"""Data models for the content moderation system."""

from __future__ import annotations

import base64
from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any, Optional


class Surface(str, Enum):
    """Where a piece of content is being published."""

    COMMENT = "comment"
    CHAT = "chat"
    POST = "post"


class Category(str, Enum):
    """Policy categories produced by the local text filter."""

    PROFANITY = "profanity"
    SLUR = "slur"
    VIOLENCE = "violence"
    SELF_HARM = "self-harm"
    SEXUAL = "sexual"
    BULLYING = "bullying"
    PII = "pii"
    LINK = "link"


class Severity(str, Enum):
    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"


@dataclass(frozen=True)
class NormalizedText:
    """Matching variants of one input string.

    ``source`` is the canonical text before leetspeak substitution (digits
    intact), ``spaced`` the fully normalized text and ``tight`` the same with
    camouflage separators between letters removed.
    """

    source: str
    spaced: str
    tight: str


@dataclass
class ModerationDecision:
    """Outcome of inspecting one piece of content.

    ``fallback`` marks a decision taken because the inspection itself failed
    (infrastructure error), not because the content was judged.
    """

    allowed: bool
    reason: Optional[str] = None
    categories: set[str] = field(default_factory=set)
    severity: Optional[Severity] = None
    fallback: bool = False

    def to_dict(self) -> dict[str, Any]:
        return {
            "allowed": self.allowed,
            "reason": self.reason,
            "categories": sorted(self.categories),
            "severity": self.severity.value if self.severity else None,
            "fallback": self.fallback,
        }


@dataclass
class StrikeRecord:
    """A single recorded violation."""

    user_id: str
    timestamp: datetime
    surface: Surface
    categories: list[str] = field(default_factory=list)
    reason: str = ""


@dataclass
class SuspensionWindow:
    """Stored suspension; its absence means the user is active."""

    user_id: str
    until: datetime
    strike_count_at_trigger: int


@dataclass
class SuspensionStatus:
    """Write-access state of a user at a given instant."""

    suspended: bool = False
    until: Optional[datetime] = None

    def remaining_seconds(self, now: datetime) -> int:
        if not self.suspended or self.until is None:
            return 0
        return max(0, int((self.until - now).total_seconds()))

    def format_remaining(self, now: datetime) -> str:
        """Human-readable remaining time, e.g. ``"2h 15min"`` or ``"40 minutos"``."""
        seconds = self.remaining_seconds(now)
        if seconds <= 0:
            return ""
        hours, rest = divmod(seconds, 3600)
        minutes = rest // 60
        if hours > 0:
            return f"{hours}h {minutes}min"
        return f"{minutes} minutos"


@dataclass
class TextCheckResult:
    """Result returned to callers of :meth:`ModerationGateway.check_text`."""

    allowed: bool
    reason: Optional[str] = None
    categories: list[str] = field(default_factory=list)
    severity: Optional[Severity] = None
    strikes: Optional[int] = None
    suspended: bool = False
    suspended_until: Optional[datetime] = None


@dataclass
class ImageCheckResult:
    """Result returned to callers of :meth:`ModerationGateway.check_image`."""

    allowed: bool
    categories: list[str] = field(default_factory=list)
    severity: Optional[Severity] = None
    reason: Optional[str] = None
    fallback: bool = False
    suspended: bool = False
    suspended_until: Optional[datetime] = None


@dataclass
class ImageSource:
    """An image to moderate: either a URL or inline bytes."""

    url: Optional[str] = None
    data: Optional[bytes] = None
    content_type: str = "image/jpeg"

    def __post_init__(self) -> None:
        if (self.url is None) == (self.data is None):
            raise ValueError("ImageSource needs exactly one of url or data")

    def to_payload(self) -> dict[str, str]:
        if self.url is not None:
            return {"imageUrl": self.url}
        encoded = base64.b64encode(self.data or b"").decode("ascii")
        return {"imageBase64": f"data:{self.content_type};base64,{encoded}"}

    def describe(self) -> str:
        if self.url is not None:
            return self.url[:100]
        return "[inline image]"
