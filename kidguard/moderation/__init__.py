"""Content moderation for a platform whose users are minors.

This package provides:
- Text filtering: normalization against evasion, then ordered pattern rules
- Image moderation: delegation to an external vision service with a failure policy
- Strikes and suspension: a rolling violation count that blocks writes for a while
- The gateway that runs all of the above for each submission
"""

from kidguard.moderation.gateway import ModerationGateway
from kidguard.moderation.image_client import FailurePolicy, ImageModerationClient
from kidguard.moderation.models import (
    Category,
    ImageCheckResult,
    ImageSource,
    ModerationDecision,
    NormalizedText,
    Severity,
    Surface,
    SuspensionStatus,
    TextCheckResult,
)
from kidguard.moderation.normalizer import normalize
from kidguard.moderation.patterns import PatternMatcher
from kidguard.moderation.store import LedgerUnavailable, ModerationStore
from kidguard.moderation.strikes import StrikeLedger
from kidguard.moderation.suspension import SuspensionStateMachine

__all__ = [
    "Category",
    "FailurePolicy",
    "ImageCheckResult",
    "ImageModerationClient",
    "ImageSource",
    "LedgerUnavailable",
    "ModerationDecision",
    "ModerationGateway",
    "ModerationStore",
    "NormalizedText",
    "PatternMatcher",
    "Severity",
    "StrikeLedger",
    "Surface",
    "SuspensionStateMachine",
    "SuspensionStatus",
    "TextCheckResult",
    "normalize",
]
