"""Moderation event journal.

Every text and image decision is appended as one JSON line to a daily file
under ``~/.kidguard/moderation_events/``.  Fail-open image decisions are
recorded with ``fallback=true`` so infrastructure outages stay visible.
"""

from __future__ import annotations

import json
import threading
import uuid
from dataclasses import asdict, dataclass, field
from datetime import datetime, timezone
from pathlib import Path
from typing import Optional

from loguru import logger

SNIPPET_LIMIT = 120


@dataclass
class ModerationEvent:
    """A single journalled moderation outcome."""

    id: str
    timestamp: str
    user_id: str
    surface: str
    kind: str  # "text" | "image"
    snippet: str
    allowed: bool
    categories: list[str] = field(default_factory=list)
    severity: Optional[str] = None
    reason: str = ""
    fallback: bool = False


def make_snippet(text: str, limit: int = SNIPPET_LIMIT) -> str:
    if len(text) <= limit:
        return text
    return text[: limit - 3] + "..."


class ModerationEventLog:
    """File-based JSONL journal of moderation outcomes."""

    def __init__(self, base_dir: Optional[Path] = None) -> None:
        self._base_dir = Path(base_dir) if base_dir else Path.home() / ".kidguard" / "moderation_events"
        self._base_dir.mkdir(parents=True, exist_ok=True)
        self._lock = threading.Lock()

    # ------------------------------------------------------------------
    # Internal helpers
    # ------------------------------------------------------------------

    def _log_file_for_date(self, dt: datetime) -> Path:
        return self._base_dir / f"{dt.strftime('%Y-%m-%d')}.jsonl"

    def _read_all_events(self) -> list[ModerationEvent]:
        events: list[ModerationEvent] = []
        for path in sorted(self._base_dir.glob("*.jsonl")):
            try:
                text = path.read_text(encoding="utf-8")
            except OSError as exc:
                logger.warning(f"[events] cannot read {path.name}: {exc}")
                continue
            for line in text.splitlines():
                if not line.strip():
                    continue
                try:
                    events.append(ModerationEvent(**json.loads(line)))
                except (json.JSONDecodeError, TypeError):
                    logger.warning(f"[events] skipping malformed line in {path.name}")
        return events

    # ------------------------------------------------------------------
    # Public API
    # ------------------------------------------------------------------

    def log_event(
        self,
        user_id: str,
        surface: str,
        kind: str,
        snippet: str,
        allowed: bool,
        categories: Optional[list[str]] = None,
        severity: Optional[str] = None,
        reason: str = "",
        fallback: bool = False,
        now: Optional[datetime] = None,
    ) -> ModerationEvent:
        """Append an event and return it."""
        moment = now or datetime.now(timezone.utc)
        event = ModerationEvent(
            id=uuid.uuid4().hex[:16],
            timestamp=moment.astimezone(timezone.utc).isoformat(timespec="microseconds"),
            user_id=user_id,
            surface=surface,
            kind=kind,
            snippet=make_snippet(snippet),
            allowed=allowed,
            categories=sorted(categories or []),
            severity=severity,
            reason=reason,
            fallback=fallback,
        )
        line = json.dumps(asdict(event), ensure_ascii=False) + "\n"
        with self._lock, self._log_file_for_date(moment.astimezone(timezone.utc)).open("a", encoding="utf-8") as fh:
            fh.write(line)
        return event

    def get_events(
        self,
        *,
        user_id: Optional[str] = None,
        kind: Optional[str] = None,
        allowed: Optional[bool] = None,
        fallback: Optional[bool] = None,
        limit: int = 200,
    ) -> list[ModerationEvent]:
        """Return filtered events, newest first."""
        events = self._read_all_events()

        if user_id:
            events = [e for e in events if e.user_id == user_id]
        if kind:
            events = [e for e in events if e.kind == kind]
        if allowed is not None:
            events = [e for e in events if e.allowed == allowed]
        if fallback is not None:
            events = [e for e in events if e.fallback == fallback]

        events.sort(key=lambda e: e.timestamp, reverse=True)
        return events[:limit]
