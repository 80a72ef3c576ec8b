"""Resilient media upload.

Every upload goes through the same steps: optional client-side compression
(off the event loop), then up to ``max_attempts`` storage calls, each bounded
by a hard timeout.  Only failures classified as ``transient`` are retried;
``permission`` and ``unknown`` failures stop immediately.  When no further
attempt will be made an :class:`UploadError` carrying the last error is
raised.
"""

from __future__ import annotations

import asyncio
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Awaitable, Callable, Optional, Sequence

from loguru import logger
from tenacity import AsyncRetrying, RetryCallState, retry_if_exception, stop_after_attempt

from kidguard.storage.client import StorageClient
from kidguard.storage.compression import ImageCompressor
from kidguard.storage.errors import ErrorKind, UploadAttempt, UploadError, classify_failure

MAX_ATTEMPTS = 3
RETRY_DELAYS = (0.6, 1.4)
ATTEMPT_TIMEOUT = 25.0

MAX_IMAGE_BYTES = 10 * 1024 * 1024
MAX_VIDEO_BYTES = 50 * 1024 * 1024

ALLOWED_IMAGE_TYPES = frozenset(
    {"image/jpeg", "image/png", "image/gif", "image/webp", "image/heic", "image/heif"}
)
ALLOWED_VIDEO_TYPES = frozenset(
    {"video/mp4", "video/quicktime", "video/webm", "video/3gpp", "video/x-m4v"}
)

_DEFAULT_EXTENSION = {"image": "jpg", "video": "mp4"}


@dataclass
class UploadDestination:
    bucket: str
    path: str
    content_type: str = "application/octet-stream"


@dataclass
class StorageReference:
    """Where an uploaded object ended up."""

    bucket: str
    path: str
    url: str


class MediaValidationError(ValueError):
    """The file is of a type or size the platform does not accept."""


# -- helpers ------------------------------------------------------------------


def validate_media(kind: str, content_type: str, size: int) -> None:
    """Raise :class:`MediaValidationError` unless the file may be uploaded."""
    if kind == "image":
        if content_type not in ALLOWED_IMAGE_TYPES:
            raise MediaValidationError("Formato de imagen no soportado. Usa JPG, PNG, GIF o WebP.")
        if size > MAX_IMAGE_BYTES:
            raise MediaValidationError("La imagen es muy grande. Máximo 10MB.")
    elif kind == "video":
        if content_type not in ALLOWED_VIDEO_TYPES:
            raise MediaValidationError("Formato de vídeo no soportado. Usa MP4, MOV o WebM.")
        if size > MAX_VIDEO_BYTES:
            raise MediaValidationError("El vídeo es muy grande. Máximo 50MB.")
    else:
        raise MediaValidationError(f"Tipo de archivo desconocido: {kind}")


def build_object_path(
    user_id: str,
    kind: str,
    filename: str,
    content_type: str,
    now: Optional[datetime] = None,
) -> str:
    """``{user_id}/{epoch_millis}_{kind}.{ext}``; QuickTime always gets ``.mov``."""
    now = now or datetime.now(timezone.utc)
    millis = int(now.timestamp() * 1000)
    if kind == "video" and content_type == "video/quicktime":
        extension = "mov"
    elif "." in filename and filename.rsplit(".", 1)[1]:
        extension = filename.rsplit(".", 1)[1].lower()
    else:
        extension = _DEFAULT_EXTENSION.get(kind, "bin")
    return f"{user_id}/{millis}_{kind}.{extension}"


def _is_transient(exc: BaseException) -> bool:
    return classify_failure(exc) is ErrorKind.TRANSIENT


# -- pipeline -----------------------------------------------------------------


class ResilientUploadPipeline:
    """Compress, upload, classify, retry.

    Parameters
    ----------
    storage : StorageClient
        Object storage collaborator.
    max_attempts : int
        Total attempts including the first one.
    retry_delays : sequence of float
        Backoff before attempt 2, 3, ...; the last value repeats if there are
        more attempts than delays.
    attempt_timeout : float
        Hard bound in seconds on each storage call.
    compressor : ImageCompressor | None
        ``None`` disables compression.
    sleep : callable
        Awaitable sleep used between attempts (injectable for tests).
    """

    def __init__(
        self,
        storage: StorageClient,
        *,
        max_attempts: int = MAX_ATTEMPTS,
        retry_delays: Sequence[float] = RETRY_DELAYS,
        attempt_timeout: float = ATTEMPT_TIMEOUT,
        compressor: Optional[ImageCompressor] = None,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ) -> None:
        if max_attempts < 1:
            raise ValueError("max_attempts must be at least 1")
        self.storage = storage
        self.max_attempts = max_attempts
        self.retry_delays = tuple(retry_delays)
        self.attempt_timeout = attempt_timeout
        self.compressor = compressor
        self._sleep = sleep

    def _wait(self, retry_state: RetryCallState) -> float:
        if not self.retry_delays:
            return 0.0
        index = min(retry_state.attempt_number - 1, len(self.retry_delays) - 1)
        return self.retry_delays[index]

    async def _prepare(self, data: bytes, destination: UploadDestination) -> tuple[bytes, str]:
        if self.compressor is None or not self.compressor.should_compress(data, destination.content_type):
            return data, destination.content_type
        result = await asyncio.to_thread(self.compressor.compress, data, destination.content_type)
        return result.data, result.content_type

    async def upload(self, data: bytes, destination: UploadDestination) -> StorageReference:
        """Upload *data* to *destination*; raises :class:`UploadError` on failure."""
        payload, content_type = await self._prepare(data, destination)
        attempts: list[UploadAttempt] = []
        label = f"{destination.bucket}/{destination.path}"

        retrying = AsyncRetrying(
            stop=stop_after_attempt(self.max_attempts),
            wait=self._wait,
            retry=retry_if_exception(_is_transient),
            sleep=self._sleep,
            reraise=True,
        )
        try:
            async for attempt in retrying:
                with attempt:
                    record = UploadAttempt(
                        attempt_number=attempt.retry_state.attempt_number,
                        started_at=datetime.now(timezone.utc),
                    )
                    attempts.append(record)
                    try:
                        await asyncio.wait_for(
                            self.storage.upload(
                                destination.bucket, destination.path, payload, content_type
                            ),
                            timeout=self.attempt_timeout,
                        )
                    except Exception as exc:
                        record.classification = classify_failure(exc)
                        logger.warning(
                            f"[upload] {label} attempt {record.attempt_number}/{self.max_attempts} "
                            f"failed ({record.classification.value}): {exc!r}"
                        )
                        raise
        except Exception as exc:
            kind = attempts[-1].classification if attempts and attempts[-1].classification else classify_failure(exc)
            logger.error(f"[upload] {label} gave up after {len(attempts)} attempt(s): {kind.value}")
            raise UploadError(kind, attempts, exc) from exc

        logger.info(f"[upload] {label} stored after {len(attempts)} attempt(s)")
        return StorageReference(
            bucket=destination.bucket,
            path=destination.path,
            url=self.storage.get_public_url(destination.bucket, destination.path),
        )
