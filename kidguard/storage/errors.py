"""Structured failure taxonomy for storage I/O.

Classification never looks at error message text: the storage client tags
every failure with an :class:`ErrorKind` when it raises, and timeouts and
transport errors are recognized by type.
"""

from __future__ import annotations

import asyncio
from dataclasses import dataclass
from datetime import datetime
from enum import Enum
from typing import Optional

import httpx


class ErrorKind(str, Enum):
    TRANSIENT = "transient"  # network aborts, timeouts, 0/5xx -- retried
    PERMISSION = "permission"  # auth/ACL -- terminal
    UNKNOWN = "unknown"  # unclassified -- not retried


def kind_for_status(status: int) -> ErrorKind:
    if status in (401, 403):
        return ErrorKind.PERMISSION
    if status == 0 or status in (408, 429) or 500 <= status < 600:
        return ErrorKind.TRANSIENT
    return ErrorKind.UNKNOWN


class StorageError(Exception):
    """A storage operation failed; ``kind`` says whether it is worth retrying."""

    def __init__(self, message: str, kind: ErrorKind = ErrorKind.UNKNOWN, status: int = 0) -> None:
        super().__init__(message)
        self.kind = kind
        self.status = status


def classify_failure(exc: BaseException) -> ErrorKind:
    if isinstance(exc, StorageError):
        return exc.kind
    if isinstance(exc, (asyncio.TimeoutError, httpx.TimeoutException)):
        return ErrorKind.TRANSIENT
    if isinstance(exc, httpx.HTTPStatusError):
        return kind_for_status(exc.response.status_code)
    if isinstance(exc, (httpx.TransportError, ConnectionError)):
        return ErrorKind.TRANSIENT
    if isinstance(exc, PermissionError):
        return ErrorKind.PERMISSION
    return ErrorKind.UNKNOWN


@dataclass
class UploadAttempt:
    """One try of an upload task; lives only as long as the operation."""

    attempt_number: int
    started_at: datetime
    classification: Optional[ErrorKind] = None  # None while running or on success


_USER_MESSAGES = {
    ErrorKind.PERMISSION: "Permiso denegado al subir el archivo.",
    ErrorKind.TRANSIENT: "No se pudo subir el archivo. La conexión se interrumpió, reintenta.",
    ErrorKind.UNKNOWN: "No se pudo subir el archivo. Reintenta.",
}


class UploadError(Exception):
    """Raised by the upload pipeline once no further attempt will be made."""

    def __init__(
        self,
        kind: ErrorKind,
        attempts: list[UploadAttempt],
        last_error: BaseException,
    ) -> None:
        super().__init__(f"upload failed after {len(attempts)} attempt(s) [{kind.value}]: {last_error}")
        self.kind = kind
        self.attempts = attempts
        self.last_error = last_error

    @property
    def user_message(self) -> str:
        """Message safe to show to the end user.

        Permission failures are surfaced verbatim; everything else becomes a
        generic "try again".
        """
        if self.kind is ErrorKind.PERMISSION:
            return f"{_USER_MESSAGES[ErrorKind.PERMISSION]} ({self.last_error})"
        if isinstance(self.last_error, (asyncio.TimeoutError, httpx.TimeoutException)):
            return "La conexión tardó demasiado. Reintenta."
        return _USER_MESSAGES[self.kind]
