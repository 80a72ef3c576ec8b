"""Signed URL resolution for private media.

Private objects are stored by reference (their storage URL) and shown
through short-lived signed URLs.  :class:`SignedURLCache` keeps each signed
URL for ``grant_seconds - safety_margin_seconds`` so that a cached URL is
never handed out after the grant itself has expired, and collapses
concurrent misses for the same reference into a single signing request.
"""

from __future__ import annotations

import asyncio
import time
from dataclasses import dataclass
from typing import Callable, Hashable, Iterable, Optional

from cachetools import TTLCache
from loguru import logger

from kidguard.storage.client import StorageClient, parse_storage_url
from kidguard.utils.generations import GenerationCounter

GRANT_SECONDS = 3600
SAFETY_MARGIN_SECONDS = 600
SIGNING_TIMEOUT = 10.0


@dataclass
class CachedSignedURL:
    source_reference: str
    signed_url: str
    expires_at: float  # clock() value, strictly before the grant expiry

    def is_live(self, now: float) -> bool:
        return now < self.expires_at


class SignedURLCache:
    """Per-process cache of signed URLs.

    Parameters
    ----------
    storage : StorageClient
        Issues the signed URLs.
    grant_seconds : int
        Lifetime requested from storage for each signed URL.
    safety_margin_seconds : int
        How long before the grant expires an entry stops being served.
    private_buckets : iterable of str
        Buckets whose objects always need signing, even when referenced
        through a ``/public/`` URL.
    clock : callable
        Monotonic clock in seconds (injectable for tests).
    """

    def __init__(
        self,
        storage: StorageClient,
        *,
        grant_seconds: int = GRANT_SECONDS,
        safety_margin_seconds: int = SAFETY_MARGIN_SECONDS,
        private_buckets: Iterable[str] = ("content",),
        maxsize: int = 4096,
        clock: Callable[[], float] = time.monotonic,
        timeout: float = SIGNING_TIMEOUT,
    ) -> None:
        if safety_margin_seconds <= 0 or safety_margin_seconds >= grant_seconds:
            raise ValueError("safety margin must be positive and shorter than the grant")
        self.storage = storage
        self.grant_seconds = grant_seconds
        self.ttl = grant_seconds - safety_margin_seconds
        self.private_buckets = frozenset(private_buckets)
        self.timeout = timeout
        self._clock = clock
        self._entries: TTLCache = TTLCache(maxsize=maxsize, ttl=self.ttl, timer=clock)
        self._inflight: dict[str, asyncio.Task] = {}
        self.generations = GenerationCounter()

    def needs_signing(self, reference: Optional[str]) -> bool:
        """True for storage object URLs in a private bucket or outside ``/public/``."""
        if not reference:
            return False
        parsed = parse_storage_url(reference)
        if parsed is None:
            return False
        bucket, _ = parsed
        return bucket in self.private_buckets or "/object/public/" not in reference

    def cached(self, reference: str) -> Optional[CachedSignedURL]:
        entry = self._entries.get(reference)
        if entry is not None and entry.is_live(self._clock()):
            return entry
        return None

    def invalidate(self, reference: str) -> None:
        self._entries.pop(reference, None)

    def clear(self) -> None:
        self._entries.clear()

    def __len__(self) -> int:
        self._entries.expire()
        return len(self._entries)

    # -- resolution ----------------------------------------------------------

    async def _sign(self, reference: str) -> str:
        parsed = parse_storage_url(reference)
        if parsed is None:
            logger.warning(f"[signed-urls] could not parse storage reference: {reference}")
            return reference
        bucket, path = parsed

        started = self._clock()
        try:
            signed = await asyncio.wait_for(
                self.storage.create_signed_url(bucket, path, self.grant_seconds),
                timeout=self.timeout,
            )
        except asyncio.TimeoutError:
            logger.error(f"[signed-urls] signing timed out after {self.timeout}s for {bucket}/{path}")
            return reference
        except Exception as exc:
            logger.error(f"[signed-urls] signing failed for {bucket}/{path}: {exc!r}")
            return reference

        if signed.error or not signed.url:
            logger.error(f"[signed-urls] signing failed for {bucket}/{path}: {signed.error}")
            return reference

        # expiry counts from the request, not the response
        self._entries[reference] = CachedSignedURL(
            source_reference=reference,
            signed_url=signed.url,
            expires_at=started + self.ttl,
        )
        return signed.url

    async def resolve(self, reference: str) -> str:
        """Return a displayable URL for *reference*.

        Never raises: on signing failure the original reference comes back
        and nothing is cached.
        """
        if not self.needs_signing(reference):
            return reference

        entry = self.cached(reference)
        if entry is not None:
            return entry.signed_url

        task = self._inflight.get(reference)
        if task is None:
            task = asyncio.create_task(self._sign(reference))
            self._inflight[reference] = task
            task.add_done_callback(lambda _t, ref=reference: self._inflight.pop(ref, None))
        return await asyncio.shield(task)

    async def resolve_many(self, references: Iterable[str]) -> dict[str, str]:
        unique = list(dict.fromkeys(ref for ref in references if ref))
        resolved = await asyncio.gather(*(self.resolve(ref) for ref in unique))
        return dict(zip(unique, resolved))

    async def resolve_latest(self, slot: Hashable, reference: str) -> Optional[str]:
        """Resolve *reference* for *slot*; ``None`` if the slot moved on meanwhile."""
        token = self.generations.advance(slot)
        url = await self.resolve(reference)
        if not self.generations.is_current(slot, token):
            logger.debug(f"[signed-urls] dropping stale result for slot={slot!r}")
            return None
        return url

    def release(self, slot: Hashable) -> None:
        self.generations.release(slot)
