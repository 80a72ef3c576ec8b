"""Builders that assemble the moderation and media components from Settings."""

from __future__ import annotations

from datetime import timedelta
from typing import Optional

import httpx

from kidguard.config import Settings, load_settings
from kidguard.moderation.events import ModerationEventLog
from kidguard.moderation.gateway import ModerationGateway
from kidguard.moderation.image_client import FailurePolicy, ImageModerationClient
from kidguard.moderation.store import ModerationStore
from kidguard.moderation.strikes import StrikeLedger
from kidguard.moderation.suspension import SuspensionStateMachine
from kidguard.storage.client import HttpStorageClient
from kidguard.storage.compression import ImageCompressor
from kidguard.storage.signed_urls import SignedURLCache
from kidguard.storage.upload import ResilientUploadPipeline


def build_gateway(
    settings: Optional[Settings] = None,
    *,
    transport: Optional[httpx.AsyncBaseTransport] = None,
) -> ModerationGateway:
    settings = settings or load_settings()
    store = ModerationStore(settings.moderation_dir)
    image_client = ImageModerationClient(
        settings.vision_endpoint,
        settings.vision_api_key,
        timeout=settings.vision_timeout,
        failure_policy=FailurePolicy.OPEN if settings.image_fail_open else FailurePolicy.CLOSED,
        transport=transport,
    )
    return ModerationGateway(
        StrikeLedger(store, window=timedelta(hours=settings.strike_window_hours)),
        SuspensionStateMachine(
            store,
            threshold=settings.strike_threshold,
            duration=timedelta(hours=settings.suspension_hours),
        ),
        image_client,
        events=ModerationEventLog(settings.events_dir),
    )


def build_storage(
    settings: Optional[Settings] = None,
    *,
    transport: Optional[httpx.AsyncBaseTransport] = None,
) -> HttpStorageClient:
    settings = settings or load_settings()
    if not settings.storage_url:
        raise ValueError("storage_url is not configured (set KIDGUARD_STORAGE_URL)")
    return HttpStorageClient(settings.storage_url, settings.storage_key, transport=transport)


def build_upload_pipeline(storage, settings: Optional[Settings] = None) -> ResilientUploadPipeline:
    settings = settings or load_settings()
    compressor = ImageCompressor(
        threshold_bytes=int(settings.compress_threshold_mb * 1024 * 1024),
        max_dimension=settings.compress_max_dimension,
        quality=settings.compress_quality,
    )
    return ResilientUploadPipeline(
        storage,
        max_attempts=settings.upload_max_attempts,
        retry_delays=settings.upload_retry_delays,
        attempt_timeout=settings.upload_timeout,
        compressor=compressor,
    )


def build_signed_url_cache(storage, settings: Optional[Settings] = None) -> SignedURLCache:
    settings = settings or load_settings()
    return SignedURLCache(
        storage,
        grant_seconds=settings.signed_url_ttl,
        safety_margin_seconds=settings.signed_url_margin,
        private_buckets=settings.private_buckets,
        timeout=settings.signing_timeout,
    )
