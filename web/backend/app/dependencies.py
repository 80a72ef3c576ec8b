"""Shared singletons for the routers.

Built lazily on first use from :func:`kidguard.config.load_settings` so that
importing the app does not require a configured environment.  Tests replace
them through ``app.dependency_overrides``.
"""

from __future__ import annotations

from functools import lru_cache

from fastapi import HTTPException

from kidguard.config import Settings, load_settings
from kidguard.moderation.gateway import ModerationGateway
from kidguard.services import (
    build_gateway,
    build_signed_url_cache,
    build_storage,
    build_upload_pipeline,
)
from kidguard.storage.client import HttpStorageClient
from kidguard.storage.signed_urls import SignedURLCache
from kidguard.storage.upload import ResilientUploadPipeline


@lru_cache(maxsize=1)
def get_settings() -> Settings:
    return load_settings()


@lru_cache(maxsize=1)
def get_gateway() -> ModerationGateway:
    return build_gateway(get_settings())


@lru_cache(maxsize=1)
def _storage() -> HttpStorageClient:
    return build_storage(get_settings())


def get_storage() -> HttpStorageClient:
    try:
        return _storage()
    except ValueError as exc:
        raise HTTPException(status_code=503, detail=str(exc)) from exc


@lru_cache(maxsize=1)
def _upload_pipeline() -> ResilientUploadPipeline:
    return build_upload_pipeline(_storage(), get_settings())


def get_upload_pipeline() -> ResilientUploadPipeline:
    get_storage()
    return _upload_pipeline()


@lru_cache(maxsize=1)
def _signed_url_cache() -> SignedURLCache:
    return build_signed_url_cache(_storage(), get_settings())


def get_signed_url_cache() -> SignedURLCache:
    get_storage()
    return _signed_url_cache()
