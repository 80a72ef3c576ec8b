"""Media router -- resilient uploads and signed URL resolution."""

from __future__ import annotations

from fastapi import APIRouter, Depends, HTTPException, Request

from kidguard.storage.errors import ErrorKind, UploadError
from kidguard.storage.signed_urls import SignedURLCache
from kidguard.storage.upload import (
    MediaValidationError,
    ResilientUploadPipeline,
    UploadDestination,
    validate_media,
)
from web.backend.app.dependencies import get_signed_url_cache, get_upload_pipeline
from web.backend.app.models.api import ResolveRequest, ResolveResponse, StorageReferenceResponse

router = APIRouter(prefix="/api/media", tags=["media"])

_STATUS_FOR_KIND = {
    ErrorKind.PERMISSION: 403,
    ErrorKind.TRANSIENT: 503,
    ErrorKind.UNKNOWN: 502,
}


@router.put(
    "/{bucket}/{path:path}",
    response_model=StorageReferenceResponse,
    summary="Upload an image or video",
)
async def upload_media(
    bucket: str,
    path: str,
    request: Request,
    pipeline: ResilientUploadPipeline = Depends(get_upload_pipeline),
):
    """Store the raw request body at ``bucket/path``.

    Large images may be recompressed before upload; transient storage
    failures are retried before an error is returned.
    """
    content_type = request.headers.get("content-type", "application/octet-stream").split(";")[0].strip()
    data = await request.body()
    if not data:
        raise HTTPException(status_code=400, detail="Empty upload body")

    kind = content_type.split("/", 1)[0]
    try:
        validate_media(kind, content_type, len(data))
    except MediaValidationError as exc:
        raise HTTPException(status_code=415, detail=str(exc))

    try:
        ref = await pipeline.upload(data, UploadDestination(bucket, path, content_type))
    except UploadError as exc:
        raise HTTPException(
            status_code=_STATUS_FOR_KIND[exc.kind],
            detail={"message": exc.user_message, "kind": exc.kind.value, "attempts": len(exc.attempts)},
        )
    return StorageReferenceResponse(bucket=ref.bucket, path=ref.path, url=ref.url)


@router.post(
    "/resolve",
    response_model=ResolveResponse,
    summary="Resolve stored references to displayable URLs",
)
async def resolve_media(
    request: ResolveRequest,
    cache: SignedURLCache = Depends(get_signed_url_cache),
):
    """Sign private references; public and external URLs pass through."""
    return ResolveResponse(urls=await cache.resolve_many(request.references))
