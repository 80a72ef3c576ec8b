"""Media storage: resilient uploads and signed URL resolution."""

from kidguard.storage.client import HttpStorageClient, SignedUrl, StorageClient, parse_storage_url
from kidguard.storage.compression import CompressionResult, ImageCompressor
from kidguard.storage.errors import ErrorKind, StorageError, UploadAttempt, UploadError, classify_failure
from kidguard.storage.signed_urls import CachedSignedURL, SignedURLCache
from kidguard.storage.upload import (
    MediaValidationError,
    ResilientUploadPipeline,
    StorageReference,
    UploadDestination,
    build_object_path,
    validate_media,
)

__all__ = [
    "CachedSignedURL",
    "CompressionResult",
    "ErrorKind",
    "HttpStorageClient",
    "ImageCompressor",
    "MediaValidationError",
    "ResilientUploadPipeline",
    "SignedURLCache",
    "SignedUrl",
    "StorageClient",
    "StorageError",
    "StorageReference",
    "UploadAttempt",
    "UploadDestination",
    "UploadError",
    "build_object_path",
    "classify_failure",
    "parse_storage_url",
    "validate_media",
]
