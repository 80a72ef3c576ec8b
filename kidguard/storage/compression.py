"""Client-side image compression before upload.

Large photos are downscaled and re-encoded as JPEG.  Compression is an
optimization only: whenever it fails or does not help, the original bytes
are returned unchanged.
"""

from __future__ import annotations

import io
from dataclasses import dataclass

from loguru import logger
from PIL import Image

COMPRESS_THRESHOLD_BYTES = 6 * 1024 * 1024
MAX_DIMENSION = 1600
JPEG_QUALITY = 85
SHRINK_FACTOR = 0.75
MIN_DIMENSION = 320

COMPRESSIBLE_TYPES = frozenset({"image/jpeg", "image/png", "image/webp"})


@dataclass
class CompressionResult:
    data: bytes
    content_type: str
    compressed: bool = False


class ImageCompressor:
    """Downscale-and-reencode images above ``threshold_bytes``.

    Parameters
    ----------
    threshold_bytes : int
        Images at or below this size are returned untouched.
    max_dimension : int
        Longest side after the first pass.
    quality : int
        JPEG quality (1-95).
    """

    def __init__(
        self,
        threshold_bytes: int = COMPRESS_THRESHOLD_BYTES,
        max_dimension: int = MAX_DIMENSION,
        quality: int = JPEG_QUALITY,
        *,
        shrink_factor: float = SHRINK_FACTOR,
        min_dimension: int = MIN_DIMENSION,
    ) -> None:
        self.threshold_bytes = threshold_bytes
        self.max_dimension = max_dimension
        self.quality = quality
        self.shrink_factor = shrink_factor
        self.min_dimension = min_dimension

    def should_compress(self, data: bytes, content_type: str) -> bool:
        return content_type in COMPRESSIBLE_TYPES and len(data) > self.threshold_bytes

    def compress(self, data: bytes, content_type: str) -> CompressionResult:
        """Return a smaller JPEG rendition of *data*, or *data* itself."""
        original = CompressionResult(data=data, content_type=content_type)
        if not self.should_compress(data, content_type):
            return original

        try:
            encoded = self._encode(data)
        except (OSError, ValueError, Image.DecompressionBombError) as exc:
            logger.warning(f"[upload] compression failed, uploading original: {exc}")
            return original

        if len(encoded) >= len(data):
            logger.info("[upload] compression did not reduce size, uploading original")
            return original

        logger.info(f"[upload] compressed image {len(data)} -> {len(encoded)} bytes")
        return CompressionResult(data=encoded, content_type="image/jpeg", compressed=True)

    def _encode(self, data: bytes) -> bytes:
        with Image.open(io.BytesIO(data)) as source:
            image = source.convert("RGB")

        dimension = self.max_dimension
        while True:
            frame = image.copy()
            frame.thumbnail((dimension, dimension), Image.Resampling.LANCZOS)
            output = io.BytesIO()
            frame.save(output, format="JPEG", quality=self.quality, optimize=True)
            encoded = output.getvalue()
            if len(encoded) <= self.threshold_bytes or dimension <= self.min_dimension:
                return encoded
            dimension = max(self.min_dimension, int(dimension * self.shrink_factor))
