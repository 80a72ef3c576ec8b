"""Object storage collaborator.

:class:`StorageClient` is the interface the upload pipeline and the signed
URL cache depend on.  :class:`HttpStorageClient` speaks the Supabase-style
storage REST API (``/storage/v1/object/...``) over httpx and tags every
failure with an :class:`~kidguard.storage.errors.ErrorKind`.
"""

from __future__ import annotations

import re
from dataclasses import dataclass
from typing import Optional, Protocol
from urllib.parse import quote

import httpx
from loguru import logger

from kidguard.storage.errors import ErrorKind, StorageError, kind_for_status

_PUBLIC_OBJECT_RE = re.compile(r"/storage/v1/object/public/([^/]+)/(.+)")
_PRIVATE_OBJECT_RE = re.compile(r"/storage/v1/object/(?!public/|sign/)([^/]+)/(.+)")


@dataclass
class SignedUrl:
    url: str = ""
    error: Optional[str] = None


def parse_storage_url(url: str) -> Optional[tuple[str, str]]:
    """Return ``(bucket, path)`` for a storage object URL, else ``None``."""
    if not url:
        return None
    url = url.split("?", 1)[0]
    for pattern in (_PUBLIC_OBJECT_RE, _PRIVATE_OBJECT_RE):
        m = pattern.search(url)
        if m:
            return m.group(1), m.group(2)
    return None


class StorageClient(Protocol):
    async def upload(
        self,
        bucket: str,
        path: str,
        data: bytes,
        content_type: str = "application/octet-stream",
        upsert: bool = False,
    ) -> None: ...

    async def create_signed_url(self, bucket: str, path: str, ttl_seconds: int) -> SignedUrl: ...

    def get_public_url(self, bucket: str, path: str) -> str: ...


class HttpStorageClient:
    """Storage REST client.

    Parameters
    ----------
    base_url : str
        Project URL, e.g. ``https://abc.supabase.co``.
    api_key : str
        Service or user key, sent both as bearer token and ``apikey`` header.
    """

    def __init__(
        self,
        base_url: str,
        api_key: str = "",
        *,
        timeout: float = 30.0,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ) -> None:
        self.base_url = base_url.rstrip("/")
        self.api_key = api_key
        self._client = httpx.AsyncClient(
            base_url=f"{self.base_url}/storage/v1",
            timeout=timeout,
            transport=transport,
            headers=self._auth_headers(),
        )

    def _auth_headers(self) -> dict[str, str]:
        if not self.api_key:
            return {}
        return {"Authorization": f"Bearer {self.api_key}", "apikey": self.api_key}

    @staticmethod
    def _object_path(bucket: str, path: str) -> str:
        return f"{quote(bucket)}/{quote(path.lstrip('/'))}"

    async def aclose(self) -> None:
        await self._client.aclose()

    async def __aenter__(self) -> "HttpStorageClient":
        return self

    async def __aexit__(self, *exc_info) -> None:
        await self.aclose()

    # -- operations ----------------------------------------------------------

    async def upload(
        self,
        bucket: str,
        path: str,
        data: bytes,
        content_type: str = "application/octet-stream",
        upsert: bool = False,
    ) -> None:
        """PUT the bytes of one object; raises :class:`StorageError` on failure."""
        headers = {
            "Content-Type": content_type,
            "Cache-Control": "max-age=3600",
            "x-upsert": "true" if upsert else "false",
        }
        try:
            resp = await self._client.post(
                f"/object/{self._object_path(bucket, path)}", content=data, headers=headers
            )
        except httpx.TimeoutException as exc:
            raise StorageError(f"upload timed out: {exc!r}", ErrorKind.TRANSIENT) from exc
        except httpx.TransportError as exc:
            raise StorageError(f"network error during upload: {exc!r}", ErrorKind.TRANSIENT) from exc

        if not resp.is_success:
            raise StorageError(
                f"upload rejected with HTTP {resp.status_code}: {resp.text[:200]}",
                kind_for_status(resp.status_code),
                status=resp.status_code,
            )

    async def create_signed_url(self, bucket: str, path: str, ttl_seconds: int) -> SignedUrl:
        """Ask storage for a temporary URL; errors come back in ``SignedUrl.error``."""
        try:
            resp = await self._client.post(
                f"/object/sign/{self._object_path(bucket, path)}", json={"expiresIn": ttl_seconds}
            )
        except httpx.HTTPError as exc:
            return SignedUrl(error=f"signing request failed: {exc!r}")

        if not resp.is_success:
            return SignedUrl(error=f"signing rejected with HTTP {resp.status_code}")
        try:
            signed_path = resp.json().get("signedURL") or resp.json().get("signedUrl")
        except (ValueError, AttributeError):
            signed_path = None
        if not signed_path:
            logger.warning(f"[storage] signing response without URL for {bucket}/{path}")
            return SignedUrl(error="signing response missing signedURL")
        if signed_path.startswith("http"):
            return SignedUrl(url=signed_path)
        return SignedUrl(url=f"{self.base_url}/storage/v1{signed_path}")

    def get_public_url(self, bucket: str, path: str) -> str:
        return f"{self.base_url}/storage/v1/object/public/{self._object_path(bucket, path)}"
