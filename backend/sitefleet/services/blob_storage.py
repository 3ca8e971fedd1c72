from __future__ import annotations

import secrets
import string
import time
from typing import Optional

import httpx
import structlog
from fastapi import Depends

from sitefleet.core.config import Settings, get_settings

logger = structlog.get_logger()

_SUFFIX_ALPHABET = string.ascii_lowercase + string.digits


class BlobStorageError(Exception):
    """Upload to blob storage failed (missing token, transport or API error)."""


def thumbnail_filename(now_ms: Optional[int] = None) -> str:
    """
    thumb-<epoch ms>-<6 random chars>.jpg
    """
    ms = now_ms if now_ms is not None else int(time.time() * 1000)
    suffix = "".join(secrets.choice(_SUFFIX_ALPHABET) for _ in range(6))
    return f"thumb-{ms}-{suffix}.jpg"


class BlobStorage:
    """
    Public blob store addressed by pathname; PUT returns the public URL.
    """

    def __init__(self, settings: Settings, transport: Optional[httpx.AsyncBaseTransport] = None):
        self._settings = settings
        self._transport = transport

    async def put(self, pathname: str, content: bytes, content_type: str) -> str:
        token = (self._settings.BLOB_READ_WRITE_TOKEN or "").strip()
        if not token:
            raise BlobStorageError("BLOB_READ_WRITE_TOKEN is not set")

        url = f"{self._settings.BLOB_API_URL.rstrip('/')}/{pathname.lstrip('/')}"
        headers = {
            "Authorization": f"Bearer {token}",
            "x-content-type": content_type,
            "x-add-random-suffix": "0",
        }

        try:
            async with httpx.AsyncClient(
                timeout=self._settings.OUTBOUND_TIMEOUT_SECONDS,
                transport=self._transport,
            ) as client:
                response = await client.put(url, content=content, headers=headers)
        except httpx.TransportError as e:
            raise BlobStorageError(f"blob upload failed: {e!r}") from e

        if not response.is_success:
            raise BlobStorageError(f"blob upload returned {response.status_code}")

        try:
            blob_url = response.json()["url"]
        except (ValueError, KeyError, TypeError) as e:
            raise BlobStorageError("blob upload returned an unexpected body") from e

        logger.info("blob.uploaded", pathname=pathname, content_type=content_type, size=len(content))
        return blob_url


def get_blob_storage(settings: Settings = Depends(get_settings)) -> BlobStorage:
    return BlobStorage(settings)
