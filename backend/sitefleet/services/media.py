from __future__ import annotations

import re
import time
from typing import Optional

import structlog
from sqlalchemy.ext.asyncio import AsyncSession

from sitefleet.core.config import Settings
from sitefleet.core.plan import ensure_can_upload
from sitefleet.crud.media import delete_media, list_audio_video_media
from sitefleet.models.media import Media
from sitefleet.services.blob_storage import BlobStorage

logger = structlog.get_logger()

CLEANUP_PAGE_SIZE = 100

_UNSAFE_FILENAME_CHARS = re.compile(r"[^A-Za-z0-9._-]+")


def media_pathname(filename: str, now_ms: Optional[int] = None) -> str:
    ms = now_ms if now_ms is not None else int(time.time() * 1000)
    base = filename.replace("\\", "/").rsplit("/", 1)[-1]
    safe = _UNSAFE_FILENAME_CHARS.sub("-", base).strip("-.") or "file"
    return f"{ms}-{safe}"


async def create_media(
    db: AsyncSession,
    *,
    filename: str,
    content: bytes,
    content_type: str,
    alt: Optional[str],
    settings: Settings,
    storage: BlobStorage,
) -> Media:
    """
    Plan gate -> blob upload -> row insert.

    Raises PlanGateError before anything is written, BlobStorageError when the
    upload fails (no row is created in either case).
    """
    ensure_can_upload(content_type, settings)

    url = await storage.put(media_pathname(filename), content, content_type)

    media = Media(
        filename=filename,
        mime_type=content_type,
        filesize=len(content),
        url=url,
        alt=(alt or "").strip() or None,
    )
    db.add(media)
    await db.commit()
    await db.refresh(media)

    logger.info("media.created", media_id=media.id, mime_type=content_type, size=len(content))
    return media


async def purge_audio_video_media(db: AsyncSession, *, page_size: int = CLEANUP_PAGE_SIZE) -> int:
    """
    Delete every audio/* and video/* media row, one transaction per row.

    Always re-reads the first page: deleting shifts the remaining rows into it.
    Rows that fail to delete are logged and left out of later pages.
    """
    deleted = 0
    failed_ids: set[int] = set()

    while True:
        batch = await list_audio_video_media(db, limit=page_size, exclude_ids=failed_ids)
        if not batch:
            break

        for media in batch:
            media_id = media.id
            try:
                await delete_media(db, media)
                deleted += 1
            except Exception as e:
                await db.rollback()
                failed_ids.add(media_id)
                logger.error("media_cleanup.delete_failed", media_id=media_id, error=str(e))
                # rollback expired the rest of the batch; re-read the page
                break

    logger.info("media_cleanup.completed", deleted=deleted, failed=len(failed_ids))
    return deleted
