# sitefleet/crud/media.py
from __future__ import annotations

from collections.abc import Collection, Sequence

from sqlalchemy import or_, select
from sqlalchemy.ext.asyncio import AsyncSession

from sitefleet.models.media import Media

AUDIO_VIDEO_PATTERNS = ("audio/%", "video/%")


async def list_audio_video_media(
    db: AsyncSession,
    *,
    limit: int,
    exclude_ids: Collection[int] = (),
) -> Sequence[Media]:
    """
    First page of audio/video media, oldest first.
    """
    stmt = (
        select(Media)
        .where(or_(*(Media.mime_type.like(p) for p in AUDIO_VIDEO_PATTERNS)))
        .order_by(Media.id)
        .limit(limit)
    )
    if exclude_ids:
        stmt = stmt.where(Media.id.not_in(list(exclude_ids)))
    res = await db.execute(stmt)
    return res.scalars().all()


async def delete_media(db: AsyncSession, media: Media) -> None:
    await db.delete(media)
    await db.commit()
