# sitefleet/api/routes/media.py
from __future__ import annotations

from typing import Optional

import structlog
from fastapi import APIRouter, Depends, File, Form, HTTPException, UploadFile, status
from sqlalchemy.ext.asyncio import AsyncSession

from sitefleet.api.deps.auth import get_current_user, require_site_api_key
from sitefleet.core.config import Settings, get_settings
from sitefleet.core.plan import VIDEO_THUMBNAIL_PLAN_ERROR, PlanGateError, has_pro_features
from sitefleet.db.session import get_db
from sitefleet.models.user import User
from sitefleet.schemas.media import MediaCleanupOut, MediaOut, ThumbnailOut
from sitefleet.services.blob_storage import BlobStorage, BlobStorageError, get_blob_storage, thumbnail_filename
from sitefleet.services.media import create_media, purge_audio_video_media

logger = structlog.get_logger()

router = APIRouter(tags=["media"])


@router.post("/media", response_model=MediaOut, status_code=status.HTTP_201_CREATED)
async def upload_media(
    file: UploadFile = File(...),
    alt: Optional[str] = Form(default=None),
    _: User = Depends(get_current_user),
    settings: Settings = Depends(get_settings),
    db: AsyncSession = Depends(get_db),
    storage: BlobStorage = Depends(get_blob_storage),
):
    content_type = file.content_type or "application/octet-stream"
    content = await file.read()

    try:
        media = await create_media(
            db,
            filename=file.filename or "upload",
            content=content,
            content_type=content_type,
            alt=alt,
            settings=settings,
            storage=storage,
        )
    except PlanGateError as e:
        raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail=e.message)
    except BlobStorageError as e:
        logger.error("media.upload_failed", filename=file.filename, error=str(e))
        raise HTTPException(status_code=status.HTTP_500_INTERNAL_SERVER_ERROR, detail="Failed to upload file")

    return media


@router.post("/media-cleanup", response_model=MediaCleanupOut, dependencies=[Depends(require_site_api_key)])
async def media_cleanup(db: AsyncSession = Depends(get_db)):
    """
    Called by the primary instance after a pro -> basic downgrade.
    """
    deleted = await purge_audio_video_media(db)
    return MediaCleanupOut(deleted=deleted)


@router.post("/video-thumbnail", response_model=ThumbnailOut)
async def video_thumbnail(
    file: Optional[UploadFile] = File(default=None),
    settings: Settings = Depends(get_settings),
    storage: BlobStorage = Depends(get_blob_storage),
):
    if not has_pro_features(settings):
        raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail=VIDEO_THUMBNAIL_PLAN_ERROR)

    if file is None:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="No file provided")

    try:
        url = await storage.put(thumbnail_filename(), await file.read(), "image/jpeg")
    except BlobStorageError as e:
        logger.error("video_thumbnail.save_failed", error=str(e))
        raise HTTPException(status_code=status.HTTP_500_INTERNAL_SERVER_ERROR, detail="Failed to save thumbnail")

    return ThumbnailOut(url=url)
