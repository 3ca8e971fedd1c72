from datetime import datetime
from typing import Optional

from pydantic import BaseModel, ConfigDict, Field


class MediaOut(BaseModel):
    model_config = ConfigDict(from_attributes=True, populate_by_name=True)

    id: int
    filename: str
    mime_type: str = Field(serialization_alias="mimeType")
    filesize: Optional[int] = None
    url: str
    alt: Optional[str] = None
    created_at: datetime = Field(serialization_alias="createdAt")


class MediaCleanupOut(BaseModel):
    deleted: int


class ThumbnailOut(BaseModel):
    url: str
