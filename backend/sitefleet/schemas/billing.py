from typing import Literal, Optional

from pydantic import BaseModel, ConfigDict, Field


class PortalSessionRequest(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    return_url: Optional[str] = Field(default=None, alias="returnUrl", max_length=2048)


class PortalSessionOut(BaseModel):
    url: str


class ChangePlanRequest(BaseModel):
    plan: Literal["basic", "pro"]


class ChangePlanOut(BaseModel):
    success: bool = True


class SubscriptionOut(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    plan: str
    is_primary_instance: bool = Field(serialization_alias="isPrimaryInstance")
    can_upload_video: bool = Field(serialization_alias="canUploadVideo")
