# ============================
# FILE: sitefleet/core/plan.py
# Site plan resolution + media upload gate
# ============================
from __future__ import annotations

import enum

from sitefleet.core.config import Settings


class SitePlan(str, enum.Enum):
    BASIC = "basic"
    PRO = "pro"


PLAN_UPLOAD_ERROR = (
    "Audio and video uploads require the Pro plan. Please upgrade to upload this file type."
)
VIDEO_THUMBNAIL_PLAN_ERROR = "Video uploads require the Pro plan."


class PlanGateError(Exception):
    """Raised when the current plan does not allow an upload."""

    def __init__(self, mime_type: str, plan: SitePlan):
        self.mime_type = mime_type
        self.plan = plan
        self.message = PLAN_UPLOAD_ERROR
        super().__init__(self.message)


def normalize_plan(value: str | None) -> str:
    return (value or "").strip().lower()


def get_site_plan(settings: Settings) -> SitePlan:
    """
    Defaults to basic for anything unrecognized.
    """
    if normalize_plan(settings.SITE_PLAN) == SitePlan.PRO.value:
        return SitePlan.PRO
    return SitePlan.BASIC


def is_primary_instance(settings: Settings) -> bool:
    return bool(settings.IS_PRIMARY_INSTANCE)


def has_pro_features(settings: Settings) -> bool:
    """
    The primary instance is never plan-gated.
    """
    return is_primary_instance(settings) or get_site_plan(settings) is SitePlan.PRO


def can_upload_media_type(mime_type: str | None, settings: Settings) -> bool:
    if has_pro_features(settings):
        return True

    # Basic plan: only images allowed
    return (mime_type or "").lower().startswith("image/")


def ensure_can_upload(mime_type: str | None, settings: Settings) -> None:
    if not can_upload_media_type(mime_type, settings):
        raise PlanGateError(mime_type or "", get_site_plan(settings))
