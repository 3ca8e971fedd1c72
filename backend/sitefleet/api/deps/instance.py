from __future__ import annotations

from fastapi import Depends, HTTPException, status

from sitefleet.core.config import Settings, get_settings
from sitefleet.core.plan import is_primary_instance


def require_primary_instance(settings: Settings = Depends(get_settings)) -> Settings:
    """
    Primary-only endpoints do not exist on tenant sites: 404, not 403.
    """
    if not is_primary_instance(settings):
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Not found")
    return settings
