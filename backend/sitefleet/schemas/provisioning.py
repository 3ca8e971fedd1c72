from datetime import datetime
from typing import Literal, Optional

from pydantic import BaseModel, ConfigDict, EmailStr, Field, field_validator

from sitefleet.core.subdomains import normalize_subdomain


def _strip_or_none(value: Optional[str]) -> Optional[str]:
    if value is None:
        return None
    v = value.strip()
    return v or None


class SubdomainAvailability(BaseModel):
    available: bool
    reason: Optional[str] = None


class ProvisioningStatusOut(BaseModel):
    """
    Public view of a provisioned site. Optional keys are dropped from the
    response rather than sent as null.
    """

    model_config = ConfigDict(populate_by_name=True)

    status: str
    subdomain: str
    provisioning_error: Optional[str] = Field(default=None, serialization_alias="provisioningError")
    provisioned_at: Optional[datetime] = Field(default=None, serialization_alias="provisionedAt")


class SignupRequest(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    subdomain: str = Field(min_length=1, max_length=200)
    owner_email: EmailStr = Field(alias="ownerEmail")
    owner_name: Optional[str] = Field(default=None, alias="ownerName", max_length=200)
    site_name: Optional[str] = Field(default=None, alias="siteName", max_length=200)
    site_description: Optional[str] = Field(default=None, alias="siteDescription", max_length=2000)
    plan: Literal["basic", "pro"] = "basic"

    @field_validator("subdomain")
    @classmethod
    def normalize_subdomain_field(cls, v: str) -> str:
        return normalize_subdomain(v)

    @field_validator("owner_name", "site_name", "site_description")
    @classmethod
    def strip_optional(cls, v: Optional[str]) -> Optional[str]:
        return _strip_or_none(v)


class SignupOut(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    site_id: int = Field(serialization_alias="siteId")
    subdomain: str
    checkout_url: str = Field(serialization_alias="checkoutUrl")
