# backend/sitefleet/models/provisioned_site.py

import enum
from datetime import datetime
from typing import Optional

from sqlalchemy import DateTime, Integer, String, Text
from sqlalchemy.orm import Mapped, mapped_column, validates
from sqlalchemy.sql import func

from sitefleet.core.subdomains import normalize_subdomain, validate_subdomain
from sitefleet.db.base import Base


class SiteStatus(str, enum.Enum):
    PENDING_PAYMENT = "pending_payment"
    PENDING = "pending"
    PROVISIONING = "provisioning"
    ACTIVE = "active"
    FAILED = "failed"
    SUSPENDED = "suspended"


class ProvisionedSite(Base):
    __tablename__ = "provisioned_sites"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)

    subdomain: Mapped[str] = mapped_column(String(63), unique=True, index=True, nullable=False)

    owner_email: Mapped[str] = mapped_column(String(320), index=True, nullable=False)
    owner_name: Mapped[Optional[str]] = mapped_column(String(200), nullable=True)
    site_name: Mapped[Optional[str]] = mapped_column(String(200), nullable=True)
    site_description: Mapped[Optional[str]] = mapped_column(Text, nullable=True)

    # basic | pro
    plan: Mapped[str] = mapped_column(String(20), nullable=False, default="basic")

    # keep as string; see SiteStatus for the allowed values
    status: Mapped[str] = mapped_column(String(30), nullable=False, default=SiteStatus.PENDING.value)
    provisioning_error: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    provisioned_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True), nullable=True)

    # Hosting project created by the provisioning job
    deployment_id: Mapped[Optional[str]] = mapped_column(String(128), nullable=True)

    # Bearer secret the tenant uses to call back into the primary instance
    site_api_key: Mapped[Optional[str]] = mapped_column(String(128), index=True, nullable=True)

    stripe_customer_id: Mapped[Optional[str]] = mapped_column(String(128), nullable=True)
    stripe_subscription_id: Mapped[Optional[str]] = mapped_column(String(128), index=True, nullable=True)
    stripe_checkout_session_id: Mapped[Optional[str]] = mapped_column(String(255), nullable=True)

    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), server_default=func.now(), nullable=False)
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), server_default=func.now(), onupdate=func.now(), nullable=False
    )

    @validates("subdomain")
    def _validate_subdomain(self, _key: str, value: str) -> str:
        # Normalize on assignment; uniqueness is the DB constraint's job.
        subdomain = normalize_subdomain(value)
        verdict = validate_subdomain(subdomain)
        if not verdict.valid:
            raise ValueError(verdict.reason)
        return subdomain
