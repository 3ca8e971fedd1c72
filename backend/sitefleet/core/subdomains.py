# backend/sitefleet/core/subdomains.py
# Canonical subdomain rules for provisioned sites
from __future__ import annotations

import re
from dataclasses import dataclass
from typing import Optional

from sqlalchemy.ext.asyncio import AsyncSession

SUBDOMAIN_MIN_LENGTH = 3
SUBDOMAIN_MAX_LENGTH = 63

# first and last characters alphanumeric, hyphens allowed in between
SUBDOMAIN_REGEX = re.compile(r"^[a-z0-9](?:[a-z0-9-]*[a-z0-9])?$")

RESERVED_SUBDOMAINS: frozenset[str] = frozenset(
    {
        "www",
        "admin",
        "api",
        "app",
        "mail",
        "email",
        "smtp",
        "imap",
        "pop",
        "ftp",
        "ns1",
        "ns2",
        "dns",
        "staging",
        "test",
        "dev",
        "demo",
        "beta",
        "billing",
        "payments",
        "cdn",
        "static",
        "assets",
        "media",
        "blog",
        "docs",
        "help",
        "support",
        "status",
        "dashboard",
        "account",
        "accounts",
        "auth",
        "login",
        "signup",
        "webhooks",
    }
)

REASON_LENGTH = f"Subdomain must be between {SUBDOMAIN_MIN_LENGTH} and {SUBDOMAIN_MAX_LENGTH} characters."
REASON_FORMAT = (
    "Subdomain can only contain lowercase letters, numbers, and hyphens. "
    "It cannot start or end with a hyphen."
)
REASON_RESERVED = "This subdomain is reserved."
REASON_TAKEN = "This subdomain is already taken."
REASON_REQUIRED = "Subdomain is required."


@dataclass(frozen=True)
class SubdomainVerdict:
    valid: bool
    reason: Optional[str] = None


def normalize_subdomain(value: Optional[str]) -> str:
    return (value or "").strip().lower()


def validate_subdomain(candidate: str) -> SubdomainVerdict:
    """
    Length, format and reserved-word rules, in that order. First failure wins.
    Callers normalize case before calling.
    """
    if len(candidate) < SUBDOMAIN_MIN_LENGTH or len(candidate) > SUBDOMAIN_MAX_LENGTH:
        return SubdomainVerdict(valid=False, reason=REASON_LENGTH)

    if not SUBDOMAIN_REGEX.fullmatch(candidate):
        return SubdomainVerdict(valid=False, reason=REASON_FORMAT)

    if candidate in RESERVED_SUBDOMAINS:
        return SubdomainVerdict(valid=False, reason=REASON_RESERVED)

    return SubdomainVerdict(valid=True)


async def check_subdomain_availability(db: AsyncSession, candidate: str) -> SubdomainVerdict:
    """
    validate_subdomain() plus the uniqueness check against provisioned sites.
    """
    from sitefleet.crud.provisioned_site import subdomain_exists

    verdict = validate_subdomain(candidate)
    if not verdict.valid:
        return verdict

    if await subdomain_exists(db, candidate):
        return SubdomainVerdict(valid=False, reason=REASON_TAKEN)

    return verdict
