"""HTTP calls between a tenant site and the primary instance.

Tenant -> primary: billing portal sessions and plan changes, authenticated with
the tenant's SITE_API_KEY.
Primary -> tenant: the media cleanup hook after a pro -> basic downgrade.
"""
from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Optional

import httpx
import structlog
from fastapi import Depends

from sitefleet.core.config import Settings, get_settings

logger = structlog.get_logger()


class UpstreamUnavailable(Exception):
    """Connection failure or timeout talking to another instance."""


class UpstreamBodyError(Exception):
    """The other instance answered 2xx with a body we could not parse."""


@dataclass
class UpstreamResponse:
    status_code: int
    data: dict[str, Any] = field(default_factory=dict)

    @property
    def ok(self) -> bool:
        return 200 <= self.status_code < 300

    def error_message(self, default: str) -> str:
        return str(self.data.get("detail") or self.data.get("error") or default)


def _json_or_empty(response: httpx.Response) -> dict[str, Any]:
    try:
        data = response.json()
    except ValueError:
        return {}
    return data if isinstance(data, dict) else {}


class _InstanceClient:
    def __init__(self, settings: Settings, transport: Optional[httpx.AsyncBaseTransport] = None):
        self._settings = settings
        self._transport = transport

    def _client(self) -> httpx.AsyncClient:
        return httpx.AsyncClient(
            timeout=self._settings.OUTBOUND_TIMEOUT_SECONDS,
            transport=self._transport,
        )

    async def _post(self, url: str, *, api_key: str, json: Optional[dict[str, Any]] = None) -> httpx.Response:
        headers = {"Authorization": f"Bearer {api_key}"}
        try:
            async with self._client() as client:
                return await client.post(url, headers=headers, json=json)
        except httpx.TransportError as e:
            # ConnectError, ReadTimeout, ... all land here
            logger.error("instance_call.unreachable", url=url, error=repr(e))
            raise UpstreamUnavailable(str(e)) from e


class PrimaryApiClient(_InstanceClient):
    """Used by tenant sites to reach the primary instance."""

    def _url(self, path: str) -> str:
        return f"{self._settings.primary_base_url}{path}"

    async def create_portal_session(self, api_key: str, return_url: str) -> UpstreamResponse:
        response = await self._post(
            self._url("/api/stripe/create-portal-session"),
            api_key=api_key,
            json={"returnUrl": return_url},
        )
        return self._relay(response, "portal_session")

    async def change_plan(self, api_key: str, plan: str) -> UpstreamResponse:
        response = await self._post(
            self._url("/api/stripe/change-plan"),
            api_key=api_key,
            json={"plan": plan},
        )
        return self._relay(response, "change_plan")

    @staticmethod
    def _relay(response: httpx.Response, operation: str) -> UpstreamResponse:
        if not response.is_success:
            data = _json_or_empty(response)
            logger.error(f"billing_proxy.{operation}_failed", status=response.status_code, body=data)
            return UpstreamResponse(status_code=response.status_code, data=data)

        try:
            data = response.json()
        except ValueError as e:
            raise UpstreamBodyError(str(e)) from e
        if not isinstance(data, dict):
            raise UpstreamBodyError("expected a JSON object")
        return UpstreamResponse(status_code=response.status_code, data=data)


class TenantApiClient(_InstanceClient):
    """Used by the primary instance to reach a tenant site."""

    def tenant_url(self, subdomain: str, path: str) -> str:
        return f"https://{subdomain}.{self._settings.SITE_DOMAIN}{path}"

    async def trigger_media_cleanup(self, subdomain: str, api_key: str) -> int:
        response = await self._post(self.tenant_url(subdomain, "/api/media-cleanup"), api_key=api_key)
        if not response.is_success:
            raise UpstreamUnavailable(f"media cleanup returned {response.status_code}")
        return int(_json_or_empty(response).get("deleted") or 0)


def get_primary_client(settings: Settings = Depends(get_settings)) -> PrimaryApiClient:
    return PrimaryApiClient(settings)


def get_tenant_client(settings: Settings = Depends(get_settings)) -> TenantApiClient:
    return TenantApiClient(settings)
