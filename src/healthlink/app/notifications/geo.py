"""Best-effort IP geolocation for access events.

Lookups are bounded by a timeout and never raise: any failure yields
``None`` and the access is recorded without a location. Loopback and
private addresses short-circuit to a fixed local location.
"""

from __future__ import annotations

import asyncio
import ipaddress
from typing import Mapping, Protocol

import httpx

from ...observability import get_logger

logger = get_logger(__name__)

DEFAULT_GEOLOCATION_URL = 'http://ip-api.com/json'
LOCAL_LOCATION = {'city': 'Local', 'region': 'Development', 'country': 'localhost'}


class GeoLocator(Protocol):
    async def locate(self, ip: str | None) -> dict[str, str] | None: ...


def client_ip(headers: Mapping[str, str], peer: str | None) -> str | None:
    """First ``X-Forwarded-For`` hop, then ``X-Real-IP``, then the socket peer."""
    forwarded = headers.get('x-forwarded-for')
    if forwarded:
        first = forwarded.split(',')[0].strip()
        if first:
            return first
    real_ip = headers.get('x-real-ip')
    if real_ip:
        return real_ip.strip()
    return peer


class NullGeoLocator:
    async def locate(self, ip: str | None) -> dict[str, str] | None:
        return None


class IpGeoLocator:
    """ip-api.com style lookup: ``GET {base_url}/{ip}?fields=city,regionName,country``."""

    def __init__(
        self,
        base_url: str = DEFAULT_GEOLOCATION_URL,
        *,
        http_client: httpx.AsyncClient | None = None,
        timeout_seconds: float = 2.0,
    ) -> None:
        self._base_url = base_url.rstrip('/')
        self._owns_client = http_client is None
        self._client = http_client or httpx.AsyncClient()
        self._timeout = timeout_seconds

    async def aclose(self) -> None:
        if self._owns_client:
            await self._client.aclose()

    async def _lookup(self, ip: str) -> dict[str, str] | None:
        resp = await self._client.get(
            f'{self._base_url}/{ip}', params={'fields': 'city,regionName,country'},
        )
        if resp.status_code != 200:
            return None
        data = resp.json()
        if not isinstance(data, dict):
            return None
        return {
            'city': data.get('city') or 'Unknown',
            'region': data.get('regionName') or 'Unknown',
            'country': data.get('country') or 'Unknown',
        }

    async def locate(self, ip: str | None) -> dict[str, str] | None:
        if not ip:
            return None
        try:
            addr = ipaddress.ip_address(ip)
        except ValueError:
            logger.info('geolocation_skipped', reason='not_an_ip')
            return None
        if addr.is_loopback or addr.is_private:
            return dict(LOCAL_LOCATION)
        try:
            return await asyncio.wait_for(self._lookup(str(addr)), timeout=self._timeout)
        except (asyncio.TimeoutError, httpx.HTTPError, ValueError) as exc:
            logger.info('geolocation_unavailable', error=type(exc).__name__)
            return None
