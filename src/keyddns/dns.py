# KeyDDNS-Server
# (C) 2015-2025 Tomas Hlavacek (tmshlvck@gmail.com)
#
# This program is free software: you can redistribute it and/or modify
# it under the terms of the GNU General Public License as published by
# the Free Software Foundation, either version 3 of the License, or
# (at your option) any later version.
#
# This program is distributed in the hope that it will be useful,
# but WITHOUT ANY WARRANTY; without even the implied warranty of
# MERCHANTABILITY or FITNESS FOR A PARTICULAR PURPOSE.  See the
# GNU General Public License for more details.
#
# You should have received a copy of the GNU General Public License
# along with this program.  If not, see <http://www.gnu.org/licenses/>.

"""
DNS zone access. The authoritative zone lives outside this service and is
reached through a DnsProvider; DnsRecordUpdater implements the
read-compare-write step of a DDNS update on top of it.
"""

from typing import Dict, Optional, Tuple
from abc import ABC, abstractmethod
from enum import StrEnum
import asyncio
import logging
import urllib.parse

import aiohttp

from .errors import DnsProviderError, DnsUpdateFailed
from .settings import Settings

logger = logging.getLogger(__name__)


class DnsProvider(ABC):
    @abstractmethod
    async def get_a_record(self, name: str) -> Optional[str]:
        """Current A record value for name relative to the zone, or None"""

    @abstractmethod
    async def upsert_a_record(self, name: str, ip: str, ttl: int):
        """Create or replace the A record for name"""


class MemoryDnsProvider(DnsProvider):
    def __init__(self, records: Optional[Dict[str, str]] = None):
        self.records: Dict[str, str] = dict(records or {})
        self.ttls: Dict[str, int] = {}
        self.writes = 0

    async def get_a_record(self, name: str) -> Optional[str]:
        return self.records.get(name)

    async def upsert_a_record(self, name: str, ip: str, ttl: int):
        self.records[name] = ip
        self.ttls[name] = ttl
        self.writes += 1


class HttpDnsProvider(DnsProvider):
    """Zone REST API client.

    GET/PUT {api_url}/zones/{zone}/records/A/{name} with a bearer API key
    and a JSON body {"value": ip, "ttl": ttl}. 404 on GET means no record.
    """

    def __init__(self, api_url: str, api_key: Optional[str], zone_name: str, timeout: float = 10.0):
        self.api_url = api_url.rstrip('/')
        self.api_key = api_key
        self.zone_name = zone_name
        self.timeout = aiohttp.ClientTimeout(total=timeout)

    def _record_url(self, name: str) -> str:
        return (f"{self.api_url}/zones/{urllib.parse.quote(self.zone_name)}"
                f"/records/A/{urllib.parse.quote(name)}")

    def _headers(self) -> Dict[str, str]:
        headers = {'Accept': 'application/json'}
        if self.api_key:
            headers['Authorization'] = f"Bearer {self.api_key}"
        return headers

    async def get_a_record(self, name: str) -> Optional[str]:
        url = self._record_url(name)
        try:
            async with aiohttp.ClientSession(timeout=self.timeout) as session:
                async with session.get(url, headers=self._headers()) as resp:
                    if resp.status == 404:
                        return None
                    if resp.status != 200:
                        raise DnsProviderError(f"GET {url} failed: {resp.status} {await resp.text()}")
                    data = await resp.json(content_type=None)
        except (aiohttp.ClientError, asyncio.TimeoutError) as e:
            raise DnsProviderError(f"GET {url} failed: {e}") from e

        value = data.get('value') if isinstance(data, dict) else None
        logger.debug(f"Call to {url} finished value={value}")
        return value

    async def upsert_a_record(self, name: str, ip: str, ttl: int):
        url = self._record_url(name)
        try:
            async with aiohttp.ClientSession(timeout=self.timeout) as session:
                async with session.put(url, headers=self._headers(), json={'value': ip, 'ttl': ttl}) as resp:
                    if resp.status not in (200, 201, 204):
                        raise DnsProviderError(f"PUT {url} failed: {resp.status} {await resp.text()}")
        except (aiohttp.ClientError, asyncio.TimeoutError) as e:
            raise DnsProviderError(f"PUT {url} failed: {e}") from e
        logger.info(f"Call to {url} finished value={ip} ttl={ttl}")


def make_dns_provider(settings: Settings) -> DnsProvider:
    if settings.DNS_PROVIDER == 'http':
        if not settings.DNS_API_URL:
            raise ValueError("DNS_API_URL is required for the http DNS provider")
        return HttpDnsProvider(settings.DNS_API_URL, settings.DNS_API_KEY, settings.DNS_ZONE_NAME,
                               timeout=settings.PROVIDER_TIMEOUT)
    return MemoryDnsProvider()


class UpdateOutcome(StrEnum):
    GOOD = "good"
    NOCHG = "nochg"


class DnsRecordUpdater:
    def __init__(self, provider: DnsProvider, ttl: int = 60, timeout: Optional[float] = 10.0):
        self.provider = provider
        self.ttl = ttl
        self.timeout = timeout

    async def _upsert(self, name: str, ip: str, correlation_id: str) -> Tuple[UpdateOutcome, Optional[str]]:
        current = await self.provider.get_a_record(name)
        if current == ip:
            logger.info(f"[{correlation_id}] Found matching A RR {name=} value={current}")
            return UpdateOutcome.NOCHG, current

        if current is None:
            logger.info(f"[{correlation_id}] Creating A RR {name=} {ip} ttl={self.ttl}")
        else:
            logger.info(f"[{correlation_id}] Updating A RR {name=} {current} -> {ip}")
        await self.provider.upsert_a_record(name, ip, self.ttl)
        return UpdateOutcome.GOOD, current

    async def upsert_a_record(self, name: str, ip: str,
                              correlation_id: str = '-') -> Tuple[UpdateOutcome, Optional[str]]:
        try:
            return await asyncio.wait_for(self._upsert(name, ip, correlation_id), timeout=self.timeout)
        except asyncio.TimeoutError as e:
            logger.error(f"[{correlation_id}] DNS provider timed out after {self.timeout}s for {name}")
            raise DnsUpdateFailed(f"timeout updating {name}") from e
        except DnsProviderError as e:
            logger.error(f"[{correlation_id}] DNS provider failed for {name}: {e}")
            raise DnsUpdateFailed(str(e)) from e
