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

from typing import List, Optional
from datetime import datetime
import logging

from pydantic import BaseModel
from starlette.concurrency import run_in_threadpool

from .audit import audit_logger
from .errors import AdminRequired, AlreadyClaimed, Forbidden, InvalidHostname
from .hostname import first_label, fqdn, resolve_record_name
from .identity import Identity
from .metrics import api_key_operations_total
from .model import ApiKey, UpdateHistory, as_utc, utcnow
from .store import KeyStore

logger = logging.getLogger(__name__)


class MaskedKey(BaseModel):
    key_prefix: str
    created_at: datetime
    expires_at: datetime
    is_active: bool
    is_expired: bool
    use_count: int
    last_used_at: Optional[datetime] = None
    last_used_from_ip: Optional[str] = None
    revoked_at: Optional[datetime] = None

    @classmethod
    def from_key(cls, api_key: ApiKey, now: Optional[datetime] = None) -> "MaskedKey":
        now = now or utcnow()
        return cls(
            key_prefix=api_key.key_hash[:8],
            created_at=as_utc(api_key.created_at),
            expires_at=as_utc(api_key.expires_at),
            is_active=api_key.is_active,
            is_expired=now >= as_utc(api_key.expires_at),
            use_count=api_key.use_count,
            last_used_at=as_utc(api_key.last_used_at),
            last_used_from_ip=api_key.last_used_from_ip,
            revoked_at=as_utc(api_key.revoked_at),
        )


class HistoryItem(BaseModel):
    timestamp: datetime
    ip_address: Optional[str] = None
    old_ip_address: Optional[str] = None
    success: bool
    result_code: str
    auth_method: str
    key_hash_prefix: Optional[str] = None
    response_time_ms: int

    @classmethod
    def from_entry(cls, entry: UpdateHistory) -> "HistoryItem":
        return cls(
            timestamp=as_utc(entry.timestamp),
            ip_address=entry.ip_address,
            old_ip_address=entry.old_ip_address,
            success=entry.success,
            result_code=entry.result_code,
            auth_method=entry.auth_method,
            key_hash_prefix=entry.key_hash_prefix,
            response_time_ms=entry.response_time_ms,
        )


class Dashboard(BaseModel):
    hostname: str
    owner: str
    current_ip: Optional[str] = None
    last_update: Optional[datetime] = None
    total_updates: int = 0
    keys: List[MaskedKey] = []
    history: List[HistoryItem] = []
    new_key: Optional[str] = None


class RouterConfig(BaseModel):
    service: str = "Custom"
    hostname: str
    server: str
    username: str
    password: str
    update_url: str


class IssuedKey(BaseModel):
    hostname: str
    api_key: str
    expires_at: datetime
    router_config: RouterConfig


class AdminStats(BaseModel):
    total_hostnames: int
    total_owners: int
    active_keys: int


class OwnershipService:
    """Claim, key issuance and revocation for human owners.

    Every operation checks that the caller owns the hostname before it
    touches keys; the store itself never does.
    """

    def __init__(self, store: KeyStore, zone_name: str, subdomain: str,
                 server_host: Optional[str] = None, history_limit: int = 50,
                 admin_role: str = "DDNSAdmin"):
        self.store = store
        self.zone_name = zone_name
        self.subdomain = subdomain
        self.server_host = server_host
        self.history_limit = history_limit
        self.admin_role = admin_role

    def validate_hostname(self, hostname: str) -> str:
        hostname = fqdn(hostname)
        if resolve_record_name(hostname, self.zone_name, self.subdomain) is None:
            raise InvalidHostname(f"Hostname '{hostname}' is not served by zone {self.zone_name}")
        return hostname

    async def _require_owner(self, hostname: str, identity: Identity):
        owner = await run_in_threadpool(self.store.get_owner, hostname)
        if owner != identity.subject_id:
            logger.warning(f"'{identity.label}' does not own '{hostname}' (owner {owner})")
            raise Forbidden(f"'{identity.label}' does not own '{hostname}'")

    async def _issue(self, hostname: str, identity: Identity) -> str:
        secret = await run_in_threadpool(self.store.issue_key, hostname, identity.subject_id, identity.label)
        api_key_operations_total.labels(operation='issue').inc()
        audit_logger.log_key_issued(identity.label, hostname, self.store.hash_key(secret))
        return secret

    async def claim(self, hostname: str, identity: Identity) -> bool:
        """True when this call created the claim, False if identity already owned it."""
        hostname = self.validate_hostname(hostname)
        try:
            await run_in_threadpool(self.store.claim_hostname, hostname, identity.subject_id, identity.label)
        except AlreadyClaimed:
            owner = await run_in_threadpool(self.store.get_owner, hostname)
            if owner != identity.subject_id:
                audit_logger.log_claim(identity.label, hostname, success=False, error_message="already claimed")
                raise Forbidden(f"'{hostname}' is owned by someone else")
            return False
        api_key_operations_total.labels(operation='claim').inc()
        audit_logger.log_claim(identity.label, hostname)
        return True

    async def open_dashboard(self, hostname: str, identity: Identity) -> Dashboard:
        hostname = self.validate_hostname(hostname)
        new_key = None
        if await self.claim(hostname, identity):
            new_key = await self._issue(hostname, identity)
        dashboard = await self.dashboard(hostname, identity)
        dashboard.new_key = new_key
        return dashboard

    async def dashboard(self, hostname: str, identity: Identity) -> Dashboard:
        hostname = self.validate_hostname(hostname)
        ownership = await run_in_threadpool(self.store.get_ownership, hostname)
        if ownership is None or ownership.owner_id != identity.subject_id:
            raise Forbidden(f"'{identity.label}' does not own '{hostname}'")

        keys = await run_in_threadpool(self.store.list_keys_for_hostname, hostname)
        history = await run_in_threadpool(self.store.get_update_history, hostname, self.history_limit)
        last_good = next((h for h in history if h.success), None)
        now = utcnow()
        return Dashboard(
            hostname=hostname,
            owner=ownership.owner_label,
            current_ip=last_good.ip_address if last_good else None,
            last_update=as_utc(last_good.timestamp) if last_good else None,
            total_updates=len(history),
            keys=[MaskedKey.from_key(k, now) for k in keys],
            history=[HistoryItem.from_entry(h) for h in history],
        )

    def router_config(self, hostname: str, secret: str) -> RouterConfig:
        server = self.server_host or f"{self.subdomain}.{self.zone_name}"
        return RouterConfig(
            hostname=hostname,
            server=server,
            username=first_label(hostname),
            password=secret,
            update_url=f"https://{server}/nic/update?hostname={hostname}&myip=auto",
        )

    async def generate_key(self, hostname: str, identity: Identity) -> IssuedKey:
        hostname = self.validate_hostname(hostname)
        await self._require_owner(hostname, identity)
        secret = await self._issue(hostname, identity)
        api_key = await run_in_threadpool(self.store.get_key, self.store.hash_key(secret))
        return IssuedKey(
            hostname=hostname,
            api_key=secret,
            expires_at=as_utc(api_key.expires_at),
            router_config=self.router_config(hostname, secret),
        )

    async def find_key(self, hostname: str, key_ref: str) -> Optional[ApiKey]:
        """Match the full digest or the unambiguous prefix shown on the dashboard."""
        key_ref = key_ref.strip().lower()
        if len(key_ref) < 8:
            return None
        keys = await run_in_threadpool(self.store.list_keys_for_hostname, hostname)
        matches = [k for k in keys if k.key_hash.startswith(key_ref)]
        return matches[0] if len(matches) == 1 else None

    async def revoke_key(self, hostname: str, key_hash: str, identity: Identity) -> bool:
        hostname = self.validate_hostname(hostname)
        await self._require_owner(hostname, identity)
        api_key = await self.find_key(hostname, key_hash)
        if api_key is None:
            logger.warning(f"Key '{key_hash[:8]}...' does not belong to '{hostname}'")
            audit_logger.log_key_revoked(identity.label, hostname, key_hash, success=False)
            return False
        key_hash = api_key.key_hash
        revoked = await run_in_threadpool(self.store.revoke_key, key_hash)
        if revoked:
            api_key_operations_total.labels(operation='revoke').inc()
        audit_logger.log_key_revoked(identity.label, hostname, key_hash, success=revoked)
        return revoked

    async def revoke_all(self, hostname: str, identity: Identity) -> int:
        hostname = self.validate_hostname(hostname)
        await self._require_owner(hostname, identity)
        keys = await run_in_threadpool(self.store.list_keys_for_hostname, hostname)
        revoked = 0
        for api_key in keys:
            if not api_key.is_active:
                continue
            try:
                if await run_in_threadpool(self.store.revoke_key, api_key.key_hash):
                    revoked += 1
                    api_key_operations_total.labels(operation='revoke').inc()
                    audit_logger.log_key_revoked(identity.label, hostname, api_key.key_hash, success=True)
            except Exception as e:
                logger.error(f"Failed to revoke key '{api_key.key_hash[:8]}...' for '{hostname}': {e}")
        logger.info(f"Revoked {revoked} of {len(keys)} keys for '{hostname}'")
        return revoked

    async def admin_stats(self, identity: Identity) -> AdminStats:
        """Service-wide totals, for holders of the admin role only."""
        if self.admin_role not in identity.roles:
            audit_logger.log_admin_access(identity.label, success=False)
            raise AdminRequired(f"'{identity.subject_id}' lacks role '{self.admin_role}'")
        audit_logger.log_admin_access(identity.label, success=True)
        return AdminStats(
            total_hostnames=await run_in_threadpool(self.store.count_hostnames),
            total_owners=await run_in_threadpool(self.store.count_owners),
            active_keys=await run_in_threadpool(self.store.count_active_keys),
        )
