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
DynDNS2 update processing.

A request walks through authenticate, hostname presence, client IP,
authorization scope, record name and DNS update; the first failing step
decides the response token. The caller appends one history entry per
request through record_history once the response is on its way; that write
never changes or delays the response.
"""

from typing import Dict, Optional, Tuple
from dataclasses import dataclass, field
import logging
import time

from starlette.concurrency import run_in_threadpool

from .audit import audit_logger
from .auth import AuthResult, AuthenticationChain
from .clientip import IpResolver, parse_ip
from .dns import DnsRecordUpdater, UpdateOutcome
from .errors import DnsUpdateFailed, StoreUnavailable
from .hostname import fqdn, resolve_record_name
from .metrics import ddns_update_duration, ddns_updates_total
from .model import AuthMethod, ResultCode, UpdateHistory
from .store import KeyStore

logger = logging.getLogger(__name__)


@dataclass
class UpdateRequest:
    credentials: Optional[Tuple[str, str]] = None
    hostname: Optional[str] = None
    myip: Optional[str] = None
    headers: Dict[str, str] = field(default_factory=dict)
    peer: Optional[str] = None
    user_agent: Optional[str] = None


@dataclass
class UpdateResult:
    code: ResultCode = ResultCode.SERVER_ERROR
    hostname: Optional[str] = None
    ip_address: Optional[str] = None
    old_ip_address: Optional[str] = None
    record_name: Optional[str] = None
    auth: Optional[AuthResult] = None
    response_time_ms: int = 0

    @property
    def success(self) -> bool:
        return self.code.success

    @property
    def auth_method(self) -> AuthMethod:
        return self.auth.method if self.auth else AuthMethod.NONE


def hostname_in_scope(key_hostname: str, requested: str) -> bool:
    """Key hostname must be the requested name or one label directly below it."""
    key_hostname = fqdn(key_hostname)
    requested = fqdn(requested)
    if key_hostname == requested:
        return True
    suffix = f".{requested}"
    if key_hostname.endswith(suffix):
        label = key_hostname[:-len(suffix)]
        return bool(label) and '.' not in label
    return False


class UpdateEngine:
    def __init__(self,
                 authentication: AuthenticationChain,
                 ip_resolver: IpResolver,
                 updater: DnsRecordUpdater,
                 store: KeyStore,
                 zone_name: str,
                 subdomain: str):
        self.authentication = authentication
        self.ip_resolver = ip_resolver
        self.updater = updater
        self.store = store
        self.zone_name = zone_name
        self.subdomain = subdomain

    async def process(self, req: UpdateRequest, correlation_id: str) -> UpdateResult:
        started = time.monotonic()
        result = UpdateResult(hostname=fqdn(req.hostname) if req.hostname and req.hostname.strip() else None)
        source_ip = self.ip_resolver.extract_source_ip(req.headers, req.peer)
        logger.info(f"[{correlation_id}] DYNDNS update: hostname {req.hostname} myip: {req.myip} "
                    f"source_ip: {source_ip} user_agent: {req.user_agent}")

        try:
            result.code = await self._run(req, result, source_ip, correlation_id)
        except Exception as e:
            logger.exception(f"[{correlation_id}] Unexpected exception in DDNS update: {e}")
            result.code = ResultCode.SERVER_ERROR

        elapsed = time.monotonic() - started
        result.response_time_ms = int(elapsed * 1000)
        ddns_updates_total.labels(result=result.code.value).inc()
        ddns_update_duration.observe(elapsed)
        logger.info(f"[{correlation_id}] DYNDNS update result {result.code.value} for {result.hostname} "
                    f"in {result.response_time_ms}ms")

        principal = result.auth.principal if result.auth else None
        audit_logger.log_ddns_update(principal, result.hostname, result.ip_address, result.code.value,
                                     result.success, result.auth_method.value, source_ip, correlation_id)
        return result

    async def _run(self, req: UpdateRequest, result: UpdateResult, source_ip: Optional[str],
                   correlation_id: str) -> ResultCode:
        # 1. authenticate
        if req.credentials is None:
            logger.info(f"[{correlation_id}] No usable Basic credentials")
            audit_logger.log_failed_authentication(None, source_ip, correlation_id, "missing credentials")
            return ResultCode.BADAUTH

        username, secret = req.credentials
        try:
            result.auth = await self.authentication.authenticate(username, secret, source_ip, correlation_id)
        except StoreUnavailable:
            logger.error(f"[{correlation_id}] Credentials could not be checked, key store unavailable")
            return ResultCode.SERVER_ERROR
        if result.auth is None:
            logger.warning(f"[{correlation_id}] Authentication failed for user '{username}'")
            audit_logger.log_failed_authentication(username, source_ip, correlation_id, "invalid credentials")
            return ResultCode.BADAUTH

        # 2. hostname presence
        if not result.hostname:
            return ResultCode.NOTFQDN

        # 3. client IP
        ip = self.ip_resolver.resolve(req.headers, req.peer, req.myip, correlation_id)
        if ip is None:
            logger.warning(f"[{correlation_id}] Could not determine a public client IP: "
                           f"{' '.join(self.ip_resolver.diagnostics(req.headers, req.peer))}")
            return ResultCode.SERVER_ERROR
        parsed = parse_ip(ip)
        if parsed is None:
            logger.warning(f"[{correlation_id}] Invalid IP address {ip!r}")
            return ResultCode.SERVER_ERROR
        if parsed.version != 4:
            logger.warning(f"[{correlation_id}] Only A records are served, rejecting {parsed}")
            return ResultCode.SERVER_ERROR
        result.ip_address = str(parsed)

        # 4. authorization scope
        if result.auth.method == AuthMethod.API_KEY and not hostname_in_scope(result.auth.hostname, result.hostname):
            logger.warning(f"[{correlation_id}] Key for '{result.auth.hostname}' may not update '{result.hostname}'")
            return ResultCode.NOHOST

        # 5. record name
        result.record_name = resolve_record_name(result.hostname, self.zone_name, self.subdomain)
        if result.record_name is None:
            logger.warning(f"[{correlation_id}] Hostname '{result.hostname}' is not in zone {self.zone_name}")
            return ResultCode.NOHOST

        # 6. DNS
        try:
            outcome, result.old_ip_address = await self.updater.upsert_a_record(
                result.record_name, result.ip_address, correlation_id)
        except DnsUpdateFailed:
            return ResultCode.SERVER_ERROR
        return ResultCode.NOCHG if outcome == UpdateOutcome.NOCHG else ResultCode.GOOD

    async def record_history(self, req: UpdateRequest, result: UpdateResult, correlation_id: str):
        """Append the UpdateHistory row for a processed request. Failures are logged only."""
        entry = UpdateHistory(
            hostname=result.hostname or '-',
            ip_address=result.ip_address,
            old_ip_address=result.old_ip_address,
            success=result.success,
            result_code=result.code.value,
            auth_method=result.auth_method.value,
            key_hash_prefix=result.auth.key_hash_prefix if result.auth else None,
            response_time_ms=result.response_time_ms,
            correlation_id=correlation_id,
            user_agent=req.user_agent,
        )
        try:
            await run_in_threadpool(self.store.append_history, entry)
        except Exception as e:
            logger.error(f"[{correlation_id}] Failed to record update history: {e}")
