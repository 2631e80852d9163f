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

from typing import List, Optional, Tuple
from dataclasses import dataclass
import logging
import secrets

from fastapi import HTTPException, Request
from fastapi.security import HTTPBasic
from starlette.concurrency import run_in_threadpool

from .errors import StoreUnavailable
from .model import AuthMethod
from .settings import Settings
from .store import KeyStore

logger = logging.getLogger(__name__)


basic_security = HTTPBasic(auto_error=False)


async def extract_basic_auth_credentials(request: Request) -> Optional[Tuple[str, str]]:
    """Username and secret from 'Basic base64(username:secret)'.

    The secret may contain colons; only the first one separates it from
    the username. Anything missing or malformed yields None.
    """
    try:
        creds = await basic_security(request)
    except HTTPException:
        return None
    if creds is None:
        return None
    return creds.username, creds.password


@dataclass
class AuthResult:
    method: AuthMethod
    principal: str
    hostname: Optional[str] = None
    key_hash: Optional[str] = None

    @property
    def key_hash_prefix(self) -> Optional[str]:
        if not self.key_hash:
            return None
        return f"{self.key_hash[:12]}..."


class Authenticator:
    async def authenticate(self, username: str, secret: str, client_ip: Optional[str],
                           correlation_id: str = '-') -> Optional[AuthResult]:
        raise NotImplementedError


class ApiKeyAuthenticator(Authenticator):
    """The password field carries a per-hostname API key; the username is informational."""

    def __init__(self, store: KeyStore):
        self.store = store

    async def authenticate(self, username: str, secret: str, client_ip: Optional[str],
                           correlation_id: str = '-') -> Optional[AuthResult]:
        if not secret:
            return None
        hostname, valid = await run_in_threadpool(self.store.validate_key, secret, client_ip)
        if not valid:
            return None
        key_hash = self.store.hash_key(secret)
        logger.info(f"[{correlation_id}] API key '{key_hash[:8]}...' accepted for '{hostname}'")
        return AuthResult(method=AuthMethod.API_KEY, principal=username or hostname,
                          hostname=hostname, key_hash=key_hash)


class LegacySharedSecretAuthenticator(Authenticator):
    """Single static username/password for devices predating API keys.

    Not scoped to any hostname. Enabled only by LEGACY_AUTH_ENABLED.
    """

    def __init__(self, username: str, password: str):
        self.username = username
        self.password = password

    async def authenticate(self, username: str, secret: str, client_ip: Optional[str],
                           correlation_id: str = '-') -> Optional[AuthResult]:
        if (secrets.compare_digest(username.encode(), self.username.encode()) and
                secrets.compare_digest(secret.encode(), self.password.encode())):
            logger.warning(f"[{correlation_id}] Legacy shared-secret login used by {client_ip}")
            return AuthResult(method=AuthMethod.LEGACY, principal=username)
        return None


class AuthenticationChain:
    """Tries each authenticator in order. A store outage in one of them does not
    stop the chain; if nothing accepts, StoreUnavailable is re-raised so the
    caller can tell a transient failure from bad credentials.
    """

    def __init__(self, authenticators: List[Authenticator]):
        self.authenticators = authenticators

    async def authenticate(self, username: str, secret: str, client_ip: Optional[str],
                           correlation_id: str = '-') -> Optional[AuthResult]:
        store_error = None
        for authenticator in self.authenticators:
            try:
                result = await authenticator.authenticate(username, secret, client_ip, correlation_id)
            except StoreUnavailable as e:
                logger.error(f"[{correlation_id}] {type(authenticator).__name__} unavailable: {e}")
                store_error = e
                continue
            if result is not None:
                return result
        if store_error is not None:
            raise store_error
        return None


def make_authentication_chain(settings: Settings, store: KeyStore) -> AuthenticationChain:
    authenticators: List[Authenticator] = [ApiKeyAuthenticator(store)]
    if settings.LEGACY_AUTH_ENABLED:
        if settings.LEGACY_USERNAME and settings.LEGACY_PASSWORD:
            authenticators.append(LegacySharedSecretAuthenticator(settings.LEGACY_USERNAME,
                                                                  settings.LEGACY_PASSWORD))
        else:
            logger.warning("LEGACY_AUTH_ENABLED is set but LEGACY_USERNAME/LEGACY_PASSWORD are missing")
    return AuthenticationChain(authenticators)
