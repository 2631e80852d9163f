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
Hostname ownership and API key store.

Every operation is atomic at the single-row level. Uniqueness of claims is
enforced by the primary key of HostnameOwnership, never by read-then-write.
The store does not check ownership before issuing keys; callers must.
"""

from typing import Iterator, List, Optional, Tuple
from contextlib import contextmanager
from datetime import timedelta
import logging
import secrets

from sqlmodel import Session, select
from sqlalchemy import func, update
from sqlalchemy.engine import Engine
from sqlalchemy.exc import IntegrityError, InterfaceError, OperationalError, SQLAlchemyError

from .errors import AlreadyClaimed, StoreUnavailable
from .model import ApiKey, HostnameOwnership, UpdateHistory, utcnow

logger = logging.getLogger(__name__)


def normalize_hostname(hostname: str) -> str:
    return hostname.strip().rstrip('.').lower()


class KeyStore:
    def __init__(self, engine: Engine, key_lifetime: timedelta = timedelta(days=365)):
        self.engine = engine
        self.key_lifetime = key_lifetime

    @contextmanager
    def _session(self) -> Iterator[Session]:
        try:
            with Session(self.engine, expire_on_commit=False) as session:
                yield session
        except (OperationalError, InterfaceError) as e:
            logger.error(f"Entity store unavailable: {e}")
            raise StoreUnavailable(str(e)) from e

    @staticmethod
    def hash_key(secret: str) -> str:
        return ApiKey.hash(secret)

    def ping(self):
        with self._session() as session:
            session.exec(select(HostnameOwnership).limit(1)).first()

    # Hostname ownership
    def claim_hostname(self, hostname: str, owner_id: str, owner_label: str) -> HostnameOwnership:
        hostname = normalize_hostname(hostname)
        with self._session() as session:
            ownership = HostnameOwnership(hostname=hostname, owner_id=owner_id, owner_label=owner_label)
            session.add(ownership)
            try:
                session.commit()
            except IntegrityError:
                session.rollback()
                logger.warning(f"Hostname '{hostname}' is already claimed - attempted by '{owner_id}'")
                raise AlreadyClaimed(hostname)
            logger.info(f"Hostname '{hostname}' claimed by '{owner_id}' ({owner_label})")
            return ownership

    def get_ownership(self, hostname: str) -> Optional[HostnameOwnership]:
        with self._session() as session:
            return session.get(HostnameOwnership, normalize_hostname(hostname))

    def get_owner(self, hostname: str) -> Optional[str]:
        ownership = self.get_ownership(hostname)
        return ownership.owner_id if ownership else None

    # API keys
    def issue_key(self, hostname: str, owner_id: str, owner_label: str) -> str:
        secret = secrets.token_urlsafe(32)
        key_hash = self.hash_key(secret)
        created_at = utcnow()
        api_key = ApiKey(
            key_hash=key_hash,
            hostname=normalize_hostname(hostname),
            owner_id=owner_id,
            owner_label=owner_label,
            created_at=created_at,
            expires_at=created_at + self.key_lifetime,
            is_active=True,
        )
        with self._session() as session:
            session.add(api_key)
            session.commit()
        logger.info(f"API key '{key_hash[:8]}...' issued for '{api_key.hostname}' (owner '{owner_id}'), "
                    f"expires {api_key.expires_at:%Y-%m-%d}")
        return secret

    def get_key(self, key_hash: str) -> Optional[ApiKey]:
        with self._session() as session:
            return session.get(ApiKey, key_hash)

    def validate_key(self, secret: str, client_ip: Optional[str] = None) -> Tuple[Optional[str], bool]:
        key_hash = self.hash_key(secret)
        api_key = self.get_key(key_hash)

        if api_key is None:
            logger.debug(f"API key '{key_hash[:8]}...' not found")
            return None, False
        if not api_key.is_active:
            logger.warning(f"API key '{key_hash[:8]}...' for '{api_key.hostname}' is revoked")
            return None, False
        if not api_key.is_valid():
            logger.warning(f"API key '{key_hash[:8]}...' for '{api_key.hostname}' expired on {api_key.expires_at:%Y-%m-%d}")
            return None, False

        self._record_usage(key_hash, client_ip)
        return api_key.hostname, True

    def _record_usage(self, key_hash: str, client_ip: Optional[str]):
        try:
            with Session(self.engine) as session:
                session.exec(
                    update(ApiKey)
                    .where(ApiKey.key_hash == key_hash)
                    .values(use_count=ApiKey.use_count + 1,
                            last_used_at=utcnow(),
                            last_used_from_ip=client_ip)
                )
                session.commit()
        except SQLAlchemyError as e:
            logger.warning(f"Failed to record usage for API key '{key_hash[:8]}...': {e}")

    def revoke_key(self, key_hash: str) -> bool:
        with self._session() as session:
            result = session.exec(
                update(ApiKey)
                .where(ApiKey.key_hash == key_hash, ApiKey.is_active == True)
                .values(is_active=False, revoked_at=utcnow())
            )
            session.commit()
        if result.rowcount:
            logger.info(f"API key '{key_hash[:8]}...' revoked")
            return True
        logger.info(f"API key '{key_hash[:8]}...' not found or already revoked")
        return False

    def list_keys_for_hostname(self, hostname: str) -> List[ApiKey]:
        with self._session() as session:
            return list(session.exec(
                select(ApiKey).where(ApiKey.hostname == normalize_hostname(hostname)).order_by(ApiKey.created_at.desc())
            ).all())

    def list_keys_for_owner(self, owner_id: str) -> List[ApiKey]:
        with self._session() as session:
            return list(session.exec(
                select(ApiKey).where(ApiKey.owner_id == owner_id).order_by(ApiKey.created_at.desc())
            ).all())

    # Totals
    def count_hostnames(self) -> int:
        with self._session() as session:
            return session.exec(select(func.count()).select_from(HostnameOwnership)).one()

    def count_owners(self) -> int:
        with self._session() as session:
            return session.exec(select(func.count(func.distinct(HostnameOwnership.owner_id)))).one()

    def count_active_keys(self) -> int:
        with self._session() as session:
            return session.exec(
                select(func.count()).select_from(ApiKey)
                .where(ApiKey.is_active == True, ApiKey.expires_at > utcnow())
            ).one()

    # Update history
    def append_history(self, entry: UpdateHistory):
        entry.hostname = normalize_hostname(entry.hostname)
        with self._session() as session:
            session.add(entry)
            session.commit()

    def get_update_history(self, hostname: str, limit: int = 50) -> List[UpdateHistory]:
        with self._session() as session:
            return list(session.exec(
                select(UpdateHistory)
                .where(UpdateHistory.hostname == normalize_hostname(hostname))
                .order_by(UpdateHistory.timestamp.desc(), UpdateHistory.id.desc())
                .limit(limit)
            ).all())
