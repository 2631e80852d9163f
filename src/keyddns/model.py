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

from typing import Optional
from enum import StrEnum

from datetime import datetime, timezone
from sqlmodel import Field, SQLModel, create_engine
from sqlalchemy import DateTime
from sqlalchemy.engine import Engine
from sqlalchemy.pool import StaticPool
import hashlib

from .settings import settings


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def as_utc(value: Optional[datetime]) -> Optional[datetime]:
    """SQLite hands back naive datetimes; everything stored here is UTC."""
    if value is not None and value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value


class ResultCode(StrEnum):
    """DynDNS2 response tokens"""
    GOOD = "good"
    NOCHG = "nochg"
    BADAUTH = "badauth"
    NOTFQDN = "notfqdn"
    NOHOST = "nohost"
    SERVER_ERROR = "911"

    @property
    def success(self) -> bool:
        return self in (ResultCode.GOOD, ResultCode.NOCHG)

    @property
    def http_status(self) -> int:
        return 401 if self is ResultCode.BADAUTH else 200


class AuthMethod(StrEnum):
    NONE = "none"
    API_KEY = "apikey"
    LEGACY = "legacy"


class HostnameOwnership(SQLModel, table=True):
    hostname: str = Field(primary_key=True)
    owner_id: str = Field(index=True)
    owner_label: str
    claimed_at: datetime = Field(default_factory=utcnow, sa_type=DateTime(timezone=True))

    def __str__(self):
        return f"{self.hostname} ({self.owner_label})"


class ApiKey(SQLModel, table=True):
    key_hash: str = Field(primary_key=True)
    hostname: str = Field(index=True)
    owner_id: str = Field(index=True)
    owner_label: str

    created_at: datetime = Field(default_factory=utcnow, sa_type=DateTime(timezone=True))
    expires_at: datetime = Field(sa_type=DateTime(timezone=True))
    is_active: bool = Field(default=True)

    use_count: int = Field(default=0)
    last_used_at: Optional[datetime] = Field(default=None, sa_type=DateTime(timezone=True))
    last_used_from_ip: Optional[str] = Field(default=None)
    revoked_at: Optional[datetime] = Field(default=None, sa_type=DateTime(timezone=True))

    def __str__(self):
        return f"{self.key_hash[:8]}... ({self.hostname})"

    @classmethod
    def hash(cls, plaintext: str) -> str:
        return hashlib.sha256(plaintext.encode()).hexdigest()

    def is_valid(self, now: Optional[datetime] = None) -> bool:
        now = now or utcnow()
        return self.is_active and now < as_utc(self.expires_at)


class UpdateHistory(SQLModel, table=True):
    id: Optional[int] = Field(default=None, primary_key=True)
    hostname: str = Field(index=True)
    timestamp: datetime = Field(default_factory=utcnow, sa_type=DateTime(timezone=True), index=True)
    ip_address: Optional[str] = Field(default=None)
    old_ip_address: Optional[str] = Field(default=None)
    success: bool
    result_code: str
    auth_method: str = Field(default=AuthMethod.NONE.value)
    key_hash_prefix: Optional[str] = Field(default=None)
    response_time_ms: int = Field(default=0)
    correlation_id: Optional[str] = Field(default=None)
    user_agent: Optional[str] = Field(default=None)


def make_engine(db_url: Optional[str] = None) -> Engine:
    db_url = db_url or settings.DB_URL
    if db_url.startswith('sqlite://'):
        if db_url in ('sqlite://', 'sqlite:///:memory:'):
            # a single shared connection keeps the in-memory database alive
            engine = create_engine(
                db_url,
                connect_args={"check_same_thread": False},
                poolclass=StaticPool,
            )
        else:
            engine = create_engine(
                db_url,
                connect_args={"check_same_thread": False, "timeout": settings.DB_POOL_TIMEOUT},
                pool_pre_ping=True
            )
    else:
        engine = create_engine(
            db_url,
            pool_size=settings.DB_POOL_SIZE,
            max_overflow=settings.DB_MAX_OVERFLOW,
            pool_timeout=settings.DB_POOL_TIMEOUT,
            pool_recycle=settings.DB_POOL_RECYCLE,
            pool_pre_ping=True
        )
    SQLModel.metadata.create_all(engine)
    return engine
