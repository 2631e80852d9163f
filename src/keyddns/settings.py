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

from typing import List, Optional, Union
from pydantic import field_validator
from pydantic_settings import BaseSettings
import logging
import os
from enum import IntEnum

class LogLevel(IntEnum):
    DEBUG = logging.DEBUG
    INFO = logging.INFO
    WARNING = logging.WARNING
    ERROR = logging.ERROR
    CRITICAL = logging.CRITICAL


class Settings(BaseSettings, cli_parse_args=not os.getenv('DISABLE_CLI_PARSING', False)):
    ROOT_PATH: str = ''
    LOG_LEVEL: LogLevel = LogLevel.INFO
    DB_URL: str = "sqlite:///keyddns.sqlite"
    LISTEN_ADDRESS: str = "127.0.0.1"
    LISTEN_PORT: int = 8085

    # Zone layout: updates land in DNS_ZONE_NAME, either under DDNS_SUBDOMAIN
    # or directly as per-customer labels
    DNS_ZONE_NAME: str = "example.com"
    DDNS_SUBDOMAIN: str = "ddns"
    DDNS_RR_TTL: int = 60

    # API keys
    API_KEY_LIFETIME_DAYS: int = 365
    HISTORY_LIMIT: int = 50

    # Client IP detection, highest priority first; the transport peer
    # address is always tried last
    IP_HEADERS: List[str] = ["X-Azure-ClientIP", "X-Forwarded-For", "X-Real-IP", "X-Original-For"]

    # Legacy shared-secret login for devices configured before API keys existed
    LEGACY_AUTH_ENABLED: bool = False
    LEGACY_USERNAME: Optional[str] = None
    LEGACY_PASSWORD: Optional[str] = None

    # DNS provider
    DNS_PROVIDER: str = "memory"
    DNS_API_URL: Optional[str] = None
    DNS_API_KEY: Optional[str] = None
    PROVIDER_TIMEOUT: float = 10.0

    # Human identity, asserted by the authenticating reverse proxy
    IDENTITY_PROVIDER: str = "headers"
    IDENTITY_USER_HEADER: str = "X-Auth-Request-User"
    IDENTITY_EMAIL_HEADER: str = "X-Auth-Request-Email"
    IDENTITY_GROUPS_HEADER: str = "X-Auth-Request-Groups"
    LOGIN_URL: str = "/oauth2/start?rd={next}"
    ADMIN_ROLE: str = "DDNSAdmin"

    # Database connection pool settings
    DB_POOL_SIZE: int = 20
    DB_MAX_OVERFLOW: int = 30
    DB_POOL_TIMEOUT: int = 30
    DB_POOL_RECYCLE: int = 3600

    @field_validator('LOG_LEVEL', mode='before')
    @classmethod
    def validate_log_level(cls, v) -> Union[LogLevel, int, str]:
        if isinstance(v, str):
            try:
                return LogLevel[v.upper()]
            except KeyError:
                try:
                    return LogLevel(int(v))
                except (ValueError, TypeError):
                    raise ValueError(f"Invalid log level: {v}. Must be one of: DEBUG, INFO, WARNING, ERROR, CRITICAL or their numeric equivalents")
        return v

    @field_validator('DNS_ZONE_NAME', 'DDNS_SUBDOMAIN')
    @classmethod
    def validate_domain(cls, v: str) -> str:
        return v.strip().rstrip('.').lower()

    @field_validator('DNS_PROVIDER')
    @classmethod
    def validate_dns_provider(cls, v: str) -> str:
        v = v.strip().lower()
        if v not in ('memory', 'http'):
            raise ValueError(f"Invalid DNS provider: {v}. Must be one of: memory, http")
        return v

    @field_validator('IDENTITY_PROVIDER')
    @classmethod
    def validate_identity_provider(cls, v: str) -> str:
        v = v.strip().lower()
        if v not in ('headers', 'client-principal'):
            raise ValueError(f"Invalid identity provider: {v}. Must be one of: headers, client-principal")
        return v

settings = Settings()

logging.basicConfig(format='%(levelname)s:%(name)s:%(message)s', level=int(settings.LOG_LEVEL))
