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

import logging
from typing import Optional, Dict, Any
from datetime import datetime
from enum import Enum
from dataclasses import dataclass
import json

from .model import utcnow


class AuditSource(Enum):
    """Source of the audit event"""
    WEB = "WEB"
    DDNS = "DDNS"


class AuditAction(Enum):
    """Type of action being audited"""
    CLAIM = "CLAIM"
    CREATE = "CREATE"
    UPDATE = "UPDATE"
    REVOKE = "REVOKE"
    VIEW = "VIEW"
    FAILED_LOGIN = "FAILED_LOGIN"


class AuditResource(Enum):
    """Resource being acted upon"""
    HOSTNAME = "hostname"
    API_KEY = "api_key"
    DDNS_UPDATE = "ddns_update"
    AUTHENTICATION = "authentication"
    ADMIN = "admin"


@dataclass
class AuditEvent:
    """Structured audit event"""
    timestamp: datetime
    source: AuditSource
    action: AuditAction
    resource: AuditResource
    resource_id: Optional[str] = None
    principal: Optional[str] = None
    client_ip: str = "unknown"
    correlation_id: Optional[str] = None
    success: bool = True
    details: Optional[Dict[str, Any]] = None
    error_message: Optional[str] = None

    def to_log_string(self) -> str:
        """Convert to structured log string"""
        base = (f"AUDIT: {self.source.value} {self.action.value} {self.resource.value}"
                f" principal={self.principal or 'anonymous'} ip={self.client_ip}")

        if self.resource_id:
            base += f" resource_id={self.resource_id}"

        if self.correlation_id:
            base += f" cid={self.correlation_id}"

        if not self.success:
            base += " success=false"
            if self.error_message:
                base += f" error='{self.error_message}'"

        if self.details:
            try:
                details_str = json.dumps(self.details, separators=(',', ':'))
                base += f" details={details_str}"
            except (TypeError, ValueError):
                base += f" details='{str(self.details)}'"

        return base


class AuditLogger:
    """Centralized audit logging"""

    def __init__(self):
        self.logger = logging.getLogger("keyddns.audit")
        self.logger.setLevel(logging.INFO)

    def log_event(self, event: AuditEvent):
        self.logger.info(event.to_log_string())

    def log(self,
            source: AuditSource,
            action: AuditAction,
            resource: AuditResource,
            principal: Optional[str] = None,
            resource_id: Optional[str] = None,
            client_ip: Optional[str] = None,
            correlation_id: Optional[str] = None,
            success: bool = True,
            details: Optional[Dict[str, Any]] = None,
            error_message: Optional[str] = None):
        self.log_event(AuditEvent(
            timestamp=utcnow(),
            source=source,
            action=action,
            resource=resource,
            resource_id=resource_id,
            principal=principal,
            client_ip=client_ip or "unknown",
            correlation_id=correlation_id,
            success=success,
            details=details,
            error_message=error_message
        ))

    def log_claim(self, principal: str, hostname: str, success: bool = True,
                  error_message: Optional[str] = None):
        self.log(AuditSource.WEB, AuditAction.CLAIM, AuditResource.HOSTNAME,
                 principal=principal, resource_id=hostname, success=success,
                 error_message=error_message)

    def log_key_issued(self, principal: str, hostname: str, key_hash: str):
        self.log(AuditSource.WEB, AuditAction.CREATE, AuditResource.API_KEY,
                 principal=principal, resource_id=f"{key_hash[:8]}...",
                 details={"hostname": hostname})

    def log_key_revoked(self, principal: str, hostname: str, key_hash: str, success: bool):
        self.log(AuditSource.WEB, AuditAction.REVOKE, AuditResource.API_KEY,
                 principal=principal, resource_id=f"{key_hash[:8]}...", success=success,
                 details={"hostname": hostname})

    def log_failed_authentication(self, principal: Optional[str], client_ip: Optional[str],
                                  correlation_id: Optional[str], error_message: str):
        self.log(AuditSource.DDNS, AuditAction.FAILED_LOGIN, AuditResource.AUTHENTICATION,
                 principal=principal, client_ip=client_ip, correlation_id=correlation_id,
                 success=False, error_message=error_message)

    def log_admin_access(self, principal: str, success: bool):
        self.log(AuditSource.WEB, AuditAction.VIEW, AuditResource.ADMIN,
                 principal=principal, resource_id="stats", success=success,
                 error_message=None if success else "admin role required")

    def log_ddns_update(self,
                        principal: Optional[str],
                        hostname: Optional[str],
                        ip_address: Optional[str],
                        result_code: str,
                        success: bool,
                        auth_method: str,
                        client_ip: Optional[str] = None,
                        correlation_id: Optional[str] = None):
        self.log(
            source=AuditSource.DDNS,
            action=AuditAction.UPDATE,
            resource=AuditResource.DDNS_UPDATE,
            principal=principal,
            resource_id=hostname,
            client_ip=client_ip,
            correlation_id=correlation_id,
            success=success,
            details={
                "hostname": hostname,
                "ip_address": ip_address,
                "result": result_code,
                "auth_method": auth_method,
            },
            error_message=None if success else result_code
        )


# Global audit logger instance
audit_logger = AuditLogger()
