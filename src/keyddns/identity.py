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
Human identity as asserted by the authenticating reverse proxy in front of
this service. Login itself happens elsewhere; these adapters only turn the
proxy's headers into an Identity.
"""

from typing import Any, Dict, List, Mapping, Optional
from dataclasses import dataclass, field
import base64
import binascii
import json
import logging

from .settings import Settings

logger = logging.getLogger(__name__)

CLAIM_OBJECT_ID = "http://schemas.microsoft.com/identity/claims/objectidentifier"
CLAIM_UPN = "http://schemas.xmlsoap.org/ws/2005/05/identity/claims/upn"
CLAIM_EMAIL = "http://schemas.xmlsoap.org/ws/2005/05/identity/claims/emailaddress"


@dataclass(frozen=True)
class Identity:
    subject_id: str
    email: str
    roles: List[str] = field(default_factory=list)

    @property
    def label(self) -> str:
        return self.email or self.subject_id


def _lowered(headers: Mapping[str, str]) -> Dict[str, str]:
    return {k.lower(): v for k, v in headers.items()}


class IdentityProvider:
    def identify(self, headers: Mapping[str, str]) -> Optional[Identity]:
        raise NotImplementedError


class ProxyHeaderIdentityProvider(IdentityProvider):
    """oauth2-proxy style X-Auth-Request-User / -Email / -Groups headers"""

    def __init__(self, user_header: str = "X-Auth-Request-User",
                 email_header: str = "X-Auth-Request-Email",
                 groups_header: str = "X-Auth-Request-Groups"):
        self.user_header = user_header.lower()
        self.email_header = email_header.lower()
        self.groups_header = groups_header.lower()

    def identify(self, headers: Mapping[str, str]) -> Optional[Identity]:
        headers = _lowered(headers)
        subject_id = headers.get(self.user_header, '').strip()
        email = headers.get(self.email_header, '').strip()
        if not subject_id and not email:
            return None
        groups = [g.strip() for g in headers.get(self.groups_header, '').split(',') if g.strip()]
        return Identity(subject_id=subject_id or email, email=email, roles=groups)


class ClientPrincipalIdentityProvider(IdentityProvider):
    """App Service authentication: base64 JSON claims in X-MS-CLIENT-PRINCIPAL,
    with the -ID and -NAME headers as fallback.
    """

    PRINCIPAL_HEADER = "x-ms-client-principal"
    PRINCIPAL_ID_HEADER = "x-ms-client-principal-id"
    PRINCIPAL_NAME_HEADER = "x-ms-client-principal-name"

    @staticmethod
    def decode_principal(encoded: str) -> Optional[Dict[str, Any]]:
        try:
            data = json.loads(base64.b64decode(encoded, validate=False).decode('utf-8'))
        except (binascii.Error, ValueError) as e:
            logger.warning(f"Malformed client principal header: {e}")
            return None
        return data if isinstance(data, dict) else None

    @staticmethod
    def _claims(principal: Dict[str, Any]) -> Dict[str, List[str]]:
        claims: Dict[str, List[str]] = {}
        for claim in principal.get('claims') or []:
            if isinstance(claim, dict) and 'typ' in claim:
                claims.setdefault(claim['typ'], []).append(str(claim.get('val', '')))
        return claims

    def identify(self, headers: Mapping[str, str]) -> Optional[Identity]:
        headers = _lowered(headers)
        subject_id = email = ''
        roles: List[str] = []

        if encoded := headers.get(self.PRINCIPAL_HEADER):
            if principal := self.decode_principal(encoded):
                claims = self._claims(principal)
                role_type = principal.get('role_typ', 'roles')
                subject_id = (claims.get(CLAIM_OBJECT_ID) or claims.get('oid') or [''])[0]
                email = (claims.get(CLAIM_UPN) or claims.get('upn') or claims.get(CLAIM_EMAIL)
                         or claims.get('preferred_username') or [''])[0]
                roles = claims.get(role_type, []) or claims.get('roles', [])

        subject_id = subject_id or headers.get(self.PRINCIPAL_ID_HEADER, '').strip()
        email = email or headers.get(self.PRINCIPAL_NAME_HEADER, '').strip()
        if not subject_id:
            return None
        return Identity(subject_id=subject_id, email=email, roles=list(roles))


def make_identity_provider(settings: Settings) -> IdentityProvider:
    if settings.IDENTITY_PROVIDER == 'client-principal':
        return ClientPrincipalIdentityProvider()
    return ProxyHeaderIdentityProvider(settings.IDENTITY_USER_HEADER,
                                       settings.IDENTITY_EMAIL_HEADER,
                                       settings.IDENTITY_GROUPS_HEADER)
