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

from typing import Union
import logging
import urllib.parse

from fastapi import APIRouter, Depends, HTTPException, Request, status
from fastapi.responses import RedirectResponse
from pydantic import BaseModel

from .flow import AdminStats, Dashboard, IssuedKey, OwnershipService
from .hostname import expand_hostname, is_short_hostname
from .identity import Identity

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/manage", tags=["Management"])


class RevokeResponse(BaseModel):
    hostname: str
    keyhash: str
    revoked: bool


class RevokeAllResponse(BaseModel):
    hostname: str
    revoked: int


def get_identity(request: Request) -> Identity:
    identity = request.app.state.identity_provider.identify(request.headers)
    if identity is None:
        target = request.url.path
        if request.url.query:
            target += f"?{request.url.query}"
        location = request.app.state.settings.LOGIN_URL.format(next=urllib.parse.quote(target, safe=''))
        logger.debug(f"Unauthenticated request to {target}, redirecting to {location}")
        raise HTTPException(status_code=status.HTTP_302_FOUND, detail="Login required",
                            headers={"Location": location})
    return identity


def get_ownership_service(request: Request) -> OwnershipService:
    return request.app.state.ownership


@router.get("/admin/stats", response_model=AdminStats)
async def admin_stats(
    identity: Identity = Depends(get_identity),
    service: OwnershipService = Depends(get_ownership_service)
) -> AdminStats:
    return await service.admin_stats(identity)


@router.get("/{hostname}", response_model=Dashboard)
async def manage_hostname(
    hostname: str,
    request: Request,
    service: OwnershipService = Depends(get_ownership_service)
) -> Union[Dashboard, RedirectResponse]:
    if is_short_hostname(hostname):
        full = expand_hostname(hostname, service.zone_name, service.subdomain)
        return RedirectResponse(url=f"{request.scope.get('root_path', '')}/manage/{full}",
                                status_code=status.HTTP_308_PERMANENT_REDIRECT)
    identity = get_identity(request)
    return await service.open_dashboard(hostname, identity)


@router.api_route("/{hostname}/newkey", methods=["GET", "POST"], response_model=IssuedKey)
async def new_key(
    hostname: str,
    identity: Identity = Depends(get_identity),
    service: OwnershipService = Depends(get_ownership_service)
) -> IssuedKey:
    return await service.generate_key(hostname, identity)


@router.api_route("/{hostname}/revoke", methods=["GET", "POST"], response_model=RevokeResponse)
async def revoke_key(
    hostname: str,
    keyhash: str,
    identity: Identity = Depends(get_identity),
    service: OwnershipService = Depends(get_ownership_service)
) -> RevokeResponse:
    revoked = await service.revoke_key(hostname, keyhash, identity)
    return RevokeResponse(hostname=hostname.rstrip('.').lower(), keyhash=keyhash, revoked=revoked)


@router.api_route("/{hostname}/revokeall", methods=["GET", "POST"], response_model=RevokeAllResponse)
async def revoke_all(
    hostname: str,
    identity: Identity = Depends(get_identity),
    service: OwnershipService = Depends(get_ownership_service)
) -> RevokeAllResponse:
    revoked = await service.revoke_all(hostname, identity)
    return RevokeAllResponse(hostname=hostname.rstrip('.').lower(), revoked=revoked)
