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
from datetime import timedelta
import logging

from fastapi import FastAPI, Request, status
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse, PlainTextResponse
from pydantic import BaseModel
from starlette.concurrency import run_in_threadpool

from . import ddns, manage
from .auth import make_authentication_chain
from .clientip import IpResolver
from .dns import DnsProvider, DnsRecordUpdater, make_dns_provider
from .engine import UpdateEngine
from .errors import AdminRequired, Forbidden, InvalidHostname, StoreUnavailable
from .flow import OwnershipService
from .identity import IdentityProvider, make_identity_provider
from .metrics import metrics_endpoint
from .model import make_engine, utcnow
from .settings import Settings, settings as default_settings
from .store import KeyStore

logger = logging.getLogger(__name__)


class Status(BaseModel):
    detail: str


def add_exception_handlers(app: FastAPI):
    @app.exception_handler(RequestValidationError)
    async def validation_exception_handler(request: Request, exc: RequestValidationError):
        exc_str = f'{exc}'.replace('\n', ' ').replace('   ', ' ')
        logger.error(f"422 Validation Error - Request: {request.method} {request.url} - Error: {exc_str}")
        return JSONResponse(content={'detail': exc.errors()},
                            status_code=status.HTTP_422_UNPROCESSABLE_ENTITY)

    @app.exception_handler(Forbidden)
    async def forbidden_handler(request: Request, exc: Forbidden):
        logger.warning(f"403 {request.method} {request.url.path}: {exc}")
        return JSONResponse(content={'detail': "Forbidden: you don't own this hostname"},
                            status_code=status.HTTP_403_FORBIDDEN)

    @app.exception_handler(AdminRequired)
    async def admin_required_handler(request: Request, exc: AdminRequired):
        logger.warning(f"403 {request.method} {request.url.path}: {exc}")
        return JSONResponse(content={'detail': "Admin access required"},
                            status_code=status.HTTP_403_FORBIDDEN)

    @app.exception_handler(InvalidHostname)
    async def invalid_hostname_handler(request: Request, exc: InvalidHostname):
        return JSONResponse(content={'detail': str(exc)}, status_code=status.HTTP_404_NOT_FOUND)

    @app.exception_handler(StoreUnavailable)
    async def store_unavailable_handler(request: Request, exc: StoreUnavailable):
        logger.error(f"503 {request.method} {request.url.path}: entity store unavailable")
        return JSONResponse(content={'detail': "Service temporarily unavailable"},
                            status_code=status.HTTP_503_SERVICE_UNAVAILABLE)


def create_app(settings: Optional[Settings] = None,
               store: Optional[KeyStore] = None,
               dns_provider: Optional[DnsProvider] = None,
               identity_provider: Optional[IdentityProvider] = None) -> FastAPI:
    settings = settings or default_settings
    if store is None:
        store = KeyStore(make_engine(settings.DB_URL), timedelta(days=settings.API_KEY_LIFETIME_DAYS))
    if dns_provider is None:
        dns_provider = make_dns_provider(settings)
    if identity_provider is None:
        identity_provider = make_identity_provider(settings)

    app = FastAPI(root_path=settings.ROOT_PATH, title="KeyDDNS")
    app.state.settings = settings
    app.state.store = store
    app.state.dns_provider = dns_provider
    app.state.identity_provider = identity_provider
    app.state.update_engine = UpdateEngine(
        authentication=make_authentication_chain(settings, store),
        ip_resolver=IpResolver(settings.IP_HEADERS),
        updater=DnsRecordUpdater(dns_provider, ttl=settings.DDNS_RR_TTL, timeout=settings.PROVIDER_TIMEOUT),
        store=store,
        zone_name=settings.DNS_ZONE_NAME,
        subdomain=settings.DDNS_SUBDOMAIN,
    )
    app.state.ownership = OwnershipService(store, settings.DNS_ZONE_NAME, settings.DDNS_SUBDOMAIN,
                                           history_limit=settings.HISTORY_LIMIT,
                                           admin_role=settings.ADMIN_ROLE)

    add_exception_handlers(app)
    app.include_router(ddns.router)
    app.include_router(manage.router)

    @app.get("/")
    def get_root() -> Status:
        return Status(detail="NOOP")

    @app.get('/robots.txt', response_class=PlainTextResponse)
    async def robots():
        return """User-agent: *\nDisallow: /"""

    @app.get("/health")
    async def health():
        await run_in_threadpool(store.ping)
        return {
            "status": "healthy",
            "timestamp": utcnow().isoformat(),
            "zone": settings.DNS_ZONE_NAME,
            "dns_provider": type(dns_provider).__name__,
        }

    app.add_api_route("/metrics", metrics_endpoint, methods=["GET"], include_in_schema=False)

    logger.info(f"KeyDDNS serving zone {settings.DNS_ZONE_NAME} (subdomain {settings.DDNS_SUBDOMAIN}) "
                f"with {type(dns_provider).__name__}, legacy auth "
                f"{'enabled' if settings.LEGACY_AUTH_ENABLED else 'disabled'}")
    return app
