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
import secrets

from fastapi import APIRouter, BackgroundTasks, Request
from fastapi.responses import PlainTextResponse

from .auth import extract_basic_auth_credentials
from .engine import UpdateRequest
from .model import ResultCode

router = APIRouter(tags=["DDNS"])


# DynDNS Example HTTP query:
# GET /nic/update?hostname=mydevice.ddns.example.com&myip=1.2.3.4 HTTP/1.1
# Host: ddns.example.com
# Authorization: Basic base64(mydevice:api-key)
@router.api_route("/nic/update", methods=["GET", "POST"], response_class=PlainTextResponse)
@router.api_route("/update", methods=["GET", "POST"], response_class=PlainTextResponse)
@router.api_route("/ddns/update", methods=["GET", "POST"], response_class=PlainTextResponse)
async def ddns_update(
    request: Request,
    background_tasks: BackgroundTasks,
    hostname: Optional[str] = None,
    myip: Optional[str] = None
) -> PlainTextResponse:
    correlation_id = secrets.token_hex(4)
    update_request = UpdateRequest(
        credentials=await extract_basic_auth_credentials(request),
        hostname=hostname,
        myip=myip,
        headers=dict(request.headers),
        peer=request.client.host if request.client else None,
        user_agent=request.headers.get('user-agent'),
    )
    engine = request.app.state.update_engine
    result = await engine.process(update_request, correlation_id)
    background_tasks.add_task(engine.record_history, update_request, result, correlation_id)

    headers = {'X-Request-ID': correlation_id}
    if result.code is ResultCode.BADAUTH:
        headers['WWW-Authenticate'] = 'Basic realm="DDNS"'
    return PlainTextResponse(result.code.value, status_code=result.code.http_status, headers=headers)
