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

from prometheus_client import Counter, Histogram, generate_latest, CONTENT_TYPE_LATEST
from fastapi import Response

# Prometheus metrics
ddns_updates_total = Counter(
    'keyddns_ddns_updates_total',
    'Total number of DDNS updates',
    ['result']
)

api_key_operations_total = Counter(
    'keyddns_api_key_operations_total',
    'Total number of API key lifecycle operations',
    ['operation']
)

ddns_update_duration = Histogram(
    'keyddns_ddns_update_duration_seconds',
    'Time spent processing DDNS update requests'
)


async def metrics_endpoint():
    """Prometheus metrics endpoint"""
    return Response(content=generate_latest(), media_type=CONTENT_TYPE_LATEST)
