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
import re

RECORD_NAME_REGEX = re.compile(r"^[A-Za-z0-9.-]+$")


def fqdn(domain: str) -> str:
    return domain.strip().rstrip('.').lower()


def resolve_record_name(hostname: str, zone_name: str, subdomain: str) -> Optional[str]:
    """Map a public FQDN to a record name relative to zone_name.

    wan1.mro.tru.ddns.example.com -> wan1.mro.tru.ddns  (under the DDNS subdomain)
    wan1.ftl.cts.example.com      -> wan1.ftl.cts       (directly in the zone)

    Returns None when the name is outside the zone, has no label in front
    of the zone, or contains characters not allowed in a record name.
    """
    hostname = fqdn(hostname)
    zone_name = fqdn(zone_name)
    subdomain = fqdn(subdomain)
    if not hostname or not zone_name:
        return None

    record_name = None
    if subdomain:
        suffix = f".{subdomain}.{zone_name}"
        if hostname.endswith(suffix):
            prefix = hostname[:-len(suffix)]
            if not prefix:
                return None
            record_name = f"{prefix}.{subdomain}"

    if record_name is None:
        suffix = f".{zone_name}"
        if not hostname.endswith(suffix):
            return None
        record_name = hostname[:-len(suffix)]

    if not record_name or not RECORD_NAME_REGEX.match(record_name):
        return None
    if '' in record_name.split('.'):
        return None
    return record_name


def is_short_hostname(hostname: str) -> bool:
    return bool(hostname) and '.' not in fqdn(hostname)


def expand_hostname(hostname: str, zone_name: str, subdomain: str) -> str:
    """A bare label like 'mydevice' becomes mydevice.<subdomain>.<zone>"""
    hostname = fqdn(hostname)
    if not is_short_hostname(hostname):
        return hostname
    if subdomain:
        return f"{hostname}.{fqdn(subdomain)}.{fqdn(zone_name)}"
    return f"{hostname}.{fqdn(zone_name)}"


def first_label(hostname: str) -> str:
    return fqdn(hostname).split('.')[0]
