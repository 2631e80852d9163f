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
Client IP detection for DDNS updates behind proxies and load balancers.
"""

from typing import Iterator, List, Mapping, Optional, Sequence
import ipaddress
import logging
import re

logger = logging.getLogger(__name__)

AUTO = "auto"

_INTERNAL_NETWORKS = [ipaddress.ip_network(n) for n in (
    '127.0.0.0/8',
    '10.0.0.0/8',
    '172.16.0.0/12',
    '192.168.0.0/16',
    '169.254.0.0/16',
)]

_IPV4_WITH_PORT_REGEX = re.compile(r"^(\d{1,3}\.\d{1,3}\.\d{1,3}\.\d{1,3}):\d+$")
_BRACKETED_IPV6_REGEX = re.compile(r"^\[([^\]]+)\](?::\d+)?$")


def clean_ip_address(value: str) -> str:
    """Strip whitespace, IPv6 brackets and a trailing :port."""
    value = value.strip()
    if m := _BRACKETED_IPV6_REGEX.match(value):
        return m.group(1).strip()
    if m := _IPV4_WITH_PORT_REGEX.match(value):
        return m.group(1)
    return value


def parse_ip(value: Optional[str]) -> Optional[ipaddress.IPv4Address | ipaddress.IPv6Address]:
    if not value:
        return None
    try:
        return ipaddress.ip_address(value)
    except ValueError:
        return None


def is_internal_ip(value: str) -> bool:
    """Loopback, RFC1918 private or link-local."""
    ip = parse_ip(value)
    if ip is None:
        return False
    if ip.version == 6:
        if ip.ipv4_mapped:
            return is_internal_ip(str(ip.ipv4_mapped))
        return ip.is_loopback or ip.is_link_local
    return any(ip in net for net in _INTERNAL_NETWORKS)


class IpResolver:
    """Determines the public address a DDNS update should publish.

    Header names are tried in the configured order; the transport peer
    address is always the last candidate. For comma-separated headers such
    as X-Forwarded-For only the first entry (the original client) counts.
    """

    def __init__(self, headers: Sequence[str]):
        self.headers = [h.lower() for h in headers]

    def candidates(self, headers: Mapping[str, str], peer: Optional[str]) -> Iterator[tuple[str, str]]:
        lowered = {k.lower(): v for k, v in headers.items()}
        for name in self.headers:
            value = lowered.get(name)
            if value:
                first = value.split(',')[0].strip()
                if first:
                    yield name, first
        if peer:
            yield 'peer', peer

    def extract_source_ip(self, headers: Mapping[str, str], peer: Optional[str]) -> Optional[str]:
        """First candidate, cleaned but not filtered. Used for diagnostics and key usage stats."""
        for _, value in self.candidates(headers, peer):
            return clean_ip_address(value)
        return None

    def detect(self, headers: Mapping[str, str], peer: Optional[str], correlation_id: str = '-') -> Optional[str]:
        """First public IPv4 candidate; only A records are published."""
        for source, value in self.candidates(headers, peer):
            ip = clean_ip_address(value)
            parsed = parse_ip(ip)
            if parsed is None:
                logger.debug(f"[{correlation_id}] Ignoring unparseable address {value!r} from {source}")
                continue
            if parsed.version != 4:
                logger.debug(f"[{correlation_id}] Ignoring non-IPv4 address {ip} from {source}")
                continue
            if is_internal_ip(ip):
                logger.info(f"[{correlation_id}] Ignoring internal address {ip} from {source}")
                continue
            logger.debug(f"[{correlation_id}] Client IP {ip} detected from {source}")
            return ip
        return None

    def resolve(self, headers: Mapping[str, str], peer: Optional[str], myip: Optional[str],
                correlation_id: str = '-') -> Optional[str]:
        """Explicit myip wins unless it is empty, 'auto' or an internal address.

        An explicit value is returned verbatim even if it does not parse;
        the caller validates it. None means the address is undetermined.
        """
        if myip is not None:
            myip = myip.strip()
        if myip and myip.lower() != AUTO:
            cleaned = clean_ip_address(myip)
            if not is_internal_ip(cleaned):
                return cleaned
            logger.info(f"[{correlation_id}] Internal myip={myip} supplied, falling back to auto-detection")
        return self.detect(headers, peer, correlation_id)

    def diagnostics(self, headers: Mapping[str, str], peer: Optional[str]) -> List[str]:
        lowered = {k.lower(): v for k, v in headers.items()}
        lines = [f"peer={peer}"]
        lines.extend(f"{name}={lowered.get(name)}" for name in self.headers)
        return lines
