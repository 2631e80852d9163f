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


class DDNSError(Exception):
    """Base exception for DDNS errors"""
    pass


class StoreUnavailable(DDNSError):
    """Raised when the entity store cannot be reached.

    Never means "not found"; callers must treat it as a transient failure.
    """
    pass


class AlreadyClaimed(DDNSError):
    """Raised when claiming a hostname that already has an owner"""

    def __init__(self, hostname: str):
        super().__init__(f"Hostname '{hostname}' is already claimed")
        self.hostname = hostname


class Forbidden(DDNSError):
    """Raised when the caller does not own the hostname"""
    pass


class AdminRequired(Forbidden):
    """Raised when the caller lacks the admin role"""
    pass


class InvalidHostname(DDNSError):
    """Raised when a hostname is not served by the configured zone"""
    pass


class DnsProviderError(DDNSError):
    """Raised by DNS providers on any backend failure"""
    pass


class DnsUpdateFailed(DDNSError):
    """Raised by the record updater when the provider call failed or timed out"""
    pass
