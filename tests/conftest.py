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
Shared fixtures: a temporary SQLite database, the key store on top of it,
an in-memory DNS zone and the FastAPI app wired to all of them.
"""

import pytest
import tempfile
import base64
import os
import sys

# Disable CLI parsing for tests
os.environ['DISABLE_CLI_PARSING'] = '1'

# Add the src directory to Python path for imports
sys.path.insert(0, os.path.join(os.path.dirname(__file__), '..', 'src'))

from fastapi.testclient import TestClient

from keyddns.dns import MemoryDnsProvider
from keyddns.main import create_app
from keyddns.model import make_engine
from keyddns.settings import Settings
from keyddns.store import KeyStore

OWNER_HEADERS = {
    'X-Auth-Request-User': 'alice-id',
    'X-Auth-Request-Email': 'alice@example.com',
}

OTHER_HEADERS = {
    'X-Auth-Request-User': 'bob-id',
    'X-Auth-Request-Email': 'bob@example.com',
}


def encode_basic(username: str, secret: str) -> str:
    return "Basic " + base64.b64encode(f"{username}:{secret}".encode()).decode()


@pytest.fixture
def test_db():
    """Create a temporary SQLite database file for testing"""
    temp_db = tempfile.NamedTemporaryFile(suffix='.db', delete=False)
    temp_db.close()

    test_engine = make_engine(f"sqlite:///{temp_db.name}")

    yield test_engine

    # Cleanup
    test_engine.dispose()
    os.unlink(temp_db.name)


@pytest.fixture
def store(test_db):
    return KeyStore(test_db)


@pytest.fixture
def dns_provider():
    return MemoryDnsProvider()


@pytest.fixture
def test_settings():
    return Settings(
        DB_URL="sqlite://",
        DNS_ZONE_NAME="example.com",
        DDNS_SUBDOMAIN="ddns",
        DDNS_RR_TTL=60,
        LEGACY_AUTH_ENABLED=True,
        LEGACY_USERNAME="legacy",
        LEGACY_PASSWORD="legacy-secret",
        PROVIDER_TIMEOUT=2.0,
    )


@pytest.fixture
def app(test_settings, store, dns_provider):
    return create_app(test_settings, store=store, dns_provider=dns_provider)


@pytest.fixture
def client(app):
    return TestClient(app)


@pytest.fixture
def basic_auth():
    """Build an Authorization header dict for username/secret"""
    def _basic_auth(username: str, secret: str) -> dict:
        return {'Authorization': encode_basic(username, secret)}
    return _basic_auth


@pytest.fixture
def device_key(store):
    """An active API key for mydevice.ddns.example.com owned by alice"""
    store.claim_hostname("mydevice.ddns.example.com", "alice-id", "alice@example.com")
    return store.issue_key("mydevice.ddns.example.com", "alice-id", "alice@example.com")
