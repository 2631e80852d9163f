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

import pytest
from fastapi.testclient import TestClient

from conftest import OTHER_HEADERS, OWNER_HEADERS
from keyddns.errors import StoreUnavailable
from keyddns.flow import OwnershipService
from keyddns.identity import Identity
from keyddns.main import create_app
from keyddns.settings import Settings

HOST = "mydevice.ddns.example.com"


class TestDashboard:
    """GET /manage/{hostname}: claim-then-show"""

    def test_unauthenticated_redirects_to_login(self, client):
        response = client.get(f"/manage/{HOST}", follow_redirects=False)
        assert response.status_code == 302
        assert response.headers["location"] == "/oauth2/start?rd=%2Fmanage%2Fmydevice.ddns.example.com"

    def test_short_hostname_redirect(self, client):
        response = client.get("/manage/mydevice", headers=OWNER_HEADERS, follow_redirects=False)
        assert response.status_code == 308
        assert response.headers["location"] == f"/manage/{HOST}"

    def test_first_visit_claims_and_issues_key(self, client, store):
        response = client.get(f"/manage/{HOST}", headers=OWNER_HEADERS)
        assert response.status_code == 200
        data = response.json()
        assert data["hostname"] == HOST
        assert data["owner"] == "alice@example.com"
        assert data["new_key"]
        assert len(data["keys"]) == 1
        assert data["keys"][0]["key_prefix"] == store.hash_key(data["new_key"])[:8]
        assert data["current_ip"] is None
        assert data["history"] == []
        assert store.get_owner(HOST) == "alice-id"

    def test_second_visit_shows_existing_state(self, client):
        client.get(f"/manage/{HOST}", headers=OWNER_HEADERS)
        data = client.get(f"/manage/{HOST}", headers=OWNER_HEADERS).json()
        assert data["new_key"] is None
        assert len(data["keys"]) == 1

    def test_non_owner_forbidden(self, client):
        client.get(f"/manage/{HOST}", headers=OWNER_HEADERS)
        response = client.get(f"/manage/{HOST}", headers=OTHER_HEADERS)
        assert response.status_code == 403
        assert response.json()["detail"] == "Forbidden: you don't own this hostname"

    def test_hostname_outside_zone(self, client, store):
        response = client.get("/manage/router.example.org", headers=OWNER_HEADERS)
        assert response.status_code == 404
        assert store.get_owner("router.example.org") is None

    def test_current_ip_from_history(self, client, basic_auth):
        secret = client.get(f"/manage/{HOST}", headers=OWNER_HEADERS).json()["new_key"]
        client.get("/nic/update", params={"hostname": HOST, "myip": "203.0.113.42"},
                   headers=basic_auth("mydevice", secret))
        client.get("/nic/update", params={"hostname": HOST, "myip": "not-an-ip"},
                   headers=basic_auth("mydevice", secret))

        data = client.get(f"/manage/{HOST}", headers=OWNER_HEADERS).json()
        assert data["current_ip"] == "203.0.113.42"
        assert data["total_updates"] == 2
        assert [h["result_code"] for h in data["history"]] == ["911", "good"]
        assert data["keys"][0]["use_count"] == 2

    def test_store_outage(self, client, store, monkeypatch):
        def unavailable(*args, **kwargs):
            raise StoreUnavailable("down")
        monkeypatch.setattr(store, "claim_hostname", unavailable)
        response = client.get(f"/manage/{HOST}", headers=OWNER_HEADERS)
        assert response.status_code == 503


class TestKeyLifecycle:
    """newkey, revoke and revokeall"""

    def test_new_key(self, client, store):
        client.get(f"/manage/{HOST}", headers=OWNER_HEADERS)
        response = client.post(f"/manage/{HOST}/newkey", headers=OWNER_HEADERS)
        assert response.status_code == 200
        data = response.json()
        secret = data["api_key"]
        assert store.validate_key(secret) == (HOST, True)
        assert data["router_config"]["service"] == "Custom"
        assert data["router_config"]["username"] == "mydevice"
        assert data["router_config"]["password"] == secret
        assert data["router_config"]["server"] == "ddns.example.com"
        assert len(store.list_keys_for_hostname(HOST)) == 2

    def test_new_key_requires_ownership(self, client, store):
        assert client.get(f"/manage/{HOST}/newkey", headers=OWNER_HEADERS).status_code == 403
        client.get(f"/manage/{HOST}", headers=OWNER_HEADERS)
        assert client.get(f"/manage/{HOST}/newkey", headers=OTHER_HEADERS).status_code == 403
        assert len(store.list_keys_for_hostname(HOST)) == 1

    def test_new_key_unauthenticated(self, client):
        response = client.get(f"/manage/{HOST}/newkey", follow_redirects=False)
        assert response.status_code == 302

    def test_revoke_by_dashboard_prefix(self, client, basic_auth, store):
        dashboard = client.get(f"/manage/{HOST}", headers=OWNER_HEADERS).json()
        prefix = dashboard["keys"][0]["key_prefix"]

        response = client.get(f"/manage/{HOST}/revoke", params={"keyhash": prefix}, headers=OWNER_HEADERS)
        assert response.status_code == 200
        assert response.json() == {"hostname": HOST, "keyhash": prefix, "revoked": True}

        update = client.get("/nic/update", params={"hostname": HOST, "myip": "203.0.113.42"},
                            headers=basic_auth("mydevice", dashboard["new_key"]))
        assert update.text == "badauth"

        again = client.get(f"/manage/{HOST}/revoke", params={"keyhash": prefix}, headers=OWNER_HEADERS)
        assert again.json()["revoked"] is False

    def test_revoke_by_full_hash(self, client, store):
        secret = client.get(f"/manage/{HOST}", headers=OWNER_HEADERS).json()["new_key"]
        key_hash = store.hash_key(secret)
        response = client.post(f"/manage/{HOST}/revoke", params={"keyhash": key_hash}, headers=OWNER_HEADERS)
        assert response.json()["revoked"] is True
        assert not store.get_key(key_hash).is_active

    def test_revoke_key_of_other_hostname(self, client, store):
        client.get(f"/manage/{HOST}", headers=OWNER_HEADERS)
        other_secret = client.get("/manage/other.ddns.example.com", headers=OTHER_HEADERS).json()["new_key"]
        other_hash = store.hash_key(other_secret)

        response = client.get(f"/manage/{HOST}/revoke", params={"keyhash": other_hash}, headers=OWNER_HEADERS)
        assert response.json()["revoked"] is False
        assert store.get_key(other_hash).is_active

    def test_revoke_requires_ownership(self, client, store):
        secret = client.get(f"/manage/{HOST}", headers=OWNER_HEADERS).json()["new_key"]
        response = client.get(f"/manage/{HOST}/revoke", params={"keyhash": store.hash_key(secret)},
                              headers=OTHER_HEADERS)
        assert response.status_code == 403
        assert store.get_key(store.hash_key(secret)).is_active

    def test_revoke_all(self, client, store):
        client.get(f"/manage/{HOST}", headers=OWNER_HEADERS)
        client.post(f"/manage/{HOST}/newkey", headers=OWNER_HEADERS)
        client.post(f"/manage/{HOST}/newkey", headers=OWNER_HEADERS)

        response = client.post(f"/manage/{HOST}/revokeall", headers=OWNER_HEADERS)
        assert response.status_code == 200
        assert response.json() == {"hostname": HOST, "revoked": 3}
        assert not any(k.is_active for k in store.list_keys_for_hostname(HOST))

        assert client.post(f"/manage/{HOST}/revokeall", headers=OWNER_HEADERS).json()["revoked"] == 0

    def test_revoke_all_requires_ownership(self, client):
        client.get(f"/manage/{HOST}", headers=OWNER_HEADERS)
        assert client.post(f"/manage/{HOST}/revokeall", headers=OTHER_HEADERS).status_code == 403


class TestOwnershipService:
    """Service level behaviour not visible through HTTP"""

    @pytest.fixture
    def service(self, store):
        return OwnershipService(store, "example.com", "ddns")

    @pytest.mark.asyncio
    async def test_claim_idempotent_for_owner(self, service):
        alice = Identity("alice-id", "alice@example.com")
        assert await service.claim(HOST, alice) is True
        assert await service.claim(HOST, alice) is False

    @pytest.mark.asyncio
    async def test_revoke_all_continues_on_error(self, service, store, monkeypatch):
        alice = Identity("alice-id", "alice@example.com")
        await service.claim(HOST, alice)
        for _ in range(3):
            await service.generate_key(HOST, alice)

        keys = store.list_keys_for_hostname(HOST)
        failing = keys[1].key_hash
        original = store.revoke_key

        def flaky_revoke(key_hash):
            if key_hash == failing:
                raise StoreUnavailable("timeout")
            return original(key_hash)
        monkeypatch.setattr(store, "revoke_key", flaky_revoke)

        assert await service.revoke_all(HOST, alice) == 2
        assert store.get_key(failing).is_active


class TestAdminStats:
    """GET /manage/admin/stats, gated on the admin role"""

    ADMIN_HEADERS = {
        'X-Auth-Request-User': 'carol-id',
        'X-Auth-Request-Email': 'carol@example.com',
        'X-Auth-Request-Groups': 'Users, DDNSAdmin',
    }

    def test_admin_sees_totals(self, client, store):
        client.get(f"/manage/{HOST}", headers=OWNER_HEADERS)
        client.post(f"/manage/{HOST}/newkey", headers=OWNER_HEADERS)
        client.get("/manage/other.ddns.example.com", headers=OTHER_HEADERS)

        response = client.get("/manage/admin/stats", headers=self.ADMIN_HEADERS)
        assert response.status_code == 200
        assert response.json() == {"total_hostnames": 2, "total_owners": 2, "active_keys": 3}

    def test_non_admin_forbidden(self, client):
        response = client.get("/manage/admin/stats", headers=OWNER_HEADERS)
        assert response.status_code == 403
        assert response.json()["detail"] == "Admin access required"

    def test_unauthenticated_redirects(self, client):
        response = client.get("/manage/admin/stats", follow_redirects=False)
        assert response.status_code == 302

    def test_role_is_configurable(self, store, dns_provider):
        settings = Settings(DNS_ZONE_NAME="example.com", DDNS_SUBDOMAIN="ddns", ADMIN_ROLE="NetOps")
        client = TestClient(create_app(settings, store=store, dns_provider=dns_provider))
        assert client.get("/manage/admin/stats", headers=self.ADMIN_HEADERS).status_code == 403
        headers = {**self.ADMIN_HEADERS, 'X-Auth-Request-Groups': 'NetOps'}
        assert client.get("/manage/admin/stats", headers=headers).status_code == 200

    def test_admin_access_is_audited(self, client, caplog):
        with caplog.at_level("INFO", logger="keyddns.audit"):
            client.get("/manage/admin/stats", headers=OWNER_HEADERS)
            client.get("/manage/admin/stats", headers=self.ADMIN_HEADERS)
        lines = [r.getMessage() for r in caplog.records if r.name == "keyddns.audit"]
        assert any(line.startswith("AUDIT: WEB VIEW admin principal=alice@example.com") and "success=false" in line
                   for line in lines)
        assert any(line.startswith("AUDIT: WEB VIEW admin principal=carol@example.com") and "success=false" not in line
                   for line in lines)
