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

from keyddns.engine import hostname_in_scope
from keyddns.hostname import expand_hostname, first_label, is_short_hostname, resolve_record_name


class TestRecordName:
    @pytest.mark.parametrize("hostname,expected", [
        ("wan1.mro.tru.ddns.example.com", "wan1.mro.tru.ddns"),
        ("mydevice.ddns.example.com", "mydevice.ddns"),
        ("wan1.ftl.cts.example.com", "wan1.ftl.cts"),
        ("host.example.com", "host"),
        ("MyDevice.DDNS.Example.COM.", "mydevice.ddns"),
        ("ddns.example.com", "ddns"),
    ])
    def test_accepted(self, hostname, expected):
        assert resolve_record_name(hostname, "example.com", "ddns") == expected

    @pytest.mark.parametrize("hostname", [
        "example.com",
        ".ddns.example.com",
        "host.example.org",
        "notexample.com",
        "bad_label.example.com",
        "sp ace.example.com",
        "a..b.example.com",
        "",
    ])
    def test_rejected(self, hostname):
        assert resolve_record_name(hostname, "example.com", "ddns") is None

    def test_without_subdomain(self):
        assert resolve_record_name("router.example.com", "example.com", "") == "router"


class TestShortHostname:
    def test_expand(self):
        assert is_short_hostname("mydevice")
        assert expand_hostname("mydevice", "example.com", "ddns") == "mydevice.ddns.example.com"
        assert expand_hostname("MyDevice", "example.com", "") == "mydevice.example.com"

    def test_full_name_unchanged(self):
        assert not is_short_hostname("mydevice.ddns.example.com")
        assert expand_hostname("mydevice.ddns.example.com", "example.com", "ddns") == "mydevice.ddns.example.com"

    def test_first_label(self):
        assert first_label("mydevice.ddns.example.com") == "mydevice"


class TestScope:
    def test_same_hostname(self):
        assert hostname_in_scope("a.ddns.example.com", "A.ddns.example.com.")

    def test_immediate_child(self):
        assert hostname_in_scope("wan1.a.ddns.example.com", "a.ddns.example.com")

    def test_grandchild_rejected(self):
        assert not hostname_in_scope("x.wan1.a.ddns.example.com", "a.ddns.example.com")

    def test_other_hostname_rejected(self):
        assert not hostname_in_scope("a.ddns.example.com", "b.ddns.example.com")
        assert not hostname_in_scope("a.ddns.example.com", "wan1.a.ddns.example.com")
        assert not hostname_in_scope("xa.ddns.example.com", "a.ddns.example.com")
