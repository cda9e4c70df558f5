"""
Pytest configuration for the UniFi dashboard tests.

Controller traffic is served by an in-process fake behind
httpx.MockTransport, so no test needs a real controller.
"""

import json
import re

import httpx
import pytest

from unifi_dashboard.api.unifi import ControllerClient

CONTROLLER_URL = "https://unifi.example.com:8443"
SESSION_COOKIE = "unifises=test-session"


def pytest_configure(config):
    """Configure pytest with custom markers."""
    config.addinivalue_line(
        "markers", "integration: mark test as integration test (requires a running controller)"
    )
    config.addinivalue_line(
        "markers", "unit: mark test as unit test"
    )


def ok(data):
    return httpx.Response(200, json={"meta": {"rc": "ok"}, "data": data})


class FakeController:
    """Minimal UniFi controller answering the endpoints the dashboard uses."""

    def __init__(
        self,
        sites=None,
        devices=None,
        networks=None,
        wlans=None,
        user_groups=None,
        login_status=200,
        login_cookie=True,
        failing_sites=(),
        failing_creates=(),
    ):
        self.sites = sites or []
        self.devices = devices or {}
        self.networks = networks or {}
        self.wlans = wlans or {}
        self.user_groups = user_groups or {}
        self.login_status = login_status
        self.login_cookie = login_cookie
        self.failing_sites = set(failing_sites)
        self.failing_creates = set(failing_creates)
        self.requests: list[tuple[str, str]] = []
        self.created: list[tuple[str, str, dict]] = []
        self.deleted: list[tuple[str, str]] = []

    def handler(self, request: httpx.Request) -> httpx.Response:
        self.requests.append((request.method, request.url.path))
        path = request.url.path

        if path in ("/api/login", "/api/auth/login"):
            if self.login_status != 200:
                return httpx.Response(
                    self.login_status,
                    json={"meta": {"rc": "error", "msg": "api.err.Invalid"}, "data": []},
                )
            headers = {"Set-Cookie": f"{SESSION_COOKIE}; Path=/"} if self.login_cookie else {}
            return httpx.Response(200, json={"meta": {"rc": "ok"}, "data": []}, headers=headers)

        if SESSION_COOKIE not in request.headers.get("cookie", ""):
            return httpx.Response(401, json={"meta": {"rc": "error", "msg": "api.err.LoginRequired"}})

        path = re.sub(r"^/proxy/network", "", path)
        if path == "/api/self/sites":
            return ok(self.sites)

        match = re.match(r"^/api/s/([^/]+)/(.+)$", path)
        if not match:
            return httpx.Response(404)
        site, rest = match.groups()

        if rest == "stat/device":
            if site in self.failing_sites:
                return httpx.Response(500, text="Internal Server Error")
            return ok(self.devices.get(site, []))
        if rest == "list/usergroup":
            return ok(self.user_groups.get(site, [{"_id": "ug-default", "name": "Default"}]))
        if rest in ("rest/networkconf", "rest/wlanconf"):
            store = self.networks if rest == "rest/networkconf" else self.wlans
            if request.method == "POST":
                if rest in self.failing_creates:
                    return httpx.Response(200, json={"meta": {"rc": "error", "msg": "api.err.WlanLimit"}, "data": []})
                payload = json.loads(request.content)
                created = {"_id": f"{rest.split('/')[1]}-{len(self.created) + 1}", **payload}
                self.created.append((site, rest, payload))
                store.setdefault(site, []).append(created)
                return ok([created])
            return ok(store.get(site, []))
        delete = re.match(r"^rest/networkconf/([^/]+)$", rest)
        if delete and request.method == "DELETE":
            network_id = delete.group(1)
            self.deleted.append((site, network_id))
            self.networks[site] = [n for n in self.networks.get(site, []) if n.get("_id") != network_id]
            return ok([])
        return httpx.Response(404)

    def client(self, **kwargs) -> ControllerClient:
        return ControllerClient(
            CONTROLLER_URL,
            "admin",
            "secret",
            transport=httpx.MockTransport(self.handler),
            **kwargs,
        )


@pytest.fixture
def sites():
    """Ten sites, deliberately out of description order."""
    return [
        {"name": f"site{i}", "desc": f"Site {chr(ord('J') - i)}"}
        for i in range(10)
    ]


@pytest.fixture
def fake_controller(sites):
    return FakeController(
        sites=sites,
        devices={
            "site0": [
                {"mac": "AA:BB:CC:00:00:01", "name": "ap-lobby", "board_rev": 17, "model": "U7PG2"},
                {"mac": "aa:bb:cc:00:00:02", "name": "", "model": "US8P60"},
            ],
            "site7": [
                {"mac": "aa:bb:cc:00:00:77", "name": "sw-core", "board_rev": 3},
            ],
        },
    )
