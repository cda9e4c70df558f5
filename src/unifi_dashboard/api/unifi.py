"""Asynchronous UniFi Network controller client.

Supports classic controllers (``/api/login``) and UniFi OS consoles
(``/api/auth/login`` with the Network API under ``/proxy/network``).
Each call to :meth:`ControllerClient.login` returns an independent session
with its own cookie jar, so concurrent requests never share a login.
"""

import logging

import httpx

from unifi_dashboard.errors import AuthError, UpstreamError
from unifi_dashboard.models import Device, Site, sort_sites

logger = logging.getLogger(__name__)


class ControllerClient:
    """Factory for authenticated controller sessions."""

    def __init__(
        self,
        base_url: str,
        username: str,
        password: str,
        *,
        unifi_os: bool = False,
        verify_ssl: bool = False,
        timeout: float = 30.0,
        transport: httpx.AsyncBaseTransport | None = None,
    ):
        self.base_url = base_url.rstrip("/")
        self.username = username
        self.password = password
        self.unifi_os = unifi_os
        self.verify_ssl = verify_ssl
        self.timeout = timeout
        self._transport = transport

    @property
    def login_path(self) -> str:
        return "/api/auth/login" if self.unifi_os else "/api/login"

    @property
    def api_prefix(self) -> str:
        return "/proxy/network/api" if self.unifi_os else "/api"

    def _http(self) -> httpx.AsyncClient:
        return httpx.AsyncClient(
            base_url=self.base_url,
            verify=self.verify_ssl,
            timeout=self.timeout,
            transport=self._transport,
        )

    async def login(self) -> "ControllerSession":
        """Log in and return a session. Raises AuthError on any failure."""
        http = self._http()
        try:
            response = await http.post(
                self.login_path,
                json={"username": self.username, "password": self.password},
            )
        except httpx.HTTPError as e:
            await http.aclose()
            logger.error(f"Controller login to {self.base_url} failed: {e}")
            raise AuthError(f"login request failed: {e}") from e

        if response.is_error:
            await http.aclose()
            logger.error(f"Controller login rejected with HTTP {response.status_code}")
            raise AuthError(f"login rejected with HTTP {response.status_code}")

        if not http.cookies:
            await http.aclose()
            logger.error("Controller login returned no session cookie")
            raise AuthError("login returned no session cookie")

        # UniFi OS wants the CSRF token echoed on every write
        csrf = response.headers.get("x-csrf-token")
        if csrf:
            http.headers["X-CSRF-Token"] = csrf

        return ControllerSession(http, self.api_prefix)


class ControllerSession:
    """An authenticated session bound to one dashboard request."""

    def __init__(self, http: httpx.AsyncClient, api_prefix: str = "/api"):
        self._http = http
        self._prefix = api_prefix

    async def _request(self, method: str, path: str, payload: dict | None = None) -> list[dict]:
        url = f"{self._prefix}{path}"
        try:
            response = await self._http.request(method, url, json=payload)
        except httpx.HTTPError as e:
            raise UpstreamError(f"{method} {url} failed: {e}") from e

        if response.is_error:
            raise UpstreamError(f"{method} {url} returned HTTP {response.status_code}")

        try:
            body = response.json()
        except ValueError as e:
            raise UpstreamError(f"{method} {url} returned invalid JSON") from e

        if not isinstance(body, dict):
            raise UpstreamError(f"{method} {url} returned an unexpected payload")

        meta = body.get("meta") or {}
        if meta.get("rc") == "error":
            raise UpstreamError(f"{method} {url} failed: {meta.get('msg', 'unknown error')}")

        data = body.get("data")
        if not isinstance(data, list):
            raise UpstreamError(f"{method} {url} returned no data list")
        return data

    async def list_sites(self) -> list[Site]:
        data = await self._request("GET", "/self/sites")
        return sort_sites([Site.from_api(raw) for raw in data if raw.get("name")])

    async def list_devices(self, site: Site) -> list[Device]:
        data = await self._request("GET", f"/s/{site.id}/stat/device")
        return [Device.from_api(raw, site) for raw in data if raw.get("mac")]

    async def list_networks(self, site_id: str) -> list[dict]:
        return await self._request("GET", f"/s/{site_id}/rest/networkconf")

    async def create_network(self, site_id: str, payload: dict) -> dict:
        data = await self._request("POST", f"/s/{site_id}/rest/networkconf", payload)
        if not data:
            raise UpstreamError(f"network create on {site_id} returned nothing")
        return data[0]

    async def delete_network(self, site_id: str, network_id: str):
        await self._request("DELETE", f"/s/{site_id}/rest/networkconf/{network_id}")

    async def list_wlans(self, site_id: str) -> list[dict]:
        return await self._request("GET", f"/s/{site_id}/rest/wlanconf")

    async def create_wlan(self, site_id: str, payload: dict) -> dict:
        data = await self._request("POST", f"/s/{site_id}/rest/wlanconf", payload)
        if not data:
            raise UpstreamError(f"wlan create on {site_id} returned nothing")
        return data[0]

    async def list_user_groups(self, site_id: str) -> list[dict]:
        return await self._request("GET", f"/s/{site_id}/list/usergroup")

    async def close(self):
        await self._http.aclose()
