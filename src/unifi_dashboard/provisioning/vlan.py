"""VLAN provisioning: controller network + SSID, and a matching RouterOS script.

The controller side is created as a ``vlan-only`` network because routing and
DHCP for the VLAN live on the site router, which is configured from the
generated script.
"""

import ipaddress
import logging
import re

from pydantic import BaseModel, Field, field_validator

from unifi_dashboard.api.unifi import ControllerSession
from unifi_dashboard.errors import ConflictError

logger = logging.getLogger(__name__)

DHCP_POOL_START = 10
DHCP_POOL_END = 254

_IDENTIFIER = re.compile(r"^[A-Za-z0-9._\-]+$")
_UNSAFE_TEXT = re.compile(r'[\x00-\x1f\x7f"\\$]')


class VlanRequest(BaseModel):
    site: str = Field(min_length=1)
    vlan_id: int = Field(ge=1, le=4094)
    network_name: str = Field(min_length=1, max_length=64)
    ssid: str = Field(min_length=1, max_length=32)
    passphrase: str = Field(min_length=8, max_length=63)
    subnet: str
    parent_interface: str = Field(default="bridge", min_length=1)
    dns_servers: list[str] = []

    @field_validator("site", "network_name", "ssid", "parent_interface", mode="before")
    @classmethod
    def _strip(cls, value):
        return value.strip() if isinstance(value, str) else value

    @field_validator("site", "parent_interface")
    @classmethod
    def _identifier(cls, value: str) -> str:
        if not _IDENTIFIER.match(value):
            raise ValueError("only letters, digits, '.', '_' and '-' are allowed")
        return value

    @field_validator("network_name", "ssid")
    @classmethod
    def _script_safe(cls, value: str) -> str:
        # Both land in the router script: inside a quoted string and a comment line
        if _UNSAFE_TEXT.search(value):
            raise ValueError("control characters, quotes, '\\' and '$' are not allowed")
        return value

    @field_validator("subnet")
    @classmethod
    def _subnet_is_slash_24(cls, value: str) -> str:
        value = value.strip()
        try:
            network = ipaddress.IPv4Network(value if "/" in value else f"{value}/24")
        except ValueError as e:
            raise ValueError("subnet must be a /24 base address such as 10.40.0.0") from e
        if network.prefixlen != 24:
            raise ValueError("subnet must be a /24")
        return str(network)

    @field_validator("dns_servers")
    @classmethod
    def _dns_are_ipv4(cls, value: list[str]) -> list[str]:
        servers = []
        for server in value:
            try:
                servers.append(str(ipaddress.IPv4Address(server.strip())))
            except ValueError as e:
                raise ValueError(f"invalid DNS server: {server}") from e
        return servers

    @property
    def network(self) -> ipaddress.IPv4Network:
        return ipaddress.IPv4Network(self.subnet)

    @property
    def gateway(self) -> ipaddress.IPv4Address:
        return self.network.network_address + 1


def render_router_script(request: VlanRequest) -> str:
    """RouterOS commands for the VLAN interface, gateway address and DHCP."""
    net = request.network
    base = net.network_address
    iface = f"vlan{request.vlan_id}"
    pool = f"pool-vlan{request.vlan_id}"
    dns = ",".join(request.dns_servers) or str(request.gateway)

    lines = [
        f"# {request.network_name} (VLAN {request.vlan_id}) on site {request.site}",
        f"# SSID: {request.ssid}",
        "/interface vlan",
        f'add name={iface} vlan-id={request.vlan_id} interface={request.parent_interface} comment="{request.network_name}"',
        "/ip address",
        f"add address={request.gateway}/{net.prefixlen} interface={iface} network={base}",
        "/ip pool",
        f"add name={pool} ranges={base + DHCP_POOL_START}-{base + DHCP_POOL_END}",
        "/ip dhcp-server",
        f"add name=dhcp-{iface} interface={iface} address-pool={pool} disabled=no",
        "/ip dhcp-server network",
        f"add address={net} gateway={request.gateway} dns-server={dns}",
    ]
    return "\n".join(lines) + "\n"


def _names(entries: list[dict]) -> set[str]:
    return {str(entry.get("name", "")).strip().lower() for entry in entries}


async def _remove_network(session: ControllerSession, request: VlanRequest, network_id: str):
    """Undo a network whose SSID could not be created. Leaves the original error to the caller."""
    if not network_id:
        logger.error(f"SSID creation failed and network {request.network_name} has no id to remove")
        return
    try:
        await session.delete_network(request.site, network_id)
        logger.warning(f"SSID creation failed, removed network {request.network_name} from site {request.site}")
    except Exception as e:
        logger.error(f"SSID creation failed and network {request.network_name} ({network_id}) could not be removed: {e}")


async def provision_vlan(session: ControllerSession, request: VlanRequest) -> str:
    """Create the network and SSID on the controller, then return the router script."""
    networks = await session.list_networks(request.site)
    if request.network_name.lower() in _names(networks):
        raise ConflictError(f"Network '{request.network_name}' already exists on this site")
    if any(net.get("vlan_enabled") and str(net.get("vlan")) == str(request.vlan_id) for net in networks):
        raise ConflictError(f"VLAN {request.vlan_id} is already in use on this site")

    wlans = await session.list_wlans(request.site)
    if request.ssid.lower() in _names(wlans):
        raise ConflictError(f"SSID '{request.ssid}' already exists on this site")
    groups = await session.list_user_groups(request.site)

    network = await session.create_network(request.site, {
        "name": request.network_name,
        "purpose": "vlan-only",
        "vlan_enabled": True,
        "vlan": request.vlan_id,
        "enabled": True,
    })
    logger.info(f"Created network {request.network_name} (VLAN {request.vlan_id}) on site {request.site}")

    wlan = {
        "name": request.ssid,
        "x_passphrase": request.passphrase,
        "security": "wpapsk",
        "wpa_mode": "wpa2",
        "wpa_enc": "ccmp",
        "enabled": True,
        "networkconf_id": network.get("_id", ""),
    }
    if groups:
        wlan["usergroup_id"] = groups[0].get("_id", "")
    try:
        await session.create_wlan(request.site, wlan)
    except Exception:
        await _remove_network(session, request, network.get("_id", ""))
        raise
    logger.info(f"Created SSID {request.ssid} on site {request.site}")

    return render_router_script(request)
