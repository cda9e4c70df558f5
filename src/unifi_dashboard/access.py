"""Source-address allowlist applied to every inbound request."""

import ipaddress
import logging
from dataclasses import dataclass

from starlette.middleware.base import BaseHTTPMiddleware
from starlette.requests import Request
from starlette.responses import JSONResponse

from unifi_dashboard.errors import AccessDeniedError

logger = logging.getLogger(__name__)

IPNetwork = ipaddress.IPv4Network | ipaddress.IPv6Network
IPAddress = ipaddress.IPv4Address | ipaddress.IPv6Address


@dataclass(frozen=True)
class AllowRule:
    network: IPNetwork

    @classmethod
    def parse(cls, value: str) -> "AllowRule":
        """Accept a single address or a CIDR block.

        IPv4-mapped IPv6 blocks (``::ffff:10.0.0.0/104``) are stored as their
        IPv4 equivalent, since client addresses are unwrapped the same way.
        """
        network = ipaddress.ip_network(value.strip(), strict=False)
        mapped = getattr(network.network_address, "ipv4_mapped", None)
        if mapped is not None and network.prefixlen >= 96:
            network = ipaddress.IPv4Network(f"{mapped}/{network.prefixlen - 96}")
        return cls(network)

    def matches(self, address: IPAddress) -> bool:
        return address.version == self.network.version and address in self.network


def parse_address(value: str) -> IPAddress | None:
    """Parse *value*, unwrapping IPv4-mapped IPv6. Returns None when invalid."""
    try:
        address = ipaddress.ip_address((value or "").strip())
    except ValueError:
        return None
    if isinstance(address, ipaddress.IPv6Address) and address.ipv4_mapped:
        return address.ipv4_mapped
    return address


class AccessFilter:
    """Any-match over a fixed list of allow rules. Fails closed."""

    def __init__(self, rules: list[AllowRule]):
        self.rules = tuple(rules)

    @classmethod
    def from_strings(cls, values: list[str]) -> "AccessFilter":
        rules = []
        for value in values:
            try:
                rules.append(AllowRule.parse(value))
            except ValueError:
                logger.warning(f"Ignoring invalid allowlist entry: {value!r}")
        return cls(rules)

    def is_allowed(self, source_address: str) -> bool:
        address = parse_address(source_address)
        if address is None:
            return False
        return any(rule.matches(address) for rule in self.rules)


class AllowlistMiddleware(BaseHTTPMiddleware):
    """Reject requests from non-allowlisted sources before any handler runs.

    The source is ``request.client.host``. Behind a reverse proxy, uvicorn's
    ProxyHeadersMiddleware runs first and rewrites it from X-Forwarded-For,
    but only for connections coming from a trusted proxy.
    """

    def __init__(self, app, access: AccessFilter):
        super().__init__(app)
        self.access = access

    async def dispatch(self, request: Request, call_next):
        address = request.client.host if request.client else ""
        if not self.access.is_allowed(address):
            logger.warning(f"Access denied for {address or 'unknown source'}: {request.method} {request.url.path}")
            denied = AccessDeniedError()
            return JSONResponse({"error": denied.message}, status_code=denied.status_code)
        return await call_next(request)
