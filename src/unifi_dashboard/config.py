"""Configuration loaded from environment variables."""

import os


def _env_bool(name: str, default: bool = False) -> bool:
    value = os.environ.get(name)
    if value is None:
        return default
    return value.strip().lower() in ("1", "true", "yes", "on")


def _env_list(name: str, default: str = "") -> list[str]:
    return [part.strip() for part in os.environ.get(name, default).split(",") if part.strip()]


# HTTP listener
HOST = os.environ.get("HOST", "0.0.0.0")
PORT = int(os.environ.get("PORT", "5000"))

# UniFi controller (self-signed certificates are the norm, so verification is off by default)
UNIFI_URL = os.environ.get("UNIFI_URL", "https://localhost:8443")
UNIFI_USER = os.environ.get("UNIFI_USER", "")
UNIFI_PASSWORD = os.environ.get("UNIFI_PASSWORD", "")
UNIFI_OS = _env_bool("UNIFI_OS")  # UDM / Cloud Key Gen2+ use /api/auth/login and /proxy/network
UNIFI_VERIFY_SSL = _env_bool("UNIFI_VERIFY_SSL")
UNIFI_TIMEOUT = float(os.environ.get("UNIFI_TIMEOUT", "30"))

# Source addresses allowed to reach the dashboard (single IPs or CIDRs)
ALLOWED_SOURCES = _env_list("ALLOWED_SOURCES", "127.0.0.1,::1")
# Reverse proxies whose X-Forwarded-For is honoured (empty: use the socket peer)
TRUSTED_PROXIES = _env_list("TRUSTED_PROXIES")

# MAC search bounds, in seconds (0 disables)
MAC_SEARCH_SITE_TIMEOUT = float(os.environ.get("MAC_SEARCH_SITE_TIMEOUT", "20"))
MAC_SEARCH_DEADLINE = float(os.environ.get("MAC_SEARCH_DEADLINE", "120"))

# Where MAC lookups read device rosters from: "live" controller or "snapshot" database
DEVICE_SOURCE = os.environ.get("DEVICE_SOURCE", "live").strip().lower()
SNAPSHOT_DB = os.environ.get("SNAPSHOT_DB", "./devices.db")

DEVICE_SOURCES = ("live", "snapshot")
