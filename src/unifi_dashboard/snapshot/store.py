"""SQLite snapshot of every site's device roster.

Populated by ``unifi-dashboard-snapshot`` and read by MAC lookups when
``DEVICE_SOURCE=snapshot``, so searches do not have to walk the controller.
"""

import asyncio
import logging
import sqlite3
from contextlib import closing

from unifi_dashboard.errors import UpstreamError
from unifi_dashboard.models import Device, Site, sort_sites

logger = logging.getLogger(__name__)

SCHEMA = """
CREATE TABLE IF NOT EXISTS devices (
    mac TEXT PRIMARY KEY,
    name TEXT,
    site_id TEXT,
    site_desc TEXT
)
"""

UPSERT = """
INSERT INTO devices (mac, name, site_id, site_desc)
VALUES (?, ?, ?, ?)
ON CONFLICT(mac) DO UPDATE SET
    name = excluded.name,
    site_id = excluded.site_id,
    site_desc = excluded.site_desc
"""


class SnapshotStore:
    """Thin wrapper around the devices table."""

    def __init__(self, path: str):
        self.path = path

    def _connect(self) -> sqlite3.Connection:
        return sqlite3.connect(self.path)

    def init_db(self):
        with closing(self._connect()) as conn, conn:
            conn.execute(SCHEMA)

    def save_devices(self, site: Site, devices: list[Device]) -> int:
        """Upsert *devices* for *site*; a MAC that moved sites is re-homed."""
        rows = [(d.mac.lower(), d.name, site.id, site.description) for d in devices if d.mac]
        with closing(self._connect()) as conn, conn:
            conn.executemany(UPSERT, rows)
        return len(rows)

    def sites(self) -> list[Site]:
        with closing(self._connect()) as conn:
            rows = conn.execute("SELECT DISTINCT site_id, site_desc FROM devices").fetchall()
        return sort_sites([Site(id=site_id, description=desc or site_id) for site_id, desc in rows])

    def devices_for_site(self, site: Site) -> list[Device]:
        with closing(self._connect()) as conn:
            rows = conn.execute(
                "SELECT mac, name FROM devices WHERE site_id = ? ORDER BY name", (site.id,)
            ).fetchall()
        return [Device(mac=mac, name=name or "", site=site.id) for mac, name in rows]

    def count(self) -> int:
        with closing(self._connect()) as conn:
            return conn.execute("SELECT COUNT(*) FROM devices").fetchone()[0]


class SnapshotSession:
    """Read side of the snapshot, shaped like a controller session.

    Database failures surface as UpstreamError, the same way a controller
    request failure does, so searches skip the site and routes answer 502.
    """

    def __init__(self, store: SnapshotStore):
        self.store = store

    async def _read(self, query, *args):
        try:
            return await asyncio.to_thread(query, *args)
        except sqlite3.Error as e:
            raise UpstreamError(f"snapshot database {self.store.path} read failed: {e}") from e

    async def list_sites(self) -> list[Site]:
        return await self._read(self.store.sites)

    async def list_devices(self, site: Site) -> list[Device]:
        return await self._read(self.store.devices_for_site, site)

    async def close(self):
        pass
