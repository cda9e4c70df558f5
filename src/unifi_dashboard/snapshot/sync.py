"""Refresh the device snapshot from the live controller."""

import asyncio
import logging
import sys
from datetime import datetime

from unifi_dashboard.api.unifi import ControllerClient
from unifi_dashboard.config import (
    SNAPSHOT_DB,
    UNIFI_OS,
    UNIFI_PASSWORD,
    UNIFI_TIMEOUT,
    UNIFI_URL,
    UNIFI_USER,
    UNIFI_VERIFY_SSL,
)
from unifi_dashboard.errors import DashboardError, UpstreamError
from unifi_dashboard.snapshot.store import SnapshotStore

logger = logging.getLogger(__name__)


async def sync_snapshot(controller: ControllerClient, store: SnapshotStore) -> dict[str, int]:
    """Walk every site sequentially and upsert its devices. Returns per-site counts."""
    logger.info("Logging in...")
    session = await controller.login()
    try:
        store.init_db()
        logger.info("Fetching sites...")
        sites = await session.list_sites()

        results: dict[str, int] = {}
        for site in sites:
            try:
                devices = await session.list_devices(site)
            except UpstreamError as e:
                logger.warning(f"Failed to get devices for site {site.description}: {e}")
                results[site.description] = 0
                continue
            results[site.description] = await asyncio.to_thread(store.save_devices, site, devices)
            logger.info(f"  {site.description}: saved {results[site.description]} devices")
        return results
    finally:
        await session.close()


def main() -> int:
    logging.basicConfig(
        level=logging.INFO,
        format="%(asctime)s - %(levelname)s - %(message)s",
    )
    logger.info(f"Starting snapshot sync into {SNAPSHOT_DB}")
    start_time = datetime.now()

    controller = ControllerClient(
        UNIFI_URL,
        UNIFI_USER,
        UNIFI_PASSWORD,
        unifi_os=UNIFI_OS,
        verify_ssl=UNIFI_VERIFY_SSL,
        timeout=UNIFI_TIMEOUT,
    )
    store = SnapshotStore(SNAPSHOT_DB)

    try:
        results = asyncio.run(sync_snapshot(controller, store))
    except DashboardError as e:
        logger.error(f"Snapshot sync failed: {e}")
        return 1

    elapsed = (datetime.now() - start_time).total_seconds()
    logger.info(f"Done in {elapsed:.1f}s. Total devices saved: {sum(results.values())} across {len(results)} sites")
    return 0


if __name__ == "__main__":
    sys.exit(main())
