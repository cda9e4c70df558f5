"""Fan-out MAC search across controller sites.

The site list is split in two: the first half is scanned front to back and
the second half back to front, by two concurrent tasks. Fetches inside one
direction are sequential to keep load on the controller bounded. Both tasks
share one :class:`SearchJob`; the first match claims it and every other scan
stops at its next check point.
"""

import asyncio
import logging
import re
from dataclasses import dataclass, field
from typing import AsyncIterator, Protocol

from unifi_dashboard.errors import UpstreamError, ValidationError
from unifi_dashboard.models import Device, Site
from unifi_dashboard.search.events import DoneEvent, FoundEvent, ProgressEvent, SearchEvent

logger = logging.getLogger(__name__)

_SEPARATORS = re.compile(r"[\s:.\-]")
_HEX12 = re.compile(r"^[0-9a-f]{12}$")

_END = object()


class DeviceSource(Protocol):
    async def list_sites(self) -> list[Site]: ...

    async def list_devices(self, site: Site) -> list[Device]: ...


def canonical_mac(value: str) -> str:
    """Lowercase *value* and drop separators, without validating it."""
    return _SEPARATORS.sub("", (value or "").lower())


def normalize_mac(value: str) -> str:
    """Return *value* as 12 lowercase hex digits or raise ValidationError."""
    mac = canonical_mac(value)
    if not mac:
        raise ValidationError("Missing MAC address")
    if not _HEX12.match(mac):
        raise ValidationError(f"Invalid MAC address: {value.strip()}")
    return mac


def format_mac(mac: str) -> str:
    """aabbccddeeff -> aa:bb:cc:dd:ee:ff"""
    return ":".join(mac[i:i + 2] for i in range(0, len(mac), 2))


def split_sites(sites: list[Site]) -> tuple[list[Site], list[Site]]:
    """Forward half and reversed back half of *sites*."""
    half = (len(sites) + 1) // 2
    return list(sites[:half]), list(reversed(sites[half:]))


@dataclass
class SearchJob:
    target_mac: str
    total_sites: int
    sites_checked: int = 0
    found: bool = False
    timed_out: bool = False
    result: FoundEvent | None = None
    lock: asyncio.Lock = field(default_factory=asyncio.Lock, repr=False)

    @property
    def finished(self) -> bool:
        return self.found or self.timed_out

    async def should_visit(self) -> bool:
        async with self.lock:
            return not self.finished

    async def record(self, site: Site, match: Device | None) -> SearchEvent | None:
        """Count *site* as checked and return the event to publish, if any."""
        async with self.lock:
            if self.finished:
                return None
            if self.sites_checked < self.total_sites:
                self.sites_checked += 1
            if match is None:
                return ProgressEvent(checked=self.sites_checked, total=self.total_sites)
            self.found = True
            self.result = FoundEvent(
                site=site.description,
                site_id=site.id,
                device_name=match.display_name,
                mac=format_mac(canonical_mac(match.mac)),
                checked=self.sites_checked,
                total=self.total_sites,
            )
            return self.result

    async def expire(self):
        async with self.lock:
            if not self.found:
                self.timed_out = True


def _match(devices: list[Device], target: str) -> Device | None:
    for device in devices:
        if canonical_mac(device.mac) == target:
            return device
    return None


async def _fetch_devices(source: DeviceSource, site: Site, site_timeout: float | None) -> list[Device]:
    try:
        if site_timeout:
            return await asyncio.wait_for(source.list_devices(site), site_timeout)
        return await source.list_devices(site)
    except asyncio.TimeoutError:
        logger.warning(f"Device lookup for site {site.description} timed out after {site_timeout}s")
    except UpstreamError as e:
        logger.warning(f"Device lookup for site {site.description} failed: {e}")
    return []


async def _scan(
    source: DeviceSource,
    sites: list[Site],
    job: SearchJob,
    queue: asyncio.Queue,
    site_timeout: float | None,
):
    for site in sites:
        if not await job.should_visit():
            return
        devices = await _fetch_devices(source, site, site_timeout)
        event = await job.record(site, _match(devices, job.target_mac))
        if event is None:
            return
        queue.put_nowait(event)
        if isinstance(event, FoundEvent):
            logger.info(f"MAC {format_mac(job.target_mac)} found at site {site.description}")
            return


async def _close_queue(tasks: list[asyncio.Task], queue: asyncio.Queue):
    results = await asyncio.gather(*tasks, return_exceptions=True)
    for result in results:
        if isinstance(result, Exception):
            queue.put_nowait(result)
    queue.put_nowait(_END)


async def search_for_mac(
    source: DeviceSource,
    sites: list[Site],
    target_mac: str,
    *,
    site_timeout: float | None = None,
    deadline: float | None = None,
) -> AsyncIterator[SearchEvent]:
    """Search *sites* for *target_mac*, yielding progress and one terminal event.

    The terminal event is either a FoundEvent or a DoneEvent. Closing the
    generator early cancels both scans.
    """
    target = normalize_mac(target_mac)
    job = SearchJob(target_mac=target, total_sites=len(sites))
    queue: asyncio.Queue = asyncio.Queue()

    logger.info(f"Searching {len(sites)} sites for MAC {format_mac(target)}")
    scans = [
        asyncio.create_task(_scan(source, part, job, queue, site_timeout))
        for part in split_sites(sites)
    ]
    closer = asyncio.create_task(_close_queue(scans, queue))

    loop = asyncio.get_running_loop()
    expires_at = loop.time() + deadline if deadline else None

    try:
        while True:
            remaining = None if expires_at is None else max(expires_at - loop.time(), 0)
            try:
                event = await asyncio.wait_for(queue.get(), remaining)
            except asyncio.TimeoutError:
                await job.expire()
                if job.found:
                    # A match landed in the queue just as the deadline hit
                    yield job.result
                    return
                logger.warning(
                    f"MAC search for {format_mac(target)} hit the {deadline}s deadline "
                    f"after {job.sites_checked}/{job.total_sites} sites"
                )
                yield DoneEvent(found=False, checked=job.sites_checked, total=job.total_sites, timed_out=True)
                return

            if event is _END:
                break
            if isinstance(event, Exception):
                raise event
            yield event
            if isinstance(event, FoundEvent):
                return

        logger.info(f"MAC {format_mac(target)} not found in {job.total_sites} sites")
        yield DoneEvent(found=False, checked=job.sites_checked, total=job.total_sites)
    finally:
        for task in (*scans, closer):
            task.cancel()
        # Wait for the cancellations to land so no fetch outlives the search
        await asyncio.gather(*scans, closer, return_exceptions=True)
