"""
Test the fan-out MAC search.
"""

import asyncio
import sqlite3

import pytest

from unifi_dashboard.errors import UpstreamError, ValidationError
from unifi_dashboard.models import Device, Site
from unifi_dashboard.search.events import DoneEvent, FoundEvent, ProgressEvent
from unifi_dashboard.search.mac import (
    format_mac,
    normalize_mac,
    search_for_mac,
    split_sites,
)
from unifi_dashboard.snapshot.store import SnapshotSession, SnapshotStore

TARGET = "aa:bb:cc:dd:ee:ff"


class FakeSource:
    """Device source with per-site rosters, failures and delays."""

    def __init__(self, rosters=None, failing=(), delays=None, default_delay=0.0):
        self.rosters = rosters or {}
        self.failing = set(failing)
        self.delays = delays or {}
        self.default_delay = default_delay
        self.calls: list[str] = []

    async def list_sites(self):
        return make_sites(len(self.rosters))

    async def list_devices(self, site: Site):
        self.calls.append(site.id)
        await asyncio.sleep(self.delays.get(site.id, self.default_delay))
        if site.id in self.failing:
            raise UpstreamError(f"{site.id} unreachable")
        return [
            Device(mac=mac, name=name, site=site.id)
            for mac, name in self.rosters.get(site.id, [])
        ]


def make_sites(count):
    return [Site(id=f"site-{i}", description=f"Site {i}") for i in range(count)]


def run_search(source, sites, mac=TARGET, **kwargs):
    async def collect():
        return [event async for event in search_for_mac(source, sites, mac, **kwargs)]
    return asyncio.run(collect())


def assert_well_formed(events, total):
    """Progress counts strictly increase and the terminal event is last."""
    *progress, terminal = events
    assert all(isinstance(e, ProgressEvent) for e in progress)
    counts = [e.checked for e in progress]
    assert counts == sorted(set(counts))
    assert all(0 < c <= total for c in counts)
    assert isinstance(terminal, (FoundEvent, DoneEvent))
    if progress:
        assert terminal.checked >= counts[-1]
    assert terminal.checked <= total


class TestNormalization:
    """MAC formatting differences never cause misses."""

    @pytest.mark.unit
    @pytest.mark.parametrize("value", [
        "AA:BB:CC:DD:EE:FF",
        "aabbccddeeff",
        "aa-bb-cc-dd-ee-ff",
        "aabb.ccdd.eeff",
        "  Aa:bB:cC:Dd:eE:Ff  ",
    ])
    def test_equivalent_forms(self, value):
        assert normalize_mac(value) == "aabbccddeeff"

    @pytest.mark.unit
    @pytest.mark.parametrize("value", ["", "   ", "aa:bb:cc", "zz:bb:cc:dd:ee:ff", "aa:bb:cc:dd:ee:ff:00"])
    def test_invalid_rejected(self, value):
        with pytest.raises(ValidationError):
            normalize_mac(value)

    @pytest.mark.unit
    def test_format(self):
        assert format_mac("aabbccddeeff") == "aa:bb:cc:dd:ee:ff"

    @pytest.mark.unit
    def test_controller_mac_format_matches(self):
        source = FakeSource({"site-0": [("AA-BB-CC-DD-EE-FF", "ap-1")]})
        events = run_search(source, make_sites(1), "aabbccddeeff")
        assert isinstance(events[-1], FoundEvent)
        assert events[-1].mac == TARGET


class TestSplit:

    @pytest.mark.unit
    def test_even(self):
        forward, backward = split_sites(make_sites(10))
        assert [s.id for s in forward] == [f"site-{i}" for i in range(5)]
        assert [s.id for s in backward] == [f"site-{i}" for i in (9, 8, 7, 6, 5)]

    @pytest.mark.unit
    def test_odd(self):
        forward, backward = split_sites(make_sites(5))
        assert [s.id for s in forward] == ["site-0", "site-1", "site-2"]
        assert [s.id for s in backward] == ["site-4", "site-3"]

    @pytest.mark.unit
    def test_empty(self):
        assert split_sites([]) == ([], [])


class TestSearch:

    @pytest.mark.unit
    def test_reverse_scan_finds_late_site(self):
        """Target only at index 7 of 10: found by the reverse scan."""
        source = FakeSource({"site-7": [(TARGET, "sw-core")]})
        events = run_search(source, make_sites(10))

        assert_well_formed(events, 10)
        found = events[-1]
        assert isinstance(found, FoundEvent)
        assert found.site_id == "site-7"
        assert found.site == "Site 7"
        assert found.device_name == "sw-core"
        # the reverse scan reached 7 via 9 and 8, never going further
        assert "site-6" not in source.calls
        assert "site-5" not in source.calls
        assert source.calls.index("site-9") < source.calls.index("site-8") < source.calls.index("site-7")

    @pytest.mark.unit
    def test_failing_site_is_skipped(self):
        """A roster fetch error counts as checked and the search continues."""
        source = FakeSource({"site-4": [(TARGET, "ap-4")]}, failing={"site-3"})
        events = run_search(source, make_sites(10))

        assert_well_formed(events, 10)
        assert "site-3" in source.calls
        assert isinstance(events[-1], FoundEvent)
        assert events[-1].site_id == "site-4"

    @pytest.mark.unit
    def test_not_found_checks_every_site(self):
        source = FakeSource(failing={"site-2"})
        events = run_search(source, make_sites(7))

        assert_well_formed(events, 7)
        done = events[-1]
        assert isinstance(done, DoneEvent)
        assert done.found is False
        assert done.timed_out is False
        assert done.checked == done.total == 7
        assert len(events) == 8
        assert sorted(source.calls) == sorted(s.id for s in make_sites(7))

    @pytest.mark.unit
    def test_duplicate_mac_reported_once(self):
        source = FakeSource({
            "site-0": [(TARGET, "first")],
            "site-1": [(TARGET, "second")],
        })
        events = run_search(source, make_sites(2))

        found = [e for e in events if isinstance(e, FoundEvent)]
        assert len(found) == 1
        assert events[-1] is found[0]
        assert not any(isinstance(e, DoneEvent) for e in events)

    @pytest.mark.unit
    def test_duplicate_mac_in_both_halves(self):
        source = FakeSource({
            "site-1": [(TARGET, "front")],
            "site-8": [(TARGET, "back")],
        })
        events = run_search(source, make_sites(10))

        assert_well_formed(events, 10)
        assert sum(isinstance(e, FoundEvent) for e in events) == 1
        assert events[-1].site_id in ("site-1", "site-8")

    @pytest.mark.unit
    def test_empty_site_list(self):
        events = run_search(FakeSource(), [])

        assert len(events) == 1
        assert events[0] == DoneEvent(found=False, checked=0, total=0)

    @pytest.mark.unit
    def test_progress_percent_with_zero_total(self):
        assert ProgressEvent(checked=0, total=0).percent == 100
        assert ProgressEvent(checked=1, total=3).percent == 33

    @pytest.mark.unit
    def test_invalid_target_raises(self):
        with pytest.raises(ValidationError):
            run_search(FakeSource(), make_sites(3), "not-a-mac")

    @pytest.mark.unit
    def test_snapshot_read_failure_is_skipped(self, tmp_path, monkeypatch):
        store = SnapshotStore(str(tmp_path / "devices.db"))
        store.init_db()
        sites = make_sites(4)
        store.save_devices(sites[3], [Device(mac=TARGET, name="ap-3", site="site-3")])
        read = store.devices_for_site

        def flaky(site):
            if site.id == "site-1":
                raise sqlite3.OperationalError("database is locked")
            return read(site)

        monkeypatch.setattr(store, "devices_for_site", flaky)
        events = run_search(SnapshotSession(store), sites, mac="00:11:22:33:44:55")

        assert_well_formed(events, 4)
        assert events[-1] == DoneEvent(found=False, checked=4, total=4)


class TestTimeouts:

    @pytest.mark.unit
    def test_site_timeout_counts_as_checked(self):
        source = FakeSource(
            {"site-0": [(TARGET, "ap-0")]},
            delays={"site-0": 5.0},
        )
        events = run_search(source, make_sites(4), site_timeout=0.05)

        assert_well_formed(events, 4)
        assert isinstance(events[-1], DoneEvent)
        assert events[-1].checked == 4

    @pytest.mark.unit
    def test_deadline_ends_search(self):
        source = FakeSource(default_delay=5.0)
        events = run_search(source, make_sites(6), deadline=0.05)

        assert len(events) == 1
        done = events[0]
        assert isinstance(done, DoneEvent)
        assert done.timed_out is True
        assert done.found is False
        assert done.checked == 0
        assert done.total == 6

    @pytest.mark.unit
    def test_closing_stream_stops_scans(self):
        source = FakeSource(default_delay=0.01)

        async def first_then_close():
            events = search_for_mac(source, make_sites(20), TARGET)
            first = await events.__anext__()
            await events.aclose()
            calls = len(source.calls)
            await asyncio.sleep(0.1)
            return first, calls, len(source.calls)

        first, calls_at_close, calls_later = asyncio.run(first_then_close())
        assert isinstance(first, ProgressEvent)
        assert calls_later == calls_at_close

    @pytest.mark.unit
    def test_cancelled_fetches_finish_before_stream_ends(self):
        started, finished = [], []

        class SlowSource(FakeSource):
            async def list_devices(self, site):
                started.append(site.id)
                try:
                    await asyncio.sleep(5.0)
                finally:
                    finished.append(site.id)
                return []

        async def collect():
            events = [e async for e in search_for_mac(SlowSource(), make_sites(6), TARGET, deadline=0.05)]
            return events, list(finished)

        events, finished_at_end = asyncio.run(collect())
        assert events[-1].timed_out is True
        assert started
        assert sorted(finished_at_end) == sorted(started)
