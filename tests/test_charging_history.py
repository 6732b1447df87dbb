"""Tests for charging history paging, merging, filtering and caching."""

import threading
import time
from datetime import datetime
from unittest.mock import MagicMock

import pytest

from vfdashboard.client.charging_history import (
    CACHE_KEY,
    FILTER_ALL,
    FILTER_MONTH,
    FILTER_YEAR,
    ChargingHistoryCache,
    Empty,
    Sessions,
    available_months,
    compute_smart_default,
    extract_sessions,
    extract_total_records,
    filter_sessions,
    merge_sessions,
    summarize,
)
from vfdashboard.client.errors import VendorRequestError
from vfdashboard.infrastructure.persistent_store import InMemoryStore

from conftest import VIN_A, VIN_B

NOW = datetime(2025, 6, 15, 12, 0)
HOUR_MS = 3600 * 1000


def _stamp(year, month, day=10):
    return int(datetime(year, month, day, 12).timestamp() * 1000)


def _session(n, when=None, **extra):
    session = {'id': f's{n}', 'startChargeTime': when or _stamp(2019, 3),
               'chargingStationName': f'Station {n % 7}', 'totalKWCharged': 10, 'finalAmount': 1000}
    session.update(extra)
    return session


def _paged_client(sessions, page_size, failing_pages=(), total=None):
    client = MagicMock()

    def search(vin, page, size):
        if page in failing_pages:
            raise VendorRequestError('Charging history fetch failed: 500', 500)
        chunk = sessions[page * page_size:(page + 1) * page_size]
        return {'data': chunk, 'metadata': {'totalRecords': total or len(sessions)}}

    client.search_charging_history.side_effect = search
    return client


class Clock:
    def __init__(self, now=1_750_000_000_000):
        self.now = now

    def __call__(self):
        return self.now


class TestExtractSessions:
    """Tests for envelope shape detection."""

    @pytest.mark.parametrize('payload', [
        {'data': [{'id': 1}]},
        {'data': {'content': [{'id': 1}]}},
        {'content': [{'id': 1}]},
        [{'id': 1}],
    ])
    def test_known_shapes(self, payload):
        """Test every envelope shape yields the session list."""
        assert extract_sessions(payload) == Sessions([{'id': 1}])

    def test_empty_list(self):
        """Test a recognised but empty list is distinct from an unknown shape."""
        assert extract_sessions({'data': []}) == Empty('no_sessions')
        assert extract_sessions({'data': {'unexpected': True}}) == Empty('unrecognized')
        assert extract_sessions(None) == Empty('unrecognized')

    @pytest.mark.parametrize('payload, expected', [
        ({'metadata': {'totalRecords': 250}}, 250),
        ({'data': {'metadata': {'totalElements': '120'}}}, 120),
        ({'data': {'content': [], 'totalElements': 40}}, 40),
        ({'totalRecords': 7}, 7),
        ({'data': []}, 3),
        ([], 3),
    ])
    def test_total_records(self, payload, expected):
        """Test total count lookup falls back to the page length."""
        assert extract_total_records(payload, 3) == expected


class TestMergeAndFilter:
    """Tests for merging pages and applying time filters."""

    def test_merge_deduplicates_by_id(self):
        """Test overlapping pages merge to the size of their union."""
        first = [_session(n) for n in range(0, 20)]
        second = [_session(n) for n in range(15, 40)]

        merged = merge_sessions(first, second)

        assert len(merged) == 40
        assert len({s['id'] for s in merged}) == 40

    def test_merge_without_ids_uses_composite_identity(self):
        """Test sessions without ids are matched on time, station and creation date."""
        a = {'pluggedTime': 1, 'chargingStationName': 'A', 'createdDate': 5}
        b = {'pluggedTime': 1, 'chargingStationName': 'B', 'createdDate': 5}
        assert merge_sessions([a, b], [dict(a)]) == [a, b]

    def test_smart_default_current_month(self):
        """Test a session in the current month selects the month filter and stays visible."""
        sessions = [_session(n) for n in range(100)]
        sessions[37] = _session(37, when=_stamp(2025, 6, 3))

        selection = compute_smart_default(sessions, now=NOW)

        assert (selection.mode, selection.year, selection.month) == (FILTER_MONTH, 2025, 6)
        visible = filter_sessions(sessions, selection.mode, selection.year, selection.month)
        assert [s['id'] for s in visible] == ['s37']

    def test_smart_default_current_year(self):
        """Test sessions earlier this year select the year filter."""
        sessions = [_session(1, when=_stamp(2025, 2)), _session(2)]
        selection = compute_smart_default(sessions, now=NOW)
        assert (selection.mode, selection.year) == (FILTER_YEAR, 2025)

    def test_smart_default_all(self):
        """Test nothing this year falls back to all sessions."""
        assert compute_smart_default([_session(1)], now=NOW).mode == FILTER_ALL
        assert compute_smart_default([], now=NOW).mode == FILTER_ALL

    def test_available_months_labels(self):
        """Test month options are newest first with T<month>/<year> labels."""
        sessions = [_session(1, when=_stamp(2024, 3)), _session(2, when=_stamp(2024, 11)),
                    _session(3, when=_stamp(2023, 5))]
        assert [m['label'] for m in available_months(sessions, 2024)] == ['T11/2024', 'T3/2024']

    def test_summarize(self):
        """Test energy falls back to line items and cost to the gross amount."""
        sessions = [
            {'totalKWCharged': 12.5, 'finalAmount': 50000},
            {'items': [{'energy': 3}, {'energy': '4.5'}], 'amount': 30000},
        ]
        assert summarize(sessions) == {'session_count': 2, 'total_energy_kwh': 20.0,
                                       'total_cost': 80000.0}


class TestChargingHistoryCache:
    """Tests for fetching, caching and view state."""

    def test_failed_page_keeps_other_pages(self):
        """Test one failing page leaves the others merged and reports a warning."""
        sessions = [_session(n) for n in range(100)]
        client = _paged_client(sessions, 20, failing_pages={3})
        cache = ChargingHistoryCache(client, persistent_store=InMemoryStore(), page_size=20,
                                     concurrency=3)

        state = cache.fetch(VIN_A)

        ids = {s['id'] for s in state['sessions']}
        expected = {s['id'] for s in sessions[:60] + sessions[80:]}
        assert ids == expected
        assert state['warning'] == 'Incomplete results: 1 of 5 pages could not be loaded'
        assert state['error'] is None
        assert state['total_records'] == 100
        assert state['is_loading'] is False
        assert state['is_loading_more'] is False
        assert client.search_charging_history.call_count == 5

    def test_first_page_failure_is_an_error(self):
        """Test a failing first page surfaces as the error."""
        client = _paged_client([], 20, failing_pages={0})
        cache = ChargingHistoryCache(client, persistent_store=InMemoryStore())

        state = cache.fetch(VIN_A)

        assert state['error'] == 'Charging history fetch failed: 500'
        assert state['sessions'] == []

    def test_smart_default_applied_after_fetch(self):
        """Test the view opens on the current month when it has sessions."""
        today = datetime.now()
        sessions = [_session(n) for n in range(100)]
        sessions[37] = _session(37, when=int(today.timestamp() * 1000))
        cache = ChargingHistoryCache(_paged_client(sessions, 50),
                                     persistent_store=InMemoryStore(), page_size=50)

        state = cache.fetch(VIN_A)

        assert state['filter_mode'] == FILTER_MONTH
        assert [s['id'] for s in state['sessions']] == ['s37']
        assert state['total_loaded'] == 100

        cache.set_filter(FILTER_ALL)
        assert len(cache.state['sessions']) == 100

    def test_cache_hit_skips_network(self):
        """Test a fresh cached entry is served without any request."""
        shared = InMemoryStore()
        sessions = [_session(n) for n in range(10)]
        ChargingHistoryCache(_paged_client(sessions, 20), persistent_store=shared).fetch(VIN_A)

        client = MagicMock()
        state = ChargingHistoryCache(client, persistent_store=shared).fetch(VIN_A)

        client.search_charging_history.assert_not_called()
        assert len(state['sessions']) == 10

    def test_force_bypasses_cache(self):
        """Test force refetches even with a fresh entry."""
        client = _paged_client([_session(n) for n in range(10)], 20)
        cache = ChargingHistoryCache(client, persistent_store=InMemoryStore())
        cache.fetch(VIN_A)
        cache.fetch(VIN_A, force=True)
        assert client.search_charging_history.call_count == 2

    def test_expired_entry_is_a_miss(self):
        """Test entries older than the TTL are refetched."""
        clock = Clock()
        client = _paged_client([_session(n) for n in range(10)], 20)
        cache = ChargingHistoryCache(client, persistent_store=InMemoryStore(), ttl_hours=24,
                                     clock=clock)
        cache.fetch(VIN_A)

        clock.now += 25 * HOUR_MS
        cache.fetch(VIN_A)

        assert client.search_charging_history.call_count == 2

    def test_cache_keeps_newest_vins(self):
        """Test the persisted cache is bounded to the most recently fetched vins."""
        shared = InMemoryStore()
        clock = Clock()
        client = _paged_client([_session(n) for n in range(3)], 20)
        cache = ChargingHistoryCache(client, persistent_store=shared, max_vins=2, clock=clock)

        for vin in ('VIN-OLD', VIN_A, VIN_B):
            cache.fetch(vin)
            clock.now += HOUR_MS

        assert set(shared.get(CACHE_KEY)) == {VIN_A, VIN_B}

    def test_corrupt_cache_is_a_miss(self):
        """Test unparseable or malformed cache contents are ignored."""
        shared = InMemoryStore()
        shared.set_raw(CACHE_KEY, '{"broken":')
        client = _paged_client([_session(n) for n in range(4)], 20)

        state = ChargingHistoryCache(client, persistent_store=shared).fetch(VIN_A)
        assert len(state['sessions']) == 4

        shared.set(CACHE_KEY, {VIN_B: {'sessions': 'nope'}})
        state = ChargingHistoryCache(client, persistent_store=shared).fetch(VIN_B)
        assert len(state['sessions']) == 4
        assert client.search_charging_history.call_count == 2

    def test_switching_vin_resets_view(self):
        """Test sessions of the previous vin are not shown for the next one."""
        client = MagicMock()
        client.search_charging_history.side_effect = lambda vin, page, size: {
            'data': [_session(1, vin=vin)] if vin == VIN_A else []}
        cache = ChargingHistoryCache(client, persistent_store=InMemoryStore())

        cache.fetch(VIN_A)
        state = cache.fetch(VIN_B)

        assert state['loaded_vin'] == VIN_B
        assert state['sessions'] == []
        assert state['total_loaded'] == 0

    def test_summary_of_visible_sessions(self):
        """Test totals follow the current filter."""
        sessions = [_session(1, when=_stamp(2024, 3)), _session(2, when=_stamp(2023, 5))]
        cache = ChargingHistoryCache(_paged_client(sessions, 20), persistent_store=InMemoryStore())
        cache.fetch(VIN_A)

        cache.set_filter(FILTER_YEAR, 2024)

        assert cache.summary() == {'session_count': 1, 'total_energy_kwh': 10.0,
                                   'total_cost': 1000.0}

    def test_concurrent_fetches_share_pages_and_keep_filter(self):
        """Test a second fetch joins the running one and a filter set mid-load survives."""
        sessions = [_session(n) for n in range(30)] + [
            _session(n, when=_stamp(2018, 8)) for n in range(30, 40)]
        client = _paged_client(sessions, 20)
        search = client.search_charging_history.side_effect
        later_page_started = threading.Event()
        release = threading.Event()

        def held_search(vin, page, size):
            if page > 0:
                later_page_started.set()
                release.wait(5)
            return search(vin, page, size)

        client.search_charging_history.side_effect = held_search
        cache = ChargingHistoryCache(client, persistent_store=InMemoryStore(), page_size=20,
                                     concurrency=2)
        results = []
        first = threading.Thread(target=lambda: results.append(cache.fetch(VIN_A)))
        second = threading.Thread(target=lambda: results.append(cache.fetch(VIN_A)))

        first.start()
        assert later_page_started.wait(5)
        assert cache.state['is_loading_more'] is True
        second.start()
        time.sleep(0.2)
        cache.set_filter(FILTER_YEAR, 2019)
        release.set()
        first.join(5)
        second.join(5)

        assert client.search_charging_history.call_count == 2
        assert len(results) == 2
        state = cache.state
        assert state['filter_mode'] == FILTER_YEAR
        assert state['selected_year'] == 2019
        assert state['total_loaded'] == 40
        assert len(state['sessions']) == 30
        assert state['is_loading_more'] is False
