"""
Charging history: paginated fetch-and-merge with a persisted per-vin cache.

Page 0 is fetched first so something can be shown right away with a sensible
time filter; the remaining pages follow with a small fan-out. Pages that
fail are reported as a warning, the rest of the data is kept.
"""

import logging
import math
import threading
from concurrent.futures import Future, ThreadPoolExecutor, as_completed
from dataclasses import dataclass
from datetime import datetime
from typing import Any, Callable, Dict, Iterable, List, Optional, Tuple, Union

from config import Config
from vfdashboard.client.errors import VendorClientError
from vfdashboard.client.state import Store
from vfdashboard.domain.models import ChargingCacheEntry, now_ms
from vfdashboard.infrastructure.persistent_store import create_persistent_store

logger = logging.getLogger(__name__)

CACHE_KEY = 'charging_history_cache'

FILTER_ALL = 'all'
FILTER_YEAR = 'year'
FILTER_MONTH = 'month'


@dataclass(frozen=True)
class Sessions:
    items: List[dict]


@dataclass(frozen=True)
class Empty:
    reason: str = 'unrecognized'


def extract_sessions(payload: Any) -> Union[Sessions, Empty]:
    """
    Find the session list in one of the envelope shapes the vendor uses, in order:
    `{data: [...]}`, `{data: {content: [...]}}`, `{content: [...]}`, `[...]`.
    """
    candidates = []
    if isinstance(payload, dict):
        data = payload.get('data')
        candidates.append(data)
        if isinstance(data, dict):
            candidates.append(data.get('content'))
        candidates.append(payload.get('content'))
    candidates.append(payload)

    for candidate in candidates:
        if isinstance(candidate, list):
            items = [item for item in candidate if isinstance(item, dict)]
            return Sessions(items) if items else Empty('no_sessions')
    return Empty()


def extract_total_records(payload: Any, fallback: int) -> int:
    if not isinstance(payload, dict):
        return fallback
    data = payload.get('data') if isinstance(payload.get('data'), dict) else {}
    metadata = payload.get('metadata') or data.get('metadata') or {}

    for source, key in ((metadata, 'totalRecords'), (metadata, 'totalElements'),
                        (data, 'totalElements'), (payload, 'totalElements'),
                        (data, 'totalRecords'), (payload, 'totalRecords')):
        value = source.get(key) if isinstance(source, dict) else None
        if value:
            try:
                return int(value)
            except (TypeError, ValueError):
                continue
    return fallback


def session_identity(session: dict) -> Tuple:
    if session.get('id'):
        return ('id', str(session['id']))
    started = session.get('pluggedTime') or session.get('startChargeTime') or session.get('createdDate')
    return ('composite', started, session.get('chargingStationName'), session.get('createdDate'))


def merge_sessions(*lists: Iterable[dict]) -> List[dict]:
    """Concatenate, keeping the first occurrence of every session identity."""
    seen = set()
    merged = []
    for sessions in lists:
        for session in sessions:
            identity = session_identity(session)
            if identity in seen:
                continue
            seen.add(identity)
            merged.append(session)
    return merged


def session_time(session: dict) -> int:
    return session.get('startChargeTime') or session.get('pluggedTime') or session.get('createdDate') or 0


def _session_datetime(session: dict) -> Optional[datetime]:
    stamp = session_time(session)
    if not stamp:
        return None
    try:
        return datetime.fromtimestamp(int(stamp) / 1000)
    except (TypeError, ValueError, OverflowError, OSError):
        return None


@dataclass(frozen=True)
class FilterSelection:
    mode: str = FILTER_ALL
    year: int = 0
    month: int = 0


def compute_smart_default(sessions: List[dict], now: Optional[datetime] = None) -> FilterSelection:
    """Current month if it has sessions, else current year if it has any, else everything."""
    now = now or datetime.now()
    dates = [d for d in (_session_datetime(s) for s in sessions) if d]

    if any(d.year == now.year and d.month == now.month for d in dates):
        return FilterSelection(FILTER_MONTH, now.year, now.month)
    if any(d.year == now.year for d in dates):
        return FilterSelection(FILTER_YEAR, now.year, 0)
    return FilterSelection()


def filter_sessions(sessions: List[dict], mode: str, year: int = 0, month: int = 0) -> List[dict]:
    if mode == FILTER_ALL:
        return list(sessions)
    filtered = []
    for session in sessions:
        d = _session_datetime(session)
        if not d or d.year != year:
            continue
        if mode == FILTER_MONTH and d.month != month:
            continue
        filtered.append(session)
    return filtered


def available_years(sessions: List[dict]) -> List[int]:
    return sorted({d.year for d in (_session_datetime(s) for s in sessions) if d}, reverse=True)


def available_months(sessions: List[dict], year: int) -> List[dict]:
    months = {d.month for d in (_session_datetime(s) for s in sessions) if d and d.year == year}
    return [{'year': year, 'month': m, 'label': f"T{m}/{year}"} for m in sorted(months, reverse=True)]


def _number(value) -> float:
    try:
        return float(value)
    except (TypeError, ValueError):
        return 0.0


def summarize(sessions: List[dict]) -> Dict[str, Any]:
    """Totals shown above the history list."""
    energy = 0.0
    cost = 0.0
    for session in sessions:
        if session.get('totalKWCharged') is not None:
            energy += _number(session.get('totalKWCharged'))
        else:
            energy += sum(_number(item.get('energy')) for item in session.get('items') or [])
        final = session.get('finalAmount')
        cost += _number(final if final is not None else session.get('amount'))
    return {
        'session_count': len(sessions),
        'total_energy_kwh': round(energy, 2),
        'total_cost': round(cost, 2),
    }


def initial_state() -> Dict[str, Any]:
    return {
        'sessions': [],
        'total_loaded': 0,
        'total_records': 0,
        'is_loading': False,
        'is_loading_more': False,
        'error': None,
        'warning': None,
        'filter_mode': FILTER_ALL,
        'selected_year': 0,
        'selected_month': 0,
        'available_years': [],
        'available_months': [],
        'loaded_vin': None,
    }


class ChargingHistoryCache:
    def __init__(self, client, persistent_store=None, store: Optional[Store] = None,
                 page_size: Optional[int] = None, concurrency: Optional[int] = None,
                 ttl_hours: Optional[float] = None, max_vins: Optional[int] = None,
                 clock: Callable[[], int] = now_ms):
        self.client = client
        self.persistent_store = (persistent_store if persistent_store is not None
                                 else create_persistent_store())
        self.store = store or Store(initial_state())
        self.page_size = page_size or Config.CHARGING_HISTORY_PAGE_SIZE
        self.concurrency = concurrency or Config.CHARGING_HISTORY_CONCURRENCY
        self.ttl_ms = int((ttl_hours or Config.CHARGING_CACHE_TTL_HOURS) * 3600 * 1000)
        self.max_vins = max_vins or Config.CHARGING_CACHE_MAX_VINS
        self.clock = clock
        self._lock = threading.Lock()
        self._sessions: Dict[str, List[dict]] = {}
        self._in_flight: Dict[str, Future] = {}

    @property
    def state(self) -> Dict[str, Any]:
        return self.store.get()

    # --- public API ------------------------------------------------------------

    def fetch(self, vin: str, force: bool = False) -> Dict[str, Any]:
        """Load all sessions for `vin`; concurrent calls for one vin share the work."""
        if not vin:
            return self.state

        with self._lock:
            future = self._in_flight.get(vin)
            owner = future is None
            if owner:
                future = Future()
                self._in_flight[vin] = future

        if not owner:
            logger.debug(f"Joining in-flight charging history fetch for {vin}")
            future.result()
            return self.state

        try:
            self._fetch(vin, force)
            future.set_result(None)
        except BaseException as e:
            future.set_exception(e)
            raise
        finally:
            with self._lock:
                if self._in_flight.get(vin) is future:
                    del self._in_flight[vin]
        return self.state

    def set_filter(self, mode: str, year: int = 0, month: int = 0) -> None:
        vin = self.store.get('loaded_vin')
        with self._lock:
            sessions = self._sessions.get(vin)
        if sessions is None:
            return
        self._apply_filter(vin, sessions, FilterSelection(mode, year, month))

    def summary(self) -> Dict[str, Any]:
        return summarize(self.store.get('sessions', []))

    # --- fetching ----------------------------------------------------------------

    def _fetch(self, vin: str, force: bool) -> None:
        loaded_vin = self.store.get('loaded_vin')
        vin_changed = loaded_vin is not None and loaded_vin != vin

        entry = None if force else self._read_cache(vin)
        if entry and entry.sessions:
            logger.debug(f"Charging history cache hit for {vin}")
            with self._lock:
                self._sessions[vin] = entry.sessions
            self.store.update(lambda state: state.update(
                loaded_vin=vin, total_records=entry.total_records, error=None, warning=None,
                is_loading=False, is_loading_more=False))
            selection = (compute_smart_default(entry.sessions) if vin_changed
                         else self._current_selection())
            self._apply_filter(vin, entry.sessions, selection)
            return

        def start(state):
            if vin_changed:
                state.update(sessions=[], total_loaded=0, total_records=0,
                             available_years=[], available_months=[])
            state.update(is_loading=True, is_loading_more=False, error=None, warning=None,
                         loaded_vin=vin)

        self.store.update(start)

        try:
            first = self.client.search_charging_history(vin, 0, self.page_size)
        except VendorClientError as e:
            logger.error(f"Failed to fetch charging history for {vin}: {e.message}")
            self._update_if_loaded(vin, error=e.message, is_loading=False, is_loading_more=False)
            return

        parsed = extract_sessions(first)
        first_sessions = parsed.items if isinstance(parsed, Sessions) else []
        total_records = extract_total_records(first, len(first_sessions))
        logger.info(f"Charging history [{vin}]: page 0 -> {len(first_sessions)} sessions, "
                    f"total={total_records}")

        sessions = merge_sessions(first_sessions)
        with self._lock:
            self._sessions[vin] = sessions
        self._update_if_loaded(vin, total_records=total_records)
        self._apply_filter(vin, sessions, compute_smart_default(sessions))
        self._update_if_loaded(vin, is_loading=False)

        warning = None
        if len(first_sessions) < total_records:
            self._update_if_loaded(vin, is_loading_more=True)
            sessions, warning = self._fetch_remaining(vin, first_sessions, total_records)
            with self._lock:
                self._sessions[vin] = sessions
            # The filter may have changed while the remaining pages loaded
            self._apply_filter(vin, sessions, self._current_selection())

        self._update_if_loaded(vin, warning=warning, is_loading_more=False)
        self._write_cache(vin, ChargingCacheEntry(sessions=sessions, total_records=total_records,
                                                  fetched_at=self.clock()))

    def _fetch_remaining(self, vin: str, first_sessions: List[dict],
                         total_records: int) -> Tuple[List[dict], Optional[str]]:
        total_pages = math.ceil(total_records / self.page_size)
        pages: Dict[int, List[dict]] = {}
        failed = []

        with ThreadPoolExecutor(max_workers=self.concurrency,
                                thread_name_prefix='charging-history') as pool:
            futures = {
                pool.submit(self.client.search_charging_history, vin, page, self.page_size): page
                for page in range(1, total_pages)
            }
            for future in as_completed(futures):
                page = futures[future]
                try:
                    parsed = extract_sessions(future.result())
                except VendorClientError as e:
                    logger.warning(f"Charging history page {page} for {vin} failed: {e.message}")
                    failed.append(page)
                    continue
                pages[page] = parsed.items if isinstance(parsed, Sessions) else []

        merged = merge_sessions(first_sessions, *(pages[p] for p in sorted(pages)))
        warning = None
        if failed:
            warning = (f"Incomplete results: {len(failed)} of {total_pages} pages "
                       f"could not be loaded")
        return merged, warning

    # --- state helpers -----------------------------------------------------------

    def _current_selection(self) -> FilterSelection:
        state = self.store.get()
        return FilterSelection(state['filter_mode'], state['selected_year'], state['selected_month'])

    def _apply_filter(self, vin: str, sessions: List[dict], selection: FilterSelection) -> None:
        filtered = filter_sessions(sessions, selection.mode, selection.year, selection.month)
        months = available_months(sessions, selection.year) if selection.year > 0 else []
        self._update_if_loaded(
            vin,
            sessions=filtered,
            total_loaded=len(sessions),
            available_years=available_years(sessions),
            available_months=months,
            filter_mode=selection.mode,
            selected_year=selection.year,
            selected_month=selection.month,
        )

    def _update_if_loaded(self, vin: str, **changes) -> None:
        """Apply `changes` unless another vin took over the view meanwhile."""
        def apply(state):
            if state['loaded_vin'] == vin:
                state.update(changes)

        self.store.update(apply)

    # --- persisted cache ---------------------------------------------------------

    def _read_entries(self) -> Dict[str, dict]:
        entries = self.persistent_store.get(CACHE_KEY)
        if entries is None:
            return {}
        if not isinstance(entries, dict):
            logger.warning("Discarding malformed charging history cache")
            self.persistent_store.remove(CACHE_KEY)
            return {}
        return entries

    def _read_cache(self, vin: str) -> Optional[ChargingCacheEntry]:
        raw = self._read_entries().get(vin)
        if raw is None:
            return None
        try:
            entry = ChargingCacheEntry.from_dict(raw)
        except (KeyError, TypeError, ValueError, AttributeError):
            logger.warning(f"Discarding corrupt charging history cache entry for {vin}")
            return None
        if not entry.is_fresh(self.ttl_ms, self.clock()):
            return None
        return entry

    def _write_cache(self, vin: str, entry: ChargingCacheEntry) -> None:
        at = self.clock()
        entries = {}
        for key, raw in self._read_entries().items():
            try:
                cached = ChargingCacheEntry.from_dict(raw)
            except (KeyError, TypeError, ValueError, AttributeError):
                continue
            if key != vin and cached.is_fresh(self.ttl_ms, at):
                entries[key] = cached
        entries[vin] = entry

        # Keep only the most recently fetched vins
        newest = sorted(entries.items(), key=lambda item: item[1].fetched_at, reverse=True)
        kept = {key: cached.to_dict() for key, cached in newest[:self.max_vins]}
        self.persistent_store.set(CACHE_KEY, kept)
