import copy
import logging
import threading
from typing import Any, Callable, Dict, List, Optional

logger = logging.getLogger(__name__)

Listener = Callable[[Dict[str, Any]], None]


class Store:
    """
    Explicit state container.

    Readers get deep copies; writers go through `set`/`update` which replace
    whole sub-objects under a lock and then notify subscribers with a snapshot.
    """

    def __init__(self, initial: Optional[Dict[str, Any]] = None):
        self._state: Dict[str, Any] = copy.deepcopy(initial) if initial else {}
        self._lock = threading.RLock()
        self._listeners: List[Listener] = []

    def get(self, key: Optional[str] = None, default: Any = None) -> Any:
        with self._lock:
            if key is None:
                return copy.deepcopy(self._state)
            return copy.deepcopy(self._state.get(key, default))

    def set(self, key: str, value: Any) -> None:
        with self._lock:
            self._state[key] = copy.deepcopy(value)
        self._emit()

    def update(self, mutator: Callable[[Dict[str, Any]], None]) -> Dict[str, Any]:
        """Run `mutator` on the live state while holding the lock; returns a snapshot."""
        with self._lock:
            mutator(self._state)
            snapshot = copy.deepcopy(self._state)
        self._emit(snapshot)
        return snapshot

    def subscribe(self, listener: Listener) -> Callable[[], None]:
        with self._lock:
            self._listeners.append(listener)

        def unsubscribe():
            with self._lock:
                if listener in self._listeners:
                    self._listeners.remove(listener)
        return unsubscribe

    def _emit(self, snapshot: Optional[Dict[str, Any]] = None) -> None:
        with self._lock:
            listeners = list(self._listeners)
            if snapshot is None and listeners:
                snapshot = copy.deepcopy(self._state)
        for listener in listeners:
            try:
                listener(snapshot)
            except Exception as e:
                logger.error(f"State listener failed: {e}")
