import json
import logging
import threading
from typing import Any, Callable, List, Optional

from config import Config

logger = logging.getLogger(__name__)

Listener = Callable[[str, Optional[str]], None]


class InMemoryStore:
    """Process-local JSON key/value store. Values are serialized so reads never alias writes."""

    def __init__(self):
        self._data: dict[str, str] = {}
        self._lock = threading.Lock()
        self._listeners: List[Listener] = []
        logger.info("In-memory persistent store initialized (data will not survive restarts)")

    def get(self, key: str) -> Optional[Any]:
        with self._lock:
            raw = self._data.get(key)
        if raw is None:
            return None
        try:
            return json.loads(raw)
        except (json.JSONDecodeError, TypeError):
            logger.warning(f"Discarding corrupt value for {key}")
            self.remove(key)
            return None

    def get_raw(self, key: str) -> Optional[str]:
        with self._lock:
            return self._data.get(key)

    def set_raw(self, key: str, raw: str, origin: Optional[str] = None) -> None:
        with self._lock:
            self._data[key] = raw
        self._notify(key, origin)

    def set(self, key: str, value: Any, ttl: Optional[int] = None, origin: Optional[str] = None) -> None:
        self.set_raw(key, json.dumps(value), origin)

    def remove(self, key: str, origin: Optional[str] = None) -> None:
        with self._lock:
            existed = self._data.pop(key, None) is not None
        if existed:
            self._notify(key, origin)

    def subscribe(self, listener: Listener) -> Callable[[], None]:
        with self._lock:
            self._listeners.append(listener)

        def unsubscribe():
            with self._lock:
                if listener in self._listeners:
                    self._listeners.remove(listener)
        return unsubscribe

    def _notify(self, key: str, origin: Optional[str]) -> None:
        with self._lock:
            listeners = list(self._listeners)
        for listener in listeners:
            try:
                listener(key, origin)
            except Exception as e:
                logger.error(f"Store listener failed for {key}: {e}")


class RedisStore:
    """Redis-backed store; change events are published so other processes see them."""

    def __init__(self, redis_url: str, prefix: str = "vfdashboard:"):
        import redis as redis_lib
        self._redis = redis_lib.from_url(
            redis_url,
            decode_responses=True,
            socket_connect_timeout=5,
            socket_timeout=5,
            retry_on_timeout=True
        )
        self._prefix = prefix
        self._channel = f"{prefix}events"
        self._listeners: List[Listener] = []
        self._lock = threading.Lock()
        self._pubsub_thread = None
        self._redis.ping()
        logger.info("Redis persistent store initialized successfully")

    def _key(self, key: str) -> str:
        return f"{self._prefix}{key}"

    def get(self, key: str) -> Optional[Any]:
        raw = self.get_raw(key)
        if raw is None:
            return None
        try:
            return json.loads(raw)
        except (json.JSONDecodeError, TypeError):
            logger.warning(f"Discarding corrupt value for {key}")
            self.remove(key)
            return None

    def get_raw(self, key: str) -> Optional[str]:
        try:
            return self._redis.get(self._key(key))
        except Exception as e:
            logger.error(f"Redis get error for {key}: {e}")
            return None

    def set_raw(self, key: str, raw: str, origin: Optional[str] = None, ttl: Optional[int] = None) -> None:
        try:
            self._redis.set(self._key(key), raw, ex=ttl)
            self._publish(key, origin)
        except Exception as e:
            logger.error(f"Redis set error for {key}: {e}")

    def set(self, key: str, value: Any, ttl: Optional[int] = None, origin: Optional[str] = None) -> None:
        self.set_raw(key, json.dumps(value), origin=origin, ttl=ttl)

    def remove(self, key: str, origin: Optional[str] = None) -> None:
        try:
            if self._redis.delete(self._key(key)):
                self._publish(key, origin)
        except Exception as e:
            logger.error(f"Redis delete error for {key}: {e}")

    def subscribe(self, listener: Listener) -> Callable[[], None]:
        with self._lock:
            self._listeners.append(listener)
            if self._pubsub_thread is None:
                pubsub = self._redis.pubsub(ignore_subscribe_messages=True)
                pubsub.subscribe(**{self._channel: self._on_message})
                self._pubsub_thread = pubsub.run_in_thread(sleep_time=0.5, daemon=True)

        def unsubscribe():
            with self._lock:
                if listener in self._listeners:
                    self._listeners.remove(listener)
        return unsubscribe

    def _publish(self, key: str, origin: Optional[str]) -> None:
        self._redis.publish(self._channel, json.dumps({"key": key, "origin": origin}))

    def _on_message(self, message) -> None:
        try:
            event = json.loads(message["data"])
        except (json.JSONDecodeError, TypeError, KeyError):
            return
        with self._lock:
            listeners = list(self._listeners)
        for listener in listeners:
            try:
                listener(event.get("key"), event.get("origin"))
            except Exception as e:
                logger.error(f"Store listener failed for {event.get('key')}: {e}")


def create_persistent_store():
    redis_url = Config.REDIS_URL
    if Config.REDIS_ENABLED and redis_url:
        try:
            return RedisStore(redis_url)
        except Exception as e:
            logger.error(f"Failed to connect to Redis: {e}")
            logger.warning("Falling back to in-memory persistent store")
    return InMemoryStore()
