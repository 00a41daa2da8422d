import copy
import json
import logging
import threading
import time
from typing import Any, Dict, Optional, Protocol, Tuple

import redis

from schemas.models import APPLICATION_STATUS_FIELD, ApplicationStatus, Identity
from app.services.state_backend import StateBackend

logger = logging.getLogger("portal.state")

State = Dict[str, Any]


# Key helpers (namespaced & explicit)
def _k_state(identity: Identity) -> str: return f"state:{identity.key}"  # JSON object


# ------------------------------------------------------------------------------
# Fast cache engines
# ------------------------------------------------------------------------------
class SessionCache(Protocol):
    def get(self, key: str) -> Optional[State]: ...
    def set(self, key: str, value: State, ttl_seconds: int) -> None: ...
    def delete(self, key: str) -> None: ...


class MemorySessionCache:
    """Per-process cache. Fine for a single instance; lost on restart."""

    def __init__(self, sweep_interval_seconds: float = 60.0):
        self._items: Dict[str, Tuple[float, str]] = {}
        self._lock = threading.Lock()
        self.sweep_interval_seconds = sweep_interval_seconds
        self._next_sweep = time.monotonic() + sweep_interval_seconds

    def get(self, key: str) -> Optional[State]:
        with self._lock:
            item = self._items.get(key)
            if item is None:
                return None
            expires_at, raw = item
            if expires_at <= time.monotonic():
                del self._items[key]
                return None
        return json.loads(raw)

    def set(self, key: str, value: State, ttl_seconds: int) -> None:
        raw = json.dumps(value, ensure_ascii=False)
        now = time.monotonic()
        with self._lock:
            if now >= self._next_sweep:
                self._sweep(now)
            self._items[key] = (now + ttl_seconds, raw)

    def _sweep(self, now: float) -> None:
        # abandoned sessions are never read again; drop them here (lock held)
        expired = [k for k, (expires_at, _) in self._items.items() if expires_at <= now]
        for k in expired:
            del self._items[k]
        self._next_sweep = now + self.sweep_interval_seconds

    def delete(self, key: str) -> None:
        with self._lock:
            self._items.pop(key, None)


class RedisSessionCache:
    """Shared cache across portal instances."""

    def __init__(self, client: redis.Redis):
        self._r = client

    @classmethod
    def from_url(cls, url: str) -> "RedisSessionCache":
        return cls(redis.from_url(url, decode_responses=True))

    def get(self, key: str) -> Optional[State]:
        raw = self._r.get(key)
        if not raw:
            return None
        data = json.loads(raw)
        return data if isinstance(data, dict) else None

    def set(self, key: str, value: State, ttl_seconds: int) -> None:
        self._r.set(key, json.dumps(value, ensure_ascii=False), ex=ttl_seconds)

    def delete(self, key: str) -> None:
        self._r.delete(key)


# ------------------------------------------------------------------------------
# Session state store
# ------------------------------------------------------------------------------
class StateStore:
    """
    Session state per (user, business, grant) identity.

    Reads hit the cache first and fall back to the durable backend (if any),
    rehydrating the cache. Writes replace or shallow-merge the whole record and
    go to both. Errors from either layer propagate to the caller.
    """

    def __init__(self, cache: SessionCache, backend: Optional[StateBackend] = None, ttl_seconds: int = 3600):
        self.cache = cache
        self.backend = backend
        self.ttl_seconds = ttl_seconds

    def get_state(self, identity: Identity) -> State:
        key = _k_state(identity)
        state = self.cache.get(key)
        if state is not None:
            return state

        if self.backend is None:
            return {}

        saved = self.backend.fetch_state(identity)
        if saved is None:
            return {}

        logger.info("Rehydrated session state from backend", extra={"identity": identity.key})
        self.cache.set(key, saved, self.ttl_seconds)
        return copy.deepcopy(saved)

    def set_state(self, identity: Identity, state: State) -> State:
        """Full replace."""
        new_state = copy.deepcopy(dict(state))
        self.cache.set(_k_state(identity), new_state, self.ttl_seconds)
        if self.backend is not None:
            self.backend.save_state(identity, new_state)
        return new_state

    def merge_state(self, identity: Identity, partial: State) -> State:
        """Shallow merge: top-level keys in `partial` replace existing ones."""
        return self.set_state(identity, {**self.get_state(identity), **partial})

    def update_application_status(self, identity: Identity, status: ApplicationStatus) -> State:
        state = self.get_state(identity)
        if status is ApplicationStatus.UNSET:
            state.pop(APPLICATION_STATUS_FIELD, None)
        else:
            state[APPLICATION_STATUS_FIELD] = status.value

        self.cache.set(_k_state(identity), state, self.ttl_seconds)
        if self.backend is not None:
            self.backend.update_application_status(identity, status)
        return state

    def clear_state(self, identity: Identity) -> None:
        self.cache.delete(_k_state(identity))
        if self.backend is not None:
            self.backend.delete_state(identity)


def build_cache(engine: str, redis_url: str) -> SessionCache:
    if engine == "redis":
        return RedisSessionCache.from_url(redis_url)
    logger.warning("Using in-memory session cache; state is lost on restart")
    return MemorySessionCache()
