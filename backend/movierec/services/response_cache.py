"""
response_cache.py
- Short-lived in-process cache for idempotent TMDb reads, keyed by a normalized
  request fingerprint (method + endpoint + sorted query params).
"""
import asyncio
import copy
import hashlib
import json
import time
from typing import Any, Callable, Dict, Mapping, Optional, Tuple

CACHE_TTL = 3600  # 1h

# Never part of a fingerprint
_EXCLUDED_PARAMS = frozenset({"api_key"})


def request_fingerprint(method: str, endpoint: str, params: Optional[Mapping[str, Any]] = None) -> str:
    normalized = {
        "method": method.upper(),
        "endpoint": endpoint,
        "params": {str(k): str(v) for k, v in (params or {}).items() if k not in _EXCLUDED_PARAMS},
    }
    return hashlib.sha256(json.dumps(normalized, sort_keys=True).encode("utf-8")).hexdigest()


class ResponseCache:
    """Fingerprint -> (payload, stored_at) map shared by concurrent requests."""

    def __init__(self, ttl: float = CACHE_TTL, clock: Callable[[], float] = time.monotonic):
        self.ttl = ttl
        self._clock = clock
        self._entries: Dict[str, Tuple[Any, float]] = {}
        self._lock = asyncio.Lock()

    async def get(self, fingerprint: str) -> Optional[Any]:
        async with self._lock:
            entry = self._entries.get(fingerprint)
            if entry is None:
                return None
            payload, stored_at = entry
            if self._clock() - stored_at > self.ttl:
                del self._entries[fingerprint]
                return None
            return copy.deepcopy(payload)

    async def set(self, fingerprint: str, payload: Any) -> None:
        async with self._lock:
            now = self._clock()
            self._drop_expired(now)
            self._entries[fingerprint] = (copy.deepcopy(payload), now)

    def _drop_expired(self, now: float) -> None:
        expired = [k for k, (_, stored_at) in self._entries.items() if now - stored_at > self.ttl]
        for key in expired:
            del self._entries[key]

    async def clear(self) -> None:
        async with self._lock:
            self._entries.clear()

    def __len__(self) -> int:
        return len(self._entries)
