"""
cache_manager.py

Durable TTL cache on Redis backing offline operation.

Entries are JSON envelopes ``{"data": ..., "timestamp": <epoch ms>}``. Expiry
is checked lazily on every read against the entry's category TTL, and
``sweep_expired`` removes stale or unreadable entries proactively. Keys carry
no Redis expiry; staleness is decided here.
"""
import enum
import json
import logging
import time
from datetime import timedelta
from typing import Any, Callable, Dict, List, Optional

import pydantic
from redis.exceptions import RedisError

from movierec.core.redis_client import get_redis
from movierec.schemas import Genre, Movie, RecommendationResult
from movierec.services.error_handler import CacheError

logger = logging.getLogger(__name__)

MOVIE_CACHE_PREFIX = "movie_cache:"
RECOMMENDATION_CACHE_PREFIX = "recommendation_cache:"
GENRE_CACHE_KEY = "genres_cache"
USER_RATED_MOVIES_KEY = "user_rated_movies"
USER_WATCHLIST_KEY = "user_watchlist"


class CacheCategory(str, enum.Enum):
    MOVIE = "movie"
    RECOMMENDATION = "recommendation"
    GENRE_LIST = "genre_list"
    USER_RATED = "user_rated"
    USER_WATCHLIST = "user_watchlist"


CATEGORY_TTLS: Dict[CacheCategory, timedelta] = {
    CacheCategory.MOVIE: timedelta(hours=24),
    CacheCategory.RECOMMENDATION: timedelta(hours=6),
    CacheCategory.GENRE_LIST: timedelta(days=7),
    CacheCategory.USER_RATED: timedelta(hours=1),
    CacheCategory.USER_WATCHLIST: timedelta(hours=1),
}


def category_for_key(key: str) -> Optional[CacheCategory]:
    """Category of a managed key, or None for keys this cache does not own."""
    if key.startswith(MOVIE_CACHE_PREFIX):
        return CacheCategory.MOVIE
    if key.startswith(RECOMMENDATION_CACHE_PREFIX):
        return CacheCategory.RECOMMENDATION
    if key == GENRE_CACHE_KEY:
        return CacheCategory.GENRE_LIST
    if key == USER_RATED_MOVIES_KEY:
        return CacheCategory.USER_RATED
    if key == USER_WATCHLIST_KEY:
        return CacheCategory.USER_WATCHLIST
    return None


def _now_ms() -> int:
    return int(time.time() * 1000)


def _movie_list(data: Any) -> List[Movie]:
    return [Movie.model_validate(m) for m in data]


class CacheManager:
    def __init__(self, redis=None, clock: Callable[[], int] = _now_ms):
        # Do NOT capture an async Redis client outside an event loop.
        self._redis = redis
        self._clock = clock

    def _r(self):
        return self._redis if self._redis is not None else get_redis()

    def is_expired(self, timestamp_ms: int, category: CacheCategory) -> bool:
        age_ms = self._clock() - int(timestamp_ms)
        return age_ms > CATEGORY_TTLS[category].total_seconds() * 1000

    async def put(self, key: str, category: CacheCategory, value: Any) -> None:
        envelope = {"data": value, "timestamp": self._clock()}
        try:
            await self._r().set(key, json.dumps(envelope))
        except (RedisError, OSError, TypeError, ValueError) as e:
            raise CacheError(f"Failed to cache {category.value} entry {key}: {e}") from e

    async def get(self, key: str, category: CacheCategory) -> Optional[Any]:
        try:
            raw = await self._r().get(key)
        except (RedisError, OSError) as e:
            raise CacheError(f"Failed to read cache entry {key}: {e}") from e
        if raw is None:
            return None

        try:
            envelope = json.loads(raw)
            timestamp = int(envelope["timestamp"])
            data = envelope["data"]
        except (ValueError, TypeError, KeyError):
            logger.warning(f"Dropping unreadable cache entry {key}")
            await self._evict(key)
            return None

        if self.is_expired(timestamp, category):
            await self._evict(key)
            return None
        return data

    async def delete(self, key: str) -> None:
        try:
            await self._r().delete(key)
        except (RedisError, OSError) as e:
            raise CacheError(f"Failed to delete cache entry {key}: {e}") from e

    async def _evict(self, key: str) -> None:
        # Eviction on read is an optimization; a failure leaves the entry for the next sweep
        try:
            await self._r().delete(key)
        except (RedisError, OSError) as e:
            logger.debug(f"Could not evict stale cache entry {key}: {e}")

    async def _managed_keys(self) -> List[str]:
        r = self._r()
        keys: List[str] = []
        for pattern in (f"{MOVIE_CACHE_PREFIX}*", f"{RECOMMENDATION_CACHE_PREFIX}*"):
            async for key in r.scan_iter(match=pattern):
                keys.append(key.decode("utf-8") if isinstance(key, bytes) else key)
        keys.extend([GENRE_CACHE_KEY, USER_RATED_MOVIES_KEY, USER_WATCHLIST_KEY])
        return keys

    async def sweep_expired(self) -> int:
        """Remove expired and unreadable entries. Returns how many were removed."""
        removed = 0
        try:
            r = self._r()
            for key in await self._managed_keys():
                raw = await r.get(key)
                if raw is None:
                    continue
                category = category_for_key(key)
                try:
                    timestamp = int(json.loads(raw)["timestamp"])
                    stale = self.is_expired(timestamp, category)
                except (ValueError, TypeError, KeyError):
                    stale = True
                if stale:
                    await r.delete(key)
                    removed += 1
        except (RedisError, OSError) as e:
            raise CacheError(f"Failed to clear expired cache: {e}") from e
        if removed:
            logger.info(f"Swept {removed} expired cache entries")
        return removed

    async def clear_all(self) -> int:
        """Remove every managed entry regardless of age."""
        try:
            keys = await self._managed_keys()
            removed = await self._r().delete(*keys) if keys else 0
        except (RedisError, OSError) as e:
            raise CacheError(f"Failed to clear cache: {e}") from e
        logger.info(f"Cleared {removed} cache entries")
        return int(removed or 0)

    async def _decode(self, key: str, category: CacheCategory, parse: Callable[[Any], Any]) -> Optional[Any]:
        data = await self.get(key, category)
        if data is None:
            return None
        try:
            return parse(data)
        except (pydantic.ValidationError, TypeError) as e:
            logger.warning(f"Dropping cache entry {key} with outdated format: {e}")
            await self._evict(key)
            return None

    # Typed helpers

    async def cache_movie(self, movie: Movie) -> None:
        await self.put(f"{MOVIE_CACHE_PREFIX}{movie.id}", CacheCategory.MOVIE, movie.model_dump(mode="json"))

    async def get_cached_movie(self, movie_id: int) -> Optional[Movie]:
        return await self._decode(f"{MOVIE_CACHE_PREFIX}{movie_id}", CacheCategory.MOVIE, Movie.model_validate)

    async def cache_recommendations(self, result: RecommendationResult, cache_key: str) -> None:
        await self.put(
            f"{RECOMMENDATION_CACHE_PREFIX}{cache_key}",
            CacheCategory.RECOMMENDATION,
            result.model_dump(mode="json"),
        )

    async def get_cached_recommendations(self, cache_key: str) -> Optional[RecommendationResult]:
        return await self._decode(
            f"{RECOMMENDATION_CACHE_PREFIX}{cache_key}", CacheCategory.RECOMMENDATION, RecommendationResult.model_validate
        )

    async def cache_genres(self, genres: List[Genre]) -> None:
        await self.put(GENRE_CACHE_KEY, CacheCategory.GENRE_LIST, [g.model_dump() for g in genres])

    async def get_cached_genres(self) -> Optional[List[Genre]]:
        return await self._decode(GENRE_CACHE_KEY, CacheCategory.GENRE_LIST, lambda data: [Genre.model_validate(g) for g in data])

    async def cache_user_rated_movies(self, movies: List[Movie]) -> None:
        await self.put(USER_RATED_MOVIES_KEY, CacheCategory.USER_RATED, [m.model_dump(mode="json") for m in movies])

    async def get_cached_user_rated_movies(self) -> Optional[List[Movie]]:
        return await self._decode(USER_RATED_MOVIES_KEY, CacheCategory.USER_RATED, _movie_list)

    async def invalidate_user_rated_movies(self) -> None:
        await self.delete(USER_RATED_MOVIES_KEY)

    async def cache_user_watchlist(self, movies: List[Movie]) -> None:
        await self.put(USER_WATCHLIST_KEY, CacheCategory.USER_WATCHLIST, [m.model_dump(mode="json") for m in movies])

    async def get_cached_user_watchlist(self) -> Optional[List[Movie]]:
        return await self._decode(USER_WATCHLIST_KEY, CacheCategory.USER_WATCHLIST, _movie_list)
