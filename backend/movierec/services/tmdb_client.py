"""
TMDb client for movierec.
- Async httpx client with a shared sliding-window limiter.
- Retryable failures (network, 429, 5xx) go through exponential backoff.
- Idempotent catalog reads are served from a short-lived in-process cache.
- Reads backing offline mode are written to the durable Redis cache and
  served from it when the live fetch fails.
"""
import logging
from typing import Any, Awaitable, Callable, Dict, List, Optional, Sequence, TypeVar

import httpx
import pydantic

from movierec.core.config import settings
from movierec.schemas import Genre, Movie, RecommendationResult
from movierec.services.cache_manager import CacheManager
from movierec.services.error_handler import (
    AuthError,
    CatalogError,
    MalformedResponseError,
    NetworkError,
    ValidationError,
    error_for_status,
    status_message,
)
from movierec.services.rate_limit import AsyncLimiter, RetryingGateway
from movierec.services.response_cache import ResponseCache, request_fingerprint

logger = logging.getLogger(__name__)

T = TypeVar("T")

DISCOVER_MOVIES = "/discover/movie"
GENRE_LIST = "/genre/movie/list"
MOVIE_DETAILS = "/movie/{id}"
MOVIE_RECOMMENDATIONS = "/movie/{id}/recommendations"
SEARCH_MOVIES = "/search/movie"
CREATE_REQUEST_TOKEN = "/authentication/token/new"
CREATE_SESSION = "/authentication/session/new"
RATE_MOVIE = "/movie/{id}/rating"
RATED_MOVIES = "/account/{account_id}/rated/movies"
WATCHLIST = "/account/{account_id}/watchlist/movies"
ACCOUNT = "/account"
CONFIGURATION = "/configuration"

DEFAULT_SORT = "popularity.desc"
MIN_RATING = 0.5
MAX_RATING = 10.0


def discover_cache_key(genre_ids: Optional[Sequence[int]], page: int, sort_by: str) -> str:
    genres = ",".join(str(g) for g in genre_ids) if genre_ids else "all"
    return f"{genres}_{page}_{sort_by}"


def _movies_from_results(data: Dict[str, Any]) -> List[Movie]:
    results = data.get("results")
    if not isinstance(results, list):
        raise MalformedResponseError("Response is missing the results list")
    try:
        return [Movie.from_tmdb(item) for item in results]
    except (pydantic.ValidationError, TypeError) as e:
        raise MalformedResponseError(f"Invalid movie in results: {e}") from e


class TMDbClient:
    """One method per TMDb capability used by movierec."""

    def __init__(
        self,
        api_key: Optional[str] = None,
        base_url: Optional[str] = None,
        *,
        limiter: Optional[AsyncLimiter] = None,
        gateway: Optional[RetryingGateway] = None,
        response_cache: Optional[ResponseCache] = None,
        cache: Optional[CacheManager] = None,
        transport: Optional[httpx.AsyncBaseTransport] = None,
        timeout: Optional[float] = None,
    ):
        self.api_key = settings.tmdb_api_key if api_key is None else api_key
        self.base_url = (base_url or settings.tmdb_base_url).rstrip("/")
        self.limiter = limiter or AsyncLimiter(settings.tmdb_rate_limit, settings.tmdb_rate_window_seconds)
        self.gateway = gateway or RetryingGateway(settings.tmdb_max_retries, settings.tmdb_retry_base_delay)
        self.response_cache = response_cache if response_cache is not None else ResponseCache(ttl=settings.response_cache_ttl)
        self.cache = cache
        self._http = httpx.AsyncClient(
            timeout=timeout if timeout is not None else settings.tmdb_timeout_seconds,
            transport=transport,
            headers={
                "Content-Type": "application/json",
                "Accept": "application/json",
            },
        )

    async def __aenter__(self) -> "TMDbClient":
        return self

    async def __aexit__(self, *exc_info) -> None:
        await self.aclose()

    async def aclose(self) -> None:
        await self._http.aclose()
        await self.response_cache.clear()

    async def clear_cache(self) -> None:
        await self.response_cache.clear()

    async def _request(
        self,
        method: str,
        endpoint: str,
        params: Optional[Dict[str, Any]] = None,
        body: Optional[Dict[str, Any]] = None,
        use_cache: bool = False,
    ) -> Dict[str, Any]:
        if not self.api_key:
            raise AuthError("TMDb API key is not configured")

        params = params or {}
        fingerprint = request_fingerprint(method, endpoint, params) if use_cache else None
        if fingerprint is not None:
            cached = await self.response_cache.get(fingerprint)
            if cached is not None:
                logger.debug(f"Response cache hit for {method} {endpoint}")
                return cached

        await self.limiter.acquire()

        url = f"{self.base_url}{endpoint}"
        query = {"api_key": self.api_key, **params}
        try:
            resp = await self._http.request(method, url, params=query, json=body)
        except httpx.TimeoutException as e:
            raise NetworkError("Request timeout") from e
        except httpx.TransportError as e:
            raise NetworkError("No internet connection") from e

        if not resp.is_success:
            raise error_for_status(resp.status_code, status_message(resp))

        try:
            data = resp.json()
        except ValueError as e:
            raise MalformedResponseError("Failed to parse response JSON") from e
        if not isinstance(data, dict):
            raise MalformedResponseError("Expected a JSON object")

        if fingerprint is not None:
            await self.response_cache.set(fingerprint, data)
        return data

    async def _with_offline_fallback(
        self,
        label: str,
        fetch: Callable[[], Awaitable[T]],
        load_cached: Callable[[CacheManager], Awaitable[Optional[T]]],
        store: Callable[[CacheManager, T], Awaitable[None]],
    ) -> T:
        """Run ``fetch`` through the gateway; on a classified failure serve the durable copy."""
        try:
            result = await self.gateway.execute(fetch)
        except CatalogError as e:
            if self.cache is None:
                raise
            try:
                cached = await load_cached(self.cache)
            except CatalogError as cache_error:
                logger.warning(f"Offline cache unavailable for {label}: {cache_error}")
                raise e
            if cached is None:
                raise
            logger.warning(f"{label} failed ({e.kind.value}); serving cached copy")
            return cached

        if self.cache is not None:
            try:
                await store(self.cache, result)
            except CatalogError as cache_error:
                logger.warning(f"Could not cache {label}: {cache_error}")
        return result

    async def _invalidate_rated_snapshot(self) -> None:
        if self.cache is None:
            return
        try:
            await self.cache.invalidate_user_rated_movies()
        except CatalogError as e:
            logger.warning(f"Could not invalidate cached rated movies: {e}")

    @staticmethod
    def _require_session(session_id: Optional[str]) -> str:
        if not session_id:
            raise AuthError("User not authenticated")
        return session_id

    async def search_movies(self, query: str, page: int = 1) -> List[Movie]:
        """Search for movies by title query."""
        if not query or not query.strip():
            raise ValidationError("Search query must not be empty")
        params = {"query": query.strip(), "page": str(page), "include_adult": "false"}

        async def fetch() -> List[Movie]:
            data = await self._request("GET", SEARCH_MOVIES, params, use_cache=True)
            return _movies_from_results(data)

        return await self.gateway.execute(fetch)

    async def get_movie_details(self, movie_id: int) -> Movie:
        """Fetch full details for one movie, falling back to the cached copy offline."""
        endpoint = MOVIE_DETAILS.format(id=movie_id)

        async def fetch() -> Movie:
            data = await self._request("GET", endpoint, use_cache=True)
            try:
                return Movie.from_tmdb(data)
            except (pydantic.ValidationError, TypeError) as e:
                raise MalformedResponseError(f"Invalid movie payload: {e}") from e

        return await self._with_offline_fallback(
            f"movie {movie_id}",
            fetch,
            lambda cache: cache.get_cached_movie(movie_id),
            lambda cache, movie: cache.cache_movie(movie),
        )

    async def discover_movies(
        self,
        genre_ids: Optional[Sequence[int]] = None,
        page: int = 1,
        sort_by: str = DEFAULT_SORT,
    ) -> List[Movie]:
        """Discover movies, optionally restricted to genres. Offline-capable."""
        params = {
            "page": str(page),
            "sort_by": sort_by,
            "include_adult": "false",
            "include_video": "false",
        }
        if genre_ids:
            params["with_genres"] = ",".join(str(g) for g in genre_ids)
        cache_key = discover_cache_key(genre_ids, page, sort_by)

        async def fetch() -> List[Movie]:
            data = await self._request("GET", DISCOVER_MOVIES, params, use_cache=True)
            return _movies_from_results(data)

        async def load_cached(cache: CacheManager) -> Optional[List[Movie]]:
            cached = await cache.get_cached_recommendations(cache_key)
            return list(cached.movies) if cached is not None else None

        async def store(cache: CacheManager, movies: List[Movie]) -> None:
            result = RecommendationResult(
                movies=tuple(movies),
                source="genre_based" if genre_ids else "popular",
                metadata={"genres": list(genre_ids or []), "page": page, "sort_by": sort_by},
            )
            await cache.cache_recommendations(result, cache_key)

        return await self._with_offline_fallback(f"discover {cache_key}", fetch, load_cached, store)

    async def get_movie_recommendations(self, movie_id: int, page: int = 1) -> List[Movie]:
        """Titles TMDb recommends for a given movie."""
        endpoint = MOVIE_RECOMMENDATIONS.format(id=movie_id)

        async def fetch() -> List[Movie]:
            data = await self._request("GET", endpoint, {"page": str(page)}, use_cache=True)
            return _movies_from_results(data)

        return await self.gateway.execute(fetch)

    async def get_genres(self) -> List[Genre]:
        """Full movie genre list. Offline-capable."""

        async def fetch() -> List[Genre]:
            data = await self._request("GET", GENRE_LIST, use_cache=True)
            genres = data.get("genres")
            if not isinstance(genres, list):
                raise MalformedResponseError("Response is missing the genres list")
            try:
                return [Genre.model_validate(g) for g in genres]
            except pydantic.ValidationError as e:
                raise MalformedResponseError(f"Invalid genre payload: {e}") from e

        return await self._with_offline_fallback(
            "genre list",
            fetch,
            lambda cache: cache.get_cached_genres(),
            lambda cache, genres: cache.cache_genres(genres),
        )

    async def create_request_token(self) -> str:
        async def fetch() -> str:
            data = await self._request("GET", CREATE_REQUEST_TOKEN)
            token = data.get("request_token")
            if not isinstance(token, str) or not token:
                raise MalformedResponseError("Response is missing request_token")
            return token

        return await self.gateway.execute(fetch)

    async def create_session(self, approved_token: str) -> str:
        if not approved_token:
            raise ValidationError("An approved request token is required")

        async def fetch() -> str:
            data = await self._request("POST", CREATE_SESSION, body={"request_token": approved_token})
            session_id = data.get("session_id")
            if not isinstance(session_id, str) or not session_id:
                raise MalformedResponseError("Response is missing session_id")
            return session_id

        return await self.gateway.execute(fetch)

    async def rate_movie(self, movie_id: int, rating: float, session_id: Optional[str]) -> bool:
        """Rate a movie for the session's account. Rating must be within [0.5, 10.0]."""
        if rating is None or not (MIN_RATING <= rating <= MAX_RATING):
            raise ValidationError(f"Rating must be between {MIN_RATING} and {MAX_RATING}")
        session = self._require_session(session_id)
        endpoint = RATE_MOVIE.format(id=movie_id)

        async def fetch() -> bool:
            data = await self._request("POST", endpoint, {"session_id": session}, body={"value": rating})
            return bool(data.get("success", False))

        success = await self.gateway.execute(fetch)
        if success:
            await self._invalidate_rated_snapshot()
        return success

    async def delete_rating(self, movie_id: int, session_id: Optional[str]) -> bool:
        session = self._require_session(session_id)
        endpoint = RATE_MOVIE.format(id=movie_id)

        async def fetch() -> bool:
            data = await self._request("DELETE", endpoint, {"session_id": session})
            return bool(data.get("success", False))

        success = await self.gateway.execute(fetch)
        if success:
            await self._invalidate_rated_snapshot()
        return success

    async def get_rated_movies(self, account_id: Optional[int], session_id: Optional[str], page: int = 1) -> List[Movie]:
        """Movies the account has rated, with ``user_rating`` set.

        Only the first page is kept as the offline snapshot.
        """
        session = self._require_session(session_id)
        if account_id is None:
            raise AuthError("Account id is required")
        endpoint = RATED_MOVIES.format(account_id=account_id)

        async def fetch() -> List[Movie]:
            data = await self._request("GET", endpoint, {"session_id": session, "page": str(page)})
            movies = _movies_from_results(data)
            ratings = [item.get("rating") for item in data["results"]]
            return [
                m.model_copy(update={"user_rating": float(r) if r is not None else None, "is_watched": True})
                for m, r in zip(movies, ratings)
            ]

        if page != 1:
            return await self.gateway.execute(fetch)
        return await self._with_offline_fallback(
            "rated movies",
            fetch,
            lambda cache: cache.get_cached_user_rated_movies(),
            lambda cache, movies: cache.cache_user_rated_movies(movies),
        )

    async def get_watchlist(self, account_id: Optional[int], session_id: Optional[str], page: int = 1) -> List[Movie]:
        """Movies on the account's watchlist. Only the first page is kept offline."""
        session = self._require_session(session_id)
        if account_id is None:
            raise AuthError("Account id is required")
        endpoint = WATCHLIST.format(account_id=account_id)

        async def fetch() -> List[Movie]:
            data = await self._request("GET", endpoint, {"session_id": session, "page": str(page)})
            return [m.model_copy(update={"is_watched": True}) for m in _movies_from_results(data)]

        if page != 1:
            return await self.gateway.execute(fetch)
        return await self._with_offline_fallback(
            "watchlist",
            fetch,
            lambda cache: cache.get_cached_user_watchlist(),
            lambda cache, movies: cache.cache_user_watchlist(movies),
        )

    async def get_account_details(self, session_id: Optional[str]) -> Dict[str, Any]:
        session = self._require_session(session_id)

        async def fetch() -> Dict[str, Any]:
            data = await self._request("GET", ACCOUNT, {"session_id": session})
            if "id" not in data:
                raise MalformedResponseError("Account response is missing id")
            return data

        return await self.gateway.execute(fetch)

    async def ping(self) -> bool:
        """Single unretried request to check the catalog is reachable with our key."""
        try:
            await self._request("GET", CONFIGURATION)
            return True
        except CatalogError as e:
            logger.info(f"TMDb ping failed: {e!r}")
            return False
