"""
Recommendation service for movierec.

Personalized recommendations run as a small per-request state machine:

    START -> TRY_PERSONALIZED -> TRY_GENRE_BASED -> TRY_POPULAR -> DONE

A stage that completes (even with an empty list) ends the request. A stage
that fails hands over to the next one; a failure of the last stage is raised
to the caller. Unauthenticated profiles and profiles without preferred genres
start directly at TRY_POPULAR.
"""
import asyncio
import enum
import logging
from dataclasses import dataclass
from typing import Dict, Iterable, List, Optional, Sequence

from movierec.core.config import settings
from movierec.schemas import Genre, Movie, RecommendationResult, UserProfile
from movierec.services.error_handler import CatalogError
from movierec.services.scoring_engine import ScoringEngine
from movierec.services.tmdb_client import DEFAULT_SORT, TMDbClient

logger = logging.getLogger(__name__)

ALGORITHM_TAG = "hybrid_preference_based"


class Stage(str, enum.Enum):
    START = "start"
    TRY_PERSONALIZED = "try_personalized"
    TRY_GENRE_BASED = "try_genre_based"
    TRY_POPULAR = "try_popular"
    DONE = "done"


@dataclass(frozen=True)
class StageOutcome:
    result: Optional[RecommendationResult] = None
    error: Optional[CatalogError] = None

    @property
    def ok(self) -> bool:
        return self.error is None


_NEXT_ON_FAILURE = {
    Stage.TRY_PERSONALIZED: Stage.TRY_GENRE_BASED,
    Stage.TRY_GENRE_BASED: Stage.TRY_POPULAR,
    Stage.TRY_POPULAR: Stage.DONE,
}


def next_stage(stage: Stage, outcome: Optional[StageOutcome] = None, personalizable: bool = True) -> Stage:
    """Transition table of the fallback chain. Failure, not emptiness, moves on."""
    if stage is Stage.START:
        return Stage.TRY_PERSONALIZED if personalizable else Stage.TRY_POPULAR
    if stage is Stage.DONE:
        return Stage.DONE
    if outcome is None:
        raise ValueError(f"Stage {stage.value} needs an outcome to transition")
    if outcome.ok:
        return Stage.DONE
    return _NEXT_ON_FAILURE[stage]


def filter_excluded(movies: Iterable[Movie], exclude_ids: Iterable[int]) -> List[Movie]:
    """Drop excluded ids and duplicates, keeping the first occurrence."""
    excluded = set(exclude_ids or ())
    seen = set()
    kept: List[Movie] = []
    for movie in movies:
        if movie.id in excluded or movie.id in seen:
            continue
        seen.add(movie.id)
        kept.append(movie)
    return kept


class RecommendationEngine:
    """Hybrid recommender over a TMDbClient with popularity fallbacks."""

    def __init__(self, client: TMDbClient, scorer: Optional[ScoringEngine] = None):
        self.client = client
        self.scorer = scorer or ScoringEngine()
        # Built once from the full genre list and kept for the engine's lifetime
        self._genre_name_to_id: Dict[str, int] = {}
        self._genre_id_to_name: Dict[int, str] = {}
        self._genres_loaded = False
        self._genre_lock = asyncio.Lock()

    async def get_personalized_recommendations(
        self,
        profile: UserProfile,
        page: int = 1,
        exclude_ids: Sequence[int] = (),
    ) -> RecommendationResult:
        personalizable = profile.is_authenticated and bool(profile.preferred_genres)
        stage = next_stage(Stage.START, personalizable=personalizable)
        outcome: Optional[StageOutcome] = None
        first_stage = stage

        while stage is not Stage.DONE:
            outcome = await self._run_stage(stage, profile, page, exclude_ids, fallback=stage is not first_stage)
            if not outcome.ok:
                logger.warning(f"{stage.value} failed ({outcome.error.kind.value}): {outcome.error.message}")
            stage = next_stage(stage, outcome)

        if outcome.error is not None:
            raise outcome.error
        return outcome.result

    async def _run_stage(
        self,
        stage: Stage,
        profile: UserProfile,
        page: int,
        exclude_ids: Sequence[int],
        fallback: bool,
    ) -> StageOutcome:
        try:
            if stage is Stage.TRY_PERSONALIZED:
                result = await self._personalized(profile, page, exclude_ids)
            elif stage is Stage.TRY_GENRE_BASED:
                result = await self.get_genre_based_recommendations(profile.preferred_genres, page, exclude_ids)
            else:
                result = await self.get_popular_movies(page, exclude_ids)
        except CatalogError as e:
            return StageOutcome(error=e)

        if fallback and not result.metadata.get("fallback"):
            result = result.model_copy(update={"metadata": {**result.metadata, "fallback": True}})
        return StageOutcome(result=result)

    async def _personalized(self, profile: UserProfile, page: int, exclude_ids: Sequence[int]) -> RecommendationResult:
        await self._load_genres()
        # Rated list payloads only carry genre ids
        rated_movies = self._with_genre_names(await self._rated_history(profile))
        pool_size = settings.rec_pool_size
        candidates: Dict[int, Movie] = {}
        attempted = 0
        failures: List[CatalogError] = []

        def merge(movies: Iterable[Movie], limit: Optional[int] = None) -> None:
            for movie in movies:
                if limit is not None and len(candidates) >= limit:
                    break
                candidates.setdefault(movie.id, movie)

        # Strategy 1: titles similar to the viewer's highly rated movies
        seeds = [m for m in rated_movies if (m.user_rating or 0.0) >= settings.rec_seed_min_rating]
        for seed in seeds[: settings.rec_max_seed_movies]:
            attempted += 1
            try:
                similar = await self.get_similar_movies(seed.id, exclude_ids)
            except CatalogError as e:
                logger.info(f"Similar titles for {seed.id} unavailable: {e!r}")
                failures.append(e)
                continue
            merge(similar[: settings.rec_similar_per_seed])

        # Strategy 2: discovery in the preferred genres
        attempted += 1
        try:
            by_genre = await self.get_genre_based_recommendations(profile.preferred_genres, page, exclude_ids)
            merge(by_genre.movies[: settings.rec_genre_candidates])
        except CatalogError as e:
            logger.info(f"Genre candidates unavailable: {e!r}")
            failures.append(e)

        # Strategy 3: pad with popular titles
        if len(candidates) < pool_size:
            attempted += 1
            try:
                popular = await self.get_popular_movies(page, exclude_ids)
                merge(popular.movies, limit=pool_size)
            except CatalogError as e:
                logger.info(f"Popular candidates unavailable: {e!r}")
                failures.append(e)

        if attempted and len(failures) == attempted:
            raise failures[-1]

        pool = filter_excluded(self._with_genre_names(candidates.values()), exclude_ids)
        ranked = self.scorer.rank(pool, profile.preferred_genres, rated_movies)
        return RecommendationResult(
            movies=tuple(ranked),
            source="personalized",
            metadata={
                "user_genres": list(profile.preferred_genres),
                "rated_movies_count": len(rated_movies),
                "page": page,
                "algorithm": ALGORITHM_TAG,
            },
        )

    async def _rated_history(self, profile: UserProfile) -> List[Movie]:
        """Best-effort rating history; any failure counts as no history."""
        if not profile.tmdb_session_id or profile.tmdb_account_id is None:
            return []
        try:
            return await self.client.get_rated_movies(profile.tmdb_account_id, profile.tmdb_session_id)
        except CatalogError as e:
            logger.warning(f"Rated movies unavailable, scoring without history: {e!r}")
            return []

    async def get_genre_based_recommendations(
        self,
        genre_names: Sequence[str],
        page: int = 1,
        exclude_ids: Sequence[int] = (),
    ) -> RecommendationResult:
        if not genre_names:
            return await self.get_popular_movies(page, exclude_ids)

        genre_ids = await self.resolve_genre_ids(genre_names)
        if not genre_ids:
            logger.info(f"No catalog genres match {list(genre_names)}, using popular movies")
            return await self.get_popular_movies(page, exclude_ids)

        movies = await self.client.discover_movies(genre_ids=genre_ids, page=page, sort_by=DEFAULT_SORT)
        return RecommendationResult(
            movies=tuple(filter_excluded(self._with_genre_names(movies), exclude_ids)),
            source="genre_based",
            metadata={
                "genres": list(genre_names),
                "genre_ids": genre_ids,
                "page": page,
                "sort_by": DEFAULT_SORT,
            },
        )

    async def get_popular_movies(self, page: int = 1, exclude_ids: Sequence[int] = ()) -> RecommendationResult:
        movies = await self.client.discover_movies(page=page, sort_by=DEFAULT_SORT)
        return RecommendationResult(
            movies=tuple(filter_excluded(self._with_genre_names(movies), exclude_ids)),
            source="popular",
            metadata={
                "page": page,
                "sort_by": DEFAULT_SORT,
                "fallback": True,
            },
        )

    async def get_similar_movies(self, movie_id: int, exclude_ids: Sequence[int] = ()) -> List[Movie]:
        movies = await self.client.get_movie_recommendations(movie_id)
        return filter_excluded(movies, exclude_ids)

    async def resolve_genre_ids(self, genre_names: Sequence[str]) -> List[int]:
        """Catalog ids for genre names (case-insensitive). Unknown names are dropped."""
        await self._load_genres()
        genre_ids: List[int] = []
        for name in genre_names:
            genre_id = self._genre_name_to_id.get(name.strip().lower())
            if genre_id is not None and genre_id not in genre_ids:
                genre_ids.append(genre_id)
        return genre_ids

    async def _load_genres(self) -> None:
        if self._genres_loaded:
            return
        async with self._genre_lock:
            if self._genres_loaded:
                return
            try:
                genres = await self.client.get_genres()
            except CatalogError as e:
                # Leave the map empty; the next request tries again
                logger.warning(f"Genre list unavailable: {e!r}")
                return
            self._genre_name_to_id = {g.name.lower(): g.id for g in genres if g.name}
            self._genre_id_to_name = {g.id: g.name for g in genres}
            self._genres_loaded = True
            logger.info(f"Loaded {len(self._genre_name_to_id)} catalog genres")

    def _with_genre_names(self, movies: Iterable[Movie]) -> List[Movie]:
        """Fill names for genres that list endpoints only return as ids."""
        named: List[Movie] = []
        for movie in movies:
            if any(not g.name for g in movie.genres) and self._genre_id_to_name:
                genres = [
                    g if g.name else Genre(id=g.id, name=self._genre_id_to_name.get(g.id, ""))
                    for g in movie.genres
                ]
                movie = movie.model_copy(update={"genres": genres})
            named.append(movie)
        return named
