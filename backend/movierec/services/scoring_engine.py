import logging
from collections import defaultdict
from dataclasses import dataclass
from typing import Dict, Iterable, List, Optional, Sequence, Tuple

from movierec.core.config import settings
from movierec.schemas import Movie
from movierec.utils.timezone import extract_year, utc_now

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class ScoringWeights:
    genre_match_bonus: float = 2.0
    learned_preference_weight: float = 0.5
    recency_bonus: float = 0.5
    recency_years: int = 3

    @classmethod
    def from_settings(cls) -> "ScoringWeights":
        return cls(
            genre_match_bonus=settings.score_genre_match_bonus,
            learned_preference_weight=settings.score_learned_preference_weight,
            recency_bonus=settings.score_recency_bonus,
            recency_years=settings.score_recency_years,
        )


def genre_preferences(rated_movies: Iterable[Movie]) -> Dict[str, float]:
    """Average user rating per genre name across the rating history."""
    totals: Dict[str, float] = defaultdict(float)
    counts: Dict[str, int] = defaultdict(int)
    for movie in rated_movies:
        if movie.user_rating is None:
            continue
        for genre in movie.genres:
            if not genre.name:
                continue
            totals[genre.name] += movie.user_rating
            counts[genre.name] += 1
    return {name: totals[name] / counts[name] for name in totals}


class ScoringEngine:
    """
    Deterministic hybrid scorer for personalized recommendations.
    - Base score is the catalog vote average.
    - Each preferred genre on a candidate adds a flat bonus.
    - Each genre also adds a share of the viewer's average rating for it.
    - Recent releases get a small bonus.
    """

    def __init__(self, weights: Optional[ScoringWeights] = None, current_year: Optional[int] = None):
        self.weights = weights or ScoringWeights.from_settings()
        self._current_year = current_year

    @property
    def current_year(self) -> int:
        return self._current_year if self._current_year is not None else utc_now().year

    def score(self, movie: Movie, preferred: Sequence[str], learned: Dict[str, float]) -> float:
        preferred_lower = {g.lower() for g in preferred}
        score = movie.vote_average
        for genre in movie.genres:
            if genre.name and genre.name.lower() in preferred_lower:
                score += self.weights.genre_match_bonus
            score += learned.get(genre.name, 0.0) * self.weights.learned_preference_weight

        release_year = extract_year(movie.release_date)
        if release_year is not None and release_year >= self.current_year - self.weights.recency_years:
            score += self.weights.recency_bonus
        return score

    def score_candidates(
        self,
        candidates: Sequence[Movie],
        preferred_genres: Sequence[str],
        rated_movies: Sequence[Movie],
    ) -> List[Tuple[Movie, float]]:
        """Score and order candidates, highest first. Ties keep input order."""
        learned = genre_preferences(rated_movies)
        scored = [(movie, self.score(movie, preferred_genres, learned)) for movie in candidates]
        # sorted() is stable, so equal scores keep candidate order
        ranked = sorted(scored, key=lambda pair: pair[1], reverse=True)
        if ranked:
            logger.debug(f"Scored {len(ranked)} candidates, top={ranked[0][0].id} ({ranked[0][1]:.2f})")
        return ranked

    def rank(
        self,
        candidates: Sequence[Movie],
        preferred_genres: Sequence[str],
        rated_movies: Sequence[Movie],
    ) -> List[Movie]:
        return [movie for movie, _ in self.score_candidates(candidates, preferred_genres, rated_movies)]
