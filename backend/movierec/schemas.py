"""
schemas.py

Pydantic schemas for Movie, Genre, RecommendationResult and UserProfile.
Movie and Genre compare and hash by catalog id only.
"""
from pydantic import BaseModel, ConfigDict, Field, computed_field
from typing import Optional, Dict, Any, List, Tuple, Literal
import datetime

from movierec.core.config import settings
from movierec.utils.timezone import utc_now


class Genre(BaseModel):
    id: int
    name: str = ""

    def __eq__(self, other: object) -> bool:
        return isinstance(other, Genre) and other.id == self.id

    def __hash__(self) -> int:
        return hash(("genre", self.id))


class Movie(BaseModel):
    id: int
    title: str
    overview: str = ""
    poster_path: Optional[str] = None
    backdrop_path: Optional[str] = None
    genres: List[Genre] = Field(default_factory=list)
    vote_average: float = 0.0
    release_date: str = ""
    runtime: Optional[int] = None
    user_rating: Optional[float] = None
    is_watched: bool = False

    def __eq__(self, other: object) -> bool:
        return isinstance(other, Movie) and other.id == self.id

    def __hash__(self) -> int:
        return hash(("movie", self.id))

    @classmethod
    def from_tmdb(cls, data: Dict[str, Any]) -> "Movie":
        """Build from a TMDb payload.

        Detail payloads carry full ``genres`` objects; list payloads only carry
        ``genre_ids``, which become nameless genres until a name map fills them.
        TMDb sends explicit nulls for several optional fields.
        """
        payload = dict(data)
        if not payload.get("genres") and payload.get("genre_ids"):
            payload["genres"] = [{"id": gid} for gid in payload["genre_ids"]]
        for key, default in (("overview", ""), ("release_date", ""), ("vote_average", 0.0), ("genres", [])):
            if payload.get(key) is None:
                payload[key] = default
        return cls.model_validate(payload)

    @computed_field
    @property
    def poster_url(self) -> Optional[str]:
        return f"{settings.tmdb_image_base_url}{self.poster_path}" if self.poster_path else None

    @computed_field
    @property
    def backdrop_url(self) -> Optional[str]:
        return f"{settings.tmdb_image_base_url}{self.backdrop_path}" if self.backdrop_path else None


RecommendationSource = Literal["personalized", "genre_based", "popular"]


class RecommendationResult(BaseModel):
    """Ranked, annotated recommendation set. Immutable once produced."""
    model_config = ConfigDict(frozen=True)

    movies: Tuple[Movie, ...]
    source: RecommendationSource
    metadata: Dict[str, Any] = Field(default_factory=dict)
    timestamp: datetime.datetime = Field(default_factory=utc_now)

    @property
    def movie_ids(self) -> List[int]:
        return [m.id for m in self.movies]


class UserProfile(BaseModel):
    is_authenticated: bool = False
    preferred_genres: List[str] = Field(default_factory=list)
    tmdb_session_id: Optional[str] = None
    tmdb_account_id: Optional[int] = None
    imdb_username: Optional[str] = None
    letterboxd_username: Optional[str] = None


# Payloads
class PersonalizedRequest(BaseModel):
    profile: UserProfile
    page: int = 1
    exclude_ids: List[int] = Field(default_factory=list)


class ErrorPayload(BaseModel):
    error: str
    message: str
    retry: bool
    reauthenticate: bool = False
