from fastapi import APIRouter, Depends, Query
from typing import List

from movierec.api.deps import get_engine
from movierec.schemas import Movie, PersonalizedRequest, RecommendationResult
from movierec.services.recommendation_service import RecommendationEngine

router = APIRouter()


@router.post("/personalized", response_model=RecommendationResult)
async def personalized_recommendations(
    payload: PersonalizedRequest,
    engine: RecommendationEngine = Depends(get_engine),
) -> RecommendationResult:
    """
    Hybrid recommendations for a profile, falling back to genre discovery and then popularity.
    """
    return await engine.get_personalized_recommendations(
        payload.profile, page=payload.page, exclude_ids=payload.exclude_ids
    )


@router.get("/genre", response_model=RecommendationResult)
async def genre_recommendations(
    genres: List[str] = Query(default=[], description="Genre names, e.g. ?genres=Action&genres=Drama"),
    page: int = Query(1, ge=1, le=500),
    exclude: List[int] = Query(default=[], description="Movie ids to leave out"),
    engine: RecommendationEngine = Depends(get_engine),
) -> RecommendationResult:
    return await engine.get_genre_based_recommendations(genres, page=page, exclude_ids=exclude)


@router.get("/popular", response_model=RecommendationResult)
async def popular_movies(
    page: int = Query(1, ge=1, le=500),
    exclude: List[int] = Query(default=[]),
    engine: RecommendationEngine = Depends(get_engine),
) -> RecommendationResult:
    return await engine.get_popular_movies(page=page, exclude_ids=exclude)


@router.get("/similar/{movie_id}", response_model=List[Movie])
async def similar_movies(
    movie_id: int,
    exclude: List[int] = Query(default=[]),
    engine: RecommendationEngine = Depends(get_engine),
) -> List[Movie]:
    return await engine.get_similar_movies(movie_id, exclude_ids=exclude)
