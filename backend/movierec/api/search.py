"""
search.py - Direct catalog access: search, movie details and the genre list
"""
from fastapi import APIRouter, Depends, Query
from typing import List
import logging

from movierec.api.deps import get_client
from movierec.schemas import Genre, Movie
from movierec.services.tmdb_client import TMDbClient

logger = logging.getLogger(__name__)
router = APIRouter()


@router.get("/search", response_model=List[Movie])
async def search_movies(
    q: str = Query(..., min_length=1, description="Search query"),
    page: int = Query(1, ge=1, le=500),
    client: TMDbClient = Depends(get_client),
):
    return await client.search_movies(q, page=page)


@router.get("/genres", response_model=List[Genre])
async def list_genres(client: TMDbClient = Depends(get_client)):
    return await client.get_genres()


@router.get("/{movie_id}", response_model=Movie)
async def movie_details(movie_id: int, client: TMDbClient = Depends(get_client)):
    return await client.get_movie_details(movie_id)
