"""
deps.py - FastAPI dependencies resolving the process-wide services from app state.
"""
from fastapi import Request

from movierec.services.cache_manager import CacheManager
from movierec.services.recommendation_service import RecommendationEngine
from movierec.services.tmdb_client import TMDbClient


def get_client(request: Request) -> TMDbClient:
    return request.app.state.tmdb_client


def get_engine(request: Request) -> RecommendationEngine:
    return request.app.state.engine


def get_cache(request: Request) -> CacheManager:
    return request.app.state.cache
