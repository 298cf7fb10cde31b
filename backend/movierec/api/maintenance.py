"""
maintenance.py

API endpoints for durable cache maintenance.
"""
from fastapi import APIRouter, Depends
from pydantic import BaseModel
import logging

from movierec.api.deps import get_cache, get_client
from movierec.services.cache_manager import CacheManager
from movierec.services.tmdb_client import TMDbClient

router = APIRouter()
logger = logging.getLogger(__name__)


class MaintenanceResponse(BaseModel):
    status: str
    message: str
    removed: int = 0


@router.post("/cache/sweep", response_model=MaintenanceResponse)
async def sweep_expired_cache(cache: CacheManager = Depends(get_cache)):
    """Remove expired and unreadable entries from the durable cache."""
    removed = await cache.sweep_expired()
    return MaintenanceResponse(status="ok", message=f"Removed {removed} expired entries", removed=removed)


@router.delete("/cache", response_model=MaintenanceResponse)
async def clear_cache(
    cache: CacheManager = Depends(get_cache),
    client: TMDbClient = Depends(get_client),
):
    """Drop every durable cache entry and the in-process response cache."""
    removed = await cache.clear_all()
    await client.clear_cache()
    logger.info(f"Cache cleared via API ({removed} durable entries)")
    return MaintenanceResponse(status="ok", message=f"Cleared {removed} entries", removed=removed)
