from typing import Any, Dict
from fastapi import APIRouter, Depends

from movierec.api.deps import get_client
from movierec.services.tmdb_client import TMDbClient
from movierec.utils.timezone import utc_now

router = APIRouter()


@router.get("")
async def get_status(client: TMDbClient = Depends(get_client)) -> Dict[str, Any]:
    """Catalog reachability and the remaining request quota of the shared limiter."""
    online = await client.ping()
    return {
        "catalog_online": online,
        "rate_limit": await client.limiter.get_status(),
        "response_cache_entries": len(client.response_cache),
        "checked_at": utc_now().isoformat(),
    }
