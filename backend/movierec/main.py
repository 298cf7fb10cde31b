from contextlib import asynccontextmanager
import logging

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware
from fastapi.middleware.gzip import GZipMiddleware
from starlette.requests import Request
from starlette.responses import JSONResponse

from movierec.api import maintenance, recommendations, search, status
from movierec.core.config import settings
from movierec.core.redis_client import close_redis
from movierec.schemas import ErrorPayload
from movierec.services.cache_manager import CacheManager
from movierec.services.error_handler import CatalogError, ErrorKind, describe
from movierec.services.recommendation_service import RecommendationEngine
from movierec.services.tmdb_client import TMDbClient
from movierec.utils.logger import configure_logging

logger = logging.getLogger(__name__)

STATUS_BY_KIND = {
    ErrorKind.NETWORK: 503,
    ErrorKind.AUTH: 401,
    ErrorKind.NOT_FOUND: 404,
    ErrorKind.RATE_LIMITED: 429,
    ErrorKind.SERVER: 502,
    ErrorKind.MALFORMED_RESPONSE: 502,
    ErrorKind.VALIDATION: 422,
    ErrorKind.CACHE: 500,
}


@asynccontextmanager
async def lifespan(app: FastAPI):
    configure_logging(settings.log_level)
    cache = CacheManager()
    client = TMDbClient(cache=cache)
    app.state.cache = cache
    app.state.tmdb_client = client
    app.state.engine = RecommendationEngine(client)
    if not settings.tmdb_api_key:
        logger.warning("TMDB_API_KEY is not set; catalog requests will fail with an auth error")
    try:
        await cache.sweep_expired()
    except CatalogError as e:
        logger.warning(f"Startup cache sweep skipped: {e}")
    yield
    await client.aclose()
    await close_redis()


app = FastAPI(title="movierec API", version="1.0.0", lifespan=lifespan)

app.add_middleware(GZipMiddleware, minimum_size=1000)

app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


@app.exception_handler(CatalogError)
async def catalog_error_handler(request: Request, exc: CatalogError) -> JSONResponse:
    report = describe(exc)
    logger.info(f"{request.method} {request.url.path} -> {exc!r}")
    payload = ErrorPayload(
        error=report.kind.value,
        message=report.message,
        retry=report.offer_retry,
        reauthenticate=report.reauthenticate,
    )
    return JSONResponse(status_code=STATUS_BY_KIND[report.kind], content=payload.model_dump())


app.include_router(recommendations.router, prefix="/api/recommendations", tags=["Recommendations"])
app.include_router(search.router, prefix="/api/movies", tags=["Movies"])
app.include_router(maintenance.router, prefix="/api/maintenance", tags=["Maintenance"])
app.include_router(status.router, prefix="/api/status", tags=["Status"])
