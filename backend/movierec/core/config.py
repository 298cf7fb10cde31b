import os
from pydantic_settings import BaseSettings



class Settings(BaseSettings):
    tmdb_api_key: str = os.getenv("TMDB_API_KEY", "")
    tmdb_base_url: str = os.getenv("TMDB_BASE_URL", "https://api.themoviedb.org/3")
    tmdb_image_base_url: str = os.getenv("TMDB_IMAGE_BASE_URL", "https://image.tmdb.org/t/p/w500")
    redis_url: str = os.getenv("REDIS_URL", "redis://redis:6379/0")
    log_level: str = os.getenv("LOG_LEVEL", "INFO")

    # TMDb allows 40 requests per 10 seconds
    tmdb_rate_limit: int = int(os.getenv("TMDB_RATE_LIMIT", "40"))
    tmdb_rate_window_seconds: float = float(os.getenv("TMDB_RATE_WINDOW_SECONDS", "10"))
    tmdb_timeout_seconds: float = float(os.getenv("TMDB_TIMEOUT_SECONDS", "30"))

    # Retry policy for retryable failures (network, 429, 5xx)
    tmdb_max_retries: int = int(os.getenv("TMDB_MAX_RETRIES", "3"))
    tmdb_retry_base_delay: float = float(os.getenv("TMDB_RETRY_BASE_DELAY", "1.0"))

    # In-process response cache (seconds)
    response_cache_ttl: int = int(os.getenv("RESPONSE_CACHE_TTL", "3600"))

    # Hybrid scorer weights
    score_genre_match_bonus: float = float(os.getenv("SCORE_GENRE_MATCH_BONUS", "2.0"))
    score_learned_preference_weight: float = float(os.getenv("SCORE_LEARNED_PREFERENCE_WEIGHT", "0.5"))
    score_recency_bonus: float = float(os.getenv("SCORE_RECENCY_BONUS", "0.5"))
    score_recency_years: int = int(os.getenv("SCORE_RECENCY_YEARS", "3"))

    # Candidate pool sizing for personalized recommendations
    rec_max_seed_movies: int = int(os.getenv("REC_MAX_SEED_MOVIES", "3"))
    rec_similar_per_seed: int = int(os.getenv("REC_SIMILAR_PER_SEED", "5"))
    rec_genre_candidates: int = int(os.getenv("REC_GENRE_CANDIDATES", "10"))
    rec_pool_size: int = int(os.getenv("REC_POOL_SIZE", "20"))
    rec_seed_min_rating: float = float(os.getenv("REC_SEED_MIN_RATING", "7.0"))

settings = Settings()
