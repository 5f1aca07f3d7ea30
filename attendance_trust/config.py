"""
Configuration module for the Attendance Trust Engine
Loads environment variables and provides settings
"""
from functools import lru_cache
from pydantic_settings import BaseSettings
from typing import Dict, List, Optional


class Settings(BaseSettings):
    """Application settings loaded from environment variables"""

    # Application
    APP_ENV: str = "development"
    APP_DEBUG: bool = False
    API_KEY: str = "internal-api-key"
    # Header carrying the client IP when behind a trusted reverse proxy, e.g. X-Forwarded-For
    CLIENT_IP_HEADER: Optional[str] = None

    # Database (fraud record archive)
    DATABASE_URL: str = "sqlite:///./attendance_trust.db"

    # Redis
    REDIS_URL: str = "redis://redis:6379/0"

    # Trust store backend: "memory" or "redis"
    TRUST_STORE_BACKEND: str = "memory"
    TRUST_STORE_LOCK_TIMEOUT_SEC: int = 10
    # Memory backend only: in-process retention purge interval
    TRUST_PURGE_INTERVAL_SEC: int = 86400

    # Celery
    CELERY_BROKER_URL: str = "redis://redis:6379/0"
    CELERY_RESULT_BACKEND: str = "redis://redis:6379/0"
    FRAUD_ARCHIVE_ENABLED: bool = False

    # Network geolocation (tried in order, first answer wins)
    GEOIP_PROVIDERS: List[str] = ["ipapi.co", "ip-api.com", "ipinfo.io"]
    GEOIP_TIMEOUT_SEC: float = 3.0
    GEOIP_TOTAL_BUDGET_SEC: float = 6.0
    GEOIP_CACHE_TTL_SEC: int = 3600

    # Identity matching
    FACE_MATCH_THRESHOLD: float = 0.6
    MIN_EMBEDDING_QUALITY: float = 0.3
    DEFAULT_EMBEDDING_ALGORITHM: str = "face-api.js-facenet"
    EMBEDDING_ALGORITHMS: Dict[str, int] = {"face-api.js-facenet": 128}

    # Liveness
    LIVENESS_THRESHOLD: float = 0.6

    # Location trust
    LOCATION_VALID_THRESHOLD: float = 0.6
    LOCATION_DISCREPANCY_WARN_M: float = 50_000
    LOCATION_DISCREPANCY_SPOOF_M: float = 100_000

    # Fraud engine
    FRAUD_BLOCK_THRESHOLD: float = 0.6
    FRAUD_RECORD_THRESHOLD: float = 0.4
    ATTEMPT_HISTORY_CAP: int = 50
    PATTERN_WINDOW: int = 10
    RATE_LIMIT_WINDOW_MIN: int = 5
    RATE_LIMIT_MAX_ATTEMPTS: int = 10
    MAX_TRAVEL_SPEED_KMH: float = 200.0
    ATTENDANCE_TIMEZONE: str = "UTC"
    ATTENDANCE_DAY_START_HOUR: int = 6
    ATTENDANCE_DAY_END_HOUR: int = 22
    FRAUD_RETENTION_DAYS: int = 30

    class Config:
        env_file = ".env"
        extra = "allow"


@lru_cache()
def get_settings() -> Settings:
    """Get cached settings instance"""
    return Settings()


settings = get_settings()
