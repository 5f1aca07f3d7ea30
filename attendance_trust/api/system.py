"""
System Router - Health checks and monitoring
"""
from datetime import datetime, timezone

import redis
from fastapi import APIRouter
from sqlalchemy import text

from attendance_trust.config import settings
from attendance_trust.db.database import engine
from attendance_trust.db.trust_store import get_trust_store
from attendance_trust.models.registry import algorithm_registry

router = APIRouter()


@router.get("/ai/health")
async def health_check():
    """
    Health check endpoint returning status of the engine's backing services.
    """
    trust_store_status = "healthy" if get_trust_store().health_check() else "unhealthy"

    redis_status = "unhealthy"
    worker_queue_depth = 0
    try:
        r = redis.from_url(settings.REDIS_URL)
        r.ping()
        redis_status = "healthy"
        worker_queue_depth = r.llen("fraud") or 0
    except Exception:
        pass

    database_status = "unhealthy"
    try:
        with engine.connect() as conn:
            conn.execute(text("SELECT 1"))
        database_status = "healthy"
    except Exception:
        pass

    return {
        "trust_store": trust_store_status,
        "trust_store_backend": settings.TRUST_STORE_BACKEND,
        "redis": redis_status,
        "database": database_status,
        "embedding_algorithms": algorithm_registry.list_algorithms()["count"],
        "worker_queue_depth": worker_queue_depth,
        "timestamp": datetime.now(timezone.utc).isoformat()
    }
