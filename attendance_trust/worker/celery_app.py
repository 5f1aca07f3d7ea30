"""
Celery Application Configuration
"""
from celery import Celery

from attendance_trust.config import settings

# Create Celery app
celery_app = Celery(
    "attendance_trust_worker",
    broker=settings.CELERY_BROKER_URL,
    backend=settings.CELERY_RESULT_BACKEND,
    include=[
        "attendance_trust.worker.tasks"
    ]
)

# Celery configuration
celery_app.conf.update(
    task_serializer="json",
    accept_content=["json"],
    result_serializer="json",
    timezone="UTC",
    enable_utc=True,
    task_track_started=True,
    task_time_limit=300,
    worker_prefetch_multiplier=1,
    task_acks_late=True,
    task_reject_on_worker_lost=True,
    result_expires=3600,

    task_routes={
        "attendance_trust.worker.tasks.archive_fraud_record": {"queue": "fraud"},
        "attendance_trust.worker.tasks.*": {"queue": "default"},
    },

    beat_schedule={
        "purge-expired-trust-data": {
            "task": "attendance_trust.worker.tasks.purge_expired_trust_data",
            "schedule": 86400.0,  # Daily
        },
    }
)

if __name__ == "__main__":
    celery_app.start()
