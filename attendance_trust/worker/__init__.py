"""
Background worker - the Celery app is created on import so shared tasks bind to it
"""
from attendance_trust.worker.celery_app import celery_app

__all__ = ["celery_app"]
