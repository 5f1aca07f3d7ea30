"""
Celery tasks for the trust engine
"""
import logging
from typing import Any, Dict, Optional

from celery import shared_task

from attendance_trust.config import settings
from attendance_trust.db.database import SessionLocal
from attendance_trust.db.models import FraudRecordRow
from attendance_trust.models.domain import FraudRecord

logger = logging.getLogger(__name__)


def get_db_session():
    """Get database session for tasks"""
    return SessionLocal()


def _apply_record(row: FraudRecordRow, record: FraudRecord) -> None:
    row.actor_id = record.actor_id
    row.occurred_at = record.timestamp
    row.fraud_type = record.type.value
    row.severity = record.severity.value
    row.fraud_score = record.fraud_score
    row.indicators = list(record.indicators)
    row.device_fingerprint = record.device_fingerprint
    row.ip_address = record.ip_address
    row.attempt_count = record.attempt_count
    row.successful_attempts = record.successful_attempts
    row.blocked = record.blocked
    row.resolved = record.resolved
    row.notes = record.notes


@shared_task(bind=True, max_retries=3, default_retry_delay=30)
def archive_fraud_record(self, record_data: Dict[str, Any]):
    """
    Copy a fraud record into the SQL archive.

    Re-archiving the same record id updates the existing row, so resolved
    records can be pushed again.
    """
    db = None
    try:
        record = FraudRecord.model_validate(record_data)
        db = get_db_session()

        row = db.query(FraudRecordRow).filter(FraudRecordRow.record_id == record.id).first()
        created = row is None
        if created:
            row = FraudRecordRow(record_id=record.id)
            db.add(row)
        _apply_record(row, record)
        db.commit()

        logger.info(f"Archived fraud record {record.id} ({'new' if created else 'updated'})")
        return {"record_id": record.id, "created": created}

    except ValueError as e:
        logger.error(f"Discarding malformed fraud record payload: {e}")
        return {"error": str(e)}
    except Exception as e:
        if db is not None:
            db.rollback()
        logger.error(f"Fraud record archive failed: {e}")
        raise self.retry(exc=e)
    finally:
        if db is not None:
            db.close()


@shared_task(bind=True, max_retries=3, default_retry_delay=300)
def purge_expired_trust_data(self, days_to_keep: Optional[int] = None):
    """
    Apply the retention window to attempt history and fraud records.

    Only meaningful with a shared store: a worker process has its own empty
    in-memory store, so the API process purges that backend itself.
    """
    if settings.TRUST_STORE_BACKEND.lower() != "redis":
        logger.warning(
            f"Skipping trust data purge: backend '{settings.TRUST_STORE_BACKEND}' "
            f"is not shared with the worker"
        )
        return {"skipped": True, "backend": settings.TRUST_STORE_BACKEND}

    from attendance_trust.services.fraud_engine_service import fraud_engine

    try:
        result = fraud_engine.purge_old_data(days_to_keep)
        logger.info(f"Trust data purge completed: {result}")
        return result
    except Exception as e:
        logger.error(f"Trust data purge failed: {e}")
        raise self.retry(exc=e)
