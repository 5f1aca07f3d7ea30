from unittest import mock

import pytest

from attendance_trust.config import settings
from attendance_trust.db.database import SessionLocal, init_db
from attendance_trust.db.models import FraudRecordRow
from attendance_trust.models.domain import FraudRecord, FraudType, Severity
from attendance_trust.services.fraud_engine_service import fraud_engine
from attendance_trust.worker.celery_app import celery_app
from attendance_trust.worker.tasks import archive_fraud_record, purge_expired_trust_data

from factories import NOON


@pytest.fixture(autouse=True)
def archive_tables():
    init_db()
    yield
    db = SessionLocal()
    db.query(FraudRecordRow).delete()
    db.commit()
    db.close()


def sample_record(**overrides):
    data = dict(
        actor_id="student-1", timestamp=NOON, type=FraudType.FACE_SPOOFING, severity=Severity.HIGH,
        fraud_score=0.7, indicators=["face_spoofing_photo", "low_depth_score"],
        device_fingerprint="device-aaaa", ip_address="8.8.8.8", attempt_count=3,
        successful_attempts=1, blocked=True
    )
    data.update(overrides)
    return FraudRecord(**data)


def test_purge_runs_on_the_daily_schedule():
    schedule = celery_app.conf.beat_schedule["purge-expired-trust-data"]
    assert schedule["task"] == purge_expired_trust_data.name
    assert schedule["schedule"] == 86400.0


def test_archive_inserts_then_updates():
    record = sample_record()

    first = archive_fraud_record(record.model_dump(mode="json"))
    assert first == {"record_id": record.id, "created": True}

    resolved = record.model_copy(update={"resolved": True, "notes": "False alarm"})
    second = archive_fraud_record(resolved.model_dump(mode="json"))
    assert second["created"] is False

    db = SessionLocal()
    rows = db.query(FraudRecordRow).all()
    db.close()

    assert len(rows) == 1
    assert rows[0].record_id == record.id
    assert rows[0].fraud_type == "face_spoofing"
    assert rows[0].severity == "high"
    assert rows[0].indicators == ["face_spoofing_photo", "low_depth_score"]
    assert rows[0].resolved
    assert rows[0].notes == "False alarm"


def test_malformed_payload_is_discarded():
    result = archive_fraud_record({"actor_id": "student-1"})
    assert "error" in result

    db = SessionLocal()
    assert db.query(FraudRecordRow).count() == 0
    db.close()


def test_purge_refuses_a_store_the_worker_cannot_see():
    with mock.patch.object(fraud_engine, "purge_old_data") as purge:
        result = purge_expired_trust_data()

    assert result == {"skipped": True, "backend": "memory"}
    purge.assert_not_called()


def test_purge_runs_against_the_shared_store():
    removed = {"attempts_removed": 3, "fraud_records_removed": 1}
    with mock.patch.object(settings, "TRUST_STORE_BACKEND", "redis"), \
            mock.patch.object(fraud_engine, "purge_old_data", return_value=removed) as purge:
        result = purge_expired_trust_data(days_to_keep=7)

    assert result == removed
    purge.assert_called_once_with(7)
