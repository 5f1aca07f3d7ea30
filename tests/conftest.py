"""
Shared fixtures for the trust engine tests
"""
import os

# Settings are read once at import time
os.environ["DATABASE_URL"] = "sqlite://"
os.environ["TRUST_STORE_BACKEND"] = "memory"
os.environ["REDIS_URL"] = "redis://127.0.0.1:1/0"
os.environ["CELERY_BROKER_URL"] = "memory://"
os.environ["CELERY_RESULT_BACKEND"] = "cache+memory://"
os.environ["FRAUD_ARCHIVE_ENABLED"] = "false"
os.environ["ATTENDANCE_TIMEZONE"] = "UTC"

import pytest  # noqa: E402

from attendance_trust.db.trust_store import InMemoryTrustStore  # noqa: E402
from attendance_trust.services.fraud_engine_service import FraudEngine  # noqa: E402

from factories import NOON  # noqa: E402


@pytest.fixture
def store():
    return InMemoryTrustStore()


@pytest.fixture
def engine(store):
    return FraudEngine(store=store, clock=lambda: NOON)
