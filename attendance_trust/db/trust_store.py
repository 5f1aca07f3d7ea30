"""
Trust store - shared mutable state of the trust engine

Holds per-actor attempt history, per-actor last known GPS fix, the fraud
record log and the device/IP blocklists. Scoring code only talks to the
TrustStore interface; deployments pick an implementation with
TRUST_STORE_BACKEND.
"""
import logging
import threading
from abc import ABC, abstractmethod
from contextlib import contextmanager
from datetime import datetime
from functools import lru_cache
from typing import ContextManager, Dict, Iterator, List, Optional, Set

from attendance_trust.config import settings
from attendance_trust.models.domain import AttendanceAttempt, FraudRecord, GpsFix

logger = logging.getLogger(__name__)


class TrustStore(ABC):
    """Storage interface used by the fraud engine and location analyzer"""

    # Per-actor serialization
    @abstractmethod
    def actor_lock(self, actor_id: str) -> ContextManager[None]:
        """Exclusive section for one actor; other actors never wait on it."""

    # Attempt history
    @abstractmethod
    def get_attempts(self, actor_id: str) -> List[AttendanceAttempt]:
        """Actor history, oldest first."""

    @abstractmethod
    def append_attempt(self, actor_id: str, attempt: AttendanceAttempt, cap: int) -> List[AttendanceAttempt]:
        """Append and evict the oldest beyond cap; returns the new history."""

    @abstractmethod
    def actor_ids(self) -> List[str]:
        pass

    # Last known fix
    @abstractmethod
    def get_last_fix(self, actor_id: str) -> Optional[GpsFix]:
        pass

    @abstractmethod
    def put_last_fix(self, actor_id: str, fix: GpsFix) -> None:
        pass

    # Blocklists
    @abstractmethod
    def block_device(self, fingerprint: str) -> None:
        pass

    @abstractmethod
    def block_ip(self, ip_address: str) -> None:
        pass

    @abstractmethod
    def unblock_device(self, fingerprint: str) -> bool:
        pass

    @abstractmethod
    def unblock_ip(self, ip_address: str) -> bool:
        pass

    @abstractmethod
    def is_device_blocked(self, fingerprint: str) -> bool:
        pass

    @abstractmethod
    def is_ip_blocked(self, ip_address: str) -> bool:
        pass

    @abstractmethod
    def blocked_devices(self) -> Set[str]:
        pass

    @abstractmethod
    def blocked_ips(self) -> Set[str]:
        pass

    # Fraud records
    @abstractmethod
    def add_fraud_record(self, record: FraudRecord) -> None:
        pass

    @abstractmethod
    def get_fraud_record(self, record_id: str) -> Optional[FraudRecord]:
        pass

    @abstractmethod
    def list_fraud_records(self, actor_id: Optional[str] = None) -> List[FraudRecord]:
        """Records oldest first, optionally for one actor."""

    @abstractmethod
    def update_fraud_record(self, record: FraudRecord) -> bool:
        pass

    # Housekeeping
    @abstractmethod
    def purge_before(self, cutoff: datetime) -> Dict[str, int]:
        """Drop attempts and fraud records older than cutoff."""

    def health_check(self) -> bool:
        return True


class _ActorLock:
    """A lock plus the number of threads holding or waiting on it"""

    def __init__(self):
        self.lock = threading.Lock()
        self.users = 0


class InMemoryTrustStore(TrustStore):
    """Process-local store guarded by locks; the default for single-process use"""

    def __init__(self):
        self._lock = threading.RLock()
        self._actor_locks: Dict[str, _ActorLock] = {}
        self._attempts: Dict[str, List[AttendanceAttempt]] = {}
        self._last_fixes: Dict[str, GpsFix] = {}
        self._blocked_devices: Set[str] = set()
        self._blocked_ips: Set[str] = set()
        self._records: Dict[str, FraudRecord] = {}

    @contextmanager
    def actor_lock(self, actor_id: str) -> Iterator[None]:
        with self._lock:
            entry = self._actor_locks.setdefault(actor_id, _ActorLock())
            entry.users += 1
        try:
            with entry.lock:
                yield
        finally:
            # Dropped once idle, so the table only holds actors in flight
            with self._lock:
                entry.users -= 1
                if entry.users == 0:
                    del self._actor_locks[actor_id]

    def get_attempts(self, actor_id: str) -> List[AttendanceAttempt]:
        with self._lock:
            return list(self._attempts.get(actor_id, []))

    def append_attempt(self, actor_id: str, attempt: AttendanceAttempt, cap: int) -> List[AttendanceAttempt]:
        with self._lock:
            history = self._attempts.setdefault(actor_id, [])
            history.append(attempt)
            if len(history) > cap:
                del history[:len(history) - cap]
            return list(history)

    def actor_ids(self) -> List[str]:
        with self._lock:
            return list(self._attempts.keys())

    def get_last_fix(self, actor_id: str) -> Optional[GpsFix]:
        with self._lock:
            return self._last_fixes.get(actor_id)

    def put_last_fix(self, actor_id: str, fix: GpsFix) -> None:
        with self._lock:
            self._last_fixes[actor_id] = fix

    def block_device(self, fingerprint: str) -> None:
        with self._lock:
            self._blocked_devices.add(fingerprint)

    def block_ip(self, ip_address: str) -> None:
        with self._lock:
            self._blocked_ips.add(ip_address)

    def unblock_device(self, fingerprint: str) -> bool:
        with self._lock:
            if fingerprint in self._blocked_devices:
                self._blocked_devices.discard(fingerprint)
                return True
            return False

    def unblock_ip(self, ip_address: str) -> bool:
        with self._lock:
            if ip_address in self._blocked_ips:
                self._blocked_ips.discard(ip_address)
                return True
            return False

    def is_device_blocked(self, fingerprint: str) -> bool:
        with self._lock:
            return fingerprint in self._blocked_devices

    def is_ip_blocked(self, ip_address: str) -> bool:
        with self._lock:
            return ip_address in self._blocked_ips

    def blocked_devices(self) -> Set[str]:
        with self._lock:
            return set(self._blocked_devices)

    def blocked_ips(self) -> Set[str]:
        with self._lock:
            return set(self._blocked_ips)

    def add_fraud_record(self, record: FraudRecord) -> None:
        with self._lock:
            self._records[record.id] = record

    def get_fraud_record(self, record_id: str) -> Optional[FraudRecord]:
        with self._lock:
            record = self._records.get(record_id)
            return record.model_copy() if record else None

    def list_fraud_records(self, actor_id: Optional[str] = None) -> List[FraudRecord]:
        with self._lock:
            return [
                r.model_copy() for r in self._records.values()
                if actor_id is None or r.actor_id == actor_id
            ]

    def update_fraud_record(self, record: FraudRecord) -> bool:
        with self._lock:
            if record.id not in self._records:
                return False
            self._records[record.id] = record
            return True

    def purge_before(self, cutoff: datetime) -> Dict[str, int]:
        removed_attempts = 0
        with self._lock:
            for actor_id in list(self._attempts.keys()):
                history = self._attempts[actor_id]
                kept = [a for a in history if a.timestamp >= cutoff]
                removed_attempts += len(history) - len(kept)
                if kept:
                    self._attempts[actor_id] = kept
                else:
                    del self._attempts[actor_id]

            stale = [rid for rid, r in self._records.items() if r.timestamp < cutoff]
            for rid in stale:
                del self._records[rid]

        return {"attempts_removed": removed_attempts, "fraud_records_removed": len(stale)}


@lru_cache()
def get_trust_store() -> TrustStore:
    """Get the configured process-wide trust store"""
    backend = settings.TRUST_STORE_BACKEND.lower()
    if backend == "redis":
        from attendance_trust.db.redis_store import RedisTrustStore
        logger.info("Using Redis trust store")
        return RedisTrustStore.from_url(settings.REDIS_URL)
    if backend != "memory":
        logger.warning(f"Unknown TRUST_STORE_BACKEND '{backend}', falling back to memory")
    return InMemoryTrustStore()
