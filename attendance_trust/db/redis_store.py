"""
Redis-backed trust store shared by every API and worker process

Key layout (all under the "trust:" prefix):
- trust:attempts:<actor>   list of attempt JSON, oldest first, trimmed to cap
- trust:lastfix:<actor>    last known GPS fix JSON
- trust:blocked:devices    set of fingerprints
- trust:blocked:ips        set of IP addresses
- trust:fraud:records      hash id -> record JSON
- trust:fraud:log          list of record ids, oldest first
- trust:lock:actor:<actor> per-actor lock
"""
import logging
from contextlib import contextmanager
from datetime import datetime
from typing import Dict, Iterator, List, Optional, Set

import redis
from tenacity import retry, retry_if_exception_type, stop_after_attempt, wait_exponential

from attendance_trust.config import settings
from attendance_trust.db.trust_store import TrustStore
from attendance_trust.models.domain import AttendanceAttempt, FraudRecord, GpsFix

logger = logging.getLogger(__name__)

PREFIX = "trust"
BLOCKED_DEVICES_KEY = f"{PREFIX}:blocked:devices"
BLOCKED_IPS_KEY = f"{PREFIX}:blocked:ips"
RECORDS_KEY = f"{PREFIX}:fraud:records"
RECORD_LOG_KEY = f"{PREFIX}:fraud:log"

# Transient connection drops are retried briefly; anything else propagates
redis_retry = retry(
    stop=stop_after_attempt(3),
    wait=wait_exponential(multiplier=0.1, min=0.1, max=1),
    retry=retry_if_exception_type((redis.ConnectionError, redis.TimeoutError)),
    reraise=True
)


def _attempts_key(actor_id: str) -> str:
    return f"{PREFIX}:attempts:{actor_id}"


def _last_fix_key(actor_id: str) -> str:
    return f"{PREFIX}:lastfix:{actor_id}"


def _lock_key(actor_id: str) -> str:
    return f"{PREFIX}:lock:actor:{actor_id}"


class RedisTrustStore(TrustStore):
    """TrustStore on top of redis-py"""

    def __init__(self, client: redis.Redis):
        self._redis = client

    @classmethod
    def from_url(cls, url: str) -> "RedisTrustStore":
        return cls(redis.from_url(url, decode_responses=True))

    @contextmanager
    def actor_lock(self, actor_id: str) -> Iterator[None]:
        lock = self._redis.lock(
            _lock_key(actor_id),
            timeout=settings.TRUST_STORE_LOCK_TIMEOUT_SEC,
            blocking_timeout=settings.TRUST_STORE_LOCK_TIMEOUT_SEC
        )
        if not lock.acquire():
            raise TimeoutError(f"Could not lock attempt history for actor {actor_id}")
        try:
            yield
        finally:
            try:
                lock.release()
            except redis.exceptions.LockError as e:
                logger.warning(f"Actor lock for {actor_id} expired before release: {e}")

    @redis_retry
    def get_attempts(self, actor_id: str) -> List[AttendanceAttempt]:
        raw = self._redis.lrange(_attempts_key(actor_id), 0, -1)
        return [AttendanceAttempt.model_validate_json(item) for item in raw]

    @redis_retry
    def append_attempt(self, actor_id: str, attempt: AttendanceAttempt, cap: int) -> List[AttendanceAttempt]:
        key = _attempts_key(actor_id)
        pipe = self._redis.pipeline(transaction=True)
        pipe.rpush(key, attempt.model_dump_json())
        pipe.ltrim(key, -cap, -1)
        pipe.lrange(key, 0, -1)
        _, _, raw = pipe.execute()
        return [AttendanceAttempt.model_validate_json(item) for item in raw]

    @redis_retry
    def actor_ids(self) -> List[str]:
        prefix = _attempts_key("")
        return [key[len(prefix):] for key in self._redis.scan_iter(match=f"{prefix}*")]

    @redis_retry
    def get_last_fix(self, actor_id: str) -> Optional[GpsFix]:
        raw = self._redis.get(_last_fix_key(actor_id))
        return GpsFix.model_validate_json(raw) if raw else None

    @redis_retry
    def put_last_fix(self, actor_id: str, fix: GpsFix) -> None:
        self._redis.set(_last_fix_key(actor_id), fix.model_dump_json())

    @redis_retry
    def block_device(self, fingerprint: str) -> None:
        self._redis.sadd(BLOCKED_DEVICES_KEY, fingerprint)

    @redis_retry
    def block_ip(self, ip_address: str) -> None:
        self._redis.sadd(BLOCKED_IPS_KEY, ip_address)

    @redis_retry
    def unblock_device(self, fingerprint: str) -> bool:
        return bool(self._redis.srem(BLOCKED_DEVICES_KEY, fingerprint))

    @redis_retry
    def unblock_ip(self, ip_address: str) -> bool:
        return bool(self._redis.srem(BLOCKED_IPS_KEY, ip_address))

    @redis_retry
    def is_device_blocked(self, fingerprint: str) -> bool:
        return bool(self._redis.sismember(BLOCKED_DEVICES_KEY, fingerprint))

    @redis_retry
    def is_ip_blocked(self, ip_address: str) -> bool:
        return bool(self._redis.sismember(BLOCKED_IPS_KEY, ip_address))

    @redis_retry
    def blocked_devices(self) -> Set[str]:
        return set(self._redis.smembers(BLOCKED_DEVICES_KEY))

    @redis_retry
    def blocked_ips(self) -> Set[str]:
        return set(self._redis.smembers(BLOCKED_IPS_KEY))

    @redis_retry
    def add_fraud_record(self, record: FraudRecord) -> None:
        pipe = self._redis.pipeline(transaction=True)
        pipe.hset(RECORDS_KEY, record.id, record.model_dump_json())
        pipe.rpush(RECORD_LOG_KEY, record.id)
        pipe.execute()

    @redis_retry
    def get_fraud_record(self, record_id: str) -> Optional[FraudRecord]:
        raw = self._redis.hget(RECORDS_KEY, record_id)
        return FraudRecord.model_validate_json(raw) if raw else None

    @redis_retry
    def list_fraud_records(self, actor_id: Optional[str] = None) -> List[FraudRecord]:
        ids = self._redis.lrange(RECORD_LOG_KEY, 0, -1)
        if not ids:
            return []
        records = []
        for raw in self._redis.hmget(RECORDS_KEY, ids):
            if not raw:
                continue
            record = FraudRecord.model_validate_json(raw)
            if actor_id is None or record.actor_id == actor_id:
                records.append(record)
        return records

    @redis_retry
    def update_fraud_record(self, record: FraudRecord) -> bool:
        if not self._redis.hexists(RECORDS_KEY, record.id):
            return False
        self._redis.hset(RECORDS_KEY, record.id, record.model_dump_json())
        return True

    def purge_before(self, cutoff: datetime) -> Dict[str, int]:
        removed_attempts = 0
        for actor_id in self.actor_ids():
            with self.actor_lock(actor_id):
                history = self.get_attempts(actor_id)
                kept = [a for a in history if a.timestamp >= cutoff]
                if len(kept) == len(history):
                    continue
                removed_attempts += len(history) - len(kept)
                key = _attempts_key(actor_id)
                pipe = self._redis.pipeline(transaction=True)
                pipe.delete(key)
                if kept:
                    pipe.rpush(key, *[a.model_dump_json() for a in kept])
                pipe.execute()

        removed_records = 0
        for record in self.list_fraud_records():
            if record.timestamp < cutoff:
                pipe = self._redis.pipeline(transaction=True)
                pipe.hdel(RECORDS_KEY, record.id)
                pipe.lrem(RECORD_LOG_KEY, 0, record.id)
                pipe.execute()
                removed_records += 1

        return {"attempts_removed": removed_attempts, "fraud_records_removed": removed_records}

    def health_check(self) -> bool:
        try:
            return bool(self._redis.ping())
        except Exception as e:
            logger.warning(f"Redis trust store unhealthy: {e}")
            return False
