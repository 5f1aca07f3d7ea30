"""
Fraud Engine - combines liveness, location trust and attempt history into a
single fraud score and block decision

Runs once per attendance attempt, after the analyzers. Rules fire
additively; every rule that fires leaves an indicator for audit. The engine
owns the per-actor attempt history, the fraud record log and the
device/IP blocklists, all kept in the TrustStore.
"""
import asyncio
import logging
from datetime import datetime, timedelta
from typing import Any, Callable, Dict, List, Optional
from zoneinfo import ZoneInfo

from attendance_trust.config import settings
from attendance_trust.db.trust_store import TrustStore, get_trust_store
from attendance_trust.models.domain import (
    AttendanceAttempt, FraudEvaluation, FraudRecord, FraudType,
    LivenessResult, LocationTrustResult, Severity, utcnow
)
from attendance_trust.services.geo_containment_service import haversine_meters

logger = logging.getLogger(__name__)

# Score contributions per rule
RULE_WEIGHTS = {
    # Liveness
    "not_live": 0.40,
    "low_depth_score": 0.10,
    "low_texture_score": 0.10,
    "no_motion": 0.10,
    # Location
    "location_invalid": 0.30,
    "vpn_detected": 0.20,
    "location_spoofing": 0.30,
    "impossible_speed": 0.20,
    "proxy_detected": 0.15,
    # History
    "multiple_failures": 0.20,
    "device_switching": 0.15,
    "location_jumping": 0.25,
    "unusual_time_pattern": 0.10,
    # Blocklists / rate
    "blocked_device": 0.50,
    "blocked_ip": 0.40,
    "rate_limit_exceeded": 0.30,
}

WEAK_SUBSCORE = 0.3

FACE_SPOOFING_PREFIX = "face_spoofing_"
FACE_SPOOFING_INDICATORS = {"low_depth_score", "low_texture_score", "no_motion"}
LOCATION_SPOOFING_INDICATORS = {"location_spoofing", "impossible_speed"}
AUTO_BLOCK_INDICATORS = FACE_SPOOFING_INDICATORS | LOCATION_SPOOFING_INDICATORS | {"vpn_detected"}

MULTIPLE_FAILURES_MIN = 5
DEVICE_SWITCHING_MAX = 3
UNUSUAL_TIME_MIN = 3


def severity_for(score: float) -> Severity:
    if score >= 0.8:
        return Severity.CRITICAL
    if score >= 0.6:
        return Severity.HIGH
    if score >= 0.4:
        return Severity.MEDIUM
    return Severity.LOW


def fraud_type_for(indicators: List[str]) -> FraudType:
    """First match wins, strongest category first."""
    if any(i.startswith(FACE_SPOOFING_PREFIX) for i in indicators):
        return FraudType.FACE_SPOOFING
    if "location_spoofing" in indicators:
        return FraudType.LOCATION_SPOOFING
    if "vpn_detected" in indicators:
        return FraudType.VPN_USAGE
    if "device_switching" in indicators:
        return FraudType.DEVICE_MISMATCH
    if "impossible_speed" in indicators:
        return FraudType.IMPOSSIBLE_SPEED
    return FraudType.MULTIPLE_ATTEMPTS


def should_auto_block(indicators: List[str]) -> bool:
    return any(
        i.startswith(FACE_SPOOFING_PREFIX) or i in AUTO_BLOCK_INDICATORS
        for i in indicators
    )


class FraudEngine:
    """
    Stateful fraud scorer.

    Evaluations for the same actor are serialized through the store's
    actor lock; different actors never wait on each other.
    """

    def __init__(
        self,
        store: Optional[TrustStore] = None,
        clock: Optional[Callable[[], datetime]] = None
    ):
        self._store = store
        self._clock = clock or utcnow
        self._timezone = ZoneInfo(settings.ATTENDANCE_TIMEZONE)

    @property
    def store(self) -> TrustStore:
        return self._store or get_trust_store()

    # ============================================================
    # EVALUATION
    # ============================================================

    def evaluate(
        self,
        actor_id: str,
        liveness_result: Optional[LivenessResult],
        location_result: Optional[LocationTrustResult],
        device_fingerprint: str,
        ip_address: Optional[str] = None,
        timestamp: Optional[datetime] = None
    ) -> FraudEvaluation:
        """
        Score one attendance attempt and record it in the actor's history.

        Missing liveness or location results contribute nothing.

        Returns:
            FraudEvaluation with the rounded score, block decision,
            indicators in firing order and the fraud record, if one was
            created.
        """
        store = self.store

        attempt = AttendanceAttempt(
            actor_id=actor_id,
            timestamp=timestamp or self._clock(),
            device_fingerprint=device_fingerprint,
            ip_address=ip_address,
            gps_fix=location_result.gps_fix if location_result else None,
            liveness_result=liveness_result,
            location_result=location_result,
            succeeded=(
                (liveness_result is None or liveness_result.is_live)
                and (location_result is None or location_result.is_valid)
            )
        )
        now = attempt.timestamp

        with store.actor_lock(actor_id):
            history = store.get_attempts(actor_id) + [attempt]
            history = history[-settings.ATTEMPT_HISTORY_CAP:]

            indicators: List[str] = []
            score = 0.0
            score += self._score_liveness(liveness_result, indicators)
            score += self._score_location(location_result, indicators)
            score += self._score_patterns(history, indicators)

            if store.is_device_blocked(device_fingerprint):
                score += RULE_WEIGHTS["blocked_device"]
                indicators.append("blocked_device")

            if ip_address and store.is_ip_blocked(ip_address):
                score += RULE_WEIGHTS["blocked_ip"]
                indicators.append("blocked_ip")

            window_start = now - timedelta(minutes=settings.RATE_LIMIT_WINDOW_MIN)
            recent_count = sum(1 for a in history if a.timestamp >= window_start)
            if recent_count > settings.RATE_LIMIT_MAX_ATTEMPTS:
                score += RULE_WEIGHTS["rate_limit_exceeded"]
                indicators.append("rate_limit_exceeded")

            score = round(score, 4)
            should_block = score >= settings.FRAUD_BLOCK_THRESHOLD or should_auto_block(indicators)

            store.append_attempt(
                actor_id,
                attempt.model_copy(update={"fraud_score": score, "blocked": should_block}),
                settings.ATTEMPT_HISTORY_CAP
            )

            fraud_record = None
            if score >= settings.FRAUD_RECORD_THRESHOLD:
                fraud_record = self._build_record(
                    actor_id, history, indicators, score, should_block,
                    device_fingerprint, ip_address, now
                )
                store.add_fraud_record(fraud_record)
                logger.warning(
                    f"Fraud record {fraud_record.id} for actor {actor_id}: "
                    f"{fraud_record.type.value}/{fraud_record.severity.value} score={score}"
                )

            if should_block:
                store.block_device(device_fingerprint)
                if ip_address:
                    store.block_ip(ip_address)
                logger.info(
                    f"Blocked device {device_fingerprint}"
                    + (f" and IP {ip_address}" if ip_address else "")
                    + f" for actor {actor_id} (indicators: {', '.join(indicators)})"
                )

        return FraudEvaluation(
            fraud_score=score,
            should_block=should_block,
            indicators=indicators,
            fraud_record=fraud_record
        )

    @staticmethod
    def _score_liveness(result: Optional[LivenessResult], indicators: List[str]) -> float:
        if result is None or result.is_live:
            return 0.0

        score = RULE_WEIGHTS["not_live"]
        indicators.append(f"{FACE_SPOOFING_PREFIX}{result.spoofing_type.value}")

        metrics = result.metrics
        for indicator, value in (
            ("low_depth_score", metrics.depth),
            ("low_texture_score", metrics.texture),
            ("no_motion", metrics.motion),
        ):
            if value < WEAK_SUBSCORE:
                indicators.append(indicator)
                score += RULE_WEIGHTS[indicator]
        return score

    @staticmethod
    def _score_location(result: Optional[LocationTrustResult], indicators: List[str]) -> float:
        if result is None or result.is_valid:
            return 0.0

        score = RULE_WEIGHTS["location_invalid"]
        flags = result.flags
        for indicator, fired in (
            ("vpn_detected", flags.vpn),
            ("location_spoofing", flags.location_spoofed),
            ("impossible_speed", flags.impossible_speed),
            ("proxy_detected", flags.proxy),
        ):
            if fired:
                indicators.append(indicator)
                score += RULE_WEIGHTS[indicator]
        return score

    def _score_patterns(self, history: List[AttendanceAttempt], indicators: List[str]) -> float:
        if len(history) < 2:
            return 0.0

        score = 0.0
        recent = history[-settings.PATTERN_WINDOW:]

        failures = sum(1 for a in recent if not a.succeeded)
        if failures >= MULTIPLE_FAILURES_MIN:
            score += RULE_WEIGHTS["multiple_failures"]
            indicators.append("multiple_failures")

        if len({a.device_fingerprint for a in recent}) > DEVICE_SWITCHING_MAX:
            score += RULE_WEIGHTS["device_switching"]
            indicators.append("device_switching")

        if self._has_location_jump(recent):
            score += RULE_WEIGHTS["location_jumping"]
            indicators.append("location_jumping")

        unusual = sum(1 for a in recent if self._outside_attendance_hours(a.timestamp))
        if unusual >= UNUSUAL_TIME_MIN:
            score += RULE_WEIGHTS["unusual_time_pattern"]
            indicators.append("unusual_time_pattern")

        return score

    @staticmethod
    def _has_location_jump(attempts: List[AttendanceAttempt]) -> bool:
        located = [a for a in attempts if a.gps_fix is not None]
        for previous, current in zip(located, located[1:]):
            distance = haversine_meters(
                previous.gps_fix.lat, previous.gps_fix.lng,
                current.gps_fix.lat, current.gps_fix.lng
            )
            elapsed = (current.timestamp - previous.timestamp).total_seconds()
            if elapsed <= 0:
                if distance > 0:
                    return True
                continue
            if distance / elapsed * 3.6 > settings.MAX_TRAVEL_SPEED_KMH:
                return True
        return False

    def _outside_attendance_hours(self, timestamp: datetime) -> bool:
        hour = timestamp.astimezone(self._timezone).hour
        return hour < settings.ATTENDANCE_DAY_START_HOUR or hour >= settings.ATTENDANCE_DAY_END_HOUR

    @staticmethod
    def _build_record(
        actor_id: str,
        history: List[AttendanceAttempt],
        indicators: List[str],
        score: float,
        blocked: bool,
        device_fingerprint: str,
        ip_address: Optional[str],
        now: datetime
    ) -> FraudRecord:
        recent = history[-settings.PATTERN_WINDOW:]
        return FraudRecord(
            actor_id=actor_id,
            timestamp=now,
            type=fraud_type_for(indicators),
            severity=severity_for(score),
            fraud_score=score,
            indicators=list(indicators),
            device_fingerprint=device_fingerprint,
            ip_address=ip_address,
            attempt_count=len(recent),
            successful_attempts=sum(1 for a in recent if a.succeeded),
            blocked=blocked
        )

    # ============================================================
    # ADMINISTRATION
    # ============================================================

    def block_device(self, fingerprint: str) -> None:
        self.store.block_device(fingerprint)
        logger.info(f"Device blocked: {fingerprint}")

    def block_ip(self, ip_address: str) -> None:
        self.store.block_ip(ip_address)
        logger.info(f"IP blocked: {ip_address}")

    def unblock_device(self, fingerprint: str) -> bool:
        removed = self.store.unblock_device(fingerprint)
        if removed:
            logger.info(f"Device unblocked: {fingerprint}")
        return removed

    def unblock_ip(self, ip_address: str) -> bool:
        removed = self.store.unblock_ip(ip_address)
        if removed:
            logger.info(f"IP unblocked: {ip_address}")
        return removed

    def is_device_blocked(self, fingerprint: str) -> bool:
        return self.store.is_device_blocked(fingerprint)

    def is_ip_blocked(self, ip_address: str) -> bool:
        return self.store.is_ip_blocked(ip_address)

    def get_attempts(self, actor_id: str) -> List[AttendanceAttempt]:
        return self.store.get_attempts(actor_id)

    def get_fraud_records(self, actor_id: Optional[str] = None) -> List[FraudRecord]:
        return self.store.list_fraud_records(actor_id)

    def resolve_fraud_record(self, record_id: str, notes: Optional[str] = None) -> Optional[FraudRecord]:
        """Mark a record resolved; None if it does not exist."""
        record = self.store.get_fraud_record(record_id)
        if record is None:
            return None

        resolved = record.model_copy(update={"resolved": True, "notes": notes or record.notes})
        if not self.store.update_fraud_record(resolved):
            return None
        logger.info(f"Fraud record resolved: {record_id}")
        return resolved

    def get_statistics(self) -> Dict[str, Any]:
        store = self.store
        records = store.list_fraud_records()

        by_type: Dict[str, int] = {}
        by_severity: Dict[str, int] = {}
        for record in records:
            by_type[record.type.value] = by_type.get(record.type.value, 0) + 1
            by_severity[record.severity.value] = by_severity.get(record.severity.value, 0) + 1

        return {
            "total_attempts": sum(len(store.get_attempts(a)) for a in store.actor_ids()),
            "fraud_attempts": len(records),
            "blocked_attempts": sum(1 for r in records if r.blocked),
            "fraud_by_type": by_type,
            "fraud_by_severity": by_severity,
        }

    def purge_old_data(self, days_to_keep: Optional[int] = None) -> Dict[str, int]:
        """Drop attempts and fraud records older than the retention window."""
        days = settings.FRAUD_RETENTION_DAYS if days_to_keep is None else days_to_keep
        cutoff = self._clock() - timedelta(days=days)
        removed = self.store.purge_before(cutoff)
        logger.info(
            f"Purged trust data older than {days} days: "
            f"{removed['attempts_removed']} attempts, "
            f"{removed['fraud_records_removed']} fraud records"
        )
        return removed

    def export_data(self) -> Dict[str, Any]:
        store = self.store
        attempts: List[AttendanceAttempt] = []
        for actor_id in store.actor_ids():
            attempts.extend(store.get_attempts(actor_id))

        return {
            "attempts": attempts,
            "fraud_records": store.list_fraud_records(),
            "blocked_devices": sorted(store.blocked_devices()),
            "blocked_ips": sorted(store.blocked_ips()),
            "statistics": self.get_statistics(),
        }


async def purge_periodically(engine: FraudEngine, interval_sec: float, days_to_keep: Optional[int] = None) -> None:
    """
    Retention loop for a process-local store; runs until cancelled.

    A failed purge is logged and retried on the next tick.
    """
    while True:
        await asyncio.sleep(interval_sec)
        try:
            await asyncio.to_thread(engine.purge_old_data, days_to_keep)
        except Exception as e:
            logger.error(f"Scheduled trust data purge failed: {e}")


# Singleton instance
fraud_engine = FraudEngine()
