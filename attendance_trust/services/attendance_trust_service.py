"""
Attendance Trust Service - runs every check on one attendance attempt

Pipeline:
1. Geofence containment of the GPS fix
2. Liveness of the captured frame
3. Identity match of the live embedding against the enrolled one
4. Location trust of the GPS fix (against the network and the last fix)
5. Fraud scoring over the analyzer outputs and the actor's history

The analyzers are independent; only the fraud engine keeps state.
"""
import logging
from datetime import datetime
from enum import Enum
from typing import List, Optional

import numpy as np
from pydantic import BaseModel, Field

from attendance_trust.config import settings
from attendance_trust.models.domain import (
    ContainmentResult, DetectedFace, FaceEmbedding, FaceMatchResult,
    FraudEvaluation, Geofence, GpsFix, LatLng, LivenessResult,
    LocationTrustResult, MotionSession
)
from attendance_trust.services.fraud_engine_service import FraudEngine, fraud_engine
from attendance_trust.services.geo_containment_service import (
    GeoContainmentService, geo_containment_service
)
from attendance_trust.services.identity_match_service import (
    IdentityMatchService, identity_match_service
)
from attendance_trust.services.liveness_service import LivenessService, liveness_service
from attendance_trust.services.location_trust_service import (
    LocationTrustService, location_trust_service
)

logger = logging.getLogger(__name__)


class DecisionStatus(str, Enum):
    ACCEPTED = "accepted"
    FLAGGED = "flagged"
    BLOCKED = "blocked"


class AttemptInput(BaseModel):
    """Everything the caller knows about one attendance attempt"""
    actor_id: str
    device_fingerprint: str
    ip_address: Optional[str] = None
    gps_fix: GpsFix
    geofences: List[Geofence] = Field(default_factory=list)
    frame: np.ndarray
    faces: List[DetectedFace] = Field(default_factory=list)
    depth_map: Optional[np.ndarray] = None
    motion_session: Optional[MotionSession] = None
    live_embedding: Optional[FaceEmbedding] = None
    registered_embedding: Optional[FaceEmbedding] = None
    device_timezone: Optional[str] = None
    detected_extensions: List[str] = Field(default_factory=list)
    timestamp: Optional[datetime] = None

    class Config:
        arbitrary_types_allowed = True


class TrustDecision(BaseModel):
    accepted: bool
    status: DecisionStatus
    containment: ContainmentResult
    liveness: LivenessResult
    identity: Optional[FaceMatchResult] = None
    location: LocationTrustResult
    evaluation: FraudEvaluation
    motion_session: MotionSession


class AttendanceTrustService:
    """Single entry point for an attendance attempt"""

    def __init__(
        self,
        geo: Optional[GeoContainmentService] = None,
        liveness: Optional[LivenessService] = None,
        identity: Optional[IdentityMatchService] = None,
        location: Optional[LocationTrustService] = None,
        engine: Optional[FraudEngine] = None
    ):
        self.geo = geo or geo_containment_service
        self.liveness = liveness or liveness_service
        self.identity = identity or identity_match_service
        self.location = location or location_trust_service
        self.engine = engine or fraud_engine

    def process_attempt(self, attempt: AttemptInput) -> TrustDecision:
        """
        Evaluate one attendance attempt.

        Accepted only when the fix is inside an active geofence, the face is
        live, the identity matches, the location is valid and the fraud
        engine does not block. A block yields status "blocked"; any other
        failed check yields "flagged".
        """
        containment = self.geo.contains(
            LatLng(lat=attempt.gps_fix.lat, lng=attempt.gps_fix.lng),
            attempt.geofences
        )

        liveness, session = self.liveness.analyze(
            attempt.frame,
            attempt.faces,
            depth_map=attempt.depth_map,
            session=attempt.motion_session
        )

        identity = None
        if attempt.registered_embedding is not None and attempt.live_embedding is not None:
            identity = self.identity.compare(attempt.registered_embedding, attempt.live_embedding)
        else:
            logger.warning(f"Identity check skipped for actor {attempt.actor_id}: missing embedding")

        location = self.location.verify_for_actor(
            attempt.actor_id,
            attempt.gps_fix,
            ip_address=attempt.ip_address,
            device_timezone=attempt.device_timezone,
            detected_extensions=attempt.detected_extensions,
            device_fingerprint=attempt.device_fingerprint
        )

        evaluation = self.engine.evaluate(
            attempt.actor_id,
            liveness,
            location,
            attempt.device_fingerprint,
            ip_address=attempt.ip_address,
            timestamp=attempt.timestamp
        )

        accepted = (
            containment.inside
            and liveness.is_live
            and identity is not None and identity.match
            and location.is_valid
            and not evaluation.should_block
        )
        if evaluation.should_block:
            status = DecisionStatus.BLOCKED
        elif accepted:
            status = DecisionStatus.ACCEPTED
        else:
            status = DecisionStatus.FLAGGED

        logger.info(
            f"Attendance attempt for actor {attempt.actor_id}: {status.value} "
            f"(fraud_score={evaluation.fraud_score})"
        )

        if evaluation.fraud_record is not None:
            self._archive(evaluation)

        return TrustDecision(
            accepted=accepted,
            status=status,
            containment=containment,
            liveness=liveness,
            identity=identity,
            location=location,
            evaluation=evaluation,
            motion_session=session
        )

    @staticmethod
    def _archive(evaluation: FraudEvaluation) -> None:
        """Hand the fraud record to the worker for the SQL archive."""
        if not settings.FRAUD_ARCHIVE_ENABLED:
            return
        from attendance_trust.worker.tasks import archive_fraud_record

        record = evaluation.fraud_record
        try:
            archive_fraud_record.delay(record.model_dump(mode="json"))
        except Exception as e:
            logger.error(f"Could not enqueue archive of fraud record {record.id}: {e}")


# Singleton instance
attendance_trust_service = AttendanceTrustService()
