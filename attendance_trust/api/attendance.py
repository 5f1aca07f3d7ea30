"""
Attendance API - full trust evaluation of an attendance attempt

Provides:
- POST /attendance/attempts: Run geofence, liveness, identity, location and
  fraud checks on one attempt and return the decision
"""
import logging
from datetime import datetime
from typing import List, Optional

from fastapi import APIRouter, Depends, Request
from pydantic import BaseModel, Field

from attendance_trust.api.payloads import (
    EncodedArray, MatchResultResponse, decode_array, match_result_response
)
from attendance_trust.dependencies import get_attendance_trust_service, resolve_client_ip
from attendance_trust.models.domain import (
    ContainmentResult, DetectedFace, FaceEmbedding, FraudEvaluation, Geofence,
    GpsFix, LivenessResult, LocationTrustResult, MotionSession
)
from attendance_trust.services.attendance_trust_service import (
    AttemptInput, AttendanceTrustService, DecisionStatus
)

logger = logging.getLogger(__name__)
router = APIRouter(prefix="/attendance", tags=["Attendance"])


class AttemptRequest(BaseModel):
    """Request model for an attendance attempt"""
    actor_id: str = Field(..., description="Who is checking in")
    device_fingerprint: str
    ip_address: Optional[str] = Field(None, description="Client IP; falls back to CLIENT_IP_HEADER when configured")
    gps_fix: GpsFix
    geofences: List[Geofence] = Field(default_factory=list)
    frame: EncodedArray
    faces: List[DetectedFace] = Field(default_factory=list)
    depth_map: Optional[EncodedArray] = None
    motion_session: Optional[MotionSession] = None
    live_embedding: Optional[FaceEmbedding] = None
    registered_embedding: Optional[FaceEmbedding] = None
    device_timezone: Optional[str] = None
    detected_extensions: List[str] = Field(default_factory=list)
    timestamp: Optional[datetime] = None


class AttemptResponse(BaseModel):
    accepted: bool
    status: DecisionStatus
    containment: ContainmentResult
    liveness: LivenessResult
    identity: Optional[MatchResultResponse] = None
    location: LocationTrustResult
    evaluation: FraudEvaluation
    motion_session: MotionSession


@router.post("/attempts", response_model=AttemptResponse)
def submit_attempt(
    request: AttemptRequest,
    http_request: Request,
    service: AttendanceTrustService = Depends(get_attendance_trust_service)
):
    """
    Evaluate one attendance attempt.

    A blocked attempt is a normal response with status "blocked" and the
    indicators that caused it.
    """
    ip_address = resolve_client_ip(request.ip_address, http_request)

    attempt = AttemptInput(
        actor_id=request.actor_id,
        device_fingerprint=request.device_fingerprint,
        ip_address=ip_address,
        gps_fix=request.gps_fix,
        geofences=request.geofences,
        frame=decode_array(request.frame, "frame"),
        faces=request.faces,
        depth_map=decode_array(request.depth_map, "depth_map") if request.depth_map else None,
        motion_session=request.motion_session,
        live_embedding=request.live_embedding,
        registered_embedding=request.registered_embedding,
        device_timezone=request.device_timezone,
        detected_extensions=request.detected_extensions,
        timestamp=request.timestamp
    )

    decision = service.process_attempt(attempt)

    return AttemptResponse(
        accepted=decision.accepted,
        status=decision.status,
        containment=decision.containment,
        liveness=decision.liveness,
        identity=match_result_response(decision.identity) if decision.identity else None,
        location=decision.location,
        evaluation=decision.evaluation,
        motion_session=decision.motion_session
    )
