"""
Biometrics API - liveness analysis and face embedding operations

Provides:
- POST /biometrics/liveness/analyze: Anti-spoofing analysis of one frame
- POST /biometrics/face/compare: Compare an enrolled and a live embedding
- POST /biometrics/face/validate: Check an embedding before enrollment
- POST /biometrics/face/average: Average several enrollment captures
"""
import logging
from typing import List, Optional

from fastapi import APIRouter, Depends, HTTPException
from pydantic import BaseModel, Field

from attendance_trust.api.payloads import (
    EncodedArray, MatchResultResponse, decode_array, match_result_response
)
from attendance_trust.dependencies import get_identity_match_service, get_liveness_service
from attendance_trust.models.domain import (
    DetectedFace, FaceEmbedding, LivenessResult, MotionSession
)
from attendance_trust.services.identity_match_service import IdentityMatchService
from attendance_trust.services.liveness_service import LivenessService

logger = logging.getLogger(__name__)
router = APIRouter(prefix="/biometrics", tags=["Biometrics"])


# ============================================================
# REQUEST/RESPONSE MODELS
# ============================================================

class LivenessRequest(BaseModel):
    frame: EncodedArray
    faces: List[DetectedFace] = Field(default_factory=list)
    depth_map: Optional[EncodedArray] = None
    session: Optional[MotionSession] = Field(
        None, description="Session returned by the previous frame of this capture"
    )


class LivenessResponse(BaseModel):
    result: LivenessResult
    session: MotionSession


class CompareRequest(BaseModel):
    registered: FaceEmbedding
    live: FaceEmbedding
    threshold: Optional[float] = Field(None, ge=0.0, le=1.0)


class ValidateRequest(BaseModel):
    embedding: FaceEmbedding


class AverageRequest(BaseModel):
    embeddings: List[FaceEmbedding]


# ============================================================
# ENDPOINTS
# ============================================================

@router.post("/liveness/analyze", response_model=LivenessResponse)
async def analyze_liveness(
    request: LivenessRequest,
    service: LivenessService = Depends(get_liveness_service)
):
    """Run anti-spoofing analysis on one frame of a capture."""
    frame = decode_array(request.frame, "frame")
    depth_map = decode_array(request.depth_map, "depth_map") if request.depth_map else None

    result, session = service.analyze(frame, request.faces, depth_map=depth_map, session=request.session)
    return LivenessResponse(result=result, session=session)


@router.post("/face/compare", response_model=MatchResultResponse)
async def compare_faces(
    request: CompareRequest,
    service: IdentityMatchService = Depends(get_identity_match_service)
):
    result = service.compare(request.registered, request.live, request.threshold)
    return match_result_response(result)


@router.post("/face/validate")
async def validate_embedding(
    request: ValidateRequest,
    service: IdentityMatchService = Depends(get_identity_match_service)
):
    return {"valid": service.validate(request.embedding)}


@router.post("/face/average", response_model=FaceEmbedding)
async def average_embeddings(
    request: AverageRequest,
    service: IdentityMatchService = Depends(get_identity_match_service)
):
    """Element-wise mean of enrollment captures from one algorithm."""
    averaged = service.average(request.embeddings)
    if averaged is None:
        raise HTTPException(
            status_code=422,
            detail="Embeddings must be non-empty, finite and from a single algorithm"
        )
    return averaged
