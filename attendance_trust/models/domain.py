"""
Domain models shared by the trust analyzers and the fraud engine.

Categories (spoofing type, fraud type, severity, geofence kind) are closed
string enums; every consumer matches them exhaustively.
"""
import uuid
from datetime import datetime, timezone
from enum import Enum
from typing import Annotated, Dict, List, Optional, Tuple

from pydantic import AfterValidator, BaseModel, Field


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def _as_utc(value: datetime) -> datetime:
    # Naive timestamps are taken to be UTC
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


UtcDatetime = Annotated[datetime, AfterValidator(_as_utc)]


class SpoofingType(str, Enum):
    NONE = "none"
    PHOTO = "photo"
    SCREEN = "screen"
    VIDEO = "video"
    DEEPFAKE = "deepfake"
    MULTIPLE_FACES = "multiple_faces"


class FraudType(str, Enum):
    FACE_SPOOFING = "face_spoofing"
    LOCATION_SPOOFING = "location_spoofing"
    MULTIPLE_ATTEMPTS = "multiple_attempts"
    DEVICE_MISMATCH = "device_mismatch"
    VPN_USAGE = "vpn_usage"
    IMPOSSIBLE_SPEED = "impossible_speed"


class Severity(str, Enum):
    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"
    CRITICAL = "critical"


class GeofenceKind(str, Enum):
    RADIUS = "radius"
    POLYGON = "polygon"


# ============================================================
# GEOMETRY / LOCATION
# ============================================================

class LatLng(BaseModel):
    lat: float
    lng: float

    class Config:
        frozen = True


class GpsFix(BaseModel):
    """A device-reported GPS position"""
    lat: float
    lng: float
    accuracy_meters: float = 0.0
    timestamp: UtcDatetime = Field(default_factory=utcnow)

    class Config:
        frozen = True


class NetworkFix(BaseModel):
    """Location estimate derived from the caller's network address"""
    ip: str = ""
    lat: float
    lng: float
    city: str = ""
    region: str = ""
    country: str = ""
    isp: str = ""
    timezone: str = ""
    accuracy_meters: float = 10_000.0
    is_vpn: bool = False
    is_proxy: bool = False
    is_tor: bool = False
    is_hosting: bool = False
    provider: str = ""

    class Config:
        frozen = True


class LocationFlags(BaseModel):
    vpn: bool = False
    proxy: bool = False
    tor: bool = False
    hosting: bool = False
    location_spoofed: bool = False
    timezone_mismatch: bool = False
    impossible_speed: bool = False

    class Config:
        frozen = True


class LocationTrustResult(BaseModel):
    gps_fix: GpsFix
    network_fix: Optional[NetworkFix] = None
    distance_discrepancy_meters: Optional[float] = None
    speed_kmh: Optional[float] = None
    flags: LocationFlags = Field(default_factory=LocationFlags)
    confidence: float = Field(..., ge=0.0, le=1.0)
    is_valid: bool
    device_fingerprint: Optional[str] = None

    class Config:
        frozen = True


class Geofence(BaseModel):
    """A circular or polygonal region; managed outside the engine"""
    name: Optional[str] = None
    kind: GeofenceKind
    active: bool = True
    center: Optional[LatLng] = None
    radius_meters: Optional[float] = None
    vertices: List[LatLng] = Field(default_factory=list)

    class Config:
        frozen = True


class ContainmentResult(BaseModel):
    inside: bool
    matched_fence: Optional[Geofence] = None
    distance_meters: Optional[float] = None

    class Config:
        frozen = True


# ============================================================
# BIOMETRICS
# ============================================================

class DetectedFace(BaseModel):
    """One face as returned by the external landmark provider (68-point layout)"""
    landmarks: List[Tuple[float, float]]
    expressions: Dict[str, float] = Field(default_factory=dict)


class MotionSession(BaseModel):
    """
    Rolling motion window for one capture session.

    Callers hand the session returned by one analyze() call to the next
    call for the same capture; a new capture starts from a fresh session.
    """
    session_id: str = Field(default_factory=lambda: uuid.uuid4().hex)
    landmark_history: List[List[Tuple[float, float]]] = Field(default_factory=list)
    expression_history: List[Dict[str, float]] = Field(default_factory=list)
    movement_history: List[float] = Field(default_factory=list)
    blink_history: List[bool] = Field(default_factory=list)


class LivenessMetrics(BaseModel):
    depth: float = 0.0
    texture: float = 0.0
    motion: float = 0.0
    blink: float = 0.0
    eye_movement: float = 0.0
    reflection: float = 0.0
    face_count: int = 0
    depth_3d: Optional[float] = None

    class Config:
        frozen = True


class LivenessResult(BaseModel):
    is_live: bool
    confidence: float = Field(..., ge=0.0, le=1.0)
    spoofing_type: SpoofingType = SpoofingType.NONE
    metrics: LivenessMetrics = Field(default_factory=LivenessMetrics)

    class Config:
        frozen = True


class FaceEmbedding(BaseModel):
    vector: List[float]
    algorithm_id: str = "face-api.js-facenet"
    captured_at: UtcDatetime = Field(default_factory=utcnow)
    quality_confidence: float = 1.0

    class Config:
        frozen = True


class FaceMatchResult(BaseModel):
    match: bool
    similarity: float
    distance: float
    message: str = ""

    class Config:
        frozen = True


# ============================================================
# FRAUD
# ============================================================

class AttendanceAttempt(BaseModel):
    actor_id: str
    timestamp: UtcDatetime = Field(default_factory=utcnow)
    device_fingerprint: str
    ip_address: Optional[str] = None
    gps_fix: Optional[GpsFix] = None
    liveness_result: Optional[LivenessResult] = None
    location_result: Optional[LocationTrustResult] = None
    succeeded: bool
    blocked: bool = False
    fraud_score: float = 0.0

    class Config:
        frozen = True


class FraudRecord(BaseModel):
    id: str = Field(default_factory=lambda: f"fraud_{uuid.uuid4().hex}")
    actor_id: str
    timestamp: UtcDatetime = Field(default_factory=utcnow)
    type: FraudType
    severity: Severity
    fraud_score: float
    indicators: List[str] = Field(default_factory=list)
    device_fingerprint: str
    ip_address: Optional[str] = None
    attempt_count: int = 0
    successful_attempts: int = 0
    blocked: bool = False
    resolved: bool = False
    notes: Optional[str] = None


class FraudEvaluation(BaseModel):
    fraud_score: float
    should_block: bool
    indicators: List[str] = Field(default_factory=list)
    fraud_record: Optional[FraudRecord] = None

    class Config:
        frozen = True
