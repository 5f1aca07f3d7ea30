"""
Domain models and the embedding algorithm registry
"""
from attendance_trust.models.domain import (
    AttendanceAttempt,
    ContainmentResult,
    DetectedFace,
    FaceEmbedding,
    FaceMatchResult,
    FraudEvaluation,
    FraudRecord,
    FraudType,
    Geofence,
    GeofenceKind,
    GpsFix,
    LatLng,
    LivenessMetrics,
    LivenessResult,
    LocationFlags,
    LocationTrustResult,
    MotionSession,
    NetworkFix,
    Severity,
    SpoofingType,
    utcnow,
)
from attendance_trust.models.registry import algorithm_registry

__all__ = [
    "AttendanceAttempt",
    "ContainmentResult",
    "DetectedFace",
    "FaceEmbedding",
    "FaceMatchResult",
    "FraudEvaluation",
    "FraudRecord",
    "FraudType",
    "Geofence",
    "GeofenceKind",
    "GpsFix",
    "LatLng",
    "LivenessMetrics",
    "LivenessResult",
    "LocationFlags",
    "LocationTrustResult",
    "MotionSession",
    "NetworkFix",
    "Severity",
    "SpoofingType",
    "utcnow",
    "algorithm_registry",
]
