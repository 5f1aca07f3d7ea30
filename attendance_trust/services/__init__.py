"""
Services package - trust analyzers and the fraud engine
"""
from attendance_trust.services.geo_containment_service import geo_containment_service
from attendance_trust.services.liveness_service import liveness_service
from attendance_trust.services.identity_match_service import identity_match_service
from attendance_trust.services.network_location_service import network_location_service
from attendance_trust.services.location_trust_service import location_trust_service
from attendance_trust.services.fraud_engine_service import fraud_engine
from attendance_trust.services.attendance_trust_service import attendance_trust_service

__all__ = [
    "geo_containment_service",
    "liveness_service",
    "identity_match_service",
    "network_location_service",
    "location_trust_service",
    "fraud_engine",
    "attendance_trust_service",
]
