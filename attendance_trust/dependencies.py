"""
FastAPI dependencies for the Attendance Trust Engine
"""
import ipaddress
from typing import Optional

from fastapi import Header, HTTPException, Request, status

from attendance_trust.config import settings
from attendance_trust.services.attendance_trust_service import (
    AttendanceTrustService, attendance_trust_service
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


async def verify_api_key(x_api_key: Optional[str] = Header(None)) -> str:
    """Verify API key for administrative endpoints"""
    if not x_api_key or x_api_key != settings.API_KEY:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Invalid or missing API key"
        )
    return x_api_key


def resolve_client_ip(explicit: Optional[str], request: Request) -> Optional[str]:
    """
    Client IP for location and blocklist checks.

    An address in the request body wins. Otherwise the first entry of the
    configured CLIENT_IP_HEADER is used. The socket peer is never used: it is
    the proxy or NAT address shared by every client behind it.
    """
    if explicit:
        return explicit.strip()
    if not settings.CLIENT_IP_HEADER:
        return None

    forwarded = request.headers.get(settings.CLIENT_IP_HEADER)
    if not forwarded:
        return None
    candidate = forwarded.split(",")[0].strip()
    try:
        return str(ipaddress.ip_address(candidate))
    except ValueError:
        return None


def get_attendance_trust_service() -> AttendanceTrustService:
    return attendance_trust_service


def get_geo_containment_service() -> GeoContainmentService:
    return geo_containment_service


def get_liveness_service() -> LivenessService:
    return liveness_service


def get_identity_match_service() -> IdentityMatchService:
    return identity_match_service


def get_location_trust_service() -> LocationTrustService:
    return location_trust_service


def get_fraud_engine() -> FraudEngine:
    return fraud_engine
