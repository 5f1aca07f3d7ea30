"""
Location API - geofence containment and location trust

Provides:
- POST /location/geofence/check: Is a point inside any active geofence
- POST /location/verify: Cross-validate a GPS fix for an actor
"""
import logging
from typing import List, Optional

from fastapi import APIRouter, Depends, Request
from pydantic import BaseModel, Field

from attendance_trust.dependencies import (
    get_geo_containment_service, get_location_trust_service, resolve_client_ip
)
from attendance_trust.models.domain import (
    ContainmentResult, Geofence, GpsFix, LatLng, LocationTrustResult
)
from attendance_trust.services.geo_containment_service import GeoContainmentService
from attendance_trust.services.location_trust_service import LocationTrustService

logger = logging.getLogger(__name__)
router = APIRouter(prefix="/location", tags=["Location"])


class GeofenceCheckRequest(BaseModel):
    point: LatLng
    geofences: List[Geofence] = Field(default_factory=list)


class LocationVerifyRequest(BaseModel):
    actor_id: str
    gps_fix: GpsFix
    ip_address: Optional[str] = Field(None, description="Client IP; falls back to CLIENT_IP_HEADER when configured")
    device_timezone: Optional[str] = None
    detected_extensions: List[str] = Field(default_factory=list)
    device_fingerprint: Optional[str] = None


@router.post("/geofence/check", response_model=ContainmentResult)
async def check_geofence(
    request: GeofenceCheckRequest,
    service: GeoContainmentService = Depends(get_geo_containment_service)
):
    return service.contains(request.point, request.geofences)


@router.post("/verify", response_model=LocationTrustResult)
def verify_location(
    request: LocationVerifyRequest,
    http_request: Request,
    service: LocationTrustService = Depends(get_location_trust_service)
):
    """
    Verify a GPS fix against network geolocation and the actor's last fix.

    The fix becomes the actor's last known fix for the next call.
    """
    ip_address = resolve_client_ip(request.ip_address, http_request)
    return service.verify_for_actor(
        request.actor_id,
        request.gps_fix,
        ip_address=ip_address,
        device_timezone=request.device_timezone,
        detected_extensions=request.detected_extensions,
        device_fingerprint=request.device_fingerprint
    )
