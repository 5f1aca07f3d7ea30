"""
Geo Containment Service - is a point inside any active geofence
"""
import logging
import math
from typing import List, Optional, Sequence

from attendance_trust.models.domain import ContainmentResult, Geofence, GeofenceKind, LatLng

logger = logging.getLogger(__name__)

EARTH_RADIUS_M = 6_371_000.0


def haversine_meters(lat1: float, lng1: float, lat2: float, lng2: float) -> float:
    """Great-circle distance between two coordinates in meters."""
    phi1 = math.radians(lat1)
    phi2 = math.radians(lat2)
    delta_phi = math.radians(lat2 - lat1)
    delta_lambda = math.radians(lng2 - lng1)

    a = (math.sin(delta_phi / 2) ** 2 +
         math.cos(phi1) * math.cos(phi2) *
         math.sin(delta_lambda / 2) ** 2)
    c = 2 * math.atan2(math.sqrt(a), math.sqrt(1 - a))

    return EARTH_RADIUS_M * c


def point_in_polygon(point: LatLng, vertices: Sequence[LatLng]) -> bool:
    """Even-odd ray casting; edges wrap from the last vertex to the first."""
    if len(vertices) < 3:
        return False

    inside = False
    x, y = point.lat, point.lng
    j = len(vertices) - 1
    for i in range(len(vertices)):
        xi, yi = vertices[i].lat, vertices[i].lng
        xj, yj = vertices[j].lat, vertices[j].lng
        if (yi > y) != (yj > y) and x < (xj - xi) * (y - yi) / (yj - yi) + xi:
            inside = not inside
        j = i

    return inside


class GeoContainmentService:
    """
    Tests a point against a list of geofences.

    Inactive fences are skipped and the first matching fence in input
    order wins, so callers order fences by priority.
    """

    def contains(self, point: LatLng, geofences: List[Geofence]) -> ContainmentResult:
        if not geofences:
            return ContainmentResult(inside=False)

        if not (math.isfinite(point.lat) and math.isfinite(point.lng)):
            logger.warning("Geofence check received a non-finite point")
            return ContainmentResult(inside=False)

        for fence in geofences:
            if not fence.active:
                continue

            if fence.kind == GeofenceKind.RADIUS:
                distance = self._radius_distance(point, fence)
                if distance is not None and distance <= fence.radius_meters:
                    return ContainmentResult(inside=True, matched_fence=fence, distance_meters=distance)
            elif fence.kind == GeofenceKind.POLYGON:
                if point_in_polygon(point, fence.vertices):
                    return ContainmentResult(inside=True, matched_fence=fence)

        return ContainmentResult(inside=False)

    @staticmethod
    def _radius_distance(point: LatLng, fence: Geofence) -> Optional[float]:
        if fence.center is None or fence.radius_meters is None:
            return None
        distance = haversine_meters(point.lat, point.lng, fence.center.lat, fence.center.lng)
        if not math.isfinite(distance):
            return None
        return distance


# Singleton instance
geo_containment_service = GeoContainmentService()
