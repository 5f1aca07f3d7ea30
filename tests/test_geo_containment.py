import math

from attendance_trust.models.domain import Geofence, GeofenceKind, LatLng
from attendance_trust.services.geo_containment_service import (
    GeoContainmentService, haversine_meters, point_in_polygon
)

METERS_PER_DEGREE_LAT = 6_371_000.0 * math.pi / 180

CENTER = LatLng(lat=40.0, lng=-74.0)
CAMPUS = Geofence(name="campus", kind=GeofenceKind.RADIUS, center=CENTER, radius_meters=50)
SQUARE = Geofence(
    name="hall",
    kind=GeofenceKind.POLYGON,
    vertices=[
        LatLng(lat=10.0, lng=10.0),
        LatLng(lat=10.0, lng=11.0),
        LatLng(lat=11.0, lng=11.0),
        LatLng(lat=11.0, lng=10.0),
    ]
)

service = GeoContainmentService()


def north_of(point: LatLng, meters: float) -> LatLng:
    return LatLng(lat=point.lat + meters / METERS_PER_DEGREE_LAT, lng=point.lng)


def test_haversine_zero_and_known_distance():
    assert haversine_meters(40.0, -74.0, 40.0, -74.0) == 0.0
    assert math.isclose(haversine_meters(0.0, 0.0, 1.0, 0.0), METERS_PER_DEGREE_LAT, rel_tol=1e-9)


def test_center_inside_and_sixty_meters_outside():
    at_center = service.contains(CENTER, [CAMPUS])
    assert at_center.inside
    assert at_center.matched_fence == CAMPUS
    assert at_center.distance_meters == 0.0

    assert not service.contains(north_of(CENTER, 60), [CAMPUS]).inside
    assert service.contains(north_of(CENTER, 49), [CAMPUS]).inside


def test_polygon_containment():
    assert service.contains(LatLng(lat=10.5, lng=10.5), [SQUARE]).inside
    assert not service.contains(LatLng(lat=12.0, lng=10.5), [SQUARE]).inside


def test_polygon_needs_three_vertices():
    assert not point_in_polygon(LatLng(lat=0.0, lng=0.0), [LatLng(lat=-1, lng=-1), LatLng(lat=1, lng=1)])


def test_empty_fence_list_is_outside():
    result = service.contains(CENTER, [])
    assert not result.inside
    assert result.matched_fence is None


def test_inactive_fences_are_skipped():
    inactive = CAMPUS.model_copy(update={"active": False})
    assert not service.contains(CENTER, [inactive]).inside


def test_first_matching_fence_wins():
    wide = Geofence(name="wide", kind=GeofenceKind.RADIUS, center=CENTER, radius_meters=5000)
    result = service.contains(CENTER, [wide, CAMPUS])
    assert result.matched_fence.name == "wide"


def test_non_finite_point_is_outside():
    assert not service.contains(LatLng(lat=float("nan"), lng=-74.0), [CAMPUS]).inside


def test_radius_fence_without_center_never_matches():
    broken = Geofence(kind=GeofenceKind.RADIUS, radius_meters=100)
    assert not service.contains(CENTER, [broken]).inside


def test_contains_is_idempotent():
    point = north_of(CENTER, 20)
    assert service.contains(point, [CAMPUS, SQUARE]) == service.contains(point, [CAMPUS, SQUARE])
