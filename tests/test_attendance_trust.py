from unittest import mock

import httpx
import pytest

from attendance_trust.models.domain import (
    FaceEmbedding, Geofence, GeofenceKind, GpsFix, LatLng, MotionSession
)
from attendance_trust.services.attendance_trust_service import (
    AttemptInput, AttendanceTrustService, DecisionStatus
)
from attendance_trust.services.location_trust_service import LocationTrustService
from attendance_trust.services.network_location_service import NetworkLocationService

from factories import NOON, checkerboard_frame, flat_face, live_face, uniform_frame

CAMPUS = Geofence(
    name="campus", kind=GeofenceKind.RADIUS, center=LatLng(lat=40.0, lng=-74.0), radius_meters=200
)
ENROLLED = FaceEmbedding(vector=[0.1] * 128)


@pytest.fixture
def service(store, engine):
    offline = NetworkLocationService(
        providers=[],
        transport=httpx.MockTransport(lambda request: httpx.Response(500)),
        use_cache=False
    )
    return AttendanceTrustService(
        location=LocationTrustService(resolver=offline, store=store),
        engine=engine
    )


def attempt_input(**overrides):
    data = dict(
        actor_id="student-1",
        device_fingerprint="device-aaaa",
        gps_fix=GpsFix(lat=40.0, lng=-74.0, accuracy_meters=10.0, timestamp=NOON),
        geofences=[CAMPUS],
        frame=checkerboard_frame(),
        faces=[live_face()],
        live_embedding=FaceEmbedding(vector=[0.1] * 128),
        registered_embedding=ENROLLED,
        timestamp=NOON,
    )
    data.update(overrides)
    return AttemptInput(**data)


def test_genuine_attempt_is_accepted(service, store):
    decision = service.process_attempt(attempt_input())

    assert decision.accepted
    assert decision.status == DecisionStatus.ACCEPTED
    assert decision.containment.inside
    assert decision.liveness.is_live
    assert decision.identity.match
    assert decision.location.is_valid
    assert decision.evaluation.fraud_score == 0.0
    assert len(decision.motion_session.landmark_history) == 1
    assert store.get_last_fix("student-1") is not None


def test_outside_geofence_is_flagged(service):
    far_fence = CAMPUS.model_copy(update={"center": LatLng(lat=41.0, lng=-74.0)})
    decision = service.process_attempt(attempt_input(geofences=[far_fence]))

    assert not decision.accepted
    assert decision.status == DecisionStatus.FLAGGED
    assert not decision.evaluation.should_block


def test_identity_mismatch_is_flagged(service):
    stranger = FaceEmbedding(vector=[0.5] * 128)
    decision = service.process_attempt(attempt_input(live_embedding=stranger))

    assert not decision.identity.match
    assert decision.status == DecisionStatus.FLAGGED


def test_missing_enrollment_is_never_accepted(service):
    decision = service.process_attempt(attempt_input(registered_embedding=None))
    assert decision.identity is None
    assert not decision.accepted


def test_photo_attack_is_blocked(service, store):
    decision = service.process_attempt(attempt_input(frame=uniform_frame(), faces=[flat_face()]))

    assert decision.status == DecisionStatus.BLOCKED
    assert not decision.accepted
    assert "face_spoofing_photo" in decision.evaluation.indicators
    assert decision.evaluation.fraud_record is not None
    assert store.is_device_blocked("device-aaaa")


def test_motion_session_carries_over(service):
    first = service.process_attempt(attempt_input())
    second = service.process_attempt(attempt_input(motion_session=first.motion_session))
    assert len(second.motion_session.landmark_history) == 2
    assert isinstance(second.motion_session, MotionSession)


def test_fraud_record_is_archived_when_enabled(service):
    with mock.patch("attendance_trust.services.attendance_trust_service.settings") as patched, \
            mock.patch("attendance_trust.worker.tasks.archive_fraud_record.delay") as delay:
        patched.FRAUD_ARCHIVE_ENABLED = True
        decision = service.process_attempt(attempt_input(frame=uniform_frame(), faces=[flat_face()]))

    delay.assert_called_once()
    assert delay.call_args.args[0]["id"] == decision.evaluation.fraud_record.id
