import numpy as np
import pytest

from attendance_trust.models.domain import DetectedFace, MotionSession, SpoofingType
from attendance_trust.services.liveness_service import (
    LivenessService, analyze_depth, compute_depth_3d_score, to_greyscale
)

from factories import checkerboard_frame, flat_face, live_face, make_landmarks, uniform_frame

service = LivenessService(threshold=0.6)


def test_no_faces_is_not_live():
    result, _ = service.analyze(uniform_frame(), [])
    assert not result.is_live
    assert result.confidence == 0.0
    assert result.metrics.face_count == 0


def test_two_faces_is_multiple_faces():
    result, _ = service.analyze(checkerboard_frame(), [live_face(), live_face()])
    assert not result.is_live
    assert result.spoofing_type == SpoofingType.MULTIPLE_FACES
    assert result.metrics.face_count == 2


@pytest.mark.parametrize("landmarks", [
    [],
    make_landmarks()[:67],
    make_landmarks({30: (float("nan"), 60.0)}),
    make_landmarks({8: (60.0, float("inf"))}),
])
def test_malformed_landmarks_fail_closed(landmarks):
    result, _ = service.analyze(checkerboard_frame(), [DetectedFace(landmarks=landmarks)])
    assert not result.is_live
    assert result.confidence == 0.0


def test_unusable_frame_fails_closed():
    result, _ = service.analyze(np.zeros((0, 0), dtype=np.uint8), [live_face()])
    assert not result.is_live


def test_live_face_on_textured_frame():
    result, session = service.analyze(checkerboard_frame(), [live_face()])

    assert result.is_live
    assert result.spoofing_type == SpoofingType.NONE
    assert result.metrics.depth == pytest.approx(0.5)
    assert result.metrics.texture == pytest.approx(1.0)
    assert result.metrics.reflection == pytest.approx(1.0)
    assert result.metrics.motion == pytest.approx(0.5)
    assert result.confidence == pytest.approx(0.7)
    assert len(session.landmark_history) == 1


def test_flat_smooth_face_is_a_photo():
    result, _ = service.analyze(uniform_frame(), [flat_face()])

    assert not result.is_live
    assert result.spoofing_type == SpoofingType.PHOTO
    assert result.metrics.depth == 0.0
    assert result.metrics.texture == 0.0
    assert result.confidence == pytest.approx(0.3)


def test_glare_around_eyes_is_a_screen():
    result, _ = service.analyze(uniform_frame(255), [live_face()])

    assert not result.is_live
    assert result.metrics.reflection == 0.0
    assert result.spoofing_type == SpoofingType.SCREEN


def test_analyze_is_idempotent_without_session():
    first, _ = service.analyze(checkerboard_frame(), [live_face()])
    second, _ = service.analyze(checkerboard_frame(), [live_face()])
    assert first == second


def test_session_is_threaded_not_mutated():
    _, session = service.analyze(checkerboard_frame(), [live_face()])
    _, session2 = service.analyze(checkerboard_frame(), [live_face()], session=session)
    _, session3 = service.analyze(checkerboard_frame(), [live_face()], session=session2)

    assert len(session.landmark_history) == 1
    assert len(session2.landmark_history) == 2
    assert len(session3.landmark_history) == 3
    assert session3.session_id == session.session_id


def test_motion_window_is_bounded():
    session = MotionSession()
    for _ in range(15):
        _, session = service.analyze(checkerboard_frame(), [live_face()], session=session)
    assert len(session.landmark_history) == 10
    assert len(session.movement_history) == 10


def test_still_face_scores_low_motion():
    session = None
    for _ in range(5):
        result, session = service.analyze(checkerboard_frame(), [live_face()], session=session)
    # No movement at all between identical frames
    assert result.metrics.eye_movement == 0.0


def test_greyscale_averages_colour_channels():
    frame = np.zeros((2, 2, 4), dtype=np.uint8)
    frame[:, :, 0] = 30
    frame[:, :, 1] = 60
    frame[:, :, 2] = 90
    frame[:, :, 3] = 255
    assert np.allclose(to_greyscale(frame), 60.0)


def test_depth_geometry_of_flat_landmarks_is_zero():
    assert analyze_depth(make_landmarks()) == 0.0


class TestDepth3D:
    def test_flat_surface(self):
        assert compute_depth_3d_score(np.full((40, 40), 0.5)) == pytest.approx(0.1)

    def test_face_relief(self):
        rows, cols = np.indices((40, 40))
        depth = np.where((rows + cols) % 2 == 0, 0.425, 0.575)
        assert compute_depth_3d_score(depth) == pytest.approx(0.8)

    def test_noise(self):
        rows, cols = np.indices((40, 40))
        depth = np.where((rows + cols) % 2 == 0, 0.2, 0.8)
        assert compute_depth_3d_score(depth) == pytest.approx(0.5)

    def test_no_valid_samples(self):
        assert compute_depth_3d_score(np.zeros((40, 40))) == 0.0
        assert compute_depth_3d_score(np.full((40, 40), np.nan)) == 0.0

    def test_depth_map_drives_fusion(self):
        rows, cols = np.indices((40, 40))
        relief = np.where((rows + cols) % 2 == 0, 0.425, 0.575)

        live, _ = service.analyze(checkerboard_frame(), [live_face()], depth_map=relief)
        assert live.is_live
        assert live.metrics.depth_3d == pytest.approx(0.8)
        assert live.confidence == pytest.approx(0.75)

        flat, _ = service.analyze(checkerboard_frame(), [live_face()], depth_map=np.full((40, 40), 0.5))
        assert not flat.is_live
        assert flat.spoofing_type == SpoofingType.PHOTO
