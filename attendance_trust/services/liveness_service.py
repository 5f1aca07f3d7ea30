"""
Liveness Service - Face Anti-Spoofing

Decides whether a captured face belongs to a live person by fusing
independent sub-scores:
- Depth: 3-D structure implied by 2-D landmark geometry
- Texture: greyscale variance of skin patches (printed/flat surfaces are smooth)
- Motion: micro-movement, blink rate and expression change across frames
- Reflection: screen glare around the eyes
- Depth3D: spread of real depth-sensor values, when a depth map is supplied

Motion is the only stateful signal. Its window lives in an explicit
MotionSession that the caller passes in and gets back, so the analyzer
itself keeps no per-capture state.
"""
import logging
import math
from typing import List, Optional, Sequence, Tuple

import numpy as np

from attendance_trust.config import settings
from attendance_trust.models.domain import (
    DetectedFace, LivenessMetrics, LivenessResult, MotionSession, SpoofingType
)

logger = logging.getLogger(__name__)

LANDMARK_COUNT = 68

# 68-point landmark indices
NOSE_TIP = 30
NOSE_BASE = 33
LEFT_NOSTRIL = 31
RIGHT_NOSTRIL = 35
LEFT_EYE_OUTER = 36
LEFT_EYE_TOP = 37
LEFT_EYE_INNER = 39
LEFT_EYE_BOTTOM = 41
RIGHT_EYE_INNER = 42
RIGHT_EYE_TOP = 44
RIGHT_EYE_OUTER = 45
RIGHT_EYE_BOTTOM = 46
JAW_LEFT = 0
CHEEK_LEFT = 1
CHIN = 8
CHEEK_RIGHT = 15
JAW_RIGHT = 16
FOREHEAD = 27
MOUTH_LEFT = 48
MOUTH_RIGHT = 54

TEXTURE_POINTS = (NOSE_TIP, LEFT_EYE_INNER, RIGHT_EYE_INNER, MOUTH_LEFT, MOUTH_RIGHT)
MOTION_KEY_POINTS = (NOSE_TIP, CHIN, FOREHEAD, LEFT_EYE_INNER, RIGHT_EYE_INNER)
EXPRESSIONS = ("happy", "sad", "angry", "fearful", "disgusted", "surprised", "neutral")

TEXTURE_PATCH = 10
TEXTURE_VARIANCE_CEILING = 800.0
REFLECTION_PATCH = 20
REFLECTION_BRIGHTNESS = 200
REFLECTION_RATIO = 0.3

MOTION_WINDOW = 10
BLINK_WINDOW = 30
BLINK_EYE_HEIGHT_PX = 3.0

DEPTH_MIN_STD_M = 0.02
DEPTH_MAX_STD_M = 0.15

WEIGHTS_2D = {"depth": 0.30, "texture": 0.25, "motion": 0.30, "reflection": 0.15}
WEIGHTS_3D = {"depth_3d": 0.50, "depth": 0.15, "texture": 0.15, "motion": 0.15, "reflection": 0.05}

Point = Tuple[float, float]


def _no_face_result(face_count: int, spoofing_type: SpoofingType) -> LivenessResult:
    return LivenessResult(
        is_live=False,
        confidence=0.0,
        spoofing_type=spoofing_type,
        metrics=LivenessMetrics(face_count=face_count)
    )


def _valid_landmarks(landmarks: Sequence[Point]) -> bool:
    if len(landmarks) != LANDMARK_COUNT:
        return False
    return all(math.isfinite(x) and math.isfinite(y) for x, y in landmarks)


def to_greyscale(frame: np.ndarray) -> Optional[np.ndarray]:
    """Average of the colour channels; alpha is ignored."""
    if not isinstance(frame, np.ndarray) or frame.size == 0:
        return None
    if frame.ndim == 2:
        return frame.astype(np.float64)
    if frame.ndim == 3 and frame.shape[2] >= 1:
        return frame[:, :, :3].astype(np.float64).mean(axis=2)
    return None


def _patch(grey: np.ndarray, point: Point, size: int) -> np.ndarray:
    x = int(round(point[0]))
    y = int(round(point[1]))
    x0 = max(0, x - size // 2)
    y0 = max(0, y - size // 2)
    return grey[y0:y0 + size, x0:x0 + size]


def analyze_depth(landmarks: Sequence[Point]) -> float:
    """Depth cues from landmark geometry alone (higher = more 3-D)."""
    nose_tip = landmarks[NOSE_TIP]
    nose_base = landmarks[NOSE_BASE]
    nostril_width = abs(landmarks[LEFT_NOSTRIL][0] - landmarks[RIGHT_NOSTRIL][0])
    nose_depth_ratio = abs(nose_tip[1] - nose_base[1]) / nostril_width if nostril_width > 0 else 0.0

    eye_depth_ratio = (
        abs(landmarks[LEFT_EYE_INNER][1] - landmarks[LEFT_EYE_OUTER][1]) +
        abs(landmarks[RIGHT_EYE_INNER][1] - landmarks[RIGHT_EYE_OUTER][1])
    ) / 2

    face_width = abs(landmarks[JAW_LEFT][0] - landmarks[JAW_RIGHT][0])
    face_height = abs(landmarks[CHIN][1] - landmarks[FOREHEAD][1])
    aspect_ratio = face_width / face_height if face_height > 0 else 0.0

    cheek_line = (landmarks[CHEEK_LEFT][1] + landmarks[CHEEK_RIGHT][1]) / 2
    chin_projection = abs(landmarks[CHIN][1] - cheek_line)
    forehead_projection = abs(landmarks[FOREHEAD][1] - cheek_line)

    score = (
        nose_depth_ratio * 0.3 +
        eye_depth_ratio * 0.2 +
        (0.2 if 0.6 < aspect_ratio < 1.0 else 0.0) +
        (0.15 if chin_projection > 5 else 0.0) +
        (0.15 if forehead_projection > 3 else 0.0)
    )
    return float(min(max(score, 0.0), 1.0))


def analyze_texture(grey: np.ndarray, landmarks: Sequence[Point]) -> float:
    """Mean normalized greyscale variance of skin patches."""
    total = 0.0
    for index in TEXTURE_POINTS:
        patch = _patch(grey, landmarks[index], TEXTURE_PATCH)
        if patch.size == 0:
            continue
        total += min(float(np.var(patch)) / TEXTURE_VARIANCE_CEILING, 1.0)
    return total / len(TEXTURE_POINTS)


def detect_screen_reflection(grey: np.ndarray, landmarks: Sequence[Point]) -> float:
    """Inverted glare score around the inner eye corners (1.0 = no glare)."""
    glare = 0.0
    for index in (LEFT_EYE_INNER, RIGHT_EYE_INNER):
        patch = _patch(grey, landmarks[index], REFLECTION_PATCH)
        if patch.size == 0:
            continue
        bright_ratio = float(np.count_nonzero(patch > REFLECTION_BRIGHTNESS)) / patch.size
        if bright_ratio > REFLECTION_RATIO:
            glare += 0.5
    return max(0.0, 1.0 - glare)


def compute_depth_3d_score(depth_map: np.ndarray) -> float:
    """
    Score real depth-sensor data (meters) from the central face region.

    A flat photo or screen has almost no depth spread; values far above a
    face's relief are sensor noise.
    """
    if not isinstance(depth_map, np.ndarray) or depth_map.ndim != 2 or depth_map.size == 0:
        return 0.0

    height, width = depth_map.shape
    region = int(min(width, height) / 4)
    cy, cx = height // 2, width // 2
    center = depth_map[max(0, cy - region):cy + region, max(0, cx - region):cx + region]
    values = center[np.isfinite(center)]
    values = values[values > 0]
    if values.size == 0:
        return 0.0

    std = float(np.std(values))
    if std < DEPTH_MIN_STD_M:
        return 0.1
    if std > DEPTH_MAX_STD_M:
        return 0.5
    return 0.6 + (std / DEPTH_MAX_STD_M) * 0.4


# ============================================================
# MOTION
# ============================================================

def _movement_score(session: MotionSession) -> float:
    current = session.landmark_history[-1]
    previous = session.landmark_history[-2]

    total = 0.0
    for index in MOTION_KEY_POINTS:
        total += math.hypot(current[index][0] - previous[index][0],
                            current[index][1] - previous[index][1])

    # Natural micro-movement is roughly 1-5 px per key point per frame
    session.movement_history.append(min(total / 20, 1.0))
    del session.movement_history[:-MOTION_WINDOW]

    average = sum(session.movement_history) / len(session.movement_history)
    if 0.1 < average < 0.8:
        return 1.0
    return average * 0.5


def _blink_score(session: MotionSession, landmarks: Sequence[Point]) -> float:
    left_height = abs(landmarks[LEFT_EYE_TOP][1] - landmarks[LEFT_EYE_BOTTOM][1])
    right_height = abs(landmarks[RIGHT_EYE_TOP][1] - landmarks[RIGHT_EYE_BOTTOM][1])
    session.blink_history.append((left_height + right_height) / 2 < BLINK_EYE_HEIGHT_PX)
    del session.blink_history[:-BLINK_WINDOW]

    blinks = 0
    in_blink = False
    for closed in session.blink_history:
        if closed and not in_blink:
            blinks += 1
            in_blink = True
        elif not closed:
            in_blink = False

    rate = blinks / (len(session.blink_history) / BLINK_WINDOW)
    if 0.5 < rate < 4:
        return 1.0
    return max(0.3, 1 - abs(rate - 1.5) / 3)


def _expression_score(session: MotionSession) -> float:
    if len(session.expression_history) < 3:
        return 0.5

    recent = session.expression_history[-3:]
    change = 0.0
    for name in EXPRESSIONS:
        change += float(np.var([frame.get(name, 0.0) for frame in recent]))
    return min(change / 0.1, 1.0)


def advance_motion(
    session: Optional[MotionSession],
    face: DetectedFace
) -> Tuple[MotionSession, float, float, float]:
    """
    Push one frame into a copy of the session.

    Returns (new_session, motion_score, movement_score, blink_score).
    """
    updated = session.model_copy(deep=True) if session is not None else MotionSession()
    landmarks = [tuple(p) for p in face.landmarks]

    updated.landmark_history.append(landmarks)
    updated.expression_history.append(dict(face.expressions))
    del updated.landmark_history[:-MOTION_WINDOW]
    del updated.expression_history[:-MOTION_WINDOW]

    blink = _blink_score(updated, landmarks)
    movement = _movement_score(updated) if len(updated.landmark_history) >= 2 else 0.0

    if len(updated.landmark_history) < 3:
        # Not enough frames to judge yet
        return updated, 0.5, 0.5, blink

    expression = _expression_score(updated)
    motion = movement * 0.4 + blink * 0.4 + expression * 0.2
    return updated, motion, movement, blink


class LivenessService:
    """
    Comprehensive anti-spoofing analysis.

    analyze() is a pure function of (frame, faces, depth map, session in)
    to (result, session out).
    """

    def __init__(self, threshold: Optional[float] = None):
        self.threshold = settings.LIVENESS_THRESHOLD if threshold is None else threshold

    def analyze(
        self,
        frame: np.ndarray,
        faces: List[DetectedFace],
        depth_map: Optional[np.ndarray] = None,
        session: Optional[MotionSession] = None
    ) -> Tuple[LivenessResult, MotionSession]:
        """
        Analyze one frame.

        Args:
            frame: H x W greyscale or H x W x C colour image
            faces: faces detected in the frame (68-point landmarks each)
            depth_map: optional H x W depth map in meters
            session: motion window from the previous frame of this capture

        Returns:
            (LivenessResult, MotionSession to pass with the next frame)
        """
        unchanged = session.model_copy(deep=True) if session is not None else MotionSession()

        if not faces:
            return _no_face_result(0, SpoofingType.NONE), unchanged

        if len(faces) > 1:
            return _no_face_result(len(faces), SpoofingType.MULTIPLE_FACES), unchanged

        face = faces[0]
        if not _valid_landmarks(face.landmarks):
            logger.warning("Liveness check received malformed landmarks")
            return _no_face_result(1, SpoofingType.NONE), unchanged

        grey = to_greyscale(frame)
        if grey is None:
            logger.warning("Liveness check received an unusable frame")
            return _no_face_result(1, SpoofingType.NONE), unchanged

        try:
            depth = analyze_depth(face.landmarks)
            texture = analyze_texture(grey, face.landmarks)
            reflection = detect_screen_reflection(grey, face.landmarks)
            new_session, motion, movement, blink = advance_motion(session, face)
            depth_3d = compute_depth_3d_score(depth_map) if depth_map is not None else None
        except Exception as e:
            logger.error(f"Liveness analysis failed: {e}")
            return _no_face_result(1, SpoofingType.NONE), unchanged

        scores = {"depth": depth, "texture": texture, "motion": motion, "reflection": reflection}
        if depth_3d is not None:
            scores["depth_3d"] = depth_3d
            weights = WEIGHTS_3D
        else:
            weights = WEIGHTS_2D

        confidence = sum(scores[name] * weight for name, weight in weights.items())
        if not math.isfinite(confidence):
            logger.warning("Liveness fusion produced a non-finite score")
            return _no_face_result(1, SpoofingType.NONE), unchanged
        confidence = min(max(confidence, 0.0), 1.0)

        is_live = confidence >= self.threshold
        spoofing_type = SpoofingType.NONE
        if not is_live:
            spoofing_type = self._classify_spoof(depth, reflection, motion, depth_3d)

        result = LivenessResult(
            is_live=is_live,
            confidence=confidence,
            spoofing_type=spoofing_type,
            metrics=LivenessMetrics(
                depth=depth,
                texture=texture,
                motion=motion,
                blink=blink,
                eye_movement=movement,
                reflection=reflection,
                face_count=1,
                depth_3d=depth_3d
            )
        )
        return result, new_session

    @staticmethod
    def _classify_spoof(
        depth: float,
        reflection: float,
        motion: float,
        depth_3d: Optional[float]
    ) -> SpoofingType:
        """Most deficient signal wins, in priority order."""
        if depth_3d is not None and depth_3d < 0.3:
            return SpoofingType.PHOTO
        if depth < 0.3:
            return SpoofingType.PHOTO
        if reflection < 0.3:
            return SpoofingType.SCREEN
        if motion < 0.3:
            return SpoofingType.VIDEO
        return SpoofingType.DEEPFAKE


# Singleton instance
liveness_service = LivenessService()
