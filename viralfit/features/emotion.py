from __future__ import annotations

import asyncio
import logging
import threading
from functools import lru_cache
from pathlib import Path
from typing import Any, Protocol, Sequence

from viralfit.models import DetectedFace, Emotion, EmotionFrame, EmotionSummary, FrameSample

logger = logging.getLogger(__name__)

DISABLED_NOTE = "disabled"

# Face-mesh vertex indices for the keypoints the expression heuristic reads.
MESH_KEYPOINTS = {
    "forehead": 10,
    "chin": 152,
    "upper_lip": 13,
    "lower_lip": 14,
    "mouth_left": 61,
    "mouth_right": 291,
    "left_eye_top": 159,
    "left_eye_bottom": 145,
    "right_eye_top": 386,
    "right_eye_bottom": 374,
    "left_brow": 105,
    "right_brow": 334,
}

MOUTH_OPEN_RATIO = 0.06
SMILE_LIFT_RATIO = 0.015
WIDE_MOUTH_RATIO = 0.45
BROW_RAISE_RATIO = 0.09
BROW_FURROW_RATIO = 0.05
EYE_WIDE_RATIO = 0.05

Box = tuple[float, float, float, float]


class FaceBackend(Protocol):
    def detect(self, image_rgb: Any) -> list[DetectedFace]: ...


class FaceModels:
    """Face and landmark detectors behind a capability flag.

    Call sites branch on ``available`` instead of catching model errors.
    """

    def __init__(self, backend: FaceBackend | None, reason: str | None = None) -> None:
        self._backend = backend
        self.reason = reason

    @classmethod
    def disabled(cls, reason: str) -> FaceModels:
        return cls(None, reason=reason)

    @property
    def available(self) -> bool:
        return self._backend is not None

    def detect(self, image_rgb: Any) -> list[DetectedFace]:
        if self._backend is None:
            return []
        return self._backend.detect(image_rgb)


class MediaPipeFaceBackend:
    def __init__(self, min_detection_confidence: float = 0.5, max_faces: int = 10) -> None:
        import mediapipe as mp

        solutions = getattr(mp, "solutions", None)
        if solutions is None:
            raise RuntimeError(
                f"mediapipe {getattr(mp, '__version__', '?')} has no legacy solutions API; "
                "install the vision extra (mediapipe<0.10.30)"
            )

        self._detector = solutions.face_detection.FaceDetection(
            model_selection=0,
            min_detection_confidence=min_detection_confidence,
        )
        self._mesh = solutions.face_mesh.FaceMesh(
            static_image_mode=True,
            max_num_faces=max_faces,
            refine_landmarks=True,
            min_detection_confidence=min_detection_confidence,
        )
        self._lock = threading.Lock()

    def detect(self, image_rgb: Any) -> list[DetectedFace]:
        height, width = image_rgb.shape[:2]
        with self._lock:
            detections = self._detector.process(image_rgb).detections or []
            meshes = self._mesh.process(image_rgb).multi_face_landmarks or []

        boxes = []
        for detection in detections:
            box = detection.location_data.relative_bounding_box
            boxes.append((box.xmin * width, box.ymin * height, box.width * width, box.height * height))
        pairing = match_landmarks(boxes, [_mesh_box(mesh, width, height) for mesh in meshes])

        faces: list[DetectedFace] = []
        for detection, box, mesh_index in zip(detections, boxes, pairing):
            faces.append(
                DetectedFace(
                    confidence=float(detection.score[0]) if detection.score else 0.0,
                    box=box,
                    landmarks=_named_keypoints(meshes[mesh_index], width, height) if mesh_index is not None else None,
                )
            )
        return faces


def box_iou(first: Box, second: Box) -> float:
    """Intersection over union of two ``(x, y, width, height)`` boxes."""

    left = max(first[0], second[0])
    top = max(first[1], second[1])
    right = min(first[0] + first[2], second[0] + second[2])
    bottom = min(first[1] + first[3], second[1] + second[3])
    intersection = max(0.0, right - left) * max(0.0, bottom - top)
    union = first[2] * first[3] + second[2] * second[3] - intersection
    return intersection / union if union > 0 else 0.0


def match_landmarks(boxes: Sequence[Box], mesh_boxes: Sequence[Box], min_iou: float = 0.1) -> list[int | None]:
    """Pair each detection with the mesh it overlaps most; every mesh is used at most once."""

    candidates = sorted(
        (
            (box_iou(box, mesh_box), box_index, mesh_index)
            for box_index, box in enumerate(boxes)
            for mesh_index, mesh_box in enumerate(mesh_boxes)
        ),
        reverse=True,
    )
    pairing: list[int | None] = [None] * len(boxes)
    used: set[int] = set()
    for overlap, box_index, mesh_index in candidates:
        if overlap < min_iou:
            break
        if pairing[box_index] is not None or mesh_index in used:
            continue
        pairing[box_index] = mesh_index
        used.add(mesh_index)
    return pairing


@lru_cache(maxsize=1)
def get_face_models(min_detection_confidence: float = 0.5, max_faces: int = 10) -> FaceModels:
    """Initialize the face stack once per process; a failed init stays disabled."""

    try:
        backend = MediaPipeFaceBackend(min_detection_confidence=min_detection_confidence, max_faces=max_faces)
    except Exception as exc:
        logger.warning("Face models unavailable; emotion analysis disabled: %s", exc)
        return FaceModels.disabled(f"{type(exc).__name__}: {exc}")

    logger.info("Face detection and landmark models initialized")
    return FaceModels(backend)


class FaceEmotionClassifier:
    """Per-frame emotion estimation over sampled stills, one frame at a time."""

    def __init__(
        self,
        models: FaceModels,
        *,
        frame_delay_seconds: float = 0.05,
        frame_timeout_seconds: float = 10.0,
    ) -> None:
        self.models = models
        self.frame_delay_seconds = frame_delay_seconds
        self.frame_timeout_seconds = frame_timeout_seconds

    async def classify(self, frames: Sequence[FrameSample]) -> EmotionSummary:
        if not self.models.available:
            disabled_frames = [_no_face_frame(frame.timestamp_seconds) for frame in frames]
            return aggregate_emotions(disabled_frames, note=DISABLED_NOTE)

        results: list[EmotionFrame] = []
        for index, frame in enumerate(frames):
            if index and self.frame_delay_seconds > 0:
                await asyncio.sleep(self.frame_delay_seconds)
            results.append(await self._classify_frame(frame))
        return aggregate_emotions(results)

    async def _classify_frame(self, frame: FrameSample) -> EmotionFrame:
        try:
            faces = await asyncio.wait_for(
                asyncio.to_thread(self._detect, frame.image_path),
                timeout=self.frame_timeout_seconds,
            )
        except asyncio.TimeoutError:
            logger.warning("Face detection timed out on %s", frame.image_path.name)
            return _no_face_frame(frame.timestamp_seconds, error="face detection timed out")
        except (OSError, ValueError, RuntimeError) as exc:
            logger.warning("Face detection failed on %s: %s", frame.image_path.name, exc)
            return _no_face_frame(frame.timestamp_seconds, error=str(exc))

        return build_emotion_frame(frame.timestamp_seconds, faces)

    def _detect(self, image_path: Path) -> list[DetectedFace]:
        import cv2

        image = cv2.imread(str(image_path))
        if image is None:
            raise ValueError(f"Unable to read frame image: {image_path}")
        return self.models.detect(cv2.cvtColor(image, cv2.COLOR_BGR2RGB))


def build_emotion_frame(timestamp_seconds: float, faces: Sequence[DetectedFace]) -> EmotionFrame:
    if not faces:
        return _no_face_frame(timestamp_seconds)

    totals = {emotion: 0.0 for emotion in Emotion}
    for face in faces:
        for emotion, value in classify_expression(face).items():
            totals[emotion] += value

    scores = normalize_scores(totals)
    return EmotionFrame(
        timestamp_seconds=timestamp_seconds,
        faces_detected=len(faces),
        dominant_emotion=dominant_emotion(scores),
        scores=scores,
    )


def classify_expression(face: DetectedFace) -> dict[Emotion, float]:
    """Map facial geometry to an emotion distribution; no landmarks means neutral."""

    points = face.landmarks
    if not points or not set(MESH_KEYPOINTS) <= points.keys():
        return {Emotion.NEUTRAL: 1.0}

    face_height = abs(points["chin"][1] - points["forehead"][1]) or face.box[3]
    if face_height <= 0:
        return {Emotion.NEUTRAL: 1.0}

    def _y(name: str) -> float:
        return points[name][1]

    mouth_open = abs(_y("lower_lip") - _y("upper_lip")) / face_height
    mouth_width = abs(points["mouth_right"][0] - points["mouth_left"][0]) / face_height
    lip_center = (_y("upper_lip") + _y("lower_lip")) / 2
    corner_lift = (lip_center - (_y("mouth_left") + _y("mouth_right")) / 2) / face_height
    eye_open = (abs(_y("left_eye_bottom") - _y("left_eye_top")) + abs(_y("right_eye_bottom") - _y("right_eye_top"))) / (
        2 * face_height
    )
    brow_gap = ((_y("left_eye_top") - _y("left_brow")) + (_y("right_eye_top") - _y("right_brow"))) / (2 * face_height)

    raw = {emotion: 0.0 for emotion in Emotion}
    raw[Emotion.NEUTRAL] = 0.3

    if mouth_open > MOUTH_OPEN_RATIO:
        raw[Emotion.SURPRISED] += 0.4
    if brow_gap > BROW_RAISE_RATIO and eye_open > EYE_WIDE_RATIO:
        raw[Emotion.SURPRISED] += 0.2
        if mouth_open > MOUTH_OPEN_RATIO and corner_lift < 0:
            raw[Emotion.FEARFUL] += 0.3
    if corner_lift > SMILE_LIFT_RATIO:
        raw[Emotion.HAPPY] += 0.5
        if mouth_width > WIDE_MOUTH_RATIO:
            raw[Emotion.HAPPY] += 0.1
    elif corner_lift < -SMILE_LIFT_RATIO:
        raw[Emotion.SAD] += 0.4
    if brow_gap < BROW_FURROW_RATIO and mouth_open < MOUTH_OPEN_RATIO / 2:
        raw[Emotion.ANGRY] += 0.4

    return normalize_scores(raw)


def normalize_scores(raw: dict[Emotion, float]) -> dict[Emotion, float]:
    clipped = {emotion: max(0.0, raw.get(emotion, 0.0)) for emotion in Emotion}
    total = sum(clipped.values())
    if total <= 0:
        return {Emotion.NEUTRAL: 1.0}
    return {emotion: value / total for emotion, value in clipped.items()}


def dominant_emotion(scores: dict[Emotion, float]) -> Emotion:
    best = Emotion.NEUTRAL
    best_value = -1.0
    for emotion in Emotion:
        value = scores.get(emotion, 0.0)
        if value > best_value:
            best, best_value = emotion, value
    return best


def aggregate_emotions(frames: Sequence[EmotionFrame], note: str | None = None) -> EmotionSummary:
    """Histogram of per-frame dominant emotions over frames that contain a face."""

    distribution: dict[Emotion, int] = {}
    for frame in frames:
        if frame.faces_detected > 0:
            distribution[frame.dominant_emotion] = distribution.get(frame.dominant_emotion, 0) + 1

    overall = Emotion.NEUTRAL
    best_count = 0
    for emotion, count in distribution.items():
        if count > best_count:
            overall, best_count = emotion, count

    return EmotionSummary(
        frames=tuple(frames),
        dominant_emotion=overall,
        distribution=distribution,
        total_faces=sum(frame.faces_detected for frame in frames),
        frames_analyzed=len(frames),
        note=note,
    )


def _no_face_frame(timestamp_seconds: float, error: str | None = None) -> EmotionFrame:
    return EmotionFrame(
        timestamp_seconds=timestamp_seconds,
        faces_detected=0,
        dominant_emotion=Emotion.NEUTRAL,
        scores={Emotion.NEUTRAL: 1.0},
        error=error,
    )


def _named_keypoints(face_landmarks: Any, width: int, height: int) -> dict[str, tuple[float, float]]:
    points = face_landmarks.landmark
    return {
        name: (points[index].x * width, points[index].y * height)
        for name, index in MESH_KEYPOINTS.items()
        if index < len(points)
    }


def _mesh_box(face_landmarks: Any, width: int, height: int) -> Box:
    xs = [point.x * width for point in face_landmarks.landmark]
    ys = [point.y * height for point in face_landmarks.landmark]
    if not xs:
        return (0.0, 0.0, 0.0, 0.0)
    return (min(xs), min(ys), max(xs) - min(xs), max(ys) - min(ys))
