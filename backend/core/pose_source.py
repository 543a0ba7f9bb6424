"""
Pose Sources
Produce one 33-landmark pose sample per sampled frame, or None when the
subject is absent, the video is not playing, or the estimator failed.

Variants:
- MediaPipePoseSource: delegates to MediaPipe BlazePose
- SimulatedPoseSource: deterministic synthetic skeleton with sinusoidal motion
- ReplayPoseSource: replays a recorded pose sequence (JSON)
"""

import json
import logging
import math
from abc import ABC, abstractmethod
from dataclasses import dataclass, asdict
from typing import Dict, List, Optional, Sequence

from config import get_thresholds
from exceptions import PoseEstimatorUnavailable
from logging_config import TickLogThrottle
from .video_source import VideoFrame

logger = logging.getLogger(__name__)


# MediaPipe landmark names (33 landmarks)
LANDMARK_NAMES = [
    "nose", "left_eye_inner", "left_eye", "left_eye_outer",
    "right_eye_inner", "right_eye", "right_eye_outer",
    "left_ear", "right_ear", "mouth_left", "mouth_right",
    "left_shoulder", "right_shoulder", "left_elbow", "right_elbow",
    "left_wrist", "right_wrist", "left_pinky", "right_pinky",
    "left_index", "right_index", "left_thumb", "right_thumb",
    "left_hip", "right_hip", "left_knee", "right_knee",
    "left_ankle", "right_ankle", "left_heel", "right_heel",
    "left_foot_index", "right_foot_index"
]

LANDMARK_INDICES = {name: i for i, name in enumerate(LANDMARK_NAMES)}

NUM_LANDMARKS = len(LANDMARK_NAMES)


@dataclass
class Landmark:
    """Normalized image-space keypoint; visibility None means unreported"""
    x: float
    y: float
    z: float = 0.0
    visibility: Optional[float] = None

    def is_visible(self, threshold: float = 0.5) -> bool:
        return self.visibility is None or self.visibility > threshold


@dataclass
class PoseSample:
    """All 33 landmarks of one frame, indexed by LANDMARK_NAMES"""
    landmarks: List[Landmark]
    timestamp: float = 0.0

    @property
    def is_complete(self) -> bool:
        return len(self.landmarks) >= NUM_LANDMARKS

    def get(self, name: str) -> Landmark:
        return self.landmarks[LANDMARK_INDICES[name]]

    def to_dict(self) -> Dict:
        return {
            "timestamp": self.timestamp,
            "landmarks": [asdict(lm) for lm in self.landmarks]
        }

    @classmethod
    def from_dict(cls, data: Dict) -> "PoseSample":
        landmarks = [
            Landmark(
                x=float(lm["x"]),
                y=float(lm["y"]),
                z=float(lm.get("z", 0.0) or 0.0),
                visibility=lm.get("visibility")
            )
            for lm in data["landmarks"]
        ]
        return cls(landmarks=landmarks, timestamp=float(data.get("timestamp", 0.0)))


@dataclass
class PlayerRegion:
    """Normalized player bounding box derived from a pose"""
    center_x: float
    center_y: float
    width: float
    height: float
    confidence: float


def player_region_from_pose(
    pose: Optional[PoseSample],
    min_visibility: Optional[float] = None
) -> Optional[PlayerRegion]:
    """Bounding box of the confidently visible landmarks; confidence is their mean visibility."""
    if pose is None:
        return None
    if min_visibility is None:
        min_visibility = get_thresholds().pose.region_min_visibility

    visible = [
        lm for lm in pose.landmarks
        if lm.visibility is None or lm.visibility >= min_visibility
    ]
    if not visible:
        return None

    xs = [lm.x for lm in visible]
    ys = [lm.y for lm in visible]
    min_x, max_x = min(xs), max(xs)
    min_y, max_y = min(ys), max(ys)
    confidence = sum(1.0 if lm.visibility is None else lm.visibility for lm in visible) / len(visible)

    return PlayerRegion(
        center_x=(min_x + max_x) / 2,
        center_y=(min_y + max_y) / 2,
        width=max_x - min_x,
        height=max_y - min_y,
        confidence=confidence
    )


class PoseSource(ABC):
    """
    Produces a PoseSample per frame, or None.

    `produce()` never raises for estimator faults: they are logged and the
    tick yields None. `unavailable` is True when the source cannot produce
    poses at all (e.g. the model failed to load).
    """

    name = "base"

    def __init__(self):
        self.unavailable = False
        self._log_throttle = TickLogThrottle()

    def produce(self, frame: Optional[VideoFrame]) -> Optional[PoseSample]:
        if frame is None or self.unavailable:
            return None
        try:
            return self._estimate(frame)
        except Exception as e:
            self._log_throttle.log(
                logger, logging.WARNING, "estimate",
                f"{self.name} pose estimation failed: {e}",
                exc_info=True, stage="pose", frame_index=frame.index
            )
            return None

    @abstractmethod
    def _estimate(self, frame: VideoFrame) -> Optional[PoseSample]:
        """Estimate a pose for one frame"""

    def close(self) -> None:
        """Release resources"""


class MediaPipePoseSource(PoseSource):
    """BlazePose via MediaPipe; loaded lazily on first use."""

    name = "mediapipe"

    def __init__(
        self,
        model_complexity: Optional[int] = None,
        min_detection_confidence: Optional[float] = None,
        min_tracking_confidence: Optional[float] = None
    ):
        super().__init__()
        cfg = get_thresholds().pose
        self.model_complexity = cfg.model_complexity if model_complexity is None else model_complexity
        self.min_detection_confidence = (
            cfg.min_detection_confidence if min_detection_confidence is None else min_detection_confidence
        )
        self.min_tracking_confidence = (
            cfg.min_tracking_confidence if min_tracking_confidence is None else min_tracking_confidence
        )
        self.pose = None
        self.init_error: Optional[str] = None
        self._last_timestamp_ms = -1

    def initialize(self) -> bool:
        """Load the model. Returns False (and marks the source unavailable) on failure."""
        if self.pose is not None:
            return True
        if self.unavailable:
            return False
        try:
            import mediapipe as mp

            self.pose = mp.solutions.pose.Pose(
                static_image_mode=False,
                model_complexity=self.model_complexity,
                enable_segmentation=False,
                min_detection_confidence=self.min_detection_confidence,
                min_tracking_confidence=self.min_tracking_confidence
            )
        except Exception as e:
            self.unavailable = True
            self.init_error = str(e) or type(e).__name__
            logger.warning(
                f"MediaPipe pose estimator unavailable: {self.init_error}",
                extra={"stage": "pose_init"}
            )
            return False

        logger.info("MediaPipe pose estimator loaded", extra={"model_complexity": self.model_complexity})
        return True

    def _next_timestamp_ms(self, frame: VideoFrame) -> int:
        """Strictly increasing per-call timestamp, even if media time repeats or rewinds."""
        ts = int(round(frame.timestamp * 1000))
        if ts <= self._last_timestamp_ms:
            ts = self._last_timestamp_ms + 1
        self._last_timestamp_ms = ts
        return ts

    def _estimate(self, frame: VideoFrame) -> Optional[PoseSample]:
        if not self.initialize():
            return None

        timestamp_ms = self._next_timestamp_ms(frame)
        results = self.pose.process(frame.pixels)
        if not results.pose_landmarks:
            return None

        landmarks = [
            Landmark(x=lm.x, y=lm.y, z=lm.z, visibility=lm.visibility)
            for lm in results.pose_landmarks.landmark
        ]
        if len(landmarks) < NUM_LANDMARKS:
            return None
        return PoseSample(landmarks=landmarks, timestamp=timestamp_ms / 1000.0)

    def close(self):
        if self.pose is not None:
            self.pose.close()
            self.pose = None


class SimulatedPoseSource(PoseSource):
    """
    Anatomically plausible synthetic skeleton for demos and tests.

    The player occupies a fixed normalized region; arms and legs swing on a
    sinusoidal cycle keyed to media time, so the output is a pure function
    of the frame timestamp.
    """

    name = "simulated"

    def __init__(
        self,
        region: Optional[PlayerRegion] = None,
        cycle_sec: Optional[float] = None,
        arm_amplitude: float = 0.1,
        leg_amplitude: float = 0.05
    ):
        super().__init__()
        self.region = region or PlayerRegion(0.5, 0.5, 0.3, 0.8, 0.95)
        self.cycle_sec = cycle_sec if cycle_sec is not None else get_thresholds().pose.simulated_cycle_sec
        self.arm_amplitude = arm_amplitude
        self.leg_amplitude = leg_amplitude

    def _estimate(self, frame: VideoFrame) -> Optional[PoseSample]:
        return self.generate(frame.timestamp)

    def generate(self, media_time: float) -> PoseSample:
        phase = (media_time % self.cycle_sec) * 2 * math.pi / self.cycle_sec
        arm = math.sin(phase) * self.arm_amplitude
        leg = math.cos(phase) * self.leg_amplitude

        cx, cy = self.region.center_x, self.region.center_y
        w, h = self.region.width, self.region.height
        head_y = cy - h * 0.4
        sh_y = cy - h * 0.25
        lsx = cx - w * 0.18
        rsx = cx + w * 0.18

        points = [
            # Head (0-10)
            (cx, head_y, 0.95),
            (cx - w * 0.02, head_y - h * 0.02, 0.9),
            (cx - w * 0.03, head_y - h * 0.02, 0.9),
            (cx - w * 0.04, head_y - h * 0.02, 0.85),
            (cx + w * 0.02, head_y - h * 0.02, 0.9),
            (cx + w * 0.03, head_y - h * 0.02, 0.9),
            (cx + w * 0.04, head_y - h * 0.02, 0.85),
            (cx - w * 0.05, head_y, 0.8),
            (cx + w * 0.05, head_y, 0.8),
            (cx - w * 0.015, head_y + h * 0.02, 0.85),
            (cx + w * 0.015, head_y + h * 0.02, 0.85),
            # Shoulders, elbows, wrists (11-16)
            (lsx, sh_y, 0.98),
            (rsx, sh_y, 0.98),
            (lsx - w * 0.12, sh_y + h * 0.15 + arm, 0.95),
            (rsx + w * 0.12 + arm, sh_y + h * 0.15, 0.95),
            (lsx - w * 0.2, sh_y + h * 0.25 + arm, 0.9),
            (rsx + w * 0.2 + arm * 2, sh_y + h * 0.25, 0.9),
            # Hands (17-22)
            (lsx - w * 0.22, sh_y + h * 0.27 + arm, 0.8),
            (rsx + w * 0.22 + arm * 2, sh_y + h * 0.27, 0.8),
            (lsx - w * 0.21, sh_y + h * 0.26 + arm, 0.8),
            (rsx + w * 0.21 + arm * 2, sh_y + h * 0.26, 0.8),
            (lsx - w * 0.23, sh_y + h * 0.25 + arm, 0.8),
            (rsx + w * 0.23 + arm * 2, sh_y + h * 0.25, 0.8),
            # Hips, knees, ankles, heels, feet (23-32)
            (cx - w * 0.1, cy + h * 0.1, 0.95),
            (cx + w * 0.1, cy + h * 0.1, 0.95),
            (cx - w * 0.12, cy + h * 0.3 + leg, 0.9),
            (cx + w * 0.12, cy + h * 0.3 - leg, 0.9),
            (cx - w * 0.14, cy + h * 0.45 + leg, 0.85),
            (cx + w * 0.14, cy + h * 0.45 - leg, 0.85),
            (cx - w * 0.15, cy + h * 0.47 + leg, 0.8),
            (cx + w * 0.15, cy + h * 0.47 - leg, 0.8),
            (cx - w * 0.13, cy + h * 0.48 + leg, 0.8),
            (cx + w * 0.13, cy + h * 0.48 - leg, 0.8),
        ]

        landmarks = [Landmark(x=x, y=y, z=0.0, visibility=v) for x, y, v in points]
        return PoseSample(landmarks=landmarks, timestamp=media_time)


class ReplayPoseSource(PoseSource):
    """Replays recorded samples in order, one per active frame; None entries mean no pose."""

    name = "replay"

    def __init__(self, samples: Sequence[Optional[PoseSample]]):
        super().__init__()
        self._samples = list(samples)
        self._position = 0

    @property
    def exhausted(self) -> bool:
        return self._position >= len(self._samples)

    def _estimate(self, frame: VideoFrame) -> Optional[PoseSample]:
        if self.exhausted:
            return None
        sample = self._samples[self._position]
        self._position += 1
        return sample

    @classmethod
    def from_json(cls, json_path: str) -> "ReplayPoseSource":
        return cls(load_poses_from_json(json_path))


def create_pose_source(backend: str = "auto", strict: bool = False) -> PoseSource:
    """
    Build the configured pose source.

    "mediapipe" and "auto" try the neural estimator first and degrade to the
    simulated source if it cannot load; with strict=True a mediapipe failure
    raises PoseEstimatorUnavailable instead.
    """
    backend = backend.lower()
    if backend == "simulated":
        return SimulatedPoseSource()

    if backend not in ("auto", "mediapipe"):
        raise ValueError(f"Unknown pose backend: {backend}")

    source = MediaPipePoseSource()
    if source.initialize():
        return source

    if strict and backend == "mediapipe":
        raise PoseEstimatorUnavailable(backend, source.init_error or "initialization failed")

    logger.warning("Falling back to simulated pose source", extra={"requested_backend": backend})
    return SimulatedPoseSource()


def resolve_pose_backend(backend: str = "auto", strict: bool = False) -> str:
    """
    Concrete backend ("mediapipe" or "simulated") for a configured one.

    Run once at startup: the estimator is loaded, checked and released, so a
    missing model is reported a single time instead of on every analysis.
    """
    source = create_pose_source(backend, strict=strict)
    source.close()
    return source.name


def save_poses_to_json(samples: Sequence[Optional[PoseSample]], output_path: str):
    """Save a pose sequence to JSON (None entries are kept as null)"""
    data = {"frames": [s.to_dict() if s is not None else None for s in samples]}
    with open(output_path, 'w') as f:
        json.dump(data, f, indent=2)
    logger.info(f"Saved pose data to {output_path}")


def load_poses_from_json(json_path: str) -> List[Optional[PoseSample]]:
    """Load a pose sequence from JSON"""
    with open(json_path, 'r') as f:
        data = json.load(f)
    return [PoseSample.from_dict(frame) if frame else None for frame in data["frames"]]
