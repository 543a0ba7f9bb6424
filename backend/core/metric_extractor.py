"""
Serve Metric Extraction
Computes five biomechanical serve metrics from one pose sample and keeps a
rolling history of them.
"""

import logging
import math
import time
from abc import ABC, abstractmethod
from dataclasses import dataclass, asdict
from typing import Callable, Dict, Iterator, List, Optional, Tuple

from config import get_thresholds
from config.thresholds import MetricConfig
from .frame_clock import Throttle
from .pose_source import PoseSample, NUM_LANDMARKS

logger = logging.getLogger(__name__)


METRIC_NAMES = ("elbow", "knee", "x_factor", "contact_height", "follow_through")

SERVE_PHASES = ("preparation", "loading", "acceleration", "contact", "follow-through")


@dataclass
class MetricVector:
    """One set of serve metrics"""
    elbow: float = 0.0  # degrees
    knee: float = 0.0  # degrees
    x_factor: float = 0.0  # degrees
    contact_height: float = 0.0  # cm
    follow_through: float = 0.0  # frames

    def to_dict(self) -> Dict[str, float]:
        return asdict(self)

    @classmethod
    def from_dict(cls, data: Dict[str, float]) -> "MetricVector":
        return cls(**{name: float(data[name]) for name in METRIC_NAMES})

    def get(self, name: str) -> float:
        if name not in METRIC_NAMES:
            raise KeyError(name)
        return getattr(self, name)


class MetricsHistory:
    """
    Sliding window of recent metric vectors.

    Once more than `capacity` entries are held, the window is compacted to
    the most recent `keep_on_overflow`.
    """

    def __init__(self, capacity: Optional[int] = None, keep_on_overflow: Optional[int] = None):
        cfg = get_thresholds().history
        self.capacity = cfg.capacity if capacity is None else capacity
        self.keep_on_overflow = cfg.keep_on_overflow if keep_on_overflow is None else keep_on_overflow
        if not 0 < self.keep_on_overflow <= self.capacity:
            raise ValueError("keep_on_overflow must be in (0, capacity]")
        self._items: List[MetricVector] = []

    def append(self, vector: MetricVector) -> None:
        self._items.append(vector)
        if len(self._items) > self.capacity:
            self._items = self._items[-self.keep_on_overflow:]

    def snapshot(self, count: int) -> List[MetricVector]:
        """Copy of the last `count` entries, oldest first"""
        if count <= 0:
            return []
        return list(self._items[-count:])

    @property
    def latest(self) -> Optional[MetricVector]:
        return self._items[-1] if self._items else None

    def clear(self) -> None:
        self._items = []

    def __len__(self) -> int:
        return len(self._items)

    def __iter__(self) -> Iterator[MetricVector]:
        return iter(list(self._items))


# =============================================================================
# Geometry
# =============================================================================

Point = Tuple[float, float]


def angle_between_points(p1: Point, p2: Point, p3: Point) -> float:
    """
    Compute angle at p2 between p1-p2-p3 in degrees.
    Returns angle in range [0, 180]; 0 if either arm has zero length.
    """
    v1 = (p1[0] - p2[0], p1[1] - p2[1])
    v2 = (p3[0] - p2[0], p3[1] - p2[1])

    dot = v1[0] * v2[0] + v1[1] * v2[1]
    mag1 = math.sqrt(v1[0]**2 + v1[1]**2)
    mag2 = math.sqrt(v2[0]**2 + v2[1]**2)

    if mag1 == 0 or mag2 == 0:
        return 0.0

    cos_angle = dot / (mag1 * mag2)
    cos_angle = max(-1.0, min(1.0, cos_angle))  # Clamp for numerical stability

    return math.degrees(math.acos(cos_angle))


def line_angle(start: Point, end: Point) -> float:
    """Orientation of the segment start->end in degrees (atan2, image axes)"""
    return math.degrees(math.atan2(end[1] - start[1], end[0] - start[0]))


def _clamp(value: float, bounds: Tuple[float, float]) -> float:
    low, high = bounds
    return max(low, min(high, value))


def _xy(pose: PoseSample, name: str) -> Point:
    lm = pose.get(name)
    return (lm.x, lm.y)


def _distance(p1: Point, p2: Point) -> float:
    return math.sqrt((p1[0] - p2[0])**2 + (p1[1] - p2[1])**2)


# =============================================================================
# Follow-through
# =============================================================================

class FollowThroughEstimator(ABC):
    """Source of the follow-through metric"""

    @abstractmethod
    def estimate(self, pose: PoseSample, racket_box=None, side: str = "right") -> float:
        """Raw follow-through value in frames (clamped by the caller)"""


class ConstantFollowThrough(FollowThroughEstimator):
    """Fixed placeholder until a kinematic follow-through estimator exists."""

    def __init__(self, value: Optional[float] = None):
        self.value = get_thresholds().metrics.follow_through_default if value is None else value

    def estimate(self, pose: PoseSample, racket_box=None, side: str = "right") -> float:
        return self.value


class RacketFollowThrough(FollowThroughEstimator):
    """
    Arm extension plus wrist-to-racket distance, when a racket is tracked.

    Both distances are in normalized image units, so the result depends on
    camera framing; treat it as a relative signal.
    """

    def __init__(
        self,
        min_racket_confidence: float = 0.5,
        extension_weight: float = 20.0,
        racket_weight: float = 15.0,
        fallback: float = 10.0
    ):
        self.min_racket_confidence = min_racket_confidence
        self.extension_weight = extension_weight
        self.racket_weight = racket_weight
        self.fallback = fallback

    def estimate(self, pose: PoseSample, racket_box=None, side: str = "right") -> float:
        if racket_box is None or racket_box.confidence <= self.min_racket_confidence:
            return self.fallback
        shoulder = _xy(pose, f"{side}_shoulder")
        wrist = _xy(pose, f"{side}_wrist")
        arm_extension = _distance(shoulder, wrist)
        racket_distance = _distance(wrist, racket_box.center)
        return arm_extension * self.extension_weight + racket_distance * self.racket_weight


# =============================================================================
# Extractor
# =============================================================================

def detect_serve_phase(pose: PoseSample, side: str = "right") -> str:
    """
    Coarse serve phase from wrist and elbow height relative to the shoulder.
    Image y grows downward, so negative differences mean "above".
    """
    wrist = pose.get(f"{side}_wrist")
    shoulder = pose.get(f"{side}_shoulder")
    elbow = pose.get(f"{side}_elbow")

    height_diff = wrist.y - shoulder.y
    elbow_position = elbow.y - shoulder.y

    if height_diff > 0.1:
        return "preparation"
    if height_diff > 0 and elbow_position < 0.05:
        return "loading"
    if height_diff > -0.1 and elbow_position < -0.05:
        return "acceleration"
    if height_diff > -0.2:
        return "contact"
    return "follow-through"


class MetricExtractor:
    """
    Turns pose samples into metric vectors at a bounded rate.

    A sample is skipped if it is incomplete, if the dominant arm is not
    visible, or if less than `interval_ms` has passed since the last
    successful extraction. Accepted vectors are appended to `history`.
    """

    def __init__(
        self,
        history: Optional[MetricsHistory] = None,
        interval_ms: Optional[float] = None,
        dominant_side: str = "right",
        follow_through: Optional[FollowThroughEstimator] = None,
        clock: Callable[[], float] = time.monotonic,
        config: Optional[MetricConfig] = None
    ):
        if dominant_side not in ("right", "left"):
            raise ValueError("dominant_side must be 'right' or 'left'")
        thresholds = get_thresholds()
        self.config = config or thresholds.metrics
        self.history = history if history is not None else MetricsHistory()
        self.dominant_side = dominant_side
        self.follow_through = follow_through or ConstantFollowThrough()
        self._clock = clock
        self._throttle = Throttle(
            thresholds.clock.extraction_interval_ms if interval_ms is None else interval_ms,
            clock=clock
        )
        self.latest: Optional[MetricVector] = None

    def arm_visible(self, pose: PoseSample) -> bool:
        side = self.dominant_side
        return all(
            pose.get(f"{side}_{joint}").is_visible(self.config.min_arm_visibility)
            for joint in ("shoulder", "elbow", "wrist")
        )

    def compute(self, pose: PoseSample, racket_box=None) -> MetricVector:
        """
        Pure metric computation for a complete pose sample.

        x_factor is the plain |shoulder line - hip line| difference in degrees
        with no wrap-around: a player facing away from the camera has both
        lines near +-180 deg, so the raw value approaches 360 and clamps to
        the top of the range.
        """
        cfg = self.config
        side = self.dominant_side

        elbow_raw = angle_between_points(
            _xy(pose, f"{side}_shoulder"), _xy(pose, f"{side}_elbow"), _xy(pose, f"{side}_wrist")
        )
        knee_raw = angle_between_points(
            _xy(pose, f"{side}_hip"), _xy(pose, f"{side}_knee"), _xy(pose, f"{side}_ankle")
        )

        shoulder_angle = line_angle(_xy(pose, "left_shoulder"), _xy(pose, "right_shoulder"))
        hip_angle = line_angle(_xy(pose, "left_hip"), _xy(pose, "right_hip"))
        x_factor_raw = abs(shoulder_angle - hip_angle)

        # Image y grows downward: a higher wrist means a higher contact point
        wrist_y = pose.get(f"{side}_wrist").y
        contact_raw = cfg.contact_height_base + (1 - wrist_y) * cfg.contact_height_scale

        follow_raw = self.follow_through.estimate(pose, racket_box, side)

        return MetricVector(
            elbow=_clamp(elbow_raw + cfg.elbow_offset, cfg.elbow_range),
            knee=_clamp(knee_raw + cfg.knee_offset, cfg.knee_range),
            x_factor=_clamp(x_factor_raw, cfg.x_factor_range),
            contact_height=_clamp(contact_raw, cfg.contact_height_range),
            follow_through=_clamp(follow_raw, cfg.follow_through_range)
        )

    def extract(
        self,
        pose: Optional[PoseSample],
        now: Optional[float] = None,
        racket_box=None
    ) -> Optional[MetricVector]:
        """
        Extract metrics for this tick.

        Returns:
            The new MetricVector, or None when the tick is skipped
        """
        if pose is None or len(pose.landmarks) < NUM_LANDMARKS:
            return None

        now = self._clock() if now is None else now
        if not self._throttle.ready(now):
            return None

        if not self.arm_visible(pose):
            logger.debug("Dominant arm not visible; skipping extraction")
            return None

        vector = self.compute(pose, racket_box)
        self._throttle.mark(now)
        self.history.append(vector)
        self.latest = vector
        return vector

    def reset(self) -> None:
        self.history.clear()
        self.latest = None
        self._throttle.reset()
