"""
ServeSense - Configurable Thresholds
All pipeline constants can be tuned without code changes by modifying this file.
"""

from dataclasses import dataclass, field
from typing import Tuple


@dataclass
class ClockConfig:
    """Frame clock and per-stage throttles"""
    # Display refresh rate driving the tick loop (Hz)
    tick_rate_hz: float = 60.0
    # Metric extraction gate (10 Hz)
    extraction_interval_ms: float = 100.0
    # Racket detection gate (~30 Hz)
    racket_interval_ms: float = 33.0


@dataclass
class RacketDetectionConfig:
    """Classical racket detector thresholds"""
    # Candidate center stride (pixels, both axes)
    scan_stride: int = 3
    # Neighborhood half extents around a candidate center (31x51 window)
    neighborhood_half_width: int = 15
    neighborhood_half_height: int = 25
    neighborhood_stride: int = 2

    # Frame (rim/edge) pixels: dark with channel contrast
    frame_max_brightness: float = 100.0
    frame_min_contrast: float = 20.0
    # String pixels: bright and white or yellow dominant
    string_min_brightness: float = 160.0
    string_white_min_channel: float = 180.0
    string_yellow_min_green: float = 150.0
    string_yellow_min_red: float = 120.0
    string_yellow_max_blue: float = 120.0
    # Handle pixels: mid-low brightness (exclusive bounds)
    handle_min_brightness: float = 30.0
    handle_max_brightness: float = 120.0

    # Per-class weights
    frame_weight: float = 1.5
    string_weight: float = 1.2
    handle_weight: float = 1.0

    # Candidate centers must score above this
    candidate_threshold: float = 0.7
    # Greedy connected-component linking distance (pixels)
    cluster_distance: float = 30.0

    # Synthesized box (pixels), top-left offset from centroid
    box_width: int = 50
    box_height: int = 70
    box_offset_x: int = -25
    box_offset_y: int = -35
    max_confidence: float = 0.95

    # Call-site acceptance: boxes at or below this are dropped
    acceptance_threshold: float = 0.6
    # Pose-derived player region must be this confident to narrow the search
    roi_min_confidence: float = 0.5
    # Search rectangle extension around the player region
    roi_width_factor: float = 1.0
    roi_height_factor: float = 0.5


@dataclass
class MetricConfig:
    """Remap offsets and clamp ranges for the five serve metrics"""
    elbow_offset: float = 100.0
    elbow_range: Tuple[float, float] = (90.0, 180.0)
    knee_offset: float = 20.0
    knee_range: Tuple[float, float] = (120.0, 160.0)
    x_factor_range: Tuple[float, float] = (20.0, 70.0)
    # contact_height = base + (1 - wrist_y) * scale
    contact_height_base: float = 180.0
    contact_height_scale: float = 100.0
    contact_height_range: Tuple[float, float] = (180.0, 250.0)
    follow_through_range: Tuple[float, float] = (5.0, 25.0)
    # Placeholder follow-through value until a kinematic estimator exists
    follow_through_default: float = 15.0
    # Minimum landmark visibility for the dominant arm
    min_arm_visibility: float = 0.5


@dataclass
class HistoryConfig:
    """Rolling metrics history"""
    capacity: int = 100
    # Kept after compaction
    keep_on_overflow: int = 50
    # Vectors copied into a saved session record
    snapshot_size: int = 20


@dataclass
class PoseConfig:
    """Pose source settings"""
    num_landmarks: int = 33
    model_complexity: int = 1  # 0=lite, 1=full, 2=heavy
    min_detection_confidence: float = 0.5
    min_tracking_confidence: float = 0.5
    # Landmarks below this are excluded from the player region
    region_min_visibility: float = 0.5
    # Simulated source motion cycle (seconds)
    simulated_cycle_sec: float = 3.0


@dataclass
class TrackingQualityConfig:
    """Racket confidence bands shown to the user"""
    weak_min: float = 0.6
    good_min: float = 0.7
    excellent_min: float = 0.85
    # Absence longer than this triggers troubleshooting guidance
    absence_timeout_sec: float = 3.0


@dataclass
class SessionConfig:
    """Session recording"""
    analysis_type: str = "tennis_serve"
    # Approximate seconds represented by one history entry (extraction gate)
    seconds_per_sample: float = 0.1
    key_prefix: str = "serve-session-"
    index_name: str = "serve-sessions.json"


@dataclass
class ThresholdConfig:
    """Master threshold configuration"""
    clock: ClockConfig = field(default_factory=ClockConfig)
    racket: RacketDetectionConfig = field(default_factory=RacketDetectionConfig)
    metrics: MetricConfig = field(default_factory=MetricConfig)
    history: HistoryConfig = field(default_factory=HistoryConfig)
    pose: PoseConfig = field(default_factory=PoseConfig)
    tracking: TrackingQualityConfig = field(default_factory=TrackingQualityConfig)
    session: SessionConfig = field(default_factory=SessionConfig)


# Global default configuration
THRESHOLDS = ThresholdConfig()


def get_thresholds() -> ThresholdConfig:
    """Get current threshold configuration"""
    return THRESHOLDS
