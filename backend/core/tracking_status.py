"""
Tracking Status
User-facing tracking quality from racket confidence, and troubleshooting
guidance when the player or racket has been missing for a while.
"""

import logging
import time
from dataclasses import dataclass, field
from typing import Callable, List, Optional

from config import get_thresholds
from config.thresholds import TrackingQualityConfig

logger = logging.getLogger(__name__)


QUALITY_NONE = "none"
QUALITY_WEAK = "weak"
QUALITY_GOOD = "good"
QUALITY_EXCELLENT = "excellent"


def tracking_quality(box, config: Optional[TrackingQualityConfig] = None) -> str:
    """Map the current RacketBox (or None) to none/weak/good/excellent."""
    cfg = config or get_thresholds().tracking
    if box is None or box.confidence < cfg.weak_min:
        return QUALITY_NONE
    if box.confidence >= cfg.excellent_min:
        return QUALITY_EXCELLENT
    if box.confidence >= cfg.good_min:
        return QUALITY_GOOD
    return QUALITY_WEAK


POSE_GUIDANCE = [
    "Make sure your whole body is in frame, head to feet.",
    "Position the camera chest-high, 3-4 m from the player.",
    "Improve lighting and avoid strong backlight.",
]

RACKET_GUIDANCE = [
    "Keep the racket visible against a contrasting background.",
    "Reduce background clutter behind the hitting arm.",
    "Wear clothing that contrasts with the court.",
]


@dataclass
class TrackingStatus:
    pose_missing_sec: float = 0.0
    racket_missing_sec: float = 0.0
    guidance: List[str] = field(default_factory=list)

    @property
    def needs_help(self) -> bool:
        return bool(self.guidance)


class AbsenceMonitor:
    """
    Tracks how long pose and racket have been continuously absent.

    Guidance appears once either has been missing for at least `timeout`
    seconds of clock time and clears as soon as it is seen again.
    """

    def __init__(
        self,
        timeout_sec: Optional[float] = None,
        clock: Callable[[], float] = time.monotonic
    ):
        self.timeout_sec = get_thresholds().tracking.absence_timeout_sec if timeout_sec is None else timeout_sec
        self._clock = clock
        self._pose_lost_at: Optional[float] = None
        self._racket_lost_at: Optional[float] = None
        self._warned = False

    def reset(self) -> None:
        self._pose_lost_at = None
        self._racket_lost_at = None
        self._warned = False

    def update(self, pose_present: bool, racket_present: bool, now: Optional[float] = None) -> TrackingStatus:
        now = self._clock() if now is None else now
        if pose_present:
            self._pose_lost_at = None
        elif self._pose_lost_at is None:
            self._pose_lost_at = now

        if racket_present:
            self._racket_lost_at = None
        elif self._racket_lost_at is None:
            self._racket_lost_at = now

        status = TrackingStatus(
            pose_missing_sec=0.0 if self._pose_lost_at is None else now - self._pose_lost_at,
            racket_missing_sec=0.0 if self._racket_lost_at is None else now - self._racket_lost_at
        )
        if status.pose_missing_sec >= self.timeout_sec:
            status.guidance.extend(POSE_GUIDANCE)
        if status.racket_missing_sec >= self.timeout_sec:
            status.guidance.extend(RACKET_GUIDANCE)

        if status.needs_help and not self._warned:
            logger.info(
                "Sustained tracking loss",
                extra={"pose_missing_sec": round(status.pose_missing_sec, 2),
                       "racket_missing_sec": round(status.racket_missing_sec, 2)}
            )
        self._warned = status.needs_help
        return status
