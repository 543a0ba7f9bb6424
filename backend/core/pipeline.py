"""
Serve Analysis Pipeline
Per-frame orchestration of pose, racket, metric, similarity and coaching
stages, for both the live tick loop and offline video files.
"""

import logging
import time
from collections import Counter
from dataclasses import dataclass, field
from typing import Callable, Dict, List, Optional

from config import get_thresholds
from exceptions import ServeSenseException, VideoProcessingError, InsufficientPoseData
from logging_config import LogTimer, TickLogThrottle
from .frame_clock import FrameClock
from .video_source import FrameSource, VideoFrame, VideoFileSource
from .pose_source import PoseSource, PoseSample, create_pose_source, player_region_from_pose
from .racket_detector import RacketBox, RacketTracker
from .metric_extractor import MetricExtractor, MetricVector, detect_serve_phase
from .similarity import TargetProfile, DEFAULT_TARGET, compute_similarity
from .coaching import generate_insights, recommend_drills, phase_feedback, overall_feedback
from .tracking_status import AbsenceMonitor, tracking_quality
from .session_recorder import ServeSession, SessionRecorder, SessionStore, SessionRecord

logger = logging.getLogger(__name__)


@dataclass
class FrameResult:
    """Outcome of one tick. `metrics` is set only on ticks that produced a vector."""
    timestamp: float
    pose: Optional[PoseSample] = None
    racket_box: Optional[RacketBox] = None
    metrics: Optional[MetricVector] = None
    similarity: Optional[int] = None
    phase: Optional[str] = None
    tracking_quality: str = "none"
    guidance: List[str] = field(default_factory=list)


class AnalysisResult:
    """Structured offline analysis result with stage tracking"""

    def __init__(self):
        self.stages_completed = []
        self.warnings = []
        self.processing_time_sec = 0.0
        self.data = {}

    def add_warning(self, warning: str):
        self.warnings.append(warning)
        logger.warning(warning)

    def complete_stage(self, stage: str):
        self.stages_completed.append(stage)
        logger.debug(f"Stage completed: {stage}")

    def to_dict(self) -> Dict:
        result = {"processing_time_sec": round(self.processing_time_sec, 2)}
        result.update(self.data)
        if self.warnings:
            result["warnings"] = self.warnings
        return result


class ServeAnalysisPipeline:
    """
    Frame Clock -> Pose Source -> Racket Detector -> Metric Extractor ->
    Similarity -> Coaching, with the Session Recorder reading session state
    on demand.

    Each stage is isolated: a fault in one stage is logged and that stage
    yields nothing for the tick, the loop keeps going.
    """

    def __init__(
        self,
        pose_source: Optional[PoseSource] = None,
        racket_tracker: Optional[RacketTracker] = None,
        extractor: Optional[MetricExtractor] = None,
        store: Optional[SessionStore] = None,
        target: TargetProfile = DEFAULT_TARGET,
        dominant_side: str = "right",
        clock: Callable[[], float] = time.monotonic
    ):
        self._clock = clock
        self.pose_source = pose_source or create_pose_source("simulated")
        self.racket_tracker = racket_tracker or RacketTracker(clock=clock)
        self.extractor = extractor or MetricExtractor(dominant_side=dominant_side, clock=clock)
        self.target = target
        self.session = ServeSession(history=self.extractor.history)
        self.recorder = SessionRecorder(self.session, store) if store is not None else None
        self.absence_monitor = AbsenceMonitor(clock=clock)
        self._log_throttle = TickLogThrottle(clock=clock)

    @property
    def dominant_side(self) -> str:
        return self.extractor.dominant_side

    def _stage_failed(self, stage: str, error: Exception, frame: Optional[VideoFrame]):
        self._log_throttle.log(
            logger, logging.WARNING, stage,
            f"{stage} stage failed: {error}",
            exc_info=True, stage=stage,
            frame_index=frame.index if frame is not None else None
        )

    def process_frame(self, frame: Optional[VideoFrame], now: Optional[float] = None) -> FrameResult:
        """Run every stage once for the current frame"""
        now = self._clock() if now is None else now
        result = FrameResult(timestamp=now)

        result.pose = self.pose_source.produce(frame)

        region = None
        try:
            region = player_region_from_pose(result.pose)
        except Exception as e:
            self._stage_failed("player_region", e, frame)

        result.racket_box = self.racket_tracker.update(frame, region, now)

        try:
            vector = self.extractor.extract(result.pose, now, result.racket_box)
            if vector is not None:
                self.session.metrics = vector
                self.session.similarity = compute_similarity(vector, self.target)
                self.session.phase = detect_serve_phase(result.pose, self.dominant_side)
                result.metrics = vector
                result.similarity = self.session.similarity
                result.phase = self.session.phase
        except Exception as e:
            self._stage_failed("metrics", e, frame)

        result.tracking_quality = tracking_quality(result.racket_box)
        status = self.absence_monitor.update(result.pose is not None, result.racket_box is not None, now)
        result.guidance = status.guidance
        return result

    def run_live(
        self,
        frame_source: FrameSource,
        frame_clock: Optional[FrameClock] = None,
        max_ticks: Optional[int] = None,
        on_result: Optional[Callable[[FrameResult], None]] = None
    ) -> int:
        """
        Drive the pipeline from a frame clock until the source ends, the
        clock is cancelled or `max_ticks` is reached. Paused sources keep
        ticking without producing frames.

        Returns:
            Number of ticks run
        """
        frame_clock = frame_clock or FrameClock(clock=self._clock)

        def on_tick(now: float) -> bool:
            frame = frame_source.read()
            if frame is None and frame_source.ended:
                return False
            result = self.process_frame(frame, now)
            if on_result is not None:
                on_result(result)
            return True

        with frame_clock:
            ticks = frame_clock.run(on_tick, max_ticks=max_ticks)
        logger.info("Live loop stopped", extra={"ticks": ticks, "vectors": len(self.session.history)})
        return ticks

    def summary(self) -> Dict:
        """Current metrics, similarity and coaching output"""
        metrics = self.session.metrics
        similarity = self.session.similarity
        return {
            "analysis_type": get_thresholds().session.analysis_type,
            "final_metrics": metrics.to_dict(),
            "similarity": similarity,
            "phase": self.session.phase,
            "phase_feedback": phase_feedback(self.session.phase),
            "overall_feedback": overall_feedback(similarity),
            "insights": [i.to_dict() for i in generate_insights(metrics)],
            "drills": [d.to_dict() for d in recommend_drills(metrics)],
            "history_length": len(self.session.history),
        }

    def save_session(self) -> SessionRecord:
        if self.recorder is None:
            raise RuntimeError("Pipeline has no session store")
        return self.recorder.save()

    def reset(self) -> None:
        self.session.reset()
        self.extractor.reset()
        self.racket_tracker.reset()
        self.absence_monitor.reset()

    def close(self) -> None:
        """Release the pose estimator owned by this pipeline"""
        self.pose_source.close()

    def __enter__(self):
        return self

    def __exit__(self, exc_type, exc_val, exc_tb):
        self.close()
        return False

    def analyze_frames(self, frame_source: FrameSource, save: bool = False) -> Dict:
        """
        Offline analysis: every frame is processed with its media timestamp
        as the clock, so throttles follow video time rather than wall time.

        Raises:
            InsufficientPoseData: If no metric vector could be extracted
            VideoProcessingError: On unexpected failures
        """
        if save and self.recorder is None:
            raise RuntimeError("Pipeline has no session store")

        start_time = time.time()
        result = AnalysisResult()
        self.reset()

        frames = 0
        frames_with_pose = 0
        quality_counts: Counter = Counter()
        last: Optional[FrameResult] = None

        try:
            with LogTimer(logger, "Serve analysis", pose_backend=self.pose_source.name):
                for frame in frame_source:
                    last = self.process_frame(frame, frame.timestamp)
                    frames += 1
                    frames_with_pose += last.pose is not None
                    quality_counts[last.tracking_quality] += 1
            result.complete_stage("frame_processing")
        except ServeSenseException:
            raise
        except Exception as e:
            logger.error(f"Serve analysis failed: {e}", exc_info=True)
            raise VideoProcessingError(f"Failed to analyze video: {e}", stage="frame_processing")
        finally:
            frame_source.close()

        vectors = len(self.session.history)
        if vectors == 0:
            raise InsufficientPoseData(
                f"No serve metrics extracted from {frames} frames. "
                "Ensure the full body and hitting arm are visible."
            )

        if frames_with_pose < frames * 0.5:
            result.add_warning(
                f"Only {frames_with_pose}/{frames} frames had detected poses. "
                "Consider better lighting or camera angle."
            )

        result.data.update(self.summary())
        result.data.update({
            "pose_backend": self.pose_source.name,
            "frames_processed": frames,
            "frames_with_pose": frames_with_pose,
            "vectors_extracted": vectors,
            "tracking": {
                "quality": last.tracking_quality if last is not None else "none",
                "quality_counts": dict(quality_counts),
                "guidance": last.guidance if last is not None else [],
            },
        })
        result.complete_stage("coaching")

        if save:
            record = self.save_session()
            result.data["session_key"] = self.recorder.last_key
            result.data["approximate_duration_seconds"] = record.approximate_duration_seconds
            result.complete_stage("session_saved")

        result.processing_time_sec = time.time() - start_time
        logger.info(
            "Analysis complete",
            extra={"frames": frames, "vectors": vectors, "similarity": self.session.similarity}
        )
        return result.to_dict()

    def analyze_video(self, video_path: str, save: bool = False) -> Dict:
        """Decode a video file with OpenCV and analyze it"""
        return self.analyze_frames(VideoFileSource(video_path), save=save)


def create_pipeline(
    pose_backend: str = "auto",
    dominant_side: str = "right",
    store: Optional[SessionStore] = None
) -> ServeAnalysisPipeline:
    """Pipeline with the configured pose backend and the classical racket detector"""
    return ServeAnalysisPipeline(
        pose_source=create_pose_source(pose_backend),
        dominant_side=dominant_side,
        store=store
    )
