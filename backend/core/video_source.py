"""
Video Frame Sources
The pipeline's input boundary: a live or file-backed video that hands out its
current decoded frame as an RGB pixel buffer on demand.
"""

import logging
from abc import ABC, abstractmethod
from dataclasses import dataclass
from pathlib import Path
from typing import Iterator, List, Optional, Sequence

import cv2
import numpy as np

from exceptions import FrameDecodeError, VideoNotFound

logger = logging.getLogger(__name__)


@dataclass
class VideoFrame:
    """One decoded frame"""
    pixels: np.ndarray  # H x W x 3, RGB, uint8
    timestamp: float  # Seconds of media time
    index: int

    @property
    def width(self) -> int:
        return int(self.pixels.shape[1])

    @property
    def height(self) -> int:
        return int(self.pixels.shape[0])


class FrameSource(ABC):
    """
    Anything that can hand the pipeline its current frame.

    `read()` returns None when the source is paused, ended or has no active
    stream; a paused source does not advance.
    """

    def __init__(self):
        self.paused = False
        self.ended = False

    @property
    def active(self) -> bool:
        return not self.paused and not self.ended

    def pause(self) -> None:
        self.paused = True

    def resume(self) -> None:
        self.paused = False

    def read(self) -> Optional[VideoFrame]:
        if not self.active:
            return None
        frame = self._next_frame()
        if frame is None:
            self.ended = True
        return frame

    @abstractmethod
    def _next_frame(self) -> Optional[VideoFrame]:
        """Decode the next frame, or None at end of stream"""

    def close(self) -> None:
        self.ended = True

    def __iter__(self) -> Iterator[VideoFrame]:
        while True:
            frame = self.read()
            if frame is None:
                return
            yield frame

    def __enter__(self):
        return self

    def __exit__(self, exc_type, exc_val, exc_tb):
        self.close()
        return False


class VideoFileSource(FrameSource):
    """Decodes a video file with OpenCV, converting BGR to RGB."""

    def __init__(self, video_path: str):
        super().__init__()
        path = Path(video_path)
        if not path.exists():
            raise VideoNotFound(str(path))

        self.path = path
        self._cap = cv2.VideoCapture(str(path))
        if not self._cap.isOpened():
            self._cap.release()
            raise FrameDecodeError(f"Cannot open video: {path}")

        fps = self._cap.get(cv2.CAP_PROP_FPS)
        self.fps = fps if fps and fps > 0 else 30.0
        self.frame_count = int(self._cap.get(cv2.CAP_PROP_FRAME_COUNT))
        self.width = int(self._cap.get(cv2.CAP_PROP_FRAME_WIDTH))
        self.height = int(self._cap.get(cv2.CAP_PROP_FRAME_HEIGHT))
        self._index = 0

        logger.info(
            f"Opened video: {self.frame_count} frames, {self.fps:.1f} FPS, {self.width}x{self.height}",
            extra={"path": str(path)}
        )

    @property
    def duration(self) -> float:
        return self.frame_count / self.fps if self.fps > 0 else 0.0

    def _next_frame(self) -> Optional[VideoFrame]:
        ret, frame = self._cap.read()
        if not ret:
            return None

        rgb = cv2.cvtColor(frame, cv2.COLOR_BGR2RGB)
        video_frame = VideoFrame(pixels=rgb, timestamp=self._index / self.fps, index=self._index)
        self._index += 1
        return video_frame

    def close(self) -> None:
        if self._cap is not None:
            self._cap.release()
            self._cap = None
        super().close()


class ArrayFrameSource(FrameSource):
    """In-memory frames, for demos and tests."""

    def __init__(self, frames: Sequence[np.ndarray], fps: float = 30.0):
        super().__init__()
        if fps <= 0:
            raise ValueError("fps must be > 0")
        self._frames: List[np.ndarray] = list(frames)
        self.fps = fps
        self._index = 0

    def _next_frame(self) -> Optional[VideoFrame]:
        if self._index >= len(self._frames):
            return None
        pixels = np.asarray(self._frames[self._index])
        frame = VideoFrame(pixels=pixels, timestamp=self._index / self.fps, index=self._index)
        self._index += 1
        return frame
