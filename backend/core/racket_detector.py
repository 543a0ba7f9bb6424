"""
Classical Racket Detection
Finds a racket in a raw RGB frame without a learned model:

1. Pick a search rectangle (whole frame, or around the player when a
   confident pose-derived region is available)
2. Score candidate centers on a 3 px grid by classifying the pixels of a
   31x51 neighborhood (sampled every 2 px) as frame, string or handle
3. Keep centers scoring above 0.7 and group them into connected clusters
   (30 px linking distance)
4. The largest cluster's centroid and mean score become a fixed-size box

Only the search rectangle plus the neighborhood margin is classified.
Window sums come from summed-area tables and clustering runs on the scan
lattice with OpenCV, so a dense frame costs milliseconds rather than a
per-candidate Python walk.

The detector itself returns any box it finds; the 0.6 acceptance threshold
is applied by RacketTracker, the pipeline's call site.
"""

import logging
import math
import time
from dataclasses import dataclass
from typing import Callable, Dict, List, Optional, Sequence, Tuple

import cv2
import numpy as np

from config import get_thresholds
from config.thresholds import RacketDetectionConfig
from logging_config import TickLogThrottle
from .pose_source import PlayerRegion
from .video_source import VideoFrame
from .frame_clock import Throttle

logger = logging.getLogger(__name__)

@dataclass
class RacketBox:
    """Normalized racket bounding box"""
    x: float
    y: float
    width: float
    height: float
    confidence: float

    @property
    def center(self) -> Tuple[float, float]:
        return (self.x + self.width / 2, self.y + self.height / 2)


@dataclass
class Candidate:
    """A scan center whose neighborhood looks racket-like"""
    x: int
    y: int
    score: float


# =============================================================================
# Pixel classifiers
# =============================================================================

def _brightness(r: float, g: float, b: float) -> float:
    return (r + g + b) / 3


def is_racket_frame(r: float, g: float, b: float, cfg: Optional[RacketDetectionConfig] = None) -> bool:
    """Dark rim/edge pixel with noticeable channel contrast"""
    cfg = cfg or get_thresholds().racket
    contrast = max(r, g, b) - min(r, g, b)
    return _brightness(r, g, b) < cfg.frame_max_brightness and contrast > cfg.frame_min_contrast


def is_racket_string(r: float, g: float, b: float, cfg: Optional[RacketDetectionConfig] = None) -> bool:
    """Bright string pixel, near-white or yellow dominant"""
    cfg = cfg or get_thresholds().racket
    if _brightness(r, g, b) <= cfg.string_min_brightness:
        return False
    white = (
        r > cfg.string_white_min_channel
        and g > cfg.string_white_min_channel
        and b > cfg.string_white_min_channel
    )
    yellow = (
        g > cfg.string_yellow_min_green
        and r > cfg.string_yellow_min_red
        and b < cfg.string_yellow_max_blue
    )
    return white or yellow


def is_racket_handle(r: float, g: float, b: float, cfg: Optional[RacketDetectionConfig] = None) -> bool:
    """Mid-low brightness grip pixel"""
    cfg = cfg or get_thresholds().racket
    brightness = _brightness(r, g, b)
    return cfg.handle_min_brightness < brightness < cfg.handle_max_brightness


def classify_pixels(rgb: np.ndarray, cfg: Optional[RacketDetectionConfig] = None) -> np.ndarray:
    """
    Per-pixel racket weight for an H x W x C image.

    Vectorized form of the three classifiers above: each matching class adds
    its weight, so one pixel can contribute up to frame + handle.
    """
    cfg = cfg or get_thresholds().racket
    channels = rgb[..., :3].astype(np.float64)
    r, g, b = channels[..., 0], channels[..., 1], channels[..., 2]

    brightness = (r + g + b) / 3
    contrast = channels.max(axis=-1) - channels.min(axis=-1)

    frame = (brightness < cfg.frame_max_brightness) & (contrast > cfg.frame_min_contrast)

    white = (
        (r > cfg.string_white_min_channel)
        & (g > cfg.string_white_min_channel)
        & (b > cfg.string_white_min_channel)
    )
    yellow = (
        (g > cfg.string_yellow_min_green)
        & (r > cfg.string_yellow_min_red)
        & (b < cfg.string_yellow_max_blue)
    )
    string = (brightness > cfg.string_min_brightness) & (white | yellow)

    handle = (brightness > cfg.handle_min_brightness) & (brightness < cfg.handle_max_brightness)

    return (
        frame * cfg.frame_weight
        + string * cfg.string_weight
        + handle * cfg.handle_weight
    )


# =============================================================================
# Search rectangle, scoring, clustering
# =============================================================================

def search_rectangle(
    width: int,
    height: int,
    player_region: Optional[PlayerRegion] = None,
    cfg: Optional[RacketDetectionConfig] = None
) -> Tuple[int, int, int, int]:
    """
    Pixel rectangle (x0, x1, y0, y1), end-exclusive, to scan for candidates.

    A confident player region narrows the scan to one player-width either
    side of the player's center and half a player-height above and below.
    """
    cfg = cfg or get_thresholds().racket
    if player_region is None or player_region.confidence <= cfg.roi_min_confidence:
        return 0, width, 0, height

    px = player_region.center_x * width
    py = player_region.center_y * height
    pw = player_region.width * width * cfg.roi_width_factor
    ph = player_region.height * height * cfg.roi_height_factor

    x0 = max(0, int(math.floor(px - pw)))
    x1 = min(width, int(math.ceil(px + pw)))
    y0 = max(0, int(math.floor(py - ph)))
    y1 = min(height, int(math.ceil(py + ph)))
    return x0, x1, y0, y1


def scan_region(
    rect: Tuple[int, int, int, int],
    width: int,
    height: int,
    cfg: Optional[RacketDetectionConfig] = None
) -> Tuple[int, int, int, int]:
    """Pixels any window centered in `rect` can reach, clipped to the frame."""
    cfg = cfg or get_thresholds().racket
    x0, x1, y0, y1 = rect
    return (
        max(0, x0 - cfg.neighborhood_half_width),
        min(width, x1 + cfg.neighborhood_half_width),
        max(0, y0 - cfg.neighborhood_half_height),
        min(height, y1 + cfg.neighborhood_half_height),
    )


def _window_bounds(
    centers: np.ndarray,
    half: int,
    step: int,
    limit: int
) -> Tuple[np.ndarray, np.ndarray, np.ndarray]:
    """
    Sample residue and [start, stop) range on the `step`-subsampled axis for
    windows of `centers +- half`, clipped to the `limit` pixels that exist.
    """
    first = centers - half
    residue = first % step
    start = (first - residue) // step
    stop = start + (2 * half) // step + 1
    sub_len = (limit - residue + step - 1) // step
    return residue, np.clip(start, 0, sub_len), np.clip(stop, 0, sub_len)


def score_grid(
    weights: np.ndarray,
    rect: Tuple[int, int, int, int],
    cfg: Optional[RacketDetectionConfig] = None,
    origin: Tuple[int, int] = (0, 0)
) -> Tuple[np.ndarray, np.ndarray, np.ndarray]:
    """
    Neighborhood score of every scan center in `rect`.

    `weights` is the classified region whose top-left pixel sits at `origin`
    (x, y) in frame coordinates; it must cover every in-frame pixel the
    windows reach (see `scan_region`). A center's score is the summed weight
    of its sampled window divided by the number of sampled pixels inside the
    frame.

    Returns:
        (xs, ys, scores) with scores shaped (len(ys), len(xs))
    """
    cfg = cfg or get_thresholds().racket
    x0, x1, y0, y1 = rect
    xs = np.arange(x0, x1, cfg.scan_stride)
    ys = np.arange(y0, y1, cfg.scan_stride)
    scores = np.zeros((ys.size, xs.size), dtype=np.float64)
    if xs.size == 0 or ys.size == 0:
        return xs, ys, scores

    step = cfg.neighborhood_stride
    height, width = weights.shape
    ox, oy = origin
    ry, r0, r1 = _window_bounds(ys - oy, cfg.neighborhood_half_height, step, height)
    rx, c0, c1 = _window_bounds(xs - ox, cfg.neighborhood_half_width, step, width)

    # Windows sample every `step`-th pixel, so each residue class of rows and
    # columns gets its own summed-area table
    for row_residue in np.unique(ry):
        rows = np.flatnonzero(ry == row_residue)
        a0, a1 = r0[rows][:, None], r1[rows][:, None]
        for col_residue in np.unique(rx):
            cols = np.flatnonzero(rx == col_residue)
            b0, b1 = c0[cols][None, :], c1[cols][None, :]

            sub = weights[row_residue::step, col_residue::step]
            table = np.zeros((sub.shape[0] + 1, sub.shape[1] + 1), dtype=np.float64)
            table[1:, 1:] = sub.cumsum(axis=0).cumsum(axis=1)

            sums = table[a1, b1] - table[a0, b1] - table[a1, b0] + table[a0, b0]
            counts = (a1 - a0) * (b1 - b0)
            scores[np.ix_(rows, cols)] = np.divide(
                sums, counts, out=np.zeros(sums.shape), where=counts > 0
            )

    return xs, ys, scores


def link_radius_sq(max_distance: float, stride: int) -> int:
    """Largest squared lattice distance, in scan steps, that still links two cells"""
    return int(math.floor((max_distance / stride) ** 2 + 1e-9))


def _lattice_links(
    mask: np.ndarray,
    labels: np.ndarray,
    radius_sq: int,
    connectivity: int
) -> List[np.ndarray]:
    """
    Pairs of distinct component labels with cells within the link radius.

    Only boundary cells are compared: from an interior cell, a neighbor one
    step toward the other component is closer to it, so the closest pair
    between two components always lies on their boundaries.
    """
    if connectivity == 8:
        kernel = np.ones((3, 3), dtype=np.uint8)
    else:
        kernel = cv2.getStructuringElement(cv2.MORPH_CROSS, (3, 3))
    interior = cv2.erode(mask, kernel, borderType=cv2.BORDER_CONSTANT, borderValue=0)
    boundary = np.where((mask > 0) & (interior == 0), labels, 0)

    height, width = boundary.shape
    reach = math.isqrt(radius_sq)
    links = []
    for dy in range(0, min(reach, height - 1) + 1):
        for dx in range(-reach, reach + 1):
            if (dy == 0 and dx <= 0) or dx * dx + dy * dy > radius_sq or abs(dx) >= width:
                continue
            a = boundary[0:height - dy, max(0, -dx):width - max(0, dx)]
            b = boundary[dy:height, max(0, dx):width - max(0, -dx)]
            hit = (a > 0) & (b > 0) & (a != b)
            if hit.any():
                links.append(np.stack([a[hit], b[hit]], axis=1))
    return links


def _merge_components(count: int, links: List[np.ndarray]) -> np.ndarray:
    """Root label for each of labels 0..count after applying the links"""
    parent = np.arange(count + 1)
    if not links:
        return parent

    pairs = np.unique(np.concatenate(links), axis=0)
    u, v = pairs[:, 0], pairs[:, 1]
    while True:
        pu, pv = parent[u], parent[v]
        if np.array_equal(pu, pv):
            return parent
        low = np.minimum(pu, pv)
        np.minimum.at(parent, pu, low)
        np.minimum.at(parent, pv, low)
        while True:
            jumped = parent[parent]
            if np.array_equal(jumped, parent):
                break
            parent = jumped


def label_clusters(mask: np.ndarray, radius_sq: int) -> Tuple[np.ndarray, int]:
    """
    Transitive clusters of set cells on a lattice.

    Two cells link when their squared distance in cells is at most
    `radius_sq`. Neighboring cells are grouped by OpenCV connected
    components, then components with boundary cells in reach are merged.

    Returns:
        (labels, count): labels 1..count numbered by each cluster's first
        cell in row-major order, 0 for unset cells
    """
    cells_mask = np.ascontiguousarray(mask, dtype=np.uint8)
    if radius_sq < 1:
        labels = np.zeros(cells_mask.shape, dtype=np.int32)
        cells = np.flatnonzero(cells_mask)
        labels.flat[cells] = np.arange(1, cells.size + 1)
        return labels, int(cells.size)

    connectivity = 8 if radius_sq >= 2 else 4
    count, labels = cv2.connectedComponents(cells_mask, connectivity=connectivity, ltype=cv2.CV_32S)
    count -= 1
    if count <= 0:
        return np.zeros(cells_mask.shape, dtype=np.int32), 0

    roots = _merge_components(count, _lattice_links(cells_mask, labels, radius_sq, connectivity))

    flat = labels.ravel()
    cells = np.flatnonzero(flat)
    merged = roots[flat[cells]]
    unique_roots, first_seen = np.unique(merged, return_index=True)
    remap = np.zeros(count + 1, dtype=np.int32)
    remap[unique_roots[np.argsort(first_seen)]] = np.arange(1, unique_roots.size + 1)

    out = np.zeros(flat.shape, dtype=np.int32)
    out[cells] = remap[merged]
    return out.reshape(cells_mask.shape), int(unique_roots.size)


def cluster_candidates(
    candidates: Sequence[Candidate],
    max_distance: Optional[float] = None
) -> List[List[Candidate]]:
    """
    Group candidates into connected components.

    Two candidates within `max_distance` (Euclidean, pixels) are linked and
    linking is transitive, so chains of close points form one cluster even
    when their ends are far apart. Candidates are placed on the coarsest
    integer lattice that holds them all (the scan grid for detector output).
    Clusters are ordered by their first member in input order.
    """
    if max_distance is None:
        max_distance = get_thresholds().racket.cluster_distance
    if not candidates:
        return []

    xs = np.array([c.x for c in candidates], dtype=np.int64)
    ys = np.array([c.y for c in candidates], dtype=np.int64)
    xs, ys = xs - xs.min(), ys - ys.min()
    step = int(np.gcd.reduce(np.concatenate([xs, ys]))) or 1
    gx, gy = xs // step, ys // step

    mask = np.zeros((int(gy.max()) + 1, int(gx.max()) + 1), dtype=np.uint8)
    mask[gy, gx] = 1
    labels, _ = label_clusters(mask, link_radius_sq(max_distance, step))

    clusters: Dict[int, List[Candidate]] = {}
    for label, candidate in zip(labels[gy, gx].tolist(), candidates):
        clusters.setdefault(label, []).append(candidate)
    return list(clusters.values())


# =============================================================================
# Detector
# =============================================================================

class RacketDetector:
    """
    Stateless-per-frame racket detector.

    `last_candidate_count` records how many scan centers cleared the
    candidate threshold on the most recent frame.
    """

    def __init__(self, config: Optional[RacketDetectionConfig] = None):
        self.config = config or get_thresholds().racket
        self.last_candidate_count = 0

    @staticmethod
    def _as_image(
        pixels: np.ndarray,
        width: Optional[int],
        height: Optional[int]
    ) -> np.ndarray:
        """Accept H x W x C arrays or a flat interleaved RGB(A) buffer."""
        image = np.asarray(pixels)
        if image.ndim == 1:
            if not width or not height:
                raise ValueError("Flat pixel buffers need width and height")
            if image.size % (width * height) != 0:
                raise ValueError(
                    f"Buffer of {image.size} values does not match {width}x{height}"
                )
            image = image.reshape(height, width, -1)

        if image.ndim != 3 or image.shape[2] < 3:
            raise ValueError(f"Expected an RGB(A) image, got shape {image.shape}")
        if (width and image.shape[1] != width) or (height and image.shape[0] != height):
            raise ValueError(
                f"Image is {image.shape[1]}x{image.shape[0]}, expected {width}x{height}"
            )
        return image

    def score(
        self,
        image: np.ndarray,
        player_region: Optional[PlayerRegion] = None
    ) -> Tuple[np.ndarray, np.ndarray, np.ndarray]:
        """Scan-grid scores for a frame, classifying only the reachable region"""
        height, width = image.shape[:2]
        rect = search_rectangle(width, height, player_region, self.config)
        x0, x1, y0, y1 = scan_region(rect, width, height, self.config)
        weights = classify_pixels(image[y0:y1, x0:x1], self.config)
        return score_grid(weights, rect, self.config, origin=(x0, y0))

    def detect(
        self,
        pixels: np.ndarray,
        width: Optional[int] = None,
        height: Optional[int] = None,
        player_region: Optional[PlayerRegion] = None
    ) -> Optional[RacketBox]:
        """
        Detect the most likely racket in a frame.

        Returns:
            RacketBox (confidence not yet gated), or None if no candidate
        Raises:
            ValueError: malformed pixel buffer
        """
        cfg = self.config
        image = self._as_image(pixels, width, height)
        frame_h, frame_w = image.shape[:2]

        xs, ys, scores = self.score(image, player_region)
        candidates = scores > cfg.candidate_threshold
        self.last_candidate_count = int(candidates.sum())
        if not self.last_candidate_count:
            return None

        labels, count = label_clusters(
            candidates, link_radius_sq(cfg.cluster_distance, cfg.scan_stride)
        )
        sizes = np.bincount(labels.ravel(), minlength=count + 1)
        sizes[0] = 0
        # argmax keeps the earliest cluster on ties
        rows, cols = np.nonzero(labels == int(np.argmax(sizes)))

        cx = float(xs[cols].mean())
        cy = float(ys[rows].mean())
        avg_score = float(scores[rows, cols].mean())
        return RacketBox(
            x=(cx + cfg.box_offset_x) / frame_w,
            y=(cy + cfg.box_offset_y) / frame_h,
            width=cfg.box_width / frame_w,
            height=cfg.box_height / frame_h,
            confidence=min(cfg.max_confidence, avg_score)
        )


class RacketTracker:
    """
    Racket stage of the frame loop.

    Runs the detector at most every `interval_ms` and only publishes boxes
    whose confidence clears the acceptance threshold. Between detections the
    last published box is kept; a detection that finds nothing clears it.
    Detector faults are logged and the previous box is kept.
    """

    def __init__(
        self,
        detector: Optional[RacketDetector] = None,
        interval_ms: Optional[float] = None,
        acceptance_threshold: Optional[float] = None,
        clock: Callable[[], float] = time.monotonic
    ):
        thresholds = get_thresholds()
        self.detector = detector or RacketDetector()
        self.acceptance_threshold = (
            thresholds.racket.acceptance_threshold if acceptance_threshold is None else acceptance_threshold
        )
        self._throttle = Throttle(
            thresholds.clock.racket_interval_ms if interval_ms is None else interval_ms,
            clock=clock
        )
        self._log_throttle = TickLogThrottle(clock=clock)
        self.current: Optional[RacketBox] = None
        self.detections_run = 0

    def update(
        self,
        frame: Optional[VideoFrame],
        player_region: Optional[PlayerRegion] = None,
        now: Optional[float] = None
    ) -> Optional[RacketBox]:
        if frame is None or not self._throttle.try_acquire(now):
            return self.current

        self.detections_run += 1
        try:
            box = self.detector.detect(frame.pixels, frame.width, frame.height, player_region)
        except Exception as e:
            self._log_throttle.log(
                logger, logging.WARNING, "detect",
                f"Racket detection failed: {e}",
                exc_info=True, stage="racket", frame_index=frame.index
            )
            return self.current

        if box is not None and box.confidence > self.acceptance_threshold:
            self.current = box
            logger.debug("Racket detected", extra={"confidence": round(box.confidence, 3)})
        else:
            self.current = None
        return self.current

    def reset(self) -> None:
        self.current = None
        self._throttle.reset()
