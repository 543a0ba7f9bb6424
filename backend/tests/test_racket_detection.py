"""
Tests for classical racket detection and the throttled tracker
"""

import numpy as np
import pytest


def racket_frame(width=160, height=160, patch=(60, 100, 50, 110), color=(80, 20, 20)):
    """Black frame with one dark-red racket-like patch (x0, x1, y0, y1)."""
    image = np.zeros((height, width, 3), dtype=np.uint8)
    x0, x1, y0, y1 = patch
    image[y0:y1, x0:x1] = color
    return image


class TestPixelClassifiers:

    def test_frame_pixel(self):
        from core.racket_detector import is_racket_frame

        assert is_racket_frame(80, 20, 20)
        assert not is_racket_frame(50, 50, 50)  # no contrast
        assert not is_racket_frame(200, 120, 120)  # too bright

    def test_string_pixel(self):
        from core.racket_detector import is_racket_string

        assert is_racket_string(200, 200, 200)  # white
        assert is_racket_string(230, 230, 60)  # yellow
        assert not is_racket_string(200, 200, 50)  # yellowish but too dark overall
        assert not is_racket_string(255, 100, 255)

    def test_handle_pixel(self):
        from core.racket_detector import is_racket_handle

        assert is_racket_handle(60, 60, 60)
        assert not is_racket_handle(10, 10, 10)
        assert not is_racket_handle(200, 200, 200)

    def test_vectorized_matches_scalar(self):
        from core.racket_detector import (
            classify_pixels, is_racket_frame, is_racket_string, is_racket_handle
        )

        pixels = [(80, 20, 20), (200, 200, 200), (230, 230, 60), (60, 60, 60), (0, 0, 0), (255, 100, 255)]
        image = np.array([pixels], dtype=np.uint8)
        weights = classify_pixels(image)

        for i, (r, g, b) in enumerate(pixels):
            expected = (
                1.5 * is_racket_frame(r, g, b)
                + 1.2 * is_racket_string(r, g, b)
                + 1.0 * is_racket_handle(r, g, b)
            )
            assert weights[0, i] == pytest.approx(expected)


class TestClustering:

    def test_transitive_chain(self):
        """A-B and B-C within 30 px join A and C even when A-C is farther"""
        from core.racket_detector import Candidate, cluster_candidates

        a = Candidate(0, 0, 1.0)
        b = Candidate(25, 0, 1.0)
        c = Candidate(50, 0, 1.0)
        far = Candidate(200, 200, 1.0)

        clusters = cluster_candidates([a, far, c, b], max_distance=30)

        assert len(clusters) == 2
        assert sorted(p.x for p in clusters[0]) == [0, 25, 50]
        assert clusters[1] == [far]

    def test_boundary_distance_links(self):
        from core.racket_detector import Candidate, cluster_candidates

        clusters = cluster_candidates([Candidate(0, 0, 1.0), Candidate(30, 0, 1.0)], max_distance=30)
        assert len(clusters) == 1

    def test_separates_distant_groups(self):
        from core.racket_detector import Candidate, cluster_candidates

        lone = Candidate(0, 0, 0.8)
        pair = [Candidate(100, 100, 0.9), Candidate(103, 100, 0.7)]

        assert cluster_candidates([lone] + pair, 30) == [[lone], pair]

    def test_scan_grid_link_is_exact(self):
        """On the 3 px scan grid, 30.0 px links and the next distance up (30.15 px) does not"""
        from core.racket_detector import Candidate, cluster_candidates

        assert len(cluster_candidates([Candidate(0, 0, 1.0), Candidate(18, 24, 1.0)], 30)) == 1
        assert len(cluster_candidates([Candidate(0, 0, 1.0), Candidate(30, 3, 1.0)], 30)) == 2
        assert len(cluster_candidates([Candidate(0, 0, 1.0), Candidate(33, 0, 1.0)], 30)) == 2

    def test_label_clusters_matches_pairwise_linking(self):
        from core.racket_detector import label_clusters

        rng = np.random.default_rng(7)
        mask = rng.random((14, 18)) < 0.12
        radius_sq = 5

        labels, count = label_clusters(mask, radius_sq)

        cells = [tuple(p) for p in np.argwhere(mask)]
        expected = {}
        for seed in cells:
            if seed in expected:
                continue
            expected[seed] = seed
            stack = [seed]
            while stack:
                y, x = stack.pop()
                for other in cells:
                    if other not in expected and (other[0] - y) ** 2 + (other[1] - x) ** 2 <= radius_sq:
                        expected[other] = seed
                        stack.append(other)

        assert count == len(set(expected.values()))
        for a in cells:
            for b in cells:
                assert (labels[a] == labels[b]) == (expected[a] == expected[b])
        # Numbered by first cell in row-major order
        first_labels = [labels[c] for c in cells]
        seen = list(dict.fromkeys(first_labels))
        assert seen == list(range(1, count + 1))

    def test_empty(self):
        from core.racket_detector import cluster_candidates, label_clusters

        assert cluster_candidates([]) == []
        labels, count = label_clusters(np.zeros((4, 5), dtype=bool), 100)
        assert count == 0
        assert not labels.any()


class TestSearchRectangle:

    def test_full_frame_without_region(self):
        from core.racket_detector import search_rectangle

        assert search_rectangle(200, 100) == (0, 200, 0, 100)

    def test_confident_region_narrows_scan(self):
        from core.racket_detector import search_rectangle
        from core.pose_source import PlayerRegion

        region = PlayerRegion(center_x=0.5, center_y=0.5, width=0.2, height=0.4, confidence=0.9)
        assert search_rectangle(200, 100, region) == (60, 140, 30, 70)

    def test_low_confidence_region_ignored(self):
        from core.racket_detector import search_rectangle
        from core.pose_source import PlayerRegion

        region = PlayerRegion(center_x=0.5, center_y=0.5, width=0.2, height=0.4, confidence=0.5)
        assert search_rectangle(200, 100, region) == (0, 200, 0, 100)

    def test_clipped_to_frame(self):
        from core.racket_detector import search_rectangle
        from core.pose_source import PlayerRegion

        region = PlayerRegion(center_x=0.05, center_y=0.95, width=0.5, height=0.5, confidence=0.9)
        x0, x1, y0, y1 = search_rectangle(200, 100, region)
        assert x0 == 0 and y1 == 100


class TestWindowScoring:

    def direct_scores(self, weights, rect):
        """Window average computed pixel by pixel"""
        from config import get_thresholds

        cfg = get_thresholds().racket
        height, width = weights.shape
        xs = range(rect[0], rect[1], cfg.scan_stride)
        ys = range(rect[2], rect[3], cfg.scan_stride)
        out = np.zeros((len(ys), len(xs)))
        for i, y in enumerate(ys):
            for j, x in enumerate(xs):
                total, count = 0.0, 0
                for dy in range(-cfg.neighborhood_half_height, cfg.neighborhood_half_height + 1, cfg.neighborhood_stride):
                    for dx in range(-cfg.neighborhood_half_width, cfg.neighborhood_half_width + 1, cfg.neighborhood_stride):
                        if 0 <= y + dy < height and 0 <= x + dx < width:
                            total += weights[y + dy, x + dx]
                            count += 1
                out[i, j] = total / count if count else 0.0
        return out

    def test_full_frame_matches_direct_sum(self):
        from core.racket_detector import score_grid

        weights = np.random.default_rng(3).random((40, 50)) * 2.5
        xs, ys, scores = score_grid(weights, (0, 50, 0, 40))

        assert list(xs) == list(range(0, 50, 3))
        assert list(ys) == list(range(0, 40, 3))
        np.testing.assert_allclose(scores, self.direct_scores(weights, (0, 50, 0, 40)))

    def test_cropped_region_matches_direct_sum(self):
        from core.racket_detector import score_grid, scan_region

        weights = np.random.default_rng(5).random((60, 70)) * 2.5
        rect = (11, 37, 12, 29)
        x0, x1, y0, y1 = scan_region(rect, 70, 60)

        _, _, scores = score_grid(weights[y0:y1, x0:x1], rect, origin=(x0, y0))

        np.testing.assert_allclose(scores, self.direct_scores(weights, rect))

    def test_empty_rect(self):
        from core.racket_detector import score_grid

        xs, ys, scores = score_grid(np.zeros((10, 10)), (5, 5, 0, 10))
        assert xs.size == 0 and scores.size == 0


class TestRacketDetector:

    def test_detects_patch(self):
        from core.racket_detector import RacketDetector

        box = RacketDetector().detect(racket_frame())

        assert box is not None
        assert 0.6 < box.confidence <= 0.95
        cx, cy = box.center
        assert cx == pytest.approx(80 / 160, abs=0.05)
        assert cy == pytest.approx(80 / 160, abs=0.05)
        assert box.width == pytest.approx(50 / 160)
        assert box.height == pytest.approx(70 / 160)

    def test_empty_frame(self):
        from core.racket_detector import RacketDetector

        assert RacketDetector().detect(np.zeros((120, 160, 3), dtype=np.uint8)) is None

    def test_flat_rgba_buffer(self):
        """Interleaved RGBA buffers are accepted with explicit dimensions"""
        from core.racket_detector import RacketDetector

        rgb = racket_frame()
        rgba = np.concatenate([rgb, np.full(rgb.shape[:2] + (1,), 255, dtype=np.uint8)], axis=2)

        box = RacketDetector().detect(rgba.ravel(), width=160, height=160)
        assert box is not None

    def test_malformed_buffer(self):
        from core.racket_detector import RacketDetector

        detector = RacketDetector()
        with pytest.raises(ValueError):
            detector.detect(np.zeros(100, dtype=np.uint8), width=7, height=5)
        with pytest.raises(ValueError):
            detector.detect(np.zeros((10, 10), dtype=np.uint8))

    def test_region_excludes_distant_racket(self):
        from core.racket_detector import RacketDetector
        from core.pose_source import PlayerRegion

        image = racket_frame(width=320, height=160, patch=(250, 290, 50, 110))
        left_player = PlayerRegion(center_x=0.15, center_y=0.5, width=0.1, height=0.5, confidence=0.9)

        detector = RacketDetector()
        assert detector.detect(image) is not None
        assert detector.detect(image, player_region=left_player) is None

    def test_dense_frame_stays_fast(self):
        """Mid-grey floods the scan with candidates; one detection must still be quick"""
        import time
        from core.racket_detector import RacketDetector

        image = np.full((720, 1280, 3), 60, dtype=np.uint8)
        detector = RacketDetector()

        started = time.perf_counter()
        box = detector.detect(image)
        elapsed = time.perf_counter() - started

        assert detector.last_candidate_count == 427 * 240
        assert box is not None
        assert box.confidence == pytest.approx(0.95)
        cx, cy = box.center
        assert cx == pytest.approx(0.5, abs=0.01)
        assert cy == pytest.approx(0.5, abs=0.01)
        assert elapsed < 2.0

    def test_region_limits_classified_pixels(self):
        from unittest.mock import patch
        from core import racket_detector
        from core.pose_source import PlayerRegion

        region = PlayerRegion(center_x=0.5, center_y=0.5, width=0.1, height=0.2, confidence=0.9)
        image = racket_frame(width=640, height=480, patch=(300, 340, 200, 270))

        with patch.object(racket_detector, "classify_pixels", wraps=racket_detector.classify_pixels) as spy:
            box = racket_detector.RacketDetector().detect(image, player_region=region)

        classified = spy.call_args[0][0]
        assert classified.shape[:2] == (48 * 2 + 50, 64 * 2 + 30)
        assert box is not None


class TestRacketTracker:

    class FixedDetector:
        def __init__(self, box=None, error=None):
            self.box = box
            self.error = error
            self.calls = 0

        def detect(self, pixels, width=None, height=None, player_region=None):
            self.calls += 1
            if self.error:
                raise self.error
            return self.box

    def _frame(self):
        from core.video_source import VideoFrame
        return VideoFrame(pixels=np.zeros((10, 10, 3), dtype=np.uint8), timestamp=0.0, index=0)

    def _box(self, confidence):
        from core.racket_detector import RacketBox
        return RacketBox(x=0.1, y=0.1, width=0.2, height=0.3, confidence=confidence)

    def test_acceptance_threshold(self, fake_clock):
        from core.racket_detector import RacketTracker

        tracker = RacketTracker(detector=self.FixedDetector(self._box(0.6)), clock=fake_clock)
        assert tracker.update(self._frame()) is None  # not strictly above 0.6

        tracker = RacketTracker(detector=self.FixedDetector(self._box(0.61)), clock=fake_clock)
        assert tracker.update(self._frame()).confidence == 0.61

    def test_throttled_between_detections(self, fake_clock):
        from core.racket_detector import RacketTracker

        detector = self.FixedDetector(self._box(0.9))
        tracker = RacketTracker(detector=detector, clock=fake_clock)

        first = tracker.update(self._frame())
        fake_clock.advance(0.016)
        second = tracker.update(self._frame())

        assert detector.calls == 1
        assert second is first  # last box kept between detections

        fake_clock.advance(0.02)
        tracker.update(self._frame())
        assert detector.calls == 2

    def test_missed_detection_clears_box(self, fake_clock):
        from core.racket_detector import RacketTracker

        detector = self.FixedDetector(self._box(0.9))
        tracker = RacketTracker(detector=detector, clock=fake_clock)
        assert tracker.update(self._frame()) is not None

        detector.box = None
        fake_clock.advance(0.05)
        assert tracker.update(self._frame()) is None

    def test_detector_fault_keeps_last_box(self, fake_clock):
        from core.racket_detector import RacketTracker

        detector = self.FixedDetector(self._box(0.9))
        tracker = RacketTracker(detector=detector, clock=fake_clock)
        box = tracker.update(self._frame())

        detector.error = ValueError("bad buffer")
        fake_clock.advance(0.05)
        assert tracker.update(self._frame()) is box

    def test_never_emits_low_confidence(self, fake_clock):
        from core.racket_detector import RacketTracker

        detector = self.FixedDetector()
        tracker = RacketTracker(detector=detector, clock=fake_clock)

        for conf in [0.1, 0.59, 0.6, 0.7, 0.95, 0.3]:
            detector.box = self._box(conf)
            box = tracker.update(self._frame())
            assert box is None or box.confidence > 0.6
            fake_clock.advance(0.05)

    def test_no_frame(self, fake_clock):
        from core.racket_detector import RacketTracker

        detector = self.FixedDetector(self._box(0.9))
        tracker = RacketTracker(detector=detector, clock=fake_clock)

        assert tracker.update(None) is None
        assert detector.calls == 0
