"""
Grid-scan bubble detection.

Scans an already-aligned sheet on a fixed pixel grid, scores how "filled"
a circular neighbourhood around each grid point looks, and maps every
qualifying point onto a fixed 12 row x 20 column logical layout
(5 questions per row, 4 options per question).

The layout is assumed, not measured: sheets whose question count or
geometry differ from it are read with the same cells regardless.
"""

import logging
import math
from concurrent.futures import ThreadPoolExecutor
from typing import List, Optional, Sequence, Tuple

import numpy as np

from omrgrade.config import DetectionConfig
from omrgrade.errors import InvalidAnswerKey
from omrgrade.models import OPTIONS, MarkedRegion
from omrgrade.pixels import PixelBuffer, sample

logger = logging.getLogger(__name__)

GRID_ROWS = 12
GRID_COLS = 20
QUESTIONS_PER_ROW = 5
RING_STEP = 2
ANGLE_STEP = 45


class BubbleDetector:
    """Find candidate filled bubbles without knowing the printed grid"""

    def __init__(self, config: Optional[DetectionConfig] = None):
        self.config = config or DetectionConfig()
        self._dx, self._dy = self.ring_offsets(self.config.bubble_radius)

    @staticmethod
    def ring_offsets(radius: int) -> Tuple[np.ndarray, np.ndarray]:
        """Offsets of the sample points: rings 0..radius every 2px, 8 angles each"""
        dx, dy = [], []
        for r in range(0, radius + 1, RING_STEP):
            for angle in range(0, 360, ANGLE_STEP):
                dx.append(r * math.cos(angle * math.pi / 180))
                dy.append(r * math.sin(angle * math.pi / 180))
        return np.array(dx, dtype=np.float64), np.array(dy, dtype=np.float64)

    def scan_positions(self, buffer: PixelBuffer) -> Tuple[range, range]:
        """Candidate centre x and y coordinates, independent of image size"""
        radius, step = self.config.bubble_radius, self.config.scan_step
        return (range(radius, buffer.width - radius, step),
                range(radius, buffer.height - radius, step))

    def score_center(self, buffer: PixelBuffer, x: int, y: int) -> Tuple[float, float]:
        """Average darkness and dark-sample ratio around one centre (point by point)"""
        total_darkness = 0.0
        dark_count = 0
        sample_count = 0
        for ox, oy in zip(self._dx.tolist(), self._dy.tolist()):
            sx = math.floor(x + ox)
            sy = math.floor(y + oy)
            if not buffer.contains(sx, sy):
                continue
            value = sample(buffer, sx, sy)
            total_darkness += value
            if value > self.config.dark_sample_threshold:
                dark_count += 1
            sample_count += 1

        if sample_count == 0:
            return 0.0, 0.0
        return total_darkness / sample_count, dark_count / sample_count

    def score_row(self, buffer: PixelBuffer, y: int, xs: Sequence[int]) -> Tuple[np.ndarray, np.ndarray]:
        """
        Vectorised score_center for every x on one scan row.

        Darkness is accumulated left to right over the sample order so the
        sums match the point-by-point version exactly.
        """
        darkness = buffer.darkness_map()
        centers = np.asarray(xs, dtype=np.int64)[:, np.newaxis]

        sx = np.floor(centers + self._dx[np.newaxis, :]).astype(np.int64)
        sy = np.floor(y + self._dy).astype(np.int64)[np.newaxis, :]
        sy = np.broadcast_to(sy, sx.shape)

        inside = (sx >= 0) & (sx < buffer.width) & (sy >= 0) & (sy < buffer.height)
        values = np.where(
            inside,
            darkness[np.clip(sy, 0, buffer.height - 1), np.clip(sx, 0, buffer.width - 1)],
            0.0,
        )

        totals = np.add.accumulate(values, axis=1)[:, -1]
        dark_counts = ((values > self.config.dark_sample_threshold) & inside).sum(axis=1)
        counts = inside.sum(axis=1)

        with np.errstate(divide='ignore', invalid='ignore'):
            avg = np.where(counts > 0, totals / counts, 0.0)
            ratio = np.where(counts > 0, dark_counts / counts, 0.0)
        return avg, ratio

    @staticmethod
    def infer_cell(x: int, y: int, width: int, height: int) -> Tuple[int, str]:
        """Question number and option for a point on the fixed logical grid"""
        row = math.floor(y / (height / GRID_ROWS))
        col = math.floor(x / (width / GRID_COLS))
        options_per_question = len(OPTIONS)
        question = col // options_per_question + 1 + row * QUESTIONS_PER_ROW
        return question, OPTIONS[col % options_per_question]

    def scan_rows(self, buffer: PixelBuffer, ys: Sequence[int], total_questions: int) -> List[MarkedRegion]:
        xs, _ = self.scan_positions(buffer)
        if len(xs) == 0:
            return []

        regions = []
        for y in ys:
            avg, ratio = self.score_row(buffer, y, xs)
            for i in np.flatnonzero((avg > self.config.min_darkness)
                                    & (ratio > self.config.dark_ratio_threshold)):
                x = xs[i]
                question, option = self.infer_cell(x, y, buffer.width, buffer.height)
                if question > total_questions:
                    continue
                regions.append(MarkedRegion(x=x, y=y, darkness=float(avg[i]),
                                            question=question, option=option))
        return regions

    def detect(self, buffer: PixelBuffer, total_questions: int) -> List[MarkedRegion]:
        """All marked regions in scan order (row-major, top-left first)"""
        if total_questions < 1:
            raise InvalidAnswerKey(f"total_questions must be >= 1, got {total_questions}")

        _, ys = self.scan_positions(buffer)
        # Build the shared darkness map once, before any worker reads it
        buffer.darkness_map()
        workers = min(self.config.workers, max(len(ys), 1))

        if workers == 1:
            regions = self.scan_rows(buffer, ys, total_questions)
        else:
            shards = [ys[i::workers] for i in range(workers)]
            with ThreadPoolExecutor(max_workers=workers) as ex:
                parts = list(ex.map(lambda shard: self.scan_rows(buffer, shard, total_questions), shards))
            regions = [region for part in parts for region in part]
            regions.sort(key=lambda r: (r.y, r.x))

        if self.config.verbose:
            logger.info(f"Found {len(regions)} marked regions on {buffer.width}x{buffer.height} sheet")
        else:
            logger.debug(f"Found {len(regions)} marked regions")
        return regions
