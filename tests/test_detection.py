"""
Tests for pixel sampling, grid-scan bubble detection and answer resolution
"""

import sys
from pathlib import Path

import cv2
import numpy as np
import pytest

# Add parent directory to path
sys.path.append(str(Path(__file__).parent.parent))

from omrgrade.config import DetectionConfig
from omrgrade.detector import BubbleDetector
from omrgrade.errors import InvalidAnswerKey, InvalidPixelBuffer
from omrgrade.models import Diagnostic, MarkedRegion
from omrgrade.pipeline import detect_answers
from omrgrade.pixels import PixelBuffer, darkness, load_image, sample
from omrgrade.resolver import AnswerResolver
from omrgrade.synthetic import bubble_center, render_sheet


def white_image(width: int = 1000, height: int = 1320) -> np.ndarray:
    return np.full((height, width, 3), 255, dtype=np.uint8)


class TestPixelSampler:
    """Darkness is 255 minus the mean of the RGB channels"""

    def test_darkness_extremes(self):
        assert darkness(255, 255, 255) == 0
        assert darkness(0, 0, 0) == 255
        assert darkness(30, 60, 90) == 195

    def test_sample_reads_rgb(self):
        img = white_image(20, 10)
        img[3, 7] = (0, 30, 60)
        buffer = PixelBuffer(img)

        assert buffer.rgb(7, 3) == (0, 30, 60)
        assert sample(buffer, 7, 3) == 225
        assert sample(buffer, 0, 0) == 0

    def test_darkness_map_matches_sample(self):
        rng = np.random.default_rng(7)
        img = rng.integers(0, 256, size=(12, 17, 3), dtype=np.uint8)
        buffer = PixelBuffer(img)
        dark = buffer.darkness_map()

        for y in range(buffer.height):
            for x in range(buffer.width):
                assert dark[y, x] == sample(buffer, x, y)

    def test_out_of_bounds_rejected(self):
        buffer = PixelBuffer(white_image(20, 10))
        with pytest.raises(IndexError):
            sample(buffer, 20, 0)
        with pytest.raises(IndexError):
            sample(buffer, 0, -1)

    def test_alpha_channel_ignored(self):
        img = np.zeros((5, 5, 4), dtype=np.uint8)
        img[..., 3] = 255
        buffer = PixelBuffer(img)
        assert sample(buffer, 2, 2) == 255

    def test_grayscale_expanded(self):
        img = np.full((6, 8), 155, dtype=np.uint8)
        buffer = PixelBuffer.from_array(img)
        assert (buffer.width, buffer.height) == (8, 6)
        assert sample(buffer, 1, 1) == 100

    @pytest.mark.parametrize("shape", [(0, 10, 3), (10, 0, 3), (0, 0)])
    def test_zero_size_rejected(self, shape):
        with pytest.raises(InvalidPixelBuffer):
            PixelBuffer(np.zeros(shape, dtype=np.uint8))

    @pytest.mark.parametrize("data", [
        np.full((10, 10, 3), 0.5, dtype=np.float32),
        np.full((10, 10, 3), 300, dtype=np.int16),
        np.full((10, 10), 1.0, dtype=np.float64),
    ])
    def test_non_uint8_rejected(self, data):
        with pytest.raises(InvalidPixelBuffer):
            PixelBuffer(data)

    def test_bad_channel_count_rejected(self):
        with pytest.raises(InvalidPixelBuffer):
            PixelBuffer(np.zeros((10, 10, 2), dtype=np.uint8))

    def test_buffer_is_read_only(self):
        img = white_image(10, 10)
        buffer = PixelBuffer(img)
        img[0, 0] = 0
        # The buffer keeps its own copy
        assert sample(buffer, 0, 0) == 0
        with pytest.raises(ValueError):
            buffer.darkness_map()[0, 0] = 1.0

    def test_load_image_roundtrip(self, tmp_path):
        img = white_image(40, 30)
        img[10, 20] = (255, 0, 0)
        path = tmp_path / "sheet.png"
        cv2.imwrite(str(path), cv2.cvtColor(img, cv2.COLOR_RGB2BGR))

        buffer = load_image(path)
        assert (buffer.width, buffer.height) == (40, 30)
        assert buffer.rgb(20, 10) == (255, 0, 0)

    def test_load_image_unreadable(self, tmp_path):
        path = tmp_path / "not_an_image.png"
        path.write_text("hello")
        with pytest.raises(InvalidPixelBuffer):
            load_image(path)


class TestBubbleDetector:
    """Grid scan over synthetic sheets"""

    @pytest.fixture
    def detector(self) -> BubbleDetector:
        return BubbleDetector()

    def test_ring_offsets(self, detector):
        dx, dy = detector.ring_offsets(15)
        # Rings 0, 2, ..., 14 at 8 angles each
        assert len(dx) == len(dy) == 64
        assert np.all(dx[:8] == 0) and np.all(dy[:8] == 0)
        assert dx[8] == 2 and dy[8] == 0

    def test_scan_positions_fixed_step(self, detector):
        buffer = PixelBuffer(white_image(100, 60))
        xs, ys = detector.scan_positions(buffer)
        assert list(xs) == [15, 25, 35, 45, 55, 65, 75]
        assert list(ys) == [15, 25, 35]

    def test_infer_cell(self, detector):
        # 1000x1320 sheet: cells are 50px wide and 110px tall
        assert detector.infer_cell(25, 55, 1000, 1320) == (1, 'A')
        assert detector.infer_cell(75, 55, 1000, 1320) == (1, 'B')
        assert detector.infer_cell(225, 55, 1000, 1320) == (2, 'A')
        assert detector.infer_cell(375, 165, 1000, 1320) == (7, 'D')
        assert detector.infer_cell(975, 1265, 1000, 1320) == (60, 'D')

    def test_infer_cell_ignores_question_count(self, detector):
        # The layout is fixed at 5 questions per row whatever the sheet holds
        assert detector.infer_cell(25, 200, 1000, 1320) == (6, 'A')
        assert detector.infer_cell(10, 200, 500, 660) == (16, 'A')

    def test_blank_sheet_has_no_regions(self, detector):
        buffer = PixelBuffer(render_sheet({}))
        assert detector.detect(buffer, 60) == []

    def test_white_image_has_no_regions(self, detector):
        assert detector.detect(PixelBuffer(white_image()), 60) == []

    def test_filled_bubble_regions(self, detector):
        buffer = PixelBuffer(render_sheet({7: 'D'}))
        regions = detector.detect(buffer, 60)

        assert len(regions) > 0
        assert all(r.question == 7 and r.option == 'D' for r in regions)
        center = bubble_center(7, 'D', 1000, 1320)
        darkest = max(regions, key=lambda r: r.darkness)
        assert darkest.darkness == 255
        assert (darkest.x, darkest.y) == center

    def test_regions_in_scan_order(self, detector):
        buffer = PixelBuffer(render_sheet({1: 'A', 2: 'C', 9: 'B'}))
        regions = detector.detect(buffer, 60)
        keys = [(r.y, r.x) for r in regions]
        assert keys == sorted(keys)

    def test_dark_line_is_not_a_bubble(self, detector):
        img = white_image()
        img[605, :] = 0
        buffer = PixelBuffer(img)

        avg, ratio = detector.score_center(buffer, 505, 605)
        # Dark enough on average, but too few dark samples
        assert avg == pytest.approx(22 * 255 / 64)
        assert avg > detector.config.min_darkness
        assert ratio < detector.config.dark_ratio_threshold
        assert detector.detect(buffer, 60) == []

    def test_questions_beyond_total_dropped(self, detector):
        buffer = PixelBuffer(render_sheet({1: 'A', 5: 'B'}))
        regions = detector.detect(buffer, 3)
        assert {r.question for r in regions} == {1}

    def test_score_row_matches_score_center(self, detector):
        img = render_sheet({1: 'A', 2: 'B'}, shade=120)
        cv2.circle(img, bubble_center(1, 'C', 1000, 1320), 20, (0, 0, 0), -1)
        buffer = PixelBuffer(img)
        xs, _ = detector.scan_positions(buffer)

        for y in (35, 45, 55, 65, 75):
            avg, ratio = detector.score_row(buffer, y, xs)
            for i, x in enumerate(xs):
                assert (avg[i], ratio[i]) == detector.score_center(buffer, x, y)

    def test_small_image_has_no_scan_positions(self, detector):
        buffer = PixelBuffer(white_image(25, 25))
        assert detector.detect(buffer, 10) == []

    def test_total_questions_must_be_positive(self, detector):
        with pytest.raises(InvalidAnswerKey):
            detector.detect(PixelBuffer(white_image(100, 100)), 0)

    def test_parallel_scan_matches_sequential(self):
        buffer = PixelBuffer(render_sheet({1: 'A', 3: 'D', 14: 'B', 27: 'C', 58: 'A'}))
        sequential = BubbleDetector(DetectionConfig()).detect(buffer, 60)
        parallel = BubbleDetector(DetectionConfig(workers=4)).detect(buffer, 60)
        assert parallel == sequential

    def test_custom_scan_step(self):
        config = DetectionConfig(scan_step=5)
        buffer = PixelBuffer(render_sheet({2: 'B'}, outlines=False))
        regions = BubbleDetector(config).detect(buffer, 60)

        assert regions and all((r.question, r.option) == (2, 'B') for r in regions)
        answers, _ = detect_answers(buffer, 60, config)
        assert answers == {2: 'B'}

    def test_fine_step_picks_up_printed_outlines(self):
        # A 5px grid lands on the 2px outlines of empty bubbles too
        regions = BubbleDetector(DetectionConfig(scan_step=5)).detect(PixelBuffer(render_sheet({2: 'B'})), 60)
        assert len({r.question for r in regions}) > 1

        darkest = AnswerResolver().darkest_per_question(regions)
        assert darkest[2].option == 'B'
        assert darkest[2].darkness == 255


class TestAnswerResolver:
    """Darkest region per question, then the strict threshold"""

    @pytest.fixture
    def resolver(self) -> AnswerResolver:
        return AnswerResolver()

    def region(self, question, option, darkness, x=0, y=0) -> MarkedRegion:
        return MarkedRegion(x=x, y=y, darkness=darkness, question=question, option=option)

    def test_darkest_wins(self, resolver):
        regions = [self.region(1, 'A', 90, x=15), self.region(1, 'C', 150, x=115)]
        assert resolver.resolve(regions) == {1: 'C'}

    def test_tie_keeps_first_in_scan_order(self, resolver):
        regions = [self.region(4, 'B', 120, x=15), self.region(4, 'D', 120, x=25)]
        assert resolver.resolve(regions) == {4: 'B'}

    def test_strict_threshold(self, resolver):
        regions = [self.region(1, 'A', 95), self.region(2, 'B', 97)]
        assert resolver.resolve(regions) == {2: 'B'}

    def test_faint_winner_not_replaced_by_weaker(self, resolver):
        # Only the darkest region is considered, even if it is rejected
        regions = [self.region(3, 'A', 90), self.region(3, 'B', 85)]
        assert resolver.resolve(regions) == {}

    def test_single_winner_per_question(self, resolver):
        regions = [self.region(q, opt, 100 + i)
                   for i, (q, opt) in enumerate([(1, 'A'), (1, 'B'), (2, 'C'), (2, 'D'), (2, 'A')])]
        answers = resolver.resolve(regions)
        assert answers == {1: 'B', 2: 'A'}

    def test_low_confidence_warning(self, resolver):
        answers = {1: 'A'}
        assert resolver.diagnose(answers, 60) == [Diagnostic.LOW_CONFIDENCE_DETECTION]
        assert resolver.diagnose({q: 'A' for q in range(1, 7)}, 60) == []

    def test_custom_thresholds(self):
        resolver = AnswerResolver(DetectionConfig(min_darkness=50, strict_multiplier=1.0))
        assert resolver.resolve([self.region(1, 'D', 60)]) == {1: 'D'}


class TestDetectAnswers:
    """Pixels to resolved answers"""

    def test_reads_rendered_sheet(self):
        expected = {1: 'A', 2: 'B', 3: 'C', 7: 'D', 12: 'A', 33: 'C', 60: 'D'}
        answers, warnings = detect_answers(PixelBuffer(render_sheet(expected)), 60)
        assert answers == expected
        assert warnings == []

    def test_darker_option_wins(self):
        img = render_sheet({1: 'C'})
        # Grey mark (darkness 105) on option A of the same question
        cv2.circle(img, bubble_center(1, 'A', 1000, 1320), 20, (150, 150, 150), -1)
        answers, _ = detect_answers(PixelBuffer(img), 60)
        assert answers[1] == 'C'

    def test_grey_mark_alone_is_read(self):
        answers, _ = detect_answers(PixelBuffer(render_sheet({1: 'A'}, shade=150)), 60)
        assert answers == {1: 'A'}

    def test_light_mark_is_blank(self):
        # Darkness 90 per pixel never counts as a dark sample
        answers, _ = detect_answers(PixelBuffer(render_sheet({1: 'A'}, shade=165)), 60)
        assert answers == {}

    def test_blank_sheet_warns(self):
        answers, warnings = detect_answers(PixelBuffer(render_sheet({})), 60)
        assert answers == {}
        assert warnings == [Diagnostic.LOW_CONFIDENCE_DETECTION]
