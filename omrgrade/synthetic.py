"""
Render synthetic answer sheets laid out on the detector's logical grid.
"""

from typing import Mapping

import cv2
import numpy as np

from omrgrade.detector import GRID_COLS, GRID_ROWS, QUESTIONS_PER_ROW
from omrgrade.models import OPTIONS

DEFAULT_WIDTH = 1000
# 12 rows of 110px keep every bubble centre on the default 10px scan grid
DEFAULT_HEIGHT = 1320
BUBBLE_RADIUS = 20


def bubble_center(question: int, option: str, width: int, height: int):
    """Centre of the logical grid cell for (question, option)"""
    row, slot = divmod(question - 1, QUESTIONS_PER_ROW)
    col = slot * len(OPTIONS) + OPTIONS.index(option)
    cell_w = width / GRID_COLS
    cell_h = height / GRID_ROWS
    return int(round((col + 0.5) * cell_w)), int(round((row + 0.5) * cell_h))


def render_sheet(answers: Mapping[int, str], total_questions: int = 60,
                 width: int = DEFAULT_WIDTH, height: int = DEFAULT_HEIGHT,
                 shade: int = 0, radius: int = BUBBLE_RADIUS, outlines: bool = True) -> np.ndarray:
    """
    White RGB sheet with an outlined bubble for every option (unless
    ``outlines`` is False) and a filled bubble (grey level ``shade``) for
    each answered question.
    """
    max_questions = GRID_ROWS * QUESTIONS_PER_ROW
    if total_questions > max_questions:
        raise ValueError(f"Sheet layout holds at most {max_questions} questions")

    img = np.full((height, width, 3), 255, dtype=np.uint8)

    if outlines:
        for question in range(1, total_questions + 1):
            for option in OPTIONS:
                center = bubble_center(question, option, width, height)
                cv2.circle(img, center, radius, (0, 0, 0), 2)

    for question, option in answers.items():
        if not 1 <= question <= total_questions:
            raise ValueError(f"Question {question} is not on this sheet")
        center = bubble_center(question, option, width, height)
        cv2.circle(img, center, radius, (shade, shade, shade), -1)

    return img
