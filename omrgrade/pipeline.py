"""
Sheet evaluation: pixels -> marked regions -> answers -> graded result.
"""

import logging
from datetime import datetime
from typing import Dict, List, Optional, Tuple

from omrgrade.config import DetectionConfig
from omrgrade.detector import BubbleDetector
from omrgrade.models import AnswerKey, Diagnostic, SheetEvaluation
from omrgrade.pixels import PixelBuffer
from omrgrade.resolver import AnswerResolver
from omrgrade.scoring import ScoringEngine

logger = logging.getLogger(__name__)


def detect_answers(buffer: PixelBuffer, total_questions: int,
                   config: Optional[DetectionConfig] = None) -> Tuple[Dict[int, str], List[Diagnostic]]:
    """Resolved {question: option} map and any diagnostics"""
    config = config or DetectionConfig()
    regions = BubbleDetector(config).detect(buffer, total_questions)
    return AnswerResolver(config).resolve_with_diagnostics(regions, total_questions)


def evaluate_sheet(key: AnswerKey, buffer: PixelBuffer, student_id: str = '',
                   student_name: str = '', config: Optional[DetectionConfig] = None,
                   timestamp: Optional[datetime] = None) -> SheetEvaluation:
    """Grade one aligned sheet image against an answer key"""
    # Reject ungradable keys before scanning anything
    key.check_gradable()
    config = config or DetectionConfig()

    regions = BubbleDetector(config).detect(buffer, key.total_questions)
    answers, warnings = AnswerResolver(config).resolve_with_diagnostics(regions, key.total_questions)
    result = ScoringEngine().grade(key, answers, student_id=student_id,
                                   student_name=student_name, timestamp=timestamp)

    logger.info(
        f"{result.student_id or 'Sheet'}: {result.detection_stats.questions_answered}/"
        f"{key.total_questions} answered, score {result.total_score}/{result.max_marks}"
    )
    return SheetEvaluation(result=result, warnings=tuple(warnings), regions_found=len(regions))
