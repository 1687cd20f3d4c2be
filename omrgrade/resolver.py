"""
Collapse marked regions into at most one answer per question.
"""

import logging
from typing import Dict, Iterable, List, Optional, Tuple

from omrgrade.config import DetectionConfig
from omrgrade.models import Diagnostic, MarkedRegion

logger = logging.getLogger(__name__)


class AnswerResolver:
    """Darkest region wins per question, then a stricter darkness cut"""

    def __init__(self, config: Optional[DetectionConfig] = None):
        self.config = config or DetectionConfig()

    def darkest_per_question(self, regions: Iterable[MarkedRegion]) -> Dict[int, MarkedRegion]:
        """Regions are expected in scan order; the first one keeps a tie"""
        best: Dict[int, MarkedRegion] = {}
        for region in regions:
            current = best.get(region.question)
            if current is None or region.darkness > current.darkness:
                best[region.question] = region
        return best

    def resolve(self, regions: Iterable[MarkedRegion]) -> Dict[int, str]:
        answers = {}
        for question, region in sorted(self.darkest_per_question(regions).items()):
            if region.darkness > self.config.strict_darkness:
                answers[question] = region.option
            else:
                logger.debug(f"Q{question}: darkest mark {region.darkness:.1f} too faint, left blank")
        return answers

    def diagnose(self, answers: Dict[int, str], total_questions: int) -> List[Diagnostic]:
        warnings = []
        if len(answers) < total_questions * self.config.low_detection_warning_fraction:
            logger.warning(
                f"Very few marked bubbles detected ({len(answers)}/{total_questions}); "
                "check image quality and bubble marking"
            )
            warnings.append(Diagnostic.LOW_CONFIDENCE_DETECTION)
        return warnings

    def resolve_with_diagnostics(self, regions: Iterable[MarkedRegion],
                                 total_questions: int) -> Tuple[Dict[int, str], List[Diagnostic]]:
        answers = self.resolve(regions)
        return answers, self.diagnose(answers, total_questions)
