"""
Deterministic grading of resolved answers against an answer key.
"""

import logging
from datetime import datetime
from decimal import Decimal, ROUND_HALF_UP
from typing import List, Mapping, Optional, Tuple

from omrgrade.models import AnswerKey, DetectionStats, GradedResult, Subject

logger = logging.getLogger(__name__)

TWO_PLACES = Decimal('0.01')


def round_half_up(value: float, places: Decimal = TWO_PLACES) -> float:
    """
    Round on the shortest decimal representation of ``value``, halves away
    from zero: 2.675 -> 2.68, 0.125 -> 0.13, -1.005 -> -1.01.
    """
    return float(Decimal(repr(value)).quantize(places, rounding=ROUND_HALF_UP))


class ScoringEngine:
    """Per-subject marks, totals and detection statistics"""

    def score_subjects(self, key: AnswerKey, answers: Mapping[int, str]) -> List[Tuple[Subject, float]]:
        """Rounded score of every subject, in key order (names may repeat)"""
        scored = []
        for subject in key.subjects:
            per_question = subject.marks_per_question
            earned = 0.0
            for question in subject.questions():
                # No negative marking; blank and wrong both earn nothing
                if question in answers and answers[question] == key.answers.get(question):
                    earned += per_question
            scored.append((subject, round_half_up(earned)))
        return scored

    def detection_stats(self, key: AnswerKey, answers: Mapping[int, str]) -> DetectionStats:
        answered = 0
        correct = 0
        for question in range(1, key.total_questions + 1):
            if question not in answers:
                continue
            answered += 1
            if answers[question] == key.answers.get(question):
                correct += 1

        return DetectionStats(
            total_questions=key.total_questions,
            questions_answered=answered,
            questions_blank=key.total_questions - answered,
            correct_answers=correct,
            wrong_answers=answered - correct,
        )

    def grade(self, key: AnswerKey, answers: Mapping[int, str], student_id: str = '',
              student_name: str = '', timestamp: Optional[datetime] = None) -> GradedResult:
        key.check_gradable()

        scored = self.score_subjects(key, answers)
        scores = {subject.name: score for subject, score in scored}
        total_score = round_half_up(sum(score for _, score in scored))
        max_marks = key.max_marks
        percentage = round_half_up(total_score / max_marks * 100)
        stats = self.detection_stats(key, answers)

        logger.debug(
            f"Graded {student_id or 'sheet'} on {key.id}: {total_score}/{max_marks} ({percentage}%)"
        )

        return GradedResult(
            student_id=student_id.strip(),
            student_name=student_name.strip(),
            exam_id=key.id,
            timestamp=timestamp or datetime.now(),
            answers=dict(answers),
            scores=scores,
            total_score=total_score,
            max_marks=max_marks,
            percentage=percentage,
            detection_stats=stats,
        )
