"""
Helpers for storing and presenting graded results.
"""

import csv
import logging
from dataclasses import dataclass
from pathlib import Path
from typing import Dict, Iterable, List, Mapping, Optional, Sequence

from omrgrade.models import AnswerKey, GradedResult

logger = logging.getLogger(__name__)

PASS_PERCENTAGE = 40

CSV_HEADER = ['Student ID', 'Student Name', 'Exam', 'Total Score', 'Max Marks',
              'Percentage', 'Grade', 'Timestamp']

GRADE_BANDS = [
    (90, 'A+'),
    (80, 'A'),
    (70, 'B+'),
    (60, 'B'),
    (50, 'C'),
    (40, 'D'),
]


def format_number(value: float) -> str:
    """Two decimals without trailing zeros, e.g. 8.0 -> 8 and 66.70 -> 66.7"""
    return f"{value:.2f}".rstrip('0').rstrip('.')


def letter_grade(percentage: float) -> str:
    for floor, grade in GRADE_BANDS:
        if percentage >= floor:
            return grade
    return 'F'


@dataclass(frozen=True)
class ResultsSummary:
    count: int
    average_percentage: float
    highest_percentage: float
    pass_rate: float


def summarize(results: Sequence[GradedResult]) -> ResultsSummary:
    """Class-level figures; all zero when there are no results"""
    if not results:
        return ResultsSummary(0, 0.0, 0.0, 0.0)

    percentages = [r.percentage for r in results]
    passed = sum(1 for p in percentages if p >= PASS_PERCENTAGE)
    return ResultsSummary(
        count=len(results),
        average_percentage=sum(percentages) / len(results),
        highest_percentage=max(percentages),
        pass_rate=passed / len(results) * 100,
    )


def review_answers(result: GradedResult, key: AnswerKey) -> Dict[int, str]:
    """
    Outcome of every question: 'correct', 'wrong' or 'blank'.

    Blanks are their own outcome here; whether they display as wrong is
    up to the caller.
    """
    outcomes = {}
    for question in range(1, key.total_questions + 1):
        given = result.answers.get(question)
        if given is None:
            outcomes[question] = 'blank'
        elif given == key.answers.get(question):
            outcomes[question] = 'correct'
        else:
            outcomes[question] = 'wrong'
    return outcomes


def subject_breakdown(result: GradedResult, key: AnswerKey) -> Dict[str, Dict[str, int]]:
    breakdown = {}
    for subject in key.subjects:
        answered = correct = 0
        for question in subject.questions():
            given = result.answers.get(question)
            if given is None:
                continue
            answered += 1
            if given == key.answers.get(question):
                correct += 1
        breakdown[subject.name] = {
            'answered': answered,
            'correct': correct,
            'total': subject.num_questions,
        }
    return breakdown


def csv_row(result: GradedResult, exam_name: str) -> List[str]:
    return [
        result.student_id,
        result.student_name,
        exam_name,
        format_number(result.total_score),
        format_number(result.max_marks),
        f"{format_number(result.percentage)}%",
        letter_grade(result.percentage),
        result.timestamp.isoformat(),
    ]


def write_results_csv(results: Iterable[GradedResult], path: Path,
                      answer_keys: Optional[Mapping[str, AnswerKey]] = None,
                      append: bool = False) -> int:
    """Write results as CSV (header only on a new file); returns rows written"""
    answer_keys = answer_keys or {}
    path = Path(path)
    write_header = not (append and path.exists() and path.stat().st_size > 0)

    rows = 0
    with open(path, 'a' if append else 'w', newline='') as f:
        writer = csv.writer(f)
        if write_header:
            writer.writerow(CSV_HEADER)
        for result in results:
            key = answer_keys.get(result.exam_id)
            exam_name = (key.exam_name if key else '') or 'Unknown'
            writer.writerow(csv_row(result, exam_name))
            rows += 1

    logger.info(f"Wrote {rows} result(s) to {path}")
    return rows
