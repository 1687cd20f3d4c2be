"""
Data model shared by the detector, resolver and scoring engine.
"""

import json
from dataclasses import dataclass
from datetime import datetime
from enum import Enum
from pathlib import Path
from types import MappingProxyType
from typing import Any, Dict, Mapping, Tuple

from omrgrade.errors import InvalidAnswerKey

OPTIONS = ('A', 'B', 'C', 'D')


class Diagnostic(Enum):
    """Non-fatal conditions reported alongside a graded result"""
    LOW_CONFIDENCE_DETECTION = 'low_confidence_detection'


@dataclass(frozen=True)
class Subject:
    """A named, inclusive range of questions sharing a marks budget"""
    name: str
    question_range: Tuple[int, int]
    max_marks: float

    def __post_init__(self):
        start, end = self.question_range
        if start < 1 or start > end:
            raise InvalidAnswerKey(
                f"Subject {self.name!r} has invalid question range [{start}, {end}]"
            )
        if self.max_marks < 0:
            raise InvalidAnswerKey(f"Subject {self.name!r} has negative max marks {self.max_marks}")
        object.__setattr__(self, 'question_range', (int(start), int(end)))

    @property
    def num_questions(self) -> int:
        start, end = self.question_range
        return end - start + 1

    @property
    def marks_per_question(self) -> float:
        return self.max_marks / self.num_questions

    def questions(self) -> range:
        start, end = self.question_range
        return range(start, end + 1)


@dataclass(frozen=True)
class AnswerKey:
    """Exam structure and correct options, immutable once built"""
    id: str
    total_questions: int
    subjects: Tuple[Subject, ...]
    answers: Mapping[int, str]
    exam_name: str = ''

    def __post_init__(self):
        if self.total_questions < 1:
            raise InvalidAnswerKey(f"total_questions must be >= 1, got {self.total_questions}")

        answers = {}
        for question, option in self.answers.items():
            question = int(question)
            if not 1 <= question <= self.total_questions:
                raise InvalidAnswerKey(
                    f"Answer for question {question} is outside 1..{self.total_questions}"
                )
            if option not in OPTIONS:
                raise InvalidAnswerKey(f"Question {question} has invalid option {option!r}")
            answers[question] = option

        object.__setattr__(self, 'subjects', tuple(self.subjects))
        object.__setattr__(self, 'answers', MappingProxyType(answers))

    @property
    def max_marks(self) -> float:
        return sum(subject.max_marks for subject in self.subjects)

    def check_gradable(self):
        """Raise InvalidAnswerKey if a percentage cannot be computed"""
        if self.max_marks == 0:
            raise InvalidAnswerKey(
                f"Answer key {self.id!r} has zero max marks; percentage is undefined"
            )

    def with_subject(self, name: str, max_marks: float = 20,
                     num_questions: int = 10) -> "AnswerKey":
        """
        Copy of this key with one more subject appended right after the last
        one (questions [next, next + 9] worth 20 marks unless told otherwise).
        """
        start = self.subjects[-1].question_range[1] + 1 if self.subjects else 1
        subject = Subject(name, (start, start + num_questions - 1), max_marks)
        return AnswerKey(id=self.id, total_questions=self.total_questions,
                         subjects=self.subjects + (subject,), answers=dict(self.answers),
                         exam_name=self.exam_name)

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "AnswerKey":
        """Parse the stored JSON shape (camelCase or snake_case keys)"""
        def get(camel, snake, default=None):
            if camel in data:
                return data[camel]
            return data.get(snake, default)

        try:
            subjects = tuple(
                Subject(
                    name=s['name'],
                    question_range=tuple(s.get('questionRange', s.get('question_range'))),
                    max_marks=float(s.get('maxMarks', s.get('max_marks'))),
                )
                for s in data.get('subjects', [])
            )
            return cls(
                id=str(data['id']),
                total_questions=int(get('totalQuestions', 'total_questions')),
                subjects=subjects,
                answers={int(q): a for q, a in data.get('answers', {}).items()},
                exam_name=get('examName', 'exam_name', ''),
            )
        except InvalidAnswerKey:
            raise
        except (KeyError, TypeError, ValueError) as e:
            raise InvalidAnswerKey(f"Malformed answer key: {e}") from e

    def to_dict(self) -> Dict[str, Any]:
        return {
            'id': self.id,
            'examName': self.exam_name,
            'totalQuestions': self.total_questions,
            'subjects': [
                {'name': s.name, 'questionRange': list(s.question_range), 'maxMarks': s.max_marks}
                for s in self.subjects
            ],
            'answers': {str(q): a for q, a in sorted(self.answers.items())},
        }


def load_answer_key(path: Path) -> AnswerKey:
    """Read an answer key from a JSON file"""
    with open(path, 'r') as f:
        try:
            data = json.load(f)
        except json.JSONDecodeError as e:
            raise InvalidAnswerKey(f"{path} is not valid JSON: {e}") from e
    return AnswerKey.from_dict(data)


def save_answer_key(key: AnswerKey, path: Path):
    with open(path, 'w') as f:
        json.dump(key.to_dict(), f, indent=2)


@dataclass(frozen=True)
class MarkedRegion:
    """A scan position that looks like a filled bubble"""
    x: int
    y: int
    darkness: float
    question: int
    option: str


@dataclass(frozen=True)
class DetectionStats:
    total_questions: int
    questions_answered: int
    questions_blank: int
    correct_answers: int
    wrong_answers: int

    def to_dict(self) -> Dict[str, int]:
        return {
            'totalQuestions': self.total_questions,
            'questionsAnswered': self.questions_answered,
            'questionsBlank': self.questions_blank,
            'correctAnswers': self.correct_answers,
            'wrongAnswers': self.wrong_answers,
        }


@dataclass(frozen=True)
class GradedResult:
    """Graded sheet handed to whatever stores or displays results"""
    student_id: str
    student_name: str
    exam_id: str
    timestamp: datetime
    answers: Mapping[int, str]
    scores: Mapping[str, float]
    total_score: float
    max_marks: float
    percentage: float
    detection_stats: DetectionStats

    def __post_init__(self):
        object.__setattr__(self, 'answers', MappingProxyType(dict(self.answers)))
        object.__setattr__(self, 'scores', MappingProxyType(dict(self.scores)))

    def to_dict(self) -> Dict[str, Any]:
        return {
            'studentId': self.student_id,
            'studentName': self.student_name,
            'examId': self.exam_id,
            'timestamp': self.timestamp.isoformat(),
            'answers': {str(q): a for q, a in sorted(self.answers.items())},
            'scores': dict(self.scores),
            'totalScore': self.total_score,
            'maxMarks': self.max_marks,
            'percentage': self.percentage,
            'detectionStats': self.detection_stats.to_dict(),
        }


@dataclass(frozen=True)
class SheetEvaluation:
    """A graded result plus the diagnostics raised while producing it"""
    result: GradedResult
    warnings: Tuple[Diagnostic, ...] = ()
    regions_found: int = 0

    @property
    def low_confidence(self) -> bool:
        return Diagnostic.LOW_CONFIDENCE_DETECTION in self.warnings
