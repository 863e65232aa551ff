from __future__ import annotations

from dataclasses import dataclass
from uuid import UUID


@dataclass(frozen=True, slots=True)
class CourseExamStats:
    course_id: UUID
    course_title: str
    total_attempts: int
    pass_rate: float  # percent of graded attempts that passed
    average_score: float
    average_attempts_per_user: float


@dataclass(frozen=True, slots=True)
class MissedQuestion:
    """How often a question was answered wrong across graded attempts."""

    question_id: UUID
    question_text: str
    times_shown: int
    failure_rate: float  # percent; unanswered counts as wrong


@dataclass(frozen=True, slots=True)
class ExamStats:
    """Exam outcomes over graded attempts submitted in [window_start, window_end]."""

    window_start: int
    window_end: int
    course_id: UUID | None
    total_attempts: int
    pass_rate: float
    average_score: float
    courses: tuple[CourseExamStats, ...] = ()
    most_missed: tuple[MissedQuestion, ...] = ()
