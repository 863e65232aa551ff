"""Exam outcome aggregation for the admin dashboard.

Works on graded attempts only.  Per-question results come from the
frozen question set each attempt was served, so later edits to the
question bank never rewrite history.
"""

from __future__ import annotations

from collections import Counter, defaultdict
from collections.abc import Mapping, Sequence
from uuid import UUID

from academy.models.enrollment import Enrollment
from academy.models.exam import ExamAnswer, ExamAttempt
from academy.models.exam_stats import CourseExamStats, ExamStats, MissedQuestion
from academy.services.exam_engine import grade

MOST_MISSED_LIMIT = 10


def _percent(part: int, whole: int) -> float:
    return round(100 * part / whole, 1) if whole else 0.0


def _mean(values: Sequence[int]) -> float:
    return round(sum(values) / len(values), 1) if values else 0.0


def summarize(
    graded: Sequence[tuple[Enrollment, ExamAttempt]],
    answers: Mapping[UUID, Sequence[ExamAnswer]],
    *,
    course_titles: Mapping[UUID, str],
    window_start: int,
    window_end: int,
    course_id: UUID | None = None,
    pass_threshold: int,
) -> ExamStats:
    by_course: dict[UUID, list[tuple[Enrollment, ExamAttempt]]] = defaultdict(list)
    shown: Counter[UUID] = Counter()
    missed: Counter[UUID] = Counter()
    texts: dict[UUID, str] = {}

    for enrollment, attempt in graded:
        by_course[enrollment.course_id].append((enrollment, attempt))
        _, _, _, feedback = grade(
            attempt.question_set,
            answers.get(attempt.id, ()),
            pass_threshold=pass_threshold,
        )
        for f in feedback:
            shown[f.question_id] += 1
            missed[f.question_id] += not f.is_correct
            texts.setdefault(f.question_id, f.question_text)

    courses = []
    for cid, rows in by_course.items():
        scores = [a.score or 0 for _, a in rows]
        users = {e.user_id for e, _ in rows}
        courses.append(
            CourseExamStats(
                course_id=cid,
                course_title=course_titles.get(cid, ""),
                total_attempts=len(rows),
                pass_rate=_percent(sum(bool(a.passed) for _, a in rows), len(rows)),
                average_score=_mean(scores),
                average_attempts_per_user=round(len(rows) / len(users), 2),
            )
        )
    courses.sort(key=lambda c: (c.course_title, str(c.course_id)))

    ranked = sorted(
        (
            MissedQuestion(
                question_id=qid,
                question_text=texts[qid],
                times_shown=count,
                failure_rate=_percent(missed[qid], count),
            )
            for qid, count in shown.items()
        ),
        key=lambda q: (-q.failure_rate, -q.times_shown, str(q.question_id)),
    )

    return ExamStats(
        window_start=window_start,
        window_end=window_end,
        course_id=course_id,
        total_attempts=len(graded),
        pass_rate=_percent(sum(bool(a.passed) for _, a in graded), len(graded)),
        average_score=_mean([a.score or 0 for _, a in graded]),
        courses=tuple(courses),
        most_missed=tuple(ranked[:MOST_MISSED_LIMIT]),
    )
