from __future__ import annotations

import logging
from typing import Annotated
from uuid import UUID

from fastapi import APIRouter, Depends, Query
from pydantic import BaseModel

from academy.api.dependencies import require_role
from academy.models.exam_stats import ExamStats
from academy.models.principal import Principal
from academy.services.lifecycle import lifecycle

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/v1/admin", tags=["admin"])


class CourseExamStatsOut(BaseModel):
    course_id: str
    course_title: str
    total_attempts: int
    pass_rate: float
    average_score: float
    average_attempts_per_user: float


class MissedQuestionOut(BaseModel):
    question_id: str
    question_text: str
    times_shown: int
    failure_rate: float


class ExamStatsOut(BaseModel):
    window_start: int
    window_end: int
    course_id: str | None
    total_attempts: int
    pass_rate: float
    average_score: float
    courses: list[CourseExamStatsOut]
    most_missed: list[MissedQuestionOut]


def _stats_out(s: ExamStats) -> ExamStatsOut:
    return ExamStatsOut(
        window_start=s.window_start,
        window_end=s.window_end,
        course_id=str(s.course_id) if s.course_id else None,
        total_attempts=s.total_attempts,
        pass_rate=s.pass_rate,
        average_score=s.average_score,
        courses=[
            CourseExamStatsOut(
                course_id=str(c.course_id),
                course_title=c.course_title,
                total_attempts=c.total_attempts,
                pass_rate=c.pass_rate,
                average_score=c.average_score,
                average_attempts_per_user=c.average_attempts_per_user,
            )
            for c in s.courses
        ],
        most_missed=[
            MissedQuestionOut(
                question_id=str(q.question_id),
                question_text=q.question_text,
                times_shown=q.times_shown,
                failure_rate=q.failure_rate,
            )
            for q in s.most_missed
        ],
    )


@router.get("/exam-stats", response_model=ExamStatsOut)
async def exam_stats(
    principal: Annotated[Principal, Depends(require_role("admin"))],
    course_id: UUID | None = None,
    since: Annotated[int | None, Query(ge=0)] = None,
    until: Annotated[int | None, Query(ge=0)] = None,
) -> ExamStatsOut:
    """Pass rates, scores and most-missed questions over graded attempts."""
    logger.info(
        "Admin exam stats requested by user=%s course=%s", principal.user_id, course_id
    )
    stats = await lifecycle.exam_stats(course_id=course_id, since=since, until=until)
    return _stats_out(stats)
