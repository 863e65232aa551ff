from __future__ import annotations

from typing import Annotated
from uuid import UUID

from fastapi import APIRouter, Depends, status
from pydantic import BaseModel, Field

from academy.api.dependencies import require_user
from academy.api.schemas import AttemptOut, ResultOut, attempt_out, result_out
from academy.models.exam import ExamAnswer
from academy.models.principal import Principal
from academy.services.lifecycle import lifecycle

router = APIRouter(prefix="/v1/exam", tags=["exam"])


class StartExamIn(BaseModel):
    enrollment_id: UUID


class AnswerIn(BaseModel):
    question_id: UUID
    selected_option_id: str = Field(min_length=1, max_length=8)


class SubmitExamIn(BaseModel):
    attempt_id: UUID
    answers: list[AnswerIn] = Field(default_factory=list)


class AttemptStateOut(BaseModel):
    """Open attempts carry questions; graded attempts carry the result."""

    attempt: AttemptOut
    result: ResultOut | None = None


@router.post("/start", response_model=AttemptOut, status_code=status.HTTP_201_CREATED)
async def start_exam(
    body: StartExamIn,
    principal: Annotated[Principal, Depends(require_user)],
) -> AttemptOut:
    attempt = await lifecycle.start_exam(principal, body.enrollment_id)
    return attempt_out(attempt)


@router.post("/submit", response_model=ResultOut)
async def submit_exam(
    body: SubmitExamIn,
    principal: Annotated[Principal, Depends(require_user)],
) -> ResultOut:
    """Grade an attempt.  A repeat submit returns the first result unchanged."""
    answers = [
        ExamAnswer(question_id=a.question_id, selected_option_id=a.selected_option_id)
        for a in body.answers
    ]
    result = await lifecycle.submit_exam(principal, body.attempt_id, answers)
    return result_out(result)


@router.get("/attempts/{attempt_id}", response_model=AttemptStateOut)
async def get_attempt(
    attempt_id: UUID,
    principal: Annotated[Principal, Depends(require_user)],
) -> AttemptStateOut:
    view = await lifecycle.get_attempt(principal, attempt_id)
    return AttemptStateOut(
        attempt=attempt_out(view.attempt),
        result=result_out(view.result) if view.result is not None else None,
    )
