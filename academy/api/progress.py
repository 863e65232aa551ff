"""Lesson completion and progress reads.

  POST /v1/progress/lessons/complete  -> record the fact (idempotent)
  GET  /v1/progress/{enrollment_id}   -> recomputed progress
  GET  /v1/progress/{enrollment_id}/eligibility -> exam gate
"""

from __future__ import annotations

from typing import Annotated
from uuid import UUID

from fastapi import APIRouter, Depends
from pydantic import BaseModel

from academy.api.dependencies import require_user
from academy.api.schemas import EligibilityOut, ProgressOut, eligibility_out, progress_out
from academy.models.principal import Principal
from academy.services.lifecycle import lifecycle

router = APIRouter(prefix="/v1/progress", tags=["progress"])


class LessonCompleteIn(BaseModel):
    enrollment_id: UUID
    lesson_id: UUID


@router.post("/lessons/complete", response_model=ProgressOut)
async def complete_lesson(
    body: LessonCompleteIn,
    principal: Annotated[Principal, Depends(require_user)],
) -> ProgressOut:
    """Mark a lesson complete.  Repeating the call changes nothing."""
    progress = await lifecycle.mark_lesson_complete(
        principal, body.enrollment_id, body.lesson_id
    )
    return progress_out(progress)


@router.get("/{enrollment_id}", response_model=ProgressOut)
async def get_progress(
    enrollment_id: UUID,
    principal: Annotated[Principal, Depends(require_user)],
) -> ProgressOut:
    overview = await lifecycle.get_enrollment_overview(principal, enrollment_id)
    return progress_out(overview.progress)


@router.get("/{enrollment_id}/eligibility", response_model=EligibilityOut)
async def get_eligibility(
    enrollment_id: UUID,
    principal: Annotated[Principal, Depends(require_user)],
) -> EligibilityOut:
    return eligibility_out(await lifecycle.get_eligibility(principal, enrollment_id))
