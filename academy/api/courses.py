"""Course catalog endpoints.

Enrollment is never created here: buying a course goes through
POST /v1/payments/course-checkout and the payment webhook.
"""

from __future__ import annotations

from typing import Annotated
from uuid import UUID

from fastapi import APIRouter, Depends, status

from academy.api.dependencies import require_role, require_user
from academy.api.schemas import CourseOut, LessonOut, course_out, lesson_out
from academy.models.principal import Principal
from academy.services.catalog import CourseDefinition
from academy.services.lifecycle import lifecycle

router = APIRouter(prefix="/v1/courses", tags=["courses"])


@router.get("", response_model=list[CourseOut])
async def list_courses(
    _principal: Annotated[Principal, Depends(require_user)],
) -> list[CourseOut]:
    return [course_out(c) for c in await lifecycle.list_courses()]


@router.get("/{course_id}/lessons", response_model=list[LessonOut])
async def list_lessons(
    course_id: UUID,
    _principal: Annotated[Principal, Depends(require_user)],
) -> list[LessonOut]:
    """Lessons in module order."""
    return [lesson_out(le) for le in await lifecycle.list_lessons(course_id)]


@router.post("", response_model=CourseOut, status_code=status.HTTP_201_CREATED)
async def load_course(
    body: CourseDefinition,
    _admin: Annotated[Principal, Depends(require_role("admin"))],
) -> CourseOut:
    course = await lifecycle.load_course(body)
    return course_out(course)
