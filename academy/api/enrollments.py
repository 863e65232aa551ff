"""Enrollment overview: status, progress, exam eligibility, certificate."""

from __future__ import annotations

from typing import Annotated
from uuid import UUID

from fastapi import APIRouter, Depends
from pydantic import BaseModel

from academy.api.dependencies import require_user
from academy.api.schemas import (
    CertificateOut,
    CourseOut,
    EligibilityOut,
    ProgressOut,
    certificate_out,
    course_out,
    eligibility_out,
    progress_out,
)
from academy.models.principal import Principal
from academy.services.lifecycle import EnrollmentOverview, lifecycle

router = APIRouter(prefix="/v1/enrollments", tags=["enrollments"])


class EnrollmentOut(BaseModel):
    id: str
    user_id: str
    course_id: str
    status: str
    enrolled_at: int
    completed_at: int | None
    course: CourseOut | None
    progress: ProgressOut
    eligibility: EligibilityOut
    certificate: CertificateOut | None


def _enrollment_out(o: EnrollmentOverview) -> EnrollmentOut:
    e = o.enrollment
    return EnrollmentOut(
        id=str(e.id),
        user_id=e.user_id,
        course_id=str(e.course_id),
        status=e.status,
        enrolled_at=e.enrolled_at,
        completed_at=e.completed_at,
        course=course_out(o.course) if o.course else None,
        progress=progress_out(o.progress),
        eligibility=eligibility_out(o.eligibility),
        certificate=certificate_out(o.certificate) if o.certificate else None,
    )


@router.get("/me", response_model=list[EnrollmentOut])
async def my_enrollments(
    principal: Annotated[Principal, Depends(require_user)],
) -> list[EnrollmentOut]:
    return [_enrollment_out(o) for o in await lifecycle.list_my_enrollments(principal)]


@router.get("/{enrollment_id}", response_model=EnrollmentOut)
async def get_enrollment(
    enrollment_id: UUID,
    principal: Annotated[Principal, Depends(require_user)],
) -> EnrollmentOut:
    overview = await lifecycle.get_enrollment_overview(principal, enrollment_id)
    return _enrollment_out(overview)


@router.post("/{enrollment_id}/certificate", response_model=CertificateOut)
async def issue_certificate(
    enrollment_id: UUID,
    principal: Annotated[Principal, Depends(require_user)],
) -> CertificateOut:
    """Idempotent: returns the existing certificate if one was issued."""
    return certificate_out(await lifecycle.issue_certificate(principal, enrollment_id))
