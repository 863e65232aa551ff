from __future__ import annotations

from dataclasses import dataclass
from uuid import UUID, uuid4


@dataclass(frozen=True, slots=True)
class Certificate:
    """Issued certificate.  Names are snapshots taken at issuance."""

    id: UUID
    enrollment_id: UUID
    user_id: str
    course_id: UUID
    issued_at: int
    verification_id: str
    student_name: str
    course_name: str

    @staticmethod
    def new(
        *,
        enrollment_id: UUID,
        user_id: str,
        course_id: UUID,
        issued_at: int,
        verification_id: str,
        student_name: str,
        course_name: str,
    ) -> Certificate:
        return Certificate(
            id=uuid4(),
            enrollment_id=enrollment_id,
            user_id=user_id,
            course_id=course_id,
            issued_at=issued_at,
            verification_id=verification_id,
            student_name=student_name,
            course_name=course_name,
        )
