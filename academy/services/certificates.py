"""Certificate Issuer.

issue_if_eligible is insert-or-fetch: the unique index on
certificates.enrollment_id decides which of several concurrent callers
creates the row, and every caller gets that one row back.
"""

from __future__ import annotations

import logging
import re
import secrets
from uuid import UUID

from academy.core.errors import ConflictError, TransientStorageError
from academy.models.certificate import Certificate
from academy.repos.ledger_repo import Ledger
from academy.services.progress import load_enrollment

logger = logging.getLogger(__name__)

# Base-32 without 0/O and 1/I.
_ALPHABET = "23456789ABCDEFGHJKLMNPQRSTUVWXYZ"
_GROUPS = 3
_GROUP_LEN = 4
_MAX_ID_COLLISIONS = 5


def generate_verification_id(prefix: str) -> str:
    """``<PREFIX>-XXXX-XXXX-XXXX`` with 60 random bits."""
    groups = (
        "".join(secrets.choice(_ALPHABET) for _ in range(_GROUP_LEN))
        for _ in range(_GROUPS)
    )
    return "-".join([prefix, *groups])


def verification_id_pattern(prefix: str) -> re.Pattern[str]:
    group = f"[{_ALPHABET}]{{{_GROUP_LEN}}}"
    return re.compile(rf"^{re.escape(prefix)}(-{group}){{{_GROUPS}}}$")


async def issue_if_eligible(
    ledger: Ledger,
    enrollment_id: UUID,
    *,
    now: int,
    prefix: str,
) -> tuple[Certificate, bool]:
    """Return (certificate, created).

    ``created`` is False when the enrollment already had a certificate,
    e.g. a voucher-funded retry passing after an earlier pass.
    """
    existing = await ledger.get_certificate_for_enrollment(enrollment_id)
    if existing is not None:
        return existing, False

    attempts = await ledger.list_attempts(enrollment_id)
    if not any(a.passed for a in attempts):
        raise ConflictError("no passing exam attempt for this enrollment")

    enrollment = await load_enrollment(ledger, enrollment_id)
    course = await ledger.get_course(enrollment.course_id)
    student = await ledger.get_user(enrollment.user_id)

    for _ in range(_MAX_ID_COLLISIONS):
        certificate = Certificate.new(
            enrollment_id=enrollment_id,
            user_id=enrollment.user_id,
            course_id=enrollment.course_id,
            issued_at=now,
            verification_id=generate_verification_id(prefix),
            student_name=student.display_name if student else enrollment.user_id,
            course_name=course.title if course else "",
        )
        if await ledger.insert_certificate(certificate):
            logger.info(
                "Certificate %s issued",
                certificate.verification_id,
                extra={"enrollment_id": str(enrollment_id)},
            )
            return certificate, True

        # Either another caller won the enrollment, or the id collided.
        existing = await ledger.get_certificate_for_enrollment(enrollment_id)
        if existing is not None:
            return existing, False
        logger.warning("Verification id collision, regenerating")

    raise TransientStorageError("could not allocate a unique verification id")
