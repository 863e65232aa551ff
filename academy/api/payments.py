"""Checkout initiation.

These endpoints only start a payment.  Enrollments and vouchers are
created later, when the gateway's webhook arrives (see webhooks.py).
"""

from __future__ import annotations

from typing import Annotated
from uuid import UUID

from fastapi import APIRouter, Depends
from pydantic import BaseModel

from academy.api.dependencies import require_user
from academy.models.principal import Principal
from academy.services.lifecycle import lifecycle

router = APIRouter(prefix="/v1/payments", tags=["payments"])


class CourseCheckoutIn(BaseModel):
    course_id: UUID


class VoucherCheckoutIn(BaseModel):
    enrollment_id: UUID


class CheckoutOut(BaseModel):
    session_id: str
    url: str


@router.post("/course-checkout", response_model=CheckoutOut)
async def course_checkout(
    body: CourseCheckoutIn,
    principal: Annotated[Principal, Depends(require_user)],
) -> CheckoutOut:
    session = await lifecycle.purchase_course(principal, body.course_id)
    return CheckoutOut(session_id=session.id, url=session.url)


@router.post("/voucher-checkout", response_model=CheckoutOut)
async def voucher_checkout(
    body: VoucherCheckoutIn,
    principal: Annotated[Principal, Depends(require_user)],
) -> CheckoutOut:
    """Buy one extra exam attempt for an enrollment."""
    session = await lifecycle.purchase_voucher(principal, body.enrollment_id)
    return CheckoutOut(session_id=session.id, url=session.url)
