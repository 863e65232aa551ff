from __future__ import annotations

from typing import Annotated

from fastapi import APIRouter, Depends

from academy.api.dependencies import require_user
from academy.api.schemas import CertificateOut, certificate_out
from academy.models.principal import Principal
from academy.services.lifecycle import lifecycle

router = APIRouter(prefix="/v1/certificates", tags=["certificates"])


@router.get("/me", response_model=list[CertificateOut])
async def my_certificates(
    principal: Annotated[Principal, Depends(require_user)],
) -> list[CertificateOut]:
    return [certificate_out(c) for c in await lifecycle.list_my_certificates(principal)]


@router.get("/verify/{verification_id}", response_model=CertificateOut)
async def verify_certificate(verification_id: str) -> CertificateOut:
    """Public: anyone holding a verification id may check it."""
    return certificate_out(await lifecycle.verify_certificate(verification_id))
