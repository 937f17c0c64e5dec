"""
OTP endpoints.

POST /auth/otp/request  — send a code unless a valid one is outstanding
POST /auth/otp/resend   — send a fresh code, superseding the old one
POST /auth/otp/verify   — exchange a code for a purpose-scoped credential
GET  /auth/otp/status   — attempts / expiry / lock state of the current code

Request and resend answer identically whether or not an account exists for
concealed purposes (password_reset, login_verification).
"""

from __future__ import annotations

from fastapi import APIRouter, Depends

from dependencies import get_auth_service, get_otp_service
from schemas.dto.requests.otp import (
    OTPRequestRequest,
    OTPResendRequest,
    OTPStatusQuery,
    OTPVerifyRequest,
)
from schemas.dto.responses.common import ErrorResponse
from schemas.dto.responses.otp import (
    CodeSentResponse,
    CodeStatusResponse,
    CredentialResponse,
)
from services.auth_service import AuthService
from services.otp_service import OTPService

router = APIRouter(
    prefix="/auth/otp",
    tags=["otp"],
    responses={
        400: {"model": ErrorResponse},
        404: {"model": ErrorResponse},
        429: {"model": ErrorResponse},
        503: {"model": ErrorResponse},
    },
)


@router.post("/request", response_model=CodeSentResponse)
async def request_code(
    body: OTPRequestRequest,
    otp_service: OTPService = Depends(get_otp_service),
) -> CodeSentResponse:
    issued = await otp_service.request_code(body.email, body.purpose)
    return CodeSentResponse(expires_at=issued.expires_at, expires_in=issued.expires_in)


@router.post("/resend", response_model=CodeSentResponse)
async def resend_code(
    body: OTPResendRequest,
    otp_service: OTPService = Depends(get_otp_service),
) -> CodeSentResponse:
    issued = await otp_service.resend_code(body.email, body.purpose)
    return CodeSentResponse(expires_at=issued.expires_at, expires_in=issued.expires_in)


@router.post("/verify", response_model=CredentialResponse)
async def verify_code(
    body: OTPVerifyRequest,
    otp_service: OTPService = Depends(get_otp_service),
    auth_service: AuthService = Depends(get_auth_service),
) -> CredentialResponse:
    credential = await otp_service.verify_code(body.email, body.code, body.purpose)
    await auth_service.apply_verification(credential)
    return CredentialResponse.from_credential(credential)


@router.get("/status", response_model=CodeStatusResponse)
async def code_status(
    query: OTPStatusQuery = Depends(),
    otp_service: OTPService = Depends(get_otp_service),
) -> CodeStatusResponse:
    status = await otp_service.get_status(query.email, query.purpose)
    return CodeStatusResponse(
        purpose=status.purpose,
        attempts=status.attempts,
        attempts_left=status.attempts_left,
        expires_at=status.expires_at,
        expires_in=status.expires_in,
        locked=status.locked,
        retry_after=status.retry_after,
    )
