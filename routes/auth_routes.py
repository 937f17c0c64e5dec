"""
Account endpoints.

POST /auth/register               — pending account + registration code (201)
POST /auth/complete-registration  — email-verification credential → account
POST /auth/login                  — password login → session credential
POST /auth/reset-password         — password-reset credential → new password
GET  /auth/me                     — profile for a session credential
"""

from __future__ import annotations

from fastapi import APIRouter, Depends

from dependencies import get_auth_service, get_bearer_token
from schemas.dto.requests.auth import (
    CompleteRegistrationRequest,
    LoginRequest,
    RegisterRequest,
    ResetPasswordRequest,
)
from schemas.dto.responses.auth import (
    RegisterResponse,
    SessionResponse,
    UserProfileResponse,
)
from schemas.dto.responses.common import ErrorResponse, MessageResponse
from services.auth_service import AuthService

router = APIRouter(
    prefix="/auth",
    tags=["auth"],
    responses={
        400: {"model": ErrorResponse},
        401: {"model": ErrorResponse},
        409: {"model": ErrorResponse},
    },
)


@router.post("/register", response_model=RegisterResponse, status_code=201)
async def register(
    body: RegisterRequest,
    auth_service: AuthService = Depends(get_auth_service),
) -> RegisterResponse:
    issued = await auth_service.register(
        body.email, body.password, body.first_name, body.last_name
    )
    return RegisterResponse(expires_at=issued.expires_at, expires_in=issued.expires_in)


@router.post("/complete-registration", response_model=SessionResponse)
async def complete_registration(
    body: CompleteRegistrationRequest,
    auth_service: AuthService = Depends(get_auth_service),
) -> SessionResponse:
    user, session = await auth_service.complete_registration(
        body.verification, body.password, body.first_name, body.last_name
    )
    return SessionResponse.build(user, session)


@router.post("/login", response_model=SessionResponse)
async def login(
    body: LoginRequest,
    auth_service: AuthService = Depends(get_auth_service),
) -> SessionResponse:
    user, session = await auth_service.login(body.email, body.password)
    return SessionResponse.build(user, session)


@router.post("/reset-password", response_model=MessageResponse)
async def reset_password(
    body: ResetPasswordRequest,
    auth_service: AuthService = Depends(get_auth_service),
) -> MessageResponse:
    await auth_service.reset_password(body.reset, body.password)
    return MessageResponse(success=True, message="Password has been reset.")


@router.get("/me", response_model=UserProfileResponse)
async def me(
    token: str = Depends(get_bearer_token),
    auth_service: AuthService = Depends(get_auth_service),
) -> UserProfileResponse:
    user = await auth_service.me(token)
    return UserProfileResponse.from_user(user)
