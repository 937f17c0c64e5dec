"""
Request DTOs for account endpoints.

RegisterRequest              — POST /auth/register
CompleteRegistrationRequest  — POST /auth/complete-registration
LoginRequest                 — POST /auth/login
ResetPasswordRequest         — POST /auth/reset-password
"""

from __future__ import annotations

from pydantic import BaseModel, ConfigDict, Field


class RegisterRequest(BaseModel):
    """Request body for POST /auth/register."""

    model_config = ConfigDict(populate_by_name=True)

    email: str = Field(max_length=254)
    password: str
    first_name: str
    last_name: str


class CompleteRegistrationRequest(BaseModel):
    """Request body for POST /auth/complete-registration.

    ``verification`` is the intermediate credential returned by verifying an
    ``email_verification`` code.
    """

    model_config = ConfigDict(populate_by_name=True)

    verification: str
    password: str
    first_name: str
    last_name: str


class LoginRequest(BaseModel):
    """Request body for POST /auth/login."""

    model_config = ConfigDict(populate_by_name=True)

    email: str
    password: str


class ResetPasswordRequest(BaseModel):
    """Request body for POST /auth/reset-password.

    ``reset`` is the intermediate credential returned by verifying a
    ``password_reset`` code.
    """

    model_config = ConfigDict(populate_by_name=True)

    reset: str
    password: str
