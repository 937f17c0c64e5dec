"""
Request DTOs for OTP endpoints.

OTPRequestRequest  — POST /auth/otp/request
OTPResendRequest   — POST /auth/otp/resend
OTPVerifyRequest   — POST /auth/otp/verify
OTPStatusQuery     — GET  /auth/otp/status (query params)

Only shape is checked here; email syntax and code format are validated by
the OTP service against the purpose's policy.
"""

from __future__ import annotations

from pydantic import BaseModel, ConfigDict, Field

from schemas.models.otp import Purpose


class OTPRequestRequest(BaseModel):
    """Request body for POST /auth/otp/request."""

    model_config = ConfigDict(populate_by_name=True)

    email: str = Field(max_length=254)
    purpose: Purpose


class OTPResendRequest(OTPRequestRequest):
    """Request body for POST /auth/otp/resend."""


class OTPVerifyRequest(BaseModel):
    """Request body for POST /auth/otp/verify."""

    model_config = ConfigDict(populate_by_name=True)

    email: str = Field(max_length=254)
    code: str = Field(max_length=64)
    purpose: Purpose


class OTPStatusQuery(BaseModel):
    """Query parameters for GET /auth/otp/status."""

    model_config = ConfigDict(populate_by_name=True)

    email: str = Field(max_length=254)
    purpose: Purpose
