"""
FastAPI dependency providers.

All injectable dependencies are defined here as plain functions used with
FastAPI's Depends() system. Long-lived objects (clients, store, services)
are built once in the app lifespan and read from app.state.
"""

from __future__ import annotations

from typing import Optional

from fastapi import Header, Request

from errors import AuthenticationError
from services.auth_service import AuthService
from services.otp_service import OTPService


def get_otp_service(request: Request) -> OTPService:
    return request.app.state.otp_service


def get_auth_service(request: Request) -> AuthService:
    return request.app.state.auth_service


def get_bearer_token(authorization: Optional[str] = Header(default=None)) -> str:
    """Extract the credential from an ``Authorization: Bearer <token>`` header."""
    if not authorization:
        raise AuthenticationError("Authentication required")
    scheme, _, token = authorization.partition(" ")
    if scheme.lower() != "bearer" or not token.strip():
        raise AuthenticationError("Invalid authorization header")
    return token.strip()
