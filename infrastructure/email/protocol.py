"""Notifier protocol. The OTP lifecycle depends on this, not the concrete implementation."""

from dataclasses import dataclass
from typing import Optional, Protocol

from schemas.models.otp import Purpose


@dataclass(frozen=True)
class OTPDelivery:
    """What a notifier needs to deliver one code out-of-band."""

    code: str
    purpose: Purpose
    expires_in_minutes: int
    recipient_name: Optional[str] = None


class Notifier(Protocol):
    async def deliver(self, identity: str, payload: OTPDelivery) -> bool: ...
