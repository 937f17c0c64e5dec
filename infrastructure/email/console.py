"""Development Notifier that writes codes to stdout instead of sending email.

Selected with EMAIL_BACKEND=console; refused in production by create_app().
"""

from infrastructure.email.protocol import OTPDelivery
from shared.logging import get_logger

log = get_logger(__name__)


class ConsoleNotifier:
    def __init__(self) -> None:
        self.sent: list[tuple[str, OTPDelivery]] = []

    async def deliver(self, identity: str, payload: OTPDelivery) -> bool:
        self.sent.append((identity, payload))
        # print, not log: the redaction processor would mask the code
        print(
            f"[console-notifier] {payload.purpose.value} code for {identity}: "
            f"{payload.code} (valid {payload.expires_in_minutes} min)"
        )
        log.info("console_notifier_delivered", purpose=payload.purpose.value)
        return True
