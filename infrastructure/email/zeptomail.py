"""ZeptoMail implementation of Notifier.

Codes are rendered into per-purpose Jinja2 templates and posted to the
ZeptoMail HTTP API. Any non-2xx response or transport error is reported as
a failed delivery; retrying is left to the caller.
"""

import os
from typing import Optional

from jinja2 import Environment, FileSystemLoader, select_autoescape

from config import EmailSettings
from infrastructure.email.protocol import OTPDelivery
from infrastructure.http_client import HttpClient
from schemas.models.otp import Purpose
from shared.logging import get_logger, hash_identity

log = get_logger(__name__)

_ZEPTO_API_URL = "https://api.zeptomail.in/v1.1/email"
_DEFAULT_TEMPLATE_DIR = os.path.join(
    os.path.dirname(os.path.dirname(os.path.dirname(__file__))),
    "templates",
    "emails",
)

# purpose -> (subject, template, plain-text heading)
_MESSAGES = {
    Purpose.EMAIL_VERIFICATION: (
        "Verify your email - {app_name}",
        "otp.html",
        "Your email verification code",
    ),
    Purpose.REGISTRATION: (
        "Complete your registration - {app_name}",
        "otp.html",
        "Your registration code",
    ),
    Purpose.LOGIN_VERIFICATION: (
        "Your sign-in code - {app_name}",
        "otp.html",
        "Your sign-in code",
    ),
    Purpose.PASSWORD_RESET: (
        "Reset your password - {app_name}",
        "password_reset.html",
        "Your password reset code",
    ),
}


class ZeptoMailProvider:
    def __init__(
        self,
        settings: EmailSettings,
        http_client: HttpClient,
        app_name: str = "Smart Green House",
        app_url: str = "http://localhost:8000",
        template_dir: str = _DEFAULT_TEMPLATE_DIR,
    ) -> None:
        self._settings = settings
        self._http = http_client
        self._app_name = app_name
        self._app_url = app_url
        self._jinja = Environment(
            loader=FileSystemLoader(template_dir),
            autoescape=select_autoescape(["html", "xml"]),
        )

    async def _send(
        self,
        to_email: str,
        to_name: Optional[str],
        subject: str,
        html_body: str,
        text_body: Optional[str] = None,
    ) -> bool:
        if not self._settings.zepto_api_token:
            log.error("zepto_mail_send_failed", reason="token_not_configured")
            return False

        payload: dict = {
            "from": {
                "address": self._settings.zepto_from_email,
                "name": self._settings.zepto_from_name,
            },
            "to": [
                {
                    "email_address": {
                        "address": to_email,
                        "name": to_name or to_email,
                    }
                }
            ],
            "subject": subject,
            "htmlbody": html_body,
        }
        if text_body:
            payload["textbody"] = text_body

        token = self._settings.zepto_api_token
        if not token.startswith("Zoho-enczapikey "):
            token = f"Zoho-enczapikey {token}"

        headers = {"Authorization": token, "Content-Type": "application/json"}

        try:
            response = await self._http.post(
                _ZEPTO_API_URL, json=payload, headers=headers
            )
            if response.status_code in (200, 201, 202):
                log.info(
                    "email_sent_success",
                    identity=hash_identity(to_email),
                    subject=subject,
                )
                return True
            log.error(
                "email_sent_failed",
                identity=hash_identity(to_email),
                subject=subject,
                status_code=response.status_code,
                response=response.text[:200],
            )
            return False
        except Exception as e:
            log.error(
                "email_send_error",
                identity=hash_identity(to_email),
                subject=subject,
                error=str(e),
                error_type=type(e).__name__,
            )
            return False

    async def deliver(self, identity: str, payload: OTPDelivery) -> bool:
        subject, template_name, heading = _MESSAGES[Purpose(payload.purpose)]
        subject = subject.format(app_name=self._app_name)
        template = self._jinja.get_template(template_name)
        html_body = template.render(
            otp_code=payload.code,
            heading=heading,
            user_name=payload.recipient_name,
            expires_in_minutes=payload.expires_in_minutes,
            app_name=self._app_name,
            app_url=self._app_url,
        )
        name = payload.recipient_name
        text_body = (
            f"{heading} - {self._app_name}\n\n"
            f"Hello{f' {name}' if name else ''},\n\n"
            f"Your code is: {payload.code}\n\n"
            f"This code expires in {payload.expires_in_minutes} minutes. "
            f"If you did not request it, you can ignore this email."
        )
        return await self._send(identity, name, subject, html_body, text_body)
