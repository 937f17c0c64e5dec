"""
Application configuration via pydantic-settings.

All settings are loaded from environment variables (and .env file).

OTP policy knobs live in OTPSettings; the per-purpose table built from them
is in services/otp_policy.py.
"""

from __future__ import annotations

from typing import Literal, Optional

from pydantic import Field, model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


class DatabaseSettings(BaseSettings):
    model_config = SettingsConfigDict(env_file=".env", extra="ignore")

    mongodb_uri: str
    db_name: str = "greenhouse-auth"


class RedisSettings(BaseSettings):
    model_config = SettingsConfigDict(env_file=".env", extra="ignore")

    # Optional: only required when OTP_STORE_BACKEND=redis
    redis_uri: Optional[str] = None


class JWTSettings(BaseSettings):
    model_config = SettingsConfigDict(env_file=".env", extra="ignore")

    jwt_issuer: str = "greenhouse-auth"
    jwt_audience: str = "greenhouse-auth.api"
    intermediate_token_ttl_seconds: int = 900
    session_token_ttl_seconds: int = 604800

    # RS256 keys (preferred)
    jwt_private_key: str = ""
    jwt_public_key: str = ""

    # HS256 fallback (used when RS256 keys are absent)
    jwt_secret: str = ""

    @property
    def use_rs256(self) -> bool:
        return bool(self.jwt_private_key and self.jwt_public_key)


class EmailSettings(BaseSettings):
    model_config = SettingsConfigDict(env_file=".env", extra="ignore")

    # "console" logs codes instead of sending them (local development only)
    email_backend: Literal["zeptomail", "console"] = "zeptomail"
    zepto_api_token: str = ""
    zepto_from_email: str = "noreply@greenhouse.local"
    zepto_from_name: str = "Smart Green House"


class OTPSettings(BaseSettings):
    model_config = SettingsConfigDict(env_file=".env", extra="ignore")

    otp_store_backend: Literal["memory", "mongo", "redis"] = "mongo"

    # email_verification / login_verification / registration
    otp_code_length: int = Field(default=6, ge=4, le=32)
    otp_code_format: Literal["numeric", "alphanumeric"] = "numeric"
    otp_ttl_seconds: int = Field(default=600, gt=0)

    # password_reset
    password_reset_code_length: int = Field(default=10, ge=4, le=32)
    password_reset_code_format: Literal["numeric", "alphanumeric"] = "alphanumeric"
    password_reset_ttl_seconds: int = Field(default=900, gt=0)

    otp_max_attempts: int = Field(default=3, ge=1)
    otp_lockout_seconds: int = Field(default=900, gt=0)

    otp_max_sends_per_window: int = Field(default=3, ge=1)
    otp_send_window_seconds: int = Field(default=3600, gt=0)

    otp_sweep_interval_seconds: float = Field(default=300.0, gt=0)
    otp_delivery_timeout_seconds: float = Field(default=10.0, gt=0)


class LoggingSettings(BaseSettings):
    model_config = SettingsConfigDict(env_file=".env", extra="ignore")

    log_level: str = "INFO"
    log_format: str = "console"  # "json" in production


class SentrySettings(BaseSettings):
    model_config = SettingsConfigDict(env_file=".env", extra="ignore")

    sentry_dsn: str = ""
    sentry_send_pii: bool = False
    sentry_traces_sample_rate: float = 0.1


class AppSettings(BaseSettings):
    model_config = SettingsConfigDict(env_file=".env", extra="ignore")

    # Core
    env: str = "development"
    app_url: str = "http://localhost:8000"
    app_name: str = "Smart Green House Auth"

    cors_origins: list[str] = ["*"]

    # OpenAPI docs URL (None disables the docs UI in production)
    docs_url: Optional[str] = "/docs"

    # Sub-configs (composed via model_validator below)
    db: Optional[DatabaseSettings] = None
    redis: Optional[RedisSettings] = None
    jwt: Optional[JWTSettings] = None
    email: Optional[EmailSettings] = None
    otp: Optional[OTPSettings] = None
    logging: Optional[LoggingSettings] = None
    sentry: Optional[SentrySettings] = None

    @model_validator(mode="after")
    def _populate_sub_configs(self) -> "AppSettings":
        # Populate sub-configs from the same env/dotenv source
        if self.db is None:
            self.db = DatabaseSettings()
        if self.redis is None:
            self.redis = RedisSettings()
        if self.jwt is None:
            self.jwt = JWTSettings()
        if self.email is None:
            self.email = EmailSettings()
        if self.otp is None:
            self.otp = OTPSettings()
        if self.logging is None:
            self.logging = LoggingSettings()
        if self.sentry is None:
            self.sentry = SentrySettings()

        if self.otp.otp_store_backend == "redis" and not self.redis.redis_uri:
            raise ValueError("REDIS_URI must be set when OTP_STORE_BACKEND=redis")

        return self

    @property
    def is_production(self) -> bool:
        return self.env == "production"
