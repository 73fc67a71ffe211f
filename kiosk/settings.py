from __future__ import annotations

from dataclasses import dataclass, field
import os
import secrets


@dataclass(frozen=True)
class AuthSettings:
    admin_password: str = ""
    capture_password: str = ""
    token_secret: str = field(default_factory=lambda: secrets.token_urlsafe(32), repr=False)
    processor_secret: str = field(default="", repr=False)
    token_ttl_seconds: int = 24 * 60 * 60


@dataclass(frozen=True)
class StorageSettings:
    bucket: str | None = None
    region: str = "us-east-1"


@dataclass(frozen=True)
class NotificationSettings:
    base_url: str = "http://localhost:8000"
    sendgrid_api_key: str = field(default="", repr=False)
    sendgrid_from_email: str = ""
    sendgrid_from_name: str = "Stickers Generator"
    twilio_account_sid: str = ""
    twilio_auth_token: str = field(default="", repr=False)
    twilio_phone_number: str = ""

    @property
    def email_configured(self) -> bool:
        return bool(self.sendgrid_api_key and self.sendgrid_from_email)

    @property
    def sms_configured(self) -> bool:
        return bool(self.twilio_account_sid and self.twilio_auth_token and self.twilio_phone_number)


@dataclass(frozen=True)
class AppSettings:
    database_url: str | None = None
    auth: AuthSettings = field(default_factory=AuthSettings)
    storage: StorageSettings = field(default_factory=StorageSettings)
    notifications: NotificationSettings = field(default_factory=NotificationSettings)


def app_settings_from_env() -> AppSettings:
    token_secret = _env_str("TOKEN_SECRET")
    return AppSettings(
        database_url=_env_str("DATABASE_URL") or None,
        auth=AuthSettings(
            admin_password=_env_str("ADMIN_PASSWORD"),
            capture_password=_env_str("CAPTURE_PASSWORD"),
            token_secret=token_secret or secrets.token_urlsafe(32),
            processor_secret=_env_str("PROCESSOR_SECRET"),
            token_ttl_seconds=_env_int("TOKEN_TTL_SECONDS", 24 * 60 * 60),
        ),
        storage=StorageSettings(
            bucket=_env_str("S3_BUCKET_NAME") or None,
            region=_env_str("AWS_REGION", "us-east-1"),
        ),
        notifications=NotificationSettings(
            base_url=_env_str("BASE_URL", "http://localhost:8000"),
            sendgrid_api_key=_env_str("SENDGRID_API_KEY"),
            sendgrid_from_email=_env_str("SENDGRID_FROM_EMAIL"),
            sendgrid_from_name=_env_str("SENDGRID_FROM_NAME", "Stickers Generator"),
            twilio_account_sid=_env_str("TWILIO_ACCOUNT_SID"),
            twilio_auth_token=_env_str("TWILIO_AUTH_TOKEN"),
            twilio_phone_number=_env_str("TWILIO_PHONE_NUMBER"),
        ),
    )


def _env_str(name: str, default: str = "") -> str:
    value = os.getenv(name)
    if value is None:
        return default
    value = value.strip()
    return value or default


def _env_int(name: str, default: int) -> int:
    value = os.getenv(name)
    if value is None:
        return default

    try:
        parsed = int(value)
    except ValueError:
        return default

    return parsed if parsed > 0 else default
