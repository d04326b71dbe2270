"""Configuration management for Golf Improver.

Loads environment variables and provides validated configuration objects.

ENVIRONMENT:
- SUPABASE_URL / SUPABASE_SERVICE_ROLE_KEY: managed auth + document storage
- GEMINI_API_KEY (or GOOGLE_API_KEY): practice plan and recap generation
- ADMIN_API_KEY: bearer secret for ``POST /api/admin/generate-recaps``
- CRON_SECRET: bearer secret sent by the scheduled monthly trigger
- SMTP_HOST / SMTP_USERNAME / SMTP_PASSWORD (optional): recap emails
"""

from __future__ import annotations

import logging
import os
from dataclasses import dataclass, field
from pathlib import Path
from typing import Optional

logger = logging.getLogger(__name__)

DEFAULT_DATA_DIR = "/tmp/golfimprover-data"
DEFAULT_TEXT_MODEL = "gemini-2.5-flash"
DEFAULT_RECAP_TIMEZONE = "America/New_York"


def _get_env_value(*names: str) -> Optional[str]:
    for name in names:
        value = os.getenv(name)
        if value:
            return value
    return None


def _bool_from_env(name: str, default: bool = False) -> bool:
    value = os.environ.get(name)
    if value is None:
        return default
    return value.lower() in {"1", "true", "yes", "on"}


def _int_from_env(name: str, default: int) -> int:
    value = os.environ.get(name)
    if not value:
        return default
    try:
        return int(value)
    except ValueError:
        logger.warning("Ignoring non-integer %s=%r", name, value)
        return default


@dataclass(frozen=True)
class SupabaseConfig:
    """Supabase project credentials."""
    url: Optional[str] = None
    key: Optional[str] = None

    @property
    def is_valid(self) -> bool:
        return bool(self.url and self.key)


@dataclass(frozen=True)
class GeminiConfig:
    """Google Gemini API configuration."""
    api_key: Optional[str] = None
    text_model: str = DEFAULT_TEXT_MODEL

    @property
    def is_valid(self) -> bool:
        return bool(self.api_key) and not self.api_key.startswith("your_")


@dataclass(frozen=True)
class MailConfig:
    """Outgoing SMTP settings for recap emails."""
    host: Optional[str] = None
    port: int = 587
    username: Optional[str] = None
    password: Optional[str] = None
    sender: str = '"Golf Improver" <noreply@golfimprover.app>'
    use_tls: bool = True

    @property
    def is_valid(self) -> bool:
        return bool(self.host)


@dataclass(frozen=True)
class RecapJobConfig:
    """Monthly recap batch job settings."""
    timezone: str = DEFAULT_RECAP_TIMEZONE
    max_concurrency: int = 8
    app_url: str = "https://golfimprover.app"


@dataclass(frozen=True)
class Settings:
    """Top-level settings assembled from the environment."""
    supabase: SupabaseConfig = field(default_factory=SupabaseConfig)
    gemini: GeminiConfig = field(default_factory=GeminiConfig)
    mail: MailConfig = field(default_factory=MailConfig)
    recap_job: RecapJobConfig = field(default_factory=RecapJobConfig)
    admin_api_key: Optional[str] = None
    cron_secret: Optional[str] = None
    data_dir: Path = Path(DEFAULT_DATA_DIR)
    redis_url: Optional[str] = None
    redis_rest_url: Optional[str] = None
    redis_rest_token: Optional[str] = None

    @classmethod
    def from_env(cls) -> "Settings":
        supabase = SupabaseConfig(
            url=_get_env_value("SUPABASE_URL", "SUPABASE_URL_SECRET", "SUPABASE_PROJECT_URL"),
            key=_get_env_value(
                "SUPABASE_SERVICE_ROLE_KEY",
                "SUPABASE_ANON_KEY",
                "SUPABASE_API_KEY",
            ),
        )
        gemini = GeminiConfig(
            api_key=_get_env_value("GEMINI_API_KEY", "GOOGLE_API_KEY", "GEMINI_API_KEY_SECRET"),
            text_model=os.getenv("GEMINI_TEXT_MODEL", DEFAULT_TEXT_MODEL),
        )
        mail = MailConfig(
            host=os.getenv("SMTP_HOST"),
            port=_int_from_env("SMTP_PORT", 587),
            username=os.getenv("SMTP_USERNAME"),
            password=os.getenv("SMTP_PASSWORD"),
            sender=os.getenv("MAIL_SENDER", MailConfig.sender),
            use_tls=_bool_from_env("SMTP_USE_TLS", True),
        )
        recap_job = RecapJobConfig(
            timezone=os.getenv("RECAP_TIMEZONE", DEFAULT_RECAP_TIMEZONE),
            max_concurrency=max(1, _int_from_env("RECAP_MAX_CONCURRENCY", 8)),
            app_url=os.getenv("APP_BASE_URL", RecapJobConfig.app_url).rstrip("/"),
        )

        settings = cls(
            supabase=supabase,
            gemini=gemini,
            mail=mail,
            recap_job=recap_job,
            admin_api_key=os.getenv("ADMIN_API_KEY") or None,
            cron_secret=os.getenv("CRON_SECRET") or None,
            data_dir=Path(os.getenv("STORAGE_DATA_DIR", DEFAULT_DATA_DIR)).expanduser(),
            redis_url=os.getenv("UPSTASH_REDIS_URL") or None,
            redis_rest_url=os.getenv("UPSTASH_REDIS_REST_URL") or None,
            redis_rest_token=os.getenv("UPSTASH_REDIS_REST_TOKEN") or None,
        )
        settings.log_summary()
        return settings

    def log_summary(self) -> None:
        logger.info(
            "Integrations: supabase=%s gemini=%s smtp=%s admin_key=%s",
            self.supabase.is_valid,
            self.gemini.is_valid,
            self.mail.is_valid,
            bool(self.admin_api_key),
        )
