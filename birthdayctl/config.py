import os
from dataclasses import dataclass
from typing import Dict

from .errors import ValidationError

DEFAULT_CONFIG = {
    "poll_interval_seconds": "1800",   # half-hour zones make 30m the coarsest safe tick
    "max_concurrency": "20",
    "retry_backoff_seconds": "300",
    "lock_timeout_seconds": "5400",
    "max_delivery_attempts": "0",      # 0 = retry forever
    "send_hour": "9",
}

ALLOWED_CONFIG_KEYS = set(DEFAULT_CONFIG.keys())

BIRTHDAY_SUBJECT = "Happy Birthday!"


@dataclass(frozen=True)
class Settings:
    poll_interval_seconds: int = 1800
    max_concurrency: int = 20
    retry_backoff_seconds: int = 300
    lock_timeout_seconds: int = 5400
    max_delivery_attempts: int = 0
    send_hour: int = 9

    @classmethod
    def from_mapping(cls, cfg: Dict[str, str]) -> "Settings":
        values = {}
        for key in ALLOWED_CONFIG_KEYS:
            raw = cfg.get(key, DEFAULT_CONFIG[key])
            try:
                values[key] = int(raw)
            except (TypeError, ValueError):
                raise ValidationError(f"{key} must be an integer, got {raw!r}")
        settings = cls(**values)
        settings.validate()
        return settings

    def validate(self):
        if self.poll_interval_seconds <= 0:
            raise ValidationError("poll_interval_seconds must be > 0")
        if self.max_concurrency <= 0:
            raise ValidationError("max_concurrency must be > 0")
        if self.retry_backoff_seconds <= 0:
            raise ValidationError("retry_backoff_seconds must be > 0")
        if self.lock_timeout_seconds <= 0:
            raise ValidationError("lock_timeout_seconds must be > 0")
        if self.max_delivery_attempts < 0:
            raise ValidationError("max_delivery_attempts must be >= 0")
        if not 0 <= self.send_hour <= 23:
            raise ValidationError("send_hour must be between 0 and 23")


@dataclass(frozen=True)
class MailSettings:
    host: str = ""
    port: int = 587
    user: str = ""
    password: str = ""
    sender: str = ""

    @classmethod
    def from_env(cls, environ=None) -> "MailSettings":
        env = os.environ if environ is None else environ
        try:
            port = int(env.get("MAIL_PORT", "587"))
        except ValueError:
            raise ValidationError(f"MAIL_PORT must be an integer, got {env.get('MAIL_PORT')!r}")
        user = env.get("MAIL_USER", "")
        return cls(
            host=env.get("MAIL_HOST", ""),
            port=port,
            user=user,
            password=env.get("MAIL_PASSWORD", ""),
            sender=env.get("MAIL_FROM", user),
        )
