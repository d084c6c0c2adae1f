from __future__ import annotations

import os
from dataclasses import dataclass
from typing import Optional

from dotenv import load_dotenv

load_dotenv()


def _as_bool(value: str | None, default: bool) -> bool:
    if value is None:
        return default
    return value.strip().lower() in {"1", "true", "yes", "on"}


def _as_int(value: str | None, default: int) -> int:
    if value is None:
        return default
    try:
        return int(value)
    except ValueError:
        return default


def _as_float(value: str | None, default: float) -> float:
    if value is None:
        return default
    try:
        return float(value)
    except ValueError:
        return default


def _as_optional_str(value: str | None) -> Optional[str]:
    if value is None:
        return None
    raw = value.strip()
    # Some dashboards accidentally store quoted values.
    if len(raw) >= 2 and raw[0] == raw[-1] and raw[0] in {'"', "'"}:
        raw = raw[1:-1].strip()
    return raw or None


@dataclass(frozen=True)
class Settings:
    env: str
    port: int
    log_level: str
    cors_origins: list[str]
    enable_prometheus_metrics: bool
    public_site_url: Optional[str]
    rate_limit_max: int
    rate_limit_window_ms: int
    min_submit_ms: int
    abuse_inline_sweep: bool
    abuse_sweep_batch: int
    abuse_sweep_interval_seconds: float
    smtp_host: Optional[str]
    smtp_port: Optional[int]
    smtp_secure: bool
    smtp_timeout: float
    contact_to_email: Optional[str]
    contact_from_email: Optional[str]
    contact_bcc_email: Optional[str]
    contact_subject_prefix: str
    sanity_project_id: Optional[str]
    sanity_dataset: str
    sanity_api_version: str
    sanity_read_token: Optional[str]
    sanity_use_cdn: bool
    sanity_timeout: float

    @property
    def is_production(self) -> bool:
        return self.env.lower() not in {"development", "dev", "test", "testing"}

    @property
    def smtp_uses_tls(self) -> bool:
        return self.smtp_secure or self.smtp_port == 465

    def validate(self) -> None:
        """Raise early on throttle settings that would disable the contact gate."""
        if not self.is_production:
            return
        if self.rate_limit_max <= 0:
            raise RuntimeError("RATE_LIMIT_MAX must be a positive integer")
        if self.rate_limit_window_ms <= 0:
            raise RuntimeError("RATE_LIMIT_WINDOW_MS must be a positive integer")
        if self.min_submit_ms < 0:
            raise RuntimeError("MIN_SUBMIT_MS must not be negative")


def load_settings() -> Settings:
    public_site_url = _as_optional_str(os.getenv("PUBLIC_SITE_URL"))
    smtp_port_raw = _as_optional_str(os.getenv("SMTP_PORT"))
    return Settings(
        env=os.getenv("ENV", "development"),
        port=_as_int(os.getenv("PORT"), 8000),
        log_level=os.getenv("LOG_LEVEL", "INFO").strip().upper(),
        cors_origins=[
            origin.strip()
            for origin in os.getenv("CORS_ORIGINS", public_site_url or "http://localhost:5173").split(",")
            if origin.strip()
        ],
        enable_prometheus_metrics=_as_bool(os.getenv("ENABLE_PROMETHEUS_METRICS"), True),
        public_site_url=public_site_url,
        rate_limit_max=_as_int(os.getenv("RATE_LIMIT_MAX"), 3),
        rate_limit_window_ms=_as_int(os.getenv("RATE_LIMIT_WINDOW_MS"), 600_000),
        min_submit_ms=_as_int(os.getenv("MIN_SUBMIT_MS"), 2_500),
        abuse_inline_sweep=_as_bool(os.getenv("ABUSE_INLINE_SWEEP"), True),
        abuse_sweep_batch=max(1, _as_int(os.getenv("ABUSE_SWEEP_BATCH"), 50)),
        abuse_sweep_interval_seconds=max(0.0, _as_float(os.getenv("ABUSE_SWEEP_INTERVAL_SECONDS"), 0.0)),
        smtp_host=_as_optional_str(os.getenv("SMTP_HOST")),
        smtp_port=_as_int(smtp_port_raw, 0) or None,
        smtp_secure=_as_bool(os.getenv("SMTP_SECURE"), False),
        smtp_timeout=max(1.0, _as_float(os.getenv("SMTP_TIMEOUT"), 10.0)),
        contact_to_email=_as_optional_str(os.getenv("CONTACT_TO_EMAIL")),
        contact_from_email=_as_optional_str(os.getenv("CONTACT_FROM_EMAIL")),
        contact_bcc_email=_as_optional_str(os.getenv("CONTACT_BCC_EMAIL")),
        contact_subject_prefix=os.getenv("CONTACT_SUBJECT_PREFIX", "[Contact]").strip(),
        sanity_project_id=_as_optional_str(os.getenv("SANITY_PROJECT_ID")),
        sanity_dataset=os.getenv("SANITY_DATASET", "production").strip(),
        sanity_api_version=os.getenv("SANITY_API_VERSION", "2025-11-30").strip().lstrip("v"),
        sanity_read_token=_as_optional_str(os.getenv("SANITY_READ_TOKEN")),
        sanity_use_cdn=_as_bool(os.getenv("SANITY_USE_CDN"), False),
        sanity_timeout=max(0.5, _as_float(os.getenv("SANITY_TIMEOUT"), 5.0)),
    )


settings = load_settings()

settings.validate()
