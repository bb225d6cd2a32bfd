"""Health link service configuration.

HealthLinkSettings is the single configuration object accepted by create_app().
It is a plain dataclass (not env-coupled) so tests can inject config without
touching os.environ.
"""

from __future__ import annotations

import os
from dataclasses import dataclass

LOCAL_SESSION_SECRET = "local-dev-session-secret-change-me"


@dataclass(frozen=True, slots=True)
class HealthLinkSettings:
    """Configuration for the health link FastAPI application.

    All fields have sensible defaults for local development.
    Non-local environments must supply Supabase, S3 and a session secret.
    """

    # ── Environment ────────────────────────────────────────────────
    environment: str = "local"
    """One of: local, dev, staging, production."""

    # ── Public URLs ────────────────────────────────────────────────
    api_url: str = "http://localhost:8000"
    """Base URL of this service; manifest URLs are built from it."""

    viewer_url: str = "http://localhost:5174"
    """Base URL of the recipient viewer app."""

    # ── Link policy ────────────────────────────────────────────────
    expiration_days_default: int = 90
    expiration_days_max: int = 365
    storage_namespace: str = "shls"
    signed_url_ttl_seconds: int = 3600

    # ── Storage ────────────────────────────────────────────────────
    s3_bucket: str = ""
    aws_region: str = "us-east-1"

    # ── Supabase ───────────────────────────────────────────────────
    supabase_url: str = ""
    supabase_service_role_key: str = ""
    """Service-role key for PostgREST calls. Never log this."""

    # ── Session ────────────────────────────────────────────────────
    session_secret: str = LOCAL_SESSION_SECRET
    """HS256 secret for the session cookie. Must be >=32 chars in non-local."""

    session_cookie_name: str = "healthlink_session"

    # ── Clinical collaborators ─────────────────────────────────────
    documents_base_url: str = "https://qa-api.practicefusion.com/ehr/documents/v3"
    geolocation_url: str = "http://ip-api.com/json"
    geolocation_enabled: bool = True

    # ── Timeouts (seconds) ─────────────────────────────────────────
    clinical_timeout_seconds: float = 15.0
    storage_timeout_seconds: float = 10.0
    geolocation_timeout_seconds: float = 2.0
    notification_timeout_seconds: float = 10.0
    registry_timeout_seconds: float = 10.0

    # ── Notifications ──────────────────────────────────────────────
    twilio_account_sid: str = ""
    twilio_auth_token: str = ""
    """Never log this."""
    twilio_phone_number: str = ""
    ses_from_email: str = ""
    notification_max_pending: int = 100

    # ── CORS ───────────────────────────────────────────────────────
    cors_origins: tuple[str, ...] = (
        "http://localhost:5173",
        "http://localhost:5174",
    )

    @property
    def is_local(self) -> bool:
        return self.environment == "local"

    @property
    def sms_configured(self) -> bool:
        return bool(
            self.twilio_account_sid and self.twilio_auth_token and self.twilio_phone_number
        )

    @property
    def email_configured(self) -> bool:
        return bool(self.ses_from_email)

    def validate(self) -> list[str]:
        """Return a list of configuration errors. Empty means valid."""
        errors: list[str] = []
        if self.expiration_days_default < 1:
            errors.append("expiration_days_default must be >= 1")
        if self.expiration_days_max < self.expiration_days_default:
            errors.append("expiration_days_max must be >= expiration_days_default")
        if self.signed_url_ttl_seconds < 1:
            errors.append("signed_url_ttl_seconds must be >= 1")
        if self.notification_max_pending < 1:
            errors.append("notification_max_pending must be >= 1")
        if not self.is_local:
            if not self.supabase_url:
                errors.append(f"{self.environment}: supabase_url is required")
            if not self.supabase_service_role_key:
                errors.append(
                    f"{self.environment}: supabase_service_role_key is required"
                )
            if not self.s3_bucket:
                errors.append(f"{self.environment}: s3_bucket is required")
            if (
                len(self.session_secret) < 32
                or self.session_secret == LOCAL_SESSION_SECRET
            ):
                errors.append(
                    f"{self.environment}: session_secret must be >= 32 characters"
                )
        return errors

    @classmethod
    def from_env(cls, env: dict[str, str] | None = None) -> HealthLinkSettings:
        """Build settings from environment variables.

        Tests should construct HealthLinkSettings directly.
        """
        if env is None:
            env = dict(os.environ)
        defaults = cls()

        def _int(name: str, default: int) -> int:
            raw = env.get(name, "")
            return int(raw) if raw.strip() else default

        def _float(name: str, default: float) -> float:
            raw = env.get(name, "")
            return float(raw) if raw.strip() else default

        cors_raw = env.get("CORS_ORIGINS", "")
        cors = (
            tuple(o.strip() for o in cors_raw.split(",") if o.strip())
            if cors_raw else defaults.cors_origins
        )

        return cls(
            environment=env.get("ENVIRONMENT", "local"),
            api_url=env.get("API_URL", defaults.api_url),
            viewer_url=env.get("VIEWER_URL", defaults.viewer_url),
            expiration_days_default=_int(
                "SHL_EXPIRATION_DAYS_DEFAULT", defaults.expiration_days_default,
            ),
            expiration_days_max=_int("SHL_EXPIRATION_DAYS_MAX", defaults.expiration_days_max),
            storage_namespace=env.get("SHL_STORAGE_NAMESPACE", defaults.storage_namespace),
            signed_url_ttl_seconds=_int(
                "SIGNED_URL_TTL_SECONDS", defaults.signed_url_ttl_seconds,
            ),
            s3_bucket=env.get("S3_BUCKET_NAME", ""),
            aws_region=env.get("AWS_REGION", defaults.aws_region),
            supabase_url=env.get("SUPABASE_URL", ""),
            supabase_service_role_key=env.get("SUPABASE_SERVICE_ROLE_KEY", ""),
            session_secret=env.get("SESSION_SECRET", defaults.session_secret),
            session_cookie_name=env.get("SESSION_COOKIE_NAME", defaults.session_cookie_name),
            documents_base_url=env.get(
                "PRACTICE_FUSION_DOCS_BASE_URL", defaults.documents_base_url,
            ),
            geolocation_url=env.get("GEOLOCATION_URL", defaults.geolocation_url),
            geolocation_enabled=env.get("GEOLOCATION_ENABLED", "true").lower() != "false",
            clinical_timeout_seconds=_float(
                "CLINICAL_TIMEOUT_SECONDS", defaults.clinical_timeout_seconds,
            ),
            storage_timeout_seconds=_float(
                "STORAGE_TIMEOUT_SECONDS", defaults.storage_timeout_seconds,
            ),
            geolocation_timeout_seconds=_float(
                "GEOLOCATION_TIMEOUT_SECONDS", defaults.geolocation_timeout_seconds,
            ),
            notification_timeout_seconds=_float(
                "NOTIFICATION_TIMEOUT_SECONDS", defaults.notification_timeout_seconds,
            ),
            registry_timeout_seconds=_float(
                "REGISTRY_TIMEOUT_SECONDS", defaults.registry_timeout_seconds,
            ),
            twilio_account_sid=env.get("TWILIO_ACCOUNT_SID", ""),
            twilio_auth_token=env.get("TWILIO_AUTH_TOKEN", ""),
            twilio_phone_number=env.get("TWILIO_PHONE_NUMBER", ""),
            ses_from_email=env.get("SES_FROM_EMAIL", ""),
            notification_max_pending=_int(
                "NOTIFICATION_MAX_PENDING", defaults.notification_max_pending,
            ),
            cors_origins=cors,
        )
