"""Application settings loaded from environment variables.

Uses pydantic-settings for validation and type coercion. App-specific
settings use the ``SATUPINTU_`` prefix; third-party credentials
(Fonnte, Twilio, Google, Supabase, GCP) use their canonical environment
variable names via ``validation_alias``.
"""

from __future__ import annotations

from enum import StrEnum
from typing import Literal

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict


class Environment(StrEnum):
    DEVELOPMENT = "development"
    PRODUCTION = "production"


class Settings(BaseSettings):
    """Central configuration for the SatuPintu application.

    Environment variables are loaded from a ``.env`` file when present.
    App-specific keys are prefixed with ``SATUPINTU_``; provider keys
    use their standard names (configured via ``validation_alias``).
    """

    model_config = SettingsConfigDict(
        env_prefix="SATUPINTU_",
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
        case_sensitive=False,
        populate_by_name=True,
    )

    # ── App ────────────────────────────────────────────────────────────
    env: Literal["development", "production"] = "development"
    public_base_url: str = Field(default="http://localhost:8000", validation_alias="APP_URL")
    timezone: str = "Asia/Jakarta"
    ticket_prefix: str = "SP"
    service_city: str = "Bandung"

    # ── Auth ───────────────────────────────────────────────────────────
    jwt_secret: str = Field(default="change-me-in-production", validation_alias="JWT_SECRET")
    jwt_algorithm: str = "HS256"
    jwt_expiry_hours: int = 24
    auth_cookie_name: str = "auth_token"
    internal_api_key: str = Field(default="", validation_alias="INTERNAL_API_KEY")
    vapi_webhook_secret: str = Field(default="", validation_alias="VAPI_WEBHOOK_SECRET")

    # ── GCP / Vertex AI ────────────────────────────────────────────────
    gcp_project_id: str = Field(default="", validation_alias="GCP_PROJECT_ID")
    vertex_ai_model: str = Field(default="gemini-2.0-flash", validation_alias="VERTEX_AI_MODEL")
    vertex_ai_location: str = Field(default="asia-southeast2", validation_alias="VERTEX_AI_LOCATION")

    # ── Geocoding ──────────────────────────────────────────────────────
    google_maps_api_key: str = Field(default="", validation_alias="GOOGLE_MAPS_API_KEY")
    nominatim_url: str = "https://nominatim.openstreetmap.org"
    nominatim_user_agent: str = "SatuPintu/1.0 (contact@satupintu.id)"
    geocoder_timeout_seconds: float = 8.0
    # Kota Bandung bounding box
    coverage_south: float = -6.97
    coverage_north: float = -6.85
    coverage_west: float = 107.55
    coverage_east: float = 107.70

    # ── Notifications ──────────────────────────────────────────────────
    fonnte_token: str = Field(default="", validation_alias="FONNTE_TOKEN")
    fonnte_url: str = "https://api.fonnte.com/send"
    twilio_account_sid: str = Field(default="", validation_alias="TWILIO_ACCOUNT_SID")
    twilio_auth_token: str = Field(default="", validation_alias="TWILIO_AUTH_TOKEN")
    twilio_phone_number: str = Field(default="", validation_alias="TWILIO_PHONE_NUMBER")
    whatsapp_test_number: str = Field(default="", validation_alias="WA_TEST_NUMBER")
    notify_channel: Literal["whatsapp", "sms"] = "whatsapp"
    otp_channel: Literal["whatsapp", "sms"] = "sms"
    notification_max_attempts: int = Field(default=3, ge=1)
    notification_timeout_seconds: float = 10.0

    # ── Voice ──────────────────────────────────────────────────────────
    emergency_transfer_number: str = Field(default="+62112", validation_alias="EMERGENCY_TRANSFER_NUMBER")
    voice_record_max_seconds: int = 120

    # ── Ticket rules ───────────────────────────────────────────────────
    allow_reopen: bool = True
    photo_host_suffixes: list[str] = Field(default_factory=lambda: [".supabase.co", ".supabase.in"])
    otp_validity_minutes: int = 30
    otp_cooldown_seconds: int = 60
    feedback_max_length: int = 1000

    # ── Datastore ──────────────────────────────────────────────────────
    store_backend: Literal["memory", "postgrest"] = "memory"
    supabase_url: str = Field(default="", validation_alias="SUPABASE_URL")
    supabase_service_role_key: str = Field(default="", validation_alias="SUPABASE_SERVICE_ROLE_KEY")

    # ── Redis ──────────────────────────────────────────────────────────
    redis_url: str = Field(default="", validation_alias="REDIS_URL")

    # ── API ────────────────────────────────────────────────────────────
    api_host: str = Field(default="0.0.0.0", validation_alias="API_HOST")
    api_port: int = Field(default=8000, validation_alias="API_PORT")
    cors_origins: str = Field(default="", validation_alias="CORS_ORIGINS")

    # ── Rate Limiting ──────────────────────────────────────────────────
    rate_limit_per_minute: int = Field(default=120, validation_alias="RATE_LIMIT_PER_MINUTE")
    otp_rate_limit_per_minute: int = 5
    trusted_proxy_count: int = Field(
        default=1,
        ge=0,
        validation_alias="TRUSTED_PROXY_COUNT",
    )

    # ── Logging ────────────────────────────────────────────────────────
    log_level: str = Field(default="INFO", validation_alias="LOG_LEVEL")
    log_format: str = Field(default="json", validation_alias="LOG_FORMAT")

    # ── Cache TTLs (seconds) ───────────────────────────────────────────
    stats_cache_ttl: int = 30
    tickets_list_cache_ttl: int = 10
    ticket_detail_cache_ttl: int = 60
    analytics_cache_ttl: int = 300
    map_cache_ttl: int = 60

    # ── Derived Properties ─────────────────────────────────────────────

    @property
    def is_production(self) -> bool:
        return self.env == Environment.PRODUCTION

    @property
    def cors_origin_list(self) -> list[str]:
        return [origin.strip() for origin in self.cors_origins.split(",") if origin.strip()]

    def track_url(self, ticket_id: str) -> str:
        return f"{self.public_base_url.rstrip('/')}/track/{ticket_id}"


# Module-level singleton: import ``settings`` everywhere.
settings = Settings()
