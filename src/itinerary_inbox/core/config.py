from __future__ import annotations

from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    model_config = SettingsConfigDict(env_file=".env", extra="ignore")

    environment: str = "dev"
    base_url: str = "http://localhost:8000"

    database_url: str = "sqlite:///./itinerary_inbox.db"
    redis_url: str = "redis://localhost:6379/0"

    openai_api_key: str | None = None
    openai_base_url: str = "https://api.openai.com/v1"
    openai_model: str = "gpt-4o-mini"
    extraction_timeout_seconds: float = 30.0
    extraction_max_chars: int = 8000
    extraction_context_trips: int = 10

    push_api_url: str = "https://exp.host/--/api/v2/push/send"
    push_timeout_seconds: float = 10.0

    # Shared inbox local part; the user token must then come from plus-addressing.
    forwarding_sentinel: str = "plans"
    forwarding_domain: str = "triptrack.ai"
    forwarding_token_length: int = 8

    content_hash_body_chars: int = 500
    claim_stale_after_seconds: int = 30 * 60
    claim_reforward_cooldown_seconds: int = 10 * 60

    trip_match_buffer_days: int = 3
    deleted_trip_window_days: int = 7
    deleted_trip_retention_days: int = 180
    trip_creation_jitter_min_ms: int = 100
    trip_creation_jitter_max_ms: int = 500
    past_trip_cutoff_days: int = 7

    scan_extra_travel_domains: list[str] = []
    scan_min_body_chars: int = 50

    init_profile_email: str | None = None
    init_profile_token: str | None = None


settings = Settings()
