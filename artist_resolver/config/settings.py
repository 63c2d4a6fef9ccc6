"""Application settings loaded from environment variables via pydantic-settings.

Values come from (highest priority first):

  1. Environment variables, e.g. ``MIN_CONFIDENCE=0.8``
  2. A ``.env`` file in the working directory
  3. ``config/config.yaml`` (see :mod:`artist_resolver.config.loader`)
  4. The defaults below

Every numeric policy knob of the resolver (confidence threshold, tier
weights, breaker thresholds, rate limits) lives here so deployments tune
them without code changes.
"""

from pydantic import Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

from artist_resolver.models.artist import AliasTier

_FANOUT_MODES = ("first_confident", "all_complete")
_STORE_BACKENDS = ("memory", "sqlite")


class Settings(BaseSettings):
    """Artist resolver settings.

    Environment variables override defaults. Loaded from .env file when present.
    """

    model_config = SettingsConfigDict(env_file=".env", env_file_encoding="utf-8", extra="ignore")

    # === Matching ===
    min_confidence: float = Field(default=0.7, ge=0.0, le=1.0)
    tier_weight_primary: float = Field(default=1.0, ge=0.0, le=1.0)
    tier_weight_credited: float = Field(default=0.9, ge=0.0, le=1.0)
    tier_weight_other: float = Field(default=0.8, ge=0.0, le=1.0)
    # First entry is the primary authority; ties go to the earlier entry.
    authority_priority: list[str] = Field(
        default_factory=lambda: ["musicbrainz", "discogs", "spotify", "isni"]
    )
    search_limit: int = Field(default=10, ge=1, le=100)
    suggestion_count: int = Field(default=3, ge=0, le=25)

    # === Orchestration ===
    fanout_mode: str = "all_complete"
    fanout_timeout_seconds: float = Field(default=10.0, gt=0)
    source_timeout_seconds: float = Field(default=10.0, gt=0)
    enrichment_enabled: bool = True
    batch_concurrency: int = Field(default=8, ge=1)

    # === Circuit breaker (applied per authority) ===
    breaker_failure_threshold: int = Field(default=5, ge=1)
    breaker_window_seconds: float = Field(default=60.0, gt=0)
    breaker_open_timeout_seconds: float = Field(default=30.0, gt=0)
    breaker_backoff_multiplier: float = Field(default=2.0, ge=1.0)
    breaker_max_open_timeout_seconds: float = Field(default=300.0, gt=0)

    # === Rate limits (requests per second, per authority) ===
    musicbrainz_rate_limit: float = Field(default=1.0, gt=0)
    discogs_rate_limit: float = Field(default=1.0, gt=0)   # 60 req/min
    isni_rate_limit: float = Field(default=1.0, gt=0)
    spotify_rate_limit: float = Field(default=10.0, gt=0)
    rate_limit_retries: int = Field(default=3, ge=0)
    rate_limit_max_backoff_seconds: float = Field(default=30.0, gt=0)

    # === Query cache ===
    query_cache_ttl_seconds: int = Field(default=86400, ge=1)
    query_cache_max_size: int = Field(default=10000, ge=1)

    # === Canonical store ===
    store_backend: str = "memory"
    store_db_path: str = "data/artists.db"

    # === Authorities ===
    musicbrainz_app_name: str = "artist-resolver"
    musicbrainz_app_version: str = "0.1.0"
    musicbrainz_contact: str = ""
    discogs_user_token: str = ""
    isni_base_url: str = "https://isni.oclc.org/sru"
    spotify_base_url: str = "https://api.spotify.com/v1"
    spotify_access_token: str = ""

    # === App Config ===
    app_host: str = "0.0.0.0"
    app_port: int = 8000
    app_env: str = "development"
    log_level: str = "INFO"

    @field_validator("fanout_mode")
    @classmethod
    def _check_fanout_mode(cls, value: str) -> str:
        if value not in _FANOUT_MODES:
            raise ValueError(f"fanout_mode must be one of {_FANOUT_MODES}")
        return value

    @field_validator("store_backend")
    @classmethod
    def _check_store_backend(cls, value: str) -> str:
        if value not in _STORE_BACKENDS:
            raise ValueError(f"store_backend must be one of {_STORE_BACKENDS}")
        return value

    @field_validator("authority_priority")
    @classmethod
    def _check_priority(cls, value: list[str]) -> list[str]:
        cleaned = [v.strip().lower() for v in value if v.strip()]
        if not cleaned:
            raise ValueError("authority_priority must name at least one authority")
        if len(set(cleaned)) != len(cleaned):
            raise ValueError("authority_priority must not repeat an authority")
        return cleaned

    def tier_weights(self) -> dict[AliasTier, float]:
        return {
            AliasTier.PRIMARY: self.tier_weight_primary,
            AliasTier.CREDITED: self.tier_weight_credited,
            AliasTier.OTHER: self.tier_weight_other,
        }

    def rate_limit_for(self, authority: str) -> float:
        """Requests per second allowed for *authority* (1/s when unknown)."""
        return float(getattr(self, f"{authority}_rate_limit", 1.0))
