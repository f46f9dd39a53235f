"""Application configuration via Pydantic Settings."""

from typing import Dict, List, Tuple

from pydantic import model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Global settings loaded from environment variables and `.env`."""

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=True,
        extra="ignore",
    )

    # App
    ENVIRONMENT: str = "development"
    LOG_LEVEL: str = "INFO"
    LOG_JSON: bool = False

    # Listing store
    DATABASE_URL: str = "sqlite+aiosqlite:///./wholesale.db"

    @model_validator(mode="after")
    def fix_database_url(self) -> "Settings":
        """Hosted Postgres hands out postgresql:// but the async engine needs a driver."""
        url = self.DATABASE_URL
        if url.startswith("postgresql://"):
            self.DATABASE_URL = url.replace("postgresql://", "postgresql+asyncpg://", 1)
        elif url.startswith("postgres://"):
            self.DATABASE_URL = url.replace("postgres://", "postgresql+asyncpg://", 1)
        return self

    # Platforms
    ENABLED_PLATFORMS: str = "alibaba,made_in_china"
    INDIAMART_SESSION_COOKIE: str = ""

    # Rate buckets: "alibaba-detail=30:0.5,alibaba-search=10:0.2"
    RATE_BUCKETS: str = ""
    DEFAULT_BUCKET_CAPACITY: float = 10.0
    DEFAULT_BUCKET_REFILL_RATE: float = 0.5  # tokens per second

    # Detail classification
    MIN_ATTRIBUTES_FOR_CORRECT: int = 5
    REQUIRE_TIER_FOR_CORRECT: bool = True
    WEAK_SIGNALS: str = "attributes,price_tiers,hero_image,supplier"

    # Fetching
    HEADLESS_DEFAULT: bool = True
    BROWSER_CONCURRENCY: int = 2
    FETCH_TIMEOUT_SECONDS: float = 45.0
    TRANSIENT_BACKOFF_MS: str = "300,900"
    SEARCH_PAGE_CAP: int = 5
    DETAIL_MEMO_TTL_SECONDS: float = 600.0

    # Audit & heal
    HEAL_CONCURRENCY: int = 4
    HEAL_BATCH_SIZE: int = 20
    HEAL_INCLUDE_ACCEPTABLE: bool = False
    HEAL_INTERVAL_MINUTES: int = 60
    HEAL_MAX_CONSECUTIVE_BLOCKS: int = 5
    HEAL_BLOCK_COOLDOWN_SECONDS: float = 300.0

    # Image cache
    IMAGE_CACHE_DIR: str = "./cache/images"
    MAX_IMAGE_BYTES: int = 5 * 1024 * 1024
    MIN_IMAGE_BYTES: int = 1000
    BAD_IMAGE_HASHES: str = ""  # Comma-separated SHA1 hex digests

    def get_enabled_platforms(self) -> List[str]:
        """Parse ENABLED_PLATFORMS into a list of platform identifiers."""
        return _split_csv(self.ENABLED_PLATFORMS)

    def get_weak_signals(self) -> Tuple[str, ...]:
        return tuple(_split_csv(self.WEAK_SIGNALS))

    def get_bad_image_hashes(self) -> List[str]:
        return [h.lower() for h in _split_csv(self.BAD_IMAGE_HASHES)]

    def get_transient_backoff(self) -> Tuple[float, ...]:
        """Parse TRANSIENT_BACKOFF_MS into delays in seconds."""
        return tuple(float(ms) / 1000.0 for ms in _split_csv(self.TRANSIENT_BACKOFF_MS))

    def get_rate_buckets(self) -> Dict[str, Tuple[float, float]]:
        """Parse RATE_BUCKETS into ``{name: (capacity, refill_rate)}``.

        Raises:
            ValueError: If an entry is not of the form ``name=capacity:rate``
        """
        buckets: Dict[str, Tuple[float, float]] = {}
        for entry in _split_csv(self.RATE_BUCKETS):
            name, sep, spec = entry.partition("=")
            capacity, colon, rate = spec.partition(":")
            if not sep or not colon or not name.strip():
                raise ValueError(f"Invalid RATE_BUCKETS entry: {entry!r}")
            buckets[name.strip()] = (float(capacity), float(rate))
        return buckets


def _split_csv(value: str) -> List[str]:
    if not value:
        return []
    return [part.strip() for part in value.split(",") if part.strip()]


settings = Settings()
