"""Configuration management with environment variable support."""

import os
import secrets
from dataclasses import dataclass, field
from decimal import Decimal


def _parse_cors_origins() -> list[str]:
    """Parse CORS_ORIGINS environment variable."""
    origins = os.getenv("CORS_ORIGINS", "http://localhost:8000")
    return [o.strip() for o in origins.split(",") if o.strip()]


def _env_bool(name: str, default: str) -> bool:
    """Read a true/false environment flag."""
    return os.getenv(name, default).lower() == "true"


@dataclass(frozen=True)
class CORSConfig:
    """CORS configuration."""

    allowed_origins: list[str] = field(default_factory=_parse_cors_origins)
    allow_credentials: bool = True
    allow_methods: list[str] = field(default_factory=lambda: ["*"])
    allow_headers: list[str] = field(default_factory=lambda: ["*"])


@dataclass(frozen=True)
class RateLimitConfig:
    """Rate limiting configuration."""

    enabled: bool = field(default_factory=lambda: _env_bool("RATE_LIMIT_ENABLED", "true"))
    requests_per_minute: int = field(
        default_factory=lambda: int(os.getenv("RATE_LIMIT_RPM", "60"))
    )


@dataclass(frozen=True)
class SecurityConfig:
    """Security configuration."""

    secret_key: str = field(
        default_factory=lambda: os.getenv("SECRET_KEY", secrets.token_urlsafe(32))
    )


@dataclass(frozen=True)
class RedisConfig:
    """Redis connection configuration."""

    host: str = field(default_factory=lambda: os.getenv("REDIS_HOST", "localhost"))
    port: int = field(default_factory=lambda: int(os.getenv("REDIS_PORT", "6379")))
    db: int = field(default_factory=lambda: int(os.getenv("REDIS_DB", "0")))
    password: str | None = field(default_factory=lambda: os.getenv("REDIS_PASSWORD"))

    @property
    def url(self) -> str:
        """Build Redis connection URL."""
        auth = f":{self.password}@" if self.password else ""
        return f"redis://{auth}{self.host}:{self.port}/{self.db}"


@dataclass(frozen=True)
class TableConfig:
    """Default table configuration."""

    num_decks: int = field(default_factory=lambda: int(os.getenv("BJ_NUM_DECKS", "6")))
    penetration_percent: int = field(
        default_factory=lambda: int(os.getenv("BJ_PENETRATION_PERCENT", "75"))
    )
    random_cut_card: bool = field(default_factory=lambda: _env_bool("BJ_RANDOM_CUT_CARD", "false"))
    min_bet: Decimal = field(default_factory=lambda: Decimal(os.getenv("BJ_MIN_BET", "5")))
    bet_unit: Decimal = field(default_factory=lambda: Decimal(os.getenv("BJ_BET_UNIT", "5")))
    starting_bankroll: Decimal = field(
        default_factory=lambda: Decimal(os.getenv("BJ_STARTING_BANKROLL", "1000"))
    )
    default_wager: Decimal = field(
        default_factory=lambda: Decimal(os.getenv("BJ_DEFAULT_WAGER", "10"))
    )
    dealer_hits_soft_17: bool = field(default_factory=lambda: _env_bool("BJ_HIT_SOFT_17", "true"))
    surrender_allowed: bool = field(default_factory=lambda: _env_bool("BJ_SURRENDER", "false"))
    max_split_hands: int = field(
        default_factory=lambda: int(os.getenv("BJ_MAX_SPLIT_HANDS", "4"))
    )
    ledger_max_hands: int = field(
        default_factory=lambda: int(os.getenv("BJ_LEDGER_MAX_HANDS", "2000"))
    )


@dataclass(frozen=True)
class LoggingConfig:
    """Logging configuration."""

    level: str = field(default_factory=lambda: os.getenv("LOG_LEVEL", "WARNING").upper())


@dataclass(frozen=True)
class AppConfig:
    """Application configuration."""

    debug: bool = field(default_factory=lambda: _env_bool("DEBUG", "false"))
    host: str = field(default_factory=lambda: os.getenv("HOST", "0.0.0.0"))
    port: int = field(default_factory=lambda: int(os.getenv("PORT", "8000")))
    session_ttl: int = field(
        default_factory=lambda: int(os.getenv("BJ_SESSION_TTL", "3600"))
    )  # seconds

    redis: RedisConfig = field(default_factory=RedisConfig)
    table: TableConfig = field(default_factory=TableConfig)
    logging: LoggingConfig = field(default_factory=LoggingConfig)
    cors: CORSConfig = field(default_factory=CORSConfig)
    rate_limit: RateLimitConfig = field(default_factory=RateLimitConfig)
    security: SecurityConfig = field(default_factory=SecurityConfig)


# Global configuration instance
config = AppConfig()
