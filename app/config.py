"""Application configuration management"""

import json
from functools import lru_cache
from pathlib import Path
from typing import Annotated, Any, List
from urllib.parse import quote_plus

from pydantic import Field, field_validator
from pydantic_settings import BaseSettings, NoDecode

# Base directory: repository root
_BASE_DIR = Path(__file__).resolve().parent.parent


def _split_list(value: Any) -> Any:
    """
    Accept JSON array or comma-separated values from env.

    Examples:
        CORS_ORIGINS=["http://localhost:3000","http://example.com"]
        REQUIRED_BADGES=Speaker,Organizer,Mentor
    """
    if not isinstance(value, str):
        return value

    raw = value.strip()
    if not raw:
        return []

    try:
        parsed = json.loads(raw)
    except json.JSONDecodeError:
        parsed = None

    if isinstance(parsed, str):
        return [parsed]
    if isinstance(parsed, list):
        return [str(item).strip() for item in parsed if str(item).strip()]

    return [item.strip() for item in raw.split(",") if item.strip()]


class Settings(BaseSettings):
    """Application settings with environment variable support"""

    # Application
    APP_NAME: str = "Campus Events Service"
    APP_VERSION: str = "1.0.0"
    DEBUG: bool = False
    ENVIRONMENT: str = "development"

    # Server
    HOST: str = "0.0.0.0"
    PORT: int = 4003
    WORKERS: int = 4

    # Database (PostgreSQL)
    DATABASE_URL: str = ""
    POSTGRES_HOST: str = "localhost"
    POSTGRES_PORT: int = 5432
    POSTGRES_DB: str = "campus_events"
    POSTGRES_USER: str = "events"
    POSTGRES_PASSWORD: str = "events"
    DATABASE_POOL_SIZE: int = 30
    DATABASE_MAX_OVERFLOW: int = 20

    # Token verification
    SECRET_KEY: str = "dev-secret-key-change-in-production-use-openssl-rand-hex-32"
    ALGORITHM: str = "HS256"
    JWKS_URL: str = ""
    JWT_ALGORITHMS: Annotated[List[str], NoDecode] = ["RS256"]
    JWT_ISSUER: str = ""
    JWT_AUDIENCE: str = ""
    JWKS_CACHE_SECONDS: int = 300

    # Upstream services
    AUTH_BASE_URL: str = "http://localhost:4001"
    PROFILE_BASE_URL: str = "http://localhost:4002"
    SERVICE_TOKEN: str = ""
    UPSTREAM_TIMEOUT_SECONDS: float = 5.0

    # Event creation eligibility
    REQUIRED_BADGES: Annotated[List[str], NoDecode] = Field(default_factory=list)
    REQUIRED_BADGE_COUNT: int = 8
    REQUIRED_BADGE_CATEGORIES: int = 4

    # Cache
    CACHE_DISABLED: bool = False
    CACHE_MAX_ENTRIES: int = 10000
    SCOPE_CACHE_TTL_SECONDS: int = 300
    DIRECTORY_CACHE_TTL_SECONDS: int = 600

    # Moderation / escalation
    DEFAULT_ESCALATION_DELAY_HOURS: int = 72
    RUN_EMBEDDED_ESCALATION_WORKER: bool = True
    ESCALATION_SWEEP_INTERVAL_SECONDS: float = 300.0
    ESCALATION_SWEEP_BATCH_SIZE: int = 100

    # Registration
    # READ COMMITTED: PostgreSQL re-checks the guarded UPDATE after a competing commit
    REGISTRATION_ISOLATION_LEVEL: str = "READ COMMITTED"
    REGISTRATION_MAX_RETRIES: int = 5
    REGISTRATION_RETRY_DEADLINE_SECONDS: float = 5.0

    # Logging
    LOG_LEVEL: str = "INFO"
    LOG_FILE: str = ""

    # CORS
    CORS_ORIGINS: Annotated[List[str], NoDecode] = ["http://localhost:3000"]

    # Database initialization discipline
    DB_INIT_MODE: str = "migrate"  # migrate | create_all | off
    DB_REQUIRE_HEAD: bool = True

    class Config:
        env_file = ".env"
        case_sensitive = True

    @field_validator("CORS_ORIGINS", "REQUIRED_BADGES", mode="before")
    @classmethod
    def _parse_list(cls, value: Any) -> Any:
        return _split_list(value)

    @field_validator("JWT_ALGORITHMS", mode="before")
    @classmethod
    def _parse_algorithms(cls, value: Any) -> Any:
        parsed = _split_list(value)
        if isinstance(parsed, list):
            return [alg.upper() for alg in parsed]
        return parsed

    def get_log_file(self) -> str:
        p = self.LOG_FILE
        if not p or p.startswith(".."):
            return str(_BASE_DIR / "logs" / "app.log")
        return p

    def get_database_url(self) -> str:
        """
        Resolve database URL.

        Priority:
          1) Explicit DATABASE_URL
          2) Construct from POSTGRES_* parts with safe URL encoding
        """
        if self.DATABASE_URL:
            return self.DATABASE_URL

        user = quote_plus(self.POSTGRES_USER)
        password = quote_plus(self.POSTGRES_PASSWORD)
        return (
            f"postgresql://{user}:{password}"
            f"@{self.POSTGRES_HOST}:{self.POSTGRES_PORT}/{self.POSTGRES_DB}"
        )

    def validate_security_settings(self) -> None:
        """
        Validate runtime security defaults in production.

        Raises:
            ValueError: If insecure defaults are detected.
        """
        if self.ENVIRONMENT.lower() != "production":
            return

        insecure_secret_markers = {
            "",
            "dev-secret-key-change-in-production-use-openssl-rand-hex-32",
            "change-me",
        }

        if not self.JWKS_URL and (
            self.SECRET_KEY in insecure_secret_markers or len(self.SECRET_KEY) < 32
        ):
            raise ValueError(
                "Insecure SECRET_KEY for production. Configure JWKS_URL or a strong shared key."
            )

        if self.JWKS_URL and not (self.JWT_ISSUER and self.JWT_AUDIENCE):
            raise ValueError("JWT_ISSUER and JWT_AUDIENCE are required when JWKS_URL is set.")


@lru_cache()
def get_settings() -> Settings:
    """Get cached settings instance"""
    return Settings()


settings = get_settings()
