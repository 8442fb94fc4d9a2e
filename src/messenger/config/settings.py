from pydantic_settings import BaseSettings
from pydantic import ConfigDict, field_validator
from pathlib import Path
from typing import Literal
from functools import lru_cache
from ..validators.config_validators import blank_to_none, normalize_case


class Settings(BaseSettings):
    """
    Messaging service settings loaded from environment.
    """

    # Environment
    ENV: Literal["development", "testing", "staging", "production"] = "development"

    # Database configuration (Postgres is optional; SQLite is used when unset)
    POSTGRES_DRIVER: str = "psycopg"
    POSTGRES_USERNAME: str | None = None
    POSTGRES_PASSWORD: str | None = None
    POSTGRES_HOST: str | None = None
    POSTGRES_PORT: int = 5432
    POSTGRES_DB: str | None = None
    SQLITE_PATH: str = "./messenger.db"

    # Test database configuration
    TEST_POSTGRES_DB: str | None = None
    TESTING: bool = False

    # SQLAlchemy
    SQLALCHEMY_ECHO: bool = False

    # Logging
    LOG_LEVEL: Literal["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"] = "INFO"
    LOG_FORMAT: Literal["json", "text"] = "json"
    LOG_TO_STDOUT: bool = True
    LOG_DIR: Path = Path("/var/log/messenger")
    LOG_MAX_BYTES: int = 10_000_000  # 10 MB
    LOG_BACKUP_COUNT: int = 5
    LOG_USE_QUEUE: bool = False
    LOG_QUEUE_MAX_SIZE: int = 0
    LOG_QUEUE_BLOCKING: bool = False
    ENABLE_SQL_LOGGING: bool = False

    # Realtime transport
    REALTIME_BACKEND: Literal["memory", "redis"] = "memory"
    REDIS_URL: str | None = None
    REALTIME_RETRY_INITIAL_DELAY: float = 0.5
    REALTIME_RETRY_MAX_DELAY: float = 30.0

    # Messaging behaviour
    FETCH_TIMEOUT_SECONDS: float = 10.0
    MESSAGE_PREVIEW_LENGTH: int = 100
    MAX_MESSAGE_LENGTH: int = 5000
    AUTO_SCROLL_NEAR_BOTTOM_PX: int = 120
    UNREAD_POLL_INTERVAL_SECONDS: float = 30.0

    # --- Derived settings ---
    @property
    def DATABASE_URL(self) -> str:
        """
        Return the database URL for the current environment.

        - With Postgres credentials configured, the regular database is used, or
          `TEST_POSTGRES_DB` when `TESTING=True` and it is provided.
        - Without Postgres credentials, an aiosqlite file database at
          `SQLITE_PATH` is used so the service runs with no external server.

        Returns:
            str: The constructed database connection URL.
        """
        if not (self.POSTGRES_HOST and self.POSTGRES_USERNAME and self.POSTGRES_DB):
            return f"sqlite+aiosqlite:///{self.SQLITE_PATH}"

        db_name = self.POSTGRES_DB
        if self.TESTING and self.TEST_POSTGRES_DB:
            db_name = self.TEST_POSTGRES_DB

        return (
            f"postgresql+{self.POSTGRES_DRIVER}://"
            f"{self.POSTGRES_USERNAME}:{self.POSTGRES_PASSWORD}@"
            f"{self.POSTGRES_HOST}:{self.POSTGRES_PORT}/"
            f"{db_name}"
        )

    # --- Validators ---
    @field_validator("LOG_LEVEL", mode="before")
    def normalize_log_level(cls, v: str | None) -> str | None:
        """
        Normalize LOG_LEVEL to uppercase before Literal validation.

        Args:
            cls: The class where this validator is defined.
            v (str | None): The raw input value for LOG_LEVEL.

        Returns:
            str | None: The uppercase log level string, or None if input was None.
        """
        return normalize_case(v, "upper")

    @field_validator("LOG_FORMAT", "REALTIME_BACKEND", mode="before")
    def normalize_lowercase(cls, v: str | None) -> str | None:
        """
        Normalize LOG_FORMAT and REALTIME_BACKEND to lowercase.
        """
        return normalize_case(v, "lower")

    @field_validator("REDIS_URL", "POSTGRES_HOST", "POSTGRES_USERNAME", "POSTGRES_DB", mode="before")
    def empty_as_unset(cls, v: str | None) -> str | None:
        return blank_to_none(v)

    model_config = ConfigDict(
        # .env next to the package root (src/messenger/.env)
        env_file=str(Path(__file__).parent.parent / ".env"),
        env_file_encoding="utf-8",
        extra="ignore",
    )


@lru_cache()
def get_settings() -> Settings:
    return Settings()
