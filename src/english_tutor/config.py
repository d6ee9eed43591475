"""Application settings loaded from environment variables and .env."""
from functools import lru_cache
from pathlib import Path

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Tutor settings. Every field can be overridden with ENGLISH_TUTOR_<NAME>."""

    model_config = SettingsConfigDict(
        env_prefix="ENGLISH_TUTOR_",
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
    )

    db_path: str = Field(
        default=str(Path.home() / ".english_tutor" / "tutor.db"),
        description="SQLite database file",
    )
    user_id: str = Field(default="local_user", description="Learner the CLI acts for")
    log_level: str = Field(default="WARNING", description="loguru level for stderr")

    # Vocabulary review
    session_limit: int = Field(default=20, ge=1)
    learning_steps: list[int] = Field(default=[1, 10], description="Learning ladder in minutes")
    graduating_interval: int = Field(default=1, ge=1)
    easy_interval: int = Field(default=4, ge=1)
    min_ease_factor: float = 1.3
    max_ease_factor: float = 3.0

    # Grammar
    practice_pass_threshold: float = Field(default=0.7, ge=0.0, le=1.0)

    # Placement test
    start_level: str = "A2"
    min_questions: int = Field(default=50, ge=1)
    max_questions: int = Field(default=70, ge=1)
    stability_window: int = Field(default=10, ge=1)
    move_up_threshold: float = 0.7
    move_down_threshold: float = 0.4


@lru_cache(maxsize=1)
def get_settings() -> Settings:
    """Get cached settings instance."""
    return Settings()
