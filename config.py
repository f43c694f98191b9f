"""
Configuration settings for the adaptive memory scheduler.

Uses Pydantic Settings for environment variable management with .env file support.
All variables carry the UAMS_ prefix (e.g. UAMS_TARGET_RETENTION=0.85).
"""
from __future__ import annotations

from functools import lru_cache
from typing import Literal

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Application settings loaded from environment variables."""

    model_config = SettingsConfigDict(
        env_prefix="UAMS_",
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
    )

    # ========================================
    # Scheduling
    # ========================================
    target_retention: float = Field(
        default=0.9,
        gt=0.0,
        lt=1.0,
        description="Recall probability targeted when computing review intervals",
    )
    algorithm_version: str = Field(
        default="uams-3.0",
        description="Version tag written to every adaptation log entry",
    )

    # ========================================
    # Session
    # ========================================
    history_window: int = Field(
        default=10,
        ge=3,
        description="Recent responses kept on the session for load analysis",
    )
    performance_window: int = Field(
        default=5,
        ge=1,
        description="Recent responses averaged for dynamic queue adjustment",
    )
    session_dir: str = Field(
        default="data/sessions",
        description="Directory for persisted session state (JSON)",
    )

    # ========================================
    # Queue Buffers
    # ========================================
    review_queue_size: int = Field(
        default=15,
        ge=1,
        description="Cards in the front-of-line review queue",
    )
    lookahead_size: int = Field(
        default=10,
        ge=1,
        description="Cards in the lookahead (primary pull) buffer",
    )
    emergency_size: int = Field(
        default=5,
        ge=0,
        description="Easy cards held back for fatigue crises",
    )
    challenge_size: int = Field(
        default=5,
        ge=0,
        description="Hard cards held back for high-momentum injection",
    )
    refresh_threshold: int = Field(
        default=3,
        ge=0,
        description="Refill the lookahead from the review queue below this many cards",
    )

    # ========================================
    # Parameter Optimization
    # ========================================
    optimizer_min_data_points: int = Field(
        default=50,
        ge=1,
        description="Minimum reviews required to fit personal FSRS weights",
    )
    optimizer_max_iterations: int = Field(
        default=1000,
        ge=1,
        description="Gradient descent iteration cap",
    )

    # ========================================
    # Logging
    # ========================================
    log_level: Literal["DEBUG", "INFO", "WARNING", "ERROR"] = Field(
        default="INFO",
        description="Logging verbosity level",
    )
    log_file: str | None = Field(
        default=None,
        description="Log file path (None for stderr only)",
    )

    def get_queue_config(self) -> dict[str, int]:
        """Get queue buffer sizes as a dictionary."""
        return {
            "review_queue_size": self.review_queue_size,
            "lookahead_size": self.lookahead_size,
            "emergency_size": self.emergency_size,
            "challenge_size": self.challenge_size,
        }


@lru_cache(maxsize=1)
def get_settings() -> Settings:
    """Get cached settings instance."""
    return Settings()
