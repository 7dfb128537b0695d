"""Application configuration via pydantic-settings.

All config is sourced from environment variables. Never use os.getenv() directly.
"""

import json

from pydantic import field_validator, model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


class CompilerSettings(BaseSettings):
    """Graph compilation and query analysis settings."""

    model_config = SettingsConfigDict(env_prefix="")

    # Operator assumed for a fresh flow before the End node picks one
    default_operator: str = "association"

    # Row cap appended by add_safe_limit() when a query has no LIMIT
    safe_row_limit: int = 100_000
    # Estimated row count above which results are treated as large
    large_result_threshold: int = 10_000
    # More JOINs than this triggers an optimization suggestion
    join_warning_threshold: int = 2


class AnomalySettings(BaseSettings):
    """Execution budget handed to the anomaly-scoring collaborator."""

    model_config = SettingsConfigDict(env_prefix="")

    anomaly_threshold: float = 0.8
    anomaly_use_gpu: str = "auto"  # "auto" | "force" | "disable"
    anomaly_timeout_seconds: float = 60.0

    @field_validator("anomaly_use_gpu")
    @classmethod
    def validate_gpu_mode(cls, v: str) -> str:
        if v not in ("auto", "force", "disable"):
            raise ValueError(
                f"ANOMALY_USE_GPU must be one of auto/force/disable, got {v!r}"
            )
        return v

    @field_validator("anomaly_threshold")
    @classmethod
    def validate_threshold(cls, v: float) -> float:
        if not 0.0 <= v <= 1.0:
            raise ValueError("ANOMALY_THRESHOLD must be within [0, 1]")
        return v


class Settings(BaseSettings):
    """canvasql application settings.

    Environment variables are the single source of truth.
    Defaults are development-safe values only.
    """

    model_config = SettingsConfigDict(env_file=".env")

    app_env: str = "development"

    # Nested settings groups
    compiler: CompilerSettings = CompilerSettings()
    anomaly: AnomalySettings = AnomalySettings()

    # CORS
    cors_origins: list[str] = ["http://localhost:5173"]

    # Observability
    log_level: str = "INFO"
    metrics_enabled: bool = True
    # Longer `sql` log fields are clipped
    log_sql_max_chars: int = 2000

    @model_validator(mode="after")
    def _validate_log_level(self) -> "Settings":
        if self.log_level.upper() not in ("DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"):
            raise ValueError(f"LOG_LEVEL {self.log_level!r} is not a logging level")
        return self

    @field_validator("cors_origins", mode="before")
    @classmethod
    def parse_cors_origins(cls, v: str | list[str]) -> list[str]:
        if isinstance(v, str):
            return json.loads(v)
        return v


settings = Settings()
