"""Configuration management for the workbook preview service.

This module provides centralized configuration using pydantic-settings.
All configuration options can be set via environment variables with the
WBP_ prefix, or via a .env file in the project root.

Environment Variables:
    WBP_SUPABASE_URL: Supabase project URL (required for storage access)
    WBP_SUPABASE_SERVICE_KEY: Supabase service role key
    WBP_STORAGE_BUCKET: Bucket holding completed models (default: completedmodels)
    WBP_SUBMISSIONS_TABLE: Table with submission metadata
        (default: questionnaire_responses)
    WBP_METADATA_COLUMNS: Comma-separated metadata columns returned with a preview
    WBP_STORAGE_LIST_LIMIT: Entries listed per submission folder (default: 5)
    WBP_FALLBACK_PATH_PATTERNS: Comma-separated object paths tried when listing
        finds nothing; ``{id}`` is replaced by the submission id
    WBP_MIN_MODEL_BYTES: Downloads at or below this size are ignored (default: 100)
    WBP_MAX_FILE_SIZE_MB: Maximum workbook size in MB (default: 25)
    WBP_RECALCULATION_ENABLED: Recalculate formulas before rendering (default: true)
    WBP_RECALC_MAX_ROWS: Rows handed to the formula engine (default: 200)
    WBP_RECALC_MAX_COLUMNS: Columns handed to the formula engine (default: 50)
    WBP_RECALC_TIMEOUT_SECONDS: Recalculation budget per request (default: 30)
    WBP_ENGINE_MAX_ROWS: Formula engine soft row cap (default: 10000)
    WBP_ENGINE_MAX_COLUMNS: Formula engine soft column cap (default: 1000)
    WBP_RENDER_MAX_ROWS: Rows rendered into the HTML table (default: 100)
    WBP_RENDER_MAX_COLUMNS: Columns rendered into the HTML table (default: 30)
    WBP_FORMULA_PLACEHOLDER: Text shown for formulas without a result (default: "")
    WBP_LOG_LEVEL: Logging level (default: INFO)
    WBP_DEBUG: Enable debug mode (default: false)
    WBP_CORS_ORIGINS: Comma-separated CORS origins (default: *)
    WBP_SERVER_HOST: Server bind host (default: 0.0.0.0)
    WBP_SERVER_PORT: Server bind port (default: 8000)
"""

import logging
from typing import Any

from pydantic import SecretStr, field_validator, model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Application settings loaded from environment variables.

    All settings can be configured via environment variables prefixed with WBP_
    or via a .env file. The Supabase service key uses SecretStr to prevent
    accidental logging.

    Example .env file:
        WBP_SUPABASE_URL=https://project.supabase.co
        WBP_SUPABASE_SERVICE_KEY=eyJ...
        WBP_RENDER_MAX_ROWS=150
    """

    model_config = SettingsConfigDict(
        env_prefix="WBP_",
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )

    # =========================================================================
    # Storage Settings
    # =========================================================================

    supabase_url: str | None = None
    """Supabase project URL."""

    supabase_service_key: SecretStr = SecretStr("")
    """Supabase service role key used for storage and table reads."""

    storage_bucket: str = "completedmodels"
    """Storage bucket containing the completed workbook models."""

    submissions_table: str = "questionnaire_responses"
    """Table holding one row per questionnaire submission."""

    metadata_columns: str = "company_name,modeling_approach,revenue_generation_selected"
    """Comma-separated submission columns returned as preview metadata."""

    storage_list_limit: int = 5
    """Number of entries listed from a submission folder."""

    fallback_path_patterns: str = "{id}/{id},{id}/{id}.xlsx,{id}/{id}.xlsm"
    """Object paths tried in order when the folder listing yields nothing."""

    min_model_bytes: int = 100
    """Downloads of at most this many bytes are treated as missing."""

    max_file_size_mb: int = 25
    """Maximum workbook size in megabytes."""

    # =========================================================================
    # Recalculation Settings
    # =========================================================================

    recalculation_enabled: bool = True
    """Recalculate formulas with the formula engine before rendering."""

    recalc_max_rows: int = 200
    """Rows of the used range handed to the formula engine."""

    recalc_max_columns: int = 50
    """Columns of the used range handed to the formula engine."""

    recalc_timeout_seconds: float | None = 30.0
    """Wall-clock budget for one recalculation; None disables the budget."""

    engine_max_rows: int = 10000
    """Rows the formula engine accepts per sheet."""

    engine_max_columns: int = 1000
    """Columns the formula engine accepts per sheet."""

    # =========================================================================
    # Rendering Settings
    # =========================================================================

    render_max_rows: int = 100
    """Rows rendered into the preview table."""

    render_max_columns: int = 30
    """Columns rendered into the preview table."""

    formula_placeholder: str = ""
    """Display text for formula cells without a computed result."""

    # =========================================================================
    # Logging Settings
    # =========================================================================

    log_level: str = "INFO"
    """Logging level: DEBUG, INFO, WARNING, ERROR, or CRITICAL."""

    debug: bool = False
    """Enable debug mode with additional logging and error details."""

    # =========================================================================
    # Server Settings
    # =========================================================================

    cors_origins: str = "*"
    """Comma-separated list of allowed CORS origins, or * for all."""

    server_host: str = "0.0.0.0"
    """Host address for the server to bind to."""

    server_port: int = 8000
    """Port for the server to listen on."""

    # =========================================================================
    # Validators
    # =========================================================================

    @field_validator("log_level")
    @classmethod
    def validate_log_level(cls, v: str) -> str:
        """Validate log level is a valid Python logging level."""
        valid_levels = {"DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"}
        upper_v = v.upper()
        if upper_v not in valid_levels:
            raise ValueError(
                f"Invalid log level: {v}. Must be one of: {', '.join(valid_levels)}"
            )
        return upper_v

    @field_validator(
        "recalc_max_rows",
        "recalc_max_columns",
        "render_max_rows",
        "render_max_columns",
        "engine_max_rows",
        "engine_max_columns",
        "storage_list_limit",
    )
    @classmethod
    def validate_positive_limit(cls, v: int) -> int:
        """Validate row, column and listing limits are positive."""
        if v < 1:
            raise ValueError(f"Limit must be at least 1, got {v}")
        return v

    @field_validator("recalc_timeout_seconds")
    @classmethod
    def validate_recalc_timeout(cls, v: float | None) -> float | None:
        """Validate the recalculation budget when one is set."""
        if v is not None and v <= 0:
            raise ValueError(f"recalc_timeout_seconds must be positive, got {v}")
        return v

    @field_validator("max_file_size_mb")
    @classmethod
    def validate_file_size(cls, v: int) -> int:
        """Validate file size is positive and reasonable."""
        if not 1 <= v <= 500:
            raise ValueError(f"max_file_size_mb must be between 1 and 500, got {v}")
        return v

    @field_validator("min_model_bytes")
    @classmethod
    def validate_min_model_bytes(cls, v: int) -> int:
        if v < 0:
            raise ValueError(f"min_model_bytes cannot be negative, got {v}")
        return v

    @field_validator("server_port")
    @classmethod
    def validate_port(cls, v: int) -> int:
        """Validate port is in valid range."""
        if not 1 <= v <= 65535:
            raise ValueError(f"server_port must be between 1 and 65535, got {v}")
        return v

    @model_validator(mode="after")
    def validate_engine_caps(self) -> "Settings":
        """Validate the recalculation bound fits inside the engine caps."""
        if self.recalc_max_rows > self.engine_max_rows:
            raise ValueError(
                f"recalc_max_rows ({self.recalc_max_rows}) must not exceed "
                f"engine_max_rows ({self.engine_max_rows})"
            )
        if self.recalc_max_columns > self.engine_max_columns:
            raise ValueError(
                f"recalc_max_columns ({self.recalc_max_columns}) must not exceed "
                f"engine_max_columns ({self.engine_max_columns})"
            )
        return self

    # =========================================================================
    # Computed Properties
    # =========================================================================

    @property
    def max_file_size_bytes(self) -> int:
        """Get max file size in bytes."""
        return self.max_file_size_mb * 1024 * 1024

    @property
    def cors_origins_list(self) -> list[str]:
        """Get CORS origins as a list."""
        if self.cors_origins == "*":
            return ["*"]
        return [origin.strip() for origin in self.cors_origins.split(",")]

    @property
    def metadata_columns_list(self) -> list[str]:
        """Get metadata columns as a list."""
        return [c.strip() for c in self.metadata_columns.split(",") if c.strip()]

    @property
    def fallback_path_patterns_list(self) -> list[str]:
        """Get fallback object path patterns as a list."""
        return [p.strip() for p in self.fallback_path_patterns.split(",") if p.strip()]

    @property
    def log_level_int(self) -> int:
        """Get log level as integer for logging module."""
        level: int = getattr(logging, self.log_level)
        return level

    @property
    def storage_configured(self) -> bool:
        """Whether both the Supabase URL and service key are set."""
        return bool(self.supabase_url) and bool(self.get_supabase_service_key())

    def get_supabase_service_key(self) -> str:
        """Get the Supabase service key value.

        Returns:
            The key string. Returns empty string if not set.

        Note:
            Use this method to access the key value. Direct access to
            supabase_service_key returns a SecretStr which prevents accidental
            logging.
        """
        return self.supabase_service_key.get_secret_value()

    def to_safe_dict(self) -> dict[str, Any]:
        """Convert settings to dictionary with sensitive values masked.

        Returns:
            Dictionary representation with the service key masked.
        """
        data = {
            "supabase_url": self.supabase_url,
            "supabase_service_key": (
                "***" if self.get_supabase_service_key() else "(not set)"
            ),
            "storage_bucket": self.storage_bucket,
            "submissions_table": self.submissions_table,
            "metadata_columns": self.metadata_columns,
            "storage_list_limit": self.storage_list_limit,
            "fallback_path_patterns": self.fallback_path_patterns,
            "min_model_bytes": self.min_model_bytes,
            "max_file_size_mb": self.max_file_size_mb,
            "recalculation_enabled": self.recalculation_enabled,
            "recalc_max_rows": self.recalc_max_rows,
            "recalc_max_columns": self.recalc_max_columns,
            "recalc_timeout_seconds": self.recalc_timeout_seconds,
            "engine_max_rows": self.engine_max_rows,
            "engine_max_columns": self.engine_max_columns,
            "render_max_rows": self.render_max_rows,
            "render_max_columns": self.render_max_columns,
            "formula_placeholder": self.formula_placeholder,
            "log_level": self.log_level,
            "debug": self.debug,
            "cors_origins": self.cors_origins,
            "server_host": self.server_host,
            "server_port": self.server_port,
        }
        return data


def validate_settings_on_startup(s: Settings) -> None:
    """Validate settings on application startup.

    This function performs additional validation that may require
    external checks or warnings for production readiness.

    Args:
        s: Settings instance to validate.
    """
    logger = logging.getLogger(__name__)

    if not s.storage_configured:
        logger.warning(
            "Supabase storage is not configured. Model downloads will fail. "
            "Set WBP_SUPABASE_URL and WBP_SUPABASE_SERVICE_KEY."
        )

    # Warn about permissive CORS in non-debug mode
    if s.cors_origins == "*" and not s.debug:
        logger.warning(
            "CORS is configured to allow all origins (*). "
            "Consider restricting this in production."
        )

    logger.info(
        f"Configuration loaded: log_level={s.log_level}, debug={s.debug}, "
        f"recalc_bound={s.recalc_max_rows}x{s.recalc_max_columns}, "
        f"render_bound={s.render_max_rows}x{s.render_max_columns}"
    )


# Create the global settings instance
settings = Settings()
