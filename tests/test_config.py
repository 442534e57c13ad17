"""Tests for configuration management module."""

import logging
import os
from unittest.mock import patch

import pytest
from pydantic import SecretStr

from workbook_preview.config import Settings, validate_settings_on_startup


class TestSettings:
    """Tests for the Settings class."""

    def test_default_values(self) -> None:
        """Test default configuration values."""
        with patch.dict(os.environ, {}, clear=True):
            settings = Settings(_env_file=None)

        # Storage defaults
        assert settings.supabase_url is None
        assert settings.get_supabase_service_key() == ""
        assert settings.storage_bucket == "completedmodels"
        assert settings.submissions_table == "questionnaire_responses"
        assert settings.storage_list_limit == 5
        assert settings.min_model_bytes == 100
        assert settings.max_file_size_mb == 25

        # Bounds
        assert settings.recalculation_enabled is True
        assert settings.recalc_max_rows == 200
        assert settings.recalc_max_columns == 50
        assert settings.recalc_timeout_seconds == 30.0
        assert settings.render_max_rows == 100
        assert settings.render_max_columns == 30
        assert settings.formula_placeholder == ""

        # Logging and server defaults
        assert settings.log_level == "INFO"
        assert settings.debug is False
        assert settings.cors_origins == "*"
        assert settings.server_host == "0.0.0.0"
        assert settings.server_port == 8000

    def test_environment_variable_prefix(self) -> None:
        """Test that environment variables use the WBP_ prefix."""
        env_vars = {
            "WBP_RENDER_MAX_ROWS": "40",
            "WBP_STORAGE_BUCKET": "models",
            "WBP_LOG_LEVEL": "DEBUG",
        }
        with patch.dict(os.environ, env_vars, clear=True):
            settings = Settings(_env_file=None)

        assert settings.render_max_rows == 40
        assert settings.storage_bucket == "models"
        assert settings.log_level == "DEBUG"

    def test_render_and_recalc_bounds_are_independent(self) -> None:
        """Test the render viewport and recalculation bound are set separately."""
        env_vars = {
            "WBP_RENDER_MAX_COLUMNS": "12",
            "WBP_RECALC_MAX_COLUMNS": "80",
        }
        with patch.dict(os.environ, env_vars, clear=True):
            settings = Settings(_env_file=None)

        assert settings.render_max_columns == 12
        assert settings.recalc_max_columns == 80

    def test_secret_str_for_service_key(self) -> None:
        """Test that the service key uses SecretStr for security."""
        env_vars = {"WBP_SUPABASE_SERVICE_KEY": "service-secret"}
        with patch.dict(os.environ, env_vars, clear=True):
            settings = Settings(_env_file=None)

        assert isinstance(settings.supabase_service_key, SecretStr)
        assert settings.get_supabase_service_key() == "service-secret"
        assert "service-secret" not in str(settings.supabase_service_key)

    def test_storage_configured_requires_url_and_key(self) -> None:
        """Test storage_configured needs both URL and key."""
        with patch.dict(
            os.environ, {"WBP_SUPABASE_URL": "https://x.supabase.co"}, clear=True
        ):
            assert Settings(_env_file=None).storage_configured is False

        env_vars = {
            "WBP_SUPABASE_URL": "https://x.supabase.co",
            "WBP_SUPABASE_SERVICE_KEY": "key",
        }
        with patch.dict(os.environ, env_vars, clear=True):
            assert Settings(_env_file=None).storage_configured is True

    def test_max_file_size_bytes_property(self) -> None:
        """Test max_file_size_bytes computed property."""
        env_vars = {"WBP_MAX_FILE_SIZE_MB": "10"}
        with patch.dict(os.environ, env_vars, clear=True):
            settings = Settings(_env_file=None)

        assert settings.max_file_size_bytes == 10 * 1024 * 1024

    def test_list_properties(self) -> None:
        """Test comma separated settings are split and trimmed."""
        env_vars = {
            "WBP_CORS_ORIGINS": "https://example.com, https://api.example.com",
            "WBP_METADATA_COLUMNS": "company_name, modeling_approach",
            "WBP_FALLBACK_PATH_PATTERNS": "{id}/{id}.xlsx, models/{id}.xlsx",
        }
        with patch.dict(os.environ, env_vars, clear=True):
            settings = Settings(_env_file=None)

        assert settings.cors_origins_list == [
            "https://example.com",
            "https://api.example.com",
        ]
        assert settings.metadata_columns_list == ["company_name", "modeling_approach"]
        assert settings.fallback_path_patterns_list == [
            "{id}/{id}.xlsx",
            "models/{id}.xlsx",
        ]

    def test_cors_origins_list_wildcard(self) -> None:
        """Test CORS origins list with wildcard."""
        with patch.dict(os.environ, {"WBP_CORS_ORIGINS": "*"}, clear=True):
            settings = Settings(_env_file=None)

        assert settings.cors_origins_list == ["*"]

    def test_log_level_int_property(self) -> None:
        """Test log_level_int computed property."""
        for level_str, expected_int in [
            ("DEBUG", logging.DEBUG),
            ("WARNING", logging.WARNING),
            ("CRITICAL", logging.CRITICAL),
        ]:
            with patch.dict(os.environ, {"WBP_LOG_LEVEL": level_str}, clear=True):
                settings = Settings(_env_file=None)
            assert settings.log_level_int == expected_int, f"Failed for {level_str}"

    def test_to_safe_dict_masks_service_key(self) -> None:
        """Test to_safe_dict masks sensitive values."""
        env_vars = {"WBP_SUPABASE_SERVICE_KEY": "actual-secret"}
        with patch.dict(os.environ, env_vars, clear=True):
            settings = Settings(_env_file=None)

        safe_dict = settings.to_safe_dict()

        assert safe_dict["supabase_service_key"] == "***"
        assert "actual-secret" not in str(safe_dict)
        assert safe_dict["render_max_rows"] == 100

    def test_to_safe_dict_shows_not_set_for_empty_key(self) -> None:
        """Test to_safe_dict shows (not set) for an empty key."""
        with patch.dict(os.environ, {}, clear=True):
            settings = Settings(_env_file=None)

        assert settings.to_safe_dict()["supabase_service_key"] == "(not set)"


class TestSettingsValidation:
    """Tests for settings validation."""

    def test_lowercase_log_level_normalized(self) -> None:
        """Test lowercase log levels are normalized to uppercase."""
        with patch.dict(os.environ, {"WBP_LOG_LEVEL": "debug"}, clear=True):
            settings = Settings(_env_file=None)
            assert settings.log_level == "DEBUG"

    def test_invalid_log_level_raises_error(self) -> None:
        """Test invalid log level raises validation error."""
        with (
            patch.dict(os.environ, {"WBP_LOG_LEVEL": "INVALID"}, clear=True),
            pytest.raises(ValueError, match="Invalid log level"),
        ):
            Settings(_env_file=None)

    def test_limits_must_be_positive(self) -> None:
        """Test row and column limits must be at least 1."""
        for name in ("WBP_RENDER_MAX_ROWS", "WBP_RECALC_MAX_COLUMNS"):
            with (
                patch.dict(os.environ, {name: "0"}, clear=True),
                pytest.raises(ValueError, match="at least 1"),
            ):
                Settings(_env_file=None)

    def test_recalc_timeout_must_be_positive(self) -> None:
        """Test a zero recalculation budget is rejected."""
        with (
            patch.dict(os.environ, {"WBP_RECALC_TIMEOUT_SECONDS": "0"}, clear=True),
            pytest.raises(ValueError, match="must be positive"),
        ):
            Settings(_env_file=None)

    def test_file_size_must_be_between_1_and_500(self) -> None:
        """Test file size limit validation."""
        with (
            patch.dict(os.environ, {"WBP_MAX_FILE_SIZE_MB": "1000"}, clear=True),
            pytest.raises(ValueError, match="between 1 and 500"),
        ):
            Settings(_env_file=None)

    def test_port_must_be_valid(self) -> None:
        """Test port validation."""
        with (
            patch.dict(os.environ, {"WBP_SERVER_PORT": "70000"}, clear=True),
            pytest.raises(ValueError, match="between 1 and 65535"),
        ):
            Settings(_env_file=None)

    def test_recalc_bound_must_fit_engine_caps(self) -> None:
        """Test the recalculation bound cannot exceed the engine caps."""
        env_vars = {"WBP_RECALC_MAX_ROWS": "500", "WBP_ENGINE_MAX_ROWS": "100"}
        with (
            patch.dict(os.environ, env_vars, clear=True),
            pytest.raises(ValueError, match="must not exceed"),
        ):
            Settings(_env_file=None)


class TestValidateSettingsOnStartup:
    """Tests for the validate_settings_on_startup function."""

    def test_warns_when_storage_not_configured(
        self, caplog: pytest.LogCaptureFixture
    ) -> None:
        """Test warning is logged when Supabase is not configured."""
        with patch.dict(os.environ, {}, clear=True):
            settings = Settings(_env_file=None)

        with caplog.at_level(logging.WARNING):
            validate_settings_on_startup(settings)

        assert "Supabase storage is not configured" in caplog.text

    def test_no_storage_warning_when_configured(
        self, caplog: pytest.LogCaptureFixture
    ) -> None:
        """Test no storage warning when URL and key are set."""
        env_vars = {
            "WBP_SUPABASE_URL": "https://x.supabase.co",
            "WBP_SUPABASE_SERVICE_KEY": "key",
        }
        with patch.dict(os.environ, env_vars, clear=True):
            settings = Settings(_env_file=None)

        with caplog.at_level(logging.WARNING):
            validate_settings_on_startup(settings)

        assert "Supabase storage is not configured" not in caplog.text

    def test_warns_about_permissive_cors_in_production(
        self, caplog: pytest.LogCaptureFixture
    ) -> None:
        """Test warning for permissive CORS when not in debug mode."""
        env_vars = {"WBP_CORS_ORIGINS": "*", "WBP_DEBUG": "false"}
        with patch.dict(os.environ, env_vars, clear=True):
            settings = Settings(_env_file=None)

        with caplog.at_level(logging.WARNING):
            validate_settings_on_startup(settings)

        assert "CORS is configured to allow all origins" in caplog.text

    def test_logs_configuration_summary(self, caplog: pytest.LogCaptureFixture) -> None:
        """Test the configuration summary names both bounds."""
        with patch.dict(os.environ, {}, clear=True):
            settings = Settings(_env_file=None)

        with caplog.at_level(logging.INFO):
            validate_settings_on_startup(settings)

        assert "recalc_bound=200x50" in caplog.text
        assert "render_bound=100x30" in caplog.text
