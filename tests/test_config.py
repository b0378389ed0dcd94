"""Tests for configuration loading and validation."""

import pytest
from pydantic import ValidationError

from models.config_models import Config, CredentialsConfig, ServerConfig
from utils.config_loader import load_config


class TestCredentialsConfig:
    """Test CredentialsConfig validation."""

    def test_valid_credentials(self):
        """Test that valid credentials pass validation."""
        creds = CredentialsConfig(
            supabase_url="https://myproject.supabase.co",
            supabase_key="valid_key_here",
        )
        assert creds.supabase_url == "https://myproject.supabase.co"
        assert creds.supabase_key == "valid_key_here"
        assert creds.database_url is None

    def test_rejects_placeholder_supabase_url(self):
        """Test that placeholder Supabase URL is rejected."""
        with pytest.raises(ValidationError) as exc_info:
            CredentialsConfig(
                supabase_url="https://your-project.supabase.co",
                supabase_key="valid_key",
            )
        assert "Supabase URL must be set" in str(exc_info.value)

    def test_rejects_non_https_supabase_url(self):
        """Test that non-HTTPS Supabase URL is rejected."""
        with pytest.raises(ValidationError) as exc_info:
            CredentialsConfig(
                supabase_url="http://myproject.supabase.co",
                supabase_key="valid_key",
            )
        assert "must start with https://" in str(exc_info.value)

    def test_rejects_placeholder_supabase_key(self):
        with pytest.raises(ValidationError) as exc_info:
            CredentialsConfig(
                supabase_url="https://myproject.supabase.co",
                supabase_key="your_supabase_service_key_here",
            )
        assert "Supabase key must be set" in str(exc_info.value)

    def test_empty_credentials_rejected(self):
        """Test that empty credentials are rejected."""
        with pytest.raises(ValidationError):
            CredentialsConfig(supabase_url="", supabase_key="")


class TestServerConfig:
    """Test webhook server settings."""

    def test_defaults(self):
        settings = ServerConfig()
        assert settings.release_mode == "prod"
        assert settings.license_plan == "free"
        assert settings.sql_review_max_workers >= 1
        assert settings.sql_review_fail_on_error is False

    def test_external_url_trailing_slash_dropped(self):
        settings = ServerConfig(external_url="https://gitops.example.com/")
        assert settings.external_url == "https://gitops.example.com"

    def test_external_url_must_be_absolute(self):
        with pytest.raises(ValidationError) as exc_info:
            ServerConfig(external_url="gitops.example.com")
        assert "must start with http" in str(exc_info.value)

    def test_docs_url_defaults_to_external_url(self):
        settings = ServerConfig(external_url="https://gitops.example.com")
        assert settings.docs_url == "https://gitops.example.com/docs/sql-review/error-codes"

    def test_docs_url_override(self):
        settings = ServerConfig(sql_review_docs_url="https://docs.example.com/codes")
        assert settings.docs_url == "https://docs.example.com/codes"

    def test_rejects_zero_workers(self):
        with pytest.raises(ValidationError):
            ServerConfig(sql_review_max_workers=0)

    def test_rejects_unknown_plan(self):
        with pytest.raises(ValidationError):
            ServerConfig(license_plan="platinum")


class TestConfig:
    """Test main Config model."""

    def test_log_level_case_insensitive(self):
        """Test that log level is normalized to uppercase."""
        config = Config(
            credentials=CredentialsConfig(
                supabase_url="https://myproject.supabase.co",
                supabase_key="valid_key",
            ),
            log_level="info",
        )
        assert config.log_level == "INFO"

    def test_invalid_log_level_rejected(self):
        """Test that invalid log level is rejected."""
        with pytest.raises(ValidationError) as exc_info:
            Config(
                credentials=CredentialsConfig(
                    supabase_url="https://myproject.supabase.co",
                    supabase_key="valid_key",
                ),
                log_level="INVALID",
            )
        assert "Log level must be one of" in str(exc_info.value)

    def test_default_server_settings(self):
        config = Config(
            credentials=CredentialsConfig(
                supabase_url="https://myproject.supabase.co",
                supabase_key="valid_key",
            )
        )
        assert config.log_level == "INFO"
        assert config.server.external_url == "http://localhost:8080"


class TestConfigLoader:
    """Test config_loader.load_config() function."""

    def test_load_valid_config(self, test_env):
        """Test loading valid configuration from environment."""
        config = load_config()

        assert config.credentials.supabase_url == test_env["supabase_url"]
        assert config.credentials.supabase_key == test_env["supabase_key"]
        assert config.server.external_url == test_env["external_url"]
        assert config.server.workspace_id == test_env["workspace_id"]
        assert config.server.license_plan == "enterprise"
        assert config.server.sql_review_max_workers == 4
        assert config.log_level == test_env["log_level"]

    def test_fail_on_error_flag(self, test_env, monkeypatch):
        monkeypatch.setenv("SQL_REVIEW_FAIL_ON_ERROR", "true")
        assert load_config().server.sql_review_fail_on_error is True

    def test_load_config_with_missing_credentials(self, invalid_env):
        """Test that loading config with missing credentials fails gracefully."""
        with pytest.raises(SystemExit) as exc_info:
            load_config()
        assert exc_info.value.code == 1
