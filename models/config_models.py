"""Configuration models for validation using Pydantic."""

from typing import Literal, Optional
from pydantic import BaseModel, Field, field_validator


class CredentialsConfig(BaseModel):
    """Storage credentials loaded from environment variables."""

    # Supabase (required)
    supabase_url: str = Field(..., min_length=1, description="Supabase project URL")
    supabase_key: str = Field(..., min_length=1, description="Supabase API key (service role)")
    database_url: Optional[str] = Field(None, description="PostgreSQL database URL (optional, for schema setup)")

    @field_validator("supabase_url")
    @classmethod
    def validate_supabase_url(cls, v: str) -> str:
        """Validate Supabase URL format."""
        if not v or v == "https://your-project.supabase.co":
            raise ValueError("Supabase URL must be set in .env file")
        if not v.startswith("https://"):
            raise ValueError("Supabase URL must start with https://")
        return v

    @field_validator("supabase_key")
    @classmethod
    def validate_supabase_key(cls, v: str) -> str:
        """Validate Supabase key is set."""
        if not v or v == "your_supabase_service_key_here":
            raise ValueError("Supabase key must be set in .env file")
        return v


class ServerConfig(BaseModel):
    """Webhook server settings."""

    external_url: str = Field(default="http://localhost:8080", description="URL the VCS providers call back")
    workspace_id: str = Field(default="", description="Workspace ID, accepted as SQL review token in dev mode")
    release_mode: Literal["prod", "dev"] = Field(default="prod", description="Release mode")
    license_plan: Literal["free", "team", "enterprise"] = Field(default="free", description="License plan")

    vcs_request_timeout: float = Field(default=30.0, gt=0, description="Timeout in seconds for VCS API calls")
    sql_review_max_workers: int = Field(default=8, ge=1, description="Concurrent file reviews per request")
    sql_review_fail_on_error: bool = Field(
        default=False,
        description="Fail the SQL review request when every file review failed",
    )
    sql_review_docs_url: Optional[str] = Field(default=None, description="Base URL of the SQL review error code docs")

    @field_validator("external_url")
    @classmethod
    def validate_external_url(cls, v: str) -> str:
        """External URL must be absolute; trailing slash is dropped."""
        if not v.startswith(("http://", "https://")):
            raise ValueError("External URL must start with http:// or https://")
        return v.rstrip("/")

    @property
    def docs_url(self) -> str:
        return self.sql_review_docs_url or f"{self.external_url}/docs/sql-review/error-codes"


class Config(BaseModel):
    """Application configuration."""

    credentials: CredentialsConfig
    server: ServerConfig = Field(default_factory=ServerConfig)
    log_level: str = Field(default="INFO", description="Logging level")

    @field_validator("log_level")
    @classmethod
    def validate_log_level(cls, v: str) -> str:
        """Validate log level is one of the standard levels."""
        valid_levels = ["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"]
        v_upper = v.upper()
        if v_upper not in valid_levels:
            raise ValueError(f"Log level must be one of: {', '.join(valid_levels)}")
        return v_upper
