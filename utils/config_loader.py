"""Configuration loader that reads from .env and validates with Pydantic."""

import os
import sys
from pathlib import Path
from dotenv import load_dotenv
from pydantic import ValidationError

from models.config_models import Config, CredentialsConfig, ServerConfig


def _env_bool(name: str, default: bool = False) -> bool:
    value = os.getenv(name)
    if value is None or value == "":
        return default
    return value.strip().lower() in ("1", "true", "yes", "on")


def load_config() -> Config:
    """
    Load and validate configuration from environment variables.

    Reads from .env file in the project root and validates storage
    credentials and webhook server settings using Pydantic models.

    Returns:
        Config: Validated configuration object

    Raises:
        SystemExit: If configuration is invalid or missing required fields
    """
    # Load .env file from project root
    env_path = Path(__file__).parent.parent / ".env"
    load_dotenv(dotenv_path=env_path)

    try:
        server_values = {
            "external_url": os.getenv("EXTERNAL_URL", "http://localhost:8080"),
            "workspace_id": os.getenv("WORKSPACE_ID", ""),
            "release_mode": os.getenv("RELEASE_MODE", "prod").lower(),
            "license_plan": os.getenv("LICENSE_PLAN", "free").lower(),
            "sql_review_fail_on_error": _env_bool("SQL_REVIEW_FAIL_ON_ERROR"),
            "sql_review_docs_url": os.getenv("SQL_REVIEW_DOCS_URL") or None,
        }
        # Numeric settings keep their model defaults when unset
        if os.getenv("VCS_REQUEST_TIMEOUT"):
            server_values["vcs_request_timeout"] = os.getenv("VCS_REQUEST_TIMEOUT")
        if os.getenv("SQL_REVIEW_MAX_WORKERS"):
            server_values["sql_review_max_workers"] = os.getenv("SQL_REVIEW_MAX_WORKERS")

        config = Config(
            credentials=CredentialsConfig(
                supabase_url=os.getenv("SUPABASE_URL", ""),
                supabase_key=os.getenv("SUPABASE_KEY", ""),
                database_url=os.getenv("DATABASE_URL"),
            ),
            server=ServerConfig(**server_values),
            log_level=os.getenv("LOG_LEVEL", "INFO"),
        )

        return config

    except ValidationError as e:
        print("❌ Configuration validation failed:", file=sys.stderr)
        print("\nPlease check your .env file. Missing or invalid fields:", file=sys.stderr)

        for error in e.errors():
            field_path = " → ".join(str(x) for x in error["loc"])
            message = error["msg"]
            print(f"  • {field_path}: {message}", file=sys.stderr)

        print("\nHint: Copy .env.example to .env and fill in your credentials.", file=sys.stderr)
        sys.exit(1)
