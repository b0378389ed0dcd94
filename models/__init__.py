"""Data models for the git migration pipeline."""

from models.config_models import Config, CredentialsConfig, ServerConfig
from models.data_models import (
    Database,
    MigrationDetail,
    MigrationInfo,
    MigrationType,
    Project,
    Repository,
)
from models.vcs_models import DistinctFileItem, PushEvent, VCSType

__all__ = [
    "Config",
    "CredentialsConfig",
    "ServerConfig",
    "Database",
    "MigrationDetail",
    "MigrationInfo",
    "MigrationType",
    "Project",
    "Repository",
    "DistinctFileItem",
    "PushEvent",
    "VCSType",
]
