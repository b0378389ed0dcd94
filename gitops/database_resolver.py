"""Resolve the target databases named by a file for a project."""

import logging

from models.data_models import Database
from utils.errors import DataIntegrityError, DatabaseResolutionError

logger = logging.getLogger(__name__)


def find_project_databases(store, project_id: int, db_name: str, env_name: str) -> list[Database]:
    """
    Find the databases named db_name in a project.

    Three layouts are supported: one directory per environment with the same
    database name, one shared file applied to every environment, or database
    names that differ per environment. The environment filter is applied only
    when env_name is set, and compares case-insensitively.

    Args:
        store: Storage adapter
        project_id: Project owning the databases
        db_name: Database name from the file path
        env_name: Environment name from the file path, may be empty

    Returns:
        At most one database per environment

    Raises:
        DatabaseResolutionError: If no database matches
        DataIntegrityError: If two databases share an environment
    """
    databases = store.find_databases(project_id, name=db_name)
    if not databases:
        raise DatabaseResolutionError(f"project {project_id} does not have database \"{db_name}\"")

    if env_name:
        databases = [d for d in databases if d.environment_name.lower() == env_name.lower()]
        if not databases:
            raise DatabaseResolutionError(
                f"project {project_id} does not have database \"{db_name}\" for environment \"{env_name}\""
            )

    seen_environments = set()
    for database in databases:
        if database.environment_id in seen_environments:
            raise DataIntegrityError(
                f"project {project_id} has multiple databases \"{db_name}\" for environment \"{env_name}\""
            )
        seen_environments.add(database.environment_id)

    return databases
