"""
Classify pushed files as migration files, schema files or neither.

Files are first narrowed to what actually changed between the push's before
and after commits, so commits merged in from another branch whose files were
already applied do not trigger again.
"""

import logging
import posixpath
from dataclasses import dataclass
from typing import Optional

from gitops.migration_template import parse_migration_info, parse_schema_file_info
from models.data_models import MigrationInfo, MigrationType, Repository
from models.vcs_models import DistinctFileItem
from utils.errors import DataIntegrityError, InvalidRequestError
from vcs.base import OauthContext, VCSProvider

logger = logging.getLogger(__name__)

FILE_TYPE_MIGRATION = "migration"
FILE_TYPE_SCHEMA = "schema"


@dataclass
class FileInfo:
    """A pushed file resolved to the repository link and template it matched."""
    item: DistinctFileItem
    migration_info: MigrationInfo
    file_type: str
    repository: Repository


def filter_files_by_commits_diff(
    provider: VCSProvider,
    oauth: OauthContext,
    repository: Repository,
    files: list[DistinctFileItem],
    before: str,
    after: str,
) -> list[DistinctFileItem]:
    """
    Keep the files that differ between the before and after commits.

    Args:
        provider: Provider of the repository
        oauth: OAuth context of the repository
        repository: Any link of the pushed repository
        files: Distinct files of the push
        before: Commit before the push
        after: Commit after the push

    Returns:
        Files present in the provider's diff, in their original order

    Raises:
        VCSError: If the diff cannot be fetched
    """
    diff_list = provider.get_diff_file_list(oauth, repository.vcs.instance_url, repository.external_id, before, after)
    changed_paths = {diff.path for diff in diff_list}

    filtered = [item for item in files if item.file_name in changed_paths]
    for item in files:
        if item.file_name not in changed_paths:
            logger.debug(f"Skipping file {item.file_name}: unchanged between {before} and {after}")
    return filtered


def get_file_info(item: DistinctFileItem, repositories: list[Repository]) -> Optional[FileInfo]:
    """
    Match a file against the templates of every candidate repository link.

    A file is tried as a migration file first, then as a schema file. In a
    tenant project a YAML file is matched against the migration template
    with ".sql" swapped for ".yml" and may omit the database name.

    Args:
        item: The pushed file
        repositories: Links sharing the push event

    Returns:
        FileInfo for the single matching link, or None when no link matches

    Raises:
        InvalidRequestError: If a tenant project's YAML file is not a data change
        DataIntegrityError: If the file matches more than one link
    """
    matches: list[FileInfo] = []

    for repository in repositories:
        if not item.file_name.startswith(repository.base_directory):
            logger.debug(
                f"Skipping file {item.file_name} for repository {repository.id}: "
                f"not under base directory {repository.base_directory}"
            )
            continue

        project = repository.project
        file_path_template = posixpath.join(repository.base_directory, repository.file_path_template)
        allow_omit_database_name = False
        if project.tenant_mode:
            allow_omit_database_name = project.db_name_template == ""
            if item.is_yaml:
                allow_omit_database_name = True
                file_path_template = file_path_template.replace(".sql", ".yml", 1)

        try:
            migration_info = parse_migration_info(item.file_name, file_path_template, allow_omit_database_name)
        except InvalidRequestError as e:
            logger.warning(f"Skipping file {item.file_name} for repository {repository.id}: {e.message}")
            continue

        if migration_info is not None:
            if project.tenant_mode and item.is_yaml and migration_info.type != MigrationType.DATA:
                raise InvalidRequestError("Only DML is allowed for YAML files in a tenant project")
            matches.append(FileInfo(item, migration_info, FILE_TYPE_MIGRATION, repository))
            continue

        try:
            schema_info = parse_schema_file_info(
                repository.base_directory, repository.schema_path_template, item.file_name,
            )
        except InvalidRequestError as e:
            logger.warning(f"Skipping file {item.file_name} for repository {repository.id}: {e.message}")
            continue
        if schema_info is not None:
            matches.append(FileInfo(item, schema_info, FILE_TYPE_SCHEMA, repository))

    if not matches:
        logger.warning(f"Ignoring file {item.file_name}: file change is not associated with any project")
        return None
    if len(matches) > 1:
        projects = ", ".join(f"\"{match.repository.project.name}\"" for match in matches)
        raise DataIntegrityError(
            f"File change {item.file_name} should be associated with exactly one project but found {projects}"
        )
    return matches[0]
