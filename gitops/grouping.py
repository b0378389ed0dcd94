"""Group classified files by repository link and database, then order them."""

import logging

from gitops.file_classifier import FileInfo, get_file_info
from models.data_models import Repository
from models.vcs_models import DistinctFileItem
from utils.errors import GitOpsError

logger = logging.getLogger(__name__)


def group_file_info_by_repo(
    files: list[DistinctFileItem],
    repositories: list[Repository],
) -> dict[int, list[FileInfo]]:
    """
    Classify files and group them by the repository link they belong to.

    A monorepo may host several projects under different base directories,
    all receiving the same push. Files that cannot be classified are skipped;
    groups keep discovery order.
    """
    groups: dict[int, list[FileInfo]] = {}
    for item in files:
        try:
            file_info = get_file_info(item, repositories)
        except GitOpsError as e:
            logger.error(f"Ignoring file {item.file_name}: {e.message}")
            continue
        if file_info is None:
            continue
        groups.setdefault(file_info.repository.id, []).append(file_info)
    return groups


def group_file_info_by_database(file_infos: list[FileInfo]) -> dict[str, list[FileInfo]]:
    groups: dict[str, list[FileInfo]] = {}
    for file_info in file_infos:
        groups.setdefault(file_info.migration_info.database, []).append(file_info)
    return groups


def sort_files_by_schema_version(file_infos: list[FileInfo]) -> list[FileInfo]:
    """Stable sort by (database name, schema version), ordinal string order."""
    return sorted(file_infos, key=lambda f: (f.migration_info.database, f.migration_info.version))
