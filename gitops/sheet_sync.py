"""Sync SQL sheets from the files of a project's linked repository."""

import logging
import posixpath
import time
from typing import Optional

from gitops.migration_template import parse_sheet_info
from gitops.oauth import repository_oauth_context
from gitops.push_processor import ProviderFactory
from models.config_models import ServerConfig
from models.data_models import Project, Sheet, SheetCreate, SheetPatch, SheetVCSPayload
from models.vcs_models import VCSType
from utils.errors import InvalidRequestError, NotFoundError
from vcs.registry import get_provider

logger = logging.getLogger(__name__)

SHEET_TYPE_SQL = "SQL"
SHEET_SOURCES = {
    VCSType.GITLAB_SELF_HOST: "GITLAB_SELF_HOST",
    VCSType.GITHUB_COM: "GITHUB_COM",
}


class SheetSyncService:
    """Creates or refreshes one project sheet per file under the sheet directory."""

    def __init__(self, store, settings: ServerConfig, provider_factory: Optional[ProviderFactory] = None):
        self.store = store
        self.settings = settings
        self.provider_factory = provider_factory or (
            lambda vcs_type: get_provider(vcs_type, settings.vcs_request_timeout)
        )

    def sync_sheets(self, project_id: int, principal_id: int) -> list[Sheet]:
        """
        Sync the sheets of a VCS workflow project from its repository branch.

        Args:
            project_id: Project to sync
            principal_id: Principal recorded as creator or updater

        Returns:
            The created or patched sheets, in repository file order

        Raises:
            NotFoundError: If the project, its repository link or VCS is missing
            InvalidRequestError: If the project is not in VCS workflow or a
                file path gives no sheet name
            VCSError: If a provider call fails
        """
        project = self.store.get_project(project_id)
        if project is None:
            raise NotFoundError(f"Project not found by ID: {project_id}")
        if project.workflow_type != "VCS":
            raise InvalidRequestError(
                f"Invalid workflow type: {project.workflow_type}, need VCS to enable this function"
            )

        repositories = self.store.find_repositories(project_id=project_id)
        if not repositories:
            raise NotFoundError(f"Repository not found by project ID: {project_id}")
        repository = repositories[0]
        if repository.vcs is None:
            raise NotFoundError(f"VCS not found by ID: {repository.vcs_id}")

        vcs = repository.vcs
        provider = self.provider_factory(vcs.type)
        oauth = repository_oauth_context(self.store, repository)
        source = SHEET_SOURCES[vcs.type]
        template = repository.sheet_path_template

        file_list = provider.fetch_repository_file_list(
            oauth, vcs.instance_url, repository.external_id, repository.branch_filter, posixpath.dirname(template),
        )
        logger.info(f"Syncing {len(file_list)} sheet files for project {project_id} from {repository.web_url}")

        sheets = []
        for file in file_list:
            sheet_info = parse_sheet_info(file.path, template)
            if not sheet_info.sheet_name:
                raise InvalidRequestError(
                    f"sheet name cannot be empty from sheet path {file.path} with template {template}"
                )

            content = provider.read_file_content(
                oauth, vcs.instance_url, repository.external_id, file.path, repository.branch_filter,
            )
            meta = provider.read_file_meta(
                oauth, vcs.instance_url, repository.external_id, file.path, repository.branch_filter,
            )
            last_commit = provider.fetch_commit_by_id(
                oauth, vcs.instance_url, repository.external_id, meta.last_commit_id,
            )
            payload = SheetVCSPayload(
                file_name=meta.name,
                file_path=meta.path,
                size=meta.size,
                author=last_commit.author_name,
                last_commit_id=last_commit.id,
                last_sync_ts=int(time.time()),
            ).model_dump(by_alias=True)

            database_id = self._sheet_database_id(project, sheet_info.environment_name, sheet_info.database_name)

            sheet = self.store.get_sheet(project.id, sheet_info.sheet_name, source, SHEET_TYPE_SQL)
            if sheet is None:
                sheet = self.store.create_sheet(SheetCreate(
                    project_id=project.id,
                    database_id=database_id,
                    creator_id=principal_id,
                    name=sheet_info.sheet_name,
                    statement=content,
                    source=source,
                    type=SHEET_TYPE_SQL,
                    payload=payload,
                ))
                logger.debug(f"Created sheet \"{sheet.name}\" from {file.path}")
            else:
                sheet = self.store.patch_sheet(SheetPatch(
                    id=sheet.id,
                    updater_id=principal_id,
                    database_id=database_id,
                    statement=content,
                    payload=payload,
                ))
                logger.debug(f"Patched sheet \"{sheet.name}\" from {file.path}")
            sheets.append(sheet)

        return sheets

    def _sheet_database_id(self, project: Project, environment_name: str, database_name: str) -> Optional[int]:
        # Only non-tenant projects bind sheets, and only when both names are in the path
        if project.tenant_mode or not environment_name or not database_name:
            return None
        for database in self.store.find_databases(project.id, name=database_name):
            if database.environment_name == environment_name:
                return database.id
        return None
