"""
Turn a push event into migration issues.

Pipeline per push:
1. Flatten the commits into distinct files
2. Keep the files that changed between the before and after commits
3. Classify files and group them by repository link, then by database
4. Order each database group by schema version
5. Create one issue per database group (one per file for SDL schema files)

Every file ends up either in a created issue or recorded as an ignored file
activity on its project, so nothing is dropped without a trace.
"""

import logging
from dataclasses import dataclass
from typing import Callable, Optional, Union

import yaml
from pydantic import ValidationError

from gitops.database_resolver import find_project_databases
from gitops.file_classifier import FILE_TYPE_SCHEMA, FileInfo, filter_files_by_commits_diff
from gitops.grouping import group_file_info_by_database, group_file_info_by_repo, sort_files_by_schema_version
from gitops.oauth import repository_oauth_context
from models.config_models import ServerConfig
from models.data_models import (
    ActivityCreate,
    Database,
    ISSUE_TYPE_DATA_UPDATE,
    ISSUE_TYPE_SCHEMA_UPDATE,
    IssueCreate,
    MigrationContext,
    MigrationDetail,
    MigrationFileYAML,
    MigrationType,
    Repository,
    SYSTEM_BOT_ID,
    TASK_STATUS_FAILED,
    TASK_STATUS_PENDING_APPROVAL,
    TASK_TYPE_DATA_UPDATE,
    TASK_TYPE_SCHEMA_UPDATE,
    TaskPatch,
)
from models.vcs_models import FileItemType, PushEvent, VCSType
from utils.errors import GitOpsError, NotFoundError, PermissionDeniedError, VCSError
from utils.license import FEATURE_MULTI_TENANCY, LicenseService
from vcs.base import VCSProvider
from vcs.registry import get_provider

logger = logging.getLogger(__name__)

ISSUE_NAME_TEMPLATE = "[{database}] {action}"
SCHEMA_ISSUE_TYPES = (MigrationType.MIGRATE, MigrationType.BASELINE, MigrationType.MIGRATE_SDL)


@dataclass
class IssueCreated:
    issue_id: int
    name: str


@dataclass
class FileIgnored:
    file: str
    reason: str


FileOutcome = Union[IssueCreated, FileIgnored]

ProviderFactory = Callable[[VCSType], VCSProvider]


def relative_path(file_name: str, base_directory: str) -> str:
    prefix = f"{base_directory}/"
    return file_name[len(prefix):] if base_directory and file_name.startswith(prefix) else file_name


def push_event_payload(push_event: PushEvent) -> dict:
    return push_event.model_dump(mode="json", by_alias=True)


class PushEventProcessor:
    """Creates issues and activities for the files of a push event."""

    def __init__(
        self,
        store,
        settings: ServerConfig,
        license_service: LicenseService,
        provider_factory: Optional[ProviderFactory] = None,
    ):
        self.store = store
        self.settings = settings
        self.license_service = license_service
        self.provider_factory = provider_factory or (
            lambda vcs_type: get_provider(vcs_type, settings.vcs_request_timeout)
        )

    def process_push_event(self, repositories: list[Repository], push_event: PushEvent) -> list[str]:
        """
        Process a push for the repository links it was resolved to.

        Args:
            repositories: Trusted links whose branch filter matched the push
            push_event: Normalized push event

        Returns:
            One "Created issue ..." message per database group that produced
            an issue; empty when nothing applied

        Raises:
            PermissionDeniedError: If a tenant project is pushed to without
                the multi-tenancy feature
        """
        if not repositories:
            return []

        distinct_files = push_event.get_distinct_file_list()
        if not distinct_files:
            commit_ids = ",".join(commit.id for commit in push_event.commit_list)
            logger.warning(
                f"No files found from the push event to {push_event.repository_full_path}, commits: {commit_ids}"
            )
            return []

        repository = repositories[0]
        provider = self.provider_factory(repository.vcs.type)
        try:
            files = filter_files_by_commits_diff(
                provider,
                repository_oauth_context(self.store, repository),
                repository,
                distinct_files,
                push_event.before,
                push_event.after,
            )
        except VCSError as e:
            logger.warning(f"Failed to get file diff for {push_event.before}...{push_event.after}: {e.message}")
            self._record_diff_failure(repositories, push_event, e)
            return []

        created_messages = []
        for file_infos in group_file_info_by_repo(files, repositories).values():
            for database_files in group_file_info_by_database(file_infos).values():
                sorted_files = sort_files_by_schema_version(database_files)
                linked_repository = sorted_files[0].repository
                group_event = push_event.model_copy(update={
                    "vcs_type": linked_repository.vcs.type,
                    "base_directory": linked_repository.base_directory,
                })

                outcomes = self.process_files_in_project(group_event, linked_repository, sorted_files)
                issue_names = [o.name for o in outcomes if isinstance(o, IssueCreated)]
                if issue_names:
                    created_messages.append(f"Created issue \"{','.join(issue_names)}\" from push event")

        if not created_messages:
            repository_urls = ", ".join(r.web_url for r in repositories)
            logger.warning(f"Ignored push event because no applicable file found in the commit list: {repository_urls}")

        return created_messages

    def process_files_in_project(
        self,
        push_event: PushEvent,
        repository: Repository,
        files: list[FileInfo],
    ) -> list[FileOutcome]:
        """
        Create the issues for one database group of one repository link.

        Schema files of an SDL project get one issue each. Migration files
        are merged into one issue for the group; modified migration files in
        a non-tenant project update the pending task instead.

        Args:
            push_event: Push event with VCS type and base directory of the link
            repository: The repository link
            files: Files of one database, ordered by schema version

        Returns:
            Created issues and ignored files, in processing order

        Raises:
            PermissionDeniedError: If the project is in tenant mode and the
                license does not include multi-tenancy
        """
        project = repository.project
        if project.tenant_mode and not self.license_service.is_feature_enabled(FEATURE_MULTI_TENANCY):
            raise PermissionDeniedError(LicenseService.access_error_message(FEATURE_MULTI_TENANCY))

        outcomes: list[FileOutcome] = []
        migration_details: list[MigrationDetail] = []
        migration_files: list[str] = []
        creator_id = self.get_issue_creator_id(push_event.commit_list[0].author_email if push_event.commit_list else "")

        for file_info in files:
            file_name = file_info.item.file_name

            if file_info.file_type == FILE_TYPE_SCHEMA:
                if project.schema_change_type != "SDL":
                    logger.debug(f"Ignored schema file {file_name} for non-SDL project {project.id}")
                    outcomes.append(FileIgnored(file_name, "schema files are only applied in SDL projects"))
                    continue

                details, ignored = self.prepare_issue_from_sdl_file(repository, push_event, file_info)
                outcomes.extend(ignored)
                if not details:
                    continue
                issue_name = ISSUE_NAME_TEMPLATE.format(database=file_info.migration_info.database, action="Alter schema")
                description = f"Apply schema diff by file {relative_path(file_name, repository.base_directory)}"
                outcomes.append(self.create_issue(
                    issue_name, description, push_event, creator_id, repository.project_id, details, [file_name],
                ))
                continue

            details, ignored = self.prepare_issue_from_file(repository, push_event, file_info)
            outcomes.extend(ignored)
            if details:
                migration_details.extend(details)
                migration_files.append(file_name)

        if migration_details:
            issue_type = self.issue_type(migration_details)
            action = "Alter schema" if issue_type == ISSUE_TYPE_SCHEMA_UPDATE else "Change data"
            issue_name = ISSUE_NAME_TEMPLATE.format(database=files[0].migration_info.database, action=action)
            relative_files = [relative_path(f, repository.base_directory) for f in migration_files]
            description = "By VCS files:\n\n{}\n".format("\n".join(relative_files))
            outcomes.append(self.create_issue(
                issue_name, description, push_event, creator_id, repository.project_id, migration_details,
                migration_files,
            ))

        self._record_ignored_files(repository.project_id, push_event, outcomes)
        return outcomes

    @staticmethod
    def issue_type(details: list[MigrationDetail]) -> str:
        if any(detail.migration_type in SCHEMA_ISSUE_TYPES for detail in details):
            return ISSUE_TYPE_SCHEMA_UPDATE
        return ISSUE_TYPE_DATA_UPDATE

    def create_issue(
        self,
        issue_name: str,
        description: str,
        push_event: PushEvent,
        creator_id: int,
        project_id: int,
        details: list[MigrationDetail],
        file_names: list[str],
    ) -> FileOutcome:
        """
        Create one issue and its activity.

        Returns:
            IssueCreated, or FileIgnored for the issue's files when creation fails
        """
        create_context = MigrationContext(vcs_push_event=push_event, detail_list=details)
        issue_create = IssueCreate(
            project_id=project_id,
            name=issue_name,
            type=self.issue_type(details),
            description=description,
            creator_id=creator_id,
            assignee_id=SYSTEM_BOT_ID,
            assignee_need_attention=True,
            create_context=create_context.model_dump_json(by_alias=True),
        )
        try:
            issue = self.store.create_issue(issue_create)
        except Exception as e:
            logger.error(f"Failed to create issue \"{issue_name}\" in project {project_id}: {e}")
            return FileIgnored(", ".join(file_names), f"Failed to create issue \"{issue_name}\": {e}")

        try:
            self.store.create_activity(ActivityCreate(
                creator_id=creator_id,
                container_id=project_id,
                level="INFO",
                comment=f"Created issue \"{issue.name}\".",
                payload={
                    "pushEvent": push_event_payload(push_event),
                    "issueId": issue.id,
                    "issueName": issue.name,
                },
            ))
        except Exception as e:
            logger.error(f"Failed to create project activity for issue {issue.id}: {e}")

        return IssueCreated(issue_id=issue.id, name=issue.name)

    def get_issue_creator_id(self, email: str) -> int:
        """The principal who authored the push, or the system bot."""
        if not email:
            return SYSTEM_BOT_ID
        try:
            principal = self.store.get_principal_by_email(email)
        except Exception as e:
            logger.warning(f"Failed to find the principal with committer email {email}, use system bot instead: {e}")
            return SYSTEM_BOT_ID
        if principal is None:
            logger.warning(f"Principal with committer email {email} does not exist, use system bot instead")
            return SYSTEM_BOT_ID
        return principal.id

    def read_file_content(self, push_event: PushEvent, repository: Repository, file_name: str) -> str:
        """
        Read a pushed file at the last commit of the push.

        The link is re-read first because an earlier call may have rotated
        the stored token pair.

        Raises:
            NotFoundError: If the link no longer exists
            VCSError: If the provider call fails
        """
        repositories = self.store.find_repositories(webhook_endpoint_id=repository.webhook_endpoint_id)
        if not repositories:
            raise NotFoundError(f"repository not found by webhook endpoint \"{repository.webhook_endpoint_id}\"")
        fresh = repositories[0]

        provider = self.provider_factory(fresh.vcs.type)
        return provider.read_file_content(
            repository_oauth_context(self.store, fresh),
            fresh.vcs.instance_url,
            fresh.external_id,
            file_name,
            push_event.commit_list[-1].id,
        )

    def prepare_issue_from_sdl_file(
        self,
        repository: Repository,
        push_event: PushEvent,
        file_info: FileInfo,
    ) -> tuple[list[MigrationDetail], list[FileIgnored]]:
        file_name = file_info.item.file_name
        db_name = file_info.migration_info.database
        if not db_name:
            logger.debug(f"Ignored schema file {file_name} without a database name")
            return [], [FileIgnored(file_name, "schema file does not name a database")]

        try:
            sdl = self.read_file_content(push_event, repository, file_name)
        except GitOpsError as e:
            return [], [FileIgnored(file_name, f"Failed to read file content: {e.message}")]

        if repository.project.tenant_mode:
            return [MigrationDetail(migration_type=MigrationType.MIGRATE_SDL, database_name=db_name, statement=sdl)], []

        try:
            databases = find_project_databases(
                self.store, repository.project_id, db_name, file_info.migration_info.environment,
            )
        except GitOpsError as e:
            return [], [FileIgnored(file_name, f"Failed to find project databases: {e.message}")]

        details = [
            MigrationDetail(migration_type=MigrationType.MIGRATE_SDL, database_id=database.id, statement=sdl)
            for database in databases
        ]
        return details, []

    def prepare_issue_from_file(
        self,
        repository: Repository,
        push_event: PushEvent,
        file_info: FileInfo,
    ) -> tuple[list[MigrationDetail], list[FileIgnored]]:
        """
        Build the migration details of one migration file.

        Migration files are accepted in SDL projects as well: data changes
        are always migration based.
        """
        file_name = file_info.item.file_name
        info = file_info.migration_info

        try:
            content = self.read_file_content(push_event, repository, file_name)
        except GitOpsError as e:
            return [], [FileIgnored(file_name, f"Failed to read file content: {e.message}")]

        if repository.project.tenant_mode:
            if not file_info.item.is_yaml:
                return [MigrationDetail(
                    migration_type=info.type,
                    database_name=info.database,
                    statement=content,
                    schema_version=info.version,
                )], []
            return self._prepare_tenant_yaml_details(repository, file_info, content)

        try:
            databases = find_project_databases(self.store, repository.project_id, info.database, info.environment)
        except GitOpsError as e:
            return [], [FileIgnored(file_name, f"Failed to find project databases: {e.message}")]

        if file_info.item.item_type == FileItemType.ADDED:
            details = [
                MigrationDetail(
                    migration_type=info.type,
                    database_id=database.id,
                    statement=content,
                    schema_version=info.version,
                )
                for database in databases
            ]
            return details, []

        try:
            self.try_update_tasks_from_modified_file(databases, file_name, info.version, content)
        except Exception as e:
            return [], [FileIgnored(file_name, f"Failed to find project task: {e}")]
        return [], []

    def _prepare_tenant_yaml_details(
        self,
        repository: Repository,
        file_info: FileInfo,
        content: str,
    ) -> tuple[list[MigrationDetail], list[FileIgnored]]:
        file_name = file_info.item.file_name
        try:
            migration_file = MigrationFileYAML(**(yaml.safe_load(content) or {}))
        except (yaml.YAMLError, ValidationError, TypeError) as e:
            return [], [FileIgnored(file_name, f"Failed to parse file content as YAML: {e}")]

        details = []
        for database in migration_file.databases:
            try:
                databases = find_project_databases(self.store, repository.project_id, database.name, "")
            except GitOpsError as e:
                return [], [FileIgnored(file_name, f"Failed to find project database \"{database.name}\": {e.message}")]
            details.extend(
                MigrationDetail(
                    migration_type=file_info.migration_info.type,
                    database_id=found.id,
                    statement=migration_file.statement,
                    schema_version=file_info.migration_info.version,
                )
                for found in databases
            )
        return details, []

    def try_update_tasks_from_modified_file(
        self,
        databases: list[Database],
        file_name: str,
        schema_version: str,
        statement: str,
    ) -> None:
        """
        Point the pending task of an already pushed version at the new content.

        More than one candidate task is a data inconsistency: it is logged
        and nothing is changed.
        """
        for database in databases:
            tasks = self.store.find_tasks(
                database.id,
                statuses=[TASK_STATUS_PENDING_APPROVAL, TASK_STATUS_FAILED],
                types=[TASK_TYPE_SCHEMA_UPDATE, TASK_TYPE_DATA_UPDATE],
                schema_version=schema_version,
            )
            if not tasks:
                continue
            if len(tasks) > 1:
                logger.error(
                    f"Found {len(tasks)} pending approval or failed tasks for modified file {file_name} "
                    f"on database {database.id} at version {schema_version}, expected one"
                )
                return

            task = tasks[0]
            issue = self.store.get_issue_by_pipeline_id(task.pipeline_id)
            if issue is None:
                logger.error(f"Issue not found by pipeline ID {task.pipeline_id}")
                return

            logger.debug(f"Patching task {task.id} of issue {issue.id} for modified file {file_name}")
            try:
                self.store.patch_task(TaskPatch(id=task.id, updater_id=SYSTEM_BOT_ID, statement=statement))
            except Exception as e:
                logger.error(f"Failed to patch task {task.id} of issue {issue.id} with version {schema_version}: {e}")
                return

    def ignored_file_activity(self, project_id: int, push_event: PushEvent, file_name: str, reason: str) -> ActivityCreate:
        return ActivityCreate(
            creator_id=SYSTEM_BOT_ID,
            container_id=project_id,
            level="WARN",
            comment=f"Ignored file \"{file_name}\", {reason}.",
            payload={"pushEvent": push_event_payload(push_event)},
        )

    def _record_ignored_files(self, project_id: int, push_event: PushEvent, outcomes: list[FileOutcome]) -> None:
        for outcome in outcomes:
            if not isinstance(outcome, FileIgnored):
                continue
            try:
                self.store.create_activity(
                    self.ignored_file_activity(project_id, push_event, outcome.file, outcome.reason)
                )
            except Exception as e:
                logger.warning(f"Failed to create project activity for the ignored file {outcome.file}: {e}")

    def _record_diff_failure(self, repositories: list[Repository], push_event: PushEvent, error: VCSError) -> None:
        project_ids = list(dict.fromkeys(r.project_id for r in repositories))
        for project_id in project_ids:
            try:
                self.store.create_activity(ActivityCreate(
                    creator_id=SYSTEM_BOT_ID,
                    container_id=project_id,
                    level="WARN",
                    comment=(
                        f"Ignored push event, failed to get the file diff between "
                        f"\"{push_event.before}\" and \"{push_event.after}\": {error.message}."
                    ),
                    payload={"pushEvent": push_event_payload(push_event)},
                ))
            except Exception as e:
                logger.warning(f"Failed to create project activity for the failed diff in project {project_id}: {e}")
