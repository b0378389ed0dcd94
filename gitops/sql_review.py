"""
SQL review for pull requests, called by the CI job the repository runs.

Each changed file is reviewed on its own worker thread: resolve the target
databases, read the file at the pull request's head, then run the SQL review
policy of the first database whose environment has one. Files whose review
fails are logged and left out of the report.
"""

import logging
import threading
from concurrent.futures import ThreadPoolExecutor
from typing import Optional

from advisor.advice import Advice, AdviceCode, AdviceStatus
from advisor.check import convert_engine_to_advisor_db_type, sql_review_check
from advisor.driver import ReadOnlyDriverFactory
from advisor.rules import CheckContext
from gitops.ci_report import format_sql_review_result
from gitops.database_resolver import find_project_databases
from gitops.file_classifier import FileInfo
from gitops.grouping import group_file_info_by_repo
from gitops.oauth import repository_oauth_context
from gitops.push_processor import ProviderFactory
from gitops.webhook_auth import filter_repositories, sql_review_predicate
from models.config_models import ServerConfig
from models.vcs_models import (
    Commit,
    DistinctFileItem,
    FileItemType,
    VCSSQLReviewRequest,
    VCSSQLReviewResult,
    is_yaml_file,
)
from utils.errors import GitOpsError, SQLReviewUnavailableError, VCSError
from vcs.registry import get_provider

logger = logging.getLogger(__name__)


class SQLReviewService:
    """Reviews the SQL files of a pull request against SQL review policies."""

    def __init__(
        self,
        store,
        settings: ServerConfig,
        provider_factory: Optional[ProviderFactory] = None,
        driver_factory: Optional[ReadOnlyDriverFactory] = None,
    ):
        self.store = store
        self.settings = settings
        self.provider_factory = provider_factory or (
            lambda vcs_type: get_provider(vcs_type, settings.vcs_request_timeout)
        )
        self.driver_factory = driver_factory or ReadOnlyDriverFactory()

    def review_pull_request(
        self,
        webhook_endpoint_id: str,
        request: VCSSQLReviewRequest,
        token: str,
    ) -> VCSSQLReviewResult:
        """
        Review every changed, non-deleted file of a pull request.

        Args:
            webhook_endpoint_id: Endpoint ID from the request URL
            request: Repository, pull request and web URL sent by the CI job
            token: X-SQL-Review-Token header

        Returns:
            Report formatted for the repository's CI system

        Raises:
            NotFoundError: If no link uses the endpoint
            GitOpsError: If the pull request files cannot be listed
            SQLReviewUnavailableError: If configured to fail and every review failed
        """
        repositories = filter_repositories(
            self.store,
            webhook_endpoint_id,
            request.repository_id,
            sql_review_predicate(request, token, self.settings),
        )
        if not repositories:
            logger.debug(f"No repository to review for endpoint {webhook_endpoint_id}, ignoring request")
            return VCSSQLReviewResult(status=AdviceStatus.SUCCESS, content=[])

        repository = repositories[0]
        provider = self.provider_factory(repository.vcs.type)
        try:
            pull_request_files = provider.list_pull_request_file(
                repository_oauth_context(self.store, repository),
                repository.vcs.instance_url,
                request.repository_id,
                request.pull_request_id,
            )
        except VCSError as e:
            raise GitOpsError(f"Failed to list pull request file: {e.message}") from e

        items = [
            DistinctFileItem(
                file_name=f.path,
                item_type=FileItemType.MODIFIED,
                commit=Commit(id=f.last_commit_id),
                is_yaml=is_yaml_file(f.path),
            )
            for f in pull_request_files
            if not f.is_deleted
        ]
        file_infos = [
            file_info
            for group in group_file_info_by_repo(items, repositories).values()
            for file_info in group
        ]

        advice_map = self.review_files(file_infos)

        result = format_sql_review_result(repository.vcs.type, advice_map, self.settings.docs_url)
        logger.debug(
            f"SQL review finished for pull request {request.pull_request_id} of {request.repository_id}: "
            f"{result.status.value}, {len(advice_map)}/{len(file_infos)} files reviewed"
        )
        return result

    def review_files(self, file_infos: list[FileInfo]) -> dict[str, list[Advice]]:
        """
        Review files concurrently and collect their advice by file path.

        Every file is submitted before any result is awaited. Paths that
        collide across repositories have their advice concatenated.
        """
        advice_map: dict[str, list[Advice]] = {}
        lock = threading.Lock()
        failures = 0

        def review(file_info: FileInfo) -> None:
            advice_list = self.sql_advice_for_file(file_info)
            with lock:
                advice_map.setdefault(file_info.item.file_name, []).extend(advice_list)

        if not file_infos:
            return advice_map

        with ThreadPoolExecutor(max_workers=self.settings.sql_review_max_workers) as executor:
            futures = [(file_info, executor.submit(review, file_info)) for file_info in file_infos]
            for file_info, future in futures:
                try:
                    future.result()
                except Exception as e:
                    failures += 1
                    logger.debug(
                        f"Failed to take SQL review for file {file_info.item.file_name} "
                        f"of {file_info.repository.external_id}: {e}"
                    )

        if failures == len(file_infos) and self.settings.sql_review_fail_on_error:
            raise SQLReviewUnavailableError(f"SQL review failed for all {failures} files")
        return advice_map

    def sql_advice_for_file(self, file_info: FileInfo) -> list[Advice]:
        """
        Review one file.

        The first database with a SQL review policy for its environment is
        checked; others are not.

        Raises:
            GitOpsError: If the databases cannot be resolved or the file read
            ValueError: If the database engine has no SQL review support
        """
        repository = file_info.repository
        info = file_info.migration_info
        logger.debug(f"Processing file {file_info.item.file_name} from {repository.vcs.type.value}")

        if repository.project.tenant_mode:
            return [Advice(
                status=AdviceStatus.WARN,
                code=AdviceCode.UNSUPPORTED,
                title="Tenant mode is not supported",
                content=f"Project {repository.project.name} is a tenant mode project.",
                line=1,
            )]

        databases = find_project_databases(self.store, repository.project_id, info.database, info.environment)

        provider = self.provider_factory(repository.vcs.type)
        content = provider.read_file_content(
            repository_oauth_context(self.store, repository),
            repository.vcs.instance_url,
            repository.external_id,
            file_info.item.file_name,
            file_info.item.commit.id,
        )

        for database in databases:
            policy = self.store.get_sql_review_policy(database.environment_id)
            if policy is None:
                logger.debug(f"No SQL review policy in environment {database.environment_id}")
                continue

            instance = database.instance
            db_type = convert_engine_to_advisor_db_type(instance.engine)
            catalog = self.store.new_catalog(database.id, instance.engine)
            with self.driver_factory.open(instance, database.name) as connection:
                return sql_review_check(content, policy.rule_list, CheckContext(
                    charset=database.character_set,
                    collation=database.collation,
                    db_type=db_type,
                    catalog=catalog,
                    connection=connection,
                ))

        return [Advice(
            status=AdviceStatus.WARN,
            code=AdviceCode.NOT_FOUND,
            title="SQL review policy not found",
            content=f"You can configure the SQL review policy on {self.settings.external_url}/setting/sql-review",
            line=1,
        )]
