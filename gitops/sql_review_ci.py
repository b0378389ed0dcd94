"""Open a pull request that adds the SQL review CI job to a linked repository."""

import logging
import time
from typing import Optional

from models.config_models import ServerConfig
from models.data_models import Repository
from models.vcs_models import BranchInfo, PullRequest, PullRequestCreate
from utils.errors import PermissionDeniedError
from utils.license import FEATURE_VCS_SQL_REVIEW, LicenseService
from vcs.base import OauthContext, VCSProvider

logger = logging.getLogger(__name__)

SQL_REVIEW_API_SECRET_NAME = "SQL_REVIEW_API_SECRET"
SQL_REVIEW_PR_TITLE = "chore: set up SQL review CI"
SQL_REVIEW_PR_BODY = "This pull request is auto-generated to run SQL review for the GitOps workflow."


def sql_review_endpoint(settings: ServerConfig, repository: Repository) -> str:
    return f"{settings.external_url}/hook/sql-review/{repository.webhook_endpoint_id}"


def setup_sql_review_ci(
    provider: VCSProvider,
    oauth: OauthContext,
    repository: Repository,
    settings: ServerConfig,
    license_service: Optional[LicenseService] = None,
) -> PullRequest:
    """
    Create a branch with the CI configuration and open a pull request for it.

    The CI job authenticates with the link's webhook secret, stored as the
    SQL_REVIEW_API_SECRET variable of the repository.

    Args:
        provider: Provider of the repository's VCS
        oauth: OAuth context of the link
        repository: The repository link, VCS composed in
        settings: Server settings, for the external URL
        license_service: Checked for the VCS SQL review feature when given

    Returns:
        The opened pull request

    Raises:
        PermissionDeniedError: If the license does not include VCS SQL review
        VCSError: If a provider call fails
    """
    if license_service is not None and not license_service.is_feature_enabled(FEATURE_VCS_SQL_REVIEW):
        raise PermissionDeniedError(LicenseService.access_error_message(FEATURE_VCS_SQL_REVIEW))

    instance_url = repository.vcs.instance_url
    external_id = repository.external_id

    base = provider.get_branch(oauth, instance_url, external_id, repository.branch_filter)
    logger.debug(f"Target branch {base.name} is at {base.last_commit_id}")

    branch = BranchInfo(name=f"gitops-sql-review-{int(time.time())}", last_commit_id=base.last_commit_id)
    provider.create_branch(oauth, instance_url, external_id, branch)

    provider.upsert_environment_variable(
        oauth, instance_url, external_id, SQL_REVIEW_API_SECRET_NAME, repository.webhook_secret_token,
    )

    provider.setup_sql_review_ci_files(
        oauth, instance_url, external_id, branch.name, repository.branch_filter,
        sql_review_endpoint(settings, repository),
    )

    pull_request = provider.create_pull_request(oauth, instance_url, external_id, PullRequestCreate(
        title=SQL_REVIEW_PR_TITLE,
        body=SQL_REVIEW_PR_BODY,
        head=branch.name,
        base=repository.branch_filter,
        remove_head_after_merged=True,
    ))
    logger.info(f"Opened SQL review CI pull request {pull_request.url} for {repository.web_url}")
    return pull_request
