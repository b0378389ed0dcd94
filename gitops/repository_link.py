"""
Webhook lifecycle of repository links.

All projects linked to one external repository share a single webhook: the
first link creates it, later links reuse its endpoint ID and secret, and the
webhook is deleted only when the last link goes away.

Nothing in this service creates or deletes repository links. The layer that
does calls provision_webhook before storing a new link and release_webhook
after removing one.
"""

import logging
import posixpath
import secrets
import time
from dataclasses import dataclass

from gitops.migration_template import (
    validate_asterisks_in_template,
    validate_file_path_template,
    validate_schema_path_template,
)
from models.config_models import ServerConfig
from models.data_models import Project, Repository
from models.vcs_models import VCSType
from utils.errors import GitOpsError, InvalidRequestError, NotFoundError, VCSError
from vcs.base import OauthContext, VCSProvider

logger = logging.getLogger(__name__)

SECRET_TOKEN_LENGTH = 16

WEBHOOK_PATHS = {
    VCSType.GITLAB_SELF_HOST: "gitlab",
    VCSType.GITHUB_COM: "github",
}


@dataclass
class WebhookProvision:
    webhook_endpoint_id: str
    webhook_secret_token: str
    external_webhook_id: str
    webhook_url_host: str


def webhook_url(settings: ServerConfig, vcs_type: VCSType, webhook_endpoint_id: str) -> str:
    return f"{settings.external_url}/hook/{WEBHOOK_PATHS[vcs_type]}/{webhook_endpoint_id}"


def validate_branch_filter(branch_filter: str, schema_path_template: str) -> None:
    """
    Raises:
        InvalidRequestError: If the filter is empty, or has a wildcard while
            a schema path template is set
    """
    if not branch_filter:
        raise InvalidRequestError("Branch must be specified.")
    if "*" in branch_filter and schema_path_template:
        raise InvalidRequestError("Schema path template is supported only if branch doesn't have wildcard.")


def validate_repository_link(
    provider: VCSProvider,
    oauth: OauthContext,
    instance_url: str,
    project: Project,
    external_id: str,
    branch_filter: str,
    base_directory: str,
    file_path_template: str,
    schema_path_template: str,
) -> None:
    """
    Check the settings of a new link before any webhook is created.

    A branch filter without wildcards must name an existing branch.

    Raises:
        InvalidRequestError: If the branch filter or a template is invalid
        NotFoundError: If the branch does not exist in the repository
        VCSError: If the branch lookup fails for another reason
    """
    validate_branch_filter(branch_filter, schema_path_template)
    validate_asterisks_in_template(posixpath.join(base_directory.strip("/"), file_path_template))
    validate_file_path_template(file_path_template, project.tenant_mode, project.db_name_template)
    validate_schema_path_template(schema_path_template, project.tenant_mode)

    if "*" in branch_filter:
        return
    try:
        provider.get_branch(oauth, instance_url, external_id, branch_filter)
    except VCSError as e:
        if e.not_found:
            raise NotFoundError(f"Branch \"{branch_filter}\" not found in repository {external_id}.") from e
        raise


def provision_webhook(
    store,
    provider: VCSProvider,
    oauth: OauthContext,
    settings: ServerConfig,
    vcs_type: VCSType,
    instance_url: str,
    web_url: str,
    external_id: str,
) -> WebhookProvision:
    """
    Get the webhook a new link for web_url should use.

    Returns:
        The existing webhook of another link to the same repository, or a
        newly created one with a fresh endpoint ID and secret

    Raises:
        GitOpsError: If the webhook cannot be created
    """
    existing = store.find_repositories(web_url=web_url)
    if existing:
        repository = existing[0]
        logger.info(f"Reusing webhook {repository.external_webhook_id} of repository {repository.id} for {web_url}")
        return WebhookProvision(
            webhook_endpoint_id=repository.webhook_endpoint_id,
            webhook_secret_token=repository.webhook_secret_token,
            external_webhook_id=repository.external_webhook_id,
            webhook_url_host=settings.external_url,
        )

    endpoint_id = f"{settings.workspace_id}-{int(time.time())}"
    secret_token = secrets.token_hex(SECRET_TOKEN_LENGTH // 2)
    payload = provider.webhook_create_payload(webhook_url(settings, vcs_type, endpoint_id), secret_token)
    try:
        external_webhook_id = provider.create_webhook(oauth, instance_url, external_id, payload)
    except VCSError as e:
        raise GitOpsError(f"Failed to create webhook for repository {web_url}: {e.message}") from e

    logger.info(f"Created webhook {external_webhook_id} with endpoint {endpoint_id} for {web_url}")
    return WebhookProvision(
        webhook_endpoint_id=endpoint_id,
        webhook_secret_token=secret_token,
        external_webhook_id=external_webhook_id,
        webhook_url_host=settings.external_url,
    )


def release_webhook(store, provider: VCSProvider, oauth: OauthContext, repository: Repository) -> bool:
    """
    Delete the webhook of an unlinked repository if no other link uses it.

    Call after the link itself is deleted. A failed deletion is logged and
    leaves an orphaned webhook, the unlink still stands.

    Returns:
        True if the webhook was deleted
    """
    remaining = store.find_repositories(web_url=repository.web_url)
    if remaining:
        logger.debug(f"Keeping webhook {repository.external_webhook_id}, {len(remaining)} links still use it")
        return False

    try:
        provider.delete_webhook(oauth, repository.vcs.instance_url, repository.external_id,
                                repository.external_webhook_id)
    except VCSError as e:
        logger.error(
            f"Failed to delete webhook {repository.external_webhook_id} for project {repository.project_id}, "
            f"repository {repository.id}: {e.message}"
        )
        return False

    logger.info(f"Deleted webhook {repository.external_webhook_id} of {repository.web_url}")
    return True
