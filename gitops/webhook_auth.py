"""
Webhook authentication and repository resolution.

Several repository links may share one webhook endpoint (projects linked to
the same external repository). Each inbound event is matched against every
link of its endpoint; a link that fails a check is skipped and logged so one
misconfigured project cannot block the others.
"""

import hashlib
import hmac
import logging
from fnmatch import fnmatchcase
from typing import Callable

from models.config_models import ServerConfig
from models.data_models import Repository
from models.vcs_models import VCSSQLReviewRequest
from utils.errors import InvalidRequestError, NotFoundError

logger = logging.getLogger(__name__)

BRANCH_REF_PREFIX = "refs/heads/"

RepositoryPredicate = Callable[[Repository], bool]


def filter_repositories(
    store,
    webhook_endpoint_id: str,
    external_repository_id: str,
    predicate: RepositoryPredicate,
) -> list[Repository]:
    """
    Resolve the repository links an inbound event applies to.

    Args:
        store: Storage adapter
        webhook_endpoint_id: Endpoint ID from the webhook URL
        external_repository_id: Repository ID the provider reports in the event
        predicate: Per-link trust check; exceptions it raises propagate

    Returns:
        Matching links in find order, possibly empty

    Raises:
        NotFoundError: If no link uses this webhook endpoint
    """
    repositories = store.find_repositories(webhook_endpoint_id=webhook_endpoint_id)
    if not repositories:
        raise NotFoundError(f"Endpoint not found: {webhook_endpoint_id}")

    filtered = []
    for repository in repositories:
        if repository.project is None or repository.project.row_status == "ARCHIVED":
            logger.debug(f"Skipping repository {repository.id}: project {repository.project_id} is archived")
            continue
        if repository.vcs is None:
            logger.debug(f"Skipping repository {repository.id}: VCS {repository.vcs_id} not found")
            continue
        if repository.external_id != external_repository_id:
            logger.debug(
                f"Skipping repository {repository.id}: external ID {repository.external_id} "
                f"does not match {external_repository_id}"
            )
            continue
        if not predicate(repository):
            continue
        filtered.append(repository)

    return filtered


def parse_branch_name_from_ref(ref: str) -> str:
    """
    Extract the branch name from a git ref.

    Raises:
        InvalidRequestError: If ref is not a branch ref
    """
    if not ref.startswith(BRANCH_REF_PREFIX) or len(ref) == len(BRANCH_REF_PREFIX):
        raise InvalidRequestError(f"Invalid Git ref: {ref}")
    return ref[len(BRANCH_REF_PREFIX):]


def match_branch_filter(branch: str, branch_filter: str) -> bool:
    """Shell-glob match where wildcards never cross a '/'."""
    if "*" not in branch_filter:
        return branch == branch_filter
    branch_segments = branch.split("/")
    filter_segments = branch_filter.split("/")
    if len(branch_segments) != len(filter_segments):
        return False
    return all(fnmatchcase(b, f) for b, f in zip(branch_segments, filter_segments))


def is_webhook_event_branch(ref: str, branch_filter: str) -> bool:
    """
    Whether a push to ref should be processed for a link with branch_filter.

    Raises:
        InvalidRequestError: If ref is not a branch ref
    """
    branch = parse_branch_name_from_ref(ref)
    if not match_branch_filter(branch, branch_filter):
        logger.debug(f"Committed branch {branch} does not match branch filter {branch_filter}")
        return False
    return True


def validate_github_signature_256(signature_header: str, key: str, body: bytes) -> bool:
    """
    Check the X-Hub-Signature-256 header against the HMAC-SHA256 of the body.

    Args:
        signature_header: Header value, "sha256=<hex digest>"
        key: Webhook secret of the repository link
        body: Raw request body

    Returns:
        True if the signature matches
    """
    signature = signature_header[len("sha256="):] if signature_header.startswith("sha256=") else signature_header
    expected = hmac.new(key.encode("utf-8"), body, hashlib.sha256).hexdigest()
    return hmac.compare_digest(expected.encode("utf-8"), signature.encode("utf-8"))


def _tokens_equal(a: str, b: str) -> bool:
    return hmac.compare_digest(a.encode("utf-8"), b.encode("utf-8"))


def gitlab_token_predicate(token: str) -> RepositoryPredicate:
    """X-Gitlab-Token must equal the link's webhook secret."""
    def predicate(repository: Repository) -> bool:
        if not _tokens_equal(token, repository.webhook_secret_token):
            logger.debug(f"Mismatched GitLab webhook token for repository {repository.id}")
            return False
        return True
    return predicate


def github_signature_predicate(signature_header: str, body: bytes) -> RepositoryPredicate:
    """X-Hub-Signature-256 must be the body signed with the link's webhook secret."""
    def predicate(repository: Repository) -> bool:
        if not validate_github_signature_256(signature_header, repository.webhook_secret_token, body):
            logger.debug(f"Mismatched GitHub payload signature for repository {repository.id}")
            return False
        return True
    return predicate


def push_event_predicate(trust: RepositoryPredicate, ref: str) -> RepositoryPredicate:
    """Trust check first, then the link's branch filter against the pushed ref."""
    def predicate(repository: Repository) -> bool:
        if not trust(repository):
            return False
        return is_webhook_event_branch(ref, repository.branch_filter)
    return predicate


def sql_review_predicate(request: VCSSQLReviewRequest, token: str, settings: ServerConfig) -> RepositoryPredicate:
    """
    Trust check for SQL review requests sent by CI jobs.

    The link must have SQL review CI enabled and live under the request's web
    URL. The token must be the link's webhook secret; in dev mode the
    workspace ID is accepted too so integration tests can call the endpoint.
    """
    def predicate(repository: Repository) -> bool:
        if not repository.enable_sql_review_ci:
            logger.debug(f"Skipping repository {repository.id}: SQL review CI is not enabled")
            return False
        if not repository.web_url.startswith(request.web_url):
            logger.debug(f"Skipping repository {repository.id}: web URL {repository.web_url} does not match {request.web_url}")
            return False
        if token and _tokens_equal(token, repository.webhook_secret_token):
            return True
        if settings.release_mode == "dev" and settings.workspace_id and _tokens_equal(token, settings.workspace_id):
            return True
        logger.debug(f"Mismatched SQL review token for repository {repository.id}")
        return False
    return predicate
