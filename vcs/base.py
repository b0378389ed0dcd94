"""
Uniform capability interface over the supported VCS providers.

The pipeline never talks to GitHub or GitLab directly: it asks a VCSProvider
for file contents, diffs, pull request files and so on, passing an
OauthContext holding the repository's token pair. Providers that rotate
tokens hand the new pair to the context's refresher so it can be persisted.
"""

import logging
from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import Any, Callable, Optional

import requests

from models.vcs_models import (
    BranchInfo,
    Commit,
    FileCommitCreate,
    FileDiff,
    FileMeta,
    PullRequest,
    PullRequestCreate,
    PullRequestFile,
    PushEvent,
    RepositoryTreeNode,
)
from utils.errors import VCSError

logger = logging.getLogger(__name__)

# Called with (access_token, refresh_token, expires_ts) after a token rotation
TokenRefresher = Callable[[str, str, int], None]


@dataclass
class OauthContext:
    client_id: str
    client_secret: str
    access_token: str
    refresh_token: str = ""
    refresher: Optional[TokenRefresher] = None


class VCSProvider(ABC):
    """One provider family. All calls are bounded by the request timeout."""

    # Response headers describing the provider's rate limit
    rate_limit_headers: tuple = ()

    def __init__(self, timeout: float = 30.0):
        self.timeout = timeout

    def _headers(self, oauth: OauthContext) -> dict:
        return {"Authorization": f"Bearer {oauth.access_token}"}

    def _refresh_token(self, oauth: OauthContext, instance_url: str) -> bool:
        """Rotate an expired token. Returns True when the call should be retried."""
        return False

    def _request(
        self,
        method: str,
        url: str,
        oauth: OauthContext,
        instance_url: str = "",
        **kwargs,
    ) -> requests.Response:
        """
        Send one API request.

        A 401 is retried once when the provider managed to rotate the token.
        Rate limiting is not retried: the caller decides what to do with it.

        Raises:
            VCSError: On network failures and non-2xx responses
        """
        extra_headers = kwargs.pop("headers", {})
        refreshed = False
        while True:
            try:
                response = requests.request(
                    method,
                    url,
                    headers={**self._headers(oauth), **extra_headers},
                    timeout=self.timeout,
                    **kwargs,
                )
            except requests.RequestException as e:
                logger.error(f"{method} {url} failed: {e}")
                raise VCSError(f"failed to call {url}: {e}") from e

            if response.status_code == 401 and not refreshed and self._refresh_token(oauth, instance_url):
                refreshed = True
                continue

            if response.status_code == 429:
                limits = {h: response.headers.get(h) for h in self.rate_limit_headers if h in response.headers}
                logger.warning(f"Rate limited by {url}: {limits}")
                raise VCSError(f"rate limited by {url}", upstream_status=429)

            if response.status_code >= 400:
                logger.debug(f"{method} {url} returned {response.status_code}: {response.text[:200]}")
                raise VCSError(
                    f"{method} {url} returned {response.status_code}: {response.text[:200]}",
                    upstream_status=response.status_code,
                )

            return response

    @abstractmethod
    def to_push_event(self, payload: dict[str, Any]) -> PushEvent:
        """Convert the provider's push webhook payload."""

    @abstractmethod
    def webhook_create_payload(self, url: str, secret: str) -> dict[str, Any]:
        """Body of the create-webhook call pointing at url."""

    @abstractmethod
    def read_file_content(self, oauth: OauthContext, instance_url: str, repository_id: str,
                          file_path: str, ref: str) -> str:
        pass

    @abstractmethod
    def read_file_meta(self, oauth: OauthContext, instance_url: str, repository_id: str,
                       file_path: str, ref: str) -> FileMeta:
        pass

    @abstractmethod
    def get_diff_file_list(self, oauth: OauthContext, instance_url: str, repository_id: str,
                           before: str, after: str) -> list[FileDiff]:
        pass

    @abstractmethod
    def list_pull_request_file(self, oauth: OauthContext, instance_url: str, repository_id: str,
                               pull_request_id: str) -> list[PullRequestFile]:
        pass

    @abstractmethod
    def fetch_commit_by_id(self, oauth: OauthContext, instance_url: str, repository_id: str,
                           commit_id: str) -> Commit:
        pass

    @abstractmethod
    def fetch_repository_file_list(self, oauth: OauthContext, instance_url: str, repository_id: str,
                                   ref: str, file_path: str) -> list[RepositoryTreeNode]:
        """Every file under file_path at ref, recursively."""

    @abstractmethod
    def get_branch(self, oauth: OauthContext, instance_url: str, repository_id: str,
                   branch_name: str) -> BranchInfo:
        pass

    @abstractmethod
    def create_branch(self, oauth: OauthContext, instance_url: str, repository_id: str,
                      branch: BranchInfo) -> None:
        pass

    @abstractmethod
    def create_file(self, oauth: OauthContext, instance_url: str, repository_id: str,
                    file_path: str, file_commit: FileCommitCreate) -> None:
        pass

    @abstractmethod
    def overwrite_file(self, oauth: OauthContext, instance_url: str, repository_id: str,
                       file_path: str, file_commit: FileCommitCreate) -> None:
        pass

    @abstractmethod
    def create_pull_request(self, oauth: OauthContext, instance_url: str, repository_id: str,
                            pull_request: PullRequestCreate) -> PullRequest:
        pass

    @abstractmethod
    def create_webhook(self, oauth: OauthContext, instance_url: str, repository_id: str,
                       payload: dict[str, Any]) -> str:
        """Create a webhook and return its external ID."""

    @abstractmethod
    def delete_webhook(self, oauth: OauthContext, instance_url: str, repository_id: str,
                       webhook_id: str) -> None:
        pass

    @abstractmethod
    def upsert_environment_variable(self, oauth: OauthContext, instance_url: str, repository_id: str,
                                    key: str, value: str) -> None:
        pass

    @abstractmethod
    def setup_sql_review_ci_files(self, oauth: OauthContext, instance_url: str, repository_id: str,
                                  branch_name: str, target_branch: str, sql_review_endpoint: str) -> None:
        """Commit the CI configuration calling sql_review_endpoint onto branch_name.

        The CI job runs for pull requests against target_branch.
        """

    def write_file(self, oauth: OauthContext, instance_url: str, repository_id: str,
                   file_path: str, branch_name: str, content: str, commit_message: str) -> None:
        """Create file_path on the branch, or overwrite it when it already exists."""
        try:
            meta = self.read_file_meta(oauth, instance_url, repository_id, file_path, branch_name)
        except VCSError as e:
            if not e.not_found:
                raise
            self.create_file(oauth, instance_url, repository_id, file_path, FileCommitCreate(
                branch=branch_name, content=content, commit_message=commit_message,
            ))
            return

        self.overwrite_file(oauth, instance_url, repository_id, file_path, FileCommitCreate(
            branch=branch_name,
            content=content,
            commit_message=commit_message,
            last_commit_id=meta.last_commit_id,
        ))
