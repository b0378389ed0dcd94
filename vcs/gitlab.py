"""GitLab provider (self-hosted instances).

Key differences from GitHub:
- Repositories are addressed by numeric project ID
- OAuth tokens expire; an expired token is rotated once on 401
- Merge requests instead of pull requests, identified by their iid
- CI configuration lives in .gitlab-ci.yml, which may already exist
"""

import logging
import time
from typing import Any
from urllib.parse import quote

import requests
import yaml
from pydantic import ValidationError

from models.vcs_models import (
    BranchInfo,
    Commit,
    FileCommitCreate,
    FileDiff,
    FileItemType,
    FileMeta,
    GitLabPushPayload,
    PullRequest,
    PullRequestCreate,
    PullRequestFile,
    PushEvent,
    RepositoryTreeNode,
    VCSType,
)
from utils.errors import InvalidRequestError, VCSError
from vcs.base import OauthContext, VCSProvider
from vcs.github import parse_timestamp

logger = logging.getLogger(__name__)

GITLAB_CI_PATH = ".gitlab-ci.yml"
SQL_REVIEW_CI_PATH = "sql-review.yml"

SQL_REVIEW_CI = """sql-review:
  image: alpine:3.18
  stage: test
  rules:
    - if: $CI_PIPELINE_SOURCE == "merge_request_event"
  before_script:
    - apk add --no-cache curl jq
  script:
    - |
      request="{\\"repositoryId\\":\\"$CI_PROJECT_ID\\",\\"pullRequestId\\":\\"$CI_MERGE_REQUEST_IID\\",\\"webURL\\":\\"$CI_PROJECT_URL\\"}"
      response=$(curl -s -X POST "%ENDPOINT%" \\
        -H "Content-Type: application/json" \\
        -H "X-SQL-Review-Token: $SQL_REVIEW_API_SECRET" \\
        -d "$request")
      echo "$response" | jq -r '.content[0]' > sql-review.xml
      if [ "$(echo "$response" | jq -r '.status')" = "ERROR" ]; then exit 1; fi
  artifacts:
    when: always
    reports:
      junit: sql-review.xml
"""


def merge_sql_review_include(gitlab_ci: str) -> str:
    """
    Add the SQL review include to an existing .gitlab-ci.yml.

    Args:
        gitlab_ci: Current file content, empty when the file does not exist

    Returns:
        The YAML document with a local include of sql-review.yml
    """
    config = yaml.safe_load(gitlab_ci) if gitlab_ci.strip() else {}
    if not isinstance(config, dict):
        raise InvalidRequestError(f"{GITLAB_CI_PATH} is not a YAML mapping")

    include = config.get("include")
    if include is None:
        include = []
    elif not isinstance(include, list):
        include = [include]

    entry = {"local": f"/{SQL_REVIEW_CI_PATH}"}
    if entry not in include and f"/{SQL_REVIEW_CI_PATH}" not in include:
        include.append(entry)
    config["include"] = include
    return yaml.safe_dump(config, sort_keys=False)


class GitLabProvider(VCSProvider):
    """GitLab REST API v4 client."""

    vcs_type = VCSType.GITLAB_SELF_HOST
    rate_limit_headers = ("RateLimit-Limit", "RateLimit-Remaining", "Retry-After")

    def api_url(self, instance_url: str) -> str:
        return f"{instance_url.rstrip('/')}/api/v4"

    def _project_url(self, instance_url: str, repository_id: str) -> str:
        return f"{self.api_url(instance_url)}/projects/{quote(str(repository_id), safe='')}"

    def _file_url(self, instance_url: str, repository_id: str, file_path: str) -> str:
        return f"{self._project_url(instance_url, repository_id)}/repository/files/{quote(file_path, safe='')}"

    def _refresh_token(self, oauth: OauthContext, instance_url: str) -> bool:
        """
        Exchange the refresh token for a new token pair.

        The new pair is written into oauth and handed to its refresher so the
        repository row can be updated.
        """
        if not oauth.refresh_token:
            return False

        logger.info(f"Refreshing expired GitLab OAuth token for {instance_url}")
        try:
            response = requests.post(
                f"{instance_url.rstrip('/')}/oauth/token",
                data={
                    "grant_type": "refresh_token",
                    "refresh_token": oauth.refresh_token,
                    "client_id": oauth.client_id,
                    "client_secret": oauth.client_secret,
                },
                timeout=self.timeout,
            )
            response.raise_for_status()
        except requests.RequestException as e:
            logger.error(f"Failed to refresh GitLab OAuth token: {e}")
            return False

        token = response.json()
        oauth.access_token = token["access_token"]
        oauth.refresh_token = token.get("refresh_token", oauth.refresh_token)
        expires_in = token.get("expires_in") or 0
        expires_ts = int(token.get("created_at") or time.time()) + int(expires_in) if expires_in else 0
        if oauth.refresher:
            oauth.refresher(oauth.access_token, oauth.refresh_token, expires_ts)
        return True

    def to_push_event(self, payload: dict[str, Any]) -> PushEvent:
        """
        Convert a GitLab push hook payload.

        Raises:
            InvalidRequestError: If the payload lacks the project or ref,
                or a field has the wrong shape
        """
        try:
            push = GitLabPushPayload.model_validate(payload)
            commits = [c.to_commit(parse_timestamp(c.timestamp)) for c in push.commits or []]
        except ValidationError as e:
            raise InvalidRequestError(f"Malformed push event: {e.error_count()} invalid fields") from e
        except ValueError as e:
            raise InvalidRequestError(f"Malformed push event: {e}") from e

        if push.project is None or not push.ref:
            raise InvalidRequestError("Malformed push event: missing project or ref")

        return PushEvent(
            vcs_type=VCSType.GITLAB_SELF_HOST,
            ref=push.ref,
            before=push.before,
            after=push.after,
            repository_id=str(push.project.id),
            repository_url=push.project.web_url,
            repository_full_path=push.project.path_with_namespace,
            author_name=push.user_name,
            commit_list=commits,
        )

    def webhook_create_payload(self, url: str, secret: str) -> dict[str, Any]:
        return {
            "url": url,
            "token": secret,
            "push_events": True,
            "enable_ssl_verification": False,
        }

    def read_file_content(self, oauth, instance_url, repository_id, file_path, ref) -> str:
        url = f"{self._file_url(instance_url, repository_id, file_path)}/raw"
        return self._request("GET", url, oauth, instance_url, params={"ref": ref}).text

    def read_file_meta(self, oauth, instance_url, repository_id, file_path, ref) -> FileMeta:
        url = self._file_url(instance_url, repository_id, file_path)
        data = self._request("GET", url, oauth, instance_url, params={"ref": ref}).json()
        return FileMeta(
            name=data.get("file_name", ""),
            path=data.get("file_path", file_path),
            size=data.get("size", 0),
            last_commit_id=data.get("last_commit_id", ""),
        )

    def get_diff_file_list(self, oauth, instance_url, repository_id, before, after) -> list[FileDiff]:
        url = f"{self._project_url(instance_url, repository_id)}/repository/compare"
        comparison = self._request("GET", url, oauth, instance_url, params={"from": before, "to": after}).json()
        diffs = []
        for diff in comparison.get("diffs") or []:
            if diff.get("new_file"):
                item_type = FileItemType.ADDED
            elif diff.get("deleted_file"):
                item_type = FileItemType.DELETED
            else:
                item_type = FileItemType.MODIFIED
            diffs.append(FileDiff(path=diff["new_path"], type=item_type))
        return diffs

    def list_pull_request_file(self, oauth, instance_url, repository_id, pull_request_id) -> list[PullRequestFile]:
        url = f"{self._project_url(instance_url, repository_id)}/merge_requests/{pull_request_id}/changes"
        merge_request = self._request("GET", url, oauth, instance_url).json()
        head_sha = merge_request.get("sha", "")
        return [
            PullRequestFile(
                path=change["new_path"],
                last_commit_id=head_sha,
                is_deleted=bool(change.get("deleted_file")),
            )
            for change in merge_request.get("changes") or []
        ]

    def fetch_commit_by_id(self, oauth, instance_url, repository_id, commit_id) -> Commit:
        url = f"{self._project_url(instance_url, repository_id)}/repository/commits/{commit_id}"
        data = self._request("GET", url, oauth, instance_url).json()
        return Commit(
            id=data["id"],
            title=data.get("title", ""),
            message=data.get("message", ""),
            created_ts=parse_timestamp(data.get("created_at")),
            url=data.get("web_url", ""),
            author_name=data.get("author_name", ""),
            author_email=data.get("author_email", ""),
        )

    def fetch_repository_file_list(self, oauth, instance_url, repository_id, ref, file_path) -> list[RepositoryTreeNode]:
        url = f"{self._project_url(instance_url, repository_id)}/repository/tree"
        nodes = []
        page = 1
        while True:
            params = {"ref": ref, "recursive": "true", "per_page": 100, "page": page}
            if file_path.strip("/"):
                params["path"] = file_path.strip("/")
            batch = self._request("GET", url, oauth, instance_url, params=params).json()
            nodes.extend(
                RepositoryTreeNode(path=node["path"], type=node["type"])
                for node in batch
                if node.get("type") == "blob"
            )
            if len(batch) < 100:
                break
            page += 1
        return nodes

    def get_branch(self, oauth, instance_url, repository_id, branch_name) -> BranchInfo:
        url = f"{self._project_url(instance_url, repository_id)}/repository/branches/{quote(branch_name, safe='')}"
        data = self._request("GET", url, oauth, instance_url).json()
        return BranchInfo(name=data["name"], last_commit_id=data["commit"]["id"])

    def create_branch(self, oauth, instance_url, repository_id, branch) -> None:
        self._request(
            "POST", f"{self._project_url(instance_url, repository_id)}/repository/branches", oauth, instance_url,
            json={"branch": branch.name, "ref": branch.last_commit_id},
        )

    def _file_body(self, file_commit: FileCommitCreate) -> dict:
        body = {
            "branch": file_commit.branch,
            "content": file_commit.content,
            "commit_message": file_commit.commit_message,
        }
        if file_commit.last_commit_id:
            body["last_commit_id"] = file_commit.last_commit_id
        return body

    def create_file(self, oauth, instance_url, repository_id, file_path, file_commit: FileCommitCreate) -> None:
        url = self._file_url(instance_url, repository_id, file_path)
        self._request("POST", url, oauth, instance_url, json=self._file_body(file_commit))

    def overwrite_file(self, oauth, instance_url, repository_id, file_path, file_commit: FileCommitCreate) -> None:
        url = self._file_url(instance_url, repository_id, file_path)
        self._request("PUT", url, oauth, instance_url, json=self._file_body(file_commit))

    def create_pull_request(self, oauth, instance_url, repository_id, pull_request: PullRequestCreate) -> PullRequest:
        data = self._request(
            "POST", f"{self._project_url(instance_url, repository_id)}/merge_requests", oauth, instance_url,
            json={
                "source_branch": pull_request.head,
                "target_branch": pull_request.base,
                "title": pull_request.title,
                "description": pull_request.body,
                "remove_source_branch": pull_request.remove_head_after_merged,
            },
        ).json()
        return PullRequest(url=data["web_url"])

    def create_webhook(self, oauth, instance_url, repository_id, payload) -> str:
        data = self._request(
            "POST", f"{self._project_url(instance_url, repository_id)}/hooks", oauth, instance_url, json=payload,
        ).json()
        return str(data["id"])

    def delete_webhook(self, oauth, instance_url, repository_id, webhook_id) -> None:
        url = f"{self._project_url(instance_url, repository_id)}/hooks/{webhook_id}"
        self._request("DELETE", url, oauth, instance_url)

    def upsert_environment_variable(self, oauth, instance_url, repository_id, key, value) -> None:
        variables_url = f"{self._project_url(instance_url, repository_id)}/variables"
        try:
            self._request("PUT", f"{variables_url}/{key}", oauth, instance_url, json={"value": value})
        except VCSError as e:
            if not e.not_found:
                raise
            self._request("POST", variables_url, oauth, instance_url, json={"key": key, "value": value})

    def setup_sql_review_ci_files(self, oauth, instance_url, repository_id, branch_name,
                                  target_branch, sql_review_endpoint) -> None:
        try:
            gitlab_ci = self.read_file_content(oauth, instance_url, repository_id, GITLAB_CI_PATH, branch_name)
        except VCSError as e:
            if not e.not_found:
                raise
            gitlab_ci = ""

        self.write_file(
            oauth, instance_url, repository_id, GITLAB_CI_PATH, branch_name,
            merge_sql_review_include(gitlab_ci), "chore: include SQL review CI",
        )
        self.write_file(
            oauth, instance_url, repository_id, SQL_REVIEW_CI_PATH, branch_name,
            SQL_REVIEW_CI.replace("%ENDPOINT%", sql_review_endpoint), "chore: set up SQL review CI",
        )
