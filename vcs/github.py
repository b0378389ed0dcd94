"""GitHub provider (github.com and GitHub Enterprise).

Repositories are addressed by their full name ("owner/repo"), which is also
the external repository ID stored on the repository link.
"""

import base64
import logging
from datetime import datetime
from typing import Any, Optional
from urllib.parse import quote

from pydantic import ValidationError

from models.vcs_models import (
    BranchInfo,
    Commit,
    FileCommitCreate,
    FileDiff,
    FileItemType,
    FileMeta,
    GitHubPushPayload,
    PullRequest,
    PullRequestCreate,
    PullRequestFile,
    PushEvent,
    RepositoryTreeNode,
    VCSType,
)
from utils.errors import InvalidRequestError, VCSError
from vcs.base import OauthContext, VCSProvider

logger = logging.getLogger(__name__)

GITHUB_COM_URL = "https://github.com"
SQL_REVIEW_WORKFLOW_PATH = ".github/workflows/sql-review.yml"

SQL_REVIEW_WORKFLOW = """name: SQL Review

on:
  pull_request:
    branches:
      - "%BRANCH%"
    paths:
      - "**.sql"

jobs:
  sql-review:
    runs-on: ubuntu-latest
    steps:
      - uses: actions/checkout@v3
      - name: Check SQL
        env:
          API: "%ENDPOINT%"
          SQL_REVIEW_API_SECRET: ${{ vars.SQL_REVIEW_API_SECRET }}
        run: |
          request='{"repositoryId":"${{ github.repository }}","pullRequestId":"${{ github.event.pull_request.number }}","webURL":"${{ github.server_url }}/${{ github.repository }}"}'
          response=$(curl -s -X POST "$API" \\
            -H "Content-Type: application/json" \\
            -H "X-SQL-Review-Token: $SQL_REVIEW_API_SECRET" \\
            -d "$request")
          echo "$response" | jq -r '.content[]'
          if [ "$(echo "$response" | jq -r '.status')" = "ERROR" ]; then
            exit 1
          fi
"""

# GitHub compare statuses mapped onto our change kinds
DIFF_STATUS = {
    "added": FileItemType.ADDED,
    "copied": FileItemType.ADDED,
    "modified": FileItemType.MODIFIED,
    "changed": FileItemType.MODIFIED,
    "renamed": FileItemType.MODIFIED,
    "removed": FileItemType.DELETED,
}


def parse_timestamp(value: Optional[str]) -> int:
    if not value:
        return 0
    return int(datetime.fromisoformat(value.replace("Z", "+00:00")).timestamp())


class GitHubProvider(VCSProvider):
    """GitHub REST API v3 client."""

    vcs_type = VCSType.GITHUB_COM
    rate_limit_headers = ("X-RateLimit-Limit", "X-RateLimit-Remaining", "X-RateLimit-Reset")

    def _headers(self, oauth: OauthContext) -> dict:
        return {
            "Accept": "application/vnd.github+json",
            "Authorization": f"Bearer {oauth.access_token}",
            "X-GitHub-Api-Version": "2022-11-28",
        }

    def api_url(self, instance_url: str) -> str:
        instance_url = instance_url.rstrip("/")
        if not instance_url or instance_url == GITHUB_COM_URL:
            return "https://api.github.com"
        return f"{instance_url}/api/v3"

    def _repo_url(self, instance_url: str, repository_id: str) -> str:
        return f"{self.api_url(instance_url)}/repos/{repository_id}"

    def to_push_event(self, payload: dict[str, Any]) -> PushEvent:
        """
        Convert a GitHub push webhook payload.

        Raises:
            InvalidRequestError: If the payload lacks the repository or ref,
                or a field has the wrong shape
        """
        try:
            push = GitHubPushPayload.model_validate(payload)
            commits = [c.to_commit(parse_timestamp(c.timestamp)) for c in push.commits or []]
        except ValidationError as e:
            raise InvalidRequestError(f"Malformed push event: {e.error_count()} invalid fields") from e
        except ValueError as e:
            raise InvalidRequestError(f"Malformed push event: {e}") from e

        if push.repository is None or not push.repository.full_name or not push.ref:
            raise InvalidRequestError("Malformed push event: missing repository or ref")

        return PushEvent(
            vcs_type=VCSType.GITHUB_COM,
            ref=push.ref,
            before=push.before,
            after=push.after,
            repository_id=push.repository.full_name,
            repository_url=push.repository.html_url,
            repository_full_path=push.repository.full_name,
            author_name=push.sender.login if push.sender else "",
            commit_list=commits,
        )

    def webhook_create_payload(self, url: str, secret: str) -> dict[str, Any]:
        return {
            "config": {
                "url": url,
                "content_type": "json",
                "secret": secret,
                "insecure_ssl": "1",
            },
            "events": ["push"],
        }

    def _get_contents(self, oauth: OauthContext, instance_url: str, repository_id: str,
                      file_path: str, ref: str) -> dict:
        url = f"{self._repo_url(instance_url, repository_id)}/contents/{quote(file_path)}"
        return self._request("GET", url, oauth, instance_url, params={"ref": ref}).json()

    def read_file_content(self, oauth, instance_url, repository_id, file_path, ref) -> str:
        contents = self._get_contents(oauth, instance_url, repository_id, file_path, ref)
        return base64.b64decode(contents.get("content", "")).decode("utf-8")

    def read_file_meta(self, oauth, instance_url, repository_id, file_path, ref) -> FileMeta:
        contents = self._get_contents(oauth, instance_url, repository_id, file_path, ref)
        commits = self._request(
            "GET",
            f"{self._repo_url(instance_url, repository_id)}/commits",
            oauth,
            instance_url,
            params={"path": file_path, "sha": ref, "per_page": 1},
        ).json()
        return FileMeta(
            name=contents.get("name", ""),
            path=contents.get("path", file_path),
            size=contents.get("size", 0),
            last_commit_id=commits[0]["sha"] if commits else "",
        )

    def get_diff_file_list(self, oauth, instance_url, repository_id, before, after) -> list[FileDiff]:
        url = f"{self._repo_url(instance_url, repository_id)}/compare/{before}...{after}"
        comparison = self._request("GET", url, oauth, instance_url).json()
        return [
            FileDiff(path=f["filename"], type=DIFF_STATUS.get(f.get("status"), FileItemType.MODIFIED))
            for f in comparison.get("files") or []
        ]

    def list_pull_request_file(self, oauth, instance_url, repository_id, pull_request_id) -> list[PullRequestFile]:
        pull_url = f"{self._repo_url(instance_url, repository_id)}/pulls/{pull_request_id}"
        head_sha = self._request("GET", pull_url, oauth, instance_url).json()["head"]["sha"]

        files = []
        page = 1
        while True:
            batch = self._request(
                "GET", f"{pull_url}/files", oauth, instance_url,
                params={"per_page": 100, "page": page},
            ).json()
            files.extend(
                PullRequestFile(path=f["filename"], last_commit_id=head_sha, is_deleted=f.get("status") == "removed")
                for f in batch
            )
            if len(batch) < 100:
                break
            page += 1
        return files

    def fetch_commit_by_id(self, oauth, instance_url, repository_id, commit_id) -> Commit:
        url = f"{self._repo_url(instance_url, repository_id)}/commits/{commit_id}"
        data = self._request("GET", url, oauth, instance_url).json()
        author = data.get("commit", {}).get("author") or {}
        message = data.get("commit", {}).get("message", "")
        return Commit(
            id=data["sha"],
            title=message.split("\n", 1)[0],
            message=message,
            created_ts=parse_timestamp(author.get("date")),
            url=data.get("html_url", ""),
            author_name=author.get("name", ""),
            author_email=author.get("email", ""),
        )

    def fetch_repository_file_list(self, oauth, instance_url, repository_id, ref, file_path) -> list[RepositoryTreeNode]:
        url = f"{self._repo_url(instance_url, repository_id)}/git/trees/{quote(ref, safe='')}"
        tree = self._request("GET", url, oauth, instance_url, params={"recursive": "true"}).json()
        prefix = f"{file_path.strip('/')}/" if file_path.strip("/") else ""
        return [
            RepositoryTreeNode(path=node["path"], type=node["type"])
            for node in tree.get("tree") or []
            if node.get("type") == "blob" and node["path"].startswith(prefix)
        ]

    def get_branch(self, oauth, instance_url, repository_id, branch_name) -> BranchInfo:
        url = f"{self._repo_url(instance_url, repository_id)}/git/ref/heads/{branch_name}"
        data = self._request("GET", url, oauth, instance_url).json()
        return BranchInfo(name=branch_name, last_commit_id=data["object"]["sha"])

    def create_branch(self, oauth, instance_url, repository_id, branch) -> None:
        self._request(
            "POST", f"{self._repo_url(instance_url, repository_id)}/git/refs", oauth, instance_url,
            json={"ref": f"refs/heads/{branch.name}", "sha": branch.last_commit_id},
        )

    def _put_file(self, oauth, instance_url, repository_id, file_path, file_commit, sha: str = "") -> None:
        body = {
            "message": file_commit.commit_message,
            "content": base64.b64encode(file_commit.content.encode("utf-8")).decode("ascii"),
            "branch": file_commit.branch,
        }
        if sha:
            body["sha"] = sha
        url = f"{self._repo_url(instance_url, repository_id)}/contents/{quote(file_path)}"
        self._request("PUT", url, oauth, instance_url, json=body)

    def create_file(self, oauth, instance_url, repository_id, file_path, file_commit: FileCommitCreate) -> None:
        self._put_file(oauth, instance_url, repository_id, file_path, file_commit)

    def overwrite_file(self, oauth, instance_url, repository_id, file_path, file_commit: FileCommitCreate) -> None:
        # Updating contents requires the blob SHA of the current file
        contents = self._get_contents(oauth, instance_url, repository_id, file_path, file_commit.branch)
        self._put_file(oauth, instance_url, repository_id, file_path, file_commit, sha=contents["sha"])

    def create_pull_request(self, oauth, instance_url, repository_id, pull_request: PullRequestCreate) -> PullRequest:
        data = self._request(
            "POST", f"{self._repo_url(instance_url, repository_id)}/pulls", oauth, instance_url,
            json={
                "title": pull_request.title,
                "body": pull_request.body,
                "head": pull_request.head,
                "base": pull_request.base,
            },
        ).json()
        return PullRequest(url=data["html_url"])

    def create_webhook(self, oauth, instance_url, repository_id, payload) -> str:
        data = self._request(
            "POST", f"{self._repo_url(instance_url, repository_id)}/hooks", oauth, instance_url, json=payload,
        ).json()
        return str(data["id"])

    def delete_webhook(self, oauth, instance_url, repository_id, webhook_id) -> None:
        url = f"{self._repo_url(instance_url, repository_id)}/hooks/{webhook_id}"
        self._request("DELETE", url, oauth, instance_url)

    def upsert_environment_variable(self, oauth, instance_url, repository_id, key, value) -> None:
        """Store the value as an Actions repository variable."""
        variables_url = f"{self._repo_url(instance_url, repository_id)}/actions/variables"
        try:
            self._request("PATCH", f"{variables_url}/{key}", oauth, instance_url, json={"name": key, "value": value})
        except VCSError as e:
            if not e.not_found:
                raise
            self._request("POST", variables_url, oauth, instance_url, json={"name": key, "value": value})

    def setup_sql_review_ci_files(self, oauth, instance_url, repository_id, branch_name,
                                  target_branch, sql_review_endpoint) -> None:
        content = SQL_REVIEW_WORKFLOW.replace("%BRANCH%", target_branch).replace("%ENDPOINT%", sql_review_endpoint)
        self.write_file(
            oauth, instance_url, repository_id, SQL_REVIEW_WORKFLOW_PATH, branch_name,
            content, "chore: set up SQL review CI",
        )
