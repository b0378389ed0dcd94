"""Tests for the GitLab provider."""

from unittest.mock import Mock, patch

import pytest
import yaml

from utils.errors import InvalidRequestError, VCSError
from vcs.base import OauthContext
from vcs.gitlab import GITLAB_CI_PATH, SQL_REVIEW_CI_PATH, GitLabProvider, merge_sql_review_include

INSTANCE = "https://gitlab.example.com"


def response(status_code=200, json_data=None, text=""):
    mock_response = Mock()
    mock_response.status_code = status_code
    mock_response.json.return_value = json_data
    mock_response.text = text
    mock_response.headers = {}
    return mock_response


@pytest.fixture
def oauth():
    return OauthContext(
        client_id="app-id",
        client_secret="app-secret",
        access_token="expired",
        refresh_token="refresh-1",
        refresher=Mock(),
    )


class TestTokenRefresh:
    """An expired token is rotated once and persisted through the refresher."""

    def test_refresh_and_retry(self, oauth):
        token_response = Mock()
        token_response.json.return_value = {
            "access_token": "fresh",
            "refresh_token": "refresh-2",
            "expires_in": 7200,
            "created_at": 1700000000,
        }
        replies = [response(status_code=401, text="expired"), response(text="SELECT 1;")]

        with patch("requests.request", side_effect=replies) as mock_request, \
                patch("requests.post", return_value=token_response) as mock_post:
            content = GitLabProvider().read_file_content(oauth, INSTANCE, "42", "db/a.sql", "main")

        assert content == "SELECT 1;"
        assert mock_post.call_args[0][0] == "https://gitlab.example.com/oauth/token"
        assert mock_post.call_args[1]["data"]["refresh_token"] == "refresh-1"
        oauth.refresher.assert_called_once_with("fresh", "refresh-2", 1700007200)
        assert mock_request.call_args[1]["headers"]["Authorization"] == "Bearer fresh"

    def test_second_401_fails(self, oauth):
        token_response = Mock()
        token_response.json.return_value = {"access_token": "fresh"}
        replies = [response(status_code=401), response(status_code=401)]

        with patch("requests.request", side_effect=replies), patch("requests.post", return_value=token_response):
            with pytest.raises(VCSError) as exc_info:
                GitLabProvider().read_file_content(oauth, INSTANCE, "42", "db/a.sql", "main")

        assert exc_info.value.upstream_status == 401

    def test_no_refresh_token(self, oauth):
        oauth.refresh_token = ""
        with patch("requests.request", return_value=response(status_code=401)), patch("requests.post") as mock_post:
            with pytest.raises(VCSError):
                GitLabProvider().read_file_content(oauth, INSTANCE, "42", "db/a.sql", "main")

        mock_post.assert_not_called()


class TestEndpoints:

    def test_file_url_encodes_path(self, oauth):
        with patch("requests.request", return_value=response(text="x")) as mock_request:
            GitLabProvider().read_file_content(oauth, INSTANCE, "42", "bytebase/dev/a.sql", "abc")

        assert mock_request.call_args[0][1] == (
            "https://gitlab.example.com/api/v4/projects/42/repository/files/bytebase%2Fdev%2Fa.sql/raw"
        )

    def test_diff_file_list(self, oauth):
        comparison = {"diffs": [
            {"new_path": "a.sql", "new_file": True},
            {"new_path": "b.sql"},
            {"new_path": "c.sql", "deleted_file": True},
        ]}
        with patch("requests.request", return_value=response(json_data=comparison)) as mock_request:
            diffs = GitLabProvider().get_diff_file_list(oauth, INSTANCE, "42", "aaa", "bbb")

        assert [d.type.value for d in diffs] == ["added", "modified", "deleted"]
        assert mock_request.call_args[1]["params"] == {"from": "aaa", "to": "bbb"}

    def test_merge_request_files(self, oauth):
        changes = {"sha": "head", "changes": [
            {"new_path": "a.sql"},
            {"new_path": "gone.sql", "deleted_file": True},
        ]}
        with patch("requests.request", return_value=response(json_data=changes)):
            files = GitLabProvider().list_pull_request_file(oauth, INSTANCE, "42", "7")

        assert [(f.path, f.is_deleted) for f in files] == [("a.sql", False), ("gone.sql", True)]
        assert files[0].last_commit_id == "head"

    def test_create_merge_request(self, oauth):
        from models.vcs_models import PullRequestCreate

        with patch("requests.request", return_value=response(json_data={"web_url": "https://mr/1"})) as mock_request:
            pull_request = GitLabProvider().create_pull_request(oauth, INSTANCE, "42", PullRequestCreate(
                title="t", head="feature", base="main",
            ))

        assert pull_request.url == "https://mr/1"
        body = mock_request.call_args[1]["json"]
        assert body["source_branch"] == "feature"
        assert body["target_branch"] == "main"
        assert body["remove_source_branch"] is True


class TestSQLReviewCIFiles:

    def test_merge_into_empty_file(self):
        config = yaml.safe_load(merge_sql_review_include(""))
        assert config == {"include": [{"local": "/sql-review.yml"}]}

    def test_merge_keeps_existing_jobs_and_includes(self):
        existing = "include: /other.yml\nbuild:\n  script: make\n"
        config = yaml.safe_load(merge_sql_review_include(existing))

        assert config["build"] == {"script": "make"}
        assert config["include"] == ["/other.yml", {"local": "/sql-review.yml"}]

    def test_merge_is_idempotent(self):
        once = merge_sql_review_include("")
        assert yaml.safe_load(merge_sql_review_include(once)) == yaml.safe_load(once)

    def test_non_mapping_rejected(self):
        with pytest.raises(InvalidRequestError):
            merge_sql_review_include("- just\n- a list\n")

    def test_setup_writes_both_files(self, oauth):
        provider = GitLabProvider()
        with patch.object(provider, "read_file_content", side_effect=VCSError("missing", upstream_status=404)), \
                patch.object(provider, "write_file") as write_file:
            provider.setup_sql_review_ci_files(
                oauth, INSTANCE, "42", "gitops-sql-review-1", "main",
                "https://gitops.example.com/hook/sql-review/ws-1",
            )

        written = {c[0][3]: c[0][5] for c in write_file.call_args_list}
        assert set(written) == {GITLAB_CI_PATH, SQL_REVIEW_CI_PATH}
        assert "https://gitops.example.com/hook/sql-review/ws-1" in written[SQL_REVIEW_CI_PATH]
        assert all(c[0][4] == "gitops-sql-review-1" for c in write_file.call_args_list)

    def test_write_file_overwrites_existing(self, oauth):
        provider = GitLabProvider()
        meta = {"file_name": "sql-review.yml", "file_path": "sql-review.yml", "last_commit_id": "c9"}
        replies = [response(json_data=meta), response()]

        with patch("requests.request", side_effect=replies) as mock_request:
            provider.write_file(oauth, INSTANCE, "42", "sql-review.yml", "branch", "content", "msg")

        assert mock_request.call_args[0][0] == "PUT"
        assert mock_request.call_args[1]["json"]["last_commit_id"] == "c9"

    def test_write_file_creates_missing(self, oauth):
        provider = GitLabProvider()
        replies = [response(status_code=404, text="404 File Not Found"), response(status_code=201)]

        with patch("requests.request", side_effect=replies) as mock_request:
            provider.write_file(oauth, INSTANCE, "42", "sql-review.yml", "branch", "content", "msg")

        assert mock_request.call_args[0][0] == "POST"
        assert "last_commit_id" not in mock_request.call_args[1]["json"]


class TestPushPayload:

    def test_missing_project(self):
        with pytest.raises(InvalidRequestError):
            GitLabProvider().to_push_event({"ref": "refs/heads/main"})
