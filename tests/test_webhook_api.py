"""
Tests for the webhook and project API endpoints.

These tests use FastAPI's TestClient with the dependencies overridden, so
no server, Supabase project or VCS provider is needed.
"""

import hashlib
import hmac
import json
from unittest.mock import Mock

import pytest
from fastapi.testclient import TestClient

from advisor.advice import AdviceStatus
from backend.app import app
from backend.dependencies import (
    get_config,
    get_provider_factory,
    get_push_processor,
    get_sheet_sync_service,
    get_sql_review_service,
    get_store,
)
from conftest import make_repository, make_vcs
from models.config_models import Config, CredentialsConfig
from models.data_models import Sheet
from models.vcs_models import VCSSQLReviewResult, VCSType
from utils.errors import InvalidRequestError, NotFoundError, PermissionDeniedError, SQLReviewUnavailableError
from vcs.registry import get_provider

ENDPOINT = "ws-test-1700000000"

GITLAB_PUSH = {
    "object_kind": "push",
    "ref": "refs/heads/main",
    "before": "a" * 40,
    "after": "b" * 40,
    "user_name": "Alex",
    "project": {"id": 42, "web_url": "https://gitlab.example.com/acme/shop", "path_with_namespace": "acme/shop"},
    "commits": [{
        "id": "c1",
        "message": "Add notes",
        "timestamp": "2024-01-02T03:04:05+00:00",
        "author": {"name": "Alex", "email": "alex@example.com"},
        "added": ["bytebase/dev/shop__v1__migrate__notes.sql"],
        "modified": [],
    }],
}

GITHUB_PUSH = {
    "ref": "refs/heads/main",
    "before": "a" * 40,
    "after": "b" * 40,
    "repository": {"full_name": "acme/shop", "html_url": "https://github.com/acme/shop"},
    "sender": {"login": "alex"},
    "commits": [],
}


@pytest.fixture
def processor():
    processor = Mock()
    processor.process_push_event.return_value = ["Created issue \"[shop] Alter schema\" from push event"]
    return processor


@pytest.fixture
def review_service():
    return Mock()


@pytest.fixture
def sheet_service():
    return Mock()


@pytest.fixture
def client(store, settings, processor, review_service, sheet_service):
    """Create FastAPI test client with every dependency replaced."""
    config = Config(
        credentials=CredentialsConfig(supabase_url="https://test-project.supabase.co", supabase_key="key"),
        server=settings,
    )
    app.dependency_overrides[get_config] = lambda: config
    app.dependency_overrides[get_store] = lambda: store
    app.dependency_overrides[get_provider_factory] = lambda: (lambda vcs_type: get_provider(vcs_type))
    app.dependency_overrides[get_push_processor] = lambda: processor
    app.dependency_overrides[get_sql_review_service] = lambda: review_service
    app.dependency_overrides[get_sheet_sync_service] = lambda: sheet_service
    with TestClient(app) as test_client:
        yield test_client
    app.dependency_overrides.clear()


def github_signature(secret: str, body: bytes) -> str:
    return "sha256=" + hmac.new(secret.encode(), body, hashlib.sha256).hexdigest()


class TestGitLabWebhook:
    """Tests for POST /hook/gitlab/{endpoint_id}."""

    def test_push_creates_issue(self, client, store, processor):
        store.repositories = [make_repository()]

        response = client.post(f"/hook/gitlab/{ENDPOINT}", json=GITLAB_PUSH, headers={"X-Gitlab-Token": "s3cret"})

        assert response.status_code == 200
        assert response.text == "Created issue \"[shop] Alter schema\" from push event"
        repositories, push_event = processor.process_push_event.call_args[0]
        assert [r.id for r in repositories] == [11]
        assert push_event.repository_id == "42"

    def test_wrong_token_is_ignored(self, client, store, processor):
        store.repositories = [make_repository()]

        response = client.post(f"/hook/gitlab/{ENDPOINT}", json=GITLAB_PUSH, headers={"X-Gitlab-Token": "nope"})

        assert response.status_code == 200
        assert response.text == "OK"
        processor.process_push_event.assert_not_called()

    def test_other_branch_is_ignored(self, client, store, processor):
        store.repositories = [make_repository(branch_filter="release/*")]

        response = client.post(f"/hook/gitlab/{ENDPOINT}", json=GITLAB_PUSH, headers={"X-Gitlab-Token": "s3cret"})

        assert response.text == "OK"
        processor.process_push_event.assert_not_called()

    def test_non_push_event(self, client, processor):
        response = client.post(f"/hook/gitlab/{ENDPOINT}", json={"object_kind": "merge_request"})

        assert response.status_code == 200
        assert response.text == "OK"

    def test_unknown_endpoint(self, client):
        response = client.post("/hook/gitlab/missing", json=GITLAB_PUSH, headers={"X-Gitlab-Token": "s3cret"})

        assert response.status_code == 404
        assert response.json()["detail"] == "Endpoint not found: missing"

    def test_malformed_body(self, client):
        response = client.post(f"/hook/gitlab/{ENDPOINT}", content=b"{not json", headers={"X-Gitlab-Token": "s3cret"})

        assert response.status_code == 400
        assert response.json()["detail"] == "Malformed push event"

    def test_tag_push_rejected(self, client, store):
        store.repositories = [make_repository()]
        payload = dict(GITLAB_PUSH, ref="refs/tags/v1.0")

        response = client.post(f"/hook/gitlab/{ENDPOINT}", json=payload, headers={"X-Gitlab-Token": "s3cret"})

        assert response.status_code == 400
        assert "Invalid Git ref" in response.json()["detail"]

    def test_commit_without_id_rejected(self, client, store, processor):
        store.repositories = [make_repository()]
        commit = {k: v for k, v in GITLAB_PUSH["commits"][0].items() if k != "id"}
        payload = dict(GITLAB_PUSH, commits=[commit])

        response = client.post(f"/hook/gitlab/{ENDPOINT}", json=payload, headers={"X-Gitlab-Token": "s3cret"})

        assert response.status_code == 400
        assert response.json()["detail"].startswith("Malformed push event")
        processor.process_push_event.assert_not_called()

    def test_project_not_an_object_rejected(self, client):
        payload = dict(GITLAB_PUSH, project="acme/shop")

        response = client.post(f"/hook/gitlab/{ENDPOINT}", json=payload, headers={"X-Gitlab-Token": "s3cret"})

        assert response.status_code == 400

    def test_bad_commit_timestamp_rejected(self, client):
        commit = dict(GITLAB_PUSH["commits"][0], timestamp="yesterday")

        response = client.post(
            f"/hook/gitlab/{ENDPOINT}", json=dict(GITLAB_PUSH, commits=[commit]), headers={"X-Gitlab-Token": "s3cret"},
        )

        assert response.status_code == 400

    def test_license_error_maps_to_403(self, client, store, processor):
        store.repositories = [make_repository()]
        processor.process_push_event.side_effect = PermissionDeniedError("upgrade")

        response = client.post(f"/hook/gitlab/{ENDPOINT}", json=GITLAB_PUSH, headers={"X-Gitlab-Token": "s3cret"})

        assert response.status_code == 403

    def test_unexpected_error_maps_to_500(self, client, store, processor):
        store.repositories = [make_repository()]
        processor.process_push_event.side_effect = RuntimeError("boom")

        response = client.post(f"/hook/gitlab/{ENDPOINT}", json=GITLAB_PUSH, headers={"X-Gitlab-Token": "s3cret"})

        assert response.status_code == 500
        assert response.json()["detail"] == f"Failed to respond webhook event for endpoint: {ENDPOINT}"


class TestGitHubWebhook:
    """Tests for POST /hook/github/{endpoint_id}."""

    @pytest.fixture
    def github_repository(self, store):
        repository = make_repository(
            vcs=make_vcs(VCSType.GITHUB_COM),
            external_id="acme/shop",
            web_url="https://github.com/acme/shop",
        )
        store.repositories = [repository]
        return repository

    def test_ping(self, client):
        response = client.post(f"/hook/github/{ENDPOINT}", json={"zen": "hi"}, headers={"X-GitHub-Event": "ping"})

        assert response.status_code == 200
        assert response.text == "OK"

    def test_signed_push(self, client, processor, github_repository):
        body = json.dumps(GITHUB_PUSH).encode()

        response = client.post(
            f"/hook/github/{ENDPOINT}",
            content=body,
            headers={
                "Content-Type": "application/json",
                "X-GitHub-Event": "push",
                "X-Hub-Signature-256": github_signature("s3cret", body),
            },
        )

        assert response.status_code == 200
        processor.process_push_event.assert_called_once()

    def test_bad_signature(self, client, processor, github_repository):
        body = json.dumps(GITHUB_PUSH).encode()

        response = client.post(
            f"/hook/github/{ENDPOINT}",
            content=body,
            headers={
                "Content-Type": "application/json",
                "X-GitHub-Event": "push",
                "X-Hub-Signature-256": github_signature("other", body),
            },
        )

        assert response.text == "OK"
        processor.process_push_event.assert_not_called()

    def test_malformed_push(self, client, github_repository):
        response = client.post(
            f"/hook/github/{ENDPOINT}", content=b"[]", headers={"X-GitHub-Event": "push"},
        )
        assert response.status_code == 400

    def test_repository_not_an_object_rejected(self, client, github_repository):
        body = json.dumps(dict(GITHUB_PUSH, repository="acme/shop")).encode()

        response = client.post(
            f"/hook/github/{ENDPOINT}",
            content=body,
            headers={"X-GitHub-Event": "push", "X-Hub-Signature-256": github_signature("s3cret", body)},
        )

        assert response.status_code == 400
        assert response.json()["detail"].startswith("Malformed push event")

    def test_commit_author_not_an_object_rejected(self, client, github_repository):
        commit = {"id": "c1", "message": "m", "author": "alex", "added": [], "modified": []}
        body = json.dumps(dict(GITHUB_PUSH, commits=[commit])).encode()

        response = client.post(
            f"/hook/github/{ENDPOINT}",
            content=body,
            headers={"X-GitHub-Event": "push", "X-Hub-Signature-256": github_signature("s3cret", body)},
        )

        assert response.status_code == 400


class TestSQLReviewWebhook:
    """Tests for POST /hook/sql-review/{endpoint_id}."""

    REQUEST = {"repositoryId": "42", "pullRequestId": "7", "webURL": "https://gitlab.example.com/acme/shop"}

    def test_returns_result(self, client, review_service):
        review_service.review_pull_request.return_value = VCSSQLReviewResult(
            status=AdviceStatus.WARN, content=["<?xml ...>"],
        )

        response = client.post(
            f"/hook/sql-review/{ENDPOINT}", json=self.REQUEST, headers={"X-SQL-Review-Token": "s3cret"},
        )

        assert response.status_code == 200
        assert response.json() == {"status": "WARN", "content": ["<?xml ...>"]}
        endpoint_id, request, token = review_service.review_pull_request.call_args[0]
        assert endpoint_id == ENDPOINT
        assert request.pull_request_id == "7"
        assert token == "s3cret"

    def test_invalid_request(self, client, review_service):
        response = client.post(f"/hook/sql-review/{ENDPOINT}", json={"repositoryId": "42"})

        assert response.status_code == 400
        review_service.review_pull_request.assert_not_called()

    def test_unknown_endpoint(self, client, review_service):
        review_service.review_pull_request.side_effect = NotFoundError("Endpoint not found: missing")

        response = client.post("/hook/sql-review/missing", json=self.REQUEST)

        assert response.status_code == 404

    def test_review_unavailable(self, client, review_service):
        review_service.review_pull_request.side_effect = SQLReviewUnavailableError("SQL review failed for all 2 files")

        response = client.post(f"/hook/sql-review/{ENDPOINT}", json=self.REQUEST)

        assert response.status_code == 503


class TestSyncSheet:
    """Tests for POST /api/project/{project_id}/sync-sheet."""

    def test_sync(self, client, sheet_service):
        sheet_service.sync_sheets.return_value = [
            Sheet(id=1, project_id=101, name="daily_report"),
            Sheet(id=2, project_id=101, name="cleanup"),
        ]

        response = client.post("/api/project/101/sync-sheet", headers={"X-Principal-ID": "7"})

        assert response.status_code == 200
        assert response.json() == {"synced": 2, "sheets": ["daily_report", "cleanup"]}
        sheet_service.sync_sheets.assert_called_once_with(101, 7)

    def test_defaults_to_system_bot(self, client, sheet_service):
        sheet_service.sync_sheets.return_value = []

        client.post("/api/project/101/sync-sheet")

        sheet_service.sync_sheets.assert_called_once_with(101, 1)

    def test_error_status(self, client, sheet_service):
        sheet_service.sync_sheets.side_effect = InvalidRequestError("Invalid workflow type: UI, need VCS to enable this function")

        response = client.post("/api/project/101/sync-sheet")

        assert response.status_code == 400
        assert "Invalid workflow type" in response.json()["detail"]
