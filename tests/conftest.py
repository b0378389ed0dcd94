"""Shared pytest fixtures and configuration."""

import itertools
from typing import Optional

import pytest

from advisor.catalog import DatabaseCatalog
from models.config_models import ServerConfig
from models.data_models import (
    Database,
    Environment,
    Instance,
    Issue,
    Principal,
    Project,
    Repository,
    Sheet,
    SQLReviewPolicy,
    Task,
    VCS,
)
from models.vcs_models import Commit, PushEvent, VCSType


@pytest.fixture
def test_env(monkeypatch, tmp_path):
    """
    Set valid test environment variables.

    Config can be loaded during tests without requiring real credentials.
    """
    monkeypatch.setenv("SUPABASE_URL", "https://test-project.supabase.co")
    monkeypatch.setenv("SUPABASE_KEY", "test_supabase_key_1234567890")
    monkeypatch.setenv("EXTERNAL_URL", "https://gitops.example.com/")
    monkeypatch.setenv("WORKSPACE_ID", "ws-test")
    monkeypatch.setenv("LICENSE_PLAN", "enterprise")
    monkeypatch.setenv("SQL_REVIEW_MAX_WORKERS", "4")
    monkeypatch.setenv("LOG_LEVEL", "DEBUG")

    return {
        "supabase_url": "https://test-project.supabase.co",
        "supabase_key": "test_supabase_key_1234567890",
        "external_url": "https://gitops.example.com",
        "workspace_id": "ws-test",
        "log_level": "DEBUG",
    }


@pytest.fixture
def invalid_env(monkeypatch):
    """
    Set up invalid/missing environment variables for testing validation.
    """
    monkeypatch.setenv("SUPABASE_URL", "")
    monkeypatch.setenv("SUPABASE_KEY", "")


@pytest.fixture
def settings():
    return ServerConfig(external_url="https://gitops.example.com", workspace_id="ws-test")


class FakeStore:
    """
    In-memory stand-in for SupabaseStore.

    Tests fill the lists directly; writes are recorded so they can be
    asserted on.
    """

    def __init__(self):
        self.repositories: list[Repository] = []
        self.projects: dict[int, Project] = {}
        self.databases: list[Database] = []
        self.tasks: list[Task] = []
        self.issues: list[Issue] = []
        self.principals: list[Principal] = []
        self.policies: dict[int, SQLReviewPolicy] = {}
        self.catalogs: dict[int, DatabaseCatalog] = {}
        self.sheets: list[Sheet] = []

        self.created_issues = []
        self.activities = []
        self.task_patches = []
        self.token_updates = []
        self.sheet_patches = []
        self.fail_issue_names: set = set()
        self._ids = itertools.count(1000)

    def find_repositories(self, webhook_endpoint_id=None, web_url=None, project_id=None):
        return [
            r for r in self.repositories
            if (webhook_endpoint_id is None or r.webhook_endpoint_id == webhook_endpoint_id)
            and (web_url is None or r.web_url == web_url)
            and (project_id is None or r.project_id == project_id)
        ]

    def update_repository_tokens(self, repository_id, access_token, refresh_token, expires_ts):
        self.token_updates.append((repository_id, access_token, refresh_token, expires_ts))

    def get_project(self, project_id) -> Optional[Project]:
        return self.projects.get(project_id)

    def find_databases(self, project_id, name=None):
        return [
            d for d in self.databases
            if d.project_id == project_id and (name is None or d.name == name)
        ]

    def find_tasks(self, database_id, statuses, types, schema_version):
        return [
            t for t in self.tasks
            if t.database_id == database_id and t.status in statuses and t.type in types
            and t.payload.get("schemaVersion") == schema_version
        ]

    def patch_task(self, patch):
        self.task_patches.append(patch)
        return next(t for t in self.tasks if t.id == patch.id)

    def get_issue_by_pipeline_id(self, pipeline_id):
        return next((i for i in self.issues if i.pipeline_id == pipeline_id), None)

    def create_issue(self, issue_create):
        if issue_create.name in self.fail_issue_names:
            raise RuntimeError("insert failed")
        self.created_issues.append(issue_create)
        return Issue(
            id=next(self._ids),
            project_id=issue_create.project_id,
            name=issue_create.name,
            type=issue_create.type,
        )

    def create_activity(self, activity_create):
        self.activities.append(activity_create)
        return activity_create.model_dump()

    def get_principal_by_email(self, email):
        return next((p for p in self.principals if p.email == email), None)

    def get_sql_review_policy(self, environment_id):
        return self.policies.get(environment_id)

    def new_catalog(self, database_id, engine):
        return self.catalogs.get(database_id, DatabaseCatalog(name="", engine=engine))

    def get_sheet(self, project_id, name, source, sheet_type="SQL"):
        return next(
            (s for s in self.sheets
             if s.project_id == project_id and s.name == name and s.source == source and s.type == sheet_type),
            None,
        )

    def create_sheet(self, sheet_create):
        sheet = Sheet(id=next(self._ids), **sheet_create.model_dump(exclude={"creator_id", "visibility"}))
        self.sheets.append(sheet)
        return sheet

    def patch_sheet(self, sheet_patch):
        self.sheet_patches.append(sheet_patch)
        sheet = next(s for s in self.sheets if s.id == sheet_patch.id)
        updated = sheet.model_copy(update=sheet_patch.model_dump(exclude={"id", "updater_id"}, exclude_none=True))
        self.sheets[self.sheets.index(sheet)] = updated
        return updated


@pytest.fixture
def store():
    return FakeStore()


def make_vcs(vcs_type: VCSType = VCSType.GITLAB_SELF_HOST, **overrides) -> VCS:
    values = {
        "id": 1,
        "name": "VCS",
        "type": vcs_type,
        "instance_url": "https://gitlab.example.com" if vcs_type == VCSType.GITLAB_SELF_HOST else "https://github.com",
        "application_id": "app-id",
        "secret": "app-secret",
    }
    values.update(overrides)
    return VCS(**values)


def make_project(**overrides) -> Project:
    values = {"id": 101, "name": "Shop", "workflow_type": "VCS"}
    values.update(overrides)
    return Project(**values)


def make_repository(
    project: Optional[Project] = None,
    vcs: Optional[VCS] = None,
    **overrides,
) -> Repository:
    project = project or make_project()
    vcs = vcs or make_vcs()
    values = {
        "id": 11,
        "project_id": project.id,
        "vcs_id": vcs.id,
        "name": "shop",
        "full_path": "acme/shop",
        "web_url": "https://gitlab.example.com/acme/shop",
        "branch_filter": "main",
        "base_directory": "bytebase",
        "file_path_template": "{{ENV_NAME}}/{{DB_NAME}}__{{VERSION}}__{{TYPE}}__{{DESCRIPTION}}.sql",
        "schema_path_template": "{{ENV_NAME}}/.{{DB_NAME}}__LATEST.sql",
        "sheet_path_template": "script/{{ENV_NAME}}__{{DB_NAME}}__{{NAME}}.sql",
        "external_id": "42",
        "webhook_endpoint_id": "ws-test-1700000000",
        "webhook_secret_token": "s3cret",
        "access_token": "access-token",
        "refresh_token": "refresh-token",
        "project": project,
        "vcs": vcs,
    }
    values.update(overrides)
    return Repository(**values)


def make_database(
    database_id: int,
    name: str,
    environment: str = "dev",
    environment_id: int = 1,
    project_id: int = 101,
    engine: str = "MYSQL",
) -> Database:
    return Database(
        id=database_id,
        project_id=project_id,
        instance_id=database_id,
        name=name,
        character_set="utf8mb4",
        collation="utf8mb4_general_ci",
        instance=Instance(
            id=database_id,
            name=f"{environment}-instance",
            engine=engine,
            host="127.0.0.1",
            port="3306",
            username="reviewer",
            environment_id=environment_id,
            environment=Environment(id=environment_id, name=environment),
        ),
    )


def make_commit(commit_id: str, created_ts: int = 1700000000, added=None, modified=None, **overrides) -> Commit:
    values = {
        "id": commit_id,
        "title": f"commit {commit_id}",
        "message": f"commit {commit_id}",
        "created_ts": created_ts,
        "author_name": "Alex",
        "author_email": "alex@example.com",
        "added_list": added or [],
        "modified_list": modified or [],
    }
    values.update(overrides)
    return Commit(**values)


def make_push_event(commits, **overrides) -> PushEvent:
    values = {
        "vcs_type": VCSType.GITLAB_SELF_HOST,
        "ref": "refs/heads/main",
        "before": "a" * 40,
        "after": "b" * 40,
        "repository_id": "42",
        "repository_url": "https://gitlab.example.com/acme/shop",
        "repository_full_path": "acme/shop",
        "author_name": "Alex",
        "commit_list": commits,
    }
    values.update(overrides)
    return PushEvent(**values)
