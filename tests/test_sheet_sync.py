"""Tests for syncing project sheets from the linked repository."""

from unittest.mock import Mock

import pytest

from conftest import make_commit, make_database, make_project, make_repository, make_vcs
from gitops.sheet_sync import SheetSyncService
from models.data_models import Sheet
from models.vcs_models import FileMeta, RepositoryTreeNode, VCSType
from utils.errors import InvalidRequestError, NotFoundError

SHEET_PATH = "script/dev__shop__daily_report.sql"


@pytest.fixture
def provider():
    provider = Mock()
    provider.fetch_repository_file_list.return_value = [RepositoryTreeNode(path=SHEET_PATH)]
    provider.read_file_content.return_value = "SELECT count(*) FROM orders;"
    provider.read_file_meta.return_value = FileMeta(
        name="dev__shop__daily_report.sql", path=SHEET_PATH, size=28, last_commit_id="c9",
    )
    provider.fetch_commit_by_id.return_value = make_commit("c9", author_name="Sam")
    return provider


@pytest.fixture
def project(store):
    project = make_project()
    store.projects = {project.id: project}
    store.repositories = [make_repository(project=project)]
    store.databases = [
        make_database(1, "shop", environment="dev", environment_id=1),
        make_database(2, "shop", environment="prod", environment_id=2),
    ]
    return project


def service_for(store, settings, provider):
    return SheetSyncService(store, settings, lambda vcs_type: provider)


class TestSyncSheets:

    def test_creates_sheet(self, store, settings, provider, project):
        sheets = service_for(store, settings, provider).sync_sheets(project.id, 7)

        assert [s.name for s in sheets] == ["daily_report"]
        sheet = store.sheets[0]
        assert sheet.statement == "SELECT count(*) FROM orders;"
        assert sheet.source == "GITLAB_SELF_HOST"
        assert sheet.type == "SQL"
        assert sheet.database_id == 1
        assert sheet.payload["fileName"] == "dev__shop__daily_report.sql"
        assert sheet.payload["author"] == "Sam"
        assert sheet.payload["lastCommitId"] == "c9"
        assert sheet.payload["lastSyncTs"] > 0

        provider.fetch_repository_file_list.assert_called_once()
        args = provider.fetch_repository_file_list.call_args[0]
        assert args[1:] == ("https://gitlab.example.com", "42", "main", "script")
        provider.fetch_commit_by_id.assert_called_once()
        assert provider.fetch_commit_by_id.call_args[0][3] == "c9"

    def test_patches_existing_sheet(self, store, settings, provider, project):
        store.sheets = [Sheet(id=50, project_id=project.id, name="daily_report", statement="old",
                              source="GITLAB_SELF_HOST", type="SQL")]

        sheets = service_for(store, settings, provider).sync_sheets(project.id, 7)

        assert len(store.sheets) == 1
        assert store.sheet_patches[0].id == 50
        assert store.sheet_patches[0].updater_id == 7
        assert sheets[0].statement == "SELECT count(*) FROM orders;"

    def test_github_source(self, store, settings, provider, project):
        store.repositories = [make_repository(project=project, vcs=make_vcs(VCSType.GITHUB_COM))]

        service_for(store, settings, provider).sync_sheets(project.id, 7)

        assert store.sheets[0].source == "GITHUB_COM"

    def test_tenant_project_not_bound(self, store, settings, provider, project):
        store.projects[project.id] = project.model_copy(update={"tenant_mode": True})

        service_for(store, settings, provider).sync_sheets(project.id, 7)

        assert store.sheets[0].database_id is None

    def test_unknown_database_not_bound(self, store, settings, provider, project):
        store.databases = []

        service_for(store, settings, provider).sync_sheets(project.id, 7)

        assert store.sheets[0].database_id is None

    def test_empty_sheet_name(self, store, settings, provider, project):
        provider.fetch_repository_file_list.return_value = [RepositoryTreeNode(path="script/README.md")]

        with pytest.raises(InvalidRequestError) as exc_info:
            service_for(store, settings, provider).sync_sheets(project.id, 7)

        assert exc_info.value.status_code == 400
        assert "sheet name cannot be empty" in exc_info.value.message


class TestSyncSheetsErrors:

    def test_unknown_project(self, store, settings, provider):
        with pytest.raises(NotFoundError):
            service_for(store, settings, provider).sync_sheets(999, 7)

    def test_ui_workflow_project(self, store, settings, provider):
        store.projects = {101: make_project(workflow_type="UI")}

        with pytest.raises(InvalidRequestError) as exc_info:
            service_for(store, settings, provider).sync_sheets(101, 7)

        assert "need VCS" in exc_info.value.message

    def test_no_repository(self, store, settings, provider):
        store.projects = {101: make_project()}

        with pytest.raises(NotFoundError) as exc_info:
            service_for(store, settings, provider).sync_sheets(101, 7)

        assert "Repository not found" in exc_info.value.message
