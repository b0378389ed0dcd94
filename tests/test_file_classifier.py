"""Tests for the diff filter, file classification and grouping."""

from unittest.mock import Mock

import pytest

from conftest import make_commit, make_project, make_repository
from gitops.file_classifier import (
    FILE_TYPE_MIGRATION,
    FILE_TYPE_SCHEMA,
    filter_files_by_commits_diff,
    get_file_info,
)
from gitops.grouping import group_file_info_by_database, group_file_info_by_repo, sort_files_by_schema_version
from models.data_models import MigrationType
from models.vcs_models import DistinctFileItem, FileDiff, FileItemType, is_yaml_file
from utils.errors import DataIntegrityError, InvalidRequestError, VCSError
from vcs.base import OauthContext


def item(file_name: str, item_type: FileItemType = FileItemType.ADDED) -> DistinctFileItem:
    return DistinctFileItem(
        file_name=file_name,
        item_type=item_type,
        commit=make_commit("c1"),
        is_yaml=is_yaml_file(file_name),
    )


class TestDiffFilter:
    """Tests for filter_files_by_commits_diff."""

    def test_keeps_only_changed_files_in_order(self):
        provider = Mock()
        provider.get_diff_file_list.return_value = [
            FileDiff(path="bytebase/dev/shop__v2__migrate__b.sql"),
            FileDiff(path="bytebase/dev/shop__v1__migrate__a.sql"),
        ]
        files = [
            item("bytebase/dev/shop__v1__migrate__a.sql"),
            item("bytebase/dev/merged__v1__migrate__old.sql"),
            item("bytebase/dev/shop__v2__migrate__b.sql"),
        ]
        repository = make_repository()
        oauth = OauthContext(client_id="", client_secret="", access_token="t")

        result = filter_files_by_commits_diff(provider, oauth, repository, files, "a" * 40, "b" * 40)

        assert [f.file_name for f in result] == [
            "bytebase/dev/shop__v1__migrate__a.sql",
            "bytebase/dev/shop__v2__migrate__b.sql",
        ]
        provider.get_diff_file_list.assert_called_once_with(
            oauth, "https://gitlab.example.com", "42", "a" * 40, "b" * 40,
        )

    def test_provider_error_propagates(self):
        provider = Mock()
        provider.get_diff_file_list.side_effect = VCSError("boom", upstream_status=500)
        oauth = OauthContext(client_id="", client_secret="", access_token="t")

        with pytest.raises(VCSError):
            filter_files_by_commits_diff(provider, oauth, make_repository(), [item("a.sql")], "a", "b")


class TestGetFileInfo:
    """Tests for get_file_info."""

    def test_migration_file(self):
        repository = make_repository()
        info = get_file_info(item("bytebase/dev/shop__v1__migrate__init.sql"), [repository])

        assert info.file_type == FILE_TYPE_MIGRATION
        assert info.repository is repository
        assert info.migration_info.database == "shop"

    def test_schema_file(self):
        info = get_file_info(item("bytebase/dev/.shop__LATEST.sql"), [make_repository()])

        assert info.file_type == FILE_TYPE_SCHEMA
        assert info.migration_info.environment == "dev"

    def test_outside_base_directory(self):
        assert get_file_info(item("other/dev/shop__v1__migrate__init.sql"), [make_repository()]) is None

    def test_unmatched_file(self):
        assert get_file_info(item("bytebase/README.md"), [make_repository()]) is None

    def test_invalid_file_skipped_for_that_link(self):
        assert get_file_info(item("bytebase/dev/shop__v1__bogus__x.sql"), [make_repository()]) is None

    def test_file_matching_two_projects(self):
        repositories = [
            make_repository(id=11),
            make_repository(id=12, project=make_project(id=102, name="Billing")),
        ]

        with pytest.raises(DataIntegrityError) as exc_info:
            get_file_info(item("bytebase/dev/shop__v1__migrate__init.sql"), repositories)

        assert "\"Shop\"" in exc_info.value.message
        assert "\"Billing\"" in exc_info.value.message

    def test_monorepo_base_directories(self):
        repositories = [
            make_repository(id=11, base_directory="shop"),
            make_repository(id=12, base_directory="billing", project=make_project(id=102, name="Billing")),
        ]
        info = get_file_info(item("billing/dev/ledger__v1__migrate__init.sql"), repositories)
        assert info.repository.id == 12

    def test_tenant_yaml_file(self):
        repository = make_repository(
            project=make_project(tenant_mode=True),
            file_path_template="{{DB_NAME}}__{{VERSION}}__{{TYPE}}__{{DESCRIPTION}}.sql",
        )
        info = get_file_info(item("bytebase/shop__v3__data__seed.yml"), [repository])
        assert info.migration_info.type == MigrationType.DATA
        assert info.migration_info.version == "v3"

    def test_tenant_yaml_file_must_be_data(self):
        repository = make_repository(
            project=make_project(tenant_mode=True),
            file_path_template="{{DB_NAME}}__{{VERSION}}__{{TYPE}}__{{DESCRIPTION}}.sql",
        )
        with pytest.raises(InvalidRequestError):
            get_file_info(item("bytebase/shop__v3__migrate__seed.yml"), [repository])

    def test_yaml_ignored_in_regular_project(self):
        assert get_file_info(item("bytebase/dev/shop__v1__migrate__x.yml"), [make_repository()]) is None


class TestGrouping:
    """Tests for grouping and ordering."""

    def test_groups_by_repository_and_database_in_version_order(self):
        repository = make_repository()
        files = [
            item("bytebase/dev/a__v2__migrate__second.sql"),
            item("bytebase/dev/b__v1__migrate__first.sql"),
            item("bytebase/dev/a__v1__migrate__first.sql"),
        ]

        by_repo = group_file_info_by_repo(files, [repository])
        by_database = group_file_info_by_database(by_repo[repository.id])

        assert list(by_database) == ["a", "b"]
        ordered = sort_files_by_schema_version(by_repo[repository.id])
        assert [(f.migration_info.database, f.migration_info.version) for f in ordered] == [
            ("a", "v1"), ("a", "v2"), ("b", "v1"),
        ]

    def test_sort_is_stable_for_equal_versions(self):
        repository = make_repository()
        files = [
            item("bytebase/dev/a__v1__migrate__x.sql"),
            item("bytebase/prod/a__v1__migrate__y.sql"),
        ]
        infos = group_file_info_by_repo(files, [repository])[repository.id]

        ordered = sort_files_by_schema_version(infos)

        assert [f.migration_info.environment for f in ordered] == ["dev", "prod"]

    def test_ordering_is_ordinal(self):
        repository = make_repository()
        files = [item("bytebase/dev/a__v10__migrate__x.sql"), item("bytebase/dev/a__v9__migrate__y.sql")]
        infos = group_file_info_by_repo(files, [repository])[repository.id]

        assert [f.migration_info.version for f in sort_files_by_schema_version(infos)] == ["v10", "v9"]

    def test_unclassifiable_files_skipped(self):
        repositories = [
            make_repository(id=11),
            make_repository(id=12, project=make_project(id=102, name="Billing")),
        ]
        files = [item("bytebase/dev/shop__v1__migrate__x.sql"), item("README.md")]

        assert group_file_info_by_repo(files, repositories) == {}
