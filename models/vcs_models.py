"""VCS-side data models: push events, commits, files and provider objects.

Push events are normalized from the GitHub/GitLab webhook payloads into one
shape before the pipeline touches them. They are never persisted, only
embedded (serialized with camelCase keys) into issue and activity payloads.
"""

from enum import Enum
from typing import Optional, Union
from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel

from advisor.advice import AdviceStatus


class VCSType(str, Enum):
    """Supported VCS provider families."""
    GITLAB_SELF_HOST = "GITLAB_SELF_HOST"
    GITHUB_COM = "GITHUB_COM"


class FileItemType(str, Enum):
    """How a file changed within the pushed commit range."""
    ADDED = "added"
    MODIFIED = "modified"
    DELETED = "deleted"


class CamelModel(BaseModel):
    """Base model serialized with camelCase keys, accepts both spellings."""
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


class Commit(CamelModel):
    id: str
    title: str = ""
    message: str = ""
    created_ts: int = 0
    url: str = ""
    author_name: str = ""
    author_email: str = ""
    added_list: list[str] = Field(default_factory=list)
    modified_list: list[str] = Field(default_factory=list)


class DistinctFileItem(CamelModel):
    """One changed file path plus the last commit touching it."""
    created_ts: int = 0
    file_name: str
    item_type: FileItemType = FileItemType.ADDED
    commit: Commit
    is_yaml: bool = False


def is_yaml_file(file_name: str) -> bool:
    return file_name.endswith((".yml", ".yaml"))


class PushEvent(CamelModel):
    """Provider-independent description of one VCS push."""
    vcs_type: Optional[VCSType] = None
    base_directory: str = ""
    ref: str = ""
    before: str = ""
    after: str = ""
    repository_id: str = ""
    repository_url: str = ""
    repository_full_path: str = ""
    author_name: str = ""
    commit_list: list[Commit] = Field(default_factory=list)

    def get_distinct_file_list(self) -> list[DistinctFileItem]:
        """
        Flatten the commit list into one item per changed file.

        A file touched by several commits keeps the item of the most recently
        created commit, but stays at the position where it was first seen so
        the relative commit order of the source branch is preserved. Deleted
        files are never included.

        Returns:
            List of DistinctFileItem in discovery order
        """
        distinct_files: list[DistinctFileItem] = []
        positions: dict[str, int] = {}

        for commit in self.commit_list:
            changes = [(name, FileItemType.ADDED) for name in commit.added_list]
            changes += [(name, FileItemType.MODIFIED) for name in commit.modified_list]

            for file_name, item_type in changes:
                item = DistinctFileItem(
                    created_ts=commit.created_ts,
                    file_name=file_name,
                    item_type=item_type,
                    commit=commit,
                    is_yaml=is_yaml_file(file_name),
                )
                index = positions.get(file_name)
                if index is None:
                    positions[file_name] = len(distinct_files)
                    distinct_files.append(item)
                elif distinct_files[index].created_ts < commit.created_ts:
                    distinct_files[index] = item

        return distinct_files


class FileDiff(CamelModel):
    """A file that differs between two commits."""
    path: str
    type: FileItemType = FileItemType.MODIFIED


class PullRequestFile(CamelModel):
    path: str
    last_commit_id: str = ""
    is_deleted: bool = False


class FileMeta(CamelModel):
    name: str
    path: str
    size: int = 0
    last_commit_id: str = ""


class BranchInfo(CamelModel):
    name: str
    last_commit_id: str


class FileCommitCreate(CamelModel):
    branch: str
    content: str
    commit_message: str
    last_commit_id: str = ""


class PullRequestCreate(CamelModel):
    title: str
    body: str = ""
    head: str
    base: str
    remove_head_after_merged: bool = True


class PullRequest(CamelModel):
    url: str


class RepositoryTreeNode(CamelModel):
    path: str
    type: str = "blob"


class VCSSQLReviewRequest(BaseModel):
    """Body sent by the CI job to the SQL review endpoint."""
    model_config = ConfigDict(populate_by_name=True)

    repository_id: str = Field(alias="repositoryId")
    pull_request_id: str = Field(alias="pullRequestId")
    web_url: str = Field(alias="webURL")


class VCSSQLReviewResult(BaseModel):
    """Answer to the CI job: aggregate status plus provider-formatted report lines."""
    status: AdviceStatus = AdviceStatus.SUCCESS
    content: list[str] = Field(default_factory=list)


# Webhook payloads as the providers send them. Only the fields the pipeline
# reads are declared; anything else is ignored.

class WebhookCommitAuthor(BaseModel):
    name: str = ""
    email: str = ""


class WebhookCommit(BaseModel):
    id: str
    title: str = ""
    message: str = ""
    timestamp: Optional[str] = None
    url: str = ""
    author: Optional[WebhookCommitAuthor] = None
    added: Optional[list[str]] = None
    modified: Optional[list[str]] = None

    def to_commit(self, created_ts: int) -> Commit:
        author = self.author or WebhookCommitAuthor()
        return Commit(
            id=self.id,
            title=self.title or self.message.split("\n", 1)[0],
            message=self.message,
            created_ts=created_ts,
            url=self.url,
            author_name=author.name,
            author_email=author.email,
            added_list=self.added or [],
            modified_list=self.modified or [],
        )


class GitHubPushRepository(BaseModel):
    full_name: str = ""
    html_url: str = ""


class GitHubPushSender(BaseModel):
    login: str = ""


class GitHubPushPayload(BaseModel):
    ref: str = ""
    before: str = ""
    after: str = ""
    repository: Optional[GitHubPushRepository] = None
    sender: Optional[GitHubPushSender] = None
    commits: Optional[list[WebhookCommit]] = None


class GitLabPushProject(BaseModel):
    id: Union[int, str]
    web_url: str = ""
    path_with_namespace: str = ""


class GitLabPushPayload(BaseModel):
    ref: str = ""
    before: str = ""
    after: str = ""
    user_name: str = ""
    project: Optional[GitLabPushProject] = None
    commits: Optional[list[WebhookCommit]] = None
