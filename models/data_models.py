"""Data models for the rows the pipeline reads from and writes to storage."""

from enum import Enum
from typing import Any, Literal, Optional
from pydantic import BaseModel, Field

from advisor.advice import SQLReviewRuleLevel
from models.vcs_models import CamelModel, PushEvent, VCSType

# Principal every automated action is attributed to
SYSTEM_BOT_ID = 1

ISSUE_TYPE_SCHEMA_UPDATE = "bb.issue.database.schema.update"
ISSUE_TYPE_DATA_UPDATE = "bb.issue.database.data.update"

TASK_TYPE_SCHEMA_UPDATE = "bb.task.database.schema.update"
TASK_TYPE_DATA_UPDATE = "bb.task.database.data.update"
TASK_STATUS_PENDING_APPROVAL = "PENDING_APPROVAL"
TASK_STATUS_FAILED = "FAILED"

ACTIVITY_TYPE_REPOSITORY_PUSH = "bb.project.repository.push"


class VCS(BaseModel):
    """A configured VCS provider instance (OAuth application)."""
    id: int
    name: str = ""
    type: VCSType
    instance_url: str
    api_url: str = ""
    application_id: str = ""
    secret: str = ""


class Project(BaseModel):
    id: int
    name: str
    key: str = ""
    row_status: Literal["NORMAL", "ARCHIVED"] = "NORMAL"
    workflow_type: Literal["UI", "VCS"] = "VCS"
    tenant_mode: bool = False
    db_name_template: str = ""
    schema_change_type: Literal["DDL", "SDL"] = "DDL"


class Repository(BaseModel):
    """
    Link between one project and one external VCS repository.

    Rows sharing a webhook_endpoint_id point at the same external repository
    and share its webhook secret. Storage composes the owning project and the
    VCS into the row.
    """
    id: int
    project_id: int
    vcs_id: int
    name: str = ""
    full_path: str = ""
    web_url: str = ""

    branch_filter: str = ""
    base_directory: str = ""
    file_path_template: str = ""
    schema_path_template: str = ""
    sheet_path_template: str = ""
    enable_sql_review_ci: bool = False

    external_id: str
    external_webhook_id: str = ""
    webhook_url_host: str = ""
    webhook_endpoint_id: str
    webhook_secret_token: str = ""

    access_token: str = ""
    expires_ts: int = 0
    refresh_token: str = ""

    project: Optional[Project] = None
    vcs: Optional[VCS] = None


class Environment(BaseModel):
    id: int
    name: str


class Instance(BaseModel):
    """A database server the advisor may connect to read-only."""
    id: int
    name: str = ""
    engine: str
    host: str = ""
    port: str = ""
    username: str = ""
    password: str = ""
    environment_id: int
    environment: Optional[Environment] = None


class Database(BaseModel):
    id: int
    project_id: int
    instance_id: int
    name: str
    character_set: str = ""
    collation: str = ""
    instance: Optional[Instance] = None

    @property
    def environment_id(self) -> Optional[int]:
        return self.instance.environment_id if self.instance else None

    @property
    def environment_name(self) -> str:
        if self.instance and self.instance.environment:
            return self.instance.environment.name
        return ""


class Task(BaseModel):
    id: int
    pipeline_id: int
    database_id: Optional[int] = None
    name: str = ""
    status: str
    type: str
    statement: str = ""
    payload: dict[str, Any] = Field(default_factory=dict)


class TaskPatch(BaseModel):
    id: int
    updater_id: int
    statement: Optional[str] = None


class Issue(BaseModel):
    id: int
    project_id: int
    pipeline_id: Optional[int] = None
    name: str
    type: str = ""
    status: str = "OPEN"


class IssueCreate(BaseModel):
    project_id: int
    name: str
    type: str
    description: str = ""
    creator_id: int = SYSTEM_BOT_ID
    assignee_id: int = SYSTEM_BOT_ID
    assignee_need_attention: bool = False
    create_context: str = "{}"


class ActivityCreate(BaseModel):
    creator_id: int
    container_id: int
    type: str = ACTIVITY_TYPE_REPOSITORY_PUSH
    level: Literal["INFO", "WARN", "ERROR"] = "INFO"
    comment: str = ""
    payload: dict[str, Any] = Field(default_factory=dict)


class Principal(BaseModel):
    id: int
    name: str = ""
    email: str = ""


class MigrationType(str, Enum):
    BASELINE = "BASELINE"
    MIGRATE = "MIGRATE"
    MIGRATE_SDL = "MIGRATE_SDL"
    DATA = "DATA"


class MigrationInfo(BaseModel):
    """What a file path tells about a migration, parsed from a path template."""
    database: str = ""
    environment: str = ""
    version: str = ""
    type: MigrationType = MigrationType.MIGRATE
    description: str = ""


class MigrationDetail(CamelModel):
    """One statement to apply to one target database."""
    migration_type: MigrationType
    database_id: int = 0
    database_name: str = ""
    statement: str = ""
    schema_version: str = ""


class MigrationContext(CamelModel):
    """Issue creation context embedded as JSON into the issue."""
    vcs_push_event: Optional[PushEvent] = None
    detail_list: list[MigrationDetail] = Field(default_factory=list)


class MigrationFileYAMLDatabase(BaseModel):
    name: str


class MigrationFileYAML(BaseModel):
    """Tenant-mode "advanced" migration file: one statement, several databases."""
    databases: list[MigrationFileYAMLDatabase] = Field(default_factory=list)
    statement: str = ""


class SQLReviewRule(BaseModel):
    type: str
    level: SQLReviewRuleLevel = SQLReviewRuleLevel.WARNING
    payload: dict[str, Any] = Field(default_factory=dict)


class SQLReviewPolicy(BaseModel):
    id: int
    environment_id: int
    name: str = ""
    rule_list: list[SQLReviewRule] = Field(default_factory=list)


class SheetVCSPayload(CamelModel):
    file_name: str
    file_path: str
    size: int = 0
    author: str = ""
    last_commit_id: str = ""
    last_sync_ts: int = 0


class Sheet(BaseModel):
    id: int
    project_id: int
    database_id: Optional[int] = None
    name: str
    statement: str = ""
    source: str = ""
    type: str = "SQL"
    payload: dict[str, Any] = Field(default_factory=dict)


class SheetCreate(BaseModel):
    project_id: int
    database_id: Optional[int] = None
    creator_id: int
    name: str
    statement: str
    visibility: str = "PROJECT"
    source: str
    type: str = "SQL"
    payload: dict[str, Any] = Field(default_factory=dict)


class SheetPatch(BaseModel):
    id: int
    updater_id: int
    database_id: Optional[int] = None
    name: Optional[str] = None
    statement: Optional[str] = None
    payload: Optional[dict[str, Any]] = None
