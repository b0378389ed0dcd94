"""
Supabase storage adapter for the GitOps pipeline.

Repositories are read with their project and VCS embedded, databases with
their instance and environment, so the pipeline gets composed rows in one
round trip. Writes are limited to what the pipeline produces: issues, task
statement patches, activities, sheets and refreshed OAuth tokens.
"""

import logging
from typing import Dict, List, Optional, Any
from supabase import Client, create_client

from advisor.catalog import DatabaseCatalog
from models.data_models import (
    ActivityCreate,
    Database,
    Issue,
    IssueCreate,
    Principal,
    Project,
    Repository,
    Sheet,
    SheetCreate,
    SheetPatch,
    SQLReviewPolicy,
    Task,
    TaskPatch,
)

logger = logging.getLogger(__name__)

REPOSITORY_SELECT = "*, project:projects(*), vcs:vcs(*)"
DATABASE_SELECT = "*, instance:instances(*, environment:environments(*))"


class SupabaseStore:
    """Persistence operations used by the pipeline."""

    def __init__(self, supabase_url: str, supabase_key: str):
        """
        Initialize Supabase client.

        Args:
            supabase_url: Supabase project URL
            supabase_key: Supabase API key (service role)
        """
        self.client: Client = create_client(supabase_url, supabase_key)
        logger.info(f"Initialized SupabaseStore for {supabase_url}")

    def find_repositories(
        self,
        webhook_endpoint_id: Optional[str] = None,
        web_url: Optional[str] = None,
        project_id: Optional[int] = None,
    ) -> List[Repository]:
        """
        Find repository links, in ID order.

        Args:
            webhook_endpoint_id: Only links sharing this webhook endpoint
            web_url: Only links pointing at this repository URL
            project_id: Only the link of this project

        Returns:
            List of Repository with project and VCS composed in
        """
        try:
            query = self.client.table("repositories").select(REPOSITORY_SELECT)
            if webhook_endpoint_id is not None:
                query = query.eq("webhook_endpoint_id", webhook_endpoint_id)
            if web_url is not None:
                query = query.eq("web_url", web_url)
            if project_id is not None:
                query = query.eq("project_id", project_id)
            result = query.order("id").execute()
            return [Repository(**row) for row in result.data]
        except Exception as e:
            logger.error(f"Failed to find repositories: {e}")
            raise

    def update_repository_tokens(self, repository_id: int, access_token: str, refresh_token: str, expires_ts: int) -> None:
        try:
            self.client.table("repositories").update({
                "access_token": access_token,
                "refresh_token": refresh_token,
                "expires_ts": expires_ts,
            }).eq("id", repository_id).execute()
            logger.debug(f"Stored refreshed OAuth token for repository {repository_id}")
        except Exception as e:
            logger.error(f"Failed to store refreshed token for repository {repository_id}: {e}")
            raise

    def get_project(self, project_id: int) -> Optional[Project]:
        result = self.client.table("projects").select("*").eq("id", project_id).execute()
        return Project(**result.data[0]) if result.data else None

    def find_databases(self, project_id: int, name: Optional[str] = None) -> List[Database]:
        """Databases of a project, optionally only those with the given name."""
        try:
            query = self.client.table("databases").select(DATABASE_SELECT).eq("project_id", project_id)
            if name is not None:
                query = query.eq("name", name)
            result = query.order("id").execute()
            return [Database(**row) for row in result.data]
        except Exception as e:
            logger.error(f"Failed to find databases for project {project_id}: {e}")
            raise

    def find_tasks(
        self,
        database_id: int,
        statuses: List[str],
        types: List[str],
        schema_version: str,
    ) -> List[Task]:
        """Tasks on a database whose payload carries the given schema version."""
        result = (
            self.client.table("tasks")
            .select("*")
            .eq("database_id", database_id)
            .in_("status", statuses)
            .in_("type", types)
            .eq("payload->>schemaVersion", schema_version)
            .execute()
        )
        return [Task(**row) for row in result.data]

    def patch_task(self, patch: TaskPatch) -> Task:
        updates: Dict[str, Any] = {"updater_id": patch.updater_id}
        if patch.statement is not None:
            updates["statement"] = patch.statement
        try:
            result = self.client.table("tasks").update(updates).eq("id", patch.id).execute()
            logger.debug(f"Patched task {patch.id}")
            return Task(**result.data[0])
        except Exception as e:
            logger.error(f"Failed to patch task {patch.id}: {e}")
            raise

    def get_issue_by_pipeline_id(self, pipeline_id: int) -> Optional[Issue]:
        result = self.client.table("issues").select("*").eq("pipeline_id", pipeline_id).execute()
        return Issue(**result.data[0]) if result.data else None

    def create_issue(self, issue_create: IssueCreate) -> Issue:
        try:
            result = self.client.table("issues").insert(issue_create.model_dump()).execute()
            issue = Issue(**result.data[0])
            logger.info(f"Created issue {issue.id} \"{issue.name}\" in project {issue.project_id}")
            return issue
        except Exception as e:
            logger.error(f"Failed to create issue \"{issue_create.name}\": {e}")
            raise

    def create_activity(self, activity_create: ActivityCreate) -> Dict[str, Any]:
        try:
            result = self.client.table("activities").insert(activity_create.model_dump()).execute()
            return result.data[0] if result.data else activity_create.model_dump()
        except Exception as e:
            logger.error(f"Failed to create activity for container {activity_create.container_id}: {e}")
            raise

    def get_principal_by_email(self, email: str) -> Optional[Principal]:
        if not email:
            return None
        result = self.client.table("principals").select("*").eq("email", email).execute()
        return Principal(**result.data[0]) if result.data else None

    def get_sql_review_policy(self, environment_id: int) -> Optional[SQLReviewPolicy]:
        """The active SQL review policy of an environment, if one is configured."""
        result = (
            self.client.table("sql_review_policies")
            .select("*")
            .eq("environment_id", environment_id)
            .eq("row_status", "NORMAL")
            .execute()
        )
        return SQLReviewPolicy(**result.data[0]) if result.data else None

    def new_catalog(self, database_id: int, engine: str) -> DatabaseCatalog:
        """Schema snapshot of a database from its last sync, empty when never synced."""
        result = (
            self.client.table("database_schemas")
            .select("database_name, metadata")
            .eq("database_id", database_id)
            .execute()
        )
        if not result.data:
            return DatabaseCatalog(name="", engine=engine)
        row = result.data[0]
        metadata = row.get("metadata") or {}
        return DatabaseCatalog(name=row.get("database_name", ""), engine=engine, tables=metadata.get("tables", []))

    def get_sheet(self, project_id: int, name: str, source: str, sheet_type: str = "SQL") -> Optional[Sheet]:
        result = (
            self.client.table("sheets")
            .select("*")
            .eq("project_id", project_id)
            .eq("name", name)
            .eq("source", source)
            .eq("type", sheet_type)
            .execute()
        )
        return Sheet(**result.data[0]) if result.data else None

    def create_sheet(self, sheet_create: SheetCreate) -> Sheet:
        try:
            result = self.client.table("sheets").insert(sheet_create.model_dump()).execute()
            return Sheet(**result.data[0])
        except Exception as e:
            logger.error(f"Failed to create sheet \"{sheet_create.name}\": {e}")
            raise

    def patch_sheet(self, sheet_patch: SheetPatch) -> Sheet:
        updates = sheet_patch.model_dump(exclude={"id"}, exclude_none=True)
        try:
            result = self.client.table("sheets").update(updates).eq("id", sheet_patch.id).execute()
            return Sheet(**result.data[0])
        except Exception as e:
            logger.error(f"Failed to patch sheet {sheet_patch.id}: {e}")
            raise
