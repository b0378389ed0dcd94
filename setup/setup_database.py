#!/usr/bin/env python3
"""
Database setup script for git-migration-pipeline.

Creates the tables the Supabase storage adapter reads and writes, using a
direct PostgreSQL connection.

Usage:
    python setup/setup_database.py           # Create schema
    python setup/setup_database.py --verify  # Verify existing schema
    python setup/setup_database.py --drop    # Drop and recreate (DANGEROUS)
"""

import argparse
import sys
from pathlib import Path

# Add project root to path
sys.path.insert(0, str(Path(__file__).parent.parent))

import psycopg2

from utils.config_loader import load_config
from utils.logger import setup_logger

logger = setup_logger(name=__name__)


# Tables in creation order; foreign keys only point at earlier tables
TABLES = [
    ("principals", """
CREATE TABLE IF NOT EXISTS principals (
    id BIGSERIAL PRIMARY KEY,
    name TEXT NOT NULL DEFAULT '',
    email TEXT NOT NULL UNIQUE
);
"""),
    ("vcs", """
CREATE TABLE IF NOT EXISTS vcs (
    id BIGSERIAL PRIMARY KEY,
    name TEXT NOT NULL DEFAULT '',
    type TEXT NOT NULL CHECK (type IN ('GITLAB_SELF_HOST', 'GITHUB_COM')),
    instance_url TEXT NOT NULL,
    api_url TEXT NOT NULL DEFAULT '',
    application_id TEXT NOT NULL DEFAULT '',
    secret TEXT NOT NULL DEFAULT ''
);
"""),
    ("projects", """
CREATE TABLE IF NOT EXISTS projects (
    id BIGSERIAL PRIMARY KEY,
    name TEXT NOT NULL,
    key TEXT NOT NULL DEFAULT '',
    row_status TEXT NOT NULL DEFAULT 'NORMAL' CHECK (row_status IN ('NORMAL', 'ARCHIVED')),
    workflow_type TEXT NOT NULL DEFAULT 'UI' CHECK (workflow_type IN ('UI', 'VCS')),
    tenant_mode BOOLEAN NOT NULL DEFAULT FALSE,
    db_name_template TEXT NOT NULL DEFAULT '',
    schema_change_type TEXT NOT NULL DEFAULT 'DDL' CHECK (schema_change_type IN ('DDL', 'SDL'))
);
"""),
    ("repositories", """
CREATE TABLE IF NOT EXISTS repositories (
    id BIGSERIAL PRIMARY KEY,
    project_id BIGINT NOT NULL UNIQUE REFERENCES projects(id),
    vcs_id BIGINT NOT NULL REFERENCES vcs(id),
    name TEXT NOT NULL DEFAULT '',
    full_path TEXT NOT NULL DEFAULT '',
    web_url TEXT NOT NULL,

    -- Layout
    branch_filter TEXT NOT NULL,
    base_directory TEXT NOT NULL DEFAULT '',
    file_path_template TEXT NOT NULL,
    schema_path_template TEXT NOT NULL DEFAULT '',
    sheet_path_template TEXT NOT NULL DEFAULT '',
    enable_sql_review_ci BOOLEAN NOT NULL DEFAULT FALSE,

    -- Webhook, shared by every link to the same web_url
    external_id TEXT NOT NULL,
    external_webhook_id TEXT NOT NULL DEFAULT '',
    webhook_url_host TEXT NOT NULL DEFAULT '',
    webhook_endpoint_id TEXT NOT NULL,
    webhook_secret_token TEXT NOT NULL DEFAULT '',

    -- OAuth
    access_token TEXT NOT NULL DEFAULT '',
    expires_ts BIGINT NOT NULL DEFAULT 0,
    refresh_token TEXT NOT NULL DEFAULT ''
);
"""),
    ("environments", """
CREATE TABLE IF NOT EXISTS environments (
    id BIGSERIAL PRIMARY KEY,
    name TEXT NOT NULL UNIQUE
);
"""),
    ("instances", """
CREATE TABLE IF NOT EXISTS instances (
    id BIGSERIAL PRIMARY KEY,
    environment_id BIGINT NOT NULL REFERENCES environments(id),
    name TEXT NOT NULL DEFAULT '',
    engine TEXT NOT NULL,
    host TEXT NOT NULL DEFAULT '',
    port TEXT NOT NULL DEFAULT '',
    username TEXT NOT NULL DEFAULT '',
    password TEXT NOT NULL DEFAULT ''
);
"""),
    ("databases", """
CREATE TABLE IF NOT EXISTS databases (
    id BIGSERIAL PRIMARY KEY,
    project_id BIGINT NOT NULL REFERENCES projects(id),
    instance_id BIGINT NOT NULL REFERENCES instances(id),
    name TEXT NOT NULL,
    character_set TEXT NOT NULL DEFAULT '',
    collation TEXT NOT NULL DEFAULT '',
    UNIQUE(instance_id, name)
);
"""),
    ("database_schemas", """
CREATE TABLE IF NOT EXISTS database_schemas (
    database_id BIGINT PRIMARY KEY REFERENCES databases(id) ON DELETE CASCADE,
    database_name TEXT NOT NULL DEFAULT '',
    metadata JSONB NOT NULL DEFAULT '{}'::jsonb
);
"""),
    ("issues", """
CREATE TABLE IF NOT EXISTS issues (
    id BIGSERIAL PRIMARY KEY,
    project_id BIGINT NOT NULL REFERENCES projects(id),
    pipeline_id BIGINT UNIQUE,
    name TEXT NOT NULL,
    type TEXT NOT NULL,
    status TEXT NOT NULL DEFAULT 'OPEN',
    description TEXT NOT NULL DEFAULT '',
    creator_id BIGINT NOT NULL REFERENCES principals(id),
    assignee_id BIGINT NOT NULL REFERENCES principals(id),
    assignee_need_attention BOOLEAN NOT NULL DEFAULT FALSE,
    create_context TEXT NOT NULL DEFAULT '{}'
);
"""),
    ("tasks", """
CREATE TABLE IF NOT EXISTS tasks (
    id BIGSERIAL PRIMARY KEY,
    pipeline_id BIGINT NOT NULL,
    database_id BIGINT REFERENCES databases(id),
    name TEXT NOT NULL DEFAULT '',
    status TEXT NOT NULL,
    type TEXT NOT NULL,
    statement TEXT NOT NULL DEFAULT '',
    payload JSONB NOT NULL DEFAULT '{}'::jsonb,
    updater_id BIGINT REFERENCES principals(id)
);
"""),
    ("activities", """
CREATE TABLE IF NOT EXISTS activities (
    id BIGSERIAL PRIMARY KEY,
    creator_id BIGINT NOT NULL REFERENCES principals(id),
    container_id BIGINT NOT NULL,
    type TEXT NOT NULL,
    level TEXT NOT NULL CHECK (level IN ('INFO', 'WARN', 'ERROR')),
    comment TEXT NOT NULL DEFAULT '',
    payload JSONB NOT NULL DEFAULT '{}'::jsonb,
    created_at TIMESTAMP NOT NULL DEFAULT NOW()
);
"""),
    ("sql_review_policies", """
CREATE TABLE IF NOT EXISTS sql_review_policies (
    id BIGSERIAL PRIMARY KEY,
    environment_id BIGINT NOT NULL REFERENCES environments(id),
    name TEXT NOT NULL DEFAULT '',
    row_status TEXT NOT NULL DEFAULT 'NORMAL' CHECK (row_status IN ('NORMAL', 'ARCHIVED')),
    rule_list JSONB NOT NULL DEFAULT '[]'::jsonb
);
"""),
    ("sheets", """
CREATE TABLE IF NOT EXISTS sheets (
    id BIGSERIAL PRIMARY KEY,
    project_id BIGINT NOT NULL REFERENCES projects(id),
    database_id BIGINT REFERENCES databases(id),
    creator_id BIGINT NOT NULL REFERENCES principals(id),
    updater_id BIGINT REFERENCES principals(id),
    name TEXT NOT NULL,
    statement TEXT NOT NULL DEFAULT '',
    visibility TEXT NOT NULL DEFAULT 'PROJECT',
    source TEXT NOT NULL,
    type TEXT NOT NULL DEFAULT 'SQL',
    payload JSONB NOT NULL DEFAULT '{}'::jsonb
);
"""),
]

CREATE_INDEXES_SQL = [
    "CREATE INDEX IF NOT EXISTS idx_repositories_webhook_endpoint_id ON repositories(webhook_endpoint_id);",
    "CREATE INDEX IF NOT EXISTS idx_repositories_web_url ON repositories(web_url);",
    "CREATE INDEX IF NOT EXISTS idx_databases_project_name ON databases(project_id, name);",
    "CREATE INDEX IF NOT EXISTS idx_tasks_database_status ON tasks(database_id, status);",
    "CREATE INDEX IF NOT EXISTS idx_activities_container ON activities(container_id);",
    "CREATE INDEX IF NOT EXISTS idx_sheets_project_name ON sheets(project_id, name);",
]

EXPECTED_INDEXES = {
    "repositories": ["idx_repositories_webhook_endpoint_id", "idx_repositories_web_url"],
    "databases": ["idx_databases_project_name"],
    "tasks": ["idx_tasks_database_status"],
    "activities": ["idx_activities_container"],
    "sheets": ["idx_sheets_project_name"],
}

SYSTEM_BOT_SQL = """
INSERT INTO principals (id, name, email) VALUES (1, 'GitOps Bot', 'support@gitops.local')
ON CONFLICT (id) DO NOTHING;
"""

DROP_TABLE_SQL = " ".join(f"DROP TABLE IF EXISTS {name} CASCADE;" for name, _ in reversed(TABLES))


def get_database_url(config) -> str:
    """
    Get PostgreSQL database URL.

    Uses DATABASE_URL from .env; there is no way to derive it from the Supabase URL.
    """
    if config.credentials.database_url:
        return config.credentials.database_url

    logger.error("DATABASE_URL not found in .env file")
    logger.error("\nTo get your DATABASE_URL:")
    logger.error("1. Go to Supabase Dashboard → Project Settings → Database")
    logger.error("2. Find 'Connection string' under 'Connection pooling'")
    logger.error("3. Copy the 'URI' connection string")
    logger.error("4. Add to .env file: DATABASE_URL=postgresql://...")
    sys.exit(1)


def create_connection(database_url: str):
    """Create a PostgreSQL database connection."""
    try:
        conn = psycopg2.connect(database_url)
        logger.info("✓ Connected to PostgreSQL database")
        return conn
    except psycopg2.Error as e:
        logger.error(f"✗ Failed to connect to database: {e}")
        logger.error("\nMake sure:")
        logger.error("1. DATABASE_URL is correct in .env file")
        logger.error("2. Your IP is allowed in Supabase (Project Settings → Database → Connection pooling)")
        logger.error("3. Database password is correct")
        sys.exit(1)


def execute_sql(conn, sql_statement: str, description: str) -> bool:
    """Execute a SQL statement."""
    try:
        cursor = conn.cursor()
        cursor.execute(sql_statement)
        conn.commit()
        cursor.close()
        logger.info(f"✓ {description}")
        return True
    except psycopg2.Error as e:
        logger.error(f"✗ {description} failed: {e}")
        conn.rollback()
        return False


def verify_schema(conn) -> bool:
    """Verify that every table exists; missing indexes are only warned about."""
    try:
        cursor = conn.cursor()

        ok = True
        for table_name, _ in TABLES:
            cursor.execute("""
                SELECT EXISTS (
                    SELECT FROM information_schema.tables
                    WHERE table_name = %s
                );
            """, (table_name,))
            if cursor.fetchone()[0]:
                logger.info(f"✓ Table '{table_name}' exists")
            else:
                logger.error(f"✗ Table '{table_name}' does not exist")
                ok = False

        for table_name, expected_indexes in EXPECTED_INDEXES.items():
            cursor.execute("SELECT indexname FROM pg_indexes WHERE tablename = %s;", (table_name,))
            indexes = [row[0] for row in cursor.fetchall()]
            for idx in expected_indexes:
                if idx in indexes:
                    logger.info(f"✓ Index '{idx}' exists")
                else:
                    logger.warning(f"⚠ Index '{idx}' missing")

        cursor.close()
        return ok

    except psycopg2.Error as e:
        logger.error(f"✗ Schema verification failed: {e}")
        return False


def create_schema(conn) -> bool:
    """Create the database schema."""
    logger.info("\n" + "="*80)
    logger.info("CREATING SCHEMA")
    logger.info("="*80 + "\n")

    for table_name, create_sql in TABLES:
        if not execute_sql(conn, create_sql, f"Created table '{table_name}'"):
            return False

    for idx_sql in CREATE_INDEXES_SQL:
        idx_name = idx_sql.split("INDEX IF NOT EXISTS ")[1].split(" ON")[0]
        if not execute_sql(conn, idx_sql, f"Created index '{idx_name}'"):
            return False

    if not execute_sql(conn, SYSTEM_BOT_SQL, "Created system bot principal"):
        return False

    logger.info("\n✓ Database schema created successfully!")
    return True


def drop_schema(conn) -> bool:
    """Drop the existing schema (DANGEROUS)."""
    logger.warning("\n" + "="*80)
    logger.warning("⚠️  WARNING: DROPPING EXISTING SCHEMA")
    logger.warning("="*80)
    logger.warning("This will DELETE ALL DATA in every pipeline table!")

    response = input("\nType 'yes' to confirm: ")
    if response.lower() != 'yes':
        logger.info("Aborted.")
        return False

    if not execute_sql(conn, DROP_TABLE_SQL, f"Dropped {len(TABLES)} tables"):
        return False

    logger.info("✓ Schema dropped")
    return True


def main():
    parser = argparse.ArgumentParser(
        description="Set up database schema for git-migration-pipeline"
    )
    parser.add_argument(
        "--verify",
        action="store_true",
        help="Verify existing schema without creating"
    )
    parser.add_argument(
        "--drop",
        action="store_true",
        help="Drop and recreate tables (DANGEROUS - deletes all data)"
    )

    args = parser.parse_args()

    config = load_config()
    logger.info("✓ Configuration loaded")

    database_url = get_database_url(config)
    conn = create_connection(database_url)

    try:
        if args.verify:
            logger.info("\n" + "="*80)
            logger.info("VERIFYING SCHEMA")
            logger.info("="*80 + "\n")

            if verify_schema(conn):
                logger.info("\n✓ Schema verification successful")
                sys.exit(0)
            else:
                logger.error("\n✗ Schema verification failed")
                sys.exit(1)

        if args.drop:
            if not drop_schema(conn):
                sys.exit(1)

        if create_schema(conn):
            logger.info("\nVerify the schema with:")
            logger.info("   python setup/setup_database.py --verify")
            sys.exit(0)
        else:
            logger.error("\n✗ Schema creation failed")
            sys.exit(1)

    finally:
        conn.close()
        logger.info("\n✓ Database connection closed")


if __name__ == "__main__":
    main()
