"""
Path templates for migration, schema and sheet files.

A template is a repository path with placeholders, e.g.
"migrations/{{ENV_NAME}}/{{VERSION}}__{{DB_NAME}}__{{DESCRIPTION}}.sql".
A "*" path segment matches exactly one directory, a "**" segment any number
of directories. Matching a path against a template is deterministic, so
reclassifying the same file always gives the same answer.
"""

import posixpath
import re
from dataclasses import dataclass
from functools import lru_cache
from typing import Optional

from models.data_models import MigrationInfo, MigrationType
from utils.errors import InvalidRequestError

PLACEHOLDER_RE = re.compile(r"\{\{([A-Z_]+)\}\}")

MIGRATION_PLACEHOLDERS = ("ENV_NAME", "VERSION", "DB_NAME", "TYPE", "DESCRIPTION")
SCHEMA_PLACEHOLDERS = ("ENV_NAME", "DB_NAME")
SHEET_PLACEHOLDERS = ("ENV_NAME", "DB_NAME", "NAME")

MIGRATION_TYPES = {
    "migrate": MigrationType.MIGRATE,
    "ddl": MigrationType.MIGRATE,
    "data": MigrationType.DATA,
    "dml": MigrationType.DATA,
    "baseline": MigrationType.BASELINE,
}


@dataclass
class SheetInfo:
    environment_name: str = ""
    database_name: str = ""
    sheet_name: str = ""


def validate_asterisks_in_template(template: str) -> None:
    """
    Wildcards must be whole path segments and may not end the template.

    Raises:
        InvalidRequestError: If the template uses asterisks incorrectly
    """
    segments = template.split("/")
    for segment in segments:
        if "*" in segment and segment not in ("*", "**"):
            raise InvalidRequestError(
                f"Asterisks must be a whole path segment, got \"{segment}\" in template {template}"
            )
    if segments and segments[-1] == "**":
        raise InvalidRequestError(f"Template {template} must not end with \"**\"")


def _literal_to_regex(text: str) -> str:
    parts = []
    for i, chunk in enumerate(text.split("**/")):
        if i:
            parts.append("(?:[^/]+/)*")
        parts.append("[^/]+".join(re.escape(piece) for piece in chunk.split("*")))
    return "".join(parts)


@lru_cache(maxsize=256)
def compile_template(template: str, placeholders: tuple) -> re.Pattern:
    """
    Turn a path template into an anchored regex with one group per placeholder.

    Raises:
        InvalidRequestError: If the template has an unknown placeholder or
            misplaced asterisks
    """
    validate_asterisks_in_template(template)

    pattern = []
    seen = set()
    position = 0
    for match in PLACEHOLDER_RE.finditer(template):
        name = match.group(1)
        if name not in placeholders:
            raise InvalidRequestError(f"Unknown placeholder {match.group(0)} in template {template}")
        pattern.append(_literal_to_regex(template[position:match.start()]))
        if name in seen:
            pattern.append(f"(?P={name})")
        else:
            pattern.append(f"(?P<{name}>[^/]+?)")
            seen.add(name)
        position = match.end()
    pattern.append(_literal_to_regex(template[position:]))

    return re.compile("^" + "".join(pattern) + "$")


def _match(file_path: str, template: str, placeholders: tuple) -> Optional[dict]:
    match = compile_template(template, placeholders).match(file_path)
    if match is None:
        return None
    return {name: value for name, value in match.groupdict().items() if value is not None}


def parse_migration_info(file_path: str, template: str, allow_omit_database_name: bool) -> Optional[MigrationInfo]:
    """
    Parse migration info from a file path.

    Args:
        file_path: Repository path of the file
        template: Full migration path template, base directory included
        allow_omit_database_name: Whether the database name may be absent

    Returns:
        MigrationInfo, or None when the path does not match the template

    Raises:
        InvalidRequestError: If the path matches but lacks a version, lacks a
            required database name or names an unknown migration type
    """
    values = _match(file_path, template, MIGRATION_PLACEHOLDERS)
    if values is None:
        return None

    version = values.get("VERSION", "")
    if not version:
        raise InvalidRequestError(f"Missing {{{{VERSION}}}} in file path {file_path} for template {template}")

    database = values.get("DB_NAME", "")
    if not database and not allow_omit_database_name:
        raise InvalidRequestError(f"Missing {{{{DB_NAME}}}} in file path {file_path} for template {template}")

    migration_type = MigrationType.MIGRATE
    if "TYPE" in values:
        migration_type = MIGRATION_TYPES.get(values["TYPE"].lower())
        if migration_type is None:
            raise InvalidRequestError(
                f"Invalid migration type \"{values['TYPE']}\" in file path {file_path}, "
                f"must be one of: {', '.join(MIGRATION_TYPES)}"
            )

    return MigrationInfo(
        database=database,
        environment=values.get("ENV_NAME", ""),
        version=version,
        type=migration_type,
        description=values.get("DESCRIPTION", "").replace("_", " "),
    )


def parse_schema_file_info(base_directory: str, schema_path_template: str, file_path: str) -> Optional[MigrationInfo]:
    """
    Parse a schema (SDL) file path. None when there is no schema template or
    the path does not match it.
    """
    if not schema_path_template:
        return None
    template = posixpath.join(base_directory, schema_path_template)
    values = _match(file_path, template, SCHEMA_PLACEHOLDERS)
    if values is None:
        return None
    return MigrationInfo(
        database=values.get("DB_NAME", ""),
        environment=values.get("ENV_NAME", ""),
        type=MigrationType.MIGRATE,
    )


def parse_sheet_info(file_path: str, sheet_path_template: str) -> SheetInfo:
    """Parse a sheet file path. Fields stay empty when the path does not match."""
    values = _match(file_path, sheet_path_template, SHEET_PLACEHOLDERS)
    if values is None:
        return SheetInfo()
    return SheetInfo(
        environment_name=values.get("ENV_NAME", ""),
        database_name=values.get("DB_NAME", ""),
        sheet_name=values.get("NAME", ""),
    )


def validate_file_path_template(template: str, tenant_mode: bool, db_name_template: str) -> None:
    """
    Check a migration file path template for a project.

    Raises:
        InvalidRequestError: If a required placeholder is missing or a
            forbidden one is present
    """
    compile_template(template, MIGRATION_PLACEHOLDERS)
    if "{{VERSION}}" not in template:
        raise InvalidRequestError("Missing {{VERSION}} in file path template")
    if not tenant_mode and "{{DB_NAME}}" not in template:
        raise InvalidRequestError("Missing {{DB_NAME}} in file path template")
    if tenant_mode:
        if "{{ENV_NAME}}" in template:
            raise InvalidRequestError("{{ENV_NAME}} in file path template is not allowed for tenant mode project")
        if db_name_template and "{{DB_NAME}}" not in template:
            raise InvalidRequestError(
                "Missing {{DB_NAME}} in file path template, required when the project has a database name template"
            )


def validate_schema_path_template(template: str, tenant_mode: bool) -> None:
    """
    Check a schema path template for a project. An empty template is valid.

    Raises:
        InvalidRequestError: If a required placeholder is missing or a
            forbidden one is present
    """
    if not template:
        return
    compile_template(template, SCHEMA_PLACEHOLDERS)
    if not tenant_mode and "{{DB_NAME}}" not in template:
        raise InvalidRequestError("Missing {{DB_NAME}} in schema path template")
    if tenant_mode and "{{ENV_NAME}}" in template:
        raise InvalidRequestError("{{ENV_NAME}} in schema path template is not allowed for tenant mode project")
