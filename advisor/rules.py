"""
SQL review rules.

Each rule receives every statement of a file and returns its findings. Rules
that can rely on the parsed tree use sqlglot; ALTER statements are checked on
their text because sqlglot keeps dialect-specific ALTER clauses as opaque
commands.
"""

import logging
import re
from dataclasses import dataclass
from typing import Any, Callable, Optional

from sqlglot import exp
from sqlalchemy import text
from sqlalchemy.exc import SQLAlchemyError

from advisor.advice import Advice, AdviceCode, AdviceStatus
from advisor.catalog import DatabaseCatalog

logger = logging.getLogger(__name__)


@dataclass
class Statement:
    """One statement of a file, with the line it starts on."""
    text: str
    line: int
    ast: Optional[exp.Expression] = None


@dataclass
class CheckContext:
    charset: str = ""
    collation: str = ""
    db_type: str = "MYSQL"
    catalog: Optional[DatabaseCatalog] = None
    # Live read-only SQLAlchemy connection, None when checking offline
    connection: Any = None


RuleFunc = Callable[[list[Statement], AdviceStatus, str, dict, CheckContext], list[Advice]]

RULES: dict[str, RuleFunc] = {}


def rule(rule_type: str):
    """Register a rule function under its policy type."""
    def decorator(func: RuleFunc) -> RuleFunc:
        RULES[rule_type] = func
        return func
    return decorator


ALTER_TABLE_RE = re.compile(
    r"^\s*ALTER\s+TABLE\s+(?:IF\s+EXISTS\s+)?(?:ONLY\s+)?([`\"\w.]+)",
    re.IGNORECASE,
)
CHANGE_ORDER_RE = re.compile(r"\b(?:MODIFY|CHANGE)\b[^,]*\b(?:FIRST|AFTER)\b", re.IGNORECASE)
RENAME_TABLE_RE = re.compile(r"^\s*RENAME\s+TABLE\b|\bRENAME\s+(?:TO|AS)\b", re.IGNORECASE)
RENAME_TO_RE = re.compile(r"\bRENAME\s+(?:TO|AS)\s+([`\"\w.]+)|^\s*RENAME\s+TABLE\s+[`\"\w.]+\s+TO\s+([`\"\w.]+)", re.IGNORECASE)
RENAME_COLUMN_RE = re.compile(r"\bRENAME\s+COLUMN\b", re.IGNORECASE)
DROP_COLUMN_RE = re.compile(
    r"\bDROP\s+(?:COLUMN\s+)?(?:IF\s+EXISTS\s+)?([`\"\w]+)",
    re.IGNORECASE,
)
DROP_NON_COLUMN = {"PRIMARY", "INDEX", "KEY", "FOREIGN", "CONSTRAINT", "CHECK", "PARTITION", "DEFAULT"}
ADD_PRIMARY_KEY_RE = re.compile(r"\bADD\s+(?:CONSTRAINT\s+[`\"\w]+\s+)?PRIMARY\s+KEY\b", re.IGNORECASE)
FOREIGN_KEY_RE = re.compile(r"\bFOREIGN\s+KEY\b", re.IGNORECASE)
COMMIT_RE = re.compile(r"^\s*COMMIT\b", re.IGNORECASE)


def _unquote(identifier: str) -> str:
    return identifier.split(".")[-1].strip("`\"")


def alter_table_name(statement_text: str) -> Optional[str]:
    match = ALTER_TABLE_RE.match(statement_text)
    return _unquote(match.group(1)) if match else None


def created_table(statement: Statement) -> Optional[exp.Schema]:
    """The schema node of a CREATE TABLE with a column list, else None."""
    ast = statement.ast
    if not isinstance(ast, exp.Create) or str(ast.args.get("kind", "")).upper() != "TABLE":
        return None
    if not isinstance(ast.this, exp.Schema):
        return None
    return ast.this


def _schema_table_name(schema: exp.Schema) -> str:
    return schema.this.name if schema.this is not None else ""


def _column_defs(schema: exp.Schema) -> list[exp.ColumnDef]:
    return [e for e in schema.expressions if isinstance(e, exp.ColumnDef)]


def _primary_key_columns(schema: exp.Schema) -> set[str]:
    columns = set()
    for column_def in _column_defs(schema):
        if column_def.find(exp.PrimaryKeyColumnConstraint):
            columns.add(column_def.name.lower())
    for primary_key in schema.find_all(exp.PrimaryKey):
        columns.update(identifier.name.lower() for identifier in primary_key.find_all(exp.Identifier))
    return columns


def _is_not_null(column_def: exp.ColumnDef) -> bool:
    for constraint in column_def.find_all(exp.NotNullColumnConstraint):
        if not constraint.args.get("allow_null"):
            return True
    return False


def _advice(status: AdviceStatus, code: AdviceCode, title: str, content: str, line: int) -> Advice:
    return Advice(status=status, code=code, title=title, content=content, line=line)


@rule("statement.select.no-select-all")
def check_select_all(statements, status, title, payload, context):
    advice_list = []
    for statement in statements:
        if statement.ast is None:
            continue
        for select in statement.ast.find_all(exp.Select):
            if any(isinstance(e, exp.Star) for e in select.expressions):
                advice_list.append(_advice(
                    status, AdviceCode.STATEMENT_SELECT_ALL, title,
                    f"\"{statement.text}\" uses SELECT all", statement.line,
                ))
                break
    return advice_list


@rule("statement.where.require")
def check_where_required(statements, status, title, payload, context):
    advice_list = []
    for statement in statements:
        if isinstance(statement.ast, (exp.Update, exp.Delete)) and not statement.ast.args.get("where"):
            advice_list.append(_advice(
                status, AdviceCode.STATEMENT_NO_WHERE, title,
                f"\"{statement.text}\" requires WHERE clause", statement.line,
            ))
    return advice_list


@rule("statement.where.no-leading-wildcard-like")
def check_leading_wildcard_like(statements, status, title, payload, context):
    advice_list = []
    for statement in statements:
        if statement.ast is None:
            continue
        for like in statement.ast.find_all(exp.Like):
            pattern = like.expression
            if isinstance(pattern, exp.Literal) and pattern.is_string and pattern.this.startswith("%"):
                advice_list.append(_advice(
                    status, AdviceCode.STATEMENT_LEADING_WILDCARD_LIKE, title,
                    f"\"{statement.text}\" uses leading wildcard LIKE", statement.line,
                ))
                break
    return advice_list


@rule("statement.disallow-commit")
def check_disallow_commit(statements, status, title, payload, context):
    advice_list = []
    for statement in statements:
        if isinstance(statement.ast, exp.Commit) or COMMIT_RE.match(statement.text):
            advice_list.append(_advice(
                status, AdviceCode.STATEMENT_DISALLOW_COMMIT, title,
                f"Commit is not allowed, related statement: \"{statement.text}\"", statement.line,
            ))
    return advice_list


@rule("statement.dml-dry-run")
def check_dml_dry_run(statements, status, title, payload, context):
    if context.connection is None:
        return []

    advice_list = []
    for statement in statements:
        if not isinstance(statement.ast, (exp.Insert, exp.Update, exp.Delete)):
            continue
        try:
            # One savepoint per statement, a failed EXPLAIN aborts the whole PostgreSQL transaction
            with context.connection.begin_nested():
                context.connection.execute(text("EXPLAIN " + statement.text.replace(":", "\\:")))
        except SQLAlchemyError as e:
            logger.debug(f"Dry run failed for statement at line {statement.line}: {e}")
            advice_list.append(_advice(
                status, AdviceCode.STATEMENT_DML_DRY_RUN_FAILED, title,
                f"Failed to dry run statement \"{statement.text}\": {str(e).splitlines()[0]}",
                statement.line,
            ))
    return advice_list


@rule("table.require-pk")
def check_require_pk(statements, status, title, payload, context):
    advice_list = []
    for statement in statements:
        schema = created_table(statement)
        if schema is None:
            continue
        if not _primary_key_columns(schema):
            advice_list.append(_advice(
                status, AdviceCode.TABLE_NO_PK, title,
                f"Table `{_schema_table_name(schema)}` requires PRIMARY KEY", statement.line,
            ))
    return advice_list


@rule("table.no-foreign-key")
def check_no_foreign_key(statements, status, title, payload, context):
    advice_list = []
    for statement in statements:
        schema = created_table(statement)
        if schema is not None:
            if schema.find(exp.ForeignKey, exp.Reference):
                advice_list.append(_advice(
                    status, AdviceCode.TABLE_HAS_FK, title,
                    f"Foreign key is not allowed in the table `{_schema_table_name(schema)}`", statement.line,
                ))
            continue
        table = alter_table_name(statement.text)
        if table and FOREIGN_KEY_RE.search(statement.text):
            advice_list.append(_advice(
                status, AdviceCode.TABLE_HAS_FK, title,
                f"Foreign key is not allowed in the table `{table}`", statement.line,
            ))
    return advice_list


@rule("naming.table")
def check_table_naming(statements, status, title, payload, context):
    naming_format = payload.get("format") or "^[a-z]+(_[a-z]+)*$"
    pattern = re.compile(naming_format)

    advice_list = []
    for statement in statements:
        names = []
        schema = created_table(statement)
        if schema is not None:
            names.append(_schema_table_name(schema))
        else:
            match = RENAME_TO_RE.search(statement.text)
            if match:
                names.append(_unquote(match.group(1) or match.group(2)))
        for name in names:
            if not pattern.search(name):
                advice_list.append(_advice(
                    status, AdviceCode.NAMING_TABLE_CONVENTION_MISMATCH, title,
                    f"`{name}` mismatches table naming convention, naming format should be \"{naming_format}\"",
                    statement.line,
                ))
    return advice_list


@rule("column.no-null")
def check_column_no_null(statements, status, title, payload, context):
    advice_list = []
    for statement in statements:
        schema = created_table(statement)
        if schema is None:
            continue
        table = _schema_table_name(schema)
        primary_keys = _primary_key_columns(schema)
        for column_def in _column_defs(schema):
            if column_def.name.lower() in primary_keys or _is_not_null(column_def):
                continue
            advice_list.append(_advice(
                status, AdviceCode.COLUMN_CANNOT_NULL, title,
                f"`{table}`.`{column_def.name}` can not have NULL value", statement.line,
            ))
    return advice_list


@rule("column.required")
def check_required_columns(statements, status, title, payload, context):
    required = [name.lower() for name in payload.get("list") or ["id"]]

    advice_list = []
    for statement in statements:
        schema = created_table(statement)
        if schema is not None:
            present = {column_def.name.lower() for column_def in _column_defs(schema)}
            missing = [name for name in required if name not in present]
            if missing:
                advice_list.append(_advice(
                    status, AdviceCode.NO_REQUIRED_COLUMN, title,
                    f"Table `{_schema_table_name(schema)}` requires columns: {', '.join(missing)}",
                    statement.line,
                ))
            continue

        table = alter_table_name(statement.text)
        if not table:
            continue
        dropped = [
            _unquote(name).lower() for name in DROP_COLUMN_RE.findall(statement.text)
            if name.upper() not in DROP_NON_COLUMN
        ]
        missing = [name for name in required if name in dropped]
        if missing:
            advice_list.append(_advice(
                status, AdviceCode.NO_REQUIRED_COLUMN, title,
                f"Table `{table}` requires columns: {', '.join(missing)}", statement.line,
            ))
    return advice_list


@rule("column.disallow-changing-order")
def check_column_order(statements, status, title, payload, context):
    advice_list = []
    for statement in statements:
        if alter_table_name(statement.text) and CHANGE_ORDER_RE.search(statement.text):
            advice_list.append(_advice(
                status, AdviceCode.CHANGE_COLUMN_ORDER, title,
                f"\"{statement.text}\" changes column order", statement.line,
            ))
    return advice_list


@rule("schema.backward-compatibility")
def check_backward_compatibility(statements, status, title, payload, context):
    """
    Flag statements that break code written against the current schema.

    Dropping a table that was created earlier in the same file is fine. When
    a catalog snapshot is available, only tables it knows about are flagged.
    """
    created_in_file = set()
    advice_list = []

    def flag(code: AdviceCode, statement: Statement) -> None:
        advice_list.append(_advice(
            status, code, title,
            f"\"{statement.text}\" may cause incompatibility with the existing data and code",
            statement.line,
        ))

    for statement in statements:
        schema = created_table(statement)
        if schema is not None:
            created_in_file.add(_schema_table_name(schema).lower())
            continue

        ast = statement.ast
        if isinstance(ast, exp.Drop):
            kind = str(ast.args.get("kind", "")).upper()
            if kind in ("DATABASE", "SCHEMA"):
                flag(AdviceCode.COMPATIBILITY_DROP_DATABASE, statement)
            elif kind == "TABLE":
                for table in ast.find_all(exp.Table):
                    name = table.name.lower()
                    if name in created_in_file:
                        continue
                    catalog = context.catalog
                    # An empty catalog means the schema was never synced
                    if catalog is not None and catalog.tables and catalog.find_table(name) is None:
                        continue
                    flag(AdviceCode.COMPATIBILITY_DROP_TABLE, statement)
                    break
            continue

        if RENAME_TABLE_RE.search(statement.text) and not RENAME_COLUMN_RE.search(statement.text):
            flag(AdviceCode.COMPATIBILITY_RENAME, statement)
            continue

        table = alter_table_name(statement.text)
        if not table or table.lower() in created_in_file:
            continue
        if RENAME_COLUMN_RE.search(statement.text):
            flag(AdviceCode.COMPATIBILITY_RENAME_COLUMN, statement)
        elif any(name.upper() not in DROP_NON_COLUMN for name in DROP_COLUMN_RE.findall(statement.text)):
            flag(AdviceCode.COMPATIBILITY_DROP_COLUMN, statement)
        elif ADD_PRIMARY_KEY_RE.search(statement.text):
            flag(AdviceCode.COMPATIBILITY_ADD_PRIMARY_KEY, statement)

    return advice_list
