"""Run a SQL review policy's rules against the statements of one file."""

import logging

import sqlglot
from sqlglot.dialects.dialect import Dialect
from sqlglot.errors import SqlglotError, TokenError
from sqlglot.tokens import Token, TokenType

from advisor.advice import Advice, AdviceCode, AdviceStatus, SQLReviewRuleLevel, ok_advice
from advisor.rules import RULES, CheckContext, Statement

logger = logging.getLogger(__name__)

# Advisor database types and the sqlglot dialect used to parse them
DIALECTS = {
    "MYSQL": "mysql",
    "TIDB": "mysql",
    "POSTGRES": "postgres",
}


def convert_engine_to_advisor_db_type(engine: str) -> str:
    """
    Map an instance engine to the advisor database type.

    Raises:
        ValueError: If the engine has no SQL review support
    """
    db_type = engine.upper()
    if db_type not in DIALECTS:
        raise ValueError(f"unsupported database engine for SQL review: {engine}")
    return db_type


def split_statements(sql: str, dialect: str = "mysql") -> list[tuple[str, int]]:
    """
    Split SQL text into statements with the dialect's tokenizer.

    Quoting, dollar-quoted bodies and comments follow the dialect, so a
    semicolon inside a PostgreSQL function body does not end the statement.
    Comments before a statement are not part of its text.

    Args:
        sql: Full file content
        dialect: sqlglot dialect name

    Returns:
        List of (statement text without the semicolon, 1-based start line)

    Raises:
        TokenError: If the text cannot be tokenized, e.g. an unterminated string
    """
    statements = []
    current: list[Token] = []

    def flush():
        if current:
            text = sql[current[0].start:current[-1].end + 1].strip()
            statements.append((text, current[0].line))

    for token in Dialect.get_or_raise(dialect).tokenize(sql):
        if token.token_type == TokenType.SEMICOLON:
            flush()
            current = []
        else:
            current.append(token)

    flush()
    return statements


def parse_statements(sql: str, db_type: str) -> tuple[list[Statement], list[Advice]]:
    """Split and parse; statements that fail to parse become syntax error advice."""
    dialect = DIALECTS.get(db_type, "mysql")
    statements = []
    syntax_errors = []

    try:
        pieces = split_statements(sql, dialect)
    except TokenError as e:
        return [], [_syntax_error(e, 1)]

    for statement_text, line in pieces:
        try:
            ast = sqlglot.parse_one(statement_text, read=dialect)
        except SqlglotError as e:
            syntax_errors.append(_syntax_error(e, line))
            continue
        statements.append(Statement(text=statement_text, line=line, ast=ast))

    return statements, syntax_errors


def _syntax_error(error: SqlglotError, line: int) -> Advice:
    return Advice(
        status=AdviceStatus.ERROR,
        code=AdviceCode.STATEMENT_SYNTAX_ERROR,
        title="Syntax error",
        content=str(error).splitlines()[0] if str(error) else "failed to parse statement",
        line=line,
    )


def sql_review_check(sql: str, rule_list: list, context: CheckContext) -> list[Advice]:
    """
    Check a file against a rule list.

    Args:
        sql: File content, possibly holding several statements
        rule_list: SQLReviewRule entries of the environment's policy
        context: Database settings plus optional catalog and live connection

    Returns:
        Advice list; a single OK advice when no rule fired. Syntax errors
        short-circuit the rules.
    """
    statements, syntax_errors = parse_statements(sql, context.db_type)
    if syntax_errors:
        return syntax_errors

    advice_list: list[Advice] = []
    for review_rule in rule_list:
        if review_rule.level == SQLReviewRuleLevel.DISABLED:
            continue
        check = RULES.get(review_rule.type)
        if check is None:
            logger.debug(f"Skipping unknown SQL review rule: {review_rule.type}")
            continue
        advice_list.extend(check(
            statements,
            review_rule.level.to_advice_status(),
            review_rule.type,
            review_rule.payload or {},
            context,
        ))

    if not advice_list:
        return [ok_advice()]
    return advice_list
