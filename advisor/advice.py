"""SQL review findings: statuses, stable error codes and the Advice record."""

from enum import Enum, IntEnum
from typing import Iterable

from pydantic import BaseModel


class AdviceStatus(str, Enum):
    SUCCESS = "SUCCESS"
    WARN = "WARN"
    ERROR = "ERROR"

    @property
    def severity(self) -> int:
        return _SEVERITY[self]


_SEVERITY = {
    AdviceStatus.SUCCESS: 0,
    AdviceStatus.WARN: 1,
    AdviceStatus.ERROR: 2,
}


class SQLReviewRuleLevel(str, Enum):
    """Level configured for a rule in a SQL review policy."""
    ERROR = "ERROR"
    WARNING = "WARNING"
    DISABLED = "DISABLED"

    def to_advice_status(self) -> AdviceStatus:
        if self == SQLReviewRuleLevel.ERROR:
            return AdviceStatus.ERROR
        return AdviceStatus.WARN


class AdviceCode(IntEnum):
    """Stable numeric codes, linked from CI reports to the docs."""
    OK = 0
    INTERNAL = 1
    NOT_FOUND = 2
    UNSUPPORTED = 3

    # Backward compatibility
    COMPATIBILITY_DROP_DATABASE = 101
    COMPATIBILITY_RENAME = 102
    COMPATIBILITY_DROP_TABLE = 103
    COMPATIBILITY_RENAME_COLUMN = 104
    COMPATIBILITY_DROP_COLUMN = 105
    COMPATIBILITY_ADD_PRIMARY_KEY = 106

    # Statement
    STATEMENT_SYNTAX_ERROR = 201
    STATEMENT_NO_WHERE = 202
    STATEMENT_SELECT_ALL = 203
    STATEMENT_LEADING_WILDCARD_LIKE = 204
    STATEMENT_DISALLOW_COMMIT = 206
    STATEMENT_DML_DRY_RUN_FAILED = 208

    # Naming
    NAMING_TABLE_CONVENTION_MISMATCH = 301

    # Column
    NO_REQUIRED_COLUMN = 401
    COLUMN_CANNOT_NULL = 402
    CHANGE_COLUMN_ORDER = 406

    # Table
    TABLE_NO_PK = 601
    TABLE_HAS_FK = 602


class Advice(BaseModel):
    """One finding for one statement of a file."""
    status: AdviceStatus
    code: int
    title: str
    content: str = ""
    line: int = 1

    @property
    def report_line(self) -> int:
        return max(self.line, 1)


def ok_advice() -> Advice:
    return Advice(status=AdviceStatus.SUCCESS, code=AdviceCode.OK, title="OK", content="")


def worst_status(statuses: Iterable[AdviceStatus]) -> AdviceStatus:
    """Most severe status among statuses, SUCCESS when empty."""
    worst = AdviceStatus.SUCCESS
    for status in statuses:
        if status.severity > worst.severity:
            worst = status
    return worst
