"""SQL guardrails for statements issued through the agent's database tool."""

from __future__ import annotations

import logging
import re
from typing import Optional

from sqlglot import exp, parse
from sqlglot.errors import ParseError

logger = logging.getLogger(__name__)

_READ_ONLY_PATTERN = re.compile(r"^\s*(select|with)\b", re.IGNORECASE | re.DOTALL)
_PROHIBITED_KEYWORDS = re.compile(
    r"\b(insert|update|delete|drop|alter|create|grant|revoke|truncate|merge|exec|execute)\b",
    re.IGNORECASE,
)
_TABLE_AFTER_KEYWORD = re.compile(r"\b(?:from|join)\s+([\w\[\]\.\"]+)", re.IGNORECASE)
_READ_ONLY_STATEMENTS = (exp.Select, exp.Union, exp.Intersect, exp.Except)

SQL_DIALECT = "tsql"


class GuardrailViolation(Exception):
    """Raised when a statement violates the read-only policy."""


def ensure_read_only(query: str) -> None:
    """Ensure ``query`` is a single SELECT/CTE statement."""
    if not _READ_ONLY_PATTERN.match(query):
        raise GuardrailViolation("Only SELECT/CTE queries are permitted.")

    try:
        statements = [statement for statement in parse(query, read=SQL_DIALECT) if statement is not None]
    except ParseError as exc:
        logger.warning("Falling back to keyword checks for unparsable SQL: %s", exc)
        if _PROHIBITED_KEYWORDS.search(query):
            raise GuardrailViolation("Detected prohibited SQL keywords (DML/DDL).")
        if ";" in query.strip().rstrip(";"):
            raise GuardrailViolation("Multiple SQL statements are not allowed.")
        return

    if len(statements) > 1:
        raise GuardrailViolation("Multiple SQL statements are not allowed.")
    for statement in statements:
        if not isinstance(statement, _READ_ONLY_STATEMENTS):
            raise GuardrailViolation("Only SELECT/CTE queries are permitted.")
        if statement.find(exp.Into) is not None:
            raise GuardrailViolation("SELECT ... INTO is not permitted.")


def first_table_name(query: str) -> Optional[str]:
    """Return the unqualified name of the first table a query reads from, if any."""
    try:
        tree = parse(query, read=SQL_DIALECT)[0]
    except (ParseError, IndexError):
        tree = None
    if tree is not None:
        table = tree.find(exp.Table)
        if table is not None and table.name:
            return table.name

    match = _TABLE_AFTER_KEYWORD.search(query)
    if not match:
        return None
    name = match.group(1).split(".")[-1].strip('[]"')
    return name or None
