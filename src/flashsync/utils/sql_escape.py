"""
SQL identifier and value escaping utilities.

The store builds its statements as text for both DuckDB and Postgres, so every
identifier and literal goes through these helpers.
"""

from typing import Any


def escape_identifier(identifier: str) -> str:
    """
    Escape SQL identifier (table name, column name).

    Wraps identifier in double quotes and escapes any double quotes within.
    This is safe for PostgreSQL and DuckDB.

    Example:
        >>> escape_identifier("flashes")
        '"flashes"'
        >>> escape_identifier('table"name')
        '"table""name"'
    """
    if not identifier:
        raise ValueError("Identifier cannot be empty")

    escaped = identifier.replace('"', '""')
    return f'"{escaped}"'


def escape_sql_string(value: str | None) -> str:
    """
    Escape SQL string value, returning the quoted literal.

    Example:
        >>> escape_sql_string("O'Brien")
        "'O''Brien'"
    """
    if value is None:
        return "NULL"

    escaped = str(value).replace("'", "''")
    return f"'{escaped}'"


def sql_literal(value: Any) -> str:
    """Render a Python scalar as a SQL literal."""
    if value is None:
        return "NULL"
    if isinstance(value, bool):
        return "TRUE" if value else "FALSE"
    if isinstance(value, int):
        return str(value)
    return escape_sql_string(str(value))
