"""
T-SQL text helpers.

Names and literals that end up inside generated scripts (restore scripts,
Agent job steps, exported DDL) cannot be bound as ODBC parameters, so they
are quoted here.
"""

from __future__ import annotations

from datetime import datetime


def quote_identifier(name: str) -> str:
    """Bracket-quote an identifier: ``a]b`` -> ``[a]]b]``."""
    return "[" + name.replace("]", "]]") + "]"


def quote_name(*parts: str | None) -> str:
    """Bracket-quote and dot-join a multi-part name, skipping empty parts."""
    return ".".join(quote_identifier(p) for p in parts if p)


def quote_literal(value: str | None) -> str:
    """Unicode string literal, or NULL."""
    if value is None:
        return "NULL"
    return "N'" + str(value).replace("'", "''") + "'"


def format_datetime(value: datetime) -> str:
    """Literal accepted by STOPAT and datetime parameters regardless of DATEFORMAT."""
    return "'" + value.strftime("%Y-%m-%dT%H:%M:%S.") + f"{value.microsecond // 1000:03d}'"


def hex_literal(value: bytes | None) -> str:
    if not value:
        return "NULL"
    return "0x" + value.hex().upper()


def split_server_instance(sql_instance: str) -> tuple[str, str | None]:
    """``SQL01\\INST`` -> (``SQL01``, ``INST``); a port suffix is dropped."""
    server, _, instance = sql_instance.partition("\\")
    server = server.split(",")[0]
    return server, instance or None
