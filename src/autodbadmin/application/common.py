"""
Shared helpers for operations.

Every operation follows the same failure policy: a problem with one item is
logged and recorded, and processing moves on to the next item. With
``enable_exception`` the first problem is raised instead.
"""

from __future__ import annotations

import logging
from typing import Iterable, Optional, Type

from autodbadmin.domain.errors import OperationError
from autodbadmin.domain.models import SYSTEM_DATABASES
from autodbadmin.infrastructure.tsql import quote_identifier, quote_literal

logger = logging.getLogger(__name__)


def report_failure(
    message: str,
    *,
    enable_exception: bool = False,
    error: Optional[BaseException] = None,
    error_cls: Type[OperationError] = OperationError,
    target: str | None = None,
) -> str:
    """
    Log a failure, raising it when ``enable_exception`` is set.

    Returns:
        The note to store on the failed record
    """
    note = f"{message}: {error}" if error is not None else message
    if target:
        logger.error("[%s] %s", target, note)
    else:
        logger.error("%s", note)
    if enable_exception:
        if error is not None:
            raise error_cls(note) from error
        raise error_cls(note)
    return note


def matches(name: str, values: Optional[Iterable[str]]) -> bool:
    return name.lower() in {v.lower() for v in values or ()}


def filter_names(
    names: Iterable[str],
    include: Optional[Iterable[str]] = None,
    exclude: Optional[Iterable[str]] = None,
) -> list[str]:
    """Case-insensitive include/exclude filter; no include list keeps everything."""
    include = list(include or ())
    return [
        n for n in names
        if (not include or matches(n, include)) and not matches(n, exclude)
    ]


def is_system_database(name: str) -> bool:
    return name.lower() in SYSTEM_DATABASES


def list_databases(connector, include=None, exclude=None, user_only: bool = False,
                   online_only: bool = True) -> list[str]:
    """Databases on an instance after include/exclude filtering."""
    rows = connector.execute_query(
        "SELECT name, state_desc FROM sys.databases ORDER BY name"
    )
    names = [
        r["name"] for r in rows
        if not online_only or r["state_desc"] == "ONLINE"
    ]
    if user_only:
        names = [n for n in names if not is_system_database(n)]
    return filter_names(names, include, exclude)


def check_path(connector, path: str) -> tuple[bool, bool]:
    """
    Check a path as the SQL Server service account sees it.

    Returns:
        (file exists, is a directory)
    """
    rows = connector.execute_query("EXEC master.dbo.xp_fileexist ?", [path])
    if not rows:
        return False, False
    row = rows[0]
    return bool(row["File Exists"]), bool(row["File is a Directory"])


def check_database(connector, database: str) -> None:
    """DBCC CHECKDB; corruption surfaces as a pyodbc error."""
    connector.execute_non_query(
        f"DBCC CHECKDB({quote_identifier(database)}) WITH NO_INFOMSGS, ALL_ERRORMSGS"
    )


def drop_database(connector, database: str) -> None:
    """Drop a database, disconnecting other sessions first."""
    name = quote_identifier(database)
    connector.execute_non_query(
        f"IF DATABASEPROPERTYEX({quote_literal(database)}, 'Status') = 'ONLINE' "
        f"ALTER DATABASE {name} SET SINGLE_USER WITH ROLLBACK IMMEDIATE;\n"
        f"DROP DATABASE {name};"
    )
