"""
Orphaned database users.

An orphan is a SQL or Windows user whose SID has no matching server login,
usually left behind after a restore or a dropped login.
"""

from __future__ import annotations

import logging
from typing import Iterable, Optional

import pyodbc

from autodbadmin.application.common import list_databases, matches, report_failure
from autodbadmin.domain.models import OperationStatus, OrphanUserResult
from autodbadmin.infrastructure.tsql import quote_identifier

logger = logging.getLogger(__name__)

ORPHANS_SQL = """
SELECT dp.name, dp.type_desc
FROM sys.database_principals dp
LEFT JOIN sys.server_principals sp ON sp.sid = dp.sid
WHERE dp.type IN ('S', 'U', 'G')
  AND {login_mapped}
  AND dp.name NOT IN ('dbo', 'guest', 'sys', 'INFORMATION_SCHEMA')
  AND sp.sid IS NULL
ORDER BY dp.name
"""

# authentication_type arrived in SQL Server 2012; before it, users without a
# login carry a NULL or 0x00 SID
LOGIN_MAPPED_FILTER = "dp.authentication_type IN (1, 3)"
LEGACY_LOGIN_MAPPED_FILTER = "dp.sid IS NOT NULL AND dp.sid <> 0x00"

OWNED_SCHEMAS_SQL = """
SELECT s.name AS schema_name,
       (SELECT COUNT(*) FROM sys.objects o WHERE o.schema_id = s.schema_id) AS object_count
FROM sys.schemas s
WHERE s.principal_id = USER_ID(?)
"""

OWNED_ROLES_SQL = """
SELECT name FROM sys.database_principals
WHERE type = 'R' AND owning_principal_id = USER_ID(?)
"""


def orphans_query(version_major: int) -> str:
    login_mapped = LOGIN_MAPPED_FILTER if version_major >= 11 else LEGACY_LOGIN_MAPPED_FILTER
    return ORPHANS_SQL.format(login_mapped=login_mapped)


def find_orphan_users(connector, database: str) -> list[str]:
    query = orphans_query(connector.detect_version().version_major)
    return [row["name"] for row in connector.execute_query(query, database=database)]


def plan_user_removal(user: str, schemas: list[dict], roles: list[str], force: bool) -> list[str] | None:
    """
    Statements that remove a user, or None when owned objects block it.

    Empty schemas named after the user are dropped, other empty schemas and
    all owned roles move to dbo. Schemas holding objects move to dbo only
    with ``force``.
    """
    statements = []
    for schema in schemas:
        name = schema["schema_name"]
        if schema["object_count"]:
            if not force:
                return None
            statements.append(f"ALTER AUTHORIZATION ON SCHEMA::{quote_identifier(name)} TO [dbo]")
        elif name.lower() == user.lower():
            statements.append(f"DROP SCHEMA {quote_identifier(name)}")
        else:
            statements.append(f"ALTER AUTHORIZATION ON SCHEMA::{quote_identifier(name)} TO [dbo]")
    for role in roles:
        statements.append(f"ALTER AUTHORIZATION ON ROLE::{quote_identifier(role)} TO [dbo]")
    statements.append(f"DROP USER {quote_identifier(user)}")
    return statements


def remove_orphan_users(
    connector,
    databases: Optional[Iterable[str]] = None,
    exclude_databases: Optional[Iterable[str]] = None,
    users: Optional[Iterable[str]] = None,
    force: bool = False,
    enable_exception: bool = False,
) -> list[OrphanUserResult]:
    """
    Drop orphaned users, re-owning what they own to dbo first.

    Args:
        connector: Instance to clean
        databases: Only these databases
        exclude_databases: Skip these databases
        users: Only these users
        force: Re-own schemas that still contain objects
        enable_exception: Raise on the first failure
    """
    target = connector.server_instance
    results = []
    for database in list_databases(connector, databases, exclude_databases):
        try:
            orphans = find_orphan_users(connector, database)
        except pyodbc.Error as e:
            report_failure(f"Cannot list users of {database}", error=e,
                           enable_exception=enable_exception, target=target)
            continue

        for user in orphans:
            if users and not matches(user, users):
                continue
            result = OrphanUserResult(sql_instance=target, database=database, user=user)
            results.append(result)
            try:
                schemas = connector.execute_query(OWNED_SCHEMAS_SQL, [user], database=database)
                roles = [r["name"] for r in connector.execute_query(OWNED_ROLES_SQL, [user], database=database)]
                statements = plan_user_removal(user, schemas, roles, force)
                if statements is None:
                    result.status = OperationStatus.SKIPPED
                    result.notes = "User owns schemas that contain objects; use force to move them to dbo"
                    logger.warning("[%s] %s.%s: %s", target, database, user, result.notes)
                    continue
                for statement in statements:
                    connector.execute_non_query(statement, database=database)
                    result.actions.append(statement)
                result.notes = "User dropped"
                logger.info("[%s] Dropped orphaned user %s from %s", target, user, database)
            except pyodbc.Error as e:
                result.status = OperationStatus.FAILED
                result.notes = report_failure(
                    f"Cannot remove {user} from {database}", error=e,
                    enable_exception=enable_exception, target=target,
                )
    return results
