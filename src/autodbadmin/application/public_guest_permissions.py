"""
Revocation of permissions held by the public role and the guest user.
"""

from __future__ import annotations

import logging
from typing import Iterable, Optional

import pyodbc

from autodbadmin.application.common import list_databases, report_failure
from autodbadmin.domain.models import ActionResult, OperationStatus
from autodbadmin.infrastructure.tsql import quote_identifier, quote_name

logger = logging.getLogger(__name__)

# principal_id 0 is public, 2 is guest
OBJECT_PERMISSIONS_SQL = """
SELECT
    p.permission_name,
    SCHEMA_NAME(o.schema_id) AS schema_name,
    o.name AS object_name,
    u.name AS principal_name
FROM sys.database_permissions p
JOIN sys.database_principals u ON u.principal_id = p.grantee_principal_id
JOIN sys.all_objects o ON o.object_id = p.major_id
WHERE p.grantee_principal_id IN (0, 2)
  AND p.class = 1
  AND p.state IN ('G', 'W')
ORDER BY u.name, o.schema_id, o.name, p.permission_name
"""

NO_GUEST_REVOKE = ("master", "tempdb")


def build_object_revoke(permission: dict) -> str:
    return (
        f"REVOKE {permission['permission_name']} ON "
        f"{quote_name(permission['schema_name'], permission['object_name'])} "
        f"FROM {quote_identifier(permission['principal_name'])}"
    )


def revoke_public_guest_permissions(
    connector,
    databases: Optional[Iterable[str]] = None,
    exclude_databases: Optional[Iterable[str]] = None,
    script_only: bool = True,
    enable_exception: bool = False,
) -> list[ActionResult]:
    """
    Revoke what public and guest were granted.

    By default only the statements are produced; pass ``script_only=False``
    to run them.

    Args:
        connector: Instance to harden
        databases: Only these databases
        exclude_databases: Skip these databases
        script_only: Return statements without running them
        enable_exception: Raise on the first failure

    Returns:
        One record per statement; ``statement`` carries a runnable
        ``USE [db]; ...;`` line
    """
    target = connector.server_instance
    results: list[ActionResult] = []

    def apply(name: str, action: str, statement: str, database: str) -> None:
        result = ActionResult(sql_instance=target, name=name, action=action,
                              statement=f"USE {quote_identifier(database)}; {statement};")
        results.append(result)
        if script_only:
            result.status = OperationStatus.SKIPPED
            result.notes = "Script only"
            return
        try:
            connector.execute_non_query(statement, database=database)
        except pyodbc.Error as e:
            result.status = OperationStatus.FAILED
            result.notes = report_failure(f"{statement} failed in {database}", error=e,
                                          enable_exception=enable_exception, target=target)

    apply("public", "REVOKE VIEW ANY DATABASE", "REVOKE VIEW ANY DATABASE FROM PUBLIC", "master")

    try:
        names = list_databases(connector, databases, exclude_databases)
    except pyodbc.Error as e:
        report_failure("Cannot list databases", error=e,
                       enable_exception=enable_exception, target=target)
        return results

    for database in names:
        try:
            permissions = connector.execute_query(OBJECT_PERMISSIONS_SQL, database=database)
        except pyodbc.Error as e:
            report_failure(f"Cannot read permissions in {database}", error=e,
                           enable_exception=enable_exception, target=target)
            continue
        for permission in permissions:
            apply(
                f"{database}.{permission['schema_name']}.{permission['object_name']}",
                f"REVOKE {permission['permission_name']} FROM {permission['principal_name']}",
                build_object_revoke(permission),
                database,
            )
        if database.lower() not in NO_GUEST_REVOKE:
            apply(database, "REVOKE CONNECT FROM GUEST", "REVOKE CONNECT FROM GUEST", database)

    logger.info("[%s] %d public/guest revocation(s) %s", target, len(results),
                "scripted" if script_only else "processed")
    return results
