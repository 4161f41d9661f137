"""
Privileged-use server audit.

Creates a file audit next to the instance's DATA folder, filters out the
noise SQL Server generates against its own internal tables, and attaches a
server audit specification covering privileged actions.
"""

from __future__ import annotations

import logging
import ntpath

import pyodbc

from autodbadmin.application.common import report_failure
from autodbadmin.domain.models import ActionResult, OperationStatus
from autodbadmin.infrastructure.tsql import quote_identifier, quote_literal

logger = logging.getLogger(__name__)

DEFAULT_AUDIT_NAME = "MSSQLSERVER_PrivledgeUse"
DEFAULT_SPECIFICATION_NAME = "PrivilegedUse"
AUDIT_GUID = "19671018-446f-6871-7479-4036b61489d8"

INTERNAL_TABLES = (
    "syspalnames", "objects$", "syspalvalues", "configurations$", "system_columns$",
    "server audits$", "parameters$", "sysschobjs", "sysbinobjs", "sysclsobjs",
    "sysnsobjs", "syscolpars", "systypedsubobjs", "sysidxstats", "sysiscols",
    "sysscalartypes", "sysdbreg", "sysxsrvs", "sysrmtlgns", "syslnklgns", "sysxlgns",
    "sysdbfiles", "sysusermsg", "sysprivs", "sysowners", "sysobjkeycrypts", "syscerts",
    "sysasymkeys", "ftinds", "sysxprops", "sysallocunits", "sysrowsets", "sysrowsetrefs",
    "syslogshippers", "sysremsvcbinds", "sysconvgroup", "sysxmitqueue", "sysdesend",
    "sysdercv", "sysendpts", "syswebmethods", "sysqnames", "sysxmlcomponent",
    "sysxmlfacet", "sysxmlplacement", "syssingleobjrefs", "sysmultiobjrefs",
    "sysobjvalues", "sysguidrefs",
)

# Metadata queries issued by Management Studio while browsing
TOOLING_STATEMENTS = (
    "SELECT%clmns.name%FROM%sys.all_views%sys.all_columns%sys.indexes%sys.index_columns"
    "%sys.computed_columns%sys.identity_columns%sys.objects%sys.types%sys.schemas%sys.types%",
    "SELECT%dtb.name AS%,%dtb.database_id AS%,%CAST(has_dbaccess(dtb.name) AS bit) AS"
    "%FROM%master.sys.databases AS dtb%ORDER BY%ASC",
    "SELECT%dtb.collation_name AS%,%dtb.name AS%FROM%master.sys.databases AS dtb%WHERE%",
)

ACTION_GROUPS = (
    "DATABASE_CHANGE_GROUP",
    "DATABASE_OBJECT_CHANGE_GROUP",
    "DATABASE_OBJECT_OWNERSHIP_CHANGE_GROUP",
    "DATABASE_OBJECT_PERMISSION_CHANGE_GROUP",
    "DATABASE_OWNERSHIP_CHANGE_GROUP",
    "DATABASE_PERMISSION_CHANGE_GROUP",
    "DATABASE_PRINCIPAL_CHANGE_GROUP",
    "DATABASE_ROLE_MEMBER_CHANGE_GROUP",
    "DBCC_GROUP",
    "FAILED_LOGIN_GROUP",
    "LOGIN_CHANGE_PASSWORD_GROUP",
    "SCHEMA_OBJECT_CHANGE_GROUP",
    "SCHEMA_OBJECT_OWNERSHIP_CHANGE_GROUP",
    "SCHEMA_OBJECT_PERMISSION_CHANGE_GROUP",
    "SERVER_OPERATION_GROUP",
    "SERVER_PERMISSION_CHANGE_GROUP",
    "SERVER_PRINCIPAL_CHANGE_GROUP",
    "SERVER_ROLE_MEMBER_CHANGE_GROUP",
    "TRACE_CHANGE_GROUP",
    "DATABASE_OBJECT_ACCESS_GROUP",
    "SCHEMA_OBJECT_ACCESS_GROUP",
    "BACKUP_RESTORE_GROUP",
    "AUDIT_CHANGE_GROUP",
    "SERVER_OBJECT_PERMISSION_CHANGE_GROUP",
    "DATABASE_PRINCIPAL_IMPERSONATION_GROUP",
    "SERVER_PRINCIPAL_IMPERSONATION_GROUP",
    "SUCCESSFUL_LOGIN_GROUP",
    "LOGOUT_GROUP",
    "SERVER_OBJECT_CHANGE_GROUP",
    "DATABASE_OPERATION_GROUP",
    "APPLICATION_ROLE_CHANGE_PASSWORD_GROUP",
    "SERVER_STATE_CHANGE_GROUP",
    "SERVER_OBJECT_OWNERSHIP_CHANGE_GROUP",
    "USER_CHANGE_PASSWORD_GROUP",
)

ON_FAILURE_OPTIONS = ("CONTINUE", "SHUTDOWN", "FAIL_OPERATION")

MASTER_FILE_SQL = "SELECT physical_name FROM sys.master_files WHERE database_id = 1 AND file_id = 1"


def audit_folder_from_master(master_physical_name: str) -> str:
    """``C:\\...\\MSSQL\\DATA\\master.mdf`` -> ``C:\\...\\MSSQL\\Audit\\``"""
    data_folder = ntpath.dirname(master_physical_name)
    return ntpath.join(ntpath.dirname(data_folder), "Audit") + "\\"


def build_audit_filter() -> str:
    """WHERE clause that drops audit records for internal and tooling activity."""
    tables = "\n    OR ".join(f"Object_Name = {quote_literal(t)[1:]}" for t in INTERNAL_TABLES)
    lines = [
        f"(Statement <> '{AUDIT_GUID}')",
        f"AND NOT (Schema_Name = 'sys' AND (\n    {tables}\n))",
        "AND NOT (Additional_Information LIKE '<tsql.stack>%')",
    ]
    lines.extend(
        f"AND NOT (Schema_Name = 'sys' AND Statement LIKE {quote_literal(s)[1:]})"
        for s in TOOLING_STATEMENTS
    )
    return "\n".join(lines)


def build_server_audit_statements(
    audit_folder: str,
    audit_name: str = DEFAULT_AUDIT_NAME,
    specification_name: str = DEFAULT_SPECIFICATION_NAME,
    max_size_mb: int = 100,
    max_rollover_files: int = 100,
    queue_delay: int = 1000,
    on_failure: str = "SHUTDOWN",
    audit_guid: str | None = AUDIT_GUID,
) -> list[tuple[str, str]]:
    """
    (action, statement) pairs in execution order.

    A fixed ``audit_guid`` is reused whenever the audit is recreated; None
    lets SQL Server pick one.
    """
    on_failure = on_failure.upper()
    if on_failure not in ON_FAILURE_OPTIONS:
        raise ValueError(f"Invalid on_failure '{on_failure}'. Expected one of: {', '.join(ON_FAILURE_OPTIONS)}")
    audit = quote_identifier(audit_name)
    options = f"QUEUE_DELAY = {queue_delay}, ON_FAILURE = {on_failure}"
    if audit_guid:
        options += f", AUDIT_GUID = {quote_literal(audit_guid)[1:]}"
    groups = ",\n".join(f"ADD ({g})" for g in ACTION_GROUPS)
    return [
        ("Create audit folder", f"EXEC master.dbo.xp_create_subdir {quote_literal(audit_folder)}"),
        ("Create server audit", (
            f"CREATE SERVER AUDIT {audit} TO FILE (\n"
            f"    FILEPATH = {quote_literal(audit_folder)},\n"
            f"    MAXSIZE = {max_size_mb} MB,\n"
            f"    MAX_ROLLOVER_FILES = {max_rollover_files},\n"
            "    RESERVE_DISK_SPACE = ON\n"
            f") WITH ({options})"
        )),
        ("Set audit filter", f"ALTER SERVER AUDIT {audit}\nWHERE {build_audit_filter()}"),
        ("Enable server audit", f"ALTER SERVER AUDIT {audit} WITH (STATE = ON)"),
        ("Create audit specification", (
            f"CREATE SERVER AUDIT SPECIFICATION {quote_identifier(specification_name)}\n"
            f"FOR SERVER AUDIT {audit}\n{groups}\nWITH (STATE = ON)"
        )),
    ]


def build_drop_statements(audit_name: str, specification_name: str | None) -> list[tuple[str, str]]:
    statements = []
    if specification_name:
        spec = quote_identifier(specification_name)
        statements += [
            ("Disable audit specification", f"ALTER SERVER AUDIT SPECIFICATION {spec} WITH (STATE = OFF)"),
            ("Drop audit specification", f"DROP SERVER AUDIT SPECIFICATION {spec}"),
        ]
    audit = quote_identifier(audit_name)
    statements += [
        ("Disable server audit", f"ALTER SERVER AUDIT {audit} WITH (STATE = OFF)"),
        ("Drop server audit", f"DROP SERVER AUDIT {audit}"),
    ]
    return statements


def new_server_audit(
    connector,
    audit_name: str = DEFAULT_AUDIT_NAME,
    specification_name: str = DEFAULT_SPECIFICATION_NAME,
    audit_folder: str | None = None,
    max_size_mb: int = 100,
    max_rollover_files: int = 100,
    on_failure: str = "SHUTDOWN",
    audit_guid: str | None = AUDIT_GUID,
    force: bool = False,
    script_only: bool = False,
    enable_exception: bool = False,
) -> list[ActionResult]:
    """
    Create the privileged-use server audit and its specification.

    Args:
        connector: Instance to audit
        audit_name: Server audit name
        specification_name: Server audit specification name
        audit_folder: Where audit files go (defaults to an Audit folder beside DATA)
        max_size_mb: Size of each audit file
        max_rollover_files: Number of files kept
        on_failure: CONTINUE, SHUTDOWN or FAIL_OPERATION
        audit_guid: Fixed AUDIT_GUID for the audit (None lets SQL Server generate one)
        force: Drop and recreate an existing audit
        script_only: Return the statements without running them
        enable_exception: Raise on the first failure

    Returns:
        One record per statement
    """
    target = connector.server_instance
    results: list[ActionResult] = []

    def record(action: str, statement: str | None, status: OperationStatus, notes: str = "") -> None:
        results.append(ActionResult(sql_instance=target, name=audit_name, action=action,
                                    status=status, notes=notes, statement=statement))

    try:
        if audit_folder is None:
            audit_folder = audit_folder_from_master(connector.execute_scalar(MASTER_FILE_SQL))
        audit_exists = bool(connector.execute_scalar(
            "SELECT COUNT(*) FROM sys.server_audits WHERE name = ?", [audit_name]
        ))
        existing_spec = connector.execute_scalar(
            "SELECT s.name FROM sys.server_audit_specifications s "
            "JOIN sys.server_audits a ON a.audit_guid = s.audit_guid WHERE a.name = ?",
            [audit_name],
        )
    except pyodbc.Error as e:
        report_failure("Cannot read server audit configuration", error=e,
                       enable_exception=enable_exception, target=target)
        return results

    statements = []
    if audit_exists:
        if not force:
            record("Create server audit", None, OperationStatus.SKIPPED,
                   "Server audit already exists. Use force to drop and recreate it.")
            return results
        statements += build_drop_statements(audit_name, existing_spec)
    statements += build_server_audit_statements(
        audit_folder, audit_name, specification_name, max_size_mb, max_rollover_files,
        on_failure=on_failure, audit_guid=audit_guid,
    )

    for index, (action, statement) in enumerate(statements):
        if script_only:
            record(action, statement, OperationStatus.SKIPPED, "Script only")
            continue
        try:
            connector.execute_non_query(statement)
            record(action, statement, OperationStatus.SUCCESSFUL)
        except pyodbc.Error as e:
            record(action, statement, OperationStatus.FAILED, report_failure(
                f"{action} failed", error=e, enable_exception=enable_exception, target=target))
            for later_action, later_statement in statements[index + 1:]:
                record(later_action, later_statement, OperationStatus.SKIPPED, f"Not run after '{action}' failed")
            break
    if not script_only and results and results[-1].status == OperationStatus.SUCCESSFUL:
        logger.info("[%s] Server audit %s writing to %s", target, audit_name, audit_folder)
    return results
