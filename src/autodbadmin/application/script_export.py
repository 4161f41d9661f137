"""
T-SQL script export.

Scripts are assembled from catalog views: module bodies come from
OBJECT_DEFINITION, tables are rebuilt from column metadata, logins keep
their password hash and SID so they can be recreated on another instance,
and Agent jobs become msdb procedure calls.
"""

from __future__ import annotations

import getpass
import logging
from dataclasses import dataclass
from datetime import datetime
from pathlib import Path
from typing import Iterable

import pyodbc

from autodbadmin import __version__
from autodbadmin.application.common import report_failure
from autodbadmin.domain.errors import OperationError
from autodbadmin.infrastructure.tsql import (
    hex_literal,
    quote_identifier,
    quote_literal,
    quote_name,
)

logger = logging.getLogger(__name__)

MODULE_TYPES = {
    "View": ("V",),
    "StoredProcedure": ("P",),
    "UserDefinedFunction": ("FN", "IF", "TF"),
    "Trigger": ("TR",),
}
SCRIPT_TYPES = ("Table", *MODULE_TYPES, "Schema", "Login", "User", "AgentJob")
SERVER_TYPES = ("Login", "AgentJob")

MODULE_SQL = """
SELECT OBJECT_DEFINITION(o.object_id) AS definition
FROM sys.objects o
JOIN sys.schemas s ON s.schema_id = o.schema_id
WHERE o.name = ? AND s.name = ? AND o.type IN ({types})
"""

TABLE_COLUMNS_SQL = """
SELECT
    c.name,
    t.name AS type_name,
    c.max_length,
    c.precision,
    c.scale,
    c.is_nullable,
    c.is_identity,
    CAST(ic.seed_value AS BIGINT) AS seed_value,
    CAST(ic.increment_value AS BIGINT) AS increment_value,
    cc.definition AS computed_definition,
    cc.is_persisted,
    dc.name AS default_name,
    dc.definition AS default_definition
FROM sys.columns c
JOIN sys.types t ON t.user_type_id = c.user_type_id
LEFT JOIN sys.identity_columns ic ON ic.object_id = c.object_id AND ic.column_id = c.column_id
LEFT JOIN sys.computed_columns cc ON cc.object_id = c.object_id AND cc.column_id = c.column_id
LEFT JOIN sys.default_constraints dc
    ON dc.parent_object_id = c.object_id AND dc.parent_column_id = c.column_id
WHERE c.object_id = OBJECT_ID(?, 'U')
ORDER BY c.column_id
"""

PRIMARY_KEY_SQL = """
SELECT
    k.name AS constraint_name,
    i.type_desc,
    col.name AS column_name,
    ic.is_descending_key
FROM sys.key_constraints k
JOIN sys.indexes i ON i.object_id = k.parent_object_id AND i.index_id = k.unique_index_id
JOIN sys.index_columns ic ON ic.object_id = i.object_id AND ic.index_id = i.index_id
JOIN sys.columns col ON col.object_id = ic.object_id AND col.column_id = ic.column_id
WHERE k.parent_object_id = OBJECT_ID(?, 'U') AND k.type = 'PK'
ORDER BY ic.key_ordinal
"""

SCHEMA_SQL = """
SELECT s.name, p.name AS owner
FROM sys.schemas s
JOIN sys.database_principals p ON p.principal_id = s.principal_id
WHERE s.name = ?
"""

LOGIN_SQL = """
SELECT
    p.name,
    p.type_desc,
    p.is_disabled,
    p.default_database_name,
    p.default_language_name,
    p.sid,
    l.password_hash,
    l.is_policy_checked,
    l.is_expiration_checked
FROM sys.server_principals p
LEFT JOIN sys.sql_logins l ON l.principal_id = p.principal_id
WHERE p.name = ?
"""

USER_SQL = """
SELECT dp.name, dp.type_desc, dp.default_schema_name, sp.name AS login_name
FROM sys.database_principals dp
LEFT JOIN sys.server_principals sp ON sp.sid = dp.sid
WHERE dp.name = ?
"""

USER_ROLES_SQL = """
SELECT r.name AS role_name
FROM sys.database_role_members rm
JOIN sys.database_principals r ON r.principal_id = rm.role_principal_id
JOIN sys.database_principals m ON m.principal_id = rm.member_principal_id
WHERE m.name = ?
ORDER BY r.name
"""

JOB_SQL = """
SELECT
    CAST(j.job_id AS NVARCHAR(36)) AS job_id,
    j.name,
    j.enabled,
    j.description,
    c.name AS category,
    SUSER_SNAME(j.owner_sid) AS owner,
    j.start_step_id
FROM msdb.dbo.sysjobs j
LEFT JOIN msdb.dbo.syscategories c ON c.category_id = j.category_id
WHERE j.name = ?
"""

JOB_STEPS_SQL = """
SELECT
    step_id, step_name, subsystem, command, database_name,
    on_success_action, on_success_step_id, on_fail_action, on_fail_step_id,
    retry_attempts, retry_interval, output_file_name
FROM msdb.dbo.sysjobsteps
WHERE job_id = ?
ORDER BY step_id
"""

JOB_SCHEDULES_SQL = """
SELECT
    s.name, s.enabled, s.freq_type, s.freq_interval, s.freq_subday_type,
    s.freq_subday_interval, s.freq_relative_interval, s.freq_recurrence_factor,
    s.active_start_date, s.active_end_date, s.active_start_time, s.active_end_time
FROM msdb.dbo.sysjobschedules js
JOIN msdb.dbo.sysschedules s ON s.schedule_id = js.schedule_id
WHERE js.job_id = ?
ORDER BY s.name
"""


@dataclass
class ScriptObject:
    """An object to script. ``database`` is ignored for logins and Agent jobs."""
    type: str
    name: str
    schema: str | None = "dbo"
    database: str | None = None

    def __post_init__(self) -> None:
        if self.type not in SCRIPT_TYPES:
            raise ValueError(
                f"Cannot script objects of type '{self.type}'. Expected one of: {', '.join(SCRIPT_TYPES)}"
            )

    @property
    def display_name(self) -> str:
        if self.type in SERVER_TYPES or self.type == "Schema":
            return self.name
        return f"{self.schema}.{self.name}"


def format_column_type(type_name: str, max_length: int, precision: int, scale: int) -> str:
    """Column type as written in DDL, e.g. ``nvarchar(50)`` or ``decimal(18,2)``."""
    name = type_name.lower()
    if name in ("varchar", "char", "varbinary", "binary", "nvarchar", "nchar"):
        if max_length == -1:
            return f"{type_name}(max)"
        length = max_length // 2 if name in ("nvarchar", "nchar") else max_length
        return f"{type_name}({length})"
    if name in ("decimal", "numeric"):
        return f"{type_name}({precision},{scale})"
    if name in ("datetime2", "time", "datetimeoffset"):
        return f"{type_name}({scale})"
    return type_name


def build_table_script(schema: str, table: str, columns: list[dict], primary_key: list[dict]) -> str:
    lines = []
    for column in columns:
        name = quote_identifier(column["name"])
        if column["computed_definition"]:
            persisted = " PERSISTED" if column["is_persisted"] else ""
            lines.append(f"    {name} AS {column['computed_definition']}{persisted}")
            continue
        parts = [name, format_column_type(
            column["type_name"], column["max_length"], column["precision"], column["scale"]
        )]
        if column["is_identity"]:
            parts.append(f"IDENTITY({column['seed_value'] or 1},{column['increment_value'] or 1})")
        parts.append("NULL" if column["is_nullable"] else "NOT NULL")
        if column["default_definition"]:
            parts.append(
                f"CONSTRAINT {quote_identifier(column['default_name'])} "
                f"DEFAULT {column['default_definition']}"
            )
        lines.append("    " + " ".join(parts))
    if primary_key:
        kind = "CLUSTERED" if primary_key[0]["type_desc"] == "CLUSTERED" else "NONCLUSTERED"
        key_columns = ", ".join(
            quote_identifier(k["column_name"]) + (" DESC" if k["is_descending_key"] else " ASC")
            for k in primary_key
        )
        lines.append(
            f"    CONSTRAINT {quote_identifier(primary_key[0]['constraint_name'])} "
            f"PRIMARY KEY {kind} ({key_columns})"
        )
    return f"CREATE TABLE {quote_name(schema, table)}\n(\n" + ",\n".join(lines) + "\n)"


def build_login_script(login: dict) -> str:
    name = quote_identifier(login["name"])
    options = [
        f"DEFAULT_DATABASE = {quote_identifier(login['default_database_name'] or 'master')}",
    ]
    if login["default_language_name"]:
        options.append(f"DEFAULT_LANGUAGE = {quote_identifier(login['default_language_name'])}")
    if login["type_desc"] == "SQL_LOGIN":
        options = [
            f"PASSWORD = {hex_literal(login['password_hash'])} HASHED",
            f"SID = {hex_literal(login['sid'])}",
            *options,
            f"CHECK_POLICY = {'ON' if login['is_policy_checked'] else 'OFF'}",
            f"CHECK_EXPIRATION = {'ON' if login['is_expiration_checked'] else 'OFF'}",
        ]
        create = f"CREATE LOGIN {name} WITH {', '.join(options)}"
    else:
        create = f"CREATE LOGIN {name} FROM WINDOWS WITH {', '.join(options)}"
    script = (
        f"IF NOT EXISTS (SELECT 1 FROM sys.server_principals WHERE name = {quote_literal(login['name'])})\n"
        f"    {create}"
    )
    if login["is_disabled"]:
        script += f"\nALTER LOGIN {name} DISABLE"
    return script


def build_user_script(user: dict, roles: Iterable[str]) -> str:
    name = quote_identifier(user["name"])
    if user["login_name"]:
        create = f"CREATE USER {name} FOR LOGIN {quote_identifier(user['login_name'])}"
    else:
        create = f"CREATE USER {name} WITHOUT LOGIN"
    if user["default_schema_name"]:
        create += f" WITH DEFAULT_SCHEMA = {quote_identifier(user['default_schema_name'])}"
    lines = [
        f"IF NOT EXISTS (SELECT 1 FROM sys.database_principals WHERE name = {quote_literal(user['name'])})",
        f"    {create}",
    ]
    lines.extend(f"ALTER ROLE {quote_identifier(role)} ADD MEMBER {name}" for role in roles)
    return "\n".join(lines)


def _proc_call(procedure: str, params: list[tuple[str, object]]) -> str:
    rendered = []
    for key, value in params:
        if value is None:
            continue
        if isinstance(value, bool):
            value = int(value)
        if isinstance(value, int):
            rendered.append(f"@{key} = {value}")
        elif key == "job_id":
            rendered.append(f"@{key} = {value}")
        else:
            rendered.append(f"@{key} = {quote_literal(value)}")
    return f"EXEC msdb.dbo.{procedure} " + ", ".join(rendered)


def build_job_script(job: dict, steps: list[dict], schedules: list[dict]) -> str:
    lines = [
        "DECLARE @jobId BINARY(16)",
        _proc_call("sp_add_job", [
            ("job_name", job["name"]),
            ("enabled", int(job["enabled"])),
            ("description", job["description"]),
            ("category_name", job["category"]),
            ("owner_login_name", job["owner"]),
        ]) + ", @job_id = @jobId OUTPUT",
    ]
    for step in steps:
        lines.append(_proc_call("sp_add_jobstep", [
            ("job_id", "@jobId"),
            ("step_id", int(step["step_id"])),
            ("step_name", step["step_name"]),
            ("subsystem", step["subsystem"]),
            ("command", step["command"]),
            ("database_name", step["database_name"]),
            ("on_success_action", int(step["on_success_action"])),
            ("on_success_step_id", int(step["on_success_step_id"] or 0)),
            ("on_fail_action", int(step["on_fail_action"])),
            ("on_fail_step_id", int(step["on_fail_step_id"] or 0)),
            ("retry_attempts", int(step["retry_attempts"] or 0)),
            ("retry_interval", int(step["retry_interval"] or 0)),
            ("output_file_name", step["output_file_name"]),
        ]))
    lines.append(_proc_call("sp_update_job", [
        ("job_id", "@jobId"), ("start_step_id", int(job["start_step_id"] or 1)),
    ]))
    for schedule in schedules:
        lines.append(_proc_call("sp_add_jobschedule", [
            ("job_id", "@jobId"),
            ("name", schedule["name"]),
            ("enabled", int(schedule["enabled"])),
            ("freq_type", int(schedule["freq_type"])),
            ("freq_interval", int(schedule["freq_interval"])),
            ("freq_subday_type", int(schedule["freq_subday_type"])),
            ("freq_subday_interval", int(schedule["freq_subday_interval"])),
            ("freq_relative_interval", int(schedule["freq_relative_interval"])),
            ("freq_recurrence_factor", int(schedule["freq_recurrence_factor"])),
            ("active_start_date", int(schedule["active_start_date"])),
            ("active_end_date", int(schedule["active_end_date"])),
            ("active_start_time", int(schedule["active_start_time"])),
            ("active_end_time", int(schedule["active_end_time"])),
        ]))
    lines.append(_proc_call("sp_add_jobserver", [("job_id", "@jobId"), ("server_name", "(local)")]))
    return "\n".join(lines)


def script_object(connector, obj: ScriptObject) -> str | None:
    """
    Script a single object.

    Returns:
        The T-SQL, or None when the object does not exist
    """
    database = obj.database or "master"
    if obj.type in MODULE_TYPES:
        types = ", ".join(f"'{t}'" for t in MODULE_TYPES[obj.type])
        rows = connector.execute_query(
            MODULE_SQL.format(types=types), [obj.name, obj.schema], database=database
        )
        if not rows or rows[0]["definition"] is None:
            return None
        return rows[0]["definition"].strip()

    if obj.type == "Table":
        full_name = quote_name(obj.schema, obj.name)
        columns = connector.execute_query(TABLE_COLUMNS_SQL, [full_name], database=database)
        if not columns:
            return None
        primary_key = connector.execute_query(PRIMARY_KEY_SQL, [full_name], database=database)
        return build_table_script(obj.schema, obj.name, columns, primary_key)

    if obj.type == "Schema":
        rows = connector.execute_query(SCHEMA_SQL, [obj.name], database=database)
        if not rows:
            return None
        return f"CREATE SCHEMA {quote_identifier(obj.name)} AUTHORIZATION {quote_identifier(rows[0]['owner'])}"

    if obj.type == "Login":
        rows = connector.execute_query(LOGIN_SQL, [obj.name])
        return build_login_script(rows[0]) if rows else None

    if obj.type == "User":
        rows = connector.execute_query(USER_SQL, [obj.name], database=database)
        if not rows:
            return None
        roles = [r["role_name"] for r in connector.execute_query(USER_ROLES_SQL, [obj.name], database=database)]
        return build_user_script(rows[0], roles)

    # AgentJob
    rows = connector.execute_query(JOB_SQL, [obj.name])
    if not rows:
        return None
    job = rows[0]
    steps = connector.execute_query(JOB_STEPS_SQL, [job["job_id"]])
    schedules = connector.execute_query(JOB_SCHEDULES_SQL, [job["job_id"]])
    return build_job_script(job, steps, schedules)


def default_export_path(export_directory: str | Path, sql_instance: str, objects: list[ScriptObject]) -> Path:
    """``<dir>/<instance>-<yyyyMMddHHmmss>-<type>.sql``"""
    kinds = {o.type for o in objects}
    kind = kinds.pop() if len(kinds) == 1 else "Objects"
    stamp = datetime.now().strftime("%Y%m%d%H%M%S")
    instance = sql_instance.replace("\\", "$").replace(",", "_")
    return Path(export_directory) / f"{instance}-{stamp}-{kind}.sql"


def export_script(
    connector,
    objects: Iterable[ScriptObject],
    file_path: str | Path | None = None,
    batch_separator: str = "GO",
    no_prefix: bool = False,
    append: bool = False,
    no_clobber: bool = False,
    passthru: bool = False,
    export_directory: str | Path = "./output",
    enable_exception: bool = False,
) -> Path | str:
    """
    Script objects to a .sql file.

    Args:
        connector: Instance holding the objects
        objects: What to script
        file_path: Output file (defaults to a timestamped file in export_directory)
        batch_separator: Written after every object; empty for none
        no_prefix: Leave out the header comment
        append: Append to an existing file
        no_clobber: Refuse to overwrite an existing file
        passthru: Return the script instead of writing it
        export_directory: Folder for the default file name
        enable_exception: Raise when an object cannot be scripted

    Returns:
        The file written, or the script text with ``passthru``

    Raises:
        OperationError: The file exists and ``no_clobber`` is set
    """
    objects = list(objects)
    instance = connector.server_instance
    path = Path(file_path) if file_path else default_export_path(export_directory, instance, objects)
    if not passthru and path.exists() and no_clobber and not append:
        raise OperationError(f"{path} already exists and no_clobber was requested")

    separator = f"\n{batch_separator}\n" if batch_separator else "\n"
    chunks = []
    if not no_prefix:
        chunks.append(
            f"/*\n    Created by {getpass.getuser()} using autodbadmin {__version__} "
            f"on {datetime.now():%Y-%m-%d %H:%M:%S}\n    Instance: {instance}\n*/\n"
        )

    current_database = None
    for obj in objects:
        try:
            script = script_object(connector, obj)
        except pyodbc.Error as e:
            report_failure(f"Cannot script {obj.type} {obj.display_name}", error=e,
                           enable_exception=enable_exception, target=instance)
            continue
        if script is None:
            report_failure(f"{obj.type} {obj.display_name} not found",
                           enable_exception=enable_exception, target=instance)
            continue
        if obj.type not in SERVER_TYPES and obj.database and obj.database != current_database:
            chunks.append(f"USE {quote_identifier(obj.database)}{separator}")
            current_database = obj.database
        chunks.append(script + separator)
        logger.debug("Scripted %s %s", obj.type, obj.display_name)

    text = "".join(chunks)
    if passthru:
        return text

    path.parent.mkdir(parents=True, exist_ok=True)
    with open(path, "a" if append else "w", encoding="utf-8") as f:
        f.write(text)
    logger.info("Exported %d object(s) to %s", len(objects), path)
    return path
