"""
Safe database removal.

Each database is checked, backed up and verified, a restore job is created
on the destination, and only then is the database dropped. The job is run
once to prove the backup restores, the copy is checked and dropped, and
the job stays behind for whoever needs the database back.
"""

from __future__ import annotations

import logging
import ntpath
import time
from datetime import datetime
from typing import Callable, Iterable, Optional

import pyodbc

from autodbadmin.application import agent_jobs
from autodbadmin.application.common import (
    check_database,
    check_path,
    drop_database,
    is_system_database,
    list_databases,
    report_failure,
)
from autodbadmin.application.restore import (
    RestoreOptions,
    build_file_moves,
    build_restore_statements,
    default_file_paths,
)
from autodbadmin.domain.errors import OperationError
from autodbadmin.domain.models import (
    BackupFileEntry,
    BackupHistory,
    DatabaseDecommissionResult,
    OperationStatus,
)
from autodbadmin.infrastructure.tsql import quote_identifier, quote_literal

logger = logging.getLogger(__name__)

BACKUP_COMPRESSION = {"default": "", "on": ", COMPRESSION", "off": ", NO_COMPRESSION"}

DATABASE_INFO_SQL = """
SELECT
    d.name,
    d.state_desc,
    CASE WHEN m.mirroring_guid IS NULL THEN 0 ELSE 1 END AS is_mirrored,
    CASE WHEN d.replica_id IS NULL THEN 0 ELSE 1 END AS in_availability_group
FROM sys.databases d
LEFT JOIN sys.database_mirroring m ON m.database_id = d.database_id
WHERE d.name = ?
"""

DATABASE_FILES_SQL = """
SELECT
    CASE type WHEN 1 THEN 'L' WHEN 2 THEN 'S' WHEN 4 THEN 'F' ELSE 'D' END AS file_type,
    name AS logical_name,
    physical_name,
    CAST(size AS BIGINT) * 8192 AS size_bytes
FROM sys.master_files
WHERE database_id = DB_ID(?)
ORDER BY file_id
"""


class _StepFailed(Exception):
    """Stops the pipeline for the current database."""


def _file_list(connector, database: str) -> list[BackupFileEntry]:
    return [
        BackupFileEntry(
            type=row["file_type"],
            logical_name=row["logical_name"],
            physical_name=row["physical_name"],
            size=int(row["size_bytes"] or 0),
        )
        for row in connector.execute_query(DATABASE_FILES_SQL, [database])
    ]


def build_restore_job_command(
    database: str,
    backup_file: str,
    files: list[BackupFileEntry],
    data_directory: str | None,
    log_directory: str | None,
) -> str:
    """T-SQL for the restore job step: a single full restore with recovery."""
    backup = BackupHistory(database=database, type="Full", path=[backup_file], file_list=files)
    options = RestoreOptions(
        with_replace=True,
        moves=build_file_moves(files, database, database, data_directory, log_directory),
    )
    return build_restore_statements([backup], database, options)[0]


def remove_database_safely(
    source,
    destination=None,
    databases: Optional[Iterable[str]] = None,
    all_databases: bool = False,
    backup_folder: str | None = None,
    no_dbcc_check: bool = False,
    job_owner: str | None = None,
    category: str = "Rationalisation",
    reuse_source_folder_structure: bool = False,
    backup_compression: str = "Default",
    force: bool = False,
    poll_interval: int = 5,
    timeout: int = 3600,
    enable_exception: bool = False,
    sleep: Callable[[float], None] = time.sleep,
) -> list[DatabaseDecommissionResult]:
    """
    Back up, verify and drop databases, leaving a restore job behind.

    Args:
        source: Instance holding the databases
        destination: Instance that gets the restore job (defaults to source)
        databases: Databases to remove
        all_databases: Remove every user database
        backup_folder: Folder for the final backups, as the servers see it
        no_dbcc_check: Skip DBCC CHECKDB before and after
        job_owner: Owner of the restore job (defaults to the sa login)
        category: Agent category for the restore job
        reuse_source_folder_structure: Restore files to their original paths
        backup_compression: Default, On or Off
        force: Carry on when DBCC reports errors, replace an existing job
        poll_interval: Seconds between job status checks
        timeout: Seconds to wait for the restore job
        enable_exception: Raise on the first failure
    """
    destination = destination or source
    src, dst = source.server_instance, destination.server_instance
    compression = BACKUP_COMPRESSION.get(backup_compression.lower())
    if compression is None:
        raise ValueError(f"Invalid backup compression '{backup_compression}'. Expected Default, On or Off")

    if not databases and not all_databases:
        report_failure("Name the databases to remove, or use all_databases",
                       enable_exception=enable_exception, target=src)
        return []
    if not backup_folder:
        backup_folder = source.execute_scalar(
            "SELECT CAST(SERVERPROPERTY('InstanceDefaultBackupPath') AS NVARCHAR(512))"
        )
    try:
        _, is_dir = check_path(source, backup_folder or "")
    except pyodbc.Error as e:
        report_failure(f"Cannot check backup folder {backup_folder}", error=e,
                       enable_exception=enable_exception, target=src)
        return []
    if not is_dir:
        report_failure(f"Backup folder {backup_folder} does not exist or is not visible to {src}",
                       enable_exception=enable_exception, target=src)
        return []
    if not agent_jobs.agent_is_running(destination):
        report_failure(f"SQL Server Agent is not running on {dst}",
                       enable_exception=enable_exception, target=dst)
        return []

    job_owner = job_owner or destination.execute_scalar("SELECT SUSER_SNAME(0x01)")
    if all_databases:
        names = list_databases(source, user_only=True)
    else:
        names = list(databases)

    data_directory = log_directory = None
    if not reuse_source_folder_structure:
        data_directory, log_directory = default_file_paths(destination)

    results = []
    for database in names:
        result = DatabaseDecommissionResult(sql_instance=src, database=database, destination_instance=dst)
        results.append(result)

        def step(name: str, action: Callable[[], None], tolerate: bool = False) -> None:
            logger.info("[%s] %s: %s", src, database, name)
            try:
                action()
            except (pyodbc.Error, OperationError) as e:
                if tolerate:
                    result.add_step(name, OperationStatus.FAILED, f"{e} (continuing because of force)")
                    logger.warning("[%s] %s: %s failed, continuing: %s", src, database, name, e)
                    return
                result.add_step(name, OperationStatus.FAILED, str(e))
                raise _StepFailed(f"{name} failed: {e}") from e
            result.add_step(name, OperationStatus.SUCCESSFUL)

        try:
            info = source.execute_query(DATABASE_INFO_SQL, [database])
            if not info:
                raise _StepFailed(f"Database {database} does not exist on {src}")
            if is_system_database(database):
                raise _StepFailed(f"{database} is a system database")
            if info[0]["is_mirrored"]:
                raise _StepFailed(f"{database} is mirrored; remove mirroring first")
            if info[0]["in_availability_group"]:
                raise _StepFailed(f"{database} is in an availability group; remove it from the group first")
            if info[0]["state_desc"] != "ONLINE":
                raise _StepFailed(f"{database} is {info[0]['state_desc']}")
            if destination is not source and destination.database_exists(database):
                raise _StepFailed(f"A database named {database} already exists on {dst}")

            job_name = f"Rationalised Database Restore Script for {database}"
            result.job_name = job_name
            if agent_jobs.job_exists(destination, job_name):
                if not force:
                    raise _StepFailed(f"Job {job_name} already exists on {dst}; use force to replace it")
                destination.execute_non_query("EXEC msdb.dbo.sp_delete_job @job_name = ?", [job_name])
            result.add_step("Validate", OperationStatus.SUCCESSFUL)

            if not no_dbcc_check:
                step("DBCC CHECKDB", lambda: check_database(source, database), tolerate=force)

            stamp = datetime.now().strftime("%Y%m%d%H%M%S")
            result.backup_path = ntpath.join(backup_folder, f"{database}_{stamp}.bak")
            device = quote_literal(result.backup_path)
            step("Backup", lambda: source.execute_non_query(
                f"BACKUP DATABASE {quote_identifier(database)} TO DISK = {device} "
                f"WITH COPY_ONLY, CHECKSUM, INIT{compression}"
            ))
            step("Verify backup", lambda: source.execute_non_query(
                f"RESTORE VERIFYONLY FROM DISK = {device} WITH CHECKSUM"
            ))

            files = _file_list(source, database)
            command = build_restore_job_command(
                database, result.backup_path, files, data_directory, log_directory
            )
            step("Create restore job", lambda: agent_jobs.create_tsql_job(
                destination, job_name, command, owner=job_owner, category=category,
                description=f"Restores {database} from its final backup before decommission",
            ))
            step("Drop source database", lambda: drop_database(source, database))
            step("Run restore job", lambda: agent_jobs.run_job(
                destination, job_name, poll_interval=poll_interval, timeout=timeout, sleep=sleep
            ))
            if not no_dbcc_check:
                step("DBCC CHECKDB restored copy", lambda: check_database(destination, database), tolerate=force)
            step("Drop restored copy", lambda: drop_database(destination, database))
            result.notes = f"Removed; restore with job '{job_name}' on {dst}"
        except _StepFailed as e:
            result.status = OperationStatus.FAILED
            result.notes = report_failure(str(e), enable_exception=enable_exception, target=src)
        except pyodbc.Error as e:
            result.status = OperationStatus.FAILED
            result.notes = report_failure(f"Removal of {database} failed", error=e,
                                          enable_exception=enable_exception, target=src)
    return results
