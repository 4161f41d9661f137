"""
Configuration of an installed SQL Server Maintenance Solution.

The solution's installer creates the jobs with placeholder steps and no
schedules. This rewrites the job steps with our retention and index
settings, turns on backup compression, disables the differential job and
adds the standard schedules.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from datetime import datetime

import pyodbc

from autodbadmin.application import agent_jobs
from autodbadmin.application.common import report_failure
from autodbadmin.domain.agent_dates import format_agent_date
from autodbadmin.domain.models import ActionResult, OperationStatus
from autodbadmin.infrastructure.tsql import quote_literal

logger = logging.getLogger(__name__)

SYSTEM_FULL_JOB = "DatabaseBackup - SYSTEM_DATABASES - FULL"
USER_FULL_JOB = "DatabaseBackup - USER_DATABASES - FULL"
USER_DIFF_JOB = "DatabaseBackup - USER_DATABASES - DIFF"
USER_LOG_JOB = "DatabaseBackup - USER_DATABASES - LOG"
INDEX_JOB = "IndexOptimize - USER_DATABASES"
SYSTEM_INTEGRITY_JOB = "DatabaseIntegrityCheck - SYSTEM_DATABASES"
USER_INTEGRITY_JOB = "DatabaseIntegrityCheck - USER_DATABASES"
COMMANDLOG_CLEANUP_JOB = "CommandLog Cleanup"
CLEANUP_JOBS = ("Output File Cleanup", "sp_delete_backuphistory", "sp_purge_jobhistory")

PREREQUISITES_SQL = """
SELECT
    (SELECT COUNT(*) FROM master.sys.objects WHERE name = 'CommandLog' AND type = 'U') AS has_command_log,
    IS_SRVROLEMEMBER('sysadmin') AS is_sysadmin
"""

COMPRESSION_SQL = "SELECT CAST(value_in_use AS INT) FROM sys.configurations WHERE name = 'backup compression default'"


@dataclass
class Schedule:
    """An Agent schedule in sp_add_jobschedule terms."""
    name: str
    freq_type: int
    freq_interval: int
    start_time: int
    freq_subday_type: int = 1
    freq_subday_interval: int = 0
    attach_to: tuple[str, ...] = field(default_factory=tuple)


SCHEDULES = {
    SYSTEM_FULL_JOB: Schedule("SYSTEM_DATABASES - Backup", 4, 1, 500),
    USER_FULL_JOB: Schedule("User Database - Full Backup", 4, 1, 500),
    # Monday to Saturday
    USER_DIFF_JOB: Schedule("User Database - Diff Backup", 8, 126, 500),
    USER_LOG_JOB: Schedule("User Database - Transaction Logs", 4, 1, 0,
                           freq_subday_type=8, freq_subday_interval=1),
    INDEX_JOB: Schedule("USER_DATABASES - Index Optimize", 4, 1, 13000),
    USER_INTEGRITY_JOB: Schedule("USER_DATABASES - IntegrityCheck", 8, 64, 20000),
    SYSTEM_INTEGRITY_JOB: Schedule("SYSTEM_DATABASES - IntegrityCheck", 8, 64, 10500),
    COMMANDLOG_CLEANUP_JOB: Schedule("Maintainence Log Cleanup", 4, 1, 0, attach_to=CLEANUP_JOBS),
}


def _sp_args(**params) -> str:
    """Render DatabaseBackup-style parameters; None becomes NULL."""
    rendered = []
    for key, value in params.items():
        if value is None:
            rendered.append(f"@{key} = NULL")
        elif isinstance(value, int):
            rendered.append(f"@{key} = {value}")
        else:
            escaped = value.replace("'", "''")
            rendered.append(f"@{key} = '{escaped}'")
    return ",\n".join(rendered)


def backup_command(databases: str, backup_type: str, retention_hours: int, directory: str | None) -> str:
    return "EXECUTE [dbo].[DatabaseBackup]\n" + _sp_args(
        Databases=databases,
        Directory=directory,
        BackupType=backup_type,
        Verify="N",
        CleanupTime=retention_hours,
        CleanupMode="BEFORE_BACKUP",
        CheckSum="N",
        LogToTable="Y",
    )


def index_optimize_command() -> str:
    return "EXECUTE [dbo].[IndexOptimize]\n" + _sp_args(
        Databases="USER_DATABASES",
        LogToTable="Y",
        FragmentationLow=None,
        FragmentationMedium="INDEX_REORGANIZE,INDEX_REBUILD_ONLINE,INDEX_REBUILD_OFFLINE",
        FragmentationHigh="INDEX_REBUILD_ONLINE,INDEX_REBUILD_OFFLINE",
        FragmentationLevel1=5,
        FragmentationLevel2=30,
        MinNumberOfPages=500,
        UpdateStatistics="ALL",
        OnlyModifiedStatistics="Y",
    )


def integrity_check_command(databases: str) -> str:
    return "EXECUTE [dbo].[DatabaseIntegrityCheck]\n" + _sp_args(
        Databases=databases, CheckCommands="CHECKDB", LogToTable="Y",
    )


def build_job_commands(retention_hours: int = 168, backup_directory: str | None = None) -> dict[str, str]:
    """Job name -> step 1 command."""
    return {
        SYSTEM_FULL_JOB: backup_command("SYSTEM_DATABASES", "FULL", retention_hours, backup_directory),
        USER_FULL_JOB: backup_command("USER_DATABASES", "FULL", retention_hours, backup_directory),
        USER_DIFF_JOB: backup_command("USER_DATABASES", "DIFF", retention_hours, backup_directory),
        USER_LOG_JOB: backup_command("USER_DATABASES", "LOG", retention_hours, backup_directory),
        INDEX_JOB: index_optimize_command(),
        SYSTEM_INTEGRITY_JOB: integrity_check_command("SYSTEM_DATABASES"),
        USER_INTEGRITY_JOB: integrity_check_command("USER_DATABASES"),
    }


def build_schedule_statement(job_name: str, schedule: Schedule, start_date: int) -> str:
    lines = [
        f"EXEC msdb.dbo.sp_add_jobschedule @job_name = {quote_literal(job_name)}, "
        f"@name = {quote_literal(schedule.name)}, @enabled = 1, "
        f"@freq_type = {schedule.freq_type}, @freq_interval = {schedule.freq_interval}, "
        f"@freq_subday_type = {schedule.freq_subday_type}, "
        f"@freq_subday_interval = {schedule.freq_subday_interval}, "
        "@freq_relative_interval = 0, @freq_recurrence_factor = 1, "
        f"@active_start_date = {start_date}, @active_end_date = 99991231, "
        f"@active_start_time = {schedule.start_time}, @active_end_time = 235959"
    ]
    lines.extend(
        f"EXEC msdb.dbo.sp_attach_schedule @job_name = {quote_literal(job)}, "
        f"@schedule_name = {quote_literal(schedule.name)}"
        for job in schedule.attach_to
    )
    return ";\n".join(lines)


def _schedule_exists(connector, name: str) -> bool:
    return bool(connector.execute_scalar(
        "SELECT COUNT(*) FROM msdb.dbo.sysschedules WHERE name = ?", [name]
    ))


def configure_maintenance_solution(
    connector,
    retention_hours: int = 168,
    backup_directory: str | None = None,
    disable_diff_job: bool = True,
    add_schedules: bool = True,
    enable_exception: bool = False,
) -> list[ActionResult]:
    """
    Configure the Maintenance Solution jobs on an instance.

    Args:
        connector: Instance with the Maintenance Solution installed
        retention_hours: CleanupTime for backup jobs
        backup_directory: Backup folder (None keeps the instance default)
        disable_diff_job: Disable the differential backup job
        add_schedules: Add the standard schedules that do not exist yet
        enable_exception: Raise on the first failure

    Returns:
        One record for the compression setting and one per job
    """
    target = connector.server_instance
    results: list[ActionResult] = []
    try:
        checks = connector.execute_query(PREREQUISITES_SQL)[0]
    except pyodbc.Error as e:
        report_failure("Cannot check prerequisites", error=e,
                       enable_exception=enable_exception, target=target)
        return results
    if not checks["has_command_log"]:
        report_failure("dbo.CommandLog not found in master; install the Maintenance Solution first",
                       enable_exception=enable_exception, target=target)
        return results
    if not checks["is_sysadmin"]:
        report_failure("Configuring the Maintenance Solution requires sysadmin membership",
                       enable_exception=enable_exception, target=target)
        return results

    compression = ActionResult(sql_instance=target, name="backup compression default", action="Enable")
    results.append(compression)
    try:
        if connector.execute_scalar(COMPRESSION_SQL):
            compression.status = OperationStatus.SKIPPED
            compression.notes = "Already enabled"
        else:
            compression.statement = "EXEC sp_configure 'backup compression default', 1; RECONFIGURE;"
            connector.execute_non_query(compression.statement)
    except pyodbc.Error as e:
        compression.status = OperationStatus.FAILED
        compression.notes = report_failure("Cannot enable backup compression", error=e,
                                           enable_exception=enable_exception, target=target)

    commands = build_job_commands(retention_hours, backup_directory)
    start_date = format_agent_date(datetime.now())
    for job_name in [*commands, COMMANDLOG_CLEANUP_JOB]:
        result = ActionResult(sql_instance=target, name=job_name, action="Configure")
        results.append(result)
        actions = []
        try:
            if not agent_jobs.job_exists(connector, job_name):
                result.status = OperationStatus.SKIPPED
                result.notes = "Job not found"
                continue
            command = commands.get(job_name)
            if command:
                connector.execute_non_query(
                    "EXEC msdb.dbo.sp_update_jobstep @job_name = ?, @step_id = 1, @step_name = ?, @command = ?",
                    [job_name, job_name, command],
                )
                result.statement = command
                actions.append("updated step 1")
            if job_name == USER_DIFF_JOB and disable_diff_job:
                agent_jobs.disable_job(connector, job_name)
                actions.append("disabled")
            schedule = SCHEDULES.get(job_name)
            if add_schedules and schedule:
                if _schedule_exists(connector, schedule.name):
                    actions.append(f"schedule '{schedule.name}' already exists")
                else:
                    connector.execute_non_query(
                        build_schedule_statement(job_name, schedule, start_date), database="msdb"
                    )
                    actions.append(f"added schedule '{schedule.name}'")
            result.notes = "; ".join(actions)
            logger.info("[%s] %s: %s", target, job_name, result.notes)
        except pyodbc.Error as e:
            result.status = OperationStatus.FAILED
            result.notes = report_failure(f"Cannot configure job {job_name}", error=e,
                                          enable_exception=enable_exception, target=target)
    return results
