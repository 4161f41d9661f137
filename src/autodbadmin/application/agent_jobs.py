"""
SQL Agent job control through msdb procedures.

Jobs are only started, polled, disabled and created here; scheduling and
execution stay with SQL Agent.
"""

from __future__ import annotations

import logging
import time
from typing import Callable

from autodbadmin.domain.errors import OperationError, OperationTimeoutError
from autodbadmin.domain.models import JobOutcome
from autodbadmin.infrastructure.tsql import quote_literal

logger = logging.getLogger(__name__)

AGENT_RUNNING_SQL = """
SELECT COUNT(*) AS agent_sessions
FROM sys.dm_exec_sessions
WHERE program_name LIKE N'SQLAgent - Generic Refresher%'
"""

JOB_RUNNING_SQL = """
SELECT COUNT(*) AS running
FROM msdb.dbo.sysjobactivity a
JOIN msdb.dbo.sysjobs j ON j.job_id = a.job_id
WHERE j.name = ?
  AND a.session_id = (SELECT MAX(session_id) FROM msdb.dbo.syssessions)
  AND a.start_execution_date IS NOT NULL
  AND a.stop_execution_date IS NULL
"""

JOB_LAST_OUTCOME_SQL = """
SELECT TOP (1) h.run_status, h.message
FROM msdb.dbo.sysjobhistory h
JOIN msdb.dbo.sysjobs j ON j.job_id = h.job_id
WHERE j.name = ? AND h.step_id = 0
ORDER BY h.instance_id DESC
"""


def agent_is_running(connector) -> bool:
    return bool(connector.execute_scalar(AGENT_RUNNING_SQL))


def job_exists(connector, job_name: str) -> bool:
    return bool(connector.execute_scalar(
        "SELECT COUNT(*) FROM msdb.dbo.sysjobs WHERE name = ?", [job_name]
    ))


def start_job(connector, job_name: str) -> None:
    logger.info("Starting Agent job %s on %s", job_name, connector.server_instance)
    connector.execute_non_query("EXEC msdb.dbo.sp_start_job @job_name = ?", [job_name])


def job_is_running(connector, job_name: str) -> bool:
    return bool(connector.execute_scalar(JOB_RUNNING_SQL, [job_name]))


def last_outcome(connector, job_name: str) -> tuple[JobOutcome | None, str]:
    rows = connector.execute_query(JOB_LAST_OUTCOME_SQL, [job_name])
    if not rows:
        return None, ""
    return JobOutcome(rows[0]["run_status"]), rows[0]["message"] or ""


def wait_for_job(
    connector,
    job_name: str,
    poll_interval: int = 5,
    timeout: int = 3600,
    sleep: Callable[[float], None] = time.sleep,
) -> JobOutcome | None:
    """
    Poll sysjobactivity until the job stops.

    sp_start_job returns as soon as the job is queued, so the first check
    happens after one poll interval. Intervals under a second are
    raised to one second.

    Returns:
        Outcome of the last run

    Raises:
        OperationTimeoutError: Job still running after ``timeout`` seconds
    """
    interval = max(poll_interval, 1)
    waited = 0
    while True:
        sleep(interval)
        waited += interval
        if not job_is_running(connector, job_name):
            break
        logger.debug("Job %s still running after %ss", job_name, waited)
        if waited >= timeout:
            raise OperationTimeoutError(f"Job {job_name} did not finish within {timeout}s")
    outcome, message = last_outcome(connector, job_name)
    logger.info("Job %s finished: %s", job_name, outcome.label if outcome else "unknown")
    if outcome is not None and outcome != JobOutcome.SUCCEEDED:
        logger.debug("Job %s message: %s", job_name, message)
    return outcome


def run_job(connector, job_name: str, poll_interval: int = 5, timeout: int = 3600,
            sleep: Callable[[float], None] = time.sleep) -> None:
    """
    Start a job and wait for it.

    Raises:
        OperationError: Job finished with anything but success
    """
    start_job(connector, job_name)
    outcome = wait_for_job(connector, job_name, poll_interval, timeout, sleep)
    if outcome is not None and outcome != JobOutcome.SUCCEEDED:
        _, message = last_outcome(connector, job_name)
        raise OperationError(f"Job {job_name} ended with status {outcome.label}: {message}")


def disable_job(connector, job_name: str) -> None:
    logger.info("Disabling Agent job %s", job_name)
    connector.execute_non_query(
        "EXEC msdb.dbo.sp_update_job @job_name = ?, @enabled = 0", [job_name]
    )


def create_tsql_job(
    connector,
    job_name: str,
    command: str,
    *,
    owner: str = "sa",
    category: str | None = None,
    description: str = "",
    database: str = "master",
) -> None:
    """Create a single-step T-SQL job targeting the local server."""
    if category:
        connector.execute_non_query(
            "IF NOT EXISTS (SELECT 1 FROM msdb.dbo.syscategories WHERE name = ? AND category_class = 1) "
            "EXEC msdb.dbo.sp_add_category @class = N'JOB', @type = N'LOCAL', @name = ?",
            [category, category],
        )
    statement = (
        f"EXEC msdb.dbo.sp_add_job @job_name = {quote_literal(job_name)}, "
        f"@enabled = 1, @description = {quote_literal(description)}, "
        f"@category_name = {quote_literal(category or '[Uncategorized (Local)]')}, "
        f"@owner_login_name = {quote_literal(owner)};\n"
        f"EXEC msdb.dbo.sp_add_jobstep @job_name = {quote_literal(job_name)}, "
        f"@step_name = {quote_literal(job_name)}, @subsystem = N'TSQL', "
        f"@database_name = {quote_literal(database)}, @command = {quote_literal(command)};\n"
        f"EXEC msdb.dbo.sp_add_jobserver @job_name = {quote_literal(job_name)}, @server_name = N'(local)';"
    )
    logger.info("Creating Agent job %s on %s", job_name, connector.server_instance)
    connector.execute_non_query(statement, database="msdb")
