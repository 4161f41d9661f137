"""
Log shipping recovery.

Brings log-shipped secondaries online: copies and restores the last log
backups through the log shipping jobs, disables those jobs, then recovers
the database.
"""

from __future__ import annotations

import logging
import time
from typing import Callable, Iterable, Optional

import pyodbc

from autodbadmin.application import agent_jobs
from autodbadmin.application.common import matches, report_failure
from autodbadmin.domain.errors import OperationError
from autodbadmin.domain.models import LogShipRecoveryResult, OperationStatus
from autodbadmin.infrastructure.tsql import quote_identifier

logger = logging.getLogger(__name__)

SECONDARIES_SQL = """
SELECT
    s.secondary_database,
    cj.name AS copy_job,
    rj.name AS restore_job,
    d.state_desc,
    d.is_in_standby
FROM msdb.dbo.log_shipping_secondary_databases s
JOIN msdb.dbo.log_shipping_secondary p ON p.secondary_id = s.secondary_id
JOIN sys.databases d ON d.name = s.secondary_database
LEFT JOIN msdb.dbo.sysjobs cj ON cj.job_id = p.copy_job_id
LEFT JOIN msdb.dbo.sysjobs rj ON rj.job_id = p.restore_job_id
ORDER BY s.secondary_database
"""


def invoke_log_ship_recovery(
    connector,
    databases: Optional[Iterable[str]] = None,
    no_recovery: bool = False,
    force: bool = False,
    delay: int = 5,
    timeout: int = 3600,
    enable_exception: bool = False,
    sleep: Callable[[float], None] = time.sleep,
) -> list[LogShipRecoveryResult]:
    """
    Recover log-shipped secondary databases.

    Args:
        connector: Secondary instance
        databases: Databases to recover
        no_recovery: Apply the remaining logs but leave the database restoring
        force: Recover every log-shipped secondary when no databases are named
        delay: Seconds between job status checks
        timeout: Seconds to wait for each job
        enable_exception: Raise on the first failure
    """
    target = connector.server_instance
    databases = list(databases or ())
    if not databases and not force:
        report_failure(
            "Name the databases to recover, or use force to recover all of them",
            enable_exception=enable_exception, target=target,
        )
        return []

    if not agent_jobs.agent_is_running(connector):
        report_failure("SQL Server Agent is not running", enable_exception=enable_exception, target=target)
        return []

    secondaries = connector.execute_query(SECONDARIES_SQL)
    known = {row["secondary_database"].lower() for row in secondaries}

    results = []
    for name in databases:
        if name.lower() not in known:
            results.append(LogShipRecoveryResult(
                computer_name=connector.computer_name,
                instance_name=connector.instance_name,
                sql_instance=connector.sql_instance,
                database=name,
                status=OperationStatus.FAILED,
                notes=report_failure(f"{name} is not a log shipping secondary",
                                     enable_exception=enable_exception, target=target),
            ))

    for row in secondaries:
        database = row["secondary_database"]
        if databases and not matches(database, databases):
            continue
        result = LogShipRecoveryResult(
            computer_name=connector.computer_name,
            instance_name=connector.instance_name,
            sql_instance=connector.sql_instance,
            database=database,
        )
        results.append(result)

        if row["state_desc"] == "ONLINE" and not row["is_in_standby"]:
            result.status = OperationStatus.SKIPPED
            result.notes = "Database is already online"
            logger.info("%s is already online; skipping", database)
            continue

        try:
            for job in (row["copy_job"], row["restore_job"]):
                if job:
                    agent_jobs.run_job(connector, job, poll_interval=delay, timeout=timeout, sleep=sleep)
            for job in (row["copy_job"], row["restore_job"]):
                if job:
                    agent_jobs.disable_job(connector, job)
            if no_recovery:
                result.notes = "Logs applied; database left in restoring state"
            else:
                connector.execute_non_query(f"RESTORE DATABASE {quote_identifier(database)} WITH RECOVERY")
                result.notes = "Database recovered"
            logger.info("%s: %s", database, result.notes)
        except (OperationError, pyodbc.Error) as e:
            result.status = OperationStatus.FAILED
            result.notes = report_failure(
                f"Recovery of {database} failed", error=e,
                enable_exception=enable_exception, target=target,
            )
    return results
