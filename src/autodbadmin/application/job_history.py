"""
Agent job history.

Reads msdb.dbo.sysjobhistory and decodes Agent's integer dates.
"""

from __future__ import annotations

import logging
from datetime import datetime
from typing import Iterable, Optional

from autodbadmin.application.common import matches
from autodbadmin.domain.agent_dates import (
    agent_datetime,
    agent_duration_seconds,
    end_date as compute_end_date,
    format_agent_date,
    resolve_output_file,
)
from autodbadmin.domain.models import AgentJobHistoryEntry, JobOutcome

logger = logging.getLogger(__name__)

JOB_HISTORY_SQL = """
SELECT
    j.name AS job_name,
    CONVERT(varchar(36), j.job_id) AS job_id,
    h.instance_id,
    h.step_id,
    h.step_name,
    h.run_date,
    h.run_time,
    h.run_duration,
    h.run_status,
    h.message,
    o.name AS operator_emailed,
    s.output_file_name
FROM msdb.dbo.sysjobhistory h
JOIN msdb.dbo.sysjobs j ON j.job_id = h.job_id
LEFT JOIN msdb.dbo.sysjobsteps s ON s.job_id = h.job_id AND s.step_id = h.step_id
LEFT JOIN msdb.dbo.sysoperators o ON o.id = h.operator_id_emailed
WHERE h.run_date >= ? AND h.run_date <= ?
"""


def get_agent_job_history(
    connector,
    jobs: Optional[Iterable[str]] = None,
    exclude_jobs: Optional[Iterable[str]] = None,
    start_date: Optional[datetime] = None,
    end_date: Optional[datetime] = None,
    outcome_type: JobOutcome | str | None = None,
    exclude_job_steps: bool = False,
    with_output_file: bool = False,
) -> list[AgentJobHistoryEntry]:
    """
    Agent job history of one instance, newest first.

    Args:
        connector: Instance to read
        jobs: Only these jobs
        exclude_jobs: Skip these jobs
        start_date: Runs starting at or after this moment
        end_date: Runs starting at or before this moment
        outcome_type: Only runs with this outcome
        exclude_job_steps: Only the job outcome rows (step 0)
        with_output_file: Resolve Agent tokens in step output file names
    """
    if isinstance(outcome_type, str):
        outcome_type = JobOutcome.from_string(outcome_type)

    low = format_agent_date(start_date) if start_date else 19000101
    high = format_agent_date(end_date) if end_date else 99991231
    sql = JOB_HISTORY_SQL
    params: list = [low, high]
    if exclude_job_steps:
        sql += "  AND h.step_id = 0\n"
    if outcome_type is not None:
        sql += "  AND h.run_status = ?\n"
        params.append(outcome_type.value)

    rows = connector.execute_query(sql, params, database="msdb")
    logger.debug("Read %d job history rows from %s", len(rows), connector.server_instance)

    entries = []
    for row in rows:
        job = row["job_name"]
        if jobs and not matches(job, jobs):
            continue
        if matches(job, exclude_jobs):
            continue
        start = agent_datetime(row["run_date"], row["run_time"])
        if start_date and start and start < start_date:
            continue
        if end_date and start and start > end_date:
            continue
        seconds = agent_duration_seconds(row["run_duration"])
        output_file = None
        if with_output_file and row.get("output_file_name"):
            output_file = resolve_output_file(
                row["output_file_name"],
                job_id=row["job_id"],
                job_name=job,
                step_id=row["step_id"],
                step_name=row["step_name"],
                start=start,
                server_name=connector.sql_instance,
                instance_name=connector.instance_name,
                computer_name=connector.computer_name,
            )
        entries.append(AgentJobHistoryEntry(
            computer_name=connector.computer_name,
            instance_name=connector.instance_name,
            sql_instance=connector.sql_instance,
            job=job,
            job_id=row["job_id"],
            step_id=row["step_id"],
            step_name=row["step_name"],
            run_date=start,
            start_date=start,
            end_date=compute_end_date(start, seconds),
            duration=seconds,
            status=JobOutcome(row["run_status"]).label,
            message=row["message"] or "",
            instance_id=row["instance_id"],
            operator_emailed=row.get("operator_emailed"),
            output_file=output_file,
        ))

    entries.sort(key=lambda e: (e.start_date or datetime.min, e.instance_id or 0), reverse=True)
    return entries
