"""
Timeline pages for job history and backup history.
"""

from __future__ import annotations

import logging
from pathlib import Path
from typing import Sequence, Union

from autodbadmin.domain.errors import OperationError
from autodbadmin.domain.models import AgentJobHistoryEntry, BackupHistory
from autodbadmin.infrastructure.timeline_renderer import TimelineRenderer

logger = logging.getLogger(__name__)

JOB_COLORS = {
    "Succeeded": "#36B300",
    "Failed": "#FF3D3D",
    "Retry": "#FFAA00",
    "Canceled": "#A0A0A0",
    "In Progress": "#00CCFF",
}

BACKUP_COLORS = {
    "Full": "#2E6DB4",
    "Differential": "#7FB3E8",
    "Log": "#F2A33A",
}
OTHER_COLOR = "#8C8C8C"

Records = Sequence[Union[AgentJobHistoryEntry, BackupHistory]]


def _job_rows(entries: Sequence[AgentJobHistoryEntry]) -> list[dict]:
    rows = []
    for entry in entries:
        if entry.start_date is None or entry.end_date is None:
            continue
        label = entry.job if entry.step_id == 0 else f"{entry.job} / {entry.step_name}"
        rows.append({
            "label": label,
            "bar": entry.status,
            "color": JOB_COLORS.get(entry.status, OTHER_COLOR),
            "start": entry.start_date.isoformat(),
            "end": entry.end_date.isoformat(),
        })
    return rows


def _backup_rows(records: Sequence[BackupHistory]) -> list[dict]:
    return [
        {
            "label": record.database,
            "bar": record.type,
            "color": BACKUP_COLORS.get(record.type, OTHER_COLOR),
            "start": record.start.isoformat(),
            "end": record.end.isoformat(),
        }
        for record in records
        if record.start is not None and record.end is not None
    ]


def convert_to_timeline(
    records: Records,
    exclude_row_label: bool = False,
    title: str | None = None,
    output_path: Path | None = None,
) -> str:
    """
    Render job or backup history as a standalone HTML timeline.

    Args:
        records: Job history entries or backup history records, not mixed
        exclude_row_label: Hide the job/database labels
        title: Page heading
        output_path: Also write the page here

    Returns:
        The HTML page

    Raises:
        OperationError: Mixed or unsupported record types
    """
    kinds = {type(r) for r in records}
    if len(kinds) > 1:
        raise OperationError("Timeline input must be all job history or all backup history")

    if not records or kinds == {AgentJobHistoryEntry}:
        rows = _job_rows(records)
        legend = JOB_COLORS
        subtitle = "SQL Agent job history"
        servers = sorted({r.sql_instance for r in records})
    elif kinds == {BackupHistory}:
        rows = _backup_rows(records)
        legend = BACKUP_COLORS
        subtitle = "Backup history"
        servers = sorted({r.sql_instance for r in records})
    else:
        raise OperationError(f"Cannot draw a timeline of {next(iter(kinds)).__name__} records")

    if servers:
        subtitle = f"{subtitle} for {', '.join(servers)}"
    html = TimelineRenderer().render(
        rows,
        title=title or "Timeline",
        subtitle=subtitle,
        legend=legend,
        exclude_row_label=exclude_row_label,
    )
    if output_path is not None:
        output_path.parent.mkdir(parents=True, exist_ok=True)
        output_path.write_text(html, encoding="utf-8")
        logger.info("Timeline written to %s", output_path)
    return html
