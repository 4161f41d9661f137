"""
SQL Agent integer date helpers.

msdb stores job history dates as integers: run_date as yyyymmdd, run_time
and run_duration as hhmmss (duration hours can exceed 99).
"""

from __future__ import annotations

import re
from datetime import datetime, timedelta

_TOKEN = re.compile(r"\$\((?:ESCAPE_(?:SQUOTE|DQUOTE|RBRACKET|NONE)\((\w+)\)|(\w+))\)")


def agent_datetime(run_date: int | None, run_time: int | None) -> datetime | None:
    """Decode run_date/run_time pair into a datetime (None for 0 dates)."""
    if not run_date:
        return None
    run_time = run_time or 0
    year, rest = divmod(int(run_date), 10000)
    month, day = divmod(rest, 100)
    hours, rest = divmod(int(run_time), 10000)
    minutes, seconds = divmod(rest, 100)
    return datetime(year, month, day, hours, minutes, seconds)


def agent_duration_seconds(run_duration: int | None) -> int:
    """Decode an hhmmss duration into seconds."""
    if not run_duration:
        return 0
    hours, rest = divmod(int(run_duration), 10000)
    minutes, seconds = divmod(rest, 100)
    return hours * 3600 + minutes * 60 + seconds


def format_agent_date(value: datetime) -> int:
    """Encode a datetime's date part as yyyymmdd."""
    return value.year * 10000 + value.month * 100 + value.day


def format_agent_time(value: datetime) -> int:
    """Encode a datetime's time part as hhmmss."""
    return value.hour * 10000 + value.minute * 100 + value.second


def end_date(start: datetime | None, duration_seconds: int) -> datetime | None:
    if start is None:
        return None
    return start + timedelta(seconds=duration_seconds)


def resolve_output_file(
    template: str | None,
    *,
    job_id: str,
    job_name: str,
    step_id: int,
    step_name: str,
    start: datetime | None,
    server_name: str,
    instance_name: str,
    computer_name: str,
) -> str | None:
    """
    Replace Agent tokens in a job step output file name.

    Handles both bare ``$(JOBID)`` and escape-macro ``$(ESCAPE_SQUOTE(JOBID))``
    forms. Unknown tokens are left as-is.
    """
    if not template:
        return template
    start = start or datetime.now()
    values = {
        "JOBID": _job_id_token(job_id),
        "JOBNAME": job_name,
        "STEPID": str(step_id),
        "STEPNAME": step_name,
        "STRTDT": start.strftime("%Y%m%d"),
        "STRTTM": str(format_agent_time(start)),
        "DATE": start.strftime("%Y%m%d"),
        "TIME": start.strftime("%H%M%S"),
        "SRVR": server_name,
        "INST": instance_name or "MSSQLSERVER",
        "MACH": computer_name,
    }

    def replace(match: re.Match) -> str:
        token = match.group(1) or match.group(2)
        return values.get(token.upper(), match.group(0))

    return _TOKEN.sub(replace, template)


def _job_id_token(job_id: str) -> str:
    """Agent renders JOBID as the uppercase hex of the GUID's binary form."""
    hex_value = job_id.replace("-", "").replace("{", "").replace("}", "")
    if len(hex_value) != 32:
        return job_id
    # uniqueidentifier binary layout swaps the first three groups
    raw = bytes.fromhex(hex_value)
    swapped = raw[3::-1] + raw[5:3:-1] + raw[7:5:-1] + raw[8:]
    return "0x" + swapped.hex().upper()
