"""
Backup chain selection.

Filters and orders backup history records into restorable sequences:
Full -> (Differential) -> continuous Log backups. Everything here is pure
list processing over records SQL Server already produced; the LSN values
themselves are guaranteed consistent by the engine.
"""

from __future__ import annotations

import logging
from collections import OrderedDict
from dataclasses import dataclass, field
from datetime import datetime
from typing import Iterable

from autodbadmin.domain.errors import BackupChainError
from autodbadmin.domain.models import BackupHistory

logger = logging.getLogger(__name__)


@dataclass
class RestoreChain:
    """The backups needed to bring one database to a point in time."""
    database: str
    full: BackupHistory
    diff: BackupHistory | None = None
    logs: list[BackupHistory] = field(default_factory=list)
    stop_at: datetime | None = None

    @property
    def base(self) -> BackupHistory:
        return self.diff or self.full

    @property
    def backups(self) -> list[BackupHistory]:
        chain = [self.full]
        if self.diff:
            chain.append(self.diff)
        chain.extend(self.logs)
        return chain

    @property
    def files(self) -> list[str]:
        return [p for b in self.backups for p in b.path]

    @property
    def total_size(self) -> int:
        return sum(b.total_size or 0 for b in self.backups)


def _set_key(record: BackupHistory) -> tuple:
    if record.backup_set_guid:
        return ("guid", record.backup_set_guid.lower())
    return ("lsn", record.database.lower(), record.type, record.first_lsn, record.last_lsn)


def group_backup_sets(records: Iterable[BackupHistory]) -> list[BackupHistory]:
    """
    Merge records describing stripes of the same backup set.

    Records sharing a backup set GUID (or, without a GUID, the same database,
    type and LSN range) become one record whose ``path`` lists every stripe.
    """
    grouped: "OrderedDict[tuple, BackupHistory]" = OrderedDict()
    for record in records:
        key = _set_key(record)
        existing = grouped.get(key)
        if existing is None:
            grouped[key] = record
            continue
        for path in record.path:
            if path not in existing.path:
                existing.path.append(path)
        if not existing.file_list and record.file_list:
            existing.file_list = record.file_list
    return sort_history(grouped.values())


def sort_history(records: Iterable[BackupHistory]) -> list[BackupHistory]:
    """Order by database, then LSN, fulls before diffs before logs at equal LSN."""
    def rank(r: BackupHistory) -> int:
        if r.is_full:
            return 0
        if r.is_diff:
            return 1
        return 2 if r.is_log else 3

    return sorted(records, key=lambda r: (r.database.lower(), r.first_lsn, rank(r), r.last_lsn))


def split_by_database(records: Iterable[BackupHistory]) -> dict[str, list[BackupHistory]]:
    """Group records per database, keeping the first-seen spelling of the name."""
    result: dict[str, list[BackupHistory]] = {}
    names: dict[str, str] = {}
    for record in records:
        key = record.database.lower()
        name = names.setdefault(key, record.database)
        result.setdefault(name, []).append(record)
    return result


def diff_belongs_to(diff: BackupHistory, full: BackupHistory) -> bool:
    """A differential is based on a full when it points at the full's checkpoint."""
    return diff.database_backup_lsn == full.checkpoint_lsn


def _same_fork(a: BackupHistory, b: BackupHistory) -> bool:
    if not a.last_recovery_fork_guid or not b.last_recovery_fork_guid:
        return True
    return a.last_recovery_fork_guid.lower() == b.last_recovery_fork_guid.lower()


def continuous_logs(
    base: BackupHistory, logs: Iterable[BackupHistory]
) -> tuple[list[BackupHistory], bool]:
    """
    Walk log backups forward from ``base``.

    Returns the continuous run of logs and a flag telling whether later logs
    exist that could not be linked (an LSN gap).
    """
    candidates = sorted(
        (l for l in logs if l.last_lsn > base.last_lsn and _same_fork(base, l)),
        key=lambda l: (l.first_lsn, l.last_lsn),
    )
    chain: list[BackupHistory] = []
    expected = base.last_lsn
    for log in candidates:
        if not chain:
            if log.first_lsn <= expected < log.last_lsn:
                chain.append(log)
                expected = log.last_lsn
                continue
            return chain, True
        if log.last_lsn <= expected:
            # duplicate copy of a log already in the chain
            continue
        if log.first_lsn != expected:
            return chain, True
        chain.append(log)
        expected = log.last_lsn
    return chain, False


def verify_log_chain(base: BackupHistory, logs: list[BackupHistory]) -> None:
    """Raise ``BackupChainError`` when ``logs`` do not follow ``base`` without gaps."""
    expected = base.last_lsn
    for index, log in enumerate(logs):
        if index == 0:
            if not log.first_lsn <= expected < log.last_lsn:
                raise BackupChainError(
                    f"Log backup {log.path} (first LSN {log.first_lsn}) does not follow "
                    f"{base.type} backup ending at LSN {expected}"
                )
        elif log.first_lsn != expected:
            raise BackupChainError(
                f"LSN gap in log chain for {log.database}: expected {expected}, "
                f"found {log.first_lsn} in {log.path}"
            )
        expected = log.last_lsn


def _latest(records: Iterable[BackupHistory]) -> BackupHistory | None:
    ordered = sorted(
        records,
        key=lambda r: (r.end or datetime.min, r.last_lsn),
    )
    return ordered[-1] if ordered else None


def select_last_chain(history: list[BackupHistory]) -> list[BackupHistory]:
    """
    Latest restorable chain for one database.

    Last full, the latest differential based on it, then every log backup
    that continues without a gap from the differential (or the full).
    """
    full = _latest(h for h in history if h.is_full)
    if full is None:
        return []
    diff = _latest(h for h in history if h.is_diff and diff_belongs_to(h, full))
    base = diff or full
    logs, gap = continuous_logs(base, (h for h in history if h.is_log))
    if gap:
        logger.warning(
            "Log chain for %s is broken after LSN %s; later log backups were ignored",
            full.database, logs[-1].last_lsn if logs else base.last_lsn,
        )
    chain = [full]
    if diff:
        chain.append(diff)
    chain.extend(logs)
    return chain


def select_restore_chain(
    history: list[BackupHistory],
    restore_time: datetime | None = None,
    ignore_diff: bool = False,
    ignore_log: bool = False,
) -> RestoreChain:
    """
    Backups needed to restore one database to ``restore_time``.

    Raises:
        BackupChainError: No full backup precedes ``restore_time`` or the log
            chain breaks before reaching it.
    """
    if not history:
        raise BackupChainError("No backup history supplied")
    database = history[0].database
    cutoff = restore_time or datetime.max

    full = _latest(h for h in history if h.is_full and (h.end or datetime.min) <= cutoff)
    if full is None:
        raise BackupChainError(
            f"No full backup of {database} finished before {restore_time or 'now'}"
        )
    chain = RestoreChain(database=database, full=full)

    if not ignore_diff:
        chain.diff = _latest(
            h for h in history
            if h.is_diff and diff_belongs_to(h, full) and (h.end or datetime.min) <= cutoff
        )
    if ignore_log:
        return chain

    logs, gap = continuous_logs(chain.base, (h for h in history if h.is_log))
    selected: list[BackupHistory] = []
    for log in logs:
        selected.append(log)
        if log.end is not None and log.end >= cutoff:
            break
    reached = bool(selected) and selected[-1].end is not None and selected[-1].end >= cutoff
    if gap and not reached and restore_time is not None:
        raise BackupChainError(
            f"Log chain for {database} is broken before {restore_time}; "
            f"last continuous LSN is {selected[-1].last_lsn if selected else chain.base.last_lsn}"
        )
    chain.logs = selected
    if restore_time is not None and reached:
        chain.stop_at = restore_time
    return chain
