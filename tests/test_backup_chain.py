"""
Tests for backup chain selection.
"""

from datetime import datetime

import pytest

from autodbadmin.domain.backup_chain import (
    continuous_logs,
    diff_belongs_to,
    group_backup_sets,
    select_last_chain,
    select_restore_chain,
    sort_history,
    split_by_database,
    verify_log_chain,
)
from autodbadmin.domain.errors import BackupChainError
from tests.shared.fakes import make_backup


class TestGrouping:
    """Striped sets and ordering."""

    def test_stripes_with_same_guid_become_one_set(self):
        first = make_backup(type="Full", last_lsn=100, path="\\\\b\\Sales_1.bak", guid="ABC")
        second = make_backup(type="Full", last_lsn=100, path="\\\\b\\Sales_2.bak", guid="abc")

        grouped = group_backup_sets([first, second])

        assert len(grouped) == 1
        assert grouped[0].path == ["\\\\b\\Sales_1.bak", "\\\\b\\Sales_2.bak"]

    def test_duplicate_paths_are_not_repeated(self):
        first = make_backup(type="Full", last_lsn=100, path="\\\\b\\Sales.bak", guid="G1")
        again = make_backup(type="Full", last_lsn=100, path="\\\\b\\Sales.bak", guid="G1")

        assert group_backup_sets([first, again])[0].path == ["\\\\b\\Sales.bak"]

    def test_sets_without_guid_group_on_lsn_range(self):
        first = make_backup(type="Log", first_lsn=10, last_lsn=20, path="a.trn")
        second = make_backup(type="Log", first_lsn=10, last_lsn=20, path="b.trn")
        other = make_backup(type="Log", first_lsn=20, last_lsn=30, path="c.trn")

        grouped = group_backup_sets([first, second, other])

        assert [g.path for g in grouped] == [["a.trn", "b.trn"], ["c.trn"]]

    def test_sort_puts_full_before_log_at_same_lsn(self):
        log = make_backup(type="Log", first_lsn=100, last_lsn=150)
        full = make_backup(type="Full", first_lsn=100, last_lsn=120)

        assert [r.type for r in sort_history([log, full])] == ["Full", "Log"]

    def test_split_by_database_keeps_first_spelling(self):
        records = [make_backup(database="Sales"), make_backup(database="SALES"), make_backup(database="HR")]

        split = split_by_database(records)

        assert list(split) == ["Sales", "HR"]
        assert len(split["Sales"]) == 2


class TestChainRules:
    """LSN rules between fulls, differentials and logs."""

    def test_diff_belongs_to_full_by_checkpoint(self):
        full = make_backup(type="Full", checkpoint_lsn=95)
        diff = make_backup(type="Differential", database_backup_lsn=95)
        other = make_backup(type="Differential", database_backup_lsn=42)

        assert diff_belongs_to(diff, full)
        assert not diff_belongs_to(other, full)

    def test_continuous_logs_reports_gap(self):
        full = make_backup(type="Full", last_lsn=100)
        logs = [
            make_backup(type="Log", first_lsn=100, last_lsn=150),
            make_backup(type="Log", first_lsn=160, last_lsn=200),
        ]

        chain, gap = continuous_logs(full, logs)

        assert [l.last_lsn for l in chain] == [150]
        assert gap is True

    def test_continuous_logs_ignores_other_fork(self):
        full = make_backup(type="Full", last_lsn=100, fork="fork-1")
        logs = [make_backup(type="Log", first_lsn=100, last_lsn=150, fork="fork-2")]

        chain, gap = continuous_logs(full, logs)

        assert chain == []
        assert gap is False

    def test_continuous_logs_skips_duplicate_copies(self):
        full = make_backup(type="Full", last_lsn=100)
        logs = [
            make_backup(type="Log", first_lsn=100, last_lsn=150, path="a.trn"),
            make_backup(type="Log", first_lsn=100, last_lsn=150, path="copy.trn"),
            make_backup(type="Log", first_lsn=150, last_lsn=200),
        ]

        chain, gap = continuous_logs(full, logs)

        assert [l.last_lsn for l in chain] == [150, 200]
        assert not gap

    def test_verify_log_chain_accepts_contiguous_logs(self):
        full = make_backup(type="Full", last_lsn=100)
        logs = [
            make_backup(type="Log", first_lsn=90, last_lsn=150),
            make_backup(type="Log", first_lsn=150, last_lsn=200),
        ]

        verify_log_chain(full, logs)

    def test_verify_log_chain_rejects_gap(self):
        full = make_backup(type="Full", last_lsn=100)
        logs = [
            make_backup(type="Log", first_lsn=100, last_lsn=150),
            make_backup(type="Log", first_lsn=151, last_lsn=200),
        ]

        with pytest.raises(BackupChainError, match="LSN gap"):
            verify_log_chain(full, logs)

    def test_verify_log_chain_rejects_log_not_covering_base(self):
        full = make_backup(type="Full", last_lsn=100)

        with pytest.raises(BackupChainError):
            verify_log_chain(full, [make_backup(type="Log", first_lsn=120, last_lsn=150)])


class TestSelectLastChain:

    def test_uses_latest_diff_and_following_logs(self, chain_history):
        chain = select_last_chain(chain_history)

        assert [b.type for b in chain] == ["Full", "Differential", "Log", "Log"]
        assert [b.last_lsn for b in chain] == [100, 200, 250, 300]

    def test_no_full_means_no_chain(self):
        assert select_last_chain([make_backup(type="Log", first_lsn=1, last_lsn=2)]) == []


class TestSelectRestoreChain:

    def test_latest_point_uses_everything(self, chain_history):
        chain = select_restore_chain(chain_history)

        assert chain.diff is not None
        assert [l.last_lsn for l in chain.logs] == [250, 300]
        assert chain.stop_at is None
        assert chain.total_size == 4 * 1024

    def test_point_in_time_stops_at_first_log_past_target(self, chain_history):
        target = datetime(2024, 1, 1, 13, 30)

        chain = select_restore_chain(chain_history, restore_time=target)

        assert [l.last_lsn for l in chain.logs] == [250, 300]
        assert chain.stop_at == target

    def test_point_before_diff_uses_logs_from_full(self, chain_history):
        chain = select_restore_chain(chain_history, restore_time=datetime(2024, 1, 1, 11, 0))

        assert chain.diff is None
        assert [l.last_lsn for l in chain.logs] == [180, 250]

    def test_ignore_diff(self, chain_history):
        chain = select_restore_chain(chain_history, ignore_diff=True)

        assert chain.diff is None
        assert [l.last_lsn for l in chain.logs] == [180, 250, 300]

    def test_ignore_log(self, chain_history):
        chain = select_restore_chain(chain_history, ignore_log=True)

        assert chain.logs == []
        assert [b.type for b in chain.backups] == ["Full", "Differential"]

    def test_no_full_before_restore_time(self, chain_history):
        with pytest.raises(BackupChainError, match="No full backup"):
            select_restore_chain(chain_history, restore_time=datetime(2023, 12, 31))

    def test_gap_before_restore_time_raises(self, chain_history):
        history = [b for b in chain_history if b.last_lsn != 250]

        with pytest.raises(BackupChainError, match="broken"):
            select_restore_chain(history, restore_time=datetime(2024, 1, 1, 13, 30))

    def test_gap_without_restore_time_returns_partial_chain(self, chain_history):
        history = [b for b in chain_history if b.last_lsn != 250]

        chain = select_restore_chain(history)

        assert chain.logs == []
        assert chain.base.is_diff

    def test_empty_history(self):
        with pytest.raises(BackupChainError):
            select_restore_chain([])
