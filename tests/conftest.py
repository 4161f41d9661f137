"""
Shared fixtures.
"""

from datetime import datetime

import pytest

from tests.shared.fakes import FakeConnector, make_backup


@pytest.fixture
def connector():
    return FakeConnector()


@pytest.fixture
def chain_history():
    """Full at LSN 100, a diff on it, then three contiguous logs."""
    return [
        make_backup(type="Full", first_lsn=90, last_lsn=100, checkpoint_lsn=95,
                    end=datetime(2024, 1, 1, 0, 0)),
        make_backup(type="Differential", first_lsn=150, last_lsn=200, checkpoint_lsn=160,
                    database_backup_lsn=95, end=datetime(2024, 1, 1, 12, 0)),
        make_backup(type="Log", first_lsn=100, last_lsn=180, end=datetime(2024, 1, 1, 10, 0)),
        make_backup(type="Log", first_lsn=180, last_lsn=250, end=datetime(2024, 1, 1, 13, 0)),
        make_backup(type="Log", first_lsn=250, last_lsn=300, end=datetime(2024, 1, 1, 14, 0)),
    ]
