"""
Data compression rules.

Recommendation thresholds follow the usual read-mostly heuristic:
partitions that are rarely updated or mostly scanned get PAGE, the rest
get ROW.
"""

from __future__ import annotations

from dataclasses import dataclass

COMPRESSION_TYPES = ("Recommended", "Page", "Row", "None")

PAGE_MAX_UPDATE_PERCENT = 20
PAGE_MIN_SCAN_PERCENT = 75

ONLINE_EDITIONS = ("enterprise", "developer", "evaluation", "sql azure")


@dataclass
class OperationalStats:
    """Counters from sys.dm_db_index_operational_stats for one partition."""
    range_scan_count: int = 0
    singleton_lookup_count: int = 0
    leaf_insert_count: int = 0
    leaf_update_count: int = 0
    leaf_delete_count: int = 0
    leaf_page_merge_count: int = 0

    @property
    def total(self) -> int:
        return (
            self.range_scan_count + self.singleton_lookup_count + self.leaf_insert_count
            + self.leaf_update_count + self.leaf_delete_count + self.leaf_page_merge_count
        )

    @property
    def percent_scan(self) -> float:
        return self.range_scan_count * 100.0 / self.total if self.total else 0.0

    @property
    def percent_update(self) -> float:
        return self.leaf_update_count * 100.0 / self.total if self.total else 0.0


def normalize_compression(value: str) -> str:
    """Map user or catalog spelling (PAGE, page, NONE) to Page/Row/None/Recommended."""
    for known in COMPRESSION_TYPES:
        if value.strip().lower() == known.lower():
            return known
    raise ValueError(
        f"Invalid compression type '{value}'. Expected one of: {', '.join(COMPRESSION_TYPES)}"
    )


def recommend_compression(stats: OperationalStats) -> str:
    """Recommend Page or Row for a partition from its usage counters."""
    if stats.total == 0:
        return "Page"
    if stats.percent_update <= PAGE_MAX_UPDATE_PERCENT or stats.percent_scan >= PAGE_MIN_SCAN_PERCENT:
        return "Page"
    return "Row"


def savings_percent(current_size_kb: int, compressed_size_kb: int) -> float:
    """Estimated space saved, as a percentage of the current size."""
    if not current_size_kb:
        return 0.0
    return (current_size_kb - compressed_size_kb) * 100.0 / current_size_kb


def supports_online_rebuild(edition: str) -> bool:
    edition = (edition or "").lower()
    return any(e in edition for e in ONLINE_EDITIONS)
