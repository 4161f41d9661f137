"""
Data compression.

Rebuilds heaps and indexes whose compression differs from the target
(Page, Row, None, or a per-partition recommendation).
"""

from __future__ import annotations

import logging
import time
from typing import Callable, Iterable, Optional

import pyodbc

from autodbadmin.application.common import list_databases, matches, report_failure
from autodbadmin.domain.compression import (
    OperationalStats,
    normalize_compression,
    recommend_compression,
    savings_percent,
    supports_online_rebuild,
)
from autodbadmin.domain.models import CompressionResult, OperationStatus
from autodbadmin.infrastructure.tsql import quote_identifier, quote_literal, quote_name

logger = logging.getLogger(__name__)

PARTITIONS_SQL = """
SELECT
    s.name AS schema_name,
    t.name AS table_name,
    i.name AS index_name,
    i.index_id,
    i.type_desc,
    p.partition_number,
    COUNT(*) OVER (PARTITION BY p.object_id, p.index_id) AS partition_count,
    p.data_compression_desc,
    ISNULL(os.range_scan_count, 0) AS range_scan_count,
    ISNULL(os.singleton_lookup_count, 0) AS singleton_lookup_count,
    ISNULL(os.leaf_insert_count, 0) AS leaf_insert_count,
    ISNULL(os.leaf_update_count, 0) AS leaf_update_count,
    ISNULL(os.leaf_delete_count, 0) AS leaf_delete_count,
    ISNULL(os.leaf_page_merge_count, 0) AS leaf_page_merge_count
FROM sys.partitions p
JOIN sys.tables t ON t.object_id = p.object_id
JOIN sys.schemas s ON s.schema_id = t.schema_id
JOIN sys.indexes i ON i.object_id = p.object_id AND i.index_id = p.index_id
LEFT JOIN sys.dm_db_index_operational_stats(DB_ID(), NULL, NULL, NULL) os
    ON os.object_id = p.object_id AND os.index_id = p.index_id AND os.partition_number = p.partition_number
WHERE t.is_ms_shipped = 0 AND i.type IN (0, 1, 2)
ORDER BY s.name, t.name, i.index_id, p.partition_number
"""


def build_rebuild_statement(
    schema: str,
    table: str,
    index_name: str | None,
    index_id: int,
    partition: int,
    partitioned: bool,
    compression: str,
    online: bool,
) -> str:
    """ALTER TABLE (heap) or ALTER INDEX rebuild with the new compression."""
    target = quote_name(schema, table)
    partition_clause = f"PARTITION = {partition}" if partitioned else "PARTITION = ALL"
    options = f"DATA_COMPRESSION = {compression.upper()}"
    if online:
        options += ", ONLINE = ON"
    if index_id == 0:
        return f"ALTER TABLE {target} REBUILD {partition_clause} WITH ({options})"
    return f"ALTER INDEX {quote_identifier(index_name)} ON {target} REBUILD {partition_clause} WITH ({options})"


def _estimate_savings(connector, database: str, row: dict, compression: str) -> float:
    rows = connector.execute_query(
        "EXEC sys.sp_estimate_data_compression_savings "
        f"{quote_literal(row['schema_name'])}, {quote_literal(row['table_name'])}, "
        f"{int(row['index_id'])}, {int(row['partition_number'])}, {quote_literal(compression.upper())}",
        database=database,
    )
    if not rows:
        return 0.0
    return savings_percent(
        rows[0]["size_with_current_compression_setting(KB)"],
        rows[0]["size_with_requested_compression_setting(KB)"],
    )


def set_db_compression(
    connector,
    databases: Optional[Iterable[str]] = None,
    exclude_databases: Optional[Iterable[str]] = None,
    tables: Optional[Iterable[str]] = None,
    compression_type: str = "Recommended",
    max_run_time: int = 0,
    percent_compression: int = 0,
    force_offline_rebuilds: bool = False,
    enable_exception: bool = False,
    clock: Callable[[], float] = time.monotonic,
) -> list[CompressionResult]:
    """
    Apply data compression to user tables and indexes.

    Args:
        connector: Instance to work on
        databases: Only these databases
        exclude_databases: Skip these databases
        tables: Only these tables (name or schema.name)
        compression_type: Recommended, Page, Row or None
        max_run_time: Minutes after which remaining work is skipped (0 = no limit)
        percent_compression: Minimum estimated saving for recommended compression
        force_offline_rebuilds: Never rebuild online
        enable_exception: Raise on the first failure
    """
    target = connector.server_instance
    compression_type = normalize_compression(compression_type)
    server = connector.detect_version()
    online_capable = supports_online_rebuild(server.edition) and not force_offline_rebuilds
    started = clock()

    results = []
    for database in list_databases(connector, databases, exclude_databases, user_only=True):
        try:
            rows = connector.execute_query(PARTITIONS_SQL, database=database)
        except pyodbc.Error as e:
            report_failure(f"Cannot read partitions of {database}", error=e,
                           enable_exception=enable_exception, target=target)
            continue

        for row in rows:
            schema, table = row["schema_name"], row["table_name"]
            if tables and not (matches(table, tables) or matches(f"{schema}.{table}", tables)):
                continue
            if row["data_compression_desc"] not in ("NONE", "ROW", "PAGE"):
                # columnstore partitions
                continue
            current = normalize_compression(row["data_compression_desc"])

            if compression_type == "Recommended":
                desired = recommend_compression(OperationalStats(
                    range_scan_count=row["range_scan_count"],
                    singleton_lookup_count=row["singleton_lookup_count"],
                    leaf_insert_count=row["leaf_insert_count"],
                    leaf_update_count=row["leaf_update_count"],
                    leaf_delete_count=row["leaf_delete_count"],
                    leaf_page_merge_count=row["leaf_page_merge_count"],
                ))
            else:
                desired = compression_type
            if desired == current:
                continue

            result = CompressionResult(
                sql_instance=target,
                database=database,
                schema=schema,
                table=table,
                index_name=row["index_name"],
                index_id=row["index_id"],
                index_type=row["type_desc"],
                partition=row["partition_number"],
                previous_compression=current,
                compression_type=desired,
            )
            results.append(result)

            if max_run_time and clock() - started >= max_run_time * 60:
                result.status = OperationStatus.SKIPPED
                result.notes = f"Maximum run time of {max_run_time} minutes reached"
                continue

            try:
                if compression_type == "Recommended" and percent_compression:
                    saving = _estimate_savings(connector, database, row, desired)
                    if saving < percent_compression:
                        result.status = OperationStatus.SKIPPED
                        result.notes = f"Estimated saving {saving:.1f}% is below {percent_compression}%"
                        continue
                partitioned = row["partition_count"] > 1
                online = online_capable and (not partitioned or server.version_major >= 12)
                statement = build_rebuild_statement(
                    schema, table, row["index_name"], row["index_id"],
                    row["partition_number"], partitioned, desired, online,
                )
                logger.info("[%s] %s: %s", target, database, statement)
                connector.execute_non_query(statement, database=database)
            except pyodbc.Error as e:
                result.status = OperationStatus.FAILED
                result.notes = report_failure(
                    f"Compression of {database}.{schema}.{table} failed", error=e,
                    enable_exception=enable_exception, target=target,
                )
    return results
