"""
PII scan.

Flags columns that probably hold personal data, first by column name and
then by sampling values against country-aware patterns.
"""

from __future__ import annotations

import logging
from pathlib import Path
from typing import Iterable, Optional

import pyodbc

from autodbadmin.application.common import list_databases, matches, report_failure
from autodbadmin.domain.models import PiiFinding
from autodbadmin.domain.pii import filter_patterns, is_sampleable, match_known_name, match_values
from autodbadmin.infrastructure.excel_report import write_pii_report
from autodbadmin.infrastructure.pii_rules import load_known_names, load_patterns
from autodbadmin.infrastructure.tsql import quote_identifier, quote_name

logger = logging.getLogger(__name__)

COLUMNS_SQL = """
SELECT s.name AS schema_name, t.name AS table_name, c.name AS column_name, ty.name AS type_name
FROM sys.tables t
JOIN sys.schemas s ON s.schema_id = t.schema_id
JOIN sys.columns c ON c.object_id = t.object_id
JOIN sys.types ty ON ty.user_type_id = c.user_type_id
WHERE t.is_ms_shipped = 0
ORDER BY s.name, t.name, c.column_id
"""


def _table_selected(schema: str, table: str, names: Optional[Iterable[str]]) -> bool:
    return matches(table, names) or matches(f"{schema}.{table}", names)


def invoke_pii_scan(
    connector,
    databases: Optional[Iterable[str]] = None,
    tables: Optional[Iterable[str]] = None,
    columns: Optional[Iterable[str]] = None,
    countries: Optional[Iterable[str]] = None,
    country_codes: Optional[Iterable[str]] = None,
    sample_count: int = 100,
    exclude_tables: Optional[Iterable[str]] = None,
    exclude_columns: Optional[Iterable[str]] = None,
    exclude_default_known_name: bool = False,
    exclude_default_pattern: bool = False,
    known_name_file: Optional[Path] = None,
    pattern_file: Optional[Path] = None,
    export_path: Optional[Path] = None,
    enable_exception: bool = False,
) -> list[PiiFinding]:
    """
    Scan user databases for columns holding personally identifiable data.

    A column matching a known name is reported as ``KnownName`` and not
    sampled; otherwise its first ``sample_count`` non-null values are
    tested against the data patterns (``Pattern``).
    """
    target = connector.server_instance
    known_names = load_known_names(known_name_file, include_defaults=not exclude_default_known_name)
    patterns = filter_patterns(
        load_patterns(pattern_file, include_defaults=not exclude_default_pattern),
        countries,
        country_codes,
    )
    logger.info("PII scan with %d known names and %d patterns", len(known_names), len(patterns))

    findings: list[PiiFinding] = []
    for database in list_databases(connector, databases, user_only=True):
        try:
            column_rows = connector.execute_query(COLUMNS_SQL, database=database)
        except pyodbc.Error as e:
            report_failure(f"Cannot read columns of {database}", error=e,
                           enable_exception=enable_exception, target=target)
            continue

        for row in column_rows:
            schema, table, column = row["schema_name"], row["table_name"], row["column_name"]
            if tables and not _table_selected(schema, table, tables):
                continue
            if _table_selected(schema, table, exclude_tables):
                continue
            if columns and not matches(column, columns):
                continue
            if matches(column, exclude_columns):
                continue

            def finding(**values) -> PiiFinding:
                return PiiFinding(
                    computer_name=connector.computer_name,
                    instance_name=connector.instance_name,
                    sql_instance=connector.sql_instance,
                    database=database,
                    schema=schema,
                    table=table,
                    column=column,
                    **values,
                )

            known = match_known_name(column, known_names)
            if known is not None:
                findings.append(finding(
                    pii_category=known.category,
                    pii_name=known.name,
                    found_with="KnownName",
                    masking_type=known.masking_type,
                    masking_sub_type=known.masking_sub_type,
                ))
                continue

            if not patterns or not is_sampleable(row["type_name"]):
                continue
            sample_sql = (
                f"SELECT TOP ({int(sample_count)}) {quote_identifier(column)} AS value "
                f"FROM {quote_name(schema, table)} WHERE {quote_identifier(column)} IS NOT NULL"
            )
            try:
                values = [r["value"] for r in connector.execute_query(sample_sql, database=database)]
            except pyodbc.Error as e:
                report_failure(f"Cannot sample {database}.{schema}.{table}.{column}", error=e,
                               enable_exception=enable_exception, target=target)
                continue
            for pattern in match_values(values, patterns):
                findings.append(finding(
                    pii_category=pattern.category,
                    pii_name=pattern.name,
                    found_with="Pattern",
                    masking_type=pattern.masking_type,
                    masking_sub_type=pattern.masking_sub_type,
                    country=pattern.country,
                    pattern=pattern.pattern,
                ))

    logger.info("PII scan of %s found %d columns", target, len(findings))
    if export_path is not None:
        write_pii_report(findings, export_path)
    return findings
