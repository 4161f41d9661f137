"""
Excel export using openpyxl.

Any list of result records (dataclasses) can be written as a sheet; PII
scan findings get an extra per-database summary sheet.
"""

from __future__ import annotations

import logging
from collections import Counter
from dataclasses import fields, is_dataclass
from datetime import datetime
from enum import Enum
from pathlib import Path
from typing import Any, Sequence

from openpyxl import Workbook
from openpyxl.styles import Alignment, Border, Font, PatternFill, Side
from openpyxl.utils import get_column_letter

from autodbadmin.domain.models import OperationStatus, PiiFinding

logger = logging.getLogger(__name__)

# Styling constants
HEADER_FONT = Font(bold=True, color="FFFFFF")
HEADER_FILL = PatternFill(start_color="4472C4", end_color="4472C4", fill_type="solid")
HEADER_ALIGNMENT = Alignment(horizontal="center", vertical="center", wrap_text=True)
THIN_BORDER = Border(
    left=Side(style="thin"),
    right=Side(style="thin"),
    top=Side(style="thin"),
    bottom=Side(style="thin")
)
STATUS_FILLS = {
    OperationStatus.SUCCESSFUL.value: PatternFill(start_color="C6EFCE", end_color="C6EFCE", fill_type="solid"),
    OperationStatus.FAILED.value: PatternFill(start_color="FFC7CE", end_color="FFC7CE", fill_type="solid"),
    OperationStatus.SKIPPED.value: PatternFill(start_color="FFEB9C", end_color="FFEB9C", fill_type="solid"),
}
MAX_COLUMN_WIDTH = 60


def _cell_value(value: Any) -> Any:
    """Convert a record attribute into something a worksheet cell accepts."""
    if isinstance(value, Enum):
        return value.value
    if isinstance(value, (list, tuple)):
        return ", ".join(str(_cell_value(v)) for v in value)
    if isinstance(value, dict):
        return "; ".join(f"{k} -> {v}" for k, v in value.items())
    if isinstance(value, bytes):
        return "0x" + value.hex().upper()
    if is_dataclass(value):
        return str(value)
    return value


def _write_header(ws, headers: Sequence[str]) -> None:
    for col_idx, name in enumerate(headers, start=1):
        cell = ws.cell(row=1, column=col_idx, value=name)
        cell.font = HEADER_FONT
        cell.fill = HEADER_FILL
        cell.alignment = HEADER_ALIGNMENT
        cell.border = THIN_BORDER
    ws.freeze_panes = "A2"


def _autosize(ws) -> None:
    for column_cells in ws.columns:
        length = max(len(str(c.value)) if c.value is not None else 0 for c in column_cells)
        letter = get_column_letter(column_cells[0].column)
        ws.column_dimensions[letter].width = min(max(length + 2, 10), MAX_COLUMN_WIDTH)


def write_records_sheet(wb: Workbook, records: Sequence[Any], title: str) -> None:
    """Add a sheet with one row per record and one column per field."""
    ws = wb.create_sheet(title[:31])
    if not records:
        ws.cell(row=1, column=1, value="No records")
        return

    names = [f.name for f in fields(records[0])]
    _write_header(ws, [n.replace("_", " ").title() for n in names])
    status_col = names.index("status") + 1 if "status" in names else None

    for row_idx, record in enumerate(records, start=2):
        for col_idx, name in enumerate(names, start=1):
            value = _cell_value(getattr(record, name))
            cell = ws.cell(row=row_idx, column=col_idx, value=value)
            cell.border = THIN_BORDER
            if isinstance(value, datetime):
                cell.number_format = "yyyy-mm-dd hh:mm:ss"
        if status_col:
            fill = STATUS_FILLS.get(ws.cell(row=row_idx, column=status_col).value)
            if fill:
                ws.cell(row=row_idx, column=status_col).fill = fill
    _autosize(ws)


def write_results(records: Sequence[Any], output_path: Path, title: str = "Results") -> Path:
    """
    Write result records to a new workbook.

    Args:
        records: Dataclass records of a single type
        output_path: Path to write the .xlsx file
        title: Sheet name

    Returns:
        Path to the created file
    """
    logger.info("Writing %d records to %s", len(records), output_path)
    wb = Workbook()
    del wb["Sheet"]
    write_records_sheet(wb, records, title)
    _add_info_sheet(wb, title, len(records))

    output_path.parent.mkdir(parents=True, exist_ok=True)
    wb.save(output_path)
    return output_path


def write_pii_report(findings: Sequence[PiiFinding], output_path: Path) -> Path:
    """Findings sheet plus a summary of categories per database."""
    logger.info("Writing PII report (%d findings): %s", len(findings), output_path)
    wb = Workbook()
    del wb["Sheet"]
    write_records_sheet(wb, findings, "Findings")

    ws = wb.create_sheet("Summary")
    _write_header(ws, ["Instance", "Database", "PII Category", "Columns"])
    counts = Counter((f.sql_instance, f.database, f.pii_category) for f in findings)
    for row_idx, ((instance, database, category), count) in enumerate(sorted(counts.items()), start=2):
        for col_idx, value in enumerate((instance, database, category, count), start=1):
            ws.cell(row=row_idx, column=col_idx, value=value).border = THIN_BORDER
    _autosize(ws)
    _add_info_sheet(wb, "PII Scan", len(findings))

    output_path.parent.mkdir(parents=True, exist_ok=True)
    wb.save(output_path)
    return output_path


def _add_info_sheet(wb: Workbook, title: str, count: int) -> None:
    ws = wb.create_sheet("Info")
    for row_idx, (label, value) in enumerate((
        ("Report", title),
        ("Records", count),
        ("Generated", datetime.now()),
    ), start=1):
        ws.cell(row=row_idx, column=1, value=label).font = Font(bold=True)
        ws.cell(row=row_idx, column=2, value=value)
    ws.column_dimensions["A"].width = 20
    ws.column_dimensions["B"].width = 40
