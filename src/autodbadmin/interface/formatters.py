"""
Rich table rendering for operation results.
"""

import logging
from datetime import datetime
from enum import Enum
from typing import Any, Optional, Sequence

from rich.console import Console
from rich.table import Table

from autodbadmin.domain.models import OperationStatus

logger = logging.getLogger(__name__)
console = Console()

STATUS_STYLES = {
    OperationStatus.SUCCESSFUL.value: "[green]Successful[/green]",
    OperationStatus.FAILED.value: "[red]Failed[/red]",
    OperationStatus.SKIPPED.value: "[yellow]Skipped[/yellow]",
    "Success": "[green]Success[/green]",
    "Succeeded": "[green]Succeeded[/green]",
}


def _display(value: Any) -> str:
    if value is None:
        return ""
    if isinstance(value, Enum):
        value = value.value
    if isinstance(value, datetime):
        return value.strftime("%Y-%m-%d %H:%M:%S")
    if isinstance(value, (list, tuple)):
        return "\n".join(_display(v) for v in value)
    if isinstance(value, dict):
        return "\n".join(f"{k} -> {v}" for k, v in value.items())
    text = str(value)
    return STATUS_STYLES.get(text, text)


def print_records(
    records: Sequence[Any],
    columns: Optional[Sequence[str]] = None,
    title: str = "Results",
) -> None:
    """
    Print dataclass records as a table.

    Args:
        records: Records with ``to_dict()``
        columns: Fields to show, in order (defaults to every field)
        title: Table title
    """
    if not records:
        console.print(f"[yellow]{title}: nothing to show[/yellow]")
        return
    rows = [r.to_dict() for r in records]
    columns = list(columns or rows[0].keys())

    table = Table(title=title)
    for column in columns:
        table.add_column(column.replace("_", " ").title(), overflow="fold")
    for row in rows:
        table.add_row(*(_display(row.get(c)) for c in columns))
    console.print(table)

    statuses = [row.get("status") for row in rows if "status" in row]
    if statuses:
        failed = sum(1 for s in statuses if s == OperationStatus.FAILED.value)
        style = "red" if failed else "blue"
        console.print(f"[{style}]{len(statuses) - failed}/{len(statuses)} without failure[/{style}]")


def print_statements(records: Sequence[Any]) -> None:
    """Print the T-SQL carried by script-only results, ready to paste."""
    for record in records:
        statement = getattr(record, "statement", None)
        if statement:
            console.print(statement, markup=False, highlight=False)
            console.print("GO", markup=False, highlight=False)
