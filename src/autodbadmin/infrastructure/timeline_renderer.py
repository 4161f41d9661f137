"""
HTML timeline rendering with jinja2.
"""

from __future__ import annotations

import logging
from datetime import datetime
from pathlib import Path
from typing import Any

from jinja2 import Environment, FileSystemLoader, select_autoescape

logger = logging.getLogger(__name__)

TEMPLATE_DIR = Path(__file__).parent / "templates"


class TimelineRenderer:
    """Renders timeline rows into a standalone Google Charts page."""

    def __init__(self, template_dir: Path | str = TEMPLATE_DIR):
        self.template_dir = Path(template_dir)
        if not self.template_dir.exists():
            raise FileNotFoundError(f"Template directory not found: {self.template_dir}")
        self._env = Environment(
            loader=FileSystemLoader(self.template_dir),
            trim_blocks=True,
            lstrip_blocks=True,
            autoescape=select_autoescape(["html", "j2"]),
        )

    def render(
        self,
        rows: list[dict[str, Any]],
        title: str,
        subtitle: str = "",
        legend: dict[str, str] | None = None,
        exclude_row_label: bool = False,
    ) -> str:
        """
        Args:
            rows: Dicts with label, bar, color, start and end (ISO strings)
            title: Page heading
            subtitle: Line under the heading
            legend: Name -> color shown above the chart
            exclude_row_label: Hide the row label column
        """
        template = self._env.get_template("timeline.html.j2")
        html = template.render(
            rows=rows,
            row_count=len({r["label"] for r in rows}),
            title=title,
            subtitle=subtitle,
            legend=legend or {},
            exclude_row_label=exclude_row_label,
            generated=datetime.now(),
        )
        logger.debug("Rendered timeline with %d bars", len(rows))
        return html
