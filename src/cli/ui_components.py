"""CLI UI components (Rich).

- Keeps command logic apart from presentation.
- Tables/panels reused by several commands, plus the logging setup.
"""

from __future__ import annotations

import logging
from typing import Any, Iterable

from rich.console import Console
from rich.logging import RichHandler
from rich.panel import Panel
from rich.table import Table
from rich.text import Text

from core.domain.models import ComponentSummary, PollOutcome


def configure_logging(level: str = "INFO", *, console: Console | None = None) -> None:
    """Route stdlib logging through Rich (idempotent)."""

    handler = RichHandler(
        console=console or Console(stderr=True),
        show_path=False,
        rich_tracebacks=True,
        log_time_format="%Y-%m-%d %H:%M:%S",
    )
    logging.basicConfig(
        level=level.upper(),
        format="%(message)s",
        handlers=[handler],
        force=True,
    )
    # httpx logs every request at INFO.
    logging.getLogger("httpx").setLevel(logging.WARNING)


def build_components_table(components: Iterable[ComponentSummary]) -> Table:
    table = Table(title="Components")
    table.add_column("ID", style="cyan", no_wrap=True)
    table.add_column("Name", style="white")
    table.add_column("Type", style="green")
    table.add_column("Location", style="dim")
    table.add_column("Tags", style="magenta")
    for component in components:
        table.add_row(
            component.id,
            component.display_name or "",
            component.type or "",
            component.location or "",
            ", ".join(component.tags),
        )
    return table


def parse_components(body: Any) -> list[ComponentSummary]:
    """Accept both `{"components": [...]}` and a bare list."""

    items = body.get("components", []) if isinstance(body, dict) else body
    if not isinstance(items, list):
        return []
    return [ComponentSummary.model_validate(item) for item in items if isinstance(item, dict) and "id" in item]


def build_outcome_panel(endpoint: str, outcome: PollOutcome) -> Panel:
    body = Text()
    body.append(f"{endpoint}\n\n", style="bold")
    body.append(f"Attempts: {outcome.attempts}\n")
    body.append(f"Elapsed: {outcome.elapsed.total_seconds():.2f}s\n")
    if outcome.succeeded:
        return Panel(body, title=Text("Available", style="bold green"), border_style="green")
    if outcome.kind is not None:
        body.append(f"Reason: {outcome.kind.value}\n", style="red")
    body.append(str(outcome.last_error), style="dim")
    return Panel(body, title=Text("Unavailable", style="bold red"), border_style="red")
