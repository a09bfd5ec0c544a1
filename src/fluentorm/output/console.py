"""Rich Console factory and entity table rendering for the CLI.

Consoles render to a StringIO buffer so commands can hand the text to
``click.echo``. In non-TTY environments (tests, pipes) Rich disables
color codes automatically.
"""

from __future__ import annotations

from collections.abc import Sequence
from io import StringIO

from rich.console import Console
from rich.table import Table
from rich.theme import Theme

from fluentorm.domain.entity import Entity

ORM_THEME = Theme(
    {
        "orm.id": "bold blue",
        "orm.relation": "cyan",
        "orm.sql": "dim",
        "orm.empty": "bold yellow",
    }
)


def create_console(*, no_color: bool = False, width: int | None = None) -> Console:
    """Create a Console that renders to a StringIO buffer.

    Args:
        no_color: Disable ANSI escape codes (used in tests).
        width: Override terminal width (useful for consistent test output).
    """
    return Console(
        file=StringIO(),
        theme=ORM_THEME,
        no_color=no_color,
        highlight=False,
        width=width or 120,
    )


def get_output(console: Console) -> str:
    """Extract rendered text from a StringIO-backed Console."""
    assert isinstance(console.file, StringIO)
    return console.file.getvalue()


def render_entities(console: Console, entities: Sequence[Entity], *, title: str) -> None:
    """Render *entities* as one table; relations are summarised per cell."""
    if not entities:
        console.print(f"[orm.empty]{title}: no results[/]")
        return

    columns = list(type(entities[0]).model_fields)
    table = Table(title=title)
    for name in columns:
        table.add_column(name, style="orm.id" if name == "id" else None)

    for entity in entities:
        table.add_row(*(_cell(getattr(entity, name)) for name in columns))
    console.print(table)


def _cell(value: object) -> str:
    if isinstance(value, Entity):
        return _summary(value)
    if isinstance(value, list):
        return ", ".join(_summary(item) if isinstance(item, Entity) else str(item) for item in value)
    return "" if value is None else str(value)


def _summary(entity: Entity) -> str:
    fields = {k: v for k, v in entity.model_dump().items() if k != "id"}
    inner = " ".join(f"{k}={v}" for k, v in fields.items() if not isinstance(v, (dict, list)))
    return f"{type(entity).__name__}#{entity.id}({inner})"
