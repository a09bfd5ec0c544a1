"""Root CLI group for fluentorm with global flags and demo commands."""

from __future__ import annotations

import click
from sqlalchemy.schema import CreateTable

from fluentorm import __version__
from fluentorm.config.logging import configure_logging
from fluentorm.config.settings import OrmSettings
from fluentorm.errors import FluentOrmError
from fluentorm.orm import Orm
from fluentorm.output.console import create_console, get_output, render_entities


class CliContext:
    """Shared context flowing through Click's command hierarchy.

    The Orm is created lazily so ``--help`` and ``--version`` never touch
    the database.
    """

    def __init__(self, settings: OrmSettings, *, echo_queries: bool = False) -> None:
        self.settings = settings
        self.echo_queries = echo_queries
        self._orm: Orm | None = None
        configure_logging(
            verbose=settings.logging.verbose,
            log_json=settings.logging.json_logs,
            log_queries=settings.logging.log_queries,
        )

    @property
    def orm(self) -> Orm:
        if self._orm is None:
            self._orm = Orm.from_settings(self.settings)
            if self.echo_queries:
                self._orm.set_logger(_echo_query)
        return self._orm

    def close(self) -> None:
        if self._orm is not None:
            self._orm.close()
            self._orm = None


def _echo_query(query: str, params: list[str]) -> None:
    click.echo(f"QUERY {query} {params}", err=True)


@click.group(invoke_without_command=True)
@click.version_option(version=__version__, prog_name="fluentorm")
@click.option("--db", "db_url", default=None, help="Database URL (overrides config).")
@click.option("-v", "--verbose", is_flag=True, help="Debug logging.")
@click.option("--log-json", is_flag=True, help="Structured JSON log output to stderr.")
@click.option("--log-queries", is_flag=True, help="Log every query through structlog.")
@click.option("--echo-queries", is_flag=True, help="Print every query to stderr.")
@click.option("-c", "--config", "config_path", default=None, help="Override config file path.")
@click.pass_context
def cli(
    ctx: click.Context,
    db_url: str | None,
    verbose: bool,
    log_json: bool,
    log_queries: bool,
    echo_queries: bool,
    config_path: str | None,
) -> None:
    """fluentorm: embeddable ORM core with a fluent query builder."""
    flags = {"verbose": verbose, "json_logs": log_json, "log_queries": log_queries}
    overrides: dict[str, dict[str, object]] = {}
    if any(flags.values()):
        overrides["logging"] = {key: True for key, flag in flags.items() if flag}
    if db_url:
        overrides["database"] = {"url": db_url}

    settings = OrmSettings.load(config_path=config_path, **overrides)
    ctx.obj = CliContext(settings, echo_queries=echo_queries)
    ctx.call_on_close(ctx.obj.close)
    if ctx.invoked_subcommand is None:
        click.echo(ctx.get_help())


@cli.command()
@click.pass_obj
def demo(app: CliContext) -> None:
    """Seed three demo users and list the hackers (or anyone aged 4)."""
    from fluentorm.demo import run_demo

    try:
        users = run_demo(app.orm)
    except FluentOrmError as exc:
        raise click.ClickException(str(exc)) from exc

    console = create_console()
    render_entities(console, users, title="hacker is true OR age == 4")
    click.echo(get_output(console), nl=False)


@cli.command()
@click.pass_obj
def schema(app: CliContext) -> None:
    """Print the CREATE TABLE statements for the demo entities."""
    from fluentorm.demo import User

    orm = app.orm
    orm.register(User)
    for table in orm.registry.metadata.sorted_tables:
        ddl = CreateTable(table).compile(dialect=orm.engine.dialect)
        click.echo(f"{str(ddl).strip()};\n")
