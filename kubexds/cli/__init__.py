"""
Command Line Interface for the kubexds data stack provisioner.
"""

import asyncio
from pathlib import Path
from typing import Dict, List, NoReturn, Optional

import typer
from rich.console import Console
from rich.markup import escape
from rich.panel import Panel
from rich.table import Table

from .. import __version__
from ..config import Settings, get_settings
from ..data.models.migrations import MigrationResult, summarize
from ..data.models.provisioning import Endpoint, ServiceRef
from ..defaults import load_or_bootstrap
from ..dsn import build_endpoint, materialize_dsn
from ..errors import CompositeError, NotInitialized, ProvisionerError
from ..logging_config import configure_logging
from ..migrations.tokenizer import split_statements, strip_meta_commands
from ..provider import DockerStackProvider, RootConfigProvider, get_provider
from ..schemas.stack_v1 import MigrationInfo, RootConfig, load_root_config
from ..secret_store import SecretStore

app = typer.Typer(help="kubexds - local data stack provisioner", no_args_is_help=True)
console = Console()

ConfigOption = typer.Option(
    None, "--config", "-c", help="Path to the stack config (default: <config root>/config.json)"
)


@app.callback()
def setup(
    log_level: Optional[str] = typer.Option(None, help="debug, info, notice, warn, error or fatal"),
    log_format: Optional[str] = typer.Option(None, help="console or json"),
):
    """Configure logging before any command runs."""
    settings = get_settings()
    configure_logging(log_level or settings.log_level, log_format or settings.log_format)


def _load_config(settings: Settings, path: Optional[Path]) -> RootConfig:
    if path is not None:
        return load_root_config(path)
    return load_or_bootstrap(settings.config_file, SecretStore.from_settings(settings))


def _root_provider(settings: Settings) -> RootConfigProvider:
    for name in settings.backend_list():
        factory, found = get_provider(name)
        if not found:
            continue
        provider = factory()
        if isinstance(provider, RootConfigProvider):
            return provider
    raise NotInitialized(f"no provider in {settings.backend_list()} can start a stack config")


def _fail(error: Exception) -> NoReturn:
    console.print(f"❌ {escape(str(error))}", style="red")
    if isinstance(error, CompositeError):
        for name, err in error.errors.items():
            console.print(f"   • {escape(name)}: {escape(str(err))}")
    raise typer.Exit(code=1)


def _endpoint_table(endpoints: Dict[str, Endpoint], title: str = "Endpoints") -> Table:
    table = Table(title=title, show_header=True, header_style="bold magenta")
    table.add_column("Service", style="cyan")
    table.add_column("Host")
    table.add_column("Port", justify="right")
    table.add_column("DSN (redacted)")
    for name in sorted(endpoints):
        endpoint = endpoints[name]
        table.add_row(name, endpoint.host, str(endpoint.port), endpoint.redacted)
    return table


def _results_table(service: str, results: List[MigrationResult]) -> Table:
    table = Table(title=f"Migrations: {service}", show_header=True, header_style="bold cyan")
    table.add_column("File", style="yellow")
    table.add_column("Total", justify="right")
    table.add_column("OK", justify="right", style="green")
    table.add_column("Failed", justify="right", style="red")
    table.add_column("Seconds", justify="right")
    table.add_column("First error")
    for result in results:
        first = ""
        if result.errors:
            err = result.errors[0]
            first = escape(f"line {err.line}: {err.error}")
        table.add_row(
            result.file_name,
            str(result.total),
            str(result.succeeded),
            str(result.failed),
            f"{result.duration:.2f}",
            first,
        )
    return table


@app.command()
def up(config: Optional[Path] = ConfigOption):
    """Start every enabled service, wait for readiness and run migrations."""
    settings = get_settings()
    console.print(Panel.fit("🏗️ Starting data stack", style="bold blue"))
    try:
        root = _load_config(settings, config)
        provider = _root_provider(settings)
        endpoints = asyncio.run(provider.start_services(root))
    except CompositeError as e:
        started = {k: v for k, v in e.completed.items() if isinstance(v, Endpoint)}
        if started:
            console.print(_endpoint_table(started, title="Started"))
        _fail(e)
    except ProvisionerError as e:
        _fail(e)

    console.print(_endpoint_table(endpoints))
    console.print("✅ Stack is up")


@app.command()
def migrate(
    config: Optional[Path] = ConfigOption,
    dry_run: bool = typer.Option(False, "--dry-run", help="Tokenize and count statements only"),
    force: bool = typer.Option(False, "--force", help="Run even if the schema already exists"),
):
    """Run the embedded migrations and print a per-file report."""
    settings = get_settings()
    try:
        root = _load_config(settings, config)
        schema_dbs = [db for db in root.enabled_databases() if db.engine and db.engine.owns_schema]
        if not schema_dbs:
            console.print("No enabled relational service in the config")
            return

        for db in schema_dbs:
            base = root.migration_for(db) or MigrationInfo()
            db.migration = base.model_copy(
                update={"enabled": True, "auto": True, "force": force, "dry_run": dry_run}
            )

        if dry_run:
            provider = DockerStackProvider(settings=settings)
            results = {
                db.name: asyncio.run(provider.run_migrations(db, db.migration))
                for db in schema_dbs
            }
        else:
            provider = _root_provider(settings)
            asyncio.run(provider.start_services(root))
            results = provider.migration_results
    except ProvisionerError as e:
        _fail(e)

    if not any(results.values()):
        console.print("Schema already present; nothing to do (use --force to re-run)")
        return
    for service, service_results in results.items():
        console.print(_results_table(service, service_results))
        totals = summarize(service_results)
        style = "green" if not totals["failed"] else "yellow"
        console.print(
            f"{service}: {totals['succeeded']}/{totals['total']} statements succeeded, "
            f"{totals['failed']} failed",
            style=style,
        )


@app.command()
def down(config: Optional[Path] = ConfigOption):
    """Stop the containers of every enabled service."""
    settings = get_settings()
    try:
        root = _load_config(settings, config)
        provider = _root_provider(settings)
        refs = [
            ServiceRef(name=db.name, engine=db.engine)
            for db in root.enabled_databases()
            if db.engine is not None
        ]
        asyncio.run(provider.stop(refs))
    except ProvisionerError as e:
        _fail(e)
    console.print("🛑 Stack stopped")


@app.command()
def status(config: Optional[Path] = ConfigOption):
    """Show container state and health of each configured service."""
    settings = get_settings()
    try:
        root = _load_config(settings, config)
        provider = _root_provider(settings)
        if isinstance(provider, DockerStackProvider):
            provider.fill_secrets(root)
        rows = asyncio.run(_collect_status(provider, root))
    except ProvisionerError as e:
        _fail(e)

    table = Table(title="Data Stack Status", show_header=True, header_style="bold magenta")
    table.add_column("Service", style="cyan")
    table.add_column("Engine")
    table.add_column("Container")
    table.add_column("Health")
    table.add_column("DSN (redacted)")
    for row in rows:
        table.add_row(*row)
    console.print(table)


async def _collect_status(provider: RootConfigProvider, root: RootConfig) -> List[List[str]]:
    orchestrator = getattr(provider, "orchestrator", None)
    rows = []
    for db in root.enabled_databases():
        if db.engine is None:
            rows.append([db.name, db.type, "-", "unsupported", "-"])
            continue
        state = None
        if orchestrator is not None:
            state = await orchestrator.container_status(db.name)
        materialize_dsn(db)
        endpoint = build_endpoint(db)
        try:
            await provider.health({db.name: endpoint})
            health = "🟢 healthy"
        except CompositeError:
            health = "🔴 unreachable"
        rows.append([db.name, db.engine.value, state or "absent", health, endpoint.redacted])
    return rows


@app.command()
def split(
    path: Path = typer.Argument(..., exists=True, dir_okay=False, help="SQL file to tokenize"),
    full: bool = typer.Option(False, "--full", help="Print whole statements"),
):
    """Split a SQL file into statements and show where each one starts."""
    text = path.read_text(encoding="utf-8")
    statements = split_statements(strip_meta_commands(text))

    table = Table(title=f"{path.name}: {len(statements)} statement(s)", show_header=True)
    table.add_column("#", justify="right")
    table.add_column("Line", justify="right", style="cyan")
    table.add_column("Statement")
    for index, statement in enumerate(statements, start=1):
        shown = statement.text if full else " ".join(statement.text.split())[:80]
        table.add_row(str(index), str(statement.line), escape(shown))
    console.print(table)


@app.command("init-config")
def init_config(
    path: Optional[Path] = typer.Option(None, "--path", help="Where to write the config"),
):
    """Write the default single-postgres config unless one already exists."""
    settings = get_settings()
    target = path or settings.config_file
    existed = target.expanduser().exists()
    try:
        root = load_or_bootstrap(target, SecretStore.from_settings(settings))
    except ProvisionerError as e:
        _fail(e)

    verb = "Loaded existing" if existed else "Created"
    console.print(f"✅ {verb} config at {root.file_path or target}")
    endpoints = {}
    for db in root.enabled_databases():
        if db.engine is not None:
            endpoints[db.name] = build_endpoint(db)
    console.print(_endpoint_table(endpoints, title="Configured services"))


@app.command()
def version():
    """Print the kubexds version."""
    console.print(f"kubexds {__version__}")


def main():
    """Entry point for the CLI."""
    app()


if __name__ == "__main__":
    main()
