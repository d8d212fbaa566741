"""
Command-line interface for ipset-manager.
"""

import asyncio
import json
import sys
from contextlib import contextmanager
from pathlib import Path
from typing import Any, Callable, Dict, List, Optional

import typer
import uvicorn
import yaml
from rich.console import Console
from rich.table import Table

from . import __version__
from .client import ApiClient, ApiError
from .codec.generator import GROUP_BY_SET
from .codec.parser import parse_file, parse_stream
from .core.config import AppConfig
from .core.errors import IpsetManagerError, SourceUnavailableError
from .core.logging_config import get_logger, log_error, log_success, log_warning, setup_logging
from .core.records import Record
from .core.token import TokenManager
from .devices.linux_ipset import LinuxIpset
from .importer.engine import DEFAULT_LOCATIONS, ETC_IPSET, collect_from_locations, group_by_set
from .server.api import create_app
from .server.auth import AuthManager, FileKeyStore

console = Console()
logger = get_logger(__name__)

OUTPUT_FORMATS = ("table", "json", "yaml")

app = typer.Typer(
    help="ipset-manager - numbered ipset records behind a REST API",
    no_args_is_help=True,
)
records_app = typer.Typer(help="Manage individual records", no_args_is_help=True)
sets_app = typer.Typer(help="Inspect and export sets", no_args_is_help=True)
import_app = typer.Typer(help="Import rules from various sources", no_args_is_help=True)
app.add_typer(records_app, name="records")
app.add_typer(sets_app, name="sets")
app.add_typer(import_app, name="import")


class CliState:
    """Configuration and session shared by every command of one invocation."""

    def __init__(self, config: AppConfig, token_manager: TokenManager):
        self.config = config
        self.token_manager = token_manager

    def default_api_url(self) -> str:
        session = self.token_manager.get_api_url()
        if self.token_manager.get_token():
            return session
        return f"http://{self.config.server.host}:{self.config.server.port}"

    def client(self) -> ApiClient:
        token = self.token_manager.get_token()
        if not token:
            console.print(
                "[yellow]Not authenticated. Run 'ipset-manager login' first.[/yellow]"
            )
            raise typer.Exit(1)
        return ApiClient(self.token_manager.get_api_url(), token)


def version_callback(value: bool):
    if value:
        console.print(f"ipset-manager version {__version__}")
        raise typer.Exit()


@app.callback()
def main_callback(
    ctx: typer.Context,
    config_file: Optional[Path] = typer.Option(
        None, "--config", envvar="IPSET_MANAGER_CONFIG", help="Path to config.yaml"
    ),
    session_dir: Optional[Path] = typer.Option(
        None,
        "--session-dir",
        envvar="IPSET_MANAGER_HOME",
        help="Directory holding the login session [default: ~/.ipset-manager]",
    ),
    verbose: int = typer.Option(
        0, "-v", "--verbose", count=True, help="Increase verbosity (-v, -vv)"
    ),
    version: bool = typer.Option(
        False,
        "--version",
        callback=version_callback,
        is_eager=True,
        help="Show version information",
    ),
):
    """
    ipset-manager - numbered ipset records behind a REST API
    """
    setup_logging(min(verbose, 2))
    ctx.obj = CliState(AppConfig.load_from_file(config_file), TokenManager(session_dir))


@contextmanager
def api_errors():
    """Turn API failures into a red message and exit code 1."""
    try:
        yield
    except ApiError as e:
        log_error(str(e), logger)
        console.print(f"[red]✗ {e.message}[/red]")
        if e.status_code == 401:
            console.print("[yellow]Run 'ipset-manager login' to authenticate.[/yellow]")
        raise typer.Exit(1)


def check_output(output: str) -> str:
    if output not in OUTPUT_FORMATS:
        console.print(f"[red]Output must be one of: {', '.join(OUTPUT_FORMATS)}[/red]")
        raise typer.Exit(1)
    return output


def emit(data: Any, output: str, render_table: Callable[[], None]) -> None:
    if output == "json":
        typer.echo(json.dumps(data, indent=2, default=str))
    elif output == "yaml":
        typer.echo(yaml.safe_dump(data, sort_keys=False, default_flow_style=False))
    else:
        render_table()


def records_table(records: List[Record], title: Optional[str] = None) -> Table:
    table = Table(title=title)
    table.add_column("ID", style="cyan")
    table.add_column("Set", style="magenta")
    table.add_column("Entry", style="white")
    table.add_column("Context", style="green")
    table.add_column("Description", style="dim")

    for record in records:
        table.add_row(
            str(record.id),
            record.set_name or "-",
            record.entry,
            record.context,
            record.description,
        )
    return table


def show_records(records: List[Record], output: str, title: Optional[str] = None) -> None:
    emit(
        [r.model_dump(mode="json") for r in records],
        output,
        lambda: console.print(records_table(records, title)),
    )


def record_fields(**fields: Any) -> Dict[str, Any]:
    """Drop options that were not given."""
    return {name: value for name, value in fields.items() if value not in (None, "", 0)}


def make_device(
    host: Optional[str],
    username: Optional[str],
    password: Optional[str],
    private_key: Optional[str],
    port: int,
    sudo: bool,
) -> LinuxIpset:
    return LinuxIpset(
        host=host,
        username=username,
        password=password,
        private_key=private_key,
        port=port,
        use_sudo=sudo,
    )


async def read_device_records(device: LinuxIpset, set_name: Optional[str]) -> List[Record]:
    if not await device.connect():
        raise SourceUnavailableError(str(device), "connection failed")
    try:
        return await device.read_records(set_name)
    finally:
        await device.disconnect()


async def restore_on_device(device: LinuxIpset, text: str, dry_run: bool):
    if dry_run:
        return await device.restore(text, dry_run=True)
    if not await device.connect():
        raise SourceUnavailableError(str(device), "connection failed")
    try:
        return await device.restore(text, dry_run=False)
    finally:
        await device.disconnect()


# Authentication


@app.command()
def login(
    ctx: typer.Context,
    api_key: str = typer.Option(
        ..., "--api-key", prompt=True, hide_input=True, help="API key issued by generate-key"
    ),
    api_url: Optional[str] = typer.Option(None, "--api-url", help="API server URL"),
):
    """Exchange an API key for a bearer token and store it."""
    state: CliState = ctx.obj
    api_url = api_url or state.default_api_url()
    client = ApiClient(api_url)

    with api_errors():
        token = client.login(api_key)

    state.token_manager.save_token(token, api_url)
    log_success(f"Logged in to {api_url}", logger)
    console.print("[bold green]✓ Login successful[/bold green]")
    console.print(f"[dim]Token saved to {state.token_manager.session_file}[/dim]")


@app.command()
def logout(ctx: typer.Context):
    """Remove stored authentication token."""
    ctx.obj.token_manager.clear_token()
    console.print("[green]✓ Logged out successfully[/green]")


@app.command()
def whoami(ctx: typer.Context):
    """Display current authentication status."""
    state: CliState = ctx.obj
    token = state.token_manager.get_token()
    if not token:
        console.print("[yellow]Not authenticated. Run 'ipset-manager login' to authenticate.[/yellow]")
        raise typer.Exit(1)

    console.print("[bold]Authentication Status:[/bold]")
    console.print(f"  API URL: [cyan]{state.token_manager.get_api_url()}[/cyan]")
    console.print(f"  Token: [green]{'*' * 20}{token[-8:]}[/green]")
    console.print(f"  Session: [dim]{state.token_manager.session_file}[/dim]")


@app.command("generate-key")
def generate_key(ctx: typer.Context):
    """Issue a new API key into the configured key file."""
    config: AppConfig = ctx.obj.config
    try:
        manager = AuthManager(
            FileKeyStore(config.auth.keys_file),
            config.auth.jwt_secret,
            key_ttl_days=config.auth.key_ttl_days,
        )
        auth_key = manager.generate_key()
    except IpsetManagerError as e:
        console.print(f"[red]✗ Failed to generate key: {e}[/red]")
        raise typer.Exit(1)

    console.print(f"Generated API Key: [bold green]{auth_key.key}[/bold green]")
    console.print(f"Expires at: {auth_key.expires_at.isoformat()}")


@app.command()
def serve(
    ctx: typer.Context,
    host: Optional[str] = typer.Option(None, "--host", help="Bind address"),
    port: Optional[int] = typer.Option(None, "--port", help="Listen port"),
):
    """Run the HTTP API server."""
    config: AppConfig = ctx.obj.config
    host = host or config.server.host
    port = port or config.server.port

    try:
        api = create_app(config)
    except IpsetManagerError as e:
        console.print(f"[red]✗ Cannot start server: {e}[/red]")
        raise typer.Exit(1)

    console.print(
        f"[bold blue]Serving {config.storage.backend.value} store on http://{host}:{port}[/bold blue]"
    )
    uvicorn.run(api, host=host, port=port)


# Records


@records_app.command("list")
def records_list(
    ctx: typer.Context,
    output: str = typer.Option("table", "--output", "-o", help="table, json or yaml"),
):
    """List every record."""
    check_output(output)
    with api_errors():
        records = ctx.obj.client().list_records()
    show_records(records, output, title=f"{len(records)} records")


@records_app.command("get")
def records_get(
    ctx: typer.Context,
    record_id: int = typer.Argument(..., help="6-digit record id"),
    output: str = typer.Option("table", "--output", "-o", help="table, json or yaml"),
):
    """Show one record."""
    check_output(output)
    with api_errors():
        record = ctx.obj.client().get_record(record_id)
    show_records([record], output)


@records_app.command("create")
def records_create(
    ctx: typer.Context,
    ip: str = typer.Option(..., "--ip", help="IP address"),
    context: str = typer.Option(..., "--context", help="Context label"),
    set_name: str = typer.Option("", "--set", help="Set name"),
    cidr: str = typer.Option("", "--cidr", help="Prefix length"),
    port: int = typer.Option(0, "--port", min=0, max=65535, help="Port"),
    protocol: str = typer.Option("", "--protocol", help="tcp or udp"),
    description: str = typer.Option("", "--description", help="Free text"),
    set_type: str = typer.Option("", "--set-type", help="ipset type, e.g. hash:ip,port"),
    set_options: str = typer.Option("", "--set-options", help="ipset create options"),
):
    """Create a record."""
    fields = record_fields(
        ip=ip,
        context=context,
        set_name=set_name,
        cidr=cidr,
        port=port,
        protocol=protocol,
        description=description,
        set_type=set_type,
        set_options=set_options,
    )
    with api_errors():
        record = ctx.obj.client().create_record(fields)
    console.print(f"[green]✓ Created record {record.id}[/green] {record.entry}")


@records_app.command("update")
def records_update(
    ctx: typer.Context,
    record_id: int = typer.Argument(..., help="6-digit record id"),
    ip: str = typer.Option("", "--ip"),
    context: str = typer.Option("", "--context"),
    set_name: str = typer.Option("", "--set"),
    cidr: str = typer.Option("", "--cidr"),
    port: int = typer.Option(0, "--port", min=0, max=65535),
    protocol: str = typer.Option("", "--protocol"),
    description: str = typer.Option("", "--description"),
    set_type: str = typer.Option("", "--set-type"),
    set_options: str = typer.Option("", "--set-options"),
):
    """Update the given fields of a record."""
    fields = record_fields(
        ip=ip,
        context=context,
        set_name=set_name,
        cidr=cidr,
        port=port,
        protocol=protocol,
        description=description,
        set_type=set_type,
        set_options=set_options,
    )
    if not fields:
        console.print("[yellow]Nothing to update[/yellow]")
        raise typer.Exit(1)

    with api_errors():
        record = ctx.obj.client().update_record(record_id, fields)
    console.print(f"[green]✓ Updated record {record.id}[/green] {record.entry}")


@records_app.command("delete")
def records_delete(
    ctx: typer.Context,
    record_id: int = typer.Argument(..., help="6-digit record id"),
):
    """Delete a record and free its id."""
    with api_errors():
        ctx.obj.client().delete_record(record_id)
    console.print(f"[green]✓ Deleted record {record_id}[/green]")


@records_app.command("search")
def records_search(
    ctx: typer.Context,
    query: str = typer.Argument(..., help="Case-insensitive search text"),
    output: str = typer.Option("table", "--output", "-o", help="table, json or yaml"),
):
    """Search context, description, ip and set name."""
    check_output(output)
    with api_errors():
        records = ctx.obj.client().search(query)
    show_records(records, output, title=f"{len(records)} matches for '{query}'")


# Sets


@sets_app.command("list")
def sets_list(
    ctx: typer.Context,
    output: str = typer.Option("table", "--output", "-o", help="table, json or yaml"),
):
    """List sets with their record counts."""
    check_output(output)
    with api_errors():
        sets = ctx.obj.client().list_sets()

    def render():
        table = Table(title=f"{len(sets)} sets")
        table.add_column("Name", style="cyan")
        table.add_column("Type", style="magenta")
        table.add_column("Options", style="dim")
        table.add_column("Records", style="white", justify="right")
        table.add_column("Updated", style="dim")
        for item in sets:
            table.add_row(
                item["name"] or "-",
                item["type"],
                item["options"],
                str(item["record_count"]),
                str(item.get("updated_at") or ""),
            )
        console.print(table)

    emit(sets, output, render)


@sets_app.command("get")
def sets_get(
    ctx: typer.Context,
    name: str = typer.Argument(..., help="Set name"),
    output: str = typer.Option("table", "--output", "-o", help="table, json or yaml"),
):
    """Show a set and its records."""
    check_output(output)
    with api_errors():
        ipset = ctx.obj.client().get_set(name)

    def render():
        console.print(f"[bold]Set:[/bold] {ipset['name']}")
        console.print(f"  Type: {ipset['type'] or '-'}")
        if ipset["options"]:
            console.print(f"  Options: {ipset['options']}")
        records = [Record.model_validate(r) for r in ipset["records"]]
        console.print(records_table(records, title=f"{len(records)} records"))

    emit(ipset, output, render)


@sets_app.command("delete")
def sets_delete(
    ctx: typer.Context,
    name: str = typer.Argument(..., help="Set name"),
    yes: bool = typer.Option(False, "--yes", "-y", help="Do not ask for confirmation"),
):
    """Delete every record of a set."""
    if not yes:
        typer.confirm(f"Delete all records of set '{name}'?", abort=True)
    with api_errors():
        deleted = ctx.obj.client().delete_set(name)
    console.print(f"[green]✓ Deleted set {name} ({deleted} records)[/green]")


@sets_app.command("export")
def sets_export(
    ctx: typer.Context,
    name: str = typer.Argument(..., help="Set name"),
    fmt: str = typer.Option("ipset", "--format", "-f", help="ipset, json or yaml"),
    output_file: Optional[Path] = typer.Option(None, "--output-file", help="Write to file"),
):
    """Export one set."""
    with api_errors():
        text = ctx.obj.client().export_set(name, fmt)
    write_or_echo(text, output_file)


# Import


def show_dry_run(records: List[Record]) -> None:
    console.print("\n[bold yellow]DRY RUN - Sets that would be imported:[/bold yellow]")
    for set_name, members in group_by_set(records).items():
        console.print(f"\n[bold]=== Set: {set_name or '-'} ===[/bold]")
        console.print(f"  Type: {members[0].set_type}")
        if members[0].set_options:
            console.print(f"  Options: {members[0].set_options}")
        console.print(f"  Rules: {len(members)}")
        for index, record in enumerate(members, 1):
            console.print(f"    {index}. {record.entry}")


def show_import_report(report: Dict[str, Any]) -> None:
    table = Table(title="Import results")
    table.add_column("Set", style="cyan")
    table.add_column("Succeeded", style="green", justify="right")
    table.add_column("Failed", style="red", justify="right")
    for result in report["sets"]:
        table.add_row(result["set_name"] or "-", str(result["succeeded"]), str(result["failed"]))
    console.print(table)

    for result in report["sets"]:
        for failure in result["failures"]:
            console.print(f"  [red]✗ {result['set_name']}: {failure['entry']} - {failure['error']}[/red]")

    console.print(
        f"\nImport completed: {report['total_succeeded']} successful, "
        f"{report['total_failed']} failed across {len(report['sets'])} sets"
    )


def run_import(
    state: CliState, records: List[Record], context_prefix: Optional[str], dry_run: bool
) -> None:
    if not records:
        console.print("No rules to import")
        return

    console.print(
        f"Found {len(records)} rules in {len(group_by_set(records))} sets to import"
    )
    if dry_run:
        show_dry_run(records)
        return

    with api_errors():
        report = state.client().import_records(records, context_prefix=context_prefix)
    show_import_report(report)
    if report["total_succeeded"]:
        log_success(f"Imported {report['total_succeeded']} records", logger)


@import_app.command("file")
def import_file(
    ctx: typer.Context,
    path: Path = typer.Argument(..., help="ipset save file"),
    context_prefix: str = typer.Option("imported", "--context-prefix", "-p"),
    dry_run: bool = typer.Option(False, "--dry-run", "-d", help="Show what would be imported"),
):
    """Import rules from an ipset save file."""
    try:
        records = list(parse_file(path))
    except SourceUnavailableError as e:
        console.print(f"[red]Error parsing file: {e}[/red]")
        raise typer.Exit(1)
    run_import(ctx.obj, records, context_prefix, dry_run)


@import_app.command("stdin")
def import_stdin(
    ctx: typer.Context,
    context_prefix: str = typer.Option("stdin", "--context-prefix", "-p"),
    dry_run: bool = typer.Option(False, "--dry-run", "-d", help="Show what would be imported"),
):
    """Import rules piped on stdin."""
    if sys.stdin.isatty():
        console.print(
            "No data on stdin. Pipe data to stdin or use 'ipset-manager import file'"
        )
        raise typer.Exit(1)
    try:
        records = list(parse_stream(sys.stdin, "stdin"))
    except SourceUnavailableError as e:
        console.print(f"[red]Error reading stdin: {e}[/red]")
        raise typer.Exit(1)
    console.print("Importing from stdin")
    run_import(ctx.obj, records, context_prefix, dry_run)


@import_app.command("etc")
def import_etc(
    ctx: typer.Context,
    context_prefix: str = typer.Option("etc", "--context-prefix", "-p"),
    dry_run: bool = typer.Option(False, "--dry-run", "-d", help="Show what would be imported"),
):
    """Import rules from /etc/ipset."""
    if not Path(ETC_IPSET).exists():
        console.print(f"File {ETC_IPSET} does not exist")
        raise typer.Exit(1)
    records, _ = collect_from_locations([ETC_IPSET])
    console.print(f"Importing from {ETC_IPSET}")
    run_import(ctx.obj, records, context_prefix, dry_run)


@import_app.command("system")
def import_system(
    ctx: typer.Context,
    set_name: Optional[str] = typer.Argument(None, help="Only this set"),
    context_prefix: str = typer.Option("system", "--context-prefix", "-p"),
    dry_run: bool = typer.Option(False, "--dry-run", "-d", help="Show what would be imported"),
    host: Optional[str] = typer.Option(None, "--host", help="Remote host (default: this machine)"),
    username: Optional[str] = typer.Option(None, "--username", help="SSH username"),
    password: Optional[str] = typer.Option(None, "--password", help="SSH password"),
    private_key: Optional[str] = typer.Option(None, "--private-key", help="SSH private key file"),
    ssh_port: int = typer.Option(22, "--ssh-port", help="SSH port"),
    sudo: bool = typer.Option(False, "--sudo", help="Run ipset through sudo"),
):
    """Import rules from the running ipset sets."""
    device = make_device(host, username, password, private_key, ssh_port, sudo)
    try:
        records = asyncio.run(read_device_records(device, set_name))
    except SourceUnavailableError as e:
        console.print(f"[red]Error getting ipset rules: {e}[/red]")
        raise typer.Exit(1)
    console.print(f"Importing from running ipset on {device}")
    run_import(ctx.obj, records, context_prefix, dry_run)


@import_app.command("all")
def import_all(
    ctx: typer.Context,
    dry_run: bool = typer.Option(False, "--dry-run", "-d", help="Show what would be imported"),
):
    """Import from /etc, the common rule files and the running system."""
    records, sources = collect_from_locations(DEFAULT_LOCATIONS)

    device = LinuxIpset()
    if asyncio.run(device.is_available()):
        try:
            live = asyncio.run(read_device_records(device, None))
        except SourceUnavailableError as e:
            log_warning(f"Skipping running system: {e}", logger)
        else:
            if live:
                records.extend(live)
                sources.append("running system")

    if not records:
        console.print("No rules found in any source")
        return

    console.print(f"Found {len(records)} rules from sources: {', '.join(sources)}")
    run_import(ctx.obj, records, "imported", dry_run)


# Export and apply


def write_or_echo(text: str, output_file: Optional[Path]) -> None:
    if output_file:
        output_file.write_text(text)
        console.print(f"✓ Written to {output_file}")
    else:
        typer.echo(text, nl=False)


@app.command()
def export(
    ctx: typer.Context,
    group_by: str = typer.Option(GROUP_BY_SET, "--group-by", help="set or protocol"),
    script: bool = typer.Option(False, "--script", help="Render a bash script"),
    output_file: Optional[Path] = typer.Option(None, "--output-file", help="Write to file"),
):
    """Export all records as ipset restore text or a script."""
    with api_errors():
        text = ctx.obj.client().export(group_by=group_by, script=script)
    write_or_echo(text, output_file)


@app.command()
def apply(
    ctx: typer.Context,
    set_name: Optional[str] = typer.Option(None, "--set", help="Only this set"),
    dry_run: bool = typer.Option(
        True, "--dry-run/--no-dry-run", help="Perform dry run without making changes"
    ),
    host: Optional[str] = typer.Option(None, "--host", help="Remote host (default: this machine)"),
    username: Optional[str] = typer.Option(None, "--username", help="SSH username"),
    password: Optional[str] = typer.Option(None, "--password", help="SSH password"),
    private_key: Optional[str] = typer.Option(None, "--private-key", help="SSH private key file"),
    ssh_port: int = typer.Option(22, "--ssh-port", help="SSH port"),
    sudo: bool = typer.Option(False, "--sudo", help="Run ipset through sudo"),
):
    """Load stored records into a live ipset with 'ipset restore'."""
    client = ctx.obj.client()
    with api_errors():
        text = client.export_set(set_name) if set_name else client.export()

    device = make_device(host, username, password, private_key, ssh_port, sudo)
    try:
        result = asyncio.run(restore_on_device(device, text, dry_run))
    except SourceUnavailableError as e:
        console.print(f"[red]✗ {e}[/red]")
        raise typer.Exit(1)

    if dry_run:
        console.print("[bold yellow]DRY RUN - nothing was changed[/bold yellow]")
        typer.echo(result.output)
        return

    if not result.success:
        console.print(f"[red]✗ ipset restore failed: {result.error}[/red]")
        raise typer.Exit(1)
    console.print(f"[green]✓ Applied to {device}[/green]")


def main():
    """Main CLI entry point."""
    app()


if __name__ == "__main__":
    main()
