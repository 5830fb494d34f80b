"""Command line interface for igdmap.

Every command runs one discovery cycle first, since no state is kept
between invocations.
"""

from __future__ import annotations

import asyncio
from pathlib import Path
from typing import TYPE_CHECKING, Any

import click
from rich.console import Console
from rich.table import Table

from igdmap.config.config import ConfigManager
from igdmap.models import LogLevel
from igdmap.nat.exceptions import (
    DiscoveryError,
    NATError,
    PortAlreadyMappedError,
)
from igdmap.nat.manager import NATManager
from igdmap.utils.exceptions import ConfigurationError
from igdmap.utils.logging_config import setup_logging

if TYPE_CHECKING:  # pragma: no cover
    from igdmap.models import Config


def _run(coro: Any) -> Any:
    """Run a coroutine, turning unexpected failures into click errors."""
    try:
        return asyncio.run(coro)
    except click.ClickException:
        raise
    except NATError as e:
        raise click.ClickException(str(e)) from e


async def _discover(console: Console, config: Config) -> NATManager:
    """Create a manager and bind a gateway, or raise a click error."""
    manager = NATManager(config)
    console.print("[bold]Discovering UPnP gateways...[/bold]")
    try:
        await manager.session.discover()
    except DiscoveryError as e:
        console.print(f"[yellow]✗ {e.message}[/yellow]")
        console.print("  Make sure UPnP is enabled on your router")
        raise click.ClickException(e.message) from e
    return manager


@click.group()
@click.option(
    "--config",
    "config_file",
    type=click.Path(dir_okay=False, path_type=Path),
    default=None,
    help="Path to igdmap.toml",
)
@click.option("-v", "--verbose", count=True, help="Increase verbosity (-v, -vv)")
@click.pass_context
def cli(ctx: click.Context, config_file: Path | None, verbose: int) -> None:
    """Discover UPnP gateways and manage port mappings."""
    try:
        config_manager = ConfigManager(config_file, configure_logging=False)
    except ConfigurationError as e:
        raise click.ClickException(str(e)) from e

    config = config_manager.config
    if verbose >= 2:
        config.observability.log_level = LogLevel.DEBUG
    elif verbose == 1:
        config.observability.log_level = LogLevel.INFO
    elif config.observability.log_level == LogLevel.INFO:
        config.observability.log_level = LogLevel.WARNING
    setup_logging(config.observability)

    ctx.ensure_object(dict)
    ctx.obj["config"] = config


@cli.command("discover")
@click.pass_context
def discover_cmd(ctx: click.Context) -> None:
    """Discover gateways and show the one that would be used."""
    console = Console()
    config = ctx.obj["config"]

    async def _show() -> None:
        manager = await _discover(console, config)
        gateway = manager.session.active_gateway
        console.print("[green]✓ Discovery successful![/green]")

        table = Table(title="Gateways")
        table.add_column("Local Address", style="cyan")
        table.add_column("Friendly Name", style="magenta")
        table.add_column("Model", style="yellow")
        table.add_column("Presentation URL", style="blue")
        table.add_column("Active", style="green")
        for local_address, gw in manager.session.gateways.items():
            table.add_row(
                local_address,
                gw.friendly_name,
                f"{gw.model_name} {gw.model_number}".strip(),
                gw.presentation_url or "",
                "yes" if gw is gateway else "",
            )
        console.print(table)

    _run(_show())


@cli.command("status")
@click.pass_context
def status_cmd(ctx: click.Context) -> None:
    """Show the active gateway and its addresses."""
    console = Console()
    config = ctx.obj["config"]

    async def _show() -> None:
        manager = await _discover(console, config)
        gateway = manager.session.active_gateway
        console.print("[bold]Gateway Status[/bold]\n")
        console.print(f"[green]Gateway:[/green] {gateway.friendly_name}")
        console.print(f"[green]Local Address:[/green] {manager.get_private_address()}")

        external = manager.get_public_address()
        if external:
            console.print(f"[green]External IP:[/green] {external}")
        else:
            console.print("[yellow]External IP:[/yellow] Not available (unsupported)")

        connected = await manager.is_active()
        state = "[green]connected[/green]" if connected else "[red]disconnected[/red]"
        console.print(f"[green]WAN Connection:[/green] {state}")

    _run(_show())


@cli.command("list")
@click.pass_context
def list_cmd(ctx: click.Context) -> None:
    """List port mappings on the active gateway."""
    console = Console()
    config = ctx.obj["config"]

    async def _show() -> None:
        manager = await _discover(console, config)
        mappings = await manager.port_mapper.list_mappings()
        if not mappings:
            console.print("[dim]No port mappings[/dim]")
            return

        table = Table(title="Port Mappings")
        table.add_column("Protocol", style="cyan")
        table.add_column("External Port", style="yellow")
        table.add_column("Internal", style="magenta")
        table.add_column("Description", style="green")
        table.add_column("Enabled", style="blue")
        for entry in mappings:
            table.add_row(
                entry.protocol,
                str(entry.external_port),
                f"{entry.internal_client}:{entry.internal_port}",
                entry.description,
                "yes" if entry.enabled else "no",
            )
        console.print(table)

    _run(_show())


@cli.command("map")
@click.argument("port", type=click.IntRange(1, 65535))
@click.option(
    "--protocol",
    type=click.Choice(["tcp", "udp"], case_sensitive=False),
    default="tcp",
    help="Protocol (tcp or udp)",
)
@click.pass_context
def map_cmd(ctx: click.Context, port: int, protocol: str) -> None:
    """Forward external PORT to the same port on this host."""
    console = Console()
    config = ctx.obj["config"]

    async def _map() -> None:
        manager = await _discover(console, config)
        console.print(f"[bold]Mapping {protocol.upper()} port {port}...[/bold]")
        try:
            entry = await manager.port_mapper.map_port(port, protocol)
        except PortAlreadyMappedError as e:
            console.print(f"[yellow]✗ Port {port} is already mapped[/yellow]")
            if e.entry is not None:
                console.print(
                    f"  Existing: {e.entry.internal_client}:{e.entry.internal_port}"
                    f" ({e.entry.description})"
                )
            raise click.ClickException(e.message) from e

        console.print("[green]✓ Port mapping successful![/green]")
        console.print(f"  External: {manager.get_public_address() or '?'}:{entry.external_port}")
        console.print(f"  Internal: {entry.internal_client}:{entry.internal_port}")
        console.print(f"  Protocol: {entry.protocol}")

    _run(_map())


@cli.command("unmap")
@click.argument("port", type=click.IntRange(1, 65535))
@click.option(
    "--protocol",
    type=click.Choice(["tcp", "udp"], case_sensitive=False),
    default="tcp",
    help="Protocol (tcp or udp)",
)
@click.pass_context
def unmap_cmd(ctx: click.Context, port: int, protocol: str) -> None:
    """Remove the mapping for external PORT."""
    console = Console()
    config = ctx.obj["config"]

    async def _unmap() -> None:
        manager = await _discover(console, config)
        console.print(
            f"[bold]Removing {protocol.upper()} port mapping for port {port}...[/bold]"
        )
        await manager.port_mapper.remove_port(port, protocol)
        console.print("[green]✓ Port mapping removed[/green]")

    _run(_unmap())


def main() -> None:
    """Console script entry point."""
    cli(obj={})
