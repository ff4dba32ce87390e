"""Command line interface for managing gateway port mappings."""

from __future__ import annotations

import asyncio
import logging
from collections.abc import AsyncIterator, Awaitable, Callable
from contextlib import asynccontextmanager

import click
from rich.console import Console
from rich.table import Table

from igdnat.config import ConfigManager
from igdnat.logging_config import LoggingContext, log_exception
from igdnat.nat.exceptions import DiscoveryParseError, MappingError
from igdnat.nat.locator import parse_location_url
from igdnat.nat.manager import DeviceManager
from igdnat.nat.mapping import Mapping, Protocol
from igdnat.nat.session import MappingSession

logger = logging.getLogger(__name__)

PROTOCOL_CHOICE = click.Choice(["tcp", "udp"], case_sensitive=False)

NOT_RESOLVED_MSG = (
    "Device at {url} does not expose a WANIPConnection service "
    "(or its description could not be fetched)"
)


@click.group()
@click.option(
    "--location",
    "-l",
    required=True,
    envvar="IGDNAT_LOCATION",
    help="Device description URL, e.g. http://192.168.1.1:2869/desc.xml",
)
@click.option(
    "--config",
    "config_file",
    type=click.Path(dir_okay=False),
    default=None,
    help="Path to igdnat.toml",
)
@click.pass_context
def cli(ctx, location: str, config_file: str | None) -> None:
    """Manage UPnP IGD port mappings on a gateway."""
    ctx.ensure_object(dict)
    ctx.obj["location"] = location
    ctx.obj["config"] = ConfigManager(config_file).config


@asynccontextmanager
async def _open_session(ctx) -> AsyncIterator[MappingSession]:
    """Resolve the gateway named by ``--location`` and yield a session."""
    location = ctx.obj["location"]
    try:
        device = parse_location_url(location)
    except DiscoveryParseError as e:
        raise click.BadParameter(str(e), param_hint="--location") from e

    manager = DeviceManager.from_config(ctx.obj["config"])
    try:
        resolved = await manager.resolver.resolve(device, lambda _: None)
        if not resolved:
            raise click.ClickException(NOT_RESOLVED_MSG.format(url=location))
        yield manager.session_for(device)
    finally:
        await manager.close()


def _run(
    ctx, console: Console, operation: str, helper: Callable[[], Awaitable[None]]
) -> None:
    try:
        with LoggingContext(operation, gateway=ctx.obj["location"]):
            asyncio.run(helper())
    except click.ClickException:
        raise
    except MappingError as e:
        console.print(f"[red]UPnP error {e.code}: {e.description}[/red]")
        raise click.ClickException(str(e)) from e
    except Exception as e:  # pragma: no cover - CLI error handler
        log_exception(logger, e, operation)
        console.print(f"[red]Error: {e}[/red]")
        raise click.ClickException(str(e)) from e


def _mapping_table(mappings: list[Mapping]) -> Table:
    table = Table()
    table.add_column("Protocol", style="cyan")
    table.add_column("External Port", style="yellow")
    table.add_column("Internal Host", style="green")
    table.add_column("Internal Port", style="magenta")
    table.add_column("Description")
    table.add_column("Lease", style="blue")
    for mapping in mappings:
        table.add_row(
            mapping.protocol.value,
            str(mapping.external_port),
            mapping.internal_host or "-",
            str(mapping.local_port),
            mapping.description,
            f"{mapping.lease}s" if mapping.lease else "Permanent",
        )
    return table


@cli.command("resolve")
@click.pass_context
def resolve_cmd(ctx) -> None:
    """Resolve the gateway's control endpoint."""
    console = Console()

    async def _resolve() -> None:
        async with _open_session(ctx) as session:
            console.print(f"[green]Gateway:[/green] {session.device.host_endpoint}")
            console.print(f"[green]Control URL:[/green] {session.device.control_url}")

    _run(ctx, console, "resolve", _resolve)


@cli.command("external-ip")
@click.pass_context
def external_ip_cmd(ctx) -> None:
    """Show the gateway's external IP address."""
    console = Console()

    async def _external_ip() -> None:
        async with _open_session(ctx) as session:
            address = await session.get_external_ip()
            console.print(f"[green]External IP:[/green] {address}")

    _run(ctx, console, "external-ip", _external_ip)


@cli.command("list")
@click.pass_context
def list_cmd(ctx) -> None:
    """List every port mapping on the gateway."""
    console = Console()

    async def _list() -> None:
        async with _open_session(ctx) as session:
            mappings = await session.get_all_mappings()
            if not mappings:
                console.print("[dim]No port mappings[/dim]")
                return
            console.print(_mapping_table(mappings))

    _run(ctx, console, "list", _list)


@cli.command("lookup")
@click.argument("port", type=click.IntRange(0, 65535))
@click.argument("protocol", type=PROTOCOL_CHOICE)
@click.pass_context
def lookup_cmd(ctx, port: int, protocol: str) -> None:
    """Show the mapping for PORT and PROTOCOL."""
    console = Console()

    async def _lookup() -> None:
        async with _open_session(ctx) as session:
            mapping = await session.get_specific_mapping(port, protocol)
            if not mapping.found:
                console.print(
                    f"[yellow]No mapping for {protocol.upper()} port {port}[/yellow]"
                )
                return
            console.print(_mapping_table([mapping]))

    _run(ctx, console, "lookup", _lookup)


@cli.command("map")
@click.argument("port", type=click.IntRange(0, 65535))
@click.argument("protocol", type=PROTOCOL_CHOICE)
@click.option(
    "--internal-port",
    type=click.IntRange(0, 65535),
    default=None,
    help="Internal port (defaults to the external port)",
)
@click.option("--host", "internal_host", default="", help="Internal client address")
@click.option("--description", default=None, help="Mapping description")
@click.option(
    "--lease", type=click.IntRange(min=0), default=None, help="Lease in seconds (0 for permanent)"
)
@click.pass_context
def map_cmd(
    ctx,
    port: int,
    protocol: str,
    internal_port: int | None,
    internal_host: str,
    description: str | None,
    lease: int | None,
) -> None:
    """Map external PORT/PROTOCOL to this machine."""
    console = Console()
    upnp = ctx.obj["config"].upnp
    mapping = Mapping(
        external_port=port,
        protocol=Protocol.parse(protocol),
        internal_port=internal_port,
        internal_host=internal_host,
        description=description if description is not None else upnp.default_description,
        lease=lease if lease is not None else upnp.default_lease,
    )

    async def _map() -> None:
        async with _open_session(ctx) as session:
            await session.create_mapping(mapping)
            console.print(
                f"[green]Mapped {mapping.protocol.value} port {mapping.external_port} "
                f"-> {mapping.local_port}[/green]"
            )

    _run(ctx, console, "map", _map)


@cli.command("unmap")
@click.argument("port", type=click.IntRange(0, 65535))
@click.argument("protocol", type=PROTOCOL_CHOICE)
@click.pass_context
def unmap_cmd(ctx, port: int, protocol: str) -> None:
    """Remove the mapping for PORT and PROTOCOL."""
    console = Console()
    mapping = Mapping(external_port=port, protocol=Protocol.parse(protocol))

    async def _unmap() -> None:
        async with _open_session(ctx) as session:
            await session.delete_mapping(mapping)
            console.print(f"[green]Removed {mapping.protocol.value} port {port}[/green]")

    _run(ctx, console, "unmap", _unmap)


def main() -> None:
    cli(obj={})
