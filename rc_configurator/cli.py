"""Thin CLI wrapper for rc_configurator.

This module provides the command-line interface using Typer.
All business logic is delegated to core modules through Services.
"""

import asyncio
import json
import logging
import shutil
from pathlib import Path
from typing import TYPE_CHECKING, Annotated, Any

import typer
from rich.console import Console

from rc_configurator import __version__
from rc_configurator.config import Settings, get_settings, print_settings_json

if TYPE_CHECKING:
    from rc_configurator.events.models import BuildStateChanged
    from rc_configurator.firmware.models import FirmwareSource
    from rc_configurator.services import Services

app = typer.Typer(
    name="rcconf",
    help="RC Configurator - build firmware, discover devices, monitor serial output",
    no_args_is_help=True,
)
console = Console()


def version_callback(value: bool) -> None:
    """Print version and exit."""
    if value:
        console.print(f"rc-configurator version {__version__}")
        raise typer.Exit()


def _print_json(data: Any) -> None:
    console.print(json.dumps(data, indent=2), soft_wrap=True, markup=False)


def _services(settings: Settings | None = None) -> "Services":
    from rc_configurator.devices.registry import LoadError
    from rc_configurator.services import build_services

    try:
        return build_services(settings)
    except LoadError as e:
        console.print(f"[red]Failed to load device catalog: {e}[/red]")
        raise typer.Exit(code=1) from None


def parse_define(value: str) -> tuple[str, str | bool]:
    """Parse a ``-D`` option: ``KEY=VALUE`` or bare ``KEY`` (enabled)."""
    key, sep, raw = value.partition("=")
    key = key.strip()
    if not key:
        raise typer.BadParameter(f"Invalid define: {value!r}")
    return (key, raw) if sep else (key, True)


TagOption = Annotated[
    str | None, typer.Option("--tag", help="Firmware release tag, e.g. 3.4.0")
]
BranchOption = Annotated[str | None, typer.Option("--branch", help="Firmware branch")]
CommitOption = Annotated[str | None, typer.Option("--commit", help="Firmware commit hash")]
LocalOption = Annotated[
    Path | None, typer.Option("--local", help="Local firmware source tree")
]


def firmware_source(
    tag: str | None = None,
    branch: str | None = None,
    commit: str | None = None,
    local: Path | None = None,
) -> "FirmwareSource | None":
    """Turn the firmware version options into a FirmwareSource.

    At most one option may be given; None means the configured default.
    """
    from rc_configurator.firmware.models import FirmwareSource

    given = [
        (name, value)
        for name, value in (
            ("--tag", tag),
            ("--branch", branch),
            ("--commit", commit),
            ("--local", local),
        )
        if value is not None
    ]
    if len(given) > 1:
        raise typer.BadParameter(
            f"Options {' and '.join(name for name, _ in given)} are mutually exclusive"
        )
    if tag is not None:
        return FirmwareSource.tag(tag)
    if branch is not None:
        return FirmwareSource.branch(branch)
    if commit is not None:
        return FirmwareSource.commit(commit)
    if local is not None:
        return FirmwareSource.local(local.resolve())
    return None


@app.callback()
def main(
    version: Annotated[
        bool | None,
        typer.Option(
            "--version",
            "-V",
            help="Show version and exit",
            callback=version_callback,
            is_eager=True,
        ),
    ] = None,
) -> None:
    """RC Configurator - build firmware, discover devices, monitor serial output."""
    logging.basicConfig(
        level=get_settings().log_level,
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )


@app.command()
def config(
    json_output: Annotated[
        bool,
        typer.Option("--json", help="Output as JSON"),
    ] = False,
) -> None:
    """Show effective configuration."""
    settings = get_settings()
    if json_output:
        console.print(print_settings_json(settings), soft_wrap=True, markup=False)
        return

    console.print("[bold]Effective Configuration:[/bold]")
    console.print()
    console.print("[bold]Paths:[/bold]")
    console.print(f"  Device catalog:      {settings.devices_path}")
    console.print(f"  Firmware directory:  {settings.firmware_dir}")
    console.print(f"  PlatformIO:          {settings.platformio_path}")
    console.print()
    console.print("[bold]Firmware versions:[/bold]")
    console.print(f"  Repository:          {settings.firmware_repository}")
    console.print(f"  Checkouts:           {settings.firmwares_dir}")
    console.print(f"  Project directory:   {settings.firmware_project_dir}")
    console.print()
    console.print("[bold]Targets loader:[/bold]")
    console.print(f"  Backend:             {settings.targets_loader}")
    console.print(f"  Default ref:         {settings.targets_ref}")
    if settings.targets_loader == "git":
        console.print(f"  Repository:          {settings.targets_repository}")
        console.print(f"  Cache directory:     {settings.targets_cache_dir}")
    else:
        console.print(f"  Endpoint:            {settings.targets_endpoint}")
    console.print()
    console.print("[bold]Configuration source:[/bold]")
    console.print(f"  Backend:             {settings.config_source}")
    if settings.config_source == "git":
        console.print(f"  Repository:          {settings.config_repository}")
        console.print(f"  Ref:                 {settings.config_ref}")
        console.print(f"  Cache directory:     {settings.config_cache_dir}")
    else:
        console.print(f"  Endpoint:            {settings.config_endpoint}")
    console.print()
    console.print("[bold]Discovery:[/bold]")
    console.print(f"  Mode:                {settings.discovery_mode}")
    console.print(f"  Device timeout:      {settings.discovery_timeout}")
    console.print(f"  Query interval:      {settings.discovery_interval}")
    console.print()
    console.print("[bold]Timeouts (seconds):[/bold]")
    console.print(f"  Toolchain timeout:   {settings.toolchain_timeout}")
    console.print(f"  Cancel grace period: {settings.cancel_grace_period}")
    console.print(f"  Git timeout:         {settings.git_timeout}")
    console.print(f"  HTTP timeout:        {settings.http_timeout}")
    console.print()
    console.print(f"Log level: {settings.log_level}")


devices_app = typer.Typer(help="Inspect the device catalog")
app.add_typer(devices_app, name="devices")


@devices_app.command("list")
def devices_list(
    json_output: Annotated[
        bool,
        typer.Option("--json", help="Output as JSON"),
    ] = False,
) -> None:
    """List devices in the catalog."""
    devices = _services().list_devices()

    if not devices:
        if json_output:
            console.print("[]", markup=False)
        else:
            console.print("[yellow]No devices found[/yellow]")
        return

    if json_output:
        _print_json([d.model_dump(mode="json") for d in devices])
        return

    console.print(f"[bold]Found {len(devices)} device(s):[/bold]")
    console.print()
    for d in devices:
        console.print(f"  [green]{d.name}[/green]")
        console.print(f"    Product: {d.product_name}")
        if d.category:
            console.print(f"    Category: {d.category}")
        console.print(f"    Platform: {d.target.platform} ({d.target.architecture})")
        console.print()


@devices_app.command("show")
def devices_show(
    target: Annotated[str, typer.Argument(help="Target name to show")],
    json_output: Annotated[
        bool,
        typer.Option("--json", help="Output as JSON"),
    ] = False,
) -> None:
    """Show details of one device."""
    from rc_configurator.devices.registry import DeviceNotFoundError

    try:
        device = _services().registry.get(target)
    except DeviceNotFoundError:
        console.print(f"[red]Device not found: {target}[/red]")
        raise typer.Exit(code=1) from None

    if json_output:
        _print_json(device.model_dump(mode="json"))
        return

    console.print(f"[bold]{device.name}[/bold]")
    console.print(f"  Product: {device.product_name}")
    console.print(f"  Category: {device.category or '-'}")
    console.print(f"  Platform: {device.target.platform}")
    console.print(f"  Board: {device.target.board}")
    console.print(f"  Architecture: {device.target.architecture}")
    console.print(f"  Environment: {device.target.build_environment}")
    connections = ", ".join(c.value for c in device.connection_types) or "-"
    console.print(f"  Connections: {connections}")
    console.print(f"  Parameters: {', '.join(device.parameters) or '-'}")


parameters_app = typer.Typer(help="Inspect firmware configuration parameters")
app.add_typer(parameters_app, name="parameters")


@parameters_app.command("list")
def parameters_list(
    target: Annotated[str, typer.Argument(help="Target name")],
    json_output: Annotated[
        bool,
        typer.Option("--json", help="Output as JSON"),
    ] = False,
) -> None:
    """List the parameters a device accepts, with their defaults."""
    from rc_configurator.devices.registry import DeviceNotFoundError
    from rc_configurator.parameters.source import ConfigurationError

    services = _services()
    try:
        definitions = asyncio.run(services.list_parameters(target))
    except DeviceNotFoundError:
        console.print(f"[red]Device not found: {target}[/red]")
        raise typer.Exit(code=1) from None
    except ConfigurationError as e:
        console.print(f"[red]Configuration error ({e.code}): {e}[/red]")
        raise typer.Exit(code=1) from None

    if json_output:
        _print_json([d.model_dump(mode="json") for d in definitions])
        return

    if not definitions:
        console.print(f"[yellow]{target} accepts no parameters[/yellow]")
        return
    for d in definitions:
        default = "-" if d.default is None else d.default
        line = f"  [green]{d.key}[/green] ({d.type.value}) default: {default}"
        if d.options:
            line += f" options: {', '.join(d.options)}"
        console.print(line)
        if d.description:
            console.print(f"    {d.description}")


targets_app = typer.Typer(help="List the targets a firmware version can build")
app.add_typer(targets_app, name="targets")


@targets_app.command("list")
def targets_list(
    tag: TagOption = None,
    branch: BranchOption = None,
    commit: CommitOption = None,
    local: LocalOption = None,
    json_output: Annotated[
        bool,
        typer.Option("--json", help="Output as JSON"),
    ] = False,
) -> None:
    """List the devices a firmware version can build."""
    from rc_configurator.targets.loader import TargetsError

    firmware = firmware_source(tag, branch, commit, local)
    services = _services()
    firmware = firmware or services.default_firmware()
    try:
        devices = asyncio.run(services.list_targets(firmware))
    except TargetsError as e:
        console.print(f"[red]Failed to load targets ({e.code}): {e}[/red]")
        raise typer.Exit(code=1) from None

    if json_output:
        _print_json([d.model_dump(mode="json") for d in devices])
        return

    if not devices:
        console.print(f"[yellow]No known devices for firmware {firmware}[/yellow]")
        return
    console.print(f"[bold]Firmware {firmware} builds {len(devices)} device(s):[/bold]")
    for d in devices:
        console.print(f"  [green]{d.name}[/green] {d.product_name}")


lua_app = typer.Typer(help="Radio Lua script for a firmware version")
app.add_typer(lua_app, name="lua")


@lua_app.command("fetch")
def lua_fetch(
    output: Annotated[
        Path,
        typer.Option("--output", "-o", help="File or directory to write the script to"),
    ] = Path("."),
    tag: TagOption = None,
    branch: BranchOption = None,
    commit: CommitOption = None,
    local: LocalOption = None,
) -> None:
    """Copy the radio Lua script of a firmware version."""
    from rc_configurator.firmware.checkout import FirmwareSourceError
    from rc_configurator.firmware.lua import LuaScriptNotFoundError

    firmware = firmware_source(tag, branch, commit, local)
    services = _services()
    try:
        script = asyncio.run(services.lua_script(firmware))
    except (FirmwareSourceError, LuaScriptNotFoundError) as e:
        console.print(f"[red]{e}[/red]")
        raise typer.Exit(code=1) from None

    dest = output / script.name if output.is_dir() else output
    shutil.copyfile(script, dest)
    console.print(f"[green]Lua script written to {dest}[/green]")


async def _run_build(
    services: "Services",
    target: str,
    overrides: dict[str, str | bool],
    flash: bool,
    firmware: "FirmwareSource | None" = None,
) -> "BuildStateChanged | None":
    from rc_configurator.events.models import (
        BuildOutputLine,
        BuildStateChanged,
        build_topic,
    )
    from rc_configurator.types import ArtifactKind

    kind = ArtifactKind.BUILD_AND_FLASH if flash else ArtifactKind.BUILD
    try:
        with services.subscribe_events(build_topic(target)) as subscription:
            job = await services.submit_build(target, overrides, kind, firmware)
            started = f"Build {job.job_id} started for {target}"
            if firmware is not None:
                started += f" ({firmware})"
            console.print(f"[bold]{started}[/bold]")
            async for event in subscription:
                if isinstance(event, BuildOutputLine):
                    console.print(event.text, markup=False, highlight=False)
                elif isinstance(event, BuildStateChanged) and event.state.is_terminal:
                    return event
        return None
    finally:
        await services.stop()


@app.command()
def build(
    target: Annotated[str, typer.Argument(help="Target name to build")],
    define: Annotated[
        list[str] | None,
        typer.Option("--define", "-D", help="Parameter override KEY=VALUE"),
    ] = None,
    flash: Annotated[
        bool,
        typer.Option("--flash", help="Upload the firmware after building"),
    ] = False,
    tag: TagOption = None,
    branch: BranchOption = None,
    commit: CommitOption = None,
    local: LocalOption = None,
) -> None:
    """Build firmware for a target, streaming toolchain output."""
    from rc_configurator.builds.service import AlreadyBuildingError
    from rc_configurator.devices.registry import DeviceNotFoundError
    from rc_configurator.types import BuildState

    overrides = dict(parse_define(d) for d in define or [])
    firmware = firmware_source(tag, branch, commit, local)
    services = _services()
    try:
        outcome = asyncio.run(
            _run_build(services, target, overrides, flash, firmware)
        )
    except DeviceNotFoundError:
        console.print(f"[red]Device not found: {target}[/red]")
        raise typer.Exit(code=1) from None
    except AlreadyBuildingError as e:
        console.print(f"[red]{e}[/red]")
        raise typer.Exit(code=1) from None

    if outcome is None:
        console.print("[red]Build ended without a result[/red]")
        raise typer.Exit(code=1)
    if outcome.state is BuildState.SUCCEEDED:
        console.print(f"[green]Build succeeded: {outcome.artifact_path}[/green]")
        return
    console.print(
        f"[red]Build {outcome.state.value} ({outcome.error_code}): "
        f"{outcome.message}[/red]"
    )
    raise typer.Exit(code=1)


def _print_discovery_event(event: Any, json_output: bool) -> None:
    from rc_configurator.events.models import DeviceDiscovered

    if json_output:
        console.print(event.model_dump_json(), soft_wrap=True, markup=False)
    elif isinstance(event, DeviceDiscovered):
        console.print(
            f"[green]+ {event.name}[/green] {event.address or '-'} "
            f"target={event.target or '-'} version={event.version or '-'}"
        )
    else:
        console.print(f"[yellow]- {event.name}[/yellow]")


async def _discover(
    settings: Settings, simulated: bool, seconds: float, json_output: bool
) -> None:
    from rc_configurator.discovery.simulator import SimulatedDiscovery
    from rc_configurator.events.bus import EventBus
    from rc_configurator.events.models import DISCOVERY_TOPIC
    from rc_configurator.services import build_discovery

    bus = EventBus(buffer_size=settings.event_buffer_size)
    with bus.subscribe(DISCOVERY_TOPIC) as subscription:
        if simulated:
            await SimulatedDiscovery(
                bus,
                timeout=settings.discovery_timeout,
                interval=settings.discovery_interval,
            ).replay()
            for event in subscription.drain():
                _print_discovery_event(event, json_output)
            return

        discovery = build_discovery(settings, bus)
        await discovery.start()
        try:
            async with asyncio.timeout(seconds):
                async for event in subscription:
                    _print_discovery_event(event, json_output)
        except TimeoutError:
            pass
        finally:
            await discovery.stop()


@app.command()
def discover(
    simulated: Annotated[
        bool,
        typer.Option("--simulated", help="Replay the built-in simulation script"),
    ] = False,
    seconds: Annotated[
        float,
        typer.Option("--seconds", "-s", help="How long to listen (live mode)"),
    ] = 10.0,
    json_output: Annotated[
        bool,
        typer.Option("--json", help="Output events as JSON lines"),
    ] = False,
) -> None:
    """Discover devices on the local network."""
    settings = get_settings()
    asyncio.run(_discover(settings, simulated, seconds, json_output))


serial_app = typer.Typer(help="Monitor device serial output")
app.add_typer(serial_app, name="serial")


async def _monitor(port: str, baudrate: int, seconds: float | None) -> None:
    from rc_configurator.events.bus import EventBus
    from rc_configurator.events.models import serial_topic
    from rc_configurator.serial_monitor.service import SerialMonitor, SerialParams

    bus = EventBus()
    monitor = SerialMonitor(bus)
    with bus.subscribe(serial_topic(port)) as subscription:
        async with monitor.connect(port, SerialParams(port=port, baudrate=baudrate)):
            try:
                async with asyncio.timeout(seconds):
                    async for event in subscription:
                        console.print(event.text, markup=False, highlight=False)
            except TimeoutError:
                pass


@serial_app.command("monitor")
def serial_monitor(
    port: Annotated[str, typer.Argument(help="Serial port or pyserial URL")],
    baudrate: Annotated[
        int,
        typer.Option("--baud", "-b", help="Baud rate"),
    ] = 420000,
    seconds: Annotated[
        float | None,
        typer.Option("--seconds", "-s", help="Stop after this many seconds"),
    ] = None,
) -> None:
    """Print lines received on a serial port."""
    from rc_configurator.serial_monitor.service import SerialOpenError

    try:
        asyncio.run(_monitor(port, baudrate, seconds))
    except SerialOpenError as e:
        console.print(f"[red]{e}[/red]")
        raise typer.Exit(code=1) from None
    except KeyboardInterrupt:
        console.print("[yellow]Stopped[/yellow]")


@app.command()
def serve(
    host: Annotated[
        str,
        typer.Option("--host", help="Interface to bind"),
    ] = "127.0.0.1",
    port: Annotated[
        int,
        typer.Option("--port", "-p", help="Port to listen on"),
    ] = 8321,
) -> None:
    """Serve the HTTP API."""
    import uvicorn

    uvicorn.run("web.app:app", host=host, port=port)


updates_app = typer.Typer(help="Check for new releases")
app.add_typer(updates_app, name="updates")


@updates_app.command("check")
def updates_check(
    json_output: Annotated[
        bool,
        typer.Option("--json", help="Output as JSON"),
    ] = False,
) -> None:
    """Check whether a newer release is available."""
    from rc_configurator.updates import UpdateCheckError, check_for_updates

    settings = get_settings()
    try:
        info = asyncio.run(check_for_updates(__version__, settings.update_repository))
    except UpdateCheckError as e:
        console.print(f"[red]Update check failed: {e}[/red]")
        raise typer.Exit(code=1) from None

    if json_output:
        _print_json(info.to_dict())
    elif info.update_available:
        console.print(
            f"[green]Update available: {info.latest}[/green] "
            f"(running {info.current})"
        )
        if info.url:
            console.print(f"  {info.url}")
    else:
        console.print(f"Up to date ({info.current})")


if __name__ == "__main__":
    app()
