"""Command-line interface for the proxy core control plane.

This module provides the main command-line interface, handling:
- Layout and settings location options
- Root privilege checking
- Starting and stopping the supervised core
- Rendering the running configuration
- Status reporting

The CLI is built using Typer and Rich.

Example:
    # Run from command line:
    $ tomoon-control run --config bin/core/config.yaml
    $ tomoon-control status
"""

import os
import sys
import threading
from pathlib import Path

import typer
from loguru import logger
from rich.console import Console
from rich.table import Table

from tomoon_control import __version__
from tomoon_control.core.api import get_core_status, set_core_status
from tomoon_control.core.config import (
    BASE_DIR_ENV,
    CONTROLLER_ADDRESS,
    PROVIDERS_ROOT_ENV,
    CoreLayout,
    settings_path,
)
from tomoon_control.core.exceptions import CoreError
from tomoon_control.core.network import SystemNetwork
from tomoon_control.core.runtime import ControlRuntime
from tomoon_control.core.transformer import transform_config
from tomoon_control.core.utils.log_config import LOG_DIR, configure_logging

console = Console()
app = typer.Typer(help="Control plane for the Clash proxy core")

BaseDirOption = typer.Option(
    None, "--base-dir", "-b", envvar=BASE_DIR_ENV, help="Directory containing bin/core"
)
ProvidersRootOption = typer.Option(
    None, "--providers-root", envvar=PROVIDERS_ROOT_ENV, help="Where rule providers are saved"
)
DebugOption = typer.Option(default=False, help="Enable debug logging")


def check_root() -> bool:
    """Check if the script is running with root privileges."""
    return os.geteuid() == 0


def _setup(debug: bool) -> None:
    if debug:
        configure_logging("DEBUG")


@app.callback(invoke_without_command=True)
def version_callback():
    """Show version information."""
    console.print(f"[cyan]ToMoon control v{__version__}[/cyan]")


@app.command(name="run")
def run_core(
    config: Path | None = typer.Option(None, "--config", "-c", help="Base Clash configuration"),
    base_dir: Path | None = BaseDirOption,
    providers_root: Path | None = ProvidersRootOption,
    home: Path | None = typer.Option(None, "--home", help="Home directory for the settings file"),
    debug: bool = DebugOption,
):
    """Start the core and supervise it until interrupted."""
    _setup(debug)

    if not check_root():
        logger.error("Root privileges required")
        console.print("[red]This program requires root privileges to run properly.")
        console.print("[yellow]Please run with sudo or as root.")
        sys.exit(1)

    layout = CoreLayout.from_base_dir(base_dir, providers_root)
    runtime = ControlRuntime.create(layout, home=home)
    runtime.start()

    result = set_core_status(runtime, True, config)
    if not result["ok"]:
        error = result["error"]
        console.print(f"[red]{error['kind']}: {error['message']}")
        runtime.shutdown()
        sys.exit(1)

    console.print(f"[bold green]Core running, controller at {CONTROLLER_ADDRESS}")
    console.print(f"[dim]Logs: {layout.process_log} and {LOG_DIR}")
    try:
        threading.Event().wait()
    except KeyboardInterrupt:
        logger.info("Received shutdown signal")
        console.print("\n[yellow]Stopping core...")
    finally:
        result = set_core_status(runtime, False)
        if not result["ok"]:
            console.print(f"[red]{result['error']['message']}")
        runtime.shutdown()
        logger.info("Control runtime stopped")


@app.command(name="transform")
def transform(
    config: Path | None = typer.Option(None, "--config", "-c", help="Base Clash configuration"),
    base_dir: Path | None = BaseDirOption,
    providers_root: Path | None = ProvidersRootOption,
    debug: bool = DebugOption,
):
    """Write the running configuration without starting the core."""
    _setup(debug)
    layout = CoreLayout.from_base_dir(base_dir, providers_root)
    try:
        output = transform_config(config or layout.base_config, layout)
    except CoreError as e:
        logger.error(f"Transform failed: {e}")
        console.print(f"[red]{e.kind}: {e.message}")
        raise typer.Exit(code=1) from e
    console.print(f"[green]Running config written to {output}")


@app.command(name="status")
def status(
    base_dir: Path | None = BaseDirOption,
    home: Path | None = typer.Option(None, "--home", help="Home directory for the settings file"),
    probe: bool = typer.Option(default=True, help="Probe the core's DNS listener"),
):
    """Show settings and core process status."""
    layout = CoreLayout.from_base_dir(base_dir)
    network = SystemNetwork(layout)
    runtime = ControlRuntime.create(layout, home=home, network=network)
    current = get_core_status(runtime)
    with runtime.shared.state.read() as guard:
        settings_file = settings_path(guard.value.home)
    with runtime.shared.settings.read() as guard:
        last_config = guard.value.current_sub

    table = Table(title="ToMoon Core Status")
    table.add_column("Property", style="cyan")
    table.add_column("Value", style="green")

    table.add_row("Enabled", str(current["enable"]))
    table.add_row("Core process", "running" if network.is_core_process_running() else "stopped")
    if probe:
        answer = network.probe_core_dns()
        table.add_row("Core DNS", answer or "[red]no answer")
    table.add_row("Last config", last_config or "-")
    table.add_row("Settings file", str(settings_file))
    table.add_row("Running config", str(layout.running_config))
    table.add_row("Core log", str(layout.process_log))

    console.print(table)


if __name__ == "__main__":
    app()
