"""
altilink - Alti-2 Logbook Command-Line Interface
================================================

This module implements the command-line interface for talking to an
Alti-2 instrument over its serial PC cable: identify the device and
download its jump/dive logbook.

Usage Examples
--------------
List available serial ports:
    $ altilink ports

Identify the connected device:
    $ altilink --port /dev/ttyUSB0 info

Download the logbook as JSON Lines:
    $ altilink dump logbook.jsonl
    $ altilink dump - | jq .altitude_m

Hardware Setup
--------------
Before using altilink, ensure:
1. The PC cable is connected and the instrument is switched on
2. The serial port has proper permissions (dialout group on Linux)

After the port opens the device needs a few seconds before it answers
(10 seconds by default, see --settle).

Environment
-----------
ALTI2_PORT, ALTI2_TIMEOUT, ALTI2_MAX_RETRIES, ALTI2_RETRY_DELAY and
ALTI2_SETTLE_TIME provide defaults for the matching options.

Exit Codes
----------
0 - Success
1 - Connection, extraction or decode error
2 - Invalid arguments or configuration error
"""

import dataclasses
import logging
from typing import Optional

import click

from alti2_sdk import __version__
from alti2_sdk.cli.errors import ExitCode, handle_cli_exception
from alti2_sdk.comms import find_alti2_port, format_port_list, list_serial_ports
from alti2_sdk.config import SessionConfig
from alti2_sdk.errors import ConnectionError, ExtractionError, SessionError
from alti2_sdk.logbook import JsonLinesSink
from alti2_sdk.session import Session

# Configure logging
logger = logging.getLogger(__name__)


# =============================================================================
# CLI Context and Utilities
# =============================================================================

class Context:
    """
    Shared context for CLI commands.

    Stores the session configuration and verbosity.
    """

    def __init__(self) -> None:
        self.config: SessionConfig = SessionConfig()
        self.verbose: bool = False

    def setup_logging(self) -> None:
        """Configure logging based on verbosity."""
        level = logging.DEBUG if self.verbose else logging.WARNING
        logging.basicConfig(
            level=level,
            format="%(levelname)s: %(name)s: %(message)s" if self.verbose else "%(message)s",
        )

    def open_session(self) -> Session:
        """Open the configured port, reporting progress on stderr."""
        port = self.config.port or find_alti2_port()
        if port:
            click.echo(f"Opening {port}...", err=True)
        if self.config.settle_time > 0:
            click.echo(
                f"Waiting {self.config.settle_time:.0f}s for the device to settle...",
                err=True,
            )
        return Session.open(port, self.config)


pass_context = click.make_pass_decorator(Context, ensure=True)


def progress_pages(pages: int, size: int) -> None:
    """Progress indicator for the logbook transfer."""
    click.echo(f"\rRead {pages} page(s), {size} bytes", nl=False, err=True)


# =============================================================================
# Main CLI Group
# =============================================================================

@click.group()
@click.option(
    "-p", "--port",
    type=str,
    default=None,
    help="Serial port device (auto-detect if not specified)",
)
@click.option(
    "-v", "--verbose",
    is_flag=True,
    help="Enable verbose output (wire traffic is logged)",
)
@click.option(
    "--timeout",
    type=click.FloatRange(min=0.0, min_open=True),
    default=None,
    help="Response timeout per request in seconds (default: 10)",
)
@click.option(
    "--retries",
    type=click.IntRange(min=1),
    default=None,
    help="Send attempts per request (default: 3)",
)
@click.option(
    "--settle",
    type=click.FloatRange(min=0.0),
    default=None,
    help="Pause after opening the port in seconds (default: 10)",
)
@click.version_option(version=__version__, prog_name="altilink")
@pass_context
def main(
    ctx: Context,
    port: Optional[str],
    verbose: bool,
    timeout: Optional[float],
    retries: Optional[int],
    settle: Optional[float],
) -> None:
    """
    Read identity and logbook data from Alti-2 altimeters and dive computers.

    Connect the PC cable, switch the instrument on, then run one of the
    commands below. Use 'altilink ports' to list available serial ports.
    """
    ctx.verbose = verbose
    ctx.setup_logging()

    config = SessionConfig.from_env()
    overrides = {
        "port": port,
        "timeout": timeout,
        "max_retries": retries,
        "settle_time": settle,
    }
    ctx.config = dataclasses.replace(
        config, **{k: v for k, v in overrides.items() if v is not None}
    )
    logger.debug("Configuration: %s", ctx.config)


# =============================================================================
# Ports Command
# =============================================================================

@main.command()
@click.option(
    "--detailed", "-d",
    is_flag=True,
    help="Show detailed port information",
)
@pass_context
def ports(ctx: Context, detailed: bool) -> None:
    """
    List available serial ports.

    Shows all serial ports detected on the system. USB-serial adapters
    are marked with their vendor (e.g., FTDI, Silicon Labs).

    Example:
        altilink ports
        altilink ports --detailed
    """
    port_list = list_serial_ports()

    if not port_list:
        click.echo("No serial ports found.")
        click.echo("\nTips:")
        click.echo("  - Connect the Alti-2 PC cable")
        click.echo("  - On Linux, ensure you have permission (dialout group)")
        return

    click.echo("Available serial ports:")
    click.echo(format_port_list(port_list, verbose=detailed))

    auto_port = find_alti2_port(port_list)
    if auto_port:
        click.echo(f"\nSuggested port for Alti-2: {auto_port}")
    else:
        click.echo("\nNo USB-serial adapter auto-detected.")


# =============================================================================
# Info Command
# =============================================================================

@main.command()
@pass_context
def info(ctx: Context) -> None:
    """
    Identify the connected instrument.

    Prints product, serial number, hardware and software versions.

    Example:
        altilink info
        altilink --port COM3 info
    """
    try:
        with ctx.open_session() as session:
            device = session.connect()
            capabilities = session.capabilities

            click.echo(str(device))
            click.echo("-" * 40)
            click.echo(f"  Product:            {device.product_type.name} (0x{device.product_code:02X})")
            click.echo(f"  Serial number:      {device.serial_number}")
            click.echo(f"  Hardware revision:  {device.hardware_revision}")
            click.echo(f"  Software version:   {device.software_version}")
            click.echo(f"  Interface version:  {device.interface_version}")
            click.echo(f"  Logbook format:     {capabilities.logbook_format.name}")

    except ConnectionError as e:
        handle_cli_exception(e, ctx.verbose, "Connection")
    except SessionError as e:
        handle_cli_exception(e, ctx.verbose)


# =============================================================================
# Dump Command
# =============================================================================

@main.command()
@click.argument("output", type=click.Path(dir_okay=False, writable=True, allow_dash=True))
@pass_context
def dump(ctx: Context, output: str) -> None:
    """
    Download the logbook as JSON Lines.

    Writes one JSON object per jump or dive to OUTPUT ('-' for stdout).
    Records that fail validation are reported on stderr and skipped.

    Example:
        altilink dump logbook.jsonl
        altilink dump -
    """
    try:
        with ctx.open_session() as session:
            device = session.connect()
            click.echo(f"Connected: {device}", err=True)

            with click.open_file(output, "w", encoding="utf-8") as stream:
                report = session.export_logbook(JsonLinesSink(stream), progress_pages)
            click.echo(err=True)

    except ConnectionError as e:
        handle_cli_exception(e, ctx.verbose, "Connection")
    except ExtractionError as e:
        click.echo(err=True)
        handle_cli_exception(e, ctx.verbose, "Extraction")
    except SessionError as e:
        handle_cli_exception(e, ctx.verbose)
    except OSError as e:
        handle_cli_exception(e, ctx.verbose)

    for error in report.errors:
        click.echo(f"Decode error: {error}", err=True)

    click.echo(
        f"{report.records} record(s) written, {len(report.errors)} decode error(s)",
        err=True,
    )
    if not report.ok:
        raise SystemExit(ExitCode.LINK_ERROR)


if __name__ == "__main__":
    main()
