"""
hexflash - Firmware Flashing Command-Line Interface
====================================================

This module implements the command-line interface for sending binary
images to a bootloader as Intel-HEX records.

Usage Examples
--------------
List available serial ports:
    $ hexflash ports

Flash an image at address 0x08000000:
    $ hexflash flash firmware.bin --base 0x08000000

Show the records without opening a port:
    $ hexflash flash firmware.bin --dry

Write the records to a .hex file:
    $ hexflash encode firmware.bin -o firmware.hex

Settings may also come from HEXFLASH_* environment variables
(see hexflash.config); command-line options take precedence.

Exit Codes
----------
0 - Success
1 - Encoding, connection or transfer error
2 - Invalid arguments or unreadable input file
3 - Internal error
"""

import logging
import signal
import threading
from contextlib import contextmanager
from pathlib import Path
from typing import Iterator, Optional

import click

from hexflash import __version__
from hexflash.cli.errors import handle_cli_exception
from hexflash.comms import (
    VALID_BAUD_RATES,
    TransferObserver,
    close_serial_port,
    find_serial_port,
    format_port_list,
    list_serial_ports,
    open_serial_port,
    require_serial_port,
    send_sequence,
)
from hexflash.config import FlashConfig
from hexflash.ihex import MAX_RECORD_LENGTH, encode_file

# Configure logging
logger = logging.getLogger(__name__)


# =============================================================================
# CLI Context and Utilities
# =============================================================================

class Context:
    """
    Shared context for CLI commands.

    Holds verbosity and the configuration loaded from the environment.
    """

    def __init__(self) -> None:
        self.verbose: bool = False
        self.config: FlashConfig = FlashConfig()

    def setup_logging(self) -> None:
        """Configure logging based on verbosity."""
        level = logging.DEBUG if self.verbose else logging.INFO
        logging.basicConfig(
            level=level,
            format="%(levelname)s: %(message)s" if self.verbose else "%(message)s",
        )


pass_context = click.make_pass_decorator(Context, ensure=True)


class AddressType(click.ParamType):
    """
    Click parameter type for 32-bit addresses.

    Accepts decimal ("4096") or 0x-prefixed hexadecimal ("0x1000").
    """
    name = "address"

    def convert(self, value, param: Optional[click.Parameter],
                ctx: Optional[click.Context]) -> int:
        """Convert string to an address."""
        if isinstance(value, int):
            address = value
        else:
            text = value.strip().lower()
            try:
                if text.startswith("0x"):
                    address = int(text[2:], 16)
                else:
                    address = int(text, 10)
            except ValueError:
                self.fail(f"'{value}' is not a decimal or 0x-prefixed hex address", param, ctx)

        if not 0 <= address <= 0xFFFFFFFF:
            self.fail(f"Address {value} does not fit in 32 bits", param, ctx)
        return address


ADDRESS = AddressType()


class ProgressBarObserver(TransferObserver):
    """Advances a click progress bar as records are acknowledged."""

    def __init__(self, bar) -> None:
        self.bar = bar
        self._acked = 0

    def progress(self, acked: int, total: int) -> None:
        self.bar.update(acked - self._acked)
        self._acked = acked


@contextmanager
def cancel_on_interrupt() -> Iterator[threading.Event]:
    """
    Turn Ctrl-C into a cancel request honoured between records.

    A second Ctrl-C falls back to the default KeyboardInterrupt.
    """
    cancel = threading.Event()

    def _handler(signum, frame) -> None:
        if cancel.is_set():
            raise KeyboardInterrupt
        click.echo("\nCancelling after the current record...", err=True)
        cancel.set()

    previous = signal.signal(signal.SIGINT, _handler)
    try:
        yield cancel
    finally:
        signal.signal(signal.SIGINT, previous)


# =============================================================================
# Main CLI Group
# =============================================================================

@click.group()
@click.option(
    "-v", "--verbose",
    is_flag=True,
    help="Enable verbose output",
)
@click.version_option(version=__version__, prog_name="hexflash")
@pass_context
def main(ctx: Context, verbose: bool) -> None:
    """
    Send binary images to a bootloader as Intel-HEX records.

    Each record is acknowledged by the device with a single byte before
    the next one is sent. Rejected records are retried.

    Use 'hexflash ports' to list available serial ports.
    """
    ctx.verbose = verbose
    ctx.config = FlashConfig.from_env()
    ctx.setup_logging()


# =============================================================================
# Flash Command
# =============================================================================

@main.command()
@click.argument("file", type=click.Path(exists=True, dir_okay=False))
@click.option(
    "-p", "--port",
    type=str,
    default=None,
    help="Serial port device (auto-detect if not specified)",
)
@click.option(
    "--base",
    type=ADDRESS,
    default=0,
    show_default=True,
    help="Load address of the first byte (decimal or 0x hex)",
)
@click.option(
    "--dry",
    is_flag=True,
    help="Encode and print the records without opening a port",
)
@click.option(
    "-b", "--baud",
    type=click.Choice([str(b) for b in VALID_BAUD_RATES]),
    default=None,
    help="Baud rate (default: 115200)",
)
@click.option(
    "--timeout",
    type=float,
    default=None,
    help="Acknowledgement timeout in seconds (default: 1.0)",
)
@click.option(
    "--retries",
    type=click.IntRange(min=1),
    default=None,
    help="Send attempts per record before giving up (default: 10)",
)
@click.option(
    "--ack",
    type=str,
    default=None,
    help="Acknowledgement byte(s): '.' or 'data=.,ext=.,eof=!' (default: '.')",
)
@click.option(
    "--chunk-size",
    type=click.IntRange(1, MAX_RECORD_LENGTH),
    default=None,
    help="Image bytes per data record (default: 255)",
)
@pass_context
def flash(
    ctx: Context,
    file: str,
    port: Optional[str],
    base: int,
    dry: bool,
    baud: Optional[str],
    timeout: Optional[float],
    retries: Optional[int],
    ack: Optional[str],
    chunk_size: Optional[int],
) -> None:
    """
    Flash a binary image to the device.

    FILE is the raw binary image. It is split into data records, with an
    extended address record at the start and at every 64 KiB bank change,
    and closed by an end of file record.

    Example:
        hexflash flash firmware.bin
        hexflash flash firmware.bin --base 0x08000000 --port /dev/ttyUSB0
        hexflash flash firmware.bin --dry
    """
    config = ctx.config
    if port:
        config.port = port
    if baud:
        config.baud_rate = int(baud)
    if timeout is not None:
        config.timeout = timeout
    if retries is not None:
        config.max_attempts = retries
    if ack is not None:
        config.ack = ack
    if chunk_size is not None:
        config.chunk_size = chunk_size

    try:
        sequence = encode_file(file, base_address=base, chunk_size=config.chunk_size)
        click.echo(
            f"Encoded {sequence.payload_size} bytes into {len(sequence)} records"
        )

        if dry:
            for line in sequence.lines():
                click.echo(line)
            return

        ack_table = config.ack_table()
        retry_policy = config.retry_policy()
        device = require_serial_port(config.port)

        click.echo(f"Connecting to device on {device}...")
        serial_port = open_serial_port(
            device, baud_rate=config.baud_rate, timeout=config.timeout
        )

        try:
            with cancel_on_interrupt() as cancel:
                with click.progressbar(length=len(sequence), label="Flashing") as bar:
                    result = send_sequence(
                        serial_port,
                        sequence,
                        ack_table,
                        retry_policy=retry_policy,
                        observer=ProgressBarObserver(bar),
                        cancel=cancel,
                    )
        finally:
            close_serial_port(serial_port)

        click.echo(
            f"Flash complete: {result.records_acked} records in {result.elapsed:.1f}s "
            f"({result.negative_acks} rejected, {result.timeouts} timed out)"
        )

    except Exception as e:
        handle_cli_exception(e, verbose=ctx.verbose, error_type="Flash")


# =============================================================================
# Encode Command
# =============================================================================

@main.command()
@click.argument("file", type=click.Path(exists=True, dir_okay=False))
@click.option(
    "-o", "--output",
    type=click.Path(dir_okay=False),
    default=None,
    help="Output .hex file (default: stdout)",
)
@click.option(
    "--base",
    type=ADDRESS,
    default=0,
    show_default=True,
    help="Load address of the first byte (decimal or 0x hex)",
)
@click.option(
    "--chunk-size",
    type=click.IntRange(1, MAX_RECORD_LENGTH),
    default=None,
    help="Image bytes per data record (default: 255)",
)
@pass_context
def encode(
    ctx: Context,
    file: str,
    output: Optional[str],
    base: int,
    chunk_size: Optional[int],
) -> None:
    """
    Convert a binary image to Intel-HEX text.

    Example:
        hexflash encode firmware.bin -o firmware.hex
        hexflash encode firmware.bin --base 0x10000
    """
    try:
        sequence = encode_file(
            file,
            base_address=base,
            chunk_size=chunk_size or ctx.config.chunk_size,
        )

        if output:
            Path(output).write_text(sequence.to_text(), encoding="ascii")
            click.echo(f"Wrote {len(sequence)} records to {output}")
        else:
            click.echo(sequence.to_text(), nl=False)

    except Exception as e:
        handle_cli_exception(e, verbose=ctx.verbose, error_type="Encode")


# =============================================================================
# Ports Command
# =============================================================================

@main.command()
@click.option(
    "--detailed", "-d",
    is_flag=True,
    help="Show detailed port information",
)
def ports(detailed: bool) -> None:
    """
    List available serial ports.

    USB-serial adapters are marked with their vendor (e.g., FTDI).

    Example:
        hexflash ports
        hexflash ports --detailed
    """
    port_list = list_serial_ports()

    if not port_list:
        click.echo("No serial ports found.")
        click.echo("\nTips:")
        click.echo("  - Connect your USB-serial adapter")
        click.echo("  - On Linux, ensure you have permission (dialout group)")
        return

    click.echo("Available serial ports:")
    click.echo(format_port_list(port_list, verbose=detailed))

    auto_port = find_serial_port()
    if auto_port:
        click.echo(f"\nSuggested port: {auto_port}")


if __name__ == "__main__":
    main()
