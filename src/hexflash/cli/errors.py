"""
Unified CLI Error Handling
==========================

Provides consistent error handling and exit codes for the hexflash CLI.
"""

import sys
import traceback
from enum import IntEnum
from typing import NoReturn

import click


class ExitCode(IntEnum):
    """Standard exit codes for the CLI."""
    SUCCESS = 0
    FLASH_ERROR = 1      # Encoding, connection, or transfer error
    INVALID_ARGS = 2     # Invalid arguments or unreadable input file
    INTERNAL_ERROR = 3   # Unexpected internal error


def handle_cli_exception(
    error: Exception,
    verbose: bool = False,
    error_type: str | None = None
) -> NoReturn:
    """
    Unified exception handler for CLI commands.

    Formats the error message appropriately, optionally prints traceback
    in verbose mode, and exits with the correct exit code.

    Args:
        error: The exception that was raised
        verbose: If True, print full traceback for internal errors
        error_type: Optional prefix for the error message (e.g., "Flash")

    Raises:
        SystemExit: Always exits with an appropriate exit code
    """
    from hexflash.errors import HexFlashError, SourceReadError, TransferError

    prefix = f"{error_type} error: " if error_type else "Error: "

    if isinstance(error, SourceReadError):
        click.echo(f"Error: {error}", err=True)
        sys.exit(ExitCode.INVALID_ARGS)

    elif isinstance(error, TransferError):
        # Report how far the device got before the session stopped
        click.echo(f"{prefix}{error}", err=True)
        click.echo(f"{error.records_acked} record(s) acknowledged", err=True)
        sys.exit(ExitCode.FLASH_ERROR)

    elif isinstance(error, HexFlashError):
        click.echo(f"{prefix}{error}", err=True)
        sys.exit(ExitCode.FLASH_ERROR)

    elif isinstance(error, (click.BadParameter, ValueError)):
        click.echo(f"Error: {error}", err=True)
        sys.exit(ExitCode.INVALID_ARGS)

    elif isinstance(error, (FileNotFoundError, PermissionError)):
        click.echo(f"Error: {error}", err=True)
        sys.exit(ExitCode.INVALID_ARGS)

    else:
        click.echo(f"Internal error: {error}", err=True)
        if verbose:
            traceback.print_exc()
        sys.exit(ExitCode.INTERNAL_ERROR)
