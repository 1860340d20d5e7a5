"""
Main entry point for the tubewatch application.
This module handles top-level setup, exception handling, and CLI invocation.
"""

import asyncio
import logging
import os
import sys

import typer
from rich.console import Console

from tubewatch.cli.app import app
from tubewatch.cli.formatters import format_error_with_suggestions
from tubewatch.exceptions import (
    ConfigurationError,
    DecodeError,
    NoCredentialAvailable,
    NotFoundError,
    ProcessError,
    RemoteError,
    TubewatchError,
)

EXIT_INTERRUPTED = 130

# Checked in order; the first matching class decides the exit code.
EXIT_CODES = [
    (ConfigurationError, 3),
    (NoCredentialAvailable, 4),
    ((RemoteError, DecodeError), 5),
    (ProcessError, 6),
    (NotFoundError, 7),
]


def exit_code_for(error: BaseException) -> int:
    """Maps an error to the process exit code scripts can branch on."""
    for error_types, code in EXIT_CODES:
        if isinstance(error, error_types):
            return code
    return 1


def main() -> None:
    """Main entry point function."""
    if os.name == "nt":
        try:
            sys.stdout.reconfigure(encoding="utf-8")
            sys.stderr.reconfigure(encoding="utf-8")
        except (TypeError, AttributeError):
            pass

    log = logging.getLogger("tubewatch")
    console = Console()

    try:
        app()
    except (typer.Exit, typer.Abort):
        pass
    except (KeyboardInterrupt, asyncio.CancelledError):
        console.print("\n[yellow]⚠️  Operation cancelled by user.[/yellow]")
        sys.exit(EXIT_INTERRUPTED)
    except TubewatchError as e:
        console.print(f"\n{format_error_with_suggestions(e)}")
        log.debug("Full traceback:", exc_info=True)
        sys.exit(exit_code_for(e))
    except Exception as e:
        console.print(f"\n{format_error_with_suggestions(e, {'type': 'Unexpected'})}")
        log.debug("Full traceback:", exc_info=True)
        sys.exit(1)


if __name__ == "__main__":
    main()
