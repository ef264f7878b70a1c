"""
CLI layer for fireway.

Provides a Typer application whose ``migrate`` command delegates to
``fireway.pipeline``. This package handles only terminal transport:
argument parsing, coloured output and exit codes.

Entry point::

    fireway --help
"""

from fireway.cli.app import app

__all__ = ["app"]
