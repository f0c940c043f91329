"""Command-line interface (``prcanary``)."""

from prcanary.cli.app import app

__all__ = ["app"]
