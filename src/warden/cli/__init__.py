"""spine-warden command-line interface."""

from warden.cli.app import app

__all__ = ["app"]
