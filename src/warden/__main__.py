"""Allow ``python -m warden``."""

from warden.cli.app import app

app()
