"""Entry point for ``python -m cloud_backup``."""

from cloud_backup.cli import app

app()
