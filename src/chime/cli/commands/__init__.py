"""CLI command modules."""

from chime.cli.commands import database, jobs, serve

__all__ = [
    "database",
    "jobs",
    "serve",
]
