"""Main CLI application."""

import typer

from chime.cli.commands import database, jobs, serve

app = typer.Typer(
    name="chime",
    help="Chime - reminder and habit delivery for Telegram",
    no_args_is_help=True,
)

serve.register(app)
database.register(app)
jobs.register(app)


if __name__ == "__main__":
    app()
