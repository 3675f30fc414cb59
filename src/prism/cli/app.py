"""Main CLI application."""

import typer

from prism.cli.commands import health, notifications, serve

app = typer.Typer(
    name="prism",
    help="Prism - timers, scheduling and notifications",
    no_args_is_help=True,
)

serve.register(app)
health.register(app)
notifications.register(app)


if __name__ == "__main__":
    app()
