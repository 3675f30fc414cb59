"""Connectivity check for the database and the broker."""

import asyncio
from pathlib import Path
from typing import Annotated

import typer

from prism.cli.console import console, create_table, error


def register(app: typer.Typer) -> None:
    """Register the health command."""

    @app.command()
    def health(
        config: Annotated[
            Path | None,
            typer.Option(
                "--config",
                "-c",
                help="Path to configuration file",
            ),
        ] = None,
    ) -> None:
        """Report database and broker connectivity. Exits 1 when degraded."""
        from prism.config import ConfigError, load_config

        try:
            prism_config = load_config(config)
        except (ConfigError, FileNotFoundError) as e:
            error(str(e))
            raise typer.Exit(1) from None

        report = asyncio.run(_check(prism_config))

        table = create_table(
            "Health",
            [("Component", "cyan"), ("Status", "")],
        )
        for component in ("db", "broker"):
            status = report[component]
            color = "green" if status == "connected" else "red"
            table.add_row(component, f"[{color}]{status}[/{color}]")
        console.print(table)

        if report["status"] != "ok":
            error("Degraded")
            raise typer.Exit(1)


async def _check(prism_config) -> dict[str, str]:
    from prism.services import build_core_services

    services = await build_core_services(prism_config)
    try:
        return await services.health()
    finally:
        await services.close()
