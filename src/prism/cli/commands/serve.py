"""Server command for running the Prism core services."""

import asyncio
import logging
from pathlib import Path
from typing import Annotated

import typer

logger = logging.getLogger(__name__)


def register(app: typer.Typer) -> None:
    """Register the serve command."""

    @app.command()
    def serve(
        config: Annotated[
            Path | None,
            typer.Option(
                "--config",
                "-c",
                help="Path to configuration file",
            ),
        ] = None,
    ) -> None:
        """Start the scheduler worker and core services."""
        try:
            asyncio.run(_run_server(config))
        except KeyboardInterrupt:
            # Use print here since logging may not be configured yet
            print("\nServer stopped")


async def _run_server(config_path: Path | None = None) -> None:
    import signal as signal_module

    from prism.cli.console import error
    from prism.config import ConfigError, load_config
    from prism.logging import configure_logging
    from prism.services import build_core_services

    try:
        prism_config = load_config(config_path)
    except (ConfigError, FileNotFoundError) as e:
        error(str(e))
        raise typer.Exit(1) from None

    configure_logging(
        level=prism_config.log_level, use_rich=True, log_to_file=True
    )

    logger.info("Starting core services")
    services = await build_core_services(prism_config)
    if not services.scheduler.ready:
        logger.warning("Broker unavailable, timers and scheduled notifications disabled")

    shutdown_event = asyncio.Event()
    loop = asyncio.get_running_loop()
    for sig in (signal_module.SIGTERM, signal_module.SIGINT):
        loop.add_signal_handler(sig, shutdown_event.set)

    try:
        await shutdown_event.wait()
    finally:
        logger.info("Shutting down")
        for sig in (signal_module.SIGTERM, signal_module.SIGINT):
            loop.remove_signal_handler(sig)
        await services.close()
