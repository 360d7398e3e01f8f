"""Server command for running the scheduler service."""

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
        instance_id: Annotated[
            str | None,
            typer.Option(
                "--instance-id",
                help="Lock owner id for this process (default: generated)",
            ),
        ] = None,
    ) -> None:
        """Start the dispatchers and Telegram polling."""
        try:
            asyncio.run(_run_server(config, instance_id))
        except KeyboardInterrupt:
            # Use print here since logging may not be configured yet
            print("\nServer stopped")


async def _run_server(
    config_path: Path | None = None,
    instance_id: str | None = None,
) -> None:
    """Run the service until SIGINT/SIGTERM."""
    import signal as signal_module

    from chime.config import ConfigError, load_config
    from chime.config.paths import ensure_chime_home
    from chime.logging import configure_logging
    from chime.service import SchedulerService

    ensure_chime_home()
    configure_logging(use_rich=True, log_to_file=True)

    logger.info("Loading configuration")
    chime_config = load_config(config_path)
    if instance_id:
        chime_config.scheduler.instance_id = instance_id

    try:
        service = SchedulerService(chime_config)
    except ConfigError as e:
        logger.error("service_config_error", extra={"error.message": str(e)})
        raise typer.Exit(1) from None

    shutdown_event = asyncio.Event()
    loop = asyncio.get_running_loop()
    for sig in (signal_module.SIGTERM, signal_module.SIGINT):
        loop.add_signal_handler(sig, shutdown_event.set)

    await service.start()
    try:
        waiter = asyncio.create_task(service.wait())
        stopper = asyncio.create_task(shutdown_event.wait())
        done, pending = await asyncio.wait(
            {waiter, stopper}, return_when=asyncio.FIRST_COMPLETED
        )
        for task in pending:
            task.cancel()
        for task in done:
            if task is waiter and task.exception() is not None:
                logger.error(
                    "telegram_polling_failed",
                    extra={"error.message": str(task.exception())},
                )
    finally:
        logger.info("Shutting down")
        await service.stop()
