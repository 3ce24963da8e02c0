"""prcleaner entry point: wires everything together and runs the service."""

from __future__ import annotations

import asyncio
import signal
import sys

import click

from prcleaner import __version__
from prcleaner.cleaner import AzureCleaner, load_providers
from prcleaner.config import Settings, load_settings
from prcleaner.core.bus import EventBus
from prcleaner.core.dispatcher import CleanupDispatcher, invoke
from prcleaner.core.scheduler import CleanupScheduler
from prcleaner.models import CleanupInvocation
from prcleaner.transports import create_transport
from prcleaner.utils.logging import get_logger, setup_logging
from prcleaner.webhooks.server import WebhookServer

log = get_logger(__name__)


def build_cleaner(settings: Settings) -> AzureCleaner:
    return AzureCleaner(settings.cleaner, load_providers(settings.cleaner.providers))


class PrCleaner:
    """Main application orchestrator."""

    def __init__(self, settings: Settings) -> None:
        self.settings = settings

        self.cleaner = build_cleaner(settings)
        self.bus = EventBus(create_transport(settings.event_bus))
        self.bus.subscribe(CleanupDispatcher(self.cleaner))
        self.scheduler = CleanupScheduler(self.bus, settings.webhooks.cleanup_delay)
        self.server = WebhookServer(settings.webhooks, self.scheduler, self.bus)

    async def start(self) -> None:
        log.info(
            "prcleaner_starting",
            version=__version__,
            transport=self.settings.event_bus.selected_transport.value,
        )
        # Consumers first so nothing published by the server sits unconsumed
        await self.bus.start()
        await self.server.start()
        log.info("prcleaner_ready")

    async def stop(self) -> None:
        log.info("prcleaner_stopping")
        await self.server.stop()
        await self.bus.stop()
        await self.cleaner.close()
        log.info("prcleaner_stopped")


async def run(settings: Settings) -> None:
    app = PrCleaner(settings)

    loop = asyncio.get_running_loop()
    stop_event = asyncio.Event()

    def _signal_handler() -> None:
        log.info("shutdown_signal")
        stop_event.set()

    if sys.platform != "win32":
        for sig in (signal.SIGINT, signal.SIGTERM):
            loop.add_signal_handler(sig, _signal_handler)

    await app.start()

    try:
        if sys.platform == "win32":
            while not stop_event.is_set():
                await asyncio.sleep(1)
        else:
            await stop_event.wait()
    except KeyboardInterrupt:
        pass
    finally:
        await app.stop()


async def run_cleanup(settings: Settings, invocation: CleanupInvocation) -> None:
    cleaner = build_cleaner(settings)
    try:
        await invoke(cleaner, invocation)
    finally:
        await cleaner.close()


@click.group()
@click.option("--config", "config_path", default=None, help="Path to config YAML file")
@click.option("--log-level", default=None, help="Log level (DEBUG, INFO, WARNING, ERROR)")
@click.version_option(__version__, prog_name="prcleaner")
@click.pass_context
def cli(ctx: click.Context, config_path: str | None, log_level: str | None) -> None:
    """Clean up cloud resources provisioned for closed pull requests."""
    settings = load_settings(config_path)
    if log_level:
        settings.log_level = log_level
    setup_logging(level=settings.log_level, json_output=settings.log_json)
    ctx.obj = settings


@cli.command()
@click.pass_obj
def serve(settings: Settings) -> None:
    """Run the webhook server and the cleanup consumer."""
    asyncio.run(run(settings))


@cli.command()
@click.option("--pr", "--pull-request-id", "pull_request_id", type=int, required=True,
              help="Identifier of the pull request to clean up")
@click.option("--remote", "--remote-url", "remote_url", default=None,
              help="Git remote URL of the repository")
@click.option("--project", "--project-url", "project_url", default=None,
              help="Project URL, overrides the remote URL when present")
@click.pass_obj
def cleanup(
    settings: Settings,
    pull_request_id: int,
    remote_url: str | None,
    project_url: str | None,
) -> None:
    """Clean up a pull request's resources now, skipping the webhook and bus."""
    invocation = CleanupInvocation(
        pr_id=pull_request_id,
        remote_url=remote_url,
        raw_project_url=project_url,
    )
    try:
        asyncio.run(run_cleanup(settings, invocation))
    except Exception as exc:
        log.exception("cleanup_failed", pull_request_id=pull_request_id)
        raise click.exceptions.Exit(1) from exc
    log.info("cleanup_finished", pull_request_id=pull_request_id)


if __name__ == "__main__":
    cli()
