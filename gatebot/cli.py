"""CLI entry point — Click group + bot run loop."""
from __future__ import annotations

import asyncio
import logging
import signal
from pathlib import Path

import click
from rich.logging import RichHandler

from gatebot import ui
from gatebot.config import ConfigError, Settings, load_settings
from gatebot.transport import TransportError

logger = logging.getLogger(__name__)


def _setup_logging(debug: bool) -> None:
    logging.basicConfig(
        level=logging.DEBUG if debug else logging.INFO,
        format="%(name)s: %(message)s",
        datefmt="[%X]",
        handlers=[RichHandler(console=ui.console, rich_tracebacks=True, show_path=False)],
    )
    # httpx logs every Telegram long-poll request at INFO
    logging.getLogger("httpx").setLevel(logging.WARNING)


def _load_or_exit(env_file: str | None, data_dir: str | None) -> Settings:
    try:
        settings = load_settings(env_file)
    except ConfigError as e:
        for error in e.errors:
            ui.print_error(error)
        raise SystemExit(1)
    if data_dir:
        settings.data_dir = Path(data_dir).expanduser()
    return settings


@click.group(invoke_without_command=True)
@click.pass_context
def main(ctx: click.Context) -> None:
    """gatebot — Telegram verification bot with admin approval."""
    if ctx.invoked_subcommand is None:
        ctx.invoke(run)


@main.command()
@click.option("--env-file", type=click.Path(dir_okay=False), default=None, help="Extra .env file to load")
@click.option("--data-dir", type=click.Path(file_okay=False), default=None, help="Directory holding the JSON data files")
@click.option("--debug", is_flag=True, help="Debug logging")
def run(env_file: str | None, data_dir: str | None, debug: bool) -> None:
    """Start the bot and poll Telegram until interrupted."""
    _setup_logging(debug)
    settings = _load_or_exit(env_file, data_dir)
    for warning in settings.warnings:
        logger.warning(warning)

    try:
        asyncio.run(_serve(settings))
    except TransportError as e:
        ui.print_error(str(e))
        raise SystemExit(1)


@main.command()
@click.option("--env-file", type=click.Path(dir_okay=False), default=None, help="Extra .env file to load")
@click.option("--data-dir", type=click.Path(file_okay=False), default=None, help="Directory holding the JSON data files")
def check(env_file: str | None, data_dir: str | None) -> None:
    """Validate configuration without connecting to Telegram."""
    settings = _load_or_exit(env_file, data_dir)
    ui.print_settings(settings)
    ui.print_status("Configuration OK")


async def _serve(settings: Settings) -> None:
    from gatebot.telegram import TelegramBot

    bot = TelegramBot(settings)
    await bot.start()
    ui.print_status(f"Telegram bot @{settings.bot_username} connected")

    stop = asyncio.Event()
    loop = asyncio.get_running_loop()
    for sig in (signal.SIGINT, signal.SIGTERM):
        try:
            loop.add_signal_handler(sig, stop.set)
        except NotImplementedError:
            # Windows event loops have no add_signal_handler
            signal.signal(sig, lambda *_: loop.call_soon_threadsafe(stop.set))

    try:
        await stop.wait()
        logger.info("Shutdown signal received")
    finally:
        await bot.stop()
        ui.print_status("Stopped", "dim")
