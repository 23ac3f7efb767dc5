"""
Entry point for the image relay worker.

    python -m image_relay            # run until SIGINT/SIGTERM
    python -m image_relay --check-config

Exit status is 1 when configuration is missing or the subscription cannot be
established, 0 on a clean shutdown.
"""

from __future__ import annotations

import argparse
import asyncio
import json
import logging
import signal
import sys
from typing import Optional, Sequence

from ..core_config import Settings, get_settings, log_startup_diagnostics, print_effective_config
from ..errors import ConfigurationError, SubscriptionError
from ..logging_setup import configure_logging
from .service import ImageRelayService

logger = logging.getLogger(__name__)

SERVICE_NAME = "image-relay"
EXIT_OK = 0
EXIT_FATAL = 1


def ensure_selector_policy_on_windows() -> None:
    """psycopg async connections do not work on the Windows Proactor loop."""
    if not sys.platform.startswith("win"):
        return
    selector_cls = getattr(asyncio, "WindowsSelectorEventLoopPolicy", None)
    if selector_cls is not None:
        asyncio.set_event_loop_policy(selector_cls())


def _install_signal_handlers(stop: asyncio.Event) -> None:
    loop = asyncio.get_running_loop()
    for sig in (signal.SIGINT, signal.SIGTERM):
        try:
            loop.add_signal_handler(sig, stop.set)
        except (NotImplementedError, RuntimeError):
            # Windows event loops do not support add_signal_handler.
            pass


async def run(settings: Settings, service: Optional[ImageRelayService] = None) -> int:
    """Start the service and block until the subscription ends or a stop signal arrives."""
    service = service or ImageRelayService(settings)

    try:
        listen_task = await service.start()
    except (ConfigurationError, SubscriptionError) as exc:
        logger.critical("Error starting listener: %s", exc)
        await service.close()
        return EXIT_FATAL

    stop = asyncio.Event()
    _install_signal_handlers(stop)
    stop_task = asyncio.create_task(stop.wait())

    try:
        await asyncio.wait({listen_task, stop_task}, return_when=asyncio.FIRST_COMPLETED)
    finally:
        stop_task.cancel()

    exit_code = EXIT_OK
    if listen_task.done() and not listen_task.cancelled():
        error = listen_task.exception()
        if error is not None:
            logger.critical("Notification subscription lost: %s", error, exc_info=error)
        else:
            logger.critical("Notification subscription ended unexpectedly")
        exit_code = EXIT_FATAL
    else:
        logger.info("Shutdown requested; stopping listener")

    await service.close()
    return exit_code


def _parse_args(argv: Optional[Sequence[str]]) -> argparse.Namespace:
    parser = argparse.ArgumentParser(
        prog=SERVICE_NAME,
        description="Relay newly announced images from Postgres notifications into storage.",
    )
    parser.add_argument(
        "--check-config",
        action="store_true",
        help="Validate configuration, print it with secrets redacted, and exit.",
    )
    return parser.parse_args(argv)


def main(argv: Optional[Sequence[str]] = None) -> int:
    args = _parse_args(argv)

    try:
        settings = get_settings()
    except ConfigurationError as exc:
        configure_logging()
        logger.critical("Configuration is not loaded: %s", exc)
        return EXIT_FATAL

    configure_logging(
        level=settings.LOG_LEVEL,
        json_output=settings.is_production,
        service_name=SERVICE_NAME,
    )

    if args.check_config:
        print(json.dumps(print_effective_config(settings), indent=2, default=str))
        return EXIT_OK

    log_startup_diagnostics(SERVICE_NAME, settings)
    ensure_selector_policy_on_windows()

    try:
        return asyncio.run(run(settings))
    except KeyboardInterrupt:
        logger.info("Interrupted")
        return EXIT_OK


if __name__ == "__main__":
    sys.exit(main())
