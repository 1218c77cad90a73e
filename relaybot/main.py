"""
relaybot - Application Entry Point
==================================

Bootstrap
---------
- Logging setup
- Config validation
- Application context initialization
- Signal handling (SIGTERM / SIGINT request a graceful shutdown)
- Exit code: 0 on clean shutdown, 1 on fatal error, 2 on invalid config
"""

import asyncio
import signal
import sys

from relaybot.core.config.config import Config
from relaybot.core.config.errors import ConfigValidationError
from relaybot.core.infra.application_context import ApplicationContext
from relaybot.core.logging.logger import get_logger, setup_logging, shutdown_logging

logger = get_logger(__name__)

EXIT_OK = 0
EXIT_FATAL = 1
EXIT_CONFIG = 2


# ============================================================================
# Signals
# ============================================================================


def _install_signal_handlers(loop: asyncio.AbstractEventLoop, context: ApplicationContext) -> None:
    """Route SIGTERM / SIGINT to a graceful shutdown request."""
    for sig in (signal.SIGTERM, signal.SIGINT):
        try:
            loop.add_signal_handler(sig, context.request_shutdown, f"received {sig.name}")
            logger.debug("%s handler installed", sig.name)
        except NotImplementedError:
            logger.debug("%s not supported on this platform (likely Windows)", sig.name)


# ============================================================================
# Application Entrypoint
# ============================================================================


async def main() -> int:
    """
    relaybot entry point.

    Lifecycle:
        1. Validate configuration
        2. Build the application context
        3. Run until shutdown is requested
        4. Tear down (inside ApplicationContext.run)
    """
    logger.info("========== RELAYBOT STARTUP ==========")

    try:
        Config.validate()
        logger.info("✓ Configuration validated", extra=Config.get_config_summary())
    except ConfigValidationError as exc:
        logger.critical(
            "Configuration validation failed",
            extra={"problems": exc.problems, "error_type": type(exc).__name__},
        )
        return EXIT_CONFIG

    context = ApplicationContext()

    try:
        await context.initialize()
        _install_signal_handlers(asyncio.get_running_loop(), context)
        await context.run()
    except asyncio.CancelledError:
        logger.warning("Main task cancelled; shutting down")
        await context.shutdown()
        raise
    except Exception as exc:
        logger.critical(
            "Fatal error",
            extra={"error": str(exc), "error_type": type(exc).__name__},
            exc_info=True,
        )
        return EXIT_FATAL

    logger.info(
        "========== RELAYBOT STOPPED ==========",
        extra={"reason": context.coordinator.shutdown_reason if context.coordinator else None},
    )
    return EXIT_OK


def run() -> None:
    """Console script entry point."""
    setup_logging()
    exit_code = EXIT_FATAL
    try:
        exit_code = asyncio.run(main())
    except KeyboardInterrupt:
        logger.info("Bot manually stopped via keyboard interrupt.")
        exit_code = EXIT_OK
    finally:
        shutdown_logging()
    sys.exit(exit_code)


if __name__ == "__main__":
    run()
