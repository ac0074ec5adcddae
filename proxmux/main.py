"""Main entry point for proxmux."""

import asyncio
import signal
import sys

from .orchestrator.main_orchestrator import ProxyOrchestrator
from .shared.config import Config, get_config
from .shared.errors import ProxmuxError
from .shared.logging import configure_logging, get_logger

logger = get_logger("main")


async def run_server(config: Config) -> None:
    """Run the orchestrator until SIGINT or SIGTERM."""
    stop_event = asyncio.Event()
    loop = asyncio.get_running_loop()
    for sig in (signal.SIGINT, signal.SIGTERM):
        try:
            loop.add_signal_handler(sig, stop_event.set)
        except NotImplementedError:
            # Platforms without loop signal support fall back to KeyboardInterrupt
            pass

    orchestrator = ProxyOrchestrator(config.CONFIG_FILE)
    await orchestrator.run(stop_event)


def main() -> None:
    """Main entry point for CLI execution."""
    try:
        configure_logging()
        config = get_config()

        logger.info(
            "proxmux starting",
            config_file=config.CONFIG_FILE,
            host=config.SERVER_HOST,
            sniff_port=config.TCP_SNIFF_PORT
        )
        asyncio.run(run_server(config))
        logger.info("proxmux stopped")

    except KeyboardInterrupt:
        logger.info("Shutting down proxmux (interrupted)")
        sys.exit(0)
    except ProxmuxError as e:
        logger.error("Failed to start proxmux", error=e.message)
        print(f"ERROR: {e.message}", file=sys.stderr)
        sys.exit(1)


if __name__ == "__main__":
    main()
