"""Main entry point for ENS Insights."""

import asyncio
import signal
import sys
from typing import Optional

from .container import Container
from .utils.logger import setup_logger

logger = setup_logger(__name__)


class EnsInsightsApp:
    """Main application class."""

    def __init__(self, container: Optional[Container] = None):
        """Initialize the application."""
        self.container = container or Container()
        self.running = False

    async def start(self) -> None:
        """Start the application."""
        logger.info("Starting ENS Insights activity monitor")

        try:
            await self.container.initialize()

            # Set up signal handlers for graceful shutdown
            self._setup_signal_handlers()

            self.running = True
            await self.container.get_activity_monitor().start()

        except KeyboardInterrupt:
            logger.info("Received interrupt signal")
        except Exception as e:
            logger.error(f"Application error: {e}")
            raise
        finally:
            await self.stop()

    async def stop(self) -> None:
        """Stop the application."""
        if not self.running:
            return

        logger.info("Stopping ENS Insights application")
        self.running = False
        await self.container.cleanup()

    def _setup_signal_handlers(self) -> None:
        """Set up signal handlers for graceful shutdown."""
        def signal_handler(signum, frame):
            logger.info(f"Received signal {signum}")
            asyncio.create_task(self.stop())

        signal.signal(signal.SIGINT, signal_handler)
        signal.signal(signal.SIGTERM, signal_handler)


async def main() -> None:
    """Main async function."""
    app = EnsInsightsApp()
    await app.start()


def cli_main() -> None:
    """CLI entry point."""
    try:
        asyncio.run(main())
    except KeyboardInterrupt:
        logger.info("Application stopped by user")
        sys.exit(0)
    except Exception as e:
        logger.error(f"Application failed: {e}")
        sys.exit(1)


if __name__ == "__main__":
    cli_main()
