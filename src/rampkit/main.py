"""Main entry point - runs the anchor proxy API."""

import asyncio
import logging
import signal
from typing import Optional

import uvicorn

from rampkit.api.app import create_app
from rampkit.config import Settings, get_settings

logger = logging.getLogger(__name__)


def configure_logging(settings: Settings) -> None:
    logging.basicConfig(
        level=logging.DEBUG if settings.debug else logging.INFO,
        format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
    )
    # Request bodies are logged by the anchor clients at DEBUG already
    logging.getLogger("httpx").setLevel(logging.WARNING)


def log_anchor_config(settings: Settings) -> None:
    """Warn about providers that will fail for lack of credentials."""
    missing = []
    if not settings.etherfuse_api_key:
        missing.append("etherfuse")
    if not settings.alfredpay_api_key or not settings.alfredpay_api_secret:
        missing.append("alfredpay")
    if not settings.blindpay_api_key or not settings.blindpay_instance_id:
        missing.append("blindpay")

    for provider in missing:
        logger.warning(f"{provider} credentials not set - requests to it will be rejected")
    if not settings.webhook_secret:
        logger.warning("WEBHOOK_SECRET not set - webhook signatures are not verified")


class Application:
    """Serves the API until SIGINT or SIGTERM."""

    def __init__(self, settings: Settings):
        self.settings = settings
        self.server: Optional[uvicorn.Server] = None

    async def run(self):
        logger.info(f"Starting rampkit ({self.settings.environment})")
        log_anchor_config(self.settings)

        config = uvicorn.Config(
            create_app(settings=self.settings),
            host=self.settings.api_host,
            port=self.settings.api_port,
            log_level="debug" if self.settings.debug else "info",
        )
        self.server = uvicorn.Server(config)
        logger.info(f"Starting API server on {self.settings.api_host}:{self.settings.api_port}")
        await self.server.serve()
        logger.info("Shutdown complete")

    def shutdown(self):
        """Ask the server to finish in-flight requests and exit."""
        logger.info("Shutdown requested")
        if self.server is not None:
            self.server.should_exit = True


def main():
    """Main entry point."""
    settings = get_settings()
    configure_logging(settings)
    app = Application(settings)

    loop = asyncio.new_event_loop()
    asyncio.set_event_loop(loop)
    for sig in (signal.SIGINT, signal.SIGTERM):
        loop.add_signal_handler(sig, app.shutdown)

    try:
        loop.run_until_complete(app.run())
    except KeyboardInterrupt:
        logger.info("Keyboard interrupt received")
    finally:
        loop.close()


if __name__ == "__main__":
    main()
