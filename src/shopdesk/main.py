"""Entry point: ensure every sequence counter exists and number legacy service orders."""

import asyncio

import structlog

from shopdesk.app import App
from shopdesk.config import Config
from shopdesk.logging import setup_logging

logger = structlog.get_logger(__name__)


async def run(app: App) -> None:
    # Counters are initialized on startup by the counter service
    async with app.lifespan():
        count = await app.backfill_order_numbers()
        logger.info("setup_complete", backfilled_orders=count)


def main() -> None:
    config = Config()
    setup_logging(config.debug)
    asyncio.run(run(App(config)))


if __name__ == "__main__":
    main()
