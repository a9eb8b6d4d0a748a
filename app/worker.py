"""Queue worker process.

Usage:
    python -m app.worker            # run until interrupted
    python -m app.worker --once     # drain ready jobs and exit
"""

import argparse
import asyncio
import logging

from app.core.config import settings
from app.services.pipeline import Pipeline, build_pipeline

logger = logging.getLogger(__name__)

# Seconds between scheduled-campaign and wait-queue sweeps
HOUSEKEEPING_INTERVAL = 60


async def housekeeping(pipeline: Pipeline) -> None:
    """Start campaigns whose send time has passed and retry waiting leads."""
    async with pipeline.queue.session_factory() as db:
        started = await pipeline.dispatcher.start_due(db)
        if started:
            logger.info("Started %d scheduled campaign(s)", started)
        await pipeline.assignments.retry_waiting(db)


async def run(once: bool = False) -> None:
    pipeline = build_pipeline()

    if once:
        await housekeeping(pipeline)
        processed = await pipeline.queue.run_pending()
        logger.info("Processed %d job(s)", processed)
        return

    await pipeline.queue.start()
    try:
        while True:
            try:
                await housekeeping(pipeline)
            except Exception as e:
                logger.error("Housekeeping failed: %s", e)
            await asyncio.sleep(HOUSEKEEPING_INTERVAL)
    finally:
        await pipeline.queue.stop()


def main():
    """Parse CLI arguments and run the worker."""
    parser = argparse.ArgumentParser(description="Lead and campaign queue worker")
    parser.add_argument(
        "--once",
        action="store_true",
        help="Run housekeeping, drain every ready job, then exit",
    )
    parser.add_argument(
        "--log-level",
        default="DEBUG" if settings.APP_ENV == "development" else "INFO",
        help="Logging level (default: DEBUG in development, INFO otherwise)",
    )
    args = parser.parse_args()

    logging.basicConfig(
        level=args.log_level.upper(),
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )
    logger.info("Starting queue worker (%s)", settings.APP_ENV)
    try:
        asyncio.run(run(once=args.once))
    except KeyboardInterrupt:
        logger.info("Queue worker interrupted")


if __name__ == "__main__":
    main()
