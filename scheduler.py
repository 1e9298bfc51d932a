import asyncio
from datetime import datetime, timedelta
import logging
from typing import Callable

from domain.projection import ProjectionJob


logger = logging.getLogger(__name__)


def seconds_until_midnight(now: datetime) -> float:
    tomorrow = (now + timedelta(days=1)).replace(hour=0, minute=0, second=0, microsecond=0)
    return (tomorrow - now).total_seconds()


async def run_daily(
    job: ProjectionJob,
    *,
    now: Callable[[], datetime] = datetime.now,
) -> None:
    """Extend the projection window at every local midnight until cancelled."""
    while True:
        delay = seconds_until_midnight(now())
        logger.info("Next projection run in %.0f seconds", delay)
        await asyncio.sleep(delay)
        try:
            report = await job.extend()
        except Exception:
            logger.exception("Scheduled projection run failed")
        else:
            if report.failed:
                logger.warning("Scheduled projection run: %r", report)
