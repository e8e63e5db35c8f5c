"""
Background worker for calendar and email integration jobs.

Usage:
    python -m portal.worker

Polls the integration_jobs table and runs due jobs. Run it as its own
process next to the API.
"""

import logging
import time

from sqlalchemy.exc import SQLAlchemyError

from portal.core import config
from portal.database import SessionLocal, ensure_schema
from portal.integrations.dispatcher import IntegrationDispatcher
from portal.models import appointment, availability, integration_job, profile  # noqa: F401

logging.basicConfig(
    level=logging.INFO,
    format="%(asctime)s [%(levelname)s] %(message)s",
    datefmt="%Y-%m-%d %H:%M:%S",
)
logger = logging.getLogger(__name__)


def run_once(dispatcher: IntegrationDispatcher, limit: int | None = None) -> int:
    with SessionLocal() as db:
        return dispatcher.run_pending_jobs(db, limit=limit or config.WORKER_BATCH_SIZE)


def worker_loop(dispatcher: IntegrationDispatcher | None = None) -> None:
    """Poll for due jobs until interrupted."""
    dispatcher = dispatcher or IntegrationDispatcher()
    logger.info(
        "Worker starting (poll interval: %ss, batch size: %s)",
        config.WORKER_POLL_INTERVAL,
        config.WORKER_BATCH_SIZE,
    )

    if not dispatcher.calendar.enabled:
        logger.warning("Google service account not configured - calendar calls will be logged but not sent")
    if not dispatcher.email.enabled:
        logger.warning("RESEND_API_KEY not set - emails will be logged but not sent")

    while True:
        try:
            run_once(dispatcher)
        except SQLAlchemyError:
            logger.exception("Error in worker loop")

        time.sleep(config.WORKER_POLL_INTERVAL)


def main() -> None:
    config.validate_runtime_config()
    ensure_schema()

    try:
        worker_loop()
    except KeyboardInterrupt:
        logger.info("Worker shutting down")


if __name__ == "__main__":
    main()
