"""ARQ worker for storefront fulfillment retries and cart housekeeping."""

from arq import cron
from libs.common.arq_config import STOREFRONT_QUEUE, get_redis_settings
from libs.common.logging import get_logger

logger = get_logger(__name__)


async def task_retry_side_effects(ctx: dict):
    from services.storefront_service.tasks import retry_pending_side_effects

    logger.info("Running: retry_pending_side_effects")
    await retry_pending_side_effects()


async def task_release_cart_reservations(ctx: dict):
    from services.storefront_service.tasks import release_stale_cart_reservations

    logger.info("Running: release_stale_cart_reservations")
    await release_stale_cart_reservations()


class WorkerSettings:
    redis_settings = get_redis_settings()
    queue_name = STOREFRONT_QUEUE

    functions = [
        task_retry_side_effects,
        task_release_cart_reservations,
    ]

    cron_jobs = [
        cron(
            task_retry_side_effects,
            minute={1, 6, 11, 16, 21, 26, 31, 36, 41, 46, 51, 56},
            run_at_startup=True,
        ),
        cron(
            task_release_cart_reservations,
            minute={3, 18, 33, 48},
        ),
    ]
