"""arq worker for team notifications.

Start with:
    arq corrucalc.worker.WorkerSettings

The web process enqueues `send_lead_notification` jobs (when
NOTIFICATIONS_VIA_WORKER=true) instead of delivering in-process.
"""

from __future__ import annotations

import logging
from typing import Any

from arq.connections import ArqRedis

from corrucalc.config import get_config
from corrucalc.core.logging import configure_logging
from corrucalc.core.queue import get_redis_settings
from corrucalc.notifications.leads import LeadNotification, LeadNotifier

logger = logging.getLogger(__name__)

JOB_NAME = "send_lead_notification"


async def startup(ctx: dict[str, Any]) -> None:
    """Initialize resources when worker starts."""
    config = get_config()
    configure_logging(config.log_level)
    ctx["notifier"] = LeadNotifier.from_config(config.notifications)
    logger.info("worker_started")


async def shutdown(ctx: dict[str, Any]) -> None:
    logger.info("worker_stopped")


async def send_lead_notification(ctx: dict[str, Any], payload: dict[str, Any]) -> dict[str, bool]:
    """Deliver one serialized LeadNotification."""
    notification = LeadNotification.model_validate(payload)
    results = await ctx["notifier"].notify(notification)
    logger.info("worker_notification kind=%s results=%s", notification.kind.value, results)
    return results


async def enqueue_lead_notification(queue: ArqRedis, notification: LeadNotification) -> None:
    await queue.enqueue_job(JOB_NAME, notification.model_dump(mode="json"))


class WorkerSettings:
    functions = [send_lead_notification]
    on_startup = startup
    on_shutdown = shutdown
    redis_settings = get_redis_settings()
