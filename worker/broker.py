from __future__ import annotations

import os
from typing import Optional

from taskiq.events import TaskiqEvents
from taskiq.state import TaskiqState
from taskiq_redis import RedisAsyncResultBackend, RedisStreamBroker

from shared.config import config
from shared.database import close_db, init_db
from shared.logger import get_logger

logger = get_logger(__name__)


def _resolve_redis_url() -> str:
    """config.redis_url, then REDIS_URL, then a local default."""
    if config.redis_url:
        return config.redis_url
    return os.getenv("REDIS_URL") or "redis://localhost:6379/0"


redis_url = _resolve_redis_url()
result_backend = RedisAsyncResultBackend(redis_url=redis_url)
broker = RedisStreamBroker(url=redis_url).with_result_backend(result_backend)

_dispatcher_service = None


@broker.on_event(TaskiqEvents.WORKER_STARTUP)
async def _on_worker_startup(_: TaskiqState) -> None:
    """Open the workflow store and start the trigger dispatcher."""
    from api.triggers.scheduler import TriggerDispatcherService  # lazy import

    global _dispatcher_service

    logger.info("Initializing Taskiq worker")
    await init_db()

    if config.trigger_dispatcher_enabled:
        _dispatcher_service = TriggerDispatcherService(interval_seconds=config.trigger_dispatcher_interval_seconds)
        await _dispatcher_service.start()
    else:
        logger.info("Trigger dispatcher disabled via configuration")


@broker.on_event(TaskiqEvents.WORKER_SHUTDOWN)
async def _on_worker_shutdown(_: TaskiqState) -> None:
    """Stop the dispatcher loop and close the workflow store."""
    global _dispatcher_service

    if _dispatcher_service:
        logger.info("Stopping trigger dispatcher")
        await _dispatcher_service.stop()
        _dispatcher_service = None

    await close_db()
    logger.info("Taskiq worker shutdown complete")


__all__ = ["broker"]
