from __future__ import annotations

from typing import Dict

from worker.broker import broker
from shared.logger import get_logger

logger = get_logger(__name__)


@broker.task
async def run_dispatch_tick() -> Dict[str, int]:
    """Run a single trigger dispatcher tick. Useful for ad-hoc debugging."""
    from api.triggers.dispatcher import TriggerDispatcher  # local import

    logger.info("Running ad-hoc trigger dispatcher tick")
    report = await TriggerDispatcher().tick()
    return {"evaluated": report.evaluated, "fired": report.fired, "failed": report.failed}


__all__ = ["run_dispatch_tick"]
