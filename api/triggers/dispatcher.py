"""
Trigger dispatcher: decides, once per tick, which active workflows fire.

Poll-kind workflows ask their source adapter for new items since the stored
watermark and run once per new item; schedule-kind workflows run once per due
cron instant. Webhook and manual workflows are ignored here.
"""
from __future__ import annotations

import asyncio
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from typing import Any, Dict, Optional

# Ensure the built-in poll adapters register themselves.
import api.triggers.polling.adapters.google_calendar  # noqa: F401
import api.triggers.polling.adapters.google_drive  # noqa: F401
from api.triggers.errors import TriggerConfigurationError
from api.triggers.polling.adapters.base import PollAdapterError, PollAdapterRegistry, adapter_registry
from api.triggers.state import next_fire_after, poll_interval_minutes, poll_is_due
from api.workflows.executions import run_workflow_execution
from api.workflows.services import list_active_workflows, save_poll_state, save_schedule_state
from shared.config import config
from shared.credentials import CredentialError, CredentialResolver, credential_resolver
from shared.database.workflow_models import TriggerKind, Workflow
from shared.logger import get_logger
from workflow_core.errors import WorkflowDefinitionError
from workflow_core.executor import WorkflowExecutor
from workflow_core.graph import find_trigger_node
from workflow_core.schema import PollState, ScheduleState, TriggerNode, resolve_trigger_kind

logger = get_logger(__name__)

POLL_TIMEOUT_MESSAGE = "Poll timed out"
# Fire base of a schedule that never ran
DEFAULT_FIRST_FIRE_LOOKBACK_SECONDS = 1.0


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


@dataclass(slots=True)
class TickReport:
    """Counters for one dispatcher tick."""

    evaluated: int = 0
    fired: int = 0
    failed: int = 0


class TriggerDispatcher:
    """Evaluates every active workflow's poll or schedule trigger."""

    def __init__(
        self,
        *,
        executor: Optional[WorkflowExecutor] = None,
        poll_adapters: Optional[PollAdapterRegistry] = None,
        credentials: Optional[CredentialResolver] = None,
        max_events_per_poll: Optional[int] = None,
        max_concurrency: Optional[int] = None,
        poll_timeout_seconds: Optional[float] = None,
        first_fire_lookback_seconds: Optional[float] = None,
    ) -> None:
        self.executor = executor
        self.poll_adapters = poll_adapters or adapter_registry
        self.credentials = credentials or credential_resolver
        self.max_events_per_poll = max_events_per_poll or config.poll_max_events_per_tick
        self.max_concurrency = max_concurrency or config.trigger_dispatcher_max_concurrency
        self.poll_timeout_seconds = poll_timeout_seconds or config.external_request_timeout_seconds
        lookback = first_fire_lookback_seconds or DEFAULT_FIRST_FIRE_LOOKBACK_SECONDS
        self.first_fire_lookback = timedelta(seconds=lookback)

    async def tick(self, now: Optional[datetime] = None) -> TickReport:
        """Evaluate all active workflows once. Never raises for a single workflow's failure."""
        now = now or _utcnow()
        workflows = await list_active_workflows()
        report = TickReport(evaluated=len(workflows))
        if not workflows:
            return report

        semaphore = asyncio.Semaphore(self.max_concurrency)

        async def guarded(workflow: Workflow) -> None:
            async with semaphore:
                try:
                    report.fired += await self.dispatch_workflow(workflow, now)
                except Exception:
                    report.failed += 1
                    logger.exception(
                        "Trigger dispatch failed for workflow",
                        extra={"workflow_id": workflow.workflow_id},
                    )

        await asyncio.gather(*(guarded(workflow) for workflow in workflows))
        if report.fired or report.failed:
            logger.info(
                f"Dispatcher tick: {report.evaluated} evaluated, "
                f"{report.fired} executions, {report.failed} failed"
            )
        return report

    async def dispatch_workflow(self, workflow: Workflow, now: datetime) -> int:
        """Fire ``workflow`` if its trigger is due; returns the number of executions started."""
        try:
            trigger = find_trigger_node(workflow.nodes)
        except WorkflowDefinitionError as exc:
            logger.warning(f"Skipping workflow with invalid trigger: {exc}", extra={"workflow_id": workflow.workflow_id})
            return 0
        if trigger is None:
            return 0

        kind = resolve_trigger_kind(trigger, workflow.trigger_type)
        if kind == TriggerKind.POLL.value:
            return await self._dispatch_poll(workflow, trigger, now)
        if kind == TriggerKind.SCHEDULE.value:
            return await self._dispatch_schedule(workflow, trigger, now)
        return 0

    # ------------------------------------------------------------------
    # Poll
    # ------------------------------------------------------------------

    async def _dispatch_poll(self, workflow: Workflow, trigger: TriggerNode, now: datetime) -> int:
        log_extra = {"workflow_id": workflow.workflow_id, "trigger_kind": "poll", "app_id": trigger.app_id}
        state = PollState.load(workflow.poll_state)
        interval = poll_interval_minutes(trigger.config.poll_interval)
        if not poll_is_due(state, interval, now):
            return 0

        adapter = self.poll_adapters.get(trigger.app_id)
        if adapter is None:
            logger.warning(f"No poll adapter for app {trigger.app_id!r}", extra=log_extra)
            return 0

        credential_id = trigger.config.credential_id
        if not credential_id:
            logger.warning("Poll trigger has no credential configured", extra=log_extra)
            return 0
        try:
            credential = await self.credentials.resolve(credential_id, workflow.user_id)
        except CredentialError as exc:
            logger.warning(f"Poll credential unavailable: {exc}", extra=log_extra)
            return 0

        try:
            result = await asyncio.wait_for(
                adapter.poll(trigger.trigger_id, trigger.config.as_options(), credential, state, now=now),
                timeout=self.poll_timeout_seconds,
            )
        except asyncio.TimeoutError:
            await self._record_poll_failure(workflow, state, now, POLL_TIMEOUT_MESSAGE)
            logger.warning(POLL_TIMEOUT_MESSAGE, extra=log_extra)
            return 0
        except PollAdapterError as exc:
            await self._record_poll_failure(workflow, state, now, str(exc))
            logger.warning(f"Poll failed: {exc}", extra=log_extra)
            return 0
        except Exception as exc:
            # unexpected adapter errors still wait out the interval before the next attempt
            await self._record_poll_failure(workflow, state, now, str(exc) or exc.__class__.__name__)
            raise

        next_state = result.next_state.model_copy(update={"last_run_at": now, "last_error": None})
        events = result.events[: self.max_events_per_poll]
        if len(result.events) > len(events):
            logger.info(
                f"Poll returned {len(result.events)} events; executing the first {len(events)}",
                extra=log_extra,
            )

        executed = 0
        try:
            for event in events:
                trigger_data = {
                    "appId": trigger.app_id,
                    "triggerId": trigger.trigger_id,
                    "nodeId": trigger.id,
                    "event": event,
                    "polledAt": now.isoformat(),
                }
                await run_workflow_execution(
                    workflow,
                    trigger_kind=TriggerKind.POLL,
                    trigger_data=trigger_data,
                    executor=self.executor,
                )
                executed += 1
        finally:
            await save_poll_state(workflow, next_state)
        return executed

    async def _record_poll_failure(self, workflow: Workflow, state: PollState, now: datetime, message: str) -> None:
        await save_poll_state(workflow, state.model_copy(update={"last_run_at": now, "last_error": message}))

    # ------------------------------------------------------------------
    # Schedule
    # ------------------------------------------------------------------

    async def _dispatch_schedule(self, workflow: Workflow, trigger: TriggerNode, now: datetime) -> int:
        log_extra = {"workflow_id": workflow.workflow_id, "trigger_kind": "schedule"}
        state = ScheduleState.load(workflow.schedule_state)
        cron_expression = trigger.config.cron_expression or workflow.cron_expression
        timezone_name = trigger.config.timezone or workflow.timezone
        base = state.last_run_at or (now - self.first_fire_lookback)

        try:
            scheduled_for = next_fire_after(cron_expression, timezone_name, base)
        except TriggerConfigurationError as exc:
            logger.warning(f"Schedule trigger misconfigured: {exc}", extra=log_extra)
            return 0

        if scheduled_for > now:
            return 0
        if state.last_scheduled_for is not None and scheduled_for == state.last_scheduled_for:
            return 0

        await save_schedule_state(workflow, ScheduleState(last_run_at=now, last_scheduled_for=scheduled_for))
        trigger_data: Dict[str, Any] = {
            "appId": trigger.app_id,
            "triggerId": trigger.trigger_id,
            "nodeId": trigger.id,
            "scheduledFor": scheduled_for.isoformat(),
            "firedAt": now.isoformat(),
            "cronExpression": cron_expression,
            "timezone": timezone_name or "UTC",
        }
        await run_workflow_execution(
            workflow,
            trigger_kind=TriggerKind.SCHEDULE,
            trigger_data=trigger_data,
            executor=self.executor,
        )
        return 1


__all__ = ["TickReport", "TriggerDispatcher"]
