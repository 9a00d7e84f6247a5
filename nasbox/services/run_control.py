"""Starting, stopping and reconciling plan runs."""

import logging
from enum import Enum
from datetime import datetime
from typing import Callable, Optional

from nasbox.database.database import utcnow
from nasbox.models.enums import LogSeverity, RunStatus, TriggerSource
from nasbox.services.run_executor import ActiveRunRegistry, CANCELED_SUMMARY, RunExecutor
from nasbox.services.scheduler import PlanScheduleCoordinator, Scheduler, run_tag

logger = logging.getLogger(__name__)

INTERRUPTED_SUMMARY = "Run interrupted before completion."


class EnqueueResult(str, Enum):
    ENQUEUED = "ENQUEUED"
    COALESCED = "COALESCED"
    IGNORED_ALREADY_ACTIVE = "IGNORED_ALREADY_ACTIVE"
    IGNORED_DISABLED = "IGNORED_DISABLED"


class StopRunResult(str, Enum):
    REQUESTED = "REQUESTED"
    ALREADY_REQUESTED = "ALREADY_REQUESTED"
    NOT_ACTIVE = "NOT_ACTIVE"
    NOT_FOUND = "NOT_FOUND"


class PlanRunDispatcher:
    """Handler the scheduler calls when a job comes due."""

    def __init__(
        self,
        executor: RunExecutor,
        plan_repository,
        registry: ActiveRunRegistry,
        coordinator: Optional[PlanScheduleCoordinator] = None
    ):
        self.executor = executor
        self.plan_repository = plan_repository
        self.registry = registry
        self.coordinator = coordinator

    async def __call__(self, plan_id: int, trigger_source: TriggerSource) -> EnqueueResult:
        if trigger_source != TriggerSource.SCHEDULED:
            await self.executor.execute(plan_id, TriggerSource.MANUAL)
            return EnqueueResult.ENQUEUED

        plan = self.plan_repository.get_plan(plan_id)
        if plan is None or not plan.enabled or not plan.schedule_enabled:
            logger.info(f"Scheduled run of plan {plan_id} skipped: plan missing or not scheduled")
            return EnqueueResult.IGNORED_DISABLED

        try:
            if self.registry.is_plan_active(plan_id):
                logger.info(f"Scheduled run of plan {plan_id} coalesced with the active run")
                return EnqueueResult.COALESCED
            await self.executor.execute(plan_id, TriggerSource.SCHEDULED)
            return EnqueueResult.ENQUEUED
        finally:
            if self.coordinator is not None:
                refreshed = self.plan_repository.get_plan(plan_id)
                if refreshed is not None:
                    self.coordinator.synchronize_plan(refreshed)


class ManualRunService:
    """Queues a manual run unless the plan already has one waiting or running."""

    def __init__(self, plan_repository, scheduler: Scheduler, registry: ActiveRunRegistry):
        self.plan_repository = plan_repository
        self.scheduler = scheduler
        self.registry = registry

    def enqueue(self, plan_id: int) -> EnqueueResult:
        plan = self.plan_repository.get_plan(plan_id)
        if plan is None or not plan.enabled:
            return EnqueueResult.IGNORED_DISABLED

        if self.scheduler.is_work_active(run_tag(plan_id)) or self.registry.is_plan_active(plan_id):
            logger.info(f"Manual run of plan {plan_id} ignored: a run is already active")
            return EnqueueResult.IGNORED_ALREADY_ACTIVE

        self.scheduler.enqueue_plan_run(plan_id, 0, TriggerSource.MANUAL, run_tag(plan_id))
        return EnqueueResult.ENQUEUED


def _finalize_externally(
    run_repository,
    run_log_repository,
    run,
    status: RunStatus,
    summary: str,
    severity: LogSeverity,
    message: str,
    detail: str,
    clock: Callable[[], datetime]
) -> None:
    now = clock()
    run_repository.update_run(
        run.id,
        status=status,
        finished_at=now,
        summary_error=run.summary_error or summary,
    )
    run_log_repository.append(run.id, severity, message, detail, timestamp=now)


class StopRunService:
    """Stops a run on user request.

    A run executing in this process is signalled and finalizes itself as
    CANCELED after the current item. A RUNNING row with no live executor is
    finalized CANCELED here. Queued work for the plan is cleared either way.
    """

    def __init__(
        self,
        run_repository,
        run_log_repository,
        registry: ActiveRunRegistry,
        scheduler: Optional[Scheduler] = None,
        clock: Callable[[], datetime] = utcnow
    ):
        self.run_repository = run_repository
        self.run_log_repository = run_log_repository
        self.registry = registry
        self.scheduler = scheduler
        self.clock = clock

    def stop(self, run_id: int) -> StopRunResult:
        run = self.run_repository.get_run(run_id)
        if run is None:
            return StopRunResult.NOT_FOUND

        status = RunStatus(run.status)
        if status is RunStatus.CANCELED:
            self._clear_queued_work(run.plan_id)
            return StopRunResult.ALREADY_REQUESTED
        if status.is_terminal:
            return StopRunResult.NOT_ACTIVE

        token = self.registry.token_for(run_id)
        if token is not None:
            if token.is_cancelled:
                self._clear_queued_work(run.plan_id)
                return StopRunResult.ALREADY_REQUESTED
            token.cancel()
            self.run_log_repository.append(
                run_id, LogSeverity.INFO, "Run canceled by user", "Stop requested; finishing current item."
            )
        else:
            _finalize_externally(
                self.run_repository,
                self.run_log_repository,
                run,
                RunStatus.CANCELED,
                CANCELED_SUMMARY,
                LogSeverity.INFO,
                "Run canceled by user",
                "User requested stop.",
                self.clock,
            )

        logger.info(f"Stop requested for run {run_id}")
        self._clear_queued_work(run.plan_id)
        return StopRunResult.REQUESTED

    def _clear_queued_work(self, plan_id: int) -> None:
        if self.scheduler is not None:
            self.scheduler.cancel_work(run_tag(plan_id), pending_only=True)


class MarkRunInterruptedService:
    """Finalizes a RUNNING run whose executor is gone as INTERRUPTED."""

    def __init__(self, run_repository, run_log_repository, clock: Callable[[], datetime] = utcnow):
        self.run_repository = run_repository
        self.run_log_repository = run_log_repository
        self.clock = clock

    def mark(self, run_id: int, detail: str = "No active executor for this run.") -> bool:
        run = self.run_repository.get_run(run_id)
        if run is None or run.status != RunStatus.RUNNING.value:
            return False

        _finalize_externally(
            self.run_repository,
            self.run_log_repository,
            run,
            RunStatus.INTERRUPTED,
            INTERRUPTED_SUMMARY,
            LogSeverity.ERROR,
            "Run marked as interrupted",
            detail,
            self.clock,
        )
        logger.warning(f"Run {run_id} marked as interrupted")
        return True


class StaleRunReconciler:
    """Interrupts RUNNING runs that no scheduler work or live executor owns."""

    def __init__(
        self,
        run_repository,
        scheduler: Scheduler,
        registry: ActiveRunRegistry,
        mark_interrupted: MarkRunInterruptedService,
        limit: int = 200
    ):
        self.run_repository = run_repository
        self.scheduler = scheduler
        self.registry = registry
        self.mark_interrupted = mark_interrupted
        self.limit = limit

    def reconcile(self) -> int:
        interrupted = 0
        active_runs = set(self.registry.active_run_ids())
        for run in self.run_repository.runs_by_statuses([RunStatus.RUNNING], limit=self.limit):
            if run.id in active_runs:
                continue
            if self.scheduler.is_work_active(run_tag(run.plan_id)):
                continue
            if self.mark_interrupted.mark(run.id, "Run had no active work when the service started."):
                interrupted += 1

        if interrupted:
            logger.warning(f"Marked {interrupted} stale run(s) as interrupted")
        return interrupted
