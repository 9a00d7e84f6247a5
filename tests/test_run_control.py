"""Tests for starting, stopping and reconciling runs."""

from unittest.mock import AsyncMock, MagicMock

import pytest

from nasbox.models.enums import RunStatus, TriggerSource
from nasbox.services.run_control import (
    INTERRUPTED_SUMMARY,
    EnqueueResult,
    ManualRunService,
    MarkRunInterruptedService,
    PlanRunDispatcher,
    StaleRunReconciler,
    StopRunResult,
    StopRunService,
)
from nasbox.services.run_executor import CANCELED_SUMMARY, ActiveRunRegistry, CancellationToken, RunExecutor
from nasbox.services.scheduler import PlanScheduleCoordinator, Scheduler, run_tag


@pytest.fixture
def registry():
    return ActiveRunRegistry()


@pytest.fixture
def scheduler():
    scheduler = MagicMock(spec=Scheduler)
    scheduler.is_work_active.return_value = False
    return scheduler


class TestManualRunService:
    """Tests for queueing manual runs."""

    def test_enqueues_run(self, plan_repository, plan, scheduler, registry):
        service = ManualRunService(plan_repository, scheduler, registry)

        assert service.enqueue(plan.id) is EnqueueResult.ENQUEUED
        scheduler.enqueue_plan_run.assert_called_once_with(plan.id, 0, TriggerSource.MANUAL, run_tag(plan.id))

    def test_ignored_while_work_is_queued(self, plan_repository, plan, scheduler, registry):
        scheduler.is_work_active.return_value = True
        service = ManualRunService(plan_repository, scheduler, registry)

        assert service.enqueue(plan.id) is EnqueueResult.IGNORED_ALREADY_ACTIVE
        scheduler.enqueue_plan_run.assert_not_called()

    def test_ignored_while_plan_is_running(self, plan_repository, plan, scheduler, registry):
        registry.register(10, plan.id, CancellationToken())
        service = ManualRunService(plan_repository, scheduler, registry)

        assert service.enqueue(plan.id) is EnqueueResult.IGNORED_ALREADY_ACTIVE

    def test_ignored_for_disabled_plan(self, plan_repository, plan, scheduler, registry):
        plan_repository.update_plan(plan.id, enabled=False)
        service = ManualRunService(plan_repository, scheduler, registry)

        assert service.enqueue(plan.id) is EnqueueResult.IGNORED_DISABLED
        assert service.enqueue(999) is EnqueueResult.IGNORED_DISABLED


class TestPlanRunDispatcher:
    """Tests for the handler scheduled work calls."""

    @pytest.fixture
    def executor(self):
        return AsyncMock(spec=RunExecutor)

    @pytest.fixture
    def coordinator(self):
        return MagicMock(spec=PlanScheduleCoordinator)

    @pytest.mark.asyncio
    async def test_manual_runs_execute(self, executor, plan_repository, plan, registry, coordinator):
        dispatcher = PlanRunDispatcher(executor, plan_repository, registry, coordinator)

        assert await dispatcher(plan.id, TriggerSource.MANUAL) is EnqueueResult.ENQUEUED
        executor.execute.assert_awaited_once_with(plan.id, TriggerSource.MANUAL)
        coordinator.synchronize_plan.assert_not_called()

    @pytest.mark.asyncio
    async def test_scheduled_run_executes_and_rearms(self, executor, plan_repository, plan, registry, coordinator):
        plan_repository.update_plan(plan.id, schedule_enabled=True)
        dispatcher = PlanRunDispatcher(executor, plan_repository, registry, coordinator)

        assert await dispatcher(plan.id, TriggerSource.SCHEDULED) is EnqueueResult.ENQUEUED
        executor.execute.assert_awaited_once_with(plan.id, TriggerSource.SCHEDULED)
        coordinator.synchronize_plan.assert_called_once()

    @pytest.mark.asyncio
    async def test_scheduled_run_coalesces_with_active_run(
        self, executor, plan_repository, plan, registry, coordinator
    ):
        plan_repository.update_plan(plan.id, schedule_enabled=True)
        registry.register(10, plan.id, CancellationToken())
        dispatcher = PlanRunDispatcher(executor, plan_repository, registry, coordinator)

        assert await dispatcher(plan.id, TriggerSource.SCHEDULED) is EnqueueResult.COALESCED
        executor.execute.assert_not_awaited()
        coordinator.synchronize_plan.assert_called_once()

    @pytest.mark.asyncio
    async def test_scheduled_run_skips_unscheduled_plan(
        self, executor, plan_repository, plan, registry, coordinator
    ):
        dispatcher = PlanRunDispatcher(executor, plan_repository, registry, coordinator)

        assert await dispatcher(plan.id, TriggerSource.SCHEDULED) is EnqueueResult.IGNORED_DISABLED
        executor.execute.assert_not_awaited()


class TestStopRunService:
    """Tests for stopping runs."""

    @pytest.fixture
    def service(self, run_repository, run_log_repository, registry, scheduler):
        return StopRunService(run_repository, run_log_repository, registry, scheduler)

    def test_unknown_run(self, service):
        assert service.stop(999) is StopRunResult.NOT_FOUND

    def test_live_run_is_signalled(self, service, run_repository, run_log_repository, registry, scheduler, plan):
        run = run_repository.create_run(plan.id)
        token = CancellationToken()
        registry.register(run.id, plan.id, token)

        assert service.stop(run.id) is StopRunResult.REQUESTED
        assert token.is_cancelled
        # The executor writes the terminal status itself
        assert run_repository.get_run(run.id).status == "RUNNING"
        assert [log.message for log in run_log_repository.logs_for_run(run.id)] == ["Run canceled by user"]
        scheduler.cancel_work.assert_called_with(run_tag(plan.id), pending_only=True)

        assert service.stop(run.id) is StopRunResult.ALREADY_REQUESTED

    def test_orphaned_run_is_finalized(self, service, run_repository, plan):
        run = run_repository.create_run(plan.id)

        assert service.stop(run.id) is StopRunResult.REQUESTED

        stopped = run_repository.get_run(run.id)
        assert stopped.status == "CANCELED"
        assert stopped.finished_at is not None
        assert stopped.summary_error == CANCELED_SUMMARY
        assert service.stop(run.id) is StopRunResult.ALREADY_REQUESTED

    def test_finished_run_is_not_active(self, service, run_repository, plan):
        run = run_repository.create_run(plan.id)
        run_repository.update_run(run.id, status=RunStatus.SUCCESS)

        assert service.stop(run.id) is StopRunResult.NOT_ACTIVE


class TestInterruptedRuns:
    """Tests for marking and reconciling interrupted runs."""

    def test_mark_running_run(self, run_repository, run_log_repository, plan):
        run = run_repository.create_run(plan.id)
        service = MarkRunInterruptedService(run_repository, run_log_repository)

        assert service.mark(run.id) is True
        marked = run_repository.get_run(run.id)
        assert marked.status == "INTERRUPTED"
        assert marked.summary_error == INTERRUPTED_SUMMARY
        logs = run_log_repository.logs_for_run(run.id)
        assert logs[-1].message == "Run marked as interrupted"
        assert logs[-1].severity == "ERROR"

        assert service.mark(run.id) is False

    def test_reconciler_only_interrupts_orphans(self, run_repository, run_log_repository, registry, scheduler, plan):
        orphan = run_repository.create_run(plan.id)
        live = run_repository.create_run(plan.id)
        registry.register(live.id, plan.id, CancellationToken())
        finished = run_repository.create_run(plan.id)
        run_repository.update_run(finished.id, status=RunStatus.SUCCESS)

        reconciler = StaleRunReconciler(
            run_repository, scheduler, registry, MarkRunInterruptedService(run_repository, run_log_repository)
        )

        assert reconciler.reconcile() == 1
        assert run_repository.get_run(orphan.id).status == "INTERRUPTED"
        assert run_repository.get_run(live.id).status == "RUNNING"
        assert run_repository.get_run(finished.id).status == "SUCCESS"

    def test_reconciler_spares_runs_with_active_work(
        self, run_repository, run_log_repository, registry, scheduler, plan
    ):
        run = run_repository.create_run(plan.id)
        scheduler.is_work_active.side_effect = lambda tag: tag == run_tag(plan.id)

        reconciler = StaleRunReconciler(
            run_repository, scheduler, registry, MarkRunInterruptedService(run_repository, run_log_repository)
        )

        assert reconciler.reconcile() == 0
        assert run_repository.get_run(run.id).status == "RUNNING"
