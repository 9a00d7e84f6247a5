"""Deferred plan work and schedule coordination."""

import asyncio
import logging
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Awaitable, Callable, Dict, List, Optional

from nasbox.models.enums import TriggerSource
from nasbox.services.recurrence import RecurrenceCalculator

logger = logging.getLogger(__name__)

RunHandler = Callable[[int, TriggerSource], Awaitable[object]]


def run_tag(plan_id: int) -> str:
    return f"plan-run-{plan_id}"


def schedule_tag(plan_id: int) -> str:
    return f"plan-schedule-{plan_id}"


class Scheduler(ABC):
    """Deferred work keyed by tag."""

    @abstractmethod
    def enqueue_plan_run(
        self, plan_id: int, delay_seconds: float, trigger_source: TriggerSource, tag: str
    ) -> None:
        ...

    @abstractmethod
    def cancel_work(self, tag: str, pending_only: bool = False) -> int:
        """Cancel work with a tag; returns how many jobs were cancelled."""

    @abstractmethod
    def is_work_active(self, tag: str) -> bool:
        """True while work with the tag is waiting or running."""

    def cancel_plan_work(self, plan_id: int, pending_only: bool = False) -> int:
        return (
            self.cancel_work(run_tag(plan_id), pending_only)
            + self.cancel_work(schedule_tag(plan_id), pending_only)
        )


@dataclass
class _Job:
    plan_id: int
    trigger_source: TriggerSource
    started: bool = False
    task: Optional[asyncio.Task] = field(default=None, repr=False)


class AsyncioScheduler(Scheduler):
    """In-process scheduler running each job as an asyncio task.

    A job sleeps for its delay, then awaits the bound handler. Jobs are
    forgotten once their task finishes. Must be used from the event loop.
    """

    def __init__(self, handler: Optional[RunHandler] = None):
        self._handler = handler
        self._jobs: Dict[str, List[_Job]] = {}

    def bind(self, handler: RunHandler) -> None:
        self._handler = handler

    def enqueue_plan_run(
        self, plan_id: int, delay_seconds: float, trigger_source: TriggerSource, tag: str
    ) -> None:
        if self._handler is None:
            raise RuntimeError("Scheduler has no run handler bound")

        job = _Job(plan_id=plan_id, trigger_source=TriggerSource(trigger_source))
        job.task = asyncio.get_running_loop().create_task(
            self._run_job(job, max(0.0, delay_seconds)), name=tag
        )
        self._jobs.setdefault(tag, []).append(job)
        job.task.add_done_callback(lambda _: self._forget(tag, job))
        logger.info(f"Enqueued {job.trigger_source.value} run of plan {plan_id} in {delay_seconds:.0f}s ({tag})")

    async def _run_job(self, job: _Job, delay_seconds: float) -> None:
        if delay_seconds:
            await asyncio.sleep(delay_seconds)
        job.started = True
        try:
            await self._handler(job.plan_id, job.trigger_source)
        except asyncio.CancelledError:
            raise
        except Exception:
            logger.exception(f"Scheduled work for plan {job.plan_id} failed")

    def _forget(self, tag: str, job: _Job) -> None:
        jobs = self._jobs.get(tag)
        if not jobs:
            return
        if job in jobs:
            jobs.remove(job)
        if not jobs:
            self._jobs.pop(tag, None)

    def cancel_work(self, tag: str, pending_only: bool = False) -> int:
        current = asyncio.current_task() if self._loop_running() else None
        cancelled = 0
        for job in list(self._jobs.get(tag, [])):
            if job.task is current or job.task.done():
                continue
            if pending_only and job.started:
                continue
            job.task.cancel()
            cancelled += 1
        if cancelled:
            logger.info(f"Cancelled {cancelled} job(s) tagged {tag}")
        return cancelled

    @staticmethod
    def _loop_running() -> bool:
        try:
            asyncio.get_running_loop()
        except RuntimeError:
            return False
        return True

    def is_work_active(self, tag: str) -> bool:
        return any(not job.task.done() for job in self._jobs.get(tag, []))

    async def shutdown(self) -> None:
        tasks = [job.task for jobs in self._jobs.values() for job in jobs if not job.task.done()]
        for task in tasks:
            task.cancel()
        await asyncio.gather(*tasks, return_exceptions=True)
        self._jobs.clear()


class PlanScheduleCoordinator:
    """Keeps exactly one pending scheduled run per schedulable plan."""

    def __init__(
        self,
        plan_repository,
        scheduler: Scheduler,
        calculator: Optional[RecurrenceCalculator] = None,
        now: Optional[Callable[[], datetime]] = None
    ):
        self.plan_repository = plan_repository
        self.scheduler = scheduler
        self.calculator = calculator or RecurrenceCalculator()
        self.clock = now or (lambda: datetime.now(self.calculator.tz))

    def synchronize_plan(self, plan) -> Optional[datetime]:
        """Cancel or re-arm the plan's scheduled run.

        Returns:
            The next scheduled run, or None when the plan is not scheduled.
        """
        if not plan.enabled or not plan.schedule_enabled:
            self.cancel_plan(plan.id)
            return None

        now = self.clock()
        next_run = self.calculator.next_run_for_plan(plan, now)
        delay = max(0.0, (next_run.astimezone(timezone.utc) - now.astimezone(timezone.utc)).total_seconds())

        self.scheduler.cancel_work(schedule_tag(plan.id), pending_only=True)
        self.scheduler.enqueue_plan_run(plan.id, delay, TriggerSource.SCHEDULED, schedule_tag(plan.id))
        logger.info(f"Plan {plan.id} next scheduled run at {next_run.isoformat()}")
        return next_run

    def cancel_plan(self, plan_id: int) -> None:
        self.scheduler.cancel_work(schedule_tag(plan_id), pending_only=True)

    def reconcile_schedules(self) -> int:
        """Synchronize every plan; returns how many are scheduled."""
        scheduled = 0
        for plan in self.plan_repository.list_plans():
            if self.synchronize_plan(plan) is not None:
                scheduled += 1
        logger.info(f"Reconciled schedules: {scheduled} plan(s) scheduled")
        return scheduled
