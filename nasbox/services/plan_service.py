"""Plan management and plan-level queries."""

import logging
from datetime import datetime
from typing import Any, Dict, List, Optional

from nasbox.models.enums import ScheduleFrequency, SourceType
from nasbox.models.plan import Plan
from nasbox.services.media_source import MediaSource, SourceDescriptor
from nasbox.services.recurrence import format_schedule_summary
from nasbox.services.run_executor import ActiveRunRegistry
from nasbox.services.scheduler import PlanScheduleCoordinator

logger = logging.getLogger(__name__)

PLAN_FIELDS = {
    "name",
    "enabled",
    "source_type",
    "source_album",
    "folder_path",
    "include_videos",
    "server_id",
    "directory_template",
    "filename_pattern",
    "schedule_enabled",
    "schedule_frequency",
    "schedule_time_minutes",
    "schedule_days_mask",
    "schedule_day_of_month",
    "schedule_interval_hours",
}


def _validate(fields: Dict[str, Any]) -> Dict[str, Any]:
    unknown = set(fields) - PLAN_FIELDS
    if unknown:
        raise ValueError(f"Unknown plan fields: {sorted(unknown)}")

    if "name" in fields and not (fields["name"] or "").strip():
        raise ValueError("Plan name is required")
    if "source_type" in fields:
        source_type = (fields["source_type"] or "").strip().upper()
        if source_type not in {member.value for member in SourceType}:
            raise ValueError(f"Unsupported source type: {fields['source_type']}")
        fields["source_type"] = source_type
    if "schedule_frequency" in fields:
        fields["schedule_frequency"] = ScheduleFrequency.from_raw(fields["schedule_frequency"]).value
    return fields


def schedule_summary(plan: Plan) -> str:
    return format_schedule_summary(
        bool(plan.enabled and plan.schedule_enabled),
        ScheduleFrequency.from_raw(plan.schedule_frequency),
        plan.schedule_time_minutes,
        plan.schedule_days_mask,
        plan.schedule_day_of_month,
        plan.schedule_interval_hours,
    )


class PlanService:
    """CRUD for plans that keeps their schedules in sync."""

    def __init__(
        self,
        plan_repository,
        server_repository,
        backup_record_repository,
        media_source: MediaSource,
        coordinator: Optional[PlanScheduleCoordinator] = None,
        registry: Optional[ActiveRunRegistry] = None
    ):
        self.plan_repository = plan_repository
        self.server_repository = server_repository
        self.backup_record_repository = backup_record_repository
        self.media_source = media_source
        self.coordinator = coordinator
        self.registry = registry

    def _require_server(self, server_id: int) -> None:
        if self.server_repository.get_server(server_id) is None:
            raise ValueError(f"Server {server_id} not found")

    def create_plan(self, **fields: Any) -> Plan:
        """Create a plan and arm its schedule.

        Raises:
            ValueError: If a field is invalid or the server does not exist.
        """
        fields = _validate(fields)
        if "name" not in fields:
            raise ValueError("Plan name is required")
        if "server_id" not in fields:
            raise ValueError("Destination server is required")
        self._require_server(fields["server_id"])

        plan = self.plan_repository.create_plan(Plan(**fields))
        if self.coordinator is not None:
            self.coordinator.synchronize_plan(plan)
        return plan

    def update_plan(self, plan_id: int, **changes: Any) -> Optional[Plan]:
        fields = _validate({key: value for key, value in changes.items() if value is not None})
        if "server_id" in fields:
            self._require_server(fields["server_id"])

        plan = self.plan_repository.update_plan(plan_id, **fields)
        if plan is not None and self.coordinator is not None:
            self.coordinator.synchronize_plan(plan)
        return plan

    def delete_plan(self, plan_id: int) -> bool:
        """Delete a plan after stopping its queued and running work."""
        if self.coordinator is not None:
            self.coordinator.scheduler.cancel_plan_work(plan_id, pending_only=True)
        if self.registry is not None:
            stopped = self.registry.cancel_plan(plan_id)
            if stopped:
                logger.info(f"Stopping run(s) {stopped} of plan {plan_id} before deleting it")
        return self.plan_repository.delete_plan(plan_id)

    def list_plans(self) -> List[Plan]:
        return self.plan_repository.list_plans()

    def get_plan(self, plan_id: int) -> Optional[Plan]:
        return self.plan_repository.get_plan(plan_id)

    def next_run(self, plan: Plan, now: Optional[datetime] = None) -> Optional[datetime]:
        """Preview the next scheduled run, or None when the plan is not scheduled."""
        if not plan.enabled or not plan.schedule_enabled or self.coordinator is None:
            return None
        calculator = self.coordinator.calculator
        return calculator.next_run_for_plan(plan, now or self.coordinator.clock())

    def pending_items(self, plan_id: int) -> Dict[str, int]:
        """Count source items with and without a backup record.

        Raises:
            ValueError: If the plan does not exist.
            FileNotFoundError: If the source is missing.
        """
        plan = self.plan_repository.get_plan(plan_id)
        if plan is None:
            raise ValueError(f"Plan {plan_id} not found")

        items = self.media_source.list_items(SourceDescriptor.from_plan(plan))
        recorded = self.backup_record_repository.find_by_plan_and_items(
            plan_id, [item.media_id for item in items]
        )
        backed_up = len({record.media_item_id for record in recorded})
        return {"total": len(items), "backed_up": backed_up, "pending": len(items) - backed_up}
