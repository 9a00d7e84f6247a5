"""Backup plan API endpoints."""

from typing import List, Optional
from fastapi import APIRouter, Depends, HTTPException
from pydantic import BaseModel

from nasbox.api.dependencies import get_container
from nasbox.api.runs import RunResponse, run_response
from nasbox.container import AppContainer
from nasbox.models.plan import Plan
from nasbox.services.plan_service import schedule_summary

router = APIRouter(prefix="/api/plans", tags=["plans"])


class PlanCreate(BaseModel):
    """Plan creation request."""

    name: str
    server_id: int
    enabled: bool = True
    source_type: str = "ALBUM"
    source_album: str = ""
    folder_path: str = ""
    include_videos: bool = False
    directory_template: str = ""
    filename_pattern: str = ""
    schedule_enabled: bool = False
    schedule_frequency: str = "DAILY"
    schedule_time_minutes: int = 120
    schedule_days_mask: int = 0b111_1111
    schedule_day_of_month: int = 1
    schedule_interval_hours: int = 24


class PlanUpdate(BaseModel):
    """Plan update request. Omitted fields stay unchanged."""

    name: Optional[str] = None
    server_id: Optional[int] = None
    enabled: Optional[bool] = None
    source_type: Optional[str] = None
    source_album: Optional[str] = None
    folder_path: Optional[str] = None
    include_videos: Optional[bool] = None
    directory_template: Optional[str] = None
    filename_pattern: Optional[str] = None
    schedule_enabled: Optional[bool] = None
    schedule_frequency: Optional[str] = None
    schedule_time_minutes: Optional[int] = None
    schedule_days_mask: Optional[int] = None
    schedule_day_of_month: Optional[int] = None
    schedule_interval_hours: Optional[int] = None


class PlanResponse(BaseModel):
    """Plan response."""

    id: int
    name: str
    server_id: int
    enabled: bool
    source_type: str
    source_album: str
    folder_path: str
    include_videos: bool
    directory_template: str
    filename_pattern: str
    schedule_enabled: bool
    schedule_frequency: str
    schedule_time_minutes: int
    schedule_days_mask: int
    schedule_day_of_month: int
    schedule_interval_hours: int
    schedule_summary: str
    created_at: str
    updated_at: str

    class Config:
        from_attributes = True


class NextRunResponse(BaseModel):
    plan_id: int
    next_run_at: Optional[str] = None
    summary: str


class EnqueueRunResponse(BaseModel):
    plan_id: int
    result: str


class PendingItemsResponse(BaseModel):
    plan_id: int
    total: int
    backed_up: int
    pending: int


def _plan_response(plan: Plan) -> PlanResponse:
    return PlanResponse(
        id=plan.id,
        name=plan.name,
        server_id=plan.server_id,
        enabled=plan.enabled,
        source_type=plan.source_type,
        source_album=plan.source_album,
        folder_path=plan.folder_path,
        include_videos=plan.include_videos,
        directory_template=plan.directory_template,
        filename_pattern=plan.filename_pattern,
        schedule_enabled=plan.schedule_enabled,
        schedule_frequency=plan.schedule_frequency,
        schedule_time_minutes=plan.schedule_time_minutes,
        schedule_days_mask=plan.schedule_days_mask,
        schedule_day_of_month=plan.schedule_day_of_month,
        schedule_interval_hours=plan.schedule_interval_hours,
        schedule_summary=schedule_summary(plan),
        created_at=plan.created_at.isoformat(),
        updated_at=plan.updated_at.isoformat(),
    )


def _require_plan(plan_id: int, container: AppContainer) -> Plan:
    plan = container.plan_service.get_plan(plan_id)
    if not plan:
        raise HTTPException(status_code=404, detail=f"Plan {plan_id} not found")
    return plan


@router.post("", response_model=PlanResponse, status_code=201)
async def create_plan(plan: PlanCreate, container: AppContainer = Depends(get_container)):
    """Create a plan and arm its schedule."""
    try:
        return _plan_response(container.plan_service.create_plan(**plan.model_dump()))
    except ValueError as e:
        raise HTTPException(status_code=400, detail=str(e))
    except Exception as e:
        raise HTTPException(status_code=500, detail=f"Failed to create plan: {str(e)}")


@router.get("", response_model=List[PlanResponse])
async def list_plans(container: AppContainer = Depends(get_container)):
    try:
        return [_plan_response(plan) for plan in container.plan_service.list_plans()]
    except Exception as e:
        raise HTTPException(status_code=500, detail=f"Failed to list plans: {str(e)}")


@router.get("/{plan_id}", response_model=PlanResponse)
async def get_plan(plan_id: int, container: AppContainer = Depends(get_container)):
    return _plan_response(_require_plan(plan_id, container))


@router.put("/{plan_id}", response_model=PlanResponse)
async def update_plan(plan_id: int, plan_update: PlanUpdate, container: AppContainer = Depends(get_container)):
    """Update a plan; its schedule is re-armed from the new settings."""
    try:
        updated = container.plan_service.update_plan(plan_id, **plan_update.model_dump())
        if not updated:
            raise HTTPException(status_code=404, detail=f"Plan {plan_id} not found")
        return _plan_response(updated)
    except HTTPException:
        raise
    except ValueError as e:
        raise HTTPException(status_code=400, detail=str(e))
    except Exception as e:
        raise HTTPException(status_code=500, detail=f"Failed to update plan: {str(e)}")


@router.delete("/{plan_id}", status_code=204)
async def delete_plan(plan_id: int, container: AppContainer = Depends(get_container)):
    """Delete a plan with its runs, logs and backup records."""
    try:
        if not container.plan_service.delete_plan(plan_id):
            raise HTTPException(status_code=404, detail=f"Plan {plan_id} not found")
    except HTTPException:
        raise
    except Exception as e:
        raise HTTPException(status_code=500, detail=f"Failed to delete plan: {str(e)}")


@router.post("/{plan_id}/run", response_model=EnqueueRunResponse, status_code=202)
async def run_plan(plan_id: int, container: AppContainer = Depends(get_container)):
    """Queue a manual run. Ignored while the plan already has one active."""
    _require_plan(plan_id, container)
    result = container.manual_runs.enqueue(plan_id)
    return EnqueueRunResponse(plan_id=plan_id, result=result.value)


@router.get("/{plan_id}/next-run", response_model=NextRunResponse)
async def get_next_run(plan_id: int, container: AppContainer = Depends(get_container)):
    plan = _require_plan(plan_id, container)
    next_run = container.plan_service.next_run(plan)
    return NextRunResponse(
        plan_id=plan_id,
        next_run_at=next_run.isoformat() if next_run else None,
        summary=schedule_summary(plan),
    )


@router.get("/{plan_id}/runs", response_model=List[RunResponse])
async def list_plan_runs(plan_id: int, limit: int = 20, container: AppContainer = Depends(get_container)):
    _require_plan(plan_id, container)
    return [run_response(run) for run in container.run_repository.runs_for_plan(plan_id, limit)]


@router.get("/{plan_id}/pending", response_model=PendingItemsResponse)
async def get_pending_items(plan_id: int, container: AppContainer = Depends(get_container)):
    """Count source items not yet backed up by this plan."""
    _require_plan(plan_id, container)
    try:
        counts = container.plan_service.pending_items(plan_id)
        return PendingItemsResponse(plan_id=plan_id, **counts)
    except (ValueError, FileNotFoundError) as e:
        raise HTTPException(status_code=400, detail=str(e))
    except Exception as e:
        raise HTTPException(status_code=500, detail=f"Failed to count pending items: {str(e)}")
