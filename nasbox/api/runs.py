"""Run history API endpoints."""

from typing import List, Optional
from fastapi import APIRouter, Depends, HTTPException
from pydantic import BaseModel

from nasbox.api.dependencies import get_container
from nasbox.container import AppContainer
from nasbox.models.run import Run, RunLog
from nasbox.services.run_control import StopRunResult

router = APIRouter(prefix="/api/runs", tags=["runs"])


class RunResponse(BaseModel):
    """Run response."""

    id: int
    plan_id: int
    status: str
    trigger_source: str
    started_at: str
    finished_at: Optional[str] = None
    scanned_count: int
    uploaded_count: int
    skipped_count: int
    failed_count: int
    summary_error: Optional[str] = None


class RunLogResponse(BaseModel):
    id: int
    run_id: int
    timestamp: str
    severity: str
    message: str
    detail: Optional[str] = None


class TimelineEntryResponse(BaseModel):
    log_id: int
    run_id: int
    plan_id: int
    timestamp: str
    severity: str
    message: str
    detail: Optional[str] = None


class StopRunResponse(BaseModel):
    run_id: int
    result: str


def run_response(run: Run) -> RunResponse:
    return RunResponse(
        id=run.id,
        plan_id=run.plan_id,
        status=run.status,
        trigger_source=run.trigger_source,
        started_at=run.started_at.isoformat(),
        finished_at=run.finished_at.isoformat() if run.finished_at else None,
        scanned_count=run.scanned_count,
        uploaded_count=run.uploaded_count,
        skipped_count=run.skipped_count,
        failed_count=run.failed_count,
        summary_error=run.summary_error,
    )


def _log_response(log: RunLog) -> RunLogResponse:
    return RunLogResponse(
        id=log.id,
        run_id=log.run_id,
        timestamp=log.timestamp.isoformat(),
        severity=log.severity,
        message=log.message,
        detail=log.detail,
    )


@router.get("", response_model=List[RunResponse])
async def list_runs(limit: int = 20, offset: int = 0, container: AppContainer = Depends(get_container)):
    """Latest runs across all plans, newest first."""
    try:
        return [run_response(run) for run in container.run_repository.latest_runs(limit, offset)]
    except Exception as e:
        raise HTTPException(status_code=500, detail=f"Failed to list runs: {str(e)}")


@router.get("/timeline", response_model=List[TimelineEntryResponse])
async def get_timeline(limit: int = 50, container: AppContainer = Depends(get_container)):
    """Most recent log lines across all runs."""
    try:
        entries = container.run_log_repository.latest_timeline(limit)
        return [
            TimelineEntryResponse(**{**entry, "timestamp": entry["timestamp"].isoformat()})
            for entry in entries
        ]
    except Exception as e:
        raise HTTPException(status_code=500, detail=f"Failed to get timeline: {str(e)}")


@router.get("/{run_id}", response_model=RunResponse)
async def get_run(run_id: int, container: AppContainer = Depends(get_container)):
    run = container.run_repository.get_run(run_id)
    if not run:
        raise HTTPException(status_code=404, detail=f"Run {run_id} not found")
    return run_response(run)


@router.get("/{run_id}/logs", response_model=List[RunLogResponse])
async def get_run_logs(run_id: int, container: AppContainer = Depends(get_container)):
    if not container.run_repository.get_run(run_id):
        raise HTTPException(status_code=404, detail=f"Run {run_id} not found")
    return [_log_response(log) for log in container.run_log_repository.logs_for_run(run_id)]


@router.post("/{run_id}/stop", response_model=StopRunResponse)
async def stop_run(run_id: int, container: AppContainer = Depends(get_container)):
    """Request a cooperative stop; the current item finishes first."""
    result = container.stop_runs.stop(run_id)
    if result is StopRunResult.NOT_FOUND:
        raise HTTPException(status_code=404, detail=f"Run {run_id} not found")
    return StopRunResponse(run_id=run_id, result=result.value)
