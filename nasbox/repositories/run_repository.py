"""Run and run log repositories."""

import logging
from datetime import datetime
from typing import Any, Dict, Iterable, List, Optional

from nasbox.database.database import utcnow
from nasbox.models.enums import LogSeverity, RunStatus, TriggerSource
from nasbox.models.run import Run, RunLog
from nasbox.repositories.base import SessionRepository

logger = logging.getLogger(__name__)


class RunRepository(SessionRepository):
    """Persistence for runs."""

    def create_run(
        self,
        plan_id: int,
        started_at: Optional[datetime] = None,
        trigger_source: TriggerSource = TriggerSource.MANUAL
    ) -> Run:
        run = Run(
            plan_id=plan_id,
            status=RunStatus.RUNNING.value,
            trigger_source=TriggerSource(trigger_source).value,
            started_at=started_at or utcnow(),
        )
        with self._session() as db:
            db.add(run)
            db.commit()
            db.refresh(run)
            return run

    def update_run(self, run_id: int, **changes: Any) -> Optional[Run]:
        with self._session() as db:
            run = db.query(Run).filter(Run.id == run_id).first()
            if not run:
                return None
            for field, value in changes.items():
                if isinstance(value, (RunStatus, TriggerSource)):
                    value = value.value
                setattr(run, field, value)
            db.commit()
            db.refresh(run)
            return run

    def get_run(self, run_id: int) -> Optional[Run]:
        with self._session() as db:
            return db.query(Run).filter(Run.id == run_id).first()

    def latest_run(self) -> Optional[Run]:
        with self._session() as db:
            return db.query(Run).order_by(Run.started_at.desc(), Run.id.desc()).first()

    def latest_runs(self, limit: int = 20, offset: int = 0) -> List[Run]:
        with self._session() as db:
            return db.query(Run).order_by(
                Run.started_at.desc(), Run.id.desc()
            ).limit(limit).offset(offset).all()

    def runs_for_plan(self, plan_id: int, limit: int = 20) -> List[Run]:
        with self._session() as db:
            return db.query(Run).filter(Run.plan_id == plan_id).order_by(
                Run.started_at.desc(), Run.id.desc()
            ).limit(limit).all()

    def runs_by_statuses(self, statuses: Iterable[RunStatus], limit: int = 200) -> List[Run]:
        """Runs in any of the given statuses, newest first."""
        values = [RunStatus(status).value for status in statuses]
        with self._session() as db:
            return db.query(Run).filter(Run.status.in_(values)).order_by(
                Run.started_at.desc(), Run.id.desc()
            ).limit(limit).all()


class RunLogRepository(SessionRepository):
    """Append-only persistence for run logs."""

    def append(
        self,
        run_id: int,
        severity: LogSeverity,
        message: str,
        detail: Optional[str] = None,
        timestamp: Optional[datetime] = None
    ) -> RunLog:
        log = RunLog(
            run_id=run_id,
            timestamp=timestamp or utcnow(),
            severity=LogSeverity(severity).value,
            message=message,
            detail=detail,
        )
        with self._session() as db:
            db.add(log)
            db.commit()
            db.refresh(log)
            return log

    def logs_for_run(self, run_id: int) -> List[RunLog]:
        """Logs of a run, oldest first."""
        with self._session() as db:
            return db.query(RunLog).filter(RunLog.run_id == run_id).order_by(
                RunLog.timestamp.asc(), RunLog.id.asc()
            ).all()

    def latest_timeline(self, limit: int = 50) -> List[Dict[str, Any]]:
        """Most recent log lines across all runs, newest first, with their plan id."""
        with self._session() as db:
            rows = db.query(RunLog, Run.plan_id).join(Run, Run.id == RunLog.run_id).order_by(
                RunLog.timestamp.desc(), RunLog.id.desc()
            ).limit(limit).all()

        return [
            {
                "log_id": log.id,
                "run_id": log.run_id,
                "plan_id": plan_id,
                "timestamp": log.timestamp,
                "severity": log.severity,
                "message": log.message,
                "detail": log.detail,
            }
            for log, plan_id in rows
        ]
