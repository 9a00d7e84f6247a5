"""Plan repository."""

import logging
from typing import Any, List, Optional
from sqlalchemy.exc import IntegrityError

from nasbox.models.plan import Plan
from nasbox.repositories.base import SessionRepository

logger = logging.getLogger(__name__)


class PlanRepository(SessionRepository):
    """Persistence for backup plans."""

    def get_plan(self, plan_id: int) -> Optional[Plan]:
        with self._session() as db:
            return db.query(Plan).filter(Plan.id == plan_id).first()

    def list_plans(self) -> List[Plan]:
        with self._session() as db:
            return db.query(Plan).order_by(Plan.name.asc(), Plan.id.asc()).all()

    def create_plan(self, plan: Plan) -> Plan:
        """Insert a plan.

        Raises:
            ValueError: If the plan violates a constraint (e.g. unknown server).
        """
        with self._session() as db:
            try:
                db.add(plan)
                db.commit()
                db.refresh(plan)
                logger.info(f"Plan '{plan.name}' created with id {plan.id}")
                return plan
            except IntegrityError as e:
                db.rollback()
                logger.error(f"Failed to create plan '{plan.name}': {e}")
                raise ValueError(f"Plan '{plan.name}' could not be saved: invalid server or source")

    def update_plan(self, plan_id: int, **changes: Any) -> Optional[Plan]:
        """Apply field changes to a plan.

        Returns:
            The updated plan, or None if it does not exist.
        """
        with self._session() as db:
            plan = db.query(Plan).filter(Plan.id == plan_id).first()
            if not plan:
                return None
            for field, value in changes.items():
                setattr(plan, field, value)
            try:
                db.commit()
            except IntegrityError as e:
                db.rollback()
                logger.error(f"Failed to update plan {plan_id}: {e}")
                raise ValueError(f"Plan {plan_id} could not be updated: invalid server or source")
            db.refresh(plan)
            return plan

    def delete_plan(self, plan_id: int) -> bool:
        with self._session() as db:
            plan = db.query(Plan).filter(Plan.id == plan_id).first()
            if not plan:
                return False
            db.delete(plan)
            db.commit()
            logger.info(f"Plan {plan_id} deleted")
            return True
