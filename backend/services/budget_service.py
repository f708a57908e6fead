"""
Budget service - pre-flight budget checks, reservations and reports
"""

import logging
from datetime import datetime, timedelta, timezone
from typing import Any, Callable, Dict, Optional, Union

from core.exceptions import InputError, NotFoundError, OptimizerException
from domain.budget.cost_estimator import estimate_operation_cost
from domain.budget.guard import build_budget_status, decide, resolve_config
from domain.budget.report import build_budget_report
from domain.budget.types import (
    BudgetCheckResult,
    DecisionAction,
    EnforcementMode,
    OperationConfig,
    OperationType,
)
from services.base import BaseService
from storage.base import BaseOptimizerStore
from storage.optimizer_sql_store import month_bounds

logger = logging.getLogger(__name__)


def utc_now() -> datetime:
    return datetime.now(timezone.utc).replace(tzinfo=None)


class BudgetService(BaseService):
    """Decides whether an operation may spend, and reports on spend"""

    def __init__(self, store: BaseOptimizerStore, clock: Callable[[], datetime] = None):
        self.store = store
        self.clock = clock or utc_now

    async def _get_project(self, project_id: str) -> Dict[str, Any]:
        if not project_id:
            raise InputError("project_id is required")
        project = await self.store.get_project(project_id)
        if project is None:
            raise NotFoundError(f"Project {project_id} not found")
        return project

    async def check_budget(
        self,
        project_id: str,
        operation_type: Union[OperationType, str],
        config: Optional[OperationConfig] = None,
        estimated_cost_usd: Optional[float] = None,
        reserve: bool = False
    ) -> BudgetCheckResult:
        """
        Pre-flight check of an operation against the project's monthly budget.

        Current spend is this month's cost logs plus active reservations. Every
        non-proceed decision is logged. With `reserve`, an operation that may
        proceed also reserves what it is going to spend; the caller must later
        commit or release the reservation.
        """
        try:
            operation_type = OperationType(operation_type)
        except ValueError:
            raise InputError(f"Invalid operation_type: {operation_type}")
        if estimated_cost_usd is not None and estimated_cost_usd < 0:
            raise InputError("estimated_cost_usd must not be negative")

        project = await self._get_project(project_id)
        config = config or OperationConfig()
        estimated = estimated_cost_usd if estimated_cost_usd is not None else estimate_operation_cost(operation_type, config)

        now = self.clock()
        spend = await self.store.get_month_spending(project_id, now)
        spend += await self.store.get_reserved_total(project_id)

        status = build_budget_status(
            monthly_budget_usd=project["monthly_budget_usd"],
            current_spending_usd=spend,
            estimated_cost_usd=estimated,
            enforcement_mode=EnforcementMode(project["budget_enforcement_mode"]),
            max_cost_per_query_usd=project["max_cost_per_query_usd"],
            now=now,
        )
        decision = decide(status, resolve_config(config))
        logger.info(
            f"Budget check for project {project_id} ({operation_type.value}): "
            f"{decision.action.value} (spend ${spend:.4f}, estimate ${estimated:.4f})"
        )

        if decision.action != DecisionAction.PROCEED:
            try:
                await self.store.log_budget_decision(
                    project_id, operation_type.value, decision.to_log_record(), created_at=now
                )
            except OptimizerException as e:
                logger.error(f"Failed to log budget decision for project {project_id}: {e}")

        reservation_id = None
        if reserve and decision.can_proceed:
            reservation = await self.store.reserve_budget(
                project_id, decision.committed_cost_usd, operation_type.value
            )
            reservation_id = reservation["id"]

        return BudgetCheckResult(
            budget_status=status,
            decision=decision,
            can_proceed=decision.can_proceed,
            use_config=decision.use_config,
            reservation_id=reservation_id,
        )

    async def commit_reservation(self, reservation_id: str) -> None:
        """Close a reservation once its real spend is in the cost logs"""
        try:
            await self.store.commit_reservation(reservation_id)
        except OptimizerException as e:
            logger.error(f"Failed to commit reservation {reservation_id}: {e}")

    async def release_reservation(self, reservation_id: str) -> None:
        try:
            await self.store.release_reservation(reservation_id)
        except OptimizerException as e:
            logger.error(f"Failed to release reservation {reservation_id}: {e}")

    async def budget_report(
        self,
        project_id: str,
        include_history: bool = True,
        days: int = 30
    ) -> Dict[str, Any]:
        """Report on the current calendar month (UTC)"""
        if days < 1:
            raise InputError("days must be at least 1")

        project = await self._get_project(project_id)
        now = self.clock()
        month_start, month_end = month_bounds(now)

        month_logs = [
            log for log in await self.store.list_cost_logs(project_id, since=month_start)
            if datetime.fromisoformat(log["created_at"]) < month_end
        ]
        downgrades = await self.store.list_budget_decisions(
            project_id, since=month_start, decision_type=DecisionAction.DOWNGRADE.value
        )

        history_logs = None
        if include_history:
            history_start = (now - timedelta(days=days - 1)).replace(hour=0, minute=0, second=0, microsecond=0)
            history_logs = await self.store.list_cost_logs(project_id, since=history_start)

        result = build_budget_report(project, month_logs, downgrades, now, history_logs)
        logger.info(f"Budget report for project {project_id}: {result['summary']}")
        return result

