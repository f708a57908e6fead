"""
Budget guard: proceed / warn / abort / downgrade decisions

Pure decision logic. Reading spend and persisting decisions is done by BudgetService.
"""

import calendar
import logging
from datetime import datetime
from typing import Callable, List, NamedTuple, Optional

from domain.budget.types import (
    BudgetDecision,
    BudgetStatus,
    DecisionAction,
    DowngradeConfig,
    EnforcementMode,
    OperationConfig,
)

logger = logging.getLogger(__name__)

CHEAPEST_EMBEDDING_MODEL = "text-embedding-3-small"


class DowngradeTier(NamedTuple):
    name: str
    apply: Callable[[DowngradeConfig], DowngradeConfig]
    cost_reduction: float  # fraction of the estimate removed
    quality_impact_percent: float  # negative: expected quality loss


class DowngradeResult(NamedTuple):
    tier: str
    config: DowngradeConfig
    cost_usd: float
    quality_impact_percent: float


def _switch_model(config: DowngradeConfig) -> DowngradeConfig:
    return config.model_copy(update={"embedding_model": CHEAPEST_EMBEDDING_MODEL})


def _reduce_top_k(config: DowngradeConfig) -> DowngradeConfig:
    return config.model_copy(update={"top_k": 5})


def _halve_experiments(config: DowngradeConfig) -> DowngradeConfig:
    return config.model_copy(update={"num_experiments": max(5, config.num_experiments // 2)})


def _aggressive(config: DowngradeConfig) -> DowngradeConfig:
    return config.model_copy(update={
        "embedding_model": CHEAPEST_EMBEDDING_MODEL,
        "top_k": 3,
        "num_experiments": 5,
    })


# Tried in order; the first tier whose adjusted cost fits the remaining budget wins
DOWNGRADE_TIERS: List[DowngradeTier] = [
    DowngradeTier("switch_embedding_model", _switch_model, 0.85, -15.0),
    DowngradeTier("reduce_top_k", _reduce_top_k, 0.25, -5.0),
    DowngradeTier("reduce_experiments", _halve_experiments, 0.50, -10.0),
    DowngradeTier("combined", _aggressive, 0.75, -25.0),
]


def resolve_config(config: Optional[OperationConfig]) -> DowngradeConfig:
    """Fill in guard defaults for any field the caller left out"""
    config = config or OperationConfig()
    defaults = DowngradeConfig()
    return DowngradeConfig(
        embedding_model=config.embedding_model or defaults.embedding_model,
        top_k=config.top_k or defaults.top_k,
        chunk_overlap=config.chunk_overlap or defaults.chunk_overlap,
        num_experiments=config.num_experiments or defaults.num_experiments,
    )


def month_progress(now: datetime) -> tuple:
    """(days elapsed, days in month) for the calendar month of `now`"""
    days_in_month = calendar.monthrange(now.year, now.month)[1]
    return max(now.day, 1), days_in_month


def build_budget_status(
    monthly_budget_usd: float,
    current_spending_usd: float,
    estimated_cost_usd: float,
    enforcement_mode: EnforcementMode,
    max_cost_per_query_usd: float,
    now: datetime,
) -> BudgetStatus:
    days_elapsed, days_in_month = month_progress(now)
    burn_rate = current_spending_usd / days_elapsed
    projected = burn_rate * days_in_month

    return BudgetStatus(
        monthly_budget_usd=monthly_budget_usd,
        current_spending_usd=current_spending_usd,
        remaining_budget_usd=monthly_budget_usd - current_spending_usd,
        estimated_cost_usd=estimated_cost_usd,
        will_exceed_budget=(current_spending_usd + estimated_cost_usd) > monthly_budget_usd,
        burn_rate_per_day_usd=burn_rate,
        projected_month_end_usd=projected,
        on_track=projected <= monthly_budget_usd,
        enforcement_mode=EnforcementMode(enforcement_mode),
        max_cost_per_query_usd=max_cost_per_query_usd,
    )


def find_cheaper_config(
    current_config: DowngradeConfig,
    remaining_budget_usd: float,
    estimated_cost_usd: float,
) -> Optional[DowngradeResult]:
    """Walk the downgrade tiers in order and return the first one that fits"""
    for tier in DOWNGRADE_TIERS:
        adjusted_cost = estimated_cost_usd * (1 - tier.cost_reduction)
        if adjusted_cost <= remaining_budget_usd:
            return DowngradeResult(
                tier=tier.name,
                config=tier.apply(current_config),
                cost_usd=adjusted_cost,
                quality_impact_percent=tier.quality_impact_percent,
            )
    return None


def decide(status: BudgetStatus, original_config: DowngradeConfig) -> BudgetDecision:
    """
    Decide what to do with an operation given the project's budget status.

    Within budget always proceeds. Otherwise the enforcement mode picks between
    warn, abort and a tiered downgrade (falling back to abort when no tier fits).
    """
    estimated = status.estimated_cost_usd
    remaining = status.remaining_budget_usd

    if not status.will_exceed_budget:
        return BudgetDecision(
            action=DecisionAction.PROCEED,
            reason=f"Operation within budget. Remaining: ${remaining:.4f}",
            original_config=original_config,
            estimated_cost_usd=estimated,
        )

    mode = status.enforcement_mode

    if mode == EnforcementMode.WARN:
        return BudgetDecision(
            action=DecisionAction.WARN,
            reason=f"Warning: Operation would exceed monthly budget by ${estimated - remaining:.4f}",
            original_config=original_config,
            estimated_cost_usd=estimated,
        )

    if mode == EnforcementMode.ABORT:
        return BudgetDecision(
            action=DecisionAction.ABORT,
            reason=(
                f"Operation aborted: Would exceed monthly budget. "
                f"Remaining: ${remaining:.4f}, Estimated cost: ${estimated:.4f}"
            ),
            original_config=original_config,
            estimated_cost_usd=estimated,
        )

    downgrade = find_cheaper_config(original_config, remaining, estimated)
    if downgrade is None:
        return BudgetDecision(
            action=DecisionAction.ABORT,
            reason=(
                f"Cannot fit operation within budget even with maximum downgrades. "
                f"Remaining: ${remaining:.4f}"
            ),
            original_config=original_config,
            estimated_cost_usd=estimated,
        )

    savings = ((estimated - downgrade.cost_usd) / estimated) * 100 if estimated > 0 else 0.0
    logger.info(f"Downgrade tier '{downgrade.tier}' fits remaining budget ${remaining:.4f}")
    return BudgetDecision(
        action=DecisionAction.DOWNGRADE,
        reason=(
            f"Auto-downgraded to fit budget. "
            f"Quality reduced by {abs(downgrade.quality_impact_percent):g}%, "
            f"cost reduced by {savings:.0f}%"
        ),
        original_config=original_config,
        adjusted_config=downgrade.config,
        estimated_cost_usd=estimated,
        adjusted_cost_usd=downgrade.cost_usd,
        quality_impact_percent=downgrade.quality_impact_percent,
        cost_savings_percent=savings,
    )
