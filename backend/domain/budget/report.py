"""
Monthly budget report: utilization, projections, breakdown, savings and recommendations
"""

from collections import defaultdict
from datetime import datetime, timedelta
from typing import Any, Dict, List, Optional

from domain.budget.guard import month_progress
from domain.budget.types import BudgetStatusLevel

AT_RISK_FACTOR = 1.1


def budget_status_level(spend: float, projected: float, budget: float) -> BudgetStatusLevel:
    if spend > budget:
        return BudgetStatusLevel.OVER_BUDGET
    if projected > budget * AT_RISK_FACTOR:
        return BudgetStatusLevel.AT_RISK
    if projected <= budget:
        return BudgetStatusLevel.ON_TRACK
    return BudgetStatusLevel.UNDER_BUDGET


def _parse_day(created_at: Any) -> str:
    if isinstance(created_at, datetime):
        return created_at.date().isoformat()
    return str(created_at).split("T")[0]


def breakdown_by_operation(logs: List[Dict[str, Any]]) -> List[Dict[str, Any]]:
    totals = defaultdict(lambda: {"cost": 0.0, "count": 0})
    for log in logs:
        entry = totals[log.get("operation_type") or "unknown"]
        entry["cost"] += float(log.get("cost_usd") or 0.0)
        entry["count"] += 1

    breakdown = [
        {
            "operation_type": op_type,
            "total_cost_usd": data["cost"],
            "count": data["count"],
            "avg_cost_usd": data["cost"] / data["count"] if data["count"] else 0.0,
        }
        for op_type, data in totals.items()
    ]
    breakdown.sort(key=lambda b: b["total_cost_usd"], reverse=True)
    return breakdown


def daily_spending(logs: List[Dict[str, Any]]) -> List[Dict[str, Any]]:
    days = defaultdict(lambda: {"cost": 0.0, "count": 0})
    for log in logs:
        entry = days[_parse_day(log.get("created_at"))]
        entry["cost"] += float(log.get("cost_usd") or 0.0)
        entry["count"] += 1
    return [
        {"date": date, "cost_usd": data["cost"], "operation_count": data["count"]}
        for date, data in sorted(days.items())
    ]


def savings_analysis(downgrades: List[Dict[str, Any]]) -> Dict[str, Any]:
    """Savings over downgrade decisions; quality preserved = 100 - mean |quality impact|"""
    if not downgrades:
        return {
            "total_saved_usd": 0.0,
            "savings_from_downgrades": 0.0,
            "quality_preserved_percent": 100.0,
            "downgrade_count": 0,
        }

    total_saved = 0.0
    total_impact = 0.0
    for decision in downgrades:
        estimated = float(decision.get("estimated_cost_usd") or 0.0)
        adjusted = decision.get("adjusted_cost_usd")
        actual = float(adjusted) if adjusted is not None else estimated
        total_saved += estimated - actual
        total_impact += abs(float(decision.get("quality_impact_percent") or 0.0))

    return {
        "total_saved_usd": total_saved,
        "savings_from_downgrades": total_saved,
        "quality_preserved_percent": 100.0 - total_impact / len(downgrades),
        "downgrade_count": len(downgrades),
    }


def recommendations(
    status: BudgetStatusLevel,
    burn_rate: float,
    monthly_budget: float,
    days_in_month: int,
    enforcement_mode: str,
    breakdown: List[Dict[str, Any]],
    savings: Dict[str, Any]
) -> List[str]:
    advice = []
    if status == BudgetStatusLevel.OVER_BUDGET:
        advice.append("Consider increasing your monthly budget or switching to cost_aware baseline strategy")
    if status == BudgetStatusLevel.AT_RISK:
        advice.append("You may exceed your budget this month. Consider enabling auto_downgrade enforcement")
    if burn_rate > (monthly_budget / days_in_month) * 1.5:
        advice.append("Your spending rate is 50%+ above average. Review your RAG configuration")
    if enforcement_mode == "warn" and status != BudgetStatusLevel.UNDER_BUDGET:
        advice.append("Switch to auto_downgrade mode to automatically stay within budget")
    if any(b["operation_type"] == "optimization" and b["total_cost_usd"] > monthly_budget * 0.3 for b in breakdown):
        advice.append("Optimization operations are consuming 30%+ of budget. Reduce max_experiments")
    if savings["quality_preserved_percent"] < 90:
        advice.append(
            f"Quality degradation detected ({savings['quality_preserved_percent']:.0f}%). Consider increasing budget."
        )
    if not advice:
        advice.append("Your budget is on track. No action needed.")
    return advice


def build_budget_report(
    project: Dict[str, Any],
    month_logs: List[Dict[str, Any]],
    downgrades: List[Dict[str, Any]],
    now: datetime,
    history_logs: Optional[List[Dict[str, Any]]] = None
) -> Dict[str, Any]:
    """
    Assemble the report for the calendar month containing `now`.

    Args:
        project: Project record
        month_logs: Cost logs of the current month
        downgrades: Downgrade decisions of the current month
        now: Report time (naive UTC)
        history_logs: Cost logs for the daily series; omitted when None

    Returns:
        {"report": {...}, "summary": str}
    """
    days_elapsed, days_in_month = month_progress(now)
    month_start = datetime(now.year, now.month, 1)
    month_end = month_start + timedelta(days=days_in_month - 1)

    monthly_budget = float(project.get("monthly_budget_usd") or 50.0)
    spend = sum(float(log.get("cost_usd") or 0.0) for log in month_logs)
    remaining = monthly_budget - spend
    utilization = (spend / monthly_budget) * 100 if monthly_budget > 0 else 0.0

    burn_rate = spend / days_elapsed
    projected = burn_rate * days_in_month
    days_until_exhausted = remaining / burn_rate if burn_rate > 0 else None
    status = budget_status_level(spend, projected, monthly_budget)

    breakdown = breakdown_by_operation(month_logs)
    savings = savings_analysis(downgrades)
    enforcement_mode = project.get("budget_enforcement_mode") or "warn"

    report = {
        "project_id": project["id"],
        "project_name": project.get("name"),
        "budget": {
            "monthly_budget_usd": monthly_budget,
            "max_cost_per_query_usd": float(project.get("max_cost_per_query_usd") or 0.01),
            "preferred_baseline_strategy": project.get("preferred_baseline_strategy") or "balanced",
            "enforcement_mode": enforcement_mode,
        },
        "current_period": {
            "start_date": month_start.date().isoformat(),
            "end_date": month_end.date().isoformat(),
            "current_spending_usd": spend,
            "remaining_budget_usd": remaining,
            "utilization_percent": utilization,
        },
        "projections": {
            "burn_rate_per_day_usd": burn_rate,
            "projected_month_end_usd": projected,
            "days_until_budget_exhausted": days_until_exhausted,
            "on_track": status in (BudgetStatusLevel.ON_TRACK, BudgetStatusLevel.UNDER_BUDGET),
            "status": status.value,
        },
        "breakdown_by_operation": breakdown,
        "daily_spending": daily_spending(history_logs) if history_logs is not None else None,
        "savings_analysis": savings,
        "recommendations": recommendations(
            status, burn_rate, monthly_budget, days_in_month, enforcement_mode, breakdown, savings
        ),
    }

    if savings["downgrade_count"] > 0:
        summary = (
            f"We stayed within your ${monthly_budget:.0f} budget and preserved "
            f"{savings['quality_preserved_percent']:.0f}% quality."
        )
    else:
        summary = f"Budget utilization: {utilization:.0f}%. Status: {status.value}."

    return {"report": report, "summary": summary}
