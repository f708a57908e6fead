"""
Service layer (business logic orchestration)
"""

from services.base import BaseService
from services.budget_service import BudgetService
from services.evaluation_service import EvaluationService
from services.experiment_service import ExperimentService
from services.optimization_service import OptimizationService

__all__ = [
    "BaseService",
    "BudgetService",
    "EvaluationService",
    "ExperimentService",
    "OptimizationService",
]
