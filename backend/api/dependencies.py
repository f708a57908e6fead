"""
FastAPI dependencies
"""

from fastapi import Request
from services.budget_service import BudgetService
from services.evaluation_service import EvaluationService
from services.experiment_service import ExperimentService
from services.optimization_service import OptimizationService


def get_evaluation_service(request: Request) -> EvaluationService:
    return request.app.state.evaluation_service


def get_budget_service(request: Request) -> BudgetService:
    return request.app.state.budget_service


def get_experiment_service(request: Request) -> ExperimentService:
    return request.app.state.experiment_service


def get_optimization_service(request: Request) -> OptimizationService:
    return request.app.state.optimization_service
