"""
Abstract base classes for storage
"""

from abc import ABC, abstractmethod
from datetime import datetime
from typing import List, Dict, Any, Optional, Set


class BaseSingleVectorStore(ABC):
    """Abstract base class for single vector stores"""

    @abstractmethod
    async def query(
        self,
        query_vectors: List[List[float]],
        top_k: int = 10,
        filter: Optional[Dict[str, Any]] = None
    ) -> List[List[Dict[str, Any]]]:
        """
        Query the store.

        Returns:
            One result list per query vector, each with 'chunk_id', 'score', 'metadata'
        """
        pass


class BaseOptimizerStore(ABC):
    """Abstract base class for the optimizer's persistent store"""

    # Projects

    @abstractmethod
    async def create_project(self, name: str, project_id: str = None, **fields) -> Dict[str, Any]:
        pass

    @abstractmethod
    async def get_project(self, project_id: str) -> Optional[Dict[str, Any]]:
        pass

    # Experiments

    @abstractmethod
    async def create_experiments(self, project_id: str, experiments: List[Dict[str, Any]]) -> List[Dict[str, Any]]:
        """Create experiments in one transaction"""
        pass

    @abstractmethod
    async def get_experiment(self, experiment_id: str) -> Optional[Dict[str, Any]]:
        pass

    @abstractmethod
    async def list_experiments(
        self,
        project_id: str = None,
        experiment_ids: List[str] = None,
        status: Optional[str] = "active",
        auto_generated_only: bool = False
    ) -> List[Dict[str, Any]]:
        pass

    @abstractmethod
    async def get_experiment_names(self, project_id: str) -> Set[str]:
        pass

    @abstractmethod
    async def set_baseline(self, project_id: str, experiment_id: str, strategy: str) -> Dict[str, Any]:
        """Clear every baseline flag in the project and set one, atomically"""
        pass

    # Eval sets

    @abstractmethod
    async def create_eval_set(
        self,
        project_id: str,
        name: str,
        queries: List[Dict[str, Any]],
        description: str = None,
        eval_set_id: str = None
    ) -> Dict[str, Any]:
        pass

    @abstractmethod
    async def get_eval_set(self, eval_set_id: str) -> Optional[Dict[str, Any]]:
        pass

    @abstractmethod
    async def list_eval_queries(self, eval_set_id: str) -> List[Dict[str, Any]]:
        pass

    @abstractmethod
    async def append_eval_queries(self, eval_set_id: str, queries: List[Dict[str, Any]]) -> Dict[str, Any]:
        pass

    # Runs

    @abstractmethod
    async def create_run(self, experiment_id: str, eval_set_id: str, eval_set_version: int = 1) -> Dict[str, Any]:
        pass

    @abstractmethod
    async def finalize_run(self, run_id: str, status: str, **fields) -> Dict[str, Any]:
        """Move a running Run to completed/failed; a finalized Run is never updated again"""
        pass

    @abstractmethod
    async def get_run(self, run_id: str) -> Optional[Dict[str, Any]]:
        pass

    @abstractmethod
    async def list_runs(
        self,
        experiment_id: str,
        status: str = None,
        eval_set_id: str = None
    ) -> List[Dict[str, Any]]:
        pass

    @abstractmethod
    async def reconcile_abandoned_runs(self, started_before: datetime = None, reason: str = None) -> int:
        pass

    # Budget ledger

    @abstractmethod
    async def log_cost(
        self,
        project_id: str,
        operation_type: str,
        cost_usd: float,
        tokens: int = 0,
        model: str = None,
        operation_id: str = None,
        metadata: Dict[str, Any] = None,
        created_at: datetime = None
    ) -> Dict[str, Any]:
        pass

    @abstractmethod
    async def get_month_spending(self, project_id: str, now: datetime) -> float:
        pass

    @abstractmethod
    async def list_cost_logs(self, project_id: str, since: datetime = None) -> List[Dict[str, Any]]:
        pass

    @abstractmethod
    async def log_budget_decision(
        self,
        project_id: str,
        operation_type: str,
        decision: Dict[str, Any],
        created_at: datetime = None
    ) -> Dict[str, Any]:
        pass

    @abstractmethod
    async def list_budget_decisions(
        self,
        project_id: str,
        since: datetime = None,
        decision_type: str = None
    ) -> List[Dict[str, Any]]:
        pass

    @abstractmethod
    async def reserve_budget(self, project_id: str, amount_usd: float, operation_type: str) -> Dict[str, Any]:
        pass

    @abstractmethod
    async def commit_reservation(self, reservation_id: str) -> Dict[str, Any]:
        pass

    @abstractmethod
    async def release_reservation(self, reservation_id: str) -> Dict[str, Any]:
        pass

    @abstractmethod
    async def get_reserved_total(self, project_id: str) -> float:
        """Sum of reservations still in `reserved` state"""
        pass
