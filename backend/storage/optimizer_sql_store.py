"""
Optimizer SQL store using PostgreSQL (SQLite for local runs and tests)

Projects, experiments, eval sets, runs and the budget ledger.
"""

import logging
import uuid
import enum
from datetime import datetime, timezone
from typing import List, Dict, Any, Optional, Set
from sqlalchemy import (
    create_engine, Column, String, ForeignKey, Integer, Float, Boolean, DateTime, Enum, JSON, Text,
    UniqueConstraint, func,
)
from sqlalchemy.orm import DeclarativeBase, sessionmaker, relationship
from storage.base import BaseOptimizerStore
from core.config import settings
from core.exceptions import OptimizerException, NotFoundError, StorageError

logger = logging.getLogger(__name__)


def _utcnow() -> datetime:
    # Naive UTC, the same on SQLite and PostgreSQL
    return datetime.now(timezone.utc).replace(tzinfo=None)


def _new_id() -> str:
    return str(uuid.uuid4())


def _iso(value: Optional[datetime]) -> Optional[str]:
    return value.isoformat() if value else None


def month_bounds(now: datetime):
    """[start, end) of the calendar month containing `now`"""
    start = datetime(now.year, now.month, 1)
    if now.month == 12:
        end = datetime(now.year + 1, 1, 1)
    else:
        end = datetime(now.year, now.month + 1, 1)
    return start, end


class Base(DeclarativeBase):
    pass


class EnforcementModeColumn(enum.Enum):
    WARN = "warn"
    ABORT = "abort"
    AUTO_DOWNGRADE = "auto_downgrade"


class ExperimentStatus(enum.Enum):
    ACTIVE = "active"
    ARCHIVED = "archived"


class RunStatusColumn(enum.Enum):
    RUNNING = "running"
    COMPLETED = "completed"
    FAILED = "failed"


class DecisionType(enum.Enum):
    PROCEED = "proceed"
    WARN = "warn"
    ABORT = "abort"
    DOWNGRADE = "downgrade"


class ReservationStatus(enum.Enum):
    RESERVED = "reserved"
    COMMITTED = "committed"
    RELEASED = "released"


class ProjectModel(Base):
    __tablename__ = "projects"

    id = Column(String, primary_key=True)
    name = Column(String, nullable=False)
    monthly_budget_usd = Column(Float, nullable=False, default=50.0)
    max_cost_per_query_usd = Column(Float, nullable=False, default=0.01)
    preferred_baseline_strategy = Column(String, nullable=False, default="balanced")
    budget_enforcement_mode = Column(
        Enum(EnforcementModeColumn, name="budget_enforcement_mode"),
        nullable=False,
        default=EnforcementModeColumn.WARN
    )
    chunk_size = Column(Integer, nullable=False, default=1000)
    chunk_overlap = Column(Integer, nullable=False, default=200)
    chunk_strategy = Column(String, nullable=False, default="fixed")
    baseline_experiment_id = Column(String, nullable=True)  # Current baseline, if any
    created_at = Column(DateTime, nullable=False, default=_utcnow)

    experiments = relationship("ExperimentModel", back_populates="project", cascade="all, delete-orphan")


class ExperimentModel(Base):
    __tablename__ = "experiments"
    __table_args__ = (UniqueConstraint("project_id", "name", name="uq_experiment_project_name"),)

    id = Column(String, primary_key=True)
    project_id = Column(String, ForeignKey("projects.id"), nullable=False, index=True)
    name = Column(String, nullable=False)
    description = Column(Text, nullable=True)
    chunking_config_hash = Column(String, nullable=True)
    embedding_model = Column(String, nullable=False, default="text-embedding-3-small")
    embedding_model_version = Column(String, nullable=True)
    retrieval_config = Column(JSON, nullable=False, default=dict)
    status = Column(
        Enum(ExperimentStatus, name="experiment_status"),
        nullable=False,
        default=ExperimentStatus.ACTIVE
    )
    auto_generated = Column(Boolean, nullable=False, default=False)
    generation_batch_id = Column(String, nullable=True)
    is_baseline = Column(Boolean, nullable=False, default=False)
    baseline_strategy = Column(String, nullable=True)
    created_at = Column(DateTime, nullable=False, default=_utcnow)

    project = relationship("ProjectModel", back_populates="experiments")


class EvalSetModel(Base):
    __tablename__ = "eval_sets"

    id = Column(String, primary_key=True)
    project_id = Column(String, ForeignKey("projects.id"), nullable=False, index=True)
    name = Column(String, nullable=False)
    description = Column(Text, nullable=True)
    version = Column(Integer, nullable=False, default=1)
    query_count = Column(Integer, nullable=False, default=0)
    created_at = Column(DateTime, nullable=False, default=_utcnow)
    updated_at = Column(DateTime, nullable=False, default=_utcnow)

    queries = relationship(
        "EvalQueryModel",
        back_populates="eval_set",
        cascade="all, delete-orphan",
        order_by="EvalQueryModel.position"
    )


class EvalQueryModel(Base):
    __tablename__ = "eval_queries"

    id = Column(String, primary_key=True)
    eval_set_id = Column(String, ForeignKey("eval_sets.id"), nullable=False, index=True)
    position = Column(Integer, nullable=False)  # Order within the eval set
    query = Column(Text, nullable=False)
    expected_chunk_ids = Column(JSON, nullable=False, default=list)
    expected_document_ids = Column(JSON, nullable=False, default=list)
    relevance_scores = Column(JSON, nullable=True)
    created_at = Column(DateTime, nullable=False, default=_utcnow)

    eval_set = relationship("EvalSetModel", back_populates="queries")


class RunModel(Base):
    __tablename__ = "runs"

    id = Column(String, primary_key=True)
    experiment_id = Column(String, ForeignKey("experiments.id"), nullable=False, index=True)
    eval_set_id = Column(String, ForeignKey("eval_sets.id"), nullable=False, index=True)
    eval_set_version = Column(Integer, nullable=False, default=1)
    status = Column(
        Enum(RunStatusColumn, name="run_status"),
        nullable=False,
        default=RunStatusColumn.RUNNING
    )
    metrics = Column(JSON, nullable=True)
    cost_metrics = Column(JSON, nullable=True)
    latency_stats = Column(JSON, nullable=True)
    query_results = Column(JSON, nullable=True)
    summary = Column(Text, nullable=True)
    error_message = Column(Text, nullable=True)
    started_at = Column(DateTime, nullable=False, default=_utcnow)
    completed_at = Column(DateTime, nullable=True)


class BudgetDecisionModel(Base):
    __tablename__ = "budget_decisions"

    id = Column(String, primary_key=True)
    project_id = Column(String, ForeignKey("projects.id"), nullable=False, index=True)
    operation_type = Column(String, nullable=False)
    decision_type = Column(Enum(DecisionType, name="budget_decision_type"), nullable=False)
    reason = Column(Text, nullable=False)
    original_config = Column(JSON, nullable=True)
    adjusted_config = Column(JSON, nullable=True)
    estimated_cost_usd = Column(Float, nullable=False)
    adjusted_cost_usd = Column(Float, nullable=True)
    quality_impact_percent = Column(Float, nullable=True)
    cost_savings_percent = Column(Float, nullable=True)
    created_at = Column(DateTime, nullable=False, default=_utcnow, index=True)


class CostLogModel(Base):
    __tablename__ = "cost_logs"

    id = Column(String, primary_key=True)
    project_id = Column(String, ForeignKey("projects.id"), nullable=False, index=True)
    operation_type = Column(String, nullable=False)
    operation_id = Column(String, nullable=True)
    cost_usd = Column(Float, nullable=False, default=0.0)
    tokens = Column(Integer, nullable=False, default=0)
    model = Column(String, nullable=True)
    extra = Column("metadata", JSON, nullable=True)
    created_at = Column(DateTime, nullable=False, default=_utcnow, index=True)


class BudgetReservationModel(Base):
    __tablename__ = "budget_reservations"

    id = Column(String, primary_key=True)
    project_id = Column(String, ForeignKey("projects.id"), nullable=False, index=True)
    operation_type = Column(String, nullable=False)
    amount_usd = Column(Float, nullable=False)
    status = Column(
        Enum(ReservationStatus, name="reservation_status"),
        nullable=False,
        default=ReservationStatus.RESERVED
    )
    created_at = Column(DateTime, nullable=False, default=_utcnow)
    resolved_at = Column(DateTime, nullable=True)


def _project_to_dict(project: ProjectModel) -> Dict[str, Any]:
    return {
        "id": project.id,
        "name": project.name,
        "monthly_budget_usd": project.monthly_budget_usd,
        "max_cost_per_query_usd": project.max_cost_per_query_usd,
        "preferred_baseline_strategy": project.preferred_baseline_strategy,
        "budget_enforcement_mode": project.budget_enforcement_mode.value,
        "chunk_size": project.chunk_size,
        "chunk_overlap": project.chunk_overlap,
        "chunk_strategy": project.chunk_strategy,
        "baseline_experiment_id": project.baseline_experiment_id,
        "created_at": _iso(project.created_at),
    }


def _experiment_to_dict(exp: ExperimentModel) -> Dict[str, Any]:
    return {
        "id": exp.id,
        "project_id": exp.project_id,
        "name": exp.name,
        "description": exp.description,
        "chunking_config_hash": exp.chunking_config_hash,
        "embedding_model": exp.embedding_model,
        "embedding_model_version": exp.embedding_model_version,
        "retrieval_config": dict(exp.retrieval_config or {}),
        "status": exp.status.value,
        "auto_generated": exp.auto_generated,
        "generation_batch_id": exp.generation_batch_id,
        "is_baseline": exp.is_baseline,
        "baseline_strategy": exp.baseline_strategy,
        "created_at": _iso(exp.created_at),
    }


def _eval_set_to_dict(eval_set: EvalSetModel) -> Dict[str, Any]:
    return {
        "id": eval_set.id,
        "project_id": eval_set.project_id,
        "name": eval_set.name,
        "description": eval_set.description,
        "version": eval_set.version,
        "query_count": eval_set.query_count,
        "created_at": _iso(eval_set.created_at),
        "updated_at": _iso(eval_set.updated_at),
    }


def _eval_query_to_dict(query: EvalQueryModel) -> Dict[str, Any]:
    return {
        "id": query.id,
        "query": query.query,
        "expected_chunk_ids": list(query.expected_chunk_ids or []),
        "expected_document_ids": list(query.expected_document_ids or []),
        "relevance_scores": dict(query.relevance_scores or {}),
    }


def _run_to_dict(run: RunModel) -> Dict[str, Any]:
    return {
        "id": run.id,
        "experiment_id": run.experiment_id,
        "eval_set_id": run.eval_set_id,
        "eval_set_version": run.eval_set_version,
        "status": run.status.value,
        "metrics": run.metrics,
        "cost_metrics": run.cost_metrics,
        "latency_stats": run.latency_stats,
        "query_results": run.query_results or [],
        "summary": run.summary,
        "error_message": run.error_message,
        "started_at": _iso(run.started_at),
        "completed_at": _iso(run.completed_at),
    }


def _decision_to_dict(decision: BudgetDecisionModel) -> Dict[str, Any]:
    return {
        "id": decision.id,
        "project_id": decision.project_id,
        "operation_type": decision.operation_type,
        "decision_type": decision.decision_type.value,
        "reason": decision.reason,
        "original_config": decision.original_config,
        "adjusted_config": decision.adjusted_config,
        "estimated_cost_usd": decision.estimated_cost_usd,
        "adjusted_cost_usd": decision.adjusted_cost_usd,
        "quality_impact_percent": decision.quality_impact_percent,
        "cost_savings_percent": decision.cost_savings_percent,
        "created_at": _iso(decision.created_at),
    }


def _cost_log_to_dict(log: CostLogModel) -> Dict[str, Any]:
    return {
        "id": log.id,
        "project_id": log.project_id,
        "operation_type": log.operation_type,
        "operation_id": log.operation_id,
        "cost_usd": log.cost_usd,
        "tokens": log.tokens,
        "model": log.model,
        "metadata": log.extra or {},
        "created_at": _iso(log.created_at),
    }


def _reservation_to_dict(reservation: BudgetReservationModel) -> Dict[str, Any]:
    return {
        "id": reservation.id,
        "project_id": reservation.project_id,
        "operation_type": reservation.operation_type,
        "amount_usd": reservation.amount_usd,
        "status": reservation.status.value,
        "created_at": _iso(reservation.created_at),
        "resolved_at": _iso(reservation.resolved_at),
    }


class OptimizerSQLStore(BaseOptimizerStore):
    """Optimizer store on SQLAlchemy (PostgreSQL in production)"""

    def __init__(self, db_url: str = None):
        db_url = db_url or self._get_db_url()

        if db_url.startswith("sqlite"):
            logger.info("Connecting to SQLite database")
            self.engine = create_engine(db_url, connect_args={"check_same_thread": False})
        else:
            logger.info("Connecting to PostgreSQL database")
            self.engine = create_engine(
                db_url,
                pool_pre_ping=True,  # Verify connections before using
                pool_size=5,         # Connection pool size
                max_overflow=10,     # Max connections beyond pool_size
                connect_args={"connect_timeout": settings.postgres_connect_timeout}
            )

        # Create tables if they don't exist
        Base.metadata.create_all(self.engine)
        self.SessionLocal = sessionmaker(bind=self.engine, expire_on_commit=False)

    def _get_db_url(self) -> str:
        # Prioritize database_url for managed services
        if settings.database_url:
            return settings.database_url

        if not settings.postgres_password:
            raise ValueError(
                "PostgreSQL password is required. Set POSTGRES_PASSWORD environment variable "
                "or DATABASE_URL connection string."
            )
        return (
            f"postgresql://{settings.postgres_user}:{settings.postgres_password}"
            f"@{settings.postgres_host}:{settings.postgres_port}/{settings.postgres_database}"
        )

    def close(self) -> None:
        self.engine.dispose()

    # ------------------------
    # Projects
    # ------------------------

    async def create_project(self, name: str, project_id: str = None, **fields) -> Dict[str, Any]:
        fields.setdefault("monthly_budget_usd", settings.default_monthly_budget_usd)
        fields.setdefault("max_cost_per_query_usd", settings.default_max_cost_per_query_usd)
        fields.setdefault("budget_enforcement_mode", settings.default_enforcement_mode)
        try:
            fields["budget_enforcement_mode"] = EnforcementModeColumn(fields["budget_enforcement_mode"])
            with self.SessionLocal.begin() as session:
                project = ProjectModel(id=project_id or _new_id(), name=name, **fields)
                session.add(project)
                session.flush()
                return _project_to_dict(project)
        except Exception as e:
            logger.error(f"Error creating project {name}: {e}")
            raise StorageError(f"Failed to create project: {e}") from e

    async def get_project(self, project_id: str) -> Optional[Dict[str, Any]]:
        try:
            with self.SessionLocal.begin() as session:
                project = session.get(ProjectModel, project_id)
                return _project_to_dict(project) if project else None
        except Exception as e:
            logger.error(f"Error getting project {project_id}: {e}")
            raise StorageError(f"Failed to get project: {e}") from e

    # ------------------------
    # Experiments
    # ------------------------

    async def create_experiments(self, project_id: str, experiments: List[Dict[str, Any]]) -> List[Dict[str, Any]]:
        try:
            with self.SessionLocal.begin() as session:
                if session.get(ProjectModel, project_id) is None:
                    raise NotFoundError(f"Project {project_id} not found")
                created = []
                for fields in experiments:
                    fields = dict(fields)
                    fields.pop("project_id", None)
                    experiment_id = fields.pop("id", None) or _new_id()
                    if "status" in fields:
                        fields["status"] = ExperimentStatus(fields["status"])
                    exp = ExperimentModel(id=experiment_id, project_id=project_id, **fields)
                    session.add(exp)
                    created.append(exp)
                session.flush()
                return [_experiment_to_dict(exp) for exp in created]
        except OptimizerException:
            raise
        except Exception as e:
            logger.error(f"Error creating experiments for project {project_id}: {e}")
            raise StorageError(f"Failed to create experiments: {e}") from e

    async def get_experiment(self, experiment_id: str) -> Optional[Dict[str, Any]]:
        try:
            with self.SessionLocal.begin() as session:
                exp = session.get(ExperimentModel, experiment_id)
                return _experiment_to_dict(exp) if exp else None
        except Exception as e:
            logger.error(f"Error getting experiment {experiment_id}: {e}")
            raise StorageError(f"Failed to get experiment: {e}") from e

    async def list_experiments(
        self,
        project_id: str = None,
        experiment_ids: List[str] = None,
        status: Optional[str] = "active",
        auto_generated_only: bool = False
    ) -> List[Dict[str, Any]]:
        """
        List experiments.

        Explicit `experiment_ids` keep the caller's order; otherwise creation order.
        """
        try:
            with self.SessionLocal.begin() as session:
                query = session.query(ExperimentModel)
                if project_id:
                    query = query.filter(ExperimentModel.project_id == project_id)
                if experiment_ids:
                    query = query.filter(ExperimentModel.id.in_(experiment_ids))
                if status:
                    query = query.filter(ExperimentModel.status == ExperimentStatus(status))
                if auto_generated_only:
                    query = query.filter(ExperimentModel.auto_generated.is_(True))

                experiments = query.order_by(ExperimentModel.created_at, ExperimentModel.name).all()
                if experiment_ids:
                    order = {exp_id: idx for idx, exp_id in enumerate(experiment_ids)}
                    experiments.sort(key=lambda exp: order.get(exp.id, len(order)))
                return [_experiment_to_dict(exp) for exp in experiments]
        except Exception as e:
            logger.error(f"Error listing experiments: {e}")
            raise StorageError(f"Failed to list experiments: {e}") from e

    async def get_experiment_names(self, project_id: str) -> Set[str]:
        try:
            with self.SessionLocal.begin() as session:
                rows = session.query(ExperimentModel.name).filter(ExperimentModel.project_id == project_id).all()
                return {row[0] for row in rows}
        except Exception as e:
            logger.error(f"Error getting experiment names for project {project_id}: {e}")
            raise StorageError(f"Failed to get experiment names: {e}") from e

    async def set_baseline(self, project_id: str, experiment_id: str, strategy: str) -> Dict[str, Any]:
        try:
            with self.SessionLocal.begin() as session:
                project = session.get(ProjectModel, project_id)
                if project is None:
                    raise NotFoundError(f"Project {project_id} not found")
                exp = session.get(ExperimentModel, experiment_id)
                if exp is None or exp.project_id != project_id:
                    raise NotFoundError(f"Experiment {experiment_id} not found in project {project_id}")

                session.query(ExperimentModel).filter(
                    ExperimentModel.project_id == project_id,
                    ExperimentModel.id != experiment_id,
                    ExperimentModel.is_baseline.is_(True),
                ).update({"is_baseline": False}, synchronize_session="fetch")

                exp.is_baseline = True
                exp.baseline_strategy = strategy
                project.baseline_experiment_id = experiment_id
                session.flush()
                return _experiment_to_dict(exp)
        except OptimizerException:
            raise
        except Exception as e:
            logger.error(f"Error setting baseline {experiment_id} for project {project_id}: {e}")
            raise StorageError(f"Failed to set baseline: {e}") from e

    # ------------------------
    # Eval sets
    # ------------------------

    def _add_queries(self, session, eval_set: EvalSetModel, queries: List[Dict[str, Any]]) -> None:
        position = eval_set.query_count
        for query in queries:
            session.add(EvalQueryModel(
                id=query.get("id") or _new_id(),
                eval_set_id=eval_set.id,
                position=position,
                query=query["query"],
                expected_chunk_ids=list(query.get("expected_chunk_ids") or []),
                expected_document_ids=list(query.get("expected_document_ids") or []),
                relevance_scores=dict(query.get("relevance_scores") or {}),
            ))
            position += 1
        eval_set.query_count = position

    async def create_eval_set(
        self,
        project_id: str,
        name: str,
        queries: List[Dict[str, Any]],
        description: str = None,
        eval_set_id: str = None
    ) -> Dict[str, Any]:
        try:
            with self.SessionLocal.begin() as session:
                if session.get(ProjectModel, project_id) is None:
                    raise NotFoundError(f"Project {project_id} not found")
                eval_set = EvalSetModel(
                    id=eval_set_id or _new_id(),
                    project_id=project_id,
                    name=name,
                    description=description,
                    version=1,
                    query_count=0,
                )
                session.add(eval_set)
                self._add_queries(session, eval_set, queries)
                session.flush()
                return _eval_set_to_dict(eval_set)
        except OptimizerException:
            raise
        except Exception as e:
            logger.error(f"Error creating eval set {name}: {e}")
            raise StorageError(f"Failed to create eval set: {e}") from e

    async def get_eval_set(self, eval_set_id: str) -> Optional[Dict[str, Any]]:
        try:
            with self.SessionLocal.begin() as session:
                eval_set = session.get(EvalSetModel, eval_set_id)
                return _eval_set_to_dict(eval_set) if eval_set else None
        except Exception as e:
            logger.error(f"Error getting eval set {eval_set_id}: {e}")
            raise StorageError(f"Failed to get eval set: {e}") from e

    async def list_eval_queries(self, eval_set_id: str) -> List[Dict[str, Any]]:
        try:
            with self.SessionLocal.begin() as session:
                queries = (
                    session.query(EvalQueryModel)
                    .filter(EvalQueryModel.eval_set_id == eval_set_id)
                    .order_by(EvalQueryModel.position)
                    .all()
                )
                return [_eval_query_to_dict(query) for query in queries]
        except Exception as e:
            logger.error(f"Error listing queries for eval set {eval_set_id}: {e}")
            raise StorageError(f"Failed to list eval queries: {e}") from e

    async def append_eval_queries(self, eval_set_id: str, queries: List[Dict[str, Any]]) -> Dict[str, Any]:
        """Append queries; existing queries are never edited, the set version is bumped"""
        try:
            with self.SessionLocal.begin() as session:
                eval_set = session.get(EvalSetModel, eval_set_id)
                if eval_set is None:
                    raise NotFoundError(f"Eval set {eval_set_id} not found")
                self._add_queries(session, eval_set, queries)
                eval_set.version += 1
                eval_set.updated_at = _utcnow()
                session.flush()
                return _eval_set_to_dict(eval_set)
        except OptimizerException:
            raise
        except Exception as e:
            logger.error(f"Error appending queries to eval set {eval_set_id}: {e}")
            raise StorageError(f"Failed to append eval queries: {e}") from e

    # ------------------------
    # Runs
    # ------------------------

    async def create_run(self, experiment_id: str, eval_set_id: str, eval_set_version: int = 1) -> Dict[str, Any]:
        try:
            with self.SessionLocal.begin() as session:
                run = RunModel(
                    id=_new_id(),
                    experiment_id=experiment_id,
                    eval_set_id=eval_set_id,
                    eval_set_version=eval_set_version,
                    status=RunStatusColumn.RUNNING,
                    started_at=_utcnow(),
                )
                session.add(run)
                session.flush()
                return _run_to_dict(run)
        except Exception as e:
            logger.error(f"Error creating run for experiment {experiment_id}: {e}")
            raise StorageError(f"Failed to create run: {e}") from e

    async def finalize_run(self, run_id: str, status: str, **fields) -> Dict[str, Any]:
        allowed = {"metrics", "cost_metrics", "latency_stats", "query_results", "summary", "error_message"}
        unknown = set(fields) - allowed
        if unknown:
            raise StorageError(f"Unknown run fields: {sorted(unknown)}")

        status = RunStatusColumn(status)
        if status == RunStatusColumn.RUNNING:
            raise StorageError("A run can only be finalized as completed or failed")

        try:
            with self.SessionLocal.begin() as session:
                run = session.get(RunModel, run_id)
                if run is None:
                    raise NotFoundError(f"Run {run_id} not found")
                if run.status != RunStatusColumn.RUNNING:
                    raise StorageError(f"Run {run_id} is already {run.status.value}")
                for key, value in fields.items():
                    setattr(run, key, value)
                run.status = status
                run.completed_at = _utcnow()
                session.flush()
                return _run_to_dict(run)
        except OptimizerException:
            raise
        except Exception as e:
            logger.error(f"Error finalizing run {run_id}: {e}")
            raise StorageError(f"Failed to finalize run: {e}") from e

    async def get_run(self, run_id: str) -> Optional[Dict[str, Any]]:
        try:
            with self.SessionLocal.begin() as session:
                run = session.get(RunModel, run_id)
                return _run_to_dict(run) if run else None
        except Exception as e:
            logger.error(f"Error getting run {run_id}: {e}")
            raise StorageError(f"Failed to get run: {e}") from e

    async def list_runs(
        self,
        experiment_id: str,
        status: str = None,
        eval_set_id: str = None
    ) -> List[Dict[str, Any]]:
        """Runs of an experiment, newest first"""
        try:
            with self.SessionLocal.begin() as session:
                query = session.query(RunModel).filter(RunModel.experiment_id == experiment_id)
                if status:
                    query = query.filter(RunModel.status == RunStatusColumn(status))
                if eval_set_id:
                    query = query.filter(RunModel.eval_set_id == eval_set_id)
                runs = query.order_by(RunModel.started_at.desc()).all()
                return [_run_to_dict(run) for run in runs]
        except Exception as e:
            logger.error(f"Error listing runs for experiment {experiment_id}: {e}")
            raise StorageError(f"Failed to list runs: {e}") from e

    async def reconcile_abandoned_runs(self, started_before: datetime = None, reason: str = None) -> int:
        """Mark runs left in `running` as failed. Returns how many were reconciled."""
        reason = reason or "Run abandoned before completion"
        try:
            with self.SessionLocal.begin() as session:
                query = session.query(RunModel).filter(RunModel.status == RunStatusColumn.RUNNING)
                if started_before is not None:
                    query = query.filter(RunModel.started_at < started_before)
                runs = query.all()
                now = _utcnow()
                for run in runs:
                    run.status = RunStatusColumn.FAILED
                    run.error_message = reason
                    run.completed_at = now
                return len(runs)
        except Exception as e:
            logger.error(f"Error reconciling abandoned runs: {e}")
            raise StorageError(f"Failed to reconcile runs: {e}") from e

    # ------------------------
    # Budget ledger
    # ------------------------

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
        try:
            with self.SessionLocal.begin() as session:
                log = CostLogModel(
                    id=_new_id(),
                    project_id=project_id,
                    operation_type=operation_type,
                    operation_id=operation_id,
                    cost_usd=cost_usd,
                    tokens=tokens,
                    model=model,
                    extra=metadata or {},
                    created_at=created_at or _utcnow(),
                )
                session.add(log)
                session.flush()
                return _cost_log_to_dict(log)
        except Exception as e:
            logger.error(f"Error logging cost for project {project_id}: {e}")
            raise StorageError(f"Failed to log cost: {e}") from e

    async def get_month_spending(self, project_id: str, now: datetime) -> float:
        start, end = month_bounds(now)
        try:
            with self.SessionLocal.begin() as session:
                total = session.query(func.coalesce(func.sum(CostLogModel.cost_usd), 0.0)).filter(
                    CostLogModel.project_id == project_id,
                    CostLogModel.created_at >= start,
                    CostLogModel.created_at < end,
                ).scalar()
                return float(total or 0.0)
        except Exception as e:
            logger.error(f"Error getting month spending for project {project_id}: {e}")
            raise StorageError(f"Failed to get month spending: {e}") from e

    async def list_cost_logs(self, project_id: str, since: datetime = None) -> List[Dict[str, Any]]:
        try:
            with self.SessionLocal.begin() as session:
                query = session.query(CostLogModel).filter(CostLogModel.project_id == project_id)
                if since is not None:
                    query = query.filter(CostLogModel.created_at >= since)
                logs = query.order_by(CostLogModel.created_at).all()
                return [_cost_log_to_dict(log) for log in logs]
        except Exception as e:
            logger.error(f"Error listing cost logs for project {project_id}: {e}")
            raise StorageError(f"Failed to list cost logs: {e}") from e

    async def log_budget_decision(
        self,
        project_id: str,
        operation_type: str,
        decision: Dict[str, Any],
        created_at: datetime = None
    ) -> Dict[str, Any]:
        try:
            with self.SessionLocal.begin() as session:
                record = BudgetDecisionModel(
                    id=_new_id(),
                    project_id=project_id,
                    operation_type=operation_type,
                    decision_type=DecisionType(decision["decision_type"]),
                    reason=decision["reason"],
                    original_config=decision.get("original_config"),
                    adjusted_config=decision.get("adjusted_config"),
                    estimated_cost_usd=decision["estimated_cost_usd"],
                    adjusted_cost_usd=decision.get("adjusted_cost_usd"),
                    quality_impact_percent=decision.get("quality_impact_percent"),
                    cost_savings_percent=decision.get("cost_savings_percent"),
                    created_at=created_at or _utcnow(),
                )
                session.add(record)
                session.flush()
                return _decision_to_dict(record)
        except Exception as e:
            logger.error(f"Error logging budget decision for project {project_id}: {e}")
            raise StorageError(f"Failed to log budget decision: {e}") from e

    async def list_budget_decisions(
        self,
        project_id: str,
        since: datetime = None,
        decision_type: str = None
    ) -> List[Dict[str, Any]]:
        try:
            with self.SessionLocal.begin() as session:
                query = session.query(BudgetDecisionModel).filter(BudgetDecisionModel.project_id == project_id)
                if since is not None:
                    query = query.filter(BudgetDecisionModel.created_at >= since)
                if decision_type:
                    query = query.filter(BudgetDecisionModel.decision_type == DecisionType(decision_type))
                decisions = query.order_by(BudgetDecisionModel.created_at).all()
                return [_decision_to_dict(decision) for decision in decisions]
        except Exception as e:
            logger.error(f"Error listing budget decisions for project {project_id}: {e}")
            raise StorageError(f"Failed to list budget decisions: {e}") from e

    async def reserve_budget(self, project_id: str, amount_usd: float, operation_type: str) -> Dict[str, Any]:
        try:
            with self.SessionLocal.begin() as session:
                reservation = BudgetReservationModel(
                    id=_new_id(),
                    project_id=project_id,
                    operation_type=operation_type,
                    amount_usd=amount_usd,
                    status=ReservationStatus.RESERVED,
                    created_at=_utcnow(),
                )
                session.add(reservation)
                session.flush()
                return _reservation_to_dict(reservation)
        except Exception as e:
            logger.error(f"Error reserving budget for project {project_id}: {e}")
            raise StorageError(f"Failed to reserve budget: {e}") from e

    async def _resolve_reservation(self, reservation_id: str, status: ReservationStatus) -> Dict[str, Any]:
        try:
            with self.SessionLocal.begin() as session:
                reservation = session.get(BudgetReservationModel, reservation_id)
                if reservation is None:
                    raise NotFoundError(f"Reservation {reservation_id} not found")
                if reservation.status != ReservationStatus.RESERVED:
                    raise StorageError(f"Reservation {reservation_id} is already {reservation.status.value}")
                reservation.status = status
                reservation.resolved_at = _utcnow()
                session.flush()
                return _reservation_to_dict(reservation)
        except OptimizerException:
            raise
        except Exception as e:
            logger.error(f"Error resolving reservation {reservation_id}: {e}")
            raise StorageError(f"Failed to resolve reservation: {e}") from e

    async def commit_reservation(self, reservation_id: str) -> Dict[str, Any]:
        return await self._resolve_reservation(reservation_id, ReservationStatus.COMMITTED)

    async def release_reservation(self, reservation_id: str) -> Dict[str, Any]:
        return await self._resolve_reservation(reservation_id, ReservationStatus.RELEASED)

    async def get_reserved_total(self, project_id: str) -> float:
        try:
            with self.SessionLocal.begin() as session:
                total = session.query(func.coalesce(func.sum(BudgetReservationModel.amount_usd), 0.0)).filter(
                    BudgetReservationModel.project_id == project_id,
                    BudgetReservationModel.status == ReservationStatus.RESERVED,
                ).scalar()
                return float(total or 0.0)
        except Exception as e:
            logger.error(f"Error getting reserved total for project {project_id}: {e}")
            raise StorageError(f"Failed to get reserved total: {e}") from e
