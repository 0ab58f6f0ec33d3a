"""
approval_kernel.services.sqlalchemy_repository -- Durable WorkflowRepository.

Responsibility:
    Persist definitions, executions, step outcomes and the audit trail
    through SQLAlchemy, implementing the WorkflowRepository contract.

Architecture position:
    Kernel > Services.  May import from domain/, models/, db/.

Invariants enforced:
    - Each write method is its own transaction: commit on success,
      rollback on any failure.
    - Compare-and-swap: ``save_execution`` issues
      ``UPDATE ... WHERE revision = :expected AND status = 'pending'``;
      zero affected rows means another writer won.
    - Step rows only move out of ``pending``; a write that would change an
      already-decided step is rejected.
    - The partial unique index and the audit unique constraint back the
      same rules at the storage layer for writers outside this class.

Failure modes:
    - DuplicateActiveExecutionError on a second pending execution.
    - OptimisticLockError on a stale revision.
    - DuplicateDecisionError on a second outcome for the same step.
    - RepositoryUnavailableError when the database is unreachable or the
      pool times out (a TransientError; callers may retry).
"""

from __future__ import annotations

from contextlib import contextmanager
from dataclasses import replace
from datetime import datetime
from typing import Generator, Iterable
from uuid import UUID

from sqlalchemy import select, update
from sqlalchemy.exc import IntegrityError, OperationalError
from sqlalchemy.exc import TimeoutError as PoolTimeoutError
from sqlalchemy.orm import Session

from approval_kernel.domain.workflow import (
    ApprovalDecisionRecord,
    ExecutionStatus,
    WorkflowDefinition,
    WorkflowExecution,
)
from approval_kernel.exceptions import (
    ApprovalWorkflowError,
    DuplicateActiveExecutionError,
    DuplicateDecisionError,
    ImmutabilityViolationError,
    OptimisticLockError,
    RepositoryUnavailableError,
)
from approval_kernel.logging_config import get_logger
from approval_kernel.models.workflow import (
    ApprovalDecisionModel,
    StepExecutionModel,
    WorkflowDefinitionModel,
    WorkflowExecutionModel,
)

logger = get_logger("services.sqlalchemy_repository")


class SqlAlchemyWorkflowRepository:
    """WorkflowRepository backed by a SQLAlchemy Session.

    The repository owns transaction boundaries for its writes; do not share
    the session with work that must commit separately.
    """

    def __init__(self, session: Session) -> None:
        self._session = session

    # -- Transaction helpers ----------------------------------------------

    @contextmanager
    def _write(self, operation: str) -> Generator[None, None, None]:
        try:
            yield
            self._session.commit()
        except ApprovalWorkflowError:
            self._session.rollback()
            raise
        except (OperationalError, PoolTimeoutError) as exc:
            self._session.rollback()
            logger.warning(
                "repository_unavailable",
                extra={"operation": operation, "error": str(exc)},
            )
            raise RepositoryUnavailableError(operation, str(exc)) from exc
        except Exception:
            self._session.rollback()
            raise

    @contextmanager
    def _read(self, operation: str) -> Generator[None, None, None]:
        try:
            yield
        except (OperationalError, PoolTimeoutError) as exc:
            self._session.rollback()
            logger.warning(
                "repository_unavailable",
                extra={"operation": operation, "error": str(exc)},
            )
            raise RepositoryUnavailableError(operation, str(exc)) from exc

    # -- Definitions -------------------------------------------------------

    def load_definitions(self, tenant_id: UUID) -> list[WorkflowDefinition]:
        with self._read("load_definitions"):
            rows = self._session.execute(
                select(WorkflowDefinitionModel)
                .where(WorkflowDefinitionModel.tenant_id == tenant_id)
                .order_by(WorkflowDefinitionModel.name)
                .execution_options(populate_existing=True)
            ).scalars().all()
            return [row.to_dto() for row in rows]

    def get_definition(self, definition_id: UUID) -> WorkflowDefinition | None:
        with self._read("get_definition"):
            row = self._definition_row(definition_id)
            return row.to_dto() if row is not None else None

    def save_definition(self, definition: WorkflowDefinition) -> None:
        with self._write("save_definition"):
            row = self._definition_row(definition.definition_id)
            if row is None:
                self._session.add(WorkflowDefinitionModel.from_dto(definition))
            else:
                row.apply_dto(definition)
            self._session.flush()

    def _definition_row(self, definition_id: UUID) -> WorkflowDefinitionModel | None:
        return self._session.execute(
            select(WorkflowDefinitionModel)
            .where(WorkflowDefinitionModel.definition_id == definition_id)
            .execution_options(populate_existing=True)
        ).scalar_one_or_none()

    # -- Executions --------------------------------------------------------

    def get_execution(self, execution_id: UUID) -> WorkflowExecution | None:
        with self._read("get_execution"):
            row = self._session.execute(
                select(WorkflowExecutionModel)
                .where(WorkflowExecutionModel.execution_id == execution_id)
                .execution_options(populate_existing=True)
            ).scalar_one_or_none()
            return row.to_dto() if row is not None else None

    def find_executions(
        self,
        *,
        tenant_id: UUID | None = None,
        invoice_id: UUID | None = None,
        status: ExecutionStatus | None = None,
        started_before: datetime | None = None,
    ) -> list[WorkflowExecution]:
        stmt = select(WorkflowExecutionModel)
        if tenant_id is not None:
            stmt = stmt.where(WorkflowExecutionModel.tenant_id == tenant_id)
        if invoice_id is not None:
            stmt = stmt.where(WorkflowExecutionModel.invoice_id == invoice_id)
        if status is not None:
            stmt = stmt.where(WorkflowExecutionModel.status == status.value)
        if started_before is not None:
            stmt = stmt.where(WorkflowExecutionModel.started_at < started_before)
        stmt = stmt.order_by(
            WorkflowExecutionModel.started_at,
            WorkflowExecutionModel.execution_id,
        ).execution_options(populate_existing=True)

        with self._read("find_executions"):
            return [row.to_dto() for row in self._session.execute(stmt).scalars().all()]

    def create_execution(
        self,
        execution: WorkflowExecution,
        audit: Iterable[ApprovalDecisionRecord] = (),
    ) -> WorkflowExecution:
        records = list(audit)
        stored = replace(execution, revision=0)
        with self._write("create_execution"):
            self._session.add(WorkflowExecutionModel.from_dto(stored))
            try:
                self._session.flush()
            except IntegrityError as exc:
                # the partial unique index only covers pending rows
                if stored.status is not ExecutionStatus.PENDING:
                    raise
                logger.info(
                    "duplicate_active_execution",
                    extra={"invoice_id": str(execution.invoice_id)},
                )
                raise DuplicateActiveExecutionError(str(execution.invoice_id)) from exc

            self._session.add_all(ApprovalDecisionModel.from_dto(r) for r in records)
            try:
                self._session.flush()
            except IntegrityError as exc:
                raise DuplicateDecisionError(
                    str(execution.execution_id), _repeated_step(records),
                ) from exc
        return stored

    def save_execution(
        self,
        execution: WorkflowExecution,
        expected_revision: int,
        audit: Iterable[ApprovalDecisionRecord] = (),
    ) -> WorkflowExecution:
        records = list(audit)
        new_revision = expected_revision + 1

        with self._write("save_execution"):
            result = self._session.execute(
                update(WorkflowExecutionModel)
                .where(
                    WorkflowExecutionModel.execution_id == execution.execution_id,
                    WorkflowExecutionModel.revision == expected_revision,
                    WorkflowExecutionModel.status == ExecutionStatus.PENDING.value,
                )
                .values(
                    status=execution.status.value,
                    current_step=execution.current_step,
                    completed_at=execution.completed_at,
                    cancel_reason=execution.cancel_reason,
                    revision=new_revision,
                )
                .execution_options(synchronize_session=False)
            )
            if result.rowcount != 1:
                raise OptimisticLockError(
                    "WorkflowExecution", str(execution.execution_id), expected_revision,
                )

            self._write_steps(execution)
            self._session.add_all(ApprovalDecisionModel.from_dto(r) for r in records)
            try:
                self._session.flush()
            except IntegrityError as exc:
                raise DuplicateDecisionError(
                    str(execution.execution_id), _repeated_step(records),
                ) from exc

        return replace(execution, revision=new_revision)

    def _write_steps(self, execution: WorkflowExecution) -> None:
        rows = {
            row.step_order: row
            for row in self._session.execute(
                select(StepExecutionModel)
                .where(StepExecutionModel.execution_id == execution.execution_id)
                .execution_options(populate_existing=True)
            ).scalars().all()
        }
        for step in execution.steps:
            row = rows.get(step.step_order)
            if row is None:
                raise ImmutabilityViolationError(
                    "StepExecution",
                    f"{execution.execution_id}#{step.step_order}",
                    "step is not part of the execution",
                )
            if row.to_dto() == step:
                continue
            if row.status != "pending":
                raise DuplicateDecisionError(str(execution.execution_id), step.step_order)
            row.status = step.status.value
            row.actor_id = step.actor_id
            row.decided_at = step.decided_at
            row.comments = step.comments
            row.auto_approved = step.auto_approved

    # -- Audit -------------------------------------------------------------

    def append_audit(self, record: ApprovalDecisionRecord) -> None:
        with self._write("append_audit"):
            self._session.add(ApprovalDecisionModel.from_dto(record))
            try:
                self._session.flush()
            except IntegrityError as exc:
                raise DuplicateDecisionError(str(record.execution_id), record.step_order) from exc

    def list_audit(self, execution_id: UUID) -> list[ApprovalDecisionRecord]:
        with self._read("list_audit"):
            rows = self._session.execute(
                select(ApprovalDecisionModel)
                .where(ApprovalDecisionModel.execution_id == execution_id)
            ).scalars().all()
            records = [row.to_dto() for row in rows]
        return sorted(
            records,
            key=lambda r: (r.decided_at, r.step_order is None, r.step_order or 0),
        )


def _repeated_step(records: list[ApprovalDecisionRecord]) -> int | None:
    """First step_order that appears twice in ``records``, else the first one."""
    seen: set[int] = set()
    for record in records:
        if record.step_order is None:
            continue
        if record.step_order in seen:
            return record.step_order
        seen.add(record.step_order)
    return records[0].step_order if records else None
