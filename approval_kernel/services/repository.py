"""
approval_kernel.services.repository -- In-process WorkflowRepository.

Responsibility:
    Thread-safe, dictionary-backed implementation of the WorkflowRepository
    contract.  Used by tests, the config CLI dry-run and embedders that do
    not need durable storage.

Architecture position:
    Kernel > Services.  May import from domain/ and exceptions.

Invariants enforced:
    - Compare-and-swap on ``revision`` under a single lock.
    - At most one pending execution per invoice.
    - One audit row per (execution_id, step_order).
    - Every write validates fully before mutating anything.

Failure modes:
    - DuplicateActiveExecutionError, OptimisticLockError,
      DuplicateDecisionError as documented on WorkflowRepository.
"""

from __future__ import annotations

import threading
from dataclasses import replace
from datetime import datetime
from typing import Iterable
from uuid import UUID

from approval_kernel.domain.workflow import (
    ApprovalDecisionRecord,
    ExecutionStatus,
    StepStatus,
    WorkflowDefinition,
    WorkflowExecution,
)
from approval_kernel.exceptions import (
    DuplicateActiveExecutionError,
    DuplicateDecisionError,
    ExecutionNotFoundError,
    OptimisticLockError,
)


class InMemoryWorkflowRepository:
    """WorkflowRepository held in process memory.

    Domain objects are frozen, so stored values are shared without copying.
    """

    def __init__(self, definitions: Iterable[WorkflowDefinition] = ()) -> None:
        self._lock = threading.Lock()
        self._definitions: dict[UUID, WorkflowDefinition] = {
            d.definition_id: d for d in definitions
        }
        self._executions: dict[UUID, WorkflowExecution] = {}
        self._audit: dict[UUID, list[ApprovalDecisionRecord]] = {}

    # -- Definitions -------------------------------------------------------

    def load_definitions(self, tenant_id: UUID) -> list[WorkflowDefinition]:
        with self._lock:
            return [d for d in self._definitions.values() if d.tenant_id == tenant_id]

    def get_definition(self, definition_id: UUID) -> WorkflowDefinition | None:
        with self._lock:
            return self._definitions.get(definition_id)

    def save_definition(self, definition: WorkflowDefinition) -> None:
        with self._lock:
            self._definitions[definition.definition_id] = definition

    # -- Executions --------------------------------------------------------

    def get_execution(self, execution_id: UUID) -> WorkflowExecution | None:
        with self._lock:
            return self._executions.get(execution_id)

    def find_executions(
        self,
        *,
        tenant_id: UUID | None = None,
        invoice_id: UUID | None = None,
        status: ExecutionStatus | None = None,
        started_before: datetime | None = None,
    ) -> list[WorkflowExecution]:
        with self._lock:
            found = [
                e for e in self._executions.values()
                if (tenant_id is None or e.tenant_id == tenant_id)
                and (invoice_id is None or e.invoice_id == invoice_id)
                and (status is None or e.status is status)
                and (started_before is None or e.started_at < started_before)
            ]
        return sorted(found, key=lambda e: (e.started_at, str(e.execution_id)))

    def create_execution(
        self,
        execution: WorkflowExecution,
        audit: Iterable[ApprovalDecisionRecord] = (),
    ) -> WorkflowExecution:
        records = list(audit)
        with self._lock:
            if execution.status is ExecutionStatus.PENDING and any(
                e.invoice_id == execution.invoice_id
                and e.status is ExecutionStatus.PENDING
                for e in self._executions.values()
            ):
                raise DuplicateActiveExecutionError(str(execution.invoice_id))
            self._check_audit(execution.execution_id, records)

            stored = replace(execution, revision=0)
            self._executions[execution.execution_id] = stored
            self._audit.setdefault(execution.execution_id, []).extend(records)
            return stored

    def save_execution(
        self,
        execution: WorkflowExecution,
        expected_revision: int,
        audit: Iterable[ApprovalDecisionRecord] = (),
    ) -> WorkflowExecution:
        records = list(audit)
        with self._lock:
            current = self._executions.get(execution.execution_id)
            if current is None:
                raise ExecutionNotFoundError(str(execution.execution_id))
            if current.revision != expected_revision or current.is_terminal:
                raise OptimisticLockError(
                    "WorkflowExecution", str(execution.execution_id), expected_revision,
                )
            for previous in current.steps:
                updated = execution.step_execution(previous.step_order)
                if (
                    previous.status is not StepStatus.PENDING
                    and updated is not None
                    and updated != previous
                ):
                    raise DuplicateDecisionError(
                        str(execution.execution_id), previous.step_order,
                    )
            self._check_audit(execution.execution_id, records)

            stored = replace(execution, revision=expected_revision + 1)
            self._executions[execution.execution_id] = stored
            self._audit.setdefault(execution.execution_id, []).extend(records)
            return stored

    # -- Audit -------------------------------------------------------------

    def append_audit(self, record: ApprovalDecisionRecord) -> None:
        with self._lock:
            self._check_audit(record.execution_id, [record])
            self._audit.setdefault(record.execution_id, []).append(record)

    def list_audit(self, execution_id: UUID) -> list[ApprovalDecisionRecord]:
        with self._lock:
            return list(self._audit.get(execution_id, ()))

    def _check_audit(
        self, execution_id: UUID, records: list[ApprovalDecisionRecord],
    ) -> None:
        seen = {
            r.step_order for r in self._audit.get(execution_id, ())
            if r.step_order is not None
        }
        for record in records:
            if record.step_order is None:
                continue
            if record.step_order in seen:
                raise DuplicateDecisionError(str(execution_id), record.step_order)
            seen.add(record.step_order)
