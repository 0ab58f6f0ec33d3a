"""
Collaborator interfaces consumed by the approval engine.

Responsibility
--------------
Structural (``typing.Protocol``) contracts for the external systems the
engine talks to: RBAC role resolution, the invoice store, the workflow
repository, and the notifier.

Architecture position
---------------------
**Kernel domain layer** -- ZERO I/O.  Implementations live in
``approval_kernel.services`` (repositories), ``approval_kernel.domain.roles``
(reference role resolver) or in the host application.
"""

from __future__ import annotations

from datetime import datetime
from typing import Iterable, Protocol
from uuid import UUID

from approval_kernel.domain.workflow import (
    ApprovalDecisionRecord,
    ExecutionStatus,
    Invoice,
    WorkflowDefinition,
    WorkflowExecution,
)


class RoleResolver(Protocol):
    """RBAC lookups scoped to one tenant, honoring the role hierarchy."""

    def is_authorized_for_role(self, actor_id: str, required_role: str) -> bool:
        """True if the actor's effective role is ``required_role`` or higher."""
        ...

    def has_actor_for_role(self, required_role: str) -> bool:
        """True if at least one actor could satisfy ``required_role``."""
        ...

    def is_known_actor(self, actor_id: str) -> bool:
        ...


class InvoiceStore(Protocol):
    def get(self, invoice_id: UUID) -> Invoice | None:
        """Return the invoice, or None if it does not exist."""
        ...

    def set_approval_status(self, invoice_id: UUID, status: str) -> None:
        ...


class Notifier(Protocol):
    """Out-of-band alerting. Fire-and-forget from the engine's perspective."""

    def on_step_pending(self, execution_id: UUID, step_order: int) -> None:
        ...

    def on_resolved(self, execution_id: UUID, status: ExecutionStatus) -> None:
        ...

    def on_overdue(
        self, execution_id: UUID, step_order: int, days_pending: int,
    ) -> None:
        ...


class NullNotifier:
    """Notifier that drops every notification."""

    def on_step_pending(self, execution_id: UUID, step_order: int) -> None:
        return None

    def on_resolved(self, execution_id: UUID, status: ExecutionStatus) -> None:
        return None

    def on_overdue(
        self, execution_id: UUID, step_order: int, days_pending: int,
    ) -> None:
        return None


class WorkflowRepository(Protocol):
    """
    Durable storage for definitions, executions and the audit trail.

    Contract:
        Every write method is a single atomic unit: it either persists
        everything it was given or nothing.

    Guarantees:
        - ``create_execution`` enforces at most one pending execution per
          invoice at the storage layer (raises DuplicateActiveExecutionError).
        - ``save_execution`` is a compare-and-swap on ``revision``
          (raises OptimisticLockError when the stored revision differs
          from ``expected_revision``) and returns the new revision.
        - Audit rows are unique per (execution_id, step_order)
          (raises DuplicateDecisionError).
    """

    def load_definitions(self, tenant_id: UUID) -> list[WorkflowDefinition]:
        ...

    def get_definition(self, definition_id: UUID) -> WorkflowDefinition | None:
        ...

    def save_definition(self, definition: WorkflowDefinition) -> None:
        ...

    def get_execution(self, execution_id: UUID) -> WorkflowExecution | None:
        ...

    def find_executions(
        self,
        *,
        tenant_id: UUID | None = None,
        invoice_id: UUID | None = None,
        status: ExecutionStatus | None = None,
        started_before: datetime | None = None,
    ) -> list[WorkflowExecution]:
        """Executions matching all given filters, oldest first."""
        ...

    def create_execution(
        self,
        execution: WorkflowExecution,
        audit: Iterable[ApprovalDecisionRecord] = (),
    ) -> WorkflowExecution:
        ...

    def save_execution(
        self,
        execution: WorkflowExecution,
        expected_revision: int,
        audit: Iterable[ApprovalDecisionRecord] = (),
    ) -> WorkflowExecution:
        ...

    def append_audit(self, record: ApprovalDecisionRecord) -> None:
        ...

    def list_audit(self, execution_id: UUID) -> list[ApprovalDecisionRecord]:
        ...
