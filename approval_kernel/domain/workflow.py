"""
Approval workflow domain types (``approval_kernel.domain.workflow``).

Responsibility
--------------
Pure value objects for the invoice approval workflow engine: workflow
definitions and their steps, executions and per-step outcomes, the
append-only decision audit record, and the lifecycle state machines.

Architecture position
---------------------
**Kernel domain layer** -- pure value objects.  ZERO I/O.  No imports
from ``db/``, ``models/``, ``services/`` or outer layers.

Invariants enforced
-------------------
* Execution lifecycle -- ``EXECUTION_TRANSITIONS`` defines the only valid
  status transitions.  Terminal states have no outgoing edges.
* Step lifecycle -- ``STEP_TRANSITIONS``: a step leaves ``pending``
  exactly once.
* Definition snapshot -- ``WorkflowExecution.definition`` and
  ``definition_hash`` are captured when the execution starts; later edits
  of the definition never reach a running execution.
* Revision -- ``WorkflowExecution.revision`` is the compare-and-swap token
  checked by every persisted transition.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from decimal import Decimal
from enum import Enum
from typing import Any
from uuid import UUID

from approval_kernel.domain.conditions import ConditionExpr

SYSTEM_ACTOR = "system"


# =========================================================================
# Lifecycle state machines
# =========================================================================


class ExecutionStatus(str, Enum):
    """Workflow execution lifecycle states."""

    PENDING = "pending"
    APPROVED = "approved"
    REJECTED = "rejected"
    CANCELLED = "cancelled"


class StepStatus(str, Enum):
    """Per-step lifecycle states."""

    PENDING = "pending"
    APPROVED = "approved"
    REJECTED = "rejected"
    SKIPPED = "skipped"


EXECUTION_TRANSITIONS: dict[ExecutionStatus, frozenset[ExecutionStatus]] = {
    ExecutionStatus.PENDING: frozenset({
        ExecutionStatus.APPROVED,
        ExecutionStatus.REJECTED,
        ExecutionStatus.CANCELLED,
    }),
    ExecutionStatus.APPROVED: frozenset(),
    ExecutionStatus.REJECTED: frozenset(),
    ExecutionStatus.CANCELLED: frozenset(),
}

TERMINAL_EXECUTION_STATUSES: frozenset[ExecutionStatus] = frozenset({
    ExecutionStatus.APPROVED,
    ExecutionStatus.REJECTED,
    ExecutionStatus.CANCELLED,
})

STEP_TRANSITIONS: dict[StepStatus, frozenset[StepStatus]] = {
    StepStatus.PENDING: frozenset({
        StepStatus.APPROVED,
        StepStatus.REJECTED,
        StepStatus.SKIPPED,
    }),
    StepStatus.APPROVED: frozenset(),
    StepStatus.REJECTED: frozenset(),
    StepStatus.SKIPPED: frozenset(),
}


class DecisionAction(str, Enum):
    """Actions a human approver can take on the current step."""

    APPROVE = "approve"
    REJECT = "reject"


class AuditAction(str, Enum):
    """Actions recorded in the decision audit trail."""

    APPROVE = "approve"
    REJECT = "reject"
    AUTO_APPROVE = "auto_approve"
    SKIP = "skip"
    BYPASS = "bypass"
    CANCEL = "cancel"


# =========================================================================
# Invoice read model
# =========================================================================


@dataclass(frozen=True)
class Invoice:
    """Invoice attributes consumed by the engine.

    ``fields`` carries any extra tenant-specific attributes (customer,
    category, department...) addressable by condition expressions.
    """

    invoice_id: UUID
    tenant_id: UUID
    total_amount: Decimal
    currency: str = "USD"
    status: str = "draft"
    fields: dict[str, Any] = field(default_factory=dict)

    def as_record(self) -> dict[str, Any]:
        """Flatten into the dict that condition field paths resolve against."""
        record: dict[str, Any] = dict(self.fields)
        record.update({
            "id": str(self.invoice_id),
            "invoice_id": str(self.invoice_id),
            "tenant_id": str(self.tenant_id),
            "total_amount": self.total_amount,
            "currency": self.currency,
            "status": self.status,
        })
        return record


# =========================================================================
# Definitions
# =========================================================================


@dataclass(frozen=True)
class ApprovalStep:
    """One position in a workflow definition.

    Exactly one of ``approver_role`` / ``approver_user_id`` is expected;
    a user-specific step only accepts that actor.
    """

    step_order: int
    approver_role: str | None = None
    approver_user_id: str | None = None
    required: bool = True
    auto_approve_conditions: tuple[ConditionExpr, ...] = ()

    @property
    def approver_label(self) -> str:
        if self.approver_user_id is not None:
            return f"user:{self.approver_user_id}"
        return f"role:{self.approver_role}"


@dataclass(frozen=True)
class WorkflowDefinition:
    """A tenant-scoped, named, versioned approval workflow template."""

    definition_id: UUID
    tenant_id: UUID
    name: str
    steps: tuple[ApprovalStep, ...]
    version: int = 1
    description: str = ""
    auto_approve_threshold: Decimal | None = None
    require_approval_above: Decimal | None = None
    selection_conditions: tuple[ConditionExpr, ...] = ()
    is_active: bool = True
    is_default: bool = False

    def step(self, step_order: int) -> ApprovalStep | None:
        for s in self.steps:
            if s.step_order == step_order:
                return s
        return None


# =========================================================================
# Executions
# =========================================================================


@dataclass(frozen=True)
class StepExecution:
    """Outcome of one step within an execution."""

    step_order: int
    status: StepStatus = StepStatus.PENDING
    actor_id: str | None = None
    decided_at: datetime | None = None
    comments: str | None = None
    auto_approved: bool = False

    def to_dict(self) -> dict[str, Any]:
        return {
            "order": self.step_order,
            "status": self.status.value,
            "actor": self.actor_id,
            "comments": self.comments,
            "decidedAt": self.decided_at.isoformat() if self.decided_at else None,
            "autoApproved": self.auto_approved,
        }


@dataclass(frozen=True)
class WorkflowExecution:
    """Immutable snapshot of one workflow run bound to one invoice."""

    execution_id: UUID
    tenant_id: UUID
    invoice_id: UUID
    definition: WorkflowDefinition
    definition_hash: str
    status: ExecutionStatus
    current_step: int
    started_at: datetime
    steps: tuple[StepExecution, ...] = ()
    completed_at: datetime | None = None
    cancel_reason: str | None = None
    created_by: str = SYSTEM_ACTOR
    invoice_snapshot: dict[str, Any] = field(default_factory=dict)
    revision: int = 0

    @property
    def is_terminal(self) -> bool:
        return self.status in TERMINAL_EXECUTION_STATUSES

    @property
    def definition_id(self) -> UUID:
        return self.definition.definition_id

    def step_execution(self, step_order: int) -> StepExecution | None:
        for s in self.steps:
            if s.step_order == step_order:
                return s
        return None

    def to_dict(self) -> dict[str, Any]:
        """Serializable snapshot consumed by the approval UI / API layer."""
        return {
            "id": str(self.execution_id),
            "invoiceId": str(self.invoice_id),
            "workflowId": str(self.definition.definition_id),
            "workflowVersion": self.definition.version,
            "status": self.status.value,
            "currentStep": self.current_step,
            "startedAt": self.started_at.isoformat(),
            "completedAt": self.completed_at.isoformat() if self.completed_at else None,
            "steps": [s.to_dict() for s in self.steps],
        }


# =========================================================================
# Audit
# =========================================================================


@dataclass(frozen=True)
class ApprovalDecisionRecord:
    """Append-only audit entry. Never mutated or deleted.

    ``step_order`` is 0 for a threshold bypass and None for cancellation.
    """

    decision_id: UUID
    execution_id: UUID
    step_order: int | None
    actor_id: str
    action: AuditAction
    resulting_status: ExecutionStatus
    decided_at: datetime
    comments: str | None = None
    auto_approved: bool = False
