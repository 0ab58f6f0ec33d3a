"""
Module: approval_kernel.models.workflow
Responsibility: ORM persistence for workflow definitions, executions, step
    executions and the decision audit trail.

Architecture position: Kernel > Models.  May import from db/base.py and
    exceptions; domain types are imported lazily inside to_dto/from_dto.

Invariants enforced:
    - Status values: DB check constraints limit execution and step status.
    - Single active execution: partial UNIQUE index on invoice_id WHERE
      status = 'pending' (PostgreSQL and SQLite both honor it).
    - One outcome per step: UNIQUE(execution_id, step_order) on step rows
      and on audit rows.
    - Audit rows are append-only: ORM listeners reject UPDATE and DELETE.
    - Definition snapshot: executions carry the full definition JSON and
      its hash, written once at creation.

Failure modes:
    - IntegrityError on a second pending execution for the same invoice.
    - IntegrityError on a duplicate audit row for the same step.
    - ImmutabilityViolationError on audit UPDATE/DELETE.
"""

from __future__ import annotations

from datetime import UTC, datetime
from decimal import Decimal
from typing import TYPE_CHECKING, Any
from uuid import UUID

from sqlalchemy import (
    JSON,
    Boolean,
    CheckConstraint,
    DateTime,
    ForeignKey,
    Index,
    Integer,
    Numeric,
    String,
    Text,
    UniqueConstraint,
    event,
    text,
)
from sqlalchemy.orm import Mapped, mapped_column, relationship

from approval_kernel.db.base import Base, TrackedBase, UUIDString
from approval_kernel.exceptions import ImmutabilityViolationError

if TYPE_CHECKING:
    from approval_kernel.domain.workflow import (
        ApprovalDecisionRecord,
        StepExecution,
        WorkflowDefinition,
        WorkflowExecution,
    )


def _aware(value: datetime | None) -> datetime | None:
    # SQLite drops tzinfo on the way back; stored values are always UTC.
    if value is not None and value.tzinfo is None:
        return value.replace(tzinfo=UTC)
    return value


class WorkflowDefinitionModel(TrackedBase):
    """Persistent, tenant-scoped workflow definition.

    Steps and conditions are stored as JSON documents in the codec's
    format; ``version`` increases on every edit.
    """

    __tablename__ = "approval_workflow_definitions"

    __table_args__ = (
        Index("ix_approval_workflow_definitions_tenant", "tenant_id", "is_active"),
    )

    definition_id: Mapped[UUID] = mapped_column(
        UUIDString(), nullable=False, unique=True,
    )
    tenant_id: Mapped[UUID] = mapped_column(UUIDString(), nullable=False)
    name: Mapped[str] = mapped_column(String(200), nullable=False)
    description: Mapped[str] = mapped_column(Text, default="", nullable=False)
    version: Mapped[int] = mapped_column(Integer, nullable=False, default=1)
    auto_approve_threshold: Mapped[Decimal | None] = mapped_column(
        Numeric(38, 9), nullable=True,
    )
    require_approval_above: Mapped[Decimal | None] = mapped_column(
        Numeric(38, 9), nullable=True,
    )
    selection_conditions: Mapped[list[Any]] = mapped_column(JSON, nullable=False, default=list)
    steps: Mapped[list[Any]] = mapped_column(JSON, nullable=False, default=list)
    is_active: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True)
    is_default: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    definition_hash: Mapped[str] = mapped_column(String(64), nullable=False)

    def __repr__(self) -> str:
        return f"<WorkflowDefinition {self.name} v{self.version} tenant={self.tenant_id}>"

    def to_dto(self) -> WorkflowDefinition:
        from approval_kernel.domain.codec import definition_from_dict

        return definition_from_dict({
            "definition_id": self.definition_id,
            "tenant_id": self.tenant_id,
            "name": self.name,
            "description": self.description,
            "version": self.version,
            "auto_approve_threshold": self.auto_approve_threshold,
            "require_approval_above": self.require_approval_above,
            "selection_conditions": self.selection_conditions,
            "steps": self.steps,
            "is_active": self.is_active,
            "is_default": self.is_default,
        })

    def apply_dto(self, dto: WorkflowDefinition) -> None:
        """Copy every mutable attribute of ``dto`` onto this row."""
        from approval_kernel.domain.codec import (
            compute_definition_hash,
            condition_to_dict,
            step_to_dict,
        )

        self.tenant_id = dto.tenant_id
        self.name = dto.name
        self.description = dto.description
        self.version = dto.version
        self.auto_approve_threshold = dto.auto_approve_threshold
        self.require_approval_above = dto.require_approval_above
        self.selection_conditions = [condition_to_dict(c) for c in dto.selection_conditions]
        self.steps = [step_to_dict(s) for s in dto.steps]
        self.is_active = dto.is_active
        self.is_default = dto.is_default
        self.definition_hash = compute_definition_hash(dto)

    @classmethod
    def from_dto(cls, dto: WorkflowDefinition) -> WorkflowDefinitionModel:
        model = cls(definition_id=dto.definition_id)
        model.apply_dto(dto)
        return model


class WorkflowExecutionModel(Base):
    """Persistent workflow execution.

    Contract:
        ``revision`` is the compare-and-swap token; every transition is a
        conditional UPDATE on it.  Terminal statuses are never changed.
    """

    __tablename__ = "approval_workflow_executions"

    __table_args__ = (
        CheckConstraint(
            "status IN ('pending', 'approved', 'rejected', 'cancelled')",
            name="ck_approval_workflow_executions_valid_status",
        ),
        Index(
            "ix_approval_workflow_executions_active_invoice",
            "invoice_id",
            unique=True,
            postgresql_where=text("status = 'pending'"),
            sqlite_where=text("status = 'pending'"),
        ),
        Index("ix_approval_workflow_executions_tenant_status", "tenant_id", "status"),
        Index("ix_approval_workflow_executions_status_started", "status", "started_at"),
    )

    execution_id: Mapped[UUID] = mapped_column(
        UUIDString(), nullable=False, unique=True,
    )
    tenant_id: Mapped[UUID] = mapped_column(UUIDString(), nullable=False)
    invoice_id: Mapped[UUID] = mapped_column(UUIDString(), nullable=False)
    definition_id: Mapped[UUID] = mapped_column(UUIDString(), nullable=False)
    definition_version: Mapped[int] = mapped_column(Integer, nullable=False)
    definition_hash: Mapped[str] = mapped_column(String(64), nullable=False)
    definition_snapshot: Mapped[dict[str, Any]] = mapped_column(JSON, nullable=False)
    invoice_snapshot: Mapped[dict[str, Any]] = mapped_column(JSON, nullable=False, default=dict)
    status: Mapped[str] = mapped_column(String(20), nullable=False, default="pending")
    current_step: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    started_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)
    completed_at: Mapped[datetime | None] = mapped_column(
        DateTime(timezone=True), nullable=True,
    )
    cancel_reason: Mapped[str | None] = mapped_column(Text, nullable=True)
    created_by: Mapped[str] = mapped_column(String(200), nullable=False)
    revision: Mapped[int] = mapped_column(Integer, nullable=False, default=0)

    steps: Mapped[list["StepExecutionModel"]] = relationship(
        "StepExecutionModel",
        back_populates="execution",
        primaryjoin="WorkflowExecutionModel.execution_id == StepExecutionModel.execution_id",
        order_by="StepExecutionModel.step_order",
        lazy="selectin",
    )

    def __repr__(self) -> str:
        return (
            f"<WorkflowExecution {self.execution_id} "
            f"invoice={self.invoice_id} status={self.status} "
            f"step={self.current_step} rev={self.revision}>"
        )

    def to_dto(self) -> WorkflowExecution:
        from approval_kernel.domain.codec import definition_from_dict
        from approval_kernel.domain.workflow import (
            ExecutionStatus,
            WorkflowExecution as WorkflowExecutionDTO,
        )

        return WorkflowExecutionDTO(
            execution_id=self.execution_id,
            tenant_id=self.tenant_id,
            invoice_id=self.invoice_id,
            definition=definition_from_dict(self.definition_snapshot),
            definition_hash=self.definition_hash,
            status=ExecutionStatus(self.status),
            current_step=self.current_step,
            started_at=_aware(self.started_at),
            steps=tuple(s.to_dto() for s in self.steps),
            completed_at=_aware(self.completed_at),
            cancel_reason=self.cancel_reason,
            created_by=self.created_by,
            invoice_snapshot=dict(self.invoice_snapshot or {}),
            revision=self.revision,
        )

    @classmethod
    def from_dto(cls, dto: WorkflowExecution) -> WorkflowExecutionModel:
        from approval_kernel.domain.codec import definition_to_dict, record_to_json

        model = cls(
            execution_id=dto.execution_id,
            tenant_id=dto.tenant_id,
            invoice_id=dto.invoice_id,
            definition_id=dto.definition.definition_id,
            definition_version=dto.definition.version,
            definition_hash=dto.definition_hash,
            definition_snapshot=definition_to_dict(dto.definition),
            invoice_snapshot=record_to_json(dto.invoice_snapshot),
            status=dto.status.value,
            current_step=dto.current_step,
            started_at=dto.started_at,
            completed_at=dto.completed_at,
            cancel_reason=dto.cancel_reason,
            created_by=dto.created_by,
            revision=dto.revision,
        )
        model.steps = [
            StepExecutionModel.from_dto(dto.execution_id, s) for s in dto.steps
        ]
        return model


class StepExecutionModel(Base):
    """Persistent outcome of one step within one execution."""

    __tablename__ = "approval_step_executions"

    __table_args__ = (
        CheckConstraint(
            "status IN ('pending', 'approved', 'rejected', 'skipped')",
            name="ck_approval_step_executions_valid_status",
        ),
        UniqueConstraint(
            "execution_id", "step_order",
            name="uq_approval_step_executions_step",
        ),
    )

    execution_id: Mapped[UUID] = mapped_column(
        UUIDString(),
        ForeignKey("approval_workflow_executions.execution_id"),
        nullable=False,
    )
    step_order: Mapped[int] = mapped_column(Integer, nullable=False)
    status: Mapped[str] = mapped_column(String(20), nullable=False, default="pending")
    actor_id: Mapped[str | None] = mapped_column(String(200), nullable=True)
    decided_at: Mapped[datetime | None] = mapped_column(
        DateTime(timezone=True), nullable=True,
    )
    comments: Mapped[str | None] = mapped_column(Text, nullable=True)
    auto_approved: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)

    execution: Mapped["WorkflowExecutionModel"] = relationship(
        "WorkflowExecutionModel",
        back_populates="steps",
        foreign_keys=[execution_id],
        primaryjoin="StepExecutionModel.execution_id == WorkflowExecutionModel.execution_id",
    )

    def __repr__(self) -> str:
        return f"<StepExecution {self.execution_id}#{self.step_order} {self.status}>"

    def to_dto(self) -> StepExecution:
        from approval_kernel.domain.workflow import StepExecution as StepExecutionDTO, StepStatus

        return StepExecutionDTO(
            step_order=self.step_order,
            status=StepStatus(self.status),
            actor_id=self.actor_id,
            decided_at=_aware(self.decided_at),
            comments=self.comments,
            auto_approved=self.auto_approved,
        )

    @classmethod
    def from_dto(cls, execution_id: UUID, dto: StepExecution) -> StepExecutionModel:
        return cls(
            execution_id=execution_id,
            step_order=dto.step_order,
            status=dto.status.value,
            actor_id=dto.actor_id,
            decided_at=dto.decided_at,
            comments=dto.comments,
            auto_approved=dto.auto_approved,
        )


class ApprovalDecisionModel(Base):
    """Persistent decision audit record. Append-only.

    Guarantees:
        - UNIQUE(execution_id, step_order): one audit row per step.
          Cancellation rows carry a NULL step_order, which the constraint
          ignores.
    """

    __tablename__ = "approval_decision_audit"

    __table_args__ = (
        Index("ix_approval_decision_audit_execution", "execution_id"),
        UniqueConstraint(
            "execution_id", "step_order",
            name="uq_approval_decision_audit_step",
        ),
        CheckConstraint(
            "action IN ('approve', 'reject', 'auto_approve', 'skip', 'bypass', 'cancel')",
            name="ck_approval_decision_audit_valid_action",
        ),
    )

    decision_id: Mapped[UUID] = mapped_column(
        UUIDString(), nullable=False, unique=True,
    )
    execution_id: Mapped[UUID] = mapped_column(
        UUIDString(),
        ForeignKey("approval_workflow_executions.execution_id"),
        nullable=False,
    )
    step_order: Mapped[int | None] = mapped_column(Integer, nullable=True)
    actor_id: Mapped[str] = mapped_column(String(200), nullable=False)
    action: Mapped[str] = mapped_column(String(20), nullable=False)
    comments: Mapped[str | None] = mapped_column(Text, nullable=True)
    resulting_status: Mapped[str] = mapped_column(String(20), nullable=False)
    auto_approved: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    decided_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False,
    )

    def __repr__(self) -> str:
        return (
            f"<ApprovalDecision {self.decision_id} "
            f"execution={self.execution_id} step={self.step_order} "
            f"action={self.action}>"
        )

    def to_dto(self) -> ApprovalDecisionRecord:
        from approval_kernel.domain.workflow import (
            ApprovalDecisionRecord as DecisionDTO,
            AuditAction,
            ExecutionStatus,
        )

        return DecisionDTO(
            decision_id=self.decision_id,
            execution_id=self.execution_id,
            step_order=self.step_order,
            actor_id=self.actor_id,
            action=AuditAction(self.action),
            resulting_status=ExecutionStatus(self.resulting_status),
            decided_at=_aware(self.decided_at),
            comments=self.comments,
            auto_approved=self.auto_approved,
        )

    @classmethod
    def from_dto(cls, dto: ApprovalDecisionRecord) -> ApprovalDecisionModel:
        return cls(
            decision_id=dto.decision_id,
            execution_id=dto.execution_id,
            step_order=dto.step_order,
            actor_id=dto.actor_id,
            action=dto.action.value,
            comments=dto.comments,
            resulting_status=dto.resulting_status.value,
            auto_approved=dto.auto_approved,
            decided_at=dto.decided_at,
        )


# =============================================================================
# ORM-Level Immutability for the Audit Trail (Append-Only)
# =============================================================================


@event.listens_for(ApprovalDecisionModel, "before_update")
def prevent_decision_update(mapper, connection, target):
    raise ImmutabilityViolationError(
        entity_type="ApprovalDecision",
        entity_id=str(target.decision_id),
        reason="Approval decisions are immutable -- cannot modify",
    )


@event.listens_for(ApprovalDecisionModel, "before_delete")
def prevent_decision_delete(mapper, connection, target):
    raise ImmutabilityViolationError(
        entity_type="ApprovalDecision",
        entity_id=str(target.decision_id),
        reason="Approval decisions are immutable -- cannot delete",
    )
