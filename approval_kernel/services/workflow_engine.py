"""
approval_kernel.services.workflow_engine -- Invoice approval workflow engine.

Responsibility:
    Runs invoice approval workflows end to end: starting an execution for
    an invoice, recording approver decisions, cancelling, listing pending
    and overdue work, and keeping the invoice's approval status in sync.
    All decision logic is delegated to the pure ``approval_engines``
    package; this class supplies time, ids, storage and side effects.

Architecture position:
    Kernel > Services.  May import from domain/, engines, config validator.
    Storage goes through the injected WorkflowRepository only.

Invariants enforced:
    - Checks run in a fixed order: existence, conflict, validation,
      authorization.  Nothing is written when a check fails.
    - Every transition is persisted by one compare-and-swap write on the
      execution's revision together with its audit records.
    - Side effects (invoice status push, notifications) run only after the
      write committed.  Notifier failures are logged and swallowed; they
      never undo a committed transition.
    - A running execution only ever sees the definition snapshot it was
      started with.
    - Every operation is scoped to the engine's tenant.  Executions and
      invoices of other tenants are reported as not found.

Failure modes:
    - NotFoundError subclasses for unknown executions, invoices, workflows.
    - ConflictError subclasses for terminal executions, stale steps,
      duplicate active executions and lost compare-and-swap races.
    - ValidationError / AuthorizationError for bad decisions.
    - ConfigurationError when no workflow applies or a definition is invalid.
    - RepositoryUnavailableError when storage is unreachable.
"""

from __future__ import annotations

from collections.abc import Callable
from datetime import timedelta
from uuid import UUID, uuid4

from approval_config.validator import ensure_valid_definition
from approval_engines.approver import is_authorized
from approval_engines.auto_approval import decide
from approval_engines.execution import (
    TransitionOutcome,
    apply_cancel,
    apply_decision,
    start_execution,
)
from approval_engines.selector import select_workflow
from approval_kernel.domain.clock import Clock, SystemClock
from approval_kernel.domain.codec import compute_definition_hash
from approval_kernel.domain.protocols import (
    InvoiceStore,
    Notifier,
    NullNotifier,
    RoleResolver,
    WorkflowRepository,
)
from approval_kernel.domain.workflow import (
    SYSTEM_ACTOR,
    ApprovalDecisionRecord,
    DecisionAction,
    ExecutionStatus,
    Invoice,
    WorkflowDefinition,
    WorkflowExecution,
)
from approval_kernel.exceptions import (
    ConfigurationError,
    ConflictError,
    DuplicateActiveExecutionError,
    ExecutionNotFoundError,
    InvalidDefinitionError,
    InvoiceExecutionNotFoundError,
    InvoiceNotFoundError,
    WorkflowNotFoundError,
)
from approval_kernel.logging_config import LogContext, get_logger

logger = get_logger("services.workflow_engine")


class WorkflowExecutionEngine:
    """Drives approval workflow executions for one tenant.

    The engine is bound to ``tenant_id`` and the RoleResolver answers for
    that tenant only; construct one engine per tenant (repository and
    notifier may be shared). Executions and invoices of other tenants are
    reported as not found.
    """

    def __init__(
        self,
        repository: WorkflowRepository,
        role_resolver: RoleResolver,
        *,
        tenant_id: UUID,
        invoice_store: InvoiceStore | None = None,
        notifier: Notifier | None = None,
        clock: Clock | None = None,
        id_factory: Callable[[], UUID] = uuid4,
    ) -> None:
        self._repository = repository
        self._tenant_id = tenant_id
        self._role_resolver = role_resolver
        self._invoice_store = invoice_store
        self._notifier = notifier or NullNotifier()
        self._clock = clock or SystemClock()
        self._id_factory = id_factory

    @property
    def tenant_id(self) -> UUID:
        return self._tenant_id

    # =====================================================================
    # Starting executions
    # =====================================================================

    def create_execution(
        self,
        invoice: Invoice,
        definition: WorkflowDefinition,
        actor_id: str = SYSTEM_ACTOR,
        skip_auto_approval: bool = False,
    ) -> WorkflowExecution:
        """Start an approval workflow for ``invoice`` under ``definition``.

        Raises:
            InvoiceNotFoundError: invoice belongs to another tenant.
            DuplicateActiveExecutionError: invoice already has a pending run.
            ConfigurationError: definition invalid, inactive, or owned by
                another tenant.
        """
        with LogContext.bind(
            tenant_id=invoice.tenant_id,
            invoice_id=invoice.invoice_id,
            definition_id=definition.definition_id,
            actor_id=actor_id,
        ):
            if invoice.tenant_id != self._tenant_id:
                raise InvoiceNotFoundError(str(invoice.invoice_id))
            if definition.tenant_id != invoice.tenant_id:
                raise InvalidDefinitionError(
                    definition.name,
                    [f"definition belongs to tenant {definition.tenant_id}"],
                )
            if not definition.is_active:
                raise InvalidDefinitionError(definition.name, ["definition is inactive"])
            ensure_valid_definition(definition)

            if self._repository.find_executions(
                invoice_id=invoice.invoice_id, status=ExecutionStatus.PENDING,
            ):
                raise DuplicateActiveExecutionError(str(invoice.invoice_id))

            decision = decide(invoice, definition, skip_auto_approval)
            outcome = start_execution(
                execution_id=self._id_factory(),
                invoice=invoice,
                definition=definition,
                definition_hash=compute_definition_hash(definition),
                decision=decision,
                role_resolver=self._role_resolver,
                now=self._clock.now(),
                created_by=actor_id,
                id_factory=self._id_factory,
            )
            stored = self._repository.create_execution(outcome.execution, outcome.audit)

            logger.info(
                "execution_created",
                extra={
                    "execution_id": str(stored.execution_id),
                    "definition_id": str(definition.definition_id),
                    "definition_version": definition.version,
                    "outcome": decision.outcome.value,
                    "reason": decision.reason,
                    "status": stored.status.value,
                    "current_step": stored.current_step,
                },
            )
            self._after_commit(stored, outcome)
            return stored

    def submit_invoice(
        self,
        invoice_id: UUID,
        tenant_id: UUID | None = None,
        definition_id: UUID | None = None,
        actor_id: str = SYSTEM_ACTOR,
        skip_auto_approval: bool = False,
    ) -> WorkflowExecution:
        """Load an invoice, pick its workflow and start an execution.

        With ``definition_id`` the named workflow is used instead of the
        selector. ``tenant_id`` defaults to the engine's tenant; any other
        tenant finds nothing.
        """
        invoice = self._require_invoice_store().get(invoice_id)
        if (
            invoice is None
            or not self._in_scope(tenant_id)
            or invoice.tenant_id != self._tenant_id
        ):
            raise InvoiceNotFoundError(str(invoice_id))

        if definition_id is not None:
            definition = self._repository.get_definition(definition_id)
            if definition is None or definition.tenant_id != invoice.tenant_id:
                raise WorkflowNotFoundError(str(definition_id))
        else:
            definition = select_workflow(
                invoice, self._repository.load_definitions(invoice.tenant_id),
            )

        logger.info(
            "workflow_selected",
            extra={
                "invoice_id": str(invoice.invoice_id),
                "definition_id": str(definition.definition_id),
                "definition_name": definition.name,
                "explicit": definition_id is not None,
            },
        )
        return self.create_execution(
            invoice, definition, actor_id=actor_id, skip_auto_approval=skip_auto_approval,
        )

    # =====================================================================
    # Decisions
    # =====================================================================

    def record_decision(
        self,
        execution_id: UUID,
        step_order: int,
        actor_id: str,
        action: DecisionAction | str,
        comments: str | None = None,
    ) -> WorkflowExecution:
        """Record an approve/reject decision on the current step.

        Raises:
            ExecutionNotFoundError: unknown execution.
            ConflictError: terminal execution, stale step, or lost race.
            ValidationError: reject without comments, unknown action.
            AuthorizationError: actor may not decide this step.
        """
        with LogContext.bind(execution_id=execution_id, actor_id=actor_id):
            execution = self.get_execution(execution_id)
            outcome = apply_decision(
                execution,
                step_order=step_order,
                actor_id=actor_id,
                action=action,
                comments=comments,
                role_resolver=self._role_resolver,
                now=self._clock.now(),
                id_factory=self._id_factory,
            )
            stored = self._persist(execution, outcome)

            logger.info(
                "decision_recorded",
                extra={
                    "step_order": step_order,
                    "action": str(getattr(action, "value", action)),
                    "status": stored.status.value,
                    "current_step": stored.current_step,
                    "revision": stored.revision,
                    "auto_steps": len(outcome.audit) - 1,
                },
            )
            self._after_commit(stored, outcome)
            return stored

    def cancel(
        self,
        execution_id: UUID,
        reason: str,
        actor_id: str = SYSTEM_ACTOR,
    ) -> WorkflowExecution:
        """Cancel a non-terminal execution. ``reason`` must be non-empty."""
        with LogContext.bind(execution_id=execution_id, actor_id=actor_id):
            execution = self.get_execution(execution_id)
            outcome = apply_cancel(
                execution,
                reason=reason,
                actor_id=actor_id,
                now=self._clock.now(),
                id_factory=self._id_factory,
            )
            stored = self._persist(execution, outcome)

            logger.info(
                "execution_cancelled",
                extra={"reason": reason, "revision": stored.revision},
            )
            self._after_commit(stored, outcome)
            return stored

    # =====================================================================
    # Queries
    # =====================================================================

    def get_execution(self, execution_id: UUID) -> WorkflowExecution:
        execution = self._repository.get_execution(execution_id)
        if execution is None or execution.tenant_id != self._tenant_id:
            raise ExecutionNotFoundError(str(execution_id))
        return execution

    def get_invoice_execution(self, invoice_id: UUID) -> WorkflowExecution:
        """Most recent execution for an invoice."""
        executions = self._repository.find_executions(
            tenant_id=self._tenant_id, invoice_id=invoice_id,
        )
        if not executions:
            raise InvoiceExecutionNotFoundError(str(invoice_id))
        return executions[-1]

    def get_audit_trail(self, execution_id: UUID) -> list[ApprovalDecisionRecord]:
        self.get_execution(execution_id)
        return self._repository.list_audit(execution_id)

    def list_pending(
        self,
        actor_id: str,
        tenant_id: UUID | None = None,
    ) -> list[WorkflowExecution]:
        """Pending executions whose current step ``actor_id`` may decide."""
        if not self._in_scope(tenant_id):
            return []
        return [
            execution
            for execution in self._repository.find_executions(
                tenant_id=self._tenant_id, status=ExecutionStatus.PENDING,
            )
            if self._can_decide(actor_id, execution)
        ]

    def list_overdue(
        self,
        days_pending: int,
        tenant_id: UUID | None = None,
    ) -> list[WorkflowExecution]:
        """Pending executions started more than ``days_pending`` days ago."""
        if days_pending < 0:
            raise ValueError(f"days_pending must be >= 0, got {days_pending}")
        if not self._in_scope(tenant_id):
            return []
        cutoff = self._clock.now() - timedelta(days=days_pending)
        return self._repository.find_executions(
            tenant_id=self._tenant_id,
            status=ExecutionStatus.PENDING,
            started_before=cutoff,
        )

    # =====================================================================
    # Maintenance
    # =====================================================================

    def send_overdue_reminders(
        self,
        days_pending: int,
        tenant_id: UUID | None = None,
    ) -> list[WorkflowExecution]:
        """Notify ``on_overdue`` for every overdue execution; returns them."""
        now = self._clock.now()
        overdue = self.list_overdue(days_pending, tenant_id)
        for execution in overdue:
            elapsed = (now - execution.started_at).days
            self._notify(
                "on_overdue",
                execution.execution_id,
                lambda e=execution, d=elapsed: self._notifier.on_overdue(
                    e.execution_id, e.current_step, d,
                ),
            )
        logger.info(
            "overdue_reminders_sent",
            extra={"days_pending": days_pending, "count": len(overdue)},
        )
        return overdue

    def sync_invoice_status(self, execution_id: UUID) -> WorkflowExecution:
        """Push the execution's status to the invoice store again."""
        execution = self.get_execution(execution_id)
        self._push_invoice_status(execution)
        return execution

    # =====================================================================
    # Internals
    # =====================================================================

    def _persist(
        self, loaded: WorkflowExecution, outcome: TransitionOutcome,
    ) -> WorkflowExecution:
        try:
            return self._repository.save_execution(
                outcome.execution, loaded.revision, outcome.audit,
            )
        except ConflictError as exc:
            logger.warning(
                "optimistic_lock_conflict",
                extra={
                    "expected_revision": loaded.revision,
                    "error_code": exc.code,
                },
            )
            raise

    def _after_commit(
        self, execution: WorkflowExecution, outcome: TransitionOutcome,
    ) -> None:
        if outcome.pending_step is not None:
            self._notify(
                "on_step_pending",
                execution.execution_id,
                lambda: self._notifier.on_step_pending(
                    execution.execution_id, outcome.pending_step,
                ),
            )
        if outcome.resolved_status is not None:
            self._notify(
                "on_resolved",
                execution.execution_id,
                lambda: self._notifier.on_resolved(
                    execution.execution_id, outcome.resolved_status,
                ),
            )
        self._push_invoice_status(execution)

    def _notify(self, hook: str, execution_id: UUID, call: Callable[[], None]) -> None:
        try:
            call()
        except Exception:
            logger.exception(
                "notifier_failed",
                extra={"hook": hook, "execution_id": str(execution_id)},
            )

    def _push_invoice_status(self, execution: WorkflowExecution) -> None:
        if self._invoice_store is None:
            return
        self._invoice_store.set_approval_status(execution.invoice_id, execution.status.value)
        logger.debug(
            "invoice_status_pushed",
            extra={
                "invoice_id": str(execution.invoice_id),
                "status": execution.status.value,
            },
        )

    def _require_invoice_store(self) -> InvoiceStore:
        if self._invoice_store is None:
            raise ConfigurationError("No invoice store configured for this engine")
        return self._invoice_store

    def _can_decide(self, actor_id: str, execution: WorkflowExecution) -> bool:
        step = execution.definition.step(execution.current_step)
        if step is None:
            return False
        return is_authorized(actor_id, step, self._role_resolver)

    def _in_scope(self, tenant_id: UUID | None) -> bool:
        return tenant_id is None or tenant_id == self._tenant_id
