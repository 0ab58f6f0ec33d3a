"""
approval_engines.execution -- Pure workflow execution state machine.

Responsibility:
    Compute the next state of a WorkflowExecution for each lifecycle event
    (start, human decision, cancellation) together with the audit records
    that event produces.  The caller persists the result atomically.

Architecture position:
    Engines -- pure, zero I/O.  Time and ids are passed in; the
    RoleResolver is passed in.  Nothing here touches storage.

Invariants enforced:
    - Steps are decided strictly in ascending order; only the step equal to
      ``current_step`` can be decided.
    - A step leaves ``pending`` exactly once.
    - Terminal executions are never transitioned again.
    - After every human decision the auto-advance cascade runs: steps whose
      auto-approve conditions hold are approved as the system actor,
      optional steps with no eligible approver are skipped, and once no
      required step remains the remaining optional steps are skipped and
      the execution is approved.  Every step the system decides gets its
      own audit record.
    - Each event yields at most one audit record per step.

Failure modes:
    - ExecutionAlreadyDecidedError: execution already terminal.
    - StaleStepError: decision targets a step other than the current one.
    - InvalidDecisionActionError / MissingCommentsError: bad input.
    - UnauthorizedApproverError: actor does not satisfy the step.
"""

from __future__ import annotations

from collections.abc import Callable, Mapping
from dataclasses import dataclass, replace
from datetime import datetime
from typing import Any
from uuid import UUID, uuid4

from approval_engines.approver import has_eligible_approver, is_authorized
from approval_engines.auto_approval import AutoApprovalDecision
from approval_engines.conditions import evaluate_all
from approval_kernel.domain.codec import record_to_json
from approval_kernel.domain.protocols import RoleResolver
from approval_kernel.domain.workflow import (
    STEP_TRANSITIONS,
    SYSTEM_ACTOR,
    ApprovalDecisionRecord,
    ApprovalStep,
    AuditAction,
    DecisionAction,
    ExecutionStatus,
    Invoice,
    StepExecution,
    StepStatus,
    WorkflowDefinition,
    WorkflowExecution,
)
from approval_kernel.exceptions import (
    ExecutionAlreadyDecidedError,
    ImmutabilityViolationError,
    InvalidDecisionActionError,
    MissingCommentsError,
    StaleStepError,
    UnauthorizedApproverError,
)

IdFactory = Callable[[], UUID]


@dataclass(frozen=True)
class TransitionOutcome:
    """Result of one lifecycle event.

    Attributes:
        execution: The execution after the event (revision unchanged).
        audit: Audit records produced by the event, in step order.
        pending_step: Step now awaiting a human, or None.
        resolved_status: Terminal status reached by this event, or None.
    """

    execution: WorkflowExecution
    audit: tuple[ApprovalDecisionRecord, ...]
    pending_step: int | None = None
    resolved_status: ExecutionStatus | None = None


@dataclass(frozen=True)
class _AuditEvent:
    step_order: int | None
    actor_id: str
    action: AuditAction
    comments: str | None = None
    auto_approved: bool = False


# =========================================================================
# Start
# =========================================================================


def start_execution(
    *,
    execution_id: UUID,
    invoice: Invoice,
    definition: WorkflowDefinition,
    definition_hash: str,
    decision: AutoApprovalDecision,
    role_resolver: RoleResolver,
    now: datetime,
    created_by: str = SYSTEM_ACTOR,
    id_factory: IdFactory = uuid4,
) -> TransitionOutcome:
    """Build a new execution for ``invoice`` under ``definition``.

    A bypass decision yields an execution that is approved on creation
    with no step executions.  Otherwise every step starts pending and the
    auto-advance cascade runs from the first step.
    """
    snapshot = record_to_json(invoice.as_record())

    if decision.is_bypass:
        execution = WorkflowExecution(
            execution_id=execution_id,
            tenant_id=invoice.tenant_id,
            invoice_id=invoice.invoice_id,
            definition=definition,
            definition_hash=definition_hash,
            status=ExecutionStatus.APPROVED,
            current_step=0,
            started_at=now,
            steps=(),
            completed_at=now,
            created_by=created_by,
            invoice_snapshot=snapshot,
        )
        event = _AuditEvent(
            step_order=0,
            actor_id=SYSTEM_ACTOR,
            action=AuditAction.BYPASS,
            comments=decision.reason,
            auto_approved=True,
        )
        return TransitionOutcome(
            execution=execution,
            audit=_materialize(execution, [event], now, id_factory),
            resolved_status=ExecutionStatus.APPROVED,
        )

    steps = {s.step_order: StepExecution(step_order=s.step_order) for s in definition.steps}
    status, current, events = _cascade(
        definition, steps, after_order=0, current=0,
        record=snapshot, role_resolver=role_resolver, now=now,
    )
    execution = WorkflowExecution(
        execution_id=execution_id,
        tenant_id=invoice.tenant_id,
        invoice_id=invoice.invoice_id,
        definition=definition,
        definition_hash=definition_hash,
        status=status,
        current_step=current,
        started_at=now,
        steps=_ordered(steps),
        completed_at=now if status is not ExecutionStatus.PENDING else None,
        created_by=created_by,
        invoice_snapshot=snapshot,
    )
    return _outcome(execution, events, now, id_factory)


# =========================================================================
# Decisions
# =========================================================================


def parse_action(action: DecisionAction | str) -> DecisionAction:
    if isinstance(action, DecisionAction):
        return action
    try:
        return DecisionAction(str(action).strip().lower())
    except ValueError:
        raise InvalidDecisionActionError(str(action)) from None


def validate_decision(
    execution: WorkflowExecution,
    *,
    step_order: int,
    actor_id: str,
    action: DecisionAction | str,
    comments: str | None,
    role_resolver: RoleResolver,
) -> tuple[DecisionAction, ApprovalStep]:
    """Check a decision in order: conflict, validation, authorization.

    Returns:
        The parsed action and the step definition being decided.
    """
    if execution.is_terminal:
        raise ExecutionAlreadyDecidedError(str(execution.execution_id), execution.status.value)
    if step_order != execution.current_step:
        raise StaleStepError(str(execution.execution_id), step_order, execution.current_step)

    step = execution.definition.step(step_order)
    state = execution.step_execution(step_order)
    if step is None or state is None or state.status is not StepStatus.PENDING:
        raise StaleStepError(str(execution.execution_id), step_order, execution.current_step)

    parsed = parse_action(action)
    if parsed is DecisionAction.REJECT and not (comments and comments.strip()):
        raise MissingCommentsError(str(execution.execution_id), parsed.value)

    if not is_authorized(actor_id, step, role_resolver):
        raise UnauthorizedApproverError(
            actor_id, str(execution.execution_id), step_order, step.approver_label,
        )
    return parsed, step


def apply_decision(
    execution: WorkflowExecution,
    *,
    step_order: int,
    actor_id: str,
    action: DecisionAction | str,
    comments: str | None,
    role_resolver: RoleResolver,
    now: datetime,
    id_factory: IdFactory = uuid4,
) -> TransitionOutcome:
    """Record a human decision on the current step and advance."""
    parsed, step = validate_decision(
        execution,
        step_order=step_order,
        actor_id=actor_id,
        action=action,
        comments=comments,
        role_resolver=role_resolver,
    )
    steps = {s.step_order: s for s in execution.steps}
    definition = execution.definition

    if parsed is DecisionAction.REJECT:
        _mark(steps, step_order, StepStatus.REJECTED, actor_id, now, comments)
        events = [_AuditEvent(step_order, actor_id, AuditAction.REJECT, comments)]
        if step.required:
            # Later steps are never evaluated
            for order, state in steps.items():
                if order > step_order and state.status is StepStatus.PENDING:
                    _mark(steps, order, StepStatus.SKIPPED, None, None, None)
            updated = replace(
                execution,
                status=ExecutionStatus.REJECTED,
                steps=_ordered(steps),
                completed_at=now,
            )
            return _outcome(updated, events, now, id_factory)
    else:
        _mark(steps, step_order, StepStatus.APPROVED, actor_id, now, comments)
        events = [_AuditEvent(step_order, actor_id, AuditAction.APPROVE, comments)]

    status, current, cascade_events = _cascade(
        definition, steps, after_order=step_order, current=step_order,
        record=execution.invoice_snapshot, role_resolver=role_resolver, now=now,
    )
    updated = replace(
        execution,
        status=status,
        current_step=current,
        steps=_ordered(steps),
        completed_at=now if status is not ExecutionStatus.PENDING else None,
    )
    return _outcome(updated, events + cascade_events, now, id_factory)


# =========================================================================
# Cancellation
# =========================================================================


def apply_cancel(
    execution: WorkflowExecution,
    *,
    reason: str,
    actor_id: str,
    now: datetime,
    id_factory: IdFactory = uuid4,
) -> TransitionOutcome:
    """Cancel a pending execution; remaining pending steps become skipped."""
    if execution.is_terminal:
        raise ExecutionAlreadyDecidedError(str(execution.execution_id), execution.status.value)
    if not (reason and reason.strip()):
        raise MissingCommentsError(str(execution.execution_id), "cancel")

    steps = {s.step_order: s for s in execution.steps}
    for order, state in steps.items():
        if state.status is StepStatus.PENDING:
            _mark(steps, order, StepStatus.SKIPPED, None, None, None)

    updated = replace(
        execution,
        status=ExecutionStatus.CANCELLED,
        steps=_ordered(steps),
        completed_at=now,
        cancel_reason=reason,
    )
    events = [_AuditEvent(None, actor_id, AuditAction.CANCEL, reason)]
    return _outcome(updated, events, now, id_factory)


# =========================================================================
# Internals
# =========================================================================


def _cascade(
    definition: WorkflowDefinition,
    steps: dict[int, StepExecution],
    *,
    after_order: int,
    current: int,
    record: Mapping[str, Any],
    role_resolver: RoleResolver,
    now: datetime,
) -> tuple[ExecutionStatus, int, list[_AuditEvent]]:
    """Advance past every step that needs no human, in ascending order.

    Returns:
        (status, current_step, audit events)
    """
    events: list[_AuditEvent] = []
    remaining = [s for s in definition.steps if s.step_order > after_order]

    for index, step in enumerate(remaining):
        if not any(r.required for r in remaining[index:]):
            for rest in remaining[index:]:
                _mark(steps, rest.step_order, StepStatus.SKIPPED, SYSTEM_ACTOR, now, None, auto=True)
                events.append(_AuditEvent(
                    rest.step_order, SYSTEM_ACTOR, AuditAction.SKIP,
                    "No required step remains", auto_approved=True,
                ))
            return ExecutionStatus.APPROVED, current, events

        current = step.step_order

        if step.auto_approve_conditions and evaluate_all(step.auto_approve_conditions, record):
            _mark(steps, step.step_order, StepStatus.APPROVED, SYSTEM_ACTOR, now, None, auto=True)
            events.append(_AuditEvent(
                step.step_order, SYSTEM_ACTOR, AuditAction.AUTO_APPROVE,
                "Auto-approved: step conditions met", auto_approved=True,
            ))
            continue

        if not step.required and not has_eligible_approver(step, role_resolver):
            _mark(steps, step.step_order, StepStatus.SKIPPED, SYSTEM_ACTOR, now, None, auto=True)
            events.append(_AuditEvent(
                step.step_order, SYSTEM_ACTOR, AuditAction.SKIP,
                f"No eligible approver for {step.approver_label}", auto_approved=True,
            ))
            continue

        return ExecutionStatus.PENDING, current, events

    return ExecutionStatus.APPROVED, current, events


def _mark(
    steps: dict[int, StepExecution],
    step_order: int,
    status: StepStatus,
    actor_id: str | None,
    decided_at: datetime | None,
    comments: str | None,
    auto: bool = False,
) -> None:
    previous = steps[step_order]
    if status not in STEP_TRANSITIONS[previous.status]:
        raise ImmutabilityViolationError(
            "StepExecution", str(step_order), f"{previous.status.value} -> {status.value}",
        )
    steps[step_order] = StepExecution(
        step_order=step_order,
        status=status,
        actor_id=actor_id,
        decided_at=decided_at,
        comments=comments,
        auto_approved=auto,
    )


def _ordered(steps: dict[int, StepExecution]) -> tuple[StepExecution, ...]:
    return tuple(steps[k] for k in sorted(steps))


def _outcome(
    execution: WorkflowExecution,
    events: list[_AuditEvent],
    now: datetime,
    id_factory: IdFactory,
) -> TransitionOutcome:
    pending = execution.current_step if execution.status is ExecutionStatus.PENDING else None
    resolved = execution.status if execution.is_terminal else None
    return TransitionOutcome(
        execution=execution,
        audit=_materialize(execution, events, now, id_factory),
        pending_step=pending,
        resolved_status=resolved,
    )


def _materialize(
    execution: WorkflowExecution,
    events: list[_AuditEvent],
    now: datetime,
    id_factory: IdFactory,
) -> tuple[ApprovalDecisionRecord, ...]:
    return tuple(
        ApprovalDecisionRecord(
            decision_id=id_factory(),
            execution_id=execution.execution_id,
            step_order=e.step_order,
            actor_id=e.actor_id,
            action=e.action,
            resulting_status=execution.status,
            decided_at=now,
            comments=e.comments,
            auto_approved=e.auto_approved,
        )
        for e in events
    )
