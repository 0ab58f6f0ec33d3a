"""
Module: approval_engines
Responsibility:
    Pure decision engines for the invoice approval workflow: condition
    evaluation, workflow selection, the threshold auto-approval policy,
    approver authorization and the execution state machine.

Architecture position:
    Engines -- pure calculation layer, zero I/O.
    May only import approval_kernel/domain types, exceptions and logging.
    MUST NOT import approval_kernel.services, models or db.

Invariants enforced:
    - Purity: engines never read the clock.  Timestamps are passed in by
      the calling service.
    - Decimal-only amount comparison; floats never reach a threshold check.
    - Determinism: identical inputs always produce identical outputs.

Usage:
    from approval_engines.conditions import evaluate, evaluate_all
    from approval_engines.selector import select_workflow
    from approval_engines.auto_approval import decide
    from approval_engines.execution import apply_decision
"""

from approval_engines.approver import has_eligible_approver, is_authorized
from approval_engines.auto_approval import (
    AutoApprovalDecision,
    AutoApprovalOutcome,
    check_thresholds,
    decide,
)
from approval_engines.conditions import evaluate, evaluate_all, resolve_field
from approval_engines.execution import (
    TransitionOutcome,
    apply_cancel,
    apply_decision,
    start_execution,
    validate_decision,
)
from approval_engines.selector import select_workflow

__all__ = [
    "AutoApprovalDecision",
    "AutoApprovalOutcome",
    "TransitionOutcome",
    "apply_cancel",
    "apply_decision",
    "check_thresholds",
    "decide",
    "evaluate",
    "evaluate_all",
    "has_eligible_approver",
    "is_authorized",
    "resolve_field",
    "select_workflow",
    "start_execution",
    "validate_decision",
]
