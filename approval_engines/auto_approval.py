"""
approval_engines.auto_approval -- Threshold bypass policy.

Responsibility:
    Decide whether an invoice bypasses human review entirely
    (``BYPASS``) or must run the definition's steps (``REQUIRE_STEPS``).

Architecture position:
    Engines -- pure, zero I/O.

Invariants enforced:
    - ``require_approval_above`` is authoritative: an amount above it always
      requires steps, whatever ``auto_approve_threshold`` says.
    - ``auto_approve_threshold > require_approval_above`` is a configuration
      error, never resolved by guessing tenant intent.
    - Amount at or below ``auto_approve_threshold`` bypasses (inclusive).

Failure modes:
    - InconsistentThresholdsError on overlapping thresholds.
"""

from __future__ import annotations

from dataclasses import dataclass
from decimal import Decimal
from enum import Enum

from approval_kernel.domain.workflow import Invoice, WorkflowDefinition
from approval_kernel.exceptions import InconsistentThresholdsError


class AutoApprovalOutcome(str, Enum):
    BYPASS = "bypass"
    REQUIRE_STEPS = "require_steps"


@dataclass(frozen=True)
class AutoApprovalDecision:
    """Result of the auto-approval policy for one invoice."""

    outcome: AutoApprovalOutcome
    reason: str
    amount: Decimal
    threshold: Decimal | None = None

    @property
    def is_bypass(self) -> bool:
        return self.outcome is AutoApprovalOutcome.BYPASS


def check_thresholds(definition: WorkflowDefinition) -> None:
    """Raise if the definition's thresholds overlap."""
    auto = definition.auto_approve_threshold
    floor = definition.require_approval_above
    if auto is not None and floor is not None and auto > floor:
        raise InconsistentThresholdsError(definition.name, str(auto), str(floor))


def decide(
    invoice: Invoice,
    definition: WorkflowDefinition,
    skip_auto_approval: bool = False,
) -> AutoApprovalDecision:
    """Apply the threshold policy to an invoice.

    Args:
        invoice: The invoice entering approval.
        definition: The selected workflow definition.
        skip_auto_approval: Force the full workflow even below threshold.

    Returns:
        AutoApprovalDecision with outcome and a human-readable reason.

    Raises:
        InconsistentThresholdsError: if thresholds overlap.
    """
    check_thresholds(definition)
    amount = invoice.total_amount
    floor = definition.require_approval_above
    threshold = definition.auto_approve_threshold

    if skip_auto_approval:
        return AutoApprovalDecision(
            outcome=AutoApprovalOutcome.REQUIRE_STEPS,
            reason="Auto-approval skipped by request",
            amount=amount,
            threshold=threshold,
        )

    if floor is not None and amount > floor:
        return AutoApprovalDecision(
            outcome=AutoApprovalOutcome.REQUIRE_STEPS,
            reason=f"Amount {amount} above approval floor {floor}",
            amount=amount,
            threshold=floor,
        )

    if threshold is not None and amount <= threshold:
        return AutoApprovalDecision(
            outcome=AutoApprovalOutcome.BYPASS,
            reason=f"Auto-approved: amount {amount} at or below threshold {threshold}",
            amount=amount,
            threshold=threshold,
        )

    return AutoApprovalDecision(
        outcome=AutoApprovalOutcome.REQUIRE_STEPS,
        reason=f"Approval required by workflow '{definition.name}'",
        amount=amount,
        threshold=threshold,
    )
