"""
approval_engines.selector -- Workflow definition selection.

Responsibility:
    Pick the one WorkflowDefinition that governs an invoice from the
    tenant's configured set.

Architecture position:
    Engines -- pure, zero I/O.

Invariants enforced:
    - Only active definitions of the invoice's tenant are considered.
    - Deterministic: among several matches the default wins; otherwise the
      most specific (most selection conditions) wins, ties broken by name
      and then definition id.  Input order never matters.

Failure modes:
    - NoApplicableWorkflowError (a ConfigurationError) when nothing
      matches and the tenant has no active default.
    - InvalidConditionError propagates from a malformed condition.
"""

from __future__ import annotations

from collections.abc import Iterable

from approval_engines.conditions import evaluate_all
from approval_kernel.domain.workflow import Invoice, WorkflowDefinition
from approval_kernel.exceptions import NoApplicableWorkflowError


def select_workflow(
    invoice: Invoice,
    definitions: Iterable[WorkflowDefinition],
) -> WorkflowDefinition:
    """Select the applicable workflow definition for an invoice.

    Args:
        invoice: The invoice entering approval.
        definitions: Candidate definitions (typically the tenant's full set).

    Returns:
        The governing WorkflowDefinition.

    Raises:
        NoApplicableWorkflowError: no match and no default.
    """
    candidates = [
        d for d in definitions
        if d.is_active and d.tenant_id == invoice.tenant_id
    ]
    record = invoice.as_record()

    matching = [
        d for d in candidates
        if evaluate_all(d.selection_conditions, record)
    ]
    if matching:
        defaults = [d for d in matching if d.is_default]
        return min(defaults or matching, key=_precedence)

    fallback = [d for d in candidates if d.is_default]
    if fallback:
        return min(fallback, key=_precedence)

    raise NoApplicableWorkflowError(str(invoice.tenant_id), str(invoice.invoice_id))


def _precedence(definition: WorkflowDefinition) -> tuple[int, str, str]:
    return (
        -len(definition.selection_conditions),
        definition.name,
        str(definition.definition_id),
    )
