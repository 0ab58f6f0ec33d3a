"""
Definition Validator (``approval_config.validator``).

Responsibility
--------------
Validates workflow definitions before they are stored or used, so that
structural mistakes surface as configuration errors at load time rather
than as stuck executions at run time.

Architecture position
---------------------
**Config layer** -- build-time validation.  Called by
``approval_config.loader`` consumers, by the definition service on
create/update and by the engine before an execution starts.  Depends on
``approval_kernel.domain`` only.

Invariants enforced
-------------------
* At least one step; ``step_order`` values unique and contiguous from 1.
* Every step names exactly one approver (role or user).
* Thresholds are non-negative and do not overlap.
* Condition operands are well-formed for their operator.
* At most one default definition per tenant (``validate_definitions``).

Failure modes
-------------
* Errors (``DefinitionValidationResult.errors``) -> the definition MUST NOT
  be stored or executed.
* Warnings -> usable, but should be reviewed (unknown role tag, no required
  step, duplicate names).
"""

from __future__ import annotations

from collections import Counter
from dataclasses import dataclass, field
from decimal import Decimal, InvalidOperation
from typing import Iterable

from approval_kernel.domain.conditions import ConditionExpr, GreaterThan, In, LessThan
from approval_kernel.domain.roles import KNOWN_ROLES
from approval_kernel.domain.workflow import WorkflowDefinition
from approval_kernel.exceptions import (
    InconsistentThresholdsError,
    InvalidDefinitionError,
)


@dataclass
class DefinitionValidationResult:
    """
    Result of definition validation.

    Contract
    --------
    * ``is_valid`` returns ``True`` only when ``errors`` is empty.
    * Warnings do not block use but should be reviewed.
    """

    errors: list[str] = field(default_factory=list)
    warnings: list[str] = field(default_factory=list)

    @property
    def is_valid(self) -> bool:
        return len(self.errors) == 0

    def add_error(self, msg: str) -> None:
        self.errors.append(msg)

    def add_warning(self, msg: str) -> None:
        self.warnings.append(msg)

    def merge(self, other: DefinitionValidationResult) -> None:
        self.errors.extend(other.errors)
        self.warnings.extend(other.warnings)


def validate_definition(definition: WorkflowDefinition) -> DefinitionValidationResult:
    """
    Validate a single workflow definition.

    Postconditions:
        - Returns a result whose ``errors`` list every structural problem
          found; validation never stops at the first error.
    """
    result = DefinitionValidationResult()
    label = definition.name or str(definition.definition_id)

    if not definition.name or not definition.name.strip():
        result.add_error(f"{definition.definition_id}: name must not be empty")
    if definition.version < 1:
        result.add_error(f"{label}: version must be >= 1, got {definition.version}")

    _check_steps(definition, label, result)
    _check_thresholds(definition, label, result)

    for condition in definition.selection_conditions:
        _check_condition(condition, f"{label}: selection condition", result)

    return result


def validate_definitions(
    definitions: Iterable[WorkflowDefinition],
) -> DefinitionValidationResult:
    """Validate a tenant's full set, including cross-definition rules."""
    items = list(definitions)
    result = DefinitionValidationResult()
    for definition in items:
        result.merge(validate_definition(definition))

    defaults = Counter(d.tenant_id for d in items if d.is_default and d.is_active)
    for tenant_id, count in sorted(defaults.items(), key=lambda kv: str(kv[0])):
        if count > 1:
            result.add_error(
                f"tenant {tenant_id}: {count} active default workflows, at most one allowed"
            )

    names = Counter((d.tenant_id, d.name) for d in items)
    for (tenant_id, name), count in sorted(names.items(), key=lambda kv: (str(kv[0][0]), kv[0][1])):
        if count > 1:
            result.add_warning(f"tenant {tenant_id}: workflow name '{name}' used {count} times")

    ids = Counter(d.definition_id for d in items)
    for definition_id, count in ids.items():
        if count > 1:
            result.add_error(f"definition id {definition_id} used {count} times")

    return result


def ensure_valid_definition(definition: WorkflowDefinition) -> None:
    """
    Raise unless ``definition`` is valid.

    Raises:
        InconsistentThresholdsError: if auto_approve_threshold exceeds
            require_approval_above.
        InvalidDefinitionError: for any other validation error.
    """
    auto = definition.auto_approve_threshold
    floor = definition.require_approval_above
    if auto is not None and floor is not None and auto > floor:
        raise InconsistentThresholdsError(definition.name, str(auto), str(floor))

    result = validate_definition(definition)
    if not result.is_valid:
        raise InvalidDefinitionError(definition.name, result.errors)


def _check_steps(
    definition: WorkflowDefinition, label: str, result: DefinitionValidationResult,
) -> None:
    if not definition.steps:
        result.add_error(f"{label}: at least one approval step is required")
        return

    orders = [s.step_order for s in definition.steps]
    duplicates = sorted(o for o, n in Counter(orders).items() if n > 1)
    if duplicates:
        result.add_error(f"{label}: duplicate step_order values {duplicates}")
    expected = list(range(1, len(set(orders)) + 1))
    if sorted(set(orders)) != expected:
        result.add_error(
            f"{label}: step_order must be contiguous from 1, got {sorted(orders)}"
        )

    for step in definition.steps:
        where = f"{label}: step {step.step_order}"
        has_role = bool(step.approver_role)
        has_user = bool(step.approver_user_id)
        if has_role == has_user:
            result.add_error(f"{where}: exactly one of approver_role / approver_user_id required")
        elif has_role and step.approver_role not in KNOWN_ROLES:
            result.add_warning(f"{where}: role '{step.approver_role}' is not in the role hierarchy")
        for condition in step.auto_approve_conditions:
            _check_condition(condition, f"{where}: auto-approve condition", result)

    if not any(s.required for s in definition.steps):
        result.add_warning(f"{label}: no required step; executions approve without a human")


def _check_thresholds(
    definition: WorkflowDefinition, label: str, result: DefinitionValidationResult,
) -> None:
    auto = definition.auto_approve_threshold
    floor = definition.require_approval_above
    if auto is not None and auto < 0:
        result.add_error(f"{label}: auto_approve_threshold must be >= 0, got {auto}")
    if floor is not None and floor < 0:
        result.add_error(f"{label}: require_approval_above must be >= 0, got {floor}")
    if auto is not None and floor is not None and auto > floor:
        result.add_error(
            f"{label}: auto_approve_threshold {auto} exceeds require_approval_above {floor}"
        )


def _check_condition(
    condition: ConditionExpr, where: str, result: DefinitionValidationResult,
) -> None:
    if not condition.field:
        result.add_error(f"{where}: missing field")
    if isinstance(condition, (GreaterThan, LessThan)):
        if isinstance(condition.operand, bool) or not _is_decimal(condition.operand):
            result.add_error(
                f"{where}: '{condition.field}' {condition.operator.value} needs a numeric operand"
            )
    elif isinstance(condition, In):
        if isinstance(condition.operand, str) or not isinstance(condition.operand, (tuple, list)):
            result.add_error(f"{where}: '{condition.field}' in needs a list operand")


def _is_decimal(value: object) -> bool:
    try:
        Decimal(str(value))
    except (InvalidOperation, ValueError):
        return False
    return True
