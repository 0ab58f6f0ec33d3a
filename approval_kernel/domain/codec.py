"""
Definition codec (``approval_kernel.domain.codec``).

Responsibility
--------------
Converts workflow definitions, condition expressions and step executions
between frozen domain objects and plain JSON-compatible dicts.  Used by
the YAML loader (``approval_config.loader``) and by the ORM layer, which
stores definition snapshots and condition lists as JSON columns.

Invariants enforced
-------------------
* Conditions are validated when parsed: an unknown operator, a
  non-numeric operand for ``greater_than``/``less_than`` or a non-list
  operand for ``in`` raises ``InvalidConditionError``.  Nothing malformed
  reaches evaluation.
* Decimals round-trip as strings so thresholds never pass through float.
"""

from __future__ import annotations

from datetime import datetime
from decimal import Decimal, InvalidOperation
from typing import Any
from uuid import UUID

from approval_kernel.domain.conditions import (
    CONDITION_TYPES,
    OPERATOR_ALIASES,
    ConditionExpr,
    ConditionOperator,
    GreaterThan,
    In,
    LessThan,
)
from approval_kernel.domain.workflow import (
    ApprovalStep,
    StepExecution,
    StepStatus,
    WorkflowDefinition,
)
from approval_kernel.exceptions import InvalidConditionError
from approval_kernel.utils.hashing import hash_payload


# =========================================================================
# Conditions
# =========================================================================


def parse_operator(raw: Any) -> ConditionOperator:
    if isinstance(raw, ConditionOperator):
        return raw
    if not isinstance(raw, str):
        raise InvalidConditionError(repr(raw), "operator must be a string")
    name = raw.strip().lower()
    if name in OPERATOR_ALIASES:
        return OPERATOR_ALIASES[name]
    try:
        return ConditionOperator(name)
    except ValueError:
        raise InvalidConditionError(raw, f"unknown operator '{raw}'") from None


def parse_condition(data: dict[str, Any]) -> ConditionExpr:
    """Build a condition variant from ``{"field", "operator", "value"}``."""
    if not isinstance(data, dict):
        raise InvalidConditionError(repr(data), "condition must be a mapping")
    field_path = data.get("field")
    if not isinstance(field_path, str) or not field_path.strip():
        raise InvalidConditionError(repr(data), "missing 'field'")
    if "operator" not in data:
        raise InvalidConditionError(repr(data), "missing 'operator'")
    if "value" not in data:
        raise InvalidConditionError(repr(data), "missing 'value'")

    operator = parse_operator(data["operator"])
    operand = data["value"]

    if operator is ConditionOperator.IN:
        if isinstance(operand, (str, bytes)) or not isinstance(operand, (list, tuple)):
            raise InvalidConditionError(repr(data), "'in' requires a list operand")
        return In(field=field_path, operand=tuple(operand))

    if operator in (ConditionOperator.GREATER_THAN, ConditionOperator.LESS_THAN):
        _require_numeric_operand(operand, repr(data))
        cls = GreaterThan if operator is ConditionOperator.GREATER_THAN else LessThan
        return cls(field=field_path, operand=operand)

    return CONDITION_TYPES[operator](field=field_path, operand=operand)


def parse_conditions(items: Any) -> tuple[ConditionExpr, ...]:
    if not items:
        return ()
    if isinstance(items, dict):
        # Shorthand mapping form: {field: value} means equality
        return tuple(
            parse_condition({"field": k, "operator": "equals", "value": v})
            for k, v in items.items()
        )
    return tuple(parse_condition(item) for item in items)


def condition_to_dict(expr: ConditionExpr) -> dict[str, Any]:
    operand = list(expr.operand) if isinstance(expr, In) else expr.operand
    if isinstance(operand, Decimal):
        operand = canonical_decimal(operand)
    return {
        "field": expr.field,
        "operator": expr.operator.value,
        "value": operand,
    }


def _require_numeric_operand(operand: Any, label: str) -> None:
    if isinstance(operand, bool):
        raise InvalidConditionError(label, "numeric operand required")
    try:
        Decimal(str(operand))
    except (InvalidOperation, ValueError):
        raise InvalidConditionError(label, "numeric operand required") from None


# =========================================================================
# Steps and definitions
# =========================================================================


def canonical_decimal(value: Decimal) -> str:
    """Plain-notation string without trailing zeros; stable across Numeric(38, 9)."""
    return format(value.normalize(), "f")


def _parse_decimal(value: Any) -> Decimal | None:
    if value is None:
        return None
    return Decimal(str(value))


def parse_step(data: dict[str, Any]) -> ApprovalStep:
    user_id = data.get("approver_user_id")
    return ApprovalStep(
        step_order=int(data["step_order"]),
        approver_role=data.get("approver_role"),
        approver_user_id=str(user_id) if user_id is not None else None,
        required=bool(data.get("required", True)),
        auto_approve_conditions=parse_conditions(data.get("auto_approve_conditions")),
    )


def step_to_dict(step: ApprovalStep) -> dict[str, Any]:
    return {
        "step_order": step.step_order,
        "approver_role": step.approver_role,
        "approver_user_id": step.approver_user_id,
        "required": step.required,
        "auto_approve_conditions": [
            condition_to_dict(c) for c in step.auto_approve_conditions
        ],
    }


def definition_from_dict(data: dict[str, Any]) -> WorkflowDefinition:
    """Parse a definition dict (YAML document entry or JSON snapshot).

    Raises:
        KeyError: if ``definition_id``, ``tenant_id`` or ``name`` is missing.
        InvalidConditionError: on a malformed condition.
    """
    steps = tuple(
        sorted(
            (parse_step(s) for s in data.get("steps", [])),
            key=lambda s: s.step_order,
        )
    )
    return WorkflowDefinition(
        definition_id=UUID(str(data["definition_id"])),
        tenant_id=UUID(str(data["tenant_id"])),
        name=data["name"],
        steps=steps,
        version=int(data.get("version", 1)),
        description=data.get("description") or "",
        auto_approve_threshold=_parse_decimal(data.get("auto_approve_threshold")),
        require_approval_above=_parse_decimal(data.get("require_approval_above")),
        selection_conditions=parse_conditions(data.get("selection_conditions")),
        is_active=bool(data.get("is_active", True)),
        is_default=bool(data.get("is_default", False)),
    )


def definition_to_dict(definition: WorkflowDefinition) -> dict[str, Any]:
    def _dec(value: Decimal | None) -> str | None:
        return canonical_decimal(value) if value is not None else None

    return {
        "definition_id": str(definition.definition_id),
        "tenant_id": str(definition.tenant_id),
        "name": definition.name,
        "version": definition.version,
        "description": definition.description,
        "auto_approve_threshold": _dec(definition.auto_approve_threshold),
        "require_approval_above": _dec(definition.require_approval_above),
        "selection_conditions": [
            condition_to_dict(c) for c in definition.selection_conditions
        ],
        "steps": [step_to_dict(s) for s in definition.steps],
        "is_active": definition.is_active,
        "is_default": definition.is_default,
    }


# =========================================================================
# Step executions
# =========================================================================


def step_execution_from_dict(data: dict[str, Any]) -> StepExecution:
    decided_at = data.get("decided_at")
    return StepExecution(
        step_order=int(data["step_order"]),
        status=StepStatus(data["status"]),
        actor_id=data.get("actor_id"),
        decided_at=datetime.fromisoformat(decided_at) if decided_at else None,
        comments=data.get("comments"),
        auto_approved=bool(data.get("auto_approved", False)),
    )


def step_execution_to_dict(step: StepExecution) -> dict[str, Any]:
    return {
        "step_order": step.step_order,
        "status": step.status.value,
        "actor_id": step.actor_id,
        "decided_at": step.decided_at.isoformat() if step.decided_at else None,
        "comments": step.comments,
        "auto_approved": step.auto_approved,
    }


def compute_definition_hash(definition: WorkflowDefinition) -> str:
    """SHA-256 fingerprint of a definition's full content (id and version included)."""
    return hash_payload(definition_to_dict(definition))


def record_to_json(value: Any) -> Any:
    """Make an invoice record storable in a JSON column.

    Decimals become strings (never float); numeric conditions parse them
    back on evaluation.
    """
    if isinstance(value, dict):
        return {str(k): record_to_json(v) for k, v in value.items()}
    if isinstance(value, (list, tuple)):
        return [record_to_json(v) for v in value]
    if isinstance(value, Decimal):
        return str(value)
    if isinstance(value, UUID):
        return str(value)
    if isinstance(value, datetime):
        return value.isoformat()
    return value
