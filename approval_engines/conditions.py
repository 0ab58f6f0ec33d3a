"""
approval_engines.conditions -- Pure condition expression evaluator.

Responsibility:
    Evaluate a tagged comparison expression against a field value, and
    resolve dotted field paths against an invoice record.

Architecture position:
    Engines -- pure calculation layer, zero I/O.
    May only import approval_kernel/domain types and exceptions.

Invariants enforced:
    - Closed operator set: only the variants in
      ``approval_kernel.domain.conditions`` evaluate; anything else raises
      ``InvalidConditionError``.  There is no dynamic code execution.
    - Numeric comparison goes through Decimal on both sides, so "1000",
      1000 and Decimal("1000.00") compare equal.
    - Purity: no clock, no I/O; safe to re-run.

Failure modes:
    - InvalidConditionError for an unknown variant, a non-numeric operand
      to GreaterThan/LessThan, or a non-sequence operand to In.
    - A field value that is missing or not numeric makes a numeric
      comparison False (the expression is well-formed; the data does not
      satisfy it).
"""

from __future__ import annotations

from collections.abc import Mapping
from decimal import Decimal, InvalidOperation
from typing import Any

from approval_kernel.domain.conditions import (
    ConditionExpr,
    Equals,
    GreaterThan,
    In,
    LessThan,
    NotEquals,
)
from approval_kernel.exceptions import InvalidConditionError


def evaluate(expr: ConditionExpr, field_value: Any) -> bool:
    """Evaluate one condition against the value of its field.

    Args:
        expr: A condition variant.
        field_value: The resolved value of ``expr.field`` (None if absent).

    Returns:
        True if the value satisfies the condition.

    Raises:
        InvalidConditionError: if the expression is malformed.
    """
    if isinstance(expr, Equals):
        return _equals(field_value, expr.operand)
    if isinstance(expr, NotEquals):
        return not _equals(field_value, expr.operand)
    if isinstance(expr, GreaterThan):
        actual = _to_decimal(field_value)
        return actual is not None and actual > _numeric_operand(expr)
    if isinstance(expr, LessThan):
        actual = _to_decimal(field_value)
        return actual is not None and actual < _numeric_operand(expr)
    if isinstance(expr, In):
        operand = expr.operand
        if isinstance(operand, (str, bytes)) or not isinstance(operand, (tuple, list, frozenset)):
            raise InvalidConditionError(repr(expr), "'in' requires a sequence operand")
        return any(_equals(field_value, candidate) for candidate in operand)

    raise InvalidConditionError(repr(expr), "unknown condition type")


def evaluate_all(conditions: tuple[ConditionExpr, ...], record: Any) -> bool:
    """True if every condition holds against ``record`` (vacuously for none)."""
    return all(
        evaluate(condition, resolve_field(condition.field, record))
        for condition in conditions
    )


def resolve_field(field_path: str, record: Any) -> Any:
    """Resolve a dotted field path against nested mappings / objects.

    ``customer.country`` -> record["customer"]["country"]
    """
    current: Any = record
    for part in field_path.split("."):
        if current is None:
            return None
        if isinstance(current, Mapping):
            current = current.get(part)
        else:
            current = getattr(current, part, None)
    return current


def _equals(value: Any, operand: Any) -> bool:
    if operand is None:
        return value is None
    if value is None:
        return False
    if isinstance(operand, bool) or isinstance(value, bool):
        return value is operand
    if _is_number(operand):
        actual = _to_decimal(value)
        return actual is not None and actual == _to_decimal(operand)
    if isinstance(operand, str):
        # Exact, case-sensitive match
        return (value if isinstance(value, str) else str(value)) == operand
    return value == operand


def _is_number(value: Any) -> bool:
    return isinstance(value, (int, float, Decimal)) and not isinstance(value, bool)


def _to_decimal(value: Any) -> Decimal | None:
    if value is None or isinstance(value, bool):
        return None
    try:
        if isinstance(value, Decimal):
            result = value
        elif isinstance(value, (int, float, str)):
            result = Decimal(str(value).strip())
        else:
            return None
    except (InvalidOperation, ValueError):
        return None
    if result.is_nan():
        return None
    return result


def _numeric_operand(expr: GreaterThan | LessThan) -> Decimal:
    operand = _to_decimal(expr.operand)
    if operand is None:
        raise InvalidConditionError(repr(expr), "numeric operand required")
    return operand
