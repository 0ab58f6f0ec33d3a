"""
Condition expression types (``approval_kernel.domain.conditions``).

Responsibility
--------------
Closed tagged variant of comparison expressions used by workflow selection
conditions and per-step auto-approve conditions.  Each variant names the
invoice field it inspects (dotted path) and holds its operand.

Architecture position
---------------------
**Kernel domain layer** -- pure value objects.  ZERO I/O.

Invariants enforced
-------------------
* The operator set is closed: ``Equals``, ``NotEquals``, ``GreaterThan``,
  ``LessThan``, ``In``.  Unknown operators are rejected when a definition
  is parsed (``codec.parse_condition``), never silently evaluated to False.
* ``In`` operands are tuples, so expressions stay hashable and immutable.
"""

from __future__ import annotations

from dataclasses import dataclass
from enum import Enum
from typing import Any, Union


class ConditionOperator(str, Enum):
    """Wire names of the supported comparison operators."""

    EQUALS = "equals"
    NOT_EQUALS = "not_equals"
    GREATER_THAN = "greater_than"
    LESS_THAN = "less_than"
    IN = "in"


@dataclass(frozen=True)
class Equals:
    field: str
    operand: Any

    operator = ConditionOperator.EQUALS


@dataclass(frozen=True)
class NotEquals:
    field: str
    operand: Any

    operator = ConditionOperator.NOT_EQUALS


@dataclass(frozen=True)
class GreaterThan:
    field: str
    operand: Any

    operator = ConditionOperator.GREATER_THAN


@dataclass(frozen=True)
class LessThan:
    field: str
    operand: Any

    operator = ConditionOperator.LESS_THAN


@dataclass(frozen=True)
class In:
    field: str
    operand: tuple[Any, ...]

    operator = ConditionOperator.IN


ConditionExpr = Union[Equals, NotEquals, GreaterThan, LessThan, In]

CONDITION_TYPES: dict[ConditionOperator, type] = {
    ConditionOperator.EQUALS: Equals,
    ConditionOperator.NOT_EQUALS: NotEquals,
    ConditionOperator.GREATER_THAN: GreaterThan,
    ConditionOperator.LESS_THAN: LessThan,
    ConditionOperator.IN: In,
}

# Aliases accepted from tenant-authored configuration
OPERATOR_ALIASES: dict[str, ConditionOperator] = {
    "in_list": ConditionOperator.IN,
    "eq": ConditionOperator.EQUALS,
    "ne": ConditionOperator.NOT_EQUALS,
    "gt": ConditionOperator.GREATER_THAN,
    "lt": ConditionOperator.LESS_THAN,
}
