"""
Tests for the definition codec and definition fingerprints.

Tests cover:
- Condition parsing: operators, aliases, shorthand mapping form
- Malformed conditions rejected at parse time
- Definition dict round trip and hash stability
- Invoice record JSON conversion
"""

from datetime import UTC, datetime
from decimal import Decimal
from uuid import uuid4

import pytest

from approval_kernel.domain.codec import (
    canonical_decimal,
    compute_definition_hash,
    condition_to_dict,
    definition_from_dict,
    definition_to_dict,
    parse_condition,
    parse_conditions,
    record_to_json,
    step_execution_from_dict,
    step_execution_to_dict,
)
from approval_kernel.domain.conditions import Equals, GreaterThan, In, NotEquals
from approval_kernel.domain.workflow import StepExecution, StepStatus
from approval_kernel.exceptions import InvalidConditionError


def _definition_dict(**overrides):
    data = {
        "definition_id": str(uuid4()),
        "tenant_id": str(uuid4()),
        "name": "High Value",
        "version": 2,
        "auto_approve_threshold": "500",
        "require_approval_above": "10000.00",
        "selection_conditions": [
            {"field": "total_amount", "operator": "greater_than", "value": 10000},
        ],
        "steps": [
            {"step_order": 2, "approver_role": "admin", "required": False},
            {
                "step_order": 1,
                "approver_role": "manager",
                "auto_approve_conditions": [
                    {"field": "vendor.tier", "operator": "in", "value": ["preferred"]},
                ],
            },
        ],
    }
    data.update(overrides)
    return data


# =========================================================================
# Conditions
# =========================================================================


class TestParseCondition:
    def test_each_operator(self):
        assert parse_condition({"field": "a", "operator": "equals", "value": 1}) == Equals("a", 1)
        assert parse_condition({"field": "a", "operator": "not_equals", "value": 1}) == NotEquals("a", 1)
        assert parse_condition({"field": "a", "operator": "greater_than", "value": 1}) == GreaterThan("a", 1)
        assert parse_condition({"field": "a", "operator": "in", "value": [1, 2]}) == In("a", (1, 2))

    def test_aliases_and_case(self):
        assert isinstance(parse_condition({"field": "a", "operator": "GT", "value": 1}), GreaterThan)
        assert isinstance(parse_condition({"field": "a", "operator": "in_list", "value": [1]}), In)

    def test_shorthand_mapping_means_equality(self):
        assert parse_conditions({"category": "travel"}) == (Equals("category", "travel"),)

    def test_empty_conditions(self):
        assert parse_conditions(None) == ()
        assert parse_conditions([]) == ()

    @pytest.mark.parametrize("data", [
        {"field": "a", "operator": "contains", "value": "x"},
        {"field": "a", "operator": "greater_than", "value": "ten"},
        {"field": "a", "operator": "less_than", "value": True},
        {"field": "a", "operator": "in", "value": "preferred"},
        {"field": "", "operator": "equals", "value": 1},
        {"field": "a", "value": 1},
        {"field": "a", "operator": "equals"},
        {"field": "a", "operator": 7, "value": 1},
        "total_amount > 5",
    ])
    def test_malformed_conditions_rejected(self, data):
        with pytest.raises(InvalidConditionError):
            parse_condition(data)

    def test_condition_to_dict_canonicalizes_decimal(self):
        data = condition_to_dict(GreaterThan("total_amount", Decimal("1000.000")))
        assert data == {"field": "total_amount", "operator": "greater_than", "value": "1000"}


# =========================================================================
# Definitions
# =========================================================================


class TestDefinitionCodec:
    def test_steps_sorted_by_order(self):
        definition = definition_from_dict(_definition_dict())
        assert [s.step_order for s in definition.steps] == [1, 2]
        assert definition.steps[1].required is False

    def test_thresholds_are_decimal(self):
        definition = definition_from_dict(_definition_dict())
        assert definition.auto_approve_threshold == Decimal("500")
        assert definition.require_approval_above == Decimal("10000.00")

    def test_round_trip_preserves_definition(self):
        definition = definition_from_dict(_definition_dict())
        assert definition_from_dict(definition_to_dict(definition)) == definition

    def test_missing_name_raises_key_error(self):
        data = _definition_dict()
        del data["name"]
        with pytest.raises(KeyError):
            definition_from_dict(data)


class TestDefinitionHash:
    def test_hash_is_sha256_hex(self):
        digest = compute_definition_hash(definition_from_dict(_definition_dict()))
        assert len(digest) == 64
        int(digest, 16)

    def test_hash_ignores_decimal_scale(self):
        data = _definition_dict()
        a = definition_from_dict(dict(data, require_approval_above="10000"))
        b = definition_from_dict(dict(data, require_approval_above="10000.000000000"))
        assert compute_definition_hash(a) == compute_definition_hash(b)

    def test_hash_changes_with_version(self):
        data = _definition_dict()
        a = definition_from_dict(dict(data, version=1))
        b = definition_from_dict(dict(data, version=2))
        assert compute_definition_hash(a) != compute_definition_hash(b)

    def test_canonical_decimal_plain_notation(self):
        assert canonical_decimal(Decimal("1E+3")) == "1000"
        assert canonical_decimal(Decimal("12.500")) == "12.5"


# =========================================================================
# Step executions and records
# =========================================================================


class TestStepExecutionCodec:
    def test_round_trip(self):
        step = StepExecution(
            step_order=1,
            status=StepStatus.APPROVED,
            actor_id="mgr-1",
            decided_at=datetime(2024, 3, 1, 9, 0, tzinfo=UTC),
            comments="ok",
        )
        assert step_execution_from_dict(step_execution_to_dict(step)) == step


class TestRecordToJson:
    def test_converts_nested_special_types(self):
        ident = uuid4()
        record = {
            "total_amount": Decimal("10.50"),
            "id": ident,
            "vendor": {"lines": (Decimal("1"), "x")},
            "due": datetime(2024, 5, 1, tzinfo=UTC),
        }
        assert record_to_json(record) == {
            "total_amount": "10.50",
            "id": str(ident),
            "vendor": {"lines": ["1", "x"]},
            "due": "2024-05-01T00:00:00+00:00",
        }
