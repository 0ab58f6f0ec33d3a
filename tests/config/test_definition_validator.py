"""
Tests for workflow definition validation.
"""

from dataclasses import replace
from decimal import Decimal

import pytest

from approval_config.validator import (
    DefinitionValidationResult,
    ensure_valid_definition,
    validate_definition,
    validate_definitions,
)
from approval_kernel.domain.conditions import GreaterThan, In
from approval_kernel.domain.workflow import ApprovalStep
from approval_kernel.exceptions import InconsistentThresholdsError, InvalidDefinitionError


class TestValidateDefinition:
    def test_valid_definition(self, make_definition):
        result = validate_definition(make_definition("manager", "admin"))
        assert result.is_valid
        assert result.warnings == []

    def test_no_steps(self, make_definition):
        result = validate_definition(replace(make_definition(), steps=()))
        assert not result.is_valid
        assert "at least one approval step" in result.errors[0]

    def test_duplicate_and_gapped_orders(self, make_definition):
        definition = make_definition(
            ApprovalStep(1, approver_role="manager"),
            ApprovalStep(1, approver_role="admin"),
            ApprovalStep(3, approver_role="owner"),
        )
        errors = validate_definition(definition).errors
        assert any("duplicate step_order" in e for e in errors)
        assert any("contiguous" in e for e in errors)

    @pytest.mark.parametrize("step", [
        ApprovalStep(1),
        ApprovalStep(1, approver_role="manager", approver_user_id="u-1"),
    ])
    def test_step_needs_exactly_one_approver(self, make_definition, step):
        assert not validate_definition(make_definition(step)).is_valid

    def test_unknown_role_is_warning(self, make_definition):
        result = validate_definition(make_definition("controller"))
        assert result.is_valid
        assert "not in the role hierarchy" in result.warnings[0]

    def test_all_optional_is_warning(self, make_definition):
        result = validate_definition(make_definition(ApprovalStep(1, approver_role="manager", required=False)))
        assert result.is_valid
        assert any("no required step" in w for w in result.warnings)

    def test_negative_threshold(self, make_definition):
        result = validate_definition(make_definition(auto_approve_threshold=-1))
        assert not result.is_valid

    def test_overlapping_thresholds(self, make_definition):
        result = validate_definition(make_definition(auto_approve_threshold=2000, require_approval_above=1000))
        assert any("exceeds require_approval_above" in e for e in result.errors)

    def test_bad_operands_built_in_code(self, make_definition):
        definition = replace(
            make_definition(),
            selection_conditions=(GreaterThan("total_amount", "lots"), In("tier", "gold")),
        )
        errors = validate_definition(definition).errors
        assert len(errors) == 2

    def test_empty_name_and_bad_version(self, make_definition):
        result = validate_definition(make_definition(name=" ", version=0))
        assert len(result.errors) == 2


class TestValidateDefinitions:
    def test_two_active_defaults(self, make_definition):
        result = validate_definitions([
            make_definition(name="A", is_default=True),
            make_definition(name="B", is_default=True),
        ])
        assert any("active default" in e for e in result.errors)

    def test_inactive_default_does_not_count(self, make_definition):
        result = validate_definitions([
            make_definition(name="A", is_default=True),
            make_definition(name="B", is_default=True, is_active=False),
        ])
        assert result.is_valid

    def test_duplicate_name_warning(self, make_definition):
        result = validate_definitions([make_definition(name="A"), make_definition(name="A")])
        assert result.is_valid
        assert "used 2 times" in result.warnings[0]

    def test_duplicate_id_error(self, make_definition):
        definition = make_definition()
        result = validate_definitions([definition, replace(definition, name="Copy")])
        assert any("definition id" in e for e in result.errors)


class TestEnsureValid:
    def test_thresholds_raise_specific_error(self, make_definition):
        with pytest.raises(InconsistentThresholdsError) as exc_info:
            ensure_valid_definition(make_definition(auto_approve_threshold=5, require_approval_above=1))
        assert exc_info.value.auto_approve_threshold == str(Decimal("5"))

    def test_other_errors_collected(self, make_definition):
        with pytest.raises(InvalidDefinitionError) as exc_info:
            ensure_valid_definition(replace(make_definition(), steps=()))
        assert exc_info.value.errors

    def test_valid_passes(self, make_definition):
        ensure_valid_definition(make_definition())


class TestResult:
    def test_merge(self):
        a = DefinitionValidationResult()
        a.add_error("e1")
        b = DefinitionValidationResult()
        b.add_warning("w1")
        a.merge(b)
        assert (a.errors, a.warnings, a.is_valid) == (["e1"], ["w1"], False)
