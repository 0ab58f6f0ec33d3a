"""
Tests for the YAML workflow definition loader.

Covers the shipped example set, stable ids, tenant checks, load-time
condition validation, dump/load round trip and the set checksum.
"""

from pathlib import Path
from uuid import UUID, uuid4

import pytest
import yaml

import approval_config
from approval_config.loader import (
    compute_checksum,
    dump_workflows,
    load_workflows,
    parse_document,
    stable_definition_id,
)
from approval_kernel.domain.conditions import In, LessThan
from approval_kernel.exceptions import InvalidConditionError

EXAMPLE = Path(approval_config.__file__).parent / "sets" / "example.yaml"
EXAMPLE_TENANT = UUID("3b2f6f3e-8a4b-4c1e-9a57-6d1f0b9c2e11")


def _document(*workflows, tenant_id=None):
    return {"tenant_id": str(tenant_id or uuid4()), "workflows": list(workflows)}


class TestExampleSet:
    @pytest.fixture(scope="class")
    def definitions(self):
        return load_workflows(EXAMPLE)

    def test_loads_three_workflows(self, definitions):
        assert [d.name for d in definitions] == ["Standard", "High Value", "Trusted Vendors"]
        assert all(d.tenant_id == EXAMPLE_TENANT for d in definitions)

    def test_single_default(self, definitions):
        assert [d.name for d in definitions if d.is_default] == ["Standard"]

    def test_conditions_parsed(self, definitions):
        trusted = definitions[2]
        assert trusted.selection_conditions == (In("vendor.tier", ("preferred", "strategic")),)
        assert trusted.steps[0].auto_approve_conditions == (LessThan("total_amount", 2000),)

    def test_optional_step(self, definitions):
        high = definitions[1]
        assert [s.required for s in high.steps] == [True, False, True]

    def test_ids_are_stable(self, definitions):
        assert definitions[0].definition_id == stable_definition_id(EXAMPLE_TENANT, "Standard")
        assert load_workflows(EXAMPLE)[0].definition_id == definitions[0].definition_id


class TestParseDocument:
    def test_explicit_definition_id_kept(self):
        ident = uuid4()
        [definition] = parse_document(_document(
            {"name": "A", "definition_id": str(ident), "steps": [{"step_order": 1, "approver_role": "user"}]},
        ))
        assert definition.definition_id == ident

    def test_foreign_tenant_rejected(self):
        with pytest.raises(ValueError, match="declares tenant"):
            parse_document(_document({"name": "A", "tenant_id": str(uuid4()), "steps": []}))

    def test_unknown_operator_rejected_at_load(self):
        with pytest.raises(InvalidConditionError):
            parse_document(_document({
                "name": "A",
                "selection_conditions": [{"field": "vendor", "operator": "contains", "value": "acme"}],
                "steps": [{"step_order": 1, "approver_role": "user"}],
            }))

    def test_missing_tenant(self):
        with pytest.raises(KeyError):
            parse_document({"workflows": []})

    def test_empty_workflows(self):
        assert parse_document(_document()) == []


class TestDumpAndChecksum:
    def test_dump_round_trip(self, tmp_path):
        definitions = load_workflows(EXAMPLE)
        path = tmp_path / "dumped.yaml"
        path.write_text(dump_workflows(definitions))

        assert load_workflows(path) == definitions

    def test_dump_rejects_mixed_tenants(self, make_definition):
        with pytest.raises(ValueError):
            dump_workflows([make_definition(), make_definition(tenant_id=uuid4())])

    def test_checksum_is_order_independent(self):
        definitions = load_workflows(EXAMPLE)
        assert compute_checksum(definitions) == compute_checksum(list(reversed(definitions)))

    def test_checksum_changes_with_content(self, tmp_path):
        data = yaml.safe_load(EXAMPLE.read_text())
        data["workflows"][0]["auto_approve_threshold"] = 750
        path = tmp_path / "changed.yaml"
        path.write_text(yaml.safe_dump(data))

        assert compute_checksum(load_workflows(path)) != compute_checksum(load_workflows(EXAMPLE))
