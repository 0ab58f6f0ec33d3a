"""
Workflow Definition Loader (``approval_config.loader``).

Responsibility
--------------
Loads tenant workflow definitions from YAML documents and parses them
into frozen ``WorkflowDefinition`` objects.  Seeding tooling and tests use
it; the engine itself only ever sees definitions through the repository.

Document format
---------------
::

    tenant_id: 5f0c1c6e-...
    workflows:
      - name: Standard
        is_default: true
        auto_approve_threshold: 500
        steps:
          - step_order: 1
            approver_role: manager

A workflow without ``definition_id`` gets a stable UUIDv5 derived from the
tenant and name, so reloading the same file yields the same ids.

Invariants enforced
-------------------
* Conditions are parsed and validated at load time
  (``InvalidConditionError`` for a malformed expression).
* Every workflow in a document belongs to the document's tenant.
* ``compute_checksum`` is deterministic for a given set of definitions.

Failure modes
-------------
* Missing YAML file -> ``FileNotFoundError`` propagates.
* Malformed YAML -> ``yaml.YAMLError`` propagates.
* Missing ``tenant_id`` / ``name`` / ``step_order`` -> ``KeyError`` propagates.
"""

from __future__ import annotations

from pathlib import Path
from typing import Any
from uuid import NAMESPACE_URL, UUID, uuid5

import yaml

from approval_kernel.domain.codec import definition_from_dict, definition_to_dict
from approval_kernel.domain.workflow import WorkflowDefinition
from approval_kernel.utils.hashing import hash_payload


def load_yaml_file(path: Path) -> dict[str, Any]:
    """
    Load a single YAML file and return its contents as a dict.

    Raises:
        FileNotFoundError: if the file does not exist.
        yaml.YAMLError: if the file contains invalid YAML.
    """
    with open(path) as f:
        return yaml.safe_load(f) or {}


def stable_definition_id(tenant_id: UUID, name: str) -> UUID:
    """Deterministic id for a workflow declared without one."""
    return uuid5(NAMESPACE_URL, f"approval-workflow:{tenant_id}:{name}")


def parse_workflow(data: dict[str, Any], tenant_id: UUID) -> WorkflowDefinition:
    """Parse one entry of a document's ``workflows`` list."""
    declared = data.get("tenant_id")
    if declared is not None and UUID(str(declared)) != tenant_id:
        raise ValueError(
            f"workflow '{data.get('name')}' declares tenant {declared}, "
            f"document tenant is {tenant_id}"
        )
    entry = dict(data)
    entry["tenant_id"] = tenant_id
    entry.setdefault("definition_id", stable_definition_id(tenant_id, data["name"]))
    return definition_from_dict(entry)


def parse_document(data: dict[str, Any]) -> list[WorkflowDefinition]:
    """Parse a whole document (``tenant_id`` + ``workflows``)."""
    tenant_id = UUID(str(data["tenant_id"]))
    return [parse_workflow(item, tenant_id) for item in data.get("workflows") or []]


def load_workflows(path: Path) -> list[WorkflowDefinition]:
    """Load and parse every workflow definition in a YAML file."""
    return parse_document(load_yaml_file(Path(path)))


def dump_workflows(definitions: list[WorkflowDefinition]) -> str:
    """Render definitions of one tenant back to a YAML document."""
    if not definitions:
        return yaml.safe_dump({"workflows": []}, sort_keys=False)
    tenant_ids = {d.tenant_id for d in definitions}
    if len(tenant_ids) != 1:
        raise ValueError("dump_workflows expects definitions of a single tenant")
    workflows = []
    for definition in definitions:
        entry = definition_to_dict(definition)
        entry.pop("tenant_id")
        workflows.append(entry)
    return yaml.safe_dump(
        {"tenant_id": str(tenant_ids.pop()), "workflows": workflows},
        sort_keys=False,
    )


def compute_checksum(definitions: list[WorkflowDefinition]) -> str:
    """
    Deterministic SHA-256 checksum of a set of definitions.

    Order-independent: definitions are sorted by id before hashing.
    """
    payload = [
        definition_to_dict(d)
        for d in sorted(definitions, key=lambda d: str(d.definition_id))
    ]
    return hash_payload({"workflows": payload})
