"""
approval_config -- Tenant workflow configuration tooling.

Loads workflow definitions from YAML, validates them, and fingerprints
them.  Depends on ``approval_kernel.domain`` only.
"""

from approval_config.loader import (
    compute_checksum,
    dump_workflows,
    load_workflows,
    parse_document,
)
from approval_config.validator import (
    DefinitionValidationResult,
    ensure_valid_definition,
    validate_definition,
    validate_definitions,
)
from approval_kernel.domain.codec import compute_definition_hash

__all__ = [
    "DefinitionValidationResult",
    "compute_checksum",
    "compute_definition_hash",
    "dump_workflows",
    "ensure_valid_definition",
    "load_workflows",
    "parse_document",
    "validate_definition",
    "validate_definitions",
]
