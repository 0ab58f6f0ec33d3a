"""
approval_kernel.services.definition_service -- Workflow definition management.

Responsibility:
    Create, edit, deactivate and list tenant workflow definitions, keeping
    versioning and the single-default rule consistent.

Architecture position:
    Kernel > Services.  Storage through the injected WorkflowRepository;
    validation through ``approval_config.validator``.

Invariants enforced:
    - Every stored definition passes ``ensure_valid_definition``.
    - ``version`` starts at 1 and increases by one on every edit.
      Running executions keep the snapshot they started with.
    - At most one active default per tenant: making a definition the
      default clears the flag on the tenant's other definitions.
    - Deactivated definitions are never selected and cannot be default.

Failure modes:
    - WorkflowNotFoundError for an unknown definition id.
    - InvalidDefinitionError / InconsistentThresholdsError /
      InvalidConditionError for bad content.
"""

from __future__ import annotations

from collections.abc import Callable, Iterable, Mapping
from dataclasses import replace
from decimal import Decimal
from typing import Any
from uuid import UUID, uuid4

from approval_config.validator import ensure_valid_definition, validate_definitions
from approval_kernel.domain.codec import parse_condition, parse_step
from approval_kernel.domain.conditions import ConditionExpr
from approval_kernel.domain.protocols import WorkflowRepository
from approval_kernel.domain.workflow import ApprovalStep, WorkflowDefinition
from approval_kernel.exceptions import InvalidDefinitionError, WorkflowNotFoundError
from approval_kernel.logging_config import get_logger

logger = get_logger("services.definition_service")

_UNSET: Any = object()


def _coerce_steps(steps: Iterable[ApprovalStep | Mapping[str, Any]]) -> tuple[ApprovalStep, ...]:
    parsed = [
        s if isinstance(s, ApprovalStep) else parse_step(dict(s))
        for s in steps
    ]
    return tuple(sorted(parsed, key=lambda s: s.step_order))


def _coerce_conditions(
    conditions: Iterable[ConditionExpr | Mapping[str, Any]],
) -> tuple[ConditionExpr, ...]:
    return tuple(
        parse_condition(dict(c)) if isinstance(c, Mapping) else c
        for c in conditions
    )


def _coerce_amount(value: Decimal | int | str | None) -> Decimal | None:
    if value is None:
        return None
    return value if isinstance(value, Decimal) else Decimal(str(value))


class WorkflowDefinitionService:
    """CRUD for workflow definitions on top of a WorkflowRepository."""

    def __init__(
        self,
        repository: WorkflowRepository,
        id_factory: Callable[[], UUID] = uuid4,
    ) -> None:
        self._repository = repository
        self._id_factory = id_factory

    def create_definition(
        self,
        *,
        tenant_id: UUID,
        name: str,
        steps: Iterable[ApprovalStep | Mapping[str, Any]],
        description: str = "",
        auto_approve_threshold: Decimal | int | str | None = None,
        require_approval_above: Decimal | int | str | None = None,
        selection_conditions: Iterable[ConditionExpr | Mapping[str, Any]] = (),
        is_default: bool = False,
    ) -> WorkflowDefinition:
        definition = WorkflowDefinition(
            definition_id=self._id_factory(),
            tenant_id=tenant_id,
            name=name,
            steps=_coerce_steps(steps),
            version=1,
            description=description,
            auto_approve_threshold=_coerce_amount(auto_approve_threshold),
            require_approval_above=_coerce_amount(require_approval_above),
            selection_conditions=_coerce_conditions(selection_conditions),
            is_active=True,
            is_default=is_default,
        )
        ensure_valid_definition(definition)

        if is_default:
            self._clear_other_defaults(definition)
        self._repository.save_definition(definition)

        logger.info(
            "definition_created",
            extra={
                "definition_id": str(definition.definition_id),
                "tenant_id": str(tenant_id),
                "definition_name": name,
                "steps": len(definition.steps),
                "is_default": is_default,
            },
        )
        return definition

    def update_definition(
        self,
        definition_id: UUID,
        *,
        name: str = _UNSET,
        description: str = _UNSET,
        steps: Iterable[ApprovalStep | Mapping[str, Any]] = _UNSET,
        auto_approve_threshold: Decimal | int | str | None = _UNSET,
        require_approval_above: Decimal | int | str | None = _UNSET,
        selection_conditions: Iterable[ConditionExpr | Mapping[str, Any]] = _UNSET,
        is_default: bool = _UNSET,
        is_active: bool = _UNSET,
    ) -> WorkflowDefinition:
        """Apply the given changes and bump the version.

        Omitted arguments keep their current value; pass ``None`` to clear
        a threshold.
        """
        current = self.get_definition(definition_id)
        changes: dict[str, Any] = {}
        if name is not _UNSET:
            changes["name"] = name
        if description is not _UNSET:
            changes["description"] = description
        if steps is not _UNSET:
            changes["steps"] = _coerce_steps(steps)
        if auto_approve_threshold is not _UNSET:
            changes["auto_approve_threshold"] = _coerce_amount(auto_approve_threshold)
        if require_approval_above is not _UNSET:
            changes["require_approval_above"] = _coerce_amount(require_approval_above)
        if selection_conditions is not _UNSET:
            changes["selection_conditions"] = _coerce_conditions(selection_conditions)
        if is_default is not _UNSET:
            changes["is_default"] = is_default
        if is_active is not _UNSET:
            changes["is_active"] = is_active

        updated = replace(current, version=current.version + 1, **changes)
        if updated.is_default and not updated.is_active:
            raise InvalidDefinitionError(updated.name, ["an inactive definition cannot be the default"])
        ensure_valid_definition(updated)

        if updated.is_default and not current.is_default:
            self._clear_other_defaults(updated)
        self._repository.save_definition(updated)

        logger.info(
            "definition_updated",
            extra={
                "definition_id": str(definition_id),
                "version": updated.version,
                "changed": sorted(changes),
            },
        )
        return updated

    def deactivate_definition(self, definition_id: UUID) -> WorkflowDefinition:
        current = self.get_definition(definition_id)
        if not current.is_active:
            return current
        return self.update_definition(definition_id, is_active=False, is_default=False)

    def get_definition(self, definition_id: UUID) -> WorkflowDefinition:
        definition = self._repository.get_definition(definition_id)
        if definition is None:
            raise WorkflowNotFoundError(str(definition_id))
        return definition

    def list_definitions(
        self,
        tenant_id: UUID,
        include_inactive: bool = False,
    ) -> list[WorkflowDefinition]:
        """Tenant definitions, default first, then by name."""
        definitions = [
            d for d in self._repository.load_definitions(tenant_id)
            if include_inactive or d.is_active
        ]
        return sorted(definitions, key=lambda d: (not d.is_default, d.name, str(d.definition_id)))

    def import_definitions(
        self, definitions: Iterable[WorkflowDefinition],
    ) -> list[WorkflowDefinition]:
        """Store pre-built definitions (e.g. from ``approval_config.loader``).

        The whole set is validated before anything is written.
        """
        items = list(definitions)
        result = validate_definitions(items)
        if not result.is_valid:
            raise InvalidDefinitionError("import", result.errors)
        for definition in items:
            ensure_valid_definition(definition)
        for definition in items:
            self._repository.save_definition(definition)
        logger.info("definitions_imported", extra={"count": len(items)})
        return items

    def _clear_other_defaults(self, definition: WorkflowDefinition) -> None:
        for other in self._repository.load_definitions(definition.tenant_id):
            if other.definition_id != definition.definition_id and other.is_default:
                self._repository.save_definition(
                    replace(other, is_default=False, version=other.version + 1)
                )
                logger.info(
                    "definition_default_cleared",
                    extra={"definition_id": str(other.definition_id)},
                )
