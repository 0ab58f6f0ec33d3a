"""
Typed Exception Hierarchy for the Approval Kernel.

===============================================================================
WHY TYPED EXCEPTIONS
===============================================================================

The approval engine is called by an API layer that must map every failure
to a precise response: a stale step is retried, a missing comment is shown
to the user, a broken workflow configuration blocks submission.  Callers
must never parse message strings to tell these apart.

Every exception therefore:
  1. Has a TYPED class (catch by type, not message)
  2. Has a CODE class attribute (machine-readable, API-safe)
  3. Carries structured DATA as attributes (not just a message string)

Example:
    try:
        engine.record_decision(execution_id, 2, actor, "approve")
    except ConflictError as e:
        # Re-read and retry with fresh state
        api_response(status=409, code=e.code)
    except AuthorizationError as e:
        api_response(status=403, code=e.code, step=e.step_order)

===============================================================================
EXCEPTION HIERARCHY
===============================================================================

    ApprovalWorkflowError (base)
    |
    +-- ValidationError
    |   +-- MissingCommentsError
    |   +-- InvalidDecisionActionError
    |
    +-- ConflictError
    |   +-- ExecutionAlreadyDecidedError
    |   +-- StaleStepError
    |   +-- DuplicateActiveExecutionError
    |   +-- DuplicateDecisionError
    |   +-- OptimisticLockError
    |
    +-- AuthorizationError
    |   +-- UnauthorizedApproverError
    |
    +-- NotFoundError
    |   +-- ExecutionNotFoundError
    |   +-- WorkflowNotFoundError
    |   +-- InvoiceNotFoundError
    |   +-- InvoiceExecutionNotFoundError
    |
    +-- ConfigurationError
    |   +-- NoApplicableWorkflowError
    |   +-- InvalidConditionError
    |   +-- InconsistentThresholdsError
    |   +-- InvalidDefinitionError
    |
    +-- TransientError
    |   +-- RepositoryUnavailableError
    |
    +-- ImmutabilityViolationError

===============================================================================
ERROR CODES - QUICK REFERENCE
===============================================================================

Category       | Code                         | When Raised
---------------|------------------------------|------------------------------------
Validation     | MISSING_COMMENTS             | Reject without comments
               | INVALID_DECISION_ACTION      | Action not approve/reject
---------------|------------------------------|------------------------------------
Conflict       | EXECUTION_ALREADY_DECIDED    | Execution is terminal
               | STALE_STEP                   | step_order != current_step
               | DUPLICATE_ACTIVE_EXECUTION   | Invoice already has a pending run
               | DUPLICATE_DECISION           | Audit row for step already exists
               | OPTIMISTIC_LOCK_CONFLICT     | Revision changed since read
---------------|------------------------------|------------------------------------
Authorization  | UNAUTHORIZED_APPROVER        | Actor cannot satisfy role/user
---------------|------------------------------|------------------------------------
Not found      | EXECUTION_NOT_FOUND          | Unknown execution id
               | WORKFLOW_NOT_FOUND           | Unknown definition id
               | INVOICE_NOT_FOUND            | Unknown invoice id
               | INVOICE_EXECUTION_NOT_FOUND  | Invoice never submitted
---------------|------------------------------|------------------------------------
Configuration  | NO_APPLICABLE_WORKFLOW       | Selector found nothing, no default
               | INVALID_CONDITION            | Malformed condition expression
               | INCONSISTENT_THRESHOLDS      | auto_approve > require_approval
               | INVALID_DEFINITION           | Step orders, approvers, names
---------------|------------------------------|------------------------------------
Transient      | REPOSITORY_UNAVAILABLE       | Storage timeout / connection loss
---------------|------------------------------|------------------------------------
Immutability   | IMMUTABILITY_VIOLATION       | Modifying an audit record

===============================================================================
HANDLING PATTERNS
===============================================================================

1. ConflictError is retryable: re-read the execution and re-attempt.
2. TransientError is retryable after back-off; state was not changed.
3. ConfigurationError is user-visible and blocks invoice submission until
   the tenant fixes its workflow configuration.
4. Everything else is a caller bug or a business refusal; do not retry.
"""


class ApprovalWorkflowError(Exception):
    """
    Base exception for all approval workflow errors.

    All subclasses must have a `code` class attribute for machine-readable
    error identification.
    """

    code: str = "APPROVAL_WORKFLOW_ERROR"


# Validation-related exceptions


class ValidationError(ApprovalWorkflowError):
    """Malformed input to an engine operation."""

    code: str = "VALIDATION_ERROR"


class MissingCommentsError(ValidationError):
    """A rejection (or cancellation) was attempted without comments."""

    code: str = "MISSING_COMMENTS"

    def __init__(self, execution_id: str, action: str):
        self.execution_id = execution_id
        self.action = action
        super().__init__(
            f"Comments are required to {action} execution {execution_id}"
        )


class InvalidDecisionActionError(ValidationError):
    """Decision action is not one of the supported actions."""

    code: str = "INVALID_DECISION_ACTION"

    def __init__(self, action: str):
        self.action = action
        super().__init__(f"Unsupported decision action: '{action}'")


# Conflict-related exceptions


class ConflictError(ApprovalWorkflowError):
    """
    The operation lost against concurrent or prior state.

    Callers are expected to re-read and retry rather than treat this as fatal.
    """

    code: str = "CONFLICT"


class ExecutionAlreadyDecidedError(ConflictError):
    """The execution is terminal and cannot be mutated again."""

    code: str = "EXECUTION_ALREADY_DECIDED"

    def __init__(self, execution_id: str, status: str):
        self.execution_id = execution_id
        self.status = status
        super().__init__(
            f"Execution {execution_id} already decided (status={status})"
        )


class StaleStepError(ConflictError):
    """The decision targets a step other than the current one."""

    code: str = "STALE_STEP"

    def __init__(self, execution_id: str, step_order: int, current_step: int):
        self.execution_id = execution_id
        self.step_order = step_order
        self.current_step = current_step
        super().__init__(
            f"Step {step_order} of execution {execution_id} already decided "
            f"or out of order (current step is {current_step})"
        )


class DuplicateActiveExecutionError(ConflictError):
    """The invoice already has a non-terminal execution."""

    code: str = "DUPLICATE_ACTIVE_EXECUTION"

    def __init__(self, invoice_id: str):
        self.invoice_id = invoice_id
        super().__init__(f"Invoice {invoice_id} already has an active execution")


class DuplicateDecisionError(ConflictError):
    """An audit record for this (execution, step) already exists."""

    code: str = "DUPLICATE_DECISION"

    def __init__(self, execution_id: str, step_order: int | None):
        self.execution_id = execution_id
        self.step_order = step_order
        super().__init__(
            f"Decision for step {step_order} of execution {execution_id} "
            "already recorded"
        )


class OptimisticLockError(ConflictError):
    """Compare-and-swap write lost: the revision changed since it was read."""

    code: str = "OPTIMISTIC_LOCK_CONFLICT"

    def __init__(self, entity_type: str, entity_id: str, expected_revision: int):
        self.entity_type = entity_type
        self.entity_id = entity_id
        self.expected_revision = expected_revision
        super().__init__(
            f"Optimistic lock conflict on {entity_type} {entity_id}: "
            f"revision {expected_revision} was modified by another transaction"
        )


# Authorization-related exceptions


class AuthorizationError(ApprovalWorkflowError):
    """Actor cannot satisfy the required role or user."""

    code: str = "AUTHORIZATION_ERROR"


class UnauthorizedApproverError(AuthorizationError):
    """Actor is not an eligible approver for the current step."""

    code: str = "UNAUTHORIZED_APPROVER"

    def __init__(
        self,
        actor_id: str,
        execution_id: str,
        step_order: int,
        required: str,
    ):
        self.actor_id = actor_id
        self.execution_id = execution_id
        self.step_order = step_order
        self.required = required
        super().__init__(
            f"Actor {actor_id} is not authorized for step {step_order} of "
            f"execution {execution_id} (requires {required})"
        )


# Lookup-related exceptions


class NotFoundError(ApprovalWorkflowError):
    """Referenced entity does not exist."""

    code: str = "NOT_FOUND"


class ExecutionNotFoundError(NotFoundError):
    code: str = "EXECUTION_NOT_FOUND"

    def __init__(self, execution_id: str):
        self.execution_id = execution_id
        super().__init__(f"Workflow execution not found: {execution_id}")


class WorkflowNotFoundError(NotFoundError):
    code: str = "WORKFLOW_NOT_FOUND"

    def __init__(self, definition_id: str):
        self.definition_id = definition_id
        super().__init__(f"Workflow definition not found: {definition_id}")


class InvoiceNotFoundError(NotFoundError):
    code: str = "INVOICE_NOT_FOUND"

    def __init__(self, invoice_id: str):
        self.invoice_id = invoice_id
        super().__init__(f"Invoice not found: {invoice_id}")


class InvoiceExecutionNotFoundError(NotFoundError):
    """The invoice has never entered an approval workflow."""

    code: str = "INVOICE_EXECUTION_NOT_FOUND"

    def __init__(self, invoice_id: str):
        self.invoice_id = invoice_id
        super().__init__(f"No workflow execution for invoice: {invoice_id}")


# Configuration-related exceptions


class ConfigurationError(ApprovalWorkflowError):
    """
    Tenant workflow configuration is unusable.

    User-visible; blocks invoice submission until fixed.
    """

    code: str = "CONFIGURATION_ERROR"


class NoApplicableWorkflowError(ConfigurationError):
    code: str = "NO_APPLICABLE_WORKFLOW"

    def __init__(self, tenant_id: str, invoice_id: str):
        self.tenant_id = tenant_id
        self.invoice_id = invoice_id
        super().__init__(
            f"no applicable workflow for invoice {invoice_id} "
            f"in tenant {tenant_id}"
        )


class InvalidConditionError(ConfigurationError):
    """Condition expression is malformed or uses an unknown operator."""

    code: str = "INVALID_CONDITION"

    def __init__(self, condition: str, reason: str):
        self.condition = condition
        self.reason = reason
        super().__init__(f"Invalid condition {condition}: {reason}")


class InconsistentThresholdsError(ConfigurationError):
    """auto_approve_threshold exceeds require_approval_above."""

    code: str = "INCONSISTENT_THRESHOLDS"

    def __init__(
        self,
        definition_name: str,
        auto_approve_threshold: str,
        require_approval_above: str,
    ):
        self.definition_name = definition_name
        self.auto_approve_threshold = auto_approve_threshold
        self.require_approval_above = require_approval_above
        super().__init__(
            f"Workflow '{definition_name}': auto_approve_threshold "
            f"{auto_approve_threshold} exceeds require_approval_above "
            f"{require_approval_above}"
        )


class InvalidDefinitionError(ConfigurationError):
    """Workflow definition fails structural validation."""

    code: str = "INVALID_DEFINITION"

    def __init__(self, definition_name: str, errors: list[str]):
        self.definition_name = definition_name
        self.errors = list(errors)
        super().__init__(
            f"Invalid workflow definition '{definition_name}': "
            + "; ".join(self.errors)
        )


# Transient exceptions


class TransientError(ApprovalWorkflowError):
    """Infrastructure failure; state was not changed, retry later."""

    code: str = "TRANSIENT_ERROR"


class RepositoryUnavailableError(TransientError):
    code: str = "REPOSITORY_UNAVAILABLE"

    def __init__(self, operation: str, reason: str):
        self.operation = operation
        self.reason = reason
        super().__init__(f"Repository unavailable during {operation}: {reason}")


# Immutability-related exceptions


class ImmutabilityViolationError(ApprovalWorkflowError):
    """Attempted to modify or delete an append-only record."""

    code: str = "IMMUTABILITY_VIOLATION"

    def __init__(self, entity_type: str, entity_id: str, reason: str):
        self.entity_type = entity_type
        self.entity_id = entity_id
        self.reason = reason
        super().__init__(
            f"Immutability violation on {entity_type} {entity_id}: {reason}"
        )
