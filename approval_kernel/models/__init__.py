"""ORM models for the approval kernel."""

from approval_kernel.models.workflow import (
    ApprovalDecisionModel,
    StepExecutionModel,
    WorkflowDefinitionModel,
    WorkflowExecutionModel,
)

__all__ = [
    "ApprovalDecisionModel",
    "StepExecutionModel",
    "WorkflowDefinitionModel",
    "WorkflowExecutionModel",
]
