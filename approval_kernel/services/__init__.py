"""Kernel services: repositories, definition management and the workflow engine."""

from approval_kernel.services.definition_service import WorkflowDefinitionService
from approval_kernel.services.repository import InMemoryWorkflowRepository
from approval_kernel.services.sqlalchemy_repository import SqlAlchemyWorkflowRepository
from approval_kernel.services.workflow_engine import WorkflowExecutionEngine

__all__ = [
    "InMemoryWorkflowRepository",
    "SqlAlchemyWorkflowRepository",
    "WorkflowDefinitionService",
    "WorkflowExecutionEngine",
]
