"""
approval_engines.approver -- Step-level approver authorization.

Responsibility:
    Map an approval step's requirement (specific user or hierarchy role)
    to an authorization answer, delegating role questions to the injected
    RoleResolver.

Architecture position:
    Engines -- pure.  The RoleResolver is passed in explicitly on every
    call; there is no global RBAC state.

Failure modes:
    - Never raises.  Unknown actors, unknown roles and resolver failures
      all answer False; the engine turns False into
      UnauthorizedApproverError.
"""

from __future__ import annotations

from approval_kernel.domain.protocols import RoleResolver
from approval_kernel.domain.workflow import ApprovalStep
from approval_kernel.logging_config import get_logger

logger = get_logger("engines.approver")


def is_authorized(
    actor_id: str,
    step: ApprovalStep,
    role_resolver: RoleResolver,
) -> bool:
    """Check if ``actor_id`` may decide ``step``.

    A user-specific step requires an exact actor match.  A role step
    accepts the role itself or any higher role in the hierarchy.
    """
    if not actor_id:
        return False
    if step.approver_user_id is not None:
        return actor_id == step.approver_user_id
    if step.approver_role is None:
        return False
    try:
        return bool(role_resolver.is_authorized_for_role(actor_id, step.approver_role))
    except Exception:
        logger.warning(
            "role_resolver_failed",
            extra={"actor_id": actor_id, "required_role": step.approver_role},
            exc_info=True,
        )
        return False


def has_eligible_approver(step: ApprovalStep, role_resolver: RoleResolver) -> bool:
    """True if anyone could decide ``step``; False on resolver failure."""
    try:
        if step.approver_user_id is not None:
            return bool(role_resolver.is_known_actor(step.approver_user_id))
        if step.approver_role is None:
            return False
        return bool(role_resolver.has_actor_for_role(step.approver_role))
    except Exception:
        logger.warning(
            "role_resolver_failed",
            extra={"step_order": step.step_order, "required": step.approver_label},
            exc_info=True,
        )
        return False
