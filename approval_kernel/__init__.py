"""
Approval Kernel

Invoice approval workflow state, persistence and orchestration:
- Tenant-scoped workflow definitions with snapshot-on-start
- Exactly-once step decisions via revisioned compare-and-swap writes
- Append-only decision audit trail
- Injected RBAC, invoice store and notifier collaborators
"""

__version__ = "0.1.0"
