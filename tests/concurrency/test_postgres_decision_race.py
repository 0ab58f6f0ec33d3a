"""
Decision races against a real PostgreSQL database.

Every racer owns its own connection and session, so the conditional
UPDATE on revision and the partial unique index are exercised under
true concurrency. Skipped unless DATABASE_URL points at PostgreSQL.
"""

import threading

import pytest
from sqlalchemy.orm import sessionmaker

from approval_kernel.domain.workflow import ExecutionStatus
from approval_kernel.exceptions import ConflictError, DuplicateActiveExecutionError
from approval_kernel.services.sqlalchemy_repository import SqlAlchemyWorkflowRepository
from approval_kernel.services.workflow_engine import WorkflowExecutionEngine

pytestmark = pytest.mark.postgres


@pytest.fixture
def engine_factory(postgres_engine, role_resolver, deterministic_clock, tenant_id):
    """Build engines that each own a fresh session; sessions closed at teardown."""
    factory = sessionmaker(bind=postgres_engine, expire_on_commit=False)
    sessions = []

    def _make() -> WorkflowExecutionEngine:
        s = factory()
        sessions.append(s)
        return WorkflowExecutionEngine(
            SqlAlchemyWorkflowRepository(s), role_resolver,
            tenant_id=tenant_id, clock=deterministic_clock,
        )

    yield _make
    for s in sessions:
        s.close()


def _run_together(callables):
    barrier = threading.Barrier(len(callables))
    results = []
    conflicts = []
    unexpected = []

    def worker(fn):
        barrier.wait()
        try:
            results.append(fn())
        except ConflictError as exc:
            conflicts.append(exc)
        except Exception as exc:
            unexpected.append(exc)

    threads = [threading.Thread(target=worker, args=(fn,)) for fn in callables]
    for t in threads:
        t.start()
    for t in threads:
        t.join(timeout=30)
    return results, conflicts, unexpected


class TestPostgresDecisionRace:
    def test_single_winner_per_step(self, engine_factory, make_invoice, make_definition):
        setup = engine_factory()
        execution = setup.create_execution(make_invoice("5000"), make_definition("manager", "admin"))
        racers = [engine_factory() for _ in range(4)]
        actors = ["mgr-1", "mgr-2", "adm-1", "own-1"]

        results, conflicts, unexpected = _run_together([
            (lambda e=e, a=a: e.record_decision(execution.execution_id, 1, a, "approve"))
            for e, a in zip(racers, actors)
        ])

        assert unexpected == []
        assert len(results) == 1
        assert len(conflicts) == 3

        stored = engine_factory().get_execution(execution.execution_id)
        assert stored.revision == 1
        assert stored.current_step == 2
        assert len(engine_factory().get_audit_trail(execution.execution_id)) == 1

    def test_approve_and_cancel_race(self, engine_factory, make_invoice, make_definition):
        setup = engine_factory()
        execution = setup.create_execution(make_invoice("5000"), make_definition("manager"))
        approver, canceller = engine_factory(), engine_factory()

        results, conflicts, unexpected = _run_together([
            lambda: approver.record_decision(execution.execution_id, 1, "mgr-1", "approve"),
            lambda: canceller.cancel(execution.execution_id, "Duplicate submission", "adm-1"),
        ])

        assert unexpected == []
        assert len(results) == 1
        assert len(conflicts) == 1
        stored = engine_factory().get_execution(execution.execution_id)
        assert stored.status in (ExecutionStatus.APPROVED, ExecutionStatus.CANCELLED)
        assert stored.revision == 1


class TestPostgresActiveExecutionIndex:
    def test_concurrent_creates_yield_one_pending(self, engine_factory, make_invoice, make_definition):
        invoice = make_invoice("5000")
        definition = make_definition("manager")
        racers = [engine_factory() for _ in range(3)]

        barrier = threading.Barrier(len(racers))
        created = []
        duplicates = []

        def worker(engine):
            barrier.wait()
            try:
                created.append(engine.create_execution(invoice, definition))
            except DuplicateActiveExecutionError as exc:
                duplicates.append(exc)

        threads = [threading.Thread(target=worker, args=(e,)) for e in racers]
        for t in threads:
            t.start()
        for t in threads:
            t.join(timeout=30)

        assert len(created) == 1
        assert len(duplicates) == 2
        pending = engine_factory().get_invoice_execution(invoice.invoice_id)
        assert pending.execution_id == created[0].execution_id
