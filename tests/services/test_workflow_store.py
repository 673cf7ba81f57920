"""
Tests for WorkflowStore persistence.

Covers:
- Instance, chain and revision round-trips
- Append-only history storage
- Pending-chain lookup by principal
- Not-found errors
- ORM-level immutability of recorded transitions and cycles
"""

from dataclasses import replace
from decimal import Decimal

import pytest
from sqlalchemy import select

from workflow_engines.approval_chain import advance_chain, create_approval_chain
from workflow_engines.state_machine import StateMachine
from workflow_engines.thresholds import DualThresholdPolicy
from workflow_kernel.domain.approval import Approver
from workflow_kernel.domain.state_machine import Actor
from workflow_kernel.exceptions import (
    ChainNotFoundError,
    HistoryRewriteError,
    InstanceNotFoundError,
    RevisionNotFoundError,
)
from workflow_kernel.models import (
    ApprovalCycleModel,
    StateHistoryModel,
    WorkflowInstanceModel,
    lifecycle_instance_id,
)
from workflow_kernel.utils.hashing import fingerprint
from workflow_modules import PURCHASE_ORDER_STATUS
from workflow_services.revision_workflow import RevisionWorkflow

APPROVERS = (
    Approver("mgr-001", "Dana", "manager", level=1),
    Approver("dir-001", "Sam", "director", level=2),
)


@pytest.fixture
def po_machine(clock, ids):
    return StateMachine(PURCHASE_ORDER_STATUS, clock=clock, id_generator=ids)


@pytest.fixture
def workflow(clock, ids):
    return RevisionWorkflow(DualThresholdPolicy(), APPROVERS, clock=clock, id_generator=ids)


# =============================================================================
# Instances
# =============================================================================


class TestInstances:

    def test_round_trip(self, store, po_machine, clock):
        instance = po_machine.create({"document_id": "po-1", "amount": Decimal("10.50")})
        clock.advance(seconds=30)
        instance = po_machine.transition(
            instance, "submit", actor=Actor("u1", name="Pat"), notes="go",
            payload={"n": 1, "lines": [{"sku": "A", "qty": 2}]},
        ).instance

        store.save_instance("po-1", instance)
        loaded = store.load_instance("po-1")

        assert loaded.current_state == "pending_approval"
        assert loaded.history == instance.history
        assert loaded.created_at == instance.created_at
        assert loaded.created_at.tzinfo is not None
        assert loaded.metadata == {"document_id": "po-1", "amount": "10.50"}
        assert fingerprint(loaded) == fingerprint(instance)
        with pytest.raises(TypeError):
            loaded.metadata["document_id"] = "po-2"

    def test_update_appends_history(self, store, po_machine, session_factory):
        first = po_machine.transition(po_machine.create(), "submit").instance
        store.save_instance("po-1", first)
        second = po_machine.transition(first, "approve").instance

        store.save_instance("po-1", second, base=first)

        assert store.load_instance("po-1").current_state == "approved"
        with session_factory() as session:
            rows = session.scalars(
                select(StateHistoryModel).where(StateHistoryModel.instance_id == "po-1")
            ).all()
        assert [(r.sequence, r.action) for r in rows] == [(0, "submit"), (1, "approve")]

    def test_load_unknown(self, store):
        with pytest.raises(InstanceNotFoundError):
            store.load_instance("missing")

    def test_saved_logged(self, store, po_machine, captured_logs):
        store.save_instance("po-1", po_machine.create())
        record = [r for r in captured_logs() if r["message"] == "workflow_instance_saved"][0]
        assert record["instance_id"] == "po-1"
        assert record["definition_id"] == "purchase-order-status"
        assert record["history_length"] == 0


class TestHistoryRowImmutability:

    def test_history_row_cannot_be_updated(self, store, po_machine, session_factory):
        store.save_instance("po-1", po_machine.transition(po_machine.create(), "submit").instance)
        with session_factory() as session:
            row = session.get(StateHistoryModel, ("po-1", 0))
            row.notes = "rewritten"
            with pytest.raises(HistoryRewriteError):
                session.flush()
            session.rollback()

    def test_history_row_cannot_be_deleted(self, store, po_machine, session_factory):
        store.save_instance("po-1", po_machine.transition(po_machine.create(), "submit").instance)
        with session_factory() as session:
            session.delete(session.get(StateHistoryModel, ("po-1", 0)))
            with pytest.raises(HistoryRewriteError):
                session.flush()
            session.rollback()


# =============================================================================
# Chains
# =============================================================================


class TestChains:

    def test_round_trip(self, store, two_level_chain, clock):
        chain = advance_chain(two_level_chain, "mgr-001", "approve", notes="ok", clock=clock)
        store.save_chain(two_level_chain)
        store.save_chain(chain, base=two_level_chain)

        loaded = store.load_chain(chain.id)
        assert loaded == chain

    def test_load_unknown(self, store):
        with pytest.raises(ChainNotFoundError):
            store.load_chain("missing")

    def test_pending_lookup_respects_current_level(self, store, two_level_chain, clock):
        store.save_chain(two_level_chain)
        assert [c.id for c in store.find_pending_chains_for_principal("mgr-001")] == [two_level_chain.id]
        assert store.find_pending_chains_for_principal("dir-001") == []

        advanced = advance_chain(two_level_chain, "mgr-001", "approve", clock=clock)
        store.save_chain(advanced, base=two_level_chain)
        assert store.find_pending_chains_for_principal("mgr-001") == []
        assert [c.id for c in store.find_pending_chains_for_principal("dir-001")] == [advanced.id]

    def test_completed_chains_excluded(self, store, two_level_chain, clock):
        store.save_chain(two_level_chain)
        rejected = advance_chain(two_level_chain, "mgr-001", "reject", clock=clock)
        store.save_chain(rejected, base=two_level_chain)
        assert store.find_pending_chains_for_principal("dir-001") == []

    def test_pending_lookup_ordered_by_start(self, store, clock, ids):
        older = create_approval_chain("rev-a", APPROVERS, clock=clock, id_generator=ids)
        clock.advance(seconds=60)
        newer = create_approval_chain("rev-b", APPROVERS, clock=clock, id_generator=ids)
        store.save_chain(newer)
        store.save_chain(older)

        found = store.find_pending_chains_for_principal("mgr-001")
        assert [c.revision_id for c in found] == ["rev-a", "rev-b"]

    def test_resolved_step_cannot_change(self, store, two_level_chain, clock):
        store.save_chain(two_level_chain)
        approved = advance_chain(two_level_chain, "mgr-001", "approve", notes="ok", clock=clock)
        store.save_chain(approved, base=two_level_chain)

        steps = (replace(approved.steps[0], notes="edited later"),) + approved.steps[1:]
        forged = replace(approved, steps=steps)
        with pytest.raises(HistoryRewriteError):
            store.save_chain(forged, base=approved)
        assert store.load_chain(approved.id) == approved


# =============================================================================
# Revisions
# =============================================================================


class TestRevisions:

    def _pending(self, workflow):
        draft = workflow.create_draft("po-1", "buyer-1", Decimal("1000"))
        draft = workflow.record_change(
            draft, "unitPrice", Decimal("10.00"), Decimal("10.60"),
            changed_by="buyer-1", revised_total=Decimal("1060"),
        )
        return draft, workflow.submit(draft, "buyer-1").revision

    def test_draft_round_trip(self, store, workflow):
        draft = workflow.create_draft("po-1", "buyer-1", Decimal("1000.00"))
        store.save_revision(draft)

        loaded = store.load_revision(draft.id)
        assert loaded == draft
        assert loaded.baseline_total == Decimal("1000.00")

    def test_change_values_come_back_json_typed(self, store, workflow):
        draft, pending = self._pending(workflow)
        store.save_revision(pending)

        change = store.load_revision(pending.id).changes[0]
        assert change.previous_value == "10.00"
        assert change.new_value == "10.60"
        assert change.changed_at == pending.changes[0].changed_at
        assert fingerprint(store.load_revision(pending.id)) == fingerprint(pending)

    def test_full_lifecycle_saved_step_by_step(self, store, workflow, session_factory):
        draft, pending = self._pending(workflow)
        store.save_revision(draft)
        store.save_revision(pending, base=draft)
        first = workflow.act(store.load_revision(pending.id), "mgr-001", "approve").revision
        store.save_revision(first, base=pending)
        approved = workflow.act(first, "dir-001", "approve").revision
        store.save_revision(approved, base=first)

        loaded = store.load_revision(approved.id)
        assert loaded.status.value == "approved"
        assert loaded.approval_chain.is_complete
        assert [c.outcome.value for c in loaded.approval_history] == ["approved"]
        assert [e.action for e in loaded.lifecycle.history] == ["submit", "approve"]
        with session_factory() as session:
            lifecycle = session.get(WorkflowInstanceModel, lifecycle_instance_id(approved.id))
            assert lifecycle.current_state == "approved"

    def test_resubmission_keeps_earlier_cycle(self, store, workflow):
        draft, pending = self._pending(workflow)
        store.save_revision(pending)
        returned = workflow.act(pending, "mgr-001", "request_changes", notes="fix").revision
        store.save_revision(returned, base=pending)
        resubmitted = workflow.submit(returned, "buyer-1", resolution="fixed").revision
        store.save_revision(resubmitted, base=returned)

        loaded = store.load_revision(resubmitted.id)
        assert [c.cycle_number for c in loaded.approval_history] == [1, 2]
        assert loaded.approval_history[0].feedback == "fix"
        assert loaded.approval_chain.id == resubmitted.approval_chain.id
        assert store.load_chain(pending.approval_chain.id).is_complete

    def test_list_revisions(self, store, workflow, clock):
        first = workflow.create_draft("po-1", "buyer-1", 1000)
        clock.advance(seconds=10)
        second = workflow.create_draft("po-1", "buyer-1", 1000, previous_version="1.0")
        other = workflow.create_draft("po-2", "buyer-1", 5)
        for revision in (second, other, first):
            store.save_revision(revision)

        assert [r.version for r in store.list_revisions("po-1")] == ["1.0", "1.1"]
        assert store.list_revisions("po-9") == []

    def test_load_unknown(self, store):
        with pytest.raises(RevisionNotFoundError):
            store.load_revision("missing")

    def test_cycle_row_cannot_be_deleted(self, store, workflow, session_factory):
        draft, pending = self._pending(workflow)
        store.save_revision(pending)
        with session_factory() as session:
            session.delete(session.get(ApprovalCycleModel, (pending.id, 1)))
            with pytest.raises(HistoryRewriteError):
                session.flush()
            session.rollback()
