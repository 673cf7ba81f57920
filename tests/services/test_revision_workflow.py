"""
Tests for the revision lifecycle coordinator.

Covers drafting and re-versioning, threshold-gated submission,
approval chain actions with multi-cycle history, delivery transitions
and configuration-driven construction.
"""

from decimal import Decimal

import pytest

from workflow_config import load_default_configuration
from workflow_engines.thresholds import BandedTierPolicy, DualThresholdPolicy
from workflow_kernel.domain.approval import (
    ApprovalStepStatus,
    Approver,
    ChainOutcome,
    CycleOutcome,
    SameLevelPolicy,
)
from workflow_kernel.domain.revision import RevisionStatus
from workflow_kernel.exceptions import (
    ApprovalChainCompleteError,
    ChainNotFoundError,
    RevisionNotEditableError,
)
from workflow_services.revision_workflow import RevisionWorkflow

APPROVERS = (
    Approver("mgr-001", "Dana", "manager", level=1),
    Approver("dir-001", "Sam", "director", level=2),
)


@pytest.fixture
def workflow(clock, ids):
    return RevisionWorkflow(DualThresholdPolicy(), APPROVERS, clock=clock, id_generator=ids)


def _over_threshold_draft(workflow, **kwargs):
    draft = workflow.create_draft("po-1", "buyer-1", Decimal("1000"), **kwargs)
    return workflow.record_change(
        draft, "unitPrice", "10.00", "10.60", changed_by="buyer-1", revised_total=Decimal("1060"),
    )


def _pending(workflow):
    return workflow.submit(_over_threshold_draft(workflow), "buyer-1").revision


# =============================================================================
# Drafting
# =============================================================================


class TestDrafting:

    def test_first_draft(self, workflow, clock):
        draft = workflow.create_draft("po-1", "buyer-1", "1000")
        assert draft.version == "1.0"
        assert draft.status == RevisionStatus.DRAFT
        assert draft.baseline_total == draft.revised_total == Decimal("1000")
        assert draft.previous_version is None
        assert draft.created_at == clock.now()
        assert draft.lifecycle.metadata == {"document_id": "po-1"}

    def test_next_draft_starts_at_minor(self, workflow):
        draft = workflow.create_draft("po-1", "buyer-1", 1000, previous_version="2.3")
        assert draft.version == "2.4"

    def test_critical_change_bumps_major(self, workflow):
        draft = workflow.create_draft("po-1", "buyer-1", 1000, previous_version="2.3")
        draft = workflow.record_change(draft, "notes", "", "rush", changed_by="buyer-1")
        assert draft.version == "2.4"
        draft = workflow.record_change(draft, "quantity", 5, 6, changed_by="buyer-1", line_id="l-1")
        assert draft.version == "3.0"
        assert [c.is_critical for c in draft.changes] == [False, True]
        assert draft.changes[1].line_id == "l-1"
        assert draft.has_critical_changes

    def test_first_revision_keeps_initial_version(self, workflow):
        draft = workflow.create_draft("po-1", "buyer-1", 1000)
        draft = workflow.record_change(draft, "quantity", 5, 6, changed_by="buyer-1")
        assert draft.version == "1.0"

    def test_revised_total_tracked(self, workflow):
        draft = _over_threshold_draft(workflow)
        assert draft.revised_total == Decimal("1060")
        unchanged_total = workflow.record_change(draft, "notes", None, "x", changed_by="b")
        assert unchanged_total.revised_total == Decimal("1060")

    def test_custom_critical_fields(self, clock, ids):
        workflow = RevisionWorkflow(
            DualThresholdPolicy(), APPROVERS, critical_fields={"deliveryDate"},
            clock=clock, id_generator=ids,
        )
        draft = workflow.create_draft("po-1", "b", 100, previous_version="1.0")
        draft = workflow.record_change(draft, "deliveryDate", "2024-02-01", "2024-03-01", changed_by="b")
        assert draft.version == "2.0"

    def test_changes_only_on_drafts(self, workflow):
        pending = _pending(workflow)
        with pytest.raises(RevisionNotEditableError) as exc:
            workflow.record_change(pending, "quantity", 1, 2, changed_by="b")
        assert exc.value.status == "pending_approval"


# =============================================================================
# Submission
# =============================================================================


class TestSubmit:

    def test_within_threshold_auto_approves(self, workflow):
        draft = workflow.create_draft("po-1", "buyer-1", 1000)
        draft = workflow.record_change(draft, "notes", "", "x", changed_by="buyer-1", revised_total=1010)

        outcome = workflow.submit(draft, "buyer-1")

        assert outcome.success
        assert outcome.revision.status == RevisionStatus.APPROVED
        assert outcome.revision.approval_chain is None
        assert outcome.revision.approval_history == ()
        assert not outcome.requirement.requires_approval
        entry = outcome.revision.lifecycle.history[-1]
        assert entry.action == "auto_approve"
        assert entry.payload["approval_required"] is False

    def test_over_threshold_opens_chain_and_cycle(self, workflow, clock):
        draft = _over_threshold_draft(workflow)

        outcome = workflow.submit(draft, "buyer-1", notes="price increase")

        revision = outcome.revision
        assert outcome.success
        assert outcome.requirement.requires_approval
        assert revision.status == RevisionStatus.PENDING_APPROVAL
        assert [s.approver.id for s in revision.approval_chain.steps] == ["mgr-001", "dir-001"]
        assert revision.approval_chain.revision_id == revision.id
        cycle = revision.current_cycle
        assert cycle.cycle_number == 1
        assert cycle.submitted_by == "buyer-1"
        assert cycle.submission_notes == "price increase"
        entry = revision.lifecycle.history[-1]
        assert entry.payload["chain_id"] == revision.approval_chain.id
        assert entry.notes == "price increase"

    def test_submit_without_changes_fails(self, workflow):
        draft = workflow.create_draft("po-1", "buyer-1", 1000)
        outcome = workflow.submit(draft, "buyer-1")
        assert not outcome.success
        assert outcome.result.reason == "Revision has no changes to submit"
        assert outcome.revision is draft

    def test_illegal_submit_builds_no_chain(self, workflow):
        pending = _pending(workflow)
        outcome = workflow.submit(pending, "buyer-1")
        assert not outcome.success
        assert outcome.revision is pending
        assert outcome.result.reason == "No transition 'submit' from state 'pending_approval'"

    def test_submission_logged(self, workflow, captured_logs):
        revision = _pending(workflow)
        record = [r for r in captured_logs() if r["message"] == "revision_submitted"][0]
        assert record["revision_id"] == revision.id
        assert record["actor_id"] == "buyer-1"
        assert record["cycle_number"] == 1
        assert record["policy_name"] == "dual_threshold"

    def test_input_revision_unchanged(self, workflow):
        draft = _over_threshold_draft(workflow)
        workflow.submit(draft, "buyer-1")
        assert draft.status == RevisionStatus.DRAFT
        assert draft.approval_chain is None


# =============================================================================
# Approver actions
# =============================================================================


class TestAct:

    def test_intermediate_approval_keeps_pending(self, workflow):
        pending = _pending(workflow)
        outcome = workflow.act(pending, "mgr-001", "approve")

        assert outcome.success
        assert outcome.result is None
        assert outcome.revision.status == RevisionStatus.PENDING_APPROVAL
        assert outcome.revision.approval_chain.current_level == 2
        assert outcome.revision.current_cycle is not None

    def test_full_approval(self, workflow, clock):
        revision = _pending(workflow)
        revision = workflow.act(revision, "mgr-001", "approve").revision
        clock.advance(seconds=3600)
        outcome = workflow.act(revision, "dir-001", "approve", notes="fine")

        revision = outcome.revision
        assert outcome.result.success
        assert revision.status == RevisionStatus.APPROVED
        assert revision.approval_chain.outcome == ChainOutcome.APPROVED
        cycle = revision.approval_history[-1]
        assert cycle.outcome == CycleOutcome.APPROVED
        assert cycle.reviewed_by == "dir-001"
        assert cycle.reviewer_role == "director"
        assert cycle.reviewed_at == clock.now()
        assert revision.current_cycle is None

    def test_reject(self, workflow):
        outcome = workflow.act(_pending(workflow), "mgr-001", "reject", notes="too expensive")
        revision = outcome.revision
        assert revision.status == RevisionStatus.REJECTED
        assert revision.approval_history[-1].outcome == CycleOutcome.REJECTED
        assert revision.approval_chain.steps[1].status == ApprovalStepStatus.SKIPPED

    def test_request_changes_then_resubmit(self, workflow):
        revision = workflow.act(
            _pending(workflow), "mgr-001", "request_changes",
            notes="split the line", reviewer_role="Purchasing Manager",
        ).revision
        assert revision.status == RevisionStatus.DRAFT
        first = revision.approval_history[0]
        assert first.outcome == CycleOutcome.CHANGES_REQUESTED
        assert first.feedback == "split the line"
        assert first.reviewer_role == "Purchasing Manager"

        revision = workflow.record_change(revision, "addLine", None, "l-2", changed_by="buyer-1")
        old_chain_id = revision.approval_chain.id
        outcome = workflow.submit(revision, "buyer-1", resolution="line split")

        revision = outcome.revision
        assert revision.status == RevisionStatus.PENDING_APPROVAL
        assert [c.cycle_number for c in revision.approval_history] == [1, 2]
        assert revision.approval_history[0] == first
        assert revision.approval_history[1].resolution == "line split"
        assert revision.approval_chain.id != old_chain_id
        assert not revision.approval_chain.is_complete

    def test_history_counts_every_transition(self, workflow):
        revision = workflow.act(_pending(workflow), "mgr-001", "request_changes").revision
        revision = workflow.submit(revision, "buyer-1").revision
        revision = workflow.act(revision, "mgr-001", "approve").revision
        revision = workflow.act(revision, "dir-001", "approve").revision
        actions = [e.action for e in revision.lifecycle.history]
        assert actions == ["submit", "request_changes", "submit", "approve"]

    def test_no_chain(self, workflow):
        draft = workflow.create_draft("po-1", "buyer-1", 1000)
        with pytest.raises(ChainNotFoundError):
            workflow.act(draft, "mgr-001", "approve")

    def test_completed_chain(self, workflow):
        rejected = workflow.act(_pending(workflow), "mgr-001", "reject").revision
        with pytest.raises(ApprovalChainCompleteError):
            workflow.act(rejected, "dir-001", "approve")

    def test_same_level_any(self, clock, ids):
        workflow = RevisionWorkflow(
            BandedTierPolicy(),
            (Approver("a", "A", "manager"), Approver("b", "B", "manager")),
            same_level_policy=SameLevelPolicy.ANY,
            clock=clock, id_generator=ids,
        )
        revision = _pending(workflow)
        outcome = workflow.act(revision, "b", "approve")
        assert outcome.revision.status == RevisionStatus.APPROVED


# =============================================================================
# Delivery
# =============================================================================


class TestDelivery:

    def _approved(self, workflow):
        draft = workflow.create_draft("po-1", "buyer-1", 1000)
        draft = workflow.record_change(draft, "notes", "", "x", changed_by="buyer-1")
        return workflow.submit(draft, "buyer-1").revision

    def test_send_and_confirm(self, workflow):
        sent = workflow.send(self._approved(workflow), "buyer-1").revision
        assert sent.status == RevisionStatus.SENT
        confirmed = workflow.confirm(sent, "supplier-portal", notes="ack #55").revision
        assert confirmed.status == RevisionStatus.CONFIRMED
        assert confirmed.lifecycle.history[-1].notes == "ack #55"

    def test_decline(self, workflow):
        sent = workflow.send(self._approved(workflow), "buyer-1").revision
        assert workflow.decline(sent, "supplier-portal").revision.status == RevisionStatus.REJECTED

    def test_cannot_send_pending(self, workflow):
        outcome = workflow.send(_pending(workflow), "buyer-1")
        assert not outcome.success
        assert outcome.revision.status == RevisionStatus.PENDING_APPROVAL


# =============================================================================
# Capabilities
# =============================================================================


class TestCapabilities:

    def test_over_threshold_draft(self, workflow):
        caps = workflow.capabilities(_over_threshold_draft(workflow))
        assert caps.enabled_actions() == ("submit",)
        auto = [a for a in caps.available_actions if a.action == "auto_approve"][0]
        assert "exceeds" in auto.disabled_reason

    def test_within_threshold_draft(self, workflow):
        draft = workflow.create_draft("po-1", "b", 1000)
        draft = workflow.record_change(draft, "notes", "", "x", changed_by="b")
        assert workflow.capabilities(draft).enabled_actions() == ("auto_approve",)

    def test_pending_before_chain_completes(self, workflow):
        caps = workflow.capabilities(_pending(workflow))
        assert caps.current_state_label == "Pending Approval"
        assert caps.enabled_actions() == ()

    def test_rejected_is_terminal(self, workflow):
        rejected = workflow.act(_pending(workflow), "mgr-001", "reject").revision
        caps = workflow.capabilities(rejected)
        assert caps.is_terminal
        assert not caps.can_transition


# =============================================================================
# Configuration
# =============================================================================


class TestFromConfig:

    def test_purchase_order(self, clock, ids):
        workflow = RevisionWorkflow.from_config(
            load_default_configuration(), "purchase_order", clock=clock, id_generator=ids,
        )
        assert workflow.threshold_policy.name == "dual_threshold"
        revision = _pending(workflow)
        assert [s.approver.id for s in revision.approval_chain.steps] == ["mgr-001", "dir-001"]

    def test_sales_order_uses_banded_tier(self, clock, ids):
        workflow = RevisionWorkflow.from_config(
            load_default_configuration(), "sales_order", clock=clock, id_generator=ids,
        )
        assert workflow.threshold_policy.name == "banded_tier"
        revision = _pending(workflow)
        assert revision.approval_chain.same_level_policy == SameLevelPolicy.ANY

    def test_unknown_document_type(self):
        with pytest.raises(KeyError):
            RevisionWorkflow.from_config(load_default_configuration(), "invoice")
