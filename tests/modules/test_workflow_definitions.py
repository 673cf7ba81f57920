"""
Tests for the predefined document lifecycles.

Each definition is exercised through the generic engine: happy paths,
multi-source transitions, reopen, and the revision approval gate.
"""

import pytest

from workflow_engines.state_machine import StateMachine, validate_definition
from workflow_kernel.domain.approval import ChainOutcome
from workflow_modules import (
    ALL_DEFINITIONS,
    PURCHASE_ORDER_STATUS,
    REVISION_STATUS,
    RMA_STATUS,
    SALES_ORDER_STATUS,
)


def _machine(definition, clock, ids):
    return StateMachine(definition, clock=clock, id_generator=ids)


@pytest.mark.parametrize("definition", ALL_DEFINITIONS, ids=lambda d: d.id)
def test_definitions_are_valid(definition):
    validate_definition(definition)


@pytest.mark.parametrize("definition", ALL_DEFINITIONS, ids=lambda d: d.id)
def test_every_state_reachable(definition, clock, ids):
    machine = _machine(definition, clock, ids)
    reachable = {definition.initial_state}
    frontier = [definition.initial_state]
    while frontier:
        state = frontier.pop()
        for transition in machine.get_transitions_from(state):
            if transition.to_state not in reachable:
                reachable.add(transition.to_state)
                frontier.append(transition.to_state)
    assert reachable == {s.id for s in definition.states}


# =============================================================================
# Purchase orders
# =============================================================================


class TestPurchaseOrderStatus:

    def test_approval_path(self, clock, ids):
        machine = _machine(PURCHASE_ORDER_STATUS, clock, ids)
        outcome = machine.replay(["submit", "approve", "send", "acknowledge", "start", "complete"])
        assert outcome.result.success
        assert outcome.instance.current_state == "completed"
        assert machine.is_terminal(outcome.instance)

    def test_direct_send(self, clock, ids):
        machine = _machine(PURCHASE_ORDER_STATUS, clock, ids)
        assert machine.replay(["send"]).instance.current_state == "sent"

    def test_reject_returns_to_draft(self, clock, ids):
        machine = _machine(PURCHASE_ORDER_STATUS, clock, ids)
        assert machine.replay(["submit", "reject"]).instance.current_state == "draft"

    @pytest.mark.parametrize("path", [[], ["submit"], ["submit", "approve"]])
    def test_cancel_before_send(self, clock, ids, path):
        machine = _machine(PURCHASE_ORDER_STATUS, clock, ids)
        outcome = machine.replay(path + ["cancel"])
        assert outcome.instance.current_state == "cancelled"

    def test_cannot_cancel_after_send(self, clock, ids):
        machine = _machine(PURCHASE_ORDER_STATUS, clock, ids)
        outcome = machine.replay(["send", "cancel"])
        assert not outcome.result.success
        assert outcome.result.reason == "No transition 'cancel' from state 'sent'"

    def test_reopen(self, clock, ids):
        machine = _machine(PURCHASE_ORDER_STATUS, clock, ids)
        outcome = machine.replay(["cancel", "reopen"])
        assert outcome.instance.current_state == "draft"

    def test_draft_capabilities(self, clock, ids):
        machine = _machine(PURCHASE_ORDER_STATUS, clock, ids)
        caps = machine.get_capabilities(machine.create())
        assert caps.enabled_actions() == ("submit", "send", "cancel")
        assert caps.current_state_label == "Draft"


# =============================================================================
# Sales orders
# =============================================================================


class TestSalesOrderStatus:

    def test_partial_shipment_path(self, clock, ids):
        machine = _machine(SALES_ORDER_STATUS, clock, ids)
        outcome = machine.replay([
            "confirm", "start_production", "ready", "ship_partial", "ship",
            "deliver", "invoice", "close",
        ])
        assert outcome.result.success
        assert outcome.instance.current_state == "closed"

    def test_ready_without_production(self, clock, ids):
        machine = _machine(SALES_ORDER_STATUS, clock, ids)
        assert machine.replay(["confirm", "ready", "ship"]).instance.current_state == "shipped"

    def test_no_cancel_in_production(self, clock, ids):
        machine = _machine(SALES_ORDER_STATUS, clock, ids)
        outcome = machine.replay(["confirm", "start_production", "cancel"])
        assert not outcome.result.success
        assert outcome.instance.current_state == "in_production"

    def test_reopen_cancelled(self, clock, ids):
        machine = _machine(SALES_ORDER_STATUS, clock, ids)
        assert machine.replay(["confirm", "cancel", "reopen"]).instance.current_state == "pending"


# =============================================================================
# Returns
# =============================================================================


class TestRmaStatus:

    def test_ship_return_twice(self, clock, ids):
        machine = _machine(RMA_STATUS, clock, ids)
        outcome = machine.replay(["authorize", "ship_return", "ship_return"])
        assert [e.to_state for e in outcome.instance.history] == [
            "authorized", "pending_return", "return_shipped",
        ]

    @pytest.mark.parametrize("resolution, state", [
        ("issue_credit", "credit_issued"),
        ("ship_replacement", "replacement_shipped"),
    ])
    def test_resolution_then_close(self, clock, ids, resolution, state):
        machine = _machine(RMA_STATUS, clock, ids)
        outcome = machine.replay([
            "authorize", "ship_return", "ship_return", "receive", "inspect", "approve", resolution,
        ])
        assert outcome.instance.current_state == state
        closed = machine.transition(outcome.instance, "close").instance
        assert closed.current_state == "closed"

    def test_denied_request_is_closed_explicitly(self, clock, ids):
        machine = _machine(RMA_STATUS, clock, ids)
        denied = machine.replay(["deny"]).instance
        assert denied.current_state == "rejected"
        assert not machine.is_terminal(denied)
        assert machine.transition(denied, "close").instance.current_state == "closed"

    def test_only_closed_is_terminal(self, clock, ids):
        machine = _machine(RMA_STATUS, clock, ids)
        assert [s.id for s in machine.get_terminal_states()] == ["closed"]


# =============================================================================
# Revisions
# =============================================================================


class TestRevisionStatus:

    def test_auto_approve_within_threshold(self, clock, ids):
        machine = _machine(REVISION_STATUS, clock, ids)
        outcome = machine.transition(
            machine.create(), "auto_approve",
            payload={"change_count": 2, "approval_required": False},
        )
        assert outcome.result.success
        assert outcome.instance.current_state == "approved"

    def test_auto_approve_blocked_when_required(self, clock, ids):
        machine = _machine(REVISION_STATUS, clock, ids)
        outcome = machine.transition(
            machine.create(), "auto_approve",
            payload={"change_count": 1, "approval_required": True, "approval_reason": "Too big"},
        )
        assert outcome.result.reason == "Too big"

    def test_auto_approve_needs_evaluation(self, clock, ids):
        machine = _machine(REVISION_STATUS, clock, ids)
        verdict = machine.can_transition(machine.create(), "auto_approve", payload={"change_count": 1})
        assert verdict.reason == "Approval requirement has not been evaluated"

    def test_submit_requires_changes(self, clock, ids):
        machine = _machine(REVISION_STATUS, clock, ids)
        verdict = machine.can_transition(
            machine.create(), "submit", payload={"change_count": 0, "approval_required": True},
        )
        assert verdict.reason == "Revision has no changes to submit"

    def test_submit_blocked_within_threshold(self, clock, ids):
        machine = _machine(REVISION_STATUS, clock, ids)
        verdict = machine.can_transition(
            machine.create(), "submit", payload={"change_count": 1, "approval_required": False},
        )
        assert verdict.reason == "Change is within approval thresholds"

    def test_chain_outcome_gates_approve(self, clock, ids):
        machine = _machine(REVISION_STATUS, clock, ids)
        pending = machine.transition(
            machine.create(), "submit", payload={"change_count": 1, "approval_required": True},
        ).instance

        blocked = machine.transition(pending, "approve", payload={"chain_outcome": None})
        assert blocked.result.reason == "Approval chain has not been approved"
        approved = machine.transition(pending, "approve", payload={"chain_outcome": "approved"})
        assert approved.instance.current_state == "approved"

    def test_rejected_chain_paths(self, clock, ids):
        machine = _machine(REVISION_STATUS, clock, ids)
        pending = machine.transition(
            machine.create(), "submit", payload={"change_count": 1, "approval_required": True},
        ).instance
        payload = {"chain_outcome": ChainOutcome.REJECTED.value}
        assert machine.transition(pending, "reject", payload=payload).instance.current_state == "rejected"
        assert machine.transition(pending, "request_changes", payload=payload).instance.current_state == "draft"
        assert not machine.transition(pending, "approve", payload=payload).result.success

    def test_send_then_confirm_or_decline(self, clock, ids):
        machine = _machine(REVISION_STATUS, clock, ids)
        approved = machine.transition(
            machine.create(), "auto_approve", payload={"change_count": 1, "approval_required": False},
        ).instance
        sent = machine.transition(approved, "send").instance
        assert machine.transition(sent, "confirm").instance.current_state == "confirmed"
        assert machine.transition(sent, "decline").instance.current_state == "rejected"
