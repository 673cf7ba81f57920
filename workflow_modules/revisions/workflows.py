"""
Revision Workflows.

Revision status: draft -> pending_approval -> approved -> sent ->
confirmed, with the approval gate expressed as guards over the transition
payload supplied by ``workflow_services.revision_workflow``:

* ``change_count``          -- number of recorded changes (submit).
* ``approval_required``     -- the document type's threshold verdict
                               (submit vs. auto_approve).
* ``chain_outcome``         -- outcome of the completed approval chain
                               (approve / reject / request_changes).
"""

from workflow_engines.guards import Guard, compose_guards, payload_guard
from workflow_kernel.domain.approval import ChainOutcome
from workflow_kernel.domain.state_machine import (
    GuardResult,
    StateDefinition,
    StateMachineDefinition,
    StateVariant,
    TransitionContext,
    TransitionDefinition,
)
from workflow_kernel.logging_config import get_logger

logger = get_logger("modules.revisions.workflows")


# -----------------------------------------------------------------------------
# Guards
# -----------------------------------------------------------------------------


def _within_threshold(context: TransitionContext) -> GuardResult:
    required = context.lookup("approval_required")
    if required is None:
        return GuardResult.deny("Approval requirement has not been evaluated")
    if required:
        return GuardResult.deny(context.lookup("approval_reason") or "Change requires approval")
    return GuardResult.allow()


def _approval_needed(context: TransitionContext) -> GuardResult:
    if context.lookup("approval_required") is False:
        return GuardResult.deny("Change is within approval thresholds")
    return GuardResult.allow()


HAS_CHANGES = payload_guard(
    "change_count",
    predicate=lambda count: bool(count) and count > 0,
    reason="Revision has no changes to submit",
    name="has_changes",
)

WITHIN_THRESHOLD = Guard(
    name="within_approval_threshold",
    predicate=_within_threshold,
    description="Cost change does not require approval",
)

APPROVAL_NEEDED = Guard(
    name="approval_needed",
    predicate=_approval_needed,
    description="Cost change requires an approval chain",
)

CHAIN_APPROVED = payload_guard(
    "chain_outcome",
    ChainOutcome.APPROVED,
    reason="Approval chain has not been approved",
    name="chain_approved",
)

CHAIN_REJECTED = payload_guard(
    "chain_outcome",
    ChainOutcome.REJECTED,
    reason="Approval chain has not been rejected",
    name="chain_rejected",
)


# -----------------------------------------------------------------------------
# Revision Status
# -----------------------------------------------------------------------------

REVISION_STATUS = StateMachineDefinition(
    id="revision-status",
    name="Revision Status",
    description="Tracks a document revision from draft to supplier confirmation",
    initial_state="draft",
    states=(
        StateDefinition("draft", "Draft", variant=StateVariant.MUTED),
        StateDefinition("pending_approval", "Pending Approval", variant=StateVariant.WARNING),
        StateDefinition("approved", "Approved", variant=StateVariant.INFO),
        StateDefinition("sent", "Sent to Supplier", variant=StateVariant.INFO),
        StateDefinition("confirmed", "Confirmed", terminal=True, variant=StateVariant.SUCCESS),
        StateDefinition("rejected", "Rejected", terminal=True, variant=StateVariant.ERROR),
    ),
    transitions=(
        TransitionDefinition(
            "r1", "draft", "pending_approval", "submit",
            label="Submit for Approval",
            guard=compose_guards(HAS_CHANGES, APPROVAL_NEEDED, name="submit"),
        ),
        TransitionDefinition(
            "r2", "draft", "approved", "auto_approve",
            label="Approve (Within Threshold)",
            guard=compose_guards(HAS_CHANGES, WITHIN_THRESHOLD, name="auto_approve"),
        ),
        TransitionDefinition(
            "r3", "pending_approval", "approved", "approve", label="Approve", guard=CHAIN_APPROVED,
        ),
        TransitionDefinition(
            "r4", "pending_approval", "rejected", "reject", label="Reject", guard=CHAIN_REJECTED,
        ),
        TransitionDefinition(
            "r5", "pending_approval", "draft", "request_changes",
            label="Request Changes", guard=CHAIN_REJECTED,
        ),
        TransitionDefinition("r6", "approved", "sent", "send", label="Send to Supplier"),
        TransitionDefinition("r7", "sent", "confirmed", "confirm", label="Record Confirmation"),
        TransitionDefinition("r8", "sent", "rejected", "decline", label="Record Decline"),
    ),
)

logger.info(
    "revision_workflow_registered",
    extra={
        "definition_id": REVISION_STATUS.id,
        "state_count": len(REVISION_STATUS.states),
        "transition_count": len(REVISION_STATUS.transitions),
        "initial_state": REVISION_STATUS.initial_state,
    },
)
