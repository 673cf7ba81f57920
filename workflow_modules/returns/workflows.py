"""
Returns Workflows.

RMA status.  ``ship_return`` is declared from two states: from
``authorized`` it records the return label, from ``pending_return`` the
actual shipment.  Only ``closed`` is terminal; a rejected return is
closed explicitly.
"""

from workflow_kernel.domain.state_machine import (
    StateDefinition,
    StateMachineDefinition,
    StateVariant,
    TransitionDefinition,
)
from workflow_kernel.logging_config import get_logger

logger = get_logger("modules.returns.workflows")


RMA_STATUS = StateMachineDefinition(
    id="rma-status",
    name="RMA Status",
    description="Tracks the return merchandise authorization lifecycle",
    initial_state="requested",
    states=(
        StateDefinition("requested", "Requested", variant=StateVariant.MUTED),
        StateDefinition("authorized", "Authorized", variant=StateVariant.INFO),
        StateDefinition("pending_return", "Pending Return", variant=StateVariant.WARNING),
        StateDefinition("return_shipped", "Return Shipped", variant=StateVariant.INFO),
        StateDefinition("received", "Received", variant=StateVariant.INFO),
        StateDefinition("inspecting", "Inspecting", variant=StateVariant.WARNING),
        StateDefinition("approved", "Approved", variant=StateVariant.SUCCESS),
        StateDefinition("rejected", "Rejected", variant=StateVariant.ERROR),
        StateDefinition("credit_issued", "Credit Issued", variant=StateVariant.SUCCESS),
        StateDefinition("replacement_shipped", "Replacement Shipped", variant=StateVariant.INFO),
        StateDefinition("closed", "Closed", terminal=True, variant=StateVariant.MUTED),
    ),
    transitions=(
        TransitionDefinition("t1", "requested", "authorized", "authorize", label="Authorize Return"),
        TransitionDefinition("t2", "requested", "rejected", "deny", label="Deny Request"),
        TransitionDefinition("t3", "authorized", "pending_return", "ship_return", label="Label Generated"),
        TransitionDefinition("t4", "pending_return", "return_shipped", "ship_return", label="Return Shipped"),
        TransitionDefinition("t5", "return_shipped", "received", "receive", label="Receive Return"),
        TransitionDefinition("t6", "received", "inspecting", "inspect", label="Start Inspection"),
        TransitionDefinition("t7", "inspecting", "approved", "approve", label="Approve"),
        TransitionDefinition("t8", "inspecting", "rejected", "reject", label="Reject"),
        TransitionDefinition("t9", "approved", "credit_issued", "issue_credit", label="Issue Credit"),
        TransitionDefinition(
            "t10", "approved", "replacement_shipped", "ship_replacement", label="Ship Replacement",
        ),
        TransitionDefinition(
            "t11", ("credit_issued", "replacement_shipped", "rejected"), "closed", "close",
            label="Close RMA",
        ),
    ),
)

logger.info(
    "returns_rma_workflow_registered",
    extra={
        "definition_id": RMA_STATUS.id,
        "state_count": len(RMA_STATUS.states),
        "transition_count": len(RMA_STATUS.transitions),
        "initial_state": RMA_STATUS.initial_state,
    },
)
