"""
Procurement Workflows.

Purchase order status: draft -> (pending_approval -> approved ->) sent ->
acknowledged -> in_progress -> completed, with cancel from any pre-send
state and reopen from cancelled.
"""

from workflow_kernel.domain.state_machine import (
    StateDefinition,
    StateMachineDefinition,
    StateVariant,
    TransitionDefinition,
)
from workflow_kernel.logging_config import get_logger

logger = get_logger("modules.procurement.workflows")


PURCHASE_ORDER_STATUS = StateMachineDefinition(
    id="purchase-order-status",
    name="Purchase Order Status",
    description="Tracks the lifecycle of a purchase order",
    initial_state="draft",
    states=(
        StateDefinition("draft", "Draft", variant=StateVariant.MUTED),
        StateDefinition("pending_approval", "Pending Approval", variant=StateVariant.WARNING),
        StateDefinition("approved", "Approved", variant=StateVariant.INFO),
        StateDefinition("sent", "Sent to Supplier", variant=StateVariant.INFO),
        StateDefinition("acknowledged", "Acknowledged", variant=StateVariant.SUCCESS),
        StateDefinition("in_progress", "In Progress", variant=StateVariant.INFO),
        StateDefinition("completed", "Completed", terminal=True, variant=StateVariant.SUCCESS),
        StateDefinition("cancelled", "Cancelled", terminal=True, variant=StateVariant.ERROR),
    ),
    transitions=(
        TransitionDefinition("t1", "draft", "pending_approval", "submit", label="Submit for Approval"),
        TransitionDefinition("t2", "draft", "sent", "send", label="Send to Supplier"),
        TransitionDefinition("t3", "pending_approval", "approved", "approve", label="Approve"),
        TransitionDefinition("t4", "pending_approval", "draft", "reject", label="Reject"),
        TransitionDefinition("t5", "approved", "sent", "send", label="Send to Supplier"),
        TransitionDefinition("t6", "sent", "acknowledged", "acknowledge", label="Record Acknowledgment"),
        TransitionDefinition("t7", "acknowledged", "in_progress", "start", label="Start Fulfillment"),
        TransitionDefinition("t8", "in_progress", "completed", "complete", label="Mark Complete"),
        TransitionDefinition(
            "t9", ("draft", "pending_approval", "approved"), "cancelled", "cancel",
            label="Cancel Order",
        ),
        TransitionDefinition("t10", "cancelled", "draft", "reopen", label="Reopen Order"),
    ),
)

logger.info(
    "procurement_po_workflow_registered",
    extra={
        "definition_id": PURCHASE_ORDER_STATUS.id,
        "state_count": len(PURCHASE_ORDER_STATUS.states),
        "transition_count": len(PURCHASE_ORDER_STATUS.transitions),
        "initial_state": PURCHASE_ORDER_STATUS.initial_state,
    },
)
