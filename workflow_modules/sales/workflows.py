"""
Sales Workflows.

Sales order status from pending through production and shipment to
invoiced and closed.  Partial shipments loop through
``partially_shipped``; cancellation is only possible before production.
"""

from workflow_kernel.domain.state_machine import (
    StateDefinition,
    StateMachineDefinition,
    StateVariant,
    TransitionDefinition,
)
from workflow_kernel.logging_config import get_logger

logger = get_logger("modules.sales.workflows")


SALES_ORDER_STATUS = StateMachineDefinition(
    id="sales-order-status",
    name="Sales Order Status",
    description="Tracks the lifecycle of a sales order",
    initial_state="pending",
    states=(
        StateDefinition("pending", "Pending", variant=StateVariant.MUTED),
        StateDefinition("confirmed", "Confirmed", variant=StateVariant.INFO),
        StateDefinition("in_production", "In Production", variant=StateVariant.WARNING),
        StateDefinition("ready_to_ship", "Ready to Ship", variant=StateVariant.INFO),
        StateDefinition("partially_shipped", "Partially Shipped", variant=StateVariant.WARNING),
        StateDefinition("shipped", "Shipped", variant=StateVariant.INFO),
        StateDefinition("delivered", "Delivered", variant=StateVariant.SUCCESS),
        StateDefinition("invoiced", "Invoiced", variant=StateVariant.SUCCESS),
        StateDefinition("closed", "Closed", terminal=True, variant=StateVariant.SUCCESS),
        StateDefinition("cancelled", "Cancelled", terminal=True, variant=StateVariant.ERROR),
    ),
    transitions=(
        TransitionDefinition("t1", "pending", "confirmed", "confirm", label="Confirm Order"),
        TransitionDefinition(
            "t2", "confirmed", "in_production", "start_production", label="Start Production",
        ),
        TransitionDefinition(
            "t3", ("confirmed", "in_production"), "ready_to_ship", "ready",
            label="Mark Ready to Ship",
        ),
        TransitionDefinition(
            "t4", "ready_to_ship", "partially_shipped", "ship_partial", label="Ship Partial",
        ),
        TransitionDefinition(
            "t5", ("ready_to_ship", "partially_shipped"), "shipped", "ship", label="Ship Complete",
        ),
        TransitionDefinition("t6", "shipped", "delivered", "deliver", label="Mark Delivered"),
        TransitionDefinition("t7", "delivered", "invoiced", "invoice", label="Invoice"),
        TransitionDefinition("t8", "invoiced", "closed", "close", label="Close Order"),
        TransitionDefinition(
            "t9", ("pending", "confirmed"), "cancelled", "cancel", label="Cancel Order",
        ),
        TransitionDefinition("t10", "cancelled", "pending", "reopen", label="Reopen Order"),
    ),
)

logger.info(
    "sales_order_workflow_registered",
    extra={
        "definition_id": SALES_ORDER_STATUS.id,
        "state_count": len(SALES_ORDER_STATUS.states),
        "transition_count": len(SALES_ORDER_STATUS.transitions),
        "initial_state": SALES_ORDER_STATUS.initial_state,
    },
)
