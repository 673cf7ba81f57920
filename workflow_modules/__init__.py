"""
Predefined document lifecycles built on the generic state machine.

- procurement: purchase order status
- sales: sales order status
- returns: RMA status
- revisions: revision status (gated by approval thresholds and chains)
"""

from workflow_modules.procurement.workflows import PURCHASE_ORDER_STATUS
from workflow_modules.returns.workflows import RMA_STATUS
from workflow_modules.revisions.workflows import REVISION_STATUS
from workflow_modules.sales.workflows import SALES_ORDER_STATUS

ALL_DEFINITIONS = (
    PURCHASE_ORDER_STATUS,
    SALES_ORDER_STATUS,
    RMA_STATUS,
    REVISION_STATUS,
)

__all__ = [
    "ALL_DEFINITIONS",
    "PURCHASE_ORDER_STATUS",
    "REVISION_STATUS",
    "RMA_STATUS",
    "SALES_ORDER_STATUS",
]
