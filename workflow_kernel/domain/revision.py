"""
Revision domain types.

A revision is one versioned edit of a hosting document.  Its status is the
current state of its lifecycle instance (the revision status definition in
``workflow_modules.revisions``), so every status change is a recorded
transition.  Revisions are superseded by newer revisions, never deleted.
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime
from decimal import Decimal
from enum import Enum
from typing import Any

from workflow_kernel.domain.approval import ApprovalChain, ApprovalCycle
from workflow_kernel.domain.state_machine import StateMachineInstance


class RevisionStatus(str, Enum):
    DRAFT = "draft"
    PENDING_APPROVAL = "pending_approval"
    APPROVED = "approved"
    SENT = "sent"
    CONFIRMED = "confirmed"
    REJECTED = "rejected"


REVISION_STATUS_LABELS: dict[RevisionStatus, str] = {
    RevisionStatus.DRAFT: "Draft",
    RevisionStatus.PENDING_APPROVAL: "Pending Approval",
    RevisionStatus.APPROVED: "Approved",
    RevisionStatus.SENT: "Sent to Supplier",
    RevisionStatus.CONFIRMED: "Confirmed",
    RevisionStatus.REJECTED: "Rejected",
}


@dataclass(frozen=True)
class RevisionChange:
    """A single field edit recorded on a draft revision."""

    id: str
    field: str
    previous_value: Any
    new_value: Any
    changed_at: datetime
    changed_by: str
    is_critical: bool
    line_id: str | None = None
    description: str | None = None


@dataclass(frozen=True)
class Revision:
    """A versioned revision of a document."""

    id: str
    document_id: str
    version: str
    lifecycle: StateMachineInstance
    created_by: str
    created_at: datetime
    updated_at: datetime
    baseline_total: Decimal
    revised_total: Decimal
    previous_version: str | None = None
    changes: tuple[RevisionChange, ...] = ()
    approval_chain: ApprovalChain | None = None
    approval_history: tuple[ApprovalCycle, ...] = ()

    @property
    def status(self) -> RevisionStatus:
        return RevisionStatus(self.lifecycle.current_state)

    @property
    def has_critical_changes(self) -> bool:
        return any(c.is_critical for c in self.changes)

    @property
    def current_cycle(self) -> ApprovalCycle | None:
        if self.approval_history and self.approval_history[-1].is_open:
            return self.approval_history[-1]
        return None
