"""
Approval domain types.

Responsibility:
    Immutable value types for threshold configuration, cost-delta
    verdicts, approvers, approval steps, approval chains and submission
    cycles.

Architecture position:
    Kernel > Domain -- pure data, zero I/O.  Engines in
    ``workflow_engines.thresholds`` and ``workflow_engines.approval_chain``
    produce and consume these values.

Invariants enforced:
    - ApprovalConfig thresholds are non-negative Decimals.
    - Approver.level is a positive integer (lower levels act first).
    - ApprovalStep status starts pending; terminal statuses never revert
      (enforced by the chain engine through the step state machine).
    - ApprovalCycle records are appended, never replaced.

Failure modes:
    - ValueError on a negative threshold or a non-positive approver level.
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime
from decimal import Decimal
from enum import Enum
from typing import Any


def _to_decimal(value: Any) -> Decimal:
    if isinstance(value, Decimal):
        return value
    return Decimal(str(value))


# =============================================================================
# Threshold configuration and verdicts
# =============================================================================


class ApprovalMode(str, Enum):
    """How the percentage and absolute thresholds combine."""

    OR = "OR"
    AND = "AND"


@dataclass(frozen=True)
class ApprovalConfig:
    """Dual-threshold configuration.

    ``percentage_threshold`` is a fraction (0.05 == 5%);
    ``absolute_threshold`` is in currency units.
    """

    percentage_threshold: Decimal = Decimal("0.05")
    absolute_threshold: Decimal = Decimal("500")
    mode: ApprovalMode = ApprovalMode.OR

    def __post_init__(self) -> None:
        pct = _to_decimal(self.percentage_threshold)
        absolute = _to_decimal(self.absolute_threshold)
        if pct < 0:
            raise ValueError(f"percentage_threshold must be >= 0, got {pct}")
        if absolute < 0:
            raise ValueError(f"absolute_threshold must be >= 0, got {absolute}")
        object.__setattr__(self, "percentage_threshold", pct)
        object.__setattr__(self, "absolute_threshold", absolute)
        object.__setattr__(self, "mode", ApprovalMode(self.mode))


@dataclass(frozen=True)
class CostDeltaInfo:
    """Derived verdict of the dual-threshold policy. Not stored."""

    original_cost: Decimal
    new_cost: Decimal
    delta: Decimal
    percent_change: Decimal
    exceeds_percent_threshold: bool
    exceeds_absolute_threshold: bool
    exceeds_threshold: bool


class ApprovalLevel(str, Enum):
    """Escalation tier of the banded-tier policy."""

    NONE = "none"
    MANAGER = "manager"
    DIRECTOR = "director"
    EXECUTIVE = "executive"


@dataclass(frozen=True)
class FinancialApprovalCheck:
    """Verdict of the banded-tier policy. ``change_percent`` is on a 0-100 scale."""

    requires_approval: bool
    change_percent: Decimal
    approval_level: ApprovalLevel
    change_amount: Decimal


@dataclass(frozen=True)
class ApprovalRequirement:
    """Policy-neutral answer to "does this change need approval?"."""

    policy_name: str
    requires_approval: bool
    delta: Decimal
    percent_change: Decimal
    approval_level: ApprovalLevel | None = None
    reason: str | None = None


# =============================================================================
# Approvers, steps and chains
# =============================================================================


@dataclass(frozen=True)
class Approver:
    """A principal assigned to approve at a level."""

    id: str
    name: str
    role: str
    email: str | None = None
    level: int = 1

    def __post_init__(self) -> None:
        if isinstance(self.level, bool) or not isinstance(self.level, int) or self.level < 1:
            raise ValueError(f"Approver level must be a positive integer, got {self.level!r}")


class ApprovalStepStatus(str, Enum):
    PENDING = "pending"
    APPROVED = "approved"
    REJECTED = "rejected"
    SKIPPED = "skipped"


class ApprovalAction(str, Enum):
    APPROVE = "approve"
    REJECT = "reject"
    REQUEST_CHANGES = "request_changes"


class SameLevelPolicy(str, Enum):
    """How approvers sharing a level gate progression.

    ALL: every approver at the level must approve.
    ANY: the first approval resolves the level; peers are skipped.
    """

    ALL = "all"
    ANY = "any"


class ChainOutcome(str, Enum):
    APPROVED = "approved"
    REJECTED = "rejected"


@dataclass(frozen=True)
class ApprovalStep:
    """One approver's slot in a chain."""

    id: str
    level: int
    approver: Approver
    status: ApprovalStepStatus = ApprovalStepStatus.PENDING
    action: ApprovalAction | None = None
    notes: str | None = None
    action_date: datetime | None = None
    action_by: str | None = None

    @property
    def is_pending(self) -> bool:
        return self.status == ApprovalStepStatus.PENDING


@dataclass(frozen=True)
class ApprovalChain:
    """Ordered approval steps gating one revision."""

    id: str
    revision_id: str
    steps: tuple[ApprovalStep, ...]
    current_level: int
    started_at: datetime
    updated_at: datetime
    is_complete: bool = False
    completed_at: datetime | None = None
    outcome: ChainOutcome | None = None
    same_level_policy: SameLevelPolicy = SameLevelPolicy.ALL

    @property
    def levels(self) -> tuple[int, ...]:
        return tuple(sorted({s.level for s in self.steps}))

    def step_for(self, approver_id: str) -> ApprovalStep | None:
        """The first step assigned to ``approver_id``, if any."""
        for step in self.steps:
            if step.approver.id == approver_id:
                return step
        return None


# =============================================================================
# Submission cycles
# =============================================================================


class CycleOutcome(str, Enum):
    PENDING = "pending"
    APPROVED = "approved"
    REJECTED = "rejected"
    CHANGES_REQUESTED = "changes_requested"


@dataclass(frozen=True)
class ApprovalCycle:
    """One submit-then-review round of a revision."""

    id: str
    cycle_number: int
    submitted_at: datetime
    submitted_by: str
    submission_notes: str | None = None
    resolution: str | None = None
    reviewed_by: str | None = None
    reviewer_role: str | None = None
    reviewed_at: datetime | None = None
    outcome: CycleOutcome = CycleOutcome.PENDING
    feedback: str | None = None

    @property
    def is_open(self) -> bool:
        return self.outcome == CycleOutcome.PENDING
