"""
workflow_engines.approval_chain -- Multi-level approval chain manager.

Responsibility:
    Build an ordered chain of approval steps from a list of approvers,
    record approver actions level by level, and keep the per-revision
    list of submission cycles.

Architecture position:
    Engines -- pure functions over immutable ``ApprovalChain`` /
    ``ApprovalCycle`` values.  Step status changes are validated by the
    ``APPROVAL_STEP_DEFINITION`` state machine, so a step can only leave
    ``pending`` once.

Invariants enforced:
    - Steps are ordered by ascending level (stable for equal levels).
    - ``current_level`` is the lowest level with a pending step while the
      chain is open, and the last resolved level once it completes.
    - Reject / request_changes short-circuits: every pending step becomes
      skipped, the chain completes with outcome ``rejected``.
    - Same-level approvers follow the chain's ``SameLevelPolicy``
      (ALL: everyone approves; ANY: first approval skips the peers).
    - Cycles are appended and reviewed in place exactly once; earlier
      cycles are never changed.

Failure modes:
    Misuse raises ``ApprovalChainError`` subclasses (empty chain, acting
    on a complete chain, wrong level, resolved step, unknown approver,
    reviewing with no open cycle, resubmitting while a cycle is open).
    A rejection is an outcome, not an error.

Audit relevance:
    Every step carries action, notes, actor and timestamp.  Logs
    ``approval_chain_created``, ``approval_step_recorded`` and
    ``approval_chain_completed``.
"""

from __future__ import annotations

from dataclasses import dataclass, replace
from typing import Iterable

from workflow_engines.state_machine import StateMachine
from workflow_kernel.domain.approval import (
    ApprovalAction,
    ApprovalChain,
    ApprovalCycle,
    ApprovalStep,
    ApprovalStepStatus,
    Approver,
    ChainOutcome,
    CycleOutcome,
    SameLevelPolicy,
)
from workflow_kernel.domain.clock import Clock, SystemClock
from workflow_kernel.domain.ids import IdGenerator, uuid_id_generator
from workflow_kernel.domain.state_machine import (
    StateDefinition,
    StateMachineDefinition,
    StateMachineInstance,
    StateVariant,
    TransitionDefinition,
)
from workflow_kernel.exceptions import (
    ApprovalChainCompleteError,
    CycleAlreadyOpenError,
    EmptyApprovalChainError,
    NoPendingCycleError,
    StepAlreadyResolvedError,
    StepNotActionableError,
    UnauthorizedApproverError,
)
from workflow_kernel.logging_config import get_logger

logger = get_logger("engines.approval_chain")

STEP_SKIP = "skip"

APPROVAL_STEP_DEFINITION = StateMachineDefinition(
    id="approval-step-status",
    name="Approval Step Status",
    initial_state=ApprovalStepStatus.PENDING.value,
    states=(
        StateDefinition("pending", "Pending", variant=StateVariant.WARNING),
        StateDefinition("approved", "Approved", terminal=True, variant=StateVariant.SUCCESS),
        StateDefinition("rejected", "Rejected", terminal=True, variant=StateVariant.ERROR),
        StateDefinition("skipped", "Skipped", terminal=True, variant=StateVariant.MUTED),
    ),
    transitions=(
        TransitionDefinition("s1", "pending", "approved", ApprovalAction.APPROVE.value, label="Approve"),
        TransitionDefinition("s2", "pending", "rejected", ApprovalAction.REJECT.value, label="Reject"),
        TransitionDefinition(
            "s3", "pending", "rejected", ApprovalAction.REQUEST_CHANGES.value,
            label="Request Changes",
        ),
        TransitionDefinition("s4", "pending", "skipped", STEP_SKIP, label="Skip"),
    ),
)

_STEP_MACHINE = StateMachine(APPROVAL_STEP_DEFINITION)

CYCLE_OUTCOME_BY_ACTION: dict[ApprovalAction, CycleOutcome] = {
    ApprovalAction.APPROVE: CycleOutcome.APPROVED,
    ApprovalAction.REJECT: CycleOutcome.REJECTED,
    ApprovalAction.REQUEST_CHANGES: CycleOutcome.CHANGES_REQUESTED,
}


@dataclass(frozen=True)
class ChainProgress:
    total_steps: int
    approved_steps: int
    rejected_steps: int
    skipped_steps: int
    pending_steps: int

    @property
    def resolved_steps(self) -> int:
        return self.total_steps - self.pending_steps


def _next_step_status(chain: ApprovalChain, step: ApprovalStep, action: str) -> ApprovalStepStatus:
    """Resolve a step status change through the step state machine."""
    probe = StateMachineInstance(
        definition_id=APPROVAL_STEP_DEFINITION.id,
        current_state=step.status.value,
        created_at=chain.started_at,
        updated_at=chain.updated_at,
    )
    verdict = _STEP_MACHINE.can_transition(probe, action)
    if not verdict.allowed:
        raise StepAlreadyResolvedError(chain.id, step.id, step.status.value)
    transition = _STEP_MACHINE.find_transition(step.status.value, action)
    return ApprovalStepStatus(transition.to_state)


def _skip(chain: ApprovalChain, step: ApprovalStep) -> ApprovalStep:
    return replace(step, status=_next_step_status(chain, step, STEP_SKIP))


# =============================================================================
# Chain construction
# =============================================================================


def create_approval_chain(
    revision_id: str,
    approvers: Iterable[Approver],
    *,
    same_level_policy: SameLevelPolicy = SameLevelPolicy.ALL,
    clock: Clock | None = None,
    id_generator: IdGenerator | None = None,
) -> ApprovalChain:
    """Build a chain with one pending step per approver.

    Raises:
        EmptyApprovalChainError: if ``approvers`` is empty.
    """
    clock = clock or SystemClock()
    new_id = id_generator or uuid_id_generator
    ordered = sorted(approvers, key=lambda a: a.level)
    if not ordered:
        raise EmptyApprovalChainError(revision_id)

    now = clock.now()
    steps = tuple(
        ApprovalStep(id=new_id(), level=approver.level, approver=approver)
        for approver in ordered
    )
    chain = ApprovalChain(
        id=new_id(),
        revision_id=revision_id,
        steps=steps,
        current_level=steps[0].level,
        started_at=now,
        updated_at=now,
        same_level_policy=SameLevelPolicy(same_level_policy),
    )
    logger.info(
        "approval_chain_created",
        extra={
            "chain_id": chain.id,
            "revision_id": revision_id,
            "step_count": len(steps),
            "levels": list(chain.levels),
            "same_level_policy": chain.same_level_policy.value,
        },
    )
    return chain


# =============================================================================
# Advancing
# =============================================================================


def advance_chain(
    chain: ApprovalChain,
    approver_id: str,
    action: ApprovalAction | str,
    *,
    notes: str | None = None,
    acted_by: str | None = None,
    clock: Clock | None = None,
) -> ApprovalChain:
    """Record ``approver_id``'s action and return the advanced chain.

    Args:
        chain: The chain as last loaded.
        approver_id: Approver whose step is acted on.
        action: approve, reject or request_changes.
        notes: Free-text comment stored on the step.
        acted_by: Principal recording the action if different from the
            approver (delegation); defaults to ``approver_id``.
        clock: Time source for ``action_date`` / ``completed_at``.

    Raises:
        ApprovalChainCompleteError: the chain already completed.
        UnauthorizedApproverError: the approver has no step.
        StepNotActionableError: the approver's pending step is above
            ``current_level``.
        StepAlreadyResolvedError: the approver's step is already resolved.
    """
    action = ApprovalAction(action)
    clock = clock or SystemClock()

    if chain.is_complete:
        raise ApprovalChainCompleteError(chain.id, chain.outcome.value if chain.outcome else None)

    own_steps = [s for s in chain.steps if s.approver.id == approver_id]
    if not own_steps:
        raise UnauthorizedApproverError(chain.id, approver_id)

    step = next(
        (s for s in own_steps if s.is_pending and s.level == chain.current_level), None,
    )
    if step is None:
        pending = [s for s in own_steps if s.is_pending]
        if pending:
            raise StepNotActionableError(chain.id, approver_id, pending[0].level, chain.current_level)
        raise StepAlreadyResolvedError(chain.id, own_steps[0].id, own_steps[0].status.value)

    now = clock.now()
    resolved = replace(
        step,
        status=_next_step_status(chain, step, action.value),
        action=action,
        notes=notes,
        action_date=now,
        action_by=acted_by or approver_id,
    )
    steps = tuple(resolved if s.id == step.id else s for s in chain.steps)

    logger.info(
        "approval_step_recorded",
        extra={
            "chain_id": chain.id,
            "step_id": step.id,
            "step_level": step.level,
            "approver_id": approver_id,
            "approval_action": action.value,
        },
    )

    if action != ApprovalAction.APPROVE:
        steps = tuple(_skip(chain, s) if s.is_pending else s for s in steps)
        return _complete(chain, steps, ChainOutcome.REJECTED, step.level, now)

    if chain.same_level_policy == SameLevelPolicy.ANY:
        steps = tuple(
            _skip(chain, s) if s.is_pending and s.level == step.level else s for s in steps
        )

    pending_levels = [s.level for s in steps if s.is_pending]
    if not pending_levels:
        return _complete(chain, steps, ChainOutcome.APPROVED, step.level, now)

    return replace(chain, steps=steps, current_level=min(pending_levels), updated_at=now)


def _complete(chain, steps, outcome, level, now) -> ApprovalChain:
    completed = replace(
        chain,
        steps=steps,
        current_level=level,
        is_complete=True,
        completed_at=now,
        outcome=outcome,
        updated_at=now,
    )
    logger.info(
        "approval_chain_completed",
        extra={
            "chain_id": chain.id,
            "revision_id": chain.revision_id,
            "outcome": outcome.value,
            "final_level": level,
        },
    )
    return completed


# =============================================================================
# Queries
# =============================================================================


def get_current_steps(chain: ApprovalChain) -> tuple[ApprovalStep, ...]:
    """Pending steps at the current level (empty once complete)."""
    if chain.is_complete:
        return ()
    return tuple(s for s in chain.steps if s.is_pending and s.level == chain.current_level)


def get_pending_approver_ids(chain: ApprovalChain) -> tuple[str, ...]:
    return tuple(s.approver.id for s in get_current_steps(chain))


def is_awaiting_principal(chain: ApprovalChain, principal_id: str) -> bool:
    """Whether ``principal_id`` has a pending step at the current level."""
    return principal_id in get_pending_approver_ids(chain)


def get_chain_progress(chain: ApprovalChain) -> ChainProgress:
    def count(status: ApprovalStepStatus) -> int:
        return sum(1 for s in chain.steps if s.status == status)

    return ChainProgress(
        total_steps=len(chain.steps),
        approved_steps=count(ApprovalStepStatus.APPROVED),
        rejected_steps=count(ApprovalStepStatus.REJECTED),
        skipped_steps=count(ApprovalStepStatus.SKIPPED),
        pending_steps=count(ApprovalStepStatus.PENDING),
    )


# =============================================================================
# Submission cycles
# =============================================================================


def start_cycle(
    history: tuple[ApprovalCycle, ...],
    *,
    submitted_by: str,
    notes: str | None = None,
    resolution: str | None = None,
    clock: Clock | None = None,
    id_generator: IdGenerator | None = None,
) -> tuple[ApprovalCycle, ...]:
    """Append a new pending cycle numbered after the existing ones.

    ``resolution`` describes how feedback from the previous cycle was
    addressed.

    Raises:
        CycleAlreadyOpenError: if the latest cycle is still pending.
    """
    if history and history[-1].is_open:
        raise CycleAlreadyOpenError(history[-1].cycle_number)
    clock = clock or SystemClock()
    new_id = id_generator or uuid_id_generator
    cycle = ApprovalCycle(
        id=new_id(),
        cycle_number=len(history) + 1,
        submitted_at=clock.now(),
        submitted_by=submitted_by,
        submission_notes=notes,
        resolution=resolution,
    )
    return history + (cycle,)


def record_cycle_review(
    history: tuple[ApprovalCycle, ...],
    *,
    outcome: CycleOutcome | str,
    reviewed_by: str,
    reviewer_role: str | None = None,
    feedback: str | None = None,
    clock: Clock | None = None,
) -> tuple[ApprovalCycle, ...]:
    """Close the open cycle with its review outcome.

    Raises:
        NoPendingCycleError: if the latest cycle is not pending.
        ValueError: if ``outcome`` is ``pending``.
    """
    outcome = CycleOutcome(outcome)
    if outcome == CycleOutcome.PENDING:
        raise ValueError("A review must resolve the cycle")
    if not history or not history[-1].is_open:
        raise NoPendingCycleError(len(history))
    clock = clock or SystemClock()
    reviewed = replace(
        history[-1],
        outcome=outcome,
        reviewed_by=reviewed_by,
        reviewer_role=reviewer_role,
        reviewed_at=clock.now(),
        feedback=feedback,
    )
    return history[:-1] + (reviewed,)
