"""
Typed Exception Hierarchy for the Workflow Kernel.

===============================================================================
SCOPE
===============================================================================

Expected domain outcomes are NOT exceptions.  An illegal action, a guard
rejection, a before-hook veto, a cost delta under threshold and a rejected
approval are all reported as values (GuardResult, TransitionResult,
CostDeltaInfo, ApprovalChain.outcome) so callers can render the reason.

Exceptions are reserved for:
  1. Programming mistakes (malformed state machine definitions, acting on a
     completed approval chain, unknown policy names).
  2. Storage conditions (stale writes, history rewrites, missing rows).

Every exception carries a machine-readable ``code`` and structured
attributes, so callers catch by type and never parse messages:

    try:
        chain = advance_chain(chain, approver_id, ApprovalAction.APPROVE)
    except StepNotActionableError as e:
        api_response(code=e.code, level=e.step_level, current=e.current_level)

===============================================================================
EXCEPTION HIERARCHY
===============================================================================

    WorkflowKernelError (base)
    |
    +-- DefinitionError
    |   +-- DuplicateStateError
    |   +-- DuplicateTransitionError
    |   +-- UnknownStateReferenceError
    |   +-- InvalidInitialStateError
    |
    +-- InstanceNotFoundError
    |
    +-- ApprovalChainError
    |   +-- EmptyApprovalChainError
    |   +-- ApprovalChainCompleteError
    |   +-- StepNotActionableError
    |   +-- StepAlreadyResolvedError
    |   +-- UnauthorizedApproverError
    |   +-- ChainNotFoundError
    |   +-- NoPendingCycleError
    |   +-- CycleAlreadyOpenError
    |
    +-- RevisionError
    |   +-- InvalidVersionError
    |   +-- RevisionNotEditableError
    |   +-- RevisionNotFoundError
    |
    +-- ThresholdPolicyError
    |   +-- UnknownThresholdPolicyError
    |
    +-- ConcurrencyError
    |   +-- OptimisticLockError
    |
    +-- ImmutabilityError
        +-- HistoryRewriteError

===============================================================================
ERROR CODES - QUICK REFERENCE
===============================================================================

Category        | Code                        | When Raised
----------------|-----------------------------|-----------------------------------------
Definition      | DUPLICATE_STATE             | Two states share an id
                | DUPLICATE_TRANSITION        | Two transitions for (state, action)
                | UNKNOWN_STATE_REFERENCE     | from/to names an undeclared state
                | INVALID_INITIAL_STATE       | Initial state is not declared
----------------|-----------------------------|-----------------------------------------
Instance        | INSTANCE_NOT_FOUND          | No stored instance for id
----------------|-----------------------------|-----------------------------------------
Approval chain  | EMPTY_APPROVAL_CHAIN        | Chain built from zero approvers
                | APPROVAL_CHAIN_COMPLETE     | Action recorded on a completed chain
                | STEP_NOT_ACTIONABLE         | Step is not at the current level
                | STEP_ALREADY_RESOLVED       | Step already approved/rejected/skipped
                | UNAUTHORIZED_APPROVER       | Actor has no step in the chain
                | CHAIN_NOT_FOUND             | No stored chain for id
                | NO_PENDING_CYCLE            | Review recorded with no open cycle
                | CYCLE_ALREADY_OPEN          | Submission while a cycle is pending
----------------|-----------------------------|-----------------------------------------
Revision        | INVALID_VERSION             | Version is not "major.minor"
                | REVISION_NOT_EDITABLE       | Change recorded outside draft
                | REVISION_NOT_FOUND          | No stored revision for id
----------------|-----------------------------|-----------------------------------------
Threshold       | UNKNOWN_THRESHOLD_POLICY    | Policy name not registered
----------------|-----------------------------|-----------------------------------------
Concurrency     | OPTIMISTIC_LOCK_CONFLICT    | Write derived from a stale base value
----------------|-----------------------------|-----------------------------------------
Immutability    | HISTORY_REWRITE             | Append-only history was altered
"""

from __future__ import annotations


class WorkflowKernelError(Exception):
    """Base exception for all workflow kernel errors."""

    code: str = "WORKFLOW_KERNEL_ERROR"

    def __init__(self, message: str):
        self.message = message
        super().__init__(message)


# =============================================================================
# Definition errors (construction-time programming mistakes)
# =============================================================================


class DefinitionError(WorkflowKernelError):
    """Base for malformed state machine definitions."""

    code: str = "DEFINITION_ERROR"

    def __init__(self, definition_id: str, message: str):
        self.definition_id = definition_id
        super().__init__(f"Definition '{definition_id}': {message}")


class DuplicateStateError(DefinitionError):
    """Two states in one definition share an id."""

    code: str = "DUPLICATE_STATE"

    def __init__(self, definition_id: str, state_id: str):
        self.state_id = state_id
        super().__init__(definition_id, f"state '{state_id}' is declared twice")


class DuplicateTransitionError(DefinitionError):
    """More than one transition is declared for a (state, action) pair."""

    code: str = "DUPLICATE_TRANSITION"

    def __init__(self, definition_id: str, state_id: str, action: str):
        self.state_id = state_id
        self.action = action
        super().__init__(
            definition_id,
            f"more than one transition for action '{action}' from state '{state_id}'",
        )


class UnknownStateReferenceError(DefinitionError):
    """A transition names a state that is not declared."""

    code: str = "UNKNOWN_STATE_REFERENCE"

    def __init__(self, definition_id: str, transition_id: str, state_id: str):
        self.transition_id = transition_id
        self.state_id = state_id
        super().__init__(
            definition_id,
            f"transition '{transition_id}' references undeclared state '{state_id}'",
        )


class InvalidInitialStateError(DefinitionError):
    """The declared initial state is missing from the state set."""

    code: str = "INVALID_INITIAL_STATE"

    def __init__(self, definition_id: str, state_id: str):
        self.state_id = state_id
        super().__init__(definition_id, f"initial state '{state_id}' is not declared")


# =============================================================================
# Instance errors
# =============================================================================


class InstanceNotFoundError(WorkflowKernelError):
    """No stored workflow instance exists for the id."""

    code: str = "INSTANCE_NOT_FOUND"

    def __init__(self, instance_id: str):
        self.instance_id = instance_id
        super().__init__(f"Workflow instance not found: {instance_id}")


# =============================================================================
# Approval chain errors
# =============================================================================


class ApprovalChainError(WorkflowKernelError):
    """Base for approval chain misuse."""

    code: str = "APPROVAL_CHAIN_ERROR"


class EmptyApprovalChainError(ApprovalChainError):
    """A chain cannot be built without approvers."""

    code: str = "EMPTY_APPROVAL_CHAIN"

    def __init__(self, revision_id: str):
        self.revision_id = revision_id
        super().__init__(f"Approval chain for revision {revision_id} has no approvers")


class ApprovalChainCompleteError(ApprovalChainError):
    """An action was recorded against a chain that already completed."""

    code: str = "APPROVAL_CHAIN_COMPLETE"

    def __init__(self, chain_id: str, outcome: str | None):
        self.chain_id = chain_id
        self.outcome = outcome
        super().__init__(
            f"Approval chain {chain_id} is already complete (outcome: {outcome})"
        )


class StepNotActionableError(ApprovalChainError):
    """The approver's step is not at the chain's current level."""

    code: str = "STEP_NOT_ACTIONABLE"

    def __init__(self, chain_id: str, approver_id: str, step_level: int, current_level: int):
        self.chain_id = chain_id
        self.approver_id = approver_id
        self.step_level = step_level
        self.current_level = current_level
        super().__init__(
            f"Approver {approver_id} is at level {step_level}; "
            f"chain {chain_id} is waiting on level {current_level}"
        )


class StepAlreadyResolvedError(ApprovalChainError):
    """The approver's step already carries a terminal status."""

    code: str = "STEP_ALREADY_RESOLVED"

    def __init__(self, chain_id: str, step_id: str, status: str):
        self.chain_id = chain_id
        self.step_id = step_id
        self.status = status
        super().__init__(f"Step {step_id} in chain {chain_id} is already {status}")


class UnauthorizedApproverError(ApprovalChainError):
    """The actor has no step in the chain."""

    code: str = "UNAUTHORIZED_APPROVER"

    def __init__(self, chain_id: str, approver_id: str):
        self.chain_id = chain_id
        self.approver_id = approver_id
        super().__init__(f"Approver {approver_id} has no step in chain {chain_id}")


class ChainNotFoundError(ApprovalChainError):
    """No stored approval chain exists for the id."""

    code: str = "CHAIN_NOT_FOUND"

    def __init__(self, chain_id: str):
        self.chain_id = chain_id
        super().__init__(f"Approval chain not found: {chain_id}")


class NoPendingCycleError(ApprovalChainError):
    """A review was recorded but no approval cycle is open."""

    code: str = "NO_PENDING_CYCLE"

    def __init__(self, cycle_count: int):
        self.cycle_count = cycle_count
        super().__init__(
            f"No pending approval cycle to review ({cycle_count} cycles recorded)"
        )


class CycleAlreadyOpenError(ApprovalChainError):
    """A new submission cycle was started while the previous one is pending."""

    code: str = "CYCLE_ALREADY_OPEN"

    def __init__(self, cycle_number: int):
        self.cycle_number = cycle_number
        super().__init__(
            f"Approval cycle {cycle_number} is still pending; review it before resubmitting"
        )


# =============================================================================
# Revision errors
# =============================================================================


class RevisionError(WorkflowKernelError):
    """Base for revision errors."""

    code: str = "REVISION_ERROR"


class InvalidVersionError(RevisionError):
    """A version string is not in "major.minor" form."""

    code: str = "INVALID_VERSION"

    def __init__(self, version: str):
        self.version = version
        super().__init__(f"Invalid version string: {version!r}")


class RevisionNotEditableError(RevisionError):
    """Changes may only be recorded on a draft revision."""

    code: str = "REVISION_NOT_EDITABLE"

    def __init__(self, revision_id: str, status: str):
        self.revision_id = revision_id
        self.status = status
        super().__init__(f"Revision {revision_id} is {status} and cannot be edited")


class RevisionNotFoundError(RevisionError):
    """No stored revision exists for the id."""

    code: str = "REVISION_NOT_FOUND"

    def __init__(self, revision_id: str):
        self.revision_id = revision_id
        super().__init__(f"Revision not found: {revision_id}")


# =============================================================================
# Threshold policy errors
# =============================================================================


class ThresholdPolicyError(WorkflowKernelError):
    """Base for threshold policy errors."""

    code: str = "THRESHOLD_POLICY_ERROR"


class UnknownThresholdPolicyError(ThresholdPolicyError):
    """The requested threshold policy name is not registered."""

    code: str = "UNKNOWN_THRESHOLD_POLICY"

    def __init__(self, policy_name: str, known: tuple[str, ...]):
        self.policy_name = policy_name
        self.known = known
        super().__init__(
            f"Unknown threshold policy '{policy_name}'; expected one of {', '.join(known)}"
        )


# =============================================================================
# Concurrency errors
# =============================================================================


class ConcurrencyError(WorkflowKernelError):
    """Base for concurrency-related errors."""

    code: str = "CONCURRENCY_ERROR"


class OptimisticLockError(ConcurrencyError):
    """The write was derived from a value that is no longer current."""

    code: str = "OPTIMISTIC_LOCK_CONFLICT"

    def __init__(self, entity_type: str, entity_id: str):
        self.entity_type = entity_type
        self.entity_id = entity_id
        super().__init__(
            f"Concurrent modification of {entity_type} {entity_id}; "
            "reload the latest value and retry"
        )


# =============================================================================
# Immutability errors
# =============================================================================


class ImmutabilityError(WorkflowKernelError):
    """Base for append-only violations."""

    code: str = "IMMUTABILITY_ERROR"


class HistoryRewriteError(ImmutabilityError):
    """A saved value does not extend the stored append-only history."""

    code: str = "HISTORY_REWRITE"

    def __init__(self, entity_type: str, entity_id: str, reason: str):
        self.entity_type = entity_type
        self.entity_id = entity_id
        self.reason = reason
        super().__init__(f"Cannot rewrite history of {entity_type} {entity_id}: {reason}")
