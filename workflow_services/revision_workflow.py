"""
workflow_services.revision_workflow -- Revision lifecycle coordinator.

Responsibility:
    Drives a ``Revision`` through the revision status definition: record
    draft changes (with version recomputation), evaluate the document
    type's threshold policy, submit (auto-approve under threshold, or
    build an approval chain and open a cycle), record approver actions,
    and follow the approved revision through send / confirm / decline.

Architecture position:
    Services layer.  Thin coordinator: thresholds, chain progression,
    versioning and transition legality are delegated to the pure engines.
    Returns new values; persistence is the caller's (see
    ``WorkflowStore``).

Invariants enforced:
    - Status only changes through ``StateMachine.transition`` on the
      revision's lifecycle instance, so every change is in history.
    - Changes are recorded on drafts only.
    - Each submission that needs approval builds a fresh chain and
      appends a new cycle; earlier cycles are kept.
    - A completed chain closes the open cycle exactly once.

Failure modes:
    - Illegal lifecycle moves come back as ``result.success is False``.
    - ``RevisionNotEditableError`` when recording a change off-draft.
    - ``ChainNotFoundError`` when acting on a revision with no chain.
    - Chain misuse errors propagate from ``advance_chain``.
"""

from __future__ import annotations

from dataclasses import dataclass, replace
from decimal import Decimal
from typing import Any, Iterable

from workflow_config import (
    WorkflowConfigurationSet,
    build_approvers,
    build_critical_fields,
    build_same_level_policy,
    build_threshold_policy,
    get_document_type,
)
from workflow_engines.approval_chain import (
    CYCLE_OUTCOME_BY_ACTION,
    advance_chain,
    create_approval_chain,
    record_cycle_review,
    start_cycle,
)
from workflow_engines.state_machine import StateMachine
from workflow_engines.thresholds import ThresholdPolicy, to_decimal
from workflow_engines.versioning import (
    CRITICAL_FIELDS,
    INITIAL_VERSION,
    can_edit_revision,
    get_next_version,
    is_critical_change,
)
from workflow_kernel.domain.approval import (
    ApprovalAction,
    ApprovalRequirement,
    Approver,
    ChainOutcome,
    CycleOutcome,
    SameLevelPolicy,
)
from workflow_kernel.domain.clock import Clock, SystemClock
from workflow_kernel.domain.ids import IdGenerator, uuid_id_generator
from workflow_kernel.domain.revision import Revision, RevisionChange
from workflow_kernel.domain.state_machine import Actor, Capabilities, TransitionResult
from workflow_kernel.exceptions import ChainNotFoundError, RevisionNotEditableError
from workflow_kernel.logging_config import LogContext, get_logger
from workflow_modules.revisions.workflows import REVISION_STATUS

logger = get_logger("services.revision_workflow")


@dataclass(frozen=True)
class RevisionOutcome:
    """Revision after an operation.

    ``result`` is None when the operation did not attempt a lifecycle
    transition (an approval recorded on a chain that is still open).
    """

    revision: Revision
    result: TransitionResult | None
    requirement: ApprovalRequirement | None = None

    @property
    def success(self) -> bool:
        return self.result is None or self.result.success


class RevisionWorkflow:
    """Coordinates revision edits, approvals and delivery for one document type."""

    def __init__(
        self,
        threshold_policy: ThresholdPolicy,
        approvers: Iterable[Approver],
        *,
        critical_fields: Iterable[str] = CRITICAL_FIELDS,
        same_level_policy: SameLevelPolicy = SameLevelPolicy.ALL,
        clock: Clock | None = None,
        id_generator: IdGenerator | None = None,
    ):
        self._policy = threshold_policy
        self._approvers = tuple(approvers)
        self._critical_fields = frozenset(critical_fields)
        self._same_level_policy = same_level_policy
        self._clock = clock or SystemClock()
        self._new_id = id_generator or uuid_id_generator
        self._machine = StateMachine(REVISION_STATUS, clock=self._clock, id_generator=self._new_id)

    @classmethod
    def from_config(
        cls,
        config: WorkflowConfigurationSet,
        document_type: str,
        *,
        clock: Clock | None = None,
        id_generator: IdGenerator | None = None,
    ) -> RevisionWorkflow:
        doc = get_document_type(config, document_type)
        return cls(
            build_threshold_policy(config, doc),
            build_approvers(doc),
            critical_fields=build_critical_fields(doc),
            same_level_policy=build_same_level_policy(doc),
            clock=clock,
            id_generator=id_generator,
        )

    @property
    def machine(self) -> StateMachine:
        return self._machine

    @property
    def threshold_policy(self) -> ThresholdPolicy:
        return self._policy

    # -------------------------------------------------------------------------
    # Drafting
    # -------------------------------------------------------------------------

    def create_draft(
        self,
        document_id: str,
        created_by: str,
        baseline_total: Decimal | int | str,
        *,
        previous_version: str | None = None,
    ) -> Revision:
        """Open a draft revision.

        Without ``previous_version`` this is the document's first revision
        (``1.0``).  Otherwise the draft starts at the next minor version
        and is re-versioned as changes are recorded.
        """
        now = self._clock.now()
        version = (
            get_next_version(previous_version, False) if previous_version else INITIAL_VERSION
        )
        total = to_decimal(baseline_total)
        revision = Revision(
            id=self._new_id(),
            document_id=document_id,
            version=version,
            lifecycle=self._machine.create({"document_id": document_id}),
            created_by=created_by,
            created_at=now,
            updated_at=now,
            baseline_total=total,
            revised_total=total,
            previous_version=previous_version,
        )
        logger.info(
            "revision_draft_created",
            extra={
                "revision_id": revision.id,
                "document_id": document_id,
                "version": version,
                "previous_version": previous_version,
            },
        )
        return revision

    def record_change(
        self,
        revision: Revision,
        field: str,
        previous_value: Any,
        new_value: Any,
        *,
        changed_by: str,
        revised_total: Decimal | int | str | None = None,
        line_id: str | None = None,
        description: str | None = None,
    ) -> Revision:
        """Append a change to a draft and recompute its version.

        Raises:
            RevisionNotEditableError: if the revision is not a draft.
        """
        if not can_edit_revision(revision.status):
            raise RevisionNotEditableError(revision.id, revision.status.value)

        now = self._clock.now()
        change = RevisionChange(
            id=self._new_id(),
            field=field,
            previous_value=previous_value,
            new_value=new_value,
            changed_at=now,
            changed_by=changed_by,
            is_critical=is_critical_change(field, self._critical_fields),
            line_id=line_id,
            description=description,
        )
        changes = revision.changes + (change,)
        version = revision.version
        if revision.previous_version is not None:
            version = get_next_version(
                revision.previous_version, any(c.is_critical for c in changes),
            )
        updated = replace(
            revision,
            changes=changes,
            version=version,
            revised_total=(
                to_decimal(revised_total) if revised_total is not None else revision.revised_total
            ),
            updated_at=now,
        )
        logger.info(
            "revision_change_recorded",
            extra={
                "revision_id": revision.id,
                "field": field,
                "is_critical": change.is_critical,
                "version": version,
            },
        )
        return updated

    # -------------------------------------------------------------------------
    # Approval
    # -------------------------------------------------------------------------

    def evaluate_approval(self, revision: Revision) -> ApprovalRequirement:
        return self._policy.evaluate(revision.baseline_total, revision.revised_total)

    def _payload(self, revision: Revision, **extra: Any) -> dict[str, Any]:
        payload: dict[str, Any] = {"change_count": len(revision.changes)}
        payload.update(extra)
        return payload

    def _apply(
        self,
        revision: Revision,
        action: str,
        actor_id: str,
        payload: dict[str, Any],
        notes: str | None = None,
        **updates: Any,
    ) -> RevisionOutcome:
        outcome = self._machine.transition(
            revision.lifecycle, action, actor=Actor(id=actor_id), payload=payload, notes=notes,
        )
        if not outcome.result.success:
            return RevisionOutcome(revision, outcome.result)
        updated = replace(
            revision, lifecycle=outcome.instance, updated_at=outcome.instance.updated_at, **updates,
        )
        return RevisionOutcome(updated, outcome.result)

    def submit(
        self,
        revision: Revision,
        submitted_by: str,
        *,
        notes: str | None = None,
        resolution: str | None = None,
    ) -> RevisionOutcome:
        """Submit a draft.

        Under threshold the revision is auto-approved with no chain.
        Otherwise it moves to pending_approval with a new chain and cycle.
        """
        requirement = self.evaluate_approval(revision)
        payload = self._payload(
            revision,
            approval_required=requirement.requires_approval,
            approval_reason=requirement.reason,
            threshold_policy=requirement.policy_name,
        )

        with LogContext.bind(revision_id=revision.id, actor_id=submitted_by):
            if not requirement.requires_approval:
                outcome = self._apply(revision, "auto_approve", submitted_by, payload, notes)
                if outcome.result.success:
                    logger.info(
                        "revision_auto_approved",
                        extra={"policy_name": requirement.policy_name, "version": revision.version},
                    )
                return replace(outcome, requirement=requirement)

            # Chain and cycle are only built for a legal submit
            verdict = self._machine.can_transition(
                revision.lifecycle, "submit", actor=Actor(id=submitted_by), payload=payload,
            )
            if not verdict.allowed:
                outcome = self._apply(revision, "submit", submitted_by, payload, notes)
                return replace(outcome, requirement=requirement)

            chain = create_approval_chain(
                revision.id,
                self._approvers,
                same_level_policy=self._same_level_policy,
                clock=self._clock,
                id_generator=self._new_id,
            )
            history = start_cycle(
                revision.approval_history,
                submitted_by=submitted_by,
                notes=notes,
                resolution=resolution,
                clock=self._clock,
                id_generator=self._new_id,
            )
            outcome = self._apply(
                revision,
                "submit",
                submitted_by,
                {**payload, "chain_id": chain.id},
                notes,
                approval_chain=chain,
                approval_history=history,
            )
            logger.info(
                "revision_submitted",
                extra={
                    "chain_id": chain.id,
                    "cycle_number": len(history),
                    "policy_name": requirement.policy_name,
                    "approval_level": requirement.approval_level,
                },
            )
            return replace(outcome, requirement=requirement)

    def act(
        self,
        revision: Revision,
        approver_id: str,
        action: ApprovalAction | str,
        *,
        notes: str | None = None,
        reviewer_role: str | None = None,
        acted_by: str | None = None,
    ) -> RevisionOutcome:
        """Record an approver's action on the revision's chain.

        When the chain completes, the open cycle is closed and the
        revision moves to approved, rejected or back to draft.

        Raises:
            ChainNotFoundError: the revision has no approval chain.
        """
        action = ApprovalAction(action)
        chain = revision.approval_chain
        if chain is None:
            raise ChainNotFoundError(f"revision:{revision.id}")

        with LogContext.bind(revision_id=revision.id, chain_id=chain.id, actor_id=approver_id):
            step = chain.step_for(approver_id)
            chain = advance_chain(
                chain, approver_id, action, notes=notes, acted_by=acted_by, clock=self._clock,
            )
            if not chain.is_complete:
                return RevisionOutcome(
                    replace(revision, approval_chain=chain, updated_at=chain.updated_at), None,
                )

            if chain.outcome == ChainOutcome.APPROVED:
                cycle_outcome, lifecycle_action = CycleOutcome.APPROVED, "approve"
            else:
                cycle_outcome = CYCLE_OUTCOME_BY_ACTION[action]
                lifecycle_action = action.value

            history = record_cycle_review(
                revision.approval_history,
                outcome=cycle_outcome,
                reviewed_by=approver_id,
                reviewer_role=reviewer_role or (step.approver.role if step else None),
                feedback=notes,
                clock=self._clock,
            )
            outcome = self._apply(
                revision,
                lifecycle_action,
                approver_id,
                self._payload(revision, chain_outcome=chain.outcome.value, chain_id=chain.id),
                notes,
                approval_chain=chain,
                approval_history=history,
            )
            logger.info(
                "revision_review_completed",
                extra={
                    "cycle_outcome": cycle_outcome.value,
                    "status": outcome.revision.status.value,
                },
            )
            return outcome

    # -------------------------------------------------------------------------
    # Delivery
    # -------------------------------------------------------------------------

    def send(self, revision: Revision, actor_id: str, *, notes: str | None = None) -> RevisionOutcome:
        return self._apply(revision, "send", actor_id, self._payload(revision), notes)

    def confirm(self, revision: Revision, actor_id: str, *, notes: str | None = None) -> RevisionOutcome:
        return self._apply(revision, "confirm", actor_id, self._payload(revision), notes)

    def decline(self, revision: Revision, actor_id: str, *, notes: str | None = None) -> RevisionOutcome:
        return self._apply(revision, "decline", actor_id, self._payload(revision), notes)

    # -------------------------------------------------------------------------
    # Reads
    # -------------------------------------------------------------------------

    def capabilities(self, revision: Revision, actor: Actor | None = None) -> Capabilities:
        """Lifecycle capabilities with the approval verdict and chain outcome applied."""
        extra: dict[str, Any] = {}
        if can_edit_revision(revision.status):
            requirement = self.evaluate_approval(revision)
            extra["approval_required"] = requirement.requires_approval
            extra["approval_reason"] = requirement.reason
        chain = revision.approval_chain
        if chain is not None and chain.is_complete and chain.outcome is not None:
            extra["chain_outcome"] = chain.outcome.value
        return self._machine.get_capabilities(
            revision.lifecycle, actor=actor, payload=self._payload(revision, **extra),
        )
