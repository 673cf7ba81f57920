"""
WorkflowStore -- reference persistence for instances, chains and revisions.

Responsibility:
    Save and load the engines' immutable values (state machine instances,
    approval chains, revisions) through SQLAlchemy, with optimistic
    concurrency on every write and append-only treatment of history.

Architecture position:
    Kernel > Services -- imperative shell around the pure engines.  Each
    public method is one unit of work in its own ``session_scope``, so the
    store can be called from worker threads (the pending-approvals fetcher
    does).

Invariants enforced:
    - Optimistic concurrency: a write names the value it was derived from
      (``base``).  New rows require ``base=None``; updates require the
      base's fingerprint to equal the stored fingerprint, checked by a
      conditional UPDATE.  A mismatch raises OptimisticLockError and
      nothing is written.
    - Append-only history: the new value's history must start with the
      stored history unchanged.  Only the suffix is inserted.  Anything
      else raises HistoryRewriteError.
    - Chain steps are fixed at creation; a resolved step never changes.
    - Reviewed approval cycles never change; cycles are never removed.

Failure modes:
    - OptimisticLockError on a stale base, a missing row for an update, or
      an existing row for an insert.
    - HistoryRewriteError when history, steps or cycles would be rewritten.
    - InstanceNotFoundError / ChainNotFoundError / RevisionNotFoundError
      on loads of unknown ids.

Audit relevance:
    Logs ``workflow_instance_saved``, ``approval_chain_saved``,
    ``revision_saved`` and ``optimistic_lock_conflict``.
"""

from __future__ import annotations

from typing import Any, Sequence

from sqlalchemy import select, update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session, sessionmaker

from workflow_kernel.db.engine import session_scope
from workflow_kernel.domain.approval import ApprovalChain, ApprovalStepStatus
from workflow_kernel.domain.revision import Revision
from workflow_kernel.domain.state_machine import StateMachineInstance
from workflow_kernel.exceptions import (
    ChainNotFoundError,
    HistoryRewriteError,
    InstanceNotFoundError,
    OptimisticLockError,
    RevisionNotFoundError,
)
from workflow_kernel.logging_config import get_logger
from workflow_kernel.models.approval_chain import ApprovalChainModel, ApprovalStepModel
from workflow_kernel.models.revision import (
    ApprovalCycleModel,
    RevisionModel,
    lifecycle_instance_id,
)
from workflow_kernel.models.workflow_instance import StateHistoryModel, WorkflowInstanceModel
from workflow_kernel.utils.hashing import fingerprint, to_json_ready

logger = get_logger("services.workflow_store")


class WorkflowStore:
    """SQLAlchemy-backed store with fingerprint-based optimistic locking."""

    def __init__(self, session_factory: sessionmaker[Session]):
        self._session_factory = session_factory

    # =========================================================================
    # State machine instances
    # =========================================================================

    def save_instance(
        self,
        instance_id: str,
        instance: StateMachineInstance,
        base: StateMachineInstance | None = None,
    ) -> None:
        """Insert (``base=None``) or update an instance from ``base``."""
        with session_scope(self._session_factory) as session:
            self._write_instance(session, instance_id, instance, base)
        logger.info(
            "workflow_instance_saved",
            extra={
                "instance_id": instance_id,
                "definition_id": instance.definition_id,
                "current_state": instance.current_state,
                "history_length": len(instance.history),
            },
        )

    def load_instance(self, instance_id: str) -> StateMachineInstance:
        with session_scope(self._session_factory) as session:
            model = session.get(WorkflowInstanceModel, instance_id)
            if model is None:
                raise InstanceNotFoundError(instance_id)
            return model.to_dto()

    def _write_instance(
        self,
        session: Session,
        instance_id: str,
        instance: StateMachineInstance,
        base: StateMachineInstance | None,
        *,
        check_base: bool = True,
    ) -> None:
        new_fingerprint = fingerprint(instance)
        if base is None and check_base:
            self._insert(
                session,
                "WorkflowInstance",
                instance_id,
                WorkflowInstanceModel.from_dto(instance_id, instance, new_fingerprint),
            )
            self._append_history(session, instance_id, instance, stored_length=0)
            return

        model = session.get(WorkflowInstanceModel, instance_id)
        if model is None:
            if not check_base:
                session.add(WorkflowInstanceModel.from_dto(instance_id, instance, new_fingerprint))
                session.flush()
                self._append_history(session, instance_id, instance, stored_length=0)
                return
            self._conflict("WorkflowInstance", instance_id)

        stored_history = [h.to_dto() for h in model.history]
        values = {
            "current_state": instance.current_state,
            "updated_at": instance.updated_at,
            "instance_metadata": to_json_ready(instance.metadata),
            "fingerprint": new_fingerprint,
        }
        if check_base:
            self._conditional_update(
                session, WorkflowInstanceModel, "WorkflowInstance", instance_id,
                fingerprint(base), values,
            )
        else:
            for key, value in values.items():
                setattr(model, key, value)
            session.flush()
        self._check_prefix(
            "WorkflowInstance", instance_id, stored_history, instance.history, "history",
        )
        self._append_history(session, instance_id, instance, stored_length=len(stored_history))

    def _append_history(
        self,
        session: Session,
        instance_id: str,
        instance: StateMachineInstance,
        *,
        stored_length: int,
    ) -> None:
        for sequence, entry in enumerate(instance.history[stored_length:], start=stored_length):
            session.add(StateHistoryModel.from_dto(instance_id, sequence, entry))
        session.flush()

    # =========================================================================
    # Approval chains
    # =========================================================================

    def save_chain(self, chain: ApprovalChain, base: ApprovalChain | None = None) -> None:
        """Insert (``base=None``) or update a chain from ``base``."""
        with session_scope(self._session_factory) as session:
            self._write_chain(session, chain, base)
        logger.info(
            "approval_chain_saved",
            extra={
                "chain_id": chain.id,
                "revision_id": chain.revision_id,
                "current_level": chain.current_level,
                "is_complete": chain.is_complete,
            },
        )

    def load_chain(self, chain_id: str) -> ApprovalChain:
        with session_scope(self._session_factory) as session:
            model = session.get(ApprovalChainModel, chain_id)
            if model is None:
                raise ChainNotFoundError(chain_id)
            return model.to_dto()

    def find_pending_chains_for_principal(self, principal_id: str) -> list[ApprovalChain]:
        """Open chains with a pending step for ``principal_id`` at the current level."""
        stmt = (
            select(ApprovalChainModel)
            .join(ApprovalStepModel, ApprovalStepModel.chain_id == ApprovalChainModel.id)
            .where(
                ApprovalChainModel.is_complete.is_(False),
                ApprovalStepModel.approver_id == principal_id,
                ApprovalStepModel.status == ApprovalStepStatus.PENDING.value,
                ApprovalStepModel.level == ApprovalChainModel.current_level,
            )
            .order_by(ApprovalChainModel.started_at, ApprovalChainModel.id)
            .distinct()
        )
        with session_scope(self._session_factory) as session:
            return [model.to_dto() for model in session.scalars(stmt)]

    def _write_chain(
        self,
        session: Session,
        chain: ApprovalChain,
        base: ApprovalChain | None,
        *,
        check_base: bool = True,
    ) -> None:
        new_fingerprint = fingerprint(chain)
        if base is None and check_base:
            self._insert(
                session, "ApprovalChain", chain.id, ApprovalChainModel.from_dto(chain, new_fingerprint),
            )
            return

        model = session.get(ApprovalChainModel, chain.id)
        if model is None:
            if not check_base:
                session.add(ApprovalChainModel.from_dto(chain, new_fingerprint))
                session.flush()
                return
            self._conflict("ApprovalChain", chain.id)

        if check_base:
            self._conditional_update(
                session, ApprovalChainModel, "ApprovalChain", chain.id, fingerprint(base),
                {
                    "current_level": chain.current_level,
                    "updated_at": chain.updated_at,
                    "is_complete": chain.is_complete,
                    "completed_at": chain.completed_at,
                    "outcome": chain.outcome.value if chain.outcome else None,
                    "fingerprint": new_fingerprint,
                },
            )
        else:
            model.apply(chain, new_fingerprint)
        self._check_steps(model, chain)
        for step_model, step in zip(model.steps, chain.steps):
            step_model.apply(step)
        session.flush()

    def _check_steps(self, model: ApprovalChainModel, chain: ApprovalChain) -> None:
        stored = [s.to_dto() for s in model.steps]
        if [s.id for s in stored] != [s.id for s in chain.steps]:
            raise HistoryRewriteError(
                "ApprovalChain", chain.id, "Approval steps cannot be added, removed or reordered",
            )
        for old, new in zip(stored, chain.steps):
            if old.status != ApprovalStepStatus.PENDING and to_json_ready(old) != to_json_ready(new):
                raise HistoryRewriteError(
                    "ApprovalChain", chain.id, f"Resolved step '{old.id}' cannot be changed",
                )

    # =========================================================================
    # Revisions
    # =========================================================================

    def save_revision(self, revision: Revision, base: Revision | None = None) -> None:
        """Insert (``base=None``) or update a revision from ``base``.

        The lifecycle instance, current chain and cycles are written in the
        same transaction; the revision fingerprint covers all of them.
        """
        with session_scope(self._session_factory) as session:
            self._write_revision(session, revision, base)
        logger.info(
            "revision_saved",
            extra={
                "revision_id": revision.id,
                "document_id": revision.document_id,
                "version": revision.version,
                "status": revision.status.value,
                "cycle_count": len(revision.approval_history),
            },
        )

    def load_revision(self, revision_id: str) -> Revision:
        with session_scope(self._session_factory) as session:
            model = session.get(RevisionModel, revision_id)
            if model is None:
                raise RevisionNotFoundError(revision_id)
            return self._revision_dto(session, model)

    def list_revisions(self, document_id: str) -> list[Revision]:
        """Revisions of a document, oldest first."""
        stmt = (
            select(RevisionModel)
            .where(RevisionModel.document_id == document_id)
            .order_by(RevisionModel.created_at, RevisionModel.id)
        )
        with session_scope(self._session_factory) as session:
            return [self._revision_dto(session, m) for m in session.scalars(stmt)]

    def _revision_dto(self, session: Session, model: RevisionModel) -> Revision:
        lifecycle = session.get(WorkflowInstanceModel, model.lifecycle_instance_id)
        chain = (
            session.get(ApprovalChainModel, model.approval_chain_id)
            if model.approval_chain_id
            else None
        )
        return model.to_dto(lifecycle.to_dto(), chain.to_dto() if chain else None)

    def _write_revision(self, session: Session, revision: Revision, base: Revision | None) -> None:
        new_fingerprint = fingerprint(revision)
        model = session.get(RevisionModel, revision.id)
        if base is None and model is not None:
            self._conflict("Revision", revision.id)
        if base is not None and model is None:
            self._conflict("Revision", revision.id)

        if model is not None:
            self._conditional_update(
                session, RevisionModel, "Revision", revision.id, fingerprint(base),
                {"fingerprint": new_fingerprint},
            )

        self._write_instance(
            session, lifecycle_instance_id(revision.id), revision.lifecycle, None,
            check_base=False,
        )
        if revision.approval_chain is not None:
            self._write_chain(session, revision.approval_chain, None, check_base=False)

        if model is None:
            self._insert(session, "Revision", revision.id, RevisionModel.from_dto(revision, new_fingerprint))
            model = session.get(RevisionModel, revision.id)
        else:
            session.refresh(model)
            model.apply(revision, new_fingerprint)
        self._write_cycles(session, model, revision)
        session.flush()

    def _write_cycles(self, session: Session, model: RevisionModel, revision: Revision) -> None:
        stored = {c.cycle_number: c for c in model.cycles}
        numbers = [c.cycle_number for c in revision.approval_history]
        if not set(stored) <= set(numbers):
            raise HistoryRewriteError("Revision", revision.id, "Approval cycles cannot be removed")

        for cycle in revision.approval_history:
            existing = stored.get(cycle.cycle_number)
            if existing is None:
                session.add(ApprovalCycleModel.from_dto(revision.id, cycle))
                continue
            old = existing.to_dto()
            if old == cycle:
                continue
            if not old.is_open or (old.id, old.submitted_by) != (cycle.id, cycle.submitted_by):
                raise HistoryRewriteError(
                    "Revision", revision.id,
                    f"Approval cycle {cycle.cycle_number} has been reviewed and cannot be changed",
                )
            existing.apply_review(cycle)

    # =========================================================================
    # Shared helpers
    # =========================================================================

    def _insert(self, session: Session, entity_type: str, entity_id: str, model: Any) -> None:
        if session.get(type(model), entity_id) is not None:
            self._conflict(entity_type, entity_id)
        session.add(model)
        try:
            session.flush()
        except IntegrityError as exc:
            self._conflict(entity_type, entity_id, cause=exc)

    def _conditional_update(
        self,
        session: Session,
        model_cls: type,
        entity_type: str,
        entity_id: str,
        base_fingerprint: str,
        values: dict[str, Any],
    ) -> None:
        result = session.execute(
            update(model_cls)
            .where(model_cls.id == entity_id, model_cls.fingerprint == base_fingerprint)
            .values(**values)
            .execution_options(synchronize_session=False)
        )
        if result.rowcount != 1:
            self._conflict(entity_type, entity_id)

    @staticmethod
    def _check_prefix(
        entity_type: str,
        entity_id: str,
        stored: Sequence[Any],
        new: Sequence[Any],
        label: str,
    ) -> None:
        if len(new) < len(stored):
            raise HistoryRewriteError(
                entity_type, entity_id,
                f"{label} shrank from {len(stored)} to {len(new)} entries",
            )
        for index, (old, candidate) in enumerate(zip(stored, new)):
            if to_json_ready(old) != to_json_ready(candidate):
                raise HistoryRewriteError(
                    entity_type, entity_id, f"{label} entry {index} was modified",
                )

    @staticmethod
    def _conflict(entity_type: str, entity_id: str, cause: Exception | None = None) -> None:
        logger.warning(
            "optimistic_lock_conflict",
            extra={"entity_type": entity_type, "entity_id": entity_id},
        )
        raise OptimisticLockError(entity_type, entity_id) from cause
