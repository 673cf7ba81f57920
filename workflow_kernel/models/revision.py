"""
Module: workflow_kernel.models.revision
Responsibility: ORM persistence for document revisions and their approval
    cycles.

Architecture position: Kernel > Models.  May import from db/, domain/,
    exceptions and utils only.

Invariants enforced:
    - ``status`` mirrors the lifecycle instance's current state so
      revisions can be listed without loading history.
    - Field changes are stored as a JSON list in recording order.
    - Approval cycles are keyed by (revision_id, cycle_number).  A cycle
      can be reviewed once; reviewed cycles are never changed or deleted.
    - The lifecycle instance and current chain live in their own tables;
      ``lifecycle_instance_id`` and ``approval_chain_id`` point at them.

Failure modes:
    - HistoryRewriteError on deleting a cycle row.
"""

from __future__ import annotations

from datetime import datetime
from decimal import Decimal
from typing import Any

from sqlalchemy import JSON, CheckConstraint, ForeignKey, Index, Integer, String, Text, event
from sqlalchemy.orm import Mapped, mapped_column, relationship

from workflow_kernel.db.base import Base
from workflow_kernel.domain.approval import ApprovalChain, ApprovalCycle, CycleOutcome
from workflow_kernel.domain.revision import Revision, RevisionChange
from workflow_kernel.domain.state_machine import StateMachineInstance
from workflow_kernel.exceptions import HistoryRewriteError
from workflow_kernel.utils.hashing import to_json_ready


def lifecycle_instance_id(revision_id: str) -> str:
    """Instance row id of a revision's lifecycle."""
    return f"revision:{revision_id}"


class RevisionModel(Base):
    """Persistent document revision."""

    __tablename__ = "revisions"

    __table_args__ = (
        Index("ix_revisions_document", "document_id", "created_at"),
        Index("ix_revisions_status", "status"),
    )

    id: Mapped[str] = mapped_column(String(100), primary_key=True)
    document_id: Mapped[str] = mapped_column(String(100), nullable=False)
    version: Mapped[str] = mapped_column(String(20), nullable=False)
    status: Mapped[str] = mapped_column(String(50), nullable=False)
    created_by: Mapped[str] = mapped_column(String(100), nullable=False)
    created_at: Mapped[datetime] = mapped_column(nullable=False)
    updated_at: Mapped[datetime] = mapped_column(nullable=False)
    baseline_total: Mapped[Decimal] = mapped_column(nullable=False)
    revised_total: Mapped[Decimal] = mapped_column(nullable=False)
    previous_version: Mapped[str | None] = mapped_column(String(20), nullable=True)
    changes: Mapped[list[Any]] = mapped_column(JSON, nullable=False, default=list)
    lifecycle_instance_id: Mapped[str] = mapped_column(
        String(100), ForeignKey("workflow_instances.id"), nullable=False,
    )
    approval_chain_id: Mapped[str | None] = mapped_column(
        String(100), ForeignKey("approval_chains.id"), nullable=True,
    )
    fingerprint: Mapped[str] = mapped_column(String(64), nullable=False)

    cycles: Mapped[list[ApprovalCycleModel]] = relationship(
        "ApprovalCycleModel",
        back_populates="revision",
        order_by="ApprovalCycleModel.cycle_number",
        lazy="selectin",
    )

    def __repr__(self) -> str:
        return (
            f"<Revision {self.id} document={self.document_id} "
            f"v{self.version} status={self.status}>"
        )

    def to_dto(
        self,
        lifecycle: StateMachineInstance,
        approval_chain: ApprovalChain | None,
    ) -> Revision:
        """Convert ORM model to frozen domain value.

        The lifecycle instance and chain are loaded from their own tables
        by the caller.
        """
        return Revision(
            id=self.id,
            document_id=self.document_id,
            version=self.version,
            lifecycle=lifecycle,
            created_by=self.created_by,
            created_at=self.created_at,
            updated_at=self.updated_at,
            baseline_total=self.baseline_total,
            revised_total=self.revised_total,
            previous_version=self.previous_version,
            changes=tuple(_change_from_json(c) for c in self.changes or ()),
            approval_chain=approval_chain,
            approval_history=tuple(c.to_dto() for c in self.cycles),
        )

    def apply(self, dto: Revision, fingerprint: str) -> None:
        """Copy the mutable revision columns from ``dto``."""
        self.version = dto.version
        self.status = dto.lifecycle.current_state
        self.updated_at = dto.updated_at
        self.revised_total = dto.revised_total
        self.changes = [to_json_ready(c) for c in dto.changes]
        self.approval_chain_id = dto.approval_chain.id if dto.approval_chain else None
        self.fingerprint = fingerprint

    @classmethod
    def from_dto(cls, dto: Revision, fingerprint: str) -> RevisionModel:
        model = cls(
            id=dto.id,
            document_id=dto.document_id,
            created_by=dto.created_by,
            created_at=dto.created_at,
            baseline_total=dto.baseline_total,
            previous_version=dto.previous_version,
            lifecycle_instance_id=lifecycle_instance_id(dto.id),
        )
        model.apply(dto, fingerprint)
        return model


def _change_from_json(data: dict[str, Any]) -> RevisionChange:
    return RevisionChange(
        id=data["id"],
        field=data["field"],
        previous_value=data.get("previous_value"),
        new_value=data.get("new_value"),
        changed_at=datetime.fromisoformat(data["changed_at"]),
        changed_by=data["changed_by"],
        is_critical=bool(data["is_critical"]),
        line_id=data.get("line_id"),
        description=data.get("description"),
    )


class ApprovalCycleModel(Base):
    """One submit-then-review round of a revision."""

    __tablename__ = "approval_cycles"

    __table_args__ = (
        CheckConstraint(
            "outcome IN ('pending', 'approved', 'rejected', 'changes_requested')",
            name="ck_approval_cycles_valid_outcome",
        ),
    )

    revision_id: Mapped[str] = mapped_column(
        String(100), ForeignKey("revisions.id"), primary_key=True,
    )
    cycle_number: Mapped[int] = mapped_column(Integer, primary_key=True)
    cycle_id: Mapped[str] = mapped_column(String(100), nullable=False)
    submitted_at: Mapped[datetime] = mapped_column(nullable=False)
    submitted_by: Mapped[str] = mapped_column(String(100), nullable=False)
    submission_notes: Mapped[str | None] = mapped_column(Text, nullable=True)
    resolution: Mapped[str | None] = mapped_column(Text, nullable=True)
    reviewed_by: Mapped[str | None] = mapped_column(String(100), nullable=True)
    reviewer_role: Mapped[str | None] = mapped_column(String(100), nullable=True)
    reviewed_at: Mapped[datetime | None] = mapped_column(nullable=True)
    outcome: Mapped[str] = mapped_column(String(20), nullable=False)
    feedback: Mapped[str | None] = mapped_column(Text, nullable=True)

    revision: Mapped[RevisionModel] = relationship("RevisionModel", back_populates="cycles")

    def __repr__(self) -> str:
        return (
            f"<ApprovalCycle {self.revision_id}#{self.cycle_number} "
            f"outcome={self.outcome}>"
        )

    def to_dto(self) -> ApprovalCycle:
        return ApprovalCycle(
            id=self.cycle_id,
            cycle_number=self.cycle_number,
            submitted_at=self.submitted_at,
            submitted_by=self.submitted_by,
            submission_notes=self.submission_notes,
            resolution=self.resolution,
            reviewed_by=self.reviewed_by,
            reviewer_role=self.reviewer_role,
            reviewed_at=self.reviewed_at,
            outcome=CycleOutcome(self.outcome),
            feedback=self.feedback,
        )

    def apply_review(self, dto: ApprovalCycle) -> None:
        """Record the review of an open cycle."""
        self.reviewed_by = dto.reviewed_by
        self.reviewer_role = dto.reviewer_role
        self.reviewed_at = dto.reviewed_at
        self.outcome = dto.outcome.value
        self.feedback = dto.feedback

    @classmethod
    def from_dto(cls, revision_id: str, dto: ApprovalCycle) -> ApprovalCycleModel:
        model = cls(
            revision_id=revision_id,
            cycle_number=dto.cycle_number,
            cycle_id=dto.id,
            submitted_at=dto.submitted_at,
            submitted_by=dto.submitted_by,
            submission_notes=dto.submission_notes,
            resolution=dto.resolution,
        )
        model.apply_review(dto)
        return model


@event.listens_for(ApprovalCycleModel, "before_delete")
def prevent_cycle_delete(mapper, connection, target):
    """Prevent deletion of approval cycles."""
    raise HistoryRewriteError(
        entity_type="ApprovalCycle",
        entity_id=f"{target.revision_id}#{target.cycle_number}",
        reason="Approval cycles are kept for audit -- cannot delete",
    )
