"""
Module: workflow_kernel.models.approval_chain
Responsibility: ORM persistence for approval chains and their steps.

Architecture position: Kernel > Models.  May import from db/, domain/ and
    utils only.

Invariants enforced:
    - A chain's steps are fixed at creation: (chain_id, position) rows are
      written once and afterwards only their status columns change.
    - Covering index on (approver_id, status, level) for the
      pending-approvals lookup.
"""

from __future__ import annotations

from datetime import datetime

from sqlalchemy import Boolean, CheckConstraint, ForeignKey, Index, Integer, String, Text
from sqlalchemy.orm import Mapped, mapped_column, relationship

from workflow_kernel.db.base import Base
from workflow_kernel.domain.approval import (
    ApprovalAction,
    ApprovalChain,
    ApprovalStep,
    ApprovalStepStatus,
    Approver,
    ChainOutcome,
    SameLevelPolicy,
)


class ApprovalChainModel(Base):
    """Persistent approval chain."""

    __tablename__ = "approval_chains"

    __table_args__ = (
        CheckConstraint(
            "outcome IS NULL OR outcome IN ('approved', 'rejected')",
            name="ck_approval_chains_valid_outcome",
        ),
        Index("ix_approval_chains_revision", "revision_id", "started_at"),
    )

    id: Mapped[str] = mapped_column(String(100), primary_key=True)
    revision_id: Mapped[str] = mapped_column(String(100), nullable=False)
    current_level: Mapped[int] = mapped_column(Integer, nullable=False)
    started_at: Mapped[datetime] = mapped_column(nullable=False)
    updated_at: Mapped[datetime] = mapped_column(nullable=False)
    is_complete: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    completed_at: Mapped[datetime | None] = mapped_column(nullable=True)
    outcome: Mapped[str | None] = mapped_column(String(20), nullable=True)
    same_level_policy: Mapped[str] = mapped_column(String(10), nullable=False)
    fingerprint: Mapped[str] = mapped_column(String(64), nullable=False)

    steps: Mapped[list[ApprovalStepModel]] = relationship(
        "ApprovalStepModel",
        back_populates="chain",
        order_by="ApprovalStepModel.position",
        lazy="selectin",
    )

    def __repr__(self) -> str:
        return (
            f"<ApprovalChain {self.id} revision={self.revision_id} "
            f"level={self.current_level} complete={self.is_complete}>"
        )

    def to_dto(self) -> ApprovalChain:
        """Convert ORM model to frozen domain value."""
        return ApprovalChain(
            id=self.id,
            revision_id=self.revision_id,
            steps=tuple(s.to_dto() for s in self.steps),
            current_level=self.current_level,
            started_at=self.started_at,
            updated_at=self.updated_at,
            is_complete=self.is_complete,
            completed_at=self.completed_at,
            outcome=ChainOutcome(self.outcome) if self.outcome else None,
            same_level_policy=SameLevelPolicy(self.same_level_policy),
        )

    def apply(self, dto: ApprovalChain, fingerprint: str) -> None:
        """Copy the mutable chain columns from ``dto``."""
        self.current_level = dto.current_level
        self.updated_at = dto.updated_at
        self.is_complete = dto.is_complete
        self.completed_at = dto.completed_at
        self.outcome = dto.outcome.value if dto.outcome else None
        self.fingerprint = fingerprint

    @classmethod
    def from_dto(cls, dto: ApprovalChain, fingerprint: str) -> ApprovalChainModel:
        return cls(
            id=dto.id,
            revision_id=dto.revision_id,
            current_level=dto.current_level,
            started_at=dto.started_at,
            updated_at=dto.updated_at,
            is_complete=dto.is_complete,
            completed_at=dto.completed_at,
            outcome=dto.outcome.value if dto.outcome else None,
            same_level_policy=dto.same_level_policy.value,
            fingerprint=fingerprint,
            steps=[ApprovalStepModel.from_dto(dto.id, i, s) for i, s in enumerate(dto.steps)],
        )


class ApprovalStepModel(Base):
    """One approver's step within a chain."""

    __tablename__ = "approval_steps"

    __table_args__ = (
        CheckConstraint(
            "status IN ('pending', 'approved', 'rejected', 'skipped')",
            name="ck_approval_steps_valid_status",
        ),
        Index("ix_approval_steps_pending_lookup", "approver_id", "status", "level"),
    )

    chain_id: Mapped[str] = mapped_column(
        String(100), ForeignKey("approval_chains.id"), primary_key=True,
    )
    position: Mapped[int] = mapped_column(Integer, primary_key=True)
    step_id: Mapped[str] = mapped_column(String(100), nullable=False)
    level: Mapped[int] = mapped_column(Integer, nullable=False)
    approver_id: Mapped[str] = mapped_column(String(100), nullable=False)
    approver_name: Mapped[str] = mapped_column(nullable=False)
    approver_role: Mapped[str] = mapped_column(String(100), nullable=False)
    approver_email: Mapped[str | None] = mapped_column(nullable=True)
    approver_level: Mapped[int] = mapped_column(Integer, nullable=False)
    status: Mapped[str] = mapped_column(String(20), nullable=False)
    action: Mapped[str | None] = mapped_column(String(20), nullable=True)
    notes: Mapped[str | None] = mapped_column(Text, nullable=True)
    action_date: Mapped[datetime | None] = mapped_column(nullable=True)
    action_by: Mapped[str | None] = mapped_column(String(100), nullable=True)

    chain: Mapped[ApprovalChainModel] = relationship(
        "ApprovalChainModel", back_populates="steps",
    )

    def __repr__(self) -> str:
        return (
            f"<ApprovalStep {self.chain_id}#{self.position} "
            f"approver={self.approver_id} status={self.status}>"
        )

    def to_dto(self) -> ApprovalStep:
        return ApprovalStep(
            id=self.step_id,
            level=self.level,
            approver=Approver(
                id=self.approver_id,
                name=self.approver_name,
                role=self.approver_role,
                email=self.approver_email,
                level=self.approver_level,
            ),
            status=ApprovalStepStatus(self.status),
            action=ApprovalAction(self.action) if self.action else None,
            notes=self.notes,
            action_date=self.action_date,
            action_by=self.action_by,
        )

    def apply(self, dto: ApprovalStep) -> None:
        """Copy the resolution columns from ``dto``."""
        self.status = dto.status.value
        self.action = dto.action.value if dto.action else None
        self.notes = dto.notes
        self.action_date = dto.action_date
        self.action_by = dto.action_by

    @classmethod
    def from_dto(cls, chain_id: str, position: int, dto: ApprovalStep) -> ApprovalStepModel:
        model = cls(
            chain_id=chain_id,
            position=position,
            step_id=dto.id,
            level=dto.level,
            approver_id=dto.approver.id,
            approver_name=dto.approver.name,
            approver_role=dto.approver.role,
            approver_email=dto.approver.email,
            approver_level=dto.approver.level,
        )
        model.apply(dto)
        return model
