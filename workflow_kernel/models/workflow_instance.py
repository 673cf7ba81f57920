"""
Module: workflow_kernel.models.workflow_instance
Responsibility: ORM persistence for state machine instances and their
    transition history.

Architecture position: Kernel > Models.  May import from db/, domain/,
    exceptions and utils only.

Invariants enforced:
    - History rows are append-only: ORM-level listeners reject UPDATE and
      DELETE of a ``StateHistoryModel`` row.
    - (instance_id, sequence) is unique; sequence is the entry's position
      in the instance history.
    - ``fingerprint`` is the hash of the instance value last written; the
      store compares it to detect concurrent modification.

Failure modes:
    - HistoryRewriteError on any attempt to update or delete a history row.
"""

from __future__ import annotations

from datetime import datetime
from typing import Any

from sqlalchemy import JSON, ForeignKey, Index, Integer, String, Text, event
from sqlalchemy.orm import Mapped, mapped_column, relationship

from workflow_kernel.db.base import Base
from workflow_kernel.domain.state_machine import StateHistoryEntry, StateMachineInstance
from workflow_kernel.exceptions import HistoryRewriteError
from workflow_kernel.utils.hashing import to_json_ready


class WorkflowInstanceModel(Base):
    """Current state of one workflow instance."""

    __tablename__ = "workflow_instances"

    __table_args__ = (
        Index("ix_workflow_instances_definition_state", "definition_id", "current_state"),
    )

    id: Mapped[str] = mapped_column(String(100), primary_key=True)
    definition_id: Mapped[str] = mapped_column(String(100), nullable=False)
    current_state: Mapped[str] = mapped_column(String(50), nullable=False)
    created_at: Mapped[datetime] = mapped_column(nullable=False)
    updated_at: Mapped[datetime] = mapped_column(nullable=False)
    instance_metadata: Mapped[dict[str, Any]] = mapped_column(
        "metadata", JSON, nullable=False, default=dict,
    )
    fingerprint: Mapped[str] = mapped_column(String(64), nullable=False)

    history: Mapped[list[StateHistoryModel]] = relationship(
        "StateHistoryModel",
        back_populates="instance",
        order_by="StateHistoryModel.sequence",
        lazy="selectin",
    )

    def __repr__(self) -> str:
        return (
            f"<WorkflowInstance {self.id} "
            f"{self.definition_id} state={self.current_state}>"
        )

    def to_dto(self) -> StateMachineInstance:
        """Convert ORM model to frozen domain value."""
        return StateMachineInstance(
            definition_id=self.definition_id,
            current_state=self.current_state,
            created_at=self.created_at,
            updated_at=self.updated_at,
            history=tuple(h.to_dto() for h in self.history),
            metadata=dict(self.instance_metadata or {}),
        )

    @classmethod
    def from_dto(
        cls, instance_id: str, dto: StateMachineInstance, fingerprint: str,
    ) -> WorkflowInstanceModel:
        """Create the instance row (history rows are added separately)."""
        return cls(
            id=instance_id,
            definition_id=dto.definition_id,
            current_state=dto.current_state,
            created_at=dto.created_at,
            updated_at=dto.updated_at,
            instance_metadata=to_json_ready(dto.metadata),
            fingerprint=fingerprint,
        )


class StateHistoryModel(Base):
    """One recorded transition. Append-only."""

    __tablename__ = "workflow_state_history"

    __table_args__ = (
        Index("ix_workflow_state_history_action", "action", "timestamp"),
    )

    instance_id: Mapped[str] = mapped_column(
        String(100), ForeignKey("workflow_instances.id"), primary_key=True,
    )
    sequence: Mapped[int] = mapped_column(Integer, primary_key=True)
    entry_id: Mapped[str] = mapped_column(String(100), nullable=False)
    from_state: Mapped[str] = mapped_column(String(50), nullable=False)
    to_state: Mapped[str] = mapped_column(String(50), nullable=False)
    action: Mapped[str] = mapped_column(String(100), nullable=False)
    timestamp: Mapped[datetime] = mapped_column(nullable=False)
    actor_id: Mapped[str | None] = mapped_column(String(100), nullable=True)
    actor_name: Mapped[str | None] = mapped_column(nullable=True)
    notes: Mapped[str | None] = mapped_column(Text, nullable=True)
    payload: Mapped[dict[str, Any] | None] = mapped_column(JSON, nullable=True)
    duration_ms: Mapped[int | None] = mapped_column(Integer, nullable=True)

    instance: Mapped[WorkflowInstanceModel] = relationship(
        "WorkflowInstanceModel", back_populates="history",
    )

    def __repr__(self) -> str:
        return (
            f"<StateHistory {self.instance_id}#{self.sequence} "
            f"{self.from_state}->{self.to_state} ({self.action})>"
        )

    def to_dto(self) -> StateHistoryEntry:
        return StateHistoryEntry(
            id=self.entry_id,
            from_state=self.from_state,
            to_state=self.to_state,
            action=self.action,
            timestamp=self.timestamp,
            actor_id=self.actor_id,
            actor_name=self.actor_name,
            notes=self.notes,
            payload=self.payload,
            duration_ms=self.duration_ms,
        )

    @classmethod
    def from_dto(cls, instance_id: str, sequence: int, dto: StateHistoryEntry) -> StateHistoryModel:
        return cls(
            instance_id=instance_id,
            sequence=sequence,
            entry_id=dto.id,
            from_state=dto.from_state,
            to_state=dto.to_state,
            action=dto.action,
            timestamp=dto.timestamp,
            actor_id=dto.actor_id,
            actor_name=dto.actor_name,
            notes=dto.notes,
            payload=to_json_ready(dto.payload),
            duration_ms=dto.duration_ms,
        )


# =============================================================================
# ORM-Level Immutability for History (Append-Only)
# =============================================================================


@event.listens_for(StateHistoryModel, "before_update")
def prevent_history_update(mapper, connection, target):
    """Prevent updates to recorded transitions."""
    raise HistoryRewriteError(
        entity_type="StateHistory",
        entity_id=f"{target.instance_id}#{target.sequence}",
        reason="Recorded transitions are immutable -- cannot modify",
    )


@event.listens_for(StateHistoryModel, "before_delete")
def prevent_history_delete(mapper, connection, target):
    """Prevent deletion of recorded transitions."""
    raise HistoryRewriteError(
        entity_type="StateHistory",
        entity_id=f"{target.instance_id}#{target.sequence}",
        reason="Recorded transitions are immutable -- cannot delete",
    )
