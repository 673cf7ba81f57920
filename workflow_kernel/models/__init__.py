"""ORM models for workflow persistence."""

from workflow_kernel.models.approval_chain import ApprovalChainModel, ApprovalStepModel
from workflow_kernel.models.revision import (
    ApprovalCycleModel,
    RevisionModel,
    lifecycle_instance_id,
)
from workflow_kernel.models.workflow_instance import StateHistoryModel, WorkflowInstanceModel

__all__ = [
    "ApprovalChainModel",
    "ApprovalCycleModel",
    "ApprovalStepModel",
    "RevisionModel",
    "StateHistoryModel",
    "WorkflowInstanceModel",
    "lifecycle_instance_id",
]
