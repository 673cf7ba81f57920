"""Kernel services - persistence of workflow values."""

from workflow_kernel.services.workflow_store import WorkflowStore

__all__ = ["WorkflowStore"]
