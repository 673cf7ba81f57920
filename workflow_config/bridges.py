"""
Bridges from parsed configuration to engine inputs.

The kernel and engines never import ``workflow_config``; these functions
translate schema objects into kernel values, engine policies and the
predefined lifecycles of ``workflow_modules``.
"""

from __future__ import annotations

from decimal import Decimal

from workflow_config.schema import (
    DocumentTypeDef,
    ThresholdConfigDef,
    WorkflowConfigurationSet,
)
from workflow_engines.thresholds import ThresholdPolicy, get_threshold_policy
from workflow_engines.versioning import CRITICAL_FIELDS
from workflow_kernel.domain.approval import (
    ApprovalConfig,
    ApprovalMode,
    Approver,
    SameLevelPolicy,
)
from workflow_kernel.domain.state_machine import StateMachineDefinition
from workflow_modules import ALL_DEFINITIONS


def get_document_type(config: WorkflowConfigurationSet, document_type: str) -> DocumentTypeDef:
    """
    Raises:
        KeyError: if the document type is not configured.
    """
    for doc in config.document_types:
        if doc.document_type == document_type:
            return doc
    raise KeyError(f"Document type not configured: {document_type}")


def build_approval_config(thresholds: ThresholdConfigDef) -> ApprovalConfig:
    return ApprovalConfig(
        percentage_threshold=Decimal(thresholds.percentage_threshold),
        absolute_threshold=Decimal(thresholds.absolute_threshold),
        mode=ApprovalMode(thresholds.mode),
    )


def build_approvers(doc: DocumentTypeDef) -> tuple[Approver, ...]:
    return tuple(
        Approver(id=a.id, name=a.name, role=a.role, email=a.email, level=a.level)
        for a in doc.approvers
    )


def build_threshold_policy(
    config: WorkflowConfigurationSet, doc: DocumentTypeDef,
) -> ThresholdPolicy:
    """The document type's named policy; per-type thresholds override the set's."""
    thresholds = doc.thresholds or config.thresholds
    return get_threshold_policy(doc.threshold_policy, build_approval_config(thresholds))


def build_critical_fields(doc: DocumentTypeDef) -> frozenset[str]:
    return frozenset(doc.critical_fields) if doc.critical_fields else CRITICAL_FIELDS


def build_same_level_policy(doc: DocumentTypeDef) -> SameLevelPolicy:
    return SameLevelPolicy(doc.same_level_policy)


def build_definition(doc: DocumentTypeDef) -> StateMachineDefinition:
    """
    The predefined lifecycle named by the document type's ``definition_id``.

    Raises:
        KeyError: if no predefined lifecycle has that id.
    """
    for definition in ALL_DEFINITIONS:
        if definition.id == doc.definition_id:
            return definition
    raise KeyError(f"Unknown workflow definition for {doc.document_type}: {doc.definition_id}")


def build_poll_interval(config: WorkflowConfigurationSet) -> float:
    return config.pending_poll_interval_seconds
