"""
Workflow configuration schema.

Human-authored YAML is parsed by ``workflow_config.loader`` into these
frozen types.  Amounts stay strings here; the bridges convert them to
Decimal when building engine inputs.
"""

from __future__ import annotations

from dataclasses import dataclass, field


@dataclass(frozen=True)
class ThresholdConfigDef:
    """Dual-threshold settings (YAML: ``thresholds``)."""

    percentage_threshold: str = "0.05"
    absolute_threshold: str = "500"
    mode: str = "OR"


@dataclass(frozen=True)
class ApproverDef:
    """One approver assignment."""

    id: str
    name: str
    role: str
    level: int
    email: str | None = None


@dataclass(frozen=True)
class DocumentTypeDef:
    """Approval configuration for one document type.

    ``threshold_policy`` names the policy this document type uses; the two
    policies are never mixed for one document type.
    """

    document_type: str
    definition_id: str
    threshold_policy: str
    critical_fields: tuple[str, ...] = ()
    approvers: tuple[ApproverDef, ...] = ()
    same_level_policy: str = "all"
    thresholds: ThresholdConfigDef | None = None


@dataclass(frozen=True)
class WorkflowConfigurationSet:
    """A complete, versioned configuration set."""

    config_id: str
    version: int
    thresholds: ThresholdConfigDef
    document_types: tuple[DocumentTypeDef, ...] = ()
    pending_poll_interval_seconds: float = 30.0
    checksum: str = ""
    description: str = ""
    metadata: dict[str, str] = field(default_factory=dict)
