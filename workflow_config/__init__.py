"""
workflow_config -- YAML-authored approval configuration.

Responsibility:
    Load a configuration set (thresholds, per-document-type threshold
    policy, approvers, critical fields, polling interval) and translate it
    into engine inputs.

Architecture position:
    Configuration -- sits above ``workflow_kernel`` / ``workflow_engines`` /
    ``workflow_modules`` and below ``workflow_services``.  The kernel never
    imports from here.

Failure modes:
    - ``FileNotFoundError`` -- configuration file missing.
    - ``KeyError`` / ``ValueError`` -- schema validation failures.

Audit relevance:
    Every load emits a ``WORKFLOW_CONFIG_TRACE`` record with config_id,
    version and checksum.
"""

from __future__ import annotations

from pathlib import Path

from workflow_config.bridges import (
    build_approval_config,
    build_approvers,
    build_critical_fields,
    build_definition,
    build_poll_interval,
    build_same_level_policy,
    build_threshold_policy,
    get_document_type,
)
from workflow_config.loader import load_yaml_file, parse_configuration_set
from workflow_config.schema import WorkflowConfigurationSet
from workflow_kernel.logging_config import get_logger

_logger = get_logger("config")

_DEFAULT_CONFIG_DIR = Path(__file__).parent / "sets"


def load_configuration(path: Path | str) -> WorkflowConfigurationSet:
    config = parse_configuration_set(load_yaml_file(Path(path)))
    _logger.info(
        "WORKFLOW_CONFIG_TRACE",
        extra={
            "trace_type": "WORKFLOW_CONFIG_TRACE",
            "config_id": config.config_id,
            "config_version": config.version,
            "checksum": config.checksum,
            "document_types": [d.document_type for d in config.document_types],
        },
    )
    return config


def load_default_configuration() -> WorkflowConfigurationSet:
    return load_configuration(_DEFAULT_CONFIG_DIR / "default.yaml")


__all__ = [
    "WorkflowConfigurationSet",
    "build_approval_config",
    "build_approvers",
    "build_critical_fields",
    "build_definition",
    "build_poll_interval",
    "build_same_level_policy",
    "build_threshold_policy",
    "get_document_type",
    "load_configuration",
    "load_default_configuration",
]
