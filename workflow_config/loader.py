"""
Configuration Loader (``workflow_config.loader``).

Responsibility
--------------
Loads a YAML configuration set and parses it into typed
``workflow_config.schema`` dataclass instances.

Invariants enforced
-------------------
* Parse errors raise ``ValueError`` or ``KeyError`` with descriptive
  messages; required fields have no silent defaults.
* Every parsed object is a frozen dataclass from ``schema.py``.
* ``compute_checksum`` produces a deterministic SHA-256 hash of the raw
  YAML data for configuration identity and change detection.

Failure modes
-------------
* Missing YAML file  -> ``FileNotFoundError`` propagates.
* Malformed YAML  -> ``yaml.YAMLError`` propagates.
* Missing required keys  -> ``KeyError`` propagates.
* Unknown mode / policy / same-level policy  -> ``ValueError``.
"""

from __future__ import annotations

from decimal import Decimal, InvalidOperation
from pathlib import Path
from typing import Any

import yaml

from workflow_config.schema import (
    ApproverDef,
    DocumentTypeDef,
    ThresholdConfigDef,
    WorkflowConfigurationSet,
)
from workflow_kernel.utils.hashing import hash_payload

VALID_MODES = ("OR", "AND")
VALID_POLICIES = ("dual_threshold", "banded_tier")
VALID_SAME_LEVEL_POLICIES = ("all", "any")


def load_yaml_file(path: Path) -> dict[str, Any]:
    """
    Load a single YAML file and return its contents as a dict.

    Raises:
        FileNotFoundError: if the file does not exist.
        yaml.YAMLError: if the file contains invalid YAML.
        ValueError: if the top level is not a mapping.
    """
    with open(path, encoding="utf-8") as f:
        data = yaml.safe_load(f)
    if data is None:
        return {}
    if not isinstance(data, dict):
        raise ValueError(f"{path}: expected a mapping at the top level")
    return data


def _parse_amount(value: Any, field_name: str) -> str:
    try:
        amount = Decimal(str(value))
    except InvalidOperation:
        raise ValueError(f"{field_name} must be numeric, got {value!r}") from None
    if amount < 0:
        raise ValueError(f"{field_name} must be >= 0, got {value!r}")
    return str(amount)


def parse_thresholds(data: dict[str, Any]) -> ThresholdConfigDef:
    mode = str(data.get("mode", "OR")).upper()
    if mode not in VALID_MODES:
        raise ValueError(f"thresholds.mode must be one of {VALID_MODES}, got {mode!r}")
    return ThresholdConfigDef(
        percentage_threshold=_parse_amount(
            data.get("percentage_threshold", "0.05"), "percentage_threshold",
        ),
        absolute_threshold=_parse_amount(
            data.get("absolute_threshold", "500"), "absolute_threshold",
        ),
        mode=mode,
    )


def parse_approver(data: dict[str, Any]) -> ApproverDef:
    level = data["level"]
    if isinstance(level, bool) or not isinstance(level, int) or level < 1:
        raise ValueError(f"Approver {data.get('id')!r}: level must be a positive integer")
    return ApproverDef(
        id=str(data["id"]),
        name=data["name"],
        role=data["role"],
        level=level,
        email=data.get("email"),
    )


def parse_document_type(data: dict[str, Any]) -> DocumentTypeDef:
    policy = data["threshold_policy"]
    if policy not in VALID_POLICIES:
        raise ValueError(
            f"Document type {data.get('document_type')!r}: threshold_policy must be "
            f"one of {VALID_POLICIES}, got {policy!r}"
        )
    same_level = str(data.get("same_level_policy", "all")).lower()
    if same_level not in VALID_SAME_LEVEL_POLICIES:
        raise ValueError(
            f"same_level_policy must be one of {VALID_SAME_LEVEL_POLICIES}, got {same_level!r}"
        )
    thresholds = data.get("thresholds")
    return DocumentTypeDef(
        document_type=data["document_type"],
        definition_id=data["definition_id"],
        threshold_policy=policy,
        critical_fields=tuple(data.get("critical_fields", ())),
        approvers=tuple(parse_approver(a) for a in data.get("approvers", ())),
        same_level_policy=same_level,
        thresholds=parse_thresholds(thresholds) if thresholds is not None else None,
    )


def parse_configuration_set(data: dict[str, Any]) -> WorkflowConfigurationSet:
    """Parse a whole configuration document."""
    document_types = tuple(parse_document_type(d) for d in data.get("document_types", ()))
    names = [d.document_type for d in document_types]
    duplicates = sorted({n for n in names if names.count(n) > 1})
    if duplicates:
        raise ValueError(f"Duplicate document types: {', '.join(duplicates)}")
    return WorkflowConfigurationSet(
        config_id=data["config_id"],
        version=int(data["version"]),
        thresholds=parse_thresholds(data.get("thresholds", {})),
        document_types=document_types,
        pending_poll_interval_seconds=float(data.get("pending_poll_interval_seconds", 30)),
        checksum=compute_checksum(data),
        description=data.get("description", ""),
        metadata={str(k): str(v) for k, v in (data.get("metadata") or {}).items()},
    )


def compute_checksum(data: dict[str, Any]) -> str:
    """Deterministic SHA-256 of the canonical JSON form of ``data``."""
    return hash_payload(data)
