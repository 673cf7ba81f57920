"""
workflow_engines.versioning -- Revision versioning policy.

Versions are "major.minor" strings.  A revision touching any critical
field bumps the major number and resets minor to zero; anything else
bumps minor.  A bare "2" is read as "2.0".
"""

from __future__ import annotations

import re
from typing import Iterable

from workflow_kernel.domain.revision import REVISION_STATUS_LABELS, RevisionStatus
from workflow_kernel.exceptions import InvalidVersionError

CRITICAL_FIELDS: frozenset[str] = frozenset({
    "quantity",
    "unitPrice",
    "discountPercent",
    "lineTotal",
    "addLine",
    "removeLine",
    "shipTo",
    "paymentTerms",
})

INITIAL_VERSION = "1.0"

_VERSION_RE = re.compile(r"^\s*v?(\d+)(?:\.(\d+))?\s*$")


def is_critical_change(field: str, critical_fields: Iterable[str] = CRITICAL_FIELDS) -> bool:
    return field in critical_fields


def has_critical_changes(
    fields: Iterable[str], critical_fields: Iterable[str] = CRITICAL_FIELDS,
) -> bool:
    critical = frozenset(critical_fields)
    return any(f in critical for f in fields)


def parse_version(version: str) -> tuple[int, int]:
    """Parse "major.minor" (minor optional, leading "v" tolerated).

    Raises:
        InvalidVersionError: for anything else.
    """
    match = _VERSION_RE.match(version) if isinstance(version, str) else None
    if match is None:
        raise InvalidVersionError(version)
    return int(match.group(1)), int(match.group(2) or 0)


def get_next_version(current_version: str, has_critical_changes: bool) -> str:
    major, minor = parse_version(current_version)
    if has_critical_changes:
        return f"{major + 1}.0"
    return f"{major}.{minor + 1}"


def compare_versions(a: str, b: str) -> int:
    """-1, 0 or 1 as ``a`` is older than, equal to or newer than ``b``."""
    left, right = parse_version(a), parse_version(b)
    return (left > right) - (left < right)


def format_version_label(version: str, status: RevisionStatus | str | None = None) -> str:
    """Display label such as ``v2.1 (Pending Approval)``.

    Confirmed revisions show the bare version.
    """
    if status is None:
        return f"v{version}"
    status = RevisionStatus(status)
    if status == RevisionStatus.CONFIRMED:
        return f"v{version}"
    return f"v{version} ({REVISION_STATUS_LABELS[status]})"


def can_edit_revision(status: RevisionStatus | str) -> bool:
    return RevisionStatus(status) == RevisionStatus.DRAFT


def can_submit_revision(status: RevisionStatus | str, change_count: int) -> bool:
    return RevisionStatus(status) == RevisionStatus.DRAFT and change_count > 0
