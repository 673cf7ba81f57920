"""Tests for the revision versioning policy."""

import pytest

from workflow_engines.versioning import (
    CRITICAL_FIELDS,
    can_edit_revision,
    can_submit_revision,
    compare_versions,
    format_version_label,
    get_next_version,
    has_critical_changes,
    is_critical_change,
    parse_version,
)
from workflow_kernel.domain.revision import RevisionStatus
from workflow_kernel.exceptions import InvalidVersionError


class TestNextVersion:

    def test_critical_bumps_major(self):
        assert get_next_version("2.3", True) == "3.0"

    def test_non_critical_bumps_minor(self):
        assert get_next_version("2.3", False) == "2.4"

    def test_minor_past_nine(self):
        assert get_next_version("1.9", False) == "1.10"

    def test_bare_major(self):
        assert get_next_version("2", False) == "2.1"
        assert get_next_version("v4", True) == "5.0"


class TestParseVersion:

    @pytest.mark.parametrize("text, expected", [
        ("1.0", (1, 0)),
        ("v2.7", (2, 7)),
        (" 3.12 ", (3, 12)),
        ("5", (5, 0)),
    ])
    def test_accepted(self, text, expected):
        assert parse_version(text) == expected

    @pytest.mark.parametrize("text", ["", "abc", "1.2.3", "1.", "-1.0", None])
    def test_rejected(self, text):
        with pytest.raises(InvalidVersionError):
            parse_version(text)

    def test_compare_numeric_not_lexical(self):
        assert compare_versions("1.10", "1.9") == 1
        assert compare_versions("1.0", "v1") == 0
        assert compare_versions("2.0", "10.0") == -1


class TestCriticalFields:

    def test_defaults(self):
        assert is_critical_change("unitPrice")
        assert not is_critical_change("notes")
        assert "removeLine" in CRITICAL_FIELDS

    def test_custom_set(self):
        assert is_critical_change("deliveryDate", {"deliveryDate"})
        assert has_critical_changes(["notes", "quantity"])
        assert not has_critical_changes(["notes", "reference"])


class TestLabelsAndPermissions:

    def test_label_with_status(self):
        assert format_version_label("2.1", RevisionStatus.PENDING_APPROVAL) == "v2.1 (Pending Approval)"
        assert format_version_label("2.1", "sent") == "v2.1 (Sent to Supplier)"

    def test_confirmed_and_plain(self):
        assert format_version_label("2.1", RevisionStatus.CONFIRMED) == "v2.1"
        assert format_version_label("2.1") == "v2.1"

    @pytest.mark.parametrize("status", list(RevisionStatus))
    def test_only_drafts_editable(self, status):
        assert can_edit_revision(status) == (status == RevisionStatus.DRAFT)

    def test_submit_needs_changes(self):
        assert can_submit_revision("draft", 1)
        assert not can_submit_revision("draft", 0)
        assert not can_submit_revision("approved", 3)
