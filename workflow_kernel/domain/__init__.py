"""Pure domain types for workflows, approvals and revisions. No I/O."""
