"""Utility functions for the workflow kernel."""

from workflow_kernel.utils.hashing import (
    canonicalize_json,
    fingerprint,
    hash_payload,
    to_json_ready,
)

__all__ = ["canonicalize_json", "fingerprint", "hash_payload", "to_json_ready"]
