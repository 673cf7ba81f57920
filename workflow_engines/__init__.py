"""
Pure workflow engines.

- state_machine: definition validation, transitions, capabilities, replay
- guards: guard factories (role, permission, metadata, payload, threshold)
- thresholds: dual-threshold and banded-tier approval policies
- approval_chain: multi-level approval chains and submission cycles
- versioning: semantic revision versions
"""
