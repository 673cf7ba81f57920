"""
Workflow Kernel

Domain types, persistence and infrastructure for the document workflow
engine:
- Immutable state machine definitions and instances
- Approval chains, steps and submission cycles
- Revisions with semantic versioning
- Structured logging and a typed exception hierarchy
"""

__version__ = "0.1.0"
