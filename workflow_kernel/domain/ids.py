"""
Identifier generation for history entries, steps, chains and cycles.

Engines take an ``IdGenerator`` so tests and replays can pin ids.
"""

from typing import Callable
from uuid import uuid4

IdGenerator = Callable[[], str]


def uuid_id_generator() -> str:
    """Default generator: a random UUID4 string."""
    return str(uuid4())


class SequentialIdGenerator:
    """Deterministic generator yielding ``{prefix}-1``, ``{prefix}-2``, ..."""

    def __init__(self, prefix: str = "id"):
        self._prefix = prefix
        self._counter = 0

    def __call__(self) -> str:
        self._counter += 1
        return f"{self._prefix}-{self._counter}"
