"""
State machine domain types.

Responsibility:
    Immutable value types shared by the state machine engine, the approval
    chain manager and the persistence layer: definitions (states,
    transitions, guards, hooks), instances with append-only history, and
    the result values every engine operation returns.

Architecture position:
    Kernel > Domain -- pure data, zero I/O, no engine logic.

Invariants enforced:
    - Instances are frozen, including their metadata and history payloads
      (deep-frozen to read-only mappings and tuples).  A transition
      produces a new instance and the old value stays valid.
    - ``StateMachineInstance.current_state`` equals the last history
      entry's ``to_state`` (or the initial state while history is empty).
      The engine is the only producer of new instances.

Failure modes:
    None here.  Definition validation lives in the engine and raises
    ``DefinitionError`` subclasses at construction time.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from types import MappingProxyType
from typing import Any, Callable, Mapping, Union


def _deep_freeze_value(value: Any) -> Any:
    if isinstance(value, Mapping):
        return deep_freeze(value)
    if isinstance(value, (list, tuple)):
        return tuple(_deep_freeze_value(item) for item in value)
    return value


def deep_freeze(data: Mapping[str, Any]) -> MappingProxyType:
    """
    Read-only copy of ``data``: nested mappings become MappingProxyType and
    lists become tuples.  The caller's mapping is not shared.
    """
    return MappingProxyType({k: _deep_freeze_value(v) for k, v in data.items()})


class StateVariant(str, Enum):
    """Display hint for a state badge."""

    DEFAULT = "default"
    MUTED = "muted"
    INFO = "info"
    SUCCESS = "success"
    WARNING = "warning"
    ERROR = "error"


@dataclass(frozen=True)
class Actor:
    """The principal performing an action, as supplied by the identity collaborator."""

    id: str
    name: str | None = None
    roles: frozenset[str] = frozenset()
    permissions: frozenset[str] = frozenset()

    def has_role(self, role: str) -> bool:
        return role in self.roles

    def has_permission(self, permission: str) -> bool:
        return permission in self.permissions


@dataclass(frozen=True)
class GuardResult:
    """Verdict of a guard or of ``can_transition``."""

    allowed: bool
    reason: str | None = None

    @classmethod
    def allow(cls) -> GuardResult:
        return cls(allowed=True)

    @classmethod
    def deny(cls, reason: str) -> GuardResult:
        return cls(allowed=False, reason=reason)


@dataclass(frozen=True)
class TransitionContext:
    """Everything a guard or hook may inspect.

    Carries no clock: guard verdicts depend only on the instance, the
    action, the actor and the payload.
    """

    instance: StateMachineInstance
    from_state: str
    to_state: str
    action: str
    actor: Actor | None = None
    payload: Mapping[str, Any] | None = None
    notes: str | None = None

    @property
    def metadata(self) -> Mapping[str, Any]:
        return self.instance.metadata

    def lookup(self, key: str, default: Any = None) -> Any:
        """Read ``key`` from the payload, falling back to instance metadata."""
        if self.payload is not None and key in self.payload:
            return self.payload[key]
        return self.instance.metadata.get(key, default)


GuardFn = Callable[[TransitionContext], Union[bool, GuardResult]]


@dataclass(frozen=True)
class HookResult:
    """Return value of a before-transition hook."""

    success: bool = True
    error: str | None = None


BeforeHook = Callable[[TransitionContext], Union[HookResult, bool, None]]
AfterHook = Callable[[TransitionContext, "StateMachineInstance"], Any]


@dataclass(frozen=True)
class StateDefinition:
    """A declared state."""

    id: str
    label: str
    terminal: bool = False
    variant: StateVariant = StateVariant.DEFAULT
    description: str | None = None


@dataclass(frozen=True)
class TransitionDefinition:
    """A legal move from one or more source states to a target state."""

    id: str
    from_states: tuple[str, ...]
    to_state: str
    action: str
    label: str | None = None
    description: str | None = None
    guard: GuardFn | None = None
    before_transition: BeforeHook | None = None
    after_transition: AfterHook | None = None
    required_permissions: tuple[str, ...] = ()

    def __post_init__(self) -> None:
        # Single source state may be given as a bare string
        if isinstance(self.from_states, str):
            object.__setattr__(self, "from_states", (self.from_states,))
        else:
            object.__setattr__(self, "from_states", tuple(self.from_states))
        object.__setattr__(self, "required_permissions", tuple(self.required_permissions))

    @property
    def display_label(self) -> str:
        return self.label or self.action

    def applies_to(self, state: str) -> bool:
        return state in self.from_states


@dataclass(frozen=True)
class StateMachineDefinition:
    """Static description of one document type's lifecycle."""

    id: str
    name: str
    initial_state: str
    states: tuple[StateDefinition, ...]
    transitions: tuple[TransitionDefinition, ...]
    global_guards: tuple[GuardFn, ...] = ()
    description: str | None = None


@dataclass(frozen=True)
class StateHistoryEntry:
    """One applied transition. Never modified once recorded."""

    id: str
    from_state: str
    to_state: str
    action: str
    timestamp: datetime
    actor_id: str | None = None
    actor_name: str | None = None
    notes: str | None = None
    payload: Mapping[str, Any] | None = None
    duration_ms: int | None = None

    def __post_init__(self) -> None:
        if self.payload is not None:
            object.__setattr__(self, "payload", deep_freeze(self.payload))


@dataclass(frozen=True)
class StateMachineInstance:
    """A document's position in its lifecycle."""

    definition_id: str
    current_state: str
    created_at: datetime
    updated_at: datetime
    history: tuple[StateHistoryEntry, ...] = ()
    metadata: Mapping[str, Any] = field(default_factory=dict)

    def __post_init__(self) -> None:
        object.__setattr__(self, "metadata", deep_freeze(self.metadata))

    @property
    def last_entry(self) -> StateHistoryEntry | None:
        return self.history[-1] if self.history else None

    @property
    def last_transition_at(self) -> datetime:
        return self.history[-1].timestamp if self.history else self.created_at


# =============================================================================
# Results
# =============================================================================


@dataclass(frozen=True)
class TransitionResult:
    """Outcome of ``StateMachine.transition``.

    ``success=False`` is a normal value: the reason is caller-facing text.
    """

    success: bool
    previous_state: str
    current_state: str
    action: str
    timestamp: datetime | None = None
    reason: str | None = None

    @classmethod
    def ok(
        cls, previous_state: str, current_state: str, action: str, timestamp: datetime,
    ) -> TransitionResult:
        return cls(
            success=True,
            previous_state=previous_state,
            current_state=current_state,
            action=action,
            timestamp=timestamp,
        )

    @classmethod
    def rejected(cls, state: str, action: str, reason: str) -> TransitionResult:
        return cls(
            success=False,
            previous_state=state,
            current_state=state,
            action=action,
            reason=reason,
        )


@dataclass(frozen=True)
class TransitionOutcome:
    """The instance after the attempt plus its result."""

    instance: StateMachineInstance
    result: TransitionResult


@dataclass(frozen=True)
class AvailableAction:
    """One outgoing transition with its current enablement."""

    action: str
    label: str
    target_state: str
    enabled: bool
    disabled_reason: str | None = None
    description: str | None = None
    required_permissions: tuple[str, ...] = ()


@dataclass(frozen=True)
class Capabilities:
    """Single read bundling what a UI needs to render a document's actions."""

    current_state: str
    current_state_label: str
    is_terminal: bool
    available_actions: tuple[AvailableAction, ...]

    @property
    def can_transition(self) -> bool:
        return any(a.enabled for a in self.available_actions)

    def enabled_actions(self) -> tuple[str, ...]:
        return tuple(a.action for a in self.available_actions if a.enabled)
