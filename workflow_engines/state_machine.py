"""
workflow_engines.state_machine -- Generic finite-state workflow engine.

Responsibility:
    Binds a ``StateMachineDefinition`` and applies it to immutable
    ``StateMachineInstance`` values: create instances, answer "may this
    action fire?", apply transitions, enumerate available actions and
    analyse history.  The engine knows nothing about purchase orders or
    approvals; it only knows states, transitions, guards and hooks.

Architecture position:
    Engines -- pure calculation layer.  Imports only from
    ``workflow_kernel`` (domain types, exceptions, logging).  The clock and
    id generator are injected and only feed observational fields.

Invariants enforced:
    - Definitions are validated at construction: unique state ids,
      declared initial state, every from/to state declared, at most one
      transition per (state, action).
    - Transitions never mutate the input instance.  A rejected attempt
      returns the same instance object.
    - ``current_state`` always equals the last history entry's target.
    - Resolution order: transition exists, global guards in declared
      order, required permissions, transition guard.  First failure wins.

Failure modes:
    - ``DefinitionError`` subclasses at construction for malformed
      definitions.
    - Illegal actions, guard rejections and before-hook vetoes are values
      (``TransitionResult.success is False``), never exceptions.
    - A guard that raises is treated as a rejection and logged.
    - A before-hook that raises propagates (programming error).
    - An after-hook that raises is logged and swallowed; the transition
      has already happened.

Audit relevance:
    Every attempt emits one ``workflow_transition`` record with its
    outcome code.  History entries carry actor, notes, payload and the
    time spent in the previous state.
"""

from __future__ import annotations

import time
from collections import Counter
from dataclasses import replace
from datetime import datetime
from typing import Any, Iterable, Mapping

from workflow_kernel.domain.clock import Clock, SystemClock
from workflow_kernel.domain.ids import IdGenerator, uuid_id_generator
from workflow_kernel.domain.state_machine import (
    Actor,
    AvailableAction,
    Capabilities,
    GuardFn,
    GuardResult,
    HookResult,
    StateDefinition,
    StateHistoryEntry,
    StateMachineDefinition,
    StateMachineInstance,
    TransitionContext,
    TransitionDefinition,
    TransitionOutcome,
    TransitionResult,
)
from workflow_kernel.exceptions import (
    DuplicateStateError,
    DuplicateTransitionError,
    InvalidInitialStateError,
    UnknownStateReferenceError,
)
from workflow_kernel.logging_config import LogContext, get_logger

logger = get_logger("engines.state_machine")

# Outcome codes for the workflow_transition trace record
OUTCOME_SUCCESS = "success"
OUTCOME_NO_TRANSITION = "no_transition"
OUTCOME_GUARD_FAILED = "guard_failed"
OUTCOME_HOOK_ABORTED = "hook_aborted"

GLOBAL_GUARD_REJECTED = "Global guard rejected transition"
TRANSITION_GUARD_REJECTED = "Transition guard rejected"
BEFORE_HOOK_FAILED = "Before transition hook failed"


def no_transition_reason(action: str, state: str) -> str:
    return f"No transition '{action}' from state '{state}'"


def guard_name(guard: GuardFn) -> str:
    """Best-effort display name of a guard callable."""
    return getattr(guard, "name", None) or getattr(guard, "__name__", type(guard).__name__)


def validate_definition(definition: StateMachineDefinition) -> None:
    """Raise a ``DefinitionError`` subclass if the definition is malformed."""
    state_ids: set[str] = set()
    for state in definition.states:
        if state.id in state_ids:
            raise DuplicateStateError(definition.id, state.id)
        state_ids.add(state.id)

    if definition.initial_state not in state_ids:
        raise InvalidInitialStateError(definition.id, definition.initial_state)

    seen: set[tuple[str, str]] = set()
    for transition in definition.transitions:
        for state in (*transition.from_states, transition.to_state):
            if state not in state_ids:
                raise UnknownStateReferenceError(definition.id, transition.id, state)
        for state in transition.from_states:
            key = (state, transition.action)
            if key in seen:
                raise DuplicateTransitionError(definition.id, state, transition.action)
            seen.add(key)


def _evaluate_guard(
    guard: GuardFn, context: TransitionContext, default_reason: str,
) -> GuardResult:
    try:
        verdict = guard(context)
    except Exception as exc:  # noqa: BLE001
        name = guard_name(guard)
        logger.warning(
            "guard_evaluation_error",
            extra={"guard_name": name, "action": context.action, "error": str(exc)},
        )
        return GuardResult.deny(f"Guard '{name}' failed: {exc}")
    if isinstance(verdict, GuardResult):
        if verdict.allowed or verdict.reason:
            return verdict
        return GuardResult.deny(default_reason)
    return GuardResult.allow() if verdict else GuardResult.deny(default_reason)


def _normalize_hook_result(value: HookResult | bool | None) -> HookResult:
    if value is None:
        return HookResult()
    if isinstance(value, HookResult):
        return value
    return HookResult(success=bool(value))


class StateMachine:
    """A validated definition bound to a clock and id generator.

    Safe to share across callers: it holds no per-instance state.
    """

    def __init__(
        self,
        definition: StateMachineDefinition,
        *,
        clock: Clock | None = None,
        id_generator: IdGenerator | None = None,
    ):
        validate_definition(definition)
        self._definition = definition
        self._clock = clock or SystemClock()
        self._new_id = id_generator or uuid_id_generator
        self._states: dict[str, StateDefinition] = {s.id: s for s in definition.states}
        self._index: dict[tuple[str, str], TransitionDefinition] = {
            (state, t.action): t
            for t in definition.transitions
            for state in t.from_states
        }

    @property
    def definition(self) -> StateMachineDefinition:
        return self._definition

    # -------------------------------------------------------------------------
    # Instances
    # -------------------------------------------------------------------------

    def create(self, metadata: Mapping[str, Any] | None = None) -> StateMachineInstance:
        """New instance at the initial state with empty history."""
        now = self._clock.now()
        return StateMachineInstance(
            definition_id=self._definition.id,
            current_state=self._definition.initial_state,
            created_at=now,
            updated_at=now,
            history=(),
            metadata=dict(metadata or {}),
        )

    # -------------------------------------------------------------------------
    # Lookups
    # -------------------------------------------------------------------------

    def get_state(self, state_id: str) -> StateDefinition | None:
        return self._states.get(state_id)

    def has_state(self, state_id: str) -> bool:
        return state_id in self._states

    def find_transition(self, state: str, action: str) -> TransitionDefinition | None:
        return self._index.get((state, action))

    def get_transitions_from(self, state: str) -> tuple[TransitionDefinition, ...]:
        return tuple(t for t in self._definition.transitions if t.applies_to(state))

    def get_terminal_states(self) -> tuple[StateDefinition, ...]:
        return tuple(s for s in self._definition.states if s.terminal)

    def get_non_terminal_states(self) -> tuple[StateDefinition, ...]:
        return tuple(s for s in self._definition.states if not s.terminal)

    def is_terminal(self, instance: StateMachineInstance) -> bool:
        state = self._states.get(instance.current_state)
        return bool(state and state.terminal)

    # -------------------------------------------------------------------------
    # Guard evaluation
    # -------------------------------------------------------------------------

    def _check(
        self,
        instance: StateMachineInstance,
        transition: TransitionDefinition,
        actor: Actor | None,
        payload: Mapping[str, Any] | None,
        notes: str | None,
    ) -> GuardResult:
        context = TransitionContext(
            instance=instance,
            from_state=instance.current_state,
            to_state=transition.to_state,
            action=transition.action,
            actor=actor,
            payload=payload,
            notes=notes,
        )

        for guard in self._definition.global_guards:
            verdict = _evaluate_guard(guard, context, GLOBAL_GUARD_REJECTED)
            if not verdict.allowed:
                return verdict

        if transition.required_permissions:
            if actor is None:
                return GuardResult.deny(
                    "Requires permissions: " + ", ".join(transition.required_permissions)
                )
            missing = [p for p in transition.required_permissions if not actor.has_permission(p)]
            if missing:
                return GuardResult.deny("Missing permissions: " + ", ".join(missing))

        if transition.guard is not None:
            verdict = _evaluate_guard(transition.guard, context, TRANSITION_GUARD_REJECTED)
            if not verdict.allowed:
                return verdict

        return GuardResult.allow()

    def can_transition(
        self,
        instance: StateMachineInstance,
        action: str,
        *,
        actor: Actor | None = None,
        payload: Mapping[str, Any] | None = None,
        notes: str | None = None,
    ) -> GuardResult:
        """Whether ``action`` may fire from the instance's current state."""
        transition = self.find_transition(instance.current_state, action)
        if transition is None:
            return GuardResult.deny(no_transition_reason(action, instance.current_state))
        return self._check(instance, transition, actor, payload, notes)

    # -------------------------------------------------------------------------
    # Transition
    # -------------------------------------------------------------------------

    def transition(
        self,
        instance: StateMachineInstance,
        action: str,
        *,
        actor: Actor | None = None,
        payload: Mapping[str, Any] | None = None,
        notes: str | None = None,
    ) -> TransitionOutcome:
        """Apply ``action``.

        Returns the original instance with a failed result when the action
        is illegal, a guard rejects it or the before-hook vetoes it.
        """
        t0 = time.monotonic()
        from_state = instance.current_state
        transition = self.find_transition(from_state, action)

        if transition is None:
            reason = no_transition_reason(action, from_state)
            self._emit_trace(action, from_state, OUTCOME_NO_TRANSITION, reason, t0, actor)
            return TransitionOutcome(instance, TransitionResult.rejected(from_state, action, reason))

        verdict = self._check(instance, transition, actor, payload, notes)
        if not verdict.allowed:
            reason = verdict.reason or TRANSITION_GUARD_REJECTED
            self._emit_trace(action, from_state, OUTCOME_GUARD_FAILED, reason, t0, actor)
            return TransitionOutcome(instance, TransitionResult.rejected(from_state, action, reason))

        context = TransitionContext(
            instance=instance,
            from_state=from_state,
            to_state=transition.to_state,
            action=action,
            actor=actor,
            payload=payload,
            notes=notes,
        )

        if transition.before_transition is not None:
            hook = _normalize_hook_result(transition.before_transition(context))
            if not hook.success:
                reason = hook.error or BEFORE_HOOK_FAILED
                self._emit_trace(action, from_state, OUTCOME_HOOK_ABORTED, reason, t0, actor)
                return TransitionOutcome(
                    instance, TransitionResult.rejected(from_state, action, reason),
                )

        now = self._clock.now()
        elapsed = now - instance.last_transition_at
        entry = StateHistoryEntry(
            id=self._new_id(),
            from_state=from_state,
            to_state=transition.to_state,
            action=action,
            timestamp=now,
            actor_id=actor.id if actor else None,
            actor_name=actor.name if actor else None,
            notes=notes,
            payload=dict(payload) if payload is not None else None,
            duration_ms=int(elapsed.total_seconds() * 1000),
        )
        new_instance = replace(
            instance,
            current_state=transition.to_state,
            history=instance.history + (entry,),
            updated_at=now,
        )

        if transition.after_transition is not None:
            try:
                transition.after_transition(context, new_instance)
            except Exception as exc:  # noqa: BLE001
                logger.warning(
                    "after_transition_hook_failed",
                    extra={
                        "definition_id": self._definition.id,
                        "action": action,
                        "error": str(exc),
                    },
                )

        self._emit_trace(
            action, from_state, OUTCOME_SUCCESS, "", t0, actor, to_state=transition.to_state,
        )
        return TransitionOutcome(
            new_instance,
            TransitionResult.ok(from_state, transition.to_state, action, now),
        )

    def _emit_trace(
        self,
        action: str,
        from_state: str,
        outcome: str,
        reason: str,
        t0: float,
        actor: Actor | None,
        to_state: str | None = None,
    ) -> None:
        record: dict[str, Any] = {
            "definition_id": self._definition.id,
            "action": action,
            "from_state": from_state,
            "outcome": outcome,
            "reason": reason,
            "duration_ms": round((time.monotonic() - t0) * 1000, 3),
        }
        if to_state is not None:
            record["to_state"] = to_state
        if actor is not None and "actor_id" not in LogContext.get_all():
            record["actor_id"] = actor.id
        logger.info("workflow_transition", extra=record)

    # -------------------------------------------------------------------------
    # Capabilities
    # -------------------------------------------------------------------------

    def get_available_actions(
        self,
        instance: StateMachineInstance,
        *,
        actor: Actor | None = None,
        payload: Mapping[str, Any] | None = None,
    ) -> tuple[AvailableAction, ...]:
        """Every transition leaving the current state with its enablement."""
        actions = []
        for transition in self.get_transitions_from(instance.current_state):
            verdict = self._check(instance, transition, actor, payload, None)
            actions.append(
                AvailableAction(
                    action=transition.action,
                    label=transition.display_label,
                    target_state=transition.to_state,
                    enabled=verdict.allowed,
                    disabled_reason=None if verdict.allowed else verdict.reason,
                    description=transition.description,
                    required_permissions=transition.required_permissions,
                )
            )
        return tuple(actions)

    def get_capabilities(
        self,
        instance: StateMachineInstance,
        *,
        actor: Actor | None = None,
        payload: Mapping[str, Any] | None = None,
    ) -> Capabilities:
        state = self._states.get(instance.current_state)
        return Capabilities(
            current_state=instance.current_state,
            current_state_label=state.label if state else instance.current_state,
            is_terminal=bool(state and state.terminal),
            available_actions=self.get_available_actions(instance, actor=actor, payload=payload),
        )

    # -------------------------------------------------------------------------
    # History analysis
    # -------------------------------------------------------------------------

    def get_history(
        self, instance: StateMachineInstance, limit: int | None = None,
    ) -> tuple[StateHistoryEntry, ...]:
        """History oldest first; ``limit`` keeps only the most recent entries."""
        if limit is None:
            return instance.history
        return instance.history[-limit:] if limit > 0 else ()

    def get_state_time_analysis(
        self, instance: StateMachineInstance, as_of: datetime | None = None,
    ) -> dict[str, int]:
        """Milliseconds spent in each state, including the current one."""
        totals: dict[str, int] = {}
        for entry in instance.history:
            totals[entry.from_state] = totals.get(entry.from_state, 0) + (entry.duration_ms or 0)
        now = as_of or self._clock.now()
        current_ms = int((now - instance.last_transition_at).total_seconds() * 1000)
        totals[instance.current_state] = totals.get(instance.current_state, 0) + max(current_ms, 0)
        return totals

    def get_transition_counts(self, instance: StateMachineInstance) -> dict[str, int]:
        return dict(Counter(entry.action for entry in instance.history))

    # -------------------------------------------------------------------------
    # Replay
    # -------------------------------------------------------------------------

    def replay(
        self,
        actions: Iterable[str | tuple[str, Mapping[str, Any] | None]],
        *,
        actor: Actor | None = None,
        metadata: Mapping[str, Any] | None = None,
    ) -> TransitionOutcome:
        """Apply an action sequence to a fresh instance.

        Stops at the first failed transition and returns that outcome.
        """
        instance = self.create(metadata)
        outcome = TransitionOutcome(
            instance,
            TransitionResult(
                success=True,
                previous_state=instance.current_state,
                current_state=instance.current_state,
                action="",
                timestamp=instance.created_at,
            ),
        )
        for item in actions:
            action, payload = (item, None) if isinstance(item, str) else item
            outcome = self.transition(outcome.instance, action, actor=actor, payload=payload)
            if not outcome.result.success:
                break
        return outcome

    def verify_history(self, instance: StateMachineInstance) -> bool:
        """True when the history is a contiguous path from the initial state
        to ``current_state`` and every step is a declared transition."""
        state = self._definition.initial_state
        for entry in instance.history:
            transition = self.find_transition(state, entry.action)
            if entry.from_state != state or transition is None:
                return False
            if transition.to_state != entry.to_state:
                return False
            state = entry.to_state
        return state == instance.current_state
