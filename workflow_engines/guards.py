"""
Guard factories for state machine transitions.

Guards are plain callables ``(TransitionContext) -> bool | GuardResult``.
The factories here wrap the common kinds (role, permission, metadata,
payload, threshold) in a named ``Guard`` so trace records and error
messages can say which guard rejected.  Any other callable works too.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Callable

from workflow_engines.thresholds import ThresholdPolicy
from workflow_kernel.domain.approval import ApprovalRequirement
from workflow_kernel.domain.state_machine import GuardFn, GuardResult, TransitionContext

_MISSING = object()


@dataclass(frozen=True)
class Guard:
    """A named guard predicate."""

    name: str
    predicate: GuardFn
    description: str | None = None

    def __call__(self, context: TransitionContext) -> bool | GuardResult:
        return self.predicate(context)


def compose_guards(*guards: GuardFn, name: str = "composite") -> Guard:
    """All guards must pass; the first failure is returned."""

    def _check(context: TransitionContext) -> GuardResult:
        for guard in guards:
            verdict = guard(context)
            if isinstance(verdict, GuardResult):
                if not verdict.allowed:
                    return verdict
            elif not verdict:
                label = getattr(guard, "name", None) or getattr(guard, "__name__", "guard")
                return GuardResult.deny(f"Guard '{label}' rejected transition")
        return GuardResult.allow()

    return Guard(name=name, predicate=_check)


def role_guard(roles: tuple[str, ...] | list[str], name: str = "role") -> Guard:
    """The actor must hold at least one of ``roles``."""
    allowed = tuple(roles)
    reason = "Requires one of roles: " + ", ".join(allowed)

    def _check(context: TransitionContext) -> GuardResult:
        actor = context.actor
        if actor is not None and any(actor.has_role(r) for r in allowed):
            return GuardResult.allow()
        return GuardResult.deny(reason)

    return Guard(name=name, predicate=_check, description=reason)


def permission_guard(permissions: tuple[str, ...] | list[str], name: str = "permission") -> Guard:
    """The actor must hold every permission listed."""
    required = tuple(permissions)

    def _check(context: TransitionContext) -> GuardResult:
        actor = context.actor
        missing = [p for p in required if actor is None or not actor.has_permission(p)]
        if missing:
            return GuardResult.deny("Missing permissions: " + ", ".join(missing))
        return GuardResult.allow()

    return Guard(name=name, predicate=_check)


def metadata_guard(
    key: str,
    expected: Any = _MISSING,
    *,
    predicate: Callable[[Any], bool] | None = None,
    reason: str | None = None,
    name: str | None = None,
) -> Guard:
    """Gate on an instance metadata value.

    With ``expected`` the value must equal it; with ``predicate`` the
    predicate must hold; with neither the key must be truthy.
    """
    return _value_guard(
        lambda ctx: ctx.instance.metadata.get(key), key, expected, predicate, reason,
        name or f"metadata:{key}",
    )


def payload_guard(
    key: str,
    expected: Any = _MISSING,
    *,
    predicate: Callable[[Any], bool] | None = None,
    reason: str | None = None,
    name: str | None = None,
) -> Guard:
    """Like ``metadata_guard`` but reads the transition payload."""
    return _value_guard(
        lambda ctx: (ctx.payload or {}).get(key), key, expected, predicate, reason,
        name or f"payload:{key}",
    )


def _value_guard(
    read: Callable[[TransitionContext], Any],
    key: str,
    expected: Any,
    predicate: Callable[[Any], bool] | None,
    reason: str | None,
    name: str,
) -> Guard:
    def _check(context: TransitionContext) -> GuardResult:
        value = read(context)
        if predicate is not None:
            ok = predicate(value)
        elif expected is not _MISSING:
            ok = value == expected
        else:
            ok = bool(value)
        if ok:
            return GuardResult.allow()
        return GuardResult.deny(reason or f"Condition on '{key}' not met")

    return Guard(name=name, predicate=_check)


def threshold_guard(
    policy: ThresholdPolicy,
    *,
    require_approval: bool,
    original_key: str = "original_total",
    new_key: str = "new_total",
    name: str | None = None,
) -> Guard:
    """Gate on a threshold policy verdict.

    Totals are read from the payload, falling back to instance metadata.
    A precomputed ``ApprovalRequirement`` under ``approval_requirement``
    takes precedence.  With ``require_approval=False`` the guard passes
    only when the change is within thresholds (auto-approval); with
    ``True`` only when it exceeds them.
    """

    def _check(context: TransitionContext) -> GuardResult:
        requirement = context.lookup("approval_requirement")
        if not isinstance(requirement, ApprovalRequirement):
            original = context.lookup(original_key)
            new = context.lookup(new_key)
            if original is None or new is None:
                return GuardResult.deny(f"Missing '{original_key}' or '{new_key}' for threshold check")
            requirement = policy.evaluate(original, new)
        if requirement.requires_approval == require_approval:
            return GuardResult.allow()
        if require_approval:
            return GuardResult.deny("Change is within approval thresholds")
        return GuardResult.deny(requirement.reason or "Change requires approval")

    return Guard(
        name=name or f"threshold:{policy.name}",
        predicate=_check,
    )
