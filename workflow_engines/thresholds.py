"""
workflow_engines.thresholds -- Threshold policy evaluator.

Responsibility:
    Decide whether a change to a monetary total needs approval.  Two
    independent, named policies are provided:

    * ``dual_threshold`` -- percentage and absolute thresholds combined
      with OR / AND (default 5% OR 500).
    * ``banded_tier`` -- four escalation bands on the percent change
      (none < 2%, manager < 5%, director < 10%, executive otherwise).

    The policies are not reconciled with each other; a document type
    declares which one it uses (see ``workflow_config``).

Architecture position:
    Engines -- pure functions over ``Decimal``.  No clock, no I/O.

Invariants enforced:
    - All arithmetic is Decimal; floats are converted through ``str`` so
      1060.0 and "1060" evaluate identically.
    - Deltas are rounded to cents with ROUND_HALF_UP before comparison.
    - Comparisons are inclusive: a change exactly at a threshold exceeds it.
    - A zero original never divides: the dual policy reports a 0 percent
      change and relies on the absolute threshold; the banded policy
      treats any change from zero as 100%.
    - An unchanged total never requires approval.

Failure modes:
    - ``UnknownThresholdPolicyError`` from ``get_threshold_policy``.
    - ``decimal.InvalidOperation`` for non-numeric inputs.
"""

from __future__ import annotations

from decimal import ROUND_HALF_UP, Decimal
from typing import Any, Protocol, runtime_checkable

from workflow_engines.tracer import traced_engine
from workflow_kernel.domain.approval import (
    ApprovalConfig,
    ApprovalLevel,
    ApprovalMode,
    ApprovalRequirement,
    CostDeltaInfo,
    FinancialApprovalCheck,
)
from workflow_kernel.exceptions import UnknownThresholdPolicyError

CENT = Decimal("0.01")
ZERO = Decimal("0")
HUNDRED = Decimal("100")

DEFAULT_APPROVAL_CONFIG = ApprovalConfig(
    percentage_threshold=Decimal("0.05"),
    absolute_threshold=Decimal("500"),
    mode=ApprovalMode.OR,
)

# Lower bound (inclusive, percent scale) of each band, highest first
APPROVAL_BANDS: tuple[tuple[Decimal, ApprovalLevel], ...] = (
    (Decimal("10"), ApprovalLevel.EXECUTIVE),
    (Decimal("5"), ApprovalLevel.DIRECTOR),
    (Decimal("2"), ApprovalLevel.MANAGER),
)

APPROVAL_LEVEL_LABELS: dict[ApprovalLevel, str] = {
    ApprovalLevel.NONE: "No Approval Required",
    ApprovalLevel.MANAGER: "Manager Approval Required",
    ApprovalLevel.DIRECTOR: "Director Approval Required",
    ApprovalLevel.EXECUTIVE: "Executive Approval Required",
}


def to_decimal(value: Any) -> Decimal:
    if isinstance(value, Decimal):
        return value
    return Decimal(str(value))


def round_currency(amount: Decimal) -> Decimal:
    return amount.quantize(CENT, rounding=ROUND_HALF_UP)


# =============================================================================
# Dual-threshold policy
# =============================================================================


@traced_engine("thresholds.cost_delta", "1.0", ("original_cost", "new_cost"))
def calculate_cost_delta(
    original_cost: Decimal | int | str,
    new_cost: Decimal | int | str,
    config: ApprovalConfig = DEFAULT_APPROVAL_CONFIG,
) -> CostDeltaInfo:
    """Evaluate a cost change against the dual-threshold configuration.

    Args:
        original_cost: Total before the change.
        new_cost: Total after the change.
        config: Thresholds and OR/AND mode.

    Returns:
        CostDeltaInfo with the rounded delta, the signed fractional
        percent change (0 when ``original_cost`` is 0) and the verdicts.
    """
    original = to_decimal(original_cost)
    new = to_decimal(new_cost)
    delta = round_currency(new - original)
    percent_change = delta / original if original != 0 else ZERO

    if delta == 0:
        exceeds_percent = exceeds_absolute = False
    else:
        exceeds_percent = original != 0 and abs(percent_change) >= config.percentage_threshold
        exceeds_absolute = abs(delta) >= config.absolute_threshold

    if config.mode == ApprovalMode.AND:
        exceeds = exceeds_percent and exceeds_absolute
    else:
        exceeds = exceeds_percent or exceeds_absolute

    return CostDeltaInfo(
        original_cost=original,
        new_cost=new,
        delta=delta,
        percent_change=percent_change,
        exceeds_percent_threshold=exceeds_percent,
        exceeds_absolute_threshold=exceeds_absolute,
        exceeds_threshold=exceeds,
    )


# =============================================================================
# Banded-tier policy
# =============================================================================


def calculate_financial_change_percent(
    original_total: Decimal | int | str, new_total: Decimal | int | str,
) -> Decimal:
    """Absolute percent change on a 0-100 scale.

    A change from zero to any non-zero total is 100%; zero to zero is 0%.
    """
    original = to_decimal(original_total)
    new = to_decimal(new_total)
    if original == 0:
        return HUNDRED if new != 0 else ZERO
    return abs((new - original) / original * HUNDRED)


def get_approval_level_by_change(change_percent: Decimal | int | str) -> ApprovalLevel:
    pct = abs(to_decimal(change_percent))
    for lower_bound, level in APPROVAL_BANDS:
        if pct >= lower_bound:
            return level
    return ApprovalLevel.NONE


def get_approval_level_label(level: ApprovalLevel) -> str:
    return APPROVAL_LEVEL_LABELS[ApprovalLevel(level)]


@traced_engine("thresholds.banded_tier", "1.0", ("original_total", "new_total"))
def requires_financial_approval(
    original_total: Decimal | int | str, new_total: Decimal | int | str,
) -> FinancialApprovalCheck:
    """Classify a total change into an escalation band."""
    original = to_decimal(original_total)
    new = to_decimal(new_total)
    change_percent = calculate_financial_change_percent(original, new)
    level = get_approval_level_by_change(change_percent)
    return FinancialApprovalCheck(
        requires_approval=level != ApprovalLevel.NONE,
        change_percent=change_percent,
        approval_level=level,
        change_amount=round_currency(new - original),
    )


# =============================================================================
# Named policies
# =============================================================================


@runtime_checkable
class ThresholdPolicy(Protocol):
    """Common interface of the selectable threshold policies."""

    name: str

    def evaluate(
        self, original_total: Decimal | int | str, new_total: Decimal | int | str,
    ) -> ApprovalRequirement:
        ...


class DualThresholdPolicy:
    """Percentage/absolute threshold policy."""

    name = "dual_threshold"

    def __init__(self, config: ApprovalConfig = DEFAULT_APPROVAL_CONFIG):
        self.config = config

    def evaluate(
        self, original_total: Decimal | int | str, new_total: Decimal | int | str,
    ) -> ApprovalRequirement:
        info = calculate_cost_delta(original_total, new_total, self.config)
        if info.exceeds_threshold:
            reason = (
                f"Change of {info.delta} ({info.percent_change * HUNDRED:.2f}%) exceeds "
                f"{self.config.percentage_threshold * HUNDRED:.2f}% "
                f"{self.config.mode.value} {self.config.absolute_threshold}"
            )
        else:
            reason = "Change is within approval thresholds"
        return ApprovalRequirement(
            policy_name=self.name,
            requires_approval=info.exceeds_threshold,
            delta=info.delta,
            percent_change=info.percent_change,
            reason=reason,
        )

    def __repr__(self) -> str:
        return f"DualThresholdPolicy({self.config!r})"


class BandedTierPolicy:
    """Four-band escalation policy."""

    name = "banded_tier"

    def evaluate(
        self, original_total: Decimal | int | str, new_total: Decimal | int | str,
    ) -> ApprovalRequirement:
        check = requires_financial_approval(original_total, new_total)
        return ApprovalRequirement(
            policy_name=self.name,
            requires_approval=check.requires_approval,
            delta=check.change_amount,
            percent_change=check.change_percent / HUNDRED,
            approval_level=check.approval_level,
            reason=get_approval_level_label(check.approval_level),
        )

    def __repr__(self) -> str:
        return "BandedTierPolicy()"


THRESHOLD_POLICY_NAMES: tuple[str, ...] = (DualThresholdPolicy.name, BandedTierPolicy.name)


def get_threshold_policy(
    name: str, config: ApprovalConfig | None = None,
) -> ThresholdPolicy:
    """Resolve a policy by name.

    Raises:
        UnknownThresholdPolicyError: if ``name`` is not registered.
    """
    if name == DualThresholdPolicy.name:
        return DualThresholdPolicy(config or DEFAULT_APPROVAL_CONFIG)
    if name == BandedTierPolicy.name:
        return BandedTierPolicy()
    raise UnknownThresholdPolicyError(name, THRESHOLD_POLICY_NAMES)
