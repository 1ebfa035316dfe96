"""Margin math for price monitoring."""

from dataclasses import dataclass
from decimal import ROUND_HALF_UP, Decimal, InvalidOperation
from typing import Any, Optional

HUNDRED = Decimal("100")
CENT = Decimal("0.01")
DEFAULT_DELTA_THRESHOLD = Decimal("10")


def to_decimal(value: Any) -> Decimal:
    """Coerce a stored amount to Decimal. None and garbage become 0."""
    if value is None:
        return Decimal("0")
    if isinstance(value, Decimal):
        return value
    try:
        return Decimal(str(value))
    except (InvalidOperation, ValueError):
        return Decimal("0")


def quantize(value: Decimal) -> Decimal:
    """Round to cents for storage."""
    return value.quantize(CENT, rounding=ROUND_HALF_UP)


def compute_margin(cost: Decimal, selling_price: Decimal) -> Decimal:
    """Profit relative to cost, in percent: (price - cost) / cost * 100."""
    return (selling_price - cost) / cost * HUNDRED


@dataclass
class MarginEvaluation:
    """Margin, delta from target and the alert decision for one product."""

    margin_pct: Decimal
    delta_pct: Decimal
    below_minimum: bool
    off_target: bool

    @property
    def alert(self) -> bool:
        return self.below_minimum or self.off_target

    @property
    def alert_reason(self) -> Optional[str]:
        if self.below_minimum:
            return "below_min_margin"
        if self.off_target:
            return "off_target"
        return None


def evaluate_margin(
    cost: Decimal,
    selling_price: Decimal,
    target_margin_pct: Decimal,
    min_margin_pct: Optional[Decimal] = None,
    delta_threshold: Decimal = DEFAULT_DELTA_THRESHOLD,
) -> MarginEvaluation:
    """
    Evaluate a product against a rule.

    Alert when margin is under the rule's minimum (if set) or the margin is
    more than delta_threshold percentage points away from target.
    """
    margin = compute_margin(cost, selling_price)
    delta = margin - target_margin_pct
    return MarginEvaluation(
        margin_pct=margin,
        delta_pct=delta,
        below_minimum=min_margin_pct is not None and margin < min_margin_pct,
        off_target=abs(delta) > delta_threshold,
    )


def is_monitorable(cost: Decimal, selling_price: Decimal) -> bool:
    """Products without a positive cost and price are skipped."""
    return cost > 0 and selling_price > 0
