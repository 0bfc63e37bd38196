"""
Retainer Calculator - display amounts for the retainer decision screen.

Pure functions; no I/O. A discount fraction is the share of the standard
retainer the client still pays (Silver pays 50%, Bronze pays 80%, Gold pays
nothing). A zero discount is a known value, distinct from "no tier".
"""
from decimal import Decimal, InvalidOperation
from enum import Enum
from typing import Any, Optional

from models.credit import DecisionSnapshot, RetainerView


class RetainerTier(str, Enum):
    GOLD = "Gold - 0% Retainer"
    SILVER = "Silver - 50% Retainer"
    BRONZE = "Bronze - 80% Retainer"


DISCOUNTS = {
    RetainerTier.GOLD.value: Decimal("0"),
    RetainerTier.SILVER.value: Decimal("0.5"),
    RetainerTier.BRONZE.value: Decimal("0.8"),
}

FULL_RETAINER = "Full Retainer"
CREDIT_FROZEN = "Credit Frozen"
CREDIT_FAILED = "Failed- Follow up with PC"

ZERO = Decimal("0")


def to_amount(value: Any) -> Optional[Decimal]:
    """Coerce a stored amount to Decimal; None or unparseable values become None."""
    if value is None or value == "":
        return None
    if isinstance(value, Decimal):
        return value
    # bson Decimal128 as stored by MongoDB
    if hasattr(value, "to_decimal"):
        return value.to_decimal()
    try:
        return Decimal(str(value))
    except (InvalidOperation, ValueError):
        return None


def discount_for(decision_label: Optional[str]) -> Optional[Decimal]:
    """Discount fraction for a tier label, or None when the label is not a tier."""
    if decision_label is None:
        return None
    return DISCOUNTS.get(decision_label)


def is_zero_tier(decision_label: Optional[str]) -> bool:
    discount = discount_for(decision_label)
    return discount is not None and discount == ZERO


def standard_amount_display(
    decision_label: Optional[str],
    quoted_amount: Optional[Decimal],
    reduced_amount: Optional[Decimal],
) -> Decimal:
    """Standard (full) retainer.

    Prefer the quoted value; otherwise infer it from the reduced amount when
    the tier's discount is known and non-zero.
    """
    if quoted_amount is not None:
        return quoted_amount
    discount = discount_for(decision_label)
    if reduced_amount is not None and discount is not None and discount != ZERO:
        return reduced_amount / discount
    return ZERO


def reduced_amount_display(
    decision_label: Optional[str],
    quoted_amount: Optional[Decimal],
    reduced_amount: Optional[Decimal],
) -> Decimal:
    """Discounted retainer the client pays."""
    # The zero tier is free regardless of what the server quoted
    if is_zero_tier(decision_label):
        return ZERO
    if reduced_amount is not None:
        return reduced_amount
    discount = discount_for(decision_label)
    if discount is not None and quoted_amount is not None:
        return quoted_amount * discount
    return ZERO


def build_retainer_view(snapshot: DecisionSnapshot) -> RetainerView:
    label = snapshot.decision_label
    is_qualified = discount_for(label) is not None
    show_frozen = label == CREDIT_FROZEN
    return RetainerView(
        decision_label=label,
        account_name=snapshot.account_name or "",
        is_qualified=is_qualified,
        show_frozen=show_frozen,
        show_failed=label == CREDIT_FAILED,
        show_full=label == FULL_RETAINER or (not is_qualified and not show_frozen),
        discount=discount_for(label),
        standard_amount=standard_amount_display(label, snapshot.quoted_amount, snapshot.reduced_amount),
        reduced_amount=reduced_amount_display(label, snapshot.quoted_amount, snapshot.reduced_amount),
    )
