"""Coupon line eligibility and discount sizing."""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from typing import Iterable, Sequence

from ticketsale_api.services.pricing.points_engine import BasketLine


class CouponDiscountType(str, Enum):
    FIXED = "fixed"
    PERCENT = "percent"


@dataclass(frozen=True, slots=True)
class CouponScope:
    """Product/variant restrictions; an empty set leaves that dimension unrestricted."""

    allowed_product_ids: frozenset[str] = field(default_factory=frozenset)
    allowed_variant_ids: frozenset[str] = field(default_factory=frozenset)

    @classmethod
    def from_ids(cls, product_ids: Iterable[str] = (), variant_ids: Iterable[str] = ()) -> "CouponScope":
        return cls(
            allowed_product_ids=frozenset(product_ids),
            allowed_variant_ids=frozenset(variant_ids),
        )


@dataclass(frozen=True, slots=True)
class Coupon:
    """A coupon definition.

    ``amount`` is minor units for fixed coupons and basis points (1/100 of a
    percent) for percent coupons.
    """

    code: str
    discount_type: CouponDiscountType
    amount: int
    scope: CouponScope = field(default_factory=CouponScope)

    def __post_init__(self) -> None:
        if self.amount < 0:
            raise ValueError("Coupon amount must be non-negative")
        if self.discount_type == CouponDiscountType.PERCENT and self.amount > 10_000:
            raise ValueError("Percent coupons cannot exceed 100%")


def is_coupon_applicable_to_line(scope: CouponScope, line: BasketLine) -> bool:
    product_eligible = not scope.allowed_product_ids or line.product_id in scope.allowed_product_ids
    variant_eligible = not scope.allowed_variant_ids or line.variant_id in scope.allowed_variant_ids
    return product_eligible and variant_eligible


def compute_coupon_eligible_subtotal_minor(scope: CouponScope, lines: Sequence[BasketLine]) -> int:
    return sum(line.price_minor for line in lines if is_coupon_applicable_to_line(scope, line))


def size_coupon_discount(coupon: Coupon | None, lines: Sequence[BasketLine]) -> int:
    """Return the discount a coupon grants on ``lines``, capped at the eligible subtotal."""

    if coupon is None:
        return 0

    eligible_subtotal = compute_coupon_eligible_subtotal_minor(coupon.scope, lines)
    if coupon.discount_type == CouponDiscountType.PERCENT:
        discount = (eligible_subtotal * coupon.amount) // 10_000
    else:
        discount = coupon.amount
    return min(discount, eligible_subtotal)
