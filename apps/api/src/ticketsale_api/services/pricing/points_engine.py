"""Coupon and points discount breakdown for a priced basket.

All amounts are integer minor units. The functions here are pure: they take
immutable inputs, never touch storage, and are safe to call concurrently.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Iterable, Mapping, Sequence

from ticketsale_api.services.pricing.allocation import allocate_proportional_minor


def normalize_category_key(value: str) -> str:
    return value.strip().lower()


def normalize_category_keys(values: Iterable[str]) -> frozenset[str]:
    return frozenset(key for key in (normalize_category_key(value) for value in values) if key)


@dataclass(frozen=True, slots=True)
class BasketLine:
    category: str
    price_minor: int
    product_id: str | None = None
    variant_id: str | None = None
    product_name: str | None = None
    variant_label: str | None = None

    def __post_init__(self) -> None:
        if self.price_minor < 0:
            raise ValueError("Basket line price must be non-negative")

    @property
    def category_key(self) -> str:
        return normalize_category_key(self.category)

    def to_dict(self) -> dict[str, Any]:
        return {
            "category": self.category,
            "priceMinor": self.price_minor,
            "productId": self.product_id,
            "variantId": self.variant_id,
            "productName": self.product_name,
            "variantLabel": self.variant_label,
        }

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> "BasketLine":
        return cls(
            category=str(data.get("category", "")),
            price_minor=int(data.get("priceMinor", 0)),
            product_id=data.get("productId"),
            variant_id=data.get("variantId"),
            product_name=data.get("productName"),
            variant_label=data.get("variantLabel"),
        )


@dataclass(frozen=True, slots=True)
class PointsConfigSnapshot:
    """Points configuration frozen onto an order when it is created."""

    point_value_minor: int
    earn_category_keys: frozenset[str] = field(default_factory=frozenset)
    redeem_category_keys: frozenset[str] = field(default_factory=frozenset)

    def __post_init__(self) -> None:
        if self.point_value_minor <= 0:
            raise ValueError("point_value_minor must be positive")
        object.__setattr__(self, "earn_category_keys", normalize_category_keys(self.earn_category_keys))
        object.__setattr__(self, "redeem_category_keys", normalize_category_keys(self.redeem_category_keys))

    def to_dict(self) -> dict[str, Any]:
        return {
            "pointValueMinor": self.point_value_minor,
            "earnCategoryKeys": sorted(self.earn_category_keys),
            "redeemCategoryKeys": sorted(self.redeem_category_keys),
        }

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> "PointsConfigSnapshot":
        return cls(
            point_value_minor=int(data.get("pointValueMinor", 0)),
            earn_category_keys=frozenset(data.get("earnCategoryKeys") or ()),
            redeem_category_keys=frozenset(data.get("redeemCategoryKeys") or ()),
        )


@dataclass(frozen=True, slots=True)
class LineBreakdown:
    category_key: str
    price_minor: int
    coupon_allocated_minor: int
    points_allocated_minor: int

    @property
    def line_after_coupon_minor(self) -> int:
        return self.price_minor - self.coupon_allocated_minor

    @property
    def line_net_minor(self) -> int:
        return self.price_minor - self.coupon_allocated_minor - self.points_allocated_minor


@dataclass(frozen=True, slots=True)
class PointsOrderCalculation:
    subtotal_minor: int
    coupon_discount_minor: int
    redeemable_pool_minor: int
    max_redeemable_points_by_amount: int
    points_reserved: int
    points_discount_minor: int
    tip_minor: int
    total_minor: int
    earn_pool_minor: int
    points_earned: int
    line_breakdown: tuple[LineBreakdown, ...]


@dataclass(frozen=True, slots=True)
class EarnCalculation:
    earn_pool_minor: int
    points_earned: int
    line_breakdown: tuple[LineBreakdown, ...]


def _require_non_negative(**values: int) -> None:
    for name, value in values.items():
        if value < 0:
            raise ValueError(f"{name} must be non-negative")


def _build_line_breakdown(
    lines: Sequence[BasketLine],
    *,
    coupon_discount_minor: int,
    points_discount_minor: int,
    redeem_category_keys: frozenset[str],
) -> tuple[LineBreakdown, ...]:
    coupon_allocations = allocate_proportional_minor(
        coupon_discount_minor, [line.price_minor for line in lines]
    )
    points_weights = [
        line.price_minor - coupon_allocations[index] if line.category_key in redeem_category_keys else 0
        for index, line in enumerate(lines)
    ]
    points_allocations = allocate_proportional_minor(points_discount_minor, points_weights)

    return tuple(
        LineBreakdown(
            category_key=line.category_key,
            price_minor=line.price_minor,
            coupon_allocated_minor=coupon_allocations[index],
            points_allocated_minor=points_allocations[index],
        )
        for index, line in enumerate(lines)
    )


def _earn_pool_minor(breakdown: Iterable[LineBreakdown], earn_category_keys: frozenset[str]) -> int:
    return sum(line.line_net_minor for line in breakdown if line.category_key in earn_category_keys)


def calculate_points_order_totals(
    lines: Sequence[BasketLine],
    *,
    coupon_discount_minor: int,
    tip_minor: int,
    config: PointsConfigSnapshot,
    available_points: int,
    use_points: bool,
) -> PointsOrderCalculation:
    """Compute the coupon/points breakdown, totals and points earned for a basket.

    The coupon is spread over every line by price. Points may only discount
    lines in a redeem category and are spread over those lines by their
    post-coupon value. Earned points come from the net value of lines in an
    earn category; the tip never counts towards either pool.
    """

    _require_non_negative(
        coupon_discount_minor=coupon_discount_minor,
        tip_minor=tip_minor,
        available_points=available_points,
    )

    subtotal_minor = sum(line.price_minor for line in lines)
    coupon_discount_minor = min(coupon_discount_minor, subtotal_minor)
    point_value = config.point_value_minor

    coupon_only = _build_line_breakdown(
        lines,
        coupon_discount_minor=coupon_discount_minor,
        points_discount_minor=0,
        redeem_category_keys=config.redeem_category_keys,
    )
    redeemable_lines = [line for line in coupon_only if line.category_key in config.redeem_category_keys]
    redeemable_pool_minor = sum(line.price_minor for line in redeemable_lines)
    max_redeemable_points_by_amount = redeemable_pool_minor // point_value

    points_reserved = 0
    if use_points:
        # Points never discount a redeemable line below zero after the coupon.
        redeemable_after_coupon = sum(line.line_after_coupon_minor for line in redeemable_lines)
        points_reserved = min(
            available_points,
            max_redeemable_points_by_amount,
            redeemable_after_coupon // point_value,
        )
    points_discount_minor = points_reserved * point_value

    breakdown = _build_line_breakdown(
        lines,
        coupon_discount_minor=coupon_discount_minor,
        points_discount_minor=points_discount_minor,
        redeem_category_keys=config.redeem_category_keys,
    )
    earn_pool_minor = _earn_pool_minor(breakdown, config.earn_category_keys)

    return PointsOrderCalculation(
        subtotal_minor=subtotal_minor,
        coupon_discount_minor=coupon_discount_minor,
        redeemable_pool_minor=redeemable_pool_minor,
        max_redeemable_points_by_amount=max_redeemable_points_by_amount,
        points_reserved=points_reserved,
        points_discount_minor=points_discount_minor,
        tip_minor=tip_minor,
        total_minor=subtotal_minor - coupon_discount_minor - points_discount_minor + tip_minor,
        earn_pool_minor=earn_pool_minor,
        points_earned=earn_pool_minor // point_value,
        line_breakdown=breakdown,
    )


def calculate_earn_from_applied_discounts(
    lines: Sequence[BasketLine],
    *,
    coupon_discount_minor: int,
    points_discount_minor: int,
    config: PointsConfigSnapshot,
) -> EarnCalculation:
    """Recompute points earned from discounts already stored on an order."""

    _require_non_negative(
        coupon_discount_minor=coupon_discount_minor,
        points_discount_minor=points_discount_minor,
    )
    breakdown = _build_line_breakdown(
        lines,
        coupon_discount_minor=coupon_discount_minor,
        points_discount_minor=points_discount_minor,
        redeem_category_keys=config.redeem_category_keys,
    )
    earn_pool_minor = _earn_pool_minor(breakdown, config.earn_category_keys)
    return EarnCalculation(
        earn_pool_minor=earn_pool_minor,
        points_earned=earn_pool_minor // config.point_value_minor,
        line_breakdown=breakdown,
    )
