"""Pricing engines: allocation, coupon scope and points."""

from .allocation import allocate_proportional_minor  # noqa: F401
from .coupon_scope import (  # noqa: F401
    Coupon,
    CouponDiscountType,
    CouponScope,
    compute_coupon_eligible_subtotal_minor,
    is_coupon_applicable_to_line,
    size_coupon_discount,
)
from .points_engine import (  # noqa: F401
    BasketLine,
    EarnCalculation,
    LineBreakdown,
    PointsConfigSnapshot,
    PointsOrderCalculation,
    calculate_earn_from_applied_discounts,
    calculate_points_order_totals,
    normalize_category_key,
    normalize_category_keys,
)
