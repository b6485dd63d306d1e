import pytest

from ticketsale_api.services.pricing import (
    BasketLine,
    PointsConfigSnapshot,
    calculate_earn_from_applied_discounts,
    calculate_points_order_totals,
)


def test_points_reserved_up_to_redeemable_pool() -> None:
    lines = [BasketLine(category="Tickets", price_minor=500), BasketLine(category="merch", price_minor=500)]
    config = PointsConfigSnapshot(
        point_value_minor=100,
        earn_category_keys=frozenset({"tickets"}),
        redeem_category_keys=frozenset({"tickets"}),
    )

    result = calculate_points_order_totals(
        lines,
        coupon_discount_minor=0,
        tip_minor=0,
        config=config,
        available_points=9,
        use_points=True,
    )

    assert result.redeemable_pool_minor == 500
    assert result.max_redeemable_points_by_amount == 5
    assert result.points_reserved == 5
    assert result.points_discount_minor == 500
    assert result.total_minor == 500
    assert result.line_breakdown[1].points_allocated_minor == 0
    assert result.line_breakdown[0].line_net_minor == 0


def test_tip_and_non_earn_lines_do_not_earn_points() -> None:
    lines = [BasketLine(category="tickets", price_minor=500), BasketLine(category="merch", price_minor=500)]
    config = PointsConfigSnapshot(point_value_minor=100, earn_category_keys=frozenset({"tickets"}))

    result = calculate_points_order_totals(
        lines,
        coupon_discount_minor=100,
        tip_minor=900,
        config=config,
        available_points=0,
        use_points=False,
    )

    assert [line.coupon_allocated_minor for line in result.line_breakdown] == [50, 50]
    assert result.earn_pool_minor == 450
    assert result.points_earned == 4
    assert result.total_minor == 1800


def test_coupon_then_points_allocation_across_mixed_lines() -> None:
    lines = [
        BasketLine(category="a", price_minor=300),
        BasketLine(category="b", price_minor=300),
        BasketLine(category="c", price_minor=400),
    ]
    config = PointsConfigSnapshot(
        point_value_minor=100,
        earn_category_keys=frozenset({"a", "b", "c"}),
        redeem_category_keys=frozenset({"a", "c"}),
    )

    result = calculate_points_order_totals(
        lines,
        coupon_discount_minor=100,
        tip_minor=0,
        config=config,
        available_points=4,
        use_points=True,
    )

    assert [line.coupon_allocated_minor for line in result.line_breakdown] == [30, 30, 40]
    assert result.points_reserved == 4
    assert [line.points_allocated_minor for line in result.line_breakdown] == [172, 0, 228]
    assert result.points_earned == 5
    assert result.total_minor == 500


def test_points_not_used_unless_requested() -> None:
    lines = [BasketLine(category="tickets", price_minor=1000)]
    config = PointsConfigSnapshot(point_value_minor=100, redeem_category_keys=frozenset({"tickets"}))

    result = calculate_points_order_totals(
        lines,
        coupon_discount_minor=0,
        tip_minor=0,
        config=config,
        available_points=50,
        use_points=False,
    )

    assert result.max_redeemable_points_by_amount == 10
    assert result.points_reserved == 0
    assert result.total_minor == 1000


def test_coupon_limits_points_on_redeemable_lines() -> None:
    lines = [BasketLine(category="tickets", price_minor=1000)]
    config = PointsConfigSnapshot(point_value_minor=100, redeem_category_keys=frozenset({"tickets"}))

    result = calculate_points_order_totals(
        lines,
        coupon_discount_minor=450,
        tip_minor=0,
        config=config,
        available_points=50,
        use_points=True,
    )

    assert result.points_reserved == 5
    assert result.line_breakdown[0].line_net_minor == 50
    assert result.total_minor == 50


def test_coupon_is_capped_at_subtotal() -> None:
    lines = [BasketLine(category="tickets", price_minor=300)]
    config = PointsConfigSnapshot(point_value_minor=100)

    result = calculate_points_order_totals(
        lines,
        coupon_discount_minor=1000,
        tip_minor=0,
        config=config,
        available_points=0,
        use_points=False,
    )

    assert result.coupon_discount_minor == 300
    assert result.total_minor == 0


def test_non_positive_point_value_is_rejected() -> None:
    with pytest.raises(ValueError):
        PointsConfigSnapshot(point_value_minor=0)


def test_category_keys_are_normalized() -> None:
    config = PointsConfigSnapshot(point_value_minor=1, earn_category_keys=frozenset({" Tickets ", ""}))

    assert config.earn_category_keys == frozenset({"tickets"})
    assert PointsConfigSnapshot.from_dict(config.to_dict()) == config


def test_earn_recomputed_from_stored_discounts_matches_checkout() -> None:
    lines = [
        BasketLine(category="a", price_minor=300),
        BasketLine(category="b", price_minor=300),
        BasketLine(category="c", price_minor=400),
    ]
    config = PointsConfigSnapshot(
        point_value_minor=100,
        earn_category_keys=frozenset({"a", "b", "c"}),
        redeem_category_keys=frozenset({"a", "c"}),
    )
    checkout = calculate_points_order_totals(
        lines,
        coupon_discount_minor=100,
        tip_minor=250,
        config=config,
        available_points=4,
        use_points=True,
    )

    earn = calculate_earn_from_applied_discounts(
        [BasketLine.from_dict(line.to_dict()) for line in lines],
        coupon_discount_minor=checkout.coupon_discount_minor,
        points_discount_minor=checkout.points_discount_minor,
        config=PointsConfigSnapshot.from_dict(config.to_dict()),
    )

    assert earn.earn_pool_minor == checkout.earn_pool_minor
    assert earn.points_earned == checkout.points_earned
