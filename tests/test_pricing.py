import sys
import os

sys.path.append(os.path.abspath(os.path.join(os.path.dirname(__file__), "..")))
import pytest
from datetime import datetime, timedelta, timezone
from storefront.domain import (
    AMOUNT,
    PARENT_TIERED,
    PERCENTAGE,
    VARIANT_TIERED,
    FixedDiscount,
    LegacyDiscount,
    ProductParent,
    Tier,
    TieredDiscount,
    Variant,
)
from storefront.pricing import (
    find_applicable_tier,
    is_window_open,
    price_cart,
    price_variant,
    round_half_up,
)

NOW = datetime(2025, 10, 17, 12, 0, tzinfo=timezone.utc)


def make_variant(price=1000, fixed=None, tiered=None, attributes=(), vid="v1", parent_id="p1"):
    return Variant(
        id=vid,
        sku=vid.upper(),
        name=f"Variant {vid}",
        price=price,
        stock=100,
        parent_id=parent_id,
        attributes=attributes,
        fixed_discount=fixed,
        tiered_discount=tiered,
    )


def percent_fixed(value, **kwargs):
    return FixedDiscount(enabled=True, type=PERCENTAGE, value=value, **kwargs)


def tiered(*tiers, **kwargs):
    return TieredDiscount(active=True, tiers=tuple(tiers), **kwargs)


@pytest.fixture
def volume_parent():
    return ProductParent(
        id="p1",
        name="Taza",
        tiered_discounts=(
            LegacyDiscount(active=True, tiers=(Tier(5, None, PERCENTAGE, 20),)),
        ),
    )


# ============ Базовые случаи ============


def test_no_discount():
    """Без скидок цена не меняется, дескрипторы пустые"""
    result = price_variant(make_variant(), 3, now=NOW)

    assert result.final_price == 1000
    assert result.discount_per_unit == 0
    assert result.total_discount == 0
    assert result.applied_fixed_discount is None
    assert result.applied_tier is None
    assert result.details == ""
    assert not result.has_discount


def test_fixed_percentage():
    result = price_variant(make_variant(fixed=percent_fixed(10)), 2, now=NOW)

    assert result.final_price == 900
    assert result.discount_per_unit == 100
    assert result.total_discount == 200
    assert result.subtotal == 1800
    assert result.applied_fixed_discount.value == 10
    assert result.details == "Descuento fijo -10%"


def test_fixed_amount():
    fixed = FixedDiscount(enabled=True, type=AMOUNT, value=150)
    result = price_variant(make_variant(fixed=fixed), 1, now=NOW)

    assert result.final_price == 850
    assert result.details == "Descuento fijo -$150"


def test_fixed_and_tier_compound():
    """Скидка по количеству считается от уже сниженной цены"""
    variant = make_variant(
        fixed=percent_fixed(10), tiered=tiered(Tier(5, None, PERCENTAGE, 20))
    )
    result = price_variant(variant, 5, now=NOW)

    assert result.final_price == 720
    assert result.discount_per_unit == 280
    assert result.total_discount == 1400
    assert result.applied_tier.source == VARIANT_TIERED
    assert result.details == "Descuento fijo -10%; Descuento por cantidad (5+ un) -20%"


def test_legacy_skipped_when_variant_discount_applied(volume_parent):
    """Скидка родителя не складывается со скидкой варианта"""
    variant = make_variant(fixed=percent_fixed(10))
    result = price_variant(variant, 5, volume_parent, NOW)

    assert result.final_price == 900
    assert result.applied_tier is None


def test_legacy_from_original_price(volume_parent):
    result = price_variant(make_variant(), 5, volume_parent, NOW)

    assert result.final_price == 800
    assert result.total_discount == 1000
    assert result.applied_tier.source == PARENT_TIERED
    assert result.details == "Descuento por volumen (5+ un) -20%"


def test_legacy_below_threshold(volume_parent):
    result = price_variant(make_variant(), 4, volume_parent, NOW)
    assert result.final_price == 1000


def test_legacy_ignores_foreign_parent(volume_parent):
    variant = make_variant(parent_id="other")
    result = price_variant(variant, 10, volume_parent, NOW)
    assert result.final_price == 1000


def test_legacy_amount_tiers_ignored():
    """Старые скидки родителя поддерживают только проценты"""
    parent = ProductParent(
        id="p1",
        name="Taza",
        tiered_discounts=(LegacyDiscount(active=True, tiers=(Tier(1, None, AMOUNT, 300),)),),
    )
    result = price_variant(make_variant(), 3, parent, NOW)
    assert result.final_price == 1000


def test_idempotent():
    variant = make_variant(
        fixed=percent_fixed(10), tiered=tiered(Tier(5, None, PERCENTAGE, 20))
    )
    assert price_variant(variant, 7, now=NOW) == price_variant(variant, 7, now=NOW)


# ============ Выбор тарифа ============


def test_find_applicable_tier_picks_highest_min():
    tiers = (
        Tier(3, None, PERCENTAGE, 10),
        Tier(10, None, PERCENTAGE, 20),
        Tier(5, None, PERCENTAGE, 15),
    )
    assert find_applicable_tier(7, tiers).value == 15
    assert find_applicable_tier(12, tiers).value == 20
    assert find_applicable_tier(2, tiers) is None


def test_find_applicable_tier_respects_max():
    tiers = (Tier(1, 4, PERCENTAGE, 5), Tier(5, 9, PERCENTAGE, 10))
    assert find_applicable_tier(9, tiers).value == 10
    assert find_applicable_tier(10, tiers) is None


def test_malformed_tiers_ignored():
    tiers = (
        Tier(0, None, PERCENTAGE, 50),
        Tier(2, 1, PERCENTAGE, 50),
        Tier(2, None, "bogus", 50),
        Tier(2, None, PERCENTAGE, -5),
    )
    assert find_applicable_tier(5, tiers) is None
    assert price_variant(make_variant(tiered=tiered(*tiers)), 5, now=NOW).final_price == 1000


def test_malformed_fixed_ignored():
    fixed = FixedDiscount(enabled=True, type="bogus", value=10)
    assert price_variant(make_variant(fixed=fixed), 1, now=NOW).final_price == 1000


def test_disabled_fixed_ignored():
    fixed = FixedDiscount(enabled=False, type=PERCENTAGE, value=10)
    assert price_variant(make_variant(fixed=fixed), 1, now=NOW).final_price == 1000


# ============ Окна действия ============


def test_expired_tiered_not_applied():
    variant = make_variant(
        tiered=tiered(Tier(1, None, PERCENTAGE, 20), end_date=NOW - timedelta(days=1))
    )
    assert price_variant(variant, 5, now=NOW).final_price == 1000


def test_future_fixed_not_applied():
    variant = make_variant(fixed=percent_fixed(10, start_date=NOW + timedelta(hours=1)))
    assert price_variant(variant, 1, now=NOW).final_price == 1000


def test_window_bounds_inclusive():
    assert is_window_open(NOW, NOW, NOW)
    assert is_window_open(None, None, NOW)


def test_naive_dates_are_utc():
    assert is_window_open(datetime(2025, 10, 17, 11), datetime(2025, 10, 17, 13), NOW)
    assert not is_window_open(datetime(2025, 10, 17, 13), None, NOW)


def test_malformed_window_closed():
    assert not is_window_open("2025-01-01", None, NOW)


# ============ Округление и границы ============


def test_clamped_at_zero():
    fixed = FixedDiscount(enabled=True, type=AMOUNT, value=1500)
    result = price_variant(make_variant(fixed=fixed), 2, now=NOW)

    assert result.final_price == 0
    assert result.discount_per_unit == 1000
    assert result.total_discount == 2000


def test_round_half_up():
    assert round_half_up(904.5) == 905
    assert round_half_up(849.15) == 849
    result = price_variant(make_variant(price=1005, fixed=percent_fixed(10)), 1, now=NOW)
    assert result.final_price == 905


# ============ Группировка по атрибуту ============


@pytest.fixture
def color_parent():
    return ProductParent(
        id="p1",
        name="Remera",
        tiered_discounts=(
            LegacyDiscount(
                active=True,
                tiers=(Tier(6, None, PERCENTAGE, 15),),
                attribute="color",
                attribute_value="Negro",
            ),
        ),
    )


def test_legacy_groups_quantity_by_attribute(color_parent):
    black_m = make_variant(85000, attributes=(("color", "Negro"), ("talle", "M")), vid="m")
    black_l = make_variant(85000, attributes=(("color", "Negro"), ("talle", "L")), vid="l")
    cart = ((black_m, 3), (black_l, 3))

    grouped = price_variant(black_m, 3, color_parent, NOW, cart)
    alone = price_variant(black_m, 3, color_parent, NOW)

    assert grouped.final_price == 72250
    assert alone.final_price == 85000


def test_legacy_attribute_mismatch(color_parent):
    white = make_variant(80000, attributes=(("color", "Blanco"),), vid="w")
    assert price_variant(white, 10, color_parent, NOW).final_price == 80000


# ============ Корзина ============


def test_price_cart_totals():
    discounted = make_variant(1000, fixed=percent_fixed(10), vid="a")
    plain = make_variant(500, vid="b")
    result = price_cart(((discounted, 2, None), (plain, 1, None)), NOW)

    assert result.subtotal == 2500
    assert result.total_discount == 200
    assert result.total == 2300
    assert dict(result.lines)["a"].final_price == 900


# ============ Нулевые скидки ============


def test_zero_fixed_does_not_block_legacy(volume_parent):
    """Скидка 0% не считается применённой, и скидка родителя работает как обычно"""
    variant = make_variant(fixed=percent_fixed(0))
    result = price_variant(variant, 5, volume_parent, NOW)

    assert result.final_price == 800
    assert result.applied_fixed_discount is None
    assert result.applied_tier.source == PARENT_TIERED
    assert result.details == "Descuento por volumen (5+ un) -20%"


def test_zero_tier_not_recorded():
    variant = make_variant(tiered=tiered(Tier(1, None, PERCENTAGE, 0)))
    result = price_variant(variant, 3, now=NOW)

    assert result.applied_tier is None
    assert result.details == ""
