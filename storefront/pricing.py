import math
from dataclasses import dataclass
from datetime import datetime, timezone
from decimal import Decimal, ROUND_HALF_UP
from functools import reduce
from typing import Iterable, Optional, Tuple

from .domain import (
    DISCOUNT_TYPES,
    PARENT_TIERED,
    PERCENTAGE,
    VARIANT_TIERED,
    AppliedFixedDiscount,
    AppliedTier,
    FixedDiscount,
    LegacyDiscount,
    PriceResult,
    ProductParent,
    Tier,
    TieredDiscount,
    Variant,
)
from .results import Either

# Порядок применения скидок:
# 1. фиксированная скидка варианта
# 2. скидка по количеству варианта (считается от уже сниженной цены)
# 3. устаревшая скидка родителя: только если 1 и 2 ничего не дали,
#    процент берётся от исходной цены


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


def as_utc(value: datetime) -> datetime:
    """Naive datetime считается UTC"""
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


def is_window_open(
    start: Optional[datetime], end: Optional[datetime], now: datetime
) -> bool:
    """now попадает в [start, end]; отсутствующая граница не ограничивает"""
    bounds = tuple(b for b in (start, end) if b is not None)
    if not all(isinstance(b, datetime) for b in bounds):
        return False
    moment = as_utc(now)
    if start is not None and as_utc(start) > moment:
        return False
    if end is not None and as_utc(end) < moment:
        return False
    return True


def round_half_up(value: float) -> int:
    return int(Decimal(str(value)).quantize(Decimal("1"), rounding=ROUND_HALF_UP))


# ============ Проверка конфигурации скидок ============


def _valid_value(value) -> bool:
    return (
        isinstance(value, (int, float))
        and not isinstance(value, bool)
        and math.isfinite(value)
        and value >= 0
    )


def is_valid_tier(tier: Tier) -> bool:
    if not isinstance(tier.min_quantity, int) or tier.min_quantity < 1:
        return False
    if tier.max_quantity is not None and (
        not isinstance(tier.max_quantity, int) or tier.max_quantity < tier.min_quantity
    ):
        return False
    return tier.type in DISCOUNT_TYPES and _valid_value(tier.value)


def validate_tiers(tiers: Tuple[Tier, ...]) -> Either[str, Tuple[Tier, ...]]:
    """
    Проверка инвариантов тарифной сетки для админки:
    min_quantity >= 1 и непересекающиеся диапазоны.
    Сам движок цен эту функцию не вызывает, он просто игнорирует битые тарифы.
    """
    broken = next((t for t in tiers if not is_valid_tier(t)), None)
    if broken is not None:
        return Either.left(f"Некорректный тариф: {broken}")

    ordered = tuple(sorted(tiers, key=lambda t: t.min_quantity))
    for prev, nxt in zip(ordered, ordered[1:]):
        if prev.max_quantity is None or prev.max_quantity >= nxt.min_quantity:
            return Either.left(
                f"Тарифы пересекаются: {_range_label(prev)} и {_range_label(nxt)}"
            )
    return Either.right(ordered)


def validate_variant(variant: Variant) -> Either[str, Variant]:
    """Проверка варианта перед сохранением в каталог"""
    if not isinstance(variant.price, int) or variant.price < 0:
        return Either.left(f"Цена варианта {variant.sku} должна быть целым >= 0")
    fixed = variant.fixed_discount
    if fixed is not None and (fixed.type not in DISCOUNT_TYPES or not _valid_value(fixed.value)):
        return Either.left(f"Некорректная фиксированная скидка у {variant.sku}")
    if variant.tiered_discount is not None:
        return validate_tiers(variant.tiered_discount.tiers).map(lambda _: variant)
    return Either.right(variant)


# ============ Выбор тарифа ============


def find_applicable_tier(quantity: int, tiers: Iterable[Tier]) -> Optional[Tier]:
    """
    Тариф с наибольшим min_quantity, в диапазон которого попадает quantity.
    Единственная реализация выбора тарифа, остальные функции зовут её.
    """
    ranked = sorted(
        filter(is_valid_tier, tiers), key=lambda t: t.min_quantity, reverse=True
    )
    return next(
        (
            t
            for t in ranked
            if quantity >= t.min_quantity
            and (t.max_quantity is None or quantity <= t.max_quantity)
        ),
        None,
    )


def discount_amount(price: float, kind: str, value: float) -> float:
    return price * value / 100 if kind == PERCENTAGE else float(value)


def active_fixed_discount(variant: Variant, now: datetime) -> Optional[FixedDiscount]:
    fixed = variant.fixed_discount
    if fixed is None or not fixed.enabled:
        return None
    if fixed.type not in DISCOUNT_TYPES or not _valid_value(fixed.value):
        return None
    return fixed if is_window_open(fixed.start_date, fixed.end_date, now) else None


def active_tiered_discount(variant: Variant, now: datetime) -> Optional[TieredDiscount]:
    tiered = variant.tiered_discount
    if tiered is None or not tiered.active or not tiered.tiers:
        return None
    return tiered if is_window_open(tiered.start_date, tiered.end_date, now) else None


def owns(parent: Optional[ProductParent], variant: Variant) -> bool:
    return parent is not None and parent.id == variant.parent_id


def active_legacy_discounts(
    parent: Optional[ProductParent], now: datetime
) -> Tuple[LegacyDiscount, ...]:
    if parent is None:
        return ()
    return tuple(
        d
        for d in parent.tiered_discounts
        if d.active and d.tiers and is_window_open(d.start_date, d.end_date, now)
    )


def _legacy_quantity(
    discount: LegacyDiscount,
    variant: Variant,
    quantity: int,
    cart: Tuple[Tuple[Variant, int], ...],
) -> Optional[int]:
    """Количество для выбора тарифа; None, если скидка к варианту не относится"""
    if not discount.attribute or discount.attribute_value is None:
        return quantity
    if variant.attribute(discount.attribute) != discount.attribute_value:
        return None

    # количество суммируется по всем строкам корзины с тем же значением атрибута
    grouped = sum(
        q
        for v, q in cart
        if v.parent_id == variant.parent_id
        and v.attribute(discount.attribute) == discount.attribute_value
    )
    return grouped or quantity


def _legacy_tier(
    variant: Variant,
    quantity: int,
    parent: Optional[ProductParent],
    now: datetime,
    cart: Tuple[Tuple[Variant, int], ...],
) -> Optional[Tier]:
    if not owns(parent, variant):
        return None
    for discount in active_legacy_discounts(parent, now):
        qty = _legacy_quantity(discount, variant, quantity, cart)
        if qty is None:
            continue
        percent_tiers = tuple(t for t in discount.tiers if t.type == PERCENTAGE)
        tier = find_applicable_tier(qty, percent_tiers)
        if tier is not None:
            return tier
    return None


# ============ Описания скидок ============


def format_money(value: float, currency: str = "$") -> str:
    return currency + f"{round_half_up(value):,}".replace(",", ".")


def _format_value(kind: str, value: float, currency: str = "$") -> str:
    if kind == PERCENTAGE:
        shown = int(value) if float(value).is_integer() else value
        return f"{shown}%"
    return format_money(value, currency)


def _range_label(tier: Tier) -> str:
    if tier.max_quantity is None:
        return f"{tier.min_quantity}+ un"
    return f"{tier.min_quantity}-{tier.max_quantity} un"


def _applied(tier: Tier, source: str) -> AppliedTier:
    return AppliedTier(
        min_quantity=tier.min_quantity,
        max_quantity=tier.max_quantity,
        type=tier.type,
        value=tier.value,
        source=source,
    )


# ============ Движок цен ============


def price_variant(
    variant: Variant,
    quantity: int,
    parent: Optional[ProductParent] = None,
    now: Optional[datetime] = None,
    cart: Tuple[Tuple[Variant, int], ...] = (),
) -> PriceResult:
    """
    Цена варианта за единицу с учётом всех скидок для заданного количества.
    Чистая функция: при одинаковых аргументах и now результат одинаковый.
    Никогда не бросает исключений: битая или просроченная скидка просто не применяется.
    Итоговая цена не опускается ниже нуля.
    """
    moment = now if now is not None else utc_now()
    original = variant.price
    price = float(original)
    notes = []
    applied_fixed = None
    applied_tier = None

    fixed = active_fixed_discount(variant, moment)
    fixed_amount = discount_amount(price, fixed.type, fixed.value) if fixed is not None else 0
    if fixed_amount > 0:
        price -= fixed_amount
        applied_fixed = AppliedFixedDiscount(fixed.type, fixed.value, fixed.badge)
        notes.append(f"Descuento fijo -{_format_value(fixed.type, fixed.value)}")

    tiered = active_tiered_discount(variant, moment)
    tier = find_applicable_tier(quantity, tiered.tiers) if tiered is not None else None
    tier_amount = discount_amount(price, tier.type, tier.value) if tier is not None else 0
    if tier_amount > 0:
        price -= tier_amount
        applied_tier = _applied(tier, VARIANT_TIERED)
        notes.append(
            f"Descuento por cantidad ({_range_label(tier)}) -{_format_value(tier.type, tier.value)}"
        )

    if price == float(original):
        legacy = _legacy_tier(variant, quantity, parent, moment, cart)
        if legacy is not None:
            price = original - discount_amount(original, PERCENTAGE, legacy.value)
            applied_tier = _applied(legacy, PARENT_TIERED)
            notes.append(
                f"Descuento por volumen ({_range_label(legacy)}) -{_format_value(PERCENTAGE, legacy.value)}"
            )

    final_price = max(0, round_half_up(price))
    per_unit = original - final_price
    if per_unit <= 0:
        return PriceResult(
            original_price=original,
            final_price=original,
            discount_per_unit=0,
            quantity=quantity,
            total_discount=0,
            applied_fixed_discount=None,
            applied_tier=None,
            details="",
        )

    return PriceResult(
        original_price=original,
        final_price=final_price,
        discount_per_unit=per_unit,
        quantity=quantity,
        total_discount=per_unit * quantity,
        applied_fixed_discount=applied_fixed,
        applied_tier=applied_tier,
        details="; ".join(notes),
    )


# ============ Корзина ============


@dataclass(frozen=True)
class CartPricing:
    lines: Tuple[Tuple[str, PriceResult], ...]
    subtotal: int  # до скидок
    total_discount: int
    total: int


def price_cart(
    lines: Iterable[Tuple[Variant, int, Optional[ProductParent]]],
    now: Optional[datetime] = None,
) -> CartPricing:
    """Пересчёт всей корзины; количество для скидок родителя группируется по атрибуту"""
    moment = now if now is not None else utc_now()
    materialized = tuple(lines)
    cart = tuple((variant, qty) for variant, qty, _ in materialized)

    priced = tuple(
        (variant.id, price_variant(variant, qty, parent, moment, cart))
        for variant, qty, parent in materialized
    )

    def accumulate(acc: Tuple[int, int], line: Tuple[str, PriceResult]) -> Tuple[int, int]:
        gross, discount = acc
        _, result = line
        return (gross + result.original_price * result.quantity, discount + result.total_discount)

    subtotal, total_discount = reduce(accumulate, priced, (0, 0))
    return CartPricing(
        lines=priced,
        subtotal=subtotal,
        total_discount=total_discount,
        total=subtotal - total_discount,
    )


# ============ Витрина: бейджи и таблицы тарифов ============


@dataclass(frozen=True)
class TierRow:
    range: str
    price: str
    discount: str
    unit_price: int


@dataclass(frozen=True)
class TierPreview:
    min_quantity: int
    price_per_unit: int
    discount_type: str
    discount_value: float
    badge: Optional[str]


def has_active_discount(
    variant: Variant, parent: Optional[ProductParent] = None, now: Optional[datetime] = None
) -> bool:
    moment = now if now is not None else utc_now()
    return (
        active_fixed_discount(variant, moment) is not None
        or active_tiered_discount(variant, moment) is not None
        or (owns(parent, variant) and bool(active_legacy_discounts(parent, moment)))
    )


def _displayed_tiers(
    variant: Variant, parent: Optional[ProductParent], now: datetime
) -> Tuple[Tier, ...]:
    """Тарифы, которые видит покупатель: сначала тарифы варианта, иначе родителя"""
    tiered = active_tiered_discount(variant, now)
    if tiered is not None:
        return tuple(sorted(filter(is_valid_tier, tiered.tiers), key=lambda t: t.min_quantity))
    if owns(parent, variant):
        legacy = next(
            (
                d
                for d in active_legacy_discounts(parent, now)
                if _legacy_quantity(d, variant, 1, ()) is not None
            ),
            None,
        )
        if legacy is not None:
            percent = (t for t in legacy.tiers if t.type == PERCENTAGE)
            return tuple(sorted(filter(is_valid_tier, percent), key=lambda t: t.min_quantity))
    return ()


def discount_badge(
    variant: Variant,
    parent: Optional[ProductParent] = None,
    now: Optional[datetime] = None,
    currency: str = "$",
) -> Optional[str]:
    moment = now if now is not None else utc_now()

    fixed = active_fixed_discount(variant, moment)
    if fixed is not None:
        return fixed.badge or f"-{_format_value(fixed.type, fixed.value, currency)}"

    tiered = active_tiered_discount(variant, moment)
    if tiered is not None and tiered.badge:
        return tiered.badge

    tiers = _displayed_tiers(variant, parent, moment)
    if not tiers:
        return None
    first = tiers[0]
    result = price_variant(variant, first.min_quantity, parent, moment)
    return f"Desde {first.min_quantity} un {format_money(result.final_price, currency)} c/u"


def discount_tiers(
    variant: Variant,
    parent: Optional[ProductParent] = None,
    now: Optional[datetime] = None,
    currency: str = "$",
) -> Tuple[TierRow, ...]:
    """Строки для подсказки «цена от количества»; цены считает price_variant"""
    moment = now if now is not None else utc_now()

    def to_row(tier: Tier) -> TierRow:
        result = price_variant(variant, tier.min_quantity, parent, moment)
        return TierRow(
            range=_range_label(tier),
            price=format_money(result.final_price, currency),
            discount=_format_value(tier.type, tier.value, currency),
            unit_price=result.final_price,
        )

    return tuple(map(to_row, _displayed_tiers(variant, parent, moment)))


def tier_previews(
    variant: Variant,
    parent: Optional[ProductParent] = None,
    now: Optional[datetime] = None,
    limit: int = 2,
) -> Tuple[TierPreview, ...]:
    """Первые тарифы варианта для карточки товара"""
    moment = now if now is not None else utc_now()
    tiered = active_tiered_discount(variant, moment)
    if tiered is None:
        return ()
    ordered = sorted(filter(is_valid_tier, tiered.tiers), key=lambda t: t.min_quantity)
    return tuple(
        TierPreview(
            min_quantity=t.min_quantity,
            price_per_unit=price_variant(variant, t.min_quantity, parent, moment).final_price,
            discount_type=t.type,
            discount_value=t.value,
            badge=tiered.badge,
        )
        for t in ordered[:limit]
    )
