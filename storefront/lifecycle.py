import uuid
from dataclasses import dataclass, replace
from datetime import datetime
from functools import reduce
from typing import Dict, Iterable, Optional, Tuple

from .catalog import Catalog
from .domain import (
    ADJUSTMENT,
    CANCELLATION,
    CANCELLED,
    COMPLETED,
    CONFIRMED,
    EDITABLE_STATUSES,
    FORWARD_FLOW,
    FUNCIONARIO,
    PENDING_WHATSAPP,
    SALE,
    STAFF_ROLES,
    Customer,
    Order,
    OrderItem,
    StockChange,
    Variant,
    VariantSnapshot,
)
from .pricing import price_variant, utc_now
from .results import (
    Either,
    InvalidOrderEdit,
    InvalidTransition,
    NotFound,
    OrderError,
)

# Строка заказа на входе: (variant_id, quantity), как позиции корзины
Line = Tuple[str, int]


@dataclass(frozen=True)
class Transition:
    """Новое состояние заказа и изменения склада, которые нужно применить"""

    order: Order
    stock_changes: Tuple[StockChange, ...] = ()


# ============ Охранные предикаты ============


def next_status(status: str) -> Optional[str]:
    if status not in FORWARD_FLOW or status == COMPLETED:
        return None
    return FORWARD_FLOW[FORWARD_FLOW.index(status) + 1]


def can_confirm(order: Order) -> bool:
    return order.status == PENDING_WHATSAPP


def can_edit(order: Order) -> bool:
    """Позиции и доставку можно менять только до отправки"""
    return order.status in EDITABLE_STATUSES


def can_cancel(order: Order, actor: str = FUNCIONARIO) -> bool:
    if order.is_terminal:
        return False
    if actor in STAFF_ROLES:
        return True
    # клиент может отменить только заказ, который ещё не взят в работу
    return order.status == PENDING_WHATSAPP


def can_advance(order: Order, new_status: str, allow_skips: bool = False) -> bool:
    if order.is_terminal:
        return False
    if new_status == CANCELLED:
        return True
    if new_status not in FORWARD_FLOW or order.status not in FORWARD_FLOW:
        return False
    if allow_skips:
        return FORWARD_FLOW.index(new_status) > FORWARD_FLOW.index(order.status)
    return new_status == next_status(order.status)


# ============ Агрегаты ============


def recompute_totals(order: Order) -> Order:
    """subtotal: сумма до скидок, total = subtotal - total_discount + shipping_cost"""
    subtotal = reduce(lambda acc, item: acc + item.gross, order.items, 0)
    total_discount = reduce(lambda acc, item: acc + item.discount, order.items, 0)
    return replace(
        order,
        subtotal=subtotal,
        total_discount=total_discount,
        total=subtotal - total_discount + order.shipping_cost,
    )


def _touch(order: Order, now: datetime, **changes) -> Order:
    return replace(order, updated_at=now, revision=order.revision + 1, **changes)


def _append_notes(existing: Optional[str], notes: Optional[str]) -> Optional[str]:
    if not notes:
        return existing
    return f"{existing}\n{notes}" if existing else notes


def _valid_money(value) -> bool:
    return isinstance(value, int) and not isinstance(value, bool) and value >= 0


def _valid_quantity(value) -> bool:
    return isinstance(value, int) and not isinstance(value, bool) and value >= 1


def _merge_lines(lines: Tuple[Line, ...]) -> Tuple[Line, ...]:
    """Одинаковые варианты складываются, порядок первого появления сохраняется"""

    def add(acc: Dict[str, int], line: Line) -> Dict[str, int]:
        variant_id, qty = line
        return {**acc, variant_id: acc.get(variant_id, 0) + qty}

    return tuple(reduce(add, lines, {}).items())


def snapshot(variant: Variant) -> VariantSnapshot:
    return VariantSnapshot(
        sku=variant.sku,
        name=variant.name,
        image=variant.images[0] if variant.images else "",
        attributes=variant.attributes,
    )


def _short_of_stock(variant: Variant, deduction: int) -> bool:
    return variant.track_stock and not variant.allow_backorder and variant.stock < deduction


def _check_lines(lines: Tuple[Line, ...], order_id: Optional[str]) -> Optional[OrderError]:
    if not lines:
        return InvalidOrderEdit("Заказ должен содержать хотя бы одну позицию", order_id)
    bad = next((line for line in lines if not _valid_quantity(line[1])), None)
    if bad is not None:
        return InvalidOrderEdit(
            f"Количество для {bad[0]} должно быть не меньше 1", order_id
        )
    return None


def _resolve_variants(
    lines: Tuple[Line, ...], lookup: Catalog, order_id: Optional[str]
) -> Either[OrderError, Tuple[Variant, ...]]:
    """Варианты в порядке строк; первый отсутствующий даёт NotFound"""

    def resolve(
        acc: Either[OrderError, Tuple[Variant, ...]], line: Line
    ) -> Either[OrderError, Tuple[Variant, ...]]:
        variant_id = line[0]
        missing = NotFound(f"Вариант {variant_id} не найден", order_id, variant_id=variant_id)
        return acc.bind(
            lambda found: lookup.get_variant(variant_id)
            .to_either(missing)
            .map(lambda variant: found + (variant,))
        )

    return reduce(resolve, lines, Either.right(()))


def _price_items(
    lines: Tuple[Line, ...], variants: Tuple[Variant, ...], lookup: Catalog, now: datetime
) -> Tuple[OrderItem, ...]:
    """Снимок и цена каждой позиции; pricing видит всю корзину для скидок родителя"""
    cart = tuple((variant, qty) for variant, (_, qty) in zip(variants, lines))

    def to_item(variant: Variant, qty: int) -> OrderItem:
        result = price_variant(variant, qty, lookup.parent_of(variant), now, cart)
        return OrderItem(
            variant_id=variant.id,
            variant_snapshot=snapshot(variant),
            price_per_unit=variant.price,
            quantity=qty,
            discount=result.total_discount,
            subtotal=variant.price * qty - result.total_discount,
        )

    return tuple(to_item(variant, qty) for variant, (_, qty) in zip(variants, lines))


def _shortage(
    variants: Tuple[Variant, ...], changes: Iterable[StockChange], order_id: Optional[str]
) -> Optional[OrderError]:
    by_id = {v.id: v for v in variants}
    for change in changes:
        variant = by_id.get(change.variant_id)
        if change.delta < 0 and variant is not None and _short_of_stock(variant, -change.delta):
            return InvalidOrderEdit(
                f"Недостаточно остатка для {variant.name}: "
                f"доступно {variant.stock}, требуется {-change.delta}",
                order_id,
            )
    return None


# ============ Создание заказа ============


def next_order_number(prefix: str, now: datetime, existing: Iterable[str] = ()) -> str:
    """QUE-20251017-001: порядковый номер внутри дня"""
    stem = f"{prefix}-{now.strftime('%Y%m%d')}-"
    sequences = (
        int(number[len(stem):])
        for number in existing
        if number.startswith(stem) and number[len(stem):].isdigit()
    )
    return f"{stem}{max(sequences, default=0) + 1:03d}"


def place_order(
    lines: Iterable[Line],
    customer: Customer,
    lookup: Catalog,
    order_number: str,
    now: Optional[datetime] = None,
    customer_notes: Optional[str] = None,
    order_id: Optional[str] = None,
) -> Either[OrderError, Transition]:
    """Корзина -> заказ в статусе pending_whatsapp; доставка считается позже"""
    moment = now if now is not None else utc_now()
    requested = tuple(lines)
    error = _check_lines(requested, order_id)
    if error is not None:
        return Either.left(error)

    merged = _merge_lines(requested)

    def build(variants: Tuple[Variant, ...]) -> Either[OrderError, Transition]:
        changes = tuple(StockChange(vid, -qty, SALE) for vid, qty in merged)
        shortage = _shortage(variants, changes, order_id)
        if shortage is not None:
            return Either.left(shortage)

        order = Order(
            id=order_id or str(uuid.uuid4()),
            order_number=order_number,
            status=PENDING_WHATSAPP,
            items=_price_items(merged, variants, lookup, moment),
            subtotal=0,
            total_discount=0,
            shipping_cost=0,
            total=0,
            customer=customer,
            created_at=moment,
            updated_at=moment,
            customer_notes=customer_notes,
        )
        return Either.right(Transition(recompute_totals(order), changes))

    return _resolve_variants(merged, lookup, order_id).bind(build)


# ============ Переходы статусов ============


def confirm(
    order: Order,
    shipping_cost: int,
    admin_notes: Optional[str] = None,
    now: Optional[datetime] = None,
) -> Either[OrderError, Transition]:
    if not can_confirm(order):
        return Either.left(
            InvalidTransition(
                f"Подтвердить можно только заказ в статусе {PENDING_WHATSAPP}",
                order.id,
                current_status=order.status,
                requested_status=CONFIRMED,
            )
        )
    if not _valid_money(shipping_cost):
        return Either.left(
            InvalidOrderEdit("Стоимость доставки должна быть целым >= 0", order.id)
        )

    moment = now if now is not None else utc_now()
    updated = _touch(
        order,
        moment,
        status=CONFIRMED,
        shipping_cost=shipping_cost,
        confirmed_at=moment,
        admin_notes=_append_notes(order.admin_notes, admin_notes),
    )
    return Either.right(Transition(recompute_totals(updated)))


def cancel(
    order: Order,
    reason: Optional[str] = None,
    actor: str = FUNCIONARIO,
    now: Optional[datetime] = None,
) -> Either[OrderError, Transition]:
    """Отмена; весь списанный под заказ остаток возвращается на склад"""
    if not can_cancel(order, actor):
        message = (
            f"Заказ в статусе {order.status} уже нельзя отменить"
            if order.is_terminal or actor in STAFF_ROLES
            else "Клиент может отменить только заказ, ожидающий подтверждения"
        )
        return Either.left(
            InvalidTransition(
                message,
                order.id,
                current_status=order.status,
                requested_status=CANCELLED,
            )
        )

    moment = now if now is not None else utc_now()
    updated = _touch(
        order,
        moment,
        status=CANCELLED,
        cancellation_reason=reason,
        cancelled_at=moment,
    )
    restored = tuple(
        StockChange(vid, qty, CANCELLATION) for vid, qty in order.quantities().items()
    )
    return Either.right(Transition(updated, restored))


def advance_status(
    order: Order,
    new_status: str,
    admin_notes: Optional[str] = None,
    now: Optional[datetime] = None,
    allow_skips: bool = False,
) -> Either[OrderError, Transition]:
    """Следующий статус по цепочке или отмена; суммы не пересчитываются"""
    if new_status == CANCELLED and not order.is_terminal:
        moment = now if now is not None else utc_now()
        return cancel(order, admin_notes, FUNCIONARIO, moment).map(
            lambda t: replace(
                t,
                order=replace(
                    t.order, admin_notes=_append_notes(order.admin_notes, admin_notes)
                ),
            )
        )

    if not can_advance(order, new_status, allow_skips):
        return Either.left(
            InvalidTransition(
                f"Переход {order.status} -> {new_status} недопустим",
                order.id,
                current_status=order.status,
                requested_status=new_status,
            )
        )

    moment = now if now is not None else utc_now()
    changes = {
        "status": new_status,
        "admin_notes": _append_notes(order.admin_notes, admin_notes),
    }
    if new_status == CONFIRMED:
        changes["confirmed_at"] = moment
    if new_status == COMPLETED:
        changes["completed_at"] = moment
    return Either.right(Transition(_touch(order, moment, **changes)))


# ============ Редактирование ============


def edit_items(
    order: Order,
    lines: Iterable[Line],
    lookup: Catalog,
    admin_notes: Optional[str] = None,
    now: Optional[datetime] = None,
) -> Either[OrderError, Transition]:
    """
    Полная замена позиций заказа.
    Снимки берутся из текущего каталога, цены пересчитываются движком,
    разница количеств по вариантам уходит в склад как adjustment.
    """
    if not can_edit(order):
        return Either.left(
            InvalidOrderEdit(
                f"Нельзя редактировать заказ в статусе {order.status}", order.id
            )
        )

    requested = tuple(lines)
    error = _check_lines(requested, order.id)
    if error is not None:
        return Either.left(error)

    merged = _merge_lines(requested)
    moment = now if now is not None else utc_now()

    def build(variants: Tuple[Variant, ...]) -> Either[OrderError, Transition]:
        old = order.quantities()
        new = dict(merged)
        touched = tuple(old) + tuple(vid for vid in new if vid not in old)
        changes = tuple(
            StockChange(vid, old.get(vid, 0) - new.get(vid, 0), ADJUSTMENT)
            for vid in touched
            if old.get(vid, 0) != new.get(vid, 0)
        )
        shortage = _shortage(variants, changes, order.id)
        if shortage is not None:
            return Either.left(shortage)

        updated = _touch(
            order,
            moment,
            items=_price_items(merged, variants, lookup, moment),
            admin_notes=_append_notes(order.admin_notes, admin_notes),
        )
        return Either.right(Transition(recompute_totals(updated), changes))

    return _resolve_variants(merged, lookup, order.id).bind(build)


def update_shipping_cost(
    order: Order, shipping_cost: int, now: Optional[datetime] = None
) -> Either[OrderError, Transition]:
    if not can_edit(order):
        return Either.left(
            InvalidOrderEdit(
                f"Нельзя менять доставку у заказа в статусе {order.status}", order.id
            )
        )
    if not _valid_money(shipping_cost):
        return Either.left(
            InvalidOrderEdit("Стоимость доставки должна быть целым >= 0", order.id)
        )

    moment = now if now is not None else utc_now()
    updated = _touch(
        order,
        moment,
        shipping_cost=shipping_cost,
        total=order.subtotal - order.total_discount + shipping_cost,
    )
    return Either.right(Transition(updated))
