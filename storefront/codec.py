import json
from dataclasses import asdict
from datetime import datetime
from typing import Any, Dict, Optional, Tuple

from .domain import (
    Address,
    Customer,
    FixedDiscount,
    LegacyDiscount,
    Order,
    OrderItem,
    ProductParent,
    Tier,
    TieredDiscount,
    Variant,
    VariantSnapshot,
)
from .pricing import as_utc

# Формат хранения: camelCase, даты ISO-8601, деньги целыми.


def encode_date(value: Optional[datetime]) -> Optional[str]:
    if not isinstance(value, datetime):
        # нераспознанная граница скидки сохраняется как есть
        return value
    return as_utc(value).isoformat().replace("+00:00", "Z")


def decode_date(value: Optional[str]) -> Optional[datetime]:
    if not value:
        return None
    return as_utc(datetime.fromisoformat(value.replace("Z", "+00:00")))


def _window_date(value):
    """Граница окна скидки; нераспознанная строка остаётся строкой и закрывает окно"""
    if not isinstance(value, str):
        return value
    try:
        return decode_date(value)
    except ValueError:
        return value


def _as_int(value, fallback: int) -> int:
    if isinstance(value, bool):
        return fallback
    try:
        return int(value)
    except (TypeError, ValueError):
        return fallback


def _drop_none(data: Dict[str, Any]) -> Dict[str, Any]:
    return {k: v for k, v in data.items() if v is not None}


def _number(value):
    """1.0 -> 1, чтобы проценты не превращались во float при обходе JSON"""
    return int(value) if isinstance(value, float) and value.is_integer() else value


# ============ Скидки ============


def encode_tier(tier: Tier) -> dict:
    return {
        "minQuantity": tier.min_quantity,
        "maxQuantity": tier.max_quantity,
        "type": tier.type,
        "value": tier.value,
    }


def decode_tier(data: dict) -> Tier:
    if not isinstance(data, dict):
        data = {}
    return Tier(
        min_quantity=_as_int(data.get("minQuantity"), 0),
        max_quantity=None if data.get("maxQuantity") is None else _as_int(data["maxQuantity"], -1),
        type=str(data.get("type", "")),
        value=_number(data.get("value")),
    )


def encode_fixed(discount: FixedDiscount) -> dict:
    return _drop_none(
        {
            "enabled": discount.enabled,
            "type": discount.type,
            "value": discount.value,
            "startDate": encode_date(discount.start_date),
            "endDate": encode_date(discount.end_date),
            "badge": discount.badge,
        }
    )


def decode_fixed(data: dict) -> FixedDiscount:
    return FixedDiscount(
        enabled=bool(data.get("enabled", False)),
        type=str(data.get("type", "")),
        value=_number(data.get("value")),
        start_date=_window_date(data.get("startDate")),
        end_date=_window_date(data.get("endDate")),
        badge=data.get("badge"),
    )


def encode_tiered(discount: TieredDiscount) -> dict:
    return _drop_none(
        {
            "active": discount.active,
            "tiers": [encode_tier(t) for t in discount.tiers],
            "startDate": encode_date(discount.start_date),
            "endDate": encode_date(discount.end_date),
            "badge": discount.badge,
        }
    )


def decode_tiered(data: dict) -> TieredDiscount:
    return TieredDiscount(
        active=bool(data.get("active", False)),
        tiers=tuple(map(decode_tier, data.get("tiers", []))),
        start_date=_window_date(data.get("startDate")),
        end_date=_window_date(data.get("endDate")),
        badge=data.get("badge"),
    )


def encode_legacy(discount: LegacyDiscount) -> dict:
    return _drop_none(
        {
            "active": discount.active,
            "tiers": [encode_tier(t) for t in discount.tiers],
            "startDate": encode_date(discount.start_date),
            "endDate": encode_date(discount.end_date),
            "attribute": discount.attribute,
            "attributeValue": discount.attribute_value,
        }
    )


def decode_legacy(data: dict) -> LegacyDiscount:
    return LegacyDiscount(
        active=bool(data.get("active", False)),
        tiers=tuple(map(decode_tier, data.get("tiers", []))),
        end_date=_window_date(data.get("endDate")),
        start_date=_window_date(data.get("startDate")),
        attribute=data.get("attribute"),
        attribute_value=data.get("attributeValue"),
    )


# ============ Каталог ============


def encode_variant(variant: Variant) -> dict:
    return _drop_none(
        {
            "id": variant.id,
            "sku": variant.sku,
            "name": variant.name,
            "price": variant.price,
            "stock": variant.stock,
            "parentId": variant.parent_id,
            "allowBackorder": variant.allow_backorder,
            "trackStock": variant.track_stock,
            "attributes": dict(variant.attributes),
            "images": list(variant.images),
            "fixedDiscount": encode_fixed(variant.fixed_discount) if variant.fixed_discount else None,
            "tieredDiscount": encode_tiered(variant.tiered_discount) if variant.tiered_discount else None,
        }
    )


def decode_variant(data: dict) -> Variant:
    fixed = data.get("fixedDiscount")
    tiered = data.get("tieredDiscount")
    return Variant(
        id=str(data["id"]),
        sku=str(data["sku"]),
        name=str(data.get("name", data["sku"])),
        price=int(data["price"]),
        stock=int(data.get("stock", 0)),
        parent_id=str(data["parentId"]),
        allow_backorder=bool(data.get("allowBackorder", False)),
        track_stock=bool(data.get("trackStock", True)),
        attributes=tuple((str(k), str(v)) for k, v in data.get("attributes", {}).items()),
        images=tuple(data.get("images", [])),
        fixed_discount=decode_fixed(fixed) if isinstance(fixed, dict) else None,
        tiered_discount=decode_tiered(tiered) if isinstance(tiered, dict) else None,
    )


def encode_parent(parent: ProductParent) -> dict:
    return {
        "id": parent.id,
        "name": parent.name,
        "tieredDiscounts": [encode_legacy(d) for d in parent.tiered_discounts],
    }


def decode_parent(data: dict) -> ProductParent:
    return ProductParent(
        id=str(data["id"]),
        name=str(data.get("name", "")),
        tiered_discounts=tuple(map(decode_legacy, data.get("tieredDiscounts", []))),
    )


# ============ Заказы ============


def encode_item(item: OrderItem) -> dict:
    snap = item.variant_snapshot
    return {
        "variantId": item.variant_id,
        "variantSnapshot": {
            "sku": snap.sku,
            "name": snap.name,
            "image": snap.image,
            "attributes": dict(snap.attributes),
        },
        "pricePerUnit": item.price_per_unit,
        "quantity": item.quantity,
        "discount": item.discount,
        "subtotal": item.subtotal,
    }


def decode_item(data: dict) -> OrderItem:
    snap = data["variantSnapshot"]
    return OrderItem(
        variant_id=str(data["variantId"]),
        variant_snapshot=VariantSnapshot(
            sku=str(snap["sku"]),
            name=str(snap["name"]),
            image=str(snap.get("image", "")),
            attributes=tuple((str(k), str(v)) for k, v in snap.get("attributes", {}).items()),
        ),
        price_per_unit=int(data["pricePerUnit"]),
        quantity=int(data["quantity"]),
        discount=int(data.get("discount", 0)),
        subtotal=int(data["subtotal"]),
    )


def encode_customer(customer: Customer) -> dict:
    address = customer.address
    return _drop_none(
        {
            "name": customer.name,
            "email": customer.email,
            "phone": customer.phone,
            "user": customer.user_id,
            "address": _drop_none(asdict(address)) if address else None,
        }
    )


def decode_customer(data: dict) -> Customer:
    address = data.get("address")
    return Customer(
        name=str(data["name"]),
        email=str(data["email"]),
        phone=str(data["phone"]),
        user_id=data.get("user"),
        address=Address(**address) if address else None,
    )


def encode_order(order: Order) -> dict:
    return _drop_none(
        {
            "id": order.id,
            "orderNumber": order.order_number,
            "status": order.status,
            "items": [encode_item(i) for i in order.items],
            "subtotal": order.subtotal,
            "totalDiscount": order.total_discount,
            "shippingCost": order.shipping_cost,
            "total": order.total,
            "customer": encode_customer(order.customer),
            "createdAt": encode_date(order.created_at),
            "updatedAt": encode_date(order.updated_at),
            "revision": order.revision,
            "cancellationReason": order.cancellation_reason,
            "adminNotes": order.admin_notes,
            "customerNotes": order.customer_notes,
            "confirmedAt": encode_date(order.confirmed_at),
            "completedAt": encode_date(order.completed_at),
            "cancelledAt": encode_date(order.cancelled_at),
            "whatsappSent": order.whatsapp_sent,
            "whatsappSentAt": encode_date(order.whatsapp_sent_at),
        }
    )


def decode_order(data: dict) -> Order:
    return Order(
        id=str(data["id"]),
        order_number=str(data["orderNumber"]),
        status=str(data["status"]),
        items=tuple(map(decode_item, data.get("items", []))),
        subtotal=int(data["subtotal"]),
        total_discount=int(data.get("totalDiscount", 0)),
        shipping_cost=int(data.get("shippingCost", 0)),
        total=int(data["total"]),
        customer=decode_customer(data["customer"]),
        created_at=decode_date(data["createdAt"]),
        updated_at=decode_date(data.get("updatedAt") or data["createdAt"]),
        revision=int(data.get("revision", 0)),
        cancellation_reason=data.get("cancellationReason"),
        admin_notes=data.get("adminNotes"),
        customer_notes=data.get("customerNotes"),
        confirmed_at=decode_date(data.get("confirmedAt")),
        completed_at=decode_date(data.get("completedAt")),
        cancelled_at=decode_date(data.get("cancelledAt")),
        whatsapp_sent=bool(data.get("whatsappSent", False)),
        whatsapp_sent_at=decode_date(data.get("whatsappSentAt")),
    )


# ============ Файлы ============


def load_seed(
    path: str,
) -> Tuple[Tuple[ProductParent, ...], Tuple[Variant, ...], Tuple[Order, ...]]:
    """Загружает seed.json и возвращает кортежи иммутабельных данных"""
    with open(path, "r", encoding="utf-8") as f:
        data = json.load(f)

    parents = tuple(map(decode_parent, data.get("parents", [])))
    variants = tuple(map(decode_variant, data.get("variants", [])))
    orders = tuple(map(decode_order, data.get("orders", [])))
    return parents, variants, orders


def dump_orders(orders: Tuple[Order, ...]) -> str:
    return json.dumps([encode_order(o) for o in orders], ensure_ascii=False, indent=2)
