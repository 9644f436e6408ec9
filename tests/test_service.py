import sys
import os

sys.path.append(os.path.abspath(os.path.join(os.path.dirname(__file__), "..")))
import pytest
from datetime import datetime, timedelta, timezone
from storefront.catalog import Catalog
from storefront.config import Settings
from storefront.domain import (
    ADJUSTMENT,
    CANCELLATION,
    CANCELLED,
    COMPLETED,
    CONFIRMED,
    PENDING_WHATSAPP,
    PREPARING,
    SALE,
    SHIPPED,
    Customer,
    ProductParent,
    Variant,
)
from storefront.results import ConcurrentModification, InvalidTransition, NotFound
from storefront.service import OrderService

NOW = datetime(2025, 10, 17, 12, 0, tzinfo=timezone.utc)
LATER = NOW + timedelta(minutes=30)


@pytest.fixture
def catalog():
    return Catalog(
        parents=(ProductParent(id="p1", name="Gorra"),),
        variants=(
            Variant(id="v1", sku="GOR-1", name="Gorra negra", price=60000, stock=10, parent_id="p1"),
            Variant(id="v2", sku="GOR-2", name="Gorra blanca", price=55000, stock=3, parent_id="p1"),
        ),
    )


@pytest.fixture
def customer():
    return Customer(name="Ana", email="ana@example.com", phone="+595981000000")


@pytest.fixture
def service(catalog):
    return OrderService(catalog)


@pytest.fixture
def order(service, customer):
    return service.place_order([("v1", 2)], customer, now=NOW).value


def stock(service, variant_id):
    return service.catalog.get_variant(variant_id).value.stock


# ============ Оформление ============


def test_place_order_deducts_stock(service, order):
    """Оформление списывает остаток и пишет движение sale"""
    assert order.order_number == "QUE-20251017-001"
    assert stock(service, "v1") == 8

    movement = service.catalog.movements("v1")[-1]
    assert movement.type == SALE
    assert movement.order_id == order.id
    assert movement.quantity == -2


def test_order_numbers_sequence(service, customer, order):
    second = service.place_order([("v1", 1)], customer, now=NOW).value
    next_day = service.place_order([("v1", 1)], customer, now=NOW + timedelta(days=1)).value

    assert second.order_number == "QUE-20251017-002"
    assert next_day.order_number == "QUE-20251018-001"


def test_custom_prefix(catalog, customer):
    service = OrderService(catalog, settings=Settings(order_prefix="TST"))
    placed = service.place_order([("v1", 1)], customer, now=NOW).value
    assert placed.order_number == "TST-20251017-001"


def test_rejected_order_keeps_stock(service, customer):
    result = service.place_order([("v2", 4)], customer, now=NOW)

    assert result.is_left
    assert stock(service, "v2") == 3
    assert service.orders() == ()


def test_lookup(service, order):
    assert service.get_order(order.id).value == order
    assert service.find_by_number("QUE-20251017-001").value == order
    assert service.get_order("ghost").is_none()
    assert service.orders_by_status(PENDING_WHATSAPP) == (order,)


# ============ Мутации ============


def test_confirm_unknown_order(service):
    result = service.confirm_order("ghost", 0)
    assert isinstance(result.value, NotFound)


def test_confirm_order(service, order):
    result = service.confirm_order(order.id, 15000, expected_revision=0, now=LATER)

    assert result.value.status == CONFIRMED
    assert result.value.total == 120000 + 15000
    assert service.get_order(order.id).value.revision == 1


def test_stale_revision(service, order):
    service.confirm_order(order.id, 15000, now=LATER)
    result = service.update_shipping_cost(order.id, 5000, expected_revision=0, now=LATER)

    assert isinstance(result.value, ConcurrentModification)
    assert result.value.expected_revision == 0
    assert result.value.actual_revision == 1
    assert service.get_order(order.id).value.shipping_cost == 15000


def test_failed_mutation_keeps_order(service, order):
    result = service.advance_order_status(order.id, SHIPPED, now=LATER)

    assert isinstance(result.value, InvalidTransition)
    assert service.get_order(order.id).value == order


def test_status_skips_from_settings(catalog, customer):
    service = OrderService(catalog, settings=Settings(allow_status_skips=True))
    placed = service.place_order([("v1", 1)], customer, now=NOW).value

    result = service.advance_order_status(placed.id, PREPARING, now=LATER)
    assert result.value.status == PREPARING


def test_cancel_restores_stock(service, order):
    service.confirm_order(order.id, 0, now=LATER)
    result = service.cancel_order(order.id, "Cliente desistió", now=LATER)

    assert result.value.status == CANCELLED
    assert stock(service, "v1") == 10
    assert service.catalog.movements("v1")[-1].type == CANCELLATION


def test_cancel_twice(service, order):
    service.cancel_order(order.id, now=LATER)
    result = service.cancel_order(order.id, now=LATER)

    assert isinstance(result.value, InvalidTransition)
    assert stock(service, "v1") == 10


def test_edit_items_adjusts_stock(service, order):
    result = service.edit_order_items(order.id, [("v1", 1), ("v2", 2)], "Cambio de color", now=LATER)

    assert result.is_right
    assert stock(service, "v1") == 9
    assert stock(service, "v2") == 1
    types = [m.type for m in service.catalog.movements()]
    assert types == [SALE, ADJUSTMENT, ADJUSTMENT]


def test_edit_items_unknown_variant(service, order):
    result = service.edit_order_items(order.id, [("ghost", 1)], now=LATER)
    assert isinstance(result.value, NotFound)
    assert stock(service, "v1") == 8


def test_full_flow(service, order):
    """pending -> confirmed -> preparing -> shipped -> completed"""
    service.confirm_order(order.id, 10000, now=LATER)
    for status in (PREPARING, SHIPPED, COMPLETED):
        assert service.advance_order_status(order.id, status, now=LATER).is_right

    final = service.get_order(order.id).value
    assert final.status == COMPLETED
    assert final.completed_at == LATER
    assert final.revision == 4
