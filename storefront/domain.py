from dataclasses import dataclass
from datetime import datetime
from typing import Optional, Tuple

# Деньги в целых единицах валюты, даты aware datetime в UTC.

PERCENTAGE = "percentage"
AMOUNT = "amount"
DISCOUNT_TYPES = (PERCENTAGE, AMOUNT)

VARIANT_TIERED = "variant-tiered"
PARENT_TIERED = "parent-tiered"

# ============ Статусы заказа ============

PENDING_WHATSAPP = "pending_whatsapp"
CONFIRMED = "confirmed"
PREPARING = "preparing"
SHIPPED = "shipped"
COMPLETED = "completed"
CANCELLED = "cancelled"

FORWARD_FLOW = (PENDING_WHATSAPP, CONFIRMED, PREPARING, SHIPPED, COMPLETED)
TERMINAL_STATUSES = frozenset({COMPLETED, CANCELLED})
EDITABLE_STATUSES = frozenset({PENDING_WHATSAPP, CONFIRMED, PREPARING})
ORDER_STATUSES = FORWARD_FLOW + (CANCELLED,)

# ============ Роли ============

CLIENT = "client"
FUNCIONARIO = "funcionario"
ADMIN = "admin"
STAFF_ROLES = frozenset({FUNCIONARIO, ADMIN})

# ============ Движения склада ============

SALE = "sale"
CANCELLATION = "cancellation"
ADJUSTMENT = "adjustment"
RETURN = "return"
RESTOCK = "restock"
MOVEMENT_TYPES = (SALE, CANCELLATION, ADJUSTMENT, RETURN, RESTOCK)


# ============ Каталог ============


@dataclass(frozen=True)
class FixedDiscount:
    enabled: bool
    type: str
    value: float
    start_date: Optional[datetime] = None
    end_date: Optional[datetime] = None
    badge: Optional[str] = None


@dataclass(frozen=True)
class Tier:
    min_quantity: int
    max_quantity: Optional[int]  # None: без верхней границы
    type: str
    value: float


@dataclass(frozen=True)
class TieredDiscount:
    active: bool
    tiers: Tuple[Tier, ...]
    start_date: Optional[datetime] = None
    end_date: Optional[datetime] = None
    badge: Optional[str] = None


@dataclass(frozen=True)
class Variant:
    id: str
    sku: str
    name: str
    price: int
    stock: int
    parent_id: str
    allow_backorder: bool = False
    track_stock: bool = True
    attributes: Tuple[Tuple[str, str], ...] = ()
    images: Tuple[str, ...] = ()
    fixed_discount: Optional[FixedDiscount] = None
    tiered_discount: Optional[TieredDiscount] = None

    def attribute(self, name: str) -> Optional[str]:
        return dict(self.attributes).get(name)


@dataclass(frozen=True)
class LegacyDiscount:
    """Устаревшая скидка родителя: только проценты"""

    active: bool
    tiers: Tuple[Tier, ...]
    end_date: Optional[datetime] = None
    start_date: Optional[datetime] = None
    attribute: Optional[str] = None
    attribute_value: Optional[str] = None


@dataclass(frozen=True)
class ProductParent:
    id: str
    name: str
    tiered_discounts: Tuple[LegacyDiscount, ...] = ()


# ============ Результат расчёта цены ============


@dataclass(frozen=True)
class AppliedFixedDiscount:
    type: str
    value: float
    badge: Optional[str] = None


@dataclass(frozen=True)
class AppliedTier:
    min_quantity: int
    max_quantity: Optional[int]
    type: str
    value: float
    source: str  # VARIANT_TIERED | PARENT_TIERED


@dataclass(frozen=True)
class PriceResult:
    original_price: int
    final_price: int
    discount_per_unit: int
    quantity: int
    total_discount: int
    applied_fixed_discount: Optional[AppliedFixedDiscount]
    applied_tier: Optional[AppliedTier]
    details: str

    @property
    def subtotal(self) -> int:
        return self.final_price * self.quantity

    @property
    def has_discount(self) -> bool:
        return self.discount_per_unit > 0


# ============ Заказы ============


@dataclass(frozen=True)
class VariantSnapshot:
    """Копия данных варианта на момент добавления в заказ"""

    sku: str
    name: str
    image: str
    attributes: Tuple[Tuple[str, str], ...]


@dataclass(frozen=True)
class OrderItem:
    variant_id: str
    variant_snapshot: VariantSnapshot
    price_per_unit: int  # базовая цена, до скидок
    quantity: int
    discount: int
    subtotal: int

    @property
    def gross(self) -> int:
        return self.price_per_unit * self.quantity


@dataclass(frozen=True)
class Address:
    street: str
    number: str
    city: str
    neighborhood: Optional[str] = None
    reference: Optional[str] = None


@dataclass(frozen=True)
class Customer:
    name: str
    email: str
    phone: str
    user_id: Optional[str] = None
    address: Optional[Address] = None


@dataclass(frozen=True)
class Order:
    id: str
    order_number: str
    status: str
    items: Tuple[OrderItem, ...]
    subtotal: int
    total_discount: int
    shipping_cost: int
    total: int
    customer: Customer
    created_at: datetime
    updated_at: datetime
    revision: int = 0
    cancellation_reason: Optional[str] = None
    admin_notes: Optional[str] = None
    customer_notes: Optional[str] = None
    confirmed_at: Optional[datetime] = None
    completed_at: Optional[datetime] = None
    cancelled_at: Optional[datetime] = None
    whatsapp_sent: bool = False
    whatsapp_sent_at: Optional[datetime] = None

    @property
    def is_terminal(self) -> bool:
        return self.status in TERMINAL_STATUSES

    def quantities(self) -> dict:
        """variant_id -> количество в заказе"""
        result: dict = {}
        for item in self.items:
            result[item.variant_id] = result.get(item.variant_id, 0) + item.quantity
        return result


@dataclass(frozen=True)
class StockChange:
    """Изменение склада, которое должен применить инвентарь (delta < 0 означает списание)"""

    variant_id: str
    delta: int
    reason: str


@dataclass(frozen=True)
class StockMovement:
    variant_id: str
    type: str
    quantity: int
    previous_stock: int
    new_stock: int
    reason: str
    order_id: Optional[str]
    created_at: datetime
