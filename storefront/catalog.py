import logging
import threading
from dataclasses import replace
from datetime import datetime
from typing import Dict, Iterable, Optional, Tuple

from .domain import (
    ADJUSTMENT,
    CANCELLATION,
    MOVEMENT_TYPES,
    RESTOCK,
    RETURN,
    SALE,
    ProductParent,
    StockMovement,
    Variant,
)
from .pricing import utc_now, validate_variant
from .results import Either, Maybe

logger = logging.getLogger(__name__)


class Catalog:
    """
    Каталог вариантов в памяти: поиск вариантов (для снимков позиций заказа)
    и складской учёт с журналом движений.
    """

    def __init__(
        self,
        parents: Iterable[ProductParent] = (),
        variants: Iterable[Variant] = (),
    ):
        self._parents: Dict[str, ProductParent] = {p.id: p for p in parents}
        self._variants: Dict[str, Variant] = {v.id: v for v in variants}
        self._movements: Tuple[StockMovement, ...] = ()
        self._lock = threading.Lock()

    # ============ Поиск ============

    def get_variant(self, variant_id: str) -> Maybe[Variant]:
        return Maybe.of(self._variants.get(variant_id))

    def get_parent(self, parent_id: str) -> Maybe[ProductParent]:
        return Maybe.of(self._parents.get(parent_id))

    def parent_of(self, variant: Variant) -> Optional[ProductParent]:
        return self._parents.get(variant.parent_id)

    def variants(self) -> Tuple[Variant, ...]:
        return tuple(self._variants.values())

    def parents(self) -> Tuple[ProductParent, ...]:
        return tuple(self._parents.values())

    def variants_of(self, parent_id: str) -> Tuple[Variant, ...]:
        return tuple(filter(lambda v: v.parent_id == parent_id, self._variants.values()))

    # ============ Изменение каталога ============

    def put_parent(self, parent: ProductParent) -> ProductParent:
        with self._lock:
            self._parents[parent.id] = parent
        return parent

    def put_variant(self, variant: Variant) -> Either[str, Variant]:
        """Сохраняет вариант, если тарифы и скидки корректны"""
        if variant.parent_id not in self._parents:
            return Either.left(f"Родительский товар {variant.parent_id} не найден")
        checked = validate_variant(variant)
        if checked.is_right:
            with self._lock:
                self._variants[variant.id] = variant
        return checked

    # ============ Склад ============

    def adjust_stock(
        self,
        variant_id: str,
        delta: int,
        reason: str,
        order_id: Optional[str] = None,
        now: Optional[datetime] = None,
    ) -> Either[str, StockMovement]:
        """
        Меняет остаток варианта на delta (отрицательное значение списывает).
        reason: тип движения: sale, cancellation, adjustment, return, restock.
        """
        if reason not in MOVEMENT_TYPES:
            return Either.left(f"Неизвестный тип движения: {reason}")
        if delta == 0:
            return Either.left("Количество движения не может быть нулевым")

        with self._lock:
            variant = self._variants.get(variant_id)
            if variant is None:
                return Either.left(f"Вариант {variant_id} не найден")

            movement = StockMovement(
                variant_id=variant_id,
                type=reason,
                quantity=delta,
                previous_stock=variant.stock,
                new_stock=variant.stock + delta,
                reason=_describe_movement(reason, delta, order_id),
                order_id=order_id,
                created_at=now if now is not None else utc_now(),
            )
            self._variants[variant_id] = replace(variant, stock=movement.new_stock)
            self._movements = self._movements + (movement,)

        logger.debug(
            "Stock %s: %s -> %s (%s)",
            variant_id,
            movement.previous_stock,
            movement.new_stock,
            reason,
        )
        return Either.right(movement)

    def movements(self, variant_id: Optional[str] = None) -> Tuple[StockMovement, ...]:
        if variant_id is None:
            return self._movements
        return tuple(m for m in self._movements if m.variant_id == variant_id)


_MOVEMENT_LABELS = {
    SALE: "Venta",
    CANCELLATION: "Cancelación",
    RETURN: "Devolución",
    RESTOCK: "Reposición",
}


def _describe_movement(reason: str, delta: int, order_id: Optional[str]) -> str:
    suffix = f" - Orden {order_id}" if order_id else ""
    if reason == ADJUSTMENT:
        kind = "Item agregado/aumentado" if delta < 0 else "Item eliminado/reducido"
        return f"Edición de orden{suffix} - {kind}"
    return f"{_MOVEMENT_LABELS[reason]}{suffix}"
