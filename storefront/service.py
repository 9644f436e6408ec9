import logging
import threading
from datetime import datetime
from typing import Callable, Dict, Iterable, Optional, Tuple

from . import lifecycle
from .catalog import Catalog
from .config import Settings
from .domain import FUNCIONARIO, Customer, Order
from .lifecycle import Line, Transition
from .pricing import utc_now
from .results import (
    ConcurrentModification,
    Either,
    Maybe,
    NotFound,
    OrderError,
)

logger = logging.getLogger(__name__)


class OrderService:
    """
    Фасад над чистыми переходами lifecycle: хранение заказов, склад,
    не больше одной мутации заказа одновременно.
    """

    def __init__(
        self,
        catalog: Catalog,
        orders: Iterable[Order] = (),
        settings: Optional[Settings] = None,
    ):
        self.catalog = catalog
        self.settings = settings or Settings()
        self._orders: Dict[str, Order] = {o.id: o for o in orders}
        self._locks: Dict[str, threading.Lock] = {}
        self._registry_lock = threading.Lock()

    # ============ Чтение ============

    def get_order(self, order_id: str) -> Maybe[Order]:
        return Maybe.of(self._orders.get(order_id))

    def find_by_number(self, order_number: str) -> Maybe[Order]:
        return Maybe.of(
            next((o for o in self._orders.values() if o.order_number == order_number), None)
        )

    def orders(self) -> Tuple[Order, ...]:
        return tuple(sorted(self._orders.values(), key=lambda o: o.created_at))

    def orders_by_status(self, status: str) -> Tuple[Order, ...]:
        return tuple(filter(lambda o: o.status == status, self.orders()))

    # ============ Создание ============

    def place_order(
        self,
        lines: Iterable[Line],
        customer: Customer,
        customer_notes: Optional[str] = None,
        now: Optional[datetime] = None,
    ) -> Either[OrderError, Order]:
        moment = now if now is not None else utc_now()
        with self._registry_lock:
            number = lifecycle.next_order_number(
                self.settings.order_prefix,
                moment,
                (o.order_number for o in self._orders.values()),
            )
            result = lifecycle.place_order(
                lines, customer, self.catalog, number, moment, customer_notes
            )
            if result.is_right:
                self._commit(result.value, moment)
                logger.info("Order %s placed", number)
            else:
                logger.warning("Order rejected: %s", result.value.message)
        return result.map(lambda t: t.order)

    # ============ Мутации ============

    def confirm_order(
        self,
        order_id: str,
        shipping_cost: int,
        admin_notes: Optional[str] = None,
        expected_revision: Optional[int] = None,
        now: Optional[datetime] = None,
    ) -> Either[OrderError, Order]:
        return self._mutate(
            order_id,
            expected_revision,
            now,
            lambda order, moment: lifecycle.confirm(order, shipping_cost, admin_notes, moment),
        )

    def advance_order_status(
        self,
        order_id: str,
        new_status: str,
        admin_notes: Optional[str] = None,
        expected_revision: Optional[int] = None,
        now: Optional[datetime] = None,
    ) -> Either[OrderError, Order]:
        return self._mutate(
            order_id,
            expected_revision,
            now,
            lambda order, moment: lifecycle.advance_status(
                order, new_status, admin_notes, moment, self.settings.allow_status_skips
            ),
        )

    def cancel_order(
        self,
        order_id: str,
        reason: Optional[str] = None,
        actor: str = FUNCIONARIO,
        expected_revision: Optional[int] = None,
        now: Optional[datetime] = None,
    ) -> Either[OrderError, Order]:
        return self._mutate(
            order_id,
            expected_revision,
            now,
            lambda order, moment: lifecycle.cancel(order, reason, actor, moment),
        )

    def edit_order_items(
        self,
        order_id: str,
        lines: Iterable[Line],
        admin_notes: Optional[str] = None,
        expected_revision: Optional[int] = None,
        now: Optional[datetime] = None,
    ) -> Either[OrderError, Order]:
        requested = tuple(lines)
        return self._mutate(
            order_id,
            expected_revision,
            now,
            lambda order, moment: lifecycle.edit_items(
                order, requested, self.catalog, admin_notes, moment
            ),
        )

    def update_shipping_cost(
        self,
        order_id: str,
        shipping_cost: int,
        expected_revision: Optional[int] = None,
        now: Optional[datetime] = None,
    ) -> Either[OrderError, Order]:
        return self._mutate(
            order_id,
            expected_revision,
            now,
            lambda order, moment: lifecycle.update_shipping_cost(order, shipping_cost, moment),
        )

    # ============ Внутреннее ============

    def _lock_for(self, order_id: str) -> threading.Lock:
        with self._registry_lock:
            return self._locks.setdefault(order_id, threading.Lock())

    def _mutate(
        self,
        order_id: str,
        expected_revision: Optional[int],
        now: Optional[datetime],
        step: Callable[[Order, datetime], Either[OrderError, Transition]],
    ) -> Either[OrderError, Order]:
        """Проверка ревизии и применение перехода под блокировкой заказа"""
        with self._lock_for(order_id):
            current = self._orders.get(order_id)
            if current is None:
                return Either.left(NotFound(f"Заказ {order_id} не найден", order_id))

            if expected_revision is not None and expected_revision != current.revision:
                logger.warning(
                    "Order %s: revision %s expected, found %s",
                    current.order_number,
                    expected_revision,
                    current.revision,
                )
                return Either.left(
                    ConcurrentModification(
                        "Заказ был изменён другим пользователем",
                        order_id,
                        expected_revision=expected_revision,
                        actual_revision=current.revision,
                    )
                )

            moment = now if now is not None else utc_now()
            result = step(current, moment)
            if result.is_left:
                logger.warning(
                    "Order %s: %s rejected: %s",
                    current.order_number,
                    result.value.code,
                    result.value.message,
                )
                return result

            self._commit(result.value, moment)
            updated = result.value.order
            logger.info(
                "Order %s: %s -> %s (rev %s, total %s)",
                updated.order_number,
                current.status,
                updated.status,
                updated.revision,
                updated.total,
            )
            return Either.right(updated)

    def _commit(self, transition: Transition, now: datetime) -> None:
        order = transition.order
        for change in transition.stock_changes:
            applied = self.catalog.adjust_stock(
                change.variant_id, change.delta, change.reason, order.id, now
            )
            if applied.is_left:
                # вариант мог быть удалён из каталога после оформления заказа
                logger.error("Stock change skipped for order %s: %s", order.order_number, applied.value)
        self._orders[order.id] = order
