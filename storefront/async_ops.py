import asyncio
from dataclasses import dataclass, field
from datetime import datetime
from typing import Dict, Iterable, List, Optional, Tuple

from .domain import FUNCIONARIO, Order
from .lifecycle import Line
from .results import Either, InvalidTransition, OrderError
from .service import OrderService


class AsyncOrderDesk:
    """
    Асинхронная обёртка над OrderService для UI сотрудников.
    Мутации одного заказа выполняются строго по очереди (asyncio.Lock на заказ).
    """

    def __init__(self, service: OrderService):
        self.service = service
        self._locks: Dict[str, asyncio.Lock] = {}

    def _lock_for(self, order_id: str) -> asyncio.Lock:
        return self._locks.setdefault(order_id, asyncio.Lock())

    async def _run(self, order_id: str, call) -> Either[OrderError, Order]:
        async with self._lock_for(order_id):
            # отдаём управление, чтобы конкурирующие запросы успели встать в очередь
            await asyncio.sleep(0)
            return call()

    async def confirm_order(
        self,
        order_id: str,
        shipping_cost: int,
        admin_notes: Optional[str] = None,
        expected_revision: Optional[int] = None,
        now: Optional[datetime] = None,
    ) -> Either[OrderError, Order]:
        return await self._run(
            order_id,
            lambda: self.service.confirm_order(
                order_id, shipping_cost, admin_notes, expected_revision, now
            ),
        )

    async def advance_order_status(
        self,
        order_id: str,
        new_status: str,
        admin_notes: Optional[str] = None,
        expected_revision: Optional[int] = None,
        now: Optional[datetime] = None,
    ) -> Either[OrderError, Order]:
        return await self._run(
            order_id,
            lambda: self.service.advance_order_status(
                order_id, new_status, admin_notes, expected_revision, now
            ),
        )

    async def cancel_order(
        self,
        order_id: str,
        reason: Optional[str] = None,
        actor: str = FUNCIONARIO,
        expected_revision: Optional[int] = None,
        now: Optional[datetime] = None,
    ) -> Either[OrderError, Order]:
        return await self._run(
            order_id,
            lambda: self.service.cancel_order(order_id, reason, actor, expected_revision, now),
        )

    async def edit_order_items(
        self,
        order_id: str,
        lines: Iterable[Line],
        admin_notes: Optional[str] = None,
        expected_revision: Optional[int] = None,
        now: Optional[datetime] = None,
    ) -> Either[OrderError, Order]:
        requested = tuple(lines)
        return await self._run(
            order_id,
            lambda: self.service.edit_order_items(
                order_id, requested, admin_notes, expected_revision, now
            ),
        )

    async def update_shipping_cost(
        self,
        order_id: str,
        shipping_cost: int,
        expected_revision: Optional[int] = None,
        now: Optional[datetime] = None,
    ) -> Either[OrderError, Order]:
        return await self._run(
            order_id,
            lambda: self.service.update_shipping_cost(
                order_id, shipping_cost, expected_revision, now
            ),
        )


# ============ Пакетные мутации ============

MUTATIONS = frozenset(
    {
        "confirm_order",
        "advance_order_status",
        "cancel_order",
        "edit_order_items",
        "update_shipping_cost",
    }
)


@dataclass(frozen=True)
class Mutation:
    """Запрос от UI: имя операции AsyncOrderDesk и её аргументы"""

    operation: str
    order_id: str
    kwargs: Dict = field(default_factory=dict)


async def apply_mutations(
    desk: AsyncOrderDesk, mutations: Iterable[Mutation]
) -> List[Either[OrderError, Order]]:
    """
    Запускает все мутации параллельно.
    Для одного заказа они всё равно выполняются по одной, в порядке прихода.
    """

    async def unknown(m: Mutation) -> Either[OrderError, Order]:
        return Either.left(
            InvalidTransition(f"Неизвестная операция: {m.operation}", m.order_id)
        )

    tasks = [
        getattr(desk, m.operation)(m.order_id, **m.kwargs)
        if m.operation in MUTATIONS
        else unknown(m)
        for m in mutations
    ]
    return list(await asyncio.gather(*tasks))


def summarize(results: Iterable[Either[OrderError, Order]]) -> Dict[str, int]:
    """Сколько мутаций прошло и сколько отклонено по типам ошибок"""

    def count(acc: Dict[str, int], result: Either[OrderError, Order]) -> Dict[str, int]:
        key = result.value.code if result.is_left else "applied"
        return {**acc, key: acc.get(key, 0) + 1}

    summary: Dict[str, int] = {}
    for result in results:
        summary = count(summary, result)
    return summary


# ============ Синхронные обёртки ============


def run_mutations(
    service: OrderService, mutations: Iterable[Mutation]
) -> Tuple[List[Either[OrderError, Order]], Dict[str, int]]:
    """Синхронная обёртка для использования в UI"""
    results = asyncio.run(apply_mutations(AsyncOrderDesk(service), tuple(mutations)))
    return results, summarize(results)
