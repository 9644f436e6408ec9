# storefront/results.py
# Maybe / Either и типизированные ошибки заказов.
# Бизнес-ошибки возвращаются значениями (Either.left), а не исключениями.

from __future__ import annotations
from dataclasses import dataclass
from typing import Callable, Generic, Optional, TypeVar, Union

T = TypeVar("T")
U = TypeVar("U")
L = TypeVar("L")
R = TypeVar("R")


@dataclass(frozen=True)
class Maybe(Generic[T]):
    """Опциональное значение для поиска в каталоге и хранилище заказов"""

    value: Optional[T]

    @staticmethod
    def of(value: Optional[T]) -> "Maybe[T]":
        return Maybe(value)

    def is_some(self) -> bool:
        return self.value is not None

    def is_none(self) -> bool:
        return self.value is None

    def get_or_else(self, default: U) -> T | U:
        return self.value if self.is_some() else default

    def to_either(self, error: L) -> "Either[L, T]":
        """Nothing превращается в Left(error)"""
        return Either.right(self.value) if self.is_some() else Either.left(error)

    def __repr__(self) -> str:
        return f"Some({self.value})" if self.is_some() else "Nothing"


@dataclass(frozen=True)
class Either(Generic[L, R]):
    """
    Either<L, R>: Left: ошибка (OrderError или строка), Right: результат.
    """

    is_left: bool
    value: Union[L, R]

    @staticmethod
    def left(value: L) -> "Either[L, R]":
        return Either(True, value)

    @staticmethod
    def right(value: R) -> "Either[L, R]":
        return Either(False, value)

    @property
    def is_right(self) -> bool:
        return not self.is_left

    def map(self, fn: Callable[[R], U]) -> "Either[L, U]":
        return Either.right(fn(self.value)) if not self.is_left else self  # type: ignore[return-value]

    def bind(self, fn: Callable[[R], "Either[L, U]"]) -> "Either[L, U]":
        return fn(self.value) if not self.is_left else self  # type: ignore[return-value]

    def get_or_else(self, default: U) -> R | U:
        return self.value if not self.is_left else default  # type: ignore[return-value]

    def __repr__(self) -> str:
        return f"Left({self.value})" if self.is_left else f"Right({self.value})"


# ============ Ошибки заказов ============


@dataclass(frozen=True)
class OrderError:
    """Базовая ошибка операции над заказом"""

    message: str
    order_id: Optional[str] = None

    @property
    def code(self) -> str:
        return type(self).__name__


@dataclass(frozen=True)
class InvalidTransition(OrderError):
    """Смена статуса недопустима из текущего состояния"""

    current_status: Optional[str] = None
    requested_status: Optional[str] = None


@dataclass(frozen=True)
class InvalidOrderEdit(OrderError):
    """Редактирование вне окна редактирования или нарушение инварианта"""


@dataclass(frozen=True)
class NotFound(OrderError):
    """Заказ или вариант не найден"""

    variant_id: Optional[str] = None


@dataclass(frozen=True)
class ConcurrentModification(OrderError):
    """Ревизия заказа не совпала с ожидаемой"""

    expected_revision: Optional[int] = None
    actual_revision: Optional[int] = None
