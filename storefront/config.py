"""
Настройки магазина из переменных окружения.
.env подхватывается python-dotenv, если файл есть в рабочей директории.
"""

import logging
import os
from dataclasses import dataclass
from pathlib import Path
from typing import Optional

from dotenv import load_dotenv

logger = logging.getLogger(__name__)

LOG_FORMAT = "%(asctime)s %(levelname)s %(name)s: %(message)s"


class ConfigurationError(Exception):
    """Некорректная или отсутствующая настройка"""


def load_environment(path: str = ".env") -> bool:
    """Безопасно вызывать несколько раз"""
    env_path = Path(path)
    if env_path.exists():
        load_dotenv(env_path)
        logger.info("Loaded environment from %s", env_path)
        return True
    return False


def _get_env(key: str, default: Optional[str] = None) -> Optional[str]:
    value = os.getenv(key, default)
    return value.strip() if value else default


def _get_bool_env(key: str, default: bool = False) -> bool:
    value = _get_env(key)
    if value is None:
        return default
    lowered = value.lower()
    if lowered in ("true", "1", "yes", "on"):
        return True
    if lowered in ("false", "0", "no", "off"):
        return False
    raise ConfigurationError(f"{key} должен быть булевым, получено {value!r}")


@dataclass(frozen=True)
class Settings:
    order_prefix: str = "QUE"
    allow_status_skips: bool = False
    seed_path: str = "data/seed.json"
    log_level: str = "INFO"
    currency_symbol: str = "$"


def get_settings() -> Settings:
    load_environment()
    settings = Settings(
        order_prefix=_get_env("STORE_ORDER_PREFIX", "QUE").upper(),
        allow_status_skips=_get_bool_env("STORE_ALLOW_STATUS_SKIPS", False),
        seed_path=_get_env("STORE_SEED_PATH", "data/seed.json"),
        log_level=_get_env("STORE_LOG_LEVEL", "INFO").upper(),
        currency_symbol=_get_env("STORE_CURRENCY_SYMBOL", "$"),
    )
    if not settings.order_prefix.isalnum():
        raise ConfigurationError(
            f"STORE_ORDER_PREFIX должен быть буквенно-цифровым: {settings.order_prefix!r}"
        )
    if settings.log_level not in logging.getLevelNamesMapping():
        raise ConfigurationError(f"Неизвестный уровень логов: {settings.log_level}")
    return settings


def configure_logging(level: str = "INFO") -> None:
    logging.basicConfig(level=level, format=LOG_FORMAT)
