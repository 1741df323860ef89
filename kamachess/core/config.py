"""
Configuration loaded from environment variables.

- Exposes a frozen Settings dataclass; build it with Settings.from_env() at startup and pass it down.
- Invalid numbers fall back to their defaults instead of failing the boot.
"""

import logging
import os
from dataclasses import dataclass
from typing import Any, Callable, Mapping, Optional

DEFAULT_DATABASE_URL = "sqlite:///kamachess.db"
DEFAULT_CACHE_DIR = "images_cache"
DEFAULT_CACHE_SIZE_MB = 100

_TRUTHY = {"1", "true", "yes", "on"}


def _get(
    env: Mapping[str, str],
    name: str,
    default: Any,
    cast: Optional[Callable[[str], Any]] = None,
) -> Any:
    raw = env.get(name)
    if raw is None or raw.strip() == "":
        return default
    if cast is None:
        return raw.strip()
    try:
        return cast(raw.strip())
    except ValueError:
        logging.getLogger(__name__).warning(
            "Ignoring invalid value %r for %s, using %r", raw, name, default
        )
        return default


def _as_bool(value: str) -> bool:
    return value.lower() in _TRUTHY


def _as_positive_int(value: str) -> int:
    number = int(value)
    if number <= 0:
        raise ValueError(f"{value!r} is not a positive integer")
    return number


@dataclass(frozen=True)
class Settings:
    database_url: str = DEFAULT_DATABASE_URL
    bot_username: str = ""

    # Board image cache
    image_cache_dir: str = DEFAULT_CACHE_DIR
    image_cache_size_mb: int = DEFAULT_CACHE_SIZE_MB

    # Delete older board messages of a game once a new one is posted
    no_trash: bool = False

    log_level: str = "INFO"

    @property
    def image_cache_budget_bytes(self) -> int:
        return self.image_cache_size_mb * 1024 * 1024

    @classmethod
    def from_env(cls, env: Optional[Mapping[str, str]] = None) -> "Settings":
        env = os.environ if env is None else env
        return cls(
            database_url=_get(env, "DATABASE_URL", DEFAULT_DATABASE_URL),
            bot_username=_get(env, "BOT_USERNAME", "").lstrip("@"),
            image_cache_dir=_get(env, "IMAGE_CACHE_DIR", DEFAULT_CACHE_DIR),
            image_cache_size_mb=_get(
                env, "IMAGE_CACHE_SIZE_MB", DEFAULT_CACHE_SIZE_MB, cast=_as_positive_int
            ),
            no_trash=_get(env, "NO_TRASH", False, cast=_as_bool),
            log_level=_get(env, "LOG_LEVEL", "INFO").upper(),
        )


def configure_logging(settings: Settings) -> None:
    logging.basicConfig(
        level=getattr(logging, settings.log_level, logging.INFO),
        format="%(asctime)s  %(levelname)-8s  %(name)s  %(message)s",
    )
