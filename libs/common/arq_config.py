"""ARQ (Async Redis Queue) configuration helpers."""

from typing import Optional
from urllib.parse import urlparse

from arq.connections import RedisSettings
from libs.common.config import get_settings

STOREFRONT_QUEUE = "arq:storefront"


def get_redis_settings(url: Optional[str] = None) -> RedisSettings:
    """Parse a redis:// or rediss:// URL (default REDIS_URL) into ARQ RedisSettings."""
    parsed = urlparse(url or get_settings().REDIS_URL)

    return RedisSettings(
        host=parsed.hostname or "localhost",
        port=parsed.port or 6379,
        database=int(parsed.path.lstrip("/") or "0"),
        username=parsed.username or None,
        password=parsed.password,
        ssl=parsed.scheme == "rediss",
    )
