"""Key-value store for user display data and the latest client secret.

Values are opaque strings. The Redis-backed store namespaces every key with a
configurable prefix so several apps can share one database.
"""

from enum import Enum
import logging
from typing import Optional, Protocol

import redis.asyncio as redis

logger = logging.getLogger(__name__)


class StoreKey(str, Enum):
    user_name = "userName"
    user_email = "userEmail"
    client_secret = "clientSecret"
    authorization_code = "authorizationCode"


class KeyValueStore(Protocol):
    async def get(self, key: StoreKey) -> Optional[str]:
        ...

    async def set(self, key: StoreKey, value: str) -> None:
        ...

    async def delete(self, key: StoreKey) -> None:
        ...


def normalize_redis_string(value) -> Optional[str]:
    """
    Normalize Redis value to string, handling bytes conversion.
    """
    if value is None:
        return None
    if isinstance(value, bytes):
        return value.decode()
    return str(value)


class RedisKeyValueStore:
    """KeyValueStore backed by a Redis client."""

    def __init__(self, redis_client: redis.Redis, prefix: str = "siwa") -> None:
        self.redis_client = redis_client
        self.prefix = prefix

    def _key(self, key: StoreKey) -> str:
        return f"{self.prefix}:{key.value}"

    async def get(self, key: StoreKey) -> Optional[str]:
        return normalize_redis_string(await self.redis_client.get(self._key(key)))

    async def set(self, key: StoreKey, value: str) -> None:
        await self.redis_client.set(self._key(key), value)

    async def delete(self, key: StoreKey) -> None:
        await self.redis_client.delete(self._key(key))
