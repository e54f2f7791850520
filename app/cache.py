# app/cache.py
from typing import Optional, Protocol

import redis


class CacheError(Exception):
    """Raised when the cache backend cannot be reached or rejects a command."""


class Cache(Protocol):
    def get(self, key: str) -> Optional[str]:
        ...

    def set(self, key: str, value: str, ttl: int) -> None:
        ...

    def close(self) -> None:
        ...


class RedisCache:
    """
    Key/value cache with expiry on top of a redis-py client.

    The client keeps its own connection pool, so one instance is created at
    process start and shared by every request.
    """

    def __init__(self, client: redis.Redis):
        self.client = client

    @classmethod
    def from_url(cls, url: str) -> "RedisCache":
        return cls(redis.Redis.from_url(url, decode_responses=True, socket_timeout=2))

    def get(self, key: str) -> Optional[str]:
        try:
            return self.client.get(key)
        except redis.RedisError as e:
            raise CacheError(f"Cache read failed for '{key}': {e}") from e

    def set(self, key: str, value: str, ttl: int) -> None:
        try:
            self.client.setex(key, ttl, value)
        except redis.RedisError as e:
            raise CacheError(f"Cache write failed for '{key}': {e}") from e

    def close(self) -> None:
        self.client.close()
