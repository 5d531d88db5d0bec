"""Valkey (Redis-compatible) client for the security alert queue."""

import json

import redis.asyncio as redis

from sessionvault.config import get_settings

settings = get_settings()

# Global connection pool
_pool: redis.ConnectionPool | None = None


async def get_valkey() -> redis.Redis:
    """Get Valkey client with connection pooling."""
    global _pool
    if _pool is None:
        _pool = redis.ConnectionPool.from_url(
            settings.VALKEY_URL,
            decode_responses=True,
        )
    return redis.Redis(connection_pool=_pool)


async def close_valkey():
    """Close Valkey connection pool."""
    global _pool
    if _pool is not None:
        await _pool.disconnect()
        _pool = None


class SecurityAlertQueue:
    """FIFO list of security alerts consumed by the monitoring pipeline."""

    KEY = settings.SECURITY_ALERT_QUEUE

    @classmethod
    async def push(cls, alert: dict) -> int:
        """Append an alert; returns the queue length."""
        client = await get_valkey()
        return await client.rpush(cls.KEY, json.dumps(alert))
