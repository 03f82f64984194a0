from functools import lru_cache

from redis import ConnectionPool, Redis
from remitdesk.settings import settings


@lru_cache(maxsize=1)
def _pool() -> ConnectionPool:
    return ConnectionPool.from_url(settings.REDIS_URL, decode_responses=True)


def get_redis() -> Redis:
    # Shared pool: webhooks and tool calls hit Redis on every request
    return Redis(connection_pool=_pool())
