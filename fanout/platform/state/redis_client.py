from typing import Optional

from redis.asyncio import ConnectionPool as AsyncConnectionPool, Redis as AsyncRedis

from fanout.platform.config.core_setting import settings
from fanout.platform.logging.loguru_io import Logger


def create_redis_client(
    *,
    host: Optional[str] = None,
    port: Optional[int] = None,
    password: Optional[str] = None,
    for_pubsub: bool = False,
) -> AsyncRedis:
    """
    Build an async Redis client with its own connection pool.

    Args:
        host: Broker host, falls back to settings.REDIS_HOST
        port: Broker port, falls back to settings.REDIS_PORT
        password: Optional credential, falls back to settings.REDIS_PASSWORD
        for_pubsub: Dedicated subscriber connection with no read timeout,
            a connection in subscribe mode can sit idle indefinitely

    The client connects lazily on its first command.
    """
    host = host if host is not None else settings.REDIS_HOST
    port = port if port is not None else settings.REDIS_PORT
    password = password if password is not None else settings.REDIS_PASSWORD

    pool = AsyncConnectionPool(
        host=host,
        port=port,
        db=settings.REDIS_DB,
        password=password or None,
        decode_responses=settings.REDIS_DECODE_RESPONSES,
        socket_timeout=None if for_pubsub else settings.REDIS_SOCKET_TIMEOUT,
        socket_connect_timeout=settings.REDIS_SOCKET_CONNECT_TIMEOUT,
        socket_keepalive=settings.REDIS_SOCKET_KEEPALIVE,
        # Only the read loop may read from a subscriber connection, so no health-check PINGs
        health_check_interval=0 if for_pubsub else settings.REDIS_HEALTH_CHECK_INTERVAL,
    )
    client = AsyncRedis.from_pool(pool)
    Logger.base.debug(
        f'🔌 [REDIS] Client created for {host}:{port} ({"pubsub" if for_pubsub else "command"})'
    )
    return client
