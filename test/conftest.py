"""
Test Configuration and Fixtures

- Environment setup (key prefix, log dir) happens before any fanout import,
  settings are read at import time
- Unit tests (marker ``unit``) run against in-memory doubles
- Integration tests (marker ``integration``) need a reachable Redis and are
  skipped when there is none
"""

import os
from pathlib import Path


def _early_setup_test_environment() -> None:
    """Set test environment variables before any module imports."""
    worker_id = os.environ.get('PYTEST_XDIST_WORKER', 'master')
    if worker_id == 'master':
        os.environ['REDIS_KEY_PREFIX'] = 'test_'
    else:
        os.environ['REDIS_KEY_PREFIX'] = f'test_{worker_id}_'

    test_log_dir = Path(__file__).parent / 'test_log'
    test_log_dir.mkdir(exist_ok=True)
    os.environ['TEST_LOG_DIR'] = str(test_log_dir)

    # Keep read loops snappy in tests
    os.environ.setdefault('PUBSUB_POLL_TIMEOUT', '0.05')
    os.environ.setdefault('PUBSUB_RECONNECT_DELAY', '0.05')


# Call immediately to set env vars before any imports
_early_setup_test_environment()

from collections.abc import Generator  # noqa: E402

import pytest  # noqa: E402
from redis import Redis as SyncRedis  # noqa: E402
from redis.exceptions import ConnectionError as RedisConnectionError  # noqa: E402

from fanout.service.channel.driven_adapter.channel_helper.key_str_generator import (  # noqa: E402
    make_room_members_key,
)
from test.redis_test_client import redis_test_client  # noqa: E402
from test.service.channel.in_memory_redis import InMemoryRedis  # noqa: E402


PARTY_ROOM = 'party-room'


@pytest.fixture
def in_memory_redis() -> InMemoryRedis:
    return InMemoryRedis()


@pytest.fixture
def redis_client() -> Generator[SyncRedis, None, None]:
    """Sync Redis client for setup/cleanup and for publishing from 'outside'"""
    client = redis_test_client.connect()
    try:
        client.ping()
    except RedisConnectionError:
        redis_test_client.disconnect()
        pytest.skip('Redis server not reachable')

    room_key = make_room_members_key(room=PARTY_ROOM)
    client.delete(room_key)
    yield client
    client.delete(room_key)
    redis_test_client.disconnect()
