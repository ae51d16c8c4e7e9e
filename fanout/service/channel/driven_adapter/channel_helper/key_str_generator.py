"""
Key String Generator

Helper functions for generating Redis keys used by room membership.
"""

from fanout.platform.config.core_setting import settings


def _make_key(key: str) -> str:
    """Add prefix to key for test isolation in parallel testing"""
    return f'{settings.REDIS_KEY_PREFIX}{key}'


def make_room_members_key(*, room: str) -> str:
    """Generate the set key holding a room's member channels"""
    return _make_key(f'room:{room}:channels')
