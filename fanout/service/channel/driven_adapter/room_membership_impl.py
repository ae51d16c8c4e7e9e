"""
Room Membership Coordinator

A room is nothing but a Redis set of channel ids; there is no local cache and no
existence separate from non-emptiness. Broadcast resolves the set, then publishes
to every member concurrently.
"""

import asyncio
from typing import Awaitable, Callable

from redis.asyncio import Redis as AsyncRedis
from redis.exceptions import RedisError

from fanout.platform.exception.exceptions import BroadcastError, BrokerError
from fanout.platform.logging.loguru_io import Logger
from fanout.platform.message.message_codec import MessagePayload
from fanout.service.channel.driven_adapter.channel_helper.key_str_generator import (
    make_room_members_key,
)


Publish = Callable[[str, MessagePayload], Awaitable[int]]


class RoomMembershipImpl:
    def __init__(self, *, redis_client: AsyncRedis, publish: Publish) -> None:
        self._redis = redis_client
        self._publish = publish

    @Logger.io
    async def enter(self, *, room: str, channel: str) -> None:
        try:
            await self._redis.sadd(make_room_members_key(room=room), channel)
        except RedisError as e:
            raise BrokerError(f'Failed to add {channel!r} to room {room!r}: {e}') from e

    @Logger.io
    async def leave(self, *, room: str, channel: str) -> None:
        try:
            await self._redis.srem(make_room_members_key(room=room), channel)
        except RedisError as e:
            raise BrokerError(f'Failed to remove {channel!r} from room {room!r}: {e}') from e

    @Logger.io
    async def members(self, *, room: str) -> list[str]:
        try:
            members = await self._redis.smembers(make_room_members_key(room=room))
        except RedisError as e:
            raise BrokerError(f'Failed to read members of room {room!r}: {e}') from e
        return list(members)

    @Logger.io
    async def close(self, *, room: str) -> None:
        try:
            await self._redis.delete(make_room_members_key(room=room))
        except RedisError as e:
            raise BrokerError(f'Failed to close room {room!r}: {e}') from e

    @Logger.io
    async def broadcast(self, *, room: str, message: MessagePayload) -> dict[str, int]:
        """
        Publish one message to every member channel of a room.

        All member publishes run concurrently and are awaited until every one has
        settled. Nothing is rolled back: if any publish failed, BroadcastError is
        raised carrying the failed members and the ones already delivered.

        Returns:
            member channel -> receiver count reported by the broker
        """
        channels = await self.members(room=room)
        results = await asyncio.gather(
            *(self._publish(channel, message) for channel in channels),
            return_exceptions=True,
        )

        delivered: dict[str, int] = {}
        failed: dict[str, BaseException] = {}
        for channel, result in zip(channels, results, strict=True):
            if isinstance(result, BaseException):
                failed[channel] = result
            else:
                delivered[channel] = result

        if failed:
            raise BroadcastError(room=room, failed=failed, delivered=delivered)

        Logger.base.info(f'📡 [ROOM] Broadcast to {room}: members={len(delivered)}')
        return delivered
