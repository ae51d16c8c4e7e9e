"""
Redis Channel Manager

Owns two Redis connections for its whole lifetime:
- subscriber connection: pub/sub session only (a connection in subscribe mode
  cannot run other commands)
- command connection: PUBLISH and the room set operations

Usage:
    async with ChannelManager(host='127.0.0.1', port=6379) as manager:
        subscription = manager.subscribe('me', print)
        await manager.enter('party-room', 'me')
        await manager.broadcast('party-room', 'hello')
        subscription.unsubscribe()

The manager runs its loops in an anyio task group, so enter and exit it from
the same task.
"""

from contextlib import AsyncExitStack
from typing import Optional

import anyio
from redis.asyncio import Redis as AsyncRedis
from redis.exceptions import RedisError

from fanout.platform.exception.exceptions import BrokerError, ManagerStateError
from fanout.platform.logging.loguru_io import Logger
from fanout.platform.message.message_codec import MessageCodec, MessagePayload
from fanout.platform.state.redis_client import create_redis_client
from fanout.service.channel.app.interface.i_channel_manager import IChannelManager
from fanout.service.channel.domain.subscription import Listener, Subscription
from fanout.service.channel.driven_adapter.room_membership_impl import RoomMembershipImpl
from fanout.service.channel.driven_adapter.subscription_registry_impl import (
    SubscriptionRegistryImpl,
)


class ChannelManager(IChannelManager):
    def __init__(
        self,
        *,
        host: Optional[str] = None,
        port: Optional[int] = None,
        password: Optional[str] = None,
        sub_client: Optional[AsyncRedis] = None,
        pub_client: Optional[AsyncRedis] = None,
    ) -> None:
        # Connection settings go to both connections unmodified
        self._sub_client = sub_client or create_redis_client(
            host=host, port=port, password=password, for_pubsub=True
        )
        self._pub_client = pub_client or create_redis_client(
            host=host, port=port, password=password
        )

        self._registry = SubscriptionRegistryImpl(pubsub=self._sub_client.pubsub())
        self._rooms = RoomMembershipImpl(redis_client=self._pub_client, publish=self.publish)

        self._exit_stack: Optional[AsyncExitStack] = None
        self._closed = False

    @property
    def registry(self) -> SubscriptionRegistryImpl:
        return self._registry

    async def start(self) -> 'ChannelManager':
        if self._exit_stack is not None or self._closed:
            raise ManagerStateError('Channel manager already started')

        async with AsyncExitStack() as stack:
            task_group = await stack.enter_async_context(anyio.create_task_group())
            # Loops never finish on their own, cancel them on the way out
            stack.callback(task_group.cancel_scope.cancel)
            await self._registry.start(task_group=task_group)
            self._exit_stack = stack.pop_all()

        Logger.base.info('✅ [CHANNELS] Channel manager started')
        return self

    async def aclose(self) -> None:
        """Stop the loops and release both connections (idempotent)"""
        if self._closed:
            return
        self._closed = True

        try:
            if self._exit_stack is not None:
                await self._exit_stack.aclose()
        finally:
            await self._registry.aclose()
            await self._sub_client.aclose()
            await self._pub_client.aclose()
        Logger.base.info('🔌 [CHANNELS] Channel manager closed')

    async def __aenter__(self) -> 'ChannelManager':
        return await self.start()

    async def __aexit__(self, *exc_info: object) -> None:
        await self.aclose()

    @Logger.io
    def subscribe(self, channel: str, listener: Listener) -> Subscription:
        return self._registry.subscribe(channel=channel, listener=listener)

    async def flush(self) -> None:
        """Wait until pending broker SUBSCRIBE/UNSUBSCRIBE commands have been sent"""
        await self._registry.flush()

    def _ensure_open(self, operation: str) -> None:
        # A closed redis-py client would silently reconnect
        if self._closed:
            raise ManagerStateError(f'Cannot {operation} on a closed channel manager')

    @Logger.io
    async def publish(self, channel: str, message: MessagePayload) -> int:
        self._ensure_open('publish')
        try:
            receivers = await self._pub_client.publish(
                channel, MessageCodec.encode_message(message=message)
            )
        except RedisError as e:
            raise BrokerError(f'Failed to publish to {channel!r}: {e}') from e

        Logger.base.debug(f'📡 [CHANNELS] Published to {channel}: receivers={receivers}')
        return receivers

    async def enter(self, room: str, channel: str) -> None:
        self._ensure_open('enter')
        await self._rooms.enter(room=room, channel=channel)

    async def leave(self, room: str, channel: str) -> None:
        self._ensure_open('leave')
        await self._rooms.leave(room=room, channel=channel)

    async def members(self, room: str) -> list[str]:
        self._ensure_open('list members')
        return await self._rooms.members(room=room)

    async def close(self, room: str) -> None:
        self._ensure_open('close a room')
        await self._rooms.close(room=room)

    async def broadcast(self, room: str, message: MessagePayload) -> dict[str, int]:
        self._ensure_open('broadcast')
        return await self._rooms.broadcast(room=room, message=message)
