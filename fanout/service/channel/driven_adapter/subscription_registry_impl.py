"""
Local Subscription Registry

In-process map of channel -> {listener_id -> listener} for one manager instance.

- First listener on a channel queues a broker SUBSCRIBE, last one leaving queues
  an UNSUBSCRIBE. Registration itself is synchronous and never raises on broker
  trouble.
- Broker commands go through one ordered stream, so the broker state converges
  on the registry state even when subscribe/unsubscribe calls interleave.
- The read loop owns the dedicated pub/sub connection and dispatches every
  inbound message to the local listeners of its channel.
"""

from enum import StrEnum
from inspect import isawaitable
from itertools import count
import math
from typing import Any, Awaitable, Optional

import anyio
from anyio.abc import TaskGroup
from redis.asyncio.client import PubSub
from redis.exceptions import RedisError

from fanout.platform.config.core_setting import settings
from fanout.platform.exception.exceptions import ManagerStateError
from fanout.platform.logging.loguru_io import Logger
from fanout.service.channel.domain.subscription import Listener, Subscription


class BrokerCommand(StrEnum):
    SUBSCRIBE = 'subscribe'
    UNSUBSCRIBE = 'unsubscribe'
    FLUSH = 'flush'


class SubscriptionRegistryImpl:
    def __init__(
        self,
        *,
        pubsub: PubSub,
        poll_timeout: Optional[float] = None,
        reconnect_delay: Optional[float] = None,
    ) -> None:
        self._pubsub = pubsub
        self._poll_timeout = poll_timeout or settings.PUBSUB_POLL_TIMEOUT
        self._reconnect_delay = reconnect_delay or settings.PUBSUB_RECONNECT_DELAY

        self._subscribers: dict[str, dict[int, Listener]] = {}
        self._listener_ids = count()
        self._broker_channels: set[str] = set()  # channels the broker currently has us on

        # Unbounded so subscribe()/unsubscribe() never block or fail on a slow broker
        self._command_send, self._command_receive = anyio.create_memory_object_stream[
            tuple[BrokerCommand, Any]
        ](max_buffer_size=math.inf)

        self._task_group: Optional[TaskGroup] = None
        # Events need a running loop, so this one is created by start()
        self._broker_ready: Optional[anyio.Event] = None
        self._pending_flushes: set[anyio.Event] = set()
        self._closed = False

    @property
    def subscribers(self) -> dict[str, dict[int, Listener]]:
        """Live registry view, keyed by channel then listener id"""
        return self._subscribers

    def channels(self) -> list[str]:
        return list(self._subscribers)

    def listener_count(self, *, channel: str) -> int:
        return len(self._subscribers.get(channel, ()))

    def has_listener(self, *, channel: str, listener_id: int) -> bool:
        return listener_id in self._subscribers.get(channel, ())

    def subscribe(self, *, channel: str, listener: Listener) -> Subscription:
        if self._closed:
            raise ManagerStateError('Cannot subscribe on a closed channel manager')

        listeners = self._subscribers.get(channel)
        if listeners is None:
            listeners = self._subscribers[channel] = {}
            self._command_send.send_nowait((BrokerCommand.SUBSCRIBE, channel))

        listener_id = next(self._listener_ids)
        listeners[listener_id] = listener
        Logger.base.debug(
            f'📡 [REGISTRY] Listener {listener_id} joined {channel} (total: {len(listeners)})'
        )
        return Subscription(channel=channel, listener_id=listener_id, registry=self)

    def unsubscribe(self, *, channel: str, listener_id: int) -> None:
        listeners = self._subscribers.get(channel)
        if listeners is None or listeners.pop(listener_id, None) is None:
            return

        Logger.base.debug(
            f'📡 [REGISTRY] Listener {listener_id} left {channel} (remaining: {len(listeners)})'
        )
        if listeners:
            return

        del self._subscribers[channel]
        if not self._closed:
            self._command_send.send_nowait((BrokerCommand.UNSUBSCRIBE, channel))

    def dispatch(self, *, channel: str, payload: Any) -> int:
        """
        Deliver one inbound message to every local listener of the channel.

        A channel with no entry (unsubscribed while the message was in flight, or
        removed out-of-band) is ignored. Each listener is isolated: a raising
        listener is logged and the remaining ones still run. Coroutine listeners
        are handed off to the task group instead of being awaited here.

        Returns:
            Number of listeners invoked
        """
        listeners = self._subscribers.get(channel)
        if not listeners:
            Logger.base.debug(f'📡 [REGISTRY] No listeners for {channel}, dropping message')
            return 0

        invoked = 0
        # Copy: a listener may unsubscribe itself (or a sibling) while we iterate
        for listener_id, listener in list(listeners.items()):
            if listener_id not in self._subscribers.get(channel, ()):
                continue
            try:
                result = listener(payload)
            except Exception:
                Logger.base.exception(f'❌ [REGISTRY] Listener {listener_id} on {channel} failed')
                continue
            invoked += 1
            if isawaitable(result):
                self._hand_off(channel=channel, listener_id=listener_id, awaitable=result)
        return invoked

    def _hand_off(self, *, channel: str, listener_id: int, awaitable: Awaitable[Any]) -> None:
        if self._task_group is None:
            Logger.base.error(
                f'❌ [REGISTRY] Async listener {listener_id} on {channel} dropped: registry not started'
            )
            if hasattr(awaitable, 'close'):
                awaitable.close()  # type: ignore[attr-defined]
            return
        self._task_group.start_soon(self._run_listener, channel, listener_id, awaitable)

    async def _run_listener(self, channel: str, listener_id: int, awaitable: Awaitable[Any]) -> None:
        try:
            await awaitable
        except Exception:
            Logger.base.exception(f'❌ [REGISTRY] Async listener {listener_id} on {channel} failed')

    async def start(self, *, task_group: TaskGroup) -> None:
        """Start the broker command loop and the read loop"""
        if self._task_group is not None or self._closed:
            raise ManagerStateError('Subscription registry already started')

        self._task_group = task_group
        self._broker_ready = broker_ready = anyio.Event()
        task_group.start_soon(self._command_loop)
        task_group.start_soon(self._read_loop, broker_ready)
        Logger.base.info('🔔 [REGISTRY] Started')

    async def flush(self) -> None:
        """Wait until every broker command queued so far has been sent"""
        if self._task_group is None or self._closed:
            raise ManagerStateError('Subscription registry is not running')

        done = anyio.Event()
        self._pending_flushes.add(done)
        try:
            self._command_send.send_nowait((BrokerCommand.FLUSH, done))
            await done.wait()
        finally:
            self._pending_flushes.discard(done)

        if self._closed:
            raise ManagerStateError('Subscription registry closed before flush completed')

    async def _command_loop(self) -> None:
        async for command, arg in self._command_receive:
            if command is BrokerCommand.FLUSH:
                arg.set()
            elif command is BrokerCommand.SUBSCRIBE:
                await self._broker_subscribe(channel=arg)
            else:
                await self._broker_unsubscribe(channel=arg)

    async def _broker_subscribe(self, *, channel: str) -> None:
        # Skip when the last listener already left, or the broker already has us on it
        if channel not in self._subscribers or channel in self._broker_channels:
            return
        try:
            await self._pubsub.subscribe(channel)
        except RedisError as e:
            dropped = self._subscribers.pop(channel, {})
            Logger.base.error(
                f'❌ [REGISTRY] Broker subscribe to {channel} failed, '
                f'dropping {len(dropped)} listener(s): {e}'
            )
            return

        self._broker_channels.add(channel)
        if self._broker_ready is not None:
            self._broker_ready.set()
        Logger.base.info(f'📡 [REGISTRY] Subscribed to channel: {channel}')

    async def _broker_unsubscribe(self, *, channel: str) -> None:
        # Skip when the channel was re-subscribed locally, or never reached the broker
        if channel in self._subscribers or channel not in self._broker_channels:
            return
        self._broker_channels.discard(channel)
        try:
            await self._pubsub.unsubscribe(channel)
        except RedisError as e:
            Logger.base.warning(f'⚠️ [REGISTRY] Broker unsubscribe from {channel} failed: {e}')
            return
        Logger.base.info(f'📡 [REGISTRY] Unsubscribed from channel: {channel}')

    async def _read_loop(self, broker_ready: anyio.Event) -> None:
        # The pub/sub connection only exists once the first SUBSCRIBE went through
        await broker_ready.wait()

        while True:
            try:
                message = await self._pubsub.get_message(
                    ignore_subscribe_messages=True, timeout=self._poll_timeout
                )
            except RedisError as e:
                Logger.base.warning(
                    f'⚠️ [REGISTRY] Read error: {e}, retrying in {self._reconnect_delay}s'
                )
                await anyio.sleep(self._reconnect_delay)
                continue

            if message is None:
                if not self._broker_channels:
                    await anyio.sleep(self._poll_timeout)
                continue
            if message['type'] == 'message':
                channel = message['channel']
                # Registry keys are str even when the connection returns raw bytes
                if isinstance(channel, bytes):
                    channel = channel.decode()
                self.dispatch(channel=channel, payload=message['data'])

    async def aclose(self) -> None:
        """Drop every listener and release the pub/sub connection"""
        if self._closed:
            return
        self._closed = True
        self._command_send.close()
        self._command_receive.close()
        for done in self._pending_flushes:
            done.set()
        self._subscribers.clear()
        self._broker_channels.clear()
        await self._pubsub.aclose()
        Logger.base.info('🔌 [REGISTRY] Closed')
