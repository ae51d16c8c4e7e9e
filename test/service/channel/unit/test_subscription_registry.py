"""
Unit tests for SubscriptionRegistryImpl

Covers listener bookkeeping, broker SUBSCRIBE/UNSUBSCRIBE translation and
dispatch isolation, against an in-memory pub/sub session.
"""

from collections.abc import AsyncIterator
from contextlib import asynccontextmanager
from unittest.mock import MagicMock

import anyio
from anyio import fail_after
import pytest

from fanout.platform.exception.exceptions import ManagerStateError
from fanout.service.channel.driven_adapter.subscription_registry_impl import (
    SubscriptionRegistryImpl,
)
from test.service.channel.in_memory_redis import InMemoryPubSub, InMemoryRedis


pytestmark = pytest.mark.unit


@asynccontextmanager
async def running(registry: SubscriptionRegistryImpl) -> AsyncIterator[None]:
    async with anyio.create_task_group() as tg:
        await registry.start(task_group=tg)
        yield
        tg.cancel_scope.cancel()


class TestSubscriptionRegistry:
    @pytest.fixture
    def pubsub(self) -> InMemoryPubSub:
        return InMemoryRedis().pubsub()

    @pytest.fixture
    def registry(self, pubsub: InMemoryPubSub) -> SubscriptionRegistryImpl:
        return SubscriptionRegistryImpl(pubsub=pubsub, poll_timeout=0.05)

    @pytest.mark.asyncio
    async def test_subscribe_registers_listener(self, registry):
        subscription = registry.subscribe(channel='me', listener=lambda message: None)

        assert 'me' in registry.subscribers
        assert 0 in registry.subscribers['me']
        assert subscription.channel == 'me'
        assert subscription.listener_id == 0
        assert subscription.active

    @pytest.mark.asyncio
    async def test_first_listener_subscribes_broker_once(self, registry, pubsub):
        registry.subscribe(channel='me', listener=lambda message: None)
        registry.subscribe(channel='me', listener=lambda message: None)

        async with running(registry):
            await registry.flush()

        assert pubsub.subscribe_calls == ['me']

    @pytest.mark.asyncio
    async def test_dispatch_invokes_listener_with_payload(self, registry):
        listener = MagicMock()
        registry.subscribe(channel='me', listener=listener)

        invoked = registry.dispatch(channel='me', payload='test 1')

        assert invoked == 1
        listener.assert_called_once_with('test 1')

    @pytest.mark.asyncio
    async def test_read_loop_delivers_broker_message(self, registry, pubsub):
        received: list[str] = []
        got_message = anyio.Event()

        def listener(message: str) -> None:
            received.append(message)
            got_message.set()

        async with running(registry):
            registry.subscribe(channel='me', listener=listener)
            await registry.flush()
            pubsub.deliver('me', 'test 1')

            with fail_after(1.0):
                await got_message.wait()

        assert received == ['test 1']

    @pytest.mark.asyncio
    async def test_unsubscribe_sole_listener_removes_channel(self, registry, pubsub):
        listener = MagicMock()

        async with running(registry):
            subscription = registry.subscribe(channel='me', listener=listener)
            await registry.flush()
            subscription.unsubscribe()
            await registry.flush()

        assert 'me' not in registry.subscribers
        assert not subscription.active
        assert pubsub.unsubscribe_calls == ['me']

        assert registry.dispatch(channel='me', payload='late') == 0
        listener.assert_not_called()

    @pytest.mark.asyncio
    async def test_unsubscribe_one_of_multiple(self, registry, pubsub):
        first = MagicMock()
        second = MagicMock()
        subscription = registry.subscribe(channel='me', listener=first)
        registry.subscribe(channel='me', listener=second)

        subscription.unsubscribe()

        assert 'me' in registry.subscribers
        assert registry.listener_count(channel='me') == 1
        registry.dispatch(channel='me', payload='still here')
        first.assert_not_called()
        second.assert_called_once_with('still here')

    @pytest.mark.asyncio
    async def test_unsubscribe_twice_is_safe(self, registry):
        subscription = registry.subscribe(channel='me', listener=lambda message: None)

        subscription.unsubscribe()
        subscription()  # handle is callable too

        assert 'me' not in registry.subscribers

    @pytest.mark.asyncio
    async def test_dispatch_after_out_of_band_removal(self, registry, pubsub):
        listener = MagicMock()

        async with running(registry):
            registry.subscribe(channel='me', listener=listener)
            await registry.flush()
            del registry.subscribers['me']

            pubsub.deliver('me', 'test 2')
            await anyio.sleep(0.1)

        listener.assert_not_called()

    @pytest.mark.asyncio
    async def test_unsubscribe_after_out_of_band_removal_is_noop(self, registry):
        subscription = registry.subscribe(channel='me', listener=lambda message: None)
        del registry.subscribers['me']

        subscription.unsubscribe()

        assert registry.channels() == []

    @pytest.mark.asyncio
    async def test_dispatch_unknown_channel_is_ignored(self, registry):
        assert registry.dispatch(channel='nobody', payload='hello') == 0

    @pytest.mark.asyncio
    async def test_failing_listener_does_not_block_siblings(self, registry):
        failing = MagicMock(side_effect=RuntimeError('listener exploded'))
        healthy = MagicMock()
        registry.subscribe(channel='me', listener=failing)
        registry.subscribe(channel='me', listener=healthy)

        invoked = registry.dispatch(channel='me', payload='hello')

        assert invoked == 1
        failing.assert_called_once_with('hello')
        healthy.assert_called_once_with('hello')
        assert registry.listener_count(channel='me') == 2

    @pytest.mark.asyncio
    async def test_async_listener_is_handed_off(self, registry):
        received: list[str] = []
        done = anyio.Event()

        async def slow_listener(message: str) -> None:
            await anyio.sleep(0.05)
            received.append(message)
            done.set()

        sync_listener = MagicMock()

        async with running(registry):
            registry.subscribe(channel='me', listener=slow_listener)
            registry.subscribe(channel='me', listener=sync_listener)

            registry.dispatch(channel='me', payload='hello')

            # dispatch returned before the coroutine listener ran
            assert received == []
            sync_listener.assert_called_once_with('hello')
            with fail_after(1.0):
                await done.wait()

        assert received == ['hello']

    @pytest.mark.asyncio
    async def test_failing_async_listener_is_contained(self, registry):
        async def failing_listener(message: str) -> None:
            raise RuntimeError('async listener exploded')

        healthy = MagicMock()

        async with running(registry):
            registry.subscribe(channel='me', listener=failing_listener)
            registry.subscribe(channel='me', listener=healthy)
            registry.dispatch(channel='me', payload='hello')
            await anyio.sleep(0.05)

        healthy.assert_called_once_with('hello')

    @pytest.mark.asyncio
    async def test_resubscribe_before_flush_keeps_broker_subscription(self, registry, pubsub):
        first = registry.subscribe(channel='me', listener=lambda message: None)
        first.unsubscribe()
        registry.subscribe(channel='me', listener=lambda message: None)

        async with running(registry):
            await registry.flush()

        assert pubsub.subscribe_calls == ['me']
        assert pubsub.unsubscribe_calls == []
        assert 'me' in pubsub.channels

    @pytest.mark.asyncio
    async def test_subscribe_then_unsubscribe_before_start_never_reaches_broker(
        self, registry, pubsub
    ):
        registry.subscribe(channel='me', listener=lambda message: None).unsubscribe()

        async with running(registry):
            await registry.flush()

        assert pubsub.subscribe_calls == []
        assert pubsub.unsubscribe_calls == []

    @pytest.mark.asyncio
    async def test_broker_subscribe_failure_drops_listeners(self, registry, pubsub):
        pubsub.fail_subscribe.add('me')

        async with running(registry):
            subscription = registry.subscribe(channel='me', listener=lambda message: None)
            await registry.flush()

        assert 'me' not in registry.subscribers
        assert not subscription.active
        subscription.unsubscribe()  # still a safe no-op

    @pytest.mark.asyncio
    async def test_listener_ids_are_monotonic_per_instance(self, registry):
        other = SubscriptionRegistryImpl(pubsub=InMemoryRedis().pubsub())

        ids = [
            registry.subscribe(channel=channel, listener=lambda message: None).listener_id
            for channel in ('a', 'b', 'a')
        ]
        other_id = other.subscribe(channel='a', listener=lambda message: None).listener_id

        assert ids == [0, 1, 2]
        assert other_id == 0

    @pytest.mark.asyncio
    async def test_flush_requires_running_registry(self, registry):
        with pytest.raises(ManagerStateError):
            await registry.flush()

    @pytest.mark.asyncio
    async def test_subscribe_after_close_raises(self, registry, pubsub):
        await registry.aclose()

        assert pubsub.closed
        with pytest.raises(ManagerStateError):
            registry.subscribe(channel='me', listener=lambda message: None)

    @pytest.mark.asyncio
    async def test_listener_removed_by_sibling_mid_dispatch_is_skipped(self, registry):
        calls: list[str] = []
        handles = {}

        def first(message: str) -> None:
            calls.append('first')
            handles['second'].unsubscribe()

        handles['first'] = registry.subscribe(channel='me', listener=first)
        handles['second'] = registry.subscribe(
            channel='me', listener=lambda message: calls.append('second')
        )

        invoked = registry.dispatch(channel='me', payload='hello')

        assert calls == ['first']
        assert invoked == 1
        assert registry.listener_count(channel='me') == 1

    @pytest.mark.asyncio
    async def test_listener_unsubscribing_itself_mid_dispatch(self, registry):
        calls: list[str] = []
        handles = {}

        def once(message: str) -> None:
            calls.append(message)
            handles['once'].unsubscribe()

        handles['once'] = registry.subscribe(channel='me', listener=once)
        registry.subscribe(channel='me', listener=lambda message: calls.append('other'))

        registry.dispatch(channel='me', payload='hello')
        registry.dispatch(channel='me', payload='again')

        assert calls == ['hello', 'other', 'other']
        assert not handles['once'].active

    @pytest.mark.asyncio
    async def test_read_loop_accepts_bytes_channel(self, registry, pubsub):
        received: list[bytes] = []
        got_message = anyio.Event()

        def listener(message: bytes) -> None:
            received.append(message)
            got_message.set()

        async with running(registry):
            registry.subscribe(channel='me', listener=listener)
            await registry.flush()
            pubsub.deliver(b'me', b'test 1')

            with fail_after(1.0):
                await got_message.wait()

        assert received == [b'test 1']

    @pytest.mark.asyncio
    async def test_aclose_releases_pending_flush(self, registry, pubsub):
        never = anyio.Event()

        async def stalled_subscribe(*channels: str) -> None:
            await never.wait()

        pubsub.subscribe = stalled_subscribe
        registry.subscribe(channel='me', listener=lambda message: None)
        outcome: list[str] = []

        async def wait_for_flush() -> None:
            with pytest.raises(ManagerStateError):
                await registry.flush()
            outcome.append('released')

        with fail_after(1.0):
            async with running(registry):
                async with anyio.create_task_group() as waiters:
                    waiters.start_soon(wait_for_flush)
                    await anyio.sleep(0.05)
                    await registry.aclose()

        assert outcome == ['released']
