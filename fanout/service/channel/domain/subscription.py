"""
Subscription handle returned by ChannelManager.subscribe().
"""

from typing import TYPE_CHECKING, Any, Awaitable, Callable, Union

import attrs


if TYPE_CHECKING:
    from fanout.service.channel.driven_adapter.subscription_registry_impl import (
        SubscriptionRegistryImpl,
    )


# Sync listeners run inline in the read loop; coroutine listeners are handed off as tasks
Listener = Callable[[Any], Union[None, Awaitable[None]]]


@attrs.define(frozen=True)
class Subscription:
    """
    Capability that removes exactly one listener from one channel.

    Holds (channel, listener_id) and the owning registry. unsubscribe() is
    idempotent: calling it twice, or after the channel entry was dropped by
    other means, does nothing.
    """

    channel: str
    listener_id: int
    _registry: 'SubscriptionRegistryImpl' = attrs.field(repr=False, eq=False)

    @property
    def active(self) -> bool:
        return self._registry.has_listener(channel=self.channel, listener_id=self.listener_id)

    def unsubscribe(self) -> None:
        self._registry.unsubscribe(channel=self.channel, listener_id=self.listener_id)

    def __call__(self) -> None:
        self.unsubscribe()
