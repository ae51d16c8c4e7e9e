"""Channel Manager Interface (Port)

Fan-out over a Redis broker: direct channels plus rooms (durable groups of channels).
"""

from abc import ABC, abstractmethod

from fanout.platform.message.message_codec import MessagePayload
from fanout.service.channel.domain.subscription import Listener, Subscription


class IChannelManager(ABC):
    """
    Interface consumed by the transport layer (SSE endpoints, workers, scripts)

    Channels:
    - subscribe(channel, listener) -> Subscription
    - publish(channel, message)

    Rooms (Redis set per room):
    - enter / leave / members / close
    - broadcast(room, message)
    """

    @abstractmethod
    def subscribe(self, channel: str, listener: Listener) -> Subscription:
        """
        Register a listener on a channel

        Args:
            channel: Channel id
            listener: Called with each message payload; may be a coroutine function

        Returns:
            Subscription handle, call unsubscribe() on it to remove the listener
        """

    @abstractmethod
    async def publish(self, channel: str, message: MessagePayload) -> int:
        """
        Publish a message to a channel

        Returns:
            Number of broker connections that received it
        """

    @abstractmethod
    async def enter(self, room: str, channel: str) -> None:
        """Add a channel to a room (no-op if already a member)"""

    @abstractmethod
    async def leave(self, room: str, channel: str) -> None:
        """Remove a channel from a room (no-op if not a member)"""

    @abstractmethod
    async def members(self, room: str) -> list[str]:
        """Current member channels of a room, empty for unknown rooms"""

    @abstractmethod
    async def close(self, room: str) -> None:
        """Remove every member of a room"""

    @abstractmethod
    async def broadcast(self, room: str, message: MessagePayload) -> dict[str, int]:
        """
        Publish a message to every member channel of a room

        Raises:
            BroadcastError: one or more member publishes failed
        """
