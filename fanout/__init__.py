from fanout.platform.exception.exceptions import BroadcastError, BrokerError, ManagerStateError
from fanout.service.channel.domain.subscription import Subscription
from fanout.service.channel.driven_adapter.channel_manager_impl import ChannelManager


__all__ = [
    'BroadcastError',
    'BrokerError',
    'ChannelManager',
    'ManagerStateError',
    'Subscription',
]
