#!/usr/bin/env python
"""
Room Monitor

Subscribes to every member channel of a room and prints what arrives.

Usage:
    python script/room_monitor.py <room>
"""

import asyncio
import sys

import anyio

from fanout.service.channel.driven_adapter.channel_manager_impl import ChannelManager


class RoomMonitor:
    def __init__(self, room: str) -> None:
        self.room = room
        self.received = 0

    def make_listener(self, channel: str):
        def listener(message: str) -> None:
            self.received += 1
            print(f'📦 #{self.received} [{channel}] {message}')

        return listener

    async def run(self) -> None:
        async with ChannelManager() as manager:
            members = await manager.members(self.room)
            if not members:
                print(f'⚠️  Room {self.room!r} has no members')
                return

            subscriptions = [
                manager.subscribe(channel, self.make_listener(channel)) for channel in members
            ]
            await manager.flush()
            print(f'📡 Watching {len(members)} channel(s) of {self.room!r} (Ctrl+C to stop)')

            try:
                await anyio.sleep_forever()
            finally:
                for subscription in subscriptions:
                    subscription.unsubscribe()
                print(f'✅ Monitor stopped after {self.received} message(s)')


async def main() -> None:
    if len(sys.argv) < 2:
        print('Usage: python script/room_monitor.py <room>')
        print('Example: python script/room_monitor.py party-room')
        sys.exit(1)

    await RoomMonitor(sys.argv[1]).run()


if __name__ == '__main__':
    try:
        asyncio.run(main())
    except KeyboardInterrupt:
        pass
