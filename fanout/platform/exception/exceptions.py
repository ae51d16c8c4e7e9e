class CustomBaseError(Exception):
    """Base class for all custom exceptions - controls logging behavior in @Logger.io"""

    def __init__(self, message: str, status_code: int) -> None:
        self.message = message
        self.status_code = status_code
        super().__init__(message)


class BrokerError(CustomBaseError):
    """A Redis command issued on behalf of a caller failed"""

    def __init__(self, message: str, status_code: int = 503) -> None:
        super().__init__(message, status_code)


class BroadcastError(BrokerError):
    """
    One or more member publishes of a room broadcast failed.

    Publishes that already went out are not rolled back; ``delivered`` lists them
    with the receiver count the broker reported.
    """

    def __init__(
        self,
        *,
        room: str,
        failed: dict[str, BaseException],
        delivered: dict[str, int],
    ) -> None:
        self.room = room
        self.failed = failed
        self.delivered = delivered
        super().__init__(
            f'Broadcast to room {room!r} failed for {len(failed)} of '
            f'{len(failed) + len(delivered)} members: {sorted(failed)}',
            502,
        )


class ManagerStateError(CustomBaseError):
    def __init__(self, message: str) -> None:
        super().__init__(message, 409)
