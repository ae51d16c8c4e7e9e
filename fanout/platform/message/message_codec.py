from typing import Any, Mapping, Sequence, Union

import orjson


MessagePayload = Union[str, bytes, Mapping[str, Any], Sequence[Any]]


class MessageCodec:
    """Turns outbound payloads into something Redis PUBLISH accepts

    Strings and bytes pass through untouched; mappings and sequences are
    JSON-encoded with orjson. Inbound payloads are never decoded here, listeners
    receive exactly what the broker delivered.
    """

    @staticmethod
    def encode_message(*, message: MessagePayload) -> Union[str, bytes]:
        if isinstance(message, str | bytes):
            return message
        try:
            return orjson.dumps(message)
        except TypeError as e:
            raise ValueError(f'Failed to encode message: {e}') from e
