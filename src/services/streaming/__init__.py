"""Init file for streaming services."""

from .switchable_stream import (
    StreamBusyError,
    StreamClosedError,
    StreamPair,
    SwitchableStream,
)


__all__ = [
    "StreamBusyError",
    "StreamClosedError",
    "StreamPair",
    "SwitchableStream",
]
