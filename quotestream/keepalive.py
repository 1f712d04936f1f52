"""Keep-alive responder: heartbeats go back to the server byte for byte."""

from __future__ import annotations

from typing import Awaitable, Callable

from quotestream.codec import is_heartbeat
from quotestream.errors import TransportError, raw_excerpt
from quotestream.types import MessageKind

WriteFn = Callable[[MessageKind, bytes], Awaitable[None]]


async def respond_if_heartbeat(raw: bytes, write: WriteFn) -> bool:
    """
    Echo raw unmodified if it is a heartbeat.

    Returns True when raw was a heartbeat and has been echoed. A failed
    echo raises TransportError with the heartbeat text in its details;
    the server drops clients that miss a heartbeat, so there is nothing
    to retry.
    """
    if not is_heartbeat(raw):
        return False
    try:
        await write(MessageKind.TEXT, raw)
    except TransportError as e:
        details = dict(e.details)
        details["raw"] = raw_excerpt(raw)
        raise TransportError(
            f"Failed to echo heartbeat: {e}",
            component="keepalive",
            details=details,
        ) from e
    return True
