"""
Session handshake.

After the websocket opens the server sends one hello frame carrying its
own "session_id". The client then generates a quote session id and sends,
strictly in this order:

    set_auth_token        [<token>]
    quote_create_session  [<session id>]
    quote_set_fields      [<session id>, "lp", "volume", "bid", "ask"]
"""

from __future__ import annotations

import logging
import random
import string
from typing import Any, Awaitable, Callable, Optional

import orjson

from quotestream.codec import split_frames
from quotestream.errors import FramingError, HandshakeError, TransportError
from quotestream.transport import Transport
from quotestream.types import Envelope, MessageKind, SessionInfo

logger = logging.getLogger(__name__)

SESSION_PREFIX = "qs_"
SESSION_ID_LENGTH = 12
SESSION_ID_ALPHABET = string.ascii_letters + string.digits

# Server-side short names: price, volume, bid, ask
QUOTE_FIELDS: tuple[str, ...] = ("lp", "volume", "bid", "ask")

SendFn = Callable[[str, Any], Awaitable[None]]


def generate_session_id(rng: Optional[random.Random] = None) -> str:
    """Return "qs_" followed by 12 random alphanumerics."""
    source = rng if rng is not None else random
    return SESSION_PREFIX + "".join(source.choices(SESSION_ID_ALPHABET, k=SESSION_ID_LENGTH))


def setup_commands(session_id: str, auth_token: str) -> list[Envelope]:
    return [
        Envelope("set_auth_token", [auth_token]),
        Envelope("quote_create_session", [session_id]),
        Envelope("quote_set_fields", [session_id, *QUOTE_FIELDS]),
    ]


def parse_hello(raw: bytes) -> dict[str, Any]:
    """
    Decode the server hello and check it carries a session context.

    Raises:
        HandshakeError: If the message is not a framed JSON object with a
            non-null "session_id".
    """
    try:
        payloads = split_frames(raw)
    except FramingError as e:
        raise HandshakeError(f"Cannot frame first message: {e}", step="decode") from e

    if not payloads:
        raise HandshakeError("First message is empty", step="decode")

    try:
        hello = orjson.loads(payloads[0])
    except orjson.JSONDecodeError as e:
        raise HandshakeError(f"Cannot decode first message: {e}", step="decode") from e

    if not isinstance(hello, dict) or hello.get("session_id") is None:
        raise HandshakeError(
            "Cannot recognize the first received message after establishing the connection",
            step="session_id",
            details={"message": raw.decode("utf-8", errors="replace")},
        )

    return hello


async def perform_handshake(
    transport: Transport,
    send: SendFn,
    *,
    auth_token: str,
    rng: Optional[random.Random] = None,
) -> SessionInfo:
    """
    Run the handshake over an already opened transport.

    Args:
        transport: Open transport; only read from here
        send: Writer used for the setup commands (the engine's locked send)
        auth_token: Token for set_auth_token
        rng: Random source for the session id

    Raises:
        HandshakeError: On any failure. The cause is chained.
    """
    try:
        kind, raw = await transport.read_message()
    except TransportError as e:
        raise HandshakeError(f"Failed to read first message: {e}", step="read") from e

    if kind != MessageKind.TEXT:
        raise HandshakeError(f"First message is {kind.value}, expected text", step="read")

    hello = parse_hello(raw)
    session_id = generate_session_id(rng)
    logger.debug(f"Server session {hello['session_id']!r}, quote session {session_id}")

    for command in setup_commands(session_id, auth_token):
        try:
            await send(command.name, command.payload)
        except TransportError as e:
            raise HandshakeError(
                f"Failed to send {command.name}: {e}",
                step=command.name,
            ) from e

    return SessionInfo(session_id=session_id, server_session=hello["session_id"], hello=hello)
