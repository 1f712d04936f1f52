"""
Frame codec for the quote stream wire protocol.

Every logical message travels as

    ~m~<decimal byte length>~m~<payload>

and a single websocket message may carry several frames back to back.
Payloads are JSON envelopes {"m": <name>, "p": <payload>}, except for
heartbeats whose payload starts with "~" (e.g. "~h~42").
"""

from __future__ import annotations

from typing import Any

import orjson

from quotestream.errors import DecodeError, FramingError
from quotestream.types import Envelope

MARKER = b"~m~"
HEARTBEAT_PREFIX = b"~"


def encode(name: str, payload: Any) -> bytes:
    """Serialize an envelope and wrap it in a length-prefixed frame."""
    body = orjson.dumps(Envelope(name, payload).to_wire())
    return wrap(body)


def wrap(body: bytes) -> bytes:
    return MARKER + str(len(body)).encode("ascii") + MARKER + body


def _read_header(raw: bytes, offset: int) -> tuple[int, int]:
    """Parse the frame header at offset. Returns (payload_start, payload_length)."""
    if not raw.startswith(MARKER, offset):
        raise FramingError("Missing frame marker", offset=offset, raw_data=raw)

    length_start = offset + len(MARKER)
    length_end = raw.find(b"~", length_start)
    if length_end == -1:
        raise FramingError("Unterminated length token", offset=length_start, raw_data=raw)

    token = raw[length_start:length_end]
    if not token.isdigit():
        raise FramingError(
            f"Invalid length token: {token!r}",
            offset=length_start,
            raw_data=raw,
        )

    if not raw.startswith(MARKER, length_end):
        raise FramingError("Missing frame marker after length", offset=length_end, raw_data=raw)

    return length_end + len(MARKER), int(token)


def split_frames(raw: bytes) -> list[bytes]:
    """
    Split a raw websocket message into its frame payloads, in order.

    Raises:
        FramingError: If a header is malformed or a declared length runs
            past the end of the buffer.
    """
    payloads: list[bytes] = []
    offset = 0
    total = len(raw)

    while offset < total:
        start, length = _read_header(raw, offset)
        end = start + length
        if end > total:
            raise FramingError(
                f"Declared length {length} exceeds remaining {total - start} bytes",
                offset=offset,
                raw_data=raw,
            )
        payloads.append(raw[start:end])
        offset = end

    return payloads


def is_heartbeat(raw: bytes) -> bool:
    """True if the first frame's payload starts with "~"."""
    try:
        start, _ = _read_header(raw, 0)
    except FramingError:
        return False
    return raw[start : start + 1] == HEARTBEAT_PREFIX


def decode_envelope(payload: bytes) -> Envelope:
    """
    Decode one frame payload into an Envelope.

    A missing or null "m" decodes to an empty name, which callers treat as
    an irrelevant message.
    """
    try:
        data = orjson.loads(payload)
    except orjson.JSONDecodeError as e:
        raise DecodeError(
            f"Payload is not valid JSON: {e}",
            raw_data=payload.decode("utf-8", errors="replace"),
        ) from e

    if not isinstance(data, dict):
        raise DecodeError(
            f"Envelope must be a JSON object, got {type(data).__name__}",
            raw_data=payload.decode("utf-8", errors="replace"),
        )

    name = data.get("m")
    if name is None:
        name = ""
    elif not isinstance(name, str):
        raise DecodeError(
            f"Envelope name must be a string, got {type(name).__name__}",
            raw_data=payload.decode("utf-8", errors="replace"),
        )

    return Envelope(name=name, payload=data.get("p"))
