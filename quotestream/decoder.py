"""
Quote decoder.

Turns one frame payload into a QuoteUpdate, or None for messages that are
irrelevant to quote streaming (session acks, study data, ...).

Quote push format:
{
    "m": "qsd",
    "p": [
        "qs_XXXXXXXXXXXX",          // quote session, unused
        {
            "n": "OANDA:EURUSD",    // symbol
            "s": "ok",              // status
            "v": {                  // changed fields only
                "lp": 1.0843,
                "volume": 12345,
                "bid": 1.0842,
                "ask": 1.0844
            }
        }
    ]
}
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Any, Optional

from quotestream.codec import decode_envelope
from quotestream.errors import PayloadError, ServerError
from quotestream.types import Envelope, QuoteData, QuoteUpdate

logger = logging.getLogger(__name__)

QUOTE_MESSAGE = "qsd"
ERROR_MESSAGES = frozenset({"critical_error", "error"})

# wire key -> QuoteData attribute
QUOTE_FIELD_MAP: dict[str, str] = {
    "lp": "price",
    "volume": "volume",
    "bid": "bid",
    "ask": "ask",
}


@dataclass
class DecoderStats:
    """Statistics for the quote decoder."""

    payloads_received: int = 0
    quotes_decoded: int = 0
    messages_ignored: int = 0
    by_message: dict[str, int] = field(default_factory=dict)


def _safe_float(value: Any, field_name: str, raw: str) -> float:
    """Convert a JSON number to float. Booleans are rejected."""
    if isinstance(value, bool) or not isinstance(value, (int, float)):
        raise PayloadError(
            f"Invalid numeric value for {field_name}: {value!r}",
            raw_data=raw,
            expected_type="float",
        )
    return float(value)


def parse_quote_data(values: dict[str, Any], raw: str = "") -> QuoteData:
    """Map the "v" object onto QuoteData. Unknown keys are ignored; null means absent."""
    kwargs: dict[str, float] = {}
    for wire_key, attr in QUOTE_FIELD_MAP.items():
        value = values.get(wire_key)
        if value is not None:
            kwargs[attr] = _safe_float(value, wire_key, raw)
    return QuoteData(**kwargs)


class QuoteDecoder:
    """
    Classifies decoded envelopes and extracts quote updates.

    Every failure raised here is connection-fatal: the stream has no
    resynchronization point once a payload is suspect.
    """

    def __init__(self) -> None:
        self._stats = DecoderStats()

    @property
    def stats(self) -> DecoderStats:
        return self._stats

    def decode(self, payload: bytes) -> Optional[QuoteUpdate]:
        """
        Decode one frame payload.

        Returns:
            The quote update, or None if the message is not a quote push.

        Raises:
            DecodeError: Payload is not an envelope
            ServerError: Server pushed error/critical_error
            PayloadError: Quote push with unexpected shape or status
        """
        self._stats.payloads_received += 1
        envelope = decode_envelope(payload)

        self._stats.by_message[envelope.name] = self._stats.by_message.get(envelope.name, 0) + 1
        raw = payload.decode("utf-8", errors="replace")

        if envelope.name in ERROR_MESSAGES:
            raise ServerError(
                f"Server sent {envelope.name}: {raw}",
                kind=envelope.name,
                payload=envelope.payload,
            )

        if envelope.name != QUOTE_MESSAGE:
            self._stats.messages_ignored += 1
            logger.debug(f"Ignoring message: {envelope.name or '<unnamed>'}")
            return None

        update = self._parse_quote(envelope, raw)
        self._stats.quotes_decoded += 1
        return update

    def _parse_quote(self, envelope: Envelope, raw: str) -> QuoteUpdate:
        p = envelope.payload
        if p is None:
            raise PayloadError(f"Msg does not include 'p' -> {raw}", raw_data=raw)

        if not isinstance(p, list) or len(p) != 2:
            raise PayloadError(
                f"Quote payload must be a two-element list -> {raw}",
                raw_data=raw,
                expected_type="list[2]",
            )

        body = p[1]
        if not isinstance(body, dict):
            raise PayloadError(
                f"Quote body must be an object -> {raw}",
                raw_data=raw,
                expected_type="object",
            )

        symbol = body.get("n")
        status = body.get("s")
        values = body.get("v")

        if symbol is not None and not isinstance(symbol, str):
            raise PayloadError(f"Symbol must be a string -> {raw}", raw_data=raw, expected_type="str")
        if status is not None and not isinstance(status, str):
            raise PayloadError(f"Status must be a string -> {raw}", raw_data=raw, expected_type="str")
        if values is not None and not isinstance(values, dict):
            raise PayloadError(
                f"Quote values must be an object -> {raw}",
                raw_data=raw,
                expected_type="object",
            )

        if status != "ok" or not symbol or values is None:
            raise PayloadError(
                f"Quote payload has missing properties or status {status!r} -> {raw}",
                raw_data=raw,
                details={"symbol": symbol, "status": status},
            )

        return QuoteUpdate(symbol=symbol, data=parse_quote_data(values, raw))

    def reset_stats(self) -> None:
        self._stats = DecoderStats()
