"""
Shared types, enums, and data structures for the quote stream client.
"""

from __future__ import annotations

from dataclasses import dataclass, fields
from enum import Enum
from typing import Any, Awaitable, Callable, Optional

from quotestream.errors import QuoteStreamError


class ConnectionState(str, Enum):
    """Lifecycle of a single quote stream connection."""

    CONNECTING = "connecting"
    HANDSHAKING = "handshaking"
    STREAMING = "streaming"
    CLOSED = "closed"


class MessageKind(str, Enum):
    """Websocket message kinds the transport can deliver."""

    TEXT = "text"
    BINARY = "binary"


class ErrorContext(str, Enum):
    """Phase tag passed to the error callback alongside the error."""

    CONNECT = "connect"
    HANDSHAKE = "handshake"
    READ = "read"
    FRAMING = "framing"
    DECODE = "decode"
    PAYLOAD = "payload"
    SERVER = "server"
    KEEP_ALIVE = "keep_alive"
    SEND = "send"


@dataclass(frozen=True, slots=True)
class Envelope:
    """Control message: name (wire key "m") and arbitrary JSON payload (wire key "p")."""

    name: str
    payload: Any = None

    def to_wire(self) -> dict[str, Any]:
        return {"m": self.name, "p": self.payload}


@dataclass(frozen=True, slots=True)
class QuoteData:
    """
    Partial quote fields for one symbol.

    A field is None when it did not change since the previous update for
    the symbol. None never stands for zero.
    """

    price: Optional[float] = None
    volume: Optional[float] = None
    bid: Optional[float] = None
    ask: Optional[float] = None

    @property
    def changed_fields(self) -> tuple[str, ...]:
        """Names of the fields carried by this update."""
        return tuple(f.name for f in fields(self) if getattr(self, f.name) is not None)

    @property
    def is_empty(self) -> bool:
        return not self.changed_fields

    def to_dict(self) -> dict[str, float]:
        """Only the fields that are present."""
        return {name: getattr(self, name) for name in self.changed_fields}


@dataclass(frozen=True, slots=True)
class QuoteUpdate:
    """A decoded quote push."""

    symbol: str
    data: QuoteData


@dataclass(frozen=True, slots=True)
class SessionInfo:
    """Result of a successful handshake."""

    session_id: str  # client generated, "qs_" prefixed
    server_session: Any  # "session_id" value from the server hello
    hello: dict[str, Any]


@dataclass
class ClientMetrics:
    """Counters for a single connection."""

    messages_received: int = 0
    heartbeats_echoed: int = 0
    frames_decoded: int = 0
    quotes_dispatched: int = 0
    duplicates_dropped: int = 0
    messages_ignored: int = 0
    commands_sent: int = 0
    errors: int = 0


OnQuoteCallback = Callable[[str, QuoteData], Awaitable[None]]
OnErrorCallback = Callable[[QuoteStreamError, ErrorContext], Awaitable[None]]
