"""
Streaming quote client.

Connects to a TradingView-style quote websocket, negotiates a quote
session and delivers decoded quote updates to an async callback.

Components:
- QuoteClient / connect: Connection engine, subscriptions, receive loop
- codec: Length-prefixed frame encoding and splitting
- handshake: Session setup sequence
- keepalive: Heartbeat echo
- QuoteDecoder: Frame payload -> QuoteUpdate

Usage:
    from quotestream import connect

    async def on_quote(symbol, data):
        print(symbol, data.to_dict())

    async def on_error(error, context):
        print(context.value, error)

    client = await connect(on_quote, on_error, symbols=["OANDA:EURUSD"])
    await client.wait_closed()
"""

from quotestream.client import QuoteClient, connect
from quotestream.config import ClientConfig, ClientConfigLoader
from quotestream.decoder import QuoteDecoder
from quotestream.errors import (
    ConfigurationError,
    DecodeError,
    FramingError,
    HandshakeError,
    PayloadError,
    QuoteStreamError,
    SendError,
    ServerError,
    TransportError,
)
from quotestream.transport import AiohttpTransport, Transport
from quotestream.types import (
    ClientMetrics,
    ConnectionState,
    Envelope,
    ErrorContext,
    MessageKind,
    QuoteData,
    QuoteUpdate,
    SessionInfo,
)

__all__ = [
    # Main entry point
    "connect",
    "QuoteClient",
    "ClientConfig",
    "ClientConfigLoader",
    "QuoteDecoder",
    # Transport
    "Transport",
    "AiohttpTransport",
    # Types
    "ConnectionState",
    "MessageKind",
    "ErrorContext",
    "Envelope",
    "QuoteData",
    "QuoteUpdate",
    "SessionInfo",
    "ClientMetrics",
    # Errors
    "QuoteStreamError",
    "TransportError",
    "SendError",
    "FramingError",
    "HandshakeError",
    "DecodeError",
    "PayloadError",
    "ServerError",
    "ConfigurationError",
]
